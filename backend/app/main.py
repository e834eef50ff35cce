from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from backend.app.api.v1.router import router as v1_router
from backend.app.logging_config import configure_logging
from backend.services.errors import ReplenishmentError

configure_logging()

app = FastAPI(title="Replenishment Core", version="0.1.0")
app.include_router(v1_router, prefix="/v1")


@app.exception_handler(ReplenishmentError)
async def replenishment_error_handler(request: Request, exc: ReplenishmentError):
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "code": exc.code, "retryable": exc.retryable},
    )
