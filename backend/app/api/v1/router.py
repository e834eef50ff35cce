from fastapi import APIRouter

from backend.app.api.v1.endpoints.health import router as health_router
from backend.app.api.v1.endpoints.stock_orders import router as stock_orders_router
from backend.app.api.v1.endpoints.documents import router as documents_router
from backend.app.api.v1.endpoints.reports import router as reports_router

router = APIRouter()
router.include_router(health_router, tags=["health"])
router.include_router(stock_orders_router, tags=["stock_orders"])
router.include_router(documents_router, tags=["documents"])
router.include_router(reports_router, tags=["reports"])
