from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from backend.app.api.deps import get_db
from backend.app.schemas.stock_order import (
    BillCreate,
    DocumentCreated,
    InstockEntryCreate,
    InstockEntryRead,
    InstockStatusUpdate,
    ReturnOrderCreate,
    ReturnOrderRead,
    ReturnStatusUpdate,
)
from backend.services.orders import (
    create_bill,
    create_instock_entry,
    create_return_order,
    update_instock_status,
    update_return_status,
)

router = APIRouter()


@router.post("/instock-entries", status_code=201, response_model=DocumentCreated)
def create_entry(payload: InstockEntryCreate, db: Session = Depends(get_db)):
    entry = create_instock_entry(db, payload)
    return {"id": entry.id, "number": entry.invoice_number}


@router.post("/instock-entries/{entry_id}/status", response_model=InstockEntryRead)
def set_entry_status(entry_id: int, payload: InstockStatusUpdate, db: Session = Depends(get_db)):
    entry = update_instock_status(db, entry_id, payload)
    return InstockEntryRead.model_validate(entry)


@router.post("/return-orders", status_code=201, response_model=DocumentCreated)
def create_return(payload: ReturnOrderCreate, db: Session = Depends(get_db)):
    ret = create_return_order(db, payload)
    return {"id": ret.id, "number": ret.return_number}


@router.post("/return-orders/{return_id}/status", response_model=ReturnOrderRead)
def set_return_status(return_id: int, payload: ReturnStatusUpdate, db: Session = Depends(get_db)):
    ret = update_return_status(db, return_id, payload)
    return ReturnOrderRead.model_validate(ret)


@router.post("/bills", status_code=201, response_model=DocumentCreated)
def create_sale(payload: BillCreate, db: Session = Depends(get_db)):
    bill = create_bill(db, payload)
    return {"id": bill.id, "number": bill.bill_number}
