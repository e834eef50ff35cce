from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from backend.app.api.deps import get_db
from backend.app.db.models.models_v1 import StockOrder, StockOrderItem
from backend.app.schemas.stock_order import (
    AdvanceStage,
    StageCorrectionRead,
    StockOrderCreate,
    StockOrderCreated,
    StockOrderItemRead,
    StockOrderRead,
)
from backend.services import fulfillment
from backend.services.aggregation import AggregationEngine
from backend.services.orders import advance_item_stage, create_stock_order, get_stock_order

router = APIRouter(prefix="/stock-orders")


def _item_read(item: StockOrderItem) -> StockOrderItemRead:
    return StockOrderItemRead.model_validate(
        {
            "line_no": item.line_no,
            "product_id": item.product_id,
            "name": item.name,
            "unit_price": item.unit_price,
            "in_stock_qty": item.in_stock_qty,
            "required_qty": item.required_qty,
            "required_date": item.required_date,
            "sending_qty": item.sending_qty,
            "sending_date": item.sending_date,
            "confirmed_qty": item.confirmed_qty,
            "confirmed_date": item.confirmed_date,
            "picked_qty": item.picked_qty,
            "picked_date": item.picked_date,
            "received_qty": item.received_qty,
            "received_date": item.received_date,
            "difference_qty": item.difference_qty,
            "version": item.version,
            "status": fulfillment.current_stage(item),
            "closed": fulfillment.is_closed(item),
            "variance": fulfillment.variance(item),
            "signals": fulfillment.stage_signals(item),
            "corrections": [StageCorrectionRead.model_validate(c) for c in item.corrections],
        }
    )


def _order_read(order: StockOrder) -> StockOrderRead:
    return StockOrderRead(
        id=order.id,
        invoice_number=order.invoice_number,
        branch_id=order.branch_id,
        created_by=order.created_by,
        created_at=order.created_at,
        delivery_date=order.delivery_date,
        is_live=AggregationEngine.is_live(order),
        is_live_at_creation=order.is_live_at_creation,
        notes=order.notes,
        items=[_item_read(i) for i in order.items],
    )


@router.post("", status_code=201, response_model=StockOrderCreated)
def create_order(payload: StockOrderCreate, db: Session = Depends(get_db)):
    order = create_stock_order(db, payload)
    return {"id": order.id, "invoice_number": order.invoice_number}


@router.get("/{order_id}", response_model=StockOrderRead)
def get_order(order_id: int, db: Session = Depends(get_db)):
    return _order_read(get_stock_order(db, order_id))


@router.post("/{order_id}/items/{line_no}/advance", response_model=StockOrderItemRead)
def advance_item(order_id: int, line_no: int, payload: AdvanceStage, db: Session = Depends(get_db)):
    item = advance_item_stage(db, order_id, line_no, payload)
    return _item_read(item)
