"""
Write paths: stock orders, stage advancement, in-stock entries, returns,
bills, and the approval workflows for entries and returns.

Documents get their number from ``sequences.mint_identifier`` inside the same
transaction that inserts them. Item updates are guarded by the item's
``version`` column.
"""

from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, selectinload
from sqlalchemy.orm.exc import StaleDataError

from backend.app.db.models.models_v1 import (
    Bill,
    BillItem,
    InstockEntry,
    InstockEntryItem,
    ReturnOrder,
    ReturnOrderItem,
    StockOrder,
    StockOrderItem,
)
from backend.app.db.models.core_types import DocumentKind, EntryStatus, ReturnStatus, Stage
from backend.app.schemas.stock_order import (
    AdvanceStage,
    BillCreate,
    InstockEntryCreate,
    InstockStatusUpdate,
    ReturnOrderCreate,
    ReturnStatusUpdate,
    StockOrderCreate,
)
from backend.services import fulfillment
from backend.services.business_time import LocalDay, require_aware, utc_now
from backend.services.catalog import require_products, resolve_branch
from backend.services.errors import (
    DocumentNotFoundError,
    InvalidStatusTransitionError,
    OrderNotFoundError,
    StaleVersionError,
)
from backend.services.sequences import mint_identifier

logger = logging.getLogger(__name__)


def create_stock_order(db: Session, payload: StockOrderCreate, *, now: datetime | None = None) -> StockOrder:
    """
    Validate, number and persist a stock order; every item starts in stage
    ``ordered`` with its required quantity stamped at ``now``.
    """
    now = require_aware(now or utc_now(), "now")
    delivery = require_aware(payload.delivery_date, "delivery_date")

    # both lookups happen before anything is written
    branch = resolve_branch(db, payload.branch_id)
    products = require_products(db, (ln.product_id for ln in payload.items))

    try:
        invoice_number, local_day = mint_identifier(db, branch, DocumentKind.stock_order, now)

        order = StockOrder(
            invoice_number=invoice_number,
            branch_id=branch.id,
            company_id=branch.company_id,
            created_by=payload.created_by,
            created_at=now,
            delivery_date=delivery,
            is_live_at_creation=LocalDay.of(delivery) == local_day,
            notes=payload.notes,
        )
        for line_no, ln in enumerate(payload.items, start=1):
            product = products[ln.product_id]
            item = StockOrderItem(
                line_no=line_no,
                product_id=product.id,
                name=product.name,
                unit_price=product.price,
                in_stock_qty=ln.in_stock_qty,
                required_qty=ln.required_qty,
                required_date=now,
            )
            fulfillment.reconcile(item)
            order.items.append(item)

        db.add(order)
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        raise

    logger.info("Created stock order %s (%d items) for branch %s", invoice_number, len(payload.items), branch.id)
    return order


def get_stock_order(db: Session, order_id: int) -> StockOrder:
    order = db.execute(
        select(StockOrder)
        .options(selectinload(StockOrder.items).selectinload(StockOrderItem.corrections))
        .where(StockOrder.id == order_id)
    ).scalar_one_or_none()
    if not order:
        raise OrderNotFoundError(f"Stock order {order_id} not found")
    return order


def _get_item(db: Session, order_id: int, line_no: int) -> StockOrderItem:
    item = db.execute(
        select(StockOrderItem)
        .where(StockOrderItem.order_id == order_id)
        .where(StockOrderItem.line_no == line_no)
    ).scalar_one_or_none()
    if not item:
        raise OrderNotFoundError(f"Item {line_no} not found on stock order {order_id}")
    return item


def advance_item_stage(
    db: Session,
    order_id: int,
    line_no: int,
    payload: AdvanceStage,
    *,
    now: datetime | None = None,
) -> StockOrderItem:
    """
    Apply one stage transition to one item and commit it.

    ``expected_version`` (when given) must match the stored version; the
    UPDATE itself is also version-checked, so two writers racing on the same
    item cannot both win.
    """
    item = _get_item(db, order_id, line_no)
    if payload.expected_version is not None and payload.expected_version != item.version:
        raise StaleVersionError(
            f"Item {line_no} of order {order_id} is at version {item.version}, not {payload.expected_version}"
        )

    at = payload.at or now or utc_now()
    try:
        fulfillment.advance(
            item,
            Stage(payload.stage),
            payload.qty,
            at,
            correction=payload.correction,
            actor=payload.actor,
            reason=payload.reason,
        )
        db.commit()
    except StaleDataError as exc:
        db.rollback()
        raise StaleVersionError(f"Item {line_no} of order {order_id} was modified concurrently") from exc
    except Exception:
        db.rollback()
        raise

    db.refresh(item)
    return item


def create_instock_entry(db: Session, payload: InstockEntryCreate, *, now: datetime | None = None) -> InstockEntry:
    now = require_aware(now or utc_now(), "now")
    branch = resolve_branch(db, payload.branch_id)
    products = require_products(db, (ln.product_id for ln in payload.items))

    try:
        number, _ = mint_identifier(db, branch, DocumentKind.instock_entry, now)
        entry = InstockEntry(
            invoice_number=number,
            branch_id=branch.id,
            created_by=payload.created_by,
            created_at=now,
            status=EntryStatus.waiting,
        )
        for line_no, ln in enumerate(payload.items, start=1):
            entry.items.append(
                InstockEntryItem(
                    line_no=line_no,
                    product_id=ln.product_id,
                    name=products[ln.product_id].name,
                    instock_qty=ln.instock_qty,
                    status=EntryStatus.waiting,
                )
            )
        db.add(entry)
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        raise

    logger.info("Created in-stock entry %s for branch %s", number, branch.id)
    return entry


def create_return_order(db: Session, payload: ReturnOrderCreate, *, now: datetime | None = None) -> ReturnOrder:
    now = require_aware(now or utc_now(), "now")
    branch = resolve_branch(db, payload.branch_id)
    products = require_products(db, (ln.product_id for ln in payload.items))

    try:
        number, _ = mint_identifier(db, branch, DocumentKind.return_order, now)
        ret = ReturnOrder(
            return_number=number,
            branch_id=branch.id,
            created_by=payload.created_by,
            created_at=now,
            status=ReturnStatus.pending,
            notes=payload.notes,
        )
        total = Decimal("0")
        for line_no, ln in enumerate(payload.items, start=1):
            product = products[ln.product_id]
            price = ln.unit_price if ln.unit_price is not None else product.price
            subtotal = price * ln.quantity
            total += subtotal
            ret.items.append(
                ReturnOrderItem(
                    line_no=line_no,
                    product_id=product.id,
                    name=product.name,
                    quantity=ln.quantity,
                    unit_price=price,
                    subtotal=subtotal,
                )
            )
        ret.total_amount = total
        db.add(ret)
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        raise

    logger.info("Created return order %s for branch %s", number, branch.id)
    return ret


def get_instock_entry(db: Session, entry_id: int) -> InstockEntry:
    entry = db.execute(
        select(InstockEntry).options(selectinload(InstockEntry.items)).where(InstockEntry.id == entry_id)
    ).scalar_one_or_none()
    if not entry:
        raise DocumentNotFoundError(f"In-stock entry {entry_id} not found")
    return entry


def update_instock_status(db: Session, entry_id: int, payload: InstockStatusUpdate) -> InstockEntry:
    """
    Set the status of one line, or of every line with ``update_all``.

    The entry itself is ``approved`` once every line is approved and
    ``waiting`` otherwise; it is recomputed on every change.
    """
    entry = get_instock_entry(db, entry_id)
    if payload.update_all:
        targets = list(entry.items)
    else:
        targets = [i for i in entry.items if i.line_no == payload.line_no]
        if not targets:
            raise DocumentNotFoundError(f"Item {payload.line_no} not found on in-stock entry {entry_id}")

    try:
        for item in targets:
            item.status = payload.status
        all_approved = all(i.status == EntryStatus.approved for i in entry.items)
        entry.status = EntryStatus.approved if all_approved else EntryStatus.waiting
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        raise

    logger.info(
        "In-stock entry %s: %d line(s) set to %s, entry is %s",
        entry.invoice_number, len(targets), payload.status.value, entry.status.value,
    )
    db.refresh(entry)
    return entry


def get_return_order(db: Session, return_id: int) -> ReturnOrder:
    ret = db.get(ReturnOrder, return_id)
    if not ret:
        raise DocumentNotFoundError(f"Return order {return_id} not found")
    return ret


def update_return_status(db: Session, return_id: int, payload: ReturnStatusUpdate) -> ReturnOrder:
    """Accept or reject a pending return. Decided returns are final."""
    ret = get_return_order(db, return_id)
    if ret.status != ReturnStatus.pending:
        raise InvalidStatusTransitionError(
            f"Return order {ret.return_number} is already {ret.status.value}"
        )

    try:
        ret.status = payload.status
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        raise

    logger.info("Return order %s %s", ret.return_number, payload.status.value)
    db.refresh(ret)
    return ret


def create_bill(db: Session, payload: BillCreate, *, now: datetime | None = None) -> Bill:
    """
    Number and persist a sale. Lines without a price take the catalog price;
    a different price is kept and flagged as a branch override.
    """
    now = require_aware(now or utc_now(), "now")
    branch = resolve_branch(db, payload.branch_id)
    products = require_products(db, (ln.product_id for ln in payload.items))

    try:
        number, _ = mint_identifier(db, branch, DocumentKind.bill, now)
        bill = Bill(
            bill_number=number,
            branch_id=branch.id,
            company_id=branch.company_id,
            created_by=payload.created_by,
            created_at=now,
            payment_method=payload.payment_method,
            status=payload.status,
            notes=payload.notes,
        )
        total = Decimal("0")
        for line_no, ln in enumerate(payload.items, start=1):
            product = products[ln.product_id]
            price = ln.unit_price if ln.unit_price is not None else product.price
            subtotal = price * ln.quantity
            total += subtotal
            bill.items.append(
                BillItem(
                    line_no=line_no,
                    product_id=product.id,
                    name=product.name,
                    quantity=ln.quantity,
                    unit_price=price,
                    subtotal=subtotal,
                    branch_override=price != product.price,
                )
            )
        bill.total_amount = total
        db.add(bill)
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        raise

    logger.info("Created bill %s (%s) for branch %s", number, total, branch.id)
    return bill
