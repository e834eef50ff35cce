from __future__ import annotations

from datetime import datetime, date, timezone
from decimal import Decimal

from sqlalchemy import (
    String,
    Integer,
    BigInteger,
    Date,
    Boolean,
    ForeignKey,
    Numeric,
    Text,
    Enum,
    UniqueConstraint,
    Index,
    CheckConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from backend.app.db.base import Base
from backend.app.db.types import BigIntPK, UTCDateTime
from backend.app.db.models.core_types import (
    DocumentKind,
    Stage,
    EntryStatus,
    ReturnStatus,
    BillStatus,
    PaymentMethod,
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------- MASTER DATA (read-only to the core) ----------
class Company(Base):
    __tablename__ = "companies"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    name: Mapped[str] = mapped_column(String(200), unique=True, nullable=False)


class Branch(Base):
    __tablename__ = "branches"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    company_id: Mapped[int] = mapped_column(ForeignKey("companies.id", ondelete="RESTRICT"), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(200), unique=True, nullable=False)
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    company: Mapped[Company] = relationship()


class Department(Base):
    __tablename__ = "departments"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    name: Mapped[str] = mapped_column(String(200), unique=True, nullable=False)


class Category(Base):
    __tablename__ = "categories"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    department_id: Mapped[int | None] = mapped_column(ForeignKey("departments.id", ondelete="SET NULL"))
    name: Mapped[str] = mapped_column(String(200), nullable=False)

    department: Mapped[Department | None] = relationship()


class Product(Base):
    __tablename__ = "products"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    category_id: Mapped[int | None] = mapped_column(ForeignKey("categories.id", ondelete="SET NULL"))
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    price: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=0, nullable=False)
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    category: Mapped[Category | None] = relationship()

    __table_args__ = (CheckConstraint("price >= 0", name="ck_product_price_nonneg"),)


# ---------- SEQUENCES ----------
class DocumentSequence(Base):
    """One counter cell per (branch code, document kind, local day)."""
    __tablename__ = "document_sequences"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    branch_code: Mapped[str] = mapped_column(String(16), nullable=False)
    kind: Mapped[DocumentKind] = mapped_column(Enum(DocumentKind, name="document_kind"), nullable=False)
    local_day: Mapped[date] = mapped_column(Date, nullable=False)
    last_value: Mapped[int] = mapped_column(Integer, nullable=False)

    __table_args__ = (
        UniqueConstraint("branch_code", "kind", "local_day", name="uq_document_sequence_scope"),
        CheckConstraint("last_value > 0", name="ck_document_sequence_positive"),
    )


# ---------- STOCK ORDERS ----------
class StockOrder(Base):
    __tablename__ = "stock_orders"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    invoice_number: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    branch_id: Mapped[int] = mapped_column(ForeignKey("branches.id", ondelete="RESTRICT"), nullable=False)
    company_id: Mapped[int] = mapped_column(ForeignKey("companies.id", ondelete="RESTRICT"), nullable=False)
    created_by: Mapped[str | None] = mapped_column(String(64))
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=_utcnow, nullable=False)
    delivery_date: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    is_live_at_creation: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    notes: Mapped[str | None] = mapped_column(Text)

    branch: Mapped[Branch] = relationship()
    items: Mapped[list["StockOrderItem"]] = relationship(
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="StockOrderItem.line_no",
    )

    __table_args__ = (
        Index("ix_stock_orders_created_at", "created_at"),
        Index("ix_stock_orders_delivery_date", "delivery_date"),
        Index("ix_stock_orders_branch_created", "branch_id", "created_at"),
    )


class StockOrderItem(Base):
    __tablename__ = "stock_order_items"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    order_id: Mapped[int] = mapped_column(ForeignKey("stock_orders.id", ondelete="CASCADE"), nullable=False, index=True)
    line_no: Mapped[int] = mapped_column(Integer, nullable=False)
    product_id: Mapped[int] = mapped_column(BigInteger, nullable=False, index=True)  # catalog ref, may be pruned

    # snapshots taken when the order is created
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=0, nullable=False)
    in_stock_qty: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    required_qty: Mapped[int] = mapped_column(Integer, nullable=False)
    required_date: Mapped[datetime | None] = mapped_column(UTCDateTime)
    sending_qty: Mapped[int | None] = mapped_column(Integer)
    sending_date: Mapped[datetime | None] = mapped_column(UTCDateTime)
    confirmed_qty: Mapped[int | None] = mapped_column(Integer)
    confirmed_date: Mapped[datetime | None] = mapped_column(UTCDateTime)
    picked_qty: Mapped[int | None] = mapped_column(Integer)
    picked_date: Mapped[datetime | None] = mapped_column(UTCDateTime)
    received_qty: Mapped[int | None] = mapped_column(Integer)
    received_date: Mapped[datetime | None] = mapped_column(UTCDateTime)
    difference_qty: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    version: Mapped[int] = mapped_column(Integer, nullable=False)

    order: Mapped[StockOrder] = relationship(back_populates="items")
    corrections: Mapped[list["StageCorrection"]] = relationship(
        back_populates="item",
        cascade="all, delete-orphan",
        order_by="StageCorrection.id",
    )

    __mapper_args__ = {"version_id_col": version}
    __table_args__ = (
        UniqueConstraint("order_id", "line_no", name="uq_stock_order_item_line"),
        CheckConstraint("required_qty >= 0", name="ck_item_required_nonneg"),
        CheckConstraint("in_stock_qty >= 0", name="ck_item_in_stock_nonneg"),
    )


# ---------- AUDIT ----------
class StageCorrection(Base):
    __tablename__ = "stage_corrections"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    item_id: Mapped[int] = mapped_column(ForeignKey("stock_order_items.id", ondelete="CASCADE"), nullable=False)
    stage: Mapped[Stage] = mapped_column(Enum(Stage, name="stage"), nullable=False)
    old_qty: Mapped[int | None] = mapped_column(Integer)
    old_at: Mapped[datetime | None] = mapped_column(UTCDateTime)
    new_qty: Mapped[int] = mapped_column(Integer, nullable=False)
    new_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    corrected_by: Mapped[str | None] = mapped_column(String(64))
    reason: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=_utcnow, nullable=False)

    item: Mapped[StockOrderItem] = relationship(back_populates="corrections")

    __table_args__ = (Index("ix_stage_corrections_item", "item_id", "stage"),)


# ---------- IN-STOCK ENTRIES ----------
class InstockEntry(Base):
    __tablename__ = "instock_entries"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    invoice_number: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    branch_id: Mapped[int] = mapped_column(ForeignKey("branches.id", ondelete="RESTRICT"), nullable=False)
    created_by: Mapped[str | None] = mapped_column(String(64))
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=_utcnow, nullable=False)
    status: Mapped[EntryStatus] = mapped_column(
        Enum(EntryStatus, name="entry_status"),
        default=EntryStatus.waiting,
        nullable=False,
    )

    branch: Mapped[Branch] = relationship()
    items: Mapped[list["InstockEntryItem"]] = relationship(
        back_populates="entry",
        cascade="all, delete-orphan",
        order_by="InstockEntryItem.line_no",
    )

    __table_args__ = (Index("ix_instock_entries_created_at", "created_at"),)


class InstockEntryItem(Base):
    __tablename__ = "instock_entry_items"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    entry_id: Mapped[int] = mapped_column(ForeignKey("instock_entries.id", ondelete="CASCADE"), nullable=False, index=True)
    line_no: Mapped[int] = mapped_column(Integer, nullable=False)
    product_id: Mapped[int] = mapped_column(BigInteger, nullable=False, index=True)  # catalog ref, may be pruned
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    instock_qty: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[EntryStatus] = mapped_column(
        Enum(EntryStatus, name="entry_status"),
        default=EntryStatus.waiting,
        nullable=False,
    )

    entry: Mapped[InstockEntry] = relationship(back_populates="items")

    __table_args__ = (CheckConstraint("instock_qty >= 0", name="ck_instock_item_qty_nonneg"),)


# ---------- RETURN ORDERS ----------
class ReturnOrder(Base):
    __tablename__ = "return_orders"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    return_number: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    branch_id: Mapped[int] = mapped_column(ForeignKey("branches.id", ondelete="RESTRICT"), nullable=False)
    created_by: Mapped[str | None] = mapped_column(String(64))
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=_utcnow, nullable=False)
    status: Mapped[ReturnStatus] = mapped_column(
        Enum(ReturnStatus, name="return_status"),
        default=ReturnStatus.pending,
        nullable=False,
    )
    total_amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=0, nullable=False)
    notes: Mapped[str | None] = mapped_column(Text)

    branch: Mapped[Branch] = relationship()
    items: Mapped[list["ReturnOrderItem"]] = relationship(
        back_populates="return_order",
        cascade="all, delete-orphan",
        order_by="ReturnOrderItem.line_no",
    )

    __table_args__ = (Index("ix_return_orders_created_at", "created_at"),)


class ReturnOrderItem(Base):
    __tablename__ = "return_order_items"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    return_order_id: Mapped[int] = mapped_column(
        ForeignKey("return_orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    line_no: Mapped[int] = mapped_column(Integer, nullable=False)
    product_id: Mapped[int] = mapped_column(BigInteger, nullable=False, index=True)  # catalog ref, may be pruned
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=0, nullable=False)
    subtotal: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=0, nullable=False)

    return_order: Mapped[ReturnOrder] = relationship(back_populates="items")

    __table_args__ = (CheckConstraint("quantity > 0", name="ck_return_item_qty_pos"),)


# ---------- BILLS (point-of-sale) ----------
class Bill(Base):
    __tablename__ = "bills"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    bill_number: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    branch_id: Mapped[int] = mapped_column(ForeignKey("branches.id", ondelete="RESTRICT"), nullable=False)
    company_id: Mapped[int] = mapped_column(ForeignKey("companies.id", ondelete="RESTRICT"), nullable=False)
    created_by: Mapped[str | None] = mapped_column(String(64))
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=_utcnow, nullable=False)
    payment_method: Mapped[PaymentMethod | None] = mapped_column(Enum(PaymentMethod, name="payment_method"))
    status: Mapped[BillStatus] = mapped_column(
        Enum(BillStatus, name="bill_status"),
        default=BillStatus.pending,
        nullable=False,
    )
    total_amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=0, nullable=False)
    notes: Mapped[str | None] = mapped_column(Text)

    branch: Mapped[Branch] = relationship()
    items: Mapped[list["BillItem"]] = relationship(
        back_populates="bill",
        cascade="all, delete-orphan",
        order_by="BillItem.line_no",
    )

    __table_args__ = (
        Index("ix_bills_created_at", "created_at"),
        Index("ix_bills_branch_created", "branch_id", "created_at"),
    )


class BillItem(Base):
    __tablename__ = "bill_items"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    bill_id: Mapped[int] = mapped_column(ForeignKey("bills.id", ondelete="CASCADE"), nullable=False, index=True)
    line_no: Mapped[int] = mapped_column(Integer, nullable=False)
    product_id: Mapped[int] = mapped_column(BigInteger, nullable=False, index=True)  # catalog ref, may be pruned
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=0, nullable=False)
    subtotal: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=0, nullable=False)
    branch_override: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    bill: Mapped[Bill] = relationship(back_populates="items")

    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_bill_item_qty_pos"),
        CheckConstraint("unit_price >= 0", name="ck_bill_item_price_nonneg"),
    )
