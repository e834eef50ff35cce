from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from backend.app.db.models.core_types import (
    BillStatus,
    EntryStatus,
    PaymentMethod,
    ReturnStatus,
    Stage,
    StageSignal,
    Variance,
)
from backend.app.schemas.common import normalize_ref, require_tz


class StockOrderItemCreate(BaseModel):
    product_id: int
    required_qty: int = Field(ge=0)
    in_stock_qty: int = Field(default=0, ge=0)

    @field_validator("product_id", mode="before")
    @classmethod
    def _product_ref(cls, v):
        return normalize_ref(v)


class StockOrderCreate(BaseModel):
    branch_id: int
    delivery_date: datetime
    items: list[StockOrderItemCreate] = Field(min_length=1)
    created_by: str | None = Field(default=None, max_length=64)
    notes: str | None = None

    @field_validator("branch_id", mode="before")
    @classmethod
    def _branch_ref(cls, v):
        return normalize_ref(v)

    @field_validator("delivery_date")
    @classmethod
    def _aware(cls, v):
        return require_tz(v)


class DocumentCreated(BaseModel):
    id: int
    number: str


class StockOrderCreated(BaseModel):
    id: int
    invoice_number: str


class AdvanceStage(BaseModel):
    stage: Stage
    qty: int = Field(ge=0)
    at: datetime | None = None
    correction: bool = False
    expected_version: int | None = None
    actor: str | None = Field(default=None, max_length=64)
    reason: str | None = None

    @field_validator("at")
    @classmethod
    def _aware(cls, v):
        return require_tz(v)


class StageCorrectionRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    stage: Stage
    old_qty: int | None
    old_at: datetime | None
    new_qty: int
    new_at: datetime
    corrected_by: str | None
    reason: str | None
    created_at: datetime


class StockOrderItemRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    line_no: int
    product_id: int
    name: str
    unit_price: Decimal
    in_stock_qty: int
    required_qty: int
    required_date: datetime | None
    sending_qty: int | None
    sending_date: datetime | None
    confirmed_qty: int | None
    confirmed_date: datetime | None
    picked_qty: int | None
    picked_date: datetime | None
    received_qty: int | None
    received_date: datetime | None
    difference_qty: int
    version: int

    # computed on read
    status: Stage
    closed: bool
    variance: Variance
    signals: dict[Stage, StageSignal]
    corrections: list[StageCorrectionRead] = Field(default_factory=list)


class StockOrderRead(BaseModel):
    id: int
    invoice_number: str
    branch_id: int
    created_by: str | None
    created_at: datetime
    delivery_date: datetime
    is_live: bool
    is_live_at_creation: bool
    notes: str | None
    items: list[StockOrderItemRead]


class InstockItemCreate(BaseModel):
    product_id: int
    instock_qty: int = Field(ge=0)

    @field_validator("product_id", mode="before")
    @classmethod
    def _product_ref(cls, v):
        return normalize_ref(v)


class InstockEntryCreate(BaseModel):
    branch_id: int
    items: list[InstockItemCreate] = Field(min_length=1)
    created_by: str | None = Field(default=None, max_length=64)

    @field_validator("branch_id", mode="before")
    @classmethod
    def _branch_ref(cls, v):
        return normalize_ref(v)


class ReturnItemCreate(BaseModel):
    product_id: int
    quantity: int = Field(gt=0)
    unit_price: Decimal | None = Field(default=None, ge=0)

    @field_validator("product_id", mode="before")
    @classmethod
    def _product_ref(cls, v):
        return normalize_ref(v)


class ReturnOrderCreate(BaseModel):
    branch_id: int
    items: list[ReturnItemCreate] = Field(min_length=1)
    created_by: str | None = Field(default=None, max_length=64)
    notes: str | None = None

    @field_validator("branch_id", mode="before")
    @classmethod
    def _branch_ref(cls, v):
        return normalize_ref(v)


class InstockStatusUpdate(BaseModel):
    """One line (``line_no``) or every line (``update_all``)."""

    status: EntryStatus
    line_no: int | None = Field(default=None, ge=1)
    update_all: bool = False

    @model_validator(mode="after")
    def _one_target(self):
        if self.update_all == (self.line_no is not None):
            raise ValueError("Give either line_no or update_all")
        return self


class InstockItemRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    line_no: int
    product_id: int
    name: str
    instock_qty: int
    status: EntryStatus


class InstockEntryRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    invoice_number: str
    branch_id: int
    created_by: str | None
    created_at: datetime
    status: EntryStatus
    items: list[InstockItemRead]


class ReturnStatusUpdate(BaseModel):
    status: ReturnStatus

    @field_validator("status")
    @classmethod
    def _decided(cls, v):
        if v == ReturnStatus.pending:
            raise ValueError("A return can only be accepted or rejected")
        return v


class ReturnOrderRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    return_number: str
    branch_id: int
    created_at: datetime
    status: ReturnStatus
    total_amount: Decimal
    notes: str | None


class BillItemCreate(BaseModel):
    product_id: int
    quantity: int = Field(gt=0)
    unit_price: Decimal | None = Field(default=None, ge=0)

    @field_validator("product_id", mode="before")
    @classmethod
    def _product_ref(cls, v):
        return normalize_ref(v)


class BillCreate(BaseModel):
    branch_id: int
    items: list[BillItemCreate] = Field(min_length=1)
    payment_method: PaymentMethod | None = None
    status: BillStatus = BillStatus.pending
    created_by: str | None = Field(default=None, max_length=64)
    notes: str | None = None

    @field_validator("branch_id", mode="before")
    @classmethod
    def _branch_ref(cls, v):
        return normalize_ref(v)
