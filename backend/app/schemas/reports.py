from __future__ import annotations

from datetime import date, datetime

from pydantic import BaseModel, Field, field_validator

from backend.app.db.models.core_types import DateBasis, OrderType, ReportKind, Stage, StageSignal
from backend.app.schemas.common import normalize_ref


class ReportQuery(BaseModel):
    start_day: date | None = None
    end_day: date | None = None
    branch_ids: list[int] = Field(default_factory=list)
    department_id: int | None = None
    category_id: int | None = None
    product_id: int | None = None
    status: str | None = None
    order_type: OrderType | None = None
    invoice_number: str | None = None
    date_basis: DateBasis = DateBasis.delivery
    measure: Stage | None = None

    @field_validator("branch_ids", mode="before")
    @classmethod
    def _branch_list(cls, v):
        # "all", "3,4", ["3", {"id": 4}]
        if v is None:
            return []
        if isinstance(v, str):
            v = [] if v.strip() in ("", "all") else v.split(",")
        return [normalize_ref(x.strip() if isinstance(x, str) else x) for x in v if x not in ("", "all")]

    @field_validator("department_id", "category_id", "product_id", mode="before")
    @classmethod
    def _ref(cls, v):
        if v in ("", "all"):
            return None
        return normalize_ref(v)

    @field_validator("status", "invoice_number", mode="before")
    @classmethod
    def _blank(cls, v):
        if isinstance(v, str) and v.strip() in ("", "all"):
            return None
        return v


class MeasureCell(BaseModel):
    qty: int
    amount: float
    at: datetime | None = None
    signal: StageSignal | None = None


class BranchCell(BaseModel):
    qty: int
    amount: float


class ReportRow(BaseModel):
    s_no: int
    id: int | None
    name: str
    category_name: str | None = None
    department_name: str | None = None
    invoice_number: str | None = None
    invoice_numbers: list[str] = Field(default_factory=list)
    measures: dict[str, MeasureCell]
    difference_qty: int | None = None
    difference_amount: float | None = None
    branches: dict[str, BranchCell] = Field(default_factory=dict)
    branch_display: str = ""


class ReportTotals(BaseModel):
    measures: dict[str, MeasureCell]
    difference_qty: int | None = None
    difference_amount: float | None = None
    branches: dict[str, BranchCell] = Field(default_factory=dict)


class BranchOrderStatsOut(BaseModel):
    branch_id: int | None
    branch_name: str
    stock_orders: int
    live_orders: int
    total_orders: int


class BranchBillingOut(BaseModel):
    s_no: int | None = None
    branch_id: int | None
    branch_name: str
    total_bills: int
    total_amount: float
    cash: float
    card: float
    upi: float
    other: float


class InvoiceOut(BaseModel):
    invoice: str
    branch_code: str
    created_at: datetime
    is_live: bool | None = None


class ReportResponse(BaseModel):
    report: ReportKind
    start_date: date
    end_date: date
    measures: list[str]
    branch_headers: list[str]
    rows: list[ReportRow]
    categories: list[ReportRow]
    departments: list[ReportRow]
    totals: ReportTotals
    document_count: int
    skipped_items: int
    stats: list[BranchOrderStatsOut] = Field(default_factory=list)
    matrix_totals: BranchOrderStatsOut | None = None
    invoices: list[InvoiceOut] = Field(default_factory=list)
    billing: list[BranchBillingOut] = Field(default_factory=list)
    billing_totals: BranchBillingOut | None = None


class BranchOut(BaseModel):
    id: int
    name: str
    code: str
    company_id: int


class BranchList(BaseModel):
    docs: list[BranchOut]
    total_docs: int
