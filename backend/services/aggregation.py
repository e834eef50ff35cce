"""
Aggregation engine for the replenishment reports.

Pipeline, for every report kind:

    documents in window + scope
      -> line items
      -> product (-> category -> department) lookup
      -> per product x branch cells
      -> per product rows (sum of its branch cells)
      -> per category / per department rollups (sum of product rows)

Sources: stock orders (stage quantities), bills (product, category,
department and branch-wise sales), in-stock entries and return orders.

Rollups never re-scan raw items, so every level adds up to the one below it.
The day range is converted to UTC instants once, in ``ReportScope.window()``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Iterable

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from backend.app.db.models.models_v1 import (
    Bill,
    InstockEntry,
    ReturnOrder,
    StockOrder,
)
from backend.app.db.models.core_types import (
    STAGE_ORDER,
    BillStatus,
    DateBasis,
    EntryStatus,
    OrderType,
    PaymentMethod,
    ReportKind,
    ReturnStatus,
    Stage,
    StageSignal,
)
from backend.services.business_time import InstantWindow, LocalDay
from backend.services.catalog import BranchRef, ProductInfo, list_branches, load_product_index
from backend.services.fulfillment import STAGE_FIELDS, StageValue, compare_stages, current_stage

logger = logging.getLogger(__name__)

ZERO = Decimal("0")

INSTOCK = "instock"
RETURNED = "returned"
SOLD = "sold"


# ---------- SCOPE ----------
@dataclass(frozen=True)
class ReportScope:
    start_day: LocalDay
    end_day: LocalDay
    branch_ids: frozenset[int] | None = None  # None = every branch
    department_id: int | None = None
    category_id: int | None = None
    product_id: int | None = None
    status: str | None = None
    order_type: OrderType | None = None
    invoice_number: str | None = None
    date_basis: DateBasis = DateBasis.delivery
    measure: Stage | None = None  # None = bills; a stage = stock-order quantities at that stage

    def window(self) -> InstantWindow:
        return InstantWindow.for_days(self.start_day, self.end_day)

    def wants_product(self, product: ProductInfo) -> bool:
        if self.product_id is not None and product.id != self.product_id:
            return False
        if self.category_id is not None and product.category_id != self.category_id:
            return False
        if self.department_id is not None and product.department_id != self.department_id:
            return False
        return True


# ---------- RESULT TYPES ----------
@dataclass
class Tally:
    """Quantity, amount and latest timestamp per measure."""
    qty: dict[str, int] = field(default_factory=dict)
    amount: dict[str, Decimal] = field(default_factory=dict)
    latest: dict[str, datetime | None] = field(default_factory=dict)

    def add(self, measure: str, qty: int, amount: Decimal, at: datetime | None = None) -> None:
        self.qty[measure] = self.qty.get(measure, 0) + qty
        self.amount[measure] = self.amount.get(measure, ZERO) + amount
        prev = self.latest.get(measure)
        if at is not None and (prev is None or at > prev):
            self.latest[measure] = at
        else:
            self.latest.setdefault(measure, prev)

    def absorb(self, other: "Tally") -> None:
        for measure in other.qty:
            self.add(measure, other.qty[measure], other.amount.get(measure, ZERO), other.latest.get(measure))

    def q(self, measure: str) -> int:
        return self.qty.get(measure, 0)

    def a(self, measure: str) -> Decimal:
        return self.amount.get(measure, ZERO)

    @property
    def difference_qty(self) -> int:
        return self.q(Stage.received.value) - self.q(Stage.ordered.value)

    @property
    def difference_amount(self) -> Decimal:
        return self.a(Stage.received.value) - self.a(Stage.ordered.value)

    def is_zero(self, measure: str) -> bool:
        return self.q(measure) == 0 and self.a(measure) == ZERO


def summed(tallies: Iterable[Tally]) -> Tally:
    total = Tally()
    for t in tallies:
        total.absorb(t)
    return total


@dataclass
class ProductRow:
    product: ProductInfo
    branches: dict[str, Tally] = field(default_factory=dict)
    invoice_numbers: list[str] = field(default_factory=list)
    invoice_number: str | None = None  # set on single-invoice drill-down rows
    line_count: int = 0
    tally: Tally = field(default_factory=Tally)

    def cell(self, code: str) -> Tally:
        return self.branches.setdefault(code, Tally())

    def close(self) -> None:
        self.tally = summed(self.branches.values())

    def signals(self) -> dict[Stage, StageSignal]:
        out: dict[Stage, StageSignal] = {}
        baseline = _merged_stage(self.tally, Stage.ordered)
        for stage in STAGE_ORDER[1:]:
            cur = _merged_stage(self.tally, stage)
            out[stage] = compare_stages(baseline, cur)
            if cur.is_set:
                baseline = cur
        return out

    def sort_key(self):
        p = self.product
        return (p.department_name, p.category_name, p.name, p.id, self.invoice_number or "")


@dataclass
class GroupRow:
    id: int | None
    name: str
    parent_name: str | None = None
    tally: Tally = field(default_factory=Tally)
    branches: dict[str, Tally] = field(default_factory=dict)
    product_ids: set[int] = field(default_factory=set)

    def absorb_row(self, row: ProductRow) -> None:
        self.tally.absorb(row.tally)
        for code, t in row.branches.items():
            self.branches.setdefault(code, Tally()).absorb(t)
        self.product_ids.add(row.product.id)


@dataclass
class BranchOrderStats:
    branch_id: int | None
    branch_name: str
    stock_orders: int = 0
    live_orders: int = 0
    total_orders: int = 0


@dataclass
class BranchBilling:
    """Bill count and takings per payment method for one branch."""
    branch_id: int | None
    branch_name: str
    total_bills: int = 0
    total_amount: Decimal = ZERO
    by_method: dict[str, Decimal] = field(default_factory=lambda: {m.value: ZERO for m in PaymentMethod})

    def add(self, bill: Bill) -> None:
        amount = Decimal(bill.total_amount or 0)
        # bills without a payment method count as "other"
        method = (bill.payment_method or PaymentMethod.other).value
        self.total_bills += 1
        self.total_amount += amount
        self.by_method[method] += amount

    def absorb(self, other: "BranchBilling") -> None:
        self.total_bills += other.total_bills
        self.total_amount += other.total_amount
        for method, amount in other.by_method.items():
            self.by_method[method] += amount


@dataclass
class InvoiceEntry:
    invoice: str
    branch_code: str
    created_at: datetime
    is_live: bool | None = None


@dataclass
class ReportResult:
    kind: ReportKind
    start_day: LocalDay
    end_day: LocalDay
    measures: tuple[str, ...]
    primary_measure: str
    rows: list[ProductRow]
    categories: list[GroupRow]
    departments: list[GroupRow]
    branch_headers: list[str]
    branch_totals: dict[str, Tally]
    totals: Tally
    document_count: int = 0
    skipped_items: int = 0
    branch_matrix: list[BranchOrderStats] = field(default_factory=list)
    matrix_totals: BranchOrderStats | None = None
    invoices: list[InvoiceEntry] = field(default_factory=list)
    billing: list[BranchBilling] = field(default_factory=list)
    billing_totals: BranchBilling | None = None


def _merged_stage(tally: Tally, stage: Stage) -> StageValue:
    at = tally.latest.get(stage.value)
    return StageValue(tally.q(stage.value) if at is not None else None, at)


# ---------- ENGINE ----------
class _Accumulator:
    """Collects line facts into product x branch cells."""

    def __init__(self, merge: bool):
        self.merge = merge
        self.rows: dict[tuple, ProductRow] = {}
        self.skipped = 0

    def row_for(self, product: ProductInfo, invoice: str | None, line_no: int | None) -> ProductRow:
        key = (product.id,) if self.merge else (invoice, line_no, product.id)
        row = self.rows.get(key)
        if row is None:
            row = ProductRow(product=product, invoice_number=None if self.merge else invoice)
            self.rows[key] = row
        row.line_count += 1
        if invoice and invoice not in row.invoice_numbers:
            row.invoice_numbers.append(invoice)
        return row

    def finish(self) -> list[ProductRow]:
        rows = list(self.rows.values())
        for row in rows:
            row.close()
        rows.sort(key=ProductRow.sort_key)
        return rows


class AggregationEngine:
    def __init__(self, db: Session):
        self.db = db

    def report(self, kind: ReportKind, scope: ReportScope) -> ReportResult:
        kind = ReportKind(kind)
        window = scope.window()
        if kind == ReportKind.stock_orders:
            result = self._stock_orders(scope, window)
        elif kind in (ReportKind.product_wise, ReportKind.category_wise, ReportKind.department_wise):
            if scope.measure is None:
                result = self._bills(kind, scope, window)
            else:
                result = self._matrix(kind, scope, window)
        elif kind == ReportKind.branch_wise:
            result = self._bills(kind, scope, window)
        elif kind == ReportKind.instock_entries:
            result = self._instock_entries(scope, window)
        else:
            result = self._return_orders(scope, window)

        if result.skipped_items:
            logger.warning(
                "%s report skipped %d line items whose product is no longer in the catalog",
                kind.value, result.skipped_items,
            )
        logger.info(
            "Generated %s report %s..%s: %d rows from %d documents",
            kind.value, scope.start_day, scope.end_day, len(result.rows), result.document_count,
        )
        return result

    # ---------- loaders ----------
    def _branches(self, scope: ReportScope) -> dict[int, BranchRef]:
        refs = list_branches(self.db, scope.branch_ids)
        return {b.id: b for b in refs}

    def _load_stock_orders(self, scope: ReportScope, window: InstantWindow, basis: DateBasis) -> list[StockOrder]:
        column = StockOrder.delivery_date if basis == DateBasis.delivery else StockOrder.created_at
        stmt = (
            select(StockOrder)
            .options(selectinload(StockOrder.items))
            .where(column >= window.start)
            .where(column <= window.end)
            .order_by(StockOrder.created_at.asc(), StockOrder.id.asc())
        )
        if scope.branch_ids is not None:
            stmt = stmt.where(StockOrder.branch_id.in_(sorted(scope.branch_ids)))
        return list(self.db.execute(stmt).scalars().all())

    def _products_for(self, docs: Iterable, attr: str = "items") -> dict[int, ProductInfo]:
        ids = {item.product_id for doc in docs for item in getattr(doc, attr)}
        return load_product_index(self.db, ids)

    # ---------- stock orders ----------
    @staticmethod
    def is_live(order: StockOrder) -> bool:
        """Live = delivered on the local day it was created."""
        return LocalDay.of(order.delivery_date) == LocalDay.of(order.created_at)

    def _stock_orders(self, scope: ReportScope, window: InstantWindow) -> ReportResult:
        status = Stage(scope.status) if scope.status else None
        branches = self._branches(scope)
        orders = self._load_stock_orders(scope, window, scope.date_basis)
        products = self._products_for(orders)

        acc = _Accumulator(merge=scope.invoice_number is None)
        matrix: dict[int, BranchOrderStats] = {}
        invoices: list[InvoiceEntry] = []
        doc_count = 0

        for order in orders:
            branch = branches.get(order.branch_id)
            if branch is None:
                continue
            live = self.is_live(order)
            if scope.order_type == OrderType.stock and live:
                continue
            if scope.order_type == OrderType.live and not live:
                continue

            invoices.append(InvoiceEntry(order.invoice_number, branch.code, order.created_at, live))
            if scope.invoice_number and order.invoice_number != scope.invoice_number:
                continue

            doc_count += 1
            stat = matrix.setdefault(branch.id, BranchOrderStats(branch.id, branch.name))
            if live:
                stat.live_orders += 1
            else:
                stat.stock_orders += 1
            stat.total_orders += 1

            for item in order.items:
                product = products.get(item.product_id)
                if product is None:
                    acc.skipped += 1
                    continue
                if not scope.wants_product(product):
                    continue
                if status is not None and current_stage(item) != status:
                    continue

                row = acc.row_for(product, order.invoice_number, item.line_no)
                cell = row.cell(branch.code)
                price = Decimal(item.unit_price or 0)
                for stage in STAGE_ORDER:
                    qty_field, date_field = STAGE_FIELDS[stage]
                    qty = getattr(item, qty_field) or 0
                    cell.add(stage.value, qty, qty * price, getattr(item, date_field))

        # with no branch restriction every branch shows in the matrix, even at zero
        if scope.branch_ids is None and not scope.invoice_number:
            for b in branches.values():
                matrix.setdefault(b.id, BranchOrderStats(b.id, b.name))
        stats = sorted(matrix.values(), key=lambda s: (s.branch_name, s.branch_id or 0))
        matrix_totals = BranchOrderStats(None, "Total")
        for s in stats:
            matrix_totals.stock_orders += s.stock_orders
            matrix_totals.live_orders += s.live_orders
            matrix_totals.total_orders += s.total_orders

        invoices.sort(key=lambda e: (e.created_at, e.invoice))
        result = self._assemble(
            ReportKind.stock_orders,
            scope,
            acc,
            measures=tuple(s.value for s in STAGE_ORDER),
            primary=Stage.ordered.value,
            document_count=doc_count,
        )
        result.branch_matrix = stats
        result.matrix_totals = matrix_totals
        result.invoices = invoices
        return result

    # ---------- bills: product / category / department / branch-wise ----------
    def _bills(self, kind: ReportKind, scope: ReportScope, window: InstantWindow) -> ReportResult:
        """
        Sales matrices from bill lines (quantity and line subtotal), plus the
        per-branch takings split by payment method. Takings use the bill
        total, so product filters narrow the rows but not the takings.
        """
        status = BillStatus(scope.status) if scope.status else None
        branches = self._branches(scope)
        stmt = (
            select(Bill)
            .options(selectinload(Bill.items))
            .where(Bill.created_at >= window.start)
            .where(Bill.created_at <= window.end)
            .order_by(Bill.created_at.asc(), Bill.id.asc())
        )
        if scope.branch_ids is not None:
            stmt = stmt.where(Bill.branch_id.in_(sorted(scope.branch_ids)))
        if status is not None:
            stmt = stmt.where(Bill.status == status)
        bills = list(self.db.execute(stmt).scalars().all())
        products = self._products_for(bills)

        acc = _Accumulator(merge=True)
        billing: dict[int, BranchBilling] = {}
        for bill in bills:
            branch = branches.get(bill.branch_id)
            if branch is None:
                continue
            billing.setdefault(branch.id, BranchBilling(branch.id, branch.name)).add(bill)
            for item in bill.items:
                product = products.get(item.product_id)
                if product is None:
                    acc.skipped += 1
                    continue
                if not scope.wants_product(product):
                    continue
                row = acc.row_for(product, bill.bill_number, item.line_no)
                row.cell(branch.code).add(SOLD, item.quantity, Decimal(item.subtotal or 0), bill.created_at)

        doc_count = sum(b.total_bills for b in billing.values())
        result = self._assemble(kind, scope, acc, (SOLD,), SOLD, doc_count)
        result.billing = sorted(billing.values(), key=lambda b: (-b.total_amount, b.branch_name))
        totals = BranchBilling(None, "Total")
        for b in result.billing:
            totals.absorb(b)
        result.billing_totals = totals
        return result

    # ---------- stock-order stage matrices ----------
    def _matrix(self, kind: ReportKind, scope: ReportScope, window: InstantWindow) -> ReportResult:
        measure = Stage(scope.measure)
        qty_field, date_field = STAGE_FIELDS[measure]
        status = Stage(scope.status) if scope.status else None
        branches = self._branches(scope)
        orders = self._load_stock_orders(scope, window, DateBasis.created)
        products = self._products_for(orders)

        acc = _Accumulator(merge=True)
        doc_count = 0
        for order in orders:
            branch = branches.get(order.branch_id)
            if branch is None:
                continue
            if scope.order_type is not None:
                live = self.is_live(order)
                if (scope.order_type == OrderType.live) != live:
                    continue
            doc_count += 1
            for item in order.items:
                product = products.get(item.product_id)
                if product is None:
                    acc.skipped += 1
                    continue
                if not scope.wants_product(product):
                    continue
                if status is not None and current_stage(item) != status:
                    continue
                qty = getattr(item, qty_field) or 0
                row = acc.row_for(product, order.invoice_number, item.line_no)
                row.cell(branch.code).add(
                    measure.value, qty, qty * Decimal(item.unit_price or 0), getattr(item, date_field)
                )

        return self._assemble(kind, scope, acc, (measure.value,), measure.value, doc_count)

    # ---------- in-stock entries ----------
    def _instock_entries(self, scope: ReportScope, window: InstantWindow) -> ReportResult:
        status = EntryStatus(scope.status) if scope.status else None
        branches = self._branches(scope)
        stmt = (
            select(InstockEntry)
            .options(selectinload(InstockEntry.items))
            .where(InstockEntry.created_at >= window.start)
            .where(InstockEntry.created_at <= window.end)
            .order_by(InstockEntry.created_at.asc(), InstockEntry.id.asc())
        )
        if scope.branch_ids is not None:
            stmt = stmt.where(InstockEntry.branch_id.in_(sorted(scope.branch_ids)))
        if status is not None:
            stmt = stmt.where(InstockEntry.status == status)
        entries = list(self.db.execute(stmt).scalars().all())
        products = self._products_for(entries)

        acc = _Accumulator(merge=scope.invoice_number is None)
        invoices: list[InvoiceEntry] = []
        doc_count = 0
        for entry in entries:
            branch = branches.get(entry.branch_id)
            code = branch.code if branch else "UNK"
            invoices.append(InvoiceEntry(entry.invoice_number, code, entry.created_at))
            if scope.invoice_number and entry.invoice_number != scope.invoice_number:
                continue
            doc_count += 1
            for item in entry.items:
                product = products.get(item.product_id)
                if product is None:
                    acc.skipped += 1
                    continue
                if not scope.wants_product(product):
                    continue
                row = acc.row_for(product, entry.invoice_number, item.line_no)
                row.cell(code).add(INSTOCK, item.instock_qty, item.instock_qty * product.price, entry.created_at)

        result = self._assemble(ReportKind.instock_entries, scope, acc, (INSTOCK,), INSTOCK, doc_count)
        result.invoices = invoices
        return result

    # ---------- return orders ----------
    def _return_orders(self, scope: ReportScope, window: InstantWindow) -> ReportResult:
        status = ReturnStatus(scope.status) if scope.status else None
        branches = self._branches(scope)
        stmt = (
            select(ReturnOrder)
            .options(selectinload(ReturnOrder.items))
            .where(ReturnOrder.created_at >= window.start)
            .where(ReturnOrder.created_at <= window.end)
            .order_by(ReturnOrder.created_at.asc(), ReturnOrder.id.asc())
        )
        if scope.branch_ids is not None:
            stmt = stmt.where(ReturnOrder.branch_id.in_(sorted(scope.branch_ids)))
        if status is not None:
            stmt = stmt.where(ReturnOrder.status == status)
        returns = list(self.db.execute(stmt).scalars().all())
        products = self._products_for(returns)

        acc = _Accumulator(merge=scope.invoice_number is None)
        invoices: list[InvoiceEntry] = []
        doc_count = 0
        for ret in returns:
            branch = branches.get(ret.branch_id)
            code = branch.code if branch else "UNK"
            invoices.append(InvoiceEntry(ret.return_number, code, ret.created_at))
            if scope.invoice_number and ret.return_number != scope.invoice_number:
                continue
            doc_count += 1
            for item in ret.items:
                product = products.get(item.product_id)
                if product is None:
                    acc.skipped += 1
                    continue
                if not scope.wants_product(product):
                    continue
                row = acc.row_for(product, ret.return_number, item.line_no)
                row.cell(code).add(RETURNED, item.quantity, Decimal(item.subtotal or 0), ret.created_at)

        result = self._assemble(ReportKind.return_orders, scope, acc, (RETURNED,), RETURNED, doc_count)
        result.invoices = invoices
        return result

    # ---------- rollups ----------
    def _assemble(
        self,
        kind: ReportKind,
        scope: ReportScope,
        acc: _Accumulator,
        measures: tuple[str, ...],
        primary: str,
        document_count: int,
    ) -> ReportResult:
        rows = acc.finish()

        categories: dict[tuple, GroupRow] = {}
        departments: dict[tuple, GroupRow] = {}
        for row in rows:
            p = row.product
            cat_key = (p.department_name, p.category_name, p.category_id)
            dept_key = (p.department_name, p.department_id)
            categories.setdefault(cat_key, GroupRow(p.category_id, p.category_name, p.department_name)).absorb_row(row)
            departments.setdefault(dept_key, GroupRow(p.department_id, p.department_name)).absorb_row(row)

        branch_totals: dict[str, Tally] = {}
        for row in rows:
            for code, t in row.branches.items():
                branch_totals.setdefault(code, Tally()).absorb(t)

        return ReportResult(
            kind=kind,
            start_day=scope.start_day,
            end_day=scope.end_day,
            measures=measures,
            primary_measure=primary,
            rows=rows,
            categories=[categories[k] for k in sorted(categories, key=_group_sort_key)],
            departments=[departments[k] for k in sorted(departments, key=_group_sort_key)],
            branch_headers=branch_headers(branch_totals, primary),
            branch_totals=branch_totals,
            totals=summed(r.tally for r in rows),
            document_count=document_count,
            skipped_items=acc.skipped,
        )


def _group_sort_key(key: tuple):
    return tuple((0, v) if v is not None else (1, 0) for v in key)


def branch_headers(branch_totals: dict[str, Tally], measure: str) -> list[str]:
    """
    Branch columns with a non-zero contribution, largest first
    (amount, then quantity, then code for ties).
    """
    codes = [code for code, t in branch_totals.items() if not t.is_zero(measure)]
    return sorted(codes, key=lambda c: (-branch_totals[c].a(measure), -branch_totals[c].q(measure), c))
