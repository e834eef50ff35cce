"""
Boundary between report requests and the aggregation engine.

Inbound: ``ReportQuery`` + ``CallerContext`` -> branch scope check ->
``ReportScope``. Outbound: ``ReportResult`` -> ``ReportResponse`` DTO.
"""

from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy.orm import Session

from backend.app.db.models.core_types import ReportKind, Role, Stage
from backend.app.schemas.reports import (
    BranchBillingOut,
    BranchCell,
    BranchOrderStatsOut,
    InvoiceOut,
    MeasureCell,
    ReportQuery,
    ReportResponse,
    ReportRow,
    ReportTotals,
)
from backend.services.aggregation import (
    AggregationEngine,
    BranchBilling,
    BranchOrderStats,
    GroupRow,
    ReportResult,
    ReportScope,
    Tally,
)
from backend.services.business_time import LocalDay, utc_now
from backend.services.catalog import company_branch_ids
from backend.services.errors import ForbiddenScopeError


@dataclass(frozen=True)
class CallerContext:
    role: Role | None = None
    company_id: int | None = None
    branch_id: int | None = None


def resolve_branch_scope(db: Session, caller: CallerContext, requested: list[int]) -> frozenset[int] | None:
    """
    Branches the report may read. ``None`` means unrestricted.

    Restricted callers get their requested branches checked against what
    they own; asking for anything outside that set is an error, not a
    silent drop.
    """
    requested_set = frozenset(int(b) for b in requested)

    if caller.role == Role.company:
        if caller.company_id is None:
            raise ForbiddenScopeError("Company user is not assigned to a company.")
        allowed = frozenset(company_branch_ids(db, caller.company_id))
    elif caller.role == Role.branch:
        if caller.branch_id is None:
            raise ForbiddenScopeError("Branch user is not assigned to a branch.")
        allowed = frozenset({int(caller.branch_id)})
    else:
        return requested_set or None

    if requested_set:
        outside = sorted(requested_set - allowed)
        if outside:
            raise ForbiddenScopeError(f"You are not allowed to access reports for branch {outside[0]}.")
        return requested_set & allowed
    return allowed


def build_scope(query: ReportQuery, branch_ids: frozenset[int] | None, today: LocalDay | None = None) -> ReportScope:
    today = today or LocalDay.of(utc_now())
    start = LocalDay(query.start_day) if query.start_day else today
    end = LocalDay(query.end_day) if query.end_day else (start if query.start_day else today)
    if end < start:
        raise ValueError("end_day must not be before start_day")
    return ReportScope(
        start_day=start,
        end_day=end,
        branch_ids=branch_ids,
        department_id=query.department_id,
        category_id=query.category_id,
        product_id=query.product_id,
        status=query.status,
        order_type=query.order_type,
        invoice_number=query.invoice_number,
        date_basis=query.date_basis,
        measure=query.measure,
    )


def run_report(db: Session, kind: ReportKind, query: ReportQuery, caller: CallerContext) -> ReportResponse:
    branch_ids = resolve_branch_scope(db, caller, query.branch_ids)
    scope = build_scope(query, branch_ids)
    result = AggregationEngine(db).report(kind, scope)
    return to_dto(result)


# ---------- DTO mapping ----------
def _measure_cells(tally: Tally, measures: tuple[str, ...], signals=None) -> dict[str, MeasureCell]:
    cells = {}
    for m in measures:
        signal = None
        if signals is not None and m != Stage.ordered.value:
            signal = signals.get(Stage(m))
        cells[m] = MeasureCell(qty=tally.q(m), amount=float(tally.a(m)), at=tally.latest.get(m), signal=signal)
    return cells


def _branch_cells(branches: dict[str, Tally], headers: list[str], measure: str) -> dict[str, BranchCell]:
    # header order first, then any zero-contribution codes
    ordered = headers + sorted(c for c in branches if c not in headers)
    return {
        code: BranchCell(qty=branches[code].q(measure), amount=float(branches[code].a(measure)))
        for code in ordered
        if code in branches and not branches[code].is_zero(measure)
    }


def _branch_display(cells: dict[str, BranchCell]) -> str:
    return ",".join(f"{code} - {cell.qty}" for code, cell in cells.items())


def _is_stage_report(result: ReportResult) -> bool:
    return result.kind == ReportKind.stock_orders


def _difference(result: ReportResult, tally: Tally) -> tuple[int | None, float | None]:
    if not _is_stage_report(result):
        return None, None
    return tally.difference_qty, float(tally.difference_amount)


def _group_rows(result: ReportResult, groups: list[GroupRow], with_parent: bool) -> list[ReportRow]:
    out = []
    for i, g in enumerate(groups, start=1):
        branches = _branch_cells(g.branches, result.branch_headers, result.primary_measure)
        diff_qty, diff_amount = _difference(result, g.tally)
        out.append(
            ReportRow(
                s_no=i,
                id=g.id,
                name=g.name,
                department_name=g.parent_name if with_parent else g.name,
                measures=_measure_cells(g.tally, result.measures),
                difference_qty=diff_qty,
                difference_amount=diff_amount,
                branches=branches,
                branch_display=_branch_display(branches),
            )
        )
    return out


def _stats_out(s: BranchOrderStats) -> BranchOrderStatsOut:
    return BranchOrderStatsOut(
        branch_id=s.branch_id,
        branch_name=s.branch_name,
        stock_orders=s.stock_orders,
        live_orders=s.live_orders,
        total_orders=s.total_orders,
    )


def _billing_out(b: BranchBilling, s_no: int | None = None) -> BranchBillingOut:
    return BranchBillingOut(
        s_no=s_no,
        branch_id=b.branch_id,
        branch_name=b.branch_name,
        total_bills=b.total_bills,
        total_amount=float(b.total_amount),
        **{method: float(amount) for method, amount in b.by_method.items()},
    )


def to_dto(result: ReportResult) -> ReportResponse:
    product_rows = []
    for i, row in enumerate(result.rows, start=1):
        branches = _branch_cells(row.branches, result.branch_headers, result.primary_measure)
        diff_qty, diff_amount = _difference(result, row.tally)
        product_rows.append(
            ReportRow(
                s_no=i,
                id=row.product.id,
                name=row.product.name,
                category_name=row.product.category_name,
                department_name=row.product.department_name,
                invoice_number=row.invoice_number,
                invoice_numbers=list(row.invoice_numbers),
                measures=_measure_cells(row.tally, result.measures, row.signals() if _is_stage_report(result) else None),
                difference_qty=diff_qty,
                difference_amount=diff_amount,
                branches=branches,
                branch_display=_branch_display(branches),
            )
        )
    categories = _group_rows(result, result.categories, with_parent=True)
    departments = _group_rows(result, result.departments, with_parent=False)

    if result.kind == ReportKind.category_wise:
        rows = categories
    elif result.kind == ReportKind.department_wise:
        rows = departments
    else:
        rows = product_rows

    diff_qty, diff_amount = _difference(result, result.totals)
    totals = ReportTotals(
        measures=_measure_cells(result.totals, result.measures),
        difference_qty=diff_qty,
        difference_amount=diff_amount,
        branches=_branch_cells(result.branch_totals, result.branch_headers, result.primary_measure),
    )

    return ReportResponse(
        report=result.kind,
        start_date=result.start_day.day,
        end_date=result.end_day.day,
        measures=list(result.measures),
        branch_headers=result.branch_headers,
        rows=rows,
        categories=categories,
        departments=departments,
        totals=totals,
        document_count=result.document_count,
        skipped_items=result.skipped_items,
        stats=[_stats_out(s) for s in result.branch_matrix],
        matrix_totals=_stats_out(result.matrix_totals) if result.matrix_totals else None,
        invoices=[
            InvoiceOut(invoice=e.invoice, branch_code=e.branch_code, created_at=e.created_at, is_live=e.is_live)
            for e in result.invoices
        ],
        billing=[_billing_out(b, i) for i, b in enumerate(result.billing, start=1)],
        billing_totals=_billing_out(result.billing_totals) if result.billing_totals else None,
    )
