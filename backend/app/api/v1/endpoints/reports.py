from __future__ import annotations

from datetime import date

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from backend.app.api.deps import get_caller, get_read_db
from backend.app.db.models.core_types import DateBasis, OrderType, ReportKind, Stage
from backend.app.schemas.reports import BranchList, BranchOut, ReportQuery, ReportResponse
from backend.services.catalog import list_branches
from backend.services.report_scope import CallerContext, resolve_branch_scope, run_report

router = APIRouter(prefix="/reports")


def report_query(
    start_date: date | None = Query(default=None, alias="startDate"),
    end_date: date | None = Query(default=None, alias="endDate"),
    branch: str | None = None,
    department: str | None = None,
    category: str | None = None,
    product: str | None = None,
    status: str | None = None,
    order_type: OrderType | None = Query(default=None, alias="orderType"),
    invoice: str | None = None,
    date_basis: DateBasis = Query(default=DateBasis.delivery, alias="dateBasis"),
    measure: Stage | None = None,
) -> ReportQuery:
    try:
        return ReportQuery(
            start_day=start_date,
            end_day=end_date,
            branch_ids=branch,
            department_id=department,
            category_id=category,
            product_id=product,
            status=status,
            order_type=order_type,
            invoice_number=invoice,
            date_basis=date_basis,
            measure=measure,
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))


@router.get("/branches", response_model=BranchList)
def report_branches(
    branch: str | None = None,
    db: Session = Depends(get_read_db),
    caller: CallerContext = Depends(get_caller),
):
    try:
        requested = ReportQuery(branch_ids=branch).branch_ids
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    branch_ids = resolve_branch_scope(db, caller, requested)
    docs = [
        BranchOut(id=b.id, name=b.name, code=b.code, company_id=b.company_id)
        for b in list_branches(db, branch_ids)
    ]
    return BranchList(docs=docs, total_docs=len(docs))


@router.get("/{kind}", response_model=ReportResponse)
def get_report(
    kind: ReportKind,
    query: ReportQuery = Depends(report_query),
    db: Session = Depends(get_read_db),
    caller: CallerContext = Depends(get_caller),
):
    try:
        return run_report(db, kind, query, caller)
    except ValueError as exc:
        # bad status value for this report, or end before start
        raise HTTPException(status_code=400, detail=str(exc))
