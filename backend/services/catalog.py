"""
Read-only catalog lookups (branches, products, categories, departments).

Callers hand in plain ids; the polymorphic "id or embedded object" shapes are
normalized by the request schemas before they reach this module.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable

from sqlalchemy import select
from sqlalchemy.orm import Session

from backend.app.db.models.models_v1 import Branch, Category, Department, Product
from backend.services.errors import ProductNotFoundError, UnknownBranchError

UNCATEGORIZED = "Uncategorized"
NO_DEPARTMENT = "No Department"


def branch_code(name: str | None) -> str:
    return (name or "")[:3].upper()


@dataclass(frozen=True)
class BranchRef:
    id: int
    name: str
    company_id: int

    @property
    def code(self) -> str:
        return branch_code(self.name)


@dataclass(frozen=True)
class ProductInfo:
    id: int
    name: str
    price: Decimal
    category_id: int | None
    category_name: str
    department_id: int | None
    department_name: str


def resolve_branch(db: Session, branch_id: int) -> BranchRef:
    branch = db.get(Branch, branch_id)
    if not branch:
        raise UnknownBranchError(f"Branch {branch_id} not found")
    return BranchRef(id=int(branch.id), name=branch.name, company_id=int(branch.company_id))


def list_branches(db: Session, branch_ids: Iterable[int] | None = None) -> list[BranchRef]:
    stmt = select(Branch).order_by(Branch.name.asc())
    if branch_ids is not None:
        stmt = stmt.where(Branch.id.in_(list(branch_ids)))
    return [
        BranchRef(id=int(b.id), name=b.name, company_id=int(b.company_id))
        for b in db.execute(stmt).scalars().all()
    ]


def company_branch_ids(db: Session, company_id: int) -> set[int]:
    rows = db.execute(select(Branch.id).where(Branch.company_id == company_id)).scalars().all()
    return {int(r) for r in rows}


def load_product_index(db: Session, product_ids: Iterable[int] | None = None) -> dict[int, ProductInfo]:
    """
    Product -> category -> department, flattened in one outer-joined query.
    Products whose category or department is gone keep placeholder names.
    """
    stmt = (
        select(
            Product.id,
            Product.name,
            Product.price,
            Category.id,
            Category.name,
            Department.id,
            Department.name,
        )
        .outerjoin(Category, Category.id == Product.category_id)
        .outerjoin(Department, Department.id == Category.department_id)
    )
    if product_ids is not None:
        ids = sorted({int(pid) for pid in product_ids})
        if not ids:
            return {}
        stmt = stmt.where(Product.id.in_(ids))

    index: dict[int, ProductInfo] = {}
    for pid, name, price, cat_id, cat_name, dept_id, dept_name in db.execute(stmt).all():
        index[int(pid)] = ProductInfo(
            id=int(pid),
            name=name,
            price=Decimal(price or 0),
            category_id=int(cat_id) if cat_id is not None else None,
            category_name=cat_name or UNCATEGORIZED,
            department_id=int(dept_id) if dept_id is not None else None,
            department_name=dept_name or NO_DEPARTMENT,
        )
    return index


def require_products(db: Session, product_ids: Iterable[int]) -> dict[int, ProductInfo]:
    """Write-path lookup: every id must exist."""
    wanted = {int(pid) for pid in product_ids}
    index = load_product_index(db, wanted)
    missing = sorted(wanted - index.keys())
    if missing:
        raise ProductNotFoundError(f"Invalid product_id {missing[0]}")
    return index
