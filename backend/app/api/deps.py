from __future__ import annotations

from typing import Generator

from fastapi import Header, HTTPException

from backend.app.db.models.core_types import Role
from backend.app.db.session import ReadSessionLocal, SessionLocal
from backend.services.report_scope import CallerContext


def get_db() -> Generator:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_read_db() -> Generator:
    db = ReadSessionLocal()
    try:
        yield db
    finally:
        db.close()


def _int_header(value: str | None, name: str) -> int | None:
    if value is None or not value.strip():
        return None
    try:
        return int(value.strip())
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Invalid {name} header")


def get_caller(
    role: str | None = Header(default=None, alias="X-Caller-Role"),
    company: str | None = Header(default=None, alias="X-Caller-Company"),
    branch: str | None = Header(default=None, alias="X-Caller-Branch"),
) -> CallerContext:
    """Caller identity, already authenticated upstream."""
    caller_role = None
    if role:
        try:
            caller_role = Role(role.strip().lower())
        except ValueError:
            raise HTTPException(status_code=400, detail="Invalid X-Caller-Role header")
    return CallerContext(
        role=caller_role,
        company_id=_int_header(company, "X-Caller-Company"),
        branch_id=_int_header(branch, "X-Caller-Branch"),
    )
