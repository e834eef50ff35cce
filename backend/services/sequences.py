"""
Per-branch, per-day document numbering.

One counter row per (branch code, document kind, local day), bumped with a
single ``INSERT .. ON CONFLICT DO UPDATE .. RETURNING`` statement. Nothing
here counts existing documents.
"""

from __future__ import annotations

import logging
import random
import re
import time
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.exc import DBAPIError
from sqlalchemy.orm import Session

from backend.app.config import SEQUENCE_RETRY_ATTEMPTS, SEQUENCE_RETRY_BASE_DELAY_MS
from backend.app.db.models.models_v1 import DocumentSequence
from backend.app.db.models.core_types import DocumentKind
from backend.services.business_time import LocalDay
from backend.services.catalog import BranchRef
from backend.services.errors import AllocationContentionError

logger = logging.getLogger(__name__)

# serialization_failure, deadlock_detected, lock_not_available
CONTENTION_SQLSTATES = frozenset({"40001", "40P01", "55P03"})
SQLITE_CONTENTION_MESSAGES = ("database is locked", "database table is locked")

_IDENTIFIER_RE = re.compile(
    r"^(?P<code>.+?)-(?P<tag>STC|INS|RET|BIL)-(?P<day>\d{6})-(?P<seq>\d{2,})$"
)


def is_contention(exc: DBAPIError) -> bool:
    """
    True only for lock or serialization conflicts that a later attempt can
    win. Missing tables, lost connections and constraint violations are not.
    """
    orig = getattr(exc, "orig", None)
    sqlstate = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if sqlstate is not None:
        return sqlstate in CONTENTION_SQLSTATES
    message = str(orig if orig is not None else exc).lower()
    return any(m in message for m in SQLITE_CONTENTION_MESSAGES)


@dataclass(frozen=True)
class ParsedIdentifier:
    branch_code: str
    kind: DocumentKind
    yymmdd: str
    seq: int


def format_identifier(branch_code: str, kind: DocumentKind, local_day: LocalDay, seq: int) -> str:
    # 2 digits is a display minimum, not a ceiling
    return f"{branch_code}-{kind.value}-{local_day.yymmdd()}-{seq:02d}"


def parse_identifier(identifier: str) -> ParsedIdentifier:
    m = _IDENTIFIER_RE.match(identifier or "")
    if not m:
        raise ValueError(f"Malformed document identifier: {identifier!r}")
    return ParsedIdentifier(
        branch_code=m.group("code"),
        kind=DocumentKind(m.group("tag")),
        yymmdd=m.group("day"),
        seq=int(m.group("seq")),
    )


def identifier_sort_key(identifier: str) -> tuple[str, str, str, int]:
    """Orders 99 before 100 within a scope."""
    p = parse_identifier(identifier)
    return (p.branch_code, p.kind.value, p.yymmdd, p.seq)


def _upsert_statement(dialect_name: str, branch_code: str, kind: DocumentKind, local_day: LocalDay):
    if dialect_name == "postgresql":
        from sqlalchemy.dialects.postgresql import insert
    elif dialect_name == "sqlite":
        from sqlalchemy.dialects.sqlite import insert
    else:
        raise NotImplementedError(f"No atomic sequence upsert for dialect {dialect_name!r}")

    stmt = insert(DocumentSequence).values(
        branch_code=branch_code,
        kind=kind,
        local_day=local_day.day,
        last_value=1,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=[
            DocumentSequence.branch_code,
            DocumentSequence.kind,
            DocumentSequence.local_day,
        ],
        set_={"last_value": DocumentSequence.last_value + 1},
    )
    return stmt.returning(DocumentSequence.last_value)


def allocate(
    db: Session,
    branch_code: str,
    kind: DocumentKind,
    local_day: LocalDay,
    *,
    attempts: int | None = None,
    base_delay_ms: int | None = None,
) -> int:
    """
    Return the next sequence number for the scope.

    Runs inside a SAVEPOINT of the caller's transaction, so a failed document
    insert rolls the counter back with it. Lock and serialization conflicts
    are retried with jittered exponential backoff; once the budget is spent
    the caller gets ``AllocationContentionError`` and must retry the whole
    create. Any other database error propagates unchanged.
    """
    if not isinstance(local_day, LocalDay):
        raise TypeError("local_day must be a LocalDay")
    if not branch_code:
        raise ValueError("branch_code is required")

    attempts = attempts or SEQUENCE_RETRY_ATTEMPTS
    base_delay_ms = SEQUENCE_RETRY_BASE_DELAY_MS if base_delay_ms is None else base_delay_ms
    stmt = _upsert_statement(db.get_bind().dialect.name, branch_code, kind, local_day)

    for attempt in range(1, attempts + 1):
        try:
            with db.begin_nested():
                seq = db.execute(stmt).scalar_one()
            return int(seq)
        except DBAPIError as exc:
            if not is_contention(exc):
                raise
            if attempt >= attempts:
                logger.error(
                    "Sequence allocation for %s-%s-%s failed after %d attempts: %s",
                    branch_code, kind.value, local_day.yymmdd(), attempts, exc,
                )
                raise AllocationContentionError(
                    f"Could not allocate {kind.value} number for {branch_code} on {local_day}"
                ) from exc

            delay = base_delay_ms * (2 ** (attempt - 1)) * random.uniform(0.5, 1.5) / 1000.0
            logger.warning(
                "Sequence allocation conflict for %s-%s-%s (attempt %d/%d), retrying in %.3fs",
                branch_code, kind.value, local_day.yymmdd(), attempt, attempts, delay,
            )
            time.sleep(delay)


def mint_identifier(db: Session, branch: BranchRef, kind: DocumentKind, created_at: datetime) -> tuple[str, LocalDay]:
    """
    Allocate and format the identifier for a document created at
    ``created_at``. The local day is derived here, once.
    """
    local_day = LocalDay.of(created_at)
    seq = allocate(db, branch.code, kind, local_day)
    identifier = format_identifier(branch.code, kind, local_day, seq)
    logger.info("Allocated %s for branch %s", identifier, branch.id)
    return identifier, local_day
