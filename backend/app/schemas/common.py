from __future__ import annotations

from datetime import datetime
from typing import Any


def normalize_ref(value: Any) -> Any:
    """
    Collapse the shapes a reference arrives in (bare id, numeric string,
    embedded ``{"id": ...}`` object) into the bare id.
    """
    if isinstance(value, dict):
        value = value.get("id", value.get("_id"))
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return value


def require_tz(value: datetime | None) -> datetime | None:
    if value is not None and (value.tzinfo is None or value.tzinfo.utcoffset(value) is None):
        raise ValueError("datetime must include a timezone offset")
    return value
