"""
Business-timezone day arithmetic.

A ``LocalDay`` is a calendar date in the fixed business timezone. It can only
be built from an aware instant (``LocalDay.of``) or from a plain date, and it
only converts back to UTC instants through ``window()``. Because it never
holds a time of day, the UTC -> local shift can be applied at most once.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta

import pytz

from backend.app.config import BUSINESS_TIMEZONE

BUSINESS_TZ = pytz.timezone(BUSINESS_TIMEZONE)


def require_aware(instant: datetime, field: str = "instant") -> datetime:
    if instant.tzinfo is None or instant.tzinfo.utcoffset(instant) is None:
        raise ValueError(f"{field} must be timezone-aware")
    return instant


def utc_now() -> datetime:
    return datetime.now(pytz.UTC)


@dataclass(frozen=True, order=True)
class LocalDay:
    day: date

    @classmethod
    def of(cls, instant: datetime, tz=None) -> "LocalDay":
        require_aware(instant)
        return cls(instant.astimezone(tz or BUSINESS_TZ).date())

    @classmethod
    def parse(cls, value: str) -> "LocalDay":
        return cls(date.fromisoformat(value))

    def start(self, tz=None) -> datetime:
        """First instant of the day, in UTC."""
        tz = tz or BUSINESS_TZ
        # pytz zones must be attached with localize(), never tzinfo=
        return tz.localize(datetime.combine(self.day, time.min)).astimezone(pytz.UTC)

    def end(self, tz=None) -> datetime:
        """Last instant of the day (inclusive), in UTC."""
        tz = tz or BUSINESS_TZ
        return tz.localize(datetime.combine(self.day, time.max)).astimezone(pytz.UTC)

    def window(self, tz=None) -> "InstantWindow":
        return InstantWindow(self.start(tz), self.end(tz))

    def next(self) -> "LocalDay":
        return LocalDay(self.day + timedelta(days=1))

    def yymmdd(self) -> str:
        return self.day.strftime("%y%m%d")

    def isoformat(self) -> str:
        return self.day.isoformat()

    def __str__(self) -> str:
        return self.isoformat()


@dataclass(frozen=True)
class InstantWindow:
    """Inclusive [start, end] range of UTC instants."""
    start: datetime
    end: datetime

    @classmethod
    def for_days(cls, start_day: LocalDay, end_day: LocalDay, tz=None) -> "InstantWindow":
        if end_day < start_day:
            raise ValueError("end_day must not be before start_day")
        return cls(start_day.start(tz), end_day.end(tz))

    def contains(self, instant: datetime) -> bool:
        require_aware(instant)
        return self.start <= instant <= self.end
