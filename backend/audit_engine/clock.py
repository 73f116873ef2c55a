"""Clock capability — injectable source of "now" for engine and sweep."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Callable

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    """Make a datetime timezone-aware (UTC).

    SQLite returns naive datetimes; everything stored is UTC.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class FixedClock:
    """Clock that returns a settable instant.

    Usage:
        clock = FixedClock(datetime(2024, 1, 15, tzinfo=timezone.utc))
        engine = AuditRunEngine(..., clock=clock)
        clock.advance(days=1)
    """

    def __init__(self, now: datetime) -> None:
        self.now = as_utc(now)

    def __call__(self) -> datetime:
        return self.now

    def set(self, now: datetime) -> None:
        self.now = as_utc(now)

    def advance(self, **delta) -> None:
        self.now = self.now + timedelta(**delta)
