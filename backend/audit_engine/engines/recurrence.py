"""Recurrence arithmetic for scheduled audits.

Pure functions of their inputs: no wall-clock access, so callers pass the
anchor and last-run instants explicitly.

Month-based offsets clamp to the last valid day of the target month
(Jan 31 + 1 month -> Feb 28/29, Feb 29 + 1 year -> Feb 28) instead of
overflowing into the following month.
"""

from __future__ import annotations

import calendar
from datetime import datetime, timedelta

from audit_engine.clock import as_utc
from audit_engine.errors import InvalidRecurrenceType

# recurrence type -> (days, months)
RECURRENCE_OFFSETS: dict[str, tuple[int, int]] = {
    "daily": (1, 0),
    "weekly": (7, 0),
    "monthly": (0, 1),
    "quarterly": (0, 3),
    "yearly": (0, 12),
}

RECURRENCE_TYPES = ("once", *RECURRENCE_OFFSETS)


def validate_recurrence_type(recurrence_type: str) -> str:
    if recurrence_type not in RECURRENCE_TYPES:
        raise InvalidRecurrenceType(recurrence_type)
    return recurrence_type


def is_recurring(recurrence_type: str) -> bool:
    return validate_recurrence_type(recurrence_type) != "once"


def add_months(value: datetime, months: int) -> datetime:
    """Shift by calendar months, clamping the day to the target month's length."""
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def compute_next_run(
    anchor: datetime,
    recurrence_type: str,
    last_run: datetime | None = None,
) -> datetime | None:
    """Compute the next trigger instant.

    Args:
        anchor: The definition's start date.
        recurrence_type: One of RECURRENCE_TYPES.
        last_run: When the definition last ran, if ever. Takes precedence
            over the anchor as the base date.

    Returns:
        The next run instant, or None for one-time audits.

    Raises:
        InvalidRecurrenceType: For anything outside RECURRENCE_TYPES.
    """
    validate_recurrence_type(recurrence_type)
    if recurrence_type == "once":
        return None

    base = last_run if last_run is not None else anchor
    days, months = RECURRENCE_OFFSETS[recurrence_type]
    if months:
        return add_months(base, months)
    return base + timedelta(days=days)


def initial_run_date(start_date: datetime, recurrence_type: str) -> datetime:
    """First scheduled occurrence of a new definition.

    A one-time audit is due on its start date; a recurring one first fires
    one period after it.
    """
    if not is_recurring(recurrence_type):
        return start_date
    return compute_next_run(start_date, recurrence_type)


def within_end_date(candidate: datetime | None, end_date: datetime | None) -> datetime | None:
    """Drop a candidate run date that falls after the schedule's end date."""
    if candidate is None or end_date is None:
        return candidate
    return candidate if as_utc(candidate) <= as_utc(end_date) else None
