"""Tests for recurrence arithmetic."""

import os
import sys

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', '..'))

from datetime import datetime, timezone

import pytest

from audit_engine.engines.recurrence import (
    RECURRENCE_TYPES,
    add_months,
    compute_next_run,
    initial_run_date,
    is_recurring,
    within_end_date,
)
from audit_engine.errors import InvalidRecurrenceType, ValidationError

RECURRING = ["daily", "weekly", "monthly", "quarterly", "yearly"]

ANCHORS = [
    datetime(2024, 1, 15, 9, 30, tzinfo=timezone.utc),
    datetime(2024, 1, 31, tzinfo=timezone.utc),
    datetime(2024, 2, 29, 23, 59, tzinfo=timezone.utc),
    datetime(2023, 12, 31, 12, 0, tzinfo=timezone.utc),
    datetime(2024, 11, 30),  # naive
]


@pytest.mark.parametrize("recurrence_type", RECURRING)
@pytest.mark.parametrize("anchor", ANCHORS)
def test_next_run_is_after_anchor(anchor, recurrence_type):
    assert compute_next_run(anchor, recurrence_type) > anchor


@pytest.mark.parametrize("anchor", ANCHORS)
def test_once_never_schedules(anchor):
    assert compute_next_run(anchor, "once") is None
    assert compute_next_run(anchor, "once", last_run=anchor) is None


def test_fixed_day_offsets():
    anchor = datetime(2024, 3, 10, 8, 0, tzinfo=timezone.utc)
    assert compute_next_run(anchor, "daily") == datetime(2024, 3, 11, 8, 0, tzinfo=timezone.utc)
    assert compute_next_run(anchor, "weekly") == datetime(2024, 3, 17, 8, 0, tzinfo=timezone.utc)


def test_month_offsets_keep_time_of_day():
    anchor = datetime(2024, 1, 15, 14, 45, tzinfo=timezone.utc)
    assert compute_next_run(anchor, "monthly") == datetime(2024, 2, 15, 14, 45, tzinfo=timezone.utc)
    assert compute_next_run(anchor, "quarterly") == datetime(2024, 4, 15, 14, 45, tzinfo=timezone.utc)
    assert compute_next_run(anchor, "yearly") == datetime(2025, 1, 15, 14, 45, tzinfo=timezone.utc)


def test_monthly_from_month_end_clamps_to_february():
    leap = compute_next_run(datetime(2024, 1, 31, tzinfo=timezone.utc), "monthly")
    assert leap == datetime(2024, 2, 29, tzinfo=timezone.utc)

    common = compute_next_run(datetime(2023, 1, 31, tzinfo=timezone.utc), "monthly")
    assert common == datetime(2023, 2, 28, tzinfo=timezone.utc)


def test_quarterly_and_yearly_clamp():
    assert compute_next_run(datetime(2024, 11, 30), "quarterly") == datetime(2025, 2, 28)
    assert compute_next_run(datetime(2024, 2, 29), "yearly") == datetime(2025, 2, 28)


def test_add_months_crosses_year_boundary():
    assert add_months(datetime(2024, 12, 31), 1) == datetime(2025, 1, 31)
    assert add_months(datetime(2024, 10, 31), 4) == datetime(2025, 2, 28)


def test_last_run_takes_precedence_over_anchor():
    anchor = datetime(2024, 1, 15, tzinfo=timezone.utc)
    last_run = datetime(2024, 3, 2, 10, 0, tzinfo=timezone.utc)
    assert compute_next_run(anchor, "weekly", last_run) == datetime(2024, 3, 9, 10, 0, tzinfo=timezone.utc)


def test_unknown_recurrence_type_is_an_error():
    with pytest.raises(InvalidRecurrenceType) as exc:
        compute_next_run(datetime(2024, 1, 1), "fortnightly")
    assert exc.value.recurrence_type == "fortnightly"
    assert isinstance(exc.value, ValidationError)


def test_unknown_type_rejected_even_for_helpers():
    with pytest.raises(InvalidRecurrenceType):
        is_recurring("hourly")
    with pytest.raises(InvalidRecurrenceType):
        initial_run_date(datetime(2024, 1, 1), "")


def test_initial_run_date():
    start = datetime(2024, 1, 15, tzinfo=timezone.utc)
    assert initial_run_date(start, "once") == start
    assert initial_run_date(start, "monthly") == datetime(2024, 2, 15, tzinfo=timezone.utc)


def test_within_end_date():
    end = datetime(2024, 6, 30, tzinfo=timezone.utc)
    assert within_end_date(datetime(2024, 6, 30, tzinfo=timezone.utc), end) is not None
    assert within_end_date(datetime(2024, 7, 1, tzinfo=timezone.utc), end) is None
    # Naive values from SQLite compare as UTC
    assert within_end_date(datetime(2024, 6, 1), end) == datetime(2024, 6, 1)
    assert within_end_date(None, end) is None
    assert within_end_date(datetime(2030, 1, 1), None) == datetime(2030, 1, 1)


def test_recurrence_types_listed():
    assert set(RECURRENCE_TYPES) == {"once", *RECURRING}
