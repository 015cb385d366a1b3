"""
Tests for civil-day arithmetic and offset normalisation.
"""
from datetime import datetime, timedelta, timezone

import pytest

from casewatch.shared.infrastructure.clock import FixedClock, SystemClock
from casewatch.sla.domain import CivilCalendar, normalize_reminder_days


CIVIL_TZ = timezone(timedelta(hours=7))


@pytest.fixture
def calendar() -> CivilCalendar:
    return CivilCalendar(7)


def test_days_left_counts_civil_days_not_raw_hours(calendar):
    deadline = datetime(2024, 1, 10, 1, 0, tzinfo=CIVIL_TZ)
    now = datetime(2024, 1, 8, 23, 50, tzinfo=CIVIL_TZ)

    assert deadline - now < timedelta(hours=48)
    assert calendar.days_between(now, deadline) == 2


def test_days_between_is_signed(calendar):
    a = datetime(2024, 1, 8, 9, 0, tzinfo=CIVIL_TZ)
    b = datetime(2024, 1, 5, 22, 0, tzinfo=CIVIL_TZ)

    assert calendar.days_between(a, b) == -3
    assert calendar.days_between(b, a) == 3


def test_same_civil_day_is_zero(calendar):
    morning = datetime(2024, 1, 8, 0, 1, tzinfo=CIVIL_TZ)
    night = datetime(2024, 1, 8, 23, 59, tzinfo=CIVIL_TZ)

    assert calendar.days_between(morning, night) == 0


def test_start_of_civil_day_is_returned_in_utc(calendar):
    instant = datetime(2024, 1, 8, 23, 50, tzinfo=CIVIL_TZ)

    start = calendar.start_of_civil_day(instant)

    assert start == datetime(2024, 1, 7, 17, 0, tzinfo=timezone.utc)
    assert start.utcoffset() == timedelta(0)


def test_result_does_not_depend_on_input_offset(calendar):
    """The same instants expressed in UTC give the same answer."""
    deadline = datetime(2024, 1, 10, 1, 0, tzinfo=CIVIL_TZ).astimezone(timezone.utc)
    now = datetime(2024, 1, 8, 23, 50, tzinfo=CIVIL_TZ).astimezone(timezone.utc)

    assert calendar.days_between(now, deadline) == 2


def test_naive_datetimes_are_read_as_utc(calendar):
    naive = datetime(2024, 1, 8, 18, 0)

    assert calendar.start_of_civil_day(naive) == datetime(2024, 1, 8, 17, 0, tzinfo=timezone.utc)


def test_civil_date_crosses_midnight_before_utc(calendar):
    assert calendar.civil_date(datetime(2024, 1, 9, 18, 0, tzinfo=timezone.utc)) == "2024-01-10"
    assert calendar.civil_date(datetime(2024, 1, 9, 16, 59, tzinfo=timezone.utc)) == "2024-01-09"


def test_other_offsets_are_supported():
    utc_calendar = CivilCalendar(0)
    a = datetime(2024, 1, 8, 23, 50, tzinfo=timezone.utc)
    b = datetime(2024, 1, 9, 0, 10, tzinfo=timezone.utc)

    assert utc_calendar.days_between(a, b) == 1


def test_normalize_reminder_days():
    assert normalize_reminder_days([3, 7, 3, 0, -1, "x", True, 1]) == [7, 3, 1]
    assert normalize_reminder_days(None) == []
    assert normalize_reminder_days(["5", 2.0]) == [5, 2]


def test_fixed_clock_requires_aware_instant():
    with pytest.raises(ValueError):
        FixedClock(datetime(2024, 1, 8, 9, 0))


def test_fixed_clock_advance():
    clock = FixedClock(datetime(2024, 1, 8, 9, 0, tzinfo=CIVIL_TZ))
    clock.advance(timedelta(days=1))

    assert clock.now() == datetime(2024, 1, 9, 9, 0, tzinfo=CIVIL_TZ)


def test_system_clock_is_aware():
    assert SystemClock().now().tzinfo is not None
