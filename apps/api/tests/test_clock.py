from __future__ import annotations

from datetime import date, datetime, timezone

import pytest

from app.pipeline.clock import FixedClock, MonthRef, days_remaining_in_month, prior_month


def test_prior_month_of_january_is_december_of_previous_year() -> None:
    clock = FixedClock(datetime(2025, 1, 1, 0, 0, tzinfo=timezone.utc))
    assert prior_month(clock) == MonthRef(month=12, year=2024)


def test_prior_month_mid_year() -> None:
    clock = FixedClock(datetime(2024, 7, 15, 9, 30, tzinfo=timezone.utc))
    assert prior_month(clock) == MonthRef(month=6, year=2024)


@pytest.mark.parametrize(
    ("day", "expected"),
    [
        (date(2024, 2, 1), 28),
        (date(2024, 2, 29), 0),
        (date(2023, 2, 27), 1),
        (date(2024, 12, 27), 4),
        (date(2024, 4, 30), 0),
    ],
)
def test_days_remaining_in_month(day: date, expected: int) -> None:
    assert days_remaining_in_month(day) == expected


def test_fixed_clock_assumes_utc_for_naive_instants() -> None:
    clock = FixedClock(datetime(2024, 3, 1, 12, 0))
    assert clock.now().tzinfo is timezone.utc
    assert clock.today() == date(2024, 3, 1)


def test_month_ref_renders_as_month_slash_year() -> None:
    assert str(MonthRef(month=3, year=2024)) == "3/2024"
