from __future__ import annotations

import calendar
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Protocol
from zoneinfo import ZoneInfo


class Clock(Protocol):
    def now(self) -> datetime: ...

    def today(self) -> date: ...


@dataclass(frozen=True, slots=True)
class SystemClock:
    tz_name: str = "UTC"

    def now(self) -> datetime:
        return datetime.now(ZoneInfo(self.tz_name))

    def today(self) -> date:
        return self.now().date()


@dataclass(frozen=True, slots=True)
class FixedClock:
    instant: datetime

    def now(self) -> datetime:
        if self.instant.tzinfo is None:
            return self.instant.replace(tzinfo=timezone.utc)
        return self.instant

    def today(self) -> date:
        return self.now().date()


@dataclass(frozen=True, slots=True)
class MonthRef:
    month: int
    year: int

    @classmethod
    def of(cls, day: date) -> MonthRef:
        return cls(month=day.month, year=day.year)

    def previous(self) -> MonthRef:
        if self.month == 1:
            return MonthRef(month=12, year=self.year - 1)
        return MonthRef(month=self.month - 1, year=self.year)

    @property
    def last_day(self) -> int:
        return calendar.monthrange(self.year, self.month)[1]

    def __str__(self) -> str:
        return f"{self.month}/{self.year}"


def prior_month(clock: Clock) -> MonthRef:
    return MonthRef.of(clock.today()).previous()


def days_remaining_in_month(day: date) -> int:
    return MonthRef.of(day).last_day - day.day
