"""
Period key functions.

Pure calendar helpers mapping instants and dates to the canonical day, week,
month and year buckets. Every instant is converted into one configured
timezone before its day is taken, so bucketing never depends on the host
clock's zone.
"""

import calendar
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import Iterator
from zoneinfo import ZoneInfo


@dataclass(frozen=True)
class PeriodRange:
    """Inclusive calendar-day bounds of one period."""

    start: date
    end: date

    def contains(self, day: date) -> bool:
        return self.start <= day <= self.end

    def intersects(self, start: date, end: date) -> bool:
        return self.start <= end and start <= self.end

    @property
    def days(self) -> int:
        return (self.end - self.start).days + 1


def to_local(instant: datetime, tz: ZoneInfo) -> datetime:
    """Convert an instant to the given zone. Naive values are taken as UTC."""
    if instant.tzinfo is None:
        instant = instant.replace(tzinfo=timezone.utc)
    return instant.astimezone(tz)


def to_naive_utc(instant: datetime) -> datetime:
    """Normalize an instant to the naive-UTC form stored in the database."""
    if instant.tzinfo is None:
        return instant
    return instant.astimezone(timezone.utc).replace(tzinfo=None)


def day_key(instant: datetime, tz: ZoneInfo) -> date:
    """The local calendar day an instant falls on."""
    return to_local(instant, tz).date()


def start_of_day(day: date, tz: ZoneInfo) -> datetime:
    """First instant of a local day, as naive UTC."""
    return to_naive_utc(datetime.combine(day, time.min, tzinfo=tz))


def end_of_day(day: date, tz: ZoneInfo) -> datetime:
    """First instant of the following local day, as naive UTC (exclusive bound)."""
    return start_of_day(day + timedelta(days=1), tz)


def week_start(day: date, first_weekday: int = 0) -> date:
    """Canonical start of the week containing ``day``.

    ``first_weekday`` follows ``date.weekday()``: 0 = Monday ... 6 = Sunday.
    """
    offset = (day.weekday() - first_weekday) % 7
    return day - timedelta(days=offset)


def week_range(day: date, first_weekday: int = 0) -> PeriodRange:
    start = week_start(day, first_weekday)
    return PeriodRange(start, start + timedelta(days=6))


def month_range(year: int, month: int) -> PeriodRange:
    last_day = calendar.monthrange(year, month)[1]
    return PeriodRange(date(year, month, 1), date(year, month, last_day))


def year_range(year: int) -> PeriodRange:
    return PeriodRange(date(year, 1, 1), date(year, 12, 31))


def iter_days(start: date, end: date) -> Iterator[date]:
    """Every calendar day from start to end inclusive."""
    current = start
    while current <= end:
        yield current
        current += timedelta(days=1)


def weeks_between(start: date, end: date, first_weekday: int = 0) -> list[PeriodRange]:
    """All weeks whose bounds intersect [start, end]."""
    ranges = []
    current = week_start(start, first_weekday)
    while current <= end:
        ranges.append(PeriodRange(current, current + timedelta(days=6)))
        current += timedelta(days=7)
    return ranges


def months_between(start: date, end: date) -> list[tuple[int, int]]:
    """All (year, month) keys whose bounds intersect [start, end]."""
    keys = []
    year, month = start.year, start.month
    while (year, month) <= (end.year, end.month):
        keys.append((year, month))
        month += 1
        if month > 12:
            year, month = year + 1, 1
    return keys


def years_between(start: date, end: date) -> list[int]:
    """All years whose bounds intersect [start, end]."""
    return list(range(start.year, end.year + 1))
