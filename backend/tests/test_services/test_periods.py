"""Tests for the period key functions."""

from datetime import date, datetime, timezone
from zoneinfo import ZoneInfo

from app.services.periods import (
    PeriodRange,
    day_key,
    end_of_day,
    month_range,
    months_between,
    start_of_day,
    week_range,
    week_start,
    weeks_between,
    year_range,
    years_between,
)

UTC = ZoneInfo("UTC")
BERLIN = ZoneInfo("Europe/Berlin")


class TestDayKey:
    """Instant to calendar day."""

    def test_naive_instants_are_utc(self):
        """Naive timestamps are read as UTC."""
        assert day_key(datetime(2024, 3, 10, 23, 30), UTC) == date(2024, 3, 10)

    def test_configured_zone_decides_the_day(self):
        """The same instant falls on the next day east of UTC."""
        instant = datetime(2024, 3, 10, 23, 30, tzinfo=timezone.utc)
        assert day_key(instant, BERLIN) == date(2024, 3, 11)

    def test_dst_day_bounds(self):
        """The spring-forward day in Berlin is 23 hours long."""
        start = start_of_day(date(2024, 3, 31), BERLIN)
        end = end_of_day(date(2024, 3, 31), BERLIN)
        assert start == datetime(2024, 3, 30, 23, 0)
        assert (end - start).total_seconds() == 23 * 3600


class TestWeeks:
    """Canonical week starts."""

    def test_monday_start(self):
        """Weeks start on Monday by default."""
        assert week_start(date(2024, 1, 4)) == date(2024, 1, 1)
        assert week_start(date(2024, 1, 1)) == date(2024, 1, 1)

    def test_sunday_start(self):
        """first_weekday=6 gives Sunday weeks."""
        assert week_start(date(2024, 1, 4), first_weekday=6) == date(2023, 12, 31)

    def test_week_end_is_six_days_later(self):
        """A week spans seven days inclusive."""
        week = week_range(date(2024, 2, 28))
        assert week == PeriodRange(date(2024, 2, 26), date(2024, 3, 3))
        assert week.days == 7

    def test_weeks_between_covers_partial_weeks(self):
        """Weeks touching either end of the window are included."""
        weeks = weeks_between(date(2024, 1, 3), date(2024, 1, 15))
        assert [w.start for w in weeks] == [date(2024, 1, 1), date(2024, 1, 8), date(2024, 1, 15)]


class TestMonthsAndYears:
    """Month and year bounds."""

    def test_leap_february(self):
        """February 2024 ends on the 29th."""
        assert month_range(2024, 2) == PeriodRange(date(2024, 2, 1), date(2024, 2, 29))

    def test_months_between_crosses_year(self):
        """Month keys roll over December."""
        assert months_between(date(2023, 11, 20), date(2024, 2, 1)) == [
            (2023, 11),
            (2023, 12),
            (2024, 1),
            (2024, 2),
        ]

    def test_year_bounds(self):
        """Years run Jan 1 to Dec 31."""
        year = year_range(2023)
        assert year.start == date(2023, 1, 1)
        assert year.end == date(2023, 12, 31)
        assert years_between(date(2022, 12, 31), date(2024, 1, 1)) == [2022, 2023, 2024]

    def test_range_intersection(self):
        """Bounds intersect when they share at least one day."""
        week = week_range(date(2024, 1, 31))
        assert week.intersects(date(2024, 2, 1), date(2024, 2, 10))
        assert not week.intersects(date(2024, 2, 5), date(2024, 2, 10))
        assert week.contains(date(2024, 2, 4))
