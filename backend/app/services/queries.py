"""Read side of the analytics: period lookups, highscores and sync status."""

from datetime import date
from typing import Any, Optional

from app.config import Settings, get_settings
from app.core.exceptions import NotFoundError, ValidationError
from app.models import (
    DailyAnalytics,
    HealthSample,
    HighscoreRecord,
    MonthlyAnalytics,
    User,
    WeeklyAnalytics,
    YearlyAnalytics,
)
from app.services.periods import week_start
from app.services.rollup import RollupEngine
from app.services.store import AnalyticsStore
from app.services.sync import is_sync_running


class AnalyticsQueryService:
    def __init__(self, store: AnalyticsStore, settings: Optional[Settings] = None):
        self.store = store
        self.db = store.db
        self.settings = settings or get_settings()

    def _user(self, user_id: int) -> User:
        user = self.store.get_user(user_id)
        if user is None:
            raise NotFoundError("User", user_id)
        return user

    @staticmethod
    def _check_range(start: Optional[date], end: Optional[date]) -> None:
        if start is not None and end is not None and start > end:
            raise ValidationError("start", f"{start.isoformat()} is after {end.isoformat()}")

    # =========================================================================
    # Daily
    # =========================================================================

    def day(self, user_id: int, day: date) -> DailyAnalytics:
        self._user(user_id)
        record = self.store.get_day(user_id, day)
        if record is None:
            raise NotFoundError("DailyAnalytics", day.isoformat())
        return record

    def days(
        self, user_id: int, start: Optional[date] = None, end: Optional[date] = None
    ) -> list[DailyAnalytics]:
        self._user(user_id)
        self._check_range(start, end)
        if start is None and end is None:
            return self.store.all_days(user_id)
        return self.store.days_between(user_id, start or date.min, end or date.max)

    # =========================================================================
    # Weekly
    # =========================================================================

    def week_containing(self, user_id: int, day: date) -> WeeklyAnalytics:
        self._user(user_id)
        start = week_start(day, self.settings.first_weekday)
        record = self.store.get_week(user_id, start)
        if record is None:
            raise NotFoundError("WeeklyAnalytics", start.isoformat())
        return record

    def weeks(
        self, user_id: int, start: Optional[date] = None, end: Optional[date] = None
    ) -> list[WeeklyAnalytics]:
        self._user(user_id)
        self._check_range(start, end)
        query = self.db.query(WeeklyAnalytics).filter(WeeklyAnalytics.user_id == user_id)
        if start is not None:
            query = query.filter(WeeklyAnalytics.end_date >= start)
        if end is not None:
            query = query.filter(WeeklyAnalytics.start_date <= end)
        return query.order_by(WeeklyAnalytics.start_date).all()

    # =========================================================================
    # Monthly / Yearly
    # =========================================================================

    def month(self, user_id: int, year: int, month: int) -> MonthlyAnalytics:
        self._user(user_id)
        if not 1 <= month <= 12:
            raise ValidationError("month", f"{month} is not between 1 and 12")
        record = self.store.get_month(user_id, year, month)
        if record is None:
            raise NotFoundError("MonthlyAnalytics", f"{year}-{month:02d}")
        return record

    def months(self, user_id: int, year: Optional[int] = None) -> list[MonthlyAnalytics]:
        self._user(user_id)
        query = self.db.query(MonthlyAnalytics).filter(MonthlyAnalytics.user_id == user_id)
        if year is not None:
            query = query.filter(MonthlyAnalytics.year == year)
        return query.order_by(MonthlyAnalytics.year, MonthlyAnalytics.month).all()

    def year(self, user_id: int, year: int) -> YearlyAnalytics:
        self._user(user_id)
        record = self.store.get_year(user_id, year)
        if record is None:
            raise NotFoundError("YearlyAnalytics", year)
        return record

    def years(self, user_id: int) -> list[YearlyAnalytics]:
        self._user(user_id)
        return self.store.all_records(YearlyAnalytics, user_id)

    def latest(self, user_id: int, model):
        self._user(user_id)
        record = self.store.latest(model, user_id)
        if record is None:
            raise NotFoundError(model.__name__, "latest")
        return record

    # =========================================================================
    # Highscores & status
    # =========================================================================

    def highscores(self, user_id: int) -> HighscoreRecord:
        self._user(user_id)
        record = self.store.get_highscores(user_id)
        if record is None:
            raise NotFoundError("HighscoreRecord", user_id)
        return record

    def verify_rollups(self, user_id: int) -> dict[str, int]:
        """Recompute stored weeks, months and years from their days; raises on divergence."""
        self._user(user_id)
        return RollupEngine(self.store, self.settings).verify(user_id)

    def sync_status(self, user_id: int) -> dict[str, Any]:
        user = self._user(user_id)
        sentinel = self.settings.cursor_sentinel
        return {
            "user_id": user_id,
            "initialized": user.last_processed_at > sentinel,
            "running": is_sync_running(user_id),
            "last_processed_at": user.last_processed_at,
            "highscores_last_updated": user.highscores_last_updated,
            "first_health_record_at": user.first_health_record_at,
            "record_counts": {
                "samples": self.store.count(HealthSample, user_id),
                "daily": self.store.count(DailyAnalytics, user_id),
                "weekly": self.store.count(WeeklyAnalytics, user_id),
                "monthly": self.store.count(MonthlyAnalytics, user_id),
                "yearly": self.store.count(YearlyAnalytics, user_id),
            },
            "max_ids": {
                "daily": self.store.max_id(DailyAnalytics),
                "weekly": self.store.max_id(WeeklyAnalytics),
                "monthly": self.store.max_id(MonthlyAnalytics),
                "yearly": self.store.max_id(YearlyAnalytics),
            },
        }
