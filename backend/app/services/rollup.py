"""
Rollup Engine.

Builds Day records from fetched bundles, then recomputes every Week, Month and
Year whose bounds intersect the processed window as the sum of the Day records
currently stored inside those bounds. Upper levels are never updated from
deltas, so re-running any window converges on the same state.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Optional

from app.config import Settings, get_settings
from app.core.exceptions import InvariantViolationError
from app.core.logging import get_logger
from app.models import MonthlyAnalytics, WeeklyAnalytics, YearlyAnalytics
from app.services.metrics import MetricBundle
from app.services.periods import (
    month_range,
    months_between,
    weeks_between,
    year_range,
    years_between,
)
from app.services.progress import ProgressReporter
from app.services.store import AnalyticsStore

logger = get_logger(__name__)


@dataclass
class LevelCounts:
    """Records written at one rollup level."""

    created: int = 0
    updated: int = 0

    def add(self, created: bool) -> None:
        if created:
            self.created += 1
        else:
            self.updated += 1

    def to_dict(self) -> dict[str, int]:
        return {"created": self.created, "updated": self.updated}


@dataclass
class RollupCounts:
    daily: LevelCounts = field(default_factory=LevelCounts)
    weekly: LevelCounts = field(default_factory=LevelCounts)
    monthly: LevelCounts = field(default_factory=LevelCounts)
    yearly: LevelCounts = field(default_factory=LevelCounts)

    def to_dict(self) -> dict[str, dict[str, int]]:
        return {
            "daily": self.daily.to_dict(),
            "weekly": self.weekly.to_dict(),
            "monthly": self.monthly.to_dict(),
            "yearly": self.yearly.to_dict(),
        }


class RollupEngine:
    """Day, week, month and year upserts for one user's analytics."""

    def __init__(self, store: AnalyticsStore, settings: Optional[Settings] = None):
        self.store = store
        self.settings = settings or get_settings()

    def _progress(self, progress: Optional[ProgressReporter]) -> ProgressReporter:
        return progress if progress is not None else ProgressReporter()

    # =========================================================================
    # Day phase
    # =========================================================================

    def upsert_days(
        self,
        user_id: int,
        days: dict[date, MetricBundle],
        progress: Optional[ProgressReporter] = None,
        recorded_at: Optional[datetime] = None,
    ) -> LevelCounts:
        """Create or overwrite one Day record per supplied date.

        Commits every ``daily_commit_batch_size`` days and once more at the end,
        so the later levels always read the complete day set.
        """
        progress = self._progress(progress)
        recorded_at = recorded_at or datetime.utcnow()
        batch_size = max(1, self.settings.daily_commit_batch_size)
        counts = LevelCounts()

        ordered = sorted(days)
        for index, day in enumerate(ordered, start=1):
            counts.add(self.store.upsert_day(user_id, day, days[day], recorded_at))
            if index % batch_size == 0:
                self.store.commit("upsert_days")
            progress.step(index, len(ordered), f"Processing daily analytics ({day.isoformat()})")

        self.store.commit("upsert_days")
        progress.complete("Daily analytics processed")
        logger.info(
            "rollup_level_completed",
            level="daily",
            user_id=user_id,
            created=counts.created,
            updated=counts.updated,
        )
        return counts

    # =========================================================================
    # Upper levels
    # =========================================================================

    def rollup_weeks(
        self,
        user_id: int,
        start: date,
        end: date,
        progress: Optional[ProgressReporter] = None,
        recorded_at: Optional[datetime] = None,
    ) -> LevelCounts:
        weeks = weeks_between(start, end, self.settings.first_weekday)
        return self._rollup_ranges(
            "weekly",
            user_id,
            weeks,
            lambda week, bundle, at: self.store.upsert_week(user_id, week, bundle, at),
            progress,
            recorded_at,
        )

    def rollup_months(
        self,
        user_id: int,
        start: date,
        end: date,
        progress: Optional[ProgressReporter] = None,
        recorded_at: Optional[datetime] = None,
    ) -> LevelCounts:
        keyed = {
            month_range(year, month): (year, month) for year, month in months_between(start, end)
        }
        return self._rollup_ranges(
            "monthly",
            user_id,
            list(keyed),
            lambda bounds, bundle, at: self.store.upsert_month(
                user_id, *keyed[bounds], bounds, bundle, at
            ),
            progress,
            recorded_at,
        )

    def rollup_years(
        self,
        user_id: int,
        start: date,
        end: date,
        progress: Optional[ProgressReporter] = None,
        recorded_at: Optional[datetime] = None,
    ) -> LevelCounts:
        keyed = {year_range(year): year for year in years_between(start, end)}
        return self._rollup_ranges(
            "yearly",
            user_id,
            list(keyed),
            lambda bounds, bundle, at: self.store.upsert_year(
                user_id, keyed[bounds], bounds, bundle, at
            ),
            progress,
            recorded_at,
        )

    def _rollup_ranges(
        self, level, user_id, ranges, upsert, progress, recorded_at
    ) -> LevelCounts:
        progress = self._progress(progress)
        recorded_at = recorded_at or datetime.utcnow()
        counts = LevelCounts()

        for index, bounds in enumerate(ranges, start=1):
            bundle = self.store.sum_days(user_id, bounds.start, bounds.end)
            counts.add(upsert(bounds, bundle, recorded_at))
            progress.step(
                index, len(ranges), f"Processing {level} analytics ({bounds.start.isoformat()})"
            )

        self.store.commit(f"rollup_{level}")
        progress.complete(f"{level.capitalize()} analytics processed")
        logger.info(
            "rollup_level_completed",
            level=level,
            user_id=user_id,
            periods=len(ranges),
            created=counts.created,
            updated=counts.updated,
        )
        return counts

    def rollup_window(
        self,
        user_id: int,
        start: date,
        end: date,
        weekly: Optional[ProgressReporter] = None,
        monthly: Optional[ProgressReporter] = None,
        yearly: Optional[ProgressReporter] = None,
    ) -> RollupCounts:
        """Recompute every week, month and year intersecting [start, end], in that order."""
        recorded_at = datetime.utcnow()
        counts = RollupCounts()
        counts.weekly = self.rollup_weeks(user_id, start, end, weekly, recorded_at)
        counts.monthly = self.rollup_months(user_id, start, end, monthly, recorded_at)
        counts.yearly = self.rollup_years(user_id, start, end, yearly, recorded_at)
        return counts

    def rollup_current_periods(
        self, user_id: int, today: date, progress: Optional[ProgressReporter] = None
    ) -> RollupCounts:
        """Recompute only the week, month and year that contain ``today``."""
        progress = self._progress(progress)
        return self.rollup_window(
            user_id,
            today,
            today,
            weekly=progress.phase(0, 40),
            monthly=progress.phase(40, 75),
            yearly=progress.phase(75, 100),
        )

    # =========================================================================
    # Verification
    # =========================================================================

    def verify(self, user_id: int) -> dict[str, int]:
        """Check every stored upper-level record against the sum of its days.

        Raises InvariantViolationError on the first divergent record.
        """
        checked = {"weekly": 0, "monthly": 0, "yearly": 0}
        for level, model in (
            ("weekly", WeeklyAnalytics),
            ("monthly", MonthlyAnalytics),
            ("yearly", YearlyAnalytics),
        ):
            for record in self.store.all_records(model, user_id):
                expected = self.store.sum_days(user_id, record.start_date, record.end_date)
                diffs = MetricBundle.from_record(record).differing_fields(expected)
                if diffs:
                    key = _period_key(record)
                    logger.error(
                        "rollup_invariant_violated",
                        user_id=user_id,
                        level=level,
                        key=key,
                        fields=diffs,
                    )
                    raise InvariantViolationError(level, key, diffs)
                checked[level] += 1
        return checked


def _period_key(record) -> str:
    if isinstance(record, WeeklyAnalytics):
        return record.start_date.isoformat()
    if isinstance(record, MonthlyAnalytics):
        return f"{record.year}-{record.month:02d}"
    return str(record.year)
