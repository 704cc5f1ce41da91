"""Tests for the rollup engine and analytics store."""

from datetime import date

import pytest
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from app.config import Settings
from app.core.exceptions import InvariantViolationError, StoreWriteError
from app.models import DailyAnalytics, MonthlyAnalytics, User, WeeklyAnalytics, YearlyAnalytics
from app.services.metrics import MetricBundle
from app.services.progress import ProgressReporter
from app.services.rollup import RollupEngine
from app.services.store import AnalyticsStore

JAN_1 = date(2024, 1, 1)  # Monday


@pytest.fixture
def engine(store: AnalyticsStore, settings: Settings) -> RollupEngine:
    return RollupEngine(store, settings)


def steps(n: int) -> MetricBundle:
    return MetricBundle(steps=n)


class TestUpsertDays:
    """Day phase create-or-overwrite."""

    def test_creates_then_overwrites(self, engine: RollupEngine, store: AnalyticsStore, user: User):
        """A second write to the same day replaces its bundle."""
        first = engine.upsert_days(user.id, {JAN_1: steps(100)})
        second = engine.upsert_days(user.id, {JAN_1: steps(250)})

        assert (first.created, first.updated) == (1, 0)
        assert (second.created, second.updated) == (0, 1)
        assert store.get_day(user.id, JAN_1).steps == 250
        assert store.count(DailyAnalytics, user.id) == 1

    def test_commits_in_batches(self, engine, store: AnalyticsStore, user: User, mocker):
        """Seven days with a batch size of three commit three times."""
        commit = mocker.spy(store, "commit")
        days = {date(2024, 1, d): steps(d) for d in range(1, 8)}
        engine.upsert_days(user.id, days)
        assert commit.call_count == 3

    def test_reports_progress(self, engine, user: User):
        """The day phase ends at 100% of its range."""
        reporter = ProgressReporter()
        engine.upsert_days(user.id, {JAN_1: steps(1)}, reporter.phase(15, 40))
        assert reporter.last.percentage == 40.0

    def test_store_assigns_identifiers(self, engine, store: AnalyticsStore, user: User):
        """Identifiers grow with each new record."""
        engine.upsert_days(user.id, {JAN_1: steps(1), date(2024, 1, 2): steps(2)})
        ids = [d.id for d in store.all_days(user.id)]
        assert ids == sorted(ids)
        assert store.max_id(DailyAnalytics) == ids[-1]


class TestUpperLevels:
    """Week, month and year recomputation."""

    def test_week_sums_all_stored_days(self, engine, store: AnalyticsStore, user: User):
        """A partially re-processed week still reflects every stored day."""
        engine.upsert_days(user.id, {JAN_1: steps(10000)})
        engine.upsert_days(user.id, {date(2024, 1, 2): steps(15000)})
        engine.rollup_weeks(user.id, date(2024, 1, 2), date(2024, 1, 2))

        week = store.get_week(user.id, JAN_1)
        assert week.steps == 25000
        assert week.end_date == date(2024, 1, 7)

    def test_window_touches_every_intersecting_period(self, engine, store, user: User):
        """A window crossing a year boundary rebuilds both years."""
        days = {date(2023, 12, 30): steps(5), date(2024, 1, 2): steps(7)}
        engine.upsert_days(user.id, days)
        counts = engine.rollup_window(user.id, date(2023, 12, 30), date(2024, 1, 2))

        assert counts.weekly.created == 2
        assert counts.monthly.created == 2
        assert counts.yearly.created == 2
        assert store.get_month(user.id, 2023, 12).steps == 5
        assert store.get_month(user.id, 2024, 1).steps == 7
        assert store.get_year(user.id, 2024).end_date == date(2024, 12, 31)

    def test_rerun_is_idempotent(self, engine, store: AnalyticsStore, user: User):
        """Running the same window twice overwrites with equal values."""
        engine.upsert_days(user.id, {JAN_1: MetricBundle(steps=3, walking_distance=1.25)})
        engine.rollup_window(user.id, JAN_1, JAN_1)
        before = MetricBundle.from_record(store.get_month(user.id, 2024, 1))

        counts = engine.rollup_window(user.id, JAN_1, JAN_1)
        after = MetricBundle.from_record(store.get_month(user.id, 2024, 1))

        assert counts.monthly.updated == 1
        assert before == after

    def test_current_periods(self, engine, store: AnalyticsStore, user: User):
        """Only the week, month and year holding today are written."""
        engine.upsert_days(user.id, {date(2024, 3, 14): steps(9)})
        engine.rollup_current_periods(user.id, date(2024, 3, 14))

        assert store.count(WeeklyAnalytics, user.id) == 1
        assert store.count(MonthlyAnalytics, user.id) == 1
        assert store.count(YearlyAnalytics, user.id) == 1
        assert store.get_week(user.id, date(2024, 3, 11)).steps == 9


class TestVerify:
    """Sum invariant checks."""

    def test_consistent_store_passes(self, engine, user: User):
        """Freshly rolled up records verify cleanly."""
        engine.upsert_days(user.id, {JAN_1: steps(4), date(2024, 1, 9): steps(6)})
        engine.rollup_window(user.id, JAN_1, date(2024, 1, 9))
        assert engine.verify(user.id) == {"weekly": 2, "monthly": 1, "yearly": 1}

    def test_divergent_week_is_reported(self, engine, store, test_db: Session, user: User):
        """A tampered week raises instead of being corrected."""
        engine.upsert_days(user.id, {JAN_1: steps(4)})
        engine.rollup_window(user.id, JAN_1, JAN_1)
        store.get_week(user.id, JAN_1).steps = 999
        test_db.commit()

        with pytest.raises(InvariantViolationError) as exc_info:
            engine.verify(user.id)
        assert exc_info.value.details["fields"] == ["steps"]
        assert store.get_week(user.id, JAN_1).steps == 999


class TestStoreFailures:
    """Write failures surface as StoreWriteError."""

    def test_commit_failure_is_raised(self, engine, store, test_db: Session, user: User, mocker):
        """A failing commit aborts the phase and rolls back."""
        mocker.patch.object(
            test_db, "commit", side_effect=OperationalError("COMMIT", {}, Exception("disk full"))
        )
        rollback = mocker.spy(test_db, "rollback")

        with pytest.raises(StoreWriteError) as exc_info:
            engine.upsert_days(user.id, {JAN_1: steps(1)})

        assert exc_info.value.code == "STORE_WRITE_FAILURE"
        assert rollback.called
