"""Tests for the synchronization cursor protocol."""

import asyncio
from datetime import date, datetime, timedelta
from unittest.mock import AsyncMock

import pytest
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from app.config import Settings
from app.core.exceptions import (
    NotFoundError,
    SourceUnavailableError,
    StoreWriteError,
    SyncInProgressError,
)
from app.models import (
    DailyAnalytics,
    HighscoreRecord,
    MonthlyAnalytics,
    WeeklyAnalytics,
    YearlyAnalytics,
)
from app.services.metrics import MetricBundle
from app.services.progress import ProgressReporter
from app.services.rollup import RollupEngine
from app.services.store import AnalyticsStore
from app.services.sync import SyncMode, SyncService, _user_lock

D1 = date(2024, 1, 1)  # Monday
D2 = date(2024, 1, 2)
D3 = date(2024, 1, 3)
NOW = datetime(2024, 1, 3, 12, 0)


@pytest.fixture
def make_service(store: AnalyticsStore, settings: Settings):
    def factory(source, now: datetime = NOW) -> SyncService:
        return SyncService(store, source, settings, clock=lambda: now)

    return factory


@pytest.fixture
def two_day_source(static_source):
    return static_source({D1: MetricBundle(steps=10000), D2: MetricBundle(steps=15000)})


def snapshot(store: AnalyticsStore, user_id: int) -> dict:
    """Every stored bundle and highscore value, keyed by record id."""
    state = {}
    for model in (WeeklyAnalytics, MonthlyAnalytics, YearlyAnalytics):
        for record in store.all_records(model, user_id):
            state[(model.__name__, record.id)] = MetricBundle.from_record(record)
    for record in store.all_days(user_id):
        state[("DailyAnalytics", record.id)] = MetricBundle.from_record(record)
    highscores = store.get_highscores(user_id)
    for column in HighscoreRecord.__table__.columns:
        if column.name not in ("last_updated", "recorded_at"):
            state[("HighscoreRecord", column.name)] = getattr(highscores, column.name)
    return state


class TestInitialize:
    """Full rebuild from the earliest raw data."""

    def test_end_to_end_rollup_and_highscores(self, make_service, two_day_source, store, user):
        """10,000 and 15,000 steps in one week roll up to 25,000; the record is 15,000 on D2."""
        result = asyncio.run(make_service(two_day_source).initialize(user.id))

        assert result.mode == SyncMode.INITIALIZE
        assert (result.window_start, result.window_end) == (D1, D3)
        assert store.get_week(user.id, D1).steps == 25000
        assert store.get_month(user.id, 2024, 1).steps == 25000
        assert store.get_year(user.id, 2024).steps == 25000

        highscores = store.get_highscores(user.id)
        assert highscores.most_steps_in_a_day == 15000
        assert highscores.most_steps_in_a_day_date == D2

    def test_cursor_advances_to_now(self, make_service, two_day_source, user, test_db: Session):
        """After success both high-water marks equal the sync time."""
        asyncio.run(make_service(two_day_source).initialize(user.id))
        test_db.refresh(user)

        assert user.last_processed_at == NOW
        assert user.highscores_last_updated == NOW
        assert user.first_health_record_at == datetime(2024, 1, 1)

    def test_falls_back_when_source_is_empty(self, make_service, static_source, user, settings):
        """Without raw data the configured fallback date bounds the window."""
        service = make_service(static_source(), now=datetime(2014, 9, 3, 8))
        result = asyncio.run(service.initialize(user.id))
        assert result.window_start == settings.earliest_data_fallback.date()

    def test_progress_is_monotonic_and_completes(self, make_service, two_day_source, user):
        """Phase events rise steadily and end at 100%."""
        events = []
        asyncio.run(make_service(two_day_source).initialize(user.id, ProgressReporter(events.append)))

        percentages = [e.percentage for e in events]
        assert percentages == sorted(percentages)
        assert percentages[-1] == 100.0
        assert events[-1].current_task == "Sync complete"

    def test_rollups_satisfy_sum_invariant(self, make_service, two_day_source, store, user, settings):
        """Every stored period equals the sum of its days."""
        asyncio.run(make_service(two_day_source).initialize(user.id))
        assert RollupEngine(store, settings).verify(user.id) == {"weekly": 1, "monthly": 1, "yearly": 1}

    def test_unknown_user(self, make_service, two_day_source, test_db):
        """Syncing a missing user is a NotFoundError."""
        with pytest.raises(NotFoundError):
            asyncio.run(make_service(two_day_source).initialize(9999))


class TestIncrementalUpdate:
    """Cursor-bounded re-processing."""

    def test_empty_window_touches_nothing(self, make_service, two_day_source, store, user, test_db):
        """A cursor equal to now processes nothing and reports completion."""
        user.last_processed_at = NOW
        user.first_health_record_at = datetime(2024, 1, 1)
        test_db.commit()
        events = []

        result = asyncio.run(
            make_service(two_day_source).incremental_update(user.id, ProgressReporter(events.append))
        )

        assert result.up_to_date
        assert two_day_source.fetches == []
        assert store.count(DailyAnalytics, user.id) == 0
        assert store.get_highscores(user.id) is None
        assert events[-1].percentage == 100.0

    def test_reprocesses_from_the_boundary_day(self, make_service, two_day_source, store, user):
        """New data on the boundary day is picked up and rolled up."""
        asyncio.run(make_service(two_day_source).initialize(user.id))
        two_day_source.days[D3] = MetricBundle(steps=20000)

        service = make_service(two_day_source, now=NOW + timedelta(hours=2))
        result = asyncio.run(service.incremental_update(user.id))

        assert two_day_source.fetches[-1] == (D3, D3)
        assert result.counts.daily.updated == 1
        assert store.get_week(user.id, D1).steps == 45000
        highscores = store.get_highscores(user.id)
        assert (highscores.most_steps_in_a_day, highscores.most_steps_in_a_day_date) == (20000, D3)

    def test_fresh_cursor_starts_at_first_record(self, make_service, two_day_source, user):
        """A sentinel cursor never rescans from 1999."""
        asyncio.run(make_service(two_day_source).incremental_update(user.id))
        assert two_day_source.fetches == [(D1, D3)]

    def test_idempotent_without_new_data(self, make_service, two_day_source, store, user):
        """A second update with no new raw data leaves every record as it was."""
        asyncio.run(make_service(two_day_source).initialize(user.id))
        asyncio.run(make_service(two_day_source, now=NOW + timedelta(hours=1)).incremental_update(user.id))
        before = snapshot(store, user.id)

        asyncio.run(make_service(two_day_source, now=NOW + timedelta(hours=2)).incremental_update(user.id))

        assert snapshot(store, user.id) == before

    def test_highscores_never_regress(self, make_service, two_day_source, store, user):
        """A corrected, lower day keeps the earlier record."""
        asyncio.run(make_service(two_day_source).initialize(user.id))
        two_day_source.days[D2] = MetricBundle(steps=5000)

        asyncio.run(make_service(two_day_source, now=NOW + timedelta(hours=1)).initialize(user.id))

        assert store.get_day(user.id, D2).steps == 5000
        assert store.get_highscores(user.id).most_steps_in_a_day == 15000


class TestFailures:
    """Errors propagate and leave the cursor in place."""

    def test_source_unavailable_keeps_cursor(self, make_service, two_day_source, user, test_db):
        """A failed fetch aborts before any write."""
        two_day_source.fetch_daily_metrics = AsyncMock(
            side_effect=SourceUnavailableError("static", "device offline")
        )

        with pytest.raises(SourceUnavailableError):
            asyncio.run(make_service(two_day_source).incremental_update(user.id))

        test_db.refresh(user)
        assert user.last_processed_at == datetime(1999, 1, 1)

    def test_store_failure_aborts_remaining_phases(
        self, make_service, two_day_source, store, user, test_db, mocker
    ):
        """A write failure in the weekly phase stops the sync without advancing the cursor."""
        asyncio.run(make_service(two_day_source).initialize(user.id))
        mocker.patch.object(
            RollupEngine,
            "rollup_weeks",
            side_effect=StoreWriteError("rollup_weekly", "disk full"),
        )
        months = mocker.spy(RollupEngine, "rollup_months")
        two_day_source.days[D3] = MetricBundle(steps=1)

        later = NOW + timedelta(hours=3)
        with pytest.raises(StoreWriteError):
            asyncio.run(make_service(two_day_source, now=later).incremental_update(user.id))

        test_db.refresh(user)
        assert user.last_processed_at == NOW
        assert months.call_count == 0
        # The day phase had already committed
        assert store.get_day(user.id, D3).steps == 1

    def test_read_failure_rolls_back_and_keeps_cursor(
        self, make_service, two_day_source, user, test_db, mocker
    ):
        """A database error while reading days is rolled back and re-raised."""
        mocker.patch.object(
            AnalyticsStore,
            "all_days",
            side_effect=OperationalError("SELECT", {}, Exception("connection reset")),
        )
        rollback = mocker.spy(AnalyticsStore, "rollback")

        with pytest.raises(OperationalError):
            asyncio.run(make_service(two_day_source).initialize(user.id))

        assert rollback.call_count == 1
        test_db.refresh(user)
        assert user.last_processed_at == datetime(1999, 1, 1)

    def test_concurrent_sync_is_rejected(self, make_service, two_day_source, user):
        """A second sync for the same user fails fast while one is running."""

        async def run():
            lock = _user_lock(user.id)
            async with lock:
                await make_service(two_day_source).incremental_update(user.id)

        with pytest.raises(SyncInProgressError):
            asyncio.run(run())


class TestRefresh:
    """Composite refresh."""

    def test_refresh_updates_current_periods(self, make_service, two_day_source, store, user):
        """New data today updates this week, month and year only."""
        asyncio.run(make_service(two_day_source).initialize(user.id))
        two_day_source.days[D3] = MetricBundle(steps=3000, exercise_minutes=25)

        result = asyncio.run(make_service(two_day_source, now=NOW + timedelta(hours=1)).refresh(user.id))

        assert result.mode == SyncMode.REFRESH
        assert result.counts.weekly.updated == 1
        assert store.get_week(user.id, D1).steps == 28000
        assert store.get_highscores(user.id).most_exercise_minutes_in_a_day == 25

    def test_refresh_after_a_gap_rolls_up_the_whole_window(
        self, make_service, two_day_source, store, user, settings
    ):
        """Weeks between the last sync and today are rebuilt too."""
        asyncio.run(make_service(two_day_source).initialize(user.id))
        two_day_source.days[date(2024, 1, 10)] = MetricBundle(steps=7000)

        later = datetime(2024, 1, 20, 9, 0)
        asyncio.run(make_service(two_day_source, now=later).refresh(user.id))

        assert store.get_week(user.id, date(2024, 1, 8)).steps == 7000
        assert store.get_month(user.id, 2024, 1).steps == 32000
        RollupEngine(store, settings).verify(user.id)


class TestClearAnalytics:
    """Reset of derived data and the cursor."""

    def test_clear_then_initialize(self, make_service, two_day_source, store, user, test_db):
        """Clearing removes analytics and a new initialize rebuilds them."""
        service = make_service(two_day_source)
        asyncio.run(service.initialize(user.id))

        deleted = asyncio.run(service.clear_analytics(user.id))

        assert deleted["daily_analytics"] == 3
        assert store.count(WeeklyAnalytics, user.id) == 0
        test_db.refresh(user)
        assert user.last_processed_at == datetime(1999, 1, 1)
        assert user.first_health_record_at == datetime(1999, 1, 1)

        asyncio.run(service.initialize(user.id))
        assert store.get_week(user.id, D1).steps == 25000
