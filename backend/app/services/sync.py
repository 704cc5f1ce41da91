"""
Synchronization service.

Drives the cursor protocol for one user: decide the raw re-fetch window from
the cursor, run the day/week/month/year rollups and the highscore pass over
it, and only then advance the cursor. A failure in any phase leaves the
cursor where it was, so the next call re-processes the same window.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, Callable, Optional

import structlog
from sqlalchemy.exc import SQLAlchemyError

from app.config import Settings, get_settings
from app.core.exceptions import HealthStatsException, NotFoundError, SyncInProgressError
from app.core.logging import bind_sync_context, get_logger
from app.models import User
from app.services.highscores import HighscoreChanges, HighscoreEngine
from app.services.periods import day_key, week_start
from app.services.progress import ProgressReporter
from app.services.rollup import RollupCounts, RollupEngine
from app.services.sources.base import RawDataSource
from app.services.store import AnalyticsStore
from app.services.users import reset_cursor

logger = get_logger(__name__)


class SyncMode(str, Enum):
    INITIALIZE = "initialize"
    INCREMENTAL = "incremental_update"
    REFRESH = "refresh"


# Share of the overall 0-100 progress range given to each phase
INITIALIZE_PHASES = {
    "fetch": (0, 10),
    "daily": (10, 40),
    "weekly": (40, 60),
    "monthly": (60, 75),
    "yearly": (75, 90),
    "highscores": (90, 95),
    "commit": (95, 100),
}

INCREMENTAL_PHASES = {
    "fetch": (0, 15),
    "daily": (15, 40),
    "weekly": (40, 60),
    "monthly": (60, 75),
    "yearly": (75, 85),
    "highscores": (85, 95),
    "commit": (95, 100),
}

REFRESH_PHASES = {
    "raw": (0, 30),
    "rollup": (30, 50),
    "highscores": (50, 80),
    "commit": (80, 100),
}

# Single in-flight sync per user
_user_locks: dict[int, asyncio.Lock] = {}


def _user_lock(user_id: int) -> asyncio.Lock:
    return _user_locks.setdefault(user_id, asyncio.Lock())


def is_sync_running(user_id: int) -> bool:
    lock = _user_locks.get(user_id)
    return lock is not None and lock.locked()


@dataclass
class SyncResult:
    """Outcome of one synchronization call."""

    user_id: int
    mode: SyncMode
    window_start: Optional[date] = None
    window_end: Optional[date] = None
    processed_until: Optional[datetime] = None
    up_to_date: bool = False
    counts: RollupCounts = field(default_factory=RollupCounts)
    highscores: HighscoreChanges = field(default_factory=HighscoreChanges)
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "user_id": self.user_id,
            "mode": self.mode.value,
            "window_start": self.window_start.isoformat() if self.window_start else None,
            "window_end": self.window_end.isoformat() if self.window_end else None,
            "processed_until": self.processed_until.isoformat() if self.processed_until else None,
            "up_to_date": self.up_to_date,
            "counts": self.counts.to_dict(),
            "highscores": self.highscores.to_dict(),
            "warnings": self.warnings,
        }


class SyncService:
    """Initialize, incrementally update or refresh one user's analytics."""

    def __init__(
        self,
        store: AnalyticsStore,
        source: RawDataSource,
        settings: Optional[Settings] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.store = store
        self.source = source
        self.settings = settings or get_settings()
        self.rollup = RollupEngine(store, self.settings)
        self.highscores = HighscoreEngine()
        # Naive UTC "now"
        self.clock = clock or datetime.utcnow

    # =========================================================================
    # Public operations
    # =========================================================================

    async def initialize(
        self, user_id: int, progress: Optional[ProgressReporter] = None
    ) -> SyncResult:
        """Full rebuild from the earliest raw data up to now."""
        return await self._locked(user_id, SyncMode.INITIALIZE, progress, self._initialize)

    async def incremental_update(
        self, user_id: int, progress: Optional[ProgressReporter] = None
    ) -> SyncResult:
        """Re-process [last_processed_at, now] and the highscores since their last pass."""
        return await self._locked(user_id, SyncMode.INCREMENTAL, progress, self._incremental)

    async def refresh(
        self, user_id: int, progress: Optional[ProgressReporter] = None
    ) -> SyncResult:
        """Incremental raw update, current-period rollup and incremental highscores."""
        return await self._locked(user_id, SyncMode.REFRESH, progress, self._refresh)

    async def clear_analytics(self, user_id: int) -> dict[str, int]:
        """Delete every derived record and reset the cursor to the sentinel."""
        lock = _user_lock(user_id)
        if lock.locked():
            raise SyncInProgressError(user_id)
        async with lock:
            user = self._get_user(user_id)
            deleted = self.store.clear_analytics(user_id)
            reset_cursor(user, self.settings.cursor_sentinel)
            self.store.commit("clear_analytics")
            logger.info("analytics_cleared", user_id=user_id, deleted=deleted)
            return deleted

    async def set_first_health_record(self, user: User) -> datetime:
        """Re-derive the lower bound of all raw data from the source."""
        earliest = await self.source.earliest_available_date(user.id)
        if earliest is None:
            earliest = self.settings.earliest_data_fallback
            logger.info("first_health_record_fallback", user_id=user.id, fallback=earliest)
        user.first_health_record_at = earliest
        return earliest

    # =========================================================================
    # Locking
    # =========================================================================

    async def _locked(self, user_id, mode, progress, operation) -> SyncResult:
        lock = _user_lock(user_id)
        if lock.locked():
            logger.warning("sync_rejected_in_progress", user_id=user_id, mode=mode.value)
            raise SyncInProgressError(user_id)

        async with lock:
            bind_sync_context(user_id, mode.value)
            try:
                user = self._get_user(user_id)
                logger.info("sync_started")
                result = await operation(user, progress or ProgressReporter())
            except HealthStatsException as e:
                logger.error("sync_failed", code=e.code, error=e.message)
                raise
            except SQLAlchemyError as e:
                # Unwrapped read failure; drop whatever the session had pending
                self.store.rollback()
                logger.error("sync_failed", code="STORE_READ_FAILURE", error=str(e))
                raise
            else:
                logger.info(
                    "sync_completed",
                    up_to_date=result.up_to_date,
                    counts=result.counts.to_dict(),
                    warnings=len(result.warnings),
                )
                return result
            finally:
                structlog.contextvars.unbind_contextvars("user_id", "sync_mode")

    def _get_user(self, user_id: int) -> User:
        user = self.store.get_user(user_id)
        if user is None:
            raise NotFoundError("User", user_id)
        return user

    # =========================================================================
    # Modes
    # =========================================================================

    def _is_sentinel(self, instant: datetime) -> bool:
        return instant <= self.settings.cursor_sentinel

    async def _initialize(self, user: User, progress: ProgressReporter) -> SyncResult:
        now = self.clock()
        await self.set_first_health_record(user)
        return await self._process_window(
            user,
            SyncMode.INITIALIZE,
            user.first_health_record_at,
            now,
            progress,
            INITIALIZE_PHASES,
            full_highscores=True,
        )

    async def _incremental(self, user: User, progress: ProgressReporter) -> SyncResult:
        now = self.clock()
        if self._is_sentinel(user.first_health_record_at):
            await self.set_first_health_record(user)
        lower = max(user.last_processed_at, user.first_health_record_at)
        if lower >= now:
            return self._up_to_date(user, SyncMode.INCREMENTAL, progress)

        return await self._process_window(
            user,
            SyncMode.INCREMENTAL,
            lower,
            now,
            progress,
            INCREMENTAL_PHASES,
            full_highscores=False,
        )

    async def _refresh(self, user: User, progress: ProgressReporter) -> SyncResult:
        now = self.clock()
        if self._is_sentinel(user.first_health_record_at):
            await self.set_first_health_record(user)
        lower = max(user.last_processed_at, user.first_health_record_at)
        if lower >= now:
            return self._up_to_date(user, SyncMode.REFRESH, progress)

        tz = self.settings.tz
        start_day, today = day_key(lower, tz), day_key(now, tz)
        result = SyncResult(user.id, SyncMode.REFRESH, start_day, today)

        raw = progress.phase(*REFRESH_PHASES["raw"])
        fetched = await self.source.fetch_daily_metrics(
            user.id, start_day, today, raw.phase(0, 50)
        )
        result.warnings = fetched.warnings
        result.counts.daily = self.rollup.upsert_days(
            user.id, fetched.days, raw.phase(50, 100), recorded_at=now
        )

        rollup = progress.phase(*REFRESH_PHASES["rollup"])
        if self._within_current_periods(start_day, today):
            counts = self.rollup.rollup_current_periods(user.id, today, rollup)
        else:
            # The window reaches back past the current week or month
            counts = self.rollup.rollup_window(
                user.id,
                start_day,
                today,
                weekly=rollup.phase(0, 40),
                monthly=rollup.phase(40, 75),
                yearly=rollup.phase(75, 100),
            )
        result.counts.weekly = counts.weekly
        result.counts.monthly = counts.monthly
        result.counts.yearly = counts.yearly

        result.highscores = self._highscore_pass(
            user, today, now, progress.phase(*REFRESH_PHASES["highscores"]), full=False
        )
        self._commit_cursor(user, now, progress.phase(*REFRESH_PHASES["commit"]))
        result.processed_until = now
        return result

    def _within_current_periods(self, start_day: date, today: date) -> bool:
        first_weekday = self.settings.first_weekday
        return week_start(start_day, first_weekday) == week_start(today, first_weekday) and (
            start_day.year,
            start_day.month,
        ) == (today.year, today.month)

    def _up_to_date(self, user: User, mode: SyncMode, progress: ProgressReporter) -> SyncResult:
        logger.info(
            "sync_window_empty",
            last_processed_at=user.last_processed_at.isoformat(),
        )
        progress.complete("Already up to date")
        return SyncResult(user.id, mode, up_to_date=True, processed_until=user.last_processed_at)

    # =========================================================================
    # Phases
    # =========================================================================

    async def _process_window(
        self,
        user: User,
        mode: SyncMode,
        lower: datetime,
        now: datetime,
        progress: ProgressReporter,
        phases: dict[str, tuple[int, int]],
        full_highscores: bool,
    ) -> SyncResult:
        tz = self.settings.tz
        start_day, end_day = day_key(lower, tz), day_key(now, tz)
        result = SyncResult(user.id, mode, start_day, end_day)
        logger.info("sync_window", start=start_day.isoformat(), end=end_day.isoformat())

        fetched = await self.source.fetch_daily_metrics(
            user.id, start_day, end_day, progress.phase(*phases["fetch"])
        )
        result.warnings = fetched.warnings

        result.counts.daily = self.rollup.upsert_days(
            user.id, fetched.days, progress.phase(*phases["daily"]), recorded_at=now
        )
        result.counts.weekly = self.rollup.rollup_weeks(
            user.id, start_day, end_day, progress.phase(*phases["weekly"]), recorded_at=now
        )
        result.counts.monthly = self.rollup.rollup_months(
            user.id, start_day, end_day, progress.phase(*phases["monthly"]), recorded_at=now
        )
        result.counts.yearly = self.rollup.rollup_years(
            user.id, start_day, end_day, progress.phase(*phases["yearly"]), recorded_at=now
        )

        result.highscores = self._highscore_pass(
            user, end_day, now, progress.phase(*phases["highscores"]), full=full_highscores
        )
        self._commit_cursor(user, now, progress.phase(*phases["commit"]))
        result.processed_until = now
        return result

    def _highscore_pass(
        self,
        user: User,
        end_day: date,
        now: datetime,
        progress: ProgressReporter,
        full: bool,
    ) -> HighscoreChanges:
        progress.report(0, "Updating highscores")
        all_days = self.store.all_days(user.id)
        if full:
            window_days = all_days
        else:
            since = max(user.highscores_last_updated, user.first_health_record_at)
            window_days = self.store.days_between(
                user.id, day_key(since, self.settings.tz), end_day
            )

        record = self.store.get_or_create_highscores(user.id)
        changes = self.highscores.update(record, window_days, all_days, now)
        self.store.commit("highscores")
        progress.complete("Highscores updated")
        return changes

    def _commit_cursor(self, user: User, now: datetime, progress: ProgressReporter) -> None:
        progress.report(0, "Saving sync state")
        user.last_processed_at = now
        user.highscores_last_updated = now
        self.store.commit("sync_cursor")
        logger.info("sync_cursor_advanced", processed_until=now.isoformat())
        progress.complete("Sync complete")
