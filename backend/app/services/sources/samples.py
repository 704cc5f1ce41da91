"""
Raw data source backed by the health_samples table.

Turns stored sensor samples into one MetricBundle per local calendar day:
units are normalized, quantity samples are bucketed by the day their end
instant falls on, and sleep samples by the day they start on. Overlapping
sleep from several devices is resolved by a ranked source list.
"""

from collections import defaultdict
from datetime import date, datetime
from typing import Callable, Optional

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.config import Settings, get_settings
from app.core.exceptions import SourceTypeUnsupportedError, SourceUnavailableError
from app.core.logging import get_logger
from app.models import HealthSample
from app.services.metrics import FIELD_TYPES, MetricBundle
from app.services.periods import day_key, end_of_day, iter_days, start_of_day
from app.services.progress import ProgressReporter
from app.services.sources.base import FetchResult, RawDataSource

logger = get_logger(__name__)

# Unit conversion factors into the stored unit
DISTANCE_UNITS = {"m": 1.0, "km": 1000.0, "mi": 1609.344, "ft": 0.3048, "yd": 0.9144}
ENERGY_UNITS = {"kcal": 1.0, "Cal": 1.0, "kJ": 1 / 4.184}
DURATION_UNITS = {"min": 1.0, "s": 1 / 60, "h": 60.0}
COUNT_UNITS = {"": 1.0, "count": 1.0, "steps": 1.0, "strokes": 1.0, "floors": 1.0}
HEART_RATE_UNITS = {"": 1.0, "count/min": 1.0, "bpm": 1.0}

UNIT_TABLES = {
    "count": COUNT_UNITS,
    "distance": DISTANCE_UNITS,
    "energy": ENERGY_UNITS,
    "duration": DURATION_UNITS,
    "heart_rate": HEART_RATE_UNITS,
}

# sample_type -> (metric field, unit kind)
QUANTITY_TYPES: dict[str, tuple[str, str]] = {
    "step_count": ("steps", "count"),
    "distance_cycling": ("cycling_distance", "distance"),
    "distance_walking": ("walking_distance", "distance"),
    "distance_running": ("running_distance", "distance"),
    "distance_swimming": ("swimming_distance", "distance"),
    "swimming_stroke_count": ("swimming_strokes", "count"),
    "distance_cross_country_skiing": ("cross_country_skiing_distance", "distance"),
    "distance_downhill_snow_sports": ("downhill_snow_sports_distance", "distance"),
    "active_energy": ("energy_active", "energy"),
    "basal_energy": ("energy_resting", "energy"),
    "heart_rate": ("heartbeats", "heart_rate"),
    "flights_climbed": ("stairs_climbed", "count"),
    "exercise_time": ("exercise_minutes", "duration"),
    "stand_time": ("stand_minutes", "duration"),
}

SLEEP_TYPE = "sleep_analysis"

# Sleep stage -> metric fields the stage's minutes count towards
SLEEP_STAGES: dict[str, tuple[str, ...]] = {
    "in_bed": ("sleep_total",),
    "asleep_unspecified": ("sleep_total",),
    "asleep_core": ("sleep_total",),
    "asleep_deep": ("sleep_total", "sleep_deep"),
    "asleep_rem": ("sleep_total", "sleep_rem"),
    "awake": (),
}

DayTotals = dict[date, dict[str, float]]


def _minutes(sample: HealthSample) -> float:
    return max(0.0, (sample.end_at - sample.start_at).total_seconds() / 60)


def _truncate(value: float) -> int:
    # Round off float noise before truncating (1800 s is 30 min, not 29)
    return int(round(value, 6))


def convert(sample_type: str, kind: str, value: float, unit: Optional[str]) -> float:
    """Convert one sample value into the stored unit for its kind."""
    factors = UNIT_TABLES[kind]
    factor = factors.get(unit or "")
    if factor is None:
        raise SourceTypeUnsupportedError(sample_type, f"unknown unit '{unit}'")
    return value * factor


def sample_contribution(sample_type: str, sample: HealthSample) -> float:
    """The amount one quantity sample adds to its day's metric."""
    metric, kind = QUANTITY_TYPES[sample_type]
    value = convert(sample_type, kind, sample.value, sample.unit)
    if kind == "heart_rate":
        # beats per minute over the sample's duration
        return _truncate(value * _minutes(sample))
    if FIELD_TYPES[metric] is int:
        return _truncate(value)
    return value


def pick_sleep_source(sources: set[str], priority: list[str]) -> str:
    """Highest ranked source present; unranked sources fall back to name order."""
    for source_id in priority:
        if source_id in sources:
            return source_id
    return sorted(sources)[0]


class SampleStoreSource(RawDataSource):
    """Reads a user's stored samples through the SQLAlchemy session."""

    name = "health_samples"

    def __init__(self, db: Session, settings: Optional[Settings] = None):
        self.db = db
        self.settings = settings or get_settings()

    def _query(self, loader: Callable[[], list]) -> list:
        try:
            return loader()
        except SQLAlchemyError as e:
            logger.error("source_query_failed", source=self.name, error=str(e))
            raise SourceUnavailableError(self.name, str(e)) from e

    def _samples(
        self, user_id: int, sample_type: str, column, lower: datetime, upper: datetime
    ) -> list[HealthSample]:
        return self._query(
            lambda: self.db.query(HealthSample)
            .filter(
                HealthSample.user_id == user_id,
                HealthSample.sample_type == sample_type,
                column >= lower,
                column < upper,
            )
            .all()
        )

    # =========================================================================
    # Per-type totals
    # =========================================================================

    def _quantity_totals(
        self, user_id: int, sample_type: str, lower: datetime, upper: datetime
    ) -> DayTotals:
        metric, _ = QUANTITY_TYPES[sample_type]
        totals: DayTotals = defaultdict(lambda: defaultdict(float))
        for sample in self._samples(user_id, sample_type, HealthSample.end_at, lower, upper):
            day = day_key(sample.end_at, self.settings.tz)
            totals[day][metric] += sample_contribution(sample_type, sample)
        return totals

    def _sleep_totals(self, user_id: int, lower: datetime, upper: datetime) -> DayTotals:
        by_day: dict[date, dict[str, list[HealthSample]]] = defaultdict(lambda: defaultdict(list))
        for sample in self._samples(user_id, SLEEP_TYPE, HealthSample.start_at, lower, upper):
            day = day_key(sample.start_at, self.settings.tz)
            by_day[day][sample.source_id].append(sample)

        totals: DayTotals = defaultdict(lambda: defaultdict(float))
        for day, per_source in by_day.items():
            chosen = pick_sleep_source(set(per_source), self.settings.sleep_source_priority)
            if len(per_source) > 1:
                logger.debug(
                    "sleep_sources_resolved",
                    day=day.isoformat(),
                    chosen=chosen,
                    discarded=sorted(set(per_source) - {chosen}),
                )
            for sample in per_source[chosen]:
                minutes = int(_minutes(sample))
                for metric in SLEEP_STAGES.get(sample.sleep_stage or "asleep_unspecified", ()):
                    totals[day][metric] += minutes
        return totals

    # =========================================================================
    # RawDataSource
    # =========================================================================

    async def fetch_daily_metrics(
        self,
        user_id: int,
        start: date,
        end: date,
        progress: Optional[ProgressReporter] = None,
    ) -> FetchResult:
        progress = progress or ProgressReporter()
        tz = self.settings.tz
        lower, upper = start_of_day(start, tz), end_of_day(end, tz)

        merged: DayTotals = defaultdict(dict)
        warnings: list[str] = []
        sample_types = [*QUANTITY_TYPES, SLEEP_TYPE]

        for index, sample_type in enumerate(sample_types, start=1):
            try:
                if sample_type == SLEEP_TYPE:
                    totals = self._sleep_totals(user_id, lower, upper)
                else:
                    totals = self._quantity_totals(user_id, sample_type, lower, upper)
            except SourceTypeUnsupportedError as e:
                # The type is recorded as zero; the remaining types still count
                logger.warning(
                    "source_type_unsupported",
                    user_id=user_id,
                    sample_type=e.sample_type,
                    error=e.message,
                )
                warnings.append(e.message)
                totals = {}

            for day, values in totals.items():
                merged[day].update(values)
            progress.step(index, len(sample_types), f"Fetching {sample_type}")

        days = {
            day: MetricBundle(
                **{name: FIELD_TYPES[name](value) for name, value in merged.get(day, {}).items()}
            )
            for day in iter_days(start, end)
        }
        logger.info(
            "source_fetch_completed",
            user_id=user_id,
            start=start.isoformat(),
            end=end.isoformat(),
            days=len(days),
            warnings=len(warnings),
        )
        return FetchResult(days=days, warnings=warnings)

    async def earliest_available_date(self, user_id: int) -> Optional[datetime]:
        rows = self._query(
            lambda: self.db.query(func.min(HealthSample.start_at))
            .filter(HealthSample.user_id == user_id)
            .all()
        )
        return rows[0][0] if rows else None
