"""
Raw sample ingestion.

Accepts batches of samples as delivered by a device export, normalizes type
and sleep-stage names, parses timestamps to naive UTC and stores each sample
once, keyed by a content hash.
"""

import hashlib
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.exceptions import NotFoundError, StoreWriteError
from app.core.logging import get_logger
from app.models import HealthSample, User
from app.services.periods import to_naive_utc
from app.services.sources.samples import QUANTITY_TYPES, SLEEP_TYPE

logger = get_logger(__name__)

# Export / HealthKit names -> canonical sample types
SAMPLE_TYPE_MAP = {
    "step_count": "step_count",
    "stepCount": "step_count",
    "HKQuantityTypeIdentifierStepCount": "step_count",
    "distance_cycling": "distance_cycling",
    "distanceCycling": "distance_cycling",
    "cycling_distance": "distance_cycling",
    "HKQuantityTypeIdentifierDistanceCycling": "distance_cycling",
    "distance_walking": "distance_walking",
    "walking_distance": "distance_walking",
    "walking_running_distance": "distance_walking",
    "distanceWalkingRunning": "distance_walking",
    "HKQuantityTypeIdentifierDistanceWalkingRunning": "distance_walking",
    "distance_running": "distance_running",
    "running_distance": "distance_running",
    "distance_swimming": "distance_swimming",
    "swimming_distance": "distance_swimming",
    "distanceSwimming": "distance_swimming",
    "HKQuantityTypeIdentifierDistanceSwimming": "distance_swimming",
    "swimming_stroke_count": "swimming_stroke_count",
    "swimmingStrokeCount": "swimming_stroke_count",
    "HKQuantityTypeIdentifierSwimmingStrokeCount": "swimming_stroke_count",
    "distance_cross_country_skiing": "distance_cross_country_skiing",
    "distanceCrossCountrySkiing": "distance_cross_country_skiing",
    "HKQuantityTypeIdentifierDistanceCrossCountrySkiing": "distance_cross_country_skiing",
    "distance_downhill_snow_sports": "distance_downhill_snow_sports",
    "distanceDownhillSnowSports": "distance_downhill_snow_sports",
    "HKQuantityTypeIdentifierDistanceDownhillSnowSports": "distance_downhill_snow_sports",
    "active_energy": "active_energy",
    "activeEnergyBurned": "active_energy",
    "HKQuantityTypeIdentifierActiveEnergyBurned": "active_energy",
    "basal_energy": "basal_energy",
    "basal_energy_burned": "basal_energy",
    "basalEnergyBurned": "basal_energy",
    "HKQuantityTypeIdentifierBasalEnergyBurned": "basal_energy",
    "heart_rate": "heart_rate",
    "heartRate": "heart_rate",
    "HKQuantityTypeIdentifierHeartRate": "heart_rate",
    "flights_climbed": "flights_climbed",
    "flightsClimbed": "flights_climbed",
    "HKQuantityTypeIdentifierFlightsClimbed": "flights_climbed",
    "exercise_time": "exercise_time",
    "apple_exercise_time": "exercise_time",
    "appleExerciseTime": "exercise_time",
    "HKQuantityTypeIdentifierAppleExerciseTime": "exercise_time",
    "stand_time": "stand_time",
    "apple_stand_time": "stand_time",
    "appleStandTime": "stand_time",
    "HKQuantityTypeIdentifierAppleStandTime": "stand_time",
    "sleep_analysis": "sleep_analysis",
    "sleepAnalysis": "sleep_analysis",
    "HKCategoryTypeIdentifierSleepAnalysis": "sleep_analysis",
}

SLEEP_STAGE_MAP = {
    "inBed": "in_bed",
    "in_bed": "in_bed",
    "asleep": "asleep_unspecified",
    "asleepUnspecified": "asleep_unspecified",
    "asleep_unspecified": "asleep_unspecified",
    "asleepCore": "asleep_core",
    "core": "asleep_core",
    "asleep_core": "asleep_core",
    "asleepDeep": "asleep_deep",
    "deep": "asleep_deep",
    "asleep_deep": "asleep_deep",
    "asleepREM": "asleep_rem",
    "rem": "asleep_rem",
    "asleep_rem": "asleep_rem",
    "awake": "awake",
}

KNOWN_TYPES = set(QUANTITY_TYPES) | {SLEEP_TYPE}


@dataclass
class IngestResult:
    records_processed: int = 0
    records_inserted: int = 0
    records_duplicate: int = 0
    records_skipped: int = 0
    data_start: Optional[datetime] = None
    data_end: Optional[datetime] = None
    processing_time_ms: float = 0.0


def parse_date(date_str: Any) -> Optional[datetime]:
    """Parse the timestamp formats seen in exports into naive UTC."""
    if not date_str:
        return None
    if isinstance(date_str, datetime):
        return to_naive_utc(date_str)

    formats = [
        "%Y-%m-%d %H:%M:%S %z",
        "%Y-%m-%dT%H:%M:%S%z",
        "%Y-%m-%dT%H:%M:%S.%f%z",
        "%Y-%m-%dT%H:%M:%SZ",
        "%Y-%m-%dT%H:%M:%S.%fZ",
        "%Y-%m-%dT%H:%M:%S",
        "%Y-%m-%d %H:%M:%S",
        "%Y-%m-%d",
    ]

    for fmt in formats:
        try:
            return to_naive_utc(datetime.strptime(str(date_str), fmt))
        except ValueError:
            continue

    logger.warning("sample_date_parse_failed", date_str=date_str)
    return None


def sample_hash(
    user_id: int,
    sample_type: str,
    start_at: datetime,
    end_at: datetime,
    value: float,
    source_id: str,
    sleep_stage: Optional[str],
) -> str:
    hash_input = (
        f"{user_id}:{sample_type}:{start_at.isoformat()}:{end_at.isoformat()}:"
        f"{value}:{source_id}:{sleep_stage or ''}"
    )
    return hashlib.sha256(hash_input.encode()).hexdigest()


class SampleIngestService:
    """Stores raw samples for one user, skipping exact duplicates."""

    def __init__(self, db: Session):
        self.db = db

    def ingest(self, user_id: int, samples: list[dict[str, Any]]) -> IngestResult:
        started = time.perf_counter()
        if self.db.query(User.id).filter(User.id == user_id).first() is None:
            raise NotFoundError("User", user_id)

        result = IngestResult()
        seen: set[str] = set()

        for item in samples:
            result.records_processed += 1
            sample = self._build_sample(user_id, item)
            if sample is None:
                result.records_skipped += 1
                continue

            if sample.record_hash in seen or self._exists(sample.record_hash):
                result.records_duplicate += 1
                continue

            seen.add(sample.record_hash)
            self.db.add(sample)
            result.records_inserted += 1
            result.data_start = min(filter(None, (result.data_start, sample.start_at)))
            result.data_end = max(filter(None, (result.data_end, sample.end_at)))

        try:
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error("sample_ingest_failed", user_id=user_id, error=str(e))
            raise StoreWriteError("ingest_samples", str(e)) from e

        result.processing_time_ms = (time.perf_counter() - started) * 1000
        logger.info(
            "samples_ingested",
            user_id=user_id,
            records_processed=result.records_processed,
            records_inserted=result.records_inserted,
            records_duplicate=result.records_duplicate,
            records_skipped=result.records_skipped,
        )
        return result

    def _exists(self, record_hash: str) -> bool:
        return (
            self.db.query(HealthSample.id).filter(HealthSample.record_hash == record_hash).first()
            is not None
        )

    def _build_sample(self, user_id: int, data: dict[str, Any]) -> Optional[HealthSample]:
        """Normalize one payload item, or None when it cannot be used."""
        raw_type = data.get("type", data.get("name", ""))
        sample_type = SAMPLE_TYPE_MAP.get(raw_type, raw_type)
        if sample_type not in KNOWN_TYPES:
            logger.debug("sample_type_skipped", sample_type=raw_type)
            return None

        start_at = parse_date(data.get("start", data.get("startDate", data.get("date"))))
        end_at = parse_date(data.get("end", data.get("endDate"))) or start_at
        if not start_at or not end_at or end_at < start_at:
            return None

        sleep_stage = None
        if sample_type == SLEEP_TYPE:
            stage = data.get("stage", data.get("value", "asleep"))
            sleep_stage = SLEEP_STAGE_MAP.get(stage, stage)
            value = (end_at - start_at).total_seconds() / 60
        else:
            value = data.get("value", data.get("qty"))
            try:
                value = float(value)
            except (ValueError, TypeError):
                return None

        source_id = data.get("source", data.get("sourceName")) or "unknown"
        unit = data.get("unit", data.get("units"))

        return HealthSample(
            user_id=user_id,
            sample_type=sample_type,
            value=value,
            unit=unit,
            start_at=start_at,
            end_at=end_at,
            source_id=source_id,
            sleep_stage=sleep_stage,
            record_hash=sample_hash(
                user_id, sample_type, start_at, end_at, value, source_id, sleep_stage
            ),
            created_at=datetime.utcnow(),
        )
