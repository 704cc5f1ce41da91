"""Tests for raw sample ingestion."""

from datetime import datetime

import pytest
from sqlalchemy.exc import OperationalError

from app.core.exceptions import NotFoundError, StoreWriteError
from app.models import HealthSample
from app.services.ingest import SampleIngestService, parse_date


@pytest.fixture
def service(test_db) -> SampleIngestService:
    return SampleIngestService(test_db)


class TestParseDate:
    """Timestamp formats seen in exports."""

    def test_offset_is_converted_to_utc(self):
        assert parse_date("2024-03-05 08:15:00 +0100") == datetime(2024, 3, 5, 7, 15)

    def test_zulu_suffix(self):
        assert parse_date("2024-03-05T08:15:00Z") == datetime(2024, 3, 5, 8, 15)

    def test_bare_date(self):
        assert parse_date("2024-03-05") == datetime(2024, 3, 5)

    def test_garbage_is_none(self):
        assert parse_date("yesterday-ish") is None
        assert parse_date(None) is None


class TestIngest:
    """Storing sample batches."""

    def test_aliases_are_normalized(self, service, test_db, user):
        """Export type and stage names map onto canonical names."""
        result = service.ingest(
            user.id,
            [
                {
                    "type": "HKQuantityTypeIdentifierStepCount",
                    "startDate": "2024-03-05 08:00:00 +0000",
                    "endDate": "2024-03-05 08:30:00 +0000",
                    "value": "1200",
                    "sourceName": "Watch",
                },
                {
                    "name": "sleepAnalysis",
                    "start": "2024-03-05T00:00:00Z",
                    "end": "2024-03-05T01:30:00Z",
                    "stage": "asleepDeep",
                },
            ],
        )

        assert result.records_inserted == 2
        steps, sleep = test_db.query(HealthSample).order_by(HealthSample.sample_type).all()[::-1]
        assert (steps.sample_type, steps.value, steps.source_id) == ("step_count", 1200.0, "Watch")
        assert (sleep.sample_type, sleep.sleep_stage, sleep.value) == (
            "sleep_analysis",
            "asleep_deep",
            90.0,
        )
        assert result.data_start == datetime(2024, 3, 5, 0, 0)
        assert result.data_end == datetime(2024, 3, 5, 8, 30)

    def test_duplicates_are_skipped(self, service, test_db, user):
        """The same sample is stored once, within a batch and across batches."""
        sample = {
            "type": "step_count",
            "start": "2024-03-05T08:00:00Z",
            "end": "2024-03-05T08:30:00Z",
            "value": 500,
        }

        first = service.ingest(user.id, [sample, dict(sample)])
        second = service.ingest(user.id, [sample])

        assert (first.records_inserted, first.records_duplicate) == (1, 1)
        assert (second.records_inserted, second.records_duplicate) == (0, 1)
        assert test_db.query(HealthSample).count() == 1

    def test_unusable_items_are_skipped(self, service, user):
        """Unknown types, bad values and inverted intervals are counted, not stored."""
        result = service.ingest(
            user.id,
            [
                {"type": "blood_glucose", "start": "2024-03-05", "value": 5},
                {"type": "step_count", "start": "2024-03-05", "value": "many"},
                {
                    "type": "step_count",
                    "start": "2024-03-05T10:00:00Z",
                    "end": "2024-03-05T09:00:00Z",
                    "value": 5,
                },
                {"type": "step_count", "value": 5},
            ],
        )
        assert result.records_processed == 4
        assert result.records_skipped == 4
        assert result.records_inserted == 0

    def test_unknown_user(self, service):
        with pytest.raises(NotFoundError):
            service.ingest(4242, [])

    def test_commit_failure_is_store_write_error(self, service, test_db, user, mocker):
        mocker.patch.object(
            test_db, "commit", side_effect=OperationalError("INSERT", {}, Exception("locked"))
        )
        with pytest.raises(StoreWriteError):
            service.ingest(
                user.id,
                [{"type": "step_count", "start": "2024-03-05", "value": 1}],
            )
