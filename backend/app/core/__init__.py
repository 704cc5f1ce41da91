from app.core.exceptions import (
    HealthStatsException,
    NotFoundError,
    ValidationError,
    SourceUnavailableError,
    SourceTypeUnsupportedError,
    StoreWriteError,
    InvariantViolationError,
    SyncInProgressError,
)

__all__ = [
    "HealthStatsException",
    "NotFoundError",
    "ValidationError",
    "SourceUnavailableError",
    "SourceTypeUnsupportedError",
    "StoreWriteError",
    "InvariantViolationError",
    "SyncInProgressError",
]
