"""Custom exception classes for HealthStats application."""

from typing import Any, Optional


class HealthStatsException(Exception):
    """Base exception for HealthStats application."""

    def __init__(
        self,
        message: str,
        code: str = "INTERNAL_ERROR",
        status_code: int = 500,
        details: Optional[dict[str, Any]] = None,
    ):
        self.message = message
        self.code = code
        self.status_code = status_code
        self.details = details or {}
        super().__init__(message)


class NotFoundError(HealthStatsException):
    """Resource not found error."""

    def __init__(self, resource: str, identifier: Any):
        super().__init__(
            message=f"{resource} not found: {identifier}",
            code="NOT_FOUND",
            status_code=404,
            details={"resource": resource, "identifier": str(identifier)},
        )


class ValidationError(HealthStatsException):
    """Input validation error."""

    def __init__(self, field: str, message: str):
        super().__init__(
            message=f"Validation error on {field}: {message}",
            code="VALIDATION_ERROR",
            status_code=422,
            details={"field": field},
        )


class SourceUnavailableError(HealthStatsException):
    """The raw data source cannot be queried at all."""

    def __init__(self, source: str, message: str):
        super().__init__(
            message=f"Raw data source unavailable ({source}): {message}",
            code="SOURCE_UNAVAILABLE",
            status_code=502,
            details={"source": source},
        )


class SourceTypeUnsupportedError(HealthStatsException):
    """A single metric type could not be fetched from the raw source."""

    def __init__(self, sample_type: str, message: str):
        super().__init__(
            message=f"Sample type {sample_type} unsupported: {message}",
            code="SOURCE_TYPE_UNSUPPORTED",
            status_code=502,
            details={"sample_type": sample_type},
        )
        self.sample_type = sample_type


class StoreWriteError(HealthStatsException):
    """Persisting analytics records failed."""

    def __init__(self, operation: str, message: str):
        super().__init__(
            message=f"Store write failed during {operation}: {message}",
            code="STORE_WRITE_FAILURE",
            status_code=500,
            details={"operation": operation},
        )


class InvariantViolationError(HealthStatsException):
    """A stored period record no longer equals the sum of its days."""

    def __init__(self, period: str, key: Any, fields: list[str]):
        super().__init__(
            message=f"{period} record {key} diverges from its daily records",
            code="INVARIANT_VIOLATION",
            status_code=500,
            details={"period": period, "key": str(key), "fields": fields},
        )


class SyncInProgressError(HealthStatsException):
    """A synchronization for this user is already running."""

    def __init__(self, user_id: int):
        super().__init__(
            message=f"Synchronization already in progress for user {user_id}",
            code="SYNC_IN_PROGRESS",
            status_code=409,
            details={"user_id": user_id},
        )
