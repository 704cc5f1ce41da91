"""Global exception handlers for FastAPI application."""

from fastapi import Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError as PydanticValidationError

from app.core.exceptions import HealthStatsException
from app.core.logging import get_logger

logger = get_logger(__name__)


def error_body(code: str, message: str, details: dict) -> dict:
    return {"error": {"code": code, "message": message, "details": details}}


async def healthstats_exception_handler(
    request: Request, exc: HealthStatsException
) -> JSONResponse:
    """Handle all HealthStatsException subclasses."""
    log = logger.warning if exc.status_code < 500 else logger.error
    log(
        "healthstats_exception",
        error_code=exc.code,
        status_code=exc.status_code,
        details=exc.details,
        error=exc.message,
    )
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(exc.code, exc.message, exc.details),
    )


async def pydantic_validation_handler(
    request: Request, exc: PydanticValidationError
) -> JSONResponse:
    """Handle Pydantic validation errors with consistent format."""
    errors = []
    for error in exc.errors():
        field = ".".join(str(loc) for loc in error["loc"])
        errors.append({"field": field, "message": error["msg"]})

    logger.warning("validation_error", errors=errors)

    return JSONResponse(
        status_code=422,
        content=error_body("VALIDATION_ERROR", "Request validation failed", {"errors": errors}),
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle unexpected exceptions."""
    logger.exception("unhandled_exception", error=str(exc))
    return JSONResponse(
        status_code=500,
        content=error_body("INTERNAL_ERROR", "An unexpected error occurred", {}),
    )
