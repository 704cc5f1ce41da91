"""Middleware for request logging and tracing."""

import re
import time
import uuid
from typing import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
import structlog

logger = structlog.get_logger(__name__)

# /api/users/{id}/..., /api/sync/{id}/..., /api/analytics/{id}/...
USER_PATH_PATTERN = re.compile(r"^/api/(?:users|sync|analytics)/(\d+)")


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Middleware that logs all HTTP requests with timing and context."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())[:8]

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            method=request.method,
            path=request.url.path,
        )
        match = USER_PATH_PATTERN.match(request.url.path)
        if match:
            structlog.contextvars.bind_contextvars(user_id=int(match.group(1)))

        start_time = time.perf_counter()
        quiet = request.url.path.startswith("/health")

        if not quiet:
            logger.info("request_started")

        try:
            response = await call_next(request)
        except Exception as e:
            logger.exception(
                "request_failed",
                duration_ms=round((time.perf_counter() - start_time) * 1000, 2),
                error=str(e),
            )
            raise

        if not quiet:
            logger.info(
                "request_completed",
                status_code=response.status_code,
                duration_ms=round((time.perf_counter() - start_time) * 1000, 2),
            )

        response.headers["X-Request-ID"] = request_id
        return response
