import asyncio
import json
from typing import Awaitable, Callable

from fastapi import APIRouter, Depends, Query
from fastapi.responses import StreamingResponse

from app.api.deps import get_query_service, get_sync_service
from app.core.error_handlers import error_body
from app.core.exceptions import HealthStatsException
from app.core.logging import get_logger
from app.services.progress import ProgressReporter, queue_sink
from app.services.queries import AnalyticsQueryService
from app.services.sync import SyncResult, SyncService

logger = get_logger(__name__)

router = APIRouter()

SyncRun = Callable[[ProgressReporter], Awaitable[SyncResult]]

# Engine tasks outlive a disconnected client; keep them referenced until done
_running_tasks: set[asyncio.Task] = set()
_DONE = object()


def _finish(task: asyncio.Task) -> None:
    _running_tasks.discard(task)
    if not task.cancelled() and task.exception() is not None:
        logger.warning("sync_stream_task_failed", error=str(task.exception()))


def _line(payload: dict) -> str:
    return json.dumps(payload, default=str) + "\n"


def stream_sync(run: SyncRun) -> StreamingResponse:
    """Run a sync in its own task and stream its progress as NDJSON.

    One ``{"status": "progress", ...}`` line per event, then a terminal line with
    status ``completed`` (and the result) or ``failed`` (and the error).
    """

    async def generate():
        queue: asyncio.Queue = asyncio.Queue()
        reporter = ProgressReporter(queue_sink(queue))

        async def engine() -> SyncResult:
            try:
                return await run(reporter)
            finally:
                queue.put_nowait(_DONE)

        task = asyncio.create_task(engine())
        _running_tasks.add(task)
        task.add_done_callback(_finish)

        while True:
            event = await queue.get()
            if event is _DONE:
                break
            yield _line({"status": "progress", **event.to_dict()})

        try:
            result = await task
        except HealthStatsException as e:
            yield _line({"status": "failed", **error_body(e.code, e.message, e.details)})
        except Exception as e:
            # Headers are already sent, so the failure travels in the stream
            logger.exception("sync_stream_failed", error=str(e))
            yield _line(
                {"status": "failed", **error_body("INTERNAL_ERROR", "An unexpected error occurred", {})}
            )
        else:
            yield _line({"status": "completed", "result": result.to_dict()})

    return StreamingResponse(
        generate(),
        media_type="application/x-ndjson",
        headers={"Cache-Control": "no-cache"},
    )


async def _run(run: SyncRun, stream: bool):
    if stream:
        return stream_sync(run)
    result = await run(ProgressReporter())
    return {"status": "completed", "result": result.to_dict()}


@router.post("/{user_id}/initialize")
async def initialize(
    user_id: int,
    stream: bool = Query(False, description="Stream progress as NDJSON"),
    service: SyncService = Depends(get_sync_service),
):
    """Rebuild all analytics and highscores from the earliest raw data."""
    return await _run(lambda progress: service.initialize(user_id, progress), stream)


@router.post("/{user_id}/update")
async def incremental_update(
    user_id: int,
    stream: bool = Query(False, description="Stream progress as NDJSON"),
    service: SyncService = Depends(get_sync_service),
):
    """Re-process raw data since the last sync."""
    return await _run(lambda progress: service.incremental_update(user_id, progress), stream)


@router.post("/{user_id}/refresh")
async def refresh(
    user_id: int,
    stream: bool = Query(False, description="Stream progress as NDJSON"),
    service: SyncService = Depends(get_sync_service),
):
    """Incremental raw update limited to the current periods."""
    return await _run(lambda progress: service.refresh(user_id, progress), stream)


@router.post("/{user_id}/clear")
async def clear_analytics(user_id: int, service: SyncService = Depends(get_sync_service)):
    """Delete derived analytics and reset the sync cursor. Raw samples are kept."""
    deleted = await service.clear_analytics(user_id)
    return {"message": "Analytics cleared", "deleted": deleted}


@router.get("/{user_id}/status")
async def sync_status(
    user_id: int, queries: AnalyticsQueryService = Depends(get_query_service)
):
    """Cursor position, record counts and highest assigned ids."""
    return queries.sync_status(user_id)
