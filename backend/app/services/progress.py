"""Phase-weighted progress reporting for long-running sync operations."""

import asyncio
from dataclasses import dataclass
from typing import Any, Callable, Optional

from app.core.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class Progress:
    """One progress event: overall percentage plus what is happening now."""

    percentage: float
    current_task: str

    def to_dict(self) -> dict[str, Any]:
        return {"percentage": round(self.percentage, 2), "current_task": self.current_task}


ProgressSink = Callable[[Progress], None]


class _Channel:
    """Shared state of a reporter tree: the sink and the high-water mark."""

    def __init__(self, sink: Optional[ProgressSink]):
        self.sink = sink
        self.last: Optional[Progress] = None

    def emit(self, percentage: float, task: str) -> None:
        percentage = min(100.0, max(0.0, percentage))
        if self.last is not None:
            percentage = max(percentage, self.last.percentage)
        self.last = Progress(percentage, task)

        if self.sink is None:
            return
        try:
            self.sink(self.last)
        except Exception as e:
            # A broken consumer stops receiving events; the engine keeps going.
            logger.warning("progress_sink_failed", error=str(e))
            self.sink = None


class ProgressReporter:
    """Reports percentages in its own 0-100 scale, rescaled into a parent range.

    The root reporter covers [0, 100]. ``phase(start, end)`` returns a child
    whose own 0-100 is mapped linearly onto [start, end] of the parent, so a
    sub-phase can report its internal progress without knowing where it sits
    in the overall operation. Reported values never decrease.
    """

    def __init__(self, sink: Optional[ProgressSink] = None):
        self._channel = _Channel(sink)
        self._low = 0.0
        self._high = 100.0

    def _child(self, low: float, high: float) -> "ProgressReporter":
        child = ProgressReporter.__new__(ProgressReporter)
        child._channel = self._channel
        child._low = low
        child._high = high
        return child

    def _absolute(self, percentage: float) -> float:
        percentage = min(100.0, max(0.0, percentage))
        return self._low + (self._high - self._low) * percentage / 100.0

    def phase(self, start: float, end: float) -> "ProgressReporter":
        return self._child(self._absolute(start), self._absolute(end))

    def report(self, percentage: float, task: str) -> None:
        self._channel.emit(self._absolute(percentage), task)

    def step(self, done: int, total: int, task: str) -> None:
        """Report ``done`` of ``total`` units of this phase's work."""
        self.report(100.0 * done / total if total else 100.0, task)

    def complete(self, task: str) -> None:
        self.report(100.0, task)

    @property
    def last(self) -> Optional[Progress]:
        return self._channel.last


def queue_sink(queue: "asyncio.Queue[Any]") -> ProgressSink:
    """A sink that writes events into an asyncio queue for a streaming consumer."""

    def _put(progress: Progress) -> None:
        queue.put_nowait(progress)

    return _put
