"""Abstract raw data source consumed by the synchronization engine."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Optional

from app.services.metrics import MetricBundle
from app.services.progress import ProgressReporter


@dataclass
class FetchResult:
    """Per-day bundles for a fetch window plus any degraded-type warnings."""

    days: dict[date, MetricBundle]
    warnings: list[str] = field(default_factory=list)

    @property
    def empty_days(self) -> int:
        return sum(1 for bundle in self.days.values() if bundle.is_zero())


class RawDataSource(ABC):
    """Delivers normalized daily metric bundles for one user.

    Implementations own raw-data normalization, including unit conversion and
    sleep source conflict resolution.
    """

    name: str = "base"

    @abstractmethod
    async def fetch_daily_metrics(
        self,
        user_id: int,
        start: date,
        end: date,
        progress: Optional[ProgressReporter] = None,
    ) -> FetchResult:
        """Return one bundle per calendar day in [start, end].

        Days without data map to the zero bundle. Raises SourceUnavailableError
        when the source cannot be queried at all.
        """

    @abstractmethod
    async def earliest_available_date(self, user_id: int) -> Optional[datetime]:
        """Earliest instant any raw data exists for the user, or None."""
