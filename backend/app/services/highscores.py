"""
Highscore Engine.

Running maxima over the daily series and the two longest-streak records.
Maxima are a max-fold, so any subset of days in any order can be supplied.
Streaks are always recomputed from the complete ordered day sequence.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Callable, Iterable, Optional, Sequence

from app.core.logging import get_logger
from app.models import HighscoreRecord

logger = get_logger(__name__)


@dataclass(frozen=True)
class TrackedMetric:
    """One personal record: the highscore column and how to read it off a day."""

    column: str
    read: Callable[[Any], float]


def _field(name: str) -> Callable[[Any], float]:
    return lambda day: getattr(day, name) or 0


TRACKED_METRICS: tuple[TrackedMetric, ...] = (
    TrackedMetric("most_steps_in_a_day", _field("steps")),
    TrackedMetric(
        "most_calories_in_a_day",
        lambda day: (day.energy_active or 0.0) + (day.energy_resting or 0.0),
    ),
    TrackedMetric("most_exercise_minutes_in_a_day", _field("exercise_minutes")),
    TrackedMetric("most_stand_minutes_in_a_day", _field("stand_minutes")),
    TrackedMetric("most_stairs_climbed_in_a_day", _field("stairs_climbed")),
    TrackedMetric("longest_walk", _field("walking_distance")),
    TrackedMetric("longest_run", _field("running_distance")),
    TrackedMetric("longest_bike_ride", _field("cycling_distance")),
    TrackedMetric("longest_swim", _field("swimming_distance")),
    TrackedMetric("longest_cross_country_ski", _field("cross_country_skiing_distance")),
    TrackedMetric("longest_downhill_run", _field("downhill_snow_sports_distance")),
    TrackedMetric("longest_sleep", _field("sleep_total")),
    TrackedMetric("most_deep_sleep", _field("sleep_deep")),
    TrackedMetric("most_rem_sleep", _field("sleep_rem")),
)


def had_sleep(day: Any) -> bool:
    return (day.sleep_total or 0) > 0


def had_workout(day: Any) -> bool:
    return (day.exercise_minutes or 0) > 0


# (column prefix, predicate)
STREAKS: tuple[tuple[str, Callable[[Any], bool]], ...] = (
    ("sleep_streak_record", had_sleep),
    ("workout_streak_record", had_workout),
)


@dataclass(frozen=True)
class Streak:
    length: int = 0
    start: Optional[date] = None
    end: Optional[date] = None


@dataclass
class HighscoreChanges:
    """What one pass replaced on the highscore record."""

    maxima: dict[str, Any] = field(default_factory=dict)
    streaks: dict[str, int] = field(default_factory=dict)
    days_scanned: int = 0

    @property
    def changed(self) -> bool:
        return bool(self.maxima or self.streaks)

    def to_dict(self) -> dict[str, Any]:
        return {
            "maxima": self.maxima,
            "streaks": self.streaks,
            "days_scanned": self.days_scanned,
        }


def update_maxima(record: HighscoreRecord, days: Iterable[Any]) -> dict[str, Any]:
    """Fold days into the stored maxima, replacing only on strict improvement.

    Returns the columns that changed, mapped to their new value.
    """
    changed: dict[str, Any] = {}
    for day in days:
        for metric in TRACKED_METRICS:
            value = metric.read(day)
            current = getattr(record, metric.column) or 0
            if value > current:
                setattr(record, metric.column, value)
                setattr(record, f"{metric.column}_date", day.date)
                changed[metric.column] = value
    return changed


def longest_streak(ordered_days: Sequence[Any], predicate: Callable[[Any], bool]) -> Streak:
    """Longest run of consecutive calendar days satisfying ``predicate``.

    ``ordered_days`` must be sorted by date ascending. A missing calendar day
    breaks the run the same way a failing day does.
    """
    best = Streak()
    length = 0
    start: Optional[date] = None
    previous: Optional[date] = None

    for day in ordered_days:
        contiguous = previous is not None and (day.date - previous).days == 1
        if predicate(day):
            if length == 0 or not contiguous:
                length = 0
                start = day.date
            length += 1
            if length > best.length:
                best = Streak(length, start, day.date)
        else:
            length = 0
        previous = day.date

    return best


def apply_streak(record: HighscoreRecord, prefix: str, streak: Streak) -> bool:
    """Store ``streak`` under ``prefix`` if it strictly beats the stored length."""
    if streak.length <= (getattr(record, prefix) or 0):
        return False
    setattr(record, prefix, streak.length)
    setattr(record, f"{prefix}_start_date", streak.start)
    setattr(record, f"{prefix}_end_date", streak.end)
    return True


class HighscoreEngine:
    """Applies maxima and streak passes to one user's highscore record."""

    def update(
        self,
        record: HighscoreRecord,
        window_days: Iterable[Any],
        all_days: Sequence[Any],
        now: Optional[datetime] = None,
    ) -> HighscoreChanges:
        """Run the maxima pass over ``window_days`` and a full streak rescan over ``all_days``."""
        window_days = list(window_days)
        changes = HighscoreChanges(days_scanned=len(window_days))
        changes.maxima = update_maxima(record, window_days)

        for prefix, predicate in STREAKS:
            streak = longest_streak(all_days, predicate)
            if apply_streak(record, prefix, streak):
                changes.streaks[prefix] = streak.length

        if changes.changed:
            now = now or datetime.utcnow()
            record.last_updated = now
            record.recorded_at = now
            logger.info(
                "highscores_improved",
                user_id=record.user_id,
                maxima=sorted(changes.maxima),
                streaks=changes.streaks,
            )
        return changes
