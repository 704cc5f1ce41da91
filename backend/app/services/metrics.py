"""
Additive metric vector shared by every rollup level.

A MetricBundle holds the 17 per-period health totals. Combining two bundles
adds them field by field, so folding any set of daily bundles gives the same
result regardless of order or grouping.
"""

from dataclasses import asdict, dataclass, fields
from functools import reduce
from typing import Any, Iterable


@dataclass(frozen=True)
class MetricBundle:
    """Per-period health totals. The all-zero bundle is the identity."""

    steps: int = 0
    cycling_distance: float = 0.0  # meters
    walking_distance: float = 0.0
    running_distance: float = 0.0
    swimming_distance: float = 0.0
    swimming_strokes: int = 0
    cross_country_skiing_distance: float = 0.0
    downhill_snow_sports_distance: float = 0.0
    energy_active: float = 0.0  # kcal
    energy_resting: float = 0.0
    heartbeats: int = 0
    stairs_climbed: int = 0
    exercise_minutes: int = 0
    stand_minutes: int = 0
    sleep_total: int = 0  # minutes
    sleep_deep: int = 0
    sleep_rem: int = 0

    def __add__(self, other: "MetricBundle") -> "MetricBundle":
        if not isinstance(other, MetricBundle):
            return NotImplemented
        return MetricBundle(
            **{name: getattr(self, name) + getattr(other, name) for name in METRIC_FIELDS}
        )

    @classmethod
    def zero(cls) -> "MetricBundle":
        return cls()

    @classmethod
    def from_record(cls, record: Any) -> "MetricBundle":
        """Read the metric columns off an ORM record (or any attribute holder)."""
        values = {}
        for name in METRIC_FIELDS:
            value = getattr(record, name, None)
            values[name] = value if value is not None else FIELD_TYPES[name]()
        return cls(**values)

    def apply_to(self, record: Any) -> None:
        """Overwrite the metric columns of an ORM record with this bundle."""
        for name in METRIC_FIELDS:
            setattr(record, name, getattr(self, name))

    @property
    def total_calories(self) -> float:
        return self.energy_active + self.energy_resting

    def is_zero(self) -> bool:
        return self == ZERO_BUNDLE

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    def differing_fields(self, other: "MetricBundle", tolerance: float = 1e-6) -> list[str]:
        """Names of fields that differ; floats compare within a tolerance."""
        diffs = []
        for name in METRIC_FIELDS:
            mine, theirs = getattr(self, name), getattr(other, name)
            if FIELD_TYPES[name] is float:
                if abs(mine - theirs) > tolerance * max(1.0, abs(mine), abs(theirs)):
                    diffs.append(name)
            elif mine != theirs:
                diffs.append(name)
        return diffs


METRIC_FIELDS: tuple[str, ...] = tuple(f.name for f in fields(MetricBundle))
FIELD_TYPES: dict[str, type] = {f.name: f.type for f in fields(MetricBundle)}
ZERO_BUNDLE = MetricBundle()


def sum_bundles(bundles: Iterable[MetricBundle]) -> MetricBundle:
    """Fold bundles with elementwise addition, starting from zero."""
    return reduce(lambda acc, bundle: acc + bundle, bundles, ZERO_BUNDLE)
