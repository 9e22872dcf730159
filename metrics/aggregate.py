from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence, Tuple
import statistics

from metrics.record import METRIC_KEYS, MetricsRecord
from orchestrator.errors import PartialCondition

DEFAULT_TRIALS = 3


@dataclass(frozen=True)
class TrialGroup:
    """Current trials for one (target, condition) pair.

    ``runs`` holds one slot per expected run, None where the run is missing.
    Slot order is run order for fresh runs and newest-first for loaded ones.
    """

    condition: str
    runs: Tuple[Optional[MetricsRecord], ...]
    expected: int = DEFAULT_TRIALS

    def __post_init__(self):
        if self.expected < 1:
            raise ValueError("expected trial count must be at least 1")
        if len(self.runs) > self.expected:
            raise ValueError(
                f"{len(self.runs)} runs exceed the expected count of {self.expected}"
            )
        if len(self.runs) < self.expected:
            padded = tuple(self.runs) + (None,) * (self.expected - len(self.runs))
            object.__setattr__(self, "runs", padded)
        else:
            object.__setattr__(self, "runs", tuple(self.runs))

    @classmethod
    def from_records(cls, condition: str, records: Iterable[MetricsRecord],
                     expected: int = DEFAULT_TRIALS) -> "TrialGroup":
        """Newest ``expected`` records; older ones are superseded."""
        ordered = sorted(records, key=lambda r: r.timestamp, reverse=True)
        return cls(condition, tuple(ordered[:expected]), expected)

    @classmethod
    def empty(cls, condition: str, expected: int = DEFAULT_TRIALS) -> "TrialGroup":
        return cls(condition, (), expected)

    @property
    def records(self) -> List[MetricsRecord]:
        present = [r for r in self.runs if r is not None]
        return sorted(present, key=lambda r: r.timestamp, reverse=True)

    @property
    def loaded(self) -> int:
        return sum(1 for r in self.runs if r is not None)

    @property
    def missing(self) -> int:
        return self.expected - self.loaded


@dataclass(frozen=True)
class ProfileAggregate:
    """Per-condition means. A metric with no values is None, never 0."""

    condition: str
    expected: int
    loaded: int
    means: Dict[str, Optional[float]] = field(default_factory=dict)

    @property
    def missing(self) -> int:
        return self.expected - self.loaded

    @property
    def has_data(self) -> bool:
        return self.loaded > 0

    @property
    def partial(self) -> Optional[PartialCondition]:
        if self.loaded >= self.expected:
            return None
        return PartialCondition(self.condition, self.loaded, self.expected)

    def get(self, key: str) -> Optional[float]:
        return self.means.get(key)


@dataclass(frozen=True)
class OverallAggregate:
    """Mean of per-condition means, over conditions that loaded something."""

    means: Dict[str, Optional[float]]
    contributing: Tuple[str, ...]

    @property
    def is_empty(self) -> bool:
        return not self.contributing

    def get(self, key: str) -> Optional[float]:
        return self.means.get(key)


def _mean(values: Sequence[float]) -> Optional[float]:
    # statistics.mean is exact, so the result does not depend on value order
    if not values:
        return None
    return float(statistics.mean(values))


def aggregate(group: TrialGroup) -> ProfileAggregate:
    """Average each metric over exactly the trials that report it."""
    records = group.records
    means = {}
    for key in METRIC_KEYS:
        values = [v for v in (r.value(key) for r in records) if v is not None]
        means[key] = _mean(values)
    return ProfileAggregate(group.condition, group.expected, len(records), means)


def summarize(aggregates: Iterable[ProfileAggregate]) -> OverallAggregate:
    """Average of per-condition averages; conditions with no trials are skipped, not zeroed."""
    with_data = [a for a in aggregates if a.has_data]
    means = {}
    for key in METRIC_KEYS:
        values = [a.get(key) for a in with_data if a.get(key) is not None]
        means[key] = _mean(values)
    return OverallAggregate(means, tuple(a.condition for a in with_data))
