# stats/snapshot_cache.py
import time
from types import MappingProxyType
from typing import Mapping, NamedTuple, Optional

from .models import MinerMetric, Snapshot

EMPTY_METRICS: Mapping[str, MinerMetric] = MappingProxyType({})


class CachedStats(NamedTuple):
    snapshot: Optional[Snapshot]
    metrics: Mapping[str, MinerMetric]
    updated_at: Optional[float]


class SnapshotCache:
    """
    Holds the current snapshot and per-participant metric table.

    Both live in one immutable tuple that is swapped in a single assignment,
    so a reader always gets a snapshot and the metrics of the same cycle.
    """

    def __init__(self, clock=time.time):
        self._clock = clock
        self._current = CachedStats(None, EMPTY_METRICS, None)

    def replace(self, snapshot: Snapshot, metrics: Mapping[str, MinerMetric]) -> None:
        self._current = CachedStats(snapshot, MappingProxyType(dict(metrics)), self._clock())

    def current(self) -> CachedStats:
        return self._current

    @property
    def snapshot(self) -> Optional[Snapshot]:
        return self._current.snapshot

    @property
    def metrics(self) -> Mapping[str, MinerMetric]:
        return self._current.metrics

    def miner_metric(self, key: Optional[str]) -> Optional[MinerMetric]:
        if not key:
            return None
        return self._current.metrics.get(key)

    def age(self) -> Optional[float]:
        updated_at = self._current.updated_at
        if updated_at is None:
            return None
        return self._clock() - updated_at
