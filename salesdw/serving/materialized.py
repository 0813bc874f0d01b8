"""
Materialized Aggregate Cache

Named snapshots of aggregation results with:
- Explicit refresh only (results go stale on purpose until refreshed)
- Atomic replacement of result and snapshot timestamp on refresh
- Refreshes serialized with batch loads through the store writer lock
"""

from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional

import structlog

from salesdw.aggregation.engine import AggregateResult, AggregationEngine
from salesdw.aggregation.grouping import AggregationSpec
from salesdw.exceptions import NameConflict, NotFound

logger = structlog.get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class MaterializedAggregate:
    """Cached aggregation result and the time it was computed"""
    name: str
    spec: AggregationSpec
    result: AggregateResult
    snapshot_at: datetime
    refresh_count: int = 0


class MaterializedCache:
    """
    Materialized aggregate cache.

    Readers get whatever was computed last; nothing is invalidated when
    facts change.

    Example:
        cache = MaterializedCache(engine)
        cache.materialize("revenue_by_year", spec)
        rows = cache.read("revenue_by_year")
        cache.refresh("revenue_by_year")
    """

    def __init__(
        self,
        engine: AggregationEngine,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.engine = engine
        self.clock = clock or _utcnow
        self._views: Dict[str, MaterializedAggregate] = {}

    @property
    def _lock(self):
        return self.engine.store.lock

    def __contains__(self, name: str) -> bool:
        return name in self._views

    def names(self) -> List[str]:
        """Materialized aggregate names in creation order"""
        return list(self._views)

    def get(self, name: str) -> MaterializedAggregate:
        """Cached entry with its spec and snapshot timestamp"""
        try:
            return self._views[name]
        except KeyError:
            raise NotFound("Materialized aggregate", name) from None

    def read(self, name: str) -> AggregateResult:
        """Last computed result, unchanged by later loads"""
        return self.get(name).result

    def _publish(self, entry: MaterializedAggregate) -> None:
        views = dict(self._views)
        views[entry.name] = entry
        self._views = views

    def materialize(self, name: str, spec: AggregationSpec) -> MaterializedAggregate:
        """
        Compute an aggregation once and cache it under ``name``.

        Raises:
            NameConflict: ``name`` is already materialized
            UnknownAttribute: An attribute of the aggregation is unknown
        """
        with self._lock:
            if name in self._views:
                raise NameConflict(name)
            result = self.engine.run(spec)
            entry = MaterializedAggregate(
                name=name,
                spec=spec,
                result=result,
                snapshot_at=self.clock(),
            )
            self._publish(entry)

        logger.info(
            "Aggregate materialized",
            name=name,
            rows=len(result),
            snapshot_at=entry.snapshot_at.isoformat(),
        )
        return entry

    def refresh(self, name: str) -> MaterializedAggregate:
        """
        Recompute from current store contents and swap in the new snapshot.

        Readers see either the previous snapshot or the new one, never a mix.
        """
        with self._lock:
            current = self.get(name)
            result = self.engine.run(current.spec)
            entry = replace(
                current,
                result=result,
                snapshot_at=self.clock(),
                refresh_count=current.refresh_count + 1,
            )
            self._publish(entry)

        logger.info(
            "Aggregate refreshed",
            name=name,
            rows=len(result),
            refresh_count=entry.refresh_count,
        )
        return entry

    def drop(self, name: str) -> None:
        """Remove a cached entry; later reads raise NotFound"""
        with self._lock:
            self.get(name)
            views = dict(self._views)
            del views[name]
            self._views = views
        logger.info("Aggregate dropped", name=name)

    def restore(self, entry: MaterializedAggregate) -> None:
        """Install a previously persisted entry as-is"""
        with self._lock:
            if entry.name in self._views:
                raise NameConflict(entry.name)
            self._publish(entry)
