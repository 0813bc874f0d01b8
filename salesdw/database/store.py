"""
Row Store Management

In-memory, append-only row stores for every registered entity.

Each store is an immutable polars DataFrame. Writers stage new frames inside
a transaction and publish them all at once by swapping a single mapping
reference, so readers always see either the whole batch or none of it.
Writers are serialized by a re-entrant lock; readers never take it.
"""

import threading
from contextlib import contextmanager
from typing import Dict, Iterator, Mapping

import polars as pl
import structlog

from salesdw.schema.registry import EntitySchemaRegistry

logger = structlog.get_logger(__name__)


class StoreTransaction:
    """
    Staging area for a single write.

    Frames put here are invisible to readers until the owning
    ``RowStore.transaction()`` block exits without an exception.
    """

    def __init__(self, base: Mapping[str, pl.DataFrame]):
        self._base = base
        self._staged: Dict[str, pl.DataFrame] = {}

    def frame(self, entity_name: str) -> pl.DataFrame:
        """Current frame including anything staged in this transaction"""
        if entity_name in self._staged:
            return self._staged[entity_name]
        return self._base[entity_name]

    def append(self, entity_name: str, rows: pl.DataFrame) -> None:
        """Stage rows to be appended to an entity's store"""
        current = self.frame(entity_name)
        self._staged[entity_name] = pl.concat([current, rows.select(current.columns)], how="vertical")

    def replace(self, entity_name: str, frame: pl.DataFrame) -> None:
        """Stage a whole-store replacement (used when restoring snapshots)"""
        self._staged[entity_name] = frame

    @property
    def changes(self) -> Dict[str, pl.DataFrame]:
        return dict(self._staged)


class RowStore:
    """
    Append-only stores for the entities of a registry.

    Example:
        store = RowStore(registry)
        with store.transaction() as tx:
            tx.append("product_dim", frame)
        products = store.frame("product_dim")
    """

    def __init__(self, registry: EntitySchemaRegistry):
        self.registry = registry
        self._lock = threading.RLock()
        self._frames: Dict[str, pl.DataFrame] = {}

    @property
    def lock(self) -> threading.RLock:
        """Writer lock shared by loads and materialized refreshes"""
        return self._lock

    def snapshot(self) -> Dict[str, pl.DataFrame]:
        """
        Consistent view of every store.

        Registered entities without rows yet are returned as empty frames.
        """
        frames = self._frames
        return {
            schema.name: frames.get(schema.name, schema.empty_frame())
            for schema in self.registry.entities()
        }

    def frame(self, entity_name: str) -> pl.DataFrame:
        """Current frame of a single entity"""
        schema = self.registry.get(entity_name)
        return self._frames.get(entity_name, schema.empty_frame())

    def count(self, entity_name: str) -> int:
        return self.frame(entity_name).height

    @contextmanager
    def transaction(self) -> Iterator[StoreTransaction]:
        """
        Serialized, all-or-nothing write.

        Yields:
            StoreTransaction: Staging area, published on clean exit

        Example:
            with store.transaction() as tx:
                tx.append("sales_fact", rows)
        """
        with self._lock:
            tx = StoreTransaction(self.snapshot())
            try:
                yield tx
            except Exception as e:
                logger.debug("Store transaction rolled back", error=str(e), error_type=type(e).__name__)
                raise
            changes = tx.changes
            if changes:
                published = dict(self._frames)
                published.update(changes)
                self._frames = published
                logger.debug("Store transaction committed", entities=sorted(changes))

    def cardinalities(self) -> Dict[str, int]:
        """Row counts per entity"""
        return {name: frame.height for name, frame in self.snapshot().items()}
