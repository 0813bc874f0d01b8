"""
Sales Warehouse

Single entry point wiring the schema registry, row stores, batch loader,
aggregation engine and materialized cache together.
"""

from pathlib import Path
from typing import Any, Mapping, Optional, Sequence, Union

from salesdw.aggregation.engine import AggregateResult, AggregationEngine
from salesdw.aggregation.grouping import AggregationSpec, Grouping, Measure
from salesdw.config.logging import configure_logging
from salesdw.database.store import RowStore
from salesdw.ingestion.loader import BatchLoader, LoadResult
from salesdw.schema.registry import EntitySchema, EntitySchemaRegistry, FieldsArg
from salesdw.schema.star import build_sales_registry
from salesdw.serving.materialized import MaterializedAggregate, MaterializedCache


class Warehouse:
    """
    Star-schema warehouse.

    Example:
        wh = Warehouse()
        wh.load_batch("product_dim", [{"id": 1, "product_type": "Toys"}])
        ...
        result = wh.aggregate(Measure.sum(), Grouping.rollup(["year", "city"]))
        wh.materialize("by_year", AggregationSpec(grouping=Grouping.groups(["year"])))
    """

    def __init__(self, registry: Optional[EntitySchemaRegistry] = None, configure_logs: bool = False):
        if configure_logs:
            configure_logging()
        self.registry = registry if registry is not None else build_sales_registry()
        self.store = RowStore(self.registry)
        self.loader = BatchLoader(self.store)
        self.engine = AggregationEngine(self.store)
        self.cache = MaterializedCache(self.engine)

    # -------------------------------------------------------------------------
    # Schema
    # -------------------------------------------------------------------------

    def register(
        self,
        entity_name: str,
        fields: FieldsArg,
        primary_key: str,
        foreign_keys: Optional[Mapping[str, str]] = None,
    ) -> EntitySchema:
        return self.registry.register(entity_name, fields, primary_key, foreign_keys)

    # -------------------------------------------------------------------------
    # Loading
    # -------------------------------------------------------------------------

    def load_batch(self, entity_name: str, rows: Sequence[Mapping[str, Any]]) -> LoadResult:
        return self.loader.load_batch(entity_name, rows)

    def load_csv(self, entity_name: str, file_path: Union[str, Path]) -> LoadResult:
        return self.loader.load_csv(entity_name, file_path)

    def count(self, entity_name: str) -> int:
        return self.store.count(entity_name)

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def aggregate(
        self,
        measure: Measure,
        grouping: Grouping,
        filters: Optional[Mapping[str, Any]] = None,
    ) -> AggregateResult:
        return self.engine.aggregate(measure, grouping, filters)

    def materialize(self, name: str, spec: AggregationSpec) -> MaterializedAggregate:
        return self.cache.materialize(name, spec)

    def read(self, name: str) -> AggregateResult:
        return self.cache.read(name)

    def refresh(self, name: str) -> MaterializedAggregate:
        return self.cache.refresh(name)

    def drop(self, name: str) -> None:
        self.cache.drop(name)

    # -------------------------------------------------------------------------
    # Persistence
    # -------------------------------------------------------------------------

    def save(self, path: Union[str, Path, None] = None) -> Path:
        """Persist stores and materialized aggregates (see ``salesdw.database.snapshot``)"""
        from salesdw.database.snapshot import save_warehouse

        return save_warehouse(self, path)

    @classmethod
    def open(
        cls,
        path: Union[str, Path, None] = None,
        registry: Optional[EntitySchemaRegistry] = None,
    ) -> "Warehouse":
        """Restore a warehouse written by ``save``"""
        from salesdw.database.snapshot import load_warehouse

        return load_warehouse(path, registry)
