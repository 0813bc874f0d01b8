"""
Warehouse Persistence

On-disk layout written by ``save_warehouse``::

    <path>/manifest.json            entity row counts and view file index
    <path>/stores/<entity>.parquet  one append-only row store per entity
    <path>/views/view_<n>.json      one materialized aggregate per file

Materialized aggregates are stored with their spec, snapshot timestamp and
result rows, so a restored warehouse serves exactly the same (possibly
stale) results until they are refreshed.
"""

from datetime import date, datetime, timezone
from decimal import Decimal
from pathlib import Path
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Union

import polars as pl
import structlog
from pydantic import BaseModel, Field

from salesdw.aggregation.engine import AggregateResult, AggregateRow
from salesdw.aggregation.grouping import AggregationSpec, MeasureFunction
from salesdw.config import get_settings
from salesdw.schema.registry import EntitySchemaRegistry, FieldType, JoinedAttribute
from salesdw.serving.materialized import MaterializedAggregate

if TYPE_CHECKING:
    from salesdw.warehouse import Warehouse

logger = structlog.get_logger(__name__)

MANIFEST_FILE = "manifest.json"
STORES_DIR = "stores"
VIEWS_DIR = "views"
FORMAT_VERSION = 1


class StoredRow(BaseModel):
    """Result row as persisted"""
    key: List[Any]
    totals: List[bool]
    value: Any = None


class StoredView(BaseModel):
    """Materialized aggregate as persisted"""
    name: str
    spec: AggregationSpec
    snapshot_at: datetime
    refresh_count: int = 0
    attributes: List[str]
    grouping_sets: List[List[str]]
    rows: List[StoredRow]


class Manifest(BaseModel):
    """Index of a persisted warehouse"""
    format_version: int = FORMAT_VERSION
    app_version: str
    saved_at: datetime
    entities: Dict[str, int] = Field(default_factory=dict)
    views: Dict[str, str] = Field(default_factory=dict)


def _resolve_path(path: Union[str, Path, None]) -> Path:
    return Path(path or get_settings().warehouse.data_path)


def _decode_value(attr: JoinedAttribute, value: Any) -> Any:
    """Rebuild a typed key value from its JSON form"""
    if value is None:
        return None
    if attr.type == FieldType.DATE:
        return date.fromisoformat(value)
    if attr.type == FieldType.DECIMAL:
        return Decimal(str(value))
    if attr.type == FieldType.INTEGER:
        return int(value)
    return str(value)


def _decode_view(stored: StoredView, registry: EntitySchemaRegistry) -> MaterializedAggregate:
    spec = stored.spec
    fact_name = spec.fact or registry.default_fact().name
    attributes = registry.joined_attributes(fact_name)
    measure_attr = attributes[spec.measure.attribute]
    exact = spec.measure.function == MeasureFunction.AVG or measure_attr.type == FieldType.DECIMAL

    rows = []
    for row in stored.rows:
        key = tuple(_decode_value(attributes[name], value) for name, value in zip(stored.attributes, row.key))
        if row.value is None:
            value = None
        elif exact:
            value = Decimal(str(row.value))
        else:
            value = int(row.value)
        rows.append(AggregateRow(key=key, totals=tuple(row.totals), value=value))

    result = AggregateResult(
        attributes=tuple(stored.attributes),
        measure=spec.measure,
        grouping_sets=tuple(tuple(s) for s in stored.grouping_sets),
        rows=tuple(rows),
    )
    return MaterializedAggregate(
        name=stored.name,
        spec=spec,
        result=result,
        snapshot_at=stored.snapshot_at,
        refresh_count=stored.refresh_count,
    )


def save_warehouse(warehouse: "Warehouse", path: Union[str, Path, None] = None) -> Path:
    """
    Write every row store and materialized aggregate under ``path``.

    Holds the writer lock so the saved stores and views are mutually
    consistent.

    Returns:
        Path: Directory written to
    """
    root = _resolve_path(path)
    stores_dir = root / STORES_DIR
    views_dir = root / VIEWS_DIR
    stores_dir.mkdir(parents=True, exist_ok=True)
    views_dir.mkdir(parents=True, exist_ok=True)
    for stale in views_dir.glob("view_*.json"):
        stale.unlink()

    with warehouse.store.lock:
        frames = warehouse.store.snapshot()
        manifest = Manifest(
            app_version=get_settings().version,
            saved_at=datetime.now(timezone.utc),
        )

        for name, frame in frames.items():
            frame.write_parquet(stores_dir / f"{name}.parquet")
            manifest.entities[name] = frame.height

        for index, name in enumerate(warehouse.cache.names()):
            entry = warehouse.cache.get(name)
            stored = StoredView(
                name=entry.name,
                spec=entry.spec,
                snapshot_at=entry.snapshot_at,
                refresh_count=entry.refresh_count,
                attributes=list(entry.result.attributes),
                grouping_sets=[list(s) for s in entry.result.grouping_sets],
                rows=[
                    StoredRow(key=list(row.key), totals=list(row.totals), value=row.value)
                    for row in entry.result.rows
                ],
            )
            file_name = f"view_{index}.json"
            (views_dir / file_name).write_text(stored.model_dump_json(indent=2), encoding="utf-8")
            manifest.views[name] = file_name

    (root / MANIFEST_FILE).write_text(manifest.model_dump_json(indent=2), encoding="utf-8")

    logger.info(
        "Warehouse saved",
        path=str(root),
        entities=manifest.entities,
        views=len(manifest.views),
    )
    return root


def load_warehouse(
    path: Union[str, Path, None] = None,
    registry: Optional[EntitySchemaRegistry] = None,
) -> "Warehouse":
    """
    Restore a warehouse written by ``save_warehouse``.

    Args:
        path: Directory holding ``manifest.json``
        registry: Registry describing the stored entities (sales schema by default)

    Raises:
        FileNotFoundError: No manifest under ``path``
        ValueError: Unsupported format version
    """
    from salesdw.warehouse import Warehouse

    root = _resolve_path(path)
    manifest_path = root / MANIFEST_FILE
    if not manifest_path.exists():
        raise FileNotFoundError(f"Manifest not found: {manifest_path}")

    manifest = Manifest.model_validate_json(manifest_path.read_text(encoding="utf-8"))
    if manifest.format_version != FORMAT_VERSION:
        raise ValueError(f"Unsupported warehouse format version: {manifest.format_version}")

    warehouse = Warehouse(registry)

    with warehouse.store.transaction() as tx:
        for name in manifest.entities:
            schema = warehouse.registry.get(name)
            frame = pl.read_parquet(root / STORES_DIR / f"{name}.parquet")
            tx.replace(name, frame.select(schema.field_names).cast(schema.polars_schema))

    for name, file_name in manifest.views.items():
        stored = StoredView.model_validate_json((root / VIEWS_DIR / file_name).read_text(encoding="utf-8"))
        warehouse.cache.restore(_decode_view(stored, warehouse.registry))

    logger.info(
        "Warehouse loaded",
        path=str(root),
        entities=manifest.entities,
        views=len(manifest.views),
    )
    return warehouse
