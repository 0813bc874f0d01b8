"""
Batch Loader

All-or-nothing batch ingestion into the dimension and fact stores.
Supports:
- Type coercion of parsed records to the registered field types
- Primary key uniqueness (within the batch and against the store)
- Referential integrity of fact foreign keys
- CSV files read through polars
"""

from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union

import polars as pl
import structlog
from pydantic import BaseModel

from salesdw.config import get_settings
from salesdw.database.store import RowStore, StoreTransaction
from salesdw.exceptions import ConstraintViolation, DanglingReference, DuplicateKey
from salesdw.schema.coercion import coerce_value
from salesdw.schema.registry import EntityKind, EntitySchema

logger = structlog.get_logger(__name__)

MAX_REPORTED_ERRORS = 20


class LoadResult(BaseModel):
    """Result of a successful batch load"""
    entity: str
    rows_loaded: int
    store_rows: int
    source: Optional[str] = None
    started_at: datetime
    completed_at: datetime
    load_duration_seconds: float


# =============================================================================
# LOADER
# =============================================================================

class BatchLoader:
    """
    Loads record batches into a ``RowStore``.

    A batch is validated completely inside one store transaction; any error
    leaves every store exactly as it was.

    Example:
        loader = BatchLoader(store)
        result = loader.load_batch("product_dim", [{"id": 1, "product_type": "Toys"}])
    """

    def __init__(self, store: RowStore):
        self.store = store
        self.registry = store.registry

    def _coerce_rows(
        self,
        schema: EntitySchema,
        rows: Sequence[Mapping[str, Any]],
    ) -> pl.DataFrame:
        """Coerce records to a frame with the entity's storage schema"""
        errors: List[str] = []
        columns: Dict[str, List[Any]] = {name: [] for name in schema.field_names}
        expected = set(schema.field_names)

        for index, row in enumerate(rows):
            missing = [name for name in schema.field_names if name not in row]
            unexpected = sorted(set(row) - expected)
            if missing:
                errors.append(f"row {index}: missing field(s) {missing}")
            if unexpected:
                errors.append(f"row {index}: unexpected field(s) {unexpected}")
            if missing or unexpected:
                continue

            for spec in schema.fields:
                try:
                    columns[spec.name].append(coerce_value(spec, row[spec.name]))
                except (TypeError, ValueError) as e:
                    errors.append(f"row {index}: field '{spec.name}' {e}")
                    columns[spec.name].append(None)

            if len(errors) >= MAX_REPORTED_ERRORS:
                break

        if errors:
            raise ConstraintViolation(schema.name, errors[:MAX_REPORTED_ERRORS])

        return pl.DataFrame(columns, schema=schema.polars_schema)

    @staticmethod
    def _check_keys(schema: EntitySchema, batch: pl.DataFrame, current: pl.DataFrame) -> None:
        """Reject keys repeated within the batch or already stored"""
        pk = schema.primary_key
        repeated = batch.filter(pl.col(pk).is_duplicated())[pk].unique(maintain_order=True).to_list()
        existing = batch.join(current.select(pk), on=pk, how="semi")[pk].unique(maintain_order=True).to_list()
        duplicates = list(dict.fromkeys(existing + repeated))
        if duplicates:
            raise DuplicateKey(schema.name, duplicates)

    def _check_references(self, schema: EntitySchema, batch: pl.DataFrame, tx: StoreTransaction) -> None:
        """Reject fact rows whose foreign keys do not resolve"""
        dangling: List[Tuple[str, Any]] = []
        for fk_field, dim_name in schema.foreign_keys:
            dim = self.registry.get(dim_name)
            known = tx.frame(dim_name).select(pl.col(dim.primary_key).alias(fk_field))
            missing = batch.join(known, on=fk_field, how="anti")[fk_field].unique(maintain_order=True)
            dangling.extend((fk_field, key) for key in missing.to_list())
        if dangling:
            raise DanglingReference(schema.name, dangling)

    def load_batch(
        self,
        entity_name: str,
        rows: Sequence[Mapping[str, Any]],
        source: Optional[str] = None,
    ) -> LoadResult:
        """
        Load a batch of records into an entity's store.

        Args:
            entity_name: Registered entity to load into
            rows: Parsed records carrying every registered field
            source: Optional description of where the rows came from

        Returns:
            LoadResult: Counts and timings of the load

        Raises:
            NotFound: Entity is not registered
            ConstraintViolation: A row has missing, unexpected or invalid fields
            DuplicateKey: A primary key repeats within the batch or the store
            DanglingReference: A fact foreign key does not resolve
        """
        schema = self.registry.get(entity_name)
        started_at = datetime.now(timezone.utc)

        logger.info(
            "Starting batch load",
            entity=entity_name,
            rows=len(rows),
            source=source,
        )

        try:
            batch = self._coerce_rows(schema, rows)
            with self.store.transaction() as tx:
                self._check_keys(schema, batch, tx.frame(entity_name))
                if schema.kind == EntityKind.FACT:
                    self._check_references(schema, batch, tx)
                tx.append(entity_name, batch)
                store_rows = tx.frame(entity_name).height
        except Exception as e:
            logger.warning(
                "Batch load rejected",
                entity=entity_name,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise

        completed_at = datetime.now(timezone.utc)
        result = LoadResult(
            entity=entity_name,
            rows_loaded=batch.height,
            store_rows=store_rows,
            source=source,
            started_at=started_at,
            completed_at=completed_at,
            load_duration_seconds=(completed_at - started_at).total_seconds(),
        )

        logger.info(
            "Batch load completed",
            entity=entity_name,
            rows_loaded=result.rows_loaded,
            store_rows=result.store_rows,
            duration_seconds=result.load_duration_seconds,
        )
        return result

    def load_csv(
        self,
        entity_name: str,
        file_path: Union[str, Path],
        delimiter: Optional[str] = None,
    ) -> LoadResult:
        """
        Load a header-first CSV file as one batch.

        Every column is read as text and coerced like any other record batch,
        so CSV loads share the same validation and atomicity.
        """
        settings = get_settings().warehouse
        file_path = Path(file_path)
        if not file_path.exists():
            raise FileNotFoundError(f"File not found: {file_path}")

        df = pl.read_csv(
            file_path,
            separator=delimiter or settings.csv_delimiter,
            encoding=settings.csv_encoding,
            null_values=settings.null_values,
            infer_schema_length=0,
        )
        logger.info(f"Read {df.height} rows from file", file=str(file_path))

        return self.load_batch(entity_name, df.to_dicts(), source=str(file_path))
