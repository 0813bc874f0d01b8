"""
Aggregation Engine

Grouped, rolled-up and cubed aggregates over the fact store joined to its
dimensions.

Features:
- SUM / MAX / AVG over revenue (price per unit x quantity sold) or any
  numeric joined attribute, computed exactly on scaled integers
- Plain GROUP BY, ROLLUP, CUBE and explicit GROUPING SETS
- Per-attribute total markers, so a rolled-up attribute is never confused
  with a genuine null in the data
- Filters applied to the joined facts before grouping
- Deterministic row order: ascending grouping key, nulls last, ties broken
  by grouping-set order then first appearance in the fact store
"""

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

import polars as pl
import structlog

from salesdw.aggregation.grouping import AggregationSpec, Grouping, Measure, MeasureFunction
from salesdw.database.store import RowStore
from salesdw.exceptions import MeasureOverflow, UnknownAttribute
from salesdw.schema.coercion import coerce_value, from_scaled_integer
from salesdw.schema.registry import (
    REVENUE_ATTRIBUTE,
    FieldSpec,
    FieldType,
    JoinedAttribute,
    revenue_operands,
)

logger = structlog.get_logger(__name__)

AVG_PLACES = 2

_ROW = "__row"
_SET = "__set"
_FIRST = "__first"
_SUM = "__sum"
_COUNT = "__count"
_MAX = "__max"
_MAGNITUDE = "__magnitude"

# Largest magnitude whose Int128 sum cannot have wrapped
EXACT_LIMIT = float(2 ** 126)


def _total_column(attribute: str) -> str:
    return f"__total_{attribute}"


@dataclass(frozen=True)
class AggregateRow:
    """
    One result row.

    ``totals[i]`` is True when ``key[i]`` was rolled up (the attribute is
    absent from this row's grouping set); ``key[i]`` is then None. A None key
    with ``totals[i]`` False is a genuine null in the data.
    """
    key: Tuple[Any, ...]
    totals: Tuple[bool, ...]
    value: Any

    @property
    def grouping_id(self) -> int:
        """SQL GROUPING() bitmask, leftmost attribute is the most significant bit"""
        bits = 0
        for is_total in self.totals:
            bits = (bits << 1) | int(is_total)
        return bits

    @property
    def is_grand_total(self) -> bool:
        return all(self.totals)


@dataclass(frozen=True)
class AggregateResult:
    """Ordered result of an aggregation"""
    attributes: Tuple[str, ...]
    measure: Measure
    grouping_sets: Tuple[Tuple[str, ...], ...]
    rows: Tuple[AggregateRow, ...]

    def __len__(self) -> int:
        return len(self.rows)

    def __iter__(self):
        return iter(self.rows)

    def get(self, key: Sequence[Any], totals: Optional[Sequence[bool]] = None) -> Optional[AggregateRow]:
        """
        First row with the given key.

        When ``totals`` is omitted, None entries of ``key`` are taken to be
        rolled-up attributes.
        """
        key = tuple(key)
        if totals is None:
            totals = tuple(value is None for value in key)
        totals = tuple(totals)
        for row in self.rows:
            if row.key == key and row.totals == totals:
                return row
        return None

    def to_frame(self) -> pl.DataFrame:
        """Render as a DataFrame with ``grouping_<attr>`` marker columns"""
        records: List[Dict[str, Any]] = []
        for row in self.rows:
            record: Dict[str, Any] = dict(zip(self.attributes, row.key))
            record.update({f"grouping_{a}": t for a, t in zip(self.attributes, row.totals)})
            record[self.measure.label] = row.value
            records.append(record)
        columns = [*self.attributes, *(f"grouping_{a}" for a in self.attributes), self.measure.label]
        if not records:
            return pl.DataFrame(schema={name: pl.Null for name in columns})
        return pl.DataFrame(records, infer_schema_length=None).select(columns)


class AggregationEngine:
    """
    Computes aggregates over a ``RowStore``.

    Every call reads one consistent snapshot of the stores, so a concurrent
    batch load is either fully visible or not at all.

    Example:
        engine = AggregationEngine(store)
        result = engine.aggregate(Measure.sum(), Grouping.rollup(["year", "city"]))
    """

    def __init__(self, store: RowStore):
        self.store = store
        self.registry = store.registry

    def _resolve(
        self,
        fact_name: str,
        spec: AggregationSpec,
    ) -> Dict[str, JoinedAttribute]:
        """Check every referenced attribute against the joined schema"""
        available = self.registry.joined_attributes(fact_name)
        unknown = [name for name in spec.referenced_attributes() if name not in available]
        if unknown:
            raise UnknownAttribute(unknown, list(available))
        measure_attr = available[spec.measure.attribute]
        if not measure_attr.type.is_numeric:
            raise ValueError(
                f"Measure attribute '{measure_attr.name}' is {measure_attr.type.value}, expected a numeric attribute"
            )
        return available

    def _joined_frame(
        self,
        fact_name: str,
        frames: Mapping[str, pl.DataFrame],
        attributes: Mapping[str, JoinedAttribute],
    ) -> pl.DataFrame:
        """Fact rows joined to their dimensions, in fact store order"""
        fact = self.registry.get(fact_name)
        df = frames[fact_name].with_row_index(_ROW)

        for fk_field, dim_name in fact.foreign_keys:
            dim = self.registry.get(dim_name)
            renames = [
                pl.col(attr.source).alias(attr.name)
                for attr in attributes.values()
                if attr.entity == dim_name
            ]
            dim_frame = frames[dim_name].select(pl.col(dim.primary_key).alias(fk_field), *renames)
            df = df.join(dim_frame, on=fk_field, how="left")

        if REVENUE_ATTRIBUTE in attributes and attributes[REVENUE_ATTRIBUTE].entity == fact_name:
            price, quantity = revenue_operands(fact)
            revenue = pl.col(price.name).cast(pl.Int128) * pl.col(quantity.name).cast(pl.Int128)
            df = df.with_columns(revenue.alias(REVENUE_ATTRIBUTE))

        return df.sort(_ROW)

    @staticmethod
    def _filter_expr(
        filters: Mapping[str, Tuple[Any, ...]],
        attributes: Mapping[str, JoinedAttribute],
    ) -> Optional[pl.Expr]:
        """AND of per-attribute membership tests"""
        conditions = []
        for name, values in filters.items():
            attr = attributes[name]
            spec = FieldSpec(name, attr.type, scale=attr.scale)
            wanted = [coerce_value(spec, value, bounded=False) for value in values if value is not None]
            condition = pl.col(name).is_in(wanted) if wanted else pl.lit(False)
            if any(value is None for value in values):
                condition = condition | pl.col(name).is_null()
            conditions.append(condition)
        if not conditions:
            return None
        combined = conditions[0]
        for condition in conditions[1:]:
            combined = combined & condition
        return combined

    @staticmethod
    def _aggregate_set(
        df: pl.DataFrame,
        grouping_set: Tuple[str, ...],
        set_index: int,
        attributes: Sequence[str],
        measure_column: str,
        dtypes: Mapping[str, pl.DataType],
    ) -> pl.DataFrame:
        """Aggregate one grouping set, padding absent attributes with total markers"""
        # Sums run in Int128; the float magnitude bounds them against wraparound
        measure = pl.col(measure_column).cast(pl.Int128)
        aggregations = [
            measure.sum().alias(_SUM),
            measure.count().cast(pl.Int64).alias(_COUNT),
            measure.max().alias(_MAX),
            pl.col(measure_column).cast(pl.Float64).abs().sum().alias(_MAGNITUDE),
            pl.col(_ROW).min().cast(pl.Int64).alias(_FIRST),
        ]
        if grouping_set:
            grouped = df.group_by(list(grouping_set), maintain_order=True).agg(aggregations)
        else:
            # The grand total exists even when no facts match
            grouped = df.select(aggregations)

        padding = []
        for attribute in attributes:
            if attribute in grouping_set:
                padding.append(pl.lit(False).alias(_total_column(attribute)))
            else:
                padding.append(pl.lit(None, dtype=dtypes[attribute]).alias(attribute))
                padding.append(pl.lit(True).alias(_total_column(attribute)))
        padding.append(pl.lit(set_index, dtype=pl.Int64).alias(_SET))

        columns = [
            *attributes,
            *(_total_column(a) for a in attributes),
            _SET,
            _FIRST,
            _SUM,
            _COUNT,
            _MAX,
            _MAGNITUDE,
        ]
        return grouped.with_columns(padding).select(columns)

    @staticmethod
    def _measure_value(measure: Measure, attr: JoinedAttribute, record: Mapping[str, Any]) -> Any:
        """Convert scaled-integer aggregates back to exact values"""
        if not record[_COUNT]:
            return None
        scale = attr.scale if attr.type == FieldType.DECIMAL else 0

        if measure.function == MeasureFunction.AVG:
            mean = (Decimal(record[_SUM]) / Decimal(record[_COUNT])).scaleb(-scale)
            return mean.quantize(Decimal(1).scaleb(-AVG_PLACES), rounding=ROUND_HALF_UP)

        raw = record[_SUM] if measure.function == MeasureFunction.SUM else record[_MAX]
        if attr.type == FieldType.DECIMAL:
            return from_scaled_integer(raw, scale)
        return raw

    def aggregate(
        self,
        measure: Measure,
        grouping: Grouping,
        filters: Optional[Mapping[str, Any]] = None,
        fact: Optional[str] = None,
    ) -> AggregateResult:
        """
        Aggregate a measure over the joined fact store.

        Args:
            measure: Aggregate function and numeric attribute
            grouping: Grouping mode and attribute list
            filters: Attribute to allowed value(s), applied before grouping
            fact: Fact entity to aggregate (defaults to the only registered fact)

        Returns:
            AggregateResult: Rows ordered by grouping key, nulls last

        Raises:
            UnknownAttribute: An attribute is not part of the joined schema
            MeasureOverflow: An aggregate leaves the exact integer range
        """
        spec = AggregationSpec(measure=measure, grouping=grouping, filters=filters or {}, fact=fact)
        return self.run(spec)

    def run(self, spec: AggregationSpec) -> AggregateResult:
        """Aggregate according to a complete ``AggregationSpec``"""
        fact_name = spec.fact or self.registry.default_fact().name
        available = self._resolve(fact_name, spec)
        frames = self.store.snapshot()

        df = self._joined_frame(fact_name, frames, available)
        predicate = self._filter_expr(spec.filters, available)
        if predicate is not None:
            df = df.filter(predicate)

        attributes = spec.grouping.attributes
        grouping_sets = spec.grouping.expand()
        measure_attr = available[spec.measure.attribute]
        dtypes = {name: df.schema[name] for name in attributes}

        parts = [
            self._aggregate_set(df, grouping_set, index, attributes, measure_attr.name, dtypes)
            for index, grouping_set in enumerate(grouping_sets)
        ]
        combined = pl.concat(parts, how="vertical")
        magnitude = combined[_MAGNITUDE].max()
        if magnitude is not None and magnitude >= EXACT_LIMIT:
            raise MeasureOverflow(spec.measure.label)
        combined = combined.sort(
            [*attributes, _SET, _FIRST],
            nulls_last=True,
            maintain_order=True,
        )

        rows = []
        for record in combined.iter_rows(named=True):
            key = tuple(self._key_value(available[a], record[a]) for a in attributes)
            totals = tuple(record[_total_column(a)] for a in attributes)
            rows.append(AggregateRow(key=key, totals=totals, value=self._measure_value(spec.measure, measure_attr, record)))

        logger.debug(
            "Aggregation computed",
            fact=fact_name,
            measure=spec.measure.label,
            mode=spec.grouping.mode.value,
            grouping_sets=len(grouping_sets),
            input_rows=df.height,
            result_rows=len(rows),
        )

        return AggregateResult(
            attributes=attributes,
            measure=spec.measure,
            grouping_sets=tuple(grouping_sets),
            rows=tuple(rows),
        )

    @staticmethod
    def _key_value(attr: JoinedAttribute, value: Any) -> Any:
        if attr.type == FieldType.DECIMAL:
            return from_scaled_integer(value, attr.scale)
        return value
