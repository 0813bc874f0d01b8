"""
Sales Star-Schema Warehouse

Dimension and fact row stores, all-or-nothing batch loading, GROUPING SETS /
ROLLUP / CUBE aggregation and explicitly refreshed materialized aggregates.
"""
from salesdw.aggregation import AggregationSpec, Grouping, Measure
from salesdw.exceptions import (
    ConstraintViolation,
    DanglingReference,
    DuplicateEntity,
    DuplicateKey,
    MeasureOverflow,
    NameConflict,
    NotFound,
    UnknownAttribute,
    WarehouseError,
)
from salesdw.warehouse import Warehouse

__version__ = "1.0.0"

__all__ = [
    "AggregationSpec",
    "Grouping",
    "Measure",
    "Warehouse",
    "WarehouseError",
    "ConstraintViolation",
    "DanglingReference",
    "DuplicateEntity",
    "DuplicateKey",
    "MeasureOverflow",
    "NameConflict",
    "NotFound",
    "UnknownAttribute",
]
