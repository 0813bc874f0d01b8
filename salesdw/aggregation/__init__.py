"""
Aggregation Module
"""
from .engine import AggregateResult, AggregateRow, AggregationEngine
from .grouping import AggregationSpec, Grouping, GroupingMode, Measure, MeasureFunction

__all__ = [
    "AggregateResult",
    "AggregateRow",
    "AggregationEngine",
    "AggregationSpec",
    "Grouping",
    "GroupingMode",
    "Measure",
    "MeasureFunction",
]
