"""
Serving Module
"""
from .materialized import MaterializedAggregate, MaterializedCache

__all__ = [
    "MaterializedAggregate",
    "MaterializedCache",
]
