"""
Schema Registry Module
"""
from .registry import EntitySchema, EntitySchemaRegistry, FieldSpec, FieldType
from .star import build_date_dimension, build_sales_registry

__all__ = [
    "EntitySchema",
    "EntitySchemaRegistry",
    "FieldSpec",
    "FieldType",
    "build_date_dimension",
    "build_sales_registry",
]
