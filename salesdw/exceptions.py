"""
Warehouse Error Taxonomy

Every failure is scoped to the operation that raised it. Nothing here is
retried internally and the warehouse stays usable after any of them.
"""

from typing import Any, List, Optional, Sequence, Tuple


class WarehouseError(Exception):
    """Base class for all warehouse errors"""


class DuplicateEntity(WarehouseError):
    """Entity re-registered with a conflicting shape"""

    def __init__(self, entity: str, reason: str):
        self.entity = entity
        self.reason = reason
        super().__init__(f"Entity '{entity}' already registered: {reason}")


class DuplicateKey(WarehouseError):
    """Primary key already present in the store or repeated within a batch"""

    def __init__(self, entity: str, keys: Sequence[Any]):
        self.entity = entity
        self.keys = list(keys)
        super().__init__(f"Duplicate key(s) for '{entity}': {self.keys}")


class DanglingReference(WarehouseError):
    """
    Fact row references a dimension key that does not exist.

    ``references`` lists ``(field, key)`` pairs that failed to resolve.
    """

    def __init__(self, entity: str, references: List[Tuple[str, Any]]):
        self.entity = entity
        self.references = references
        rendered = ", ".join(f"{field}={key!r}" for field, key in references)
        super().__init__(f"Unresolved reference(s) in '{entity}': {rendered}")


class UnknownAttribute(WarehouseError):
    """Attribute is not part of the joined schema"""

    def __init__(self, attributes: Sequence[str], available: Optional[Sequence[str]] = None):
        self.attributes = list(attributes)
        self.available = list(available or [])
        super().__init__(f"Unknown attribute(s): {self.attributes}")


class NameConflict(WarehouseError):
    """Materialized aggregate name already taken"""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Materialized aggregate '{name}' already exists")


class NotFound(WarehouseError):
    """Named entity or materialized aggregate does not exist"""

    def __init__(self, kind: str, name: str):
        self.kind = kind
        self.name = name
        super().__init__(f"{kind} '{name}' not found")


class ConstraintViolation(WarehouseError):
    """Row violates a field type, nullability or range constraint"""

    def __init__(self, entity: str, errors: List[str]):
        self.entity = entity
        self.errors = errors
        super().__init__(f"Invalid rows for '{entity}': {'; '.join(errors)}")


class MeasureOverflow(WarehouseError):
    """Aggregate exceeds the exact integer range of the engine"""

    def __init__(self, measure: str):
        self.measure = measure
        super().__init__(f"Aggregate '{measure}' is out of range")


__all__ = [
    "WarehouseError",
    "DuplicateEntity",
    "DuplicateKey",
    "DanglingReference",
    "UnknownAttribute",
    "NameConflict",
    "NotFound",
    "ConstraintViolation",
    "MeasureOverflow",
]
