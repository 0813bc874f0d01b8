"""
Schema Registry

Declares dimension and fact entity shapes and the foreign-key relationships
between them. The registry is append-only: an entity is registered once and
its shape never changes afterwards.

A fact entity joined to its dimensions exposes one flat attribute namespace
(see ``EntitySchemaRegistry.joined_attributes``) which the aggregation engine
uses to resolve grouping, measure and filter attributes.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Mapping, Optional, Tuple, Union

import polars as pl
import structlog

from salesdw.exceptions import DuplicateEntity, NotFound

logger = structlog.get_logger(__name__)

REVENUE_ATTRIBUTE = "revenue"


class FieldType(str, Enum):
    """Logical field types"""
    INTEGER = "integer"
    STRING = "string"
    DATE = "date"
    DECIMAL = "decimal"  # Fixed point, stored as scaled Int64

    @property
    def dtype(self) -> pl.DataType:
        """Polars storage dtype"""
        return {
            FieldType.INTEGER: pl.Int64,
            FieldType.STRING: pl.Utf8,
            FieldType.DATE: pl.Date,
            FieldType.DECIMAL: pl.Int64,
        }[self]

    @property
    def is_numeric(self) -> bool:
        return self in (FieldType.INTEGER, FieldType.DECIMAL)


class EntityKind(str, Enum):
    """Role of an entity in the star schema"""
    DIMENSION = "dimension"
    FACT = "fact"


@dataclass(frozen=True)
class FieldSpec:
    """Single field of an entity"""
    name: str
    type: FieldType
    nullable: bool = True
    scale: int = 2
    non_negative: bool = False


@dataclass(frozen=True)
class EntitySchema:
    """
    Registered entity shape.

    An entity with foreign keys is a fact; one without is a dimension.
    ``foreign_keys`` maps a field of this entity to the dimension it
    references (always by that dimension's primary key).
    """
    name: str
    fields: Tuple[FieldSpec, ...]
    primary_key: str
    foreign_keys: Tuple[Tuple[str, str], ...] = ()

    @property
    def kind(self) -> EntityKind:
        return EntityKind.FACT if self.foreign_keys else EntityKind.DIMENSION

    @property
    def field_names(self) -> List[str]:
        return [f.name for f in self.fields]

    @property
    def key_field(self) -> FieldSpec:
        return self.get_field(self.primary_key)

    @property
    def polars_schema(self) -> Dict[str, pl.DataType]:
        return {f.name: f.type.dtype for f in self.fields}

    def get_field(self, name: str) -> FieldSpec:
        for spec in self.fields:
            if spec.name == name:
                return spec
        raise NotFound("Field", f"{self.name}.{name}")

    def empty_frame(self) -> pl.DataFrame:
        """Zero-row frame with this entity's storage schema"""
        return pl.DataFrame(schema=self.polars_schema)


@dataclass(frozen=True)
class JoinedAttribute:
    """Attribute of the fact-joined-to-dimensions namespace"""
    name: str
    entity: str
    source: str
    type: FieldType
    scale: int = 2


FieldsArg = Union[Mapping[str, Union[FieldType, str]], List[FieldSpec]]


class EntitySchemaRegistry:
    """
    Registry of entity shapes.

    Example:
        registry = EntitySchemaRegistry()
        registry.register("product_dim", {"id": FieldType.INTEGER, "product_type": FieldType.STRING}, "id")
        registry.register(
            "sales_fact",
            [...],
            "sales_id",
            foreign_keys={"product_id": "product_dim"},
        )
    """

    def __init__(self):
        self._entities: Dict[str, EntitySchema] = {}

    def __contains__(self, name: str) -> bool:
        return name in self._entities

    @staticmethod
    def _normalize_fields(fields: FieldsArg) -> Tuple[FieldSpec, ...]:
        if isinstance(fields, Mapping):
            return tuple(FieldSpec(name=name, type=FieldType(ftype)) for name, ftype in fields.items())
        return tuple(fields)

    def register(
        self,
        entity_name: str,
        fields: FieldsArg,
        primary_key: str,
        foreign_keys: Optional[Mapping[str, str]] = None,
    ) -> EntitySchema:
        """
        Register an entity shape.

        Args:
            entity_name: Unique entity name
            fields: Field specs, or a mapping of field name to type
            primary_key: Name of the key field
            foreign_keys: Mapping of field name to referenced dimension entity

        Returns:
            EntitySchema: The registered (or identical, already registered) shape

        Raises:
            DuplicateEntity: Entity exists with a conflicting shape
            NotFound: A foreign key references an unregistered entity
        """
        specs = self._normalize_fields(fields)
        names = [f.name for f in specs]
        if primary_key not in names:
            raise ValueError(f"Primary key '{primary_key}' is not a field of '{entity_name}'")
        if len(set(names)) != len(names):
            raise ValueError(f"Duplicate field names in '{entity_name}'")

        # Key fields are never nullable
        key_fields = {primary_key, *(foreign_keys or {})}
        specs = tuple(
            FieldSpec(s.name, s.type, False, s.scale, s.non_negative) if s.name in key_fields else s
            for s in specs
        )

        fks = []
        for fk_field, target in (foreign_keys or {}).items():
            if fk_field not in names:
                raise ValueError(f"Foreign key '{fk_field}' is not a field of '{entity_name}'")
            if target not in self._entities:
                raise NotFound("Entity", target)
            target_schema = self._entities[target]
            if target_schema.kind != EntityKind.DIMENSION:
                raise ValueError(f"Foreign key '{fk_field}' must reference a dimension, not '{target}'")
            fk_type = next(s.type for s in specs if s.name == fk_field)
            if fk_type != target_schema.key_field.type:
                raise ValueError(
                    f"Foreign key '{fk_field}' type {fk_type.value} does not match "
                    f"'{target}.{target_schema.primary_key}' type {target_schema.key_field.type.value}"
                )
            fks.append((fk_field, target))

        schema = EntitySchema(
            name=entity_name,
            fields=specs,
            primary_key=primary_key,
            foreign_keys=tuple(fks),
        )

        existing = self._entities.get(entity_name)
        if existing is not None:
            if existing == schema:
                return existing
            if existing.primary_key != schema.primary_key or existing.key_field.type != schema.key_field.type:
                reason = (
                    f"primary key {existing.primary_key}:{existing.key_field.type.value} "
                    f"conflicts with {schema.primary_key}:{schema.key_field.type.value}"
                )
            else:
                reason = "field definitions differ"
            raise DuplicateEntity(entity_name, reason)

        self._entities[entity_name] = schema
        logger.info(
            "Entity registered",
            entity=entity_name,
            kind=schema.kind.value,
            fields=len(specs),
        )
        return schema

    def get(self, entity_name: str) -> EntitySchema:
        """Get a registered entity or raise NotFound"""
        try:
            return self._entities[entity_name]
        except KeyError:
            raise NotFound("Entity", entity_name) from None

    def entities(self) -> List[EntitySchema]:
        """All entities in registration order"""
        return list(self._entities.values())

    def dimensions(self) -> List[EntitySchema]:
        return [e for e in self._entities.values() if e.kind == EntityKind.DIMENSION]

    def facts(self) -> List[EntitySchema]:
        return [e for e in self._entities.values() if e.kind == EntityKind.FACT]

    def default_fact(self) -> EntitySchema:
        """The single registered fact entity"""
        facts = self.facts()
        if len(facts) != 1:
            raise NotFound("Fact entity", f"expected exactly one, found {len(facts)}")
        return facts[0]

    def joined_attributes(self, fact_name: str) -> Dict[str, JoinedAttribute]:
        """
        Attribute namespace of a fact joined to its dimensions.

        Fact fields keep their names. Dimension non-key fields use their bare
        name, or ``<entity>_<field>`` when the bare name is already taken.
        ``revenue`` is derived from the fact's non-negative DECIMAL and
        INTEGER measure fields when both exist.
        """
        fact = self.get(fact_name)
        attributes: Dict[str, JoinedAttribute] = {}

        for spec in fact.fields:
            attributes[spec.name] = JoinedAttribute(spec.name, fact.name, spec.name, spec.type, spec.scale)

        for _, dim_name in fact.foreign_keys:
            dim = self.get(dim_name)
            for spec in dim.fields:
                if spec.name == dim.primary_key:
                    continue
                name = spec.name
                if name in attributes:
                    name = f"{dim.name}_{spec.name}"
                attributes[name] = JoinedAttribute(name, dim.name, spec.name, spec.type, spec.scale)

        price, quantity = revenue_operands(fact)
        if price is not None and quantity is not None and REVENUE_ATTRIBUTE not in attributes:
            attributes[REVENUE_ATTRIBUTE] = JoinedAttribute(
                REVENUE_ATTRIBUTE, fact.name, REVENUE_ATTRIBUTE, FieldType.DECIMAL, price.scale
            )

        return attributes


def revenue_operands(fact: EntitySchema) -> Tuple[Optional[FieldSpec], Optional[FieldSpec]]:
    """First non-negative DECIMAL (unit price) and INTEGER (quantity) measure fields of a fact"""
    keys = {fact.primary_key, *(fk for fk, _ in fact.foreign_keys)}
    measures = [f for f in fact.fields if f.non_negative and f.name not in keys]
    price = next((f for f in measures if f.type == FieldType.DECIMAL), None)
    quantity = next((f for f in measures if f.type == FieldType.INTEGER), None)
    return price, quantity
