"""
Aggregation Specifications

Declarative descriptions of an aggregation: the measure, the grouping mode
over a list of attributes, and optional equality filters. Specs are Pydantic
models so materialized aggregates can be persisted and rebuilt from them.
"""

from enum import Enum
from itertools import combinations
from typing import Any, Dict, List, Optional, Sequence, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from salesdw.schema.registry import REVENUE_ATTRIBUTE


class MeasureFunction(str, Enum):
    """Supported aggregate functions"""
    SUM = "sum"
    MAX = "max"
    AVG = "avg"


class GroupingMode(str, Enum):
    """How grouping sets are derived from the attribute list"""
    GROUPS = "groups"  # Plain GROUP BY
    ROLLUP = "rollup"
    CUBE = "cube"
    SETS = "grouping_sets"


class Measure(BaseModel):
    """Aggregate function applied to one numeric attribute"""

    model_config = ConfigDict(frozen=True)

    function: MeasureFunction = MeasureFunction.SUM
    attribute: str = REVENUE_ATTRIBUTE

    @property
    def label(self) -> str:
        return f"{self.function.value}_{self.attribute}"

    @classmethod
    def sum(cls, attribute: str = REVENUE_ATTRIBUTE) -> "Measure":
        return cls(function=MeasureFunction.SUM, attribute=attribute)

    @classmethod
    def max(cls, attribute: str = REVENUE_ATTRIBUTE) -> "Measure":
        return cls(function=MeasureFunction.MAX, attribute=attribute)

    @classmethod
    def avg(cls, attribute: str = REVENUE_ATTRIBUTE) -> "Measure":
        return cls(function=MeasureFunction.AVG, attribute=attribute)


class Grouping(BaseModel):
    """
    Grouping mode over an ordered attribute list.

    ``expand()`` turns the mode into concrete attribute subsets,
    each listed in attribute order:

    - groups: the full attribute list only
    - rollup: every prefix, longest first, down to the grand total
    - cube: every subset, larger subsets first
    - grouping_sets: the explicit ``sets`` in the order given

    Example:
        Grouping.rollup(["year", "city"]).expand()
        # [("year", "city"), ("year",), ()]
    """

    model_config = ConfigDict(frozen=True)

    mode: GroupingMode = GroupingMode.GROUPS
    attributes: Tuple[str, ...] = ()
    sets: Optional[Tuple[Tuple[str, ...], ...]] = None

    @field_validator("attributes")
    @classmethod
    def validate_attributes(cls, v: Tuple[str, ...]) -> Tuple[str, ...]:
        if len(set(v)) != len(v):
            raise ValueError(f"Grouping attributes must be distinct: {list(v)}")
        return v

    @model_validator(mode="after")
    def validate_sets(self) -> "Grouping":
        if self.mode == GroupingMode.SETS:
            if self.sets is None:
                raise ValueError("Grouping sets mode requires 'sets'")
            for grouping_set in self.sets:
                stray = [a for a in grouping_set if a not in self.attributes]
                if stray:
                    raise ValueError(f"Grouping set {list(grouping_set)} uses unlisted attributes {stray}")
        elif self.sets is not None:
            raise ValueError(f"'sets' is only valid for {GroupingMode.SETS.value} mode")
        return self

    @classmethod
    def groups(cls, attributes: Sequence[str]) -> "Grouping":
        return cls(mode=GroupingMode.GROUPS, attributes=tuple(attributes))

    @classmethod
    def rollup(cls, attributes: Sequence[str]) -> "Grouping":
        return cls(mode=GroupingMode.ROLLUP, attributes=tuple(attributes))

    @classmethod
    def cube(cls, attributes: Sequence[str]) -> "Grouping":
        return cls(mode=GroupingMode.CUBE, attributes=tuple(attributes))

    @classmethod
    def grouping_sets(cls, attributes: Sequence[str], sets: Sequence[Sequence[str]]) -> "Grouping":
        return cls(
            mode=GroupingMode.SETS,
            attributes=tuple(attributes),
            sets=tuple(tuple(s) for s in sets),
        )

    def expand(self) -> List[Tuple[str, ...]]:
        """Concrete grouping sets, each in attribute order"""
        attrs = self.attributes
        if self.mode == GroupingMode.GROUPS:
            return [attrs]
        if self.mode == GroupingMode.ROLLUP:
            return [attrs[:size] for size in range(len(attrs), -1, -1)]
        if self.mode == GroupingMode.CUBE:
            return [
                subset
                for size in range(len(attrs), -1, -1)
                for subset in combinations(attrs, size)
            ]
        position = {name: index for index, name in enumerate(attrs)}
        return [
            tuple(sorted(dict.fromkeys(grouping_set), key=position.__getitem__))
            for grouping_set in self.sets
        ]


class AggregationSpec(BaseModel):
    """
    Complete aggregation request.

    ``filters`` maps an attribute to the values it may take; all filters must
    match (AND). A ``None`` among the values matches nulls.
    """

    model_config = ConfigDict(frozen=True)

    measure: Measure = Field(default_factory=Measure)
    grouping: Grouping = Field(default_factory=Grouping)
    filters: Dict[str, Tuple[Any, ...]] = Field(default_factory=dict)
    fact: Optional[str] = None

    @field_validator("filters", mode="before")
    @classmethod
    def normalize_filters(cls, v: Any) -> Any:
        """Accept scalars as single-value filters"""
        if v is None:
            return {}
        return {
            name: tuple(values) if isinstance(values, (list, tuple, set, frozenset)) else (values,)
            for name, values in dict(v).items()
        }

    def referenced_attributes(self) -> List[str]:
        """Every attribute this spec reads, in first-use order"""
        names = [*self.grouping.attributes, self.measure.attribute, *self.filters]
        return list(dict.fromkeys(names))
