"""
Sales Star Schema

Entity definitions for the sales warehouse:

Dimension Tables:
- date_dim: Calendar attributes, one row per distinct date
- product_dim: Product type / category
- customer_segment_dim: Customer city segment

Fact Tables:
- sales_fact: One row per sale, priced per unit with quantity sold
"""

from datetime import date, timedelta
from typing import Any, Dict, List

from salesdw.schema.registry import EntitySchemaRegistry, FieldSpec, FieldType

DATE_DIM = "date_dim"
PRODUCT_DIM = "product_dim"
CUSTOMER_SEGMENT_DIM = "customer_segment_dim"
SALES_FACT = "sales_fact"

MONTH_NAMES = [
    "January", "February", "March", "April", "May", "June",
    "July", "August", "September", "October", "November", "December",
]
WEEKDAY_NAMES = ["Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday"]


# =============================================================================
# ENTITY SHAPES
# =============================================================================

DATE_DIM_FIELDS = [
    FieldSpec("id", FieldType.INTEGER),  # YYYYMMDD
    FieldSpec("date", FieldType.DATE, nullable=False),
    FieldSpec("year", FieldType.INTEGER),
    FieldSpec("quarter", FieldType.INTEGER),
    FieldSpec("quarter_name", FieldType.STRING),
    FieldSpec("month", FieldType.INTEGER),
    FieldSpec("month_name", FieldType.STRING),
    FieldSpec("day", FieldType.INTEGER),
    FieldSpec("weekday", FieldType.INTEGER),  # 1=Monday
    FieldSpec("weekday_name", FieldType.STRING),
]

PRODUCT_DIM_FIELDS = [
    FieldSpec("id", FieldType.INTEGER),
    FieldSpec("product_type", FieldType.STRING),
]

CUSTOMER_SEGMENT_DIM_FIELDS = [
    FieldSpec("id", FieldType.INTEGER),
    FieldSpec("city", FieldType.STRING),
]

SALES_FACT_FIELDS = [
    FieldSpec("sales_id", FieldType.STRING),
    FieldSpec("date_id", FieldType.INTEGER),
    FieldSpec("product_id", FieldType.INTEGER),
    FieldSpec("segment_id", FieldType.INTEGER),
    FieldSpec("price_per_unit", FieldType.DECIMAL, nullable=False, scale=2, non_negative=True),
    FieldSpec("quantity_sold", FieldType.INTEGER, nullable=False, non_negative=True),
]


def register_sales_schema(registry: EntitySchemaRegistry) -> EntitySchemaRegistry:
    """Register the sales star schema on an existing registry"""
    registry.register(DATE_DIM, DATE_DIM_FIELDS, "id")
    registry.register(PRODUCT_DIM, PRODUCT_DIM_FIELDS, "id")
    registry.register(CUSTOMER_SEGMENT_DIM, CUSTOMER_SEGMENT_DIM_FIELDS, "id")
    registry.register(
        SALES_FACT,
        SALES_FACT_FIELDS,
        "sales_id",
        foreign_keys={
            "date_id": DATE_DIM,
            "product_id": PRODUCT_DIM,
            "segment_id": CUSTOMER_SEGMENT_DIM,
        },
    )
    return registry


def build_sales_registry() -> EntitySchemaRegistry:
    """Create a registry holding the sales star schema"""
    return register_sales_schema(EntitySchemaRegistry())


# =============================================================================
# DATE DIMENSION
# =============================================================================

def date_key(day: date) -> int:
    """Surrogate key in YYYYMMDD format"""
    return day.year * 10000 + day.month * 100 + day.day


def date_dimension_row(day: date) -> Dict[str, Any]:
    """Calendar attributes for a single date"""
    quarter = (day.month - 1) // 3 + 1
    weekday = day.isoweekday()
    return {
        "id": date_key(day),
        "date": day,
        "year": day.year,
        "quarter": quarter,
        "quarter_name": f"Q{quarter}",
        "month": day.month,
        "month_name": MONTH_NAMES[day.month - 1],
        "day": day.day,
        "weekday": weekday,
        "weekday_name": WEEKDAY_NAMES[weekday - 1],
    }


def build_date_dimension(start: date, end: date) -> List[Dict[str, Any]]:
    """
    Generate date dimension rows for every day in ``[start, end]``.

    Args:
        start: First calendar day (inclusive)
        end: Last calendar day (inclusive)

    Returns:
        Rows ready for ``load_batch(DATE_DIM, rows)``
    """
    if end < start:
        raise ValueError(f"End date {end} is before start date {start}")
    days = (end - start).days + 1
    return [date_dimension_row(start + timedelta(days=offset)) for offset in range(days)]
