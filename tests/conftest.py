"""
Test Suite Configuration
"""
from datetime import date
from decimal import Decimal
from typing import Any, Dict, List

import pytest

from salesdw.config import Settings
from salesdw.schema import build_date_dimension, build_sales_registry
from salesdw.warehouse import Warehouse


@pytest.fixture(scope="session")
def test_settings() -> Settings:
    """Create test settings"""
    return Settings(APP_ENV="testing")


@pytest.fixture
def registry():
    """Fresh registry holding the sales star schema"""
    return build_sales_registry()


@pytest.fixture
def warehouse() -> Warehouse:
    """Empty warehouse with the sales schema registered"""
    return Warehouse()


@pytest.fixture
def date_rows() -> List[Dict[str, Any]]:
    """Two dates in 2024 and one in 2025"""
    return [
        *build_date_dimension(date(2024, 1, 1), date(2024, 1, 2)),
        *build_date_dimension(date(2025, 3, 1), date(2025, 3, 1)),
    ]


@pytest.fixture
def product_rows() -> List[Dict[str, Any]]:
    return [
        {"id": 1, "product_type": "Electronics"},
        {"id": 2, "product_type": "Toys"},
        {"id": 3, "product_type": None},
    ]


@pytest.fixture
def segment_rows() -> List[Dict[str, Any]]:
    return [
        {"id": 1, "city": "NY"},
        {"id": 2, "city": "LA"},
        {"id": 3, "city": None},
    ]


def make_sale(sales_id: str, date_id: int, product_id: int, segment_id: int, price: str, quantity: int) -> Dict[str, Any]:
    """Build a sales fact record"""
    return {
        "sales_id": sales_id,
        "date_id": date_id,
        "product_id": product_id,
        "segment_id": segment_id,
        "price_per_unit": Decimal(price),
        "quantity_sold": quantity,
    }


@pytest.fixture
def seeded_warehouse(warehouse, date_rows, product_rows, segment_rows) -> Warehouse:
    """Warehouse with all dimensions loaded and no facts"""
    warehouse.load_batch("date_dim", date_rows)
    warehouse.load_batch("product_dim", product_rows)
    warehouse.load_batch("customer_segment_dim", segment_rows)
    return warehouse


@pytest.fixture
def sales_rows() -> List[Dict[str, Any]]:
    """
    Sales spread over two years and three cities.

    Revenue: s1=50.00, s2=25.00, s3=10.50, s4=7.00, s5=12.00
    """
    return [
        make_sale("s1", 20240101, 1, 1, "5.00", 10),
        make_sale("s2", 20240101, 2, 2, "5.00", 5),
        make_sale("s3", 20240102, 1, 1, "3.50", 3),
        make_sale("s4", 20250301, 2, 2, "7.00", 1),
        make_sale("s5", 20250301, 3, 3, "4.00", 3),
    ]


@pytest.fixture
def loaded_warehouse(seeded_warehouse, sales_rows) -> Warehouse:
    """Warehouse with dimensions and the sample sales loaded"""
    seeded_warehouse.load_batch("sales_fact", sales_rows)
    return seeded_warehouse


@pytest.fixture
def sale():
    """Factory for sales fact records"""
    return make_sale
