"""
Unit Tests - Batch Loading
"""
from datetime import date
from decimal import Decimal

import polars as pl
import pytest

from salesdw.exceptions import ConstraintViolation, DanglingReference, DuplicateKey, NotFound
from salesdw.schema.coercion import from_scaled_integer, to_scaled_integer


class TestCoercion:
    """Tests for fixed-point conversion"""

    def test_to_scaled_integer(self):
        assert to_scaled_integer("5.00") == 500
        assert to_scaled_integer(Decimal("19.9")) == 1990
        assert to_scaled_integer(3) == 300
        assert to_scaled_integer(0.1) == 10

    def test_rejects_extra_precision(self):
        """Test values needing more than two decimals are rejected"""
        with pytest.raises(ValueError):
            to_scaled_integer("1.005")

    def test_rejects_non_numeric(self):
        with pytest.raises(ValueError):
            to_scaled_integer("abc")

    def test_from_scaled_integer(self):
        assert from_scaled_integer(7500) == Decimal("75.00")
        assert str(from_scaled_integer(5)) == "0.05"
        assert from_scaled_integer(None) is None


class TestDimensionLoads:
    """Tests for dimension batch loads"""

    def test_load_dimension(self, warehouse, product_rows):
        """Test a valid dimension batch is appended"""
        result = warehouse.load_batch("product_dim", product_rows)

        assert result.rows_loaded == 3
        assert result.store_rows == 3
        assert warehouse.count("product_dim") == 3

    def test_duplicate_key_against_store(self, warehouse, product_rows):
        """Test DuplicateKey when a key already exists"""
        warehouse.load_batch("product_dim", product_rows)

        with pytest.raises(DuplicateKey) as exc_info:
            warehouse.load_batch("product_dim", [{"id": 4, "product_type": "Books"}, {"id": 2, "product_type": "Games"}])

        assert exc_info.value.keys == [2]
        assert warehouse.count("product_dim") == 3

    def test_duplicate_key_within_batch(self, warehouse):
        """Test DuplicateKey when a key repeats inside one batch"""
        with pytest.raises(DuplicateKey) as exc_info:
            warehouse.load_batch("customer_segment_dim", [
                {"id": 1, "city": "NY"},
                {"id": 1, "city": "LA"},
            ])

        assert exc_info.value.keys == [1]
        assert warehouse.count("customer_segment_dim") == 0

    def test_missing_and_unexpected_fields(self, warehouse):
        """Test rows must match the registered shape"""
        with pytest.raises(ConstraintViolation) as exc_info:
            warehouse.load_batch("product_dim", [{"id": 1}, {"id": 2, "product_type": "Toys", "color": "red"}])

        assert len(exc_info.value.errors) == 2
        assert warehouse.count("product_dim") == 0

    def test_null_key_rejected(self, warehouse):
        with pytest.raises(ConstraintViolation):
            warehouse.load_batch("product_dim", [{"id": None, "product_type": "Toys"}])

    def test_unknown_entity(self, warehouse):
        with pytest.raises(NotFound):
            warehouse.load_batch("store_dim", [{"id": 1}])

    def test_string_values_are_coerced(self, warehouse):
        """Test text input from CSV-like sources"""
        warehouse.load_batch("date_dim", [{
            "id": "20240101",
            "date": "2024-01-01",
            "year": "2024",
            "quarter": "1",
            "quarter_name": "Q1",
            "month": "1",
            "month_name": "January",
            "day": "1",
            "weekday": "1",
            "weekday_name": "Monday",
        }])

        frame = warehouse.store.frame("date_dim")
        assert frame["id"].to_list() == [20240101]
        assert frame["date"].to_list() == [date(2024, 1, 1)]


class TestFactLoads:
    """Tests for fact batch loads"""

    def test_referential_integrity_holds(self, loaded_warehouse):
        """Test every stored fact's foreign keys resolve"""
        store = loaded_warehouse.store
        facts = store.frame("sales_fact")

        for fk_field, dim_name in loaded_warehouse.registry.get("sales_fact").foreign_keys:
            known = set(store.frame(dim_name)["id"].to_list())
            assert set(facts[fk_field].to_list()) <= known

    def test_dangling_reference(self, seeded_warehouse, sale):
        """Test DanglingReference lists every unresolved key"""
        with pytest.raises(DanglingReference) as exc_info:
            seeded_warehouse.load_batch("sales_fact", [
                sale("s1", 20240101, 1, 1, "5.00", 1),
                sale("s2", 20991231, 1, 9, "5.00", 1),
            ])

        assert exc_info.value.references == [("date_id", 20991231), ("segment_id", 9)]

    def test_batch_is_atomic(self, seeded_warehouse, sale):
        """Test one invalid row keeps the whole batch out"""
        batch = [sale(f"s{i}", 20240101, 1, 1, "1.00", 1) for i in range(10)]
        batch.append(sale("bad", 20240101, 42, 1, "1.00", 1))

        with pytest.raises(DanglingReference):
            seeded_warehouse.load_batch("sales_fact", batch)

        assert seeded_warehouse.count("sales_fact") == 0

        # Warehouse stays usable after the failure
        seeded_warehouse.load_batch("sales_fact", batch[:-1])
        assert seeded_warehouse.count("sales_fact") == 10

    def test_duplicate_sales_id(self, loaded_warehouse, sale):
        with pytest.raises(DuplicateKey):
            loaded_warehouse.load_batch("sales_fact", [sale("s1", 20240101, 1, 1, "1.00", 1)])
        assert loaded_warehouse.count("sales_fact") == 5

    def test_negative_measures_rejected(self, seeded_warehouse, sale):
        """Test price and quantity must be non-negative"""
        with pytest.raises(ConstraintViolation) as exc_info:
            seeded_warehouse.load_batch("sales_fact", [
                sale("s1", 20240101, 1, 1, "-1.00", 1),
                sale("s2", 20240101, 1, 1, "1.00", -3),
            ])

        assert len(exc_info.value.errors) == 2
        assert seeded_warehouse.count("sales_fact") == 0

    def test_price_stored_exactly(self, seeded_warehouse, sale):
        """Test fixed-point prices are stored as hundredths"""
        seeded_warehouse.load_batch("sales_fact", [sale("s1", 20240101, 1, 1, "19.99", 2)])

        assert seeded_warehouse.store.frame("sales_fact")["price_per_unit"].to_list() == [1999]

    def test_values_beyond_storage_range_rejected(self, seeded_warehouse, sale):
        """Test prices and quantities too large for the store are constraint violations"""
        with pytest.raises(ConstraintViolation) as exc_info:
            seeded_warehouse.load_batch("sales_fact", [
                sale("s1", 20240101, 1, 1, "100000000000000000.00", 1),
                sale("s2", 20240101, 1, 1, "1.00", 2 ** 63),
            ])

        assert len(exc_info.value.errors) == 2
        assert "out of range" in exc_info.value.errors[0]
        assert seeded_warehouse.count("sales_fact") == 0

    def test_largest_storable_price(self, seeded_warehouse, sale):
        seeded_warehouse.load_batch("sales_fact", [sale("s1", 20240101, 1, 1, "92233720368547758.07", 1)])

        assert seeded_warehouse.store.frame("sales_fact")["price_per_unit"].to_list() == [2 ** 63 - 1]


class TestCsvLoads:
    """Tests for CSV batch loads"""

    def test_load_csv(self, seeded_warehouse, tmp_path):
        """Test a header-first CSV file is loaded as one batch"""
        path = tmp_path / "sales.csv"
        pl.DataFrame({
            "sales_id": ["c1", "c2"],
            "date_id": [20240101, 20240102],
            "product_id": [1, 2],
            "segment_id": [1, 2],
            "price_per_unit": ["5.00", "2.50"],
            "quantity_sold": [2, 4],
        }).write_csv(path)

        result = seeded_warehouse.load_csv("sales_fact", path)

        assert result.rows_loaded == 2
        assert result.source == str(path)
        assert seeded_warehouse.store.frame("sales_fact")["price_per_unit"].to_list() == [500, 250]

    def test_csv_null_tokens(self, warehouse, tmp_path):
        """Test configured null tokens become nulls"""
        path = tmp_path / "products.csv"
        path.write_text("id,product_type\n1,Toys\n2,NULL\n", encoding="utf-8")

        warehouse.load_csv("product_dim", path)

        assert warehouse.store.frame("product_dim")["product_type"].to_list() == ["Toys", None]

    def test_csv_atomicity(self, seeded_warehouse, tmp_path):
        """Test a bad CSV row rejects the whole file"""
        path = tmp_path / "sales.csv"
        path.write_text(
            "sales_id,date_id,product_id,segment_id,price_per_unit,quantity_sold\n"
            "c1,20240101,1,1,5.00,2\n"
            "c2,20240101,1,1,abc,2\n",
            encoding="utf-8",
        )

        with pytest.raises(ConstraintViolation):
            seeded_warehouse.load_csv("sales_fact", path)

        assert seeded_warehouse.count("sales_fact") == 0

    def test_missing_file(self, warehouse, tmp_path):
        with pytest.raises(FileNotFoundError):
            warehouse.load_csv("product_dim", tmp_path / "missing.csv")
