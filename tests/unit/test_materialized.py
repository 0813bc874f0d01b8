"""
Unit Tests - Materialized Aggregates
"""
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from salesdw.aggregation import AggregationSpec, Grouping, Measure
from salesdw.exceptions import NameConflict, NotFound, UnknownAttribute
from salesdw.serving import MaterializedCache


@pytest.fixture
def revenue_by_year() -> AggregationSpec:
    return AggregationSpec(measure=Measure.sum(), grouping=Grouping.rollup(["year"]))


class FakeClock:
    """Deterministic clock advancing one minute per call"""

    def __init__(self):
        self.now = datetime(2024, 6, 1, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        self.now += timedelta(minutes=1)
        return self.now


class TestMaterializedCache:
    """Tests for MaterializedCache"""

    def test_materialize_and_read(self, loaded_warehouse, revenue_by_year):
        entry = loaded_warehouse.materialize("m1", revenue_by_year)

        assert entry.name == "m1"
        assert entry.snapshot_at.tzinfo is not None
        assert loaded_warehouse.read("m1") == loaded_warehouse.aggregate(Measure.sum(), Grouping.rollup(["year"]))

    def test_read_is_stale_until_refresh(self, loaded_warehouse, revenue_by_year, sale):
        """Test reads keep the pre-load snapshot until refresh"""
        loaded_warehouse.materialize("m1", revenue_by_year)
        before = loaded_warehouse.read("m1")

        loaded_warehouse.load_batch("sales_fact", [sale("s6", 20240102, 2, 1, "10.00", 2)])

        assert loaded_warehouse.read("m1") == before
        assert before.get((None,)).value == Decimal("104.50")

        loaded_warehouse.refresh("m1")

        after = loaded_warehouse.read("m1")
        assert after.get((None,)).value == Decimal("124.50")
        assert after.get((2024,)).value == Decimal("105.50")

    def test_refresh_replaces_timestamp(self, loaded_warehouse, revenue_by_year):
        cache = MaterializedCache(loaded_warehouse.engine, clock=FakeClock())

        created = cache.materialize("m1", revenue_by_year)
        refreshed = cache.refresh("m1")

        assert refreshed.snapshot_at == created.snapshot_at + timedelta(minutes=1)
        assert refreshed.refresh_count == 1
        assert refreshed.spec == created.spec

    def test_name_conflict(self, loaded_warehouse, revenue_by_year):
        loaded_warehouse.materialize("m1", revenue_by_year)
        original = loaded_warehouse.cache.get("m1")

        with pytest.raises(NameConflict):
            loaded_warehouse.materialize("m1", AggregationSpec(grouping=Grouping.groups(["city"])))

        assert loaded_warehouse.cache.get("m1") is original

    def test_drop(self, loaded_warehouse, revenue_by_year):
        """Test reads fail with NotFound after drop"""
        loaded_warehouse.materialize("m1", revenue_by_year)

        loaded_warehouse.drop("m1")

        with pytest.raises(NotFound):
            loaded_warehouse.read("m1")
        assert "m1" not in loaded_warehouse.cache

    def test_missing_names(self, loaded_warehouse):
        for operation in (loaded_warehouse.read, loaded_warehouse.refresh, loaded_warehouse.drop):
            with pytest.raises(NotFound):
                operation("missing")

    def test_failed_materialize_leaves_cache_unchanged(self, loaded_warehouse):
        with pytest.raises(UnknownAttribute):
            loaded_warehouse.materialize("bad", AggregationSpec(grouping=Grouping.groups(["region"])))

        assert loaded_warehouse.cache.names() == []

    def test_name_reusable_after_drop(self, loaded_warehouse, revenue_by_year):
        loaded_warehouse.materialize("m1", revenue_by_year)
        loaded_warehouse.drop("m1")

        entry = loaded_warehouse.materialize("m1", AggregationSpec(grouping=Grouping.groups(["city"])))

        assert entry.result.attributes == ("city",)

    def test_filtered_view(self, loaded_warehouse, sale):
        """Test filters are kept with the view and reapplied on refresh"""
        spec = AggregationSpec(grouping=Grouping.groups(["city"]), filters={"year": 2025})
        loaded_warehouse.materialize("la_2025", spec)

        loaded_warehouse.load_batch("sales_fact", [sale("s6", 20250301, 1, 2, "1.00", 3)])
        loaded_warehouse.refresh("la_2025")

        assert loaded_warehouse.read("la_2025").get(("LA",)).value == Decimal("10.00")
