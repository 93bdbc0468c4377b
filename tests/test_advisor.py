"""
Integration tests for the index advisor over snapshot fixtures.
"""

import asyncio
from pathlib import Path

import pytest

from indexsense.advisor import IndexAdvisor, filter_views
from indexsense.calibration import CalibrationStore, InMemoryStore
from indexsense.dialect import Dialect
from indexsense.exceptions import MetadataLoadError, PersistError, SnapshotError
from indexsense.providers import (
    ReplaySimulationProvider,
    SnapshotMetadataProvider,
    TableSnapshotFile,
)
from indexsense.simulation import BatchState


FIXTURES_DIR = Path(__file__).parent / "fixtures"


class FlakyMetadata(SnapshotMetadataProvider):
    """Snapshot provider with selected calls failing."""

    def __init__(self, snapshot, failing=()):
        super().__init__(snapshot)
        self.failing = set(failing)

    async def get_table_indexes(self, database, table):
        if "indexes" in self.failing:
            raise ConnectionError("connection refused")
        return await super().get_table_indexes(database, table)

    async def get_index_suggestions(self, database, table):
        if "suggestions" in self.failing:
            raise TimeoutError("suggestions timed out")
        return await super().get_index_suggestions(database, table)

    async def get_index_usage(self, database, table):
        if "usage" in self.failing:
            raise PermissionError("performance_schema disabled")
        return await super().get_index_usage(database, table)

    async def get_index_sizes(self, database, table):
        if "sizes" in self.failing:
            raise PermissionError("no access to innodb_index_stats")
        return await super().get_index_sizes(database, table)


class BrokenStore:
    def get(self, key):
        return None

    def set(self, key, value):
        raise OSError("read-only filesystem")


@pytest.fixture
def orders_file() -> TableSnapshotFile:
    return TableSnapshotFile.load(FIXTURES_DIR / "orders_mysql.json")


def make_advisor(snapshot_file, metadata=None, calibration=None) -> IndexAdvisor:
    return IndexAdvisor(
        metadata=metadata or SnapshotMetadataProvider(snapshot_file),
        simulator=ReplaySimulationProvider.from_snapshot(snapshot_file),
        dialect=snapshot_file.dialect,
        database=snapshot_file.database,
        table=snapshot_file.table,
        calibration=calibration,
    )


@pytest.fixture
def advisor(orders_file) -> IndexAdvisor:
    advisor = make_advisor(orders_file)
    asyncio.run(advisor.load())
    return advisor


class TestLoading:
    """Tests for analysis loading and its failure modes."""

    def test_load(self, advisor):
        """Test loading the orders snapshot."""
        assert advisor.is_loaded
        assert advisor.error is None
        assert [v.name for v in advisor.views()] == [
            "PRIMARY", "idx_email", "idx_status", "idx_customer_created", "idx_legacy",
        ]

    def test_required_call_failure(self, orders_file):
        """Test that a failed required call surfaces as one load error."""
        advisor = make_advisor(orders_file, FlakyMetadata(orders_file, failing={"indexes"}))

        with pytest.raises(MetadataLoadError) as exc_info:
            asyncio.run(advisor.load())

        assert exc_info.value.message == "Analysis failed: connection refused"
        assert advisor.error == "Analysis failed: connection refused"
        assert not advisor.is_loaded
        with pytest.raises(MetadataLoadError):
            advisor.views()

    def test_several_required_failures_report_the_first(self, orders_file):
        """Test that concurrent failures surface as one load error."""
        metadata = FlakyMetadata(orders_file, failing={"indexes", "suggestions"})
        advisor = make_advisor(orders_file, metadata)

        with pytest.raises(MetadataLoadError) as exc_info:
            asyncio.run(advisor.load())

        assert exc_info.value.message == "Analysis failed: connection refused"
        assert isinstance(exc_info.value.__cause__, ConnectionError)

    def test_malformed_suggestion_fails_the_load(self):
        """Test that a suggestion which is not an object is a load error."""
        snapshot_file = TableSnapshotFile({
            "dialect": "mysql",
            "database": "shop",
            "table": "orders",
            "indexes": [{"name": "idx_a", "column_name": "a"}],
            "suggestions": ["idx_a is unused"],
        })
        advisor = make_advisor(snapshot_file)

        with pytest.raises(MetadataLoadError):
            asyncio.run(advisor.load())

        assert advisor.error.startswith("Analysis failed: Malformed suggestion")
        assert not advisor.is_loaded

    def test_malformed_index_row_fails_the_load(self):
        """Test that an index row without a column is a load error."""
        snapshot_file = TableSnapshotFile({
            "dialect": "mysql",
            "database": "shop",
            "table": "orders",
            "indexes": [{"name": "idx_a"}],
        })
        advisor = make_advisor(snapshot_file)

        with pytest.raises(MetadataLoadError):
            asyncio.run(advisor.load())

        assert advisor.error.startswith("Analysis failed:")

    def test_optional_telemetry_failure_degrades(self, orders_file):
        """Test that failed usage and size calls degrade to no telemetry."""
        metadata = FlakyMetadata(orders_file, failing={"usage", "sizes"})
        advisor = make_advisor(orders_file, metadata)

        snapshot = asyncio.run(advisor.load())

        assert snapshot.usage == ()
        assert snapshot.sizes == ()
        # Without usage the zero-ops index has nothing left to go on
        views = {v.name: v for v in advisor.views()}
        assert views["idx_email"].signal.label.value == "unknown"
        assert views["idx_legacy"].signal.label.value == "unused"

    def test_reload_clears_error(self, orders_file):
        """Test that a successful retry clears the error."""
        metadata = FlakyMetadata(orders_file, failing={"indexes"})
        advisor = make_advisor(orders_file, metadata)
        with pytest.raises(MetadataLoadError):
            asyncio.run(advisor.load())

        metadata.failing.clear()
        asyncio.run(advisor.load())

        assert advisor.error is None
        assert advisor.is_loaded

    def test_reload_resets_selection_and_results(self, advisor):
        """Test that reloading starts from scratch."""
        advisor.select("idx_email")
        asyncio.run(advisor.simulate())

        asyncio.run(advisor.load())

        assert advisor.selected_views() == []
        assert advisor.orchestrator.batch is None

    def test_snapshot_scope_mismatch(self, orders_file):
        """Test asking a snapshot about a different table."""
        advisor = IndexAdvisor(
            metadata=SnapshotMetadataProvider(orders_file),
            simulator=ReplaySimulationProvider.from_snapshot(orders_file),
            dialect=Dialect.MYSQL,
            database="shop",
            table="customers",
        )
        with pytest.raises(MetadataLoadError, match="not shop.customers"):
            asyncio.run(advisor.load())

    def test_snapshot_file_errors(self, tmp_path):
        """Test missing and malformed snapshot files."""
        with pytest.raises(SnapshotError):
            TableSnapshotFile.load(tmp_path / "missing.json")

        bad = tmp_path / "bad.json"
        bad.write_text("[1, 2")
        with pytest.raises(SnapshotError, match="Invalid JSON"):
            TableSnapshotFile.load(bad)

    @pytest.mark.parametrize("data", [{"database": "shop", "indexes": []}, {"table": "  "}])
    def test_snapshot_must_name_a_table(self, data):
        """Test that a snapshot without a table is rejected up front."""
        with pytest.raises(SnapshotError, match="does not name a table"):
            TableSnapshotFile(data)


class TestFiltering:
    """Tests for search and candidate filtering."""

    def test_candidates_only(self, advisor):
        """Test hiding unknown, protected and active indexes."""
        names = [v.name for v in advisor.filtered_views(candidates_only=True)]
        assert names == ["idx_email", "idx_customer_created", "idx_legacy"]

    def test_search_matches_columns(self, advisor):
        """Test that search matches column names."""
        assert [v.name for v in advisor.filtered_views(search="created_at")] == ["idx_customer_created"]

    def test_search_is_case_insensitive(self, advisor):
        """Test that search ignores case."""
        assert [v.name for v in advisor.filtered_views(search="EMAIL")] == ["idx_email"]

    def test_blank_search_matches_all(self, advisor):
        """Test that a blank search keeps every index."""
        assert len(filter_views(advisor.views(), search="  ")) == 5

    def test_unused_candidates(self, advisor):
        """Test the list of unused and low-utility indexes."""
        names = {v.name for v in advisor.unused_candidates()}
        assert names == {"idx_email", "idx_customer_created", "idx_legacy"}


class TestSelection:
    """Tests for selection, drop plans and summaries."""

    def test_protected_never_selected(self, advisor):
        """Test that the primary index never joins the selection."""
        advisor.select("PRIMARY", "idx_email")
        assert [v.name for v in advisor.selected_views()] == ["idx_email"]

    def test_drop_plan_in_table_order(self, advisor):
        """Test that the drop plan follows table order."""
        advisor.select("idx_legacy", "idx_email")
        assert advisor.drop_plan() == (
            "DROP INDEX `idx_email` ON `orders`;\n"
            "DROP INDEX `idx_legacy` ON `orders`;"
        )

    def test_deselect(self, advisor):
        """Test removing an index from the selection."""
        advisor.select("idx_legacy", "idx_email")
        advisor.deselect("idx_legacy")
        assert [v.name for v in advisor.selected_views()] == ["idx_email"]

    def test_unknown_names_are_ignored(self, advisor):
        """Test that unknown index names select nothing."""
        advisor.select("does_not_exist")
        assert advisor.selected_views() == []
        assert advisor.drop_plan() == ""

    def test_summary_without_simulation(self, advisor):
        """Test the summary before any simulation."""
        advisor.select("idx_email", "idx_legacy")
        summary = advisor.summary()

        assert summary.selected_count == 2
        assert summary.total_indexes == 5
        assert not summary.has_simulation


class TestSimulation:
    """Tests for the advisor simulation flow over replayed results."""

    def test_simulate_selection(self, advisor):
        """Test simulating a selection with one recorded failure."""
        advisor.select("idx_email", "idx_status", "idx_legacy")
        batch = asyncio.run(advisor.simulate())

        assert batch.index_names == ("idx_email", "idx_status", "idx_legacy")
        legacy = batch.by_index()["idx_legacy"]
        assert legacy.failed
        assert legacy.notes == ["Simulation failed: EXPLAIN timed out"]
        assert legacy.drop_sql == "DROP INDEX `idx_legacy` ON `orders`;"

        summary = advisor.summary()
        assert summary.simulated_count == 3
        assert summary.failed_count == 1
        # (76 + 82 + 0) / 3
        assert summary.avg_confidence == 53
        assert summary.worst_regression_pct == 120.5

    def test_summary_only_covers_selected(self, advisor):
        """Test that deselected indexes drop out of the summary."""
        advisor.select("idx_email", "idx_status")
        asyncio.run(advisor.simulate())
        advisor.deselect("idx_status")

        summary = advisor.summary()
        assert summary.simulated_count == 1
        assert summary.avg_confidence == 76

    def test_unrecorded_index_fails(self, advisor):
        """Test that an index without a recording shows as failed."""
        advisor.select("idx_customer_created")
        batch = asyncio.run(advisor.simulate())

        assert batch.results[0].failed
        assert batch.results[0].notes[0].startswith("Simulation failed:")

    def test_clear_selection_discards_results(self, advisor):
        """Test that clearing the selection discards results."""
        advisor.select("idx_email")
        asyncio.run(advisor.simulate())
        assert advisor.orchestrator.state is BatchState.SETTLED

        advisor.clear_selection()

        assert advisor.orchestrator.batch is None
        assert advisor.orchestrator.state is BatchState.IDLE
        assert advisor.summary().selected_count == 0

    def test_simulate_nothing_selected(self, advisor):
        """Test simulating an empty selection."""
        assert asyncio.run(advisor.simulate()) is None
        assert advisor.orchestrator.state is BatchState.IDLE


class TestCalibration:
    """Tests for weight changes through the advisor."""

    def test_loads_persisted_weights(self, orders_file):
        """Test that stored weights are used from the start."""
        memory = InMemoryStore()
        CalibrationStore(memory).set_weight("risk", "usage", 0.0)

        advisor = make_advisor(orders_file, calibration=CalibrationStore(memory))
        asyncio.run(advisor.load())

        assert advisor.scoring_config.risk.usage == 0.0

    def test_set_weight_rescores_and_persists(self, orders_file):
        """Test that a weight change rescores and is stored."""
        memory = InMemoryStore()
        advisor = make_advisor(orders_file, calibration=CalibrationStore(memory))
        asyncio.run(advisor.load())

        assert advisor.set_weight("risk", "usage", 0.0) is None

        views = {v.name: v for v in advisor.views()}
        assert views["idx_status"].scores.risk == 10
        assert CalibrationStore(memory).load().risk.usage == 0.0

    def test_set_weight_returns_persist_error(self, orders_file):
        """Test that a save failure is returned and the weight still applies."""
        advisor = make_advisor(orders_file, calibration=CalibrationStore(BrokenStore()))
        asyncio.run(advisor.load())

        error = advisor.set_weight("impact", "size", 0.9)

        assert isinstance(error, PersistError)
        assert advisor.scoring_config.impact.size == 0.9

    def test_reset_weights(self, advisor):
        """Test restoring the default weights."""
        advisor.set_weight("risk", "usage", 0.0)
        config = advisor.reset_weights()
        assert config.risk.usage == 0.6
