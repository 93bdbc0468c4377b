"""
Tests for simulation batches, selection summaries and result building.
"""

import asyncio
from pathlib import Path

import pytest

from indexsense.advisor import build_index_views, load_snapshot
from indexsense.dialect import Dialect
from indexsense.models import QueryDiff, SimulationResult
from indexsense.providers import (
    ReplaySimulationProvider,
    SnapshotMetadataProvider,
    TableSnapshotFile,
)
from indexsense.simulation import (
    BatchState,
    SimulationBatch,
    SimulationOrchestrator,
    build_simulation_result,
    compute_simulation_confidence,
    estimate_write_overhead_reduction,
    summarize_selection,
)


FIXTURES_DIR = Path(__file__).parent / "fixtures"


class FakeSimulator:
    """Returns canned results; raises for names listed in ``failures``."""

    def __init__(self, confidence=None, failures=(), gates=None, delay=0.0):
        self.confidence = confidence or {}
        self.failures = set(failures)
        self.gates = gates or {}
        self.delay = delay
        self.calls = []
        self.active = 0
        self.max_active = 0

    async def simulate(self, database, table, index_name):
        self.calls.append(index_name)
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if index_name in self.gates:
                await self.gates[index_name].wait()
            if self.delay:
                await asyncio.sleep(self.delay)
            if index_name in self.failures:
                raise RuntimeError("boom")
            return SimulationResult(
                database=database,
                table=table,
                index_name=index_name,
                confidence_score=self.confidence.get(index_name, 50),
            )
        finally:
            self.active -= 1


@pytest.fixture
def orders_file() -> TableSnapshotFile:
    return TableSnapshotFile.load(FIXTURES_DIR / "orders_mysql.json")


@pytest.fixture
def orders(orders_file):
    return asyncio.run(load_snapshot(
        SnapshotMetadataProvider(orders_file), Dialect.MYSQL, "shop", "orders",
    ))


class TestOrchestrator:
    """Tests for running and publishing simulation batches."""

    def test_runs_every_selected_index(self):
        """Test one call per distinct selected index."""
        simulator = FakeSimulator()
        orchestrator = SimulationOrchestrator(simulator, Dialect.MYSQL, "shop", "orders")

        batch = asyncio.run(orchestrator.run(["idx_email", "idx_status", "idx_email"]))

        assert batch.index_names == ("idx_email", "idx_status")
        assert sorted(simulator.calls) == ["idx_email", "idx_status"]
        assert orchestrator.state is BatchState.SETTLED
        assert orchestrator.batch is batch

    def test_primary_is_never_simulated(self):
        """Test that the primary index is left out of a batch."""
        simulator = FakeSimulator()
        orchestrator = SimulationOrchestrator(simulator, Dialect.MYSQL, "shop", "orders")

        batch = asyncio.run(orchestrator.run(["PRIMARY", "idx_email"]))

        assert batch.index_names == ("idx_email",)
        assert "PRIMARY" not in simulator.calls

    def test_empty_selection_is_a_noop(self):
        """Test that an empty selection starts no batch."""
        orchestrator = SimulationOrchestrator(FakeSimulator(), Dialect.MYSQL, "shop", "orders")

        assert asyncio.run(orchestrator.run([])) is None
        assert asyncio.run(orchestrator.run(["PRIMARY"])) is None
        assert orchestrator.state is BatchState.IDLE
        assert orchestrator.generation == 0

    def test_failure_becomes_failed_result(self):
        """Test that a failing call becomes a failed result in a settled batch."""
        simulator = FakeSimulator(failures={"idx_email"})
        orchestrator = SimulationOrchestrator(simulator, Dialect.MYSQL, "shop", "orders")

        batch = asyncio.run(orchestrator.run(["idx_email", "idx_status"]))
        failed = batch.by_index()["idx_email"]

        assert orchestrator.state is BatchState.SETTLED
        assert failed.mode == "failed"
        assert failed.failed
        assert failed.confidence_score == 0
        assert failed.analyzed_queries == 0
        assert failed.notes == ["Simulation failed: boom"]
        assert failed.drop_sql == "DROP INDEX `idx_email` ON `orders`;"
        assert batch.by_index()["idx_status"].mode == "what_if"
        assert batch.failed_count == 1

    def test_postgres_failure_drop_sql_uses_schema(self):
        """Test the fallback drop statement for PostgreSQL failures."""
        simulator = FakeSimulator(failures={"idx_email"})
        orchestrator = SimulationOrchestrator(simulator, Dialect.POSTGRESQL, "public", "users")

        batch = asyncio.run(orchestrator.run(["idx_email"]))

        assert batch.results[0].drop_sql == 'DROP INDEX IF EXISTS "public"."idx_email";'

    def test_mysql_failure_without_table_still_settles(self):
        """Test a MySQL failure when no drop statement can be rendered."""
        simulator = FakeSimulator(failures={"idx_email"})
        orchestrator = SimulationOrchestrator(simulator, Dialect.MYSQL, "shop", "")

        batch = asyncio.run(orchestrator.run(["idx_email", "idx_status"]))
        failed = batch.by_index()["idx_email"]

        assert orchestrator.state is BatchState.SETTLED
        assert failed.failed
        assert failed.drop_sql == ""
        assert failed.notes[0] == "Simulation failed: boom"
        assert failed.notes[1].startswith("No drop statement:")
        assert batch.by_index()["idx_status"].mode == "what_if"

    def test_every_call_fails(self):
        """Test that a batch settles even when every call fails."""
        simulator = FakeSimulator(failures={"a", "b"})
        orchestrator = SimulationOrchestrator(simulator, Dialect.MYSQL, "shop", "orders")

        batch = asyncio.run(orchestrator.run(["a", "b"]))

        assert batch.failed_count == 2
        assert orchestrator.state is BatchState.SETTLED

    def test_clear_discards_in_flight_batch(self):
        """Test that clearing orphans a running batch."""
        gate = asyncio.Event()
        simulator = FakeSimulator(gates={"idx_email": gate})
        orchestrator = SimulationOrchestrator(simulator, Dialect.MYSQL, "shop", "orders")

        async def scenario():
            task = asyncio.create_task(orchestrator.run(["idx_email"]))
            await asyncio.sleep(0)
            assert orchestrator.state is BatchState.RUNNING
            orchestrator.clear()
            gate.set()
            return await task

        assert asyncio.run(scenario()) is None
        assert orchestrator.batch is None
        assert orchestrator.state is BatchState.IDLE

    def test_newer_run_wins(self):
        """Test that a stale batch cannot replace a newer one."""
        gate = asyncio.Event()
        simulator = FakeSimulator(gates={"idx_slow": gate})
        orchestrator = SimulationOrchestrator(simulator, Dialect.MYSQL, "shop", "orders")

        async def scenario():
            old = asyncio.create_task(orchestrator.run(["idx_slow"]))
            await asyncio.sleep(0)
            new = await orchestrator.run(["idx_fast"])
            gate.set()
            return await old, new

        old, new = asyncio.run(scenario())

        assert old is None
        assert new.index_names == ("idx_fast",)
        assert orchestrator.batch is new
        assert orchestrator.state is BatchState.SETTLED

    def test_max_concurrency(self):
        """Test the cap on concurrent provider calls."""
        simulator = FakeSimulator(delay=0.01)
        orchestrator = SimulationOrchestrator(
            simulator, Dialect.MYSQL, "shop", "orders", max_concurrency=2,
        )

        batch = asyncio.run(orchestrator.run([f"idx_{i}" for i in range(5)]))

        assert len(batch.results) == 5
        assert simulator.max_active <= 2

    def test_results_replaced_wholesale(self):
        """Test that a new batch replaces all earlier results."""
        orchestrator = SimulationOrchestrator(FakeSimulator(), Dialect.MYSQL, "shop", "orders")

        asyncio.run(orchestrator.run(["idx_a", "idx_b"]))
        asyncio.run(orchestrator.run(["idx_c"]))

        assert [r.index_name for r in orchestrator.results] == ["idx_c"]


class TestReplayProvider:
    """Tests for replaying recorded simulations from a snapshot."""

    def test_query_diffs_are_aggregated(self, orders_file):
        """Test building a result from recorded query diffs."""
        provider = ReplaySimulationProvider.from_snapshot(orders_file)
        result = asyncio.run(provider.simulate("shop", "orders", "idx_email"))

        assert result.analyzed_queries == 3
        assert result.failed_queries == 1
        assert result.confidence_score == 76
        assert result.database == "shop"

    def test_full_result_is_passed_through(self, orders_file):
        """Test replaying a complete recorded result."""
        provider = ReplaySimulationProvider.from_snapshot(orders_file)
        result = asyncio.run(provider.simulate("shop", "orders", "idx_status"))

        assert result.confidence_score == 82
        assert result.worst_regression_pct == 120.5
        assert result.index_name == "idx_status"

    def test_recorded_error_raises(self, orders_file):
        """Test replaying a recorded failure."""
        provider = ReplaySimulationProvider.from_snapshot(orders_file)
        with pytest.raises(RuntimeError, match="EXPLAIN timed out"):
            asyncio.run(provider.simulate("shop", "orders", "idx_legacy"))

    def test_missing_recording_raises(self, orders_file):
        """Test that an index without a recording raises LookupError."""
        provider = ReplaySimulationProvider.from_snapshot(orders_file)
        with pytest.raises(LookupError):
            asyncio.run(provider.simulate("shop", "orders", "idx_customer_created"))


class TestSummarizeSelection:
    """Tests for the go/no-go aggregate of a selection."""

    def test_empty_selection(self, orders):
        """Test the summary of an empty selection."""
        summary = summarize_selection([], orders)

        assert summary.selected_count == 0
        assert summary.total_indexes == 5
        assert summary.avg_risk == 0
        assert not summary.has_simulation

    def test_protected_views_are_ignored(self, orders):
        """Test that protected indexes do not count as selected."""
        views = {v.name: v for v in build_index_views(orders)}
        summary = summarize_selection([views["PRIMARY"]], orders)
        assert summary.selected_count == 0

    def test_without_simulation(self, orders):
        """Test risk, storage and write overhead before any simulation."""
        views = {v.name: v for v in build_index_views(orders)}
        selected = [views["idx_email"], views["idx_status"]]

        summary = summarize_selection(selected, orders)

        expected_risk = (views["idx_email"].scores.risk + views["idx_status"].scores.risk) / 2
        assert summary.selected_count == 2
        assert summary.avg_risk == int(expected_risk + 0.5)
        assert summary.estimated_storage_bytes == 2097152 + 1048576
        assert summary.write_overhead_reduction_pct == 24
        assert summary.avg_confidence == 0
        assert summary.simulated_count == 0

    def test_with_simulation(self, orders):
        """Test that confidence only covers simulated, selected indexes."""
        views = {v.name: v for v in build_index_views(orders)}
        selected = [views["idx_email"], views["idx_status"], views["idx_legacy"]]
        batch = SimulationBatch(
            generation=1,
            database="shop",
            table="orders",
            results=(
                SimulationResult(index_name="idx_email", confidence_score=76, worst_regression_pct=50.0),
                SimulationResult(index_name="idx_status", confidence_score=82, worst_regression_pct=120.5),
                SimulationResult(index_name="idx_customer_created", confidence_score=10),
            ),
        )

        summary = summarize_selection(selected, orders, batch)

        # idx_customer_created is not selected, idx_legacy has no result
        assert summary.simulated_count == 2
        assert summary.avg_confidence == 79
        assert summary.worst_regression_pct == 120.5

    def test_failed_results_count_toward_confidence(self, orders):
        """Test that failed results pull average confidence down."""
        views = {v.name: v for v in build_index_views(orders)}
        batch = SimulationBatch(
            generation=1,
            database="shop",
            table="orders",
            results=(
                SimulationResult(index_name="idx_email", confidence_score=81),
                SimulationResult.failure("idx_legacy", "Simulation failed: x", drop_sql=""),
            ),
        )

        summary = summarize_selection([views["idx_email"], views["idx_legacy"]], orders, batch)

        assert summary.failed_count == 1
        assert summary.avg_confidence == 41

    @pytest.mark.parametrize("selected,total,expected", [
        (0, 5, 0),
        (1, 3, 20),
        (2, 5, 24),
        (5, 5, 60),
        (1, 0, 0),
    ])
    def test_write_overhead(self, selected, total, expected):
        """Test the capped write-overhead heuristic."""
        assert estimate_write_overhead_reduction(selected, total) == expected


class TestResultBuilding:
    """Tests for assembling results from per-query diffs."""

    @pytest.fixture
    def diffs(self):
        return [
            QueryDiff(query_hash="q1", before_cost=100.0, after_cost=100.0, delta_pct=0.0),
            QueryDiff(query_hash="q2", before_cost=50.0, after_cost=75.0, delta_pct=50.0, regression=True),
            QueryDiff(query_hash="q3", before_cost=10.0, after_cost=12.0, delta_pct=20.0, regression=True),
            QueryDiff(query_hash="q4", reason="EXPLAIN failed"),
        ]

    def test_aggregates(self, diffs):
        """Test counts, regression statistics and confidence from diffs."""
        result = build_simulation_result("idx_email", "what_if", diffs, matched_queries=4)

        assert result.analyzed_queries == 3
        assert result.failed_queries == 1
        assert result.regressions == 2
        assert result.avg_regression_pct == 35.0
        assert result.worst_regression_pct == 50.0
        assert result.coverage_ratio == 1.0
        assert result.confidence_score == 76

    def test_diffs_sorted_by_delta(self, diffs):
        """Test that diffs are ordered by delta, largest first."""
        result = build_simulation_result("idx_email", "what_if", diffs, matched_queries=4)
        assert [d.query_hash for d in result.query_diffs] == ["q2", "q3", "q1", "q4"]

    def test_partial_coverage(self, diffs):
        """Test coverage and confidence for a partial sample."""
        result = build_simulation_result("idx_email", "heuristic", diffs[:2], matched_queries=8)

        assert result.coverage_ratio == 0.25
        # 28 + round(0.25 * 22) + round(2 / 30 * 20)
        assert result.confidence_score == 28 + 6 + 1

    def test_no_diffs(self):
        """Test a result without any query diffs."""
        result = build_simulation_result("idx_email", "heuristic", [], matched_queries=0)

        assert result.coverage_ratio == 0.0
        assert result.avg_regression_pct == 0.0
        assert result.confidence_score == 28

    @pytest.mark.parametrize("args,expected", [
        (("what_if", 10, 10, 30, 0), 97),
        (("what_if", 0, 0, 0, 0), 55),
        (("heuristic", 0, 0, 0, 20), 5),
        (("what_if", 4, 4, 3, 1), 76),
        (("manual", 10, 5, 100, 0), 28 + 11 + 20),
    ])
    def test_confidence(self, args, expected):
        """Test the confidence formula and its clamping."""
        assert compute_simulation_confidence(*args) == expected
