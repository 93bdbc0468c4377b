"""
What-if drop simulation batches.

The orchestrator fans out one simulate() call per selected index to an
external SimulationProvider, joins all of them, and only then publishes the
batch. A failing call never aborts the batch: it is converted into a
synthetic result with mode "failed", zeroed metrics, a drop statement the
user can still act on, and the failure reason in its notes.

Batch lifecycle:

    IDLE ──run()──▶ RUNNING ──all calls resolved──▶ SETTLED
      ▲                                               │
      └──────────────────── clear() ◀─────────────────┘

Every run() takes a new generation number. When a newer run() or clear()
happens while a batch is in flight, the older batch is discarded on
completion instead of replacing the newer state.

Usage:
    orchestrator = SimulationOrchestrator(provider, Dialect.MYSQL, "shop", "orders")
    batch = await orchestrator.run(["idx_email", "idx_status"])
    summary = summarize_selection(selected_views, snapshot, batch)
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterable, Protocol, Sequence

from indexsense.dialect import Dialect, is_primary_index
from indexsense.drop_plan import build_drop_statement
from indexsense.exceptions import SimulationError
from indexsense.models import (
    AnalysisSnapshot,
    IndexView,
    QueryDiff,
    SimulationMode,
    SimulationResult,
)
from indexsense.scoring import round_half_up

logger = logging.getLogger(__name__)

# Upper bound of the write-overhead heuristic, in percent
WRITE_OVERHEAD_CAP_PCT = 60


class SimulationProvider(Protocol):
    """
    External what-if engine.

    Must be safe to call concurrently and must never modify the schema.
    May raise; the orchestrator absorbs failures per index.
    """

    async def simulate(
        self,
        database: str,
        table: str,
        index_name: str,
    ) -> SimulationResult: ...


class BatchState(str, Enum):
    """Lifecycle state of the current simulation batch."""

    IDLE = "idle"
    RUNNING = "running"
    SETTLED = "settled"


@dataclass(frozen=True)
class SimulationBatch:
    """A settled set of simulation results, one per target index."""

    generation: int
    database: str
    table: str
    results: tuple[SimulationResult, ...]
    duration_ms: float = 0.0

    @property
    def index_names(self) -> tuple[str, ...]:
        return tuple(r.index_name for r in self.results)

    @property
    def failed_count(self) -> int:
        return sum(1 for r in self.results if r.failed)

    def by_index(self) -> dict[str, SimulationResult]:
        return {r.index_name: r for r in self.results}


class SimulationOrchestrator:
    """
    Runs simulation batches against a provider for one table.

    Only the latest settled batch is kept; it is replaced wholesale by the
    next run and discarded by clear().
    """

    def __init__(
        self,
        provider: SimulationProvider,
        dialect: Dialect,
        database: str,
        table: str,
        max_concurrency: int | None = None,
    ) -> None:
        self.provider = provider
        self.dialect = dialect
        self.database = database
        self.table = table
        self.max_concurrency = max_concurrency
        self._generation = 0
        self._state = BatchState.IDLE
        self._batch: SimulationBatch | None = None

    @property
    def state(self) -> BatchState:
        return self._state

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def batch(self) -> SimulationBatch | None:
        """The latest settled batch, if any."""
        return self._batch

    @property
    def results(self) -> tuple[SimulationResult, ...]:
        return self._batch.results if self._batch else ()

    def clear(self) -> None:
        """Discard published results and orphan any in-flight batch."""
        self._generation += 1
        self._batch = None
        self._state = BatchState.IDLE

    async def run(self, selection: Iterable[str]) -> SimulationBatch | None:
        """
        Simulate dropping every index in the selection.

        Protected (primary) indexes are never simulated. An empty selection
        is a no-op and leaves the current state untouched.

        Returns:
            The settled batch, or None when the selection was empty or the
            batch was superseded while in flight.
        """
        targets = [
            name for name in dict.fromkeys(selection)
            if not is_primary_index(name, self.dialect)
        ]
        if not targets:
            return None

        self._generation += 1
        generation = self._generation
        self._state = BatchState.RUNNING
        logger.info(
            "Starting simulation batch %d for %s.%s (%d indexes)",
            generation, self.database, self.table, len(targets),
        )

        semaphore = asyncio.Semaphore(self.max_concurrency) if self.max_concurrency else None
        start = time.perf_counter()
        results = await asyncio.gather(
            *(self._simulate_one(name, semaphore) for name in targets)
        )
        duration_ms = (time.perf_counter() - start) * 1000

        if generation != self._generation:
            logger.warning(
                "Discarding stale simulation batch %d (current generation %d)",
                generation, self._generation,
            )
            return None

        batch = SimulationBatch(
            generation=generation,
            database=self.database,
            table=self.table,
            results=tuple(results),
            duration_ms=duration_ms,
        )
        self._batch = batch
        self._state = BatchState.SETTLED
        logger.info(
            "Simulation batch %d settled in %.1fms (%d failed)",
            generation, duration_ms, batch.failed_count,
        )
        return batch

    async def _simulate_one(
        self,
        index_name: str,
        semaphore: asyncio.Semaphore | None,
    ) -> SimulationResult:
        """Run one provider call; failures become a synthetic failed result."""
        try:
            if semaphore is None:
                raw = await self.provider.simulate(self.database, self.table, index_name)
            else:
                async with semaphore:
                    raw = await self.provider.simulate(self.database, self.table, index_name)
            if isinstance(raw, SimulationResult):
                return raw
            return SimulationResult.model_validate(raw)
        except Exception as e:
            error = SimulationError(index_name, e)
            logger.warning("Simulation for index %s failed: %s", index_name, e)
            result = SimulationResult.failure(
                index_name=index_name,
                reason=error.message,
                drop_sql="",
                database=self.database,
                table=self.table,
            )
            try:
                drop_sql = build_drop_statement(
                    index_name,
                    self.dialect,
                    schema=self.database,
                    table=self.table,
                )
            except ValueError as sql_error:
                return result.model_copy(
                    update={"notes": [*result.notes, f"No drop statement: {sql_error}"]}
                )
            return result.model_copy(update={"drop_sql": drop_sql})


# =============================================================================
# Selection summary
# =============================================================================


@dataclass(frozen=True)
class SelectionSummary:
    """
    Go/no-go picture for the current selection.

    Risk, impact, storage and write overhead describe the selection itself
    and need no simulation. Confidence and worst regression cover only the
    simulated indexes that are still selected.

    The write-overhead reduction is a crude heuristic: the share of the
    table's indexes being dropped, scaled to at most 60%. It is not a
    measurement.
    """

    selected_count: int
    total_indexes: int
    avg_risk: int = 0
    avg_impact: int = 0
    estimated_storage_bytes: float | None = None
    write_overhead_reduction_pct: int = 0
    simulated_count: int = 0
    failed_count: int = 0
    avg_confidence: int = 0
    worst_regression_pct: float = 0.0

    @property
    def has_simulation(self) -> bool:
        return self.simulated_count > 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "selected_count": self.selected_count,
            "total_indexes": self.total_indexes,
            "avg_risk": self.avg_risk,
            "avg_impact": self.avg_impact,
            "estimated_storage_bytes": self.estimated_storage_bytes,
            "write_overhead_reduction_pct": self.write_overhead_reduction_pct,
            "simulated_count": self.simulated_count,
            "failed_count": self.failed_count,
            "avg_confidence": self.avg_confidence,
            "worst_regression_pct": self.worst_regression_pct,
        }


def estimate_write_overhead_reduction(selected_count: int, total_indexes: int) -> int:
    """Percent of write overhead saved, capped at 60%; a heuristic, not a measurement."""
    if total_indexes <= 0:
        return 0
    return min(WRITE_OVERHEAD_CAP_PCT, round_half_up(selected_count / total_indexes * WRITE_OVERHEAD_CAP_PCT))


def summarize_selection(
    selected: Sequence[IndexView],
    snapshot: AnalysisSnapshot,
    batch: SimulationBatch | None = None,
) -> SelectionSummary:
    """
    Aggregate the selection and its simulation results.

    Args:
        selected: Indexes currently selected (protected ones are ignored).
        snapshot: Snapshot the views were derived from.
        batch: Latest settled simulation batch, if any.
    """
    selected = [view for view in selected if not view.is_protected]
    count = len(selected)
    total = len(snapshot.groups)

    if not count:
        return SelectionSummary(selected_count=0, total_indexes=total)

    by_index = batch.by_index() if batch else {}
    simulations = [by_index[v.name] for v in selected if v.name in by_index]

    avg_confidence = 0
    worst_regression = 0.0
    if simulations:
        avg_confidence = round_half_up(
            sum(s.confidence_score for s in simulations) / len(simulations)
        )
        worst_regression = max(0.0, max(s.worst_regression_pct for s in simulations))

    return SelectionSummary(
        selected_count=count,
        total_indexes=total,
        avg_risk=round_half_up(sum(v.scores.risk for v in selected) / count),
        avg_impact=round_half_up(sum(v.scores.impact for v in selected) / count),
        estimated_storage_bytes=sum(snapshot.estimated_size(v.name) for v in selected),
        write_overhead_reduction_pct=estimate_write_overhead_reduction(count, total),
        simulated_count=len(simulations),
        failed_count=sum(1 for s in simulations if s.failed),
        avg_confidence=avg_confidence,
        worst_regression_pct=worst_regression,
    )


# =============================================================================
# Result building (for provider implementations)
# =============================================================================


def compute_simulation_confidence(
    mode: str,
    matched_queries: int,
    sampled_queries: int,
    analyzed_queries: int,
    failed_queries: int,
) -> int:
    """
    Self-reported reliability of a simulation, in [5, 98].

    Plan-based (what-if) simulations start higher than heuristic ones;
    coverage of the matched query history and the number of analyzed
    queries raise confidence, failed EXPLAINs lower it.
    """
    score = 55 if mode == SimulationMode.WHAT_IF.value else 28

    if matched_queries > 0:
        coverage = sampled_queries / matched_queries
        score += round_half_up(coverage * 22)

    score += round_half_up(min(analyzed_queries, 30) / 30 * 20)
    score -= min(failed_queries * 3, 25)

    return int(min(98, max(5, score)))


def build_simulation_result(
    index_name: str,
    mode: str,
    query_diffs: Iterable[QueryDiff],
    matched_queries: int,
    drop_sql: str = "",
    rollback_sql: str = "",
    notes: Iterable[str] = (),
    database: str = "",
    table: str = "",
) -> SimulationResult:
    """
    Assemble a SimulationResult from per-query plan diffs.

    The sampled query count is the number of diffs. Regression statistics
    cover diffs flagged as regressions that carry a delta.
    """
    diffs = list(query_diffs)
    analyzed = sum(1 for d in diffs if d.before_cost is not None and d.after_cost is not None)
    failed = len(diffs) - analyzed
    regressions = sum(1 for d in diffs if d.regression)
    deltas = [d.delta_pct for d in diffs if d.regression and d.delta_pct is not None]

    avg_regression = sum(deltas) / len(deltas) if deltas else 0.0
    worst_regression = max(deltas) if deltas else 0.0
    sampled = len(diffs)
    coverage = sampled / matched_queries if matched_queries > 0 else 0.0

    diffs.sort(key=lambda d: d.delta_pct or 0.0, reverse=True)

    return SimulationResult(
        database=database,
        table=table,
        index_name=index_name,
        mode=mode,
        drop_sql=drop_sql,
        rollback_sql=rollback_sql,
        analyzed_queries=analyzed,
        matched_queries=matched_queries,
        failed_queries=failed,
        regressions=regressions,
        avg_regression_pct=round(avg_regression, 2),
        worst_regression_pct=round(worst_regression, 2),
        coverage_ratio=round(min(1.0, coverage), 2),
        confidence_score=compute_simulation_confidence(
            mode, matched_queries, sampled, analyzed, failed,
        ),
        query_diffs=diffs,
        notes=list(notes),
    )
