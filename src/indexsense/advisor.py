"""
Index advisor: analysis loading, derived index view and selection.

The advisor ties the pieces together for one table:

    MetadataProvider ──load()──▶ AnalysisSnapshot
                                      │
              ScoringConfig ─────────▶│ build_index_views()   (pure, every call)
                                      ▼
                                 IndexView list ──select()──▶ selection
                                                               │
                         SimulationOrchestrator ◀─simulate()───┘
                                      │
                                      ▼
                              SelectionSummary / drop plan

Derived data is never cached: views are rebuilt from the current snapshot
and the current weights on every call. Loading a table (or reloading it)
starts from scratch, discarding the selection and any simulation results.

Usage:
    advisor = IndexAdvisor(metadata, simulator, Dialect.MYSQL, "shop", "orders")
    await advisor.load()
    for view in advisor.views():
        print(view.name, view.signal.label, view.scores.risk)
    advisor.select("idx_email")
    await advisor.simulate()
    print(advisor.summary())
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Iterable

from indexsense.calibration import CalibrationStore
from indexsense.dialect import Dialect
from indexsense.drop_plan import build_drop_plan
from indexsense.exceptions import MetadataLoadError, PersistError
from indexsense.grouping import group_index_rows
from indexsense.models import (
    AnalysisSnapshot,
    IndexView,
    ScoringConfig,
    SignalLabel,
    parse_suggestion,
)
from indexsense.providers import MetadataProvider
from indexsense.scoring import ScoringEngine
from indexsense.signals import classify_index
from indexsense.simulation import (
    SimulationBatch,
    SimulationOrchestrator,
    SimulationProvider,
    SelectionSummary,
    summarize_selection,
)
from indexsense.suggestions import build_suggestion_index

logger = logging.getLogger(__name__)

# Labels hidden by the "candidates only" filter
_NON_CANDIDATE_LABELS = (SignalLabel.UNKNOWN, SignalLabel.PROTECTED, SignalLabel.ACTIVE)


def build_index_views(
    snapshot: AnalysisSnapshot,
    config: ScoringConfig | None = None,
) -> list[IndexView]:
    """Classify and score every index of a snapshot."""
    config = config or ScoringConfig()
    suggestion_index = build_suggestion_index(snapshot.suggestions, snapshot.dialect)
    engine = ScoringEngine(snapshot, config)

    views = [
        IndexView(
            group=group,
            signal=classify_index(group, suggestion_index, snapshot.usage_map, snapshot.dialect),
            scores=engine.score(group),
        )
        for group in snapshot.groups
    ]
    logger.debug("Derived %d index views for %s.%s", len(views), snapshot.database, snapshot.table)
    return views


def filter_views(
    views: Iterable[IndexView],
    search: str = "",
    candidates_only: bool = False,
) -> list[IndexView]:
    """
    Filter views by free-text search and candidate status.

    The search matches index names and column names, case-insensitively.
    With candidates_only, unknown, protected and active indexes are hidden.
    """
    result = []
    for view in views:
        if candidates_only and view.signal.label in _NON_CANDIDATE_LABELS:
            continue
        if not view.matches(search):
            continue
        result.append(view)
    return result


async def _optional(call: Awaitable[list[Any]], what: str) -> list[Any]:
    """Await an optional telemetry call; failure or None means no telemetry."""
    try:
        return list(await call or [])
    except Exception as e:
        logger.warning("Optional %s unavailable: %s", what, e)
        return []


async def load_snapshot(
    provider: MetadataProvider,
    dialect: Dialect,
    database: str,
    table: str,
) -> AnalysisSnapshot:
    """
    Fetch all metadata for a table concurrently and build a snapshot.

    Raises:
        MetadataLoadError: If index rows, suggestions or table stats fail,
            or if what they return cannot be parsed.
    """
    results = await asyncio.gather(
        provider.get_table_indexes(database, table),
        provider.get_index_suggestions(database, table),
        provider.get_table_stats(database, table),
        _optional(provider.get_index_usage(database, table), "index usage"),
        _optional(provider.get_index_sizes(database, table), "index sizes"),
        return_exceptions=True,
    )
    errors = [r for r in results if isinstance(r, Exception)]
    if errors:
        if len(errors) > 1:
            logger.debug("%d metadata calls failed for %s.%s", len(errors), database, table)
        raise _load_error(errors[0], database, table) from errors[0]
    rows, suggestions, stats, usage, sizes = results

    try:
        parsed = (parse_suggestion(s) for s in suggestions or [])
        return AnalysisSnapshot(
            database=database,
            table=table,
            dialect=dialect,
            groups=tuple(group_index_rows(rows or [])),
            suggestions=tuple(s for s in parsed if s is not None),
            usage=tuple(usage),
            sizes=tuple(sizes),
            table_stats=stats,
        )
    except Exception as e:
        raise _load_error(e, database, table) from e


def _load_error(error: Exception, database: str, table: str) -> MetadataLoadError:
    return MetadataLoadError(
        f"Analysis failed: {error}",
        database=database,
        table=table,
        original_error=error,
    )


class IndexAdvisor:
    """
    Session state for analyzing one table.

    Holds the current snapshot, the scoring weights, the selection and the
    simulation orchestrator. Everything derived is recomputed on demand.
    """

    def __init__(
        self,
        metadata: MetadataProvider,
        simulator: SimulationProvider,
        dialect: Dialect,
        database: str,
        table: str,
        calibration: CalibrationStore | None = None,
        max_concurrency: int | None = None,
    ) -> None:
        self.metadata = metadata
        self.dialect = dialect
        self.database = database
        self.table = table
        self.calibration = calibration
        self.scoring_config = calibration.load() if calibration else ScoringConfig()
        self.orchestrator = SimulationOrchestrator(
            simulator, dialect, database, table, max_concurrency=max_concurrency,
        )
        self._snapshot: AnalysisSnapshot | None = None
        self._selection: set[str] = set()
        self.error: str | None = None

    # ── Analysis ─────────────────────────────────────────────────────────

    @property
    def snapshot(self) -> AnalysisSnapshot:
        if self._snapshot is None:
            raise MetadataLoadError(
                "Analysis not loaded", database=self.database, table=self.table,
            )
        return self._snapshot

    @property
    def is_loaded(self) -> bool:
        return self._snapshot is not None

    async def load(self) -> AnalysisSnapshot:
        """
        (Re)load the table's metadata, starting from scratch.

        On failure the previous analysis is dropped and ``error`` holds the
        message until the next successful load.
        """
        self._snapshot = None
        self._selection = set()
        self.orchestrator.clear()
        self.error = None
        try:
            self._snapshot = await load_snapshot(
                self.metadata, self.dialect, self.database, self.table,
            )
        except MetadataLoadError as e:
            self.error = e.message
            raise
        return self._snapshot

    def views(self) -> list[IndexView]:
        return build_index_views(self.snapshot, self.scoring_config)

    def filtered_views(self, search: str = "", candidates_only: bool = False) -> list[IndexView]:
        return filter_views(self.views(), search=search, candidates_only=candidates_only)

    def unused_candidates(self) -> list[IndexView]:
        """Indexes classified as unused or low-utility."""
        return [v for v in self.views() if v.is_candidate]

    # ── Calibration ──────────────────────────────────────────────────────

    def set_weight(self, scope: str, key: str, value: float) -> PersistError | None:
        """Change one scoring weight; returns the persistence error, if any."""
        self.scoring_config = self.scoring_config.with_weight(scope, key, value)
        if self.calibration is None:
            return None
        return self.calibration.save(self.scoring_config)

    def reset_weights(self) -> ScoringConfig:
        if self.calibration is not None:
            self.scoring_config = self.calibration.reset()
        else:
            self.scoring_config = ScoringConfig()
        return self.scoring_config

    # ── Selection ────────────────────────────────────────────────────────

    def select(self, *index_names: str) -> None:
        self._selection.update(index_names)

    def deselect(self, *index_names: str) -> None:
        self._selection.difference_update(index_names)

    def clear_selection(self) -> None:
        """Empty the selection and discard simulation results."""
        self._selection = set()
        self.orchestrator.clear()

    def selected_views(self) -> list[IndexView]:
        """Selected, non-protected indexes in table order."""
        return [
            v for v in self.views()
            if v.name in self._selection and not v.is_protected
        ]

    def drop_plan(self) -> str:
        """DROP INDEX script for the current selection."""
        return build_drop_plan(
            (v.name for v in self.selected_views()),
            self.dialect,
            schema=self.database,
            table=self.table,
        )

    # ── Simulation ───────────────────────────────────────────────────────

    async def simulate(self) -> SimulationBatch | None:
        """Run a what-if batch over the current selection."""
        targets = [v.name for v in self.selected_views()]
        return await self.orchestrator.run(targets)

    def summary(self) -> SelectionSummary:
        return summarize_selection(
            self.selected_views(), self.snapshot, self.orchestrator.batch,
        )
