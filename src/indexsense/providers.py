"""
Provider interfaces and snapshot-file implementations.

The advisor never talks to a database itself. Index metadata comes from a
MetadataProvider and what-if results from a SimulationProvider
(see indexsense.simulation). Both are read-only.

For offline use (CLI, tests, CI fixtures) a table snapshot can be captured
as one JSON document and served by the file providers below:

    {
      "dialect": "mysql",
      "database": "shop",
      "table": "orders",
      "indexes":      [{"name": "PRIMARY", "column_name": "id", "non_unique": false, "index_type": "BTREE"}],
      "suggestions":  [{"index_name": "idx_email", "column_name": "email", "reason": "..."}],
      "table_stats":  {"row_count": 250000, "data_size": 52428800, "index_size": 16777216},
      "index_usage":  [{"index_name": "idx_status", "total_ops": 5000}],
      "index_sizes":  [{"index_name": "idx_status", "size_bytes": 4194304}],
      "simulations":  {"idx_status": {"mode": "what_if", "matched_queries": 12, "query_diffs": [...]},
                       "idx_email":  {"error": "EXPLAIN timed out"}}
    }

Usage and size sections are optional; leaving them out means the telemetry
is unknown, not that the indexes are unused.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Protocol

from indexsense.dialect import Dialect
from indexsense.exceptions import SnapshotError
from indexsense.models import (
    IndexRow,
    QueryDiff,
    SimulationResult,
    SizeStat,
    TableStats,
    UsageStat,
)
from indexsense.simulation import build_simulation_result

logger = logging.getLogger(__name__)


class MetadataProvider(Protocol):
    """
    Read-only source of index metadata for one (database, table).

    Index rows, suggestions and table stats are required. Usage and size
    stats are optional: an empty list is a legitimate answer.
    """

    async def get_table_indexes(self, database: str, table: str) -> list[IndexRow]: ...
    async def get_index_suggestions(self, database: str, table: str) -> list[dict[str, Any]]: ...
    async def get_table_stats(self, database: str, table: str) -> TableStats | None: ...
    async def get_index_usage(self, database: str, table: str) -> list[UsageStat]: ...
    async def get_index_sizes(self, database: str, table: str) -> list[SizeStat]: ...


class TableSnapshotFile:
    """A parsed snapshot document."""

    def __init__(self, data: dict[str, Any], source: str = "<memory>") -> None:
        if not isinstance(data, dict):
            raise SnapshotError("Snapshot must be a JSON object", source=source)
        if not str(data.get("table") or "").strip():
            raise SnapshotError("Snapshot does not name a table", source=source)
        self.data = data
        self.source = source

    @classmethod
    def load(cls, path: str | Path) -> "TableSnapshotFile":
        path = Path(path)
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except FileNotFoundError as e:
            raise SnapshotError(f"Snapshot file not found: {path}", source=str(path)) from e
        except json.JSONDecodeError as e:
            raise SnapshotError(f"Invalid JSON in snapshot: {e}", source=str(path)) from e
        return cls(data, source=str(path))

    @property
    def dialect(self) -> Dialect:
        return Dialect.from_string(self.data.get("dialect"))

    @property
    def database(self) -> str:
        return str(self.data.get("database") or "")

    @property
    def table(self) -> str:
        return str(self.data.get("table") or "")

    def section(self, name: str, default: Any) -> Any:
        value = self.data.get(name, default)
        if value is None:
            return default
        return value

    def check_scope(self, database: str, table: str) -> None:
        if table != self.table or (self.database and database != self.database):
            raise SnapshotError(
                f"Snapshot covers {self.database}.{self.table}, not {database}.{table}",
                source=self.source,
            )


class SnapshotMetadataProvider:
    """MetadataProvider serving one table from a snapshot document."""

    def __init__(self, snapshot: TableSnapshotFile) -> None:
        self.snapshot = snapshot

    async def get_table_indexes(self, database: str, table: str) -> list[IndexRow]:
        self.snapshot.check_scope(database, table)
        return [IndexRow.model_validate(r) for r in self.snapshot.section("indexes", [])]

    async def get_index_suggestions(self, database: str, table: str) -> list[dict[str, Any]]:
        self.snapshot.check_scope(database, table)
        return list(self.snapshot.section("suggestions", []))

    async def get_table_stats(self, database: str, table: str) -> TableStats | None:
        self.snapshot.check_scope(database, table)
        raw = self.snapshot.section("table_stats", None)
        return TableStats.model_validate(raw) if raw is not None else None

    async def get_index_usage(self, database: str, table: str) -> list[UsageStat]:
        self.snapshot.check_scope(database, table)
        return [UsageStat.model_validate(u) for u in self.snapshot.section("index_usage", [])]

    async def get_index_sizes(self, database: str, table: str) -> list[SizeStat]:
        self.snapshot.check_scope(database, table)
        return [SizeStat.model_validate(s) for s in self.snapshot.section("index_sizes", [])]


class ReplaySimulationProvider:
    """
    SimulationProvider replaying recorded what-if outcomes.

    A recording is either a complete SimulationResult, a set of query diffs
    (turned into a result with build_simulation_result), or
    ``{"error": "..."}`` to replay a failed call. Indexes without a
    recording raise LookupError.
    """

    def __init__(self, recordings: dict[str, dict[str, Any]]) -> None:
        self.recordings = recordings

    @classmethod
    def from_snapshot(cls, snapshot: TableSnapshotFile) -> "ReplaySimulationProvider":
        return cls(dict(snapshot.section("simulations", {})))

    async def simulate(self, database: str, table: str, index_name: str) -> SimulationResult:
        recording = self.recordings.get(index_name)
        if recording is None:
            raise LookupError(f"No recorded simulation for index {index_name}")
        if "error" in recording:
            raise RuntimeError(str(recording["error"]))

        logger.debug("Replaying simulation for %s.%s.%s", database, table, index_name)
        if "confidence_score" not in recording and "query_diffs" in recording:
            return build_simulation_result(
                index_name=index_name,
                mode=recording.get("mode", "what_if"),
                query_diffs=[QueryDiff.model_validate(d) for d in recording["query_diffs"]],
                matched_queries=int(recording.get("matched_queries", 0)),
                drop_sql=recording.get("drop_sql", ""),
                rollback_sql=recording.get("rollback_sql", ""),
                notes=recording.get("notes", []),
                database=database,
                table=table,
            )
        return SimulationResult.model_validate({
            "database": database,
            "table": table,
            **recording,
            "index_name": index_name,
        })
