"""
Package-level exception hierarchy for IndexSense.

All exceptions inherit from IndexSenseError, enabling:
- Catching all IndexSense errors with a single except clause
- Rich context fields for debugging (database, table, index_name, config_key)
- Structured serialization via to_dict() for JSON error output

Hierarchy:
    IndexSenseError
    ├── MetadataLoadError   – Index metadata could not be loaded for a table
    ├── SimulationError     – A single what-if call failed (absorbed per index)
    ├── PersistError        – Calibration could not be persisted (returned, not raised)
    ├── ConfigurationError  – Invalid configuration value or file
    └── SnapshotError       – Malformed metadata snapshot file
"""

from __future__ import annotations

from typing import Any


class IndexSenseError(Exception):
    """
    Base exception for all IndexSense errors.

    Attributes:
        message: Human-readable error description.
    """

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary for JSON error output."""
        return {
            "error_type": type(self).__name__,
            "message": self.message,
        }


# ── Metadata Errors ──────────────────────────────────────────────────────


class MetadataLoadError(IndexSenseError):
    """
    One of the required metadata calls failed.

    Surfaced once per analysis run; the analysis is unavailable until
    the caller retries.

    Attributes:
        database: Database (or schema) being analyzed.
        table: Table being analyzed.
        original_error: The underlying exception, if any.
    """

    def __init__(
        self,
        message: str,
        database: str | None = None,
        table: str | None = None,
        original_error: Exception | None = None,
    ) -> None:
        self.database = database
        self.table = table
        self.original_error = original_error
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        result["database"] = self.database
        result["table"] = self.table
        return result


# ── Simulation Errors ────────────────────────────────────────────────────


class SimulationError(IndexSenseError):
    """
    A what-if call failed for one index.

    Never escapes a simulation batch: the orchestrator turns it into a
    synthetic failed SimulationResult.

    Attributes:
        index_name: Index the simulation was requested for.
        original_error: The underlying exception.
    """

    def __init__(self, index_name: str, original_error: BaseException) -> None:
        self.index_name = index_name
        self.original_error = original_error
        super().__init__(f"Simulation failed: {original_error}")

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        result["index_name"] = self.index_name
        result["original_error_type"] = self.original_error.__class__.__name__
        return result


# ── Persistence Errors ───────────────────────────────────────────────────


class PersistError(IndexSenseError):
    """
    Calibration persistence failed.

    Returned from save() so that callers may choose to ignore it.

    Attributes:
        key: Storage key that could not be written.
    """

    def __init__(self, message: str, key: str | None = None) -> None:
        self.key = key
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        result["key"] = self.key
        return result


# ── Configuration Errors ─────────────────────────────────────────────────


class ConfigurationError(IndexSenseError):
    """
    Error in IndexSense configuration.

    Attributes:
        config_key: The configuration key that caused the error (if known).
    """

    def __init__(self, message: str, config_key: str | None = None) -> None:
        self.config_key = config_key
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        result["config_key"] = self.config_key
        return result


# ── Snapshot Errors ──────────────────────────────────────────────────────


class SnapshotError(IndexSenseError):
    """
    Failed to read a metadata snapshot file.

    Attributes:
        source: Path of the snapshot file.
    """

    def __init__(self, message: str, source: str | None = None) -> None:
        self.source = source
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        result["source"] = self.source
        return result
