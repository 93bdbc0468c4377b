"""
Data models for index analysis.

Two families of models live here:
- Wire models (pydantic, frozen): rows and stats as returned by the metadata
  provider and results as returned by the simulation provider. Validation
  happens once, at the boundary.
- Derived models (frozen dataclasses): index groups, signals, scores and the
  AnalysisSnapshot. These are recomputed from scratch on every refresh and
  are never mutated.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from indexsense.dialect import Dialect


# =============================================================================
# Catalog rows and telemetry (wire models)
# =============================================================================


class IndexRow(BaseModel):
    """One (index, column) pair as returned by catalog introspection."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., description="Index name")
    column_name: str = Field(..., description="Column covered by the index")
    non_unique: bool = Field(True, description="True when the index allows duplicates")
    index_type: str = Field("BTREE", description="Index method (BTREE, HASH, gin, ...)")


class UsageStat(BaseModel):
    """Operation counters for one index. Absence means usage is unknown."""

    model_config = ConfigDict(frozen=True)

    index_name: str
    total_ops: int = Field(0, ge=0, description="Total recorded index operations")
    reads: int = Field(0, ge=0)
    writes: int = Field(0, ge=0)


class SizeStat(BaseModel):
    """On-disk size of one index."""

    model_config = ConfigDict(frozen=True)

    index_name: str
    size_bytes: int = Field(0, ge=0)


class TableStats(BaseModel):
    """Aggregate table statistics. Only index_size is used, as a size fallback."""

    model_config = ConfigDict(frozen=True)

    row_count: int = Field(0, ge=0)
    data_size: int = Field(0, ge=0)
    index_size: int = Field(0, ge=0)


# =============================================================================
# Suggestions (tagged union)
# =============================================================================


@dataclass(frozen=True)
class IndexNameSuggestion:
    """A heuristic suggestion that names the index it refers to."""

    index_name: str
    reason: str = ""
    column_name: str | None = None


@dataclass(frozen=True)
class ColumnSuggestion:
    """A heuristic suggestion that only names a column."""

    column_name: str
    reason: str = ""


Suggestion = Union[IndexNameSuggestion, ColumnSuggestion]


def parse_suggestion(raw: dict[str, Any] | Suggestion | None) -> Suggestion | None:
    """
    Convert a raw provider suggestion into the tagged union.

    Raw suggestions carry optional ``index_name`` and ``column_name`` fields
    and a ``reason`` (or legacy ``suggestion``) text. Entries with neither
    an index nor a column name are dropped; anything that is not an object
    raises TypeError.
    """
    if raw is None:
        return None
    if isinstance(raw, (IndexNameSuggestion, ColumnSuggestion)):
        return raw
    if not isinstance(raw, Mapping):
        raise TypeError(f"Malformed suggestion {raw!r}: expected an object")

    index_name = str(raw.get("index_name") or "").strip()
    column_name = str(raw.get("column_name") or "").strip()
    reason = str(raw.get("reason") or raw.get("suggestion") or "")

    if index_name:
        return IndexNameSuggestion(
            index_name=index_name,
            reason=reason,
            column_name=column_name or None,
        )
    if column_name:
        return ColumnSuggestion(column_name=column_name, reason=reason)
    return None


# =============================================================================
# Derived index entities
# =============================================================================


@dataclass(frozen=True)
class IndexGroup:
    """A logical (possibly multi-column) index rebuilt from catalog rows."""

    name: str
    type: str
    unique: bool
    columns: tuple[str, ...] = ()

    @property
    def width(self) -> int:
        return len(self.columns)


class SignalLabel(str, Enum):
    """Removal-safety classification of an index."""

    PROTECTED = "protected"
    UNUSED = "unused"
    LOW_UTILITY = "low-utility"
    ACTIVE = "active"
    UNKNOWN = "unknown"

    @property
    def is_candidate(self) -> bool:
        """Whether indexes with this label are drop candidates."""
        return self in (SignalLabel.UNUSED, SignalLabel.LOW_UTILITY)


@dataclass(frozen=True)
class Signal:
    """A classification label plus the human-readable reason behind it."""

    label: SignalLabel
    reason: str


@dataclass(frozen=True)
class IndexScore:
    """Impact and risk of dropping an index, each in [5, 95]."""

    impact: int
    risk: int


@dataclass(frozen=True)
class IndexView:
    """An index annotated with its signal and scores, ready for display or selection."""

    group: IndexGroup
    signal: Signal
    scores: IndexScore

    @property
    def name(self) -> str:
        return self.group.name

    @property
    def columns(self) -> tuple[str, ...]:
        return self.group.columns

    @property
    def is_protected(self) -> bool:
        return self.signal.label is SignalLabel.PROTECTED

    @property
    def is_candidate(self) -> bool:
        return self.signal.label.is_candidate

    def matches(self, search: str) -> bool:
        """Case-insensitive match on the index name or any column name."""
        needle = search.strip().lower()
        if not needle:
            return True
        return needle in self.name.lower() or any(needle in c.lower() for c in self.columns)


class ScoreBand(str, Enum):
    """Coarse band for display of scores and confidence."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @classmethod
    def for_score(cls, score: float) -> "ScoreBand":
        """Band for an impact/risk score (>=70 high, >=40 medium)."""
        if score >= 70:
            return cls.HIGH
        if score >= 40:
            return cls.MEDIUM
        return cls.LOW

    @classmethod
    def for_confidence(cls, confidence: float) -> "ScoreBand":
        """Band for a simulation confidence score (>=75 high, >=45 medium)."""
        if confidence >= 75:
            return cls.HIGH
        if confidence >= 45:
            return cls.MEDIUM
        return cls.LOW


# =============================================================================
# Scoring configuration
# =============================================================================


def _clamp_weight(value: float) -> float:
    return min(1.0, max(0.0, float(value)))


class ImpactWeights(BaseModel):
    """Weights of the impact score factors."""

    model_config = ConfigDict(frozen=True)

    size: float = 0.5
    usage: float = 0.35
    width: float = 0.15

    @field_validator("size", "usage", "width")
    @classmethod
    def _clamp(cls, value: float) -> float:
        return _clamp_weight(value)


class RiskWeights(BaseModel):
    """Weights of the risk score factors."""

    model_config = ConfigDict(frozen=True)

    usage: float = 0.6
    unique: float = 0.25
    primary: float = 0.15

    @field_validator("usage", "unique", "primary")
    @classmethod
    def _clamp(cls, value: float) -> float:
        return _clamp_weight(value)


class ScoringConfig(BaseModel):
    """
    User-calibratable scoring weights.

    Every weight is clamped to [0, 1] when the model is built. Weights in a
    scope need not sum to 1; the weighted average renormalizes by the sum.
    """

    model_config = ConfigDict(frozen=True)

    impact: ImpactWeights = Field(default_factory=ImpactWeights)
    risk: RiskWeights = Field(default_factory=RiskWeights)

    def with_weight(self, scope: str, key: str, value: float) -> "ScoringConfig":
        """Return a copy with one weight replaced (and clamped)."""
        if scope not in ("impact", "risk"):
            raise ValueError(f"Unknown scoring scope: {scope!r}")
        weights = getattr(self, scope)
        if key not in type(weights).model_fields:
            raise ValueError(f"Unknown {scope} weight: {key!r}")
        updated = type(weights)(**{**weights.model_dump(), key: value})
        return self.model_copy(update={scope: updated})


# =============================================================================
# Simulation results (wire models)
# =============================================================================


class SimulationMode(str, Enum):
    """How a simulation result was produced."""

    WHAT_IF = "what_if"
    HEURISTIC = "heuristic"
    MANUAL = "manual"
    FAILED = "failed"


class QueryDiff(BaseModel):
    """Estimated plan cost of one historical query before and after a drop."""

    model_config = ConfigDict(frozen=True)

    query_hash: str
    query_preview: str = ""
    before_cost: float | None = None
    after_cost: float | None = None
    delta_pct: float | None = None
    regression: bool = False
    reason: str | None = None


class SimulationResult(BaseModel):
    """Outcome of a what-if drop simulation for one index."""

    model_config = ConfigDict(frozen=True)

    database: str = ""
    table: str = ""
    index_name: str
    mode: str = SimulationMode.WHAT_IF.value
    drop_sql: str = ""
    rollback_sql: str = ""
    analyzed_queries: int = 0
    matched_queries: int = 0
    failed_queries: int = 0
    regressions: int = 0
    avg_regression_pct: float = 0.0
    worst_regression_pct: float = 0.0
    coverage_ratio: float = Field(0.0, ge=0.0, le=1.0)
    confidence_score: int = Field(0, ge=0, le=100)
    query_diffs: list[QueryDiff] = Field(default_factory=list)
    notes: list[str] = Field(default_factory=list)

    @property
    def failed(self) -> bool:
        return self.mode == SimulationMode.FAILED.value

    @classmethod
    def failure(
        cls,
        index_name: str,
        reason: str,
        drop_sql: str,
        database: str = "",
        table: str = "",
    ) -> "SimulationResult":
        """Synthetic result for a simulation call that did not complete."""
        return cls(
            database=database,
            table=table,
            index_name=index_name,
            mode=SimulationMode.FAILED.value,
            drop_sql=drop_sql,
            notes=[reason],
        )


# =============================================================================
# Analysis snapshot
# =============================================================================


@dataclass(frozen=True)
class AnalysisSnapshot:
    """
    Everything known about one table's indexes at one point in time.

    Built once per analysis run and passed by value to the pure
    classification and scoring functions.
    """

    database: str
    table: str
    dialect: Dialect
    groups: tuple[IndexGroup, ...] = ()
    suggestions: tuple[Suggestion, ...] = ()
    usage: tuple[UsageStat, ...] = ()
    sizes: tuple[SizeStat, ...] = ()
    table_stats: TableStats | None = None
    _usage_map: dict[str, UsageStat] = field(init=False, repr=False, compare=False)
    _size_map: dict[str, int] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        # Later entries win, matching a plain dict build over the stat list
        object.__setattr__(self, "_usage_map", {u.index_name: u for u in self.usage})
        object.__setattr__(self, "_size_map", {s.index_name: s.size_bytes for s in self.sizes})

    @property
    def usage_map(self) -> dict[str, UsageStat]:
        return self._usage_map

    @property
    def size_map(self) -> dict[str, int]:
        return self._size_map

    @property
    def max_usage(self) -> int:
        return max((u.total_ops for u in self.usage), default=0)

    @property
    def max_size(self) -> int:
        return max((s.size_bytes for s in self.sizes), default=0)

    @property
    def total_index_size(self) -> int:
        """Total index storage: sum of size stats, else the table stats figure."""
        if self.sizes:
            return sum(s.size_bytes for s in self.sizes)
        return self.table_stats.index_size if self.table_stats else 0

    @property
    def even_split_size(self) -> float | None:
        """Per-index size estimate when no size stat exists for an index."""
        total = self.total_index_size
        if total and self.groups:
            return total / len(self.groups)
        return None

    def estimated_size(self, index_name: str) -> float:
        """Size of an index, falling back to the even-split estimate."""
        if index_name in self._size_map:
            return float(self._size_map[index_name])
        return self.even_split_size or 0.0
