"""
Impact and risk scoring for index removal.

Impact estimates the benefit of dropping an index (storage and write cost
saved); risk estimates the harm (read-path regressions). Both are weighted
averages of normalized factors, mapped onto a 5-95 scale:

    impact = wavg( size,        1 - usage,  width   )
    risk   = wavg( usage,       unique,     primary )
    score  = clamp(round(10 + norm * 85), 5, 95)

Raw usage counts and byte sizes are heavy-tailed across a table's indexes,
so both are compressed logarithmically against the table maximum. The
floor of 10 and cap of 95 keep any index from reading as risk-free or
impact-free: telemetry is never complete.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Iterable

from indexsense.dialect import Dialect, is_primary_index
from indexsense.models import AnalysisSnapshot, IndexGroup, IndexScore, ScoringConfig

# Used when telemetry for a factor is missing: neither confidently high nor low.
NEUTRAL_PRIOR = 0.35

SCORE_FLOOR = 5
SCORE_CEILING = 95
SCORE_OFFSET = 10
SCORE_SPAN = 85


def clamp(value: float, low: float, high: float) -> float:
    return min(high, max(low, value))


def normalize_metric(value: float, max_value: float) -> float:
    """
    Log-normalize a metric against the table maximum.

    Returns ln(1 + value) / ln(1 + max) clamped to [0, 1], or 0 when
    max is not positive.
    """
    if not max_value or max_value <= 0:
        return 0.0
    return clamp(math.log1p(max(value, 0)) / math.log1p(max_value), 0.0, 1.0)


@dataclass(frozen=True)
class WeightedPart:
    """One factor of a weighted average."""

    value: float
    weight: float


def weighted_avg(parts: Iterable[WeightedPart]) -> float:
    """
    Weighted average of factors, clamped to [0, 1].

    Returns 0 for an empty list or when all weights are zero.
    """
    parts = list(parts)
    total = sum(p.weight or 0.0 for p in parts)
    if not total:
        return 0.0
    value = sum((p.weight or 0.0) * (p.value or 0.0) for p in parts) / total
    return clamp(value, 0.0, 1.0)


def round_half_up(value: float) -> int:
    """Round to the nearest integer with halves rounded up (52.5 -> 53)."""
    return math.floor(value + 0.5)


def to_score(norm: float) -> int:
    """Map a normalized value onto the reported 5-95 scale."""
    return int(clamp(round_half_up(SCORE_OFFSET + norm * SCORE_SPAN), SCORE_FLOOR, SCORE_CEILING))


@dataclass(frozen=True)
class TableMetrics:
    """Table-wide maxima and fallbacks every per-index score is relative to."""

    max_usage: int
    max_size: int
    fallback_size: float | None

    @classmethod
    def from_snapshot(cls, snapshot: AnalysisSnapshot) -> "TableMetrics":
        return cls(
            max_usage=snapshot.max_usage,
            max_size=snapshot.max_size,
            fallback_size=snapshot.even_split_size,
        )


class ScoringEngine:
    """
    Computes IndexScore values from a snapshot and a scoring configuration.

    Stateless apart from its inputs; build a new engine (or call score_all)
    whenever the snapshot or the weights change.

    Usage:
        engine = ScoringEngine(snapshot, config)
        for group in snapshot.groups:
            score = engine.score(group)
    """

    def __init__(self, snapshot: AnalysisSnapshot, config: ScoringConfig) -> None:
        self.snapshot = snapshot
        self.config = config
        self.metrics = TableMetrics.from_snapshot(snapshot)

    @property
    def dialect(self) -> Dialect:
        return self.snapshot.dialect

    def usage_norm(self, group: IndexGroup) -> float:
        usage = self.snapshot.usage_map.get(group.name)
        if usage is None:
            return NEUTRAL_PRIOR
        return normalize_metric(usage.total_ops, self.metrics.max_usage)

    def size_norm(self, group: IndexGroup) -> float:
        if self.metrics.max_size:
            size = self.snapshot.size_map.get(group.name)
            if size is None:
                size = self.metrics.fallback_size or 0
            return normalize_metric(size, self.metrics.max_size)
        return 1.0 if self.metrics.fallback_size else NEUTRAL_PRIOR

    @staticmethod
    def width_norm(group: IndexGroup) -> float:
        """A 1-column index scores 0, a 5+ column index scores 1."""
        return clamp((len(group.columns) - 1) / 4, 0.0, 1.0)

    def impact_norm(self, group: IndexGroup) -> float:
        weights = self.config.impact
        return weighted_avg([
            WeightedPart(self.size_norm(group), weights.size),
            WeightedPart(1 - self.usage_norm(group), weights.usage),
            WeightedPart(self.width_norm(group), weights.width),
        ])

    def risk_norm(self, group: IndexGroup) -> float:
        weights = self.config.risk
        is_primary = is_primary_index(group.name, self.dialect)
        return weighted_avg([
            WeightedPart(self.usage_norm(group), weights.usage),
            WeightedPart(1.0 if group.unique else 0.0, weights.unique),
            WeightedPart(1.0 if is_primary else 0.0, weights.primary),
        ])

    def score(self, group: IndexGroup) -> IndexScore:
        return IndexScore(
            impact=to_score(self.impact_norm(group)),
            risk=to_score(self.risk_norm(group)),
        )

    def score_all(self) -> dict[str, IndexScore]:
        return {group.name: self.score(group) for group in self.snapshot.groups}


def score_index(
    group: IndexGroup,
    snapshot: AnalysisSnapshot,
    config: ScoringConfig | None = None,
) -> IndexScore:
    """Convenience function to score a single index."""
    return ScoringEngine(snapshot, config or ScoringConfig()).score(group)
