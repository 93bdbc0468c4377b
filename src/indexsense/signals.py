"""
Signal classification for indexes.

Each index gets exactly one label, evaluated in strict priority order
(first match wins):

1. protected   – primary identity index
2. unused      – usage telemetry exists and records zero operations
3. unused      – no telemetry, but a suggestion names the index
4. low-utility – a suggestion names one of the index's columns
5. active      – usage telemetry records operations
6. unknown     – nothing to go on

Measured facts dominate suggestion-based inference, which in turn
dominates the default reading of nonzero usage.
"""

from __future__ import annotations

from indexsense.dialect import Dialect, is_primary_index
from indexsense.models import IndexGroup, Signal, SignalLabel, UsageStat
from indexsense.suggestions import SuggestionIndex

DEFAULT_UNUSED_REASON = "No scans detected"
DEFAULT_LOW_UTILITY_REASON = "Low selectivity"


def classify_index(
    group: IndexGroup,
    suggestions: SuggestionIndex,
    usage_map: dict[str, UsageStat],
    dialect: Dialect,
) -> Signal:
    """Derive the removal-safety signal of one index."""
    if is_primary_index(group.name, dialect):
        return Signal(SignalLabel.PROTECTED, "Primary index")

    usage = usage_map.get(group.name)
    if usage is not None and usage.total_ops == 0:
        return Signal(SignalLabel.UNUSED, "No index operations recorded")

    reason = suggestions.index_reason(group.name)
    if reason is not None:
        return Signal(SignalLabel.UNUSED, reason or DEFAULT_UNUSED_REASON)

    column_match = suggestions.column_reason(group.columns)
    if column_match is not None:
        _, reason = column_match
        return Signal(SignalLabel.LOW_UTILITY, reason or DEFAULT_LOW_UTILITY_REASON)

    if usage is not None and usage.total_ops > 0:
        return Signal(SignalLabel.ACTIVE, f"{usage.total_ops:,} ops recorded")

    return Signal(SignalLabel.UNKNOWN, "No usage signal")
