"""
Constant-time lookup over heuristic "unused index" suggestions.

Suggestion sources differ by engine. MySQL's sys schema reports unused
indexes by name (and column); PostgreSQL heuristics only name a column.
For the column-only dialect, column suggestions are registered under the
index-name map keyed by the column itself so that name-based matching
works the same way downstream.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable

from indexsense.dialect import Dialect
from indexsense.models import (
    ColumnSuggestion,
    IndexNameSuggestion,
    Suggestion,
    parse_suggestion,
)


@dataclass(frozen=True)
class SuggestionIndex:
    """
    Suggestion reasons keyed by index name and by column name.

    The first suggestion seen for a key wins.
    """

    by_index_name: dict[str, str] = field(default_factory=dict)
    by_column_name: dict[str, str] = field(default_factory=dict)

    def index_reason(self, index_name: str) -> str | None:
        return self.by_index_name.get(index_name)

    def column_reason(self, columns: Iterable[str]) -> tuple[str, str] | None:
        """First (column, reason) pair matching any of the given columns."""
        for column in columns:
            if column in self.by_column_name:
                return column, self.by_column_name[column]
        return None

    def __len__(self) -> int:
        return len(self.by_index_name) + len(self.by_column_name)


def build_suggestion_index(
    suggestions: Iterable[Suggestion | dict[str, Any] | None],
    dialect: Dialect,
) -> SuggestionIndex:
    """
    Build lookup maps from a suggestion list.

    Args:
        suggestions: Tagged suggestions or raw provider dicts.
        dialect: Active SQL dialect.

    Returns:
        A SuggestionIndex with first-wins maps.
    """
    by_index_name: dict[str, str] = {}
    by_column_name: dict[str, str] = {}
    column_keyed = dialect.names_suggestions_by_column

    for raw in suggestions:
        suggestion = parse_suggestion(raw)
        if suggestion is None:
            continue

        if isinstance(suggestion, IndexNameSuggestion):
            by_index_name.setdefault(suggestion.index_name, suggestion.reason)
            if not column_keyed and suggestion.column_name:
                by_column_name.setdefault(suggestion.column_name, suggestion.reason)
        elif isinstance(suggestion, ColumnSuggestion):
            if column_keyed:
                by_index_name.setdefault(suggestion.column_name, suggestion.reason)
            else:
                by_column_name.setdefault(suggestion.column_name, suggestion.reason)

    return SuggestionIndex(by_index_name=by_index_name, by_column_name=by_column_name)
