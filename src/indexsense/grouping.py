"""
Rebuild logical indexes from flat catalog rows.

Catalog introspection (SHOW INDEX, pg_index joins) returns one row per
(index, column) pair. Grouping preserves first-seen order both for the
indexes and for the columns within each index.
"""

from __future__ import annotations

from typing import Any, Iterable

from indexsense.models import IndexGroup, IndexRow


def group_index_rows(rows: Iterable[IndexRow | dict[str, Any]]) -> list[IndexGroup]:
    """
    Collapse per-column index rows into IndexGroup entities.

    Type and uniqueness are taken from the first row seen for each index.

    Args:
        rows: IndexRow models or raw dicts with name, column_name,
            non_unique and index_type keys.

    Returns:
        One IndexGroup per distinct index name, in first-seen order.
    """
    headers: dict[str, tuple[str, bool]] = {}
    columns: dict[str, list[str]] = {}

    for raw in rows:
        row = raw if isinstance(raw, IndexRow) else IndexRow.model_validate(raw)
        if row.name not in headers:
            headers[row.name] = (row.index_type, not row.non_unique)
            columns[row.name] = []
        columns[row.name].append(row.column_name)

    return [
        IndexGroup(
            name=name,
            type=index_type,
            unique=unique,
            columns=tuple(columns[name]),
        )
        for name, (index_type, unique) in headers.items()
    ]
