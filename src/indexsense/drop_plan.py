"""
Drop plan generation.

Renders dialect-correct DROP INDEX statements. Nothing here executes SQL:
the plan is text for review and copy-out, applying it is a separate,
human-gated action.

    PostgreSQL:  DROP INDEX IF EXISTS "public"."idx_email";
    MySQL:       DROP INDEX `idx_email` ON `orders`;
"""

from __future__ import annotations

from typing import Iterable

import sqlparse
from sqlparse import tokens as T

from indexsense.dialect import Dialect, quote_ident


def build_drop_statement(
    index_name: str,
    dialect: Dialect,
    schema: str | None = None,
    table: str | None = None,
) -> str:
    """
    Render one DROP INDEX statement.

    Args:
        index_name: Index to drop (case and characters preserved).
        dialect: Target SQL dialect.
        schema: Schema qualifying the index (PostgreSQL only; omitted when empty).
        table: Table owning the index (required by MySQL).
    """
    if dialect is Dialect.POSTGRESQL:
        qualified = quote_ident(index_name, dialect)
        if schema:
            qualified = f"{quote_ident(schema, dialect)}.{qualified}"
        return f"DROP INDEX IF EXISTS {qualified};"
    if not table:
        raise ValueError("MySQL DROP INDEX requires the owning table")
    return f"DROP INDEX {quote_ident(index_name, dialect)} ON {quote_ident(table, dialect)};"


def build_drop_plan(
    index_names: Iterable[str],
    dialect: Dialect,
    schema: str | None = None,
    table: str | None = None,
) -> str:
    """Render a newline-separated script, one statement per index, in input order."""
    return "\n".join(
        build_drop_statement(name, dialect, schema=schema, table=table)
        for name in index_names
    )


def _unquote(token_value: str) -> str:
    for q in ('"', "`"):
        if len(token_value) >= 2 and token_value[0] == q and token_value[-1] == q:
            return token_value[1:-1].replace(q + q, q)
    return token_value


def parse_drop_statement(statement: str) -> str | None:
    """
    Extract the index name from a DROP INDEX statement.

    Used to verify rendered plans; quoting is removed and escaped quote
    characters are restored.

    Returns:
        The index identifier, or None if the statement is not a DROP INDEX.
    """
    parsed = sqlparse.parse(statement)
    if not parsed:
        return None
    stmt = parsed[0]
    if stmt.get_type() != "DROP":
        return None

    names: list[str] = []
    seen_index = False
    for token in stmt.flatten():
        if token.is_whitespace:
            continue
        if not seen_index:
            seen_index = token.ttype in T.Keyword and token.normalized == "INDEX"
            continue
        if token.ttype in T.Keyword:
            # IF EXISTS / CONCURRENTLY precede the name, ON follows it
            if names:
                break
            continue
        if token.ttype in T.Punctuation:
            if token.value == ".":
                continue
            break
        names.append(token.value)

    # Qualified names are schema.index; the index is the last part
    return _unquote(names[-1]) if names else None
