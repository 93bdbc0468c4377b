"""
SQL dialect handling.

The advisor distinguishes two dialect families:
- MySQL: indexes are table-scoped, the primary key index is named ``PRIMARY``,
  identifiers are quoted with backticks.
- PostgreSQL: indexes are schema-scoped objects, the primary key index is
  named ``<table>_pkey`` by convention, identifiers are quoted with double quotes.
"""

from __future__ import annotations

from enum import Enum


class Dialect(str, Enum):
    """Supported SQL dialects."""

    MYSQL = "mysql"
    POSTGRESQL = "postgresql"

    @classmethod
    def from_string(cls, value: str | None) -> "Dialect":
        """Parse a dialect name, defaulting to MySQL."""
        if not value:
            return cls.MYSQL
        if value.strip().lower() in ("postgres", "postgresql"):
            return cls.POSTGRESQL
        return cls.MYSQL

    @property
    def quote_char(self) -> str:
        return '"' if self is Dialect.POSTGRESQL else "`"

    @property
    def names_suggestions_by_column(self) -> bool:
        """Whether unused-index suggestions identify indexes by column only."""
        return self is Dialect.POSTGRESQL


def quote_ident(ident: str, dialect: Dialect) -> str:
    """Quote an identifier, escaping the quote character by doubling it."""
    q = dialect.quote_char
    return f"{q}{str(ident).replace(q, q + q)}{q}"


def is_primary_index(index_name: str | None, dialect: Dialect) -> bool:
    """
    Check whether an index is the table's primary identity index.

    MySQL uses the reserved name PRIMARY; PostgreSQL names primary key
    indexes ``<table>_pkey`` (matched on the ``pkey`` token).
    """
    if not index_name:
        return False
    lower = index_name.lower()
    if dialect is Dialect.MYSQL:
        return lower == "primary"
    return lower.endswith("_pkey") or "pkey" in lower
