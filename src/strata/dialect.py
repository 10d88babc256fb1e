"""SQL dialects for the relational adapters.

A ``Dialect`` owns every piece of SQL text that differs between backends:
identifier quoting, parameter placeholders, ``LIMIT``/``OFFSET`` forms,
transaction and truncate statements, catalog queries, and how a
:class:`~strata.values.Value` is handed to the driver.

Manifesto:
    The statement builder in ``strata.adapters.sql`` is written once. Anything
    that would make it branch on the backend lives here instead, as a small
    stateless object looked up by name.

Architecture::

    ┌──────────────────────────────────────────────────────────────────┐
    │                  SQLAdapter.render(statement)                     │
    └──────────────────────────────────────────────────────────────────┘
                              │  quote / placeholder / adapt
                              ▼
    ┌──────────────────┐ ┌──────────────────────┐ ┌──────────────────────┐
    │ SQLite           │ │ PostgreSQL           │ │ MySQL                │
    │ "ident"  ?       │ │ "ident"  %s          │ │ `ident`  %s          │
    │ LIMIT -1 OFFSET  │ │ RETURNING            │ │ START TRANSACTION    │
    │ bool → 0/1       │ │ TRUNCATE ... RESTART │ │ INSERT () VALUES ()  │
    └──────────────────┘ └──────────────────────┘ └──────────────────────┘

Features:
    - **quote_identifier:** qualified names, ``*``, ``name AS alias``
    - **limit_clause:** offset without limit in every backend's spelling
    - **escape_fragment:** ``?`` in raw fragments rewritten per paramstyle
    - **adapt:** records and lists as JSON text, SQLite booleans as integers
    - **get_dialect() / register_dialect():** lookup by name

Examples:
    >>> d = get_dialect("mysql")
    >>> d.quote_identifier("people AS p")
    '`people` AS `p`'
    >>> get_dialect("sqlite").limit_clause(0, 10)
    'LIMIT -1 OFFSET 10'

Tags:
    dialect, sql, quoting, placeholders, strata

Doc-Types:
    - API Reference
"""

from __future__ import annotations

import json
import re
from typing import Any, Protocol, runtime_checkable

from strata.errors import ConfigError
from strata.values import Value, ValueKind

_ALIAS_RE = re.compile(r"^(?P<name>.+?)\s+(?:AS\s+)?(?P<alias>[^\s.]+)$", re.IGNORECASE)


def split_alias(name: str) -> tuple[str, str | None]:
    """Split ``"name AS alias"`` (or ``"name alias"``) into its parts; ``alias`` is ``None`` when absent."""
    name = name.strip()
    match = _ALIAS_RE.match(name)
    if match is None:
        return name, None
    return match["name"].strip(), match["alias"]


@runtime_checkable
class Dialect(Protocol):
    """SQL dialect contract.

    Every method returns SQL text or a driver-ready parameter; none of them
    touch a connection.
    """

    @property
    def name(self) -> str:
        """Dialect name (e.g. ``'sqlite'``)."""
        ...

    @property
    def paramstyle(self) -> str:
        """DB-API paramstyle: ``'qmark'`` or ``'format'``."""
        ...

    # -- Placeholders ------------------------------------------------------

    def placeholder(self, index: int) -> str:
        """Single positional placeholder (0-based index)."""
        ...

    def placeholders(self, count: int) -> str:
        """Comma-separated placeholder list."""
        ...

    def escape_fragment(self, fragment: str) -> str:
        """Rewrite ``?`` markers of a raw fragment to this dialect's placeholder.

        Question marks inside single-quoted literals are left alone. For
        ``format`` paramstyle drivers, literal ``%`` is doubled.
        """
        ...

    # -- Identifiers -------------------------------------------------------

    def quote_identifier(self, name: str) -> str:
        """Quote a possibly qualified identifier, keeping ``*`` and ``AS`` aliases."""
        ...

    # -- Statements --------------------------------------------------------

    def limit_clause(self, limit: int, offset: int) -> str:
        """``LIMIT``/``OFFSET`` tail; ``limit == 0`` means unbounded."""
        ...

    def truncate(self, table: str) -> str:
        """Statement removing every row of ``table``."""
        ...

    def insert_defaults(self, table: str) -> str:
        """Insert a row made only of column defaults."""
        ...

    @property
    def begin_sql(self) -> str:
        """Statement opening a transaction on an autocommit connection."""
        ...

    @property
    def supports_returning(self) -> bool:
        """Whether ``INSERT ... RETURNING`` yields the generated key."""
        ...

    # -- Introspection -----------------------------------------------------

    def list_tables_query(self) -> str:
        """Query returning one row per table in the active database."""
        ...

    def table_exists_query(self) -> str:
        """Query with one placeholder for the table name; returns rows if it exists."""
        ...

    def primary_keys_query(self) -> str:
        """Query with one placeholder for the table name; returns its key columns in order."""
        ...

    # -- Values ------------------------------------------------------------

    def adapt(self, value: Value) -> Any:
        """Convert a :class:`Value` into a driver parameter."""
        ...


# =========================================================================
# Shared behaviour
# =========================================================================


class _SQLDialect:
    """Behaviour common to the ANSI-quoting dialects."""

    quote_char = '"'
    marker = "?"

    @property
    def paramstyle(self) -> str:
        return "qmark" if self.marker == "?" else "format"

    def placeholder(self, index: int) -> str:  # noqa: ARG002
        return self.marker

    def placeholders(self, count: int) -> str:
        return ", ".join(self.marker for _ in range(count))

    def escape_fragment(self, fragment: str) -> str:
        out = []
        quoted = False
        for ch in fragment:
            if ch == "'":
                quoted = not quoted
                out.append(ch)
            elif ch == "?" and not quoted:
                out.append(self.marker)
            elif ch == "%" and self.paramstyle == "format":
                out.append("%%")
            else:
                out.append(ch)
        return "".join(out)

    def _quote_part(self, part: str) -> str:
        part = part.strip()
        q = self.quote_char
        if part == "*" or (part.startswith(q) and part.endswith(q) and len(part) > 1):
            return part
        return q + part.replace(q, q * 2) + q

    def quote_identifier(self, name: str) -> str:
        name = name.strip()
        source, alias = split_alias(name)
        if alias is not None and not name.startswith(self.quote_char):
            return f"{self.quote_identifier(source)} AS {self._quote_part(alias)}"
        return ".".join(self._quote_part(part) for part in name.split("."))

    def limit_clause(self, limit: int, offset: int) -> str:
        if limit and offset:
            return f"LIMIT {int(limit)} OFFSET {int(offset)}"
        if limit:
            return f"LIMIT {int(limit)}"
        if offset:
            return f"LIMIT {self.unbounded_limit} OFFSET {int(offset)}"
        return ""

    unbounded_limit = "ALL"

    def truncate(self, table: str) -> str:
        return f"TRUNCATE TABLE {self.quote_identifier(table)}"

    def insert_defaults(self, table: str) -> str:
        return f"INSERT INTO {self.quote_identifier(table)} DEFAULT VALUES"

    begin_sql = "BEGIN"
    supports_returning = False

    def adapt(self, value: Value) -> Any:
        match value.kind:
            case ValueKind.RECORD | ValueKind.LIST:
                return json.dumps(value.to_python(), default=str)
            case _:
                return value.data


# =========================================================================
# Concrete Dialect Implementations
# =========================================================================


class SQLiteDialect(_SQLDialect):
    """SQLite dialect: ``?`` placeholders, ``LIMIT -1`` for offset-only pages."""

    unbounded_limit = "-1"

    @property
    def name(self) -> str:
        return "sqlite"

    def truncate(self, table: str) -> str:
        return f"DELETE FROM {self.quote_identifier(table)}"

    def list_tables_query(self) -> str:
        return (
            "SELECT name FROM sqlite_master "
            "WHERE type = 'table' AND name NOT LIKE 'sqlite\\_%' ESCAPE '\\' ORDER BY name"
        )

    def table_exists_query(self) -> str:
        return "SELECT name FROM sqlite_master WHERE type = 'table' AND name = ?"

    def primary_keys_query(self) -> str:
        return "SELECT name FROM pragma_table_info(?) WHERE pk > 0 ORDER BY pk"

    def adapt(self, value: Value) -> Any:
        match value.kind:
            case ValueKind.BOOL:
                return int(value.data)
            case ValueKind.DECIMAL:
                return str(value.data)
            case ValueKind.TIMESTAMP:
                return value.data.isoformat()
            case _:
                return super().adapt(value)


class PostgreSQLDialect(_SQLDialect):
    """PostgreSQL dialect: ``%s`` placeholders (psycopg2), ``RETURNING`` keys."""

    marker = "%s"
    supports_returning = True

    @property
    def name(self) -> str:
        return "postgresql"

    def truncate(self, table: str) -> str:
        return f"TRUNCATE TABLE {self.quote_identifier(table)} RESTART IDENTITY"

    def list_tables_query(self) -> str:
        return (
            "SELECT table_name FROM information_schema.tables "
            "WHERE table_schema = current_schema() AND table_type = 'BASE TABLE' "
            "ORDER BY table_name"
        )

    def table_exists_query(self) -> str:
        return (
            "SELECT table_name FROM information_schema.tables "
            "WHERE table_schema = current_schema() AND table_name = %s"
        )

    def primary_keys_query(self) -> str:
        return (
            "SELECT kcu.column_name FROM information_schema.table_constraints tc "
            "JOIN information_schema.key_column_usage kcu "
            "ON tc.constraint_name = kcu.constraint_name AND tc.table_schema = kcu.table_schema "
            "WHERE tc.constraint_type = 'PRIMARY KEY' AND tc.table_schema = current_schema() "
            "AND tc.table_name = %s ORDER BY kcu.ordinal_position"
        )


class MySQLDialect(_SQLDialect):
    """MySQL / MariaDB dialect: backtick quoting, ``%s`` placeholders."""

    quote_char = "`"
    marker = "%s"
    unbounded_limit = "18446744073709551615"
    begin_sql = "START TRANSACTION"

    @property
    def name(self) -> str:
        return "mysql"

    def insert_defaults(self, table: str) -> str:
        return f"INSERT INTO {self.quote_identifier(table)} () VALUES ()"

    def list_tables_query(self) -> str:
        return (
            "SELECT TABLE_NAME FROM information_schema.TABLES "
            "WHERE TABLE_SCHEMA = DATABASE() AND TABLE_TYPE = 'BASE TABLE' ORDER BY TABLE_NAME"
        )

    def table_exists_query(self) -> str:
        return (
            "SELECT TABLE_NAME FROM information_schema.TABLES "
            "WHERE TABLE_SCHEMA = DATABASE() AND TABLE_NAME = %s"
        )

    def primary_keys_query(self) -> str:
        return (
            "SELECT COLUMN_NAME FROM information_schema.KEY_COLUMN_USAGE "
            "WHERE TABLE_SCHEMA = DATABASE() AND TABLE_NAME = %s "
            "AND CONSTRAINT_NAME = 'PRIMARY' ORDER BY ORDINAL_POSITION"
        )


# =========================================================================
# Registry / Factory
# =========================================================================

# Pre-instantiated singletons (dialects are stateless)
_DIALECTS: dict[str, Dialect] = {
    "sqlite": SQLiteDialect(),
    "postgresql": PostgreSQLDialect(),
    "postgres": PostgreSQLDialect(),  # alias
    "mysql": MySQLDialect(),
    "mariadb": MySQLDialect(),  # alias
}


def get_dialect(name: str) -> Dialect:
    """Get a dialect by backend name.

    Raises:
        ConfigError: If ``name`` is not recognised.

    Example:
        >>> get_dialect("postgresql").placeholders(2)
        '%s, %s'
    """
    key = name.lower()
    if key not in _DIALECTS:
        raise ConfigError(
            f"Unknown dialect '{name}'. "
            f"Supported: {sorted(set(_DIALECTS) - {'postgres', 'mariadb'})}"
        )
    return _DIALECTS[key]


def register_dialect(name: str, dialect: Dialect) -> None:
    """Register a custom dialect implementation.

    Args:
        name: Lookup key (lower-cased automatically).
        dialect: Instance implementing :class:`Dialect`.
    """
    _DIALECTS[name.lower()] = dialect


__all__ = [
    # Protocol
    "Dialect",
    # Implementations
    "SQLiteDialect",
    "PostgreSQLDialect",
    "MySQLDialect",
    # Factory
    "get_dialect",
    "register_dialect",
    # Helpers
    "split_alias",
]
