"""SQLite database adapter."""

from __future__ import annotations

import sqlite3
from typing import TYPE_CHECKING

from strata.errors import DatabaseConnectionError, ValidationError

from .sql import SQLAdapter
from .types import ConnectionSettings

if TYPE_CHECKING:
    from .registry import AdapterRegistry


class SQLiteAdapter(SQLAdapter):
    """
    SQLite database adapter.

    Uses the built-in sqlite3 module. Suitable for:
    - Development and testing
    - Single-process applications

    ``settings.database`` is a file path; empty means ``:memory:``.
    ``settings.options`` accepts ``timeout`` (seconds) and ``readonly``.
    Truncate deletes every row and resets the table's ``AUTOINCREMENT``
    sequence.
    """

    name = "sqlite"
    dialect_name = "sqlite"

    def error_types(self) -> tuple[type[BaseException], ...]:
        return (sqlite3.Error,)

    def connect(self, settings: ConnectionSettings) -> sqlite3.Connection:
        """Connect to SQLite database."""
        path = settings.database or ":memory:"
        uri = path.startswith("file:")
        raw_timeout = settings.options.get("timeout", "5.0")
        try:
            timeout = float(raw_timeout)
        except ValueError as e:
            raise ValidationError(
                f"timeout must be a number of seconds, got {raw_timeout!r}",
                field="options",
                value={"timeout": raw_timeout},
                cause=e,
            ) from e

        try:
            conn = sqlite3.connect(
                path,
                timeout=timeout,
                isolation_level=None,
                check_same_thread=False,
                uri=uri,
            )
            # Enable foreign keys
            conn.execute("PRAGMA foreign_keys = ON")

            if settings.options.get("readonly", "").lower() in ("1", "true", "yes"):
                conn.execute("PRAGMA query_only = ON")

        except sqlite3.Error as e:
            raise DatabaseConnectionError(
                f"Failed to connect to SQLite: {e}",
                cause=e,
            ).with_context(backend=self.name, database=path) from e

        self._log.debug("connected", backend=self.name, database=path)
        return conn

    def close(self, handle: sqlite3.Connection) -> None:
        """Close SQLite connection."""
        handle.close()

    def interrupt(self, handle: sqlite3.Connection) -> None:
        handle.interrupt()

    def after_truncate(self, handle: sqlite3.Connection, table: str) -> None:
        if self._query(handle, self.dialect.table_exists_query(), ("sqlite_sequence",)):
            sql = "DELETE FROM sqlite_sequence WHERE name = ?"
            self._trace(sql, (table,))
            handle.execute(sql, (table,))


def register(registry: AdapterRegistry) -> None:
    """Add the ``sqlite`` backend to a registry."""
    registry.register("sqlite", SQLiteAdapter, aliases=("sqlite3",))


__all__ = [
    "SQLiteAdapter",
    "register",
]
