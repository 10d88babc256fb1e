"""PostgreSQL database adapter.

Uses ``psycopg2``. PostgreSQL uses **format** (``%s``) placeholder style and
``INSERT ... RETURNING`` for generated keys.

Install the driver::

    pip install strata-db[postgresql]

This adapter is import-guarded: if ``psycopg2`` is not installed a clear
:class:`~strata.errors.ConfigError` is raised at ``connect()`` time.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from strata.errors import ConfigError, DatabaseConnectionError

from .sql import SQLAdapter
from .types import ConnectionSettings

if TYPE_CHECKING:
    from .registry import AdapterRegistry


def _psycopg2() -> Any:
    try:
        import psycopg2
    except ImportError:
        raise ConfigError(
            "psycopg2 is required for PostgreSQL. Install with: pip install strata-db[postgresql]"
        ) from None
    return psycopg2


class PostgreSQLAdapter(SQLAdapter):
    """
    PostgreSQL database adapter.

    One connection per session, opened in autocommit mode; transactions are
    explicit ``BEGIN``/``COMMIT``. A ``socket`` setting is the directory of
    the server's Unix socket. ``options`` are passed to libpq verbatim
    (``sslmode``, ``connect_timeout``, ``application_name``...).
    """

    name = "postgresql"
    dialect_name = "postgresql"

    def error_types(self) -> tuple[type[BaseException], ...]:
        return (_psycopg2().Error,)

    def connect(self, settings: ConnectionSettings) -> Any:
        """Connect to PostgreSQL database."""
        psycopg2 = _psycopg2()
        settings = settings.require_address()

        params: dict[str, Any] = {
            "host": settings.socket or settings.host,
            "dbname": settings.database or None,
            "user": settings.user,
            "password": settings.password,
        }
        if settings.port:
            params["port"] = settings.port
        if settings.charset:
            params["client_encoding"] = settings.charset
        params.update(settings.options)

        try:
            conn = psycopg2.connect(**{k: v for k, v in params.items() if v is not None})
            conn.autocommit = True
        except psycopg2.Error as e:
            raise DatabaseConnectionError(
                f"Failed to connect to PostgreSQL: {e}",
                cause=e,
            ).with_context(backend=self.name, database=settings.database) from e

        self._log.debug("connected", backend=self.name, host=params["host"], database=settings.database)
        return conn

    def close(self, handle: Any) -> None:
        """Close PostgreSQL connection."""
        if not handle.closed:
            handle.close()

    def interrupt(self, handle: Any) -> None:
        handle.cancel()


def register(registry: AdapterRegistry) -> None:
    """Add the ``postgresql`` backend to a registry."""
    registry.register("postgresql", PostgreSQLAdapter, aliases=("postgres", "pg"))


__all__ = [
    "PostgreSQLAdapter",
    "register",
]
