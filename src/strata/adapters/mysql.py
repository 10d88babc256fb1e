"""MySQL database adapter.

Uses ``mysql.connector`` from the ``mysql-connector-python`` package.
MySQL uses **format** (``%s``) placeholder style.

Install the driver::

    pip install mysql-connector-python
    # or:  pip install strata-db[mysql]

This adapter is import-guarded: if ``mysql.connector`` is not installed
a clear :class:`~strata.errors.ConfigError` is raised at
``connect()`` time.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from strata.errors import ConfigError, DatabaseConnectionError, QueryError

from .base import Capability
from .sql import SQLAdapter
from .types import ConnectionSettings

if TYPE_CHECKING:
    from .registry import AdapterRegistry


def _connector() -> Any:
    try:
        import mysql.connector
    except ImportError:
        raise ConfigError(
            "mysql-connector-python is required for MySQL. "
            "Install with: pip install mysql-connector-python"
        ) from None
    return mysql.connector


class MySQLAdapter(SQLAdapter):
    """MySQL / MariaDB database adapter.

    Autocommit connection with buffered cursors. ``use()`` switches the
    active database in place. Cancelling a running statement needs a
    second connection and is not offered.
    """

    name = "mysql"
    dialect_name = "mysql"
    capabilities = (SQLAdapter.capabilities - {Capability.INTERRUPT}) | {Capability.USE_DATABASE}

    def error_types(self) -> tuple[type[BaseException], ...]:
        return (_connector().Error,)

    def connect(self, settings: ConnectionSettings) -> Any:
        """Connect to MySQL database."""
        connector = _connector()
        settings = settings.require_address()

        params: dict[str, Any] = {
            "user": settings.user,
            "password": settings.password,
            "database": settings.database or None,
            "charset": settings.charset or "utf8mb4",
            "autocommit": True,
        }
        if settings.socket:
            params["unix_socket"] = settings.socket
        else:
            params["host"] = settings.host
            params["port"] = settings.port or 3306
        params.update(settings.options)

        try:
            conn = connector.connect(**{k: v for k, v in params.items() if v is not None})
        except connector.Error as e:
            raise DatabaseConnectionError(
                f"Failed to connect to MySQL: {e}",
                cause=e,
            ).with_context(backend=self.name, database=settings.database) from e

        self._log.debug("connected", backend=self.name, database=settings.database)
        return conn

    def close(self, handle: Any) -> None:
        """Close MySQL connection."""
        if handle.is_connected():
            handle.close()

    def _cursor(self, handle: Any) -> Any:
        return handle.cursor(buffered=True)

    def use(self, handle: Any, database: str) -> None:
        sql = f"USE {self.dialect.quote_identifier(database)}"
        cursor = self._cursor(handle)
        try:
            self._trace(sql)
            cursor.execute(sql)
        except self.error_types() as e:
            raise QueryError(f"Cannot switch to database {database!r}: {e}", cause=e).with_context(
                backend=self.name, database=database, sql=sql
            ) from e
        finally:
            cursor.close()


def register(registry: AdapterRegistry) -> None:
    """Add the ``mysql`` backend to a registry."""
    registry.register("mysql", MySQLAdapter, aliases=("mariadb",))


__all__ = [
    "MySQLAdapter",
    "register",
]
