"""Backend adapters -- one contract, four backends.

Manifesto:
    The same session code must run against an in-process store in tests,
    SQLite on a laptop and PostgreSQL or MySQL in production. Each backend
    implements the narrow :class:`Adapter` contract; nothing above it knows
    which one is plugged in.

    Each network adapter is **import-guarded**: the database driver is only
    required at ``connect()`` time, not at import time. Install the
    corresponding extra::

        pip install strata-db[postgresql]   # psycopg2-binary
        pip install strata-db[mysql]        # mysql-connector-python

Architecture::

    Adapter (base.py)                Abstract contract: connect/build_filter/execute/fetch
        |-- SQLAdapter (sql.py)      Statement builder over a Dialect
        |     |-- SQLiteAdapter      stdlib sqlite3 (always available)
        |     |-- PostgreSQLAdapter  psycopg2 (optional)
        |     |-- MySQLAdapter       mysql.connector (optional)
        |-- MemoryAdapter            in-process document store, reference evaluator

    AdapterRegistry (registry.py)    name -> factory, explicit register() per backend
    ConnectionSettings (types.py)    validated connection parameters

Modules
-------
base            Adapter contract, Statement, Capability, SortKey
types           ConnectionSettings
sql             SQLAdapter statement builder
registry        AdapterRegistry + get_adapter() factory
sqlite          SQLite adapter (stdlib, always available)
postgresql      PostgreSQL adapter (requires psycopg2)
mysql           MySQL / MariaDB adapter (requires mysql-connector-python)
memory          In-process document store

Guardrails:
    ❌ Importing optional drivers at module scope
    ✅ Import-guarded at ``connect()`` time with clear ``ConfigError``
    ❌ ``adapter = PostgreSQLAdapter()`` in application code
    ✅ ``strata.open_session("postgresql", url)``

Tags:
    strata, database, adapters, multi-backend, import-guarded,
    registry-pattern, postgresql, sqlite, mysql, memory

Doc-Types:
    package-overview, architecture-map, module-index
"""

from strata.dialect import Dialect, get_dialect

from .base import Adapter, Capability, SortKey, Statement, StatementKind
from .memory import MemoryAdapter
from .mysql import MySQLAdapter
from .postgresql import PostgreSQLAdapter
from .registry import AdapterRegistry, adapter_registry, get_adapter
from .sql import SQLAdapter
from .sqlite import SQLiteAdapter
from .types import ConnectionSettings

__all__ = [
    # Types
    "ConnectionSettings",
    "Statement",
    "StatementKind",
    "SortKey",
    "Capability",
    # Abstractions
    "Dialect",
    "get_dialect",
    # Base classes
    "Adapter",
    "SQLAdapter",
    # Implementations
    "SQLiteAdapter",
    "PostgreSQLAdapter",
    "MySQLAdapter",
    "MemoryAdapter",
    # Registry
    "AdapterRegistry",
    "adapter_registry",
    "get_adapter",
]
