"""Strata -- one interface over relational and document databases.

Manifesto:
    Application code should read and write records the same way whether the
    rows live in SQLite, PostgreSQL, MySQL or an in-process store. Strata is
    the thin layer that makes that true: composable conditions, a lazy
    result-set cursor, and a field mapper between record types and rows.
    It is not an ORM: no migrations, no relationships, no identity map.

Architecture::

    Layer 1 -- Values & Errors
        values.py        Tagged-variant Value (null, bool, integer, ... list)
        errors.py        StrataError hierarchy with ErrorContext

    Layer 2 -- Query Model
        mapping.py       Record type descriptors, populate / populate_all
        conditions.py    Cond / And / Or / Raw / Func + reference evaluator

    Layer 3 -- Backends
        adapters/        Adapter contract, registry, sqlite/postgresql/mysql/memory
        dialect.py       SQL spellings per backend

    Layer 4 -- Session API
        session.py       open_session / connect, Session, Transaction
        collection.py    append / find / truncate / exists
        resultset.py     BUILT → EXECUTING → OPEN → CLOSED cursor

    Cross-cutting
        settings.py      StrataSettings (pydantic-settings, STRATA_ prefix)
        logging.py       structlog configuration

Examples:
    >>> import strata
    >>> with strata.connect("sqlite://") as session:
    ...     session.driver().execute("CREATE TABLE people (id INTEGER PRIMARY KEY, name TEXT, age INTEGER)")
    ...     people = session.collection("people")
    ...     people.append({"name": "A", "age": 30})
    ...     people.find(strata.Cond(age={"gte": 28})).all()

Tags:
    strata, database, abstraction-layer, query-builder, cursor, mapping

Doc-Types:
    package-overview, architecture-map, module-index
"""

from strata.adapters import (
    Adapter,
    AdapterRegistry,
    Capability,
    ConnectionSettings,
    SortKey,
    Statement,
    StatementKind,
    adapter_registry,
    get_adapter,
)
from strata.collection import Collection
from strata.conditions import (
    And,
    Cond,
    Condition,
    Func,
    Operator,
    Or,
    Raw,
    evaluate,
    gt,
    gte,
    in_,
    is_not_null,
    is_null,
    like,
    lt,
    lte,
    ne,
    not_in,
    not_like,
)
from strata.errors import (
    ConfigError,
    CursorClosedError,
    DatabaseConnectionError,
    DatabaseError,
    MappingConflictError,
    MappingError,
    NoMoreRowsError,
    QueryError,
    SessionClosedError,
    StrataError,
    TransactionError,
    UnsupportedError,
    UnsupportedExpressionError,
    UnsupportedFeatureError,
    ValidationError,
)
from strata.logging import configure_logging, get_logger
from strata.mapping import Describable, FieldSpec, column, describe, populate, populate_all
from strata.resultset import CursorState, QueryOptions, ResultSet
from strata.session import Session, Transaction, connect, open_session
from strata.settings import StrataSettings, get_settings
from strata.values import NULL, Value, ValueKind

__version__ = "0.1.0"

__all__ = [
    # Session API
    "connect",
    "open_session",
    "Session",
    "Transaction",
    "Collection",
    "ResultSet",
    "CursorState",
    "QueryOptions",
    # Conditions
    "Condition",
    "Cond",
    "And",
    "Or",
    "Raw",
    "Func",
    "Operator",
    "evaluate",
    "gt",
    "gte",
    "lt",
    "lte",
    "ne",
    "in_",
    "not_in",
    "like",
    "not_like",
    "is_null",
    "is_not_null",
    # Mapping
    "column",
    "describe",
    "populate",
    "populate_all",
    "Describable",
    "FieldSpec",
    # Values
    "Value",
    "ValueKind",
    "NULL",
    # Adapters
    "Adapter",
    "AdapterRegistry",
    "adapter_registry",
    "get_adapter",
    "Capability",
    "ConnectionSettings",
    "SortKey",
    "Statement",
    "StatementKind",
    # Errors
    "StrataError",
    "DatabaseConnectionError",
    "MappingError",
    "MappingConflictError",
    "UnsupportedError",
    "UnsupportedExpressionError",
    "UnsupportedFeatureError",
    "NoMoreRowsError",
    "CursorClosedError",
    "ValidationError",
    "ConfigError",
    "DatabaseError",
    "QueryError",
    "TransactionError",
    "SessionClosedError",
    # Settings & logging
    "StrataSettings",
    "get_settings",
    "configure_logging",
    "get_logger",
]
