"""
Structured error types for strata.

Every failure the abstraction layer reports is a :class:`StrataError`
subclass carrying a category, an :class:`ErrorContext` with the operation
that failed (backend, collection, statement kind, SQL), and the original
driver exception as ``cause``.

Manifesto:
    - **Typed by kind:** Callers branch on the exception class, never on
      message text. ``NoMoreRowsError`` is the loop-termination sentinel and
      shares no base with real failures other than ``StrataError``.
    - **Context, not strings:** The session attaches collection and statement
      kind to every error raised beneath it.
    - **Chaining:** The backend exception is kept as ``cause`` and
      ``__cause__`` so tracebacks show the driver's own message.
    - **No retry semantics:** This layer never retries; retry policy belongs
      to the caller.

Architecture:
    ::

        StrataError (category, context, cause)
        ├── DatabaseConnectionError      backend unreachable / auth failure
        ├── MappingError
        │   └── MappingConflictError     two fields resolve to one column
        ├── UnsupportedError
        │   ├── UnsupportedExpressionError   condition the backend cannot express
        │   └── UnsupportedFeatureError      session call the backend cannot serve
        ├── NoMoreRowsError              end-of-iteration sentinel
        ├── CursorClosedError            read after close()
        ├── ValidationError              malformed settings or arguments
        ├── ConfigError                  unknown adapter, missing driver
        └── DatabaseError
            ├── QueryError               statement failed in the backend
            ├── TransactionError         begin/commit/rollback or busy session
            └── SessionClosedError       session or finished transaction reused

Examples:
    >>> err = QueryError("insert failed").with_context(collection="people", statement="insert")
    >>> err.context.collection
    'people'
    >>> err.to_dict()["category"]
    'QUERY'

Tags:
    error-handling, exception-hierarchy, error-context, strata

Doc-Types:
    - API Reference
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """Standard error categories for classification and logging."""

    CONNECTION = "CONNECTION"     # Backend unreachable, authentication
    MAPPING = "MAPPING"           # Record type descriptors
    CAPABILITY = "CAPABILITY"     # Backend cannot express a feature
    CURSOR = "CURSOR"             # Result-set lifecycle
    VALIDATION = "VALIDATION"     # Malformed settings or arguments
    CONFIG = "CONFIG"             # Registry and driver availability
    QUERY = "QUERY"               # Statement execution
    TRANSACTION = "TRANSACTION"   # Unit-of-work boundaries
    INTERNAL = "INTERNAL"         # Bugs, unexpected state


@dataclass
class ErrorContext:
    """
    Structured metadata attached to an error.

    Attributes:
        backend: Adapter name (``"sqlite"``, ``"memory"``...)
        collection: Collection the operation targeted
        statement: Statement kind (``"select"``, ``"insert"``...)
        database: Active database name
        sql: Translated statement text, when the backend is SQL
        metadata: Additional key-value pairs
    """

    backend: str | None = None
    collection: str | None = None
    statement: str | None = None
    database: str | None = None
    sql: str | None = None

    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        result = {}
        for key in ["backend", "collection", "statement", "database", "sql"]:
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        if self.metadata:
            result.update(self.metadata)
        return result


class StrataError(Exception):
    """
    Base exception for all strata errors.

    Subclasses set ``default_category``; instances carry a message, an
    :class:`ErrorContext` and an optional chained ``cause``.
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        context: ErrorContext | None = None,
        cause: BaseException | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.context = context or ErrorContext()
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> StrataError:
        """
        Add context to this error (fluent API).

        Fields already set by a deeper layer are kept; the innermost
        layer knows the operation best.

        Usage:
            raise QueryError("failed").with_context(collection="people")
        """
        for key, value in kwargs.items():
            if value is None:
                continue
            if hasattr(self.context, key) and key != "metadata":
                if getattr(self.context, key) is None:
                    setattr(self.context, key, value)
            else:
                self.context.metadata.setdefault(key, value)
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        result = {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "category": self.category.value,
        }
        context_dict = self.context.to_dict()
        if context_dict:
            result["context"] = context_dict
        if self.cause is not None:
            result["cause"] = str(self.cause)
        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, category={self.category.value})"


# =============================================================================
# CONNECTION
# =============================================================================


class DatabaseConnectionError(StrataError):
    """Backend unreachable or authentication failed. Fatal, never retried here."""

    default_category = ErrorCategory.CONNECTION


# =============================================================================
# MAPPING
# =============================================================================


class MappingError(StrataError):
    """A record type cannot be described or populated."""

    default_category = ErrorCategory.MAPPING

    def __init__(self, message: str, *, record_type: str | None = None, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.record_type = record_type


class MappingConflictError(MappingError):
    """Two fields of one record type resolve to the same column."""

    def __init__(
        self,
        message: str,
        *,
        column: str | None = None,
        fields: tuple[str, ...] = (),
        **kwargs: Any,
    ):
        super().__init__(message, **kwargs)
        self.column = column
        self.fields = fields


# =============================================================================
# CAPABILITY
# =============================================================================


class UnsupportedError(StrataError):
    """The backend cannot serve what was asked of it."""

    default_category = ErrorCategory.CAPABILITY


class UnsupportedExpressionError(UnsupportedError):
    """A condition node has no translation in the backend's query language."""

    def __init__(self, message: str, *, expression: str | None = None, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.expression = expression


class UnsupportedFeatureError(UnsupportedError):
    """A session or collection call needs a capability the backend lacks."""

    def __init__(self, message: str, *, feature: str | None = None, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.feature = feature


# =============================================================================
# CURSOR
# =============================================================================


class NoMoreRowsError(StrataError):
    """
    Natural end of a result set.

    Not a failure: ``ResultSet.next()`` raises it when the cursor is
    exhausted and ``ResultSet.one()`` when nothing matched.
    """

    default_category = ErrorCategory.CURSOR

    def __init__(self, message: str = "No more rows in this result set", **kwargs: Any):
        super().__init__(message, **kwargs)


class CursorClosedError(StrataError):
    """A result set was read after it was closed."""

    default_category = ErrorCategory.CURSOR

    def __init__(self, message: str = "Result set is closed", **kwargs: Any):
        super().__init__(message, **kwargs)


# =============================================================================
# VALIDATION / CONFIG
# =============================================================================


class ValidationError(StrataError):
    """Malformed settings or arguments."""

    default_category = ErrorCategory.VALIDATION

    def __init__(
        self,
        message: str,
        *,
        field: str | None = None,
        value: Any = None,
        **kwargs: Any,
    ):
        super().__init__(message, **kwargs)
        self.field = field
        self.value = value

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        if self.field:
            result["field"] = self.field
        if self.value is not None:
            result["value"] = repr(self.value)
        return result


class ConfigError(StrataError):
    """Unknown adapter name or missing driver package."""

    default_category = ErrorCategory.CONFIG


# =============================================================================
# DATABASE
# =============================================================================


class DatabaseError(StrataError):
    """Statement or transaction failure reported by the backend."""

    default_category = ErrorCategory.QUERY


class QueryError(DatabaseError):
    """A statement failed in the backend."""

    pass


class TransactionError(DatabaseError):
    """Transaction boundary failure, or a statement on a session whose connection is held by a transaction."""

    default_category = ErrorCategory.TRANSACTION


class SessionClosedError(DatabaseError):
    """A closed session, or a committed/rolled-back transaction, was used."""

    default_category = ErrorCategory.TRANSACTION


__all__ = [
    "ErrorCategory",
    "ErrorContext",
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
]
