"""Sessions and transactions.

A :class:`Session` owns one backend connection, the collections opened on
it, and the marker of its open transaction. Every statement the core issues
goes through :meth:`Session._execute`, which is where adapter failures get
their operation context.

Manifesto:
    One connection, one writer. A transaction is a clone of its session bound
    to the same connection; while it is open the parent refuses statements
    instead of silently interleaving them, and once it commits or rolls back
    the clone is dead while the parent lives on.

Architecture:
    ::

        open_session("sqlite", "app.db")          connect("postgresql://...")
                     │                                      │
                     └──────────────┬───────────────────────┘
                                    ▼
                    Session ── adapter.connect(settings) → handle
                     │  collection("people")  → Collection → find() → ResultSet
                     │  transaction()         → Transaction (same connection)
                     │  tx()                  → commit on success / rollback on error
                     └  close()               → rolls back an open transaction first

Features:
    - ``open_session()`` from a backend name and settings, URL or mapping
    - ``connect()`` choosing the backend from the URL scheme
    - Capability checks before transactions, ``use()`` and joins
    - Lifecycle events logged at DEBUG through structlog

Examples:
    >>> with connect("memory://") as session:
    ...     people = session.collection("people")
    ...     people.append({"name": "A", "age": 30})
    ...     people.find(name="A").one()["age"]
    1
    30

Tags:
    session, transaction, unit-of-work, connection, strata

Doc-Types:
    - API Reference
"""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from dataclasses import fields, replace
from typing import Any
from urllib.parse import urlsplit

from strata.adapters.base import Adapter, Capability, Statement
from strata.adapters.registry import AdapterRegistry, adapter_registry
from strata.adapters.types import ConnectionSettings
from strata.collection import Collection
from strata.conditions import RANGE_OPERATORS, Condition, operators
from strata.errors import (
    DatabaseConnectionError,
    QueryError,
    SessionClosedError,
    StrataError,
    TransactionError,
    UnsupportedFeatureError,
    ValidationError,
)
from strata.logging import get_logger
from strata.mapping import Descriptor
from strata.settings import get_settings

logger = get_logger(__name__)


def _coerce_settings(settings: Any, overrides: Mapping[str, Any]) -> ConnectionSettings:
    if settings is None:
        settings = ConnectionSettings()
    elif isinstance(settings, str):
        settings = ConnectionSettings.from_url(settings)
    elif isinstance(settings, Mapping):
        settings = ConnectionSettings.from_mapping(settings)
    elif not isinstance(settings, ConnectionSettings):
        raise ValidationError(
            f"Unsupported settings type: {type(settings).__name__}",
            field="settings",
            value=settings,
        )
    if overrides:
        known = {f.name for f in fields(ConnectionSettings)}
        unknown = set(overrides) - known
        if unknown:
            raise ValidationError(
                f"Unknown connection settings: {', '.join(sorted(unknown))}",
                field=sorted(unknown)[0],
            )
        settings = replace(settings, **overrides)
    return settings


def open_session(
    adapter: str | Adapter,
    settings: ConnectionSettings | Mapping[str, Any] | str | None = None,
    *,
    registry: AdapterRegistry | None = None,
    log_statements: bool | None = None,
    **overrides: Any,
) -> Session:
    """
    Open a session on a backend.

    Args:
        adapter: Registered backend name or an :class:`Adapter` instance
        settings: ``ConnectionSettings``, a mapping of its fields, or a URL
        registry: Registry to resolve ``adapter`` names (default: global)
        log_statements: Log every statement (default: ``STRATA_LOG_STATEMENTS``)
        **overrides: Individual ``ConnectionSettings`` fields

    Raises:
        ConfigError: unknown backend or missing driver package
        DatabaseConnectionError: the backend refused the connection
        ValidationError: malformed settings
    """
    if log_statements is None:
        log_statements = get_settings().log_statements

    if isinstance(adapter, Adapter):
        backend = adapter
        backend.log_statements = log_statements or backend.log_statements
    else:
        backend = (registry or adapter_registry).create(adapter, log_statements=log_statements)

    conn_settings = _coerce_settings(settings, overrides)

    try:
        handle = backend.connect(conn_settings)
    except StrataError:
        raise
    except Exception as e:
        error = DatabaseConnectionError(
            f"Failed to connect to {backend.name}: {e}",
            cause=e,
        ).with_context(backend=backend.name, database=conn_settings.database)
        logger.warning("session.connect_failed", exc_info=error)
        raise error from e

    session = Session(backend, conn_settings, handle)
    logger.debug("session.opened", backend=backend.name, settings=repr(conn_settings))
    return session


def connect(url: str | None = None, **kwargs: Any) -> Session:
    """
    Open a session from a URL, picking the backend from its scheme.

    ``sqlite``, ``postgresql``/``postgres``/``pg``, ``mysql``/``mariadb``,
    ``memory``. A ``+driver`` suffix on the scheme is ignored. Without a URL,
    ``STRATA_DEFAULT_URL`` is used.
    """
    url = url or get_settings().default_url
    scheme = urlsplit(url).scheme.split("+", 1)[0].lower()
    if not scheme:
        raise ValidationError("URL has no scheme", field="url", value=url)
    return open_session(scheme, url, **kwargs)


class Session:
    """
    One backend connection and the collections opened on it.

    Not safe for concurrent use: issue overlapping operations from separate
    sessions.
    """

    def __init__(self, adapter: Adapter, settings: ConnectionSettings, handle: Any):
        self._adapter = adapter
        self._settings = settings
        self._handle = handle
        self._collections: dict[tuple[str, ...], Collection] = {}
        self._primary_keys: dict[str, str | None] = {}
        self._active_tx: Transaction | None = None
        self._closed = False

    # ── Introspection ────────────────────────────────────────────────────

    @property
    def adapter(self) -> Adapter:
        return self._adapter

    @property
    def settings(self) -> ConnectionSettings:
        return self._settings

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def in_transaction(self) -> bool:
        return self._active_tx is not None

    def __repr__(self) -> str:
        state = "closed" if self._closed else "open"
        return f"{type(self).__name__}({self._adapter.name!r}, {state})"

    # ── Guards ───────────────────────────────────────────────────────────

    def _ensure_open(self) -> None:
        if self._closed:
            raise SessionClosedError(f"{type(self).__name__} is closed").with_context(
                backend=self._adapter.name
            )

    def _ensure_idle(self) -> None:
        self._ensure_open()
        if self._active_tx is not None:
            raise TransactionError(
                "A transaction holds this session's connection; use the transaction "
                "or finish it first"
            ).with_context(backend=self._adapter.name)

    def _call(self, operation: str, fn: Any, *args: Any, collection: str | None = None) -> Any:
        try:
            return fn(*args)
        except StrataError as e:
            raise e.with_context(
                backend=self._adapter.name,
                collection=collection,
                statement=operation,
                database=self._settings.database or None,
            )
        except Exception as e:
            raise QueryError(f"{operation} failed: {e}", cause=e).with_context(
                backend=self._adapter.name,
                collection=collection,
                statement=operation,
                database=self._settings.database or None,
            ) from e

    # ── Statement plumbing (used by Collection and ResultSet) ────────────

    def _execute(self, statement: Statement) -> Any:
        self._ensure_idle()
        return self._call(
            statement.kind.value,
            self._adapter.execute,
            self._handle,
            statement,
            collection=statement.collection,
        )

    def _filter(self, condition: Condition | None, collection: str | None = None) -> Any:
        return self._call("filter", self._build_filter, condition, collection=collection)

    def _build_filter(self, condition: Condition | None) -> Any:
        if operators(condition) & RANGE_OPERATORS:
            self._adapter.require(Capability.RANGE_COMPARISON, "range comparisons")
        return self._adapter.build_filter(condition)

    def _fetch(self, cursor: Any) -> dict[str, Any] | None:
        return self._call("fetch", self._adapter.fetch_next, cursor)

    def _close_cursor(self, cursor: Any) -> None:
        self._call("close_cursor", self._adapter.close_cursor, cursor)

    def _collection_exists(self, name: str) -> bool:
        self._ensure_idle()
        return self._call(
            "collection_exists", self._adapter.collection_exists, self._handle, name, collection=name
        )

    def _primary_key(self, name: str, descriptor: Descriptor | None = None) -> str | None:
        """Key column for inserts: the record's declared key, else the backend's single-column key."""
        if descriptor is not None and descriptor.primary_key is not None:
            return descriptor.primary_key.column
        if name not in self._primary_keys:
            self._ensure_idle()
            keys = self._call(
                "primary_keys", self._adapter.primary_keys, self._handle, name, collection=name
            )
            # composite keys are never generated
            self._primary_keys[name] = keys[0] if len(keys) == 1 else None
        return self._primary_keys[name]

    # ── Public API ───────────────────────────────────────────────────────

    def collection(self, *names: str) -> Collection:
        """
        Collection handle; more than one name composes a joined virtual
        collection whose first name is the write target.
        """
        self._ensure_open()
        if len(names) == 1 and isinstance(names[0], (list, tuple)):
            names = tuple(names[0])
        if len(names) > 1:
            self._adapter.require(Capability.JOINS, "joined collections")
        key = tuple(names)
        if key not in self._collections:
            self._collections[key] = Collection(self, key)
        return self._collections[key]

    def collections(self) -> set[str]:
        """Names of every collection in the active database."""
        self._ensure_idle()
        return set(self._call("collections", self._adapter.collections, self._handle))

    def use(self, database: str) -> None:
        """
        Switch the active database: in place when the backend supports it,
        otherwise by reopening the connection.
        """
        self._ensure_idle()
        if self._adapter.supports(Capability.USE_DATABASE):
            self._call("use", self._adapter.use, self._handle, database)
            self._settings = replace(self._settings, database=database)
        else:
            settings = replace(self._settings, database=database)
            try:
                handle = self._adapter.connect(settings)
            except StrataError:
                raise
            except Exception as e:
                raise DatabaseConnectionError(
                    f"Failed to reconnect to {self._adapter.name}: {e}", cause=e
                ).with_context(backend=self._adapter.name, database=database) from e
            old, self._handle, self._settings = self._handle, handle, settings
            self._adapter.close(old)
        self._collections.clear()
        self._primary_keys.clear()
        logger.debug("session.use", backend=self._adapter.name, database=database)

    def transaction(self) -> Transaction:
        """
        Start a transaction on this session's connection.

        Raises:
            UnsupportedFeatureError: the backend has no transactions
            TransactionError: a transaction is already open
        """
        self._ensure_idle()
        self._adapter.require(Capability.TRANSACTIONS, "transactions")
        tx_handle = self._call("begin", self._adapter.begin, self._handle)
        tx = Transaction(self, tx_handle)
        self._active_tx = tx
        logger.debug("transaction.begin", backend=self._adapter.name)
        return tx

    @contextmanager
    def tx(self) -> Iterator[Transaction]:
        """Transaction scope: commit on success, roll back on error."""
        tx = self.transaction()
        try:
            yield tx
        except BaseException:
            if tx.active:
                tx.rollback()
            raise
        if tx.active:
            tx.commit()

    def driver(self) -> Any:
        """Backend-native connection object, for operations strata does not cover."""
        self._ensure_open()
        return self._adapter.driver(self._handle)

    def interrupt(self) -> None:
        """Ask the backend to abandon the statement running on this connection."""
        self._ensure_open()
        self._call("interrupt", self._adapter.interrupt, self._handle)

    def close(self) -> None:
        """Close the connection, rolling back an open transaction first. Idempotent."""
        if self._closed:
            return
        try:
            if self._active_tx is not None:
                self._active_tx.rollback()
        finally:
            self._closed = True
            self._collections.clear()
            self._call("close", self._adapter.close, self._handle)
            logger.debug("session.closed", backend=self._adapter.name)

    def __enter__(self) -> Session:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()


class Transaction(Session):
    """
    A session clone bound to its parent's connection for one unit of work.

    ``commit()`` or ``rollback()`` ends it; afterwards every call raises
    :class:`SessionClosedError`. The parent is unaffected.
    """

    def __init__(self, parent: Session, tx_handle: Any):
        super().__init__(parent._adapter, parent._settings, tx_handle)
        self._parent = parent
        self._primary_keys = parent._primary_keys

    @property
    def parent(self) -> Session:
        return self._parent

    @property
    def active(self) -> bool:
        return not self._closed

    def _finish(self, operation: str, fn: Any) -> None:
        self._ensure_open()
        self._call(operation, fn, self._handle)
        self._closed = True
        self._collections.clear()
        if self._parent._active_tx is self:
            self._parent._active_tx = None
        logger.debug(f"transaction.{operation}", backend=self._adapter.name)

    def commit(self) -> None:
        self._finish("commit", self._adapter.commit)

    def rollback(self) -> None:
        self._finish("rollback", self._adapter.rollback)

    def transaction(self) -> Transaction:
        raise UnsupportedFeatureError(
            "Nested transactions are not supported", feature="nested transactions"
        ).with_context(backend=self._adapter.name)

    def use(self, database: str) -> None:
        raise UnsupportedFeatureError(
            "Cannot switch databases inside a transaction", feature="use"
        ).with_context(backend=self._adapter.name)

    def close(self) -> None:
        """Roll back if still open. The shared connection stays with the parent."""
        if not self._closed:
            self.rollback()

    def __repr__(self) -> str:
        state = "active" if self.active else "finished"
        return f"Transaction({self._adapter.name!r}, {state})"


__all__ = [
    "Session",
    "Transaction",
    "connect",
    "open_session",
]
