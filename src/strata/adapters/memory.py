"""In-process document store adapter.

Collections are lists of dicts created on first insert. Filters run through
:func:`strata.conditions.evaluate`, so this backend is also the reference
every SQL translation is checked against.

Stores are private to one connection unless ``options["store"]`` (or the
URL host, ``memory://shared/app``) names a shared one; ``database`` picks
the namespace inside a store.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from strata.conditions import And, Comparison, Cond, Condition, Func, Or, Raw, evaluate
from strata.dialect import split_alias
from strata.errors import (
    QueryError,
    TransactionError,
    UnsupportedExpressionError,
    ValidationError,
)

from .base import Adapter, Capability, SortKey, Statement, StatementKind
from .types import ConnectionSettings

if TYPE_CHECKING:
    from .registry import AdapterRegistry

DEFAULT_DATABASE = "default"
DEFAULT_KEY = "id"


def _project(row: dict[str, Any], columns: tuple[str, ...]) -> dict[str, Any]:
    """Selected columns of one row; ``"name AS alias"`` renames, ``"*"`` keeps everything."""
    out: dict[str, Any] = {}
    for spec in columns:
        source, alias = split_alias(spec)
        if source == "*":
            out.update(row)
            continue
        column = source.rsplit(".", 1)[-1]
        out[alias or column] = row.get(column)
    return out


@dataclass
class _Table:
    rows: list[dict[str, Any]] = field(default_factory=list)
    sequence: int = 0


class MemoryStore:
    """Named databases of in-process collections."""

    def __init__(self) -> None:
        self.databases: dict[str, dict[str, _Table]] = {}

    def database(self, name: str) -> dict[str, _Table]:
        return self.databases.setdefault(name, {})

    def __repr__(self) -> str:
        return f"MemoryStore(databases={sorted(self.databases)})"


# Shared stores, by name
_stores: dict[str, MemoryStore] = {}


def shared_store(name: str) -> MemoryStore:
    return _stores.setdefault(name, MemoryStore())


def drop_store(name: str) -> None:
    """Forget a shared store (primarily for testing)."""
    _stores.pop(name, None)


@dataclass
class MemoryHandle:
    store: MemoryStore
    database: str = DEFAULT_DATABASE
    closed: bool = False
    snapshot: dict[str, dict[str, _Table]] | None = None


@dataclass(frozen=True)
class MemoryFilter:
    condition: Condition


@dataclass
class MemoryCursor:
    rows: list[dict[str, Any]]
    position: int = 0
    closed: bool = False


class MemoryAdapter(Adapter):
    """
    Document store held in process memory.

    Range comparisons, auto keys, transactions (snapshot and restore) and
    ``use()`` are supported. Raw fragments, function calls, joins and
    grouping are not.
    """

    name = "memory"
    capabilities = frozenset(
        {
            Capability.TRANSACTIONS,
            Capability.RANGE_COMPARISON,
            Capability.AUTO_KEYS,
            Capability.TRUNCATE_RESETS_SEQUENCE,
            Capability.USE_DATABASE,
            Capability.SCHEMALESS,
        }
    )

    # -- Connection --------------------------------------------------------

    def connect(self, settings: ConnectionSettings) -> MemoryHandle:
        store_name = settings.options.get("store") or settings.host
        store = shared_store(store_name) if store_name else MemoryStore()
        handle = MemoryHandle(store=store, database=settings.database or DEFAULT_DATABASE)
        self._log.debug("connected", backend=self.name, store=store_name, database=handle.database)
        return handle

    def close(self, handle: MemoryHandle) -> None:
        handle.closed = True

    def driver(self, handle: MemoryHandle) -> MemoryStore:
        return handle.store

    def use(self, handle: MemoryHandle, database: str) -> None:
        handle.database = database or DEFAULT_DATABASE

    def _tables(self, handle: MemoryHandle) -> dict[str, _Table]:
        if handle.closed:
            raise QueryError("Connection is closed").with_context(backend=self.name)
        return handle.store.database(handle.database)

    # -- Filters -----------------------------------------------------------

    def _check(self, node: Any) -> None:
        match node:
            case Raw() | Func():
                raise UnsupportedExpressionError(
                    f"{self.name} cannot express {type(node).__name__} {node!r}",
                    expression=repr(node),
                ).with_context(backend=self.name)
            case Cond(terms=terms):
                for _, cmp in terms:
                    self._check(cmp)
            case And(children=children) | Or(children=children) if not node.is_empty:
                for child in children:
                    self._check(child)
            case Comparison(operand=operand):
                self._check(operand)

    def build_filter(self, condition: Condition | None) -> MemoryFilter | None:
        if condition is None or condition.is_empty:
            return None
        self._check(condition)
        return MemoryFilter(condition)

    # -- Statements --------------------------------------------------------

    def _matching(self, table: _Table | None, predicate: MemoryFilter | None) -> list[dict[str, Any]]:
        if table is None:
            return []
        if predicate is None:
            return list(table.rows)
        return [row for row in table.rows if evaluate(predicate.condition, row)]

    @staticmethod
    def _sorted(rows: list[dict[str, Any]], keys: tuple[SortKey, ...]) -> list[dict[str, Any]]:
        # NULLs first ascending, last descending
        for key in reversed(keys):
            rows.sort(
                key=lambda row, c=key.column: (row.get(c) is not None, row.get(c)),
                reverse=key.descending,
            )
        return rows

    def execute(self, handle: MemoryHandle, statement: Statement) -> Any:
        if len(statement.target) > 1:
            self.require(Capability.JOINS, "joined collections")
        if statement.group_by:
            self.require(Capability.GROUP_BY, "group by")

        tables = self._tables(handle)
        name = statement.collection
        table = tables.get(name)
        self._trace(
            f"{statement.kind.value} {name}",
            [v.to_python() for _, v in statement.payload],
            kind=statement.kind.value,
            collection=name,
            condition=repr(statement.predicate.condition) if statement.predicate else None,
        )

        try:
            match statement.kind:
                case StatementKind.SELECT:
                    rows = self._sorted(self._matching(table, statement.predicate), statement.sort)
                    if statement.offset:
                        rows = rows[statement.offset :]
                    if statement.limit:
                        rows = rows[: statement.limit]
                    if statement.columns:
                        rows = [_project(row, statement.columns) for row in rows]
                    return MemoryCursor(copy.deepcopy(rows))

                case StatementKind.COUNT:
                    return len(self._matching(table, statement.predicate))

                case StatementKind.INSERT:
                    if table is None:
                        table = tables[name] = _Table()
                    return self._insert(table, statement)

                case StatementKind.UPDATE:
                    if not statement.payload:
                        raise ValidationError("update needs at least one column", field="changes")
                    changes = {c: v.to_python() for c, v in statement.payload}
                    rows = self._matching(table, statement.predicate)
                    for row in rows:
                        row.update(copy.deepcopy(changes))
                    return len(rows)

                case StatementKind.DELETE:
                    if table is None:
                        return 0
                    doomed = {id(row) for row in self._matching(table, statement.predicate)}
                    table.rows = [row for row in table.rows if id(row) not in doomed]
                    return len(doomed)

                case StatementKind.TRUNCATE:
                    if table is not None:
                        table.rows.clear()
                        table.sequence = 0
                    return 0
        except TypeError as e:
            raise QueryError(f"{statement.kind.value} on {name} failed: {e}", cause=e).with_context(
                backend=self.name, collection=name, statement=statement.kind.value
            ) from e

    def _insert(self, table: _Table, statement: Statement) -> Any:
        doc = {c: v.to_python() for c, v in statement.payload}
        key_column = statement.primary_key or DEFAULT_KEY
        key = doc.get(key_column)
        if key is None:
            table.sequence += 1
            key = doc[key_column] = table.sequence
        else:
            if any(row.get(key_column) == key for row in table.rows):
                raise QueryError(
                    f"Duplicate key {key_column}={key!r} in {statement.collection}"
                ).with_context(
                    backend=self.name, collection=statement.collection, statement="insert"
                )
            if isinstance(key, int) and not isinstance(key, bool) and key > table.sequence:
                table.sequence = key
        table.rows.append(doc)
        return key

    # -- Cursor ------------------------------------------------------------

    def fetch_next(self, cursor: MemoryCursor) -> dict[str, Any] | None:
        if cursor.closed or cursor.position >= len(cursor.rows):
            return None
        row = cursor.rows[cursor.position]
        cursor.position += 1
        return row

    def close_cursor(self, cursor: MemoryCursor) -> None:
        cursor.closed = True
        cursor.rows = []

    # -- Transactions ------------------------------------------------------

    def begin(self, handle: MemoryHandle) -> MemoryHandle:
        if handle.snapshot is not None:
            raise TransactionError("A transaction is already open").with_context(backend=self.name)
        handle.snapshot = copy.deepcopy(handle.store.databases)
        return handle

    def commit(self, tx: MemoryHandle) -> None:
        tx.snapshot = None

    def rollback(self, tx: MemoryHandle) -> None:
        if tx.snapshot is not None:
            tx.store.databases.clear()
            tx.store.databases.update(tx.snapshot)
        tx.snapshot = None

    # -- Catalog -----------------------------------------------------------

    def collections(self, handle: MemoryHandle) -> set[str]:
        return set(self._tables(handle))

    def collection_exists(self, handle: MemoryHandle, name: str) -> bool:
        return name in self._tables(handle)

    def primary_keys(self, handle: MemoryHandle, name: str) -> tuple[str, ...]:
        return (DEFAULT_KEY,)


def register(registry: AdapterRegistry) -> None:
    """Add the ``memory`` backend to a registry."""
    registry.register("memory", MemoryAdapter, aliases=("mem",))


__all__ = [
    "MemoryAdapter",
    "MemoryCursor",
    "MemoryFilter",
    "MemoryHandle",
    "MemoryStore",
    "drop_store",
    "register",
    "shared_store",
]
