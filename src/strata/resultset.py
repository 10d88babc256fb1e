"""Lazy, chainable result sets.

A :class:`ResultSet` is an immutable query configuration bound to one
collection plus the state of at most one backend cursor. Nothing reaches the
backend until a read (``next``, ``one``, ``all``, ``count``, ``exists``) or
write (``update``, ``remove``) is called.

Manifesto:
    Chained modifiers must not alias each other. Every modifier returns a new
    result set in the ``BUILT`` state, so ``base.sort("-age")`` and
    ``base.limit(5)`` are independent queries and a modifier applied after
    iteration started never disturbs the live cursor.

Architecture:
    ::

        BUILT ──first fetch──▶ EXECUTING ──cursor──▶ OPEN ──close()──▶ CLOSED
          ▲                        │                   │
          └──── backend error ─────┘                   └─ one()/all() auto-close

Features:
    - Modifiers: ``skip``, ``limit``, ``sort``, ``select``, ``group``,
      ``where``, ``and_``, ``paginate``, ``page``
    - Reads: ``next``, ``one``, ``all``, iteration, ``count``, ``exists``,
      ``total_pages``
    - Writes: ``update``, ``remove``
    - ``close()`` idempotent; context-manager protocol

Examples:
    >>> people = session.collection("people")
    >>> rs = people.find(Cond(age={"gte": 28})).sort("-age")
    >>> [row["name"] for row in rs]
    ['C', 'A']
    >>> rs.state
    <CursorState.OPEN: 'open'>

Tags:
    result-set, cursor, state-machine, builder, strata

Doc-Types:
    - API Reference
"""

from __future__ import annotations

import math
from collections.abc import Iterator, Mapping
from dataclasses import dataclass, replace
from enum import Enum
from typing import TYPE_CHECKING, Any

from strata.adapters.base import SortKey, Statement, StatementKind
from strata.conditions import Condition, conjoin
from strata.errors import (
    CursorClosedError,
    NoMoreRowsError,
    UnsupportedFeatureError,
    ValidationError,
)
from strata.mapping import describe, is_record_type, populate, populate_all
from strata.values import Value

if TYPE_CHECKING:
    from strata.collection import Collection


class CursorState(str, Enum):
    """Lifecycle of a result set's backend cursor."""

    BUILT = "built"
    EXECUTING = "executing"
    OPEN = "open"
    CLOSED = "closed"


@dataclass(frozen=True)
class QueryOptions:
    """
    Immutable query configuration.

    ``limit == 0`` means unbounded. ``page_size`` only feeds ``page()`` and
    ``total_pages()``.
    """

    condition: Condition | None = None
    columns: tuple[str, ...] = ()
    sort: tuple[SortKey, ...] = ()
    group_by: tuple[str, ...] = ()
    offset: int = 0
    limit: int = 0
    page_size: int = 0

    def __post_init__(self) -> None:
        for name in ("offset", "limit", "page_size"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int):
                raise ValidationError(f"{name} must be an integer", field=name, value=value)
            if value < 0:
                raise ValidationError(f"{name} must be >= 0", field=name, value=value)


def _flatten(items: tuple[Any, ...]) -> list[Any]:
    out: list[Any] = []
    for item in items:
        if isinstance(item, (list, tuple)):
            out.extend(item)
        else:
            out.append(item)
    return out


class ResultSet:
    """Lazy query over one collection. See the module docstring for the lifecycle."""

    def __init__(self, collection: Collection, options: QueryOptions | None = None):
        self._collection = collection
        self._options = options or QueryOptions()
        self._state = CursorState.BUILT
        self._cursor: Any = None
        self._exhausted = False

    # ── Introspection ────────────────────────────────────────────────────

    @property
    def collection(self) -> Collection:
        return self._collection

    @property
    def options(self) -> QueryOptions:
        return self._options

    @property
    def state(self) -> CursorState:
        return self._state

    @property
    def closed(self) -> bool:
        return self._state is CursorState.CLOSED

    def __repr__(self) -> str:
        return (
            f"ResultSet({self._collection.name!r}, state={self._state.value}, "
            f"condition={self._options.condition!r})"
        )

    # ── Modifiers ────────────────────────────────────────────────────────

    def _derive(self, **changes: Any) -> ResultSet:
        return ResultSet(self._collection, replace(self._options, **changes))

    def skip(self, n: int) -> ResultSet:
        return self._derive(offset=n)

    def limit(self, n: int) -> ResultSet:
        return self._derive(limit=n)

    def sort(self, *keys: str | SortKey) -> ResultSet:
        """Sort by ``"age"``, ``"-age"``, ``"+age"`` or ``"age desc"`` keys, in priority order."""
        return self._derive(sort=tuple(SortKey.parse(k) for k in _flatten(keys)))

    def select(self, *columns: str) -> ResultSet:
        return self._derive(columns=tuple(_flatten(columns)))

    def group(self, *columns: str) -> ResultSet:
        return self._derive(group_by=tuple(_flatten(columns)))

    def where(self, *conditions: Condition | Mapping[str, Any]) -> ResultSet:
        """Replace the condition tree."""
        return self._derive(condition=conjoin(conditions))

    def and_(self, *conditions: Condition | Mapping[str, Any]) -> ResultSet:
        """Add conditions to the existing tree."""
        return self._derive(condition=conjoin([self._options.condition, *conditions]))

    def paginate(self, page_size: int) -> ResultSet:
        if isinstance(page_size, bool) or not isinstance(page_size, int) or page_size < 1:
            raise ValidationError("page size must be a positive integer", field="page_size", value=page_size)
        return self._derive(page_size=page_size)

    def page(self, number: int) -> ResultSet:
        """1-based page of a paginated result set."""
        size = self._options.page_size
        if not size:
            raise ValidationError("call paginate() before page()", field="page_size")
        if isinstance(number, bool) or not isinstance(number, int) or number < 1:
            raise ValidationError("page number must be >= 1", field="page", value=number)
        return self._derive(offset=(number - 1) * size, limit=size)

    # ── Execution ────────────────────────────────────────────────────────

    def _check_open(self) -> None:
        if self._state is CursorState.CLOSED:
            raise CursorClosedError().with_context(collection=self._collection.name)

    def _statement(self, kind: StatementKind, **overrides: Any) -> Statement:
        session = self._collection.session
        opts = self._options
        fields: dict[str, Any] = {
            "kind": kind,
            "target": self._collection.names,
            "predicate": session._filter(opts.condition, self._collection.name),
        }
        if kind is StatementKind.SELECT:
            fields.update(
                columns=opts.columns,
                sort=opts.sort,
                group_by=opts.group_by,
                limit=opts.limit,
                offset=opts.offset,
            )
        elif kind is StatementKind.COUNT:
            fields.update(group_by=opts.group_by)
        fields.update(overrides)
        return Statement(**fields)

    def _execute(self) -> None:
        self._state = CursorState.EXECUTING
        try:
            self._cursor = self._collection.session._execute(self._statement(StatementKind.SELECT))
        except BaseException:
            self._state = CursorState.BUILT
            raise
        self._state = CursorState.OPEN

    def _release(self) -> None:
        if self._cursor is not None:
            cursor, self._cursor = self._cursor, None
            self._collection.session._close_cursor(cursor)

    def _fetch(self) -> dict[str, Any] | None:
        if self._exhausted:
            return None
        if self._state is CursorState.BUILT:
            self._execute()
        row = self._collection.session._fetch(self._cursor)
        if row is None:
            self._exhausted = True
            self._release()
        return row

    # ── Reads ────────────────────────────────────────────────────────────

    def next(self, destination: Any = dict) -> Any:
        """
        Next row, delivered into ``destination`` (see :func:`strata.mapping.populate`).

        Raises:
            NoMoreRowsError: at the natural end, on every call until closed
            CursorClosedError: after ``close()``
        """
        self._check_open()
        row = self._fetch()
        if row is None:
            raise NoMoreRowsError().with_context(collection=self._collection.name)
        return populate(destination, row)

    def __iter__(self) -> Iterator[dict[str, Any]]:
        while True:
            try:
                yield self.next()
            except NoMoreRowsError:
                return

    def one(self, destination: Any = dict) -> Any:
        """First matching row; closes the result set. ``NoMoreRowsError`` when nothing matches."""
        self._check_open()
        head = self._derive(limit=1)
        try:
            row = head._fetch()
        finally:
            head.close()
            self.close()
        if row is None:
            raise NoMoreRowsError("No row matches").with_context(collection=self._collection.name)
        return populate(destination, row)

    def all(self, destination: Any = dict, *, item: Any = dict) -> list:
        """
        Every remaining row, honoring limit/offset; closes the result set.

        ``destination`` is an element type (a new list is returned) or a list
        extended in place with ``item``-shaped elements.
        """
        self._check_open()
        rows = []
        try:
            while (row := self._fetch()) is not None:
                rows.append(row)
        finally:
            self.close()
        return populate_all(destination, rows, item=item)

    def count(self) -> int:
        """Rows matching the condition tree; skip, limit and sort are ignored."""
        self._check_open()
        return int(self._collection.session._execute(self._statement(StatementKind.COUNT)))

    def exists(self) -> bool:
        self._check_open()
        head = self._derive(limit=1, offset=0, sort=())
        try:
            return head._fetch() is not None
        finally:
            head.close()

    def total_pages(self) -> int:
        size = self._options.page_size
        if not size:
            raise ValidationError("call paginate() before total_pages()", field="page_size")
        return math.ceil(self.count() / size)

    # ── Writes ───────────────────────────────────────────────────────────

    def _writable(self, operation: str) -> None:
        self._check_open()
        if self._collection.is_joined:
            raise UnsupportedFeatureError(
                f"{operation} on a joined collection", feature=operation
            ).with_context(collection=self._collection.name)

    def update(self, changes: Any) -> int:
        """
        Apply changes to every matching row; returns rows affected.

        A mapping writes every key it holds, zero values included. A record
        writes its non-empty fields (``omitempty`` honored), never its key.
        """
        self._writable("update")
        if isinstance(changes, Mapping):
            payload = [(str(k), Value.of(v)) for k, v in changes.items()]
        elif is_record_type(type(changes)):
            descriptor = describe(type(changes))
            key = descriptor.primary_key
            payload = [
                (col, value)
                for col, value in descriptor.extract(changes, omit_empty=True)
                if key is None or col != key.column
            ]
        else:
            raise ValidationError(
                f"Cannot update with {type(changes).__name__}", field="changes", value=changes
            )
        if not payload:
            raise ValidationError("update needs at least one column", field="changes")
        statement = self._statement(StatementKind.UPDATE, payload=tuple(payload))
        return int(self._collection.session._execute(statement))

    def remove(self) -> int:
        """Delete every matching row; returns rows affected."""
        self._writable("remove")
        return int(self._collection.session._execute(self._statement(StatementKind.DELETE)))

    # ── Lifecycle ────────────────────────────────────────────────────────

    def close(self) -> None:
        """Release the backend cursor. Safe to call more than once."""
        if self._state is CursorState.CLOSED:
            return
        try:
            self._release()
        finally:
            self._state = CursorState.CLOSED

    def __enter__(self) -> ResultSet:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()


__all__ = [
    "CursorState",
    "QueryOptions",
    "ResultSet",
]
