"""Shared SQL statement builder for DB-API backends.

Manifesto:
    SQLite, PostgreSQL and MySQL differ in a handful of spellings, not in how
    a filtered ``SELECT`` is put together. ``SQLAdapter`` builds every
    statement once and asks its :class:`~strata.dialect.Dialect` for the
    parts that vary; concrete adapters only open connections.

Features:
    - Condition trees compiled to parameterised ``WHERE`` clauses
    - ``SELECT`` / ``COUNT`` / ``INSERT`` / ``UPDATE`` / ``DELETE`` / ``TRUNCATE``
    - Generated keys via ``RETURNING`` or ``cursor.lastrowid``
    - Transactions as explicit ``BEGIN``/``COMMIT``/``ROLLBACK`` on an
      autocommit connection
    - Driver exceptions surfaced as ``QueryError`` carrying the SQL

Tags:
    strata, sql, statement-builder, db-api

Doc-Types:
    api-reference
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, ClassVar

from strata.conditions import And, Comparison, Cond, Condition, Func, Operator, Or, Raw
from strata.dialect import Dialect, get_dialect
from strata.errors import (
    QueryError,
    TransactionError,
    UnsupportedExpressionError,
    ValidationError,
)
from strata.values import Value, ValueKind

from .base import Adapter, Capability, Statement, StatementKind

_FUNC_NAME_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_.]*$")


@dataclass(frozen=True)
class SQLFilter:
    """Compiled ``WHERE`` body and its bound parameters."""

    sql: str
    params: tuple[Any, ...] = ()


@dataclass
class SQLCursor:
    """A DB-API cursor plus the column names of its result."""

    cursor: Any
    columns: list[str] = field(default_factory=list)
    closed: bool = False


class SQLAdapter(Adapter):
    """
    Base class for DB-API adapters.

    Subclasses set ``dialect_name`` and implement ``connect()`` and
    ``error_types()``; the handle they return is the DB-API connection,
    opened in autocommit mode.
    """

    dialect_name: ClassVar[str] = "sqlite"
    capabilities = frozenset(
        {
            Capability.TRANSACTIONS,
            Capability.RAW_EXPRESSIONS,
            Capability.FUNCTIONS,
            Capability.RANGE_COMPARISON,
            Capability.JOINS,
            Capability.GROUP_BY,
            Capability.AUTO_KEYS,
            Capability.TRUNCATE_RESETS_SEQUENCE,
            Capability.INTERRUPT,
        }
    )

    def __init__(self, *, log_statements: bool = False):
        super().__init__(log_statements=log_statements)
        self.dialect: Dialect = get_dialect(self.dialect_name)

    def error_types(self) -> tuple[type[BaseException], ...]:
        """Driver exception classes wrapped into strata errors."""
        return ()

    # ── Condition compilation ────────────────────────────────────────────

    def build_filter(self, condition: Condition | None) -> SQLFilter | None:
        if condition is None or condition.is_empty:
            return None
        sql, params = self._compile(condition)
        return SQLFilter(sql, tuple(params))

    def _compile(self, node: Condition) -> tuple[str, list[Any]]:
        match node:
            case Cond(terms=terms):
                parts = [self._term(column, cmp) for column, cmp in terms]
                return self._join(" AND ", parts)
            case And(children=children):
                parts = [self._compile(c) for c in children if not c.is_empty]
                return self._join(" AND ", parts)
            case Or(children=children):
                # an empty Or never reaches here; see Or.is_empty
                return self._join(" OR ", [self._compile(c) for c in children])
            case Raw():
                self.require(Capability.RAW_EXPRESSIONS, "raw expressions")
                sql, params = self._raw(node)
                return f"({sql})", params
            case Func():
                self.require(Capability.FUNCTIONS, "function calls")
                return self._func(node)
        raise UnsupportedExpressionError(
            f"{self.name} cannot translate {type(node).__name__}",
            expression=repr(node),
        ).with_context(backend=self.name)

    @staticmethod
    def _join(glue: str, parts: list[tuple[str, list[Any]]]) -> tuple[str, list[Any]]:
        if len(parts) == 1:
            return parts[0]
        params: list[Any] = []
        for _, p in parts:
            params.extend(p)
        return "(" + glue.join(sql for sql, _ in parts) + ")", params

    def _raw(self, raw: Raw) -> tuple[str, list[Any]]:
        return self.dialect.escape_fragment(raw.fragment), [self.dialect.adapt(a) for a in raw.args]

    def _func(self, func: Func) -> tuple[str, list[Any]]:
        if not _FUNC_NAME_RE.match(func.name):
            raise UnsupportedExpressionError(
                f"Invalid function name: {func.name!r}", expression=func.name
            ).with_context(backend=self.name)
        parts: list[str] = []
        params: list[Any] = []
        for arg in func.args:
            sql, p = self._operand(arg)
            parts.append(sql)
            params.extend(p)
        return f"{func.name}({', '.join(parts)})", params

    def _operand(self, operand: Value | Raw | Func) -> tuple[str, list[Any]]:
        match operand:
            case Raw():
                return self._raw(operand)
            case Func():
                return self._func(operand)
            case Value():
                return self.dialect.placeholder(0), [self.dialect.adapt(operand)]
        raise UnsupportedExpressionError(
            f"Unsupported operand: {type(operand).__name__}", expression=repr(operand)
        )

    def _term(self, column: str, cmp: Comparison) -> tuple[str, list[Any]]:
        col = self.dialect.quote_identifier(column)
        op, operand = cmp.operator, cmp.operand

        match op:
            case Operator.IS | Operator.IS_NOT if isinstance(operand, Value) and operand.is_null:
                return f"{col} {op.value} NULL", []
            case Operator.IN | Operator.NOT_IN:
                if not isinstance(operand, Value) or operand.kind is not ValueKind.LIST:
                    raise UnsupportedExpressionError(
                        f"{op.value} needs a list operand", expression=repr(operand)
                    )
                items = operand.data
                if not items:
                    # x IN () is false for every row, x NOT IN () true
                    return ("1 = 0" if op is Operator.IN else "1 = 1"), []
                marks = self.dialect.placeholders(len(items))
                return f"{col} {op.value} ({marks})", [self.dialect.adapt(v) for v in items]

        sql, params = self._operand(operand)
        return f"{col} {op.value} {sql}", params

    # ── Statement rendering ──────────────────────────────────────────────

    @staticmethod
    def _table_name(name: str) -> str:
        """Write target without its alias: ``"people AS p"`` becomes ``"people"``."""
        return name.split()[0]

    def _from(self, target: tuple[str, ...]) -> str:
        return ", ".join(self.dialect.quote_identifier(t) for t in target)

    def render(self, statement: Statement) -> tuple[str, list[Any]]:
        """SQL text and parameters of a statement."""
        q = self.dialect.quote_identifier
        predicate = statement.predicate
        where = f" WHERE {predicate.sql}" if predicate is not None else ""
        where_params = list(predicate.params) if predicate is not None else []
        group = (
            " GROUP BY " + ", ".join(q(c) for c in statement.group_by)
            if statement.group_by
            else ""
        )

        match statement.kind:
            case StatementKind.SELECT:
                cols = ", ".join(q(c) for c in statement.columns) or "*"
                sql = f"SELECT {cols} FROM {self._from(statement.target)}{where}{group}"
                if statement.sort:
                    sql += " ORDER BY " + ", ".join(
                        f"{q(k.column)} {'DESC' if k.descending else 'ASC'}" for k in statement.sort
                    )
                tail = self.dialect.limit_clause(statement.limit, statement.offset)
                if tail:
                    sql += f" {tail}"
                return sql, where_params

            case StatementKind.COUNT:
                if statement.group_by:
                    cols = ", ".join(q(c) for c in statement.group_by)
                    inner = f"SELECT {cols} FROM {self._from(statement.target)}{where}{group}"
                    return f"SELECT COUNT(*) FROM ({inner}) AS strata_count", where_params
                return f"SELECT COUNT(*) FROM {self._from(statement.target)}{where}", where_params

            case StatementKind.INSERT:
                table = self._table_name(statement.collection)
                if statement.payload:
                    cols = ", ".join(q(c) for c, _ in statement.payload)
                    marks = self.dialect.placeholders(len(statement.payload))
                    sql = f"INSERT INTO {q(table)} ({cols}) VALUES ({marks})"
                else:
                    sql = self.dialect.insert_defaults(table)
                if self.dialect.supports_returning and statement.primary_key:
                    sql += f" RETURNING {q(statement.primary_key)}"
                return sql, [self.dialect.adapt(v) for _, v in statement.payload]

            case StatementKind.UPDATE:
                if not statement.payload:
                    raise ValidationError("update needs at least one column", field="changes")
                table = self._table_name(statement.collection)
                sets = ", ".join(
                    f"{q(c)} = {self.dialect.placeholder(i)}"
                    for i, (c, _) in enumerate(statement.payload)
                )
                params = [self.dialect.adapt(v) for _, v in statement.payload]
                return f"UPDATE {q(table)} SET {sets}{where}", params + where_params

            case StatementKind.DELETE:
                table = self._table_name(statement.collection)
                return f"DELETE FROM {q(table)}{where}", where_params

            case StatementKind.TRUNCATE:
                return self.dialect.truncate(self._table_name(statement.collection)), []

        raise ValidationError(f"Unknown statement kind: {statement.kind!r}", field="kind")

    # ── Execution ────────────────────────────────────────────────────────

    def _cursor(self, handle: Any) -> Any:
        return handle.cursor()

    def _run(self, cursor: Any, sql: str, params: list[Any] | tuple[Any, ...]) -> None:
        if params:
            cursor.execute(sql, tuple(params))
            return
        # format-style drivers skip %-interpolation without parameters
        if self.dialect.paramstyle == "format":
            sql = sql.replace("%%", "%")
        cursor.execute(sql)

    def _query(self, handle: Any, sql: str, params: tuple[Any, ...] = ()) -> list[tuple]:
        cursor = self._cursor(handle)
        try:
            self._trace(sql, params)
            self._run(cursor, sql, params)
            return list(cursor.fetchall())
        except self.error_types() as e:
            raise QueryError(f"{self.name} query failed: {e}", cause=e).with_context(
                backend=self.name, sql=sql
            ) from e
        finally:
            cursor.close()

    def execute(self, handle: Any, statement: Statement) -> Any:
        sql, params = self.render(statement)
        self._trace(sql, params, kind=statement.kind.value, collection=statement.collection)

        cursor = self._cursor(handle)
        try:
            self._run(cursor, sql, params)
            if statement.kind is StatementKind.SELECT:
                return SQLCursor(cursor, [d[0] for d in cursor.description or ()])
            try:
                return self._outcome(handle, cursor, statement)
            finally:
                cursor.close()
        except self.error_types() as e:
            cursor.close()
            raise QueryError(
                f"{statement.kind.value} on {statement.collection} failed: {e}",
                cause=e,
            ).with_context(
                backend=self.name,
                collection=statement.collection,
                statement=statement.kind.value,
                sql=sql,
            ) from e

    def _outcome(self, handle: Any, cursor: Any, statement: Statement) -> Any:
        match statement.kind:
            case StatementKind.COUNT:
                row = cursor.fetchone()
                return int(row[0]) if row else 0
            case StatementKind.INSERT:
                if self.dialect.supports_returning and statement.primary_key:
                    row = cursor.fetchone()
                    return row[0] if row else None
                return cursor.lastrowid or None
            case StatementKind.UPDATE | StatementKind.DELETE:
                return max(cursor.rowcount, 0)
            case StatementKind.TRUNCATE:
                self.after_truncate(handle, self._table_name(statement.collection))
                return 0

    def after_truncate(self, handle: Any, table: str) -> None:
        """Hook run after a truncate statement (sequence resets)."""

    def fetch_next(self, cursor: SQLCursor) -> dict[str, Any] | None:
        if cursor.closed:
            return None
        try:
            row = cursor.cursor.fetchone()
        except self.error_types() as e:
            raise QueryError(f"{self.name} fetch failed: {e}", cause=e).with_context(
                backend=self.name
            ) from e
        if row is None:
            return None
        return dict(zip(cursor.columns, row, strict=False))

    def close_cursor(self, cursor: SQLCursor) -> None:
        if not cursor.closed:
            cursor.closed = True
            cursor.cursor.close()

    # ── Transactions ─────────────────────────────────────────────────────

    def _tx(self, handle: Any, sql: str) -> None:
        cursor = self._cursor(handle)
        try:
            self._trace(sql)
            cursor.execute(sql)
        except self.error_types() as e:
            raise TransactionError(f"{sql} failed: {e}", cause=e).with_context(
                backend=self.name, statement=sql.split()[0].lower(), sql=sql
            ) from e
        finally:
            cursor.close()

    def begin(self, handle: Any) -> Any:
        self._tx(handle, self.dialect.begin_sql)
        return handle

    def commit(self, tx: Any) -> None:
        self._tx(tx, "COMMIT")

    def rollback(self, tx: Any) -> None:
        self._tx(tx, "ROLLBACK")

    # ── Catalog ──────────────────────────────────────────────────────────

    def collections(self, handle: Any) -> set[str]:
        return {row[0] for row in self._query(handle, self.dialect.list_tables_query())}

    def collection_exists(self, handle: Any, name: str) -> bool:
        rows = self._query(handle, self.dialect.table_exists_query(), (self._table_name(name),))
        return bool(rows)

    def primary_keys(self, handle: Any, name: str) -> tuple[str, ...]:
        rows = self._query(handle, self.dialect.primary_keys_query(), (self._table_name(name),))
        return tuple(row[0] for row in rows)


__all__ = [
    "SQLAdapter",
    "SQLCursor",
    "SQLFilter",
]
