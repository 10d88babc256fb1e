"""Tests for ``strata.adapters.sqlite`` — SQLite adapter."""

from __future__ import annotations

import sqlite3
from unittest.mock import patch

import pytest

from strata.adapters.base import Statement, StatementKind
from strata.adapters.sqlite import SQLiteAdapter
from strata.adapters.types import ConnectionSettings
from strata.conditions import Cond, Raw
from strata.errors import DatabaseConnectionError, QueryError, TransactionError, ValidationError
from strata.values import Value
from tests._support import PEOPLE_DDL


@pytest.fixture
def adapter() -> SQLiteAdapter:
    return SQLiteAdapter()


@pytest.fixture
def conn(adapter):
    handle = adapter.connect(ConnectionSettings())
    handle.execute(PEOPLE_DDL)
    yield handle
    adapter.close(handle)


def insert(adapter, conn, **fields):
    payload = tuple((k, Value.of(v)) for k, v in fields.items())
    return adapter.execute(conn, Statement(kind=StatementKind.INSERT, target=("people",), payload=payload))


def select(adapter, conn, condition=None, **kwargs):
    st = Statement(
        kind=StatementKind.SELECT,
        target=("people",),
        predicate=adapter.build_filter(condition),
        **kwargs,
    )
    cursor = adapter.execute(conn, st)
    rows = []
    while (row := adapter.fetch_next(cursor)) is not None:
        rows.append(row)
    adapter.close_cursor(cursor)
    return rows


class TestSQLiteAdapterConnect:
    def test_connect_memory(self, adapter):
        handle = adapter.connect(ConnectionSettings())
        assert isinstance(handle, sqlite3.Connection)
        adapter.close(handle)

    def test_connect_enables_foreign_keys(self, adapter, conn):
        assert conn.execute("PRAGMA foreign_keys").fetchone()[0] == 1

    def test_autocommit(self, conn):
        assert conn.isolation_level is None

    def test_readonly(self, adapter, tmp_path):
        path = str(tmp_path / "ro.db")
        sqlite3.connect(path).close()
        handle = adapter.connect(ConnectionSettings(database=path, options={"readonly": "true"}))
        with pytest.raises(sqlite3.OperationalError):
            handle.execute("CREATE TABLE t (x)")
        adapter.close(handle)

    def test_bad_timeout_option(self, adapter):
        with pytest.raises(ValidationError) as exc:
            adapter.connect(ConnectionSettings(options={"timeout": "soon"}))
        assert exc.value.field == "options"

    @patch("sqlite3.connect", side_effect=sqlite3.OperationalError("unable to open database"))
    def test_connect_failure_raises(self, mock_connect, adapter):
        with pytest.raises(DatabaseConnectionError) as exc:
            adapter.connect(ConnectionSettings(database="/nonexistent/path.db"))
        assert exc.value.context.database == "/nonexistent/path.db"


class TestSQLiteAdapterStatements:
    def test_insert_returns_rowid(self, adapter, conn):
        assert insert(adapter, conn, name="A", age=30) == 1
        assert insert(adapter, conn, name="B", age=25) == 2

    def test_select_rows_are_dicts(self, adapter, conn):
        insert(adapter, conn, name="A", age=30)
        assert select(adapter, conn) == [{"id": 1, "name": "A", "age": 30, "email": None}]

    def test_select_filtered(self, adapter, conn):
        insert(adapter, conn, name="A", age=30)
        insert(adapter, conn, name="B", age=25)
        assert [r["name"] for r in select(adapter, conn, Cond({"age <": 28}))] == ["B"]

    def test_raw_filter(self, adapter, conn):
        insert(adapter, conn, name="A", age=30)
        assert len(select(adapter, conn, Raw("age * 2 = ?", 60))) == 1

    def test_count_update_delete(self, adapter, conn):
        insert(adapter, conn, name="A", age=30)
        insert(adapter, conn, name="B", age=25)
        predicate = adapter.build_filter(Cond(name="A"))

        count = Statement(kind=StatementKind.COUNT, target=("people",))
        assert adapter.execute(conn, count) == 2

        update = Statement(
            kind=StatementKind.UPDATE, target=("people",), predicate=predicate, payload=(("age", Value.of(99)),)
        )
        assert adapter.execute(conn, update) == 1

        delete = Statement(kind=StatementKind.DELETE, target=("people",), predicate=predicate)
        assert adapter.execute(conn, delete) == 1
        assert adapter.execute(conn, count) == 1

    def test_truncate_resets_sequence(self, adapter, conn):
        insert(adapter, conn, name="A")
        insert(adapter, conn, name="B")
        assert adapter.execute(conn, Statement(kind=StatementKind.TRUNCATE, target=("people",))) == 0
        assert select(adapter, conn) == []
        assert insert(adapter, conn, name="C") == 1

    def test_driver_error_becomes_query_error(self, adapter, conn):
        st = Statement(kind=StatementKind.SELECT, target=("missing",))
        with pytest.raises(QueryError) as exc:
            adapter.execute(conn, st)
        assert exc.value.context.sql == 'SELECT * FROM "missing"'
        assert exc.value.context.collection == "missing"
        assert isinstance(exc.value.cause, sqlite3.Error)

    def test_constraint_violation(self, adapter, conn):
        with pytest.raises(QueryError):
            insert(adapter, conn, age=1)

    def test_fetch_after_close_cursor(self, adapter, conn):
        insert(adapter, conn, name="A")
        cursor = adapter.execute(conn, Statement(kind=StatementKind.SELECT, target=("people",)))
        adapter.close_cursor(cursor)
        adapter.close_cursor(cursor)
        assert adapter.fetch_next(cursor) is None


class TestSQLiteAdapterTransaction:
    def test_rollback(self, adapter, conn):
        tx = adapter.begin(conn)
        insert(adapter, tx, name="A")
        adapter.rollback(tx)
        assert select(adapter, conn) == []

    def test_commit(self, adapter, conn):
        tx = adapter.begin(conn)
        insert(adapter, tx, name="A")
        adapter.commit(tx)
        assert len(select(adapter, conn)) == 1

    def test_commit_without_begin(self, adapter, conn):
        with pytest.raises(TransactionError):
            adapter.commit(conn)


class TestSQLiteAdapterCatalog:
    def test_collections(self, adapter, conn):
        insert(adapter, conn, name="A")
        assert adapter.collections(conn) == {"people"}

    def test_collection_exists(self, adapter, conn):
        assert adapter.collection_exists(conn, "people")
        assert adapter.collection_exists(conn, "people AS p")
        assert not adapter.collection_exists(conn, "ghosts")

    def test_primary_keys(self, adapter, conn):
        assert adapter.primary_keys(conn, "people") == ("id",)
        conn.execute("CREATE TABLE pairs (a INTEGER, b INTEGER, PRIMARY KEY (a, b))")
        assert adapter.primary_keys(conn, "pairs") == ("a", "b")
