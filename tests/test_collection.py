"""Tests for ``strata.collection`` on every local backend."""

from __future__ import annotations

import pytest

from strata import Cond, ResultSet, connect, open_session
from strata.adapters.base import Capability
from strata.adapters.memory import MemoryAdapter
from strata.errors import QueryError, UnsupportedFeatureError, ValidationError
from tests._support import FrozenPerson, Person, names


class ManualKeysAdapter(MemoryAdapter):
    capabilities = MemoryAdapter.capabilities - {Capability.AUTO_KEYS}


class TestCollectionHandle:
    def test_names(self, session):
        people = session.collection("people")
        assert people.name == "people"
        assert people.names == ("people",)
        assert not people.is_joined
        assert people.session is session

    def test_cached_per_name(self, session):
        assert session.collection("people") is session.collection("people")

    def test_empty_name(self, session):
        with pytest.raises(ValidationError):
            session.collection("")

    def test_no_names(self, session):
        with pytest.raises(ValidationError):
            session.collection()


class TestAppend:
    def test_mapping_returns_generated_key(self, session):
        people = session.collection("people")
        assert people.append({"name": "A", "age": 30}) == 1
        assert people.append({"name": "B", "age": 25}) == 2

    def test_mapping_gets_key_written_back(self, session):
        row = {"name": "A"}
        session.collection("people").append(row)
        assert row["id"] == 1

    def test_record_gets_key_written_back(self, session):
        p = Person(name="A", age=30)
        key = session.collection("people").append(p)
        assert p.id == key == 1

    def test_zero_key_is_dropped(self, session):
        people = session.collection("people")
        assert people.append({"id": 0, "name": "A"}) == 1

    def test_explicit_key_returned(self, session):
        people = session.collection("people")
        assert people.append(Person(name="A", id=42)) == 42
        assert people.find(id=42).one()["name"] == "A"

    def test_frozen_record_not_written_back(self, session):
        fp = FrozenPerson(name="A")
        assert session.collection("people").append(fp) == 1
        assert fp.id is None

    def test_insert_alias(self, session):
        assert session.collection("people").insert({"name": "A"}) == 1

    def test_omitempty_fields_not_sent(self, session):
        people = session.collection("people")
        people.append(Person(name="A", age=30))
        assert people.find(name="A").one()["email"] is None

    def test_unsupported_record(self, session):
        with pytest.raises(ValidationError):
            session.collection("people").append(42)

    def test_zero_key_kept_without_generated_keys(self):
        with open_session(ManualKeysAdapter()) as session:
            people = session.collection("people")
            assert people.append({"id": 0, "name": "A"}) == 0
            assert people.find(id=0).one()["name"] == "A"


class TestFind:
    def test_lazy(self, people):
        rs = people.find(Cond(name="A"))
        assert isinstance(rs, ResultSet)
        assert rs.state.value == "built"

    def test_keyword_shorthand(self, people):
        assert names(people.find(name="B")) == ["B"]

    def test_conditions_are_anded(self, people):
        assert names(people.find({"age >": 20}, Cond({"age <": 28}))) == ["B"]

    def test_no_conditions(self, people):
        assert people.find().count() == 3

    def test_no_row_caching(self, session, people):
        rs = people.find(name="A")
        people.find(name="A").update({"age": 31})
        assert rs.one()["age"] == 31


class TestTruncate:
    def test_removes_rows_and_resets_keys(self, people):
        people.truncate()
        assert people.find().count() == 0
        assert people.append({"name": "D"}) == 1


class TestExists:
    def test_sqlite(self):
        with connect("sqlite://") as session:
            assert not session.collection("people").exists()
            session.driver().execute("CREATE TABLE people (id INTEGER PRIMARY KEY)")
            assert session.collection("people").exists()

    def test_memory_created_on_insert(self):
        with connect("memory://") as session:
            people = session.collection("people")
            assert not people.exists()
            people.append({"name": "A"})
            assert people.exists()


class TestJoinedCollections:
    @pytest.fixture
    def joined(self):
        with connect("sqlite://") as session:
            db = session.driver()
            db.execute("CREATE TABLE people (id INTEGER PRIMARY KEY, name TEXT)")
            db.execute("CREATE TABLE orders (id INTEGER PRIMARY KEY, person_id INTEGER, total INTEGER)")
            db.execute("INSERT INTO people (id, name) VALUES (1, 'A'), (2, 'B')")
            db.execute("INSERT INTO orders (person_id, total) VALUES (1, 10), (1, 20), (2, 5)")
            yield session.collection("people p", "orders o")

    def test_is_joined(self, joined):
        assert joined.is_joined
        assert joined.name == "people p"

    def test_reads_span_every_name(self, joined):
        from strata import Raw

        rs = joined.find(Raw("p.id = o.person_id"), {"o.total >": 6}).select("p.name", "o.total").sort("o.total")
        assert rs.all() == [{"name": "A", "total": 10}, {"name": "A", "total": 20}]

    def test_writes_rejected(self, joined):
        with pytest.raises(UnsupportedFeatureError):
            joined.find().update({"name": "X"})
        with pytest.raises(UnsupportedFeatureError):
            joined.find().remove()

    def test_memory_rejects_joins(self):
        with connect("memory://") as session:
            with pytest.raises(UnsupportedFeatureError):
                session.collection("people", "orders")


class TestErrors:
    def test_backend_error_carries_context(self, session):
        if session.adapter.supports(Capability.SCHEMALESS):
            pytest.skip("schemaless backend accepts any column")
        with pytest.raises(QueryError) as exc:
            session.collection("people").append({"nope": 1})
        assert exc.value.context.collection == "people"
        assert exc.value.context.statement == "insert"
        assert exc.value.context.backend == "sqlite"
