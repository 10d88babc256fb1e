"""Tests for ``strata.resultset`` — state machine, modifiers, reads and writes."""

from __future__ import annotations

import pytest

from strata import Cond, CursorState, connect
from strata.errors import (
    CursorClosedError,
    NoMoreRowsError,
    QueryError,
    UnsupportedFeatureError,
    ValidationError,
)
from strata.resultset import QueryOptions
from tests._support import Person, names


class TestQueryOptions:
    @pytest.mark.parametrize("field", ["offset", "limit", "page_size"])
    def test_negative(self, field):
        with pytest.raises(ValidationError):
            QueryOptions(**{field: -1})

    def test_not_integer(self):
        with pytest.raises(ValidationError):
            QueryOptions(limit=1.5)


class TestStateMachine:
    def test_built_until_first_fetch(self, people):
        rs = people.find()
        assert rs.state is CursorState.BUILT
        rs.next()
        assert rs.state is CursorState.OPEN

    def test_close(self, people):
        rs = people.find()
        rs.next()
        rs.close()
        assert rs.state is CursorState.CLOSED
        assert rs.closed

    def test_close_twice(self, people):
        rs = people.find()
        rs.close()
        rs.close()

    @pytest.mark.parametrize(
        "read",
        [
            lambda rs: rs.next(),
            lambda rs: rs.one(),
            lambda rs: rs.all(),
            lambda rs: rs.count(),
            lambda rs: rs.exists(),
            lambda rs: rs.update({"age": 1}),
            lambda rs: rs.remove(),
        ],
    )
    def test_use_after_close(self, people, read):
        rs = people.find()
        rs.close()
        with pytest.raises(CursorClosedError):
            read(rs)

    def test_backend_error_reverts_to_built(self):
        with connect("sqlite://") as session:
            rs = session.collection("ghosts").find()
            with pytest.raises(QueryError):
                rs.next()
            assert rs.state is CursorState.BUILT

    def test_context_manager(self, people):
        with people.find() as rs:
            rs.next()
        assert rs.closed

    def test_one_and_all_auto_close(self, people):
        rs = people.find()
        rs.one()
        assert rs.closed
        rs = people.find()
        rs.all()
        assert rs.closed


class TestModifiers:
    def test_return_new_built_sets(self, people):
        base = people.find()
        sorted_rs = base.sort("-age")
        assert sorted_rs is not base
        assert base.options.sort == ()
        assert sorted_rs.state is CursorState.BUILT

    def test_independent_chains(self, people):
        base = people.find()
        assert names(base.sort("-age").all()) == ["C", "A", "B"]
        assert names(base.sort("age").limit(1).all()) == ["B"]

    def test_modifier_after_fetch_leaves_cursor_alone(self, people):
        rs = people.find().sort("age")
        assert rs.next()["name"] == "B"
        other = rs.limit(1).sort("-age")
        assert rs.next()["name"] == "A"
        assert names(other.all()) == ["C"]
        assert rs.next()["name"] == "C"

    def test_skip_and_limit(self, people):
        assert names(people.find().sort("age").skip(1).limit(1)) == ["A"]
        assert names(people.find().sort("age").skip(2)) == ["C"]

    @pytest.mark.parametrize("key", ["-age", "age desc", "age DESC"])
    def test_descending_forms(self, people, key):
        assert names(people.find().sort(key).all()) == ["C", "A", "B"]

    def test_multi_key_sort(self, people):
        people.append({"name": "D", "age": 30})
        assert names(people.find().sort("-age", "+name").all()) == ["C", "A", "D", "B"]
        assert names(people.find().sort(["age", "-name"]).all()) == ["B", "D", "A", "C"]

    def test_select(self, people):
        assert people.find(name="A").select("name", "age").one() == {"name": "A", "age": 30}

    @pytest.mark.parametrize("column", ["name AS n", "name as n", "name n"])
    def test_select_alias(self, people, column):
        assert people.find(name="A").select(column, "age").one() == {"n": "A", "age": 30}

    def test_where_replaces(self, people):
        assert names(people.find(name="A").where(Cond(name="B"))) == ["B"]

    def test_and_adds(self, people):
        rs = people.find({"age >": 20}).and_({"age <": 35}).sort("age")
        assert names(rs) == ["B", "A"]

    def test_where_nothing_clears(self, people):
        assert people.find(name="A").where().count() == 3

    def test_group(self, people, backend):
        people.append({"name": "D", "age": 30})
        rs = people.find().select("age").group("age").sort("age")
        if backend == "memory":
            with pytest.raises(UnsupportedFeatureError):
                rs.all()
        else:
            assert rs.all() == [{"age": 25}, {"age": 30}, {"age": 40}]


class TestReads:
    def test_next_until_no_more_rows(self, people):
        rs = people.find().sort("age")
        assert [rs.next()["name"] for _ in range(3)] == ["B", "A", "C"]
        with pytest.raises(NoMoreRowsError):
            rs.next()
        with pytest.raises(NoMoreRowsError):
            rs.next()

    def test_next_into_record(self, people):
        p = Person()
        people.find(name="C").next(p)
        assert (p.name, p.age) == ("C", 40)

    def test_one_into_type(self, people):
        p = people.find(name="A").one(Person)
        assert isinstance(p, Person)
        assert p.id is not None

    def test_one_nothing_matches(self, people):
        with pytest.raises(NoMoreRowsError):
            people.find(name="Z").one()

    def test_all_into_list(self, people):
        out: list = []
        people.find().sort("name").all(out, item=Person)
        assert names(out) == ["A", "B", "C"]
        assert all(isinstance(p, Person) for p in out)

    def test_all_element_type(self, people):
        assert names(people.find().sort("name").all(Person)) == ["A", "B", "C"]

    def test_all_after_partial_iteration(self, people):
        rs = people.find().sort("age")
        rs.next()
        assert names(rs.all()) == ["A", "C"]

    def test_count_ignores_skip_limit_sort(self, people):
        rs = people.find({"age >": 20})
        assert rs.count() == 3
        assert rs.skip(10).limit(8).sort("-age").count() == 3
        assert rs.skip(1).limit(1).count() == 3

    def test_exists(self, people):
        assert people.find(name="A").exists()
        assert not people.find(name="Z").exists()

    def test_pagination(self, people):
        people.append({"name": "D", "age": 50})
        people.append({"name": "E", "age": 60})
        rs = people.find().sort("age").paginate(2)
        assert rs.total_pages() == 3
        assert names(rs.page(1)) == ["B", "A"]
        assert names(rs.page(3)) == ["E"]
        assert names(rs.page(4)) == []

    def test_page_requires_paginate(self, people):
        with pytest.raises(ValidationError):
            people.find().page(1)
        with pytest.raises(ValidationError):
            people.find().total_pages()

    @pytest.mark.parametrize("bad", [0, -1, True])
    def test_bad_page_arguments(self, people, bad):
        with pytest.raises(ValidationError):
            people.find().paginate(bad)
        with pytest.raises(ValidationError):
            people.find().paginate(2).page(bad)


class TestWrites:
    def test_update_mapping(self, people):
        assert people.find({"age <": 35}).update({"age": 0}) == 2
        assert people.find(age=0).count() == 2

    def test_update_record_skips_empty_and_key(self, people):
        assert people.find(name="A").update(Person(name="A", age=55, id=999)) == 1
        row = people.find(name="A").one()
        assert row["age"] == 55
        assert row["id"] != 999

    def test_update_nothing(self, people):
        with pytest.raises(ValidationError):
            people.find().update({})

    def test_update_bad_type(self, people):
        with pytest.raises(ValidationError):
            people.find().update(["age"])

    def test_remove(self, people):
        assert people.find(name=["A", "B"]).remove() == 2
        assert names(people.find()) == ["C"]

    def test_remove_nothing(self, people):
        assert people.find(name="Z").remove() == 0
