"""Tests for ``strata.mapping`` — descriptors, coercion and populate."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Optional

import pytest
from pydantic import BaseModel, ConfigDict, Field

from strata.errors import MappingConflictError, MappingError
from strata.mapping import (
    FieldSpec,
    Tag,
    column,
    describe,
    format_tag,
    parse_tag,
    populate,
    populate_all,
    zero_value,
)
from strata.values import Value
from tests._support import Address, Customer, FrozenPerson, Person


# =========================================================================
# Tags
# =========================================================================


class TestTags:
    def test_name_and_options(self):
        assert parse_tag("email,omitempty") == Tag(name="email", omitempty=True)

    def test_empty_name_keeps_field_name(self):
        assert parse_tag(",omitempty,pk") == Tag(omitempty=True, primary_key=True)

    def test_exclude(self):
        assert parse_tag("-").exclude

    def test_unknown_option(self):
        with pytest.raises(MappingError):
            parse_tag("x,sparse")

    def test_format_round_trip(self):
        tag = Tag(name="addr", inline=True, omitempty=True)
        assert parse_tag(format_tag(tag)) == tag

    def test_column_helper_writes_metadata(self):
        @dataclass
        class T:
            a: int = column("alpha", default=0, omitempty=True)

        assert describe(T).fields[0].column == "alpha"
        assert describe(T).fields[0].omitempty


# =========================================================================
# describe()
# =========================================================================


class TestDescribe:
    def test_columns_in_declaration_order(self):
        assert describe(Person).columns == ["name", "age", "email", "id"]

    def test_idempotent(self):
        first = describe(Person)
        second = describe(Person)
        assert first is second
        assert first == second

    def test_explicit_primary_key(self):
        @dataclass
        class Keyed:
            key: int = column("pk_col", default=0, primary_key=True)
            id: int = 0

        assert describe(Keyed).primary_key.column == "pk_col"

    def test_id_is_implicit_primary_key(self):
        @dataclass
        class Plain:
            id: int = 0
            name: str = ""

        assert describe(Plain).primary_key.attr == "id"

    def test_two_primary_keys(self):
        @dataclass
        class Two:
            a: int = column(default=0, primary_key=True)
            b: int = column(default=0, primary_key=True)

        with pytest.raises(MappingError):
            describe(Two)

    def test_conflict(self):
        @dataclass
        class Clash:
            user_name: str = ""
            username: str = ""

        with pytest.raises(MappingConflictError) as exc:
            describe(Clash)
        assert exc.value.fields == ("user_name", "username")

    def test_inline_conflict_with_parent(self):
        @dataclass
        class Shadow:
            city: str = ""
            address: Address = column(default_factory=Address, inline=True)

        with pytest.raises(MappingConflictError):
            describe(Shadow)

    def test_inline_flattens(self):
        d = describe(Customer)
        assert d.columns == ["name", "street", "city", "tags"]
        assert d.lookup("city").path == ("address", "city")

    def test_inline_target_must_be_record(self):
        @dataclass
        class Bad:
            x: int = column(default=0, inline=True)

        with pytest.raises(MappingError):
            describe(Bad)

    def test_excluded_and_private_fields_skipped(self):
        @dataclass
        class Hidden:
            a: int = 0
            b: int = column(default=0, exclude=True)
            _c: int = 0

        assert describe(Hidden).columns == ["a"]

    def test_not_a_record(self):
        with pytest.raises(MappingError):
            describe(int)

    def test_lookup_ignores_case_and_underscores(self):
        @dataclass
        class Snake:
            first_name: str = ""

        assert describe(Snake).lookup("FirstName").attr == "first_name"


class TestDescribable:
    def test_custom_fields(self):
        class Point:
            def __init__(self, x=0, y=0):
                self.x = x
                self.y = y

            @classmethod
            def __strata_fields__(cls):
                return [FieldSpec("x", type=int, has_default=True), FieldSpec("y", "pos_y", type=int, has_default=True)]

        d = describe(Point)
        assert d.columns == ["x", "pos_y"]
        p = d.build({"x": "1", "pos_y": 2})
        assert (p.x, p.y) == (1, 2)


class TestPydantic:
    def test_model_fields(self):
        class Account(BaseModel):
            id: int | None = Field(default=None, json_schema_extra={"db": ",pk,omitempty"})
            owner: str = Field(default="", json_schema_extra={"db": "owner_name"})

        d = describe(Account)
        assert d.columns == ["id", "owner_name"]
        assert d.primary_key.attr == "id"
        acct = d.build({"owner_name": "A", "id": 4})
        assert acct == Account(id=4, owner="A")

    def test_frozen_model_cannot_be_populated(self):
        class Frozen(BaseModel):
            model_config = ConfigDict(frozen=True)
            name: str = ""

        with pytest.raises(MappingError):
            populate(Frozen(name="x"), {"name": "y"})


# =========================================================================
# extract() / build() / populate()
# =========================================================================


class TestExtract:
    def test_omitempty_skipped_on_write(self):
        pairs = describe(Person).extract(Person(name="A", age=30))
        assert [c for c, _ in pairs] == ["name", "age"]

    def test_read_path_keeps_everything(self):
        pairs = describe(Person).extract(Person(name="A"), omit_empty=False)
        assert [c for c, _ in pairs] == ["name", "age", "email", "id"]

    def test_values_are_tagged(self):
        pairs = dict(describe(Person).extract(Person(name="A", age=30)))
        assert pairs["age"] == Value.of(30)

    def test_wrong_type(self):
        with pytest.raises(MappingError):
            describe(Person).extract(Address())

    def test_inline_values(self):
        c = Customer(name="N", address=Address("S", "C"))
        assert dict(describe(Customer).extract(c))["city"] == Value.of("C")


class TestRoundTrip:
    @pytest.mark.parametrize(
        "record",
        [
            Person(name="A", age=30, email="a@x", id=1),
            Person(name="", age=0, email="e", id=9),
            Customer(name="N", address=Address("S", "C"), tags=["x", "y"]),
        ],
    )
    def test_extract_then_populate(self, record):
        d = describe(type(record))
        row = {c: v.to_python() for c, v in d.extract(record)}
        target = type(record)()
        d.populate(target, row)
        assert target == record

    def test_build_from_extract(self):
        p = Person(name="A", age=30, email="a@x", id=1)
        row = {c: v.to_python() for c, v in describe(Person).extract(p)}
        assert describe(Person).build(row) == p


class TestBuild:
    def test_missing_required_fields_get_zero(self):
        @dataclass
        class Required:
            name: str
            age: int
            nick: Optional[str]

        assert describe(Required).build({}) == Required("", 0, None)

    def test_unknown_columns_ignored(self):
        assert describe(Person).build({"name": "A", "other": 1}).name == "A"

    def test_init_false_fields(self):
        @dataclass
        class Late:
            name: str = ""
            score: int = field(default=0, init=False)

        assert describe(Late).build({"name": "A", "score": "5"}).score == 5

    def test_frozen_record(self):
        assert describe(FrozenPerson).build({"name": "A", "id": 1}) == FrozenPerson(name="A", id=1)

    def test_frozen_populate_fails(self):
        with pytest.raises(MappingError):
            describe(FrozenPerson).populate(FrozenPerson(), {"name": "A"})

    def test_bad_value(self):
        with pytest.raises(MappingError):
            describe(Person).build({"age": "not a number"})


class TestCoercion:
    def test_int_to_bool(self):
        @dataclass
        class Flag:
            on: bool = False

        assert describe(Flag).build({"on": 1}).on is True

    def test_iso_text_to_datetime(self):
        @dataclass
        class Stamp:
            at: datetime | None = None
            day: date | None = None

        s = describe(Stamp).build({"at": "2024-01-02T03:04:05Z", "day": "2024-01-02"})
        assert s.at == datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
        assert s.day == date(2024, 1, 2)

    def test_numbers_to_decimal_and_float(self):
        @dataclass
        class Money:
            amount: Decimal = Decimal(0)
            rate: float = 0.0

        m = describe(Money).build({"amount": "1.10", "rate": 2})
        assert m.amount == Decimal("1.10")
        assert isinstance(m.rate, float)

    def test_json_text_to_containers(self):
        c = describe(Customer).build({"name": "N", "tags": '["a", "b"]'})
        assert c.tags == ["a", "b"]

    def test_json_text_to_nested_record(self):
        @dataclass
        class Order:
            ship_to: Address | None = None

        o = describe(Order).build({"ship_to": '{"street": "S", "city": "C"}'})
        assert o.ship_to == Address("S", "C")

    def test_zero_values(self):
        assert zero_value(int) == 0
        assert zero_value(str) == ""
        assert zero_value(Optional[int]) is None
        assert zero_value(list[int]) == []
        assert zero_value(Address) == Address()


# =========================================================================
# populate() / populate_all()
# =========================================================================


class TestPopulate:
    ROW = {"name": "A", "age": 30, "email": None, "id": 1}

    def test_dict_type(self):
        assert populate(dict, self.ROW) == self.ROW

    def test_none_means_dict(self):
        assert populate(None, self.ROW) == self.ROW

    def test_record_type(self):
        assert populate(Person, self.ROW) == Person(name="A", age=30, id=1)

    def test_record_instance_in_place(self):
        p = Person()
        assert populate(p, self.ROW) is p
        assert p.age == 30

    def test_mutable_mapping_in_place(self):
        target = {"extra": True}
        populate(target, self.ROW)
        assert target["extra"] and target["name"] == "A"

    def test_list_rejected(self):
        with pytest.raises(MappingError):
            populate([], self.ROW)

    def test_all_into_list(self):
        out: list = []
        populate_all(out, [self.ROW, self.ROW], item=Person)
        assert len(out) == 2 and isinstance(out[0], Person)

    def test_all_with_element_type(self):
        assert populate_all(Person, [self.ROW])[0].name == "A"

    def test_all_default_dicts(self):
        assert populate_all(list, [self.ROW]) == [self.ROW]

    def test_all_bad_destination(self):
        with pytest.raises(MappingError):
            populate_all({}, [self.ROW])
