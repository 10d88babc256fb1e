"""
Test support utilities for strata tests.

Record types, seed data and helpers shared by test modules that do not fit
as pytest fixtures.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable

from strata import Session, column, connect

PEOPLE_DDL = (
    "CREATE TABLE people ("
    "id INTEGER PRIMARY KEY AUTOINCREMENT, "
    "name TEXT NOT NULL, "
    "age INTEGER, "
    "email TEXT)"
)

SEED: list[dict[str, Any]] = [
    {"name": "A", "age": 30},
    {"name": "B", "age": 25},
    {"name": "C", "age": 40},
]

BACKENDS = ("sqlite", "memory")


@dataclass
class Person:
    name: str = ""
    age: int = 0
    email: str | None = column(default=None, omitempty=True)
    id: int | None = column(default=None, primary_key=True, omitempty=True)


@dataclass(frozen=True)
class FrozenPerson:
    name: str = ""
    age: int = 0
    id: int | None = column(default=None, primary_key=True, omitempty=True)


@dataclass
class Address:
    street: str = ""
    city: str = ""


@dataclass
class Customer:
    name: str = ""
    address: Address = column(default_factory=Address, inline=True)
    tags: list[str] = field(default_factory=list)


def open_backend(backend: str) -> Session:
    """Open a session with an empty ``people`` collection ready for inserts."""
    if backend == "sqlite":
        session = connect("sqlite://")
        session.driver().execute(PEOPLE_DDL)
        return session
    return connect("memory://")


def names(rows: Iterable[Any]) -> list[str]:
    """``name`` of each row, dict or record, in order."""
    return [row["name"] if isinstance(row, dict) else row.name for row in rows]
