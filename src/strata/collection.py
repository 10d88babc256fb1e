"""Collections: tables and document collections behind one handle."""

from __future__ import annotations

from collections.abc import Mapping, MutableMapping
from typing import TYPE_CHECKING, Any

from strata.adapters.base import Capability, Statement, StatementKind
from strata.conditions import Cond, Condition, conjoin
from strata.errors import ValidationError
from strata.mapping import describe, is_frozen, is_record_type
from strata.resultset import QueryOptions, ResultSet
from strata.values import Value

if TYPE_CHECKING:
    from strata.session import Session


class Collection:
    """
    A named table or document collection.

    More than one name composes a joined virtual collection: reads span
    every name, writes go to the first. A collection holds no row data;
    every call goes to the backend.
    """

    def __init__(self, session: Session, names: tuple[str, ...]):
        if not names:
            raise ValidationError("a collection needs at least one name", field="names")
        for name in names:
            if not isinstance(name, str) or not name.strip():
                raise ValidationError("collection names must be non-empty strings", field="names", value=name)
        self._session = session
        self._names = tuple(names)

    @property
    def session(self) -> Session:
        return self._session

    @property
    def name(self) -> str:
        """Write target: the first name."""
        return self._names[0]

    @property
    def names(self) -> tuple[str, ...]:
        return self._names

    @property
    def is_joined(self) -> bool:
        return len(self._names) > 1

    def __repr__(self) -> str:
        return f"Collection({', '.join(repr(n) for n in self._names)})"

    # ── Writes ───────────────────────────────────────────────────────────

    def append(self, record: Any) -> Any:
        """
        Insert one record (mapping or record instance) and return its key.

        On backends that generate keys, a zero-valued primary key is left out
        and the generated key is written back into a mutable record. An
        explicitly supplied key is returned as-is.
        """
        descriptor = None
        if isinstance(record, Mapping):
            key_column = self._session._primary_key(self.name)
            payload = [(str(k), Value.of(v)) for k, v in record.items()]
        elif is_record_type(type(record)):
            descriptor = describe(type(record))
            key_column = self._session._primary_key(self.name, descriptor)
            payload = descriptor.extract(record, omit_empty=True)
        else:
            raise ValidationError(
                f"Cannot insert a {type(record).__name__}; expected a mapping or a record",
                field="record",
                value=record,
            )

        explicit: Value | None = None
        if key_column is not None:
            generates = self._session.adapter.supports(Capability.AUTO_KEYS)
            kept = []
            for column, value in payload:
                if column == key_column:
                    if value.is_zero and generates:
                        continue
                    explicit = value
                kept.append((column, value))
            payload = kept

        statement = Statement(
            kind=StatementKind.INSERT,
            target=(self.name,),
            payload=tuple(payload),
            primary_key=key_column,
        )
        key = self._session._execute(statement)

        if explicit is not None:
            return explicit.to_python()
        if key is not None and key_column is not None:
            self._write_back(record, descriptor, key_column, key)
        return key

    insert = append

    @staticmethod
    def _write_back(record: Any, descriptor: Any, key_column: str, key: Any) -> None:
        if descriptor is None:
            if isinstance(record, MutableMapping):
                record[key_column] = key
            return
        binding = descriptor.lookup(key_column)
        if binding is not None and not is_frozen(type(record)):
            descriptor.assign(record, binding, key)

    def truncate(self) -> None:
        """
        Remove every row. Whether key sequences restart is declared by the
        adapter's ``TRUNCATE_RESETS_SEQUENCE`` capability.
        """
        self._session._execute(Statement(kind=StatementKind.TRUNCATE, target=(self.name,)))

    # ── Reads ────────────────────────────────────────────────────────────

    def find(self, *conditions: Condition | Mapping[str, Any], **fields: Any) -> ResultSet:
        """Lazy result set; keyword arguments are shorthand for ``Cond(**fields)``."""
        parts: list[Any] = list(conditions)
        if fields:
            parts.append(Cond(**fields))
        return ResultSet(self, QueryOptions(condition=conjoin(parts)))

    def exists(self) -> bool:
        return all(self._session._collection_exists(name) for name in self._names)


__all__ = [
    "Collection",
]
