"""Record-to-row field mapping.

Translates between record types (dataclasses, pydantic models, or any class
exposing ``__strata_fields__``) and the flat column/value rows backends read
and write. A :class:`Descriptor` is derived once per type, cached
process-wide, and never mutated afterwards.

Manifesto:
    Row mapping must be boring and predictable. Bindings are declared next to
    the field, conflicts are caught when the type is first described rather
    than when a row silently lands in the wrong attribute, and reads never
    drop a column a write would have sent.

Architecture:
    ::

        @dataclass                         describe(Person)
        class Person:                            │
            name: str = ""            ┌──────────▼──────────┐
            email: str | None = column(│ Descriptor           │
                default=None,          │  name  → ("name",)   │
                omitempty=True)        │  email → ("email",)  │
            id: int | None = column(   │  id    → ("id",) pk  │
                default=None,          └──────────┬──────────┘
                primary_key=True)         extract │ build / populate
                                                  ▼
                                     [("name", Value), ...]  ⇄  {"name": ...}

Features:
    - ``column()`` helper or raw ``metadata={"db": "name,omitempty"}`` tags
    - Options: ``omitempty``, ``inline``, ``pk``, ``-`` (exclude)
    - Case- and underscore-insensitive column resolution
    - Inlined records merged into the parent namespace, collisions rejected
    - Type coercion on the way in (bool, Decimal, datetime, JSON containers)
    - ``populate`` / ``populate_all`` polymorphic over destination shape

Examples:
    >>> @dataclass
    ... class Point:
    ...     x: int = 0
    ...     y: int = column("pos_y", default=0)
    >>> describe(Point).extract(Point(1, 2))
    [('x', Value(integer, 1)), ('pos_y', Value(integer, 2))]
    >>> describe(Point).build({"X": 3, "POS_Y": "4"})
    Point(x=3, y=4)

Tags:
    mapping, descriptor, dataclass, pydantic, row-mapping, strata

Doc-Types:
    - API Reference
"""

from __future__ import annotations

import dataclasses
import json
import threading
import types
import typing
from collections.abc import Iterable, Mapping, MutableMapping
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Protocol, Union, runtime_checkable

from pydantic import BaseModel

from strata.errors import MappingConflictError, MappingError
from strata.values import Value

TAG_KEY = "db"

_OPTION_NAMES = {
    "omitempty": "omitempty",
    "inline": "inline",
    "pk": "primary_key",
    "primary_key": "primary_key",
}


# ── Declarations ─────────────────────────────────────────────────────────


@dataclass(frozen=True)
class Tag:
    """Parsed binding tag."""

    name: str | None = None
    omitempty: bool = False
    inline: bool = False
    exclude: bool = False
    primary_key: bool = False


def parse_tag(tag: str | None) -> Tag:
    """
    Parse a binding tag such as ``"email,omitempty"`` or ``"-"``.

    An empty name keeps the field name as the column (``",omitempty"``).
    """
    if tag is None:
        return Tag()
    tag = tag.strip()
    if tag == "-":
        return Tag(exclude=True)

    name, *options = (part.strip() for part in tag.split(","))
    flags: dict[str, bool] = {}
    for option in options:
        if not option:
            continue
        key = _OPTION_NAMES.get(option.lower())
        if key is None:
            raise MappingError(f"Unknown tag option {option!r} in {tag!r}")
        flags[key] = True
    return Tag(name=name or None, **flags)


def format_tag(tag: Tag) -> str:
    if tag.exclude:
        return "-"
    parts = [tag.name or ""]
    if tag.omitempty:
        parts.append("omitempty")
    if tag.inline:
        parts.append("inline")
    if tag.primary_key:
        parts.append("pk")
    return ",".join(parts)


def column(
    name: str | None = None,
    *,
    omitempty: bool = False,
    inline: bool = False,
    exclude: bool = False,
    primary_key: bool = False,
    **field_kwargs: Any,
) -> Any:
    """
    Declare a dataclass field's column binding.

    Remaining keyword arguments go to :func:`dataclasses.field`.

    Usage:
        email: str | None = column(default=None, omitempty=True)
        key: int = column("id", default=0, primary_key=True)
        address: Address = column(default_factory=Address, inline=True)
    """
    tag = Tag(
        name=name,
        omitempty=omitempty,
        inline=inline,
        exclude=exclude,
        primary_key=primary_key,
    )
    metadata = dict(field_kwargs.pop("metadata", None) or {})
    metadata[TAG_KEY] = format_tag(tag)
    return field(metadata=metadata, **field_kwargs)


@dataclass(frozen=True)
class FieldSpec:
    """One declared field of a record type, before column resolution."""

    attr: str
    column: str | None = None
    type: Any = Any
    omitempty: bool = False
    inline: bool = False
    exclude: bool = False
    primary_key: bool = False
    has_default: bool = False
    init: bool = True

    @classmethod
    def from_tag(cls, attr: str, tag: str | Tag | None, **kwargs: Any) -> FieldSpec:
        parsed = tag if isinstance(tag, Tag) else parse_tag(tag)
        return cls(
            attr=attr,
            column=parsed.name,
            omitempty=parsed.omitempty,
            inline=parsed.inline,
            exclude=parsed.exclude,
            primary_key=parsed.primary_key,
            **kwargs,
        )


@runtime_checkable
class Describable(Protocol):
    """
    Capability of a record type that lists its own fields.

    The type must also accept its field attributes as constructor keyword
    arguments so :meth:`Descriptor.build` can instantiate it.
    """

    @classmethod
    def __strata_fields__(cls) -> Iterable[FieldSpec]: ...


@dataclass(frozen=True)
class FieldBinding:
    """A resolved field: attribute path from the record root to its column."""

    path: tuple[str, ...]
    column: str
    omitempty: bool = False
    primary_key: bool = False
    type: Any = field(default=Any, compare=False)

    @property
    def attr(self) -> str:
        return self.path[-1]


# ── Type helpers ─────────────────────────────────────────────────────────


def _normalize(name: str) -> str:
    return name.replace("_", "").lower()


def _type_hints(tp: type) -> dict[str, Any]:
    try:
        return typing.get_type_hints(tp)
    except (NameError, TypeError):
        return {}


def _unwrap_optional(tp: Any) -> tuple[Any, bool]:
    origin = typing.get_origin(tp)
    if origin is Union or origin is types.UnionType:
        args = [a for a in typing.get_args(tp) if a is not type(None)]
        optional = len(args) < len(typing.get_args(tp))
        if len(args) == 1:
            return args[0], optional
        return Any, optional
    return tp, False


def is_record_type(tp: Any) -> bool:
    """Whether ``tp`` can be described: dataclass, pydantic model or :class:`Describable`."""
    if not isinstance(tp, type):
        return False
    return (
        hasattr(tp, "__strata_fields__")
        or dataclasses.is_dataclass(tp)
        or issubclass(tp, BaseModel)
    )


def is_frozen(tp: type) -> bool:
    params = getattr(tp, "__dataclass_params__", None)
    if params is not None and params.frozen:
        return True
    if issubclass(tp, BaseModel):
        return bool(tp.model_config.get("frozen"))
    return False


def _field_specs(tp: type) -> list[FieldSpec]:
    if hasattr(tp, "__strata_fields__"):
        return list(tp.__strata_fields__())

    hints = _type_hints(tp)

    if dataclasses.is_dataclass(tp):
        specs = []
        for f in dataclasses.fields(tp):
            has_default = (
                f.default is not dataclasses.MISSING
                or f.default_factory is not dataclasses.MISSING
            )
            specs.append(
                FieldSpec.from_tag(
                    f.name,
                    f.metadata.get(TAG_KEY),
                    type=hints.get(f.name, Any),
                    has_default=has_default,
                    init=f.init,
                )
            )
        return specs

    if issubclass(tp, BaseModel):
        specs = []
        for name, info in tp.model_fields.items():
            extra = info.json_schema_extra if isinstance(info.json_schema_extra, dict) else {}
            specs.append(
                FieldSpec.from_tag(
                    name,
                    extra.get(TAG_KEY),
                    type=hints.get(name, info.annotation),
                    has_default=not info.is_required(),
                )
            )
        return specs

    raise MappingError(
        f"{tp.__name__} is not a describable record type",
        record_type=tp.__name__,
    )


# ── Coercion ─────────────────────────────────────────────────────────────


def zero_value(tp: Any) -> Any:
    """The zero value substituted for a required field a row does not supply."""
    tp, optional = _unwrap_optional(tp)
    if optional:
        return None
    origin = typing.get_origin(tp) or tp
    if not isinstance(origin, type):
        return None
    if issubclass(origin, bool):
        return False
    if issubclass(origin, Enum):
        return None
    for kind, zero in ((int, 0), (float, 0.0), (str, ""), (bytes, b"")):
        if issubclass(origin, kind):
            return zero
    if issubclass(origin, Decimal):
        return Decimal(0)
    if issubclass(origin, (list, dict, tuple, set, frozenset)):
        return origin()
    if is_record_type(origin):
        return describe(origin).build({})
    return None


def _parse_datetime(text: str) -> datetime:
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    return datetime.fromisoformat(text)


def _coerce(value: Any, tp: Any) -> Any:
    if value is None:
        return None
    tp, _ = _unwrap_optional(tp)
    if tp is Any or isinstance(tp, str):
        return value
    origin = typing.get_origin(tp) or tp
    if not isinstance(origin, type):
        return value
    args = typing.get_args(tp)

    if issubclass(origin, bool):
        if isinstance(value, str):
            return value.strip().lower() in ("1", "true", "t", "yes", "y", "on")
        return bool(value)
    if issubclass(origin, Enum):
        return value if isinstance(value, origin) else origin(value)
    if issubclass(origin, int):
        if isinstance(value, float) and not value.is_integer():
            return value
        return value if type(value) is int else int(value)
    if issubclass(origin, float):
        return value if isinstance(value, float) else float(value)
    if issubclass(origin, Decimal):
        if isinstance(value, Decimal):
            return value
        return Decimal(str(value)) if isinstance(value, float) else Decimal(value)
    if issubclass(origin, str):
        if isinstance(value, (bytes, bytearray, memoryview)):
            return bytes(value).decode()
        return value if isinstance(value, str) else str(value)
    if issubclass(origin, bytes):
        if isinstance(value, str):
            return value.encode()
        return bytes(value)
    if issubclass(origin, datetime):
        if isinstance(value, datetime):
            return value
        if isinstance(value, date):
            return datetime.combine(value, datetime.min.time())
        return _parse_datetime(str(value))
    if issubclass(origin, date):
        if isinstance(value, datetime):
            return value.date()
        if isinstance(value, date):
            return value
        return date.fromisoformat(str(value)[:10])

    if isinstance(value, (str, bytes, bytearray)) and (
        issubclass(origin, (list, dict, tuple, set, frozenset)) or is_record_type(origin)
    ):
        value = json.loads(value)

    if issubclass(origin, dict):
        if args and len(args) == 2:
            return {k: _coerce(v, args[1]) for k, v in value.items()}
        return dict(value)
    if issubclass(origin, (list, tuple, set, frozenset)):
        item_type = args[0] if args and args[0] is not Ellipsis else Any
        return origin(_coerce(v, item_type) for v in value)
    if is_record_type(origin):
        if isinstance(value, origin):
            return value
        if isinstance(value, Mapping):
            return describe(origin).build(value)
    return value


def coerce(value: Any, tp: Any, *, attr: str | None = None) -> Any:
    """Coerce a backend value to an annotated field type."""
    try:
        return _coerce(value, tp)
    except (ValueError, TypeError, InvalidOperation) as e:
        raise MappingError(
            f"Cannot convert {value!r} for field {attr or '?'!s}: {e}",
            cause=e,
        ) from e


# ── Descriptor ───────────────────────────────────────────────────────────


@dataclass(frozen=True)
class Descriptor:
    """
    Resolved field-to-column mapping of one record type.

    Two descriptors are equal when they describe the same type with the same
    bindings in the same order.
    """

    record_type: type
    bindings: tuple[FieldBinding, ...]
    specs: tuple[FieldSpec, ...] = field(default=(), repr=False, compare=False)
    nested: Mapping[str, Descriptor] = field(
        default_factory=lambda: types.MappingProxyType({}), repr=False, compare=False
    )

    def __post_init__(self) -> None:
        index: dict[str, FieldBinding] = {}
        for binding in self.bindings:
            key = _normalize(binding.column)
            if key in index:
                other = index[key]
                raise MappingConflictError(
                    f"{self.record_type.__name__}: fields {'.'.join(other.path)!r} and "
                    f"{'.'.join(binding.path)!r} both map to column {binding.column!r}",
                    column=binding.column,
                    fields=(".".join(other.path), ".".join(binding.path)),
                    record_type=self.record_type.__name__,
                )
            index[key] = binding
        object.__setattr__(self, "_index", index)

        keys = [b for b in self.bindings if b.primary_key]
        if len(keys) > 1:
            raise MappingError(
                f"{self.record_type.__name__} declares more than one primary key: "
                + ", ".join(b.column for b in keys),
                record_type=self.record_type.__name__,
            )
        if not keys:
            keys = [b for b in self.bindings if _normalize(b.column) == "id"]
        object.__setattr__(self, "_primary_key", keys[0] if keys else None)

    @property
    def fields(self) -> tuple[FieldBinding, ...]:
        return self.bindings

    @property
    def columns(self) -> list[str]:
        return [b.column for b in self.bindings]

    @property
    def primary_key(self) -> FieldBinding | None:
        """Explicit ``pk`` binding, otherwise the binding whose column is ``id``."""
        return self._primary_key

    def lookup(self, column: str) -> FieldBinding | None:
        """Resolve a backend column name, ignoring case and underscores."""
        return self._index.get(_normalize(column))

    def get(self, record: Any, binding: FieldBinding) -> Any:
        value = record
        for attr in binding.path:
            if value is None:
                return None
            value = getattr(value, attr)
        return value

    def extract(self, record: Any, *, omit_empty: bool = True) -> list[tuple[str, Value]]:
        """
        Ordered ``(column, Value)`` pairs of a record.

        With ``omit_empty`` (write paths) zero-valued ``omitempty`` fields are
        skipped; read paths pass ``omit_empty=False``.
        """
        if not isinstance(record, self.record_type):
            raise MappingError(
                f"Expected {self.record_type.__name__}, got {type(record).__name__}",
                record_type=self.record_type.__name__,
            )
        pairs = []
        for binding in self.bindings:
            value = Value.of(self.get(record, binding))
            if omit_empty and binding.omitempty and value.is_zero:
                continue
            pairs.append((binding.column, value))
        return pairs

    def build(self, row: Mapping[str, Any]) -> Any:
        """Construct a new record from a row. Missing required fields get zero values."""
        values: dict[str, Any] = {}
        for key, value in row.items():
            binding = self.lookup(key)
            if binding is not None and len(binding.path) == 1:
                values[binding.attr] = value

        kwargs: dict[str, Any] = {}
        late: dict[str, Any] = {}
        for spec in self.specs:
            if spec.inline and spec.attr in self.nested:
                kwargs[spec.attr] = self.nested[spec.attr].build(row)
            elif spec.attr in values:
                converted = coerce(values[spec.attr], spec.type, attr=spec.attr)
                if spec.init:
                    kwargs[spec.attr] = converted
                else:
                    late[spec.attr] = converted
            elif spec.init and not spec.has_default:
                kwargs[spec.attr] = zero_value(spec.type)

        try:
            record = self.record_type(**kwargs)
        except (TypeError, ValueError) as e:
            raise MappingError(
                f"Cannot construct {self.record_type.__name__}: {e}",
                record_type=self.record_type.__name__,
                cause=e,
            ) from e
        for attr, value in late.items():
            setattr(record, attr, value)
        return record

    def assign(self, record: Any, binding: FieldBinding, value: Any) -> None:
        """Set one bound field, creating inlined intermediates that are ``None``."""
        target = record
        descriptor = self
        for attr in binding.path[:-1]:
            descriptor = descriptor.nested[attr]
            child = getattr(target, attr)
            if child is None:
                child = descriptor.build({})
                setattr(target, attr, child)
            target = child
        setattr(target, binding.attr, coerce(value, binding.type, attr=binding.attr))

    def populate(self, record: Any, row: Mapping[str, Any]) -> Any:
        """Assign a row into an existing record in place. Unknown columns are ignored."""
        if is_frozen(type(record)):
            raise MappingError(
                f"{type(record).__name__} is immutable and cannot be populated in place",
                record_type=type(record).__name__,
            )
        for key, value in row.items():
            binding = self.lookup(key)
            if binding is not None:
                self.assign(record, binding, value)
        return record


# ── Registry of descriptors ──────────────────────────────────────────────


_descriptors: dict[type, Descriptor] = {}
_lock = threading.RLock()


def _describe(tp: type, stack: tuple[type, ...]) -> Descriptor:
    if tp in stack:
        chain = " -> ".join(t.__name__ for t in (*stack, tp))
        raise MappingError(f"Recursive inline record: {chain}", record_type=tp.__name__)

    cached = _descriptors.get(tp)
    if cached is not None:
        return cached

    specs = _field_specs(tp)
    bindings: list[FieldBinding] = []
    nested: dict[str, Descriptor] = {}

    for spec in specs:
        if spec.exclude or spec.attr.startswith("_"):
            continue
        if spec.inline:
            target, _ = _unwrap_optional(spec.type)
            if not is_record_type(target):
                raise MappingError(
                    f"{tp.__name__}.{spec.attr}: inline target is not a record type",
                    record_type=tp.__name__,
                )
            inner = _describe(target, (*stack, tp))
            nested[spec.attr] = inner
            for binding in inner.bindings:
                bindings.append(
                    FieldBinding(
                        path=(spec.attr, *binding.path),
                        column=binding.column,
                        omitempty=binding.omitempty,
                        primary_key=binding.primary_key,
                        type=binding.type,
                    )
                )
            continue
        bindings.append(
            FieldBinding(
                path=(spec.attr,),
                column=spec.column or spec.attr,
                omitempty=spec.omitempty,
                primary_key=spec.primary_key,
                type=spec.type,
            )
        )

    descriptor = Descriptor(
        record_type=tp,
        bindings=tuple(bindings),
        specs=tuple(specs),
        nested=types.MappingProxyType(nested),
    )
    _descriptors[tp] = descriptor
    return descriptor


def describe(tp: type) -> Descriptor:
    """
    Descriptor of a record type, built on first use and cached.

    Raises:
        MappingConflictError: two fields resolve to one column
        MappingError: not a record type, bad inline target, recursive inline
    """
    cached = _descriptors.get(tp)
    if cached is not None:
        return cached
    if not is_record_type(tp):
        name = getattr(tp, "__name__", repr(tp))
        raise MappingError(f"{name} is not a describable record type", record_type=name)
    with _lock:
        return _describe(tp, ())


# ── Destinations ─────────────────────────────────────────────────────────


def populate(destination: Any, row: Mapping[str, Any]) -> Any:
    """
    Deliver one row into ``destination`` and return the populated object.

    - ``dict`` or ``None``: a new dict
    - a mapping type: a new instance of it
    - a record type: a new record
    - a mutable mapping: updated in place
    - a record instance: assigned in place
    """
    if destination is None or destination is dict:
        return dict(row)
    if isinstance(destination, type):
        if issubclass(destination, Mapping):
            return destination(row)
        return describe(destination).build(row)
    if isinstance(destination, MutableMapping):
        destination.update(row)
        return destination
    if isinstance(destination, (list, tuple, set)):
        raise MappingError(
            f"Cannot populate a single row into a {type(destination).__name__}; use populate_all"
        )
    return describe(type(destination)).populate(destination, row)


def populate_all(destination: Any, rows: Iterable[Mapping[str, Any]], *, item: Any = dict) -> list:
    """
    Deliver every row into a container.

    A list is extended in place with ``item``-shaped elements; an element
    type (or ``list``/``None``) returns a new list.
    """
    if isinstance(destination, list):
        destination.extend(populate(item, row) for row in rows)
        return destination
    if destination is None or destination is list:
        return [populate(item, row) for row in rows]
    if isinstance(destination, type):
        return [populate(destination, row) for row in rows]
    raise MappingError(
        f"Cannot populate rows into a {type(destination).__name__}"
    )


__all__ = [
    "Describable",
    "Descriptor",
    "FieldBinding",
    "FieldSpec",
    "TAG_KEY",
    "Tag",
    "coerce",
    "column",
    "describe",
    "format_tag",
    "is_frozen",
    "is_record_type",
    "parse_tag",
    "populate",
    "populate_all",
    "zero_value",
]
