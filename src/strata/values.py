"""Tagged-variant value type.

Every value that crosses the boundary between records, conditions and
backends is a :class:`Value`: a ``kind`` tag plus the plain Python payload.
Translators and the field mapper ``match`` on ``kind`` instead of probing
Python types at each call site.

Manifesto:
    Untyped ``dict[str, Any]`` rows push type inspection into every layer.
    Classifying once, at the edge, gives one place where unsupported types
    are rejected and one exhaustive ``match`` per consumer.

Features:
    - ``Value.of(obj)`` classifies scalars, timestamps, mappings, records, lists
    - ``to_python()`` unwraps recursively
    - ``is_zero`` for ``omitempty`` handling

Examples:
    >>> Value.of(True).kind
    <ValueKind.BOOL: 'bool'>
    >>> Value.of({"a": [1, 2]}).to_python()
    {'a': [1, 2]}
    >>> Value.of(0).is_zero
    True

Tags:
    values, tagged-union, strata

Doc-Types:
    - API Reference
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any

from strata.errors import ValidationError


class ValueKind(str, Enum):
    """Variant tag of a :class:`Value`."""

    NULL = "null"
    BOOL = "bool"
    INTEGER = "integer"
    FLOAT = "float"
    DECIMAL = "decimal"
    STRING = "string"
    BYTES = "bytes"
    TIMESTAMP = "timestamp"
    RECORD = "record"
    LIST = "list"


@dataclass(frozen=True)
class Value:
    """
    Immutable tagged value.

    ``data`` holds the Python payload for scalar kinds. ``RECORD`` carries a
    tuple of ``(column, Value)`` pairs, ``LIST`` a tuple of ``Value``.
    """

    kind: ValueKind
    data: Any = None

    @classmethod
    def of(cls, obj: Any) -> Value:
        """Classify a Python object. Raises :class:`ValidationError` for unsupported types."""
        if isinstance(obj, Value):
            return obj
        if obj is None:
            return NULL
        if isinstance(obj, Enum):
            return cls.of(obj.value)
        # bool before int: bool is an int subclass
        if isinstance(obj, bool):
            return cls(ValueKind.BOOL, obj)
        if isinstance(obj, int):
            return cls(ValueKind.INTEGER, obj)
        if isinstance(obj, float):
            return cls(ValueKind.FLOAT, obj)
        if isinstance(obj, Decimal):
            return cls(ValueKind.DECIMAL, obj)
        if isinstance(obj, str):
            return cls(ValueKind.STRING, obj)
        if isinstance(obj, (bytes, bytearray, memoryview)):
            return cls(ValueKind.BYTES, bytes(obj))
        if isinstance(obj, (datetime, date)):
            return cls(ValueKind.TIMESTAMP, obj)
        if isinstance(obj, Mapping):
            return cls(
                ValueKind.RECORD,
                tuple((str(k), cls.of(v)) for k, v in obj.items()),
            )
        if isinstance(obj, (list, tuple, set, frozenset)):
            return cls(ValueKind.LIST, tuple(cls.of(item) for item in obj))

        from strata.mapping import describe, is_record_type

        if is_record_type(type(obj)):
            pairs = describe(type(obj)).extract(obj, omit_empty=False)
            return cls(ValueKind.RECORD, tuple(pairs))
        raise ValidationError(
            f"Unsupported value type: {type(obj).__name__}",
            value=obj,
        )

    def to_python(self) -> Any:
        """Unwrap into plain Python objects (records become dicts, lists become lists)."""
        match self.kind:
            case ValueKind.RECORD:
                return {key: value.to_python() for key, value in self.data}
            case ValueKind.LIST:
                return [item.to_python() for item in self.data]
            case _:
                return self.data

    @property
    def is_null(self) -> bool:
        return self.kind is ValueKind.NULL

    @property
    def is_zero(self) -> bool:
        """Whether this is its kind's zero value. Timestamps are never zero."""
        match self.kind:
            case ValueKind.NULL:
                return True
            case ValueKind.BOOL:
                return self.data is False
            case ValueKind.INTEGER | ValueKind.FLOAT | ValueKind.DECIMAL:
                return self.data == 0
            case ValueKind.STRING | ValueKind.BYTES | ValueKind.RECORD | ValueKind.LIST:
                return len(self.data) == 0
            case ValueKind.TIMESTAMP:
                return False

    def __repr__(self) -> str:
        return f"Value({self.kind.value}, {self.data!r})"


NULL = Value(ValueKind.NULL, None)


__all__ = [
    "NULL",
    "Value",
    "ValueKind",
]
