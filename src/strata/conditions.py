"""Composable query conditions.

A condition is an immutable tree handed to ``Collection.find``. Building one
performs no I/O; the adapter's ``build_filter`` translates it into a native
predicate and must either express every node or raise
:class:`~strata.errors.UnsupportedExpressionError`.

Manifesto:
    Filters are values. They compose with ``&`` and ``|``, compare equal
    structurally, and can be evaluated in memory against a plain row, which
    makes every backend's translation checkable against one reference.

Architecture:
    ::

        Condition
        ├── Cond(mapping, **fields)   column terms, implicitly AND-ed
        ├── And(*children)            ordered conjunction
        ├── Or(*children)             ordered disjunction
        ├── Raw(fragment, *args)      opaque backend fragment, ``?`` placeholders
        └── Func(name, *args)         backend function call

Features:
    - Operator suffixes in keys: ``Cond({"age >=": 28})``
    - Operator maps as values: ``Cond(age={"gte": 28, "lt": 65})``
    - Comparison helpers: ``Cond(age=gte(28))``
    - Lists become ``IN``, ``None`` becomes ``IS NULL``
    - Empty nodes impose no constraint
    - ``evaluate(condition, row)`` reference evaluator with SQL NULL semantics

Examples:
    >>> c = Cond(age={"gte": 28}) & Or(Cond(name="A"), Cond(name="B"))
    >>> evaluate(c, {"name": "A", "age": 30})
    True
    >>> evaluate(Cond(email=None), {"email": None})
    True

Tags:
    conditions, query, filter, expression-tree, strata

Doc-Types:
    - API Reference
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any

from strata.errors import UnsupportedExpressionError, ValidationError
from strata.values import NULL, Value, ValueKind


class Operator(str, Enum):
    """Comparison operators. Values are the SQL spelling."""

    EQ = "="
    NE = "!="
    GT = ">"
    GTE = ">="
    LT = "<"
    LTE = "<="
    IN = "IN"
    NOT_IN = "NOT IN"
    LIKE = "LIKE"
    NOT_LIKE = "NOT LIKE"
    IS = "IS"
    IS_NOT = "IS NOT"

    @classmethod
    def lookup(cls, token: str) -> Operator | None:
        """Resolve a symbol or word alias, or ``None`` if ``token`` is not an operator."""
        key = " ".join(token.strip().lower().replace("_", " ").split())
        return _OPERATOR_ALIASES.get(key)

    @classmethod
    def parse(cls, token: str) -> Operator:
        op = cls.lookup(token)
        if op is None:
            raise ValidationError(f"Unknown operator: {token!r}", field="operator", value=token)
        return op


_OPERATOR_ALIASES: dict[str, Operator] = {
    "=": Operator.EQ,
    "==": Operator.EQ,
    "eq": Operator.EQ,
    "!=": Operator.NE,
    "<>": Operator.NE,
    "ne": Operator.NE,
    ">": Operator.GT,
    "gt": Operator.GT,
    ">=": Operator.GTE,
    "gte": Operator.GTE,
    "<": Operator.LT,
    "lt": Operator.LT,
    "<=": Operator.LTE,
    "lte": Operator.LTE,
    "in": Operator.IN,
    "not in": Operator.NOT_IN,
    "nin": Operator.NOT_IN,
    "like": Operator.LIKE,
    "not like": Operator.NOT_LIKE,
    "is": Operator.IS,
    "is not": Operator.IS_NOT,
}


# ── Base ─────────────────────────────────────────────────────────────────


class Condition:
    """Base class of every condition node."""

    __slots__ = ()

    @property
    def is_empty(self) -> bool:
        """Whether this node imposes no constraint."""
        return False

    def __and__(self, other: Condition | Mapping[str, Any]) -> And:
        return And(self, other)

    def __rand__(self, other: Mapping[str, Any]) -> And:
        return And(other, self)

    def __or__(self, other: Condition | Mapping[str, Any]) -> Or:
        return Or(self, other)

    def __ror__(self, other: Mapping[str, Any]) -> Or:
        return Or(other, self)


# ── Leaf expressions ─────────────────────────────────────────────────────


@dataclass(frozen=True, init=False)
class Raw(Condition):
    """
    Opaque backend fragment.

    ``?`` marks a bound argument regardless of the backend's placeholder
    style. As an operand (``Cond(total=Raw("price * qty"))``) the fragment
    is spliced in as an expression.
    """

    fragment: str
    args: tuple[Value, ...]

    def __init__(self, fragment: str, *args: Any):
        if not isinstance(fragment, str):
            raise ValidationError("Raw fragment must be a string", field="fragment", value=fragment)
        object.__setattr__(self, "fragment", fragment)
        object.__setattr__(self, "args", tuple(Value.of(a) for a in args))

    @property
    def is_empty(self) -> bool:
        return not self.fragment.strip()


@dataclass(frozen=True, init=False)
class Func(Condition):
    """Backend function call. Arguments are bound values or :class:`Raw` expressions."""

    name: str
    args: tuple[Value | Raw | Func, ...]

    def __init__(self, name: str, *args: Any):
        if not isinstance(name, str) or not name:
            raise ValidationError("Function name must be a non-empty string", field="name", value=name)
        object.__setattr__(self, "name", name)
        object.__setattr__(
            self,
            "args",
            tuple(a if isinstance(a, (Raw, Func)) else Value.of(a) for a in args),
        )


Operand = Value | Raw | Func


@dataclass(frozen=True)
class Comparison:
    """An operator applied to an operand; the column is supplied by :class:`Cond`."""

    operator: Operator
    operand: Operand = NULL


def _comparison(op: Operator, value: Any) -> Comparison:
    if isinstance(value, (Raw, Func)):
        if op in (Operator.IN, Operator.NOT_IN):
            raise ValidationError(f"{op.value} needs a list of values", value=value)
        return Comparison(op, value)

    if value is None or (isinstance(value, Value) and value.is_null):
        match op:
            case Operator.EQ | Operator.IS:
                return Comparison(Operator.IS, NULL)
            case Operator.NE | Operator.IS_NOT:
                return Comparison(Operator.IS_NOT, NULL)
            case _:
                raise ValidationError(f"Cannot compare NULL with {op.value}", value=value)

    if isinstance(value, (list, tuple, set, frozenset)):
        match op:
            case Operator.EQ | Operator.IN:
                op = Operator.IN
            case Operator.NE | Operator.NOT_IN:
                op = Operator.NOT_IN
            case _:
                raise ValidationError(f"{op.value} does not accept a list", value=value)
        items = sorted(value, key=repr) if isinstance(value, (set, frozenset)) else value
        return Comparison(op, Value(ValueKind.LIST, tuple(Value.of(v) for v in items)))

    if op in (Operator.IN, Operator.NOT_IN):
        return Comparison(op, Value(ValueKind.LIST, (Value.of(value),)))
    return Comparison(op, Value.of(value))


def eq(value: Any) -> Comparison:
    return _comparison(Operator.EQ, value)


def ne(value: Any) -> Comparison:
    return _comparison(Operator.NE, value)


def gt(value: Any) -> Comparison:
    return _comparison(Operator.GT, value)


def gte(value: Any) -> Comparison:
    return _comparison(Operator.GTE, value)


def lt(value: Any) -> Comparison:
    return _comparison(Operator.LT, value)


def lte(value: Any) -> Comparison:
    return _comparison(Operator.LTE, value)


def in_(*values: Any) -> Comparison:
    """``in_(1, 2, 3)`` or ``in_([1, 2, 3])``."""
    if len(values) == 1 and isinstance(values[0], (list, tuple, set, frozenset)):
        values = tuple(values[0])
    return _comparison(Operator.IN, list(values))


def not_in(*values: Any) -> Comparison:
    if len(values) == 1 and isinstance(values[0], (list, tuple, set, frozenset)):
        values = tuple(values[0])
    return _comparison(Operator.NOT_IN, list(values))


def like(pattern: str) -> Comparison:
    return _comparison(Operator.LIKE, pattern)


def not_like(pattern: str) -> Comparison:
    return _comparison(Operator.NOT_LIKE, pattern)


def is_null() -> Comparison:
    return Comparison(Operator.IS, NULL)


def is_not_null() -> Comparison:
    return Comparison(Operator.IS_NOT, NULL)


# ── Column terms ─────────────────────────────────────────────────────────


def _operator_map(value: Any) -> dict[Operator, Any] | None:
    if not isinstance(value, Mapping) or not value:
        return None
    ops = {}
    for key, operand in value.items():
        op = Operator.lookup(key) if isinstance(key, str) else None
        if op is None:
            return None
        ops[op] = operand
    return ops


def _terms(key: str, value: Any) -> list[tuple[str, Comparison]]:
    if not isinstance(key, str):
        raise ValidationError("Condition keys must be strings", field="key", value=key)
    column, _, suffix = key.strip().partition(" ")
    if not column:
        raise ValidationError("Condition key has no column name", field="key", value=key)
    op = Operator.parse(suffix) if suffix.strip() else None

    if isinstance(value, Comparison):
        if op is not None:
            raise ValidationError(
                f"Operator given twice for column {column!r}", field=column, value=value
            )
        return [(column, value)]

    ops = _operator_map(value)
    if ops is not None:
        if op is not None:
            raise ValidationError(
                f"Operator given twice for column {column!r}", field=column, value=value
            )
        return [(column, _comparison(o, v)) for o, v in ops.items()]

    return [(column, _comparison(op or Operator.EQ, value))]


@dataclass(frozen=True, init=False)
class Cond(Condition):
    """
    Column terms, implicitly AND-ed, in declaration order.

    Usage:
        Cond(name="A")
        Cond({"age >=": 28, "name": ["A", "B"]})
        Cond(age={"gte": 28}, email=None)
    """

    terms: tuple[tuple[str, Comparison], ...]

    def __init__(self, mapping: Mapping[str, Any] | None = None, /, **fields: Any):
        terms: list[tuple[str, Comparison]] = []
        if mapping is not None:
            if not isinstance(mapping, Mapping):
                raise ValidationError("Cond expects a mapping", value=mapping)
            for key, value in mapping.items():
                terms.extend(_terms(key, value))
        for key, value in fields.items():
            terms.extend(_terms(key, value))
        object.__setattr__(self, "terms", tuple(terms))

    @property
    def is_empty(self) -> bool:
        return not self.terms


def _coerce(child: Any) -> Condition:
    if isinstance(child, Condition):
        return child
    if isinstance(child, Mapping):
        return Cond(child)
    raise ValidationError(
        f"Not a condition: {type(child).__name__}", value=child
    )


@dataclass(frozen=True, init=False)
class And(Condition):
    """Ordered conjunction. Mapping children are coerced to :class:`Cond`."""

    children: tuple[Condition, ...]

    def __init__(self, *children: Condition | Mapping[str, Any]):
        object.__setattr__(self, "children", tuple(_coerce(c) for c in children))

    @property
    def is_empty(self) -> bool:
        return all(c.is_empty for c in self.children)


@dataclass(frozen=True, init=False)
class Or(Condition):
    """Ordered disjunction. Mapping children are coerced to :class:`Cond`.

    An unconstrained child makes the whole disjunction unconstrained, and so
    does having no children at all.
    """

    children: tuple[Condition, ...]

    def __init__(self, *children: Condition | Mapping[str, Any]):
        object.__setattr__(self, "children", tuple(_coerce(c) for c in children))

    @property
    def is_empty(self) -> bool:
        return not self.children or any(c.is_empty for c in self.children)


RANGE_OPERATORS = frozenset({Operator.GT, Operator.GTE, Operator.LT, Operator.LTE})


def operators(condition: Condition | None) -> set[Operator]:
    """Operators used by the constraining part of a tree."""
    if condition is None or condition.is_empty:
        return set()
    match condition:
        case Cond(terms=terms):
            return {cmp.operator for _, cmp in terms}
        case And(children=children) | Or(children=children):
            return set().union(*(operators(c) for c in children))
    return set()


def conjoin(conditions: Iterable[Condition | Mapping[str, Any] | None]) -> Condition | None:
    """Fold ``find(*conditions)`` arguments into one node, or ``None`` when none constrain."""
    nodes = [_coerce(c) for c in conditions if c is not None]
    nodes = [n for n in nodes if not n.is_empty]
    if not nodes:
        return None
    if len(nodes) == 1:
        return nodes[0]
    return And(*nodes)


# ── Reference evaluator ──────────────────────────────────────────────────


def _normalize(name: str) -> str:
    return name.replace("_", "").lower()


def _lookup(row: Mapping[str, Any], column: str) -> Any:
    if column in row:
        return row[column]
    wanted = _normalize(column)
    for key, value in row.items():
        if _normalize(key) == wanted:
            return value
    return None


def _like(value: Any, pattern: str) -> bool:
    if not isinstance(value, str):
        return False
    regex = "".join(
        ".*" if ch == "%" else "." if ch == "_" else re.escape(ch) for ch in pattern
    )
    return re.fullmatch(regex, value, re.DOTALL) is not None


def _compare(actual: Any, comparison: Comparison) -> bool:
    op, operand = comparison.operator, comparison.operand
    if not isinstance(operand, Value):
        raise UnsupportedExpressionError(
            f"{type(operand).__name__} operands cannot be evaluated in memory",
            expression=repr(operand),
        )

    match op:
        case Operator.IS:
            return actual is None if operand.is_null else actual == operand.to_python()
        case Operator.IS_NOT:
            return actual is not None if operand.is_null else actual != operand.to_python()

    # SQL semantics: any comparison with NULL is unknown, which filters the row out
    if actual is None:
        return False
    expected = operand.to_python()

    try:
        match op:
            case Operator.EQ:
                return actual == expected
            case Operator.NE:
                return actual != expected
            case Operator.GT:
                return actual > expected
            case Operator.GTE:
                return actual >= expected
            case Operator.LT:
                return actual < expected
            case Operator.LTE:
                return actual <= expected
            case Operator.IN:
                return any(actual == item for item in expected if item is not None)
            case Operator.NOT_IN:
                if any(item is None for item in expected):
                    return False
                return all(actual != item for item in expected)
            case Operator.LIKE:
                return _like(actual, expected)
            case Operator.NOT_LIKE:
                return isinstance(actual, str) and not _like(actual, expected)
    except TypeError:
        return False
    return False


def evaluate(condition: Condition | Mapping[str, Any] | None, row: Mapping[str, Any]) -> bool:
    """
    Evaluate a condition against one row of plain Python values.

    Empty nodes match every row: they are dropped from a conjunction and
    satisfy a disjunction outright.
    Missing columns read as NULL. ``Raw`` and ``Func`` cannot be evaluated
    and raise :class:`UnsupportedExpressionError`.
    """
    if condition is None:
        return True
    condition = _coerce(condition)
    if condition.is_empty:
        return True

    match condition:
        case Cond(terms=terms):
            return all(_compare(_lookup(row, column), cmp) for column, cmp in terms)
        case And(children=children):
            return all(evaluate(c, row) for c in children if not c.is_empty)
        case Or(children=children):
            return any(evaluate(c, row) for c in children)
        case Raw() | Func():
            raise UnsupportedExpressionError(
                f"{type(condition).__name__} cannot be evaluated in memory",
                expression=repr(condition),
            )
    raise UnsupportedExpressionError(
        f"Unknown condition node: {type(condition).__name__}",
        expression=repr(condition),
    )


__all__ = [
    "And",
    "Comparison",
    "Cond",
    "Condition",
    "Func",
    "Operand",
    "Operator",
    "Or",
    "Raw",
    "RANGE_OPERATORS",
    "conjoin",
    "eq",
    "evaluate",
    "gt",
    "gte",
    "in_",
    "is_not_null",
    "is_null",
    "like",
    "lt",
    "lte",
    "ne",
    "not_in",
    "not_like",
    "operators",
]
