"""Adapter contract.

Manifesto:
    The core never speaks a backend's language. It hands an adapter a
    condition tree to translate and a :class:`Statement` to run, and reads
    rows back one dict at a time. Everything vendor-specific stays behind
    this narrow surface, so consumers never depend on a specific database.

Features:
    - Abstract ``connect()``, ``close()``, ``build_filter()``, ``execute()``
    - Cursor protocol: ``fetch_next()`` / ``close_cursor()``
    - Transactions: ``begin()`` / ``commit()`` / ``rollback()``
    - Declared ``capabilities`` checked with ``supports()`` / ``require()``
    - Catalog: ``collections()``, ``collection_exists()``, ``primary_keys()``
    - Opt-in statement logging through structlog

Tags:
    strata, database, abstract-base, adapter-pattern

Doc-Types:
    api-reference
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, ClassVar

from strata.conditions import Condition
from strata.errors import UnsupportedFeatureError, ValidationError
from strata.logging import get_logger
from strata.values import Value

from .types import ConnectionSettings


class StatementKind(str, Enum):
    """Statement kinds an adapter executes."""

    SELECT = "select"
    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"
    COUNT = "count"
    TRUNCATE = "truncate"


class Capability(str, Enum):
    """
    Optional backend features.

    The core checks transactions, joins, range comparisons, generated keys,
    database switching and interrupts before relying on them; adapters check
    raw expressions, functions and group-by while translating. Sequence reset
    on truncate and a schemaless store describe the backend to callers.
    """

    TRANSACTIONS = "transactions"
    RAW_EXPRESSIONS = "raw_expressions"
    FUNCTIONS = "functions"
    RANGE_COMPARISON = "range_comparison"
    JOINS = "joins"
    GROUP_BY = "group_by"
    AUTO_KEYS = "auto_keys"
    TRUNCATE_RESETS_SEQUENCE = "truncate_resets_sequence"
    USE_DATABASE = "use_database"
    INTERRUPT = "interrupt"
    SCHEMALESS = "schemaless"


@dataclass(frozen=True)
class SortKey:
    """One ``ORDER BY`` key."""

    column: str
    descending: bool = False

    @classmethod
    def parse(cls, spec: str | SortKey) -> SortKey:
        """Parse ``"age"``, ``"+age"``, ``"-age"``, ``"age desc"`` or ``"age asc"``."""
        if isinstance(spec, SortKey):
            return spec
        if not isinstance(spec, str) or not spec.strip():
            raise ValidationError("Sort key must be a non-empty string", field="sort", value=spec)
        text = spec.strip()
        if text[0] in "+-":
            return cls(text[1:].strip(), descending=text[0] == "-")
        name, _, direction = text.rpartition(" ")
        if name and direction.lower() in ("asc", "desc"):
            return cls(name.strip(), descending=direction.lower() == "desc")
        return cls(text)

    def __str__(self) -> str:
        return f"-{self.column}" if self.descending else self.column


@dataclass(frozen=True)
class Statement:
    """
    One unit of work handed to :meth:`Adapter.execute`.

    ``target`` is the collection name tuple; a joined collection lists more
    than one name and writes go to the first. ``predicate`` is whatever the
    adapter's ``build_filter`` returned.
    """

    kind: StatementKind
    target: tuple[str, ...]
    predicate: Any = None
    payload: tuple[tuple[str, Value], ...] = ()
    columns: tuple[str, ...] = ()
    sort: tuple[SortKey, ...] = ()
    group_by: tuple[str, ...] = ()
    limit: int = 0
    offset: int = 0
    primary_key: str | None = None

    @property
    def collection(self) -> str:
        return self.target[0]


class Adapter(ABC):
    """
    Abstract base class for backend adapters.

    Subclasses set ``name`` and ``capabilities`` and implement the abstract
    methods. An adapter instance is stateless across connections; every
    call receives the handle it works on.
    """

    name: ClassVar[str] = "abstract"
    capabilities: ClassVar[frozenset[Capability]] = frozenset()

    def __init__(self, *, log_statements: bool = False):
        self.log_statements = log_statements
        self._log = get_logger(f"strata.adapters.{self.name}")

    # -- Capabilities ------------------------------------------------------

    def supports(self, capability: Capability) -> bool:
        return capability in self.capabilities

    def require(self, capability: Capability, feature: str | None = None) -> None:
        """Raise :class:`UnsupportedFeatureError` unless ``capability`` is declared."""
        if capability not in self.capabilities:
            raise UnsupportedFeatureError(
                f"{self.name} does not support {feature or capability.value}",
                feature=feature or capability.value,
            ).with_context(backend=self.name)

    # -- Connection --------------------------------------------------------

    @abstractmethod
    def connect(self, settings: ConnectionSettings) -> Any:
        """Open a connection and return its handle."""
        ...

    @abstractmethod
    def close(self, handle: Any) -> None:
        """Close a connection handle. Closing twice is a no-op."""
        ...

    def driver(self, handle: Any) -> Any:
        """Backend-native object behind a handle."""
        return handle

    def use(self, handle: Any, database: str) -> None:
        """Switch the active database on an open connection."""
        self.require(Capability.USE_DATABASE, "use")

    def interrupt(self, handle: Any) -> None:
        """Ask the backend to abandon the statement running on ``handle``."""
        self.require(Capability.INTERRUPT, "interrupt")

    # -- Statements --------------------------------------------------------

    @abstractmethod
    def build_filter(self, condition: Condition | None) -> Any:
        """Translate a condition tree; ``None`` when it imposes no constraint."""
        ...

    @abstractmethod
    def execute(self, handle: Any, statement: Statement) -> Any:
        """
        Run a statement.

        Returns a cursor for ``select``, an int for ``count`` and the
        row-affecting kinds, and the generated key (or ``None``) for
        ``insert``.
        """
        ...

    @abstractmethod
    def fetch_next(self, cursor: Any) -> dict[str, Any] | None:
        """Next row as a dict, or ``None`` at the end."""
        ...

    @abstractmethod
    def close_cursor(self, cursor: Any) -> None:
        """Release a cursor. Closing twice is a no-op."""
        ...

    # -- Transactions ------------------------------------------------------

    def begin(self, handle: Any) -> Any:
        """Start a transaction and return its handle."""
        self.require(Capability.TRANSACTIONS, "transactions")

    def commit(self, tx: Any) -> None:
        self.require(Capability.TRANSACTIONS, "transactions")

    def rollback(self, tx: Any) -> None:
        self.require(Capability.TRANSACTIONS, "transactions")

    # -- Catalog -----------------------------------------------------------

    @abstractmethod
    def collections(self, handle: Any) -> set[str]:
        """Names of every collection in the active database."""
        ...

    @abstractmethod
    def collection_exists(self, handle: Any, name: str) -> bool:
        ...

    def primary_keys(self, handle: Any, name: str) -> tuple[str, ...]:
        """Primary-key columns of a collection, when the backend can tell."""
        return ()

    # -- Diagnostics -------------------------------------------------------

    def _trace(self, text: str, args: Any = (), **extra: Any) -> None:
        if self.log_statements:
            self._log.info("statement", backend=self.name, sql=text, args=list(args), **extra)

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"


__all__ = [
    "Adapter",
    "Capability",
    "SortKey",
    "Statement",
    "StatementKind",
]
