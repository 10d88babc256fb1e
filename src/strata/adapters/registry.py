"""Adapter registry and factory.

Manifesto:
    Consumers should never hard-code adapter class names. The registry maps
    backend names to factories, and ``get_adapter()`` creates an instance by
    name. Backends are added by an explicit ``register(registry)`` call per
    backend module, never as a side effect of importing it.

Features:
    - ``AdapterRegistry`` pre-populated with ``sqlite``, ``postgresql``,
      ``mysql`` and ``memory`` (``defaults=False`` for an empty one)
    - ``register()`` for custom / third-party adapters, with aliases
    - ``get_adapter()`` factory: name + options → adapter instance

Tags:
    strata, database, registry, factory

Doc-Types:
    api-reference
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from typing import Any

from strata.errors import ConfigError

from . import memory, mysql, postgresql, sqlite
from .base import Adapter

AdapterFactory = Callable[..., Adapter]


class AdapterRegistry:
    """
    Registry for backend adapter factories.

    Pre-registered adapters:
    - ``sqlite`` / ``sqlite3`` — :class:`~strata.adapters.sqlite.SQLiteAdapter`
    - ``postgresql`` / ``postgres`` / ``pg`` — :class:`~strata.adapters.postgresql.PostgreSQLAdapter`
    - ``mysql`` / ``mariadb`` — :class:`~strata.adapters.mysql.MySQLAdapter`
    - ``memory`` / ``mem`` — :class:`~strata.adapters.memory.MemoryAdapter`
    """

    def __init__(self, *, defaults: bool = True):
        self._factories: dict[str, AdapterFactory] = {}
        self._aliases: dict[str, str] = {}
        if defaults:
            self._register_defaults()

    def _register_defaults(self) -> None:
        """Register the built-in backends."""
        sqlite.register(self)
        postgresql.register(self)
        mysql.register(self)
        memory.register(self)

    def register(self, name: str, factory: AdapterFactory, aliases: Iterable[str] = ()) -> None:
        """Register an adapter factory under a name and optional aliases."""
        key = name.lower()
        self._factories[key] = factory
        for alias in aliases:
            self._aliases[alias.lower()] = key

    def unregister(self, name: str) -> None:
        """Remove a backend and its aliases."""
        key = self._resolve(name)
        self._factories.pop(key, None)
        self._aliases = {a: k for a, k in self._aliases.items() if k != key}

    def _resolve(self, name: str) -> str:
        key = name.lower()
        key = self._aliases.get(key, key)
        if key not in self._factories:
            raise ConfigError(
                f"Unknown database adapter: {name}. Registered: {', '.join(self.list_adapters())}"
            )
        return key

    def create(self, name: str, **kwargs: Any) -> Adapter:
        """Create an adapter by name."""
        return self._factories[self._resolve(name)](**kwargs)

    def list_adapters(self) -> list[str]:
        """List registered adapter names (aliases excluded)."""
        return sorted(self._factories.keys())

    def __contains__(self, name: object) -> bool:
        if not isinstance(name, str):
            return False
        key = name.lower()
        return self._aliases.get(key, key) in self._factories


# Global registry
adapter_registry = AdapterRegistry()


def get_adapter(name: str, **kwargs: Any) -> Adapter:
    """
    Get a backend adapter by name.

    Usage:
        adapter = get_adapter("sqlite")
        adapter = get_adapter("postgresql", log_statements=True)
    """
    return adapter_registry.create(name, **kwargs)


__all__ = [
    "AdapterFactory",
    "AdapterRegistry",
    "adapter_registry",
    "get_adapter",
]
