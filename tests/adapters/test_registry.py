"""Tests for adapter registration and lookup."""

from __future__ import annotations

import pytest

from strata.adapters import (
    AdapterRegistry,
    MemoryAdapter,
    MySQLAdapter,
    PostgreSQLAdapter,
    SQLiteAdapter,
    adapter_registry,
    get_adapter,
)
from strata.errors import ConfigError


class TestAdapterRegistry:
    def test_builtins_registered(self) -> None:
        assert adapter_registry.list_adapters() == ["memory", "mysql", "postgresql", "sqlite"]

    @pytest.mark.parametrize(
        "name, cls",
        [
            ("sqlite", SQLiteAdapter),
            ("sqlite3", SQLiteAdapter),
            ("postgresql", PostgreSQLAdapter),
            ("postgres", PostgreSQLAdapter),
            ("PG", PostgreSQLAdapter),
            ("mysql", MySQLAdapter),
            ("mariadb", MySQLAdapter),
            ("memory", MemoryAdapter),
            ("mem", MemoryAdapter),
        ],
    )
    def test_create(self, name, cls) -> None:
        assert isinstance(get_adapter(name), cls)

    def test_kwargs_forwarded(self) -> None:
        assert get_adapter("sqlite", log_statements=True).log_statements is True

    def test_unknown_raises(self) -> None:
        with pytest.raises(ConfigError, match="Unknown database adapter"):
            adapter_registry.create("mongodb")

    def test_contains(self) -> None:
        assert "postgres" in adapter_registry
        assert "oracle" not in adapter_registry
        assert 3 not in adapter_registry


class TestCustomRegistry:
    def test_empty(self) -> None:
        registry = AdapterRegistry(defaults=False)
        assert registry.list_adapters() == []
        with pytest.raises(ConfigError):
            registry.create("sqlite")

    def test_register_and_unregister(self) -> None:
        registry = AdapterRegistry(defaults=False)
        registry.register("Scratch", MemoryAdapter, aliases=("tmp",))
        assert isinstance(registry.create("tmp"), MemoryAdapter)

        registry.unregister("scratch")
        assert "tmp" not in registry
        assert "scratch" not in registry

    def test_does_not_touch_global(self) -> None:
        registry = AdapterRegistry()
        registry.unregister("mysql")
        assert "mysql" in adapter_registry

    def test_unregister_unknown(self) -> None:
        with pytest.raises(ConfigError):
            AdapterRegistry(defaults=False).unregister("nope")


class TestCapabilities:
    def test_sql_backends(self) -> None:
        from strata.adapters import Capability

        sqlite = SQLiteAdapter()
        assert sqlite.supports(Capability.JOINS)
        assert not sqlite.supports(Capability.USE_DATABASE)
        mysql = MySQLAdapter()
        assert mysql.supports(Capability.USE_DATABASE)
        assert not mysql.supports(Capability.INTERRUPT)

    def test_memory(self) -> None:
        from strata.adapters import Capability

        memory = MemoryAdapter()
        assert memory.supports(Capability.RANGE_COMPARISON)
        assert not memory.supports(Capability.RAW_EXPRESSIONS)
        assert not memory.supports(Capability.JOINS)
