"""
Shared pytest fixtures for strata tests.

This module provides:
- Settings and logging isolation between tests
- A ``session`` fixture parametrised over the sqlite and memory backends
- The seeded ``people`` collection

Usage:
    def test_something(people):
        assert people.find(name="A").one()["age"] == 30
"""

from __future__ import annotations

from typing import Iterator

import pytest
import structlog

import strata.logging
from strata import Collection, Session
from strata.adapters.memory import drop_store
from strata.settings import clear_settings_cache
from tests._support import BACKENDS, SEED, open_backend


# =============================================================================
# Isolation
# =============================================================================


@pytest.fixture(autouse=True)
def _isolate(monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    """Fresh settings, default structlog config and no shared memory stores."""
    for var in ("STRATA_LOG_LEVEL", "STRATA_LOG_FORMAT", "STRATA_LOG_STATEMENTS", "STRATA_DEFAULT_URL"):
        monkeypatch.delenv(var, raising=False)
    clear_settings_cache()
    yield
    clear_settings_cache()
    structlog.reset_defaults()
    strata.logging._configured = False
    drop_store("shared")


# =============================================================================
# Sessions
# =============================================================================


@pytest.fixture(params=BACKENDS)
def backend(request: pytest.FixtureRequest) -> str:
    return request.param


@pytest.fixture
def session(backend: str) -> Iterator[Session]:
    """Open session on each backend; closed after the test."""
    session = open_backend(backend)
    yield session
    session.close()


@pytest.fixture
def people(session: Session) -> Collection:
    """``people`` collection seeded with A(30), B(25), C(40)."""
    collection = session.collection("people")
    for row in SEED:
        collection.append(dict(row))
    return collection
