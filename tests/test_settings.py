"""Tests for ``strata.settings``.

Covers:
- StrataSettings defaults
- STRATA_* environment overrides and normalisation
- Validation failures
- get_settings() caching
"""

from __future__ import annotations

import pytest
from pydantic import ValidationError as PydanticValidationError

from strata.settings import StrataSettings, clear_settings_cache, get_settings


class TestStrataSettingsDefaults:
    def test_defaults(self):
        s = StrataSettings()
        assert s.log_level == "INFO"
        assert s.log_format == "console"
        assert s.log_statements is False
        assert s.default_url == "memory://"


class TestStrataSettingsEnvOverride:
    def test_log_statements_from_env(self, monkeypatch):
        monkeypatch.setenv("STRATA_LOG_STATEMENTS", "1")
        assert StrataSettings().log_statements is True

    def test_level_upper_cased(self, monkeypatch):
        monkeypatch.setenv("STRATA_LOG_LEVEL", "debug")
        assert StrataSettings().log_level == "DEBUG"

    def test_format_lower_cased(self, monkeypatch):
        monkeypatch.setenv("STRATA_LOG_FORMAT", "JSON")
        assert StrataSettings().log_format == "json"

    def test_default_url(self, monkeypatch):
        monkeypatch.setenv("STRATA_DEFAULT_URL", "sqlite:///app.db")
        assert StrataSettings().default_url == "sqlite:///app.db"

    def test_unprefixed_ignored(self, monkeypatch):
        monkeypatch.setenv("LOG_LEVEL", "ERROR")
        assert StrataSettings().log_level == "INFO"

    def test_invalid_level(self, monkeypatch):
        monkeypatch.setenv("STRATA_LOG_LEVEL", "LOUD")
        with pytest.raises(PydanticValidationError):
            StrataSettings()


class TestGetSettings:
    def test_cached(self):
        assert get_settings() is get_settings()

    def test_force_reload(self, monkeypatch):
        first = get_settings()
        monkeypatch.setenv("STRATA_LOG_STATEMENTS", "true")
        assert get_settings() is first
        reloaded = get_settings(_force_reload=True)
        assert reloaded is not first
        assert reloaded.log_statements is True

    def test_clear_cache(self):
        first = get_settings()
        clear_settings_cache()
        assert get_settings() is not first
