"""Process-wide strata settings.

Reads ``STRATA_*`` environment variables (and ``.env``) through
pydantic-settings. Connection parameters for one backend live in
:class:`~strata.adapters.types.ConnectionSettings`; this module only holds the
knobs that apply to every session in the process.

Manifesto:
    Configuration should be explicit, validated, and environment-driven.
    Turning on statement logging in production must not need a code change.

    - **Pydantic validation:** Bad values fail at load, not at first query
    - **Environment-driven:** ``STRATA_LOG_STATEMENTS=1`` flips the toggle
    - **Cached:** Loaded once, reloadable for tests

Features:
    - **StrataSettings:** log level, log format, statement logging, default URL
    - **get_settings():** Cached accessor
    - **clear_settings_cache():** Reset between tests

Examples:
    >>> from strata.settings import get_settings
    >>> get_settings().log_statements
    False

Tags:
    settings, configuration, pydantic, environment, strata

Doc-Types:
    - API Reference
    - Configuration Guide
"""

from __future__ import annotations

from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class StrataSettings(BaseSettings):
    """Settings shared by every session in the process.

    Fields
    ──────
    log_level       : Structlog level for ``configure_logging``
    log_format      : ``console`` or ``json`` renderer
    log_statements  : Log every translated statement with its bound arguments
    default_url     : URL used by ``connect()`` when none is given
    """

    model_config = SettingsConfigDict(
        env_prefix="STRATA_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Observability ────────────────────────────────────────────
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    log_format: Literal["console", "json"] = "console"
    log_statements: bool = Field(
        default=False,
        description="Log each translated statement and its arguments (diagnostic only)",
    )

    # ── Connection ───────────────────────────────────────────────
    default_url: str = Field(
        default="memory://",
        description="Connection URL used by strata.connect() without arguments",
    )

    @field_validator("log_level", mode="before")
    @classmethod
    def _upper_level(cls, v: object) -> object:
        return v.upper() if isinstance(v, str) else v

    @field_validator("log_format", mode="before")
    @classmethod
    def _lower_format(cls, v: object) -> object:
        return v.lower() if isinstance(v, str) else v


# ── Cached accessor ──────────────────────────────────────────────────────

_settings_cache: dict[str, StrataSettings] = {}


def get_settings(*, _force_reload: bool = False) -> StrataSettings:
    """Load, validate, and cache a :class:`StrataSettings` instance."""
    if not _force_reload and "default" in _settings_cache:
        return _settings_cache["default"]
    settings = StrataSettings()
    _settings_cache["default"] = settings
    return settings


def clear_settings_cache() -> None:
    """Clear the settings cache (primarily for testing)."""
    _settings_cache.clear()


__all__ = [
    "StrataSettings",
    "clear_settings_cache",
    "get_settings",
]
