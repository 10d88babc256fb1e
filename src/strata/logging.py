"""
Logging configuration.

Provides a single entry point for configuring structured logging. Level and
format come from explicit arguments or, when omitted, from
:class:`~strata.settings.StrataSettings` (``STRATA_LOG_LEVEL``,
``STRATA_LOG_FORMAT``).

Usage:
    # Configure at application startup
    from strata.logging import configure_logging
    configure_logging()

    # Or with explicit settings
    configure_logging(level="DEBUG", format="json")

Library code only calls :func:`get_logger`; nothing in strata configures
logging on import.

Events logged with ``exc_info`` set to a strata error carry that error's
category and context under ``error``.
"""

from __future__ import annotations

import logging
import sys
from typing import Any, Literal

import structlog
from structlog.types import Processor

from strata.errors import StrataError
from strata.settings import get_settings

# Track if logging has been configured
_configured = False


def add_error_context(logger: Any, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    """
    Attach a strata error's category and context to the event.

    Looks at ``exc_info`` (an exception instance, a ``sys.exc_info()`` tuple
    or ``True``) and, when it holds a :class:`~strata.errors.StrataError`,
    stores :meth:`~strata.errors.StrataError.to_dict` under ``error``.
    """
    exc_info = event_dict.get("exc_info")
    if exc_info is True:
        exc_info = sys.exc_info()
    if isinstance(exc_info, tuple):
        exc_info = exc_info[1]
    if isinstance(exc_info, StrataError):
        event_dict.setdefault("error", exc_info.to_dict())
    return event_dict


def configure_logging(
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] | None = None,
    format: Literal["json", "console"] | None = None,
    force: bool = False,
) -> None:
    """
    Configure structured logging for the application.

    Subsequent calls are no-ops unless force=True.

    Args:
        level: Log level (overrides STRATA_LOG_LEVEL)
        format: Output format (overrides STRATA_LOG_FORMAT)
        force: Reconfigure even if already configured
    """
    global _configured

    if _configured and not force:
        return

    settings = get_settings()
    log_level = (level or settings.log_level).upper()
    log_format = (format or settings.log_format).lower()

    # Build processor chain
    processors: list[Processor] = [
        # Standard level filter
        structlog.stdlib.filter_by_level,
        # Add log level to stdlib logger
        structlog.stdlib.add_log_level,
        # Add logger name
        structlog.stdlib.add_logger_name,
        # Add timestamp in UTC ISO-8601 with Z suffix
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        # Strata error category and context
        add_error_context,
        # Format exception info with full details for ERROR logs
        structlog.processors.format_exc_info,
        # Stack info if requested
        structlog.processors.StackInfoRenderer(),
    ]

    # Choose renderer based on format
    if log_format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(
            structlog.dev.ConsoleRenderer(
                colors=True,
                exception_formatter=structlog.dev.plain_traceback,
            )
        )

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    # Configure stdlib logging to match
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stderr,
        level=getattr(logging, log_level),
        force=True,
    )
    logging.getLogger("strata").setLevel(getattr(logging, log_level))

    _configured = True


def get_logger(name: str | None = None) -> Any:
    """Get a structured logger.

    Args:
        name: Logger name (usually __name__)
    """
    return structlog.get_logger(name)


def is_configured() -> bool:
    """Check if logging has been configured."""
    return _configured


__all__ = [
    "add_error_context",
    "configure_logging",
    "get_logger",
    "is_configured",
]
