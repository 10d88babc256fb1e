"""Connection settings."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field, fields, replace
from typing import Any
from urllib.parse import parse_qsl, unquote, urlsplit

from strata.errors import ValidationError


@dataclass(frozen=True, repr=False)
class ConnectionSettings:
    """
    Parameters for opening one backend connection.

    Addressing is either ``socket`` or ``host``/``port``, never both.
    File and in-process backends use neither and read ``database`` only.
    """

    database: str = ""
    host: str | None = None
    port: int | None = None
    user: str | None = None
    password: str | None = None
    socket: str | None = None
    charset: str | None = None

    # Extra options (driver-specific)
    options: dict[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.socket and (self.host or self.port):
            raise ValidationError(
                "socket and host/port are mutually exclusive",
                field="socket",
                value=self.socket,
            )
        if self.port is not None:
            if isinstance(self.port, bool) or not isinstance(self.port, int):
                raise ValidationError("port must be an integer", field="port", value=self.port)
            if not 1 <= self.port <= 65535:
                raise ValidationError("port must be in 1-65535", field="port", value=self.port)
        if not isinstance(self.options, Mapping):
            raise ValidationError("options must be a mapping", field="options", value=self.options)
        for key, value in self.options.items():
            if not isinstance(key, str) or not isinstance(value, str):
                raise ValidationError(
                    "options must map strings to strings",
                    field="options",
                    value={key: value},
                )
        object.__setattr__(self, "options", dict(self.options))

    @property
    def addressing(self) -> str | None:
        """``"socket"``, ``"tcp"``, or ``None`` when no network address is set."""
        if self.socket:
            return "socket"
        if self.host or self.port:
            return "tcp"
        return None

    def require_address(self, default_host: str = "localhost") -> ConnectionSettings:
        """Settings guaranteed to carry one addressing mode, defaulting to ``default_host``."""
        if self.addressing is None:
            return replace(self, host=default_host)
        return self

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> ConnectionSettings:
        """Build from a plain mapping, rejecting unknown keys."""
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise ValidationError(
                f"Unknown connection settings: {', '.join(sorted(unknown))}",
                field=sorted(unknown)[0],
            )
        return cls(**data)

    @classmethod
    def from_url(cls, url: str) -> ConnectionSettings:
        """
        Parse a connection URL.

        ``sqlite:///relative.db`` and ``sqlite:////absolute.db`` follow the
        usual convention; ``?socket=`` (or ``?unix_socket=``) and
        ``?charset=`` are lifted out of the query string, the rest becomes
        ``options``.

        Usage:
            ConnectionSettings.from_url("postgresql://app:secret@db:5432/app?sslmode=require")
            ConnectionSettings.from_url("mysql://root@/app?socket=/var/run/mysqld/mysqld.sock")
        """
        parts = urlsplit(url)
        if not parts.scheme:
            raise ValidationError("URL has no scheme", field="url", value=url)

        query = dict(parse_qsl(parts.query, keep_blank_values=True))
        socket = query.pop("socket", None) or query.pop("unix_socket", None)
        query.pop("unix_socket", None)
        charset = query.pop("charset", None)

        scheme = parts.scheme.split("+", 1)[0].lower()
        if scheme == "sqlite":
            path = parts.path[1:] if parts.path.startswith("/") else parts.path
            database = unquote(path) or unquote(parts.netloc) or ":memory:"
            return cls(database=database, charset=charset, options=query)

        try:
            port = parts.port
        except ValueError as e:
            raise ValidationError(f"Invalid port in URL: {e}", field="port", cause=e) from e

        return cls(
            database=unquote(parts.path.lstrip("/")),
            host=parts.hostname or None,
            port=port,
            user=unquote(parts.username) if parts.username else None,
            password=unquote(parts.password) if parts.password else None,
            socket=socket,
            charset=charset,
            options=query,
        )

    def __repr__(self) -> str:
        shown = []
        for f in fields(self):
            value = getattr(self, f.name)
            if f.name == "password" and value is not None:
                value = "***"
            if value in (None, "", {}):
                continue
            shown.append(f"{f.name}={value!r}")
        return f"ConnectionSettings({', '.join(shown)})"


__all__ = [
    "ConnectionSettings",
]
