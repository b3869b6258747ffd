"""Connection settings for a Refoss device and their validation."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

import voluptuous as vol

from .const import (
    DEFAULT_HTTP_PORT,
    DEFAULT_POLL_INTERVAL,
    MAX_POLL_INTERVAL,
    MIN_POLL_INTERVAL,
)
from .errors import ConfigError

CONF_HOST = "host"
CONF_PORT = "port"
CONF_USERNAME = "username"
CONF_PASSWORD = "password"
CONF_POLL_INTERVAL = "poll_interval"


def _host(value: Any) -> str:
    """Validate a non-empty host string."""

    if not isinstance(value, str) or not value.strip():
        raise vol.Invalid("host must be a non-empty string")
    return value.strip()


def _optional_secret(value: Any) -> str | None:
    """Map blank credentials to ``None``."""

    if value is None:
        return None
    text = str(value)
    return text if text.strip() else None


def _poll_interval(value: Any) -> Any:
    """Let ``None`` fall back to the default interval."""

    return DEFAULT_POLL_INTERVAL if value is None else value


DEVICE_SCHEMA = vol.Schema(
    {
        vol.Required(CONF_HOST): _host,
        vol.Optional(CONF_PORT, default=DEFAULT_HTTP_PORT): vol.All(
            vol.Coerce(int), vol.Range(min=1, max=65535)
        ),
        vol.Optional(CONF_USERNAME, default=None): _optional_secret,
        vol.Optional(CONF_PASSWORD, default=None): _optional_secret,
        vol.Optional(CONF_POLL_INTERVAL, default=DEFAULT_POLL_INTERVAL): vol.All(
            _poll_interval,
            vol.Coerce(int),
            vol.Clamp(min=MIN_POLL_INTERVAL, max=MAX_POLL_INTERVAL),
        ),
    },
    extra=vol.REMOVE_EXTRA,
)


@dataclass(frozen=True, slots=True)
class ConnectionSettings:
    """Validated settings the host supplies for one device."""

    host: str
    username: str | None = None
    password: str | None = None
    poll_interval: int = DEFAULT_POLL_INTERVAL
    port: int = DEFAULT_HTTP_PORT

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> ConnectionSettings:
        """Validate ``data`` and return settings; raise ``ConfigError`` on failure."""

        try:
            validated = DEVICE_SCHEMA(dict(data))
        except vol.Invalid as err:
            raise ConfigError(f"Invalid device settings: {err}") from err
        return cls(
            host=validated[CONF_HOST],
            username=validated[CONF_USERNAME],
            password=validated[CONF_PASSWORD],
            poll_interval=validated[CONF_POLL_INTERVAL],
            port=validated[CONF_PORT],
        )

    def merged(self, changes: Mapping[str, Any]) -> ConnectionSettings:
        """Return new settings with ``changes`` applied on top of these."""

        current = {
            CONF_HOST: self.host,
            CONF_PORT: self.port,
            CONF_USERNAME: self.username,
            CONF_PASSWORD: self.password,
            CONF_POLL_INTERVAL: self.poll_interval,
        }
        current.update(changes)
        return self.from_mapping(current)

    def endpoint_changed(self, other: ConnectionSettings) -> bool:
        """Return True when address or credentials differ from ``other``."""

        return (self.host, self.port, self.username, self.password) != (
            other.host,
            other.port,
            other.username,
            other.password,
        )

    def poll_changed(self, other: ConnectionSettings) -> bool:
        """Return True when the poll interval differs from ``other``."""

        return self.poll_interval != other.poll_interval

    def redacted(self) -> dict[str, Any]:
        """Return a diagnostics-safe view of the settings."""

        return {
            CONF_HOST: self.host,
            CONF_PORT: self.port,
            CONF_USERNAME: "***" if self.username else None,
            CONF_PASSWORD: "***" if self.password else None,
            CONF_POLL_INTERVAL: self.poll_interval,
        }


__all__ = [
    "CONF_HOST",
    "CONF_PASSWORD",
    "CONF_POLL_INTERVAL",
    "CONF_PORT",
    "CONF_USERNAME",
    "DEVICE_SCHEMA",
    "ConnectionSettings",
    "ConfigError",
]
