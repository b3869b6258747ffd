# ruff: noqa: D100,D103,INP001
from __future__ import annotations

import pytest

from refoss_em.config import DEVICE_SCHEMA, ConnectionSettings
from refoss_em.errors import ConfigError


@pytest.mark.parametrize(
    ("raw", "expected"),
    [(1, 5), (999, 300), ("30", 30), (None, 10), (12.0, 12)],
)
def test_poll_interval_is_clamped(raw, expected) -> None:
    settings = ConnectionSettings.from_mapping({"host": "10.0.0.2", "poll_interval": raw})

    assert settings.poll_interval == expected


def test_defaults_and_blank_credentials() -> None:
    settings = ConnectionSettings.from_mapping(
        {"host": " 10.0.0.2 ", "username": "", "password": "  ", "extra": 1}
    )

    assert settings == ConnectionSettings(host="10.0.0.2")
    assert settings.port == 80
    assert settings.poll_interval == 10
    assert settings.username is None
    assert settings.password is None


def test_schema_drops_unknown_keys() -> None:
    assert "extra" not in DEVICE_SCHEMA({"host": "h", "extra": True})


@pytest.mark.parametrize(
    "data",
    [{}, {"host": ""}, {"host": "h", "port": 0}, {"host": "h", "poll_interval": "fast"}],
)
def test_invalid_settings_raise_config_error(data) -> None:
    with pytest.raises(ConfigError):
        ConnectionSettings.from_mapping(data)


def test_change_detection() -> None:
    base = ConnectionSettings(host="10.0.0.2", username="admin", password="pw")

    slower = base.merged({"poll_interval": 60})
    assert slower.poll_changed(base)
    assert not slower.endpoint_changed(base)

    moved = base.merged({"host": "10.0.0.3"})
    assert moved.endpoint_changed(base)
    assert not moved.poll_changed(base)

    assert base.merged({"password": "new"}).endpoint_changed(base)
    assert base.merged({"port": 8080}).endpoint_changed(base)


def test_redacted_hides_credentials() -> None:
    settings = ConnectionSettings(host="10.0.0.2", username="admin", password="pw")

    assert settings.redacted() == {
        "host": "10.0.0.2",
        "port": 80,
        "username": "***",
        "password": "***",
        "poll_interval": 10,
    }
