# ruff: noqa: D100,D103,INP001
from __future__ import annotations

import json

import pytest

from refoss_em.codecs.status_codec import (
    StatusNormalizer,
    coerce_float,
    extract_temperature,
    normalize_temperature,
    parse_notify_status,
)

CHANNEL_ONE = {"id": 1, "power": 100.0, "voltage": 230.0, "current": 0.5, "pf": 0.8}
CHANNEL_TWO = {"id": 2, "power": 50.0, "voltage": 232.0, "current": 0.25, "pf": 1.0}


@pytest.mark.parametrize(
    "payload",
    [
        [CHANNEL_ONE, CHANNEL_TWO],
        {"result": {"status": [CHANNEL_ONE, CHANNEL_TWO]}},
        {"result": {"em": [CHANNEL_ONE, CHANNEL_TWO]}},
        {"1": CHANNEL_ONE, "2": CHANNEL_TWO},
        {"em:1": CHANNEL_ONE, "em:2": CHANNEL_TWO},
        {"channels": {"em1:1": CHANNEL_ONE, "em1:2": CHANNEL_TWO}},
    ],
    ids=["array", "result-status", "result-em", "keyed", "prefixed", "nested-prefixed"],
)
def test_payload_shapes_normalize_identically(payload) -> None:
    telemetry = StatusNormalizer().normalize(payload)

    assert telemetry.warning is None
    assert telemetry.channel_ids == [1, 2]
    assert telemetry.channels[1].power == 100.0
    assert telemetry.channels[1].power_factor == 0.8
    assert telemetry.channels[2].voltage == 232.0
    assert telemetry.total.power == 150.0
    assert telemetry.total.current == pytest.approx(0.75)
    assert telemetry.total.voltage == pytest.approx(231.0)


def test_single_channel_record_is_accepted() -> None:
    telemetry = StatusNormalizer().normalize({"id": 3, "act_power": "12.5"})

    assert telemetry.shape == "single"
    assert telemetry.channels[3].power == 12.5


def test_totals_skip_missing_values() -> None:
    telemetry = StatusNormalizer().normalize(
        {"status": [{"id": 1, "power": 10}, {"id": 2, "power": None}]}
    )

    assert telemetry.total.power == 10
    assert telemetry.total.reporting["power"] == 1
    assert telemetry.total.voltage is None
    assert telemetry.channels[2].power is None


def test_apparent_power_and_totals_power_factor_are_derived() -> None:
    telemetry = StatusNormalizer().normalize([CHANNEL_ONE, CHANNEL_TWO])

    assert telemetry.channels[1].apparent_power == pytest.approx(125.0)
    assert telemetry.channels[2].apparent_power == pytest.approx(50.0)
    assert telemetry.total.apparent_power == pytest.approx(175.0)
    assert telemetry.total.power_factor == pytest.approx(150.0 / 175.0)


def test_reported_apparent_power_wins_over_derivation() -> None:
    telemetry = StatusNormalizer().normalize(
        [{"id": 1, "power": 100, "pf": 0.5, "aprt_power": 180}]
    )

    assert telemetry.channels[1].apparent_power == 180


def test_duplicate_declared_ids_fall_back_to_positions() -> None:
    telemetry = StatusNormalizer().normalize(
        [{"id": 1, "power": 1}, {"id": 1, "power": 2}, {"power": 3}]
    )

    assert telemetry.channel_ids == [1, 2, 3]
    assert telemetry.channels[2].power == 2
    assert telemetry.get_channel(3).power == 3


def test_declared_ids_are_kept_when_unique() -> None:
    telemetry = StatusNormalizer().normalize(
        [{"id": 4, "power": 1}, {"id": 9, "power": 2}]
    )

    assert telemetry.channel_ids == [4, 9]
    assert telemetry.by_position[2].power == 2
    assert telemetry.get_channel("9").power == 2


def test_unrecognised_payload_returns_warning() -> None:
    telemetry = StatusNormalizer().normalize({"sys": {"uptime": 12}, "wifi": {}})

    assert telemetry.channels == {}
    assert telemetry.warning is not None
    assert "sys" in str(telemetry.warning)
    assert telemetry.total.power is None


@pytest.mark.parametrize(
    ("raw", "expected"),
    [(42.5, 42.5), (425, 42.5), (4250, 42.5), (42500, 42.5), ({"tC": 31}, 31.0)],
)
def test_temperature_scaling(raw, expected) -> None:
    assert normalize_temperature(raw) == expected


def test_implausible_temperature_is_dropped() -> None:
    assert normalize_temperature(-95) is None
    assert normalize_temperature("hot") is None


def test_temperature_found_under_sys() -> None:
    payload = {"result": {"sys": {"temperature": 415}, "status": [CHANNEL_ONE]}}

    assert extract_temperature(payload["result"], payload) == 41.5
    assert StatusNormalizer().normalize(payload).temperature == 41.5


def test_coerce_float_rejects_non_finite() -> None:
    assert coerce_float("nan") is None
    assert coerce_float(True) is None
    assert coerce_float(" 3.5 ") == 3.5


def test_oversized_integer_is_dropped() -> None:
    assert coerce_float(10**400) is None

    telemetry = StatusNormalizer().normalize(
        {"status": [{"id": 1, "power": 10**400, "voltage": 230.0}]}
    )

    assert telemetry.get_channel(1).power is None
    assert telemetry.get_channel(1).voltage == 230.0



def test_parse_notify_status_reads_channel() -> None:
    body = json.dumps(
        {
            "src": "em06p-aabb",
            "method": "NotifyStatus",
            "params": {"ts": 1700000000.5, "em": {"id": 2, "power": 150.2, "pf": 0.92}},
        }
    ).encode()

    event = parse_notify_status(body)

    assert event is not None
    assert event.channel_id == 2
    assert event.ts == 1700000000.5
    assert event.source == "em06p-aabb"
    assert event.reading.power == 150.2
    assert event.reading.apparent_power == pytest.approx(163.26, abs=0.01)


def test_parse_notify_status_accepts_emmerge_key() -> None:
    event = parse_notify_status(
        {"method": "NotifyStatus", "params": {"emmerge": {"id": 1, "power": 5}}}
    )

    assert event is not None
    assert event.channel_id == 1


def test_zero_power_push_clears_dependent_values() -> None:
    event = parse_notify_status(
        {"method": "NotifyStatus", "params": {"em": {"id": 1, "power": 0}}}
    )

    assert event is not None
    assert event.reading.current == 0.0
    assert event.reading.apparent_power == 0.0
    assert event.reading.power_factor == 0.0
    assert event.reading.voltage is None


@pytest.mark.parametrize(
    "body",
    [
        {"method": "NotifyEvent", "params": {"em": {"id": 1, "power": 5}}},
        {"method": "NotifyStatus", "params": {"ts": 1}},
        {"method": "NotifyStatus", "params": {"em": {"id": 0, "power": 5}}},
    ],
)
def test_pushes_without_reading_are_ignored(body) -> None:
    assert parse_notify_status(body) is None


@pytest.mark.parametrize("body", [b"not json", b"[1, 2]", b'{"params": {"em": {"power": 1}}}'])
def test_invalid_push_bodies_raise_value_error(body) -> None:
    with pytest.raises(ValueError):
        parse_notify_status(body)
