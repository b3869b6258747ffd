"""Map canonical telemetry onto host capability names and triggers."""

from __future__ import annotations

from typing import Any

from .domain.telemetry import ChannelReading, DeviceTelemetry

CAP_POWER = "measure_power"
CAP_VOLTAGE = "measure_voltage"
CAP_CURRENT = "measure_current"
CAP_APPARENT_POWER = "measure_apparent_power"
CAP_POWER_FACTOR = "measure_power_factor"
CAP_TEMPERATURE = "measure_temperature"
CAP_MONTH_ENERGY = "meter_power"
CAP_WEEK_ENERGY = "meter_power_week"
CAP_DAY_ENERGY = "meter_power_day"
CAP_MONTH_EXPORTED = "meter_power.exported"

# reading field -> capability, in the order updates are applied
CHANNEL_CAPABILITIES: tuple[tuple[str, str], ...] = (
    ("power", CAP_POWER),
    ("voltage", CAP_VOLTAGE),
    ("current", CAP_CURRENT),
    ("month_energy", CAP_MONTH_ENERGY),
    ("apparent_power", CAP_APPARENT_POWER),
    ("power_factor", CAP_POWER_FACTOR),
    ("week_energy", CAP_WEEK_ENERGY),
    ("day_energy", CAP_DAY_ENERGY),
    ("month_ret_energy", CAP_MONTH_EXPORTED),
)

AGGREGATE_CAPABILITIES: tuple[tuple[str, str], ...] = (
    ("power", CAP_POWER),
    ("current", CAP_CURRENT),
    ("voltage", CAP_VOLTAGE),
    ("month_energy", CAP_MONTH_ENERGY),
    ("week_energy", CAP_WEEK_ENERGY),
    ("day_energy", CAP_DAY_ENERGY),
    ("apparent_power", CAP_APPARENT_POWER),
    ("month_ret_energy", CAP_MONTH_EXPORTED),
    ("power_factor", CAP_POWER_FACTOR),
)

TRIGGER_POWER_CHANGED = "power_changed"
TRIGGER_MONTH_ENERGY = "month_energy"
TRIGGER_WEEK_ENERGY = "week_energy"
TRIGGER_DAY_ENERGY = "day_energy"

# capability -> (trigger kind, payload key)
TRIGGER_FOR_CAPABILITY: dict[str, tuple[str, str]] = {
    CAP_POWER: (TRIGGER_POWER_CHANGED, "power"),
    CAP_MONTH_ENERGY: (TRIGGER_MONTH_ENERGY, "energy"),
    CAP_WEEK_ENERGY: (TRIGGER_WEEK_ENERGY, "energy"),
    CAP_DAY_ENERGY: (TRIGGER_DAY_ENERGY, "energy"),
}


def channel_capability_values(reading: ChannelReading) -> dict[str, float]:
    """Return ``{capability: value}`` for the fields ``reading`` carries."""

    values: dict[str, float] = {}
    for field_name, capability in CHANNEL_CAPABILITIES:
        value = getattr(reading, field_name)
        if value is not None:
            values[capability] = value
    return values


def aggregate_capability_values(telemetry: DeviceTelemetry) -> dict[str, float]:
    """Return device-level capability values from totals and temperature."""

    values: dict[str, float] = {}
    total = telemetry.total
    for field_name, capability in AGGREGATE_CAPABILITIES:
        value = getattr(total, field_name)
        if value is not None:
            values[capability] = value
    if telemetry.temperature is not None:
        values[CAP_TEMPERATURE] = telemetry.temperature
    return values


def trigger_for(capability: str, value: Any) -> tuple[str, dict[str, Any]] | None:
    """Return ``(kind, payload)`` to emit when ``capability`` changes."""

    entry = TRIGGER_FOR_CAPABILITY.get(capability)
    if entry is None:
        return None
    kind, key = entry
    return kind, {key: value}


__all__ = [
    "AGGREGATE_CAPABILITIES",
    "CAP_APPARENT_POWER",
    "CAP_CURRENT",
    "CAP_DAY_ENERGY",
    "CAP_MONTH_ENERGY",
    "CAP_MONTH_EXPORTED",
    "CAP_POWER",
    "CAP_POWER_FACTOR",
    "CAP_TEMPERATURE",
    "CAP_VOLTAGE",
    "CAP_WEEK_ENERGY",
    "CHANNEL_CAPABILITIES",
    "TRIGGER_FOR_CAPABILITY",
    "aggregate_capability_values",
    "channel_capability_values",
    "trigger_for",
]
