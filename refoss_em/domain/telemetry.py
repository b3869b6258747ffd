"""Canonical per-channel telemetry objects."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field, fields
from typing import Any

from ..errors import NormalizationWarning

ENERGY_FIELDS: tuple[str, ...] = (
    "month_energy",
    "week_energy",
    "day_energy",
    "month_ret_energy",
    "week_ret_energy",
    "day_ret_energy",
)

SUMMED_FIELDS: tuple[str, ...] = ("power", "current", "apparent_power", *ENERGY_FIELDS)


@dataclass(slots=True)
class ChannelReading:
    """One CT channel's values; ``None`` means the device did not report it."""

    channel_id: int
    power: float | None = None
    voltage: float | None = None
    current: float | None = None
    power_factor: float | None = None
    apparent_power: float | None = None
    month_energy: float | None = None
    week_energy: float | None = None
    day_energy: float | None = None
    month_ret_energy: float | None = None
    week_ret_energy: float | None = None
    day_ret_energy: float | None = None

    def values(self) -> dict[str, float]:
        """Return the reported values, omitting absent fields."""

        return {
            item.name: getattr(self, item.name)
            for item in fields(self)
            if item.name != "channel_id" and getattr(self, item.name) is not None
        }


@dataclass(slots=True)
class ChannelTotals:
    """Aggregates over the channels that reported each field."""

    power: float | None = None
    current: float | None = None
    apparent_power: float | None = None
    month_energy: float | None = None
    week_energy: float | None = None
    day_energy: float | None = None
    month_ret_energy: float | None = None
    week_ret_energy: float | None = None
    day_ret_energy: float | None = None
    voltage: float | None = None
    power_factor: float | None = None
    reporting: dict[str, int] = field(default_factory=dict)

    @classmethod
    def from_readings(cls, readings: Iterable[ChannelReading]) -> ChannelTotals:
        """Sum each field across readings that carry it; never zero-fill."""

        totals = cls()
        voltages: list[float] = []
        for reading in readings:
            for name in SUMMED_FIELDS:
                value = getattr(reading, name)
                if value is None:
                    continue
                current = getattr(totals, name)
                setattr(totals, name, value if current is None else current + value)
                totals.reporting[name] = totals.reporting.get(name, 0) + 1
            if reading.voltage is not None:
                voltages.append(reading.voltage)

        if voltages:
            totals.voltage = sum(voltages) / len(voltages)
            totals.reporting["voltage"] = len(voltages)
        if (
            totals.power is not None
            and totals.apparent_power is not None
            and totals.apparent_power > 0
        ):
            totals.power_factor = max(-1.0, min(1.0, totals.power / totals.apparent_power))
        return totals


@dataclass(slots=True)
class DeviceTelemetry:
    """Normalised status of a whole device."""

    channels: dict[int, ChannelReading] = field(default_factory=dict)
    by_position: dict[int, ChannelReading] = field(default_factory=dict)
    by_declared_id: dict[Any, ChannelReading] = field(default_factory=dict)
    total: ChannelTotals = field(default_factory=ChannelTotals)
    temperature: float | None = None
    shape: str | None = None
    warning: NormalizationWarning | None = None

    def get_channel(self, key: Any) -> ChannelReading | None:
        """Return a channel by canonical id, declared id or 1-based position."""

        if key in self.channels:
            return self.channels[key]
        if key in self.by_declared_id:
            return self.by_declared_id[key]
        try:
            position = int(key)
        except (TypeError, ValueError):
            return None
        return self.channels.get(position) or self.by_position.get(position)

    @property
    def channel_ids(self) -> list[int]:
        """Return the canonical channel ids in ascending order."""

        return sorted(self.channels)

    def as_dict(self) -> dict[str, Any]:
        """Return a JSON-friendly representation."""

        return {
            "channels": {cid: reading.values() for cid, reading in self.channels.items()},
            "total": {
                name: getattr(self.total, name)
                for name in (*SUMMED_FIELDS, "voltage", "power_factor")
                if getattr(self.total, name) is not None
            },
            "temperature": self.temperature,
            "shape": self.shape,
        }


__all__ = [
    "ENERGY_FIELDS",
    "SUMMED_FIELDS",
    "ChannelReading",
    "ChannelTotals",
    "DeviceTelemetry",
]
