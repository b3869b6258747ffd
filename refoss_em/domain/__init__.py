"""Domain objects for normalised device telemetry."""

from __future__ import annotations

from .telemetry import (
    ENERGY_FIELDS,
    SUMMED_FIELDS,
    ChannelReading,
    ChannelTotals,
    DeviceTelemetry,
)

__all__ = [
    "ENERGY_FIELDS",
    "SUMMED_FIELDS",
    "ChannelReading",
    "ChannelTotals",
    "DeviceTelemetry",
]
