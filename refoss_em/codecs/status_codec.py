"""Normalise ``Em.Status.Get`` and push payloads into canonical telemetry.

Firmware revisions disagree on where channel records live. Each known layout
is described by a :class:`ShapeParser`; :class:`StatusNormalizer` tries them
in order and the first one that yields channel records wins. Supporting a new
layout means appending a parser, not adding branches.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
import json
import logging
import math
import re
from typing import Any

from ..const import PUSH_METHOD, TEMPERATURE_MAX, TEMPERATURE_MIN
from ..domain.telemetry import (
    ENERGY_FIELDS,
    ChannelReading,
    ChannelTotals,
    DeviceTelemetry,
)
from ..errors import NormalizationWarning
from .refoss_models import NotifyEnvelope

_LOGGER = logging.getLogger(__name__)

FIELD_ALIASES: Mapping[str, tuple[str, ...]] = {
    "power": ("power", "act_power"),
    "voltage": ("voltage",),
    "current": ("current",),
    "power_factor": ("pf", "power_factor"),
    "apparent_power": ("apparent_power", "aprt_power", "apower"),
    **{name: (name,) for name in ENERGY_FIELDS},
}

CHANNEL_MARKERS: frozenset[str] = frozenset(
    {"id", "power", "act_power", "current", "voltage", *ENERGY_FIELDS}
)
CONTAINER_KEYS: tuple[str, ...] = (
    "result",
    "status",
    "channels",
    "em",
    "ems",
    "emeters",
    "data",
)
TEMPERATURE_PATHS: tuple[tuple[str, ...], ...] = (
    ("temperature",),
    ("temp",),
    ("device_temperature",),
    ("sys", "temperature"),
    ("sys", "temp"),
    ("sys", "device_temperature"),
    ("temperature:0",),
)

_PREFIXED_KEY_RE = re.compile(r"^[A-Za-z_]+\d*:(\d+)$")

ChannelRecords = list[tuple[Any, Mapping[str, Any]]]
Recurse = Callable[[Any], ChannelRecords | None]


def coerce_float(value: Any) -> float | None:
    """Return ``value`` as a finite float, or ``None``."""

    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        try:
            number = float(value)
        except OverflowError:
            return None
    elif isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            return None
    else:
        return None
    if math.isnan(number) or math.isinf(number):
        return None
    return number


def coerce_int(value: Any) -> int | None:
    """Return ``value`` as an int when it is integral."""

    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    number = coerce_float(value)
    if number is None or not number.is_integer():
        return None
    return int(number)


def looks_like_channel(record: Any) -> bool:
    """Return True when ``record`` carries at least one channel marker."""

    return isinstance(record, Mapping) and any(key in record for key in CHANNEL_MARKERS)


def parse_channel_record(channel_id: int, record: Mapping[str, Any]) -> ChannelReading:
    """Convert one raw channel record into a :class:`ChannelReading`."""

    values: dict[str, float | None] = {}
    for name, aliases in FIELD_ALIASES.items():
        values[name] = None
        for alias in aliases:
            number = coerce_float(record.get(alias))
            if number is not None:
                values[name] = number
                break

    power = values["power"]
    pf = values["power_factor"]
    if values["apparent_power"] is None and power is not None and pf:
        values["apparent_power"] = power / pf
    return ChannelReading(channel_id=channel_id, **values)


def normalize_temperature(value: Any) -> float | None:
    """Scale a raw temperature by magnitude and reject implausible values.

    Some firmware reports tenths, hundredths or thousandths of a degree.
    """

    if isinstance(value, Mapping):
        value = value.get("tC", value.get("value"))
    number = coerce_float(value)
    if number is None:
        return None
    magnitude = abs(number)
    if magnitude >= 15000:
        number /= 1000
    elif magnitude >= 1500:
        number /= 100
    elif magnitude >= 150:
        number /= 10
    if not TEMPERATURE_MIN <= number <= TEMPERATURE_MAX:
        return None
    return round(number, 2)


def extract_temperature(*sources: Any) -> float | None:
    """Return the first plausible temperature found along the known paths."""

    for source in sources:
        if not isinstance(source, Mapping):
            continue
        for path in TEMPERATURE_PATHS:
            node: Any = source
            for key in path:
                if not isinstance(node, Mapping) or key not in node:
                    node = None
                    break
                node = node[key]
            if node is None:
                continue
            temperature = normalize_temperature(node)
            if temperature is not None:
                return temperature
    return None


def _match_array(payload: Any, recurse: Recurse) -> ChannelRecords | None:
    if not isinstance(payload, list):
        return None
    records = [(item.get("id"), item) for item in payload if looks_like_channel(item)]
    return records or None


def _match_container(payload: Any, recurse: Recurse) -> ChannelRecords | None:
    if not isinstance(payload, Mapping):
        return None
    for key in CONTAINER_KEYS:
        if key in payload:
            found = recurse(payload[key])
            if found:
                return found
    return None


def _match_keyed(payload: Any, recurse: Recurse) -> ChannelRecords | None:
    if not isinstance(payload, Mapping):
        return None
    keyed: list[tuple[int, Any, Mapping[str, Any]]] = []
    for key, value in payload.items():
        index = coerce_int(key)
        if index is None or not looks_like_channel(value):
            continue
        keyed.append((index, value.get("id", index), value))
    keyed.sort(key=lambda item: item[0])
    return [(declared, record) for _, declared, record in keyed] or None


def _match_prefixed(payload: Any, recurse: Recurse) -> ChannelRecords | None:
    if not isinstance(payload, Mapping):
        return None
    keyed: list[tuple[int, Any, Mapping[str, Any]]] = []
    for key, value in payload.items():
        if not isinstance(key, str):
            continue
        match = _PREFIXED_KEY_RE.match(key)
        if match is None or not looks_like_channel(value):
            continue
        index = int(match.group(1))
        keyed.append((index, value.get("id", index), value))
    keyed.sort(key=lambda item: item[0])
    return [(declared, record) for _, declared, record in keyed] or None


def _match_single(payload: Any, recurse: Recurse) -> ChannelRecords | None:
    if looks_like_channel(payload) and "id" in payload:
        return [(payload["id"], payload)]
    return None


@dataclass(frozen=True, slots=True)
class ShapeParser:
    """A named strategy that locates channel records in a payload."""

    name: str
    match: Callable[[Any, Recurse], ChannelRecords | None]


DEFAULT_SHAPES: tuple[ShapeParser, ...] = (
    ShapeParser("array", _match_array),
    ShapeParser("container", _match_container),
    ShapeParser("keyed", _match_keyed),
    ShapeParser("prefixed", _match_prefixed),
    ShapeParser("single", _match_single),
)


class StatusNormalizer:
    """Turn heterogeneous status payloads into :class:`DeviceTelemetry`."""

    def __init__(
        self,
        parsers: Sequence[ShapeParser] = DEFAULT_SHAPES,
        *,
        max_depth: int = 4,
    ) -> None:
        """Initialise with an ordered list of shape parsers."""

        self._parsers = tuple(parsers)
        self._max_depth = max_depth

    @property
    def parsers(self) -> tuple[ShapeParser, ...]:
        """Return the configured parsers in priority order."""

        return self._parsers

    def locate(self, payload: Any) -> tuple[str, ChannelRecords] | None:
        """Return ``(shape_name, records)`` for the first matching parser."""

        return self._locate(payload, 0)

    def _locate(self, payload: Any, depth: int) -> tuple[str, ChannelRecords] | None:
        if depth > self._max_depth:
            return None

        def recurse(inner: Any) -> ChannelRecords | None:
            found = self._locate(inner, depth + 1)
            return found[1] if found else None

        for parser in self._parsers:
            records = parser.match(payload, recurse)
            if records:
                return parser.name, records
        return None

    def normalize(self, raw: Any) -> DeviceTelemetry:
        """Return canonical telemetry for ``raw``; never raises on odd shapes."""

        result = raw.get("result") if isinstance(raw, Mapping) else None
        telemetry = DeviceTelemetry(temperature=extract_temperature(result, raw))

        located = self.locate(raw)
        if located is None:
            if isinstance(raw, Mapping):
                top_keys = ",".join(map(str, raw))
            else:
                top_keys = type(raw).__name__
            warning = NormalizationWarning(
                f"No channel entries in status payload (top keys: {top_keys})"
            )
            _LOGGER.warning("%s", warning)
            telemetry.warning = warning
            return telemetry

        shape, records = located
        telemetry.shape = shape
        declared = [coerce_int(declared_id) for declared_id, _ in records]
        use_declared = all(cid is not None and cid > 0 for cid in declared) and len(
            set(declared)
        ) == len(declared)

        for position, ((declared_id, record), declared_int) in enumerate(
            zip(records, declared, strict=True), start=1
        ):
            channel_id = declared_int if use_declared else position
            reading = parse_channel_record(channel_id, record)
            telemetry.channels[channel_id] = reading
            telemetry.by_position[position] = reading
            if isinstance(declared_id, (str, int)):
                telemetry.by_declared_id.setdefault(declared_id, reading)
            if declared_int is not None:
                telemetry.by_declared_id.setdefault(declared_int, reading)

        telemetry.total = ChannelTotals.from_readings(telemetry.channels.values())
        return telemetry


@dataclass(slots=True)
class PushEvent:
    """A parsed ``NotifyStatus`` push for one channel."""

    channel_id: int
    reading: ChannelReading
    method: str
    ts: float | None = None
    source: str | None = None


def parse_notify_status(body: bytes | str | Mapping[str, Any]) -> PushEvent | None:
    """Parse a push body; return ``None`` for envelopes that carry no reading.

    Raises ``ValueError`` (including pydantic's ``ValidationError``) when the
    body is not valid JSON or not an object.
    """

    if isinstance(body, (bytes, bytearray)):
        body = body.decode("utf-8")
    if isinstance(body, str):
        body = json.loads(body)
    envelope = NotifyEnvelope.model_validate(body)
    if envelope.method != PUSH_METHOD:
        return None
    em = envelope.params.em
    if em is None:
        return None
    if em.id < 1:
        _LOGGER.debug("Ignoring push for non-positive channel id %s", em.id)
        return None

    reading = parse_channel_record(em.id, em.model_dump())
    if reading.power == 0:
        # power=0 pushes omit the dependent values; clear them instead of
        # leaving the previous non-zero readings in place
        if reading.apparent_power is None:
            reading.apparent_power = 0.0
        if reading.current is None:
            reading.current = 0.0
        if reading.power_factor is None:
            reading.power_factor = 0.0
    return PushEvent(
        channel_id=em.id,
        reading=reading,
        method=envelope.method,
        ts=envelope.params.ts,
        source=envelope.src,
    )


__all__ = [
    "CONTAINER_KEYS",
    "DEFAULT_SHAPES",
    "FIELD_ALIASES",
    "PushEvent",
    "ShapeParser",
    "StatusNormalizer",
    "coerce_float",
    "coerce_int",
    "extract_temperature",
    "looks_like_channel",
    "normalize_temperature",
    "parse_channel_record",
    "parse_notify_status",
]
