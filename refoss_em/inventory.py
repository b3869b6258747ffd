"""Channel inventory and identity helpers for Refoss energy monitors."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
import re
from typing import Any


@dataclass(frozen=True, slots=True)
class ChannelDescriptor:
    """A CT channel exposed by a device model."""

    id: int
    label: str

    def __post_init__(self) -> None:
        """Reject non-positive channel ids."""

        if self.id < 1:
            msg = f"channel id must be positive, got {self.id}"
            raise ValueError(msg)


def _phase_labels(groups: int) -> tuple[ChannelDescriptor, ...]:
    """Return descriptors labelled A1..An, B1..Bn, C1..Cn."""

    labels = [f"{phase}{index}" for phase in "ABC" for index in range(1, groups + 1)]
    return tuple(
        ChannelDescriptor(position, label)
        for position, label in enumerate(labels, start=1)
    )


def _em06p_channels() -> tuple[ChannelDescriptor, ...]:
    # EM06P wires two three-phase groups: A1 B1 C1 then A2 B2 C2
    labels = [f"{phase}{group}" for group in (1, 2) for phase in "ABC"]
    return tuple(
        ChannelDescriptor(position, label)
        for position, label in enumerate(labels, start=1)
    )


MODEL_CHANNELS: dict[str, tuple[ChannelDescriptor, ...]] = {
    "em01p": (ChannelDescriptor(1, "A1"),),
    "em06p": _em06p_channels(),
    "em16p": _phase_labels(6),
}

_HEX_SEPARATORS_RE = re.compile(r"[:\-\s]")


def normalize_identity(mac: Any) -> str:
    """Return the canonical device identity: upper-case MAC without separators."""

    if mac is None:
        return ""
    return _HEX_SEPARATORS_RE.sub("", str(mac)).upper()


def channel_key(identity: Any, channel_id: int) -> str:
    """Return the dispatch key for one channel of a device."""

    return f"{normalize_identity(identity)}:{int(channel_id)}"


def channels_for_model(model: str | None) -> tuple[ChannelDescriptor, ...]:
    """Return the channel layout for ``model``; unknown models get none."""

    if not model:
        return ()
    return MODEL_CHANNELS.get(str(model).strip().lower(), ())


def channel_ids_for(
    model: str | None, reported: Iterable[int] = ()
) -> tuple[int, ...]:
    """Return channel ids from the model table, else from what the device reported."""

    known = channels_for_model(model)
    if known:
        return tuple(channel.id for channel in known)
    return tuple(sorted({int(cid) for cid in reported if int(cid) > 0}))


__all__ = [
    "MODEL_CHANNELS",
    "ChannelDescriptor",
    "channel_ids_for",
    "channel_key",
    "channels_for_model",
    "normalize_identity",
]
