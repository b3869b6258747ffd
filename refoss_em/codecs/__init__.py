"""Codecs for Refoss device payloads."""

from __future__ import annotations

from .refoss_codec import (
    decode_channel_names,
    decode_rpc_envelope,
    decode_supported_events,
    decode_webhook_create,
    decode_webhook_list,
)
from .status_codec import PushEvent, StatusNormalizer, parse_notify_status

__all__ = [
    "PushEvent",
    "StatusNormalizer",
    "decode_channel_names",
    "decode_rpc_envelope",
    "decode_supported_events",
    "decode_webhook_create",
    "decode_webhook_list",
    "parse_notify_status",
]
