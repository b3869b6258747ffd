"""Codec helpers for Refoss RPC envelopes and webhook payloads."""

from __future__ import annotations

from collections.abc import Mapping
import logging
from typing import Any

from pydantic import ValidationError

from ..errors import DeviceRpcError
from .refoss_models import (
    JsonRpcReply,
    LegacyErrorEnvelope,
    WebhookCreateResult,
    WebhookHook,
)

_LOGGER = logging.getLogger(__name__)


def raise_for_rpc_error(payload: Any) -> None:
    """Raise ``DeviceRpcError`` for either known error envelope."""

    if not isinstance(payload, Mapping):
        return
    error = payload.get("error")
    if isinstance(error, Mapping):
        try:
            reply = JsonRpcReply.model_validate(payload)
        except ValidationError:
            code = error.get("code")
            if not isinstance(code, int) or isinstance(code, bool):
                code = None
            raise DeviceRpcError(code, str(error.get("message", error))) from None
        body = reply.error
        raise DeviceRpcError(body.code if body else None, body.message if body else None)

    code = payload.get("code")
    if isinstance(code, int) and not isinstance(code, bool) and code < 0:
        try:
            envelope = LegacyErrorEnvelope.model_validate(payload)
        except ValidationError:
            raise DeviceRpcError(code, str(payload.get("message"))) from None
        raise DeviceRpcError(envelope.code, envelope.message)


def decode_rpc_envelope(payload: Any) -> Any:
    """Return the ``result`` member, raising for error envelopes.

    Objects without a ``result`` key are returned unchanged; some firmware
    answers HTTP GETs with the bare result object.
    """

    raise_for_rpc_error(payload)
    if isinstance(payload, Mapping) and "result" in payload:
        return payload["result"]
    return payload


def decode_webhook_list(raw: Any) -> list[WebhookHook]:
    """Return validated hooks from a ``Webhook.List`` result."""

    if isinstance(raw, Mapping) and "result" in raw:
        raw = raw["result"]
    if isinstance(raw, list):
        raw = {"hooks": raw}
    if not isinstance(raw, Mapping):
        return []
    hooks: list[WebhookHook] = []
    for item in raw.get("hooks") or []:
        try:
            hooks.append(WebhookHook.model_validate(item))
        except ValidationError:
            _LOGGER.debug("Skipping malformed webhook entry: %r", item)
    return hooks


def decode_webhook_create(raw: Any) -> int:
    """Return the id assigned by ``Webhook.Create``."""

    if isinstance(raw, Mapping) and "result" in raw:
        raw = raw["result"]
    if isinstance(raw, int) and not isinstance(raw, bool):
        return raw
    try:
        return WebhookCreateResult.model_validate(raw).id
    except ValidationError as err:
        raise DeviceRpcError(None, f"Unexpected Webhook.Create result: {raw!r}") from err


def decode_supported_events(raw: Any) -> list[str]:
    """Return event names from ``Webhook.Supported.List``.

    ``types`` is a mapping of event name to metadata on current firmware and a
    plain list on older builds.
    """

    if isinstance(raw, Mapping) and "result" in raw:
        raw = raw["result"]
    types: Any = raw
    if isinstance(raw, Mapping) and "types" in raw:
        types = raw["types"]
    if isinstance(types, Mapping):
        return [str(key) for key in types]
    if isinstance(types, list):
        names: list[str] = []
        for item in types:
            if isinstance(item, str):
                names.append(item)
            elif isinstance(item, Mapping) and isinstance(item.get("event"), str):
                names.append(item["event"])
        return names
    return []


def decode_channel_names(raw: Any) -> dict[int, str]:
    """Return ``{channel_id: name}`` from an ``Em.Config.Get`` result."""

    if isinstance(raw, Mapping) and "result" in raw:
        raw = raw["result"]
    entries: Any = raw
    if isinstance(raw, Mapping):
        for key in ("config", "channels", "em"):
            if isinstance(raw.get(key), list):
                entries = raw[key]
                break
    if not isinstance(entries, list):
        return {}
    names: dict[int, str] = {}
    for entry in entries:
        if not isinstance(entry, Mapping):
            continue
        try:
            cid = int(entry.get("id"))
        except (TypeError, ValueError):
            continue
        name = entry.get("name")
        if isinstance(name, str) and name.strip():
            names[cid] = name.strip()
    return names


__all__ = [
    "decode_channel_names",
    "decode_rpc_envelope",
    "decode_supported_events",
    "decode_webhook_create",
    "decode_webhook_list",
    "raise_for_rpc_error",
]
