"""Pydantic models for Refoss local API payloads."""

from __future__ import annotations

from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator


class RpcErrorBody(BaseModel):
    """``error`` member of a JSON-RPC reply."""

    model_config = ConfigDict(extra="ignore")

    code: int | None = None
    message: str | None = None


class JsonRpcReply(BaseModel):
    """JSON-RPC reply frame (``{id, result}`` or ``{id, error}``)."""

    model_config = ConfigDict(extra="allow")

    id: int | str | None = None
    src: str | None = None
    result: Any = None
    error: RpcErrorBody | None = None


class LegacyErrorEnvelope(BaseModel):
    """Older firmware error shape: ``{code: <negative>, message}``."""

    model_config = ConfigDict(extra="allow")

    code: int
    message: str | None = None


class WebhookHook(BaseModel):
    """One entry of ``Webhook.List``."""

    model_config = ConfigDict(extra="allow")

    id: int
    name: str | None = None
    event: str | None = None
    cid: int | None = None
    enable: bool | None = None
    urls: list[str] = Field(default_factory=list)

    @field_validator("name", mode="before")
    @classmethod
    def _stringify_name(cls, value: Any) -> Any:
        """Firmware sometimes reports numeric names; keep them as strings."""

        if isinstance(value, (int, float)):
            return str(value)
        return value


class WebhookCreateResult(BaseModel):
    """``Webhook.Create`` result."""

    model_config = ConfigDict(extra="ignore")

    id: int
    rev: int | None = None


class PushChannelPayload(BaseModel):
    """Channel reading carried by a ``NotifyStatus`` push."""

    model_config = ConfigDict(extra="allow")

    id: int


class NotifyParams(BaseModel):
    """``params`` member of a push body."""

    model_config = ConfigDict(extra="allow")

    ts: float | None = None
    em: PushChannelPayload | None = Field(
        default=None, validation_alias=AliasChoices("em", "emmerge")
    )


class NotifyEnvelope(BaseModel):
    """Body the device POSTs to the webhook listener."""

    model_config = ConfigDict(extra="allow")

    src: str | None = None
    method: str | None = None
    params: NotifyParams = Field(default_factory=NotifyParams)


__all__ = [
    "JsonRpcReply",
    "LegacyErrorEnvelope",
    "NotifyEnvelope",
    "NotifyParams",
    "PushChannelPayload",
    "RpcErrorBody",
    "WebhookCreateResult",
    "WebhookHook",
]
