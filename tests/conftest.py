# ruff: noqa: D100,D101,D102,D103,D105,D107,INP001
from __future__ import annotations

import asyncio
from collections import deque
import json
from typing import Any, Callable

import pytest

from refoss_em.codecs.refoss_codec import raise_for_rpc_error
from refoss_em.config import ConnectionSettings
from refoss_em.errors import DeviceRpcError, TransportTimeoutError

IDENTITY = "AABBCCDDEEFF"


class MockResponse:
    """Stand-in for ``aiohttp.ClientResponse`` used as an async context manager."""

    def __init__(
        self,
        status: int,
        body: Any = None,
        *,
        headers: dict[str, str] | None = None,
        text: str | None = None,
    ) -> None:
        self.status = status
        self.headers = headers or {}
        if text is None:
            text = "" if body is None else json.dumps(body)
        self._text = text

    async def __aenter__(self) -> MockResponse:
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        return None

    async def text(self) -> str:
        return self._text


class FakeSession:
    """Record requests and replay queued responses or exceptions."""

    def __init__(self, *responses: MockResponse | BaseException) -> None:
        self.responses: deque[MockResponse | BaseException] = deque(responses)
        self.calls: list[dict[str, Any]] = []

    def queue(self, *responses: MockResponse | BaseException) -> None:
        self.responses.extend(responses)

    def request(self, method: str, url: str, **kwargs: Any) -> MockResponse:
        self.calls.append({"method": method, "url": url, **kwargs})
        if not self.responses:
            raise AssertionError(f"unexpected request {method} {url}")
        item = self.responses.popleft()
        if isinstance(item, BaseException):
            raise item
        return item


class FakeHost:
    """Host collaborator recording every side effect."""

    def __init__(self) -> None:
        self.capabilities: dict[str, Any] = {}
        self.set_calls: list[tuple[str, Any]] = []
        self.availability: list[bool] = []
        self.triggers: list[tuple[str, dict[str, Any]]] = []
        self.fail_capabilities: set[str] = set()

    async def set_capability(self, name: str, value: Any) -> None:
        if name in self.fail_capabilities:
            raise RuntimeError(f"cannot store {name}")
        self.set_calls.append((name, value))
        self.capabilities[name] = value

    def set_available(self, available: bool) -> None:
        self.availability.append(available)

    async def emit_trigger(self, kind: str, payload: dict[str, Any]) -> None:
        self.triggers.append((kind, dict(payload)))


class FakeDevice:
    """Simulated device exposing both the HTTP and websocket client surfaces.

    Hooks live in ``self.hooks``; ``Webhook.Create`` and ``Webhook.Delete``
    mutate them so registration idempotency can be checked end to end.
    """

    def __init__(
        self,
        *,
        supported: Any = None,
        rejected_events: set[str] | None = None,
        status: Any = None,
    ) -> None:
        self.hooks: list[dict[str, Any]] = []
        self.supported = supported
        self.rejected_events = rejected_events or set()
        self.status_results: deque[Any] = deque()
        self.default_status = status
        self.rpc_calls: list[tuple[str, dict[str, Any]]] = []
        self.status_calls = 0
        self.list_error: BaseException | None = None
        self._next_id = 1

    # HTTP surface -------------------------------------------------------
    async def list_webhooks(self) -> Any:
        if self.list_error is not None:
            raise self.list_error
        return {"hooks": [dict(hook) for hook in self.hooks], "rev": self._next_id}

    async def get_supported_webhook_events(self) -> Any:
        if isinstance(self.supported, BaseException):
            raise self.supported
        return self.supported

    async def get_em_status(self) -> Any:
        self.status_calls += 1
        item = self.status_results.popleft() if self.status_results else self.default_status
        if isinstance(item, BaseException):
            raise item
        return item

    # websocket surface ---------------------------------------------------
    async def call(
        self, method: str, params: Any = None, timeout: float | None = None
    ) -> Any:
        params = dict(params or {})
        self.rpc_calls.append((method, params))
        if method == "Webhook.Create":
            if params["event"] in self.rejected_events:
                raise DeviceRpcError(-103, f"unsupported event {params['event']}")
            hook = {
                "id": self._next_id,
                "name": params["name"],
                "event": params["event"],
                "cid": params["cid"],
                "enable": params["enable"],
                "urls": list(params["urls"]),
            }
            self._next_id += 1
            self.hooks.append(hook)
            return {"id": hook["id"], "rev": self._next_id}
        if method == "Webhook.Delete":
            before = len(self.hooks)
            self.hooks = [hook for hook in self.hooks if hook["id"] != params["id"]]
            if len(self.hooks) == before:
                raise DeviceRpcError(-105, "no such hook")
            return {"rev": self._next_id}
        raise_for_rpc_error({"error": {"code": -114, "message": f"no {method}"}})
        return None

    def add_foreign_hook(self, name: str, event: str = "em.power_change") -> None:
        self.hooks.append(
            {"id": self._next_id, "name": name, "event": event, "cid": 1, "urls": []}
        )
        self._next_id += 1

    def names(self) -> list[str]:
        return [hook["name"] for hook in self.hooks]


def status_payload(*channels: dict[str, Any], **extra: Any) -> dict[str, Any]:
    """Return an ``Em.Status.Get`` style result."""

    return {"status": [dict(channel) for channel in channels], **extra}


async def immediate_sleep(delay: float) -> None:
    await asyncio.sleep(0)


@pytest.fixture
def settings() -> ConnectionSettings:
    return ConnectionSettings(host="192.168.1.50", poll_interval=10)


@pytest.fixture
def host() -> FakeHost:
    return FakeHost()


@pytest.fixture
def device_factory() -> Callable[..., FakeDevice]:
    return FakeDevice


@pytest.fixture
def timeout_error() -> TransportTimeoutError:
    return TransportTimeoutError("Timeout calling /rpc/Em.Status.Get")
