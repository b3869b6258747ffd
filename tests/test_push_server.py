from __future__ import annotations

import json
import logging

from aiohttp.test_utils import TestClient, TestServer
import pytest

from conftest import IDENTITY

from refoss_em.codecs.status_codec import PushEvent
from refoss_em.domain.telemetry import ChannelReading
from refoss_em.push_server import HandlerRegistry, PushDispatchServer


def _push(cid: int, power: float) -> str:
    return json.dumps(
        {"method": "NotifyStatus", "params": {"em": {"id": cid, "power": power}}}
    )


@pytest.mark.asyncio
async def test_push_is_acknowledged_and_dispatched() -> None:
    server = PushDispatchServer()
    device_events: list[PushEvent] = []
    channel_events: list[PushEvent] = []

    async def device_handler(event: PushEvent) -> None:
        device_events.append(event)

    server.register_handler(IDENTITY, device_handler)
    server.register_handler(f"{IDENTITY}:2", channel_events.append)

    async with TestClient(TestServer(server.app)) as client:
        resp = await client.post("/webhook/aa:bb:cc:dd:ee:ff", data=_push(2, 42.0))
        assert resp.status == 200
        assert await resp.json() == {"ok": True}
        await server.drain()

    assert [event.channel_id for event in device_events] == [2]
    assert channel_events[0].reading.power == 42.0
    assert channel_events[0].method == "NotifyStatus"


@pytest.mark.asyncio
async def test_bad_body_is_acknowledged_and_dropped(
    caplog: pytest.LogCaptureFixture,
) -> None:
    server = PushDispatchServer()
    events: list[PushEvent] = []
    server.register_handler(IDENTITY, events.append)

    with caplog.at_level(logging.WARNING):
        async with TestClient(TestServer(server.app)) as client:
            resp = await client.post(
                f"/webhook/{IDENTITY}", data='{"password": "hunter2", oops'
            )
            assert resp.status == 200
            assert await resp.json() == {"ok": True}
            await server.drain()

    assert events == []
    assert "Dropping unparseable push" in caplog.text
    assert "hunter2" not in caplog.text


@pytest.mark.asyncio
async def test_only_post_is_routed() -> None:
    server = PushDispatchServer()

    async with TestClient(TestServer(server.app)) as client:
        resp = await client.get(f"/webhook/{IDENTITY}")
        assert resp.status == 405
        resp = await client.post("/other", data="{}")
        assert resp.status == 404


@pytest.mark.asyncio
async def test_failing_handler_does_not_block_the_other(
    caplog: pytest.LogCaptureFixture,
) -> None:
    registry = HandlerRegistry()
    received: list[int] = []

    def broken(event: PushEvent) -> None:
        raise RuntimeError("handler bug")

    registry.register(IDENTITY, broken)
    registry.register(f"{IDENTITY}:1", lambda event: received.append(event.channel_id))

    event = PushEvent(channel_id=1, reading=ChannelReading(channel_id=1), method="x")
    with caplog.at_level(logging.ERROR):
        invoked = await registry.dispatch(IDENTITY, event)

    assert invoked == 2
    assert received == [1]
    assert "handler bug" in caplog.text


@pytest.mark.asyncio
async def test_dispatch_channel_skips_device_handler() -> None:
    registry = HandlerRegistry()
    calls: list[str] = []
    registry.register(IDENTITY, lambda event: calls.append("device"))
    registry.register(f"{IDENTITY}:3", lambda event: calls.append("channel"))

    event = PushEvent(channel_id=3, reading=ChannelReading(channel_id=3), method="x")

    assert await registry.dispatch_channel(IDENTITY, event) is True
    assert calls == ["channel"]
    assert await registry.dispatch_channel("112233445566", event) is False


def test_registry_normalizes_keys() -> None:
    registry = HandlerRegistry()
    registry.register("aa-bb-cc-dd-ee-ff:2", print)

    assert f"{IDENTITY}:2" in registry
    assert registry.keys() == [f"{IDENTITY}:2"]
    assert registry.unregister(f"{IDENTITY}:2") is True
    assert len(registry) == 0


@pytest.mark.parametrize(
    "local_address",
    ["192.168.1.10", "http://192.168.1.10/", "192.168.1.10:80"],
)
def test_webhook_url(local_address: str) -> None:
    server = PushDispatchServer(port=8741)

    assert (
        server.webhook_url("aa:bb:cc:dd:ee:ff", local_address)
        == f"http://192.168.1.10:8741/webhook/{IDENTITY}"
    )


@pytest.mark.asyncio
async def test_start_binds_ephemeral_port() -> None:
    server = PushDispatchServer(port=0, host="127.0.0.1")

    await server.start()
    try:
        assert server.is_running
        assert server.port > 0
    finally:
        await server.stop()
    assert not server.is_running
