from __future__ import annotations

import pytest

from conftest import FakeDevice

from refoss_em.errors import DeviceRpcError, TransportError
from refoss_em.webhooks import (
    WebhookRegistrar,
    channel_hook_name,
    is_own_hook,
)

URL = "http://192.168.1.10:8741/webhook/AABBCCDDEEFF"
SUPPORTED = {
    "types": {
        "em.power_change": {},
        "em.current_change": {},
        "emmerge.power_change": {},
    }
}


def _registrar(device: FakeDevice, **kwargs) -> WebhookRegistrar:
    return WebhookRegistrar(device, device, **kwargs)


@pytest.mark.parametrize(
    ("name", "own"),
    [
        ("refossem", True),
        ("refossem_ch4", True),
        ("homey-refoss", True),
        ("homeyrefoss_main", True),
        ("refossem_chX", False),
        ("refossem-backup", False),
        ("node-red", False),
        (None, False),
    ],
)
def test_is_own_hook(name, own) -> None:
    assert is_own_hook(name) is own


def test_channel_hook_name() -> None:
    assert channel_hook_name(3) == "refossem_ch3"


@pytest.mark.asyncio
async def test_register_prefers_aggregate_event() -> None:
    device = FakeDevice(supported=SUPPORTED)
    registrar = _registrar(device)

    hook_id = await registrar.register(URL, channel_ids=[1, 2, 3])

    assert hook_id == registrar.subscription_id
    assert device.hooks == [
        {
            "id": hook_id,
            "name": "refossem",
            "event": "emmerge.power_change",
            "cid": 1,
            "enable": True,
            "urls": [URL],
        }
    ]
    create = [params for method, params in device.rpc_calls if method == "Webhook.Create"]
    assert create[0]["repeat_period"] == 0


@pytest.mark.asyncio
async def test_register_is_idempotent() -> None:
    device = FakeDevice(supported=SUPPORTED)
    registrar = _registrar(device)

    first = await registrar.register(URL)
    second = await registrar.register(URL)

    assert first != second
    assert device.names() == ["refossem"]
    assert device.hooks[0]["id"] == second


@pytest.mark.asyncio
async def test_register_removes_legacy_and_keeps_foreign_hooks() -> None:
    device = FakeDevice(supported=SUPPORTED)
    device.add_foreign_hook("homey-refoss")
    device.add_foreign_hook("homeyrefoss_1")
    device.add_foreign_hook("refossem_ch2")
    device.add_foreign_hook("node-red")

    await _registrar(device).register(URL)

    assert sorted(device.names()) == ["node-red", "refossem"]


@pytest.mark.asyncio
async def test_event_hint_is_tried_first() -> None:
    device = FakeDevice(
        supported={"types": {"em.power_change": {}, "em.current_change": {}}}
    )

    await _registrar(device).register(URL, event_hint="em.current_change", channel_ids=[1])

    assert device.hooks[0]["event"] == "em.current_change"


@pytest.mark.asyncio
async def test_aggregate_rejection_falls_back_to_channel_hooks() -> None:
    device = FakeDevice(supported=SUPPORTED, rejected_events={"emmerge.power_change"})
    registrar = _registrar(device)

    await registrar.register(URL, channel_ids=[3, 1, 2])

    assert [(hook["name"], hook["cid"]) for hook in device.hooks] == [
        ("refossem", 1),
        ("refossem_ch2", 2),
        ("refossem_ch3", 3),
    ]
    assert {hook["event"] for hook in device.hooks} == {"em.power_change"}
    assert [sub.cid for sub in registrar.subscriptions] == [1, 2, 3]


@pytest.mark.asyncio
async def test_channel_hooks_respect_quota() -> None:
    device = FakeDevice(supported=SUPPORTED, rejected_events={"emmerge.power_change"})
    for index in range(17):
        device.add_foreign_hook(f"other{index}")

    await _registrar(device).register(URL, channel_ids=range(1, 7))

    own = [name for name in device.names() if is_own_hook(name)]
    assert own == ["refossem", "refossem_ch2", "refossem_ch3"]
    assert len(device.hooks) == 20


@pytest.mark.asyncio
async def test_every_event_rejected_raises_last_error() -> None:
    device = FakeDevice(
        supported={"types": ["em.power_change"]},
        rejected_events={"em.power_change"},
    )

    with pytest.raises(DeviceRpcError) as err:
        await _registrar(device).register(URL)
    assert err.value.code == -103


@pytest.mark.asyncio
async def test_discovery_failure_uses_default_event() -> None:
    device = FakeDevice(supported=TransportError("boom"))

    await _registrar(device).register(URL, channel_ids=[1])

    assert device.hooks[0]["event"] == "em.status_update"


@pytest.mark.asyncio
async def test_listing_failure_still_creates_hook() -> None:
    device = FakeDevice(supported=SUPPORTED)
    device.list_error = TransportError("boom")

    await _registrar(device).register(URL)

    assert device.names() == ["refossem"]
    assert not any(method == "Webhook.Delete" for method, _ in device.rpc_calls)


@pytest.mark.asyncio
async def test_unregister_deletes_only_own_hooks() -> None:
    device = FakeDevice(supported=SUPPORTED, rejected_events={"emmerge.power_change"})
    device.add_foreign_hook("node-red")
    registrar = _registrar(device)
    await registrar.register(URL, channel_ids=[1, 2])

    deleted = await registrar.unregister()

    assert deleted == 2
    assert device.names() == ["node-red"]
    assert registrar.subscriptions == []
    assert registrar.subscription_id is None


@pytest.mark.asyncio
async def test_unregister_falls_back_to_known_subscriptions() -> None:
    device = FakeDevice(supported=SUPPORTED)
    registrar = _registrar(device)
    await registrar.register(URL)
    device.list_error = TransportError("offline")

    assert await registrar.unregister() == 1
    assert device.hooks == []


@pytest.mark.asyncio
async def test_diagnostics_masks_identity() -> None:
    device = FakeDevice(supported=SUPPORTED)
    device.add_foreign_hook("node-red")
    registrar = _registrar(device)
    await registrar.register(URL)

    data = await registrar.diagnostics()

    assert data["subscriptions"][0]["url"].endswith("/AABBCC...EEFF")
    assert {hook["name"]: hook["own"] for hook in data["hooks"]} == {
        "node-red": False,
        "refossem": True,
    }
    assert "emmerge.power_change" in data["supported_events"]


@pytest.mark.asyncio
async def test_diagnostics_reports_errors() -> None:
    device = FakeDevice(supported=TransportError("nope"))
    device.list_error = TransportError("offline")

    data = await _registrar(device).diagnostics()

    assert data["hooks_error"] == "TransportError: offline"
    assert data["supported_events_error"] == "TransportError: nope"
