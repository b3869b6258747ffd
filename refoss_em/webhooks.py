"""Idempotent management of device-side webhook subscriptions."""

from __future__ import annotations

import asyncio
from collections.abc import Iterable, Sequence
from dataclasses import asdict, dataclass
import logging
import re
from typing import Any, Protocol

from .backend.sanitize import mask_identifier
from .codecs.refoss_codec import (
    decode_supported_events,
    decode_webhook_create,
    decode_webhook_list,
)
from .codecs.refoss_models import WebhookHook
from .const import (
    AGGREGATE_EVENT_PREFIX,
    CHANNEL_EVENT_PREFIX,
    DEFAULT_EM_EVENT,
    LEGACY_WEBHOOK_NAMES,
    LEGACY_WEBHOOK_PREFIXES,
    METHOD_WEBHOOK_CREATE,
    METHOD_WEBHOOK_DELETE,
    PREFERRED_AGGREGATE_EVENTS,
    PREFERRED_CHANNEL_EVENTS,
    WEBHOOK_CHANNEL_NAME_FMT,
    WEBHOOK_MAX_HOOKS,
    WEBHOOK_NAME,
)
from .errors import DeviceRpcError, ProtocolError, RefossError

_LOGGER = logging.getLogger(__name__)

_CHANNEL_HOOK_RE = re.compile(rf"^{re.escape(WEBHOOK_NAME)}_ch\d+$")


class WebhookListingClient(Protocol):
    """HTTP side of the registrar (read-only calls)."""

    async def list_webhooks(self) -> Any:
        """Return the raw ``Webhook.List`` result."""

    async def get_supported_webhook_events(self) -> Any:
        """Return the raw ``Webhook.Supported.List`` result."""


class WebhookMutatingClient(Protocol):
    """Websocket side of the registrar (create and delete)."""

    async def call(
        self, method: str, params: Any = None, timeout: float | None = None
    ) -> Any:
        """Run one RPC method and return its result."""


@dataclass(slots=True)
class WebhookSubscription:
    """A webhook this engine created on the device."""

    name: str
    event: str
    cid: int
    url: str
    id: int | None = None


def is_own_hook(name: str | None) -> bool:
    """Return True when ``name`` follows the current or a legacy naming scheme."""

    if not name:
        return False
    if name == WEBHOOK_NAME or _CHANNEL_HOOK_RE.match(name):
        return True
    if name in LEGACY_WEBHOOK_NAMES:
        return True
    return name.startswith(LEGACY_WEBHOOK_PREFIXES)


def channel_hook_name(channel_id: int) -> str:
    """Return the subscription name for an extra per-channel hook."""

    return WEBHOOK_CHANNEL_NAME_FMT.format(cid=channel_id)


def _ordered_candidates(
    supported: Sequence[str], preferred: Iterable[str], prefix: str
) -> list[str]:
    ordered = [event for event in preferred if event in supported]
    ordered.extend(
        event for event in supported if event.startswith(prefix) and event not in ordered
    )
    return ordered


class WebhookRegistrar:
    """Create and remove this engine's webhooks on one device.

    Reads go over HTTP. ``Webhook.Create`` carries an array of URLs, which the
    HTTP endpoint rejects, so creates and deletes use the websocket RPC client.
    """

    def __init__(
        self,
        rest: WebhookListingClient,
        rpc: WebhookMutatingClient,
        *,
        max_hooks: int = WEBHOOK_MAX_HOOKS,
    ) -> None:
        """Store the two clients; nothing is sent to the device yet."""

        self._rest = rest
        self._rpc = rpc
        self._max_hooks = max_hooks
        self._lock = asyncio.Lock()
        self.subscriptions: list[WebhookSubscription] = []

    @property
    def subscription_id(self) -> int | None:
        """Return the id of the primary subscription, if registered."""

        if not self.subscriptions:
            return None
        return self.subscriptions[0].id

    async def register(
        self,
        target_url: str,
        event_hint: str | None = None,
        channel_ids: Iterable[int] = (1,),
    ) -> int:
        """Replace this engine's hooks with fresh ones and return the primary id.

        Raises the last ``DeviceRpcError`` when every candidate event is
        rejected, and any ``ProtocolError`` from the websocket client.
        """

        channels = sorted({int(cid) for cid in channel_ids if int(cid) > 0}) or [1]
        async with self._lock:
            hooks = await self._list_hooks()
            await self._delete_own(hooks)
            self.subscriptions = []

            supported = await self._discover_events()
            aggregate, per_channel = self._candidate_events(supported, event_hint)

            primary: WebhookSubscription | None = None
            last_error: DeviceRpcError | None = None
            for event in aggregate:
                try:
                    primary = await self._create(WEBHOOK_NAME, event, 1, target_url)
                    break
                except DeviceRpcError as err:
                    last_error = err
                    _LOGGER.info("Aggregate webhook event %s rejected: %s", event, err)

            scoped_event: str | None = None
            if primary is None:
                for event in per_channel:
                    try:
                        primary = await self._create(WEBHOOK_NAME, event, 1, target_url)
                    except DeviceRpcError as err:
                        last_error = err
                        _LOGGER.info("Channel webhook event %s rejected: %s", event, err)
                        continue
                    scoped_event = event
                    break

            if primary is None:
                raise last_error or DeviceRpcError(None, "No webhook event accepted")
            self.subscriptions.append(primary)

            if scoped_event is not None and len(channels) > 1:
                foreign = 0
                if hooks is not None:
                    foreign = sum(1 for hook in hooks if not is_own_hook(hook.name))
                await self._create_channel_hooks(
                    scoped_event,
                    [cid for cid in channels if cid != 1],
                    target_url,
                    budget=self._max_hooks - foreign - 1,
                )

            _LOGGER.info(
                "Registered %d webhook(s) for event %s (primary id=%s)",
                len(self.subscriptions),
                primary.event,
                primary.id,
            )
            assert primary.id is not None
            return primary.id

    async def unregister(self) -> int:
        """Delete every hook matching the naming scheme; return how many."""

        async with self._lock:
            hooks = await self._list_hooks()
            if hooks is None:
                hooks = [
                    WebhookHook(id=sub.id, name=sub.name)
                    for sub in self.subscriptions
                    if sub.id is not None
                ]
            deleted = await self._delete_own(hooks)
            self.subscriptions = []
            return deleted

    async def diagnostics(self) -> dict[str, Any]:
        """Return the device's hook list and supported events for troubleshooting."""

        data: dict[str, Any] = {
            "subscriptions": [asdict(sub) for sub in self.subscriptions],
        }
        for sub in data["subscriptions"]:
            sub["url"] = _mask_url(sub["url"])
        try:
            hooks = decode_webhook_list(await self._rest.list_webhooks())
        except RefossError as err:
            data["hooks_error"] = f"{type(err).__name__}: {err}"
        else:
            data["hooks"] = [
                {
                    "id": hook.id,
                    "name": hook.name,
                    "event": hook.event,
                    "cid": hook.cid,
                    "enable": hook.enable,
                    "own": is_own_hook(hook.name),
                }
                for hook in hooks
            ]
        try:
            data["supported_events"] = decode_supported_events(
                await self._rest.get_supported_webhook_events()
            )
        except RefossError as err:
            data["supported_events_error"] = f"{type(err).__name__}: {err}"
        return data

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    async def _list_hooks(self) -> list[WebhookHook] | None:
        try:
            return decode_webhook_list(await self._rest.list_webhooks())
        except RefossError as err:
            _LOGGER.warning("Listing webhooks failed; continuing without cleanup: %s", err)
            return None

    async def _delete_own(self, hooks: Iterable[WebhookHook] | None) -> int:
        deleted = 0
        for hook in hooks or ():
            if not is_own_hook(hook.name):
                continue
            try:
                await self._rpc.call(METHOD_WEBHOOK_DELETE, {"id": hook.id})
            except (DeviceRpcError, ProtocolError) as err:
                _LOGGER.warning(
                    "Deleting webhook %s (%s) failed: %s", hook.id, hook.name, err
                )
                continue
            deleted += 1
            _LOGGER.debug("Deleted webhook %s (%s)", hook.id, hook.name)
        return deleted

    async def _discover_events(self) -> list[str]:
        try:
            return decode_supported_events(await self._rest.get_supported_webhook_events())
        except RefossError as err:
            _LOGGER.info("Webhook event discovery failed: %s", err)
            return []

    @staticmethod
    def _candidate_events(
        supported: Sequence[str], event_hint: str | None
    ) -> tuple[list[str], list[str]]:
        """Return ``(aggregate_events, per_channel_events)`` in trial order."""

        if not supported:
            aggregate: list[str] = []
            per_channel = [DEFAULT_EM_EVENT]
            if event_hint and event_hint.startswith(AGGREGATE_EVENT_PREFIX):
                aggregate.append(event_hint)
            elif event_hint and event_hint != DEFAULT_EM_EVENT:
                per_channel.insert(0, event_hint)
            return aggregate, per_channel

        aggregate = _ordered_candidates(
            supported, PREFERRED_AGGREGATE_EVENTS, AGGREGATE_EVENT_PREFIX
        )
        per_channel = _ordered_candidates(
            supported, PREFERRED_CHANNEL_EVENTS, CHANNEL_EVENT_PREFIX
        )
        if event_hint in aggregate:
            aggregate.remove(event_hint)
            aggregate.insert(0, event_hint)
        elif event_hint in per_channel:
            per_channel.remove(event_hint)
            per_channel.insert(0, event_hint)
        if not aggregate and not per_channel:
            per_channel.append(DEFAULT_EM_EVENT)
        return aggregate, per_channel

    async def _create(
        self, name: str, event: str, cid: int, url: str
    ) -> WebhookSubscription:
        params = {
            "name": name,
            "event": event,
            "cid": cid,
            "enable": True,
            "urls": [url],
            "repeat_period": 0,
        }
        result = await self._rpc.call(METHOD_WEBHOOK_CREATE, params)
        subscription = WebhookSubscription(
            name=name, event=event, cid=cid, url=url, id=decode_webhook_create(result)
        )
        _LOGGER.debug(
            "Created webhook %s id=%s event=%s cid=%s",
            name,
            subscription.id,
            event,
            cid,
        )
        return subscription

    async def _create_channel_hooks(
        self, event: str, channel_ids: Sequence[int], url: str, *, budget: int
    ) -> None:
        if budget < len(channel_ids):
            _LOGGER.warning(
                "Webhook quota allows %d of %d extra channel hooks",
                max(budget, 0),
                len(channel_ids),
            )
        for cid in channel_ids[: max(budget, 0)]:
            try:
                subscription = await self._create(channel_hook_name(cid), event, cid, url)
            except (DeviceRpcError, ProtocolError) as err:
                _LOGGER.warning("Channel %s webhook creation failed: %s", cid, err)
                continue
            self.subscriptions.append(subscription)


def _mask_url(url: str) -> str:
    head, sep, identity = url.rpartition("/")
    if not sep:
        return url
    return f"{head}/{mask_identifier(identity)}"


__all__ = [
    "WebhookRegistrar",
    "WebhookSubscription",
    "channel_hook_name",
    "is_own_hook",
]
