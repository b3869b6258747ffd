"""Per-device freshness coordinator combining webhook pushes with polling."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Iterable, Mapping
from contextlib import suppress
from dataclasses import dataclass, field
from enum import Enum
from functools import partial
import inspect
import logging
import random
from typing import Any, Protocol

import aiohttp

from .api import RefossRESTClient
from .availability import AvailabilityTracker
from .backend.sanitize import mask_identifier
from .backend.ws_rpc import RpcSocketClient
from .capabilities import (
    aggregate_capability_values,
    channel_capability_values,
    trigger_for,
)
from .codecs.status_codec import PushEvent, StatusNormalizer
from .config import ConnectionSettings
from .const import (
    FALLBACK_POLL_INTERVAL,
    METHOD_EM_STATUS,
    MIN_EFFECTIVE_INTERVAL,
    POLL_JITTER_RATIO,
    POLL_MAX_CONSEC_FAILS,
    POLL_RETRY_DELAY,
)
from .domain.telemetry import ChannelReading, DeviceTelemetry
from .errors import RefossError, TransportTimeoutError
from .inventory import channel_ids_for, channel_key, normalize_identity
from .push_server import PushDispatchServer
from .webhooks import WebhookRegistrar

_LOGGER = logging.getLogger(__name__)

SleepCallable = Callable[[float], Awaitable[Any]]
UniformCallable = Callable[[float, float], float]
RestFactory = Callable[[ConnectionSettings], Any]
RpcFactory = Callable[[ConnectionSettings], Any]


class HostDevice(Protocol):
    """Host-side collaborator that stores values and fires flow triggers.

    Each method may be a plain function or a coroutine function.
    """

    def set_capability(self, name: str, value: Any) -> Awaitable[None] | None:
        """Store a capability value."""

    def set_available(self, available: bool) -> Awaitable[None] | None:
        """Mark the device reachable or unreachable."""

    def emit_trigger(
        self, kind: str, payload: Mapping[str, Any]
    ) -> Awaitable[None] | None:
        """Fire a change trigger."""


class CoordinatorState(str, Enum):
    """Lifecycle states of a coordinator."""

    INITIALIZING = "initializing"
    WEBHOOK_ACTIVE = "webhook_active"
    POLLING_ONLY = "polling_only"
    UNREACHABLE = "unreachable"
    STOPPED = "stopped"


@dataclass
class ConnectionState:
    """Mutable per-device connection bookkeeping."""

    identity: str
    settings: ConnectionSettings
    state: CoordinatorState = CoordinatorState.INITIALIZING
    webhook_id: int | None = None
    webhook_active: bool = False
    availability: AvailabilityTracker = field(default_factory=AvailabilityTracker)

    @property
    def consecutive_failures(self) -> int:
        """Return the current run of failed polls."""

        return self.availability.consecutive_failures

    @property
    def available(self) -> bool:
        """Return the availability flag."""

        return self.availability.available


def default_rest_factory(
    session: aiohttp.ClientSession, settings: ConnectionSettings
) -> RefossRESTClient:
    """Return an HTTP client for ``settings``."""

    return RefossRESTClient(
        session,
        settings.host,
        settings.username,
        settings.password,
        port=settings.port,
    )


def default_rpc_factory(settings: ConnectionSettings) -> RpcSocketClient:
    """Return a websocket RPC client for ``settings``."""

    return RpcSocketClient(settings.host, port=settings.port)


def jittered_interval(
    interval: float, uniform: UniformCallable = random.uniform
) -> float:
    """Return ``interval`` spread by the jitter ratio, never below the floor."""

    jitter = interval * POLL_JITTER_RATIO * uniform(-1.0, 1.0)
    return max(MIN_EFFECTIVE_INTERVAL, interval + jitter)


class FreshnessCoordinator:
    """Keep one logical device's values fresh.

    The aggregate coordinator (``channel_id`` is None) owns the webhook
    lifecycle: it registers push delivery, polls the full status on every
    push and hands each polled channel to the channel coordinators through
    the push registry. A channel coordinator applies pushed readings
    directly. Both keep a jittered poll timer as a safety net.
    """

    def __init__(
        self,
        identity: str,
        settings: ConnectionSettings,
        host: HostDevice,
        server: PushDispatchServer,
        *,
        session: aiohttp.ClientSession | None = None,
        channel_id: int | None = None,
        channel_ids: Iterable[int] | None = None,
        model: str | None = None,
        local_address: str | None = None,
        event_hint: str | None = None,
        rest_factory: RestFactory | None = None,
        rpc_factory: RpcFactory | None = None,
        normalizer: StatusNormalizer | None = None,
        failure_threshold: int = POLL_MAX_CONSEC_FAILS,
        sleep: SleepCallable = asyncio.sleep,
        uniform: UniformCallable = random.uniform,
    ) -> None:
        """Prepare clients and state; nothing runs until ``async_start``."""

        if rest_factory is None:
            if session is None:
                raise ValueError("session or rest_factory is required")
            rest_factory = partial(default_rest_factory, session)

        self.connection = ConnectionState(
            identity=normalize_identity(identity),
            settings=settings,
            availability=AvailabilityTracker(threshold=failure_threshold),
        )
        self.channel_id = channel_id
        self._channel_ids = tuple(channel_ids) if channel_ids is not None else None
        self._model = model
        self._host = host
        self._server = server
        self._local_address = local_address
        self._event_hint = event_hint
        self._rest_factory = rest_factory
        self._rpc_factory = rpc_factory or default_rpc_factory
        self._normalizer = normalizer or StatusNormalizer()
        self._sleep = sleep
        self._uniform = uniform

        self._poll_lock = asyncio.Lock()
        self._webhook_lock = asyncio.Lock()
        self._timer_task: asyncio.Task | None = None
        self._timer_interval: float | None = None
        self._background: set[asyncio.Task] = set()
        self._values: dict[str, Any] = {}
        self._stopped = False
        self.telemetry: DeviceTelemetry | None = None

        self._build_clients()

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------
    @property
    def identity(self) -> str:
        """Return the normalised device identity."""

        return self.connection.identity

    @property
    def settings(self) -> ConnectionSettings:
        """Return the active connection settings."""

        return self.connection.settings

    @property
    def state(self) -> CoordinatorState:
        """Return the current lifecycle state."""

        return self.connection.state

    @property
    def available(self) -> bool:
        """Return the availability flag reported to the host."""

        return self.connection.available

    @property
    def is_channel(self) -> bool:
        """Return True for a single-channel coordinator."""

        return self.channel_id is not None

    @property
    def handler_key(self) -> str:
        """Return the push registry key this coordinator listens on."""

        if self.channel_id is not None:
            return channel_key(self.identity, self.channel_id)
        return self.identity

    @property
    def values(self) -> dict[str, Any]:
        """Return a copy of the last applied capability values."""

        return dict(self._values)

    @property
    def poll_interval(self) -> float | None:
        """Return the effective (jittered) interval of the running timer."""

        return self._timer_interval

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    async def async_start(self) -> None:
        """Register for pushes, run the first poll and set up delivery."""

        self._stopped = False
        self._set_state(CoordinatorState.INITIALIZING)
        self._server.register_handler(self.handler_key, self._handle_push)

        if self.is_channel:
            # readings arrive from the aggregate coordinator and pushes
            self._set_state(CoordinatorState.WEBHOOK_ACTIVE)
            self._start_timer(FALLBACK_POLL_INTERVAL)
            return

        await self.async_poll()
        await self._setup_webhook()

    async def async_stop(self) -> None:
        """Stop timers, drop handlers and delete this engine's webhooks."""

        self._stopped = True
        await self._stop_timer()
        for task in list(self._background):
            task.cancel()
        for task in list(self._background):
            with suppress(asyncio.CancelledError):
                await task
        self._background.clear()
        self._server.unregister_handler(self.handler_key)
        if not self.is_channel:
            await self._teardown_webhook()
        self._set_state(CoordinatorState.STOPPED)

    async def async_update_settings(
        self, settings: ConnectionSettings | Mapping[str, Any]
    ) -> None:
        """Apply new settings from the host.

        A host or credential change rebuilds the clients and re-registers the
        webhook. A poll interval change alone only restarts the timer, and
        only while polling is the primary path.
        """

        if not isinstance(settings, ConnectionSettings):
            settings = self.settings.merged(settings)
        previous = self.settings
        endpoint_changed = settings.endpoint_changed(previous)
        poll_changed = settings.poll_changed(previous)
        if not endpoint_changed and not poll_changed:
            return

        if endpoint_changed and not self.is_channel:
            await self._teardown_webhook()
        self.connection.settings = settings
        if endpoint_changed:
            _LOGGER.info(
                "%s: connection settings changed; rebuilding clients",
                mask_identifier(self.identity),
            )
            self._build_clients()

        if self.is_channel or self._stopped:
            return
        if endpoint_changed:
            await self._setup_webhook()
            return
        if not self.connection.webhook_active:
            self._start_timer(settings.poll_interval)

    # ------------------------------------------------------------------
    # Polling
    # ------------------------------------------------------------------
    async def async_poll(self) -> bool:
        """Poll the device once; return True when values were applied.

        A poll requested while another is in flight is skipped.
        """

        if self._stopped:
            return False
        if self._poll_lock.locked():
            _LOGGER.debug(
                "%s: poll already in flight; skipping", mask_identifier(self.identity)
            )
            return False
        async with self._poll_lock:
            try:
                raw = await self._get_status_with_retry()
                telemetry = self._normalizer.normalize(raw)
                if self.is_channel and telemetry.get_channel(self.channel_id) is None:
                    raise RefossError(f"Channel {self.channel_id} not found in status")
            except RefossError as err:
                await self._record_failure(err)
                return False
            except asyncio.CancelledError:
                raise
            except Exception as err:
                _LOGGER.exception(
                    "%s: unexpected error while polling", mask_identifier(self.identity)
                )
                await self._record_failure(err)
                return False

            self.telemetry = telemetry
            if self.is_channel:
                reading = telemetry.get_channel(self.channel_id)
                assert reading is not None
                await self._apply_reading(reading)
            else:
                await self._apply_aggregate(telemetry)
            await self._record_success()
            return True

    async def _get_status_with_retry(self) -> Any:
        try:
            return await self.rest.get_em_status()
        except TransportTimeoutError:
            _LOGGER.debug(
                "%s: %s timed out; retrying once",
                mask_identifier(self.identity),
                METHOD_EM_STATUS,
            )
        await self._sleep(POLL_RETRY_DELAY)
        return await self.rest.get_em_status()

    def _start_timer(self, interval: float) -> None:
        self._cancel_timer()
        effective = jittered_interval(interval, self._uniform)
        self._timer_interval = effective
        self._timer_task = asyncio.get_running_loop().create_task(
            self._poll_loop(effective), name=f"refoss-em-poll-{self.handler_key}"
        )
        _LOGGER.debug(
            "%s: polling every %.1fs", mask_identifier(self.handler_key), effective
        )

    def _cancel_timer(self) -> asyncio.Task | None:
        task, self._timer_task = self._timer_task, None
        self._timer_interval = None
        if task is None or task.done() or task is asyncio.current_task():
            return None
        task.cancel()
        return task

    async def _stop_timer(self) -> None:
        task = self._cancel_timer()
        if task is not None:
            with suppress(asyncio.CancelledError):
                await task

    async def _poll_loop(self, interval: float) -> None:
        while not self._stopped and self._timer_task is asyncio.current_task():
            await self._sleep(interval)
            await self.async_poll()

    # ------------------------------------------------------------------
    # Availability
    # ------------------------------------------------------------------
    async def _record_failure(self, err: BaseException) -> None:
        tracker = self.connection.availability
        changed = tracker.record_failure(err)
        if not changed:
            if tracker.available:
                _LOGGER.warning(
                    "%s: poll failed (%d/%d), keeping device available: %s",
                    mask_identifier(self.identity),
                    tracker.consecutive_failures,
                    tracker.threshold,
                    err,
                )
            else:
                _LOGGER.debug(
                    "%s: poll failed while unreachable: %s",
                    mask_identifier(self.identity),
                    err,
                )
            return
        _LOGGER.error(
            "%s: device unreachable after %d consecutive failures: %s",
            mask_identifier(self.identity),
            tracker.consecutive_failures,
            err,
        )
        self._set_state(CoordinatorState.UNREACHABLE)
        await self._call_host("set_available", False)

    async def _record_success(self) -> None:
        tracker = self.connection.availability
        previous_failures = tracker.consecutive_failures
        changed = tracker.record_success()
        if previous_failures and not changed:
            _LOGGER.info(
                "%s: poll recovered after %d failure(s)",
                mask_identifier(self.identity),
                previous_failures,
            )
        if not changed:
            return
        _LOGGER.info("%s: device reachable again", mask_identifier(self.identity))
        if self.is_channel:
            self._set_state(CoordinatorState.WEBHOOK_ACTIVE)
        else:
            self._set_state(CoordinatorState.POLLING_ONLY)
        await self._call_host("set_available", True)
        if not self.is_channel and not self._stopped:
            self._spawn(self._setup_webhook(), "webhook-resetup")

    def _set_state(self, state: CoordinatorState) -> None:
        previous = self.connection.state
        if previous is state:
            return
        self.connection.state = state
        _LOGGER.info(
            "%s: %s -> %s",
            mask_identifier(self.handler_key),
            previous.value,
            state.value,
        )

    def _spawn(self, coro: Awaitable[Any], name: str) -> None:
        task = asyncio.get_running_loop().create_task(
            coro, name=f"refoss-em-{name}-{self.handler_key}"
        )
        self._background.add(task)

        def _finalise(finished: asyncio.Task) -> None:
            self._background.discard(finished)
            if finished.cancelled():
                return
            exception = finished.exception()
            if exception is not None:
                _LOGGER.error(
                    "%s: background %s failed",
                    mask_identifier(self.handler_key),
                    name,
                    exc_info=exception,
                )

        task.add_done_callback(_finalise)

    # ------------------------------------------------------------------
    # Webhook lifecycle
    # ------------------------------------------------------------------
    async def _setup_webhook(self) -> None:
        async with self._webhook_lock:
            await self._stop_timer()
            if self._stopped:
                return
            try:
                if not self._local_address:
                    raise RefossError("No local address to receive webhooks on")
                url = self._server.webhook_url(self.identity, self._local_address)
                webhook_id = await self.registrar.register(
                    url, self._event_hint, self.subscription_channel_ids()
                )
            except asyncio.CancelledError:
                raise
            except Exception as err:
                _LOGGER.warning(
                    "%s: webhook setup failed, falling back to polling: %s",
                    mask_identifier(self.identity),
                    err,
                    exc_info=not isinstance(err, RefossError),
                )
                self.connection.webhook_active = False
                self.connection.webhook_id = None
                if self.connection.available:
                    self._set_state(CoordinatorState.POLLING_ONLY)
                self._start_timer(self.settings.poll_interval)
                return

            self.connection.webhook_id = webhook_id
            self.connection.webhook_active = True
            if self.connection.available:
                self._set_state(CoordinatorState.WEBHOOK_ACTIVE)
            self._start_timer(FALLBACK_POLL_INTERVAL)

    def subscription_channel_ids(self) -> tuple[int, ...]:
        """Return the channels to subscribe when the aggregate event is missing.

        Explicit ids win; otherwise the model table, then the channels seen in
        the last poll.
        """

        if self._channel_ids is not None:
            return self._channel_ids
        reported = self.telemetry.channel_ids if self.telemetry is not None else ()
        return channel_ids_for(self._model, reported) or (1,)

    async def _teardown_webhook(self) -> None:
        async with self._webhook_lock:
            if not self.connection.webhook_active:
                return
            try:
                deleted = await self.registrar.unregister()
            except RefossError as err:
                _LOGGER.warning(
                    "%s: webhook teardown failed: %s", mask_identifier(self.identity), err
                )
            else:
                _LOGGER.debug(
                    "%s: removed %d webhook(s)", mask_identifier(self.identity), deleted
                )
            self.connection.webhook_active = False
            self.connection.webhook_id = None

    def _build_clients(self) -> None:
        settings = self.settings
        self.rest = self._rest_factory(settings)
        self.rpc = self._rpc_factory(settings)
        self.registrar = WebhookRegistrar(self.rest, self.rpc)

    # ------------------------------------------------------------------
    # Push handling and value application
    # ------------------------------------------------------------------
    async def _handle_push(self, event: PushEvent) -> None:
        if self._stopped:
            return
        if not self.is_channel:
            _LOGGER.debug(
                "%s: push for channel %s; re-polling",
                mask_identifier(self.identity),
                event.channel_id,
            )
            await self.async_poll()
            return
        if event.channel_id != self.channel_id:
            return
        await self._apply_reading(event.reading)
        await self._record_success()

    async def _apply_aggregate(self, telemetry: DeviceTelemetry) -> None:
        for name, value in aggregate_capability_values(telemetry).items():
            await self._update_capability(name, value)
        for cid, reading in telemetry.channels.items():
            await self._server.registry.dispatch_channel(
                self.identity,
                PushEvent(channel_id=cid, reading=reading, method=METHOD_EM_STATUS),
            )

    async def _apply_reading(self, reading: ChannelReading) -> None:
        for name, value in channel_capability_values(reading).items():
            await self._update_capability(name, value)

    async def _update_capability(self, name: str, value: Any) -> None:
        if value is None:
            return
        if name in self._values and self._values[name] == value:
            return
        if not await self._call_host("set_capability", name, value):
            return
        self._values[name] = value
        trigger = trigger_for(name, value)
        if trigger is not None:
            await self._call_host("emit_trigger", *trigger)

    async def _call_host(self, method: str, *args: Any) -> bool:
        """Run one host side effect; a failure is logged and reported as False."""

        try:
            result = getattr(self._host, method)(*args)
            if inspect.isawaitable(result):
                await result
        except asyncio.CancelledError:
            raise
        except Exception:
            _LOGGER.exception(
                "%s: host %s%r failed", mask_identifier(self.handler_key), method, args
            )
            return False
        return True

    # ------------------------------------------------------------------
    # Diagnostics
    # ------------------------------------------------------------------
    def diagnostics(self) -> dict[str, Any]:
        """Return a JSON-serializable snapshot of this coordinator."""

        connection = self.connection
        data: dict[str, Any] = {
            "identity": mask_identifier(connection.identity),
            "channel_id": self.channel_id,
            "state": connection.state.value,
            "settings": connection.settings.redacted(),
            "webhook": {
                "active": connection.webhook_active,
                "id": connection.webhook_id,
                "subscription_ids": [
                    sub.id for sub in self.registrar.subscriptions
                ],
            },
            "availability": connection.availability.snapshot(),
            "poll_interval": self._timer_interval,
            "values": dict(self._values),
        }
        if self.telemetry is not None:
            data["telemetry"] = self.telemetry.as_dict()
        return data


__all__ = [
    "ConnectionState",
    "CoordinatorState",
    "FreshnessCoordinator",
    "HostDevice",
    "jittered_interval",
]
