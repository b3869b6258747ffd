"""Inbound webhook listener that routes device pushes to coordinators."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
import inspect
import logging
from typing import Any

from aiohttp import web
from pydantic import ValidationError

from .backend.sanitize import mask_identifier, redact_text
from .codecs.status_codec import PushEvent, parse_notify_status
from .const import WEBHOOK_PATH_PREFIX, WEBHOOK_PORT
from .inventory import channel_key, normalize_identity

_LOGGER = logging.getLogger(__name__)

PushHandler = Callable[[PushEvent], Awaitable[Any] | Any]

ACK_BODY = {"ok": True}


class HandlerRegistry:
    """Map dispatch keys (``IDENTITY`` or ``IDENTITY:cid``) to handlers."""

    def __init__(self) -> None:
        self._handlers: dict[str, PushHandler] = {}

    @staticmethod
    def normalize_key(key: str) -> str:
        """Return ``key`` with its identity part canonicalised."""

        identity, sep, cid = str(key).partition(":")
        if sep:
            return f"{normalize_identity(identity)}:{cid.strip()}"
        return normalize_identity(identity)

    def register(self, key: str, handler: PushHandler) -> None:
        """Install ``handler`` for ``key``, replacing any previous one."""

        normalized = self.normalize_key(key)
        if normalized in self._handlers:
            _LOGGER.debug("Replacing push handler for %s", mask_identifier(normalized))
        self._handlers[normalized] = handler

    def unregister(self, key: str) -> bool:
        """Remove the handler for ``key``; return True if one was registered."""

        return self._handlers.pop(self.normalize_key(key), None) is not None

    def get(self, key: str) -> PushHandler | None:
        """Return the handler for ``key`` if registered."""

        return self._handlers.get(self.normalize_key(key))

    def __contains__(self, key: object) -> bool:
        return isinstance(key, str) and self.normalize_key(key) in self._handlers

    def __len__(self) -> int:
        return len(self._handlers)

    def keys(self) -> list[str]:
        """Return the registered keys."""

        return list(self._handlers)

    async def dispatch(self, identity: str, event: PushEvent) -> int:
        """Invoke the device and channel handlers for ``event``.

        Each handler runs independently; a failing handler is logged and does
        not prevent the other from running. Returns how many were invoked.
        """

        invoked = 0
        for key in (normalize_identity(identity), channel_key(identity, event.channel_id)):
            if await self._invoke(key, event):
                invoked += 1
        return invoked

    async def dispatch_channel(self, identity: str, event: PushEvent) -> bool:
        """Invoke only the ``identity:cid`` handler for ``event``."""

        return await self._invoke(channel_key(identity, event.channel_id), event)

    async def _invoke(self, key: str, event: PushEvent) -> bool:
        handler = self._handlers.get(key)
        if handler is None:
            return False
        try:
            result = handler(event)
            if inspect.isawaitable(result):
                await result
        except asyncio.CancelledError:
            raise
        except Exception:
            _LOGGER.exception("Push handler for %s failed", mask_identifier(key))
        return True


class PushDispatchServer:
    """Single shared HTTP listener for ``POST /webhook/<identity>``.

    Requests are acknowledged with ``200 {"ok": true}`` before the body is
    parsed; parsing and handler dispatch run in a background task.
    """

    def __init__(
        self,
        port: int = WEBHOOK_PORT,
        host: str = "0.0.0.0",  # noqa: S104
        *,
        registry: HandlerRegistry | None = None,
    ) -> None:
        """Build the aiohttp application; the socket is bound by ``start``."""

        self._host = host
        self._port = port
        self.registry = registry or HandlerRegistry()
        self._runner: web.AppRunner | None = None
        self._pending: set[asyncio.Task] = set()
        self.app = web.Application()
        self.app.router.add_post(f"{WEBHOOK_PATH_PREFIX}{{identity}}", self._handle_push)

    @property
    def port(self) -> int:
        """Return the bound port (the configured one until started)."""

        return self._port

    @property
    def is_running(self) -> bool:
        """Return True while the listener is bound."""

        return self._runner is not None

    def register_handler(self, key: str, handler: PushHandler) -> None:
        """Register a handler for a device identity or ``identity:cid`` key."""

        self.registry.register(key, handler)

    def unregister_handler(self, key: str) -> bool:
        """Remove a previously registered handler."""

        return self.registry.unregister(key)

    def webhook_url(self, identity: str, local_address: str) -> str:
        """Return the URL a device should POST pushes to."""

        host = local_address.strip()
        if host.startswith("http://"):
            host = host[len("http://") :]
        host = host.rstrip("/")
        name, sep, maybe_port = host.rpartition(":")
        if sep and maybe_port.isdigit() and ":" not in name:
            host = name
        return f"http://{host}:{self._port}{WEBHOOK_PATH_PREFIX}{normalize_identity(identity)}"

    async def start(self) -> None:
        """Bind the listener."""

        if self._runner is not None:
            return
        runner = web.AppRunner(self.app, access_log=None)
        await runner.setup()
        site = web.TCPSite(runner, self._host, self._port)
        try:
            await site.start()
        except OSError:
            await runner.cleanup()
            raise
        self._runner = runner
        addresses = runner.addresses
        if addresses:
            self._port = int(addresses[0][1])
        _LOGGER.info("Webhook listener on %s:%s", self._host, self._port)

    async def stop(self) -> None:
        """Finish in-flight dispatches and release the socket."""

        await self.drain()
        if self._runner is None:
            return
        runner, self._runner = self._runner, None
        await runner.cleanup()
        _LOGGER.info("Webhook listener stopped")

    async def drain(self) -> None:
        """Wait for all background dispatch tasks to finish."""

        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def _handle_push(self, request: web.Request) -> web.StreamResponse:
        identity = request.match_info["identity"]
        body = await request.read()

        response = web.json_response(ACK_BODY)
        await response.prepare(request)
        await response.write_eof()

        task = asyncio.get_running_loop().create_task(self._process(identity, body))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return response

    async def _process(self, identity: str, body: bytes) -> None:
        try:
            event = parse_notify_status(body)
        except (ValueError, ValidationError) as err:
            _LOGGER.warning(
                "Dropping unparseable push for %s: %s; body=%s",
                mask_identifier(identity),
                err,
                redact_text(body.decode("utf-8", "replace"))[:200],
            )
            return
        if event is None:
            _LOGGER.debug(
                "Ignoring push without a channel reading for %s",
                mask_identifier(identity),
            )
            return
        invoked = await self.registry.dispatch(identity, event)
        if not invoked:
            _LOGGER.debug(
                "No handler for push from %s (channel %s)",
                mask_identifier(identity),
                event.channel_id,
            )


__all__ = ["HandlerRegistry", "PushDispatchServer", "PushHandler"]
