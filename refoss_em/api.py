from __future__ import annotations

import asyncio
from collections.abc import Mapping
import json
import logging
import time
from typing import Any
from urllib.parse import urlencode

import aiohttp

from .backend.digest import DigestAuth, parse_digest_challenge
from .backend.sanitize import redact_text
from .codecs.refoss_codec import decode_rpc_envelope
from .const import (
    DEFAULT_HTTP_PORT,
    EM_ALL_MODULES_ID,
    EM_DATA_DEFAULT_WINDOW,
    METHOD_DEVICE_INFO,
    METHOD_EM_CONFIG,
    METHOD_EM_DATA,
    METHOD_EM_STATUS,
    METHOD_WEBHOOK_LIST,
    METHOD_WEBHOOK_SUPPORTED,
    REQUEST_TIMEOUT,
    RPC_PREFIX,
)
from .errors import (
    BadCredentialsError,
    HttpStatusError,
    InvalidJsonError,
    MissingCredentialsError,
    TransportError,
    TransportTimeoutError,
)

_LOGGER = logging.getLogger(__name__)

# Toggle to preview bodies in debug logs (redacted). Leave False by default.
API_LOG_PREVIEW = False

EM_STATUS_PATH = f"{METHOD_EM_STATUS}?id={EM_ALL_MODULES_ID}"


class RefossRESTClient:
    """Thin async client for the device's local ``/rpc`` HTTP API."""

    def __init__(
        self,
        session: aiohttp.ClientSession,
        host: str,
        username: str | None = None,
        password: str | None = None,
        *,
        port: int = DEFAULT_HTTP_PORT,
        timeout: float = REQUEST_TIMEOUT,
    ) -> None:
        """Initialise the client with the device address and credentials."""
        self._session = session
        self._host = host
        self._port = port
        self._timeout = timeout
        self._auth: DigestAuth | None = None
        if username:
            self._auth = DigestAuth(username, password or "")

    @property
    def host(self) -> str:
        """Return the device address."""

        return self._host

    @property
    def has_credentials(self) -> bool:
        """Return True when a username is configured."""

        return self._auth is not None

    def _url(self, uri: str) -> str:
        if self._port == DEFAULT_HTTP_PORT:
            return f"http://{self._host}{uri}"
        return f"http://{self._host}:{self._port}{uri}"

    async def get(self, path: str) -> Any:
        """GET ``/rpc/<path>`` and return the decoded result."""

        return await self._request("GET", path)

    async def post(self, path: str, body: Mapping[str, Any] | None = None) -> Any:
        """POST a JSON body to ``/rpc/<path>`` and return the decoded result."""

        return await self._request("POST", path, body=body)

    async def _request(
        self,
        method: str,
        path: str,
        *,
        body: Mapping[str, Any] | None = None,
    ) -> Any:
        """Perform a request with one Digest challenge/response retry.

        Returns the ``result`` member of the reply. Errors are logged WITHOUT
        secrets.
        """
        uri = f"{RPC_PREFIX}/{path.lstrip('/')}"
        payload = json.dumps(body if body is not None else {}) if method == "POST" else None
        headers: dict[str, str] = {}
        if payload is not None:
            headers["Content-Type"] = "application/json"

        status, resp_headers, text = await self._send(method, uri, headers, payload)
        if status == 401:
            if self._auth is None:
                raise MissingCredentialsError(
                    "Device requires authentication; set username and password"
                )
            challenge = parse_digest_challenge(resp_headers.get("WWW-Authenticate"))
            if not challenge:
                _LOGGER.error("HTTP %s %s -> 401 without a Digest challenge", method, uri)
                raise BadCredentialsError("Device sent 401 without a Digest challenge")
            headers["Authorization"] = self._auth.build_authorization(
                method, uri, challenge
            )
            status, resp_headers, text = await self._send(method, uri, headers, payload)
            if status == 401:
                raise BadCredentialsError(
                    "Authentication failed; check username and password"
                )

        if status != 200:
            _LOGGER.error(
                "HTTP error %s %s -> %s; body=%s",
                method,
                uri,
                status,
                redact_text(text)[:200],
            )
            raise HttpStatusError(status, uri)

        try:
            data = json.loads(text)
        except ValueError as err:
            raise InvalidJsonError(
                f"Invalid JSON from {uri}: {redact_text(text)[:120]}"
            ) from err
        return decode_rpc_envelope(data)

    async def _send(
        self,
        method: str,
        uri: str,
        headers: Mapping[str, str],
        payload: str | None,
    ) -> tuple[int, Mapping[str, str], str]:
        """Send one request and return ``(status, headers, body_text)``."""

        url = self._url(uri)
        _LOGGER.debug("HTTP %s %s", method, url)
        try:
            async with self._session.request(
                method,
                url,
                headers=dict(headers),
                data=payload,
                timeout=aiohttp.ClientTimeout(total=self._timeout),
            ) as resp:
                text = await resp.text()
                if API_LOG_PREVIEW:
                    _LOGGER.debug(
                        "HTTP %s -> %s, body[0:200]=%r",
                        url,
                        resp.status,
                        redact_text(text)[:200],
                    )
                else:
                    _LOGGER.debug("HTTP %s -> %s", url, resp.status)
                return resp.status, resp.headers, text
        except asyncio.CancelledError:
            raise
        except TimeoutError as err:
            raise TransportTimeoutError(f"Timeout calling {uri}") from err
        except aiohttp.ClientError as err:
            _LOGGER.debug(
                "Request %s %s failed (sanitized): %s",
                method,
                uri,
                redact_text(str(err)),
            )
            raise TransportError(f"Request to {uri} failed: {err}") from err

    # ----------------- Public API -----------------

    async def get_device_info(self) -> Any:
        """Return device identity (model, MAC, firmware)."""

        return await self.get(METHOD_DEVICE_INFO)

    async def get_em_status(self) -> Any:
        """Return live readings for every EM module."""

        return await self.get(EM_STATUS_PATH)

    async def get_em_data(
        self, start_ts: int | None = None, end_ts: int | None = None
    ) -> Any:
        """Return historical energy data; defaults to the last 24 hours."""

        end = end_ts or int(time.time())
        start = start_ts or end - EM_DATA_DEFAULT_WINDOW
        query = urlencode({"id": EM_ALL_MODULES_ID, "start_ts": start, "end_ts": end})
        return await self.get(f"{METHOD_EM_DATA}?{query}")

    async def get_em_config(self) -> Any:
        """Return per-channel configuration (names)."""

        return await self.get(f"{METHOD_EM_CONFIG}?id={EM_ALL_MODULES_ID}")

    async def list_webhooks(self) -> Any:
        """Return the device's webhook subscriptions."""

        return await self.get(METHOD_WEBHOOK_LIST)

    async def get_supported_webhook_events(self) -> Any:
        """Return the webhook event types the firmware supports."""

        return await self.get(METHOD_WEBHOOK_SUPPORTED)


__all__ = ["EM_STATUS_PATH", "RefossRESTClient"]
