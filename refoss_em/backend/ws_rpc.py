"""Single-shot JSON-RPC calls over a hand-rolled websocket.

The device rejects array-valued parameters on its HTTP endpoint, so webhook
mutations go through ``ws://<host>/rpc`` instead. Each call opens its own
connection, sends one masked text frame and waits for the matching reply.
The device has a small connection table, so every call ends with an RFC 6455
close handshake and a short grace period before the socket is torn down.
"""

from __future__ import annotations

import asyncio
import base64
from collections.abc import Awaitable, Callable, Mapping
import hashlib
import itertools
import json
import logging
import os
from typing import Any

from ..codecs.refoss_codec import raise_for_rpc_error
from ..const import (
    DEFAULT_HTTP_PORT,
    RPC_PREFIX,
    WS_CLOSE_GRACE,
    WS_RPC_SOURCE,
    WS_RPC_TIMEOUT,
)
from ..errors import (
    ClosedByPeerError,
    HandshakeFailedError,
    ProtocolError,
    ProtocolTimeoutError,
)
from .sanitize import mask_identifier, redact_text
from .ws_frames import (
    CLOSE_NORMAL,
    OP_CLOSE,
    OP_PING,
    OP_PONG,
    OP_TEXT,
    Frame,
    FrameDecoder,
    MessageAssembler,
    build_close_payload,
    encode_frame,
    parse_close_payload,
)

_LOGGER = logging.getLogger(__name__)

WS_GUID = "258EAFA5-E914-47DA-95CA-C5AB0DC11B65"
HEADER_TERMINATOR = b"\r\n\r\n"
MAX_HEADER_BYTES = 16 * 1024
READ_CHUNK = 4096

OpenConnection = Callable[..., Awaitable[tuple[asyncio.StreamReader, asyncio.StreamWriter]]]

_REQUEST_IDS = itertools.count(1)


def expected_accept(key: str) -> str:
    """Return the ``Sec-WebSocket-Accept`` value for ``key``."""

    digest = hashlib.sha1((key + WS_GUID).encode("ascii")).digest()  # noqa: S324
    return base64.b64encode(digest).decode("ascii")


def build_upgrade_request(host: str, port: int, path: str, key: str) -> bytes:
    """Return the raw HTTP/1.1 upgrade request."""

    host_header = host if port == DEFAULT_HTTP_PORT else f"{host}:{port}"
    lines = [
        f"GET {path} HTTP/1.1",
        f"Host: {host_header}",
        "Upgrade: websocket",
        "Connection: Upgrade",
        f"Sec-WebSocket-Key: {key}",
        "Sec-WebSocket-Version: 13",
        "",
        "",
    ]
    return "\r\n".join(lines).encode("ascii")


def parse_upgrade_response(raw: bytes, key: str) -> None:
    """Validate the device's upgrade response headers."""

    text = raw.decode("latin-1")
    status_line, _, header_block = text.partition("\r\n")
    parts = status_line.split(" ", 2)
    if len(parts) < 2 or not parts[0].startswith("HTTP/") or parts[1] != "101":
        raise HandshakeFailedError(f"websocket upgrade refused: {status_line!r}")
    headers: dict[str, str] = {}
    for line in header_block.split("\r\n"):
        name, sep, value = line.partition(":")
        if sep:
            headers[name.strip().lower()] = value.strip()
    accept = headers.get("sec-websocket-accept")
    if accept is not None and accept != expected_accept(key):
        raise HandshakeFailedError("Sec-WebSocket-Accept does not match the key")


class RpcSocketClient:
    """Send one JSON-RPC request per websocket connection."""

    def __init__(
        self,
        host: str,
        *,
        port: int = DEFAULT_HTTP_PORT,
        path: str = RPC_PREFIX,
        timeout: float = WS_RPC_TIMEOUT,
        close_grace: float = WS_CLOSE_GRACE,
        source: str = WS_RPC_SOURCE,
        open_connection: OpenConnection | None = None,
        random_bytes: Callable[[int], bytes] = os.urandom,
    ) -> None:
        """Store connection parameters; no socket is opened until ``call``."""

        self._host = host
        self._port = port
        self._path = path
        self._timeout = timeout
        self._close_grace = close_grace
        self._source = source
        self._open_connection = open_connection or asyncio.open_connection
        self._random_bytes = random_bytes

    @property
    def host(self) -> str:
        """Return the device address."""

        return self._host

    async def call(
        self,
        method: str,
        params: Mapping[str, Any] | None = None,
        timeout: float | None = None,
    ) -> Any:
        """Run ``method`` on the device and return its ``result``.

        Raises ``DeviceRpcError`` for JSON-RPC error replies and a
        ``ProtocolError`` subclass for socket or framing failures.
        """

        request_id = next(_REQUEST_IDS)
        limit = self._timeout if timeout is None else timeout
        session = _RpcSession(self, request_id)
        _LOGGER.debug(
            "WS RPC %s id=%s -> %s", method, request_id, mask_identifier(self._host)
        )
        try:
            return await asyncio.wait_for(
                session.run(method, dict(params or {})), timeout=limit
            )
        except TimeoutError as err:
            raise ProtocolTimeoutError(
                f"{method} did not complete within {limit:.1f}s"
            ) from err
        except OSError as err:
            raise ClosedByPeerError(f"socket error during {method}: {err}") from err
        finally:
            await session.close()


class _RpcSession:
    """State for a single connection; not reused across calls."""

    def __init__(self, client: RpcSocketClient, request_id: int) -> None:
        self._client = client
        self._request_id = request_id
        self._reader: asyncio.StreamReader | None = None
        self._writer: asyncio.StreamWriter | None = None
        self._decoder = FrameDecoder()
        self._assembler = MessageAssembler()
        self._close_sent = False
        self._peer_closed = False

    def _mask(self) -> bytes:
        return self._client._random_bytes(4)

    async def run(self, method: str, params: dict[str, Any]) -> Any:
        client = self._client
        self._reader, self._writer = await client._open_connection(
            client._host, client._port
        )
        leftover = await self._handshake()

        request = {
            "jsonrpc": "2.0",
            "id": self._request_id,
            "src": client._source,
            "method": method,
            "params": params,
        }
        data = json.dumps(request, separators=(",", ":")).encode("utf-8")
        await self._write(encode_frame(OP_TEXT, data, mask=self._mask()))

        pending = leftover
        while True:
            if pending:
                for frame in self._decoder.feed(pending):
                    reply = await self._handle_frame(frame)
                    if reply is not None:
                        return self._unwrap(method, reply)
            pending = await self._reader.read(READ_CHUNK)
            if not pending:
                self._peer_closed = True
                raise ClosedByPeerError(f"device closed the socket during {method}")

    async def _handshake(self) -> bytes:
        assert self._reader is not None
        client = self._client
        key = base64.b64encode(client._random_bytes(16)).decode("ascii")
        await self._write(build_upgrade_request(client._host, client._port, client._path, key))

        buffer = bytearray()
        while HEADER_TERMINATOR not in buffer:
            if len(buffer) > MAX_HEADER_BYTES:
                raise HandshakeFailedError("upgrade response headers too large")
            chunk = await self._reader.read(READ_CHUNK)
            if not chunk:
                raise HandshakeFailedError("connection closed during websocket upgrade")
            buffer.extend(chunk)

        head, _, rest = bytes(buffer).partition(HEADER_TERMINATOR)
        parse_upgrade_response(head, key)
        return rest

    async def _handle_frame(self, frame: Frame) -> dict[str, Any] | None:
        if frame.opcode == OP_PING:
            await self._write(encode_frame(OP_PONG, frame.payload, mask=self._mask()))
            return None
        if frame.opcode == OP_PONG:
            return None
        if frame.opcode == OP_CLOSE:
            self._peer_closed = True
            code, reason = parse_close_payload(frame.payload)
            raise ClosedByPeerError(f"device sent close frame (code={code}, reason={reason!r})")

        message = self._assembler.add(frame)
        if message is None:
            return None
        opcode, payload = message
        if opcode != OP_TEXT:
            _LOGGER.debug("Ignoring binary websocket message (%d bytes)", len(payload))
            return None
        try:
            decoded = json.loads(payload.decode("utf-8"))
        except ValueError:
            _LOGGER.debug(
                "Ignoring non-JSON websocket message: %s",
                redact_text(payload.decode("utf-8", "replace"))[:160],
            )
            return None
        if not isinstance(decoded, dict) or decoded.get("id") != self._request_id:
            _LOGGER.debug(
                "Ignoring unrelated websocket message: %s",
                redact_text(payload.decode("utf-8", "replace"))[:160],
            )
            return None
        return decoded

    def _unwrap(self, method: str, reply: dict[str, Any]) -> Any:
        raise_for_rpc_error(reply)
        _LOGGER.debug("WS RPC %s id=%s completed", method, self._request_id)
        return reply.get("result")

    async def _write(self, data: bytes) -> None:
        assert self._writer is not None
        self._writer.write(data)
        await self._writer.drain()

    async def close(self) -> None:
        """Send a close frame, wait briefly for the peer, then drop the socket."""

        writer = self._writer
        if writer is None:
            return
        self._writer = None
        grace = self._client._close_grace
        try:
            if not self._close_sent and not writer.is_closing():
                self._close_sent = True
                writer.write(
                    encode_frame(
                        OP_CLOSE,
                        build_close_payload(CLOSE_NORMAL),
                        mask=self._mask(),
                    )
                )
                await asyncio.wait_for(writer.drain(), timeout=grace)
            if not self._peer_closed and self._reader is not None:
                await asyncio.wait_for(self._await_peer_close(), timeout=grace)
        except (TimeoutError, OSError, ProtocolError) as err:
            _LOGGER.debug("Websocket close handshake incomplete: %s", err)
        finally:
            writer.close()
            try:
                await asyncio.wait_for(writer.wait_closed(), timeout=grace)
            except (TimeoutError, OSError):
                transport = writer.transport
                if transport is not None:
                    transport.abort()

    async def _await_peer_close(self) -> None:
        assert self._reader is not None
        while True:
            chunk = await self._reader.read(READ_CHUNK)
            if not chunk:
                return
            for frame in self._decoder.feed(chunk):
                if frame.opcode == OP_CLOSE:
                    return


__all__ = [
    "RpcSocketClient",
    "build_upgrade_request",
    "expected_accept",
    "parse_upgrade_response",
]
