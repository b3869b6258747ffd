"""Minimal RFC 6455 framing used by the device websocket RPC client."""

from __future__ import annotations

from dataclasses import dataclass
import struct

from ..errors import FrameError

OP_CONTINUATION = 0x0
OP_TEXT = 0x1
OP_BINARY = 0x2
OP_CLOSE = 0x8
OP_PING = 0x9
OP_PONG = 0xA

CONTROL_OPCODES = frozenset({OP_CLOSE, OP_PING, OP_PONG})
DATA_OPCODES = frozenset({OP_TEXT, OP_BINARY})
KNOWN_OPCODES = CONTROL_OPCODES | DATA_OPCODES | {OP_CONTINUATION}

CLOSE_NORMAL = 1000
MAX_PAYLOAD = 16 * 1024 * 1024


@dataclass(slots=True)
class Frame:
    """A single decoded websocket frame."""

    fin: bool
    opcode: int
    payload: bytes
    masked: bool = False


def apply_mask(data: bytes, mask: bytes) -> bytes:
    """XOR ``data`` with the repeating 4-byte ``mask`` (masking is symmetric)."""

    if len(mask) != 4:
        raise FrameError("mask must be exactly 4 bytes")
    if not data:
        return b""
    repeated = (mask * (len(data) // 4 + 1))[: len(data)]
    value = int.from_bytes(data, "big") ^ int.from_bytes(repeated, "big")
    return value.to_bytes(len(data), "big")


def encode_frame(
    opcode: int,
    payload: bytes,
    *,
    mask: bytes | None = None,
    fin: bool = True,
) -> bytes:
    """Encode one frame, choosing the 7, 16 or 64-bit length form."""

    if opcode not in KNOWN_OPCODES:
        raise FrameError(f"unknown opcode {opcode:#x}")
    length = len(payload)
    if opcode in CONTROL_OPCODES and length > 125:
        raise FrameError("control frame payload exceeds 125 bytes")

    first = (0x80 if fin else 0x00) | opcode
    mask_bit = 0x80 if mask is not None else 0x00
    if length <= 125:
        header = struct.pack("!BB", first, mask_bit | length)
    elif length <= 0xFFFF:
        header = struct.pack("!BBH", first, mask_bit | 126, length)
    else:
        header = struct.pack("!BBQ", first, mask_bit | 127, length)

    if mask is None:
        return header + payload
    return header + mask + apply_mask(payload, mask)


def build_close_payload(code: int = CLOSE_NORMAL, reason: str = "") -> bytes:
    """Return a close frame body: 2-byte status code plus UTF-8 reason."""

    body = struct.pack("!H", code) + reason.encode("utf-8")
    return body[:125]


def parse_close_payload(payload: bytes) -> tuple[int | None, str]:
    """Return ``(code, reason)`` from a close frame body."""

    if len(payload) < 2:
        return None, ""
    (code,) = struct.unpack("!H", payload[:2])
    return code, payload[2:].decode("utf-8", "replace")


class FrameDecoder:
    """Incrementally decode frames from a byte stream."""

    def __init__(self, *, max_payload: int = MAX_PAYLOAD) -> None:
        """Initialise an empty buffer."""

        self._buffer = bytearray()
        self._max_payload = max_payload

    @property
    def buffered(self) -> int:
        """Return the number of bytes waiting for a complete frame."""

        return len(self._buffer)

    def feed(self, data: bytes) -> list[Frame]:
        """Append ``data`` and return every frame that is now complete."""

        self._buffer.extend(data)
        frames: list[Frame] = []
        while True:
            frame = self._next_frame()
            if frame is None:
                return frames
            frames.append(frame)

    def _next_frame(self) -> Frame | None:
        buf = self._buffer
        if len(buf) < 2:
            return None
        first, second = buf[0], buf[1]
        if first & 0x70:
            raise FrameError("reserved bits set without a negotiated extension")
        fin = bool(first & 0x80)
        opcode = first & 0x0F
        if opcode not in KNOWN_OPCODES:
            raise FrameError(f"unknown opcode {opcode:#x}")
        masked = bool(second & 0x80)
        length = second & 0x7F
        offset = 2
        if length == 126:
            if len(buf) < offset + 2:
                return None
            (length,) = struct.unpack_from("!H", buf, offset)
            offset += 2
        elif length == 127:
            if len(buf) < offset + 8:
                return None
            (length,) = struct.unpack_from("!Q", buf, offset)
            offset += 8
        if length > self._max_payload:
            raise FrameError(f"frame payload of {length} bytes exceeds limit")
        if opcode in CONTROL_OPCODES and (length > 125 or not fin):
            raise FrameError("fragmented or oversized control frame")

        mask = b""
        if masked:
            if len(buf) < offset + 4:
                return None
            mask = bytes(buf[offset : offset + 4])
            offset += 4
        if len(buf) < offset + length:
            return None

        payload = bytes(buf[offset : offset + length])
        del buf[: offset + length]
        if masked:
            payload = apply_mask(payload, mask)
        return Frame(fin=fin, opcode=opcode, payload=payload, masked=masked)


class MessageAssembler:
    """Reassemble fragmented data frames into complete messages."""

    def __init__(self) -> None:
        """Start with no message in progress."""

        self._opcode: int | None = None
        self._parts: list[bytes] = []

    def add(self, frame: Frame) -> tuple[int, bytes] | None:
        """Consume a data frame; return ``(opcode, payload)`` once FIN is seen."""

        if frame.opcode == OP_CONTINUATION:
            if self._opcode is None:
                raise FrameError("continuation frame without a started message")
        elif frame.opcode in DATA_OPCODES:
            if self._opcode is not None:
                raise FrameError("new data frame before previous message finished")
            self._opcode = frame.opcode
        else:
            raise FrameError(f"control frame {frame.opcode:#x} is not message data")

        self._parts.append(frame.payload)
        if not frame.fin:
            return None
        opcode = self._opcode
        payload = b"".join(self._parts)
        self._opcode = None
        self._parts = []
        return opcode, payload


__all__ = [
    "CLOSE_NORMAL",
    "Frame",
    "FrameDecoder",
    "FrameError",
    "MessageAssembler",
    "OP_BINARY",
    "OP_CLOSE",
    "OP_CONTINUATION",
    "OP_PING",
    "OP_PONG",
    "OP_TEXT",
    "apply_mask",
    "build_close_payload",
    "encode_frame",
    "parse_close_payload",
]
