"""Exception taxonomy shared by the transport, websocket and codec layers."""

from __future__ import annotations


class RefossError(Exception):
    """Base class for every failure raised while talking to a device."""


class TransportError(RefossError):
    """The HTTP request could not be completed."""


class TransportTimeoutError(TransportError):
    """The device did not answer within the request timeout."""


class HttpStatusError(TransportError):
    """The device answered with an unexpected HTTP status."""

    def __init__(self, status: int, path: str) -> None:
        """Record the status and request path."""

        super().__init__(f"HTTP {status} from device for {path}")
        self.status = status
        self.path = path


class InvalidJsonError(TransportError):
    """The device answered with a body that is not JSON."""


class AuthError(RefossError):
    """Digest authentication failed."""


class MissingCredentialsError(AuthError):
    """The device requires authentication but no credentials are configured."""


class BadCredentialsError(AuthError):
    """The device rejected the configured credentials."""


class DeviceRpcError(RefossError):
    """The device returned an RPC error envelope."""

    def __init__(self, code: int | None, message: str | None) -> None:
        """Record the device supplied code and message."""

        super().__init__(f"Device error {code}: {message}")
        self.code = code
        self.message = message


class ProtocolError(RefossError):
    """Websocket protocol failure."""


class HandshakeFailedError(ProtocolError):
    """The HTTP upgrade was refused or malformed."""


class FrameError(ProtocolError):
    """A frame violated RFC 6455 or our size limits."""


class ProtocolTimeoutError(ProtocolError):
    """The RPC call did not complete in time."""


class ClosedByPeerError(ProtocolError):
    """The device closed the socket before answering."""


class ConfigError(RefossError):
    """Device settings failed validation."""


class NormalizationWarning(UserWarning):
    """A status payload carried no recognisable channel entries."""


__all__ = [
    "AuthError",
    "BadCredentialsError",
    "ClosedByPeerError",
    "ConfigError",
    "DeviceRpcError",
    "FrameError",
    "HandshakeFailedError",
    "HttpStatusError",
    "InvalidJsonError",
    "MissingCredentialsError",
    "NormalizationWarning",
    "ProtocolError",
    "ProtocolTimeoutError",
    "RefossError",
    "TransportError",
    "TransportTimeoutError",
]
