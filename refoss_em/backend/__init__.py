"""Backend package exports."""
from __future__ import annotations

from .digest import DigestAuth, compute_digest_response, parse_digest_challenge
from .sanitize import mask_identifier, redact_text
from .ws_rpc import RpcSocketClient

__all__ = [
    "DigestAuth",
    "RpcSocketClient",
    "compute_digest_response",
    "mask_identifier",
    "parse_digest_challenge",
    "redact_text",
]
