"""Shared sanitisation helpers for backend clients."""

from __future__ import annotations

import re

_DIGEST_FIELD_RE = re.compile(
    r'(?i)\b(response|nonce|cnonce|opaque)=("[^"]*"|[^,\s]+)'
)
_PASSWORD_RE = re.compile(r'(?i)("?password"?\s*[:=]\s*)("[^"]*"|[^,\s}]+)')
_MAC_RE = re.compile(r"\b[0-9A-Fa-f]{12}\b")


def redact_text(value: str | None) -> str:
    """Return ``value`` with digest secrets, passwords and MACs removed."""

    if not value:
        return ""
    text = str(value)
    redacted = _DIGEST_FIELD_RE.sub(lambda match: f"{match.group(1)}=***", text)
    redacted = _PASSWORD_RE.sub(lambda match: f"{match.group(1)}***", redacted)
    redacted = _MAC_RE.sub(lambda match: mask_identifier(match.group(0)), redacted)
    return redacted.replace("authorization", "auth").replace("Authorization", "Auth")


def mask_identifier(value: str | None) -> str:
    """Return a masked identifier suitable for log output."""

    if value is None:
        return ""
    trimmed = str(value).strip()
    if not trimmed:
        return ""
    if len(trimmed) <= 4:
        return "***"
    if len(trimmed) <= 8:
        return f"{trimmed[:2]}...{trimmed[-2:]}"
    prefix = trimmed[:6]
    suffix = trimmed[-4:]
    return f"{prefix}...{suffix}"


__all__ = ["mask_identifier", "redact_text"]
