# ruff: noqa: D100,D103,INP001
from __future__ import annotations

from refoss_em.backend.sanitize import mask_identifier, redact_text


def test_mask_identifier() -> None:
    assert mask_identifier("AABBCCDDEEFF") == "AABBCC...EEFF"
    assert mask_identifier("abcdef") == "ab...ef"
    assert mask_identifier("abc") == "***"
    assert mask_identifier("  ") == ""
    assert mask_identifier(None) == ""


def test_redact_text_removes_digest_secrets() -> None:
    header = 'Digest username="admin", nonce="abc", response="0123", cnonce=ff'

    redacted = redact_text(header)

    assert "abc" not in redacted
    assert "0123" not in redacted
    assert "ff" not in redacted.split("cnonce=")[1]
    assert 'username="admin"' in redacted


def test_redact_text_masks_passwords_and_macs() -> None:
    redacted = redact_text('{"password": "hunter2", "mac": "AABBCCDDEEFF"}')

    assert "hunter2" not in redacted
    assert "AABBCCDDEEFF" not in redacted
    assert "AABBCC...EEFF" in redacted
    assert redact_text(None) == ""
