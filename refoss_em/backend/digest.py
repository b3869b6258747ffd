"""HTTP Digest authentication (RFC 2617) for the device's local API."""

from __future__ import annotations

from dataclasses import dataclass, field
import hashlib
import re
import secrets

_CHALLENGE_PARAM_RE = re.compile(r'(\w+)\s*=\s*(?:"([^"]*)"|([^,\s]+))')


def md5_hex(value: str) -> str:
    """Return the lowercase hex MD5 digest of ``value``."""

    return hashlib.md5(value.encode("utf-8")).hexdigest()  # noqa: S324


def parse_digest_challenge(header: str | None) -> dict[str, str]:
    """Parse a ``WWW-Authenticate: Digest ...`` header into its parameters.

    Both quoted and bare values are accepted since firmware revisions differ
    on ``algorithm=MD5`` versus ``algorithm="MD5"``. Returns an empty dict
    when the header is missing or names another scheme.
    """

    if not header:
        return {}
    text = header.strip()
    scheme, _, rest = text.partition(" ")
    if scheme.lower() != "digest":
        return {}
    params: dict[str, str] = {}
    for match in _CHALLENGE_PARAM_RE.finditer(rest):
        key = match.group(1).lower()
        quoted, bare = match.group(2), match.group(3)
        params[key] = quoted if quoted is not None else bare
    return params


def select_qop(qop: str | None) -> str | None:
    """Return the qop token to answer with (``auth`` preferred)."""

    if not qop:
        return None
    options = [item.strip() for item in qop.split(",") if item.strip()]
    if "auth" in options:
        return "auth"
    return options[0] if options else None


def compute_digest_response(
    *,
    username: str,
    password: str,
    method: str,
    uri: str,
    challenge: dict[str, str],
    nc: int,
    cnonce: str,
) -> str:
    """Return the RFC 2617 ``response`` hash for a request."""

    realm = challenge.get("realm", "")
    nonce = challenge.get("nonce", "")
    algorithm = (challenge.get("algorithm") or "MD5").upper()
    qop = select_qop(challenge.get("qop"))

    ha1 = md5_hex(f"{username}:{realm}:{password}")
    if algorithm == "MD5-SESS":
        ha1 = md5_hex(f"{ha1}:{nonce}:{cnonce}")
    ha2 = md5_hex(f"{method.upper()}:{uri}")

    if qop:
        return md5_hex(f"{ha1}:{nonce}:{nc:08x}:{cnonce}:{qop}:{ha2}")
    return md5_hex(f"{ha1}:{nonce}:{ha2}")


@dataclass
class DigestAuth:
    """Credentials plus the per-client nonce counter."""

    username: str
    password: str
    nonce_count: int = field(default=0, init=False)

    def build_authorization(
        self,
        method: str,
        uri: str,
        challenge: dict[str, str],
        *,
        cnonce: str | None = None,
    ) -> str:
        """Return the ``Authorization`` header answering ``challenge``."""

        self.nonce_count += 1
        nc = self.nonce_count
        client_nonce = cnonce or secrets.token_hex(8)
        response = compute_digest_response(
            username=self.username,
            password=self.password,
            method=method,
            uri=uri,
            challenge=challenge,
            nc=nc,
            cnonce=client_nonce,
        )
        parts = [
            f'username="{self.username}"',
            f'realm="{challenge.get("realm", "")}"',
            f'nonce="{challenge.get("nonce", "")}"',
            f'uri="{uri}"',
            f'response="{response}"',
        ]
        algorithm = challenge.get("algorithm")
        if algorithm:
            parts.append(f"algorithm={algorithm}")
        qop = select_qop(challenge.get("qop"))
        if qop:
            parts.append(f"qop={qop}")
            parts.append(f"nc={nc:08x}")
            parts.append(f'cnonce="{client_nonce}"')
        opaque = challenge.get("opaque")
        if opaque:
            parts.append(f'opaque="{opaque}"')
        return "Digest " + ", ".join(parts)


__all__ = [
    "DigestAuth",
    "compute_digest_response",
    "md5_hex",
    "parse_digest_challenge",
    "select_qop",
]
