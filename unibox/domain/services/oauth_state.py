"""
OAuth ``state`` parameter encoding.

The state is base64url JSON ``{"user_id": <tenant>, "ts": <issued ms>}``
without padding. Callbacks older than the configured TTL are rejected
before any token exchange is attempted.
"""

import base64
import binascii
import json
import time
from dataclasses import dataclass

from unibox.messaging.meta.errors import OAuthStateError


@dataclass(frozen=True)
class OAuthState:
    tenant_id: str
    issued_at_ms: int


def _now_ms() -> int:
    return int(time.time() * 1000)


def encode_state(tenant_id: str, now_ms: int | None = None) -> str:
    """Encode a state parameter for ``tenant_id`` issued at ``now_ms``."""
    payload = json.dumps(
        {"user_id": tenant_id, "ts": _now_ms() if now_ms is None else now_ms},
        separators=(",", ":"),
    )
    return base64.urlsafe_b64encode(payload.encode("utf-8")).decode("ascii").rstrip("=")


def decode_state(state: str, ttl_seconds: float, now_ms: int | None = None) -> OAuthState:
    """
    Decode and validate a state parameter.

    Raises:
        OAuthStateError: ``invalid`` when malformed, ``expired`` when older than the TTL
    """
    if not state:
        raise OAuthStateError(OAuthStateError.INVALID, "Missing state parameter")

    padded = state + "=" * (-len(state) % 4)
    try:
        data = json.loads(base64.urlsafe_b64decode(padded.encode("ascii")))
        tenant_id = str(data["user_id"])
        issued_at_ms = int(data["ts"])
    except (binascii.Error, UnicodeError, ValueError, KeyError, TypeError) as exc:
        raise OAuthStateError(OAuthStateError.INVALID, "Invalid state parameter") from exc

    if not tenant_id:
        raise OAuthStateError(OAuthStateError.INVALID, "Invalid state parameter")

    now_ms = _now_ms() if now_ms is None else now_ms
    if now_ms - issued_at_ms > ttl_seconds * 1000:
        raise OAuthStateError(OAuthStateError.EXPIRED, "Authorization request expired")

    return OAuthState(tenant_id=tenant_id, issued_at_ms=issued_at_ms)
