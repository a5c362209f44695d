"""
Tests for OAuth state encoding and validation.
"""

import base64

import pytest

from unibox.domain.services.oauth_state import decode_state, encode_state
from unibox.messaging.meta.errors import OAuthStateError

NOW_MS = 1_700_000_000_000


def test_round_trip_keeps_tenant():
    state = encode_state("tenant-1", now_ms=NOW_MS)

    decoded = decode_state(state, ttl_seconds=600, now_ms=NOW_MS + 1000)

    assert decoded.tenant_id == "tenant-1"
    assert decoded.issued_at_ms == NOW_MS


def test_state_is_unpadded_base64url_json():
    state = encode_state("tenant-1", now_ms=NOW_MS)

    assert "=" not in state
    raw = base64.urlsafe_b64decode(state + "=" * (-len(state) % 4))
    assert raw == b'{"user_id":"tenant-1","ts":1700000000000}'


def test_expired_state():
    state = encode_state("tenant-1", now_ms=NOW_MS)

    with pytest.raises(OAuthStateError) as exc_info:
        decode_state(state, ttl_seconds=600, now_ms=NOW_MS + 601_000)

    assert exc_info.value.is_expired


@pytest.mark.parametrize("state", ["", "not-base64!", "e30", "eyJ0cyI6IDF9"])
def test_malformed_state(state):
    with pytest.raises(OAuthStateError) as exc_info:
        decode_state(state, ttl_seconds=600, now_ms=NOW_MS)

    assert exc_info.value.reason == OAuthStateError.INVALID
