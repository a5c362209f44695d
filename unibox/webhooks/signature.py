"""
Webhook payload signature validation (``X-Hub-Signature-256``).
"""

import hashlib
import hmac

SIGNATURE_PREFIX = "sha256="


def compute_signature(raw_body: bytes, app_secret: str) -> str:
    """Return the ``sha256=<hex>`` signature Meta sends for ``raw_body``."""
    digest = hmac.new(app_secret.encode("utf-8"), raw_body, hashlib.sha256).hexdigest()
    return f"{SIGNATURE_PREFIX}{digest}"


def verify_signature(raw_body: bytes, signature: str | None, app_secret: str) -> bool:
    """
    Check ``signature`` against the HMAC-SHA256 of the raw request bytes.

    Args:
        raw_body: Body exactly as received (before JSON parsing)
        signature: X-Hub-Signature-256 header value
        app_secret: Meta app secret

    Returns:
        True only for a well-formed, matching signature
    """
    if not signature or not signature.startswith(SIGNATURE_PREFIX):
        return False

    provided_hash = signature[len(SIGNATURE_PREFIX):]
    expected_hash = hmac.new(
        app_secret.encode("utf-8"), raw_body, hashlib.sha256
    ).hexdigest()
    return hmac.compare_digest(expected_hash, provided_hash)
