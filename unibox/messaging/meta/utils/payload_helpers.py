"""
Helpers shared by the inbound webhook parsers.
"""

from datetime import UTC, datetime
from typing import Any

# Anything above this is a millisecond epoch (year 5138 in seconds)
_MILLISECONDS_THRESHOLD = 100_000_000_000


def parse_timestamp(value: Any) -> datetime:
    """
    Convert a provider epoch (seconds or milliseconds, int or str) to UTC.

    Raises:
        ValueError: If the value is missing or not numeric
    """
    if value is None or value == "":
        raise ValueError("timestamp is missing")
    number = float(value)
    if number >= _MILLISECONDS_THRESHOLD:
        number = number / 1000
    return datetime.fromtimestamp(number, tz=UTC)


def ensure_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes (SQLite drops tzinfo on round-trip)."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def utc_now() -> datetime:
    return datetime.now(UTC)


def as_list(value: Any) -> list:
    """Return ``value`` if it is a list, else an empty list."""
    return value if isinstance(value, list) else []


def extract_message_id(response: dict[str, Any]) -> str | None:
    """Pull the provider message id from a send response.

    WhatsApp answers ``{"messages": [{"id": ...}]}``; Messenger and Instagram
    answer ``{"recipient_id": ..., "message_id": ...}``.
    """
    messages = as_list(response.get("messages"))
    if messages and isinstance(messages[0], dict) and messages[0].get("id"):
        return str(messages[0]["id"])
    message_id = response.get("message_id")
    return str(message_id) if message_id else None
