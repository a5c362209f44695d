"""
Unified data types and enums for cross-channel messaging.

These are shared by the channel adapters, the webhook ingestor, the send
orchestrator and the persisted records so that no module needs to know the
wire vocabulary of another channel.
"""

from enum import Enum
from typing import Any


class ChannelType(str, Enum):
    """Messaging channels served through the unified inbox."""

    WHATSAPP = "whatsapp"
    INSTAGRAM = "instagram"
    MESSENGER = "messenger"


class SenderType(str, Enum):
    """Who authored a message."""

    CUSTOMER = "customer"
    BUSINESS = "business"


class MessageContentType(str, Enum):
    """Normalized content types across all channels."""

    TEXT = "text"
    IMAGE = "image"
    VIDEO = "video"
    AUDIO = "audio"
    FILE = "file"
    LOCATION = "location"
    STICKER = "sticker"
    TEMPLATE = "template"
    INTERACTIVE = "interactive"


MEDIA_CONTENT_TYPES = frozenset(
    {
        MessageContentType.IMAGE,
        MessageContentType.VIDEO,
        MessageContentType.AUDIO,
        MessageContentType.FILE,
    }
)


class MessageDeliveryStatus(str, Enum):
    """Delivery status of a message.

    Ordered ``sending < sent < delivered < read``; ``failed`` is reachable from
    any non-terminal state and terminal once set.
    """

    SENDING = "sending"
    SENT = "sent"
    DELIVERED = "delivered"
    READ = "read"
    FAILED = "failed"

    @property
    def rank(self) -> int:
        return _STATUS_RANK[self]


_STATUS_RANK = {
    MessageDeliveryStatus.SENDING: 0,
    MessageDeliveryStatus.SENT: 1,
    MessageDeliveryStatus.DELIVERED: 2,
    MessageDeliveryStatus.READ: 3,
    MessageDeliveryStatus.FAILED: 4,
}

# Timestamp column recorded for each status transition
STATUS_TIMESTAMP_FIELDS = {
    MessageDeliveryStatus.SENT: "sent_at",
    MessageDeliveryStatus.DELIVERED: "delivered_at",
    MessageDeliveryStatus.READ: "read_at",
    MessageDeliveryStatus.FAILED: "failed_at",
}


class WebhookObject(str, Enum):
    """Values of the top-level ``object`` field of Meta webhook payloads."""

    WHATSAPP_BUSINESS_ACCOUNT = "whatsapp_business_account"
    INSTAGRAM = "instagram"
    PAGE = "page"


class SendErrorCode(str, Enum):
    """Classified send failure codes surfaced to the dashboard."""

    CAPABILITY_MISSING = "capability_missing"
    WINDOW_OR_RECIPIENT = "window_or_recipient"
    RATE_LIMITED = "rate_limited"
    PROVIDER_ERROR = "provider_error"
    NOT_CONNECTED = "not_connected"
    VALIDATION_ERROR = "validation_error"


# Messenger/Instagram tag that lifts the 24h response window to 7 days
HUMAN_AGENT_TAG = "HUMAN_AGENT"

# Standard session window during which free-form replies are accepted
SESSION_WINDOW_HOURS = 24
# Window granted by the HUMAN_AGENT tag
EXTENDED_WINDOW_DAYS = 7

# Type aliases
MessageMetadata = dict[str, Any]
ProviderMetadata = dict[str, Any]
