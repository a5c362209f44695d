"""Channel-agnostic types shared across the gateway."""

from .types import (
    ChannelType,
    MessageContentType,
    MessageDeliveryStatus,
    SendErrorCode,
    SenderType,
    WebhookObject,
)

__all__ = [
    "ChannelType",
    "MessageContentType",
    "MessageDeliveryStatus",
    "SendErrorCode",
    "SenderType",
    "WebhookObject",
]
