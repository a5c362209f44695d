"""Normalized inbound events and outbound requests for Meta channels."""

from .outbound import OutboundMessage, SendMessageRequest, SendResult, TemplateSpec
from .webhook_events import (
    InboundMessage,
    IncomingWebhookEvent,
    MessageStatusUpdate,
    ParsedWebhook,
)

__all__ = [
    "InboundMessage",
    "IncomingWebhookEvent",
    "MessageStatusUpdate",
    "OutboundMessage",
    "ParsedWebhook",
    "SendMessageRequest",
    "SendResult",
    "TemplateSpec",
]
