"""
Normalized inbound events produced by the channel adapters.

Every channel parser emits the same two shapes regardless of how the
provider nested them on the wire.
"""

from datetime import datetime

from pydantic import BaseModel, Field

from unibox.schemas.core.types import (
    ChannelType,
    MessageContentType,
    MessageDeliveryStatus,
)


class InboundMessage(BaseModel):
    """The message carried by an inbound webhook event."""

    id: str = Field(..., min_length=1, description="Channel-native message id")
    type: MessageContentType = MessageContentType.TEXT
    content: str | None = None
    timestamp: datetime
    metadata: dict = Field(default_factory=dict)


class IncomingWebhookEvent(BaseModel):
    """A customer-originated message, normalized across channels."""

    channel_type: ChannelType
    account_id: str = Field(
        ..., description="Provider id of the receiving account (phone-number, page or IG id)"
    )
    customer_id: str = Field(..., description="Channel-native customer identifier")
    customer_name: str | None = None
    message: InboundMessage


class MessageStatusUpdate(BaseModel):
    """A delivery-status callback keyed by channel-native message id.

    Messenger/Instagram read receipts carry no message id, only a watermark;
    those set ``watermark`` plus ``account_id``/``customer_id`` instead.
    """

    channel_type: ChannelType
    channel_message_id: str | None = None
    status: MessageDeliveryStatus
    timestamp: datetime
    error_message: str | None = None
    account_id: str | None = None
    customer_id: str | None = None
    watermark: datetime | None = None

    @property
    def is_watermark(self) -> bool:
        return not self.channel_message_id and self.watermark is not None


class ParsedWebhook(BaseModel):
    """Result of parsing one webhook delivery (may hold many events)."""

    messages: list[IncomingWebhookEvent] = Field(default_factory=list)
    statuses: list[MessageStatusUpdate] = Field(default_factory=list)
    dropped: int = 0

    @property
    def is_empty(self) -> bool:
        return not self.messages and not self.statuses
