"""
Channel-agnostic outbound message request and send result.
"""

from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field, model_validator

from unibox.schemas.core.types import MEDIA_CONTENT_TYPES, MessageContentType


class TemplateSpec(BaseModel):
    """A pre-approved WhatsApp template reference."""

    name: str = Field(..., min_length=1)
    language_code: str = "en_US"
    components: list[dict[str, Any]] | None = None


class OutboundMessage(BaseModel):
    """
    A normalized outbound message handed to a channel adapter.

    ``window_open`` is the orchestrator's view of the customer service window
    (None when unknown). ``extended_window_requested`` asks Messenger and
    Instagram adapters to apply the HUMAN_AGENT tag; it is never implied.
    """

    recipient_id: str = Field(..., min_length=1)
    content: str | None = None
    content_type: MessageContentType = MessageContentType.TEXT
    media_url: str | None = None
    caption: str | None = None
    filename: str | None = None
    extended_window_requested: bool = False
    window_open: bool | None = None
    template: TemplateSpec | None = None
    preview_url: bool = False

    @model_validator(mode="after")
    def validate_payload(self) -> "OutboundMessage":
        if self.content_type in MEDIA_CONTENT_TYPES and not self.media_url:
            raise ValueError(f"media_url is required for {self.content_type.value}")
        if self.content_type == MessageContentType.TEXT and not (self.content or "").strip():
            raise ValueError("content is required for text messages")
        if self.content_type == MessageContentType.TEMPLATE and self.template is None:
            raise ValueError("template is required for template messages")
        return self

    @property
    def is_media(self) -> bool:
        return self.content_type in MEDIA_CONTENT_TYPES


class SendResult(BaseModel):
    """Outcome of a successful provider send."""

    channel_message_id: str | None = None
    recipient_id: str
    request_body: dict[str, Any] = Field(default_factory=dict)
    metadata: dict[str, Any] = Field(default_factory=dict)
    raw_response: dict[str, Any] = Field(default_factory=dict)


class SendMessageRequest(BaseModel):
    """Body of the dashboard's send endpoint."""

    conversation_id: UUID
    content: str | None = None
    message_type: MessageContentType = MessageContentType.TEXT
    media_url: str | None = None
    caption: str | None = None
    filename: str | None = None
    extended_window: bool = Field(
        default=False,
        description="Request the HUMAN_AGENT tag (Messenger/Instagram only)",
    )
    template: TemplateSpec | None = None
