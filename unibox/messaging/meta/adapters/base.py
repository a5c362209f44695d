"""
Channel adapter contract.

Adapters are the normalization boundary between the unified message model
and each channel's wire format. They hold no per-tenant state: the account
id and token are passed on every send.
"""

from abc import ABC, abstractmethod
from typing import Any

from pydantic import ValidationError

from unibox.core.logging.logger import get_logger
from unibox.messaging.meta.client.graph_client import GraphApiClient
from unibox.messaging.meta.errors import SendValidationError
from unibox.messaging.meta.utils.payload_helpers import extract_message_id
from unibox.schemas.core.types import ChannelType, MessageContentType
from unibox.schemas.meta.outbound import OutboundMessage, SendResult
from unibox.schemas.meta.webhook_events import ParsedWebhook

# Errors a malformed webhook item can raise while being parsed
PARSE_ERRORS = (KeyError, TypeError, ValueError, AttributeError, ValidationError)


class ChannelAdapter(ABC):
    """
    Send/receive contract implemented once per channel.

    Key Design Decisions:
    - One adapter instance per channel, shared by all tenants
    - Outbound: OutboundMessage -> channel JSON body and path
    - Inbound: raw webhook dict -> ParsedWebhook; bad items are dropped, never raised
    """

    def __init__(self, client: GraphApiClient, logger: Any | None = None):
        self.client = client
        self.logger = logger or get_logger(__name__)

    @property
    @abstractmethod
    def channel(self) -> ChannelType:
        """Get the channel this adapter handles."""

    @abstractmethod
    async def send_text(
        self, account_id: str, access_token: str, message: OutboundMessage
    ) -> SendResult:
        """Send a text message from ``account_id`` to ``message.recipient_id``."""

    @abstractmethod
    async def send_media(
        self, account_id: str, access_token: str, message: OutboundMessage
    ) -> SendResult:
        """Send an image, video, audio or file by URL."""

    @abstractmethod
    def parse_inbound_webhook(self, payload: dict[str, Any]) -> ParsedWebhook:
        """Parse a webhook delivery into normalized messages and statuses."""

    async def send(
        self, account_id: str, access_token: str, message: OutboundMessage
    ) -> SendResult:
        """Dispatch to the operation matching ``message.content_type``."""
        if message.is_media:
            return await self.send_media(account_id, access_token, message)
        if message.content_type == MessageContentType.TEXT:
            return await self.send_text(account_id, access_token, message)
        raise SendValidationError(
            f"{self.channel.value} cannot send {message.content_type.value} messages"
        )

    async def _post_message(
        self,
        account_id: str,
        access_token: str,
        recipient_id: str,
        body: dict[str, Any],
        metadata: dict[str, Any] | None = None,
    ) -> SendResult:
        """POST ``body`` to ``{account_id}/messages`` and normalize the response."""
        response = await self.client.post(
            f"{account_id}/messages", access_token=access_token, body=body
        )
        message_id = extract_message_id(response)
        self.logger.debug(
            f"{self.channel.value} message sent to {recipient_id}: {message_id}"
        )
        return SendResult(
            channel_message_id=message_id,
            recipient_id=recipient_id,
            request_body=body,
            metadata=metadata or {},
            raw_response=response,
        )

    def _drop(self, parsed: ParsedWebhook, item: Any, error: Exception) -> None:
        """Record a malformed webhook item and keep going."""
        parsed.dropped += 1
        self.logger.warning(
            f"Dropping malformed {self.channel.value} webhook item "
            f"({type(error).__name__}: {error}): {str(item)[:300]}"
        )
