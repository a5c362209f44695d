"""
Send orchestrator: one outbound message from the dashboard to a customer.

Flow:
    conversation -> owning account (re-routed if deactivated) -> token
    -> window/tag decision -> fresh ``sending`` row -> sender
    -> same row updated in place to ``sent`` or ``failed``

Every request gets its own row, so two identical sends are two messages.
Matching the dashboard's optimistic bubble to the stored row is the
dashboard's concern.
"""

from dataclasses import dataclass
from datetime import timedelta
from typing import Any

from pydantic import ValidationError

from unibox.core.logging.context import set_request_context
from unibox.core.logging.logger import get_logger
from unibox.database.models import ConnectedAccount, Conversation, Message
from unibox.domain.interfaces.inbox_repository import InboxRepository
from unibox.domain.senders.message_sender import MessageSenderSelector
from unibox.domain.services.best_effort import best_effort
from unibox.domain.services.contact_activity import CONTACT_CHANNELS
from unibox.messaging.meta.errors import (
    AccountNotConnectedError,
    ConversationNotFoundError,
    SendValidationError,
    UniboxError,
)
from unibox.messaging.meta.utils.error_helpers import SendErrorInfo, classify_send_error
from unibox.messaging.meta.utils.payload_helpers import ensure_utc, utc_now
from unibox.schemas.core.types import (
    SESSION_WINDOW_HOURS,
    ChannelType,
    MessageContentType,
    MessageDeliveryStatus,
    SenderType,
)
from unibox.schemas.meta.outbound import OutboundMessage, SendMessageRequest

# Channels where an extended-window request maps to the HUMAN_AGENT tag
TAGGABLE_CHANNELS = frozenset({ChannelType.MESSENGER, ChannelType.INSTAGRAM})

EXTENDED_WINDOW_REASON = "operator_request"


@dataclass
class SendOutcome:
    """Persisted message plus the classified error when the send failed."""

    message: Message
    error: SendErrorInfo | None = None
    mode: str = "live"

    @property
    def ok(self) -> bool:
        return self.error is None


class SendOrchestrator:
    """Dispatches outbound messages and records their delivery progression."""

    def __init__(self, repository: InboxRepository, senders: MessageSenderSelector):
        self.repository = repository
        self.senders = senders

    async def send(self, tenant_id: str, request: SendMessageRequest) -> SendOutcome:
        """
        Send ``request`` on behalf of ``tenant_id``.

        Provider failures are returned as ``SendOutcome.error`` with the
        message stored as ``failed``.

        Raises:
            SendValidationError: Required fields missing (nothing persisted)
            ConversationNotFoundError: Unknown conversation or another tenant's
            AccountNotConnectedError: No active account or token for the channel
        """
        conversation, account = await self._resolve(tenant_id, request)
        channel = ChannelType(account.channel_type)
        set_request_context(
            tenant_id=tenant_id, customer_id=conversation.customer_id, channel=channel.value
        )
        logger = get_logger(__name__)

        access_token = account.send_token
        if not access_token:
            raise AccountNotConnectedError(
                f"{channel.value} account {account.channel_account_id} has no access token"
            )

        extended = self._extended_window(conversation, channel, request)
        window_open = await self._window_open(conversation, channel)
        outbound = self._build_outbound(conversation, request, extended, window_open)

        message = await self._insert_pending(conversation, request)
        sender = self.senders.select(account, access_token)

        try:
            result = await sender.send(account, access_token, outbound)
        except UniboxError as exc:
            info = classify_send_error(exc, channel)
            logger.error(
                f"Send failed on {channel.value} ({info.code.value}): {info.error}"
            )
            failed = await self.repository.record_status(
                message.id, MessageDeliveryStatus.FAILED, utc_now(), info.error
            )
            return SendOutcome(message=failed or message, error=info, mode=sender.mode)
        except Exception as exc:
            await self.repository.record_status(
                message.id, MessageDeliveryStatus.FAILED, utc_now(), str(exc)
            )
            raise

        metadata: dict[str, Any] = {
            **(message.provider_metadata or {}),
            **result.metadata,
            "sender_mode": sender.mode,
        }
        await self.repository.update_message(
            message.id,
            channel_message_id=result.channel_message_id,
            provider_metadata=metadata,
        )
        sent = await self.repository.record_status(
            message.id, MessageDeliveryStatus.SENT, utc_now()
        )
        if request.extended_window and extended and not conversation.extended_window_enabled:
            await self.repository.update_conversation(
                conversation.id,
                extended_window_enabled=True,
                extended_window_reason=EXTENDED_WINDOW_REASON,
                extended_window_marked_at=utc_now(),
            )
        logger.info(
            f"Message {message.id} sent on {channel.value} via {sender.mode} sender "
            f"(channel id {result.channel_message_id})"
        )

        if channel in CONTACT_CHANNELS:
            await best_effort(
                self.repository.upsert_contact_activity(
                    account.tenant_id,
                    channel,
                    conversation.customer_id,
                    direction=SenderType.BUSINESS,
                    at=utc_now(),
                ),
                action="contact sent counter",
                logger=logger,
            )

        await sender.after_persist(message.id)
        return SendOutcome(message=sent or message, mode=sender.mode)

    async def _resolve(
        self, tenant_id: str, request: SendMessageRequest
    ) -> tuple[Conversation, ConnectedAccount]:
        conversation = await self.repository.get_conversation(request.conversation_id)
        if conversation is None:
            raise ConversationNotFoundError(
                f"Conversation {request.conversation_id} not found"
            )

        owner = await self.repository.get_account(conversation.connected_account_id)
        if owner is None or owner.tenant_id != tenant_id:
            raise ConversationNotFoundError(
                f"Conversation {request.conversation_id} not found"
            )
        if owner.is_active:
            return conversation, owner

        # The row was replaced (reconnect or self-healing); use the tenant's active one
        replacements = await self.repository.list_accounts(
            tenant_id, ChannelType(owner.channel_type)
        )
        if not replacements:
            raise AccountNotConnectedError(
                f"{ChannelType(owner.channel_type).value} is not connected"
            )
        get_logger(__name__).info(
            f"Account {owner.channel_account_id} is inactive; routing conversation "
            f"{conversation.id} through {replacements[0].channel_account_id}"
        )
        return conversation, replacements[0]

    @staticmethod
    def _extended_window(
        conversation: Conversation, channel: ChannelType, request: SendMessageRequest
    ) -> bool:
        """Whether to tag this send; the flag is only stored once a tagged send succeeds."""
        if channel not in TAGGABLE_CHANNELS:
            return False
        return request.extended_window or conversation.extended_window_enabled

    async def _window_open(
        self, conversation: Conversation, channel: ChannelType
    ) -> bool | None:
        """WhatsApp session window state; None when no customer message is known."""
        if channel != ChannelType.WHATSAPP:
            return None
        last = await self.repository.last_customer_message_at(conversation.id)
        if last is None:
            return None
        return utc_now() - ensure_utc(last) < timedelta(hours=SESSION_WINDOW_HOURS)

    @staticmethod
    def _build_outbound(
        conversation: Conversation,
        request: SendMessageRequest,
        extended: bool,
        window_open: bool | None,
    ) -> OutboundMessage:
        try:
            return OutboundMessage(
                recipient_id=conversation.customer_id,
                content=request.content,
                content_type=request.message_type,
                media_url=request.media_url,
                caption=request.caption,
                filename=request.filename,
                extended_window_requested=extended,
                window_open=window_open,
                template=request.template,
            )
        except ValidationError as exc:
            reasons = "; ".join(e["msg"] for e in exc.errors())
            raise SendValidationError(reasons or "Invalid message") from exc

    async def _insert_pending(
        self, conversation: Conversation, request: SendMessageRequest
    ) -> Message:
        """Insert this request's own ``sending`` row; it is later updated by id."""
        content = request.content
        if request.message_type == MessageContentType.TEMPLATE and request.template:
            content = content or request.template.name

        metadata: dict[str, Any] = {}
        if request.media_url:
            metadata["media_url"] = request.media_url
        if request.template:
            metadata["template_name"] = request.template.name

        message, _ = await self.repository.insert_message(
            Message(
                conversation_id=conversation.id,
                sender_type=SenderType.BUSINESS,
                content=content,
                message_type=request.message_type,
                status=MessageDeliveryStatus.SENDING,
                provider_metadata=metadata,
            )
        )
        return message
