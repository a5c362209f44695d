"""
Webhook ingestion pipeline.

Takes a signature-verified webhook payload, parses it with the channel's
adapter and persists the normalized events:

    IncomingWebhookEvent -> account -> conversation (find-or-create)
                         -> message (insert by channel id) -> contact counters
    MessageStatusUpdate  -> account -> tenant's message(s) by channel id
                         -> monotonic status

Every event runs in its own error boundary: one bad item never fails the
delivery, and nothing here raises back to the webhook route.
"""

import asyncio
from dataclasses import dataclass
from datetime import timedelta
from typing import Any

from unibox.core.logging.context import clear_request_context, set_request_context
from unibox.core.logging.logger import get_logger
from unibox.database.models import ConnectedAccount, Conversation, Message
from unibox.domain.interfaces.inbox_repository import InboxRepository
from unibox.domain.services.best_effort import best_effort
from unibox.domain.services.contact_activity import CONTACT_CHANNELS
from unibox.domain.services.profile_service import CustomerProfile, ProfileService
from unibox.messaging.meta.adapters.factory import AdapterRegistry, detect_channel
from unibox.messaging.meta.utils.payload_helpers import ensure_utc, utc_now
from unibox.schemas.core.types import ChannelType, MessageDeliveryStatus, SenderType
from unibox.schemas.meta.webhook_events import IncomingWebhookEvent, MessageStatusUpdate

# Minimum gap between profile lookups for a conversation that is still unnamed
PROFILE_RETRY_INTERVAL = timedelta(hours=6)


@dataclass
class IngestReport:
    """Counters for one webhook delivery."""

    channel: ChannelType | None = None
    messages_stored: int = 0
    duplicates: int = 0
    statuses_applied: int = 0
    unresolved: int = 0
    dropped: int = 0
    failed: int = 0


class WebhookIngestor:
    """
    Persists normalized webhook events for the tenant owning the account.

    Constructed once at start-up with the shared repository, adapter
    registry and profile service.
    """

    def __init__(
        self,
        repository: InboxRepository,
        adapters: AdapterRegistry,
        profiles: ProfileService,
    ):
        self.repository = repository
        self.adapters = adapters
        self.profiles = profiles
        self._tasks: set[asyncio.Task] = set()

    # ==================== SCHEDULING ====================

    def schedule(
        self, payload: dict[str, Any], channel: ChannelType | None = None
    ) -> asyncio.Task:
        """Process ``payload`` in the background so the route answers immediately."""
        task = asyncio.create_task(self.ingest(payload, channel))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def drain(self) -> None:
        """Wait for scheduled deliveries (shutdown and tests)."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # ==================== INGESTION ====================

    async def ingest(
        self, payload: dict[str, Any], channel: ChannelType | None = None
    ) -> IngestReport:
        """
        Parse and persist one webhook delivery.

        Args:
            payload: Parsed JSON body
            channel: Channel from the route; detected from ``object`` when None

        Returns:
            IngestReport with per-outcome counters
        """
        logger = get_logger(__name__)
        report = IngestReport(channel=channel or detect_channel(payload))

        if report.channel is None:
            logger.warning(f"Ignoring webhook with unknown object: {payload.get('object')}")
            return report

        try:
            parsed = self.adapters.get(report.channel).parse_inbound_webhook(payload)
        except Exception as exc:
            logger.error(f"Failed to parse {report.channel.value} webhook: {exc}", exc_info=True)
            report.failed += 1
            return report

        report.dropped = parsed.dropped
        accounts: dict[str, ConnectedAccount | None] = {}

        for event in parsed.messages:
            try:
                await self._ingest_message(event, accounts, report)
            except Exception as exc:
                report.failed += 1
                get_logger(__name__).error(
                    f"Failed to store {event.channel_type.value} message "
                    f"{event.message.id}: {exc}",
                    exc_info=True,
                )
            finally:
                clear_request_context()

        for status in parsed.statuses:
            try:
                await self._ingest_status(status, accounts, report)
            except Exception as exc:
                report.failed += 1
                get_logger(__name__).error(
                    f"Failed to apply {status.status.value} status for "
                    f"{status.channel_message_id or 'watermark'}: {exc}",
                    exc_info=True,
                )
            finally:
                clear_request_context()

        logger.info(
            f"{report.channel.value} webhook processed: {report.messages_stored} stored, "
            f"{report.duplicates} duplicate, {report.statuses_applied} statuses, "
            f"{report.unresolved} unresolved, {report.dropped} dropped, {report.failed} failed"
        )
        return report

    async def resolve_account(
        self, channel: ChannelType, account_id: str
    ) -> ConnectedAccount | None:
        """
        Find the active account a webhook refers to.

        Instagram may report either the IG-scoped id or the owning Page id,
        so a miss falls back to the cached ``page_id`` metadata.
        """
        account = await self.repository.get_active_account(channel, account_id)
        if account is None and channel == ChannelType.INSTAGRAM:
            account = await self.repository.find_active_account_by_metadata(
                ChannelType.INSTAGRAM, "page_id", account_id
            )
        return account

    async def _cached_account(
        self,
        channel: ChannelType,
        account_id: str | None,
        accounts: dict[str, ConnectedAccount | None],
    ) -> ConnectedAccount | None:
        if not account_id:
            return None
        key = f"{channel.value}:{account_id}"
        if key not in accounts:
            accounts[key] = await self.resolve_account(channel, account_id)
        return accounts[key]

    async def _ingest_message(
        self,
        event: IncomingWebhookEvent,
        accounts: dict[str, ConnectedAccount | None],
        report: IngestReport,
    ) -> None:
        account = await self._cached_account(event.channel_type, event.account_id, accounts)
        if account is None:
            report.unresolved += 1
            get_logger(__name__).warning(
                f"No active {event.channel_type.value} account for {event.account_id}; "
                f"dropping message {event.message.id}"
            )
            return

        set_request_context(
            tenant_id=account.tenant_id,
            customer_id=event.customer_id,
            channel=event.channel_type.value,
        )
        logger = get_logger(__name__)

        conversation = await self._resolve_conversation(account, event)

        inbound = event.message
        message, created = await self.repository.insert_message(
            Message(
                conversation_id=conversation.id,
                channel_message_id=inbound.id,
                sender_type=SenderType.CUSTOMER,
                content=inbound.content,
                message_type=inbound.type,
                status=MessageDeliveryStatus.DELIVERED,
                sent_at=inbound.timestamp,
                provider_metadata=dict(inbound.metadata),
            )
        )
        if not created:
            report.duplicates += 1
            logger.debug(f"Duplicate delivery of message {inbound.id} ignored")
            return

        report.messages_stored += 1
        logger.info(
            f"Stored {inbound.type.value} message {inbound.id} in conversation "
            f"{conversation.id}"
        )

        if event.channel_type in CONTACT_CHANNELS:
            await best_effort(
                self.repository.upsert_contact_activity(
                    account.tenant_id,
                    event.channel_type,
                    event.customer_id,
                    direction=SenderType.CUSTOMER,
                    at=inbound.timestamp,
                    display_name=conversation.customer_name,
                    avatar_url=conversation.customer_avatar_url,
                ),
                action="contact received counter",
                logger=logger,
            )

    async def _resolve_conversation(
        self, account: ConnectedAccount, event: IncomingWebhookEvent
    ) -> Conversation:
        """Find-or-create the thread; the customer id is the thread id."""
        conversation = await self.repository.get_conversation_by_thread(
            account.id, event.customer_id
        )
        if conversation is not None:
            if not conversation.customer_name:
                conversation = await self._backfill_name(account, event, conversation)
            return conversation

        profile = await self._profile(account, event)
        conversation, created = await self.repository.create_conversation(
            Conversation(
                connected_account_id=account.id,
                channel_type=event.channel_type,
                channel_conversation_id=event.customer_id,
                customer_id=event.customer_id,
                customer_name=profile.name,
                customer_avatar_url=profile.avatar_url,
                profile_checked_at=utc_now(),
            )
        )
        if created:
            get_logger(__name__).info(
                f"New {event.channel_type.value} conversation {conversation.id} "
                f"with {profile.name or event.customer_id}"
            )
        return conversation

    async def _backfill_name(
        self,
        account: ConnectedAccount,
        event: IncomingWebhookEvent,
        conversation: Conversation,
    ) -> Conversation:
        """Name an unnamed thread; Graph lookups retry at most once per interval."""
        now = utc_now()
        checked = conversation.profile_checked_at
        recently_checked = (
            checked is not None and now - ensure_utc(checked) < PROFILE_RETRY_INTERVAL
        )
        if recently_checked and not event.customer_name:
            return conversation

        profile = await self._profile(account, event)
        changes: dict[str, Any] = {"profile_checked_at": now}
        if profile.name:
            changes["customer_name"] = profile.name
            changes["customer_avatar_url"] = (
                conversation.customer_avatar_url or profile.avatar_url
            )
        updated = await self.repository.update_conversation(conversation.id, **changes)
        return updated or conversation

    async def _profile(
        self, account: ConnectedAccount, event: IncomingWebhookEvent
    ) -> CustomerProfile:
        outcome = await best_effort(
            self.profiles.fetch(account, event.customer_id),
            action="profile lookup",
            logger=get_logger(__name__),
        )
        profile = outcome.value_or(CustomerProfile())
        if not profile.name and event.customer_name:
            profile = CustomerProfile(name=event.customer_name, avatar_url=profile.avatar_url)
        return profile

    async def _ingest_status(
        self,
        status: MessageStatusUpdate,
        accounts: dict[str, ConnectedAccount | None],
        report: IngestReport,
    ) -> None:
        if status.is_watermark:
            await self._apply_watermark(status, accounts, report)
            return

        if not status.channel_message_id:
            return

        account = await self._cached_account(status.channel_type, status.account_id, accounts)
        if account is None:
            report.unresolved += 1
            get_logger(__name__).warning(
                f"No active {status.channel_type.value} account for {status.account_id}; "
                f"dropping {status.status.value} status of {status.channel_message_id}"
            )
            return

        messages = await self.repository.find_messages_by_channel_id(
            account.tenant_id, status.channel_type, status.channel_message_id
        )
        if not messages:
            get_logger(__name__).debug(
                f"No message for {status.status.value} status of "
                f"{status.channel_message_id}"
            )
            return

        for message in messages:
            await self.repository.record_status(
                message.id, status.status, status.timestamp, status.error_message
            )
            report.statuses_applied += 1

    async def _apply_watermark(
        self,
        status: MessageStatusUpdate,
        accounts: dict[str, ConnectedAccount | None],
        report: IngestReport,
    ) -> None:
        """A read watermark marks every business message sent up to it as read."""
        account = await self._cached_account(status.channel_type, status.account_id, accounts)
        if account is None or not status.customer_id:
            report.unresolved += 1
            return

        set_request_context(
            tenant_id=account.tenant_id,
            customer_id=status.customer_id,
            channel=status.channel_type.value,
        )
        conversation = await self.repository.get_conversation_by_thread(
            account.id, status.customer_id
        )
        if conversation is None:
            return

        messages = await self.repository.list_business_messages_until(
            conversation.id, status.watermark
        )
        for message in messages:
            if message.status in (MessageDeliveryStatus.READ, MessageDeliveryStatus.FAILED):
                continue
            await self.repository.record_status(message.id, status.status, status.timestamp)
            report.statuses_applied += 1
