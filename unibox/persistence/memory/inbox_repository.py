"""
In-memory inbox repository.

Used by tests and demo deployments without a database. A single asyncio lock
serializes writes so the uniqueness rules hold under concurrent requests.
"""

import asyncio
import logging
from datetime import datetime
from typing import Any
from uuid import UUID

from unibox.database.models import (
    ConnectedAccount,
    Contact,
    Conversation,
    Message,
    OAuthConnection,
)
from unibox.domain.interfaces.inbox_repository import InboxRepository
from unibox.domain.services.contact_activity import apply_contact_activity
from unibox.domain.services.status_transitions import (
    apply_status_changes,
    plan_status_transition,
)
from unibox.messaging.meta.utils.payload_helpers import ensure_utc, utc_now
from unibox.schemas.core.types import ChannelType, MessageDeliveryStatus, SenderType

logger = logging.getLogger("unibox.persistence.memory")


class MemoryInboxRepository(InboxRepository):
    """
    Dict-backed repository.

    Storage Structure:
        accounts:      {account_id: ConnectedAccount}
        oauth:         {connection_id: OAuthConnection}
        conversations: {conversation_id: Conversation}
        messages:      {message_id: Message}
        contacts:      {(tenant, channel, customer_id): Contact}
    """

    def __init__(self):
        self.accounts: dict[UUID, ConnectedAccount] = {}
        self.oauth: dict[UUID, OAuthConnection] = {}
        self.conversations: dict[UUID, Conversation] = {}
        self.messages: dict[UUID, Message] = {}
        self.contacts: dict[tuple[str, ChannelType, str], Contact] = {}
        self._lock = asyncio.Lock()

    @staticmethod
    def _update(record: Any, changes: dict[str, Any]) -> None:
        for field, value in changes.items():
            setattr(record, field, value)
        if hasattr(record, "updated_at"):
            record.updated_at = utc_now()

    # ==================== CONNECTED ACCOUNTS ====================

    async def get_account(self, account_id: UUID) -> ConnectedAccount | None:
        return self.accounts.get(account_id)

    async def get_active_account(
        self, channel: ChannelType, channel_account_id: str
    ) -> ConnectedAccount | None:
        for account in self.accounts.values():
            if (
                account.is_active
                and account.channel_type == channel
                and account.channel_account_id == channel_account_id
            ):
                return account
        return None

    async def find_active_account_by_metadata(
        self, channel: ChannelType, key: str, value: str
    ) -> ConnectedAccount | None:
        for account in self.accounts.values():
            if (
                account.is_active
                and account.channel_type == channel
                and str((account.provider_metadata or {}).get(key)) == str(value)
            ):
                return account
        return None

    async def list_accounts(
        self,
        tenant_id: str,
        channel: ChannelType | None = None,
        active_only: bool = True,
    ) -> list[ConnectedAccount]:
        accounts = [
            a
            for a in self.accounts.values()
            if a.tenant_id == tenant_id
            and (channel is None or a.channel_type == channel)
            and (a.is_active or not active_only)
        ]
        return sorted(accounts, key=lambda a: a.created_at, reverse=True)

    async def upsert_connected_account(
        self,
        tenant_id: str,
        channel: ChannelType,
        channel_account_id: str,
        *,
        access_token: str | None,
        channel_account_name: str | None = None,
        token_expires_at: datetime | None = None,
        provider_metadata: dict[str, Any] | None = None,
    ) -> ConnectedAccount:
        async with self._lock:
            existing = await self.get_active_account(channel, channel_account_id)
            if existing is not None and existing.tenant_id == tenant_id:
                self._update(
                    existing,
                    {
                        "access_token": access_token,
                        "channel_account_name": channel_account_name
                        or existing.channel_account_name,
                        "token_expires_at": token_expires_at,
                        "provider_metadata": {
                            **(existing.provider_metadata or {}),
                            **(provider_metadata or {}),
                        },
                    },
                )
                return existing

            if existing is not None:
                logger.info(
                    f"{channel.value} account {channel_account_id} moves from tenant "
                    f"{existing.tenant_id} to {tenant_id}; deactivating prior row"
                )
                self._update(existing, {"is_active": False})

            account = ConnectedAccount(
                tenant_id=tenant_id,
                channel_type=channel,
                channel_account_id=channel_account_id,
                channel_account_name=channel_account_name,
                access_token=access_token,
                token_expires_at=token_expires_at,
                provider_metadata=dict(provider_metadata or {}),
                is_active=True,
            )
            self.accounts[account.id] = account
            return account

    async def deactivate_account(
        self, account_id: UUID, *, clear_token: bool = False
    ) -> None:
        async with self._lock:
            account = self.accounts.get(account_id)
            if account is None:
                return
            changes: dict[str, Any] = {"is_active": False}
            if clear_token:
                changes["access_token"] = None
                metadata = dict(account.provider_metadata or {})
                metadata.pop("page_access_token", None)
                changes["provider_metadata"] = metadata
            self._update(account, changes)

    # ==================== OAUTH CONNECTIONS ====================

    async def get_oauth_connection(
        self, tenant_id: str, channel: ChannelType
    ) -> OAuthConnection | None:
        for connection in self.oauth.values():
            if connection.tenant_id == tenant_id and connection.channel == channel:
                return connection
        return None

    async def list_oauth_connections(self, tenant_id: str) -> list[OAuthConnection]:
        return [c for c in self.oauth.values() if c.tenant_id == tenant_id]

    async def upsert_oauth_connection(
        self,
        tenant_id: str,
        channel: ChannelType,
        *,
        access_token: str,
        scopes: list[str],
        token_expires_at: datetime | None = None,
    ) -> OAuthConnection:
        async with self._lock:
            connection = await self.get_oauth_connection(tenant_id, channel)
            if connection is not None:
                self._update(
                    connection,
                    {
                        "access_token": access_token,
                        "scopes": list(scopes),
                        "token_expires_at": token_expires_at,
                        "is_active": True,
                    },
                )
                return connection

            connection = OAuthConnection(
                tenant_id=tenant_id,
                channel=channel,
                access_token=access_token,
                scopes=list(scopes),
                token_expires_at=token_expires_at,
                is_active=True,
            )
            self.oauth[connection.id] = connection
            return connection

    async def update_oauth_connection(
        self, connection_id: UUID, **changes: Any
    ) -> OAuthConnection | None:
        async with self._lock:
            connection = self.oauth.get(connection_id)
            if connection is not None:
                self._update(connection, changes)
            return connection

    # ==================== CONVERSATIONS ====================

    async def get_conversation(self, conversation_id: UUID) -> Conversation | None:
        return self.conversations.get(conversation_id)

    async def get_conversation_by_thread(
        self, connected_account_id: UUID, channel_conversation_id: str
    ) -> Conversation | None:
        for conversation in self.conversations.values():
            if (
                conversation.connected_account_id == connected_account_id
                and conversation.channel_conversation_id == channel_conversation_id
            ):
                return conversation
        return None

    async def create_conversation(
        self, conversation: Conversation
    ) -> tuple[Conversation, bool]:
        async with self._lock:
            existing = await self.get_conversation_by_thread(
                conversation.connected_account_id, conversation.channel_conversation_id
            )
            if existing is not None:
                return existing, False
            self.conversations[conversation.id] = conversation
            return conversation, True

    async def update_conversation(
        self, conversation_id: UUID, **changes: Any
    ) -> Conversation | None:
        async with self._lock:
            conversation = self.conversations.get(conversation_id)
            if conversation is not None:
                self._update(conversation, changes)
            return conversation

    # ==================== MESSAGES ====================

    async def get_message(self, message_id: UUID) -> Message | None:
        return self.messages.get(message_id)

    async def get_message_by_channel_id(
        self, conversation_id: UUID, channel_message_id: str
    ) -> Message | None:
        for message in self.messages.values():
            if (
                message.conversation_id == conversation_id
                and message.channel_message_id == channel_message_id
            ):
                return message
        return None

    async def find_messages_by_channel_id(
        self, tenant_id: str, channel: ChannelType, channel_message_id: str
    ) -> list[Message]:
        found = []
        for message in self.messages.values():
            if message.channel_message_id != channel_message_id:
                continue
            conversation = self.conversations.get(message.conversation_id)
            if conversation is None or conversation.channel_type != channel:
                continue
            account = self.accounts.get(conversation.connected_account_id)
            if account is not None and account.tenant_id == tenant_id:
                found.append(message)
        return found

    async def insert_message(self, message: Message) -> tuple[Message, bool]:
        async with self._lock:
            if message.channel_message_id:
                existing = await self.get_message_by_channel_id(
                    message.conversation_id, message.channel_message_id
                )
                if existing is not None:
                    return existing, False
            self.messages[message.id] = message
            return message, True

    async def update_message(self, message_id: UUID, **changes: Any) -> Message | None:
        async with self._lock:
            message = self.messages.get(message_id)
            if message is None:
                return None
            channel_message_id = changes.get("channel_message_id")
            if channel_message_id and channel_message_id != message.channel_message_id:
                duplicate = await self.get_message_by_channel_id(
                    message.conversation_id, channel_message_id
                )
                if duplicate is not None:
                    raise ValueError(
                        f"Message {channel_message_id} already exists in conversation "
                        f"{message.conversation_id}"
                    )
            self._update(message, changes)
            return message

    async def record_status(
        self,
        message_id: UUID,
        status: MessageDeliveryStatus,
        at: datetime,
        error_message: str | None = None,
    ) -> Message | None:
        async with self._lock:
            message = self.messages.get(message_id)
            if message is None:
                return None
            changes = plan_status_transition(message.status, status, at, error_message)
            apply_status_changes(message, changes)
            return message

    async def list_messages(self, conversation_id: UUID) -> list[Message]:
        messages = [m for m in self.messages.values() if m.conversation_id == conversation_id]
        return sorted(messages, key=lambda m: ensure_utc(m.sent_at or m.created_at))

    async def list_business_messages_until(
        self, conversation_id: UUID, watermark: datetime
    ) -> list[Message]:
        watermark = ensure_utc(watermark)
        return [
            m
            for m in await self.list_messages(conversation_id)
            if m.sender_type == SenderType.BUSINESS
            and ensure_utc(m.sent_at or m.created_at) <= watermark
        ]

    async def last_customer_message_at(self, conversation_id: UUID) -> datetime | None:
        times = [
            ensure_utc(m.sent_at or m.created_at)
            for m in self.messages.values()
            if m.conversation_id == conversation_id
            and m.sender_type == SenderType.CUSTOMER
        ]
        return max(times) if times else None

    # ==================== CONTACTS ====================

    async def get_contact(
        self, tenant_id: str, channel: ChannelType, channel_customer_id: str
    ) -> Contact | None:
        return self.contacts.get((tenant_id, channel, channel_customer_id))

    async def upsert_contact_activity(
        self,
        tenant_id: str,
        channel: ChannelType,
        channel_customer_id: str,
        *,
        direction: SenderType,
        at: datetime,
        display_name: str | None = None,
        avatar_url: str | None = None,
    ) -> Contact:
        async with self._lock:
            key = (tenant_id, channel, channel_customer_id)
            contact = self.contacts.get(key)
            if contact is None:
                contact = Contact(
                    tenant_id=tenant_id,
                    channel_type=channel,
                    channel_customer_id=channel_customer_id,
                )
                self.contacts[key] = contact
            apply_contact_activity(contact, direction, at, display_name, avatar_url)
            return contact
