"""
Inbox repository interface.

The conversation store is an external relational datastore; the gateway
only needs this set of upsert/select operations with the uniqueness
constraints of the data model:

- one active ConnectedAccount per (channel, channel_account_id)
- one OAuthConnection per (tenant, channel)
- one Conversation per (connected account, channel conversation id)
- one Message per (conversation, channel message id) when the id is known
- one Contact per (tenant, channel, channel customer id)
"""

from abc import ABC, abstractmethod
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
from unibox.schemas.core.types import ChannelType, MessageDeliveryStatus, SenderType


class InboxRepository(ABC):
    """
    Repository for accounts, grants, conversations, messages and contacts.

    Implementations must be safe to share between concurrent requests; every
    method is a single logical transaction.
    """

    # ==================== CONNECTED ACCOUNTS ====================

    @abstractmethod
    async def get_account(self, account_id: UUID) -> ConnectedAccount | None:
        """Get a connected account by internal id (active or not)."""
        pass

    @abstractmethod
    async def get_active_account(
        self, channel: ChannelType, channel_account_id: str
    ) -> ConnectedAccount | None:
        """Get the active account addressed by ``channel_account_id``."""
        pass

    @abstractmethod
    async def find_active_account_by_metadata(
        self, channel: ChannelType, key: str, value: str
    ) -> ConnectedAccount | None:
        """Find an active account whose provider metadata has ``key == value``.

        Used for the Instagram fallback where webhooks reference the owning
        Page id instead of the IG-scoped id.
        """
        pass

    @abstractmethod
    async def list_accounts(
        self,
        tenant_id: str,
        channel: ChannelType | None = None,
        active_only: bool = True,
    ) -> list[ConnectedAccount]:
        """List a tenant's accounts, newest first."""
        pass

    @abstractmethod
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
        """
        Create or refresh the active account for (channel, channel_account_id).

        An active row of the same tenant is updated in place; an active row of
        another tenant is deactivated and a new row inserted.
        """
        pass

    @abstractmethod
    async def deactivate_account(
        self, account_id: UUID, *, clear_token: bool = False
    ) -> None:
        """Mark an account inactive (never hard-deleted)."""
        pass

    # ==================== OAUTH CONNECTIONS ====================

    @abstractmethod
    async def get_oauth_connection(
        self, tenant_id: str, channel: ChannelType
    ) -> OAuthConnection | None:
        pass

    @abstractmethod
    async def list_oauth_connections(self, tenant_id: str) -> list[OAuthConnection]:
        pass

    @abstractmethod
    async def upsert_oauth_connection(
        self,
        tenant_id: str,
        channel: ChannelType,
        *,
        access_token: str,
        scopes: list[str],
        token_expires_at: datetime | None = None,
    ) -> OAuthConnection:
        """Create or refresh (and reactivate) the tenant's grant for a channel."""
        pass

    @abstractmethod
    async def update_oauth_connection(
        self, connection_id: UUID, **changes: Any
    ) -> OAuthConnection | None:
        pass

    # ==================== CONVERSATIONS ====================

    @abstractmethod
    async def get_conversation(self, conversation_id: UUID) -> Conversation | None:
        pass

    @abstractmethod
    async def get_conversation_by_thread(
        self, connected_account_id: UUID, channel_conversation_id: str
    ) -> Conversation | None:
        pass

    @abstractmethod
    async def create_conversation(
        self, conversation: Conversation
    ) -> tuple[Conversation, bool]:
        """
        Insert a conversation unless its thread already exists.

        Returns:
            (conversation, created); the existing row when another request
            created the same thread first
        """
        pass

    @abstractmethod
    async def update_conversation(
        self, conversation_id: UUID, **changes: Any
    ) -> Conversation | None:
        pass

    # ==================== MESSAGES ====================

    @abstractmethod
    async def get_message(self, message_id: UUID) -> Message | None:
        pass

    @abstractmethod
    async def get_message_by_channel_id(
        self, conversation_id: UUID, channel_message_id: str
    ) -> Message | None:
        pass

    @abstractmethod
    async def find_messages_by_channel_id(
        self, tenant_id: str, channel: ChannelType, channel_message_id: str
    ) -> list[Message]:
        """
        Messages carrying ``channel_message_id`` in the tenant's conversations
        on ``channel`` (status callbacks), whichever of the tenant's accounts
        owns the conversation.
        """
        pass

    @abstractmethod
    async def insert_message(self, message: Message) -> tuple[Message, bool]:
        """
        Insert a message, deduplicated by (conversation, channel message id).

        Returns:
            (message, created); the stored row when it already existed
        """
        pass

    @abstractmethod
    async def update_message(self, message_id: UUID, **changes: Any) -> Message | None:
        pass

    @abstractmethod
    async def record_status(
        self,
        message_id: UUID,
        status: MessageDeliveryStatus,
        at: datetime,
        error_message: str | None = None,
    ) -> Message | None:
        """Apply a delivery status callback following the monotonic rules."""
        pass

    @abstractmethod
    async def list_messages(self, conversation_id: UUID) -> list[Message]:
        """Messages of a conversation, oldest first."""
        pass

    @abstractmethod
    async def list_business_messages_until(
        self, conversation_id: UUID, watermark: datetime
    ) -> list[Message]:
        """Business messages sent at or before ``watermark`` (read receipts)."""
        pass

    @abstractmethod
    async def last_customer_message_at(self, conversation_id: UUID) -> datetime | None:
        pass

    # ==================== CONTACTS ====================

    @abstractmethod
    async def get_contact(
        self, tenant_id: str, channel: ChannelType, channel_customer_id: str
    ) -> Contact | None:
        pass

    @abstractmethod
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
        """Create the contact if needed and bump its counters and activity."""
        pass
