"""
SQL inbox repository backed by SQLModel/SQLAlchemy async sessions.

Uniqueness is enforced by the database (unique constraints plus the partial
index on active accounts); races that lose an insert re-select the winner.
"""

import logging
from datetime import datetime
from typing import Any, TypeVar
from uuid import UUID

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlmodel import SQLModel, select

from unibox.database.models import (
    ConnectedAccount,
    Contact,
    Conversation,
    Message,
    OAuthConnection,
)
from unibox.database.session_manager import DatabaseSessionManager
from unibox.domain.interfaces.inbox_repository import InboxRepository
from unibox.domain.services.contact_activity import apply_contact_activity
from unibox.domain.services.status_transitions import (
    apply_status_changes,
    plan_status_transition,
)
from unibox.messaging.meta.utils.payload_helpers import ensure_utc, utc_now
from unibox.schemas.core.types import ChannelType, MessageDeliveryStatus, SenderType

logger = logging.getLogger("unibox.persistence.sql")

RecordT = TypeVar("RecordT", bound=SQLModel)


def _normalize(record: RecordT | None) -> RecordT | None:
    """Re-attach UTC to datetimes read back from SQLite.

    Only called on records whose session has closed.
    """
    if record is None:
        return None
    for name in type(record).model_fields:
        value = getattr(record, name, None)
        if isinstance(value, datetime) and value.tzinfo is None:
            setattr(record, name, ensure_utc(value))
    return record


class SQLInboxRepository(InboxRepository):
    """InboxRepository over a DatabaseSessionManager."""

    def __init__(self, db: DatabaseSessionManager):
        self.db = db

    async def _get(self, model: type[RecordT], record_id: UUID) -> RecordT | None:
        async with self.db.get_session() as session:
            record = await session.get(model, record_id)
        return _normalize(record)

    async def _first(self, statement) -> Any:
        async with self.db.get_session() as session:
            result = await session.execute(statement)
            record = result.scalars().first()
        return _normalize(record)

    async def _all(self, statement) -> list[Any]:
        async with self.db.get_session() as session:
            result = await session.execute(statement)
            records = result.scalars().all()
        return [_normalize(r) for r in records]

    async def _update(
        self, model: type[RecordT], record_id: UUID, changes: dict[str, Any]
    ) -> RecordT | None:
        async with self.db.get_session() as session:
            record = await session.get(model, record_id, with_for_update=True)
            if record is not None:
                for field, value in changes.items():
                    setattr(record, field, value)
                if "updated_at" in model.model_fields:
                    record.updated_at = utc_now()
        return _normalize(record)

    # ==================== CONNECTED ACCOUNTS ====================

    async def get_account(self, account_id: UUID) -> ConnectedAccount | None:
        return await self._get(ConnectedAccount, account_id)

    async def get_active_account(
        self, channel: ChannelType, channel_account_id: str
    ) -> ConnectedAccount | None:
        return await self._first(
            select(ConnectedAccount).where(
                ConnectedAccount.channel_type == channel,
                ConnectedAccount.channel_account_id == channel_account_id,
                ConnectedAccount.is_active.is_(True),
            )
        )

    async def find_active_account_by_metadata(
        self, channel: ChannelType, key: str, value: str
    ) -> ConnectedAccount | None:
        accounts = await self._all(
            select(ConnectedAccount).where(
                ConnectedAccount.channel_type == channel,
                ConnectedAccount.is_active.is_(True),
            )
        )
        for account in accounts:
            if str((account.provider_metadata or {}).get(key)) == str(value):
                return account
        return None

    async def list_accounts(
        self,
        tenant_id: str,
        channel: ChannelType | None = None,
        active_only: bool = True,
    ) -> list[ConnectedAccount]:
        statement = select(ConnectedAccount).where(
            ConnectedAccount.tenant_id == tenant_id
        )
        if channel is not None:
            statement = statement.where(ConnectedAccount.channel_type == channel)
        if active_only:
            statement = statement.where(ConnectedAccount.is_active.is_(True))
        return await self._all(statement.order_by(ConnectedAccount.created_at.desc()))

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
        values = {
            "access_token": access_token,
            "channel_account_name": channel_account_name,
            "token_expires_at": token_expires_at,
            "provider_metadata": provider_metadata or {},
        }
        try:
            return await self._upsert_connected_account(
                tenant_id, channel, channel_account_id, values
            )
        except IntegrityError:
            # Lost the insert race; the second pass updates the winner's row
            logger.info(
                f"Concurrent upsert for {channel.value} account "
                f"{channel_account_id}, retrying"
            )
            return await self._upsert_connected_account(
                tenant_id, channel, channel_account_id, values
            )

    async def _upsert_connected_account(
        self,
        tenant_id: str,
        channel: ChannelType,
        channel_account_id: str,
        values: dict[str, Any],
    ) -> ConnectedAccount:
        async with self.db.get_session() as session:
            result = await session.execute(
                select(ConnectedAccount)
                .where(
                    ConnectedAccount.channel_type == channel,
                    ConnectedAccount.channel_account_id == channel_account_id,
                    ConnectedAccount.is_active.is_(True),
                )
                .with_for_update()
            )
            account = result.scalars().first()

            if account is not None and account.tenant_id != tenant_id:
                logger.info(
                    f"{channel.value} account {channel_account_id} moves from tenant "
                    f"{account.tenant_id} to {tenant_id}; deactivating prior row"
                )
                account.is_active = False
                account.updated_at = utc_now()
                await session.flush()
                account = None

            if account is None:
                account = ConnectedAccount(
                    tenant_id=tenant_id,
                    channel_type=channel,
                    channel_account_id=channel_account_id,
                    channel_account_name=values["channel_account_name"],
                    access_token=values["access_token"],
                    token_expires_at=values["token_expires_at"],
                    provider_metadata=dict(values["provider_metadata"]),
                    is_active=True,
                )
                session.add(account)
            else:
                account.access_token = values["access_token"]
                account.channel_account_name = (
                    values["channel_account_name"] or account.channel_account_name
                )
                account.token_expires_at = values["token_expires_at"]
                account.provider_metadata = {
                    **(account.provider_metadata or {}),
                    **values["provider_metadata"],
                }
                account.updated_at = utc_now()
        return _normalize(account)

    async def deactivate_account(
        self, account_id: UUID, *, clear_token: bool = False
    ) -> None:
        async with self.db.get_session() as session:
            account = await session.get(
                ConnectedAccount, account_id, with_for_update=True
            )
            if account is None:
                return
            account.is_active = False
            if clear_token:
                account.access_token = None
                metadata = dict(account.provider_metadata or {})
                metadata.pop("page_access_token", None)
                account.provider_metadata = metadata
            account.updated_at = utc_now()

    # ==================== OAUTH CONNECTIONS ====================

    async def get_oauth_connection(
        self, tenant_id: str, channel: ChannelType
    ) -> OAuthConnection | None:
        return await self._first(
            select(OAuthConnection).where(
                OAuthConnection.tenant_id == tenant_id,
                OAuthConnection.channel == channel,
            )
        )

    async def list_oauth_connections(self, tenant_id: str) -> list[OAuthConnection]:
        return await self._all(
            select(OAuthConnection).where(OAuthConnection.tenant_id == tenant_id)
        )

    async def upsert_oauth_connection(
        self,
        tenant_id: str,
        channel: ChannelType,
        *,
        access_token: str,
        scopes: list[str],
        token_expires_at: datetime | None = None,
    ) -> OAuthConnection:
        args = (tenant_id, channel, access_token, scopes, token_expires_at)
        try:
            return await self._upsert_oauth_connection(*args)
        except IntegrityError:
            return await self._upsert_oauth_connection(*args)

    async def _upsert_oauth_connection(
        self,
        tenant_id: str,
        channel: ChannelType,
        access_token: str,
        scopes: list[str],
        token_expires_at: datetime | None,
    ) -> OAuthConnection:
        async with self.db.get_session() as session:
            result = await session.execute(
                select(OAuthConnection)
                .where(
                    OAuthConnection.tenant_id == tenant_id,
                    OAuthConnection.channel == channel,
                )
                .with_for_update()
            )
            connection = result.scalars().first()
            if connection is None:
                connection = OAuthConnection(tenant_id=tenant_id, channel=channel)
                session.add(connection)
            connection.access_token = access_token
            connection.scopes = list(scopes)
            connection.token_expires_at = token_expires_at
            connection.is_active = True
            connection.updated_at = utc_now()
        return _normalize(connection)

    async def update_oauth_connection(
        self, connection_id: UUID, **changes: Any
    ) -> OAuthConnection | None:
        return await self._update(OAuthConnection, connection_id, changes)

    # ==================== CONVERSATIONS ====================

    async def get_conversation(self, conversation_id: UUID) -> Conversation | None:
        return await self._get(Conversation, conversation_id)

    async def get_conversation_by_thread(
        self, connected_account_id: UUID, channel_conversation_id: str
    ) -> Conversation | None:
        return await self._first(
            select(Conversation).where(
                Conversation.connected_account_id == connected_account_id,
                Conversation.channel_conversation_id == channel_conversation_id,
            )
        )

    async def create_conversation(
        self, conversation: Conversation
    ) -> tuple[Conversation, bool]:
        existing = await self.get_conversation_by_thread(
            conversation.connected_account_id, conversation.channel_conversation_id
        )
        if existing is not None:
            return existing, False

        try:
            async with self.db.get_session() as session:
                session.add(conversation)
        except IntegrityError:
            existing = await self.get_conversation_by_thread(
                conversation.connected_account_id, conversation.channel_conversation_id
            )
            if existing is None:
                raise
            return existing, False
        return _normalize(conversation), True

    async def update_conversation(
        self, conversation_id: UUID, **changes: Any
    ) -> Conversation | None:
        return await self._update(Conversation, conversation_id, changes)

    # ==================== MESSAGES ====================

    async def get_message(self, message_id: UUID) -> Message | None:
        return await self._get(Message, message_id)

    async def get_message_by_channel_id(
        self, conversation_id: UUID, channel_message_id: str
    ) -> Message | None:
        return await self._first(
            select(Message).where(
                Message.conversation_id == conversation_id,
                Message.channel_message_id == channel_message_id,
            )
        )

    async def find_messages_by_channel_id(
        self, tenant_id: str, channel: ChannelType, channel_message_id: str
    ) -> list[Message]:
        return await self._all(
            select(Message)
            .join(Conversation, Message.conversation_id == Conversation.id)
            .join(ConnectedAccount, Conversation.connected_account_id == ConnectedAccount.id)
            .where(
                Message.channel_message_id == channel_message_id,
                Conversation.channel_type == channel,
                ConnectedAccount.tenant_id == tenant_id,
            )
        )

    async def insert_message(self, message: Message) -> tuple[Message, bool]:
        if message.channel_message_id:
            existing = await self.get_message_by_channel_id(
                message.conversation_id, message.channel_message_id
            )
            if existing is not None:
                return existing, False

        try:
            async with self.db.get_session() as session:
                session.add(message)
        except IntegrityError:
            if not message.channel_message_id:
                raise
            existing = await self.get_message_by_channel_id(
                message.conversation_id, message.channel_message_id
            )
            if existing is None:
                raise
            return existing, False
        return _normalize(message), True

    async def update_message(self, message_id: UUID, **changes: Any) -> Message | None:
        try:
            return await self._update(Message, message_id, changes)
        except IntegrityError as e:
            raise ValueError(
                f"Message {changes.get('channel_message_id')} already exists "
                f"in the conversation of {message_id}"
            ) from e

    async def record_status(
        self,
        message_id: UUID,
        status: MessageDeliveryStatus,
        at: datetime,
        error_message: str | None = None,
    ) -> Message | None:
        async with self.db.get_session() as session:
            message = await session.get(Message, message_id, with_for_update=True)
            if message is not None:
                changes = plan_status_transition(
                    message.status, status, at, error_message
                )
                apply_status_changes(message, changes)
        return _normalize(message)

    async def list_messages(self, conversation_id: UUID) -> list[Message]:
        messages = await self._all(
            select(Message).where(Message.conversation_id == conversation_id)
        )
        return sorted(messages, key=lambda m: m.sent_at or m.created_at)

    async def list_business_messages_until(
        self, conversation_id: UUID, watermark: datetime
    ) -> list[Message]:
        watermark = ensure_utc(watermark)
        return [
            m
            for m in await self.list_messages(conversation_id)
            if m.sender_type == SenderType.BUSINESS
            and (m.sent_at or m.created_at) <= watermark
        ]

    async def last_customer_message_at(self, conversation_id: UUID) -> datetime | None:
        async with self.db.get_session() as session:
            result = await session.execute(
                select(
                    func.max(func.coalesce(Message.sent_at, Message.created_at))
                ).where(
                    Message.conversation_id == conversation_id,
                    Message.sender_type == SenderType.CUSTOMER,
                )
            )
            value = result.scalar()
        if isinstance(value, str):
            # SQLite hands back the raw text for aggregate expressions
            value = datetime.fromisoformat(value)
        return ensure_utc(value)

    # ==================== CONTACTS ====================

    async def get_contact(
        self, tenant_id: str, channel: ChannelType, channel_customer_id: str
    ) -> Contact | None:
        return await self._first(
            select(Contact).where(
                Contact.tenant_id == tenant_id,
                Contact.channel_type == channel,
                Contact.channel_customer_id == channel_customer_id,
            )
        )

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
        key = (tenant_id, channel, channel_customer_id)
        activity = (direction, at, display_name, avatar_url)
        try:
            return await self._upsert_contact(key, activity)
        except IntegrityError:
            logger.info(f"Concurrent contact insert for {channel_customer_id}, retrying")
            return await self._upsert_contact(key, activity)

    async def _upsert_contact(
        self, key: tuple[str, ChannelType, str], activity: tuple
    ) -> Contact:
        tenant_id, channel, channel_customer_id = key
        async with self.db.get_session() as session:
            result = await session.execute(
                select(Contact)
                .where(
                    Contact.tenant_id == tenant_id,
                    Contact.channel_type == channel,
                    Contact.channel_customer_id == channel_customer_id,
                )
                .with_for_update()
            )
            contact = result.scalars().first()
            if contact is None:
                contact = Contact(
                    tenant_id=tenant_id,
                    channel_type=channel,
                    channel_customer_id=channel_customer_id,
                )
                session.add(contact)
            apply_contact_activity(contact, *activity)
        return _normalize(contact)
