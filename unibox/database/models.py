"""
Database Models for the Unified Inbox

SQLModel table models for connected accounts, OAuth grants, conversations,
messages and contacts. Column types are portable between PostgreSQL
(asyncpg) and SQLite (aiosqlite); enums are stored as plain strings.
"""

from datetime import UTC, datetime
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    text,
)
from sqlalchemy import Enum as SAEnum
from sqlmodel import Field, SQLModel

from unibox.schemas.core.types import (
    ChannelType,
    MessageContentType,
    MessageDeliveryStatus,
    SenderType,
)

# =============================================================================
# SQL Utilities for Enum Handling
# =============================================================================


def enum_values(enum_cls: type[Enum]) -> list:
    """
    Extract enum values for SQLAlchemy enum configuration.

    This is a top-level function (not lambda) so it can be pickled.
    """
    return [member.value for member in enum_cls]


def get_enum_column(
    enum_cls: type[Enum],
    column_name: str,
    nullable: bool = False,
    default: Enum | None = None,
):
    """
    Create a SQLAlchemy Column for enum fields stored as VARCHAR + CHECK.

    Args:
        enum_cls: The enum class
        column_name: Name for the enum constraint (e.g., "channel_t")
        nullable: Whether the column allows NULL values
        default: Python-side default value
    """
    return Column(
        SAEnum(
            enum_cls,
            name=column_name,
            values_callable=enum_values,
            native_enum=False,
            length=32,
        ),
        nullable=nullable,
        default=default,
    )


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _timestamp_column(nullable: bool = True, onupdate: bool = False) -> Column:
    return Column(
        DateTime(timezone=True),
        nullable=nullable,
        default=None if nullable else _utcnow,
        onupdate=_utcnow if onupdate else None,
    )


# =============================================================================
# Connected Account
# =============================================================================


class ConnectedAccount(SQLModel, table=True):
    """
    A sendable channel resource bound to a tenant.

    ``channel_account_id`` is the id inbound webhooks reference: the
    phone-number id for WhatsApp, the Page id for Messenger and the
    IG-scoped id for Instagram. At most one active row exists per
    (channel, resource id); reconnecting deactivates the prior row.
    """

    __tablename__ = "connected_accounts"
    __table_args__ = (
        Index(
            "uq_connected_accounts_active_resource",
            "channel_type",
            "channel_account_id",
            unique=True,
            sqlite_where=text("is_active = 1"),
            postgresql_where=text("is_active"),
        ),
        Index("ix_connected_accounts_tenant", "tenant_id", "channel_type"),
    )

    id: UUID = Field(
        default_factory=uuid4, sa_column=Column(Uuid, primary_key=True)
    )
    tenant_id: str = Field(sa_column=Column(String(255), nullable=False))
    channel_type: ChannelType = Field(
        sa_column=get_enum_column(ChannelType, "channel_t")
    )
    channel_account_id: str = Field(sa_column=Column(String(255), nullable=False))
    channel_account_name: str | None = Field(
        default=None, sa_column=Column(String(255), nullable=True)
    )
    access_token: str | None = Field(default=None, sa_column=Column(Text, nullable=True))
    token_expires_at: datetime | None = Field(
        default=None, sa_column=_timestamp_column()
    )
    # Cached WABA id, IG username, page id, page token ...
    provider_metadata: dict[str, Any] = Field(
        default_factory=dict, sa_column=Column("metadata", JSON, nullable=False)
    )
    is_active: bool = Field(
        default=True, sa_column=Column(Boolean, nullable=False, default=True)
    )
    created_at: datetime = Field(
        default_factory=_utcnow, sa_column=_timestamp_column(nullable=False)
    )
    updated_at: datetime = Field(
        default_factory=_utcnow,
        sa_column=_timestamp_column(nullable=False, onupdate=True),
    )

    @property
    def send_token(self) -> str | None:
        """Page-level token when cached, else the stored token."""
        return (self.provider_metadata or {}).get("page_access_token") or self.access_token


# =============================================================================
# OAuth Connection
# =============================================================================


class OAuthConnection(SQLModel, table=True):
    """
    Business-level OAuth grant per (tenant, channel).

    Holds the long-lived user token and granted scopes even when no sendable
    resource could be resolved.
    """

    __tablename__ = "oauth_connections"
    __table_args__ = (
        UniqueConstraint("tenant_id", "channel", name="uq_oauth_connections_tenant_channel"),
    )

    id: UUID = Field(
        default_factory=uuid4, sa_column=Column(Uuid, primary_key=True)
    )
    tenant_id: str = Field(sa_column=Column(String(255), nullable=False))
    channel: ChannelType = Field(sa_column=get_enum_column(ChannelType, "oauth_channel_t"))
    access_token: str | None = Field(default=None, sa_column=Column(Text, nullable=True))
    token_expires_at: datetime | None = Field(
        default=None, sa_column=_timestamp_column()
    )
    scopes: list[str] = Field(
        default_factory=list, sa_column=Column(JSON, nullable=False)
    )
    # WABA id / page id / IG business account id once resolved
    account_id: str | None = Field(default=None, sa_column=Column(String(255), nullable=True))
    account_name: str | None = Field(default=None, sa_column=Column(String(255), nullable=True))
    page_access_token: str | None = Field(default=None, sa_column=Column(Text, nullable=True))
    provider_metadata: dict[str, Any] = Field(
        default_factory=dict, sa_column=Column("metadata", JSON, nullable=False)
    )
    is_active: bool = Field(
        default=True, sa_column=Column(Boolean, nullable=False, default=True)
    )
    created_at: datetime = Field(
        default_factory=_utcnow, sa_column=_timestamp_column(nullable=False)
    )
    updated_at: datetime = Field(
        default_factory=_utcnow,
        sa_column=_timestamp_column(nullable=False, onupdate=True),
    )


# =============================================================================
# Conversation
# =============================================================================


class Conversation(SQLModel, table=True):
    """
    One thread per (connected account, channel-native conversation id).

    Never deleted; archived instead.
    """

    __tablename__ = "conversations"
    __table_args__ = (
        UniqueConstraint(
            "connected_account_id",
            "channel_conversation_id",
            name="uq_conversations_account_thread",
        ),
    )

    id: UUID = Field(
        default_factory=uuid4, sa_column=Column(Uuid, primary_key=True)
    )
    connected_account_id: UUID = Field(
        sa_column=Column(Uuid, ForeignKey("connected_accounts.id"), nullable=False)
    )
    channel_type: ChannelType = Field(
        sa_column=get_enum_column(ChannelType, "conversation_channel_t")
    )
    channel_conversation_id: str = Field(sa_column=Column(String(255), nullable=False))
    customer_id: str = Field(sa_column=Column(String(255), nullable=False))
    customer_name: str | None = Field(default=None, sa_column=Column(String(255), nullable=True))
    customer_avatar_url: str | None = Field(default=None, sa_column=Column(Text, nullable=True))
    profile_checked_at: datetime | None = Field(default=None, sa_column=_timestamp_column())
    last_message_at: datetime | None = Field(default=None, sa_column=_timestamp_column())
    last_message_preview: str | None = Field(default=None, sa_column=Column(Text, nullable=True))
    unread_count: int = Field(
        default=0, sa_column=Column(Integer, nullable=False, default=0)
    )
    is_archived: bool = Field(
        default=False, sa_column=Column(Boolean, nullable=False, default=False)
    )
    extended_window_enabled: bool = Field(
        default=False, sa_column=Column(Boolean, nullable=False, default=False)
    )
    extended_window_reason: str | None = Field(
        default=None, sa_column=Column(Text, nullable=True)
    )
    extended_window_marked_at: datetime | None = Field(
        default=None, sa_column=_timestamp_column()
    )
    created_at: datetime = Field(
        default_factory=_utcnow, sa_column=_timestamp_column(nullable=False)
    )
    updated_at: datetime = Field(
        default_factory=_utcnow,
        sa_column=_timestamp_column(nullable=False, onupdate=True),
    )


# =============================================================================
# Message
# =============================================================================


class Message(SQLModel, table=True):
    """
    A single message in a conversation.

    ``channel_message_id`` is unique per conversation when present; it
    deduplicates webhook redeliveries and status callbacks.
    """

    __tablename__ = "messages"
    __table_args__ = (
        UniqueConstraint(
            "conversation_id",
            "channel_message_id",
            name="uq_messages_conversation_channel_id",
        ),
        Index("ix_messages_channel_message_id", "channel_message_id"),
    )

    id: UUID = Field(
        default_factory=uuid4, sa_column=Column(Uuid, primary_key=True)
    )
    conversation_id: UUID = Field(
        sa_column=Column(Uuid, ForeignKey("conversations.id"), nullable=False)
    )
    channel_message_id: str | None = Field(
        default=None, sa_column=Column(String(255), nullable=True)
    )
    sender_type: SenderType = Field(sa_column=get_enum_column(SenderType, "sender_t"))
    content: str | None = Field(default=None, sa_column=Column(Text, nullable=True))
    message_type: MessageContentType = Field(
        default=MessageContentType.TEXT,
        sa_column=get_enum_column(
            MessageContentType, "message_type_t", default=MessageContentType.TEXT
        ),
    )
    status: MessageDeliveryStatus = Field(
        default=MessageDeliveryStatus.SENDING,
        sa_column=get_enum_column(
            MessageDeliveryStatus, "delivery_status_t", default=MessageDeliveryStatus.SENDING
        ),
    )
    sent_at: datetime | None = Field(default=None, sa_column=_timestamp_column())
    delivered_at: datetime | None = Field(default=None, sa_column=_timestamp_column())
    read_at: datetime | None = Field(default=None, sa_column=_timestamp_column())
    failed_at: datetime | None = Field(default=None, sa_column=_timestamp_column())
    error_message: str | None = Field(default=None, sa_column=Column(Text, nullable=True))
    provider_metadata: dict[str, Any] = Field(
        default_factory=dict, sa_column=Column("metadata", JSON, nullable=False)
    )
    created_at: datetime = Field(
        default_factory=_utcnow, sa_column=_timestamp_column(nullable=False)
    )


# =============================================================================
# Contact
# =============================================================================


class Contact(SQLModel, table=True):
    """A customer identified per (tenant, channel, channel customer id)."""

    __tablename__ = "contacts"
    __table_args__ = (
        UniqueConstraint(
            "tenant_id",
            "channel_type",
            "channel_customer_id",
            name="uq_contacts_tenant_channel_customer",
        ),
    )

    id: UUID = Field(
        default_factory=uuid4, sa_column=Column(Uuid, primary_key=True)
    )
    tenant_id: str = Field(sa_column=Column(String(255), nullable=False))
    channel_type: ChannelType = Field(
        sa_column=get_enum_column(ChannelType, "contact_channel_t")
    )
    channel_customer_id: str = Field(sa_column=Column(String(255), nullable=False))
    display_name: str | None = Field(default=None, sa_column=Column(String(255), nullable=True))
    avatar_url: str | None = Field(default=None, sa_column=Column(Text, nullable=True))
    first_message_at: datetime | None = Field(default=None, sa_column=_timestamp_column())
    last_message_at: datetime | None = Field(default=None, sa_column=_timestamp_column())
    total_messages_received: int = Field(
        default=0, sa_column=Column(Integer, nullable=False, default=0)
    )
    total_messages_sent: int = Field(
        default=0, sa_column=Column(Integer, nullable=False, default=0)
    )
    tags: list[str] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    notes: str | None = Field(default=None, sa_column=Column(Text, nullable=True))
    created_at: datetime = Field(
        default_factory=_utcnow, sa_column=_timestamp_column(nullable=False)
    )
    updated_at: datetime = Field(
        default_factory=_utcnow,
        sa_column=_timestamp_column(nullable=False, onupdate=True),
    )
