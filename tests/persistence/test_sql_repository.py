"""
SQL repository tests against an in-memory SQLite database (aiosqlite).
"""

from datetime import UTC, datetime, timedelta

import pytest

from conftest import TENANT_ID, seed_account, seed_conversation
from unibox.database.models import Conversation, Message
from unibox.database.session_manager import DatabaseSessionManager
from unibox.persistence.sql.inbox_repository import SQLInboxRepository
from unibox.schemas.core.types import ChannelType, MessageDeliveryStatus, SenderType

T0 = datetime(2024, 5, 1, 12, 0, tzinfo=UTC)


@pytest.fixture
async def sql_repository():
    db = DatabaseSessionManager("sqlite+aiosqlite:///:memory:")
    await db.initialize(create_schema=True)
    yield SQLInboxRepository(db)
    await db.cleanup()


def business_message(conversation, channel_message_id=None, **fields):
    return Message(
        conversation_id=conversation.id,
        channel_message_id=channel_message_id,
        sender_type=SenderType.BUSINESS,
        content=fields.pop("content", "Hello"),
        status=fields.pop("status", MessageDeliveryStatus.SENT),
        **fields,
    )


class TestConnectedAccounts:
    async def test_upsert_updates_the_active_row(self, sql_repository):
        first = await seed_account(
            sql_repository,
            ChannelType.MESSENGER,
            "PAGE_1",
            provider_metadata={"page_id": "PAGE_1"},
        )
        second = await seed_account(
            sql_repository,
            ChannelType.MESSENGER,
            "PAGE_1",
            access_token="new-token",
            provider_metadata={"page_access_token": "page-token"},
        )

        assert second.id == first.id
        stored = await sql_repository.get_account(first.id)
        assert stored.access_token == "new-token"
        assert stored.provider_metadata == {
            "page_id": "PAGE_1",
            "page_access_token": "page-token",
        }

    async def test_resource_moving_tenants_keeps_one_active_row(self, sql_repository):
        old = await seed_account(sql_repository, ChannelType.WHATSAPP, "PHONE_1")
        new = await seed_account(
            sql_repository, ChannelType.WHATSAPP, "PHONE_1", tenant_id="tenant-2"
        )

        assert new.id != old.id
        assert not (await sql_repository.get_account(old.id)).is_active
        active = await sql_repository.get_active_account(ChannelType.WHATSAPP, "PHONE_1")
        assert active.tenant_id == "tenant-2"
        assert await sql_repository.list_accounts(TENANT_ID) == []

    async def test_lookup_by_metadata(self, sql_repository):
        account = await seed_account(
            sql_repository,
            ChannelType.INSTAGRAM,
            "IG_1",
            provider_metadata={"page_id": "PAGE_9"},
        )

        found = await sql_repository.find_active_account_by_metadata(
            ChannelType.INSTAGRAM, "page_id", "PAGE_9"
        )

        assert found.id == account.id
        assert (
            await sql_repository.find_active_account_by_metadata(
                ChannelType.INSTAGRAM, "page_id", "OTHER"
            )
            is None
        )

    async def test_deactivate_clears_tokens(self, sql_repository):
        account = await seed_account(
            sql_repository,
            ChannelType.MESSENGER,
            "PAGE_1",
            provider_metadata={"page_access_token": "page-token"},
        )

        await sql_repository.deactivate_account(account.id, clear_token=True)

        stored = await sql_repository.get_account(account.id)
        assert not stored.is_active
        assert stored.send_token is None


class TestConversationsAndMessages:
    async def test_conversation_is_unique_per_thread(self, sql_repository):
        account = await seed_account(sql_repository, ChannelType.MESSENGER, "PAGE_1")
        first = await seed_conversation(sql_repository, account, "psid")

        second, created = await sql_repository.create_conversation(
            Conversation(
                connected_account_id=account.id,
                channel_type=ChannelType.MESSENGER,
                channel_conversation_id="psid",
                customer_id="psid",
            )
        )

        assert not created
        assert second.id == first.id

    async def test_duplicate_channel_message_id_is_not_inserted(self, sql_repository):
        account = await seed_account(sql_repository, ChannelType.MESSENGER, "PAGE_1")
        conversation = await seed_conversation(sql_repository, account, "psid")

        first, created = await sql_repository.insert_message(
            business_message(conversation, "m_1")
        )
        again, created_again = await sql_repository.insert_message(
            business_message(conversation, "m_1", content="Hello again")
        )

        assert created and not created_again
        assert again.id == first.id
        assert len(await sql_repository.list_messages(conversation.id)) == 1

    async def test_status_never_moves_backwards(self, sql_repository):
        account = await seed_account(sql_repository, ChannelType.WHATSAPP, "PHONE_1")
        conversation = await seed_conversation(sql_repository, account, "1555")
        message, _ = await sql_repository.insert_message(
            business_message(conversation, "wamid.1")
        )

        await sql_repository.record_status(message.id, MessageDeliveryStatus.READ, T0)
        await sql_repository.record_status(
            message.id, MessageDeliveryStatus.DELIVERED, T0 - timedelta(seconds=5)
        )
        await sql_repository.record_status(
            message.id, MessageDeliveryStatus.FAILED, T0, "late failure"
        )

        stored = await sql_repository.get_message(message.id)
        assert stored.status == MessageDeliveryStatus.READ
        assert stored.read_at == T0
        assert stored.delivered_at == T0 - timedelta(seconds=5)
        assert stored.failed_at is None

    async def test_watermark_and_window_queries(self, sql_repository):
        account = await seed_account(sql_repository, ChannelType.MESSENGER, "PAGE_1")
        conversation = await seed_conversation(sql_repository, account, "psid")
        await sql_repository.insert_message(business_message(conversation, "m_1", sent_at=T0))
        await sql_repository.insert_message(
            business_message(conversation, "m_2", sent_at=T0 + timedelta(minutes=5))
        )
        await sql_repository.insert_message(
            Message(
                conversation_id=conversation.id,
                channel_message_id="m_in",
                sender_type=SenderType.CUSTOMER,
                content="Hi",
                status=MessageDeliveryStatus.DELIVERED,
                sent_at=T0 + timedelta(minutes=1),
            )
        )

        until = await sql_repository.list_business_messages_until(
            conversation.id, T0 + timedelta(minutes=2)
        )

        assert [m.channel_message_id for m in until] == ["m_1"]
        assert await sql_repository.last_customer_message_at(conversation.id) == (
            T0 + timedelta(minutes=1)
        )


class TestContacts:
    async def test_counters_and_activity_window(self, sql_repository):
        await sql_repository.upsert_contact_activity(
            TENANT_ID,
            ChannelType.INSTAGRAM,
            "igsid",
            direction=SenderType.CUSTOMER,
            at=T0,
            display_name="Alice",
        )
        await sql_repository.upsert_contact_activity(
            TENANT_ID,
            ChannelType.INSTAGRAM,
            "igsid",
            direction=SenderType.BUSINESS,
            at=T0 + timedelta(hours=1),
        )
        await sql_repository.upsert_contact_activity(
            TENANT_ID,
            ChannelType.INSTAGRAM,
            "igsid",
            direction=SenderType.CUSTOMER,
            at=T0 - timedelta(hours=1),
            display_name="Someone else",
        )

        contact = await sql_repository.get_contact(TENANT_ID, ChannelType.INSTAGRAM, "igsid")
        assert contact.total_messages_received == 2
        assert contact.total_messages_sent == 1
        assert contact.first_message_at == T0 - timedelta(hours=1)
        assert contact.last_message_at == T0 + timedelta(hours=1)
        assert contact.display_name == "Alice"
