"""
Tests for the send orchestrator: tagging, demo mode, error classification
and the per-request message row.
"""

import asyncio
import uuid
from datetime import timedelta

import pytest

from conftest import TENANT_ID, FakeGraphClient, seed_account, seed_conversation
from unibox.database.models import Message
from unibox.domain.senders.message_sender import (
    LiveMessageSender,
    MessageSenderSelector,
    SimulatedMessageSender,
)
from unibox.domain.services.send_orchestrator import SendOrchestrator
from unibox.messaging.meta.adapters.factory import AdapterRegistry
from unibox.messaging.meta.errors import (
    AccountNotConnectedError,
    ConversationNotFoundError,
    GraphApiError,
    SendValidationError,
)
from unibox.messaging.meta.utils.payload_helpers import utc_now
from unibox.schemas.core.types import (
    ChannelType,
    MessageContentType,
    MessageDeliveryStatus,
    SendErrorCode,
    SenderType,
)
from unibox.schemas.meta.outbound import SendMessageRequest, TemplateSpec

PAGE_ID = "PAGE_1"
PHONE_ID = "PHONE_1"


class SlowGraphClient(FakeGraphClient):
    """Yields to the event loop before answering so concurrent sends interleave."""

    async def request(self, *args, **kwargs):
        await asyncio.sleep(0.01)
        return await super().request(*args, **kwargs)


@pytest.fixture
def simulated(repository) -> SimulatedMessageSender:
    return SimulatedMessageSender(repository, step_delay=0.0)


@pytest.fixture
def orchestrator(repository, graph: FakeGraphClient, simulated) -> SendOrchestrator:
    graph.add("POST", f"{PAGE_ID}/messages", {"recipient_id": "psid", "message_id": "m_out"})
    graph.add("POST", f"{PHONE_ID}/messages", {"messages": [{"id": "wamid.out"}]})
    selector = MessageSenderSelector(
        LiveMessageSender(AdapterRegistry(graph)),
        simulated,
        demo_channel="whatsapp",
        demo_token_prefix="demo_",
    )
    return SendOrchestrator(repository, selector)


async def messenger_conversation(repository, **fields):
    account = await seed_account(
        repository,
        ChannelType.MESSENGER,
        PAGE_ID,
        provider_metadata={"page_access_token": "page-token"},
    )
    return account, await seed_conversation(repository, account, "psid", **fields)


async def whatsapp_conversation(repository, access_token="user-token"):
    account = await seed_account(
        repository, ChannelType.WHATSAPP, PHONE_ID, access_token=access_token
    )
    return account, await seed_conversation(repository, account, "15551234567")


async def add_customer_message(repository, conversation, sent_at):
    await repository.insert_message(
        Message(
            conversation_id=conversation.id,
            channel_message_id=f"in.{uuid.uuid4().hex}",
            sender_type=SenderType.CUSTOMER,
            content="Hi",
            status=MessageDeliveryStatus.DELIVERED,
            sent_at=sent_at,
        )
    )


class TestMessengerSend:
    async def test_standard_send_is_stored_as_sent(self, orchestrator, repository, graph):
        _, conversation = await messenger_conversation(repository)

        outcome = await orchestrator.send(
            TENANT_ID, SendMessageRequest(conversation_id=conversation.id, content="Hello")
        )

        assert outcome.ok
        assert outcome.mode == "live"
        message = outcome.message
        assert message.status == MessageDeliveryStatus.SENT
        assert message.sent_at is not None
        assert message.channel_message_id == "m_out"
        assert message.sender_type == SenderType.BUSINESS
        assert message.provider_metadata["sender_mode"] == "live"
        call = graph.calls_to(f"{PAGE_ID}/messages")[0]
        assert call.access_token == "page-token"
        assert "tag" not in call.body

    async def test_extended_window_tags_and_flags_conversation(
        self, orchestrator, repository, graph
    ):
        _, conversation = await messenger_conversation(repository)

        outcome = await orchestrator.send(
            TENANT_ID,
            SendMessageRequest(
                conversation_id=conversation.id, content="Following up", extended_window=True
            ),
        )

        assert graph.calls[-1].body["tag"] == "HUMAN_AGENT"
        assert outcome.message.provider_metadata["tag"] == "HUMAN_AGENT"
        assert outcome.message.provider_metadata["messaging_type"] == "MESSAGE_TAG"
        stored = await repository.get_conversation(conversation.id)
        assert stored.extended_window_enabled
        assert stored.extended_window_reason == "operator_request"
        assert stored.extended_window_marked_at is not None

    async def test_flagged_conversation_keeps_tagging(self, orchestrator, repository, graph):
        _, conversation = await messenger_conversation(
            repository, extended_window_enabled=True
        )

        await orchestrator.send(
            TENANT_ID, SendMessageRequest(conversation_id=conversation.id, content="Again")
        )

        assert graph.calls[-1].body["messaging_type"] == "MESSAGE_TAG"

    async def test_capability_error_is_classified_and_persisted(
        self, orchestrator, repository, graph
    ):
        _, conversation = await messenger_conversation(repository)
        graph.add(
            "POST",
            f"{PAGE_ID}/messages",
            GraphApiError(
                "Application does not have the capability to make this API call.",
                code=3,
                http_status=400,
                fbtrace_id="TRACE",
            ),
        )

        outcome = await orchestrator.send(
            TENANT_ID, SendMessageRequest(conversation_id=conversation.id, content="Hello")
        )

        assert not outcome.ok
        assert outcome.error.code == SendErrorCode.CAPABILITY_MISSING
        assert outcome.error.fbtrace_id == "TRACE"
        assert outcome.message.status == MessageDeliveryStatus.FAILED
        assert outcome.message.failed_at is not None
        assert "capability" in outcome.message.error_message
        assert len(graph.calls_to(f"{PAGE_ID}/messages")) == 1

    async def test_sent_counter_on_contact(self, orchestrator, repository):
        _, conversation = await messenger_conversation(repository)

        await orchestrator.send(
            TENANT_ID, SendMessageRequest(conversation_id=conversation.id, content="Hello")
        )

        contact = await repository.get_contact(TENANT_ID, ChannelType.MESSENGER, "psid")
        assert contact.total_messages_sent == 1
        assert contact.total_messages_received == 0

    async def test_identical_concurrent_sends_get_their_own_rows(
        self, repository, simulated
    ):
        graph = SlowGraphClient()
        channel_ids = iter(["m_1", "m_2"])
        graph.add(
            "POST",
            f"{PAGE_ID}/messages",
            lambda **_: {"recipient_id": "psid", "message_id": next(channel_ids)},
        )
        orchestrator = SendOrchestrator(
            repository,
            MessageSenderSelector(
                LiveMessageSender(AdapterRegistry(graph)),
                simulated,
                demo_channel="whatsapp",
                demo_token_prefix="demo_",
            ),
        )
        _, conversation = await messenger_conversation(repository)
        request = SendMessageRequest(conversation_id=conversation.id, content="ok")

        first, second = await asyncio.gather(
            orchestrator.send(TENANT_ID, request), orchestrator.send(TENANT_ID, request)
        )

        assert len(graph.calls) == 2
        assert first.message.id != second.message.id
        stored = await repository.list_messages(conversation.id)
        assert len(stored) == 2
        assert sorted(m.channel_message_id for m in stored) == ["m_1", "m_2"]
        assert all(m.status == MessageDeliveryStatus.SENT for m in stored)

    async def test_rejected_extended_send_leaves_conversation_unflagged(
        self, orchestrator, repository, graph
    ):
        _, conversation = await messenger_conversation(repository)

        with pytest.raises(SendValidationError):
            await orchestrator.send(
                TENANT_ID,
                SendMessageRequest(
                    conversation_id=conversation.id, content="  ", extended_window=True
                ),
            )

        assert graph.calls == []
        stored = await repository.get_conversation(conversation.id)
        assert not stored.extended_window_enabled
        assert stored.extended_window_reason is None

    async def test_failed_extended_send_leaves_conversation_unflagged(
        self, orchestrator, repository, graph
    ):
        _, conversation = await messenger_conversation(repository)
        graph.add(
            "POST",
            f"{PAGE_ID}/messages",
            GraphApiError("(#10) This message is sent outside of allowed window.", code=10),
        )

        outcome = await orchestrator.send(
            TENANT_ID,
            SendMessageRequest(
                conversation_id=conversation.id, content="Following up", extended_window=True
            ),
        )

        assert not outcome.ok
        assert graph.calls[-1].body["tag"] == "HUMAN_AGENT"
        stored = await repository.get_conversation(conversation.id)
        assert not stored.extended_window_enabled
        assert stored.extended_window_marked_at is None


class TestWhatsAppSend:
    async def test_demo_token_uses_simulated_sender(
        self, orchestrator, repository, graph, simulated
    ):
        _, conversation = await whatsapp_conversation(repository, access_token="demo_token")

        outcome = await orchestrator.send(
            TENANT_ID, SendMessageRequest(conversation_id=conversation.id, content="Hi")
        )
        await simulated.drain()

        assert outcome.mode == "simulated"
        assert outcome.message.channel_message_id.startswith("demo_")
        assert graph.calls == []
        stored = await repository.get_message(outcome.message.id)
        assert stored.status == MessageDeliveryStatus.READ
        assert stored.delivered_at is not None
        assert stored.provider_metadata["sender_mode"] == "simulated"

    async def test_open_window_sends_free_form(self, orchestrator, repository, graph):
        _, conversation = await whatsapp_conversation(repository)
        await add_customer_message(repository, conversation, utc_now() - timedelta(hours=1))

        outcome = await orchestrator.send(
            TENANT_ID, SendMessageRequest(conversation_id=conversation.id, content="Hi")
        )

        assert outcome.ok
        assert outcome.message.channel_message_id == "wamid.out"
        assert graph.calls[-1].body["type"] == "text"

    async def test_closed_window_fails_without_provider_call(
        self, orchestrator, repository, graph
    ):
        _, conversation = await whatsapp_conversation(repository)
        await add_customer_message(repository, conversation, utc_now() - timedelta(days=2))

        outcome = await orchestrator.send(
            TENANT_ID, SendMessageRequest(conversation_id=conversation.id, content="Hi")
        )

        assert outcome.error.code == SendErrorCode.WINDOW_OR_RECIPIENT
        assert outcome.message.status == MessageDeliveryStatus.FAILED
        assert graph.calls == []

    async def test_template_outside_window(self, orchestrator, repository, graph):
        _, conversation = await whatsapp_conversation(repository)
        await add_customer_message(repository, conversation, utc_now() - timedelta(days=2))

        outcome = await orchestrator.send(
            TENANT_ID,
            SendMessageRequest(
                conversation_id=conversation.id,
                message_type=MessageContentType.TEMPLATE,
                template=TemplateSpec(name="order_update", language_code="en_US"),
            ),
        )

        assert outcome.ok
        assert outcome.message.content == "order_update"
        assert outcome.message.provider_metadata["template_name"] == "order_update"
        assert graph.calls[-1].body["type"] == "template"


class TestRejectedRequests:
    async def test_validation_error_persists_nothing(self, orchestrator, repository, graph):
        _, conversation = await messenger_conversation(repository)

        with pytest.raises(SendValidationError):
            await orchestrator.send(
                TENANT_ID, SendMessageRequest(conversation_id=conversation.id, content="  ")
            )

        assert repository.messages == {}
        assert graph.calls == []

    async def test_media_without_url_is_rejected(self, orchestrator, repository):
        _, conversation = await messenger_conversation(repository)

        with pytest.raises(SendValidationError):
            await orchestrator.send(
                TENANT_ID,
                SendMessageRequest(
                    conversation_id=conversation.id, message_type=MessageContentType.IMAGE
                ),
            )

    async def test_other_tenants_conversation_is_not_found(self, orchestrator, repository):
        _, conversation = await messenger_conversation(repository)

        with pytest.raises(ConversationNotFoundError):
            await orchestrator.send(
                "tenant-2", SendMessageRequest(conversation_id=conversation.id, content="Hi")
            )

        assert repository.messages == {}

    async def test_unknown_conversation(self, orchestrator):
        with pytest.raises(ConversationNotFoundError):
            await orchestrator.send(
                TENANT_ID, SendMessageRequest(conversation_id=uuid.uuid4(), content="Hi")
            )

    async def test_disconnected_channel(self, orchestrator, repository):
        account, conversation = await messenger_conversation(repository)
        await repository.deactivate_account(account.id, clear_token=True)

        with pytest.raises(AccountNotConnectedError):
            await orchestrator.send(
                TENANT_ID, SendMessageRequest(conversation_id=conversation.id, content="Hi")
            )


class TestAccountRouting:
    async def test_inactive_owner_routes_through_active_account(
        self, orchestrator, repository, graph
    ):
        account, conversation = await messenger_conversation(repository)
        await repository.deactivate_account(account.id)
        await seed_account(
            repository,
            ChannelType.MESSENGER,
            "PAGE_2",
            provider_metadata={"page_access_token": "new-page-token"},
        )
        graph.add("POST", "PAGE_2/messages", {"recipient_id": "psid", "message_id": "m_new"})

        outcome = await orchestrator.send(
            TENANT_ID, SendMessageRequest(conversation_id=conversation.id, content="Hi")
        )

        assert outcome.ok
        assert graph.calls[-1].path == "PAGE_2/messages"
        assert graph.calls[-1].access_token == "new-page-token"
        assert outcome.message.conversation_id == conversation.id
