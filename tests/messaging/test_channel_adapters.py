"""
Tests for the WhatsApp, Messenger and Instagram adapters: outbound body
shapes and inbound webhook normalization.
"""

import pytest

from conftest import FakeGraphClient
from unibox.messaging.meta.adapters.factory import AdapterRegistry, detect_channel
from unibox.messaging.meta.errors import SessionWindowClosedError
from unibox.schemas.core.types import ChannelType, MessageContentType, MessageDeliveryStatus
from unibox.schemas.meta.outbound import OutboundMessage, TemplateSpec

PAGE_ID = "PAGE_1"
PHONE_ID = "PHONE_1"
IG_ID = "IG_1"


@pytest.fixture
def adapters(graph: FakeGraphClient) -> AdapterRegistry:
    graph.add("POST", f"{PHONE_ID}/messages", {"messages": [{"id": "wamid.out"}]})
    graph.add("POST", f"{PAGE_ID}/messages", {"recipient_id": "psid", "message_id": "m_out"})
    graph.add("POST", f"{IG_ID}/messages", {"recipient_id": "igsid", "message_id": "ig_out"})
    return AdapterRegistry(graph)


class TestPageMessagingSend:
    async def test_standard_send_has_no_tag(self, adapters, graph):
        message = OutboundMessage(recipient_id="psid", content="Hello")

        result = await adapters.messenger.send(PAGE_ID, "page-token", message)

        body = graph.calls[-1].body
        assert body == {
            "recipient": {"id": "psid"},
            "messaging_type": "RESPONSE",
            "message": {"text": "Hello"},
        }
        assert "tag" not in body
        assert result.channel_message_id == "m_out"
        assert result.metadata == {}
        assert graph.calls[-1].access_token == "page-token"

    async def test_extended_window_applies_human_agent_tag(self, adapters, graph):
        message = OutboundMessage(
            recipient_id="igsid", content="Following up", extended_window_requested=True
        )

        result = await adapters.instagram.send(IG_ID, "page-token", message)

        body = graph.calls[-1].body
        assert body["tag"] == "HUMAN_AGENT"
        assert body["messaging_type"] == "MESSAGE_TAG"
        assert result.metadata == {"tag": "HUMAN_AGENT", "messaging_type": "MESSAGE_TAG"}

    async def test_media_send_uses_attachment_payload(self, adapters, graph):
        message = OutboundMessage(
            recipient_id="psid",
            content_type=MessageContentType.FILE,
            media_url="https://cdn.test/invoice.pdf",
        )

        await adapters.messenger.send(PAGE_ID, "page-token", message)

        attachment = graph.calls[-1].body["message"]["attachment"]
        assert attachment["type"] == "file"
        assert attachment["payload"]["url"] == "https://cdn.test/invoice.pdf"

    async def test_button_template_rejects_too_many_buttons(self, adapters):
        buttons = [{"type": "postback", "title": str(i), "payload": str(i)} for i in range(4)]

        with pytest.raises(ValueError):
            await adapters.messenger.send_button_template(
                PAGE_ID, "page-token", "psid", "Pick one", buttons
            )


class TestWhatsAppSend:
    async def test_text_body(self, adapters, graph):
        message = OutboundMessage(recipient_id="15551234567", content="Hi", window_open=True)

        result = await adapters.whatsapp.send(PHONE_ID, "token", message)

        body = graph.calls[-1].body
        assert body["messaging_product"] == "whatsapp"
        assert body["to"] == "15551234567"
        assert body["text"]["body"] == "Hi"
        assert result.channel_message_id == "wamid.out"

    async def test_unknown_window_still_attempts_free_form(self, adapters, graph):
        message = OutboundMessage(recipient_id="15551234567", content="Hi")

        await adapters.whatsapp.send(PHONE_ID, "token", message)

        assert graph.calls[-1].body["type"] == "text"

    async def test_closed_window_without_template_is_rejected(self, adapters, graph):
        message = OutboundMessage(recipient_id="15551234567", content="Hi", window_open=False)

        with pytest.raises(SessionWindowClosedError):
            await adapters.whatsapp.send(PHONE_ID, "token", message)

        assert graph.calls == []

    async def test_closed_window_falls_back_to_template(self, adapters, graph):
        message = OutboundMessage(
            recipient_id="15551234567",
            content="Hi",
            window_open=False,
            template=TemplateSpec(name="follow_up", language_code="es"),
        )

        result = await adapters.whatsapp.send(PHONE_ID, "token", message)

        body = graph.calls[-1].body
        assert body["type"] == "template"
        assert body["template"] == {"name": "follow_up", "language": {"code": "es"}}
        assert result.metadata["template_name"] == "follow_up"

    async def test_document_keeps_filename_and_caption(self, adapters, graph):
        message = OutboundMessage(
            recipient_id="15551234567",
            content_type=MessageContentType.FILE,
            media_url="https://cdn.test/a.pdf",
            filename="a.pdf",
            caption="Your invoice",
        )

        await adapters.whatsapp.send(PHONE_ID, "token", message)

        assert graph.calls[-1].body["document"] == {
            "link": "https://cdn.test/a.pdf",
            "caption": "Your invoice",
            "filename": "a.pdf",
        }

    async def test_mark_as_read(self, adapters, graph):
        assert await adapters.whatsapp.mark_as_read(PHONE_ID, "token", "wamid.in1")

        assert graph.calls[-1].body == {
            "messaging_product": "whatsapp",
            "status": "read",
            "message_id": "wamid.in1",
        }


class TestWhatsAppParsing:
    def payload(self, messages=None, statuses=None):
        value = {
            "messaging_product": "whatsapp",
            "metadata": {"display_phone_number": "15550000000", "phone_number_id": PHONE_ID},
            "contacts": [{"profile": {"name": "Maria"}, "wa_id": "15551234567"}],
        }
        if messages is not None:
            value["messages"] = messages
        if statuses is not None:
            value["statuses"] = statuses
        return {
            "object": "whatsapp_business_account",
            "entry": [{"id": "WABA_1", "changes": [{"field": "messages", "value": value}]}],
        }

    def test_text_message(self, adapters):
        parsed = adapters.whatsapp.parse_inbound_webhook(
            self.payload(
                messages=[
                    {
                        "from": "15551234567",
                        "id": "wamid.in1",
                        "timestamp": "1700000000",
                        "type": "text",
                        "text": {"body": "Hola"},
                    }
                ]
            )
        )

        event = parsed.messages[0]
        assert event.channel_type == ChannelType.WHATSAPP
        assert event.account_id == PHONE_ID
        assert event.customer_id == "15551234567"
        assert event.customer_name == "Maria"
        assert event.message.content == "Hola"
        assert event.message.timestamp.timestamp() == 1700000000

    def test_location_and_reaction_content(self, adapters):
        parsed = adapters.whatsapp.parse_inbound_webhook(
            self.payload(
                messages=[
                    {
                        "from": "15551234567",
                        "id": "wamid.loc",
                        "timestamp": "1700000000",
                        "type": "location",
                        "location": {"latitude": 4.6, "longitude": -74.1, "name": "Office"},
                    },
                    {
                        "from": "15551234567",
                        "id": "wamid.react",
                        "timestamp": "1700000001",
                        "type": "reaction",
                        "reaction": {"message_id": "wamid.out", "emoji": "👍"},
                    },
                ]
            )
        )

        location, reaction = parsed.messages
        assert location.message.type == MessageContentType.LOCATION
        assert location.message.metadata["latitude"] == 4.6
        assert location.message.content == "Office"
        assert reaction.message.content == "👍"
        assert reaction.message.metadata["reacted_message_id"] == "wamid.out"

    def test_failed_status_carries_error_detail(self, adapters):
        parsed = adapters.whatsapp.parse_inbound_webhook(
            self.payload(
                statuses=[
                    {
                        "id": "wamid.out",
                        "status": "failed",
                        "timestamp": "1700000100",
                        "recipient_id": "15551234567",
                        "errors": [{"code": 131047, "title": "Re-engagement message"}],
                    }
                ]
            )
        )

        status = parsed.statuses[0]
        assert status.status == MessageDeliveryStatus.FAILED
        assert status.channel_message_id == "wamid.out"
        assert "131047" in status.error_message

    def test_malformed_items_are_dropped_not_raised(self, adapters):
        parsed = adapters.whatsapp.parse_inbound_webhook(
            self.payload(
                messages=[
                    {"id": "wamid.bad", "type": "text"},
                    {
                        "from": "15551234567",
                        "id": "wamid.ok",
                        "timestamp": "1700000000",
                        "type": "text",
                        "text": {"body": "ok"},
                    },
                ]
            )
        )

        assert parsed.dropped == 1
        assert [e.message.id for e in parsed.messages] == ["wamid.ok"]

    def test_other_objects_are_ignored(self, adapters):
        parsed = adapters.whatsapp.parse_inbound_webhook({"object": "page", "entry": []})
        assert parsed.is_empty


class TestMessengerParsing:
    def test_messages_postbacks_and_receipts(self, adapters):
        payload = {
            "object": "page",
            "entry": [
                {
                    "id": PAGE_ID,
                    "time": 1700000000000,
                    "messaging": [
                        {
                            "sender": {"id": "psid"},
                            "recipient": {"id": PAGE_ID},
                            "timestamp": 1700000000000,
                            "message": {"mid": "m_1", "text": "Hi"},
                        },
                        {
                            "sender": {"id": PAGE_ID},
                            "recipient": {"id": "psid"},
                            "timestamp": 1700000001000,
                            "message": {"mid": "m_echo", "text": "Reply", "is_echo": True},
                        },
                        {
                            "sender": {"id": "psid"},
                            "recipient": {"id": PAGE_ID},
                            "timestamp": 1700000002000,
                            "postback": {"mid": "m_pb", "title": "Book now", "payload": "BOOK"},
                        },
                        {
                            "sender": {"id": "psid"},
                            "recipient": {"id": PAGE_ID},
                            "timestamp": 1700000003000,
                            "delivery": {"mids": ["m_out"], "watermark": 1700000003000},
                        },
                        {
                            "sender": {"id": "psid"},
                            "recipient": {"id": PAGE_ID},
                            "timestamp": 1700000004000,
                            "read": {"watermark": 1700000004000},
                        },
                    ],
                }
            ],
        }

        parsed = adapters.messenger.parse_inbound_webhook(payload)

        assert [e.message.id for e in parsed.messages] == ["m_1", "m_pb"]
        assert parsed.messages[1].message.type == MessageContentType.INTERACTIVE
        assert parsed.messages[1].message.content == "Book now"
        delivered, read = parsed.statuses
        assert delivered.channel_message_id == "m_out"
        assert delivered.status == MessageDeliveryStatus.DELIVERED
        assert read.is_watermark
        assert read.customer_id == "psid"
        assert read.account_id == PAGE_ID

    def test_event_without_sender_is_dropped(self, adapters):
        payload = {
            "object": "page",
            "entry": [{"id": PAGE_ID, "messaging": [{"message": {"mid": "m_x", "text": "?"}}]}],
        }

        parsed = adapters.messenger.parse_inbound_webhook(payload)

        assert parsed.dropped == 1
        assert parsed.messages == []


class TestInstagramParsing:
    def test_changes_envelope_uses_recipient_id(self, adapters):
        payload = {
            "object": "instagram",
            "entry": [
                {
                    "id": "0",
                    "time": 1700000000,
                    "changes": [
                        {
                            "field": "messages",
                            "value": {
                                "sender": {"id": "igsid"},
                                "recipient": {"id": IG_ID},
                                "timestamp": "1700000000",
                                "message": {
                                    "mid": "ig_1",
                                    "attachments": [
                                        {"type": "image", "payload": {"url": "https://cdn/x.jpg"}}
                                    ],
                                },
                            },
                        }
                    ],
                }
            ],
        }

        parsed = adapters.instagram.parse_inbound_webhook(payload)

        event = parsed.messages[0]
        assert event.account_id == IG_ID
        assert event.message.type == MessageContentType.IMAGE
        assert event.message.metadata["media_url"] == "https://cdn/x.jpg"

    def test_messaging_envelope_uses_entry_id(self, adapters):
        payload = {
            "object": "instagram",
            "entry": [
                {
                    "id": IG_ID,
                    "messaging": [
                        {
                            "sender": {"id": "igsid"},
                            "recipient": {"id": IG_ID},
                            "timestamp": 1700000000000,
                            "message": {"mid": "ig_2", "text": "hey"},
                        }
                    ],
                }
            ],
        }

        parsed = adapters.instagram.parse_inbound_webhook(payload)

        assert parsed.messages[0].account_id == IG_ID
        assert parsed.messages[0].message.timestamp.timestamp() == 1700000000


class TestRegistry:
    def test_detect_channel(self):
        assert detect_channel({"object": "whatsapp_business_account"}) == ChannelType.WHATSAPP
        assert detect_channel({"object": "instagram"}) == ChannelType.INSTAGRAM
        assert detect_channel({"object": "page"}) == ChannelType.MESSENGER
        assert detect_channel({"object": "user"}) is None

    def test_unknown_channel_raises(self, adapters):
        with pytest.raises(ValueError):
            adapters.get("telegram")
