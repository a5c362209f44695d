"""
Shared Send API and ``messaging[]`` event handling for Messenger and Instagram.

Both channels post to ``{id}/messages`` with a ``recipient``/``message`` body
and deliver webhook events as ``entry[].messaging[]`` items; they differ in
attachment vocabulary, payload envelope and extra operations.
"""

from typing import Any

from unibox.messaging.meta.adapters.base import PARSE_ERRORS, ChannelAdapter
from unibox.messaging.meta.utils.payload_helpers import as_list, parse_timestamp
from unibox.schemas.core.types import (
    HUMAN_AGENT_TAG,
    MessageContentType,
    MessageDeliveryStatus,
)
from unibox.schemas.meta.outbound import OutboundMessage, SendResult
from unibox.schemas.meta.webhook_events import (
    InboundMessage,
    IncomingWebhookEvent,
    MessageStatusUpdate,
    ParsedWebhook,
)

_ATTACHMENT_TYPES = {
    MessageContentType.IMAGE: "image",
    MessageContentType.VIDEO: "video",
    MessageContentType.AUDIO: "audio",
    MessageContentType.FILE: "file",
}


class PageMessagingAdapter(ChannelAdapter):
    """Base for the Messenger Platform style channels."""

    # Wire attachment type -> unified content type
    attachment_type_map: dict[str, MessageContentType] = {}

    def build_send_body(
        self,
        recipient_id: str,
        message: dict[str, Any],
        extended_window_requested: bool = False,
    ) -> tuple[dict[str, Any], dict[str, Any]]:
        """
        Build the Send API body and the metadata to record with the message.

        HUMAN_AGENT is applied only when explicitly requested.
        """
        body: dict[str, Any] = {
            "recipient": {"id": recipient_id},
            "messaging_type": "MESSAGE_TAG" if extended_window_requested else "RESPONSE",
            "message": message,
        }
        metadata: dict[str, Any] = {}
        if extended_window_requested:
            body["tag"] = HUMAN_AGENT_TAG
            metadata = {"tag": HUMAN_AGENT_TAG, "messaging_type": "MESSAGE_TAG"}
        return body, metadata

    async def send_text(
        self, account_id: str, access_token: str, message: OutboundMessage
    ) -> SendResult:
        body, metadata = self.build_send_body(
            message.recipient_id,
            {"text": message.content},
            message.extended_window_requested,
        )
        return await self._post_message(
            account_id, access_token, message.recipient_id, body, metadata
        )

    async def send_media(
        self, account_id: str, access_token: str, message: OutboundMessage
    ) -> SendResult:
        attachment = {
            "type": _ATTACHMENT_TYPES[message.content_type],
            "payload": {"url": message.media_url, "is_reusable": False},
        }
        body, metadata = self.build_send_body(
            message.recipient_id,
            {"attachment": attachment},
            message.extended_window_requested,
        )
        return await self._post_message(
            account_id, access_token, message.recipient_id, body, metadata
        )

    # ==================== WEBHOOK PARSING ====================

    def _map_attachment(
        self, attachment: dict[str, Any]
    ) -> tuple[MessageContentType, str | None, dict[str, Any]]:
        """Map the first attachment to ``(type, fallback content, metadata)``."""
        wire_type = attachment.get("type") or "fallback"
        payload = attachment.get("payload") or {}
        metadata: dict[str, Any] = {}
        if payload.get("url"):
            metadata["media_url"] = payload["url"]
        content_type = self.attachment_type_map.get(wire_type, MessageContentType.TEXT)
        return content_type, payload.get("title") or f"[{wire_type}]", metadata

    def _parse_messaging_event(
        self,
        event: dict[str, Any],
        account_id: str,
        parsed: ParsedWebhook,
    ) -> None:
        """Append the message/status carried by one ``messaging[]`` item."""
        message = event.get("message")
        if isinstance(message, dict) and message.get("is_echo"):
            return

        customer_id = str(event["sender"]["id"])
        timestamp = event.get("timestamp")

        if isinstance(message, dict):
            parsed.messages.append(
                self._build_message_event(message, account_id, customer_id, timestamp)
            )

        postback = event.get("postback")
        if isinstance(postback, dict):
            parsed.messages.append(
                self._build_postback_event(postback, account_id, customer_id, timestamp)
            )

        read = event.get("read")
        if isinstance(read, dict) and read.get("watermark") is not None:
            watermark = parse_timestamp(read["watermark"])
            parsed.statuses.append(
                MessageStatusUpdate(
                    channel_type=self.channel,
                    status=MessageDeliveryStatus.READ,
                    timestamp=watermark,
                    watermark=watermark,
                    account_id=account_id,
                    customer_id=customer_id,
                )
            )

        delivery = event.get("delivery")
        if isinstance(delivery, dict):
            delivered_at = parse_timestamp(delivery.get("watermark") or timestamp)
            for mid in as_list(delivery.get("mids")):
                parsed.statuses.append(
                    MessageStatusUpdate(
                        channel_type=self.channel,
                        channel_message_id=str(mid),
                        status=MessageDeliveryStatus.DELIVERED,
                        timestamp=delivered_at,
                        account_id=account_id,
                        customer_id=customer_id,
                    )
                )

    def _build_message_event(
        self,
        message: dict[str, Any],
        account_id: str,
        customer_id: str,
        timestamp: Any,
    ) -> IncomingWebhookEvent:
        content = message.get("text")
        content_type = MessageContentType.TEXT
        metadata: dict[str, Any] = {}

        reply_to = message.get("reply_to")
        if isinstance(reply_to, dict) and reply_to.get("mid"):
            metadata["reply_to_message_id"] = reply_to["mid"]

        quick_reply = message.get("quick_reply")
        if isinstance(quick_reply, dict):
            metadata["quick_reply_payload"] = quick_reply.get("payload")

        attachments = as_list(message.get("attachments"))
        if attachments and isinstance(attachments[0], dict):
            content_type, fallback, attachment_meta = self._map_attachment(attachments[0])
            metadata.update(attachment_meta)
            if not content:
                content = fallback

        return IncomingWebhookEvent(
            channel_type=self.channel,
            account_id=account_id,
            customer_id=customer_id,
            message=InboundMessage(
                id=message["mid"],
                type=content_type,
                content=content,
                timestamp=parse_timestamp(timestamp),
                metadata=metadata,
            ),
        )

    def _build_postback_event(
        self,
        postback: dict[str, Any],
        account_id: str,
        customer_id: str,
        timestamp: Any,
    ) -> IncomingWebhookEvent:
        return IncomingWebhookEvent(
            channel_type=self.channel,
            account_id=account_id,
            customer_id=customer_id,
            message=InboundMessage(
                id=postback["mid"],
                type=MessageContentType.INTERACTIVE,
                content=postback.get("title"),
                timestamp=parse_timestamp(timestamp),
                metadata={"postback_payload": postback.get("payload")},
            ),
        )

    def _parse_entry_events(
        self,
        events: list[tuple[dict[str, Any], str]],
        parsed: ParsedWebhook,
    ) -> None:
        for event, account_id in events:
            try:
                self._parse_messaging_event(event, account_id, parsed)
            except PARSE_ERRORS as exc:
                self._drop(parsed, event, exc)
