"""
WhatsApp Cloud API adapter.

Sends are addressed by phone-number id; inbound payloads nest under
``entry[].changes[].value.messages[]`` and ``...value.statuses[]``.
"""

from typing import Any

from unibox.messaging.meta.adapters.base import PARSE_ERRORS, ChannelAdapter
from unibox.messaging.meta.errors import SessionWindowClosedError
from unibox.messaging.meta.utils.payload_helpers import as_list, parse_timestamp
from unibox.schemas.core.types import (
    ChannelType,
    MessageContentType,
    MessageDeliveryStatus,
    WebhookObject,
)
from unibox.schemas.meta.outbound import OutboundMessage, SendResult, TemplateSpec
from unibox.schemas.meta.webhook_events import (
    InboundMessage,
    IncomingWebhookEvent,
    MessageStatusUpdate,
    ParsedWebhook,
)

_MESSAGE_TYPE_MAP = {
    "text": MessageContentType.TEXT,
    "image": MessageContentType.IMAGE,
    "video": MessageContentType.VIDEO,
    "audio": MessageContentType.AUDIO,
    "document": MessageContentType.FILE,
    "sticker": MessageContentType.STICKER,
    "location": MessageContentType.LOCATION,
    "interactive": MessageContentType.INTERACTIVE,
    "button": MessageContentType.INTERACTIVE,
    "template": MessageContentType.TEMPLATE,
}

_STATUS_MAP = {
    "sent": MessageDeliveryStatus.SENT,
    "delivered": MessageDeliveryStatus.DELIVERED,
    "read": MessageDeliveryStatus.READ,
    "failed": MessageDeliveryStatus.FAILED,
}

# Unified content type -> WhatsApp media object key
_MEDIA_KEYS = {
    MessageContentType.IMAGE: "image",
    MessageContentType.VIDEO: "video",
    MessageContentType.AUDIO: "audio",
    MessageContentType.FILE: "document",
}


class WhatsAppAdapter(ChannelAdapter):
    """WhatsApp Cloud API send/receive normalization."""

    @property
    def channel(self) -> ChannelType:
        return ChannelType.WHATSAPP

    @staticmethod
    def _envelope(to: str, message_type: str) -> dict[str, Any]:
        return {
            "messaging_product": "whatsapp",
            "recipient_type": "individual",
            "to": to,
            "type": message_type,
        }

    async def send_text(
        self, account_id: str, access_token: str, message: OutboundMessage
    ) -> SendResult:
        """Send free-form text, or the fallback template once the window closed.

        Raises:
            SessionWindowClosedError: Window closed and no template supplied
        """
        if message.window_open is False:
            if message.template is not None:
                self.logger.info(
                    f"Session window closed for {message.recipient_id}, "
                    f"sending template '{message.template.name}' instead"
                )
                return await self.send_template(
                    account_id, access_token, message.recipient_id, message.template
                )
            raise SessionWindowClosedError(
                "The 24-hour WhatsApp customer service window is closed; "
                "only approved templates can be sent"
            )

        body = self._envelope(message.recipient_id, "text")
        body["text"] = {"body": message.content, "preview_url": message.preview_url}
        return await self._post_message(
            account_id, access_token, message.recipient_id, body
        )

    async def send_media(
        self, account_id: str, access_token: str, message: OutboundMessage
    ) -> SendResult:
        if message.window_open is False:
            raise SessionWindowClosedError(
                "The 24-hour WhatsApp customer service window is closed; "
                "media cannot be sent outside it"
            )

        media_key = _MEDIA_KEYS[message.content_type]
        media: dict[str, Any] = {"link": message.media_url}
        caption = message.caption or message.content
        if caption and message.content_type != MessageContentType.AUDIO:
            media["caption"] = caption
        if message.filename and media_key == "document":
            media["filename"] = message.filename

        body = self._envelope(message.recipient_id, media_key)
        body[media_key] = media
        return await self._post_message(
            account_id, access_token, message.recipient_id, body
        )

    async def send_template(
        self,
        account_id: str,
        access_token: str,
        recipient_id: str,
        template: TemplateSpec,
    ) -> SendResult:
        """Send a pre-approved template (allowed outside the session window)."""
        template_body: dict[str, Any] = {
            "name": template.name,
            "language": {"code": template.language_code},
        }
        if template.components:
            template_body["components"] = template.components

        body = self._envelope(recipient_id, "template")
        body["template"] = template_body
        return await self._post_message(
            account_id,
            access_token,
            recipient_id,
            body,
            metadata={"template_name": template.name},
        )

    async def send(
        self, account_id: str, access_token: str, message: OutboundMessage
    ) -> SendResult:
        if message.content_type == MessageContentType.TEMPLATE:
            return await self.send_template(
                account_id, access_token, message.recipient_id, message.template
            )
        return await super().send(account_id, access_token, message)

    async def mark_as_read(
        self, account_id: str, access_token: str, message_id: str
    ) -> bool:
        """Mark an inbound message as read (blue ticks)."""
        response = await self.client.post(
            f"{account_id}/messages",
            access_token=access_token,
            body={
                "messaging_product": "whatsapp",
                "status": "read",
                "message_id": message_id,
            },
        )
        return bool(response.get("success", True))

    # ==================== WEBHOOK PARSING ====================

    def parse_inbound_webhook(self, payload: dict[str, Any]) -> ParsedWebhook:
        parsed = ParsedWebhook()

        if payload.get("object") != WebhookObject.WHATSAPP_BUSINESS_ACCOUNT.value:
            self.logger.warning(
                f"Ignoring non-WhatsApp webhook object: {payload.get('object')}"
            )
            return parsed

        for entry in as_list(payload.get("entry")):
            for change in as_list(entry.get("changes") if isinstance(entry, dict) else None):
                if not isinstance(change, dict) or change.get("field") != "messages":
                    continue
                value = change.get("value") or {}
                try:
                    phone_number_id = str(value["metadata"]["phone_number_id"])
                except PARSE_ERRORS as exc:
                    self._drop(parsed, change, exc)
                    continue

                contacts = {
                    str(c.get("wa_id")): c
                    for c in as_list(value.get("contacts"))
                    if isinstance(c, dict)
                }

                for raw in as_list(value.get("messages")):
                    try:
                        parsed.messages.append(
                            self._parse_message(raw, phone_number_id, contacts)
                        )
                    except PARSE_ERRORS as exc:
                        self._drop(parsed, raw, exc)

                for raw in as_list(value.get("statuses")):
                    try:
                        status = self._parse_status(raw, phone_number_id)
                    except PARSE_ERRORS as exc:
                        self._drop(parsed, raw, exc)
                        continue
                    if status is not None:
                        parsed.statuses.append(status)

        return parsed

    def _parse_message(
        self, raw: dict[str, Any], phone_number_id: str, contacts: dict[str, dict]
    ) -> IncomingWebhookEvent:
        customer_id = str(raw["from"])
        contact = contacts.get(customer_id) or {}
        content, metadata = extract_whatsapp_content(raw)

        return IncomingWebhookEvent(
            channel_type=ChannelType.WHATSAPP,
            account_id=phone_number_id,
            customer_id=customer_id,
            customer_name=(contact.get("profile") or {}).get("name"),
            message=InboundMessage(
                id=raw["id"],
                type=_MESSAGE_TYPE_MAP.get(raw.get("type"), MessageContentType.TEXT),
                content=content,
                timestamp=parse_timestamp(raw["timestamp"]),
                metadata=metadata,
            ),
        )

    def _parse_status(
        self, raw: dict[str, Any], phone_number_id: str
    ) -> MessageStatusUpdate | None:
        status = _STATUS_MAP.get(raw.get("status"))
        if status is None:
            self.logger.debug(f"Skipping unsupported WhatsApp status: {raw.get('status')}")
            return None

        errors = as_list(raw.get("errors"))
        error_message = None
        if status == MessageDeliveryStatus.FAILED and errors:
            first = errors[0] if isinstance(errors[0], dict) else {}
            details = (first.get("error_data") or {}).get("details")
            error_message = first.get("title") or first.get("message")
            if details and details != error_message:
                error_message = f"{error_message}: {details}" if error_message else details
            if first.get("code") is not None:
                error_message = f"{error_message or 'Delivery failed'} (code {first['code']})"

        return MessageStatusUpdate(
            channel_type=ChannelType.WHATSAPP,
            channel_message_id=raw["id"],
            status=status,
            timestamp=parse_timestamp(raw["timestamp"]),
            error_message=error_message,
            account_id=phone_number_id,
            customer_id=raw.get("recipient_id"),
        )


def extract_whatsapp_content(raw: dict[str, Any]) -> tuple[str | None, dict[str, Any]]:
    """Return ``(content, metadata)`` for a WhatsApp inbound message."""
    metadata: dict[str, Any] = {}

    context = raw.get("context")
    if isinstance(context, dict) and context.get("id"):
        metadata["reply_to_message_id"] = context["id"]

    reaction = raw.get("reaction")
    if isinstance(reaction, dict):
        metadata["reaction_emoji"] = reaction.get("emoji")
        metadata["reacted_message_id"] = reaction.get("message_id")
        return reaction.get("emoji"), metadata

    message_type = raw.get("type")
    body = raw.get(message_type) if isinstance(message_type, str) else None
    body = body if isinstance(body, dict) else {}

    if message_type == "text":
        return body.get("body"), metadata

    if message_type in ("image", "video", "audio", "document", "sticker"):
        metadata["media_id"] = body.get("id")
        metadata["media_mime_type"] = body.get("mime_type")
        if message_type == "document" and body.get("filename"):
            metadata["media_filename"] = body["filename"]
        return body.get("caption"), metadata

    if message_type == "location":
        metadata["latitude"] = body.get("latitude")
        metadata["longitude"] = body.get("longitude")
        metadata["location_name"] = body.get("name")
        metadata["location_address"] = body.get("address")
        return body.get("name") or body.get("address"), metadata

    if message_type == "button":
        metadata["button_payload"] = body.get("payload")
        return body.get("text"), metadata

    if message_type == "interactive":
        reply = body.get("button_reply") or body.get("list_reply") or {}
        metadata["interactive_reply_id"] = reply.get("id")
        return reply.get("title"), metadata

    return None, metadata
