"""
Facebook Messenger Platform adapter.

Sends are addressed by Page id with the page-scoped token; webhooks arrive
with ``object == "page"`` and ``entry[].id`` is the Page id.
"""

from typing import Any

from unibox.messaging.meta.adapters.page_messaging import PageMessagingAdapter
from unibox.messaging.meta.utils.payload_helpers import as_list
from unibox.schemas.core.types import ChannelType, MessageContentType, WebhookObject
from unibox.schemas.meta.outbound import SendResult
from unibox.schemas.meta.webhook_events import ParsedWebhook

BUTTON_TYPES = ("web_url", "postback", "phone_number")
MAX_TEMPLATE_BUTTONS = 3


class MessengerAdapter(PageMessagingAdapter):
    """Messenger send/receive normalization."""

    attachment_type_map = {
        "image": MessageContentType.IMAGE,
        "video": MessageContentType.VIDEO,
        "audio": MessageContentType.AUDIO,
        "file": MessageContentType.FILE,
        "template": MessageContentType.TEMPLATE,
        "fallback": MessageContentType.TEXT,
    }

    @property
    def channel(self) -> ChannelType:
        return ChannelType.MESSENGER

    def _map_attachment(self, attachment: dict[str, Any]):
        content_type, fallback, metadata = super()._map_attachment(attachment)
        payload = attachment.get("payload") or {}
        if payload.get("sticker_id"):
            content_type = MessageContentType.STICKER
            metadata["sticker_id"] = payload["sticker_id"]
        return content_type, fallback, metadata

    async def send_button_template(
        self,
        page_id: str,
        access_token: str,
        recipient_id: str,
        text: str,
        buttons: list[dict[str, Any]],
        extended_window_requested: bool = False,
    ) -> SendResult:
        """Send a button template (up to three web_url/postback/phone_number buttons)."""
        if not buttons or len(buttons) > MAX_TEMPLATE_BUTTONS:
            raise ValueError(
                f"Button templates need 1-{MAX_TEMPLATE_BUTTONS} buttons, got {len(buttons)}"
            )
        for button in buttons:
            if button.get("type") not in BUTTON_TYPES:
                raise ValueError(f"Unsupported button type: {button.get('type')}")

        attachment = {
            "type": "template",
            "payload": {"template_type": "button", "text": text, "buttons": buttons},
        }
        body, metadata = self.build_send_body(
            recipient_id, {"attachment": attachment}, extended_window_requested
        )
        return await self._post_message(
            page_id, access_token, recipient_id, body, metadata
        )

    def parse_inbound_webhook(self, payload: dict[str, Any]) -> ParsedWebhook:
        parsed = ParsedWebhook()

        if payload.get("object") != WebhookObject.PAGE.value:
            self.logger.warning(
                f"Ignoring non-Messenger webhook object: {payload.get('object')}"
            )
            return parsed

        for entry in as_list(payload.get("entry")):
            if not isinstance(entry, dict) or not entry.get("id"):
                continue
            page_id = str(entry["id"])
            events = [
                (event, page_id)
                for event in as_list(entry.get("messaging"))
                if isinstance(event, dict)
            ]
            self._parse_entry_events(events, parsed)

        return parsed
