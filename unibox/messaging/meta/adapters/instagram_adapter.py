"""
Instagram Messaging adapter.

Instagram delivers DMs in two envelopes depending on the app's product setup:

- ``entry[].messaging[]``: the account id is ``entry[].id``
- ``entry[].changes[field=messages].value``: ``entry[].id`` may be a
  placeholder, the account id is ``value.recipient.id``

Timestamps arrive in seconds or milliseconds.
"""

from typing import Any

from unibox.messaging.meta.adapters.page_messaging import PageMessagingAdapter
from unibox.messaging.meta.utils.payload_helpers import as_list
from unibox.schemas.core.types import ChannelType, MessageContentType, WebhookObject
from unibox.schemas.meta.webhook_events import ParsedWebhook


class InstagramAdapter(PageMessagingAdapter):
    """Instagram Direct send/receive normalization."""

    attachment_type_map = {
        "image": MessageContentType.IMAGE,
        "video": MessageContentType.VIDEO,
        "audio": MessageContentType.AUDIO,
        "file": MessageContentType.FILE,
        "share": MessageContentType.TEXT,
        "story_mention": MessageContentType.TEXT,
        "ig_reel": MessageContentType.VIDEO,
    }

    @property
    def channel(self) -> ChannelType:
        return ChannelType.INSTAGRAM

    def parse_inbound_webhook(self, payload: dict[str, Any]) -> ParsedWebhook:
        parsed = ParsedWebhook()

        # Some app configurations deliver Instagram DMs with object "page"
        if payload.get("object") not in (
            WebhookObject.INSTAGRAM.value,
            WebhookObject.PAGE.value,
        ):
            self.logger.warning(
                f"Ignoring non-Instagram webhook object: {payload.get('object')}"
            )
            return parsed

        for entry in as_list(payload.get("entry")):
            if not isinstance(entry, dict):
                continue
            events = self._collect_events(entry, parsed)
            self._parse_entry_events(events, parsed)

        return parsed

    def _collect_events(
        self, entry: dict[str, Any], parsed: ParsedWebhook
    ) -> list[tuple[dict[str, Any], str]]:
        messaging = [e for e in as_list(entry.get("messaging")) if isinstance(e, dict)]
        if messaging:
            account_id = str(entry.get("id") or "")
            return [(event, account_id) for event in messaging]

        events = []
        for change in as_list(entry.get("changes")):
            if not isinstance(change, dict) or change.get("field") != "messages":
                continue
            value = change.get("value")
            try:
                account_id = str(value["recipient"]["id"])
            except (KeyError, TypeError) as exc:
                self._drop(parsed, change, exc)
                continue
            events.append((value, account_id))
        return events
