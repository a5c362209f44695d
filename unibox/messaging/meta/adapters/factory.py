"""
Adapter registry keyed by channel.
"""

from typing import Any

from unibox.messaging.meta.adapters.base import ChannelAdapter
from unibox.messaging.meta.adapters.instagram_adapter import InstagramAdapter
from unibox.messaging.meta.adapters.messenger_adapter import MessengerAdapter
from unibox.messaging.meta.adapters.whatsapp_adapter import WhatsAppAdapter
from unibox.messaging.meta.client.graph_client import GraphApiClient
from unibox.schemas.core.types import ChannelType, WebhookObject

_OBJECT_CHANNELS = {
    WebhookObject.WHATSAPP_BUSINESS_ACCOUNT.value: ChannelType.WHATSAPP,
    WebhookObject.INSTAGRAM.value: ChannelType.INSTAGRAM,
    WebhookObject.PAGE.value: ChannelType.MESSENGER,
}


def detect_channel(payload: dict[str, Any]) -> ChannelType | None:
    """Detect the channel from a webhook payload's top-level ``object``."""
    return _OBJECT_CHANNELS.get(payload.get("object"))


class AdapterRegistry:
    """Holds one adapter per channel, all sharing a single Graph client."""

    def __init__(self, client: GraphApiClient):
        self.client = client
        self._adapters: dict[ChannelType, ChannelAdapter] = {
            ChannelType.WHATSAPP: WhatsAppAdapter(client),
            ChannelType.INSTAGRAM: InstagramAdapter(client),
            ChannelType.MESSENGER: MessengerAdapter(client),
        }

    def get(self, channel: ChannelType | str) -> ChannelAdapter:
        """
        Get the adapter for a channel.

        Raises:
            ValueError: If the channel is not supported
        """
        try:
            return self._adapters[ChannelType(channel)]
        except (KeyError, ValueError) as exc:
            raise ValueError(f"Unsupported channel: {channel}") from exc

    @property
    def whatsapp(self) -> WhatsAppAdapter:
        return self._adapters[ChannelType.WHATSAPP]

    @property
    def messenger(self) -> MessengerAdapter:
        return self._adapters[ChannelType.MESSENGER]

    @property
    def instagram(self) -> InstagramAdapter:
        return self._adapters[ChannelType.INSTAGRAM]
