"""Channel adapters: the normalization boundary for each Meta channel."""

from .base import ChannelAdapter
from .factory import AdapterRegistry, detect_channel
from .instagram_adapter import InstagramAdapter
from .messenger_adapter import MessengerAdapter
from .whatsapp_adapter import WhatsAppAdapter

__all__ = [
    "AdapterRegistry",
    "ChannelAdapter",
    "InstagramAdapter",
    "MessengerAdapter",
    "WhatsAppAdapter",
    "detect_channel",
]
