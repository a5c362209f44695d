"""
Contact counter and activity rules shared by the repositories.
"""

from datetime import datetime

from unibox.database.models import Contact
from unibox.messaging.meta.utils.payload_helpers import ensure_utc, utc_now
from unibox.schemas.core.types import ChannelType, SenderType

# Channels whose customers are tracked as Contact rows
CONTACT_CHANNELS = frozenset({ChannelType.MESSENGER, ChannelType.INSTAGRAM})


def apply_contact_activity(
    contact: Contact,
    direction: SenderType,
    at: datetime,
    display_name: str | None = None,
    avatar_url: str | None = None,
) -> None:
    """Bump counters and activity timestamps on a contact record."""
    at = ensure_utc(at)
    if direction == SenderType.CUSTOMER:
        contact.total_messages_received = (contact.total_messages_received or 0) + 1
    else:
        contact.total_messages_sent = (contact.total_messages_sent or 0) + 1

    first = ensure_utc(contact.first_message_at)
    if first is None or at < first:
        contact.first_message_at = at
    last = ensure_utc(contact.last_message_at)
    if last is None or at > last:
        contact.last_message_at = at

    if display_name and not contact.display_name:
        contact.display_name = display_name
    if avatar_url:
        contact.avatar_url = avatar_url
    contact.updated_at = utc_now()
