"""
Customer profile lookup used to enrich new conversations.
"""

from dataclasses import dataclass
from typing import Any

from unibox.core.logging.logger import get_logger
from unibox.database.models import ConnectedAccount
from unibox.messaging.meta.client.graph_client import GraphApiClient
from unibox.schemas.core.types import ChannelType

_PROFILE_FIELDS = {
    ChannelType.MESSENGER: "first_name,last_name,profile_pic",
    ChannelType.INSTAGRAM: "name,username,profile_pic",
}


@dataclass(frozen=True)
class CustomerProfile:
    name: str | None = None
    avatar_url: str | None = None


class ProfileService:
    """Fetches display name and avatar for Messenger and Instagram customers.

    WhatsApp exposes no profile endpoint; its name arrives in the webhook
    ``contacts[]`` block instead.
    """

    def __init__(self, client: GraphApiClient, logger: Any | None = None):
        self.client = client
        self.logger = logger or get_logger(__name__)

    async def fetch(
        self, account: ConnectedAccount, customer_id: str
    ) -> CustomerProfile | None:
        """
        Fetch a customer's profile with the account's most specific token.

        Raises:
            GraphApiError: Provider rejected the lookup (callers wrap this
                in ``best_effort``)
        """
        fields = _PROFILE_FIELDS.get(ChannelType(account.channel_type))
        token = account.send_token
        if fields is None or not token:
            return None

        data = await self.client.get(
            customer_id, access_token=token, params={"fields": fields}, retries=0
        )
        return self.parse(ChannelType(account.channel_type), data)

    @staticmethod
    def parse(channel: ChannelType, data: dict[str, Any]) -> CustomerProfile:
        if channel == ChannelType.MESSENGER:
            parts = [data.get("first_name"), data.get("last_name")]
            name = " ".join(p for p in parts if p) or None
        else:
            name = data.get("name") or data.get("username")
        return CustomerProfile(name=name, avatar_url=data.get("profile_pic"))
