"""
Message sender strategies.

The send orchestrator picks one ``MessageSender`` per account at call time:
the live sender calls the provider through the channel adapter, the simulated
sender stands in for demo accounts that hold no real provider credentials.
Both produce a ``SendResult`` so the persisted message looks the same.
"""

import asyncio
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from typing import Any
from uuid import UUID, uuid4

from unibox.core.config.settings import settings
from unibox.core.logging.logger import get_logger
from unibox.database.models import ConnectedAccount
from unibox.domain.interfaces.inbox_repository import InboxRepository
from unibox.messaging.meta.adapters.factory import AdapterRegistry
from unibox.messaging.meta.utils.payload_helpers import utc_now
from unibox.schemas.core.types import ChannelType, MessageDeliveryStatus
from unibox.schemas.meta.outbound import OutboundMessage, SendResult


class MessageSender(ABC):
    """Capability to deliver one outbound message for an account."""

    @property
    @abstractmethod
    def mode(self) -> str:
        """Short name recorded in message metadata ("live" or "simulated")."""

    @abstractmethod
    async def send(
        self, account: ConnectedAccount, access_token: str, message: OutboundMessage
    ) -> SendResult:
        """Deliver ``message`` from ``account``."""

    async def after_persist(self, message_id: UUID) -> None:
        """Hook run once the sent message has been stored."""


class LiveMessageSender(MessageSender):
    """Sends through the channel adapter and the Graph API."""

    def __init__(self, adapters: AdapterRegistry):
        self.adapters = adapters

    @property
    def mode(self) -> str:
        return "live"

    async def send(
        self, account: ConnectedAccount, access_token: str, message: OutboundMessage
    ) -> SendResult:
        adapter = self.adapters.get(account.channel_type)
        return await adapter.send(account.channel_account_id, access_token, message)


class SimulatedMessageSender(MessageSender):
    """
    Demo sender: no provider call.

    ``send`` waits one step and returns a synthetic id (sending -> sent);
    ``after_persist`` then advances the stored message to delivered and read,
    one step apart, in a background task.
    """

    def __init__(
        self,
        repository: InboxRepository,
        *,
        step_delay: float = settings.demo_step_delay,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.repository = repository
        self.step_delay = step_delay
        self._sleep = sleep
        self._tasks: set[asyncio.Task] = set()

    @property
    def mode(self) -> str:
        return "simulated"

    async def send(
        self, account: ConnectedAccount, access_token: str, message: OutboundMessage
    ) -> SendResult:
        await self._sleep(self.step_delay)
        message_id = f"demo_{uuid4().hex}"
        get_logger(__name__).info(
            f"Simulated {ChannelType(account.channel_type).value} send to "
            f"{message.recipient_id}: {message_id}"
        )
        return SendResult(
            channel_message_id=message_id,
            recipient_id=message.recipient_id,
            metadata={"simulated": True},
        )

    async def after_persist(self, message_id: UUID) -> None:
        task = asyncio.create_task(self._progress(message_id))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _progress(self, message_id: UUID) -> None:
        logger = get_logger(__name__)
        try:
            for status in (MessageDeliveryStatus.DELIVERED, MessageDeliveryStatus.READ):
                await self._sleep(self.step_delay)
                await self.repository.record_status(message_id, status, utc_now())
        except Exception as exc:
            logger.error(f"Simulated status progression failed for {message_id}: {exc}")

    async def drain(self) -> None:
        """Wait for pending status progressions (tests and shutdown)."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)


class MessageSenderSelector:
    """Chooses the sender for an account: simulated for demo tokens on the demo channel."""

    def __init__(
        self,
        live: MessageSender,
        simulated: MessageSender,
        *,
        demo_channel: str = settings.demo_channel,
        demo_token_prefix: str = settings.demo_token_prefix,
    ):
        self.live = live
        self.simulated = simulated
        self.demo_channel = demo_channel
        self.demo_token_prefix = demo_token_prefix

    def is_demo(self, account: ConnectedAccount, access_token: str | None) -> bool:
        return (
            ChannelType(account.channel_type).value == self.demo_channel
            and bool(self.demo_token_prefix)
            and bool(access_token)
            and access_token.startswith(self.demo_token_prefix)
        )

    def select(self, account: ConnectedAccount, access_token: str | None) -> MessageSender:
        return self.simulated if self.is_demo(account, access_token) else self.live
