"""
Pytest configuration and common fixtures for Unibox tests.

Provides an in-memory repository, a scripted Graph client and helpers to
seed connected accounts and conversations.
"""

import json
from types import SimpleNamespace
from typing import Any

import pytest

from unibox.database.models import ConnectedAccount, Conversation
from unibox.messaging.meta.errors import GraphApiError
from unibox.persistence.memory.inbox_repository import MemoryInboxRepository
from unibox.schemas.core.types import ChannelType

TENANT_ID = "tenant-1"


class FakeGraphClient:
    """
    Scripted stand-in for GraphApiClient.

    Responses are registered per (method, path). A value may be a dict, an
    exception instance (raised) or a callable receiving ``params``/``body``.
    Unregistered calls fail the way Graph answers unknown objects.
    """

    def __init__(self, routes: dict[tuple[str, str], Any] | None = None):
        self.routes: dict[tuple[str, str], Any] = dict(routes or {})
        self.calls: list[SimpleNamespace] = []
        self.api_version = "v22.0"

    def add(self, method: str, path: str, response: Any) -> None:
        self.routes[(method.upper(), path)] = response

    def calls_to(self, path: str) -> list[SimpleNamespace]:
        return [c for c in self.calls if c.path == path]

    async def request(
        self,
        method: str,
        path: str,
        *,
        access_token: str | None = None,
        params: dict[str, Any] | None = None,
        body: dict[str, Any] | None = None,
        retries: int | None = None,
    ) -> dict[str, Any]:
        method = method.upper()
        self.calls.append(
            SimpleNamespace(
                method=method,
                path=path,
                access_token=access_token,
                params=params,
                body=body,
                retries=retries,
            )
        )
        response = self.routes.get((method, path))
        if response is None:
            raise GraphApiError(
                f"Unsupported {method.lower()} request: {path}", code=100, http_status=400
            )
        if isinstance(response, Exception):
            raise response
        if callable(response):
            return response(params=params, body=body)
        return response

    async def get(self, path, *, access_token=None, params=None, retries=None):
        return await self.request(
            "GET", path, access_token=access_token, params=params, retries=retries
        )

    async def post(self, path, *, access_token=None, body=None, params=None, retries=None):
        return await self.request(
            "POST", path, access_token=access_token, params=params, body=body, retries=retries
        )


class FakeResponse:
    """Minimal aiohttp response used as an async context manager."""

    def __init__(self, status: int, body: Any = None, headers: dict[str, str] | None = None):
        self.status = status
        self.headers = headers or {}
        self._text = body if isinstance(body, str) else json.dumps(body or {})

    async def text(self) -> str:
        return self._text

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        return False


class FakeSession:
    """aiohttp.ClientSession stand-in replaying queued responses in order."""

    def __init__(self, responses: list[Any]):
        self.responses = list(responses)
        self.requests: list[dict[str, Any]] = []

    def request(self, method, url, **kwargs):
        self.requests.append({"method": method, "url": url, **kwargs})
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


class RecordingSleep:
    """Injectable sleep that records requested delays without waiting."""

    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


@pytest.fixture
def repository() -> MemoryInboxRepository:
    return MemoryInboxRepository()


@pytest.fixture
def graph() -> FakeGraphClient:
    return FakeGraphClient()


@pytest.fixture
def recording_sleep() -> RecordingSleep:
    return RecordingSleep()


async def seed_account(
    repository,
    channel: ChannelType,
    channel_account_id: str,
    *,
    tenant_id: str = TENANT_ID,
    access_token: str | None = "user-token",
    provider_metadata: dict[str, Any] | None = None,
) -> ConnectedAccount:
    return await repository.upsert_connected_account(
        tenant_id,
        channel,
        channel_account_id,
        access_token=access_token,
        channel_account_name=f"{channel.value} account",
        provider_metadata=provider_metadata,
    )


async def seed_conversation(
    repository, account: ConnectedAccount, customer_id: str, **fields: Any
) -> Conversation:
    conversation, _ = await repository.create_conversation(
        Conversation(
            connected_account_id=account.id,
            channel_type=account.channel_type,
            channel_conversation_id=customer_id,
            customer_id=customer_id,
            **fields,
        )
    )
    return conversation


@pytest.fixture(autouse=True)
def setup_test_env(monkeypatch):
    """Keep tests independent of a developer's .env values."""
    from unibox.core.config.settings import settings

    monkeypatch.setattr(settings, "meta_app_id", "app-id")
    monkeypatch.setattr(settings, "meta_app_secret", "app-secret")
    monkeypatch.setattr(settings, "meta_webhook_verify_token", "verify-me")
    monkeypatch.setattr(settings, "app_url", "http://dashboard.test")
    monkeypatch.setattr(settings, "whatsapp_business_account_id", None)
    monkeypatch.setattr(settings, "whatsapp_phone_number_id", None)
    monkeypatch.setattr(settings, "database_url", "memory://")
    monkeypatch.setattr(settings, "demo_step_delay", 0.0)
    monkeypatch.setattr(settings, "demo_channel", "whatsapp")
    monkeypatch.setattr(settings, "demo_token_prefix", "demo_")
