"""
Tests for the Graph API transport: retry policy, rate-limit waits and
error normalization.
"""

import json

import aiohttp
import pytest

from conftest import FakeResponse, FakeSession
from unibox.messaging.meta.client.graph_client import (
    GraphApiClient,
    parse_rate_limit_headers,
)
from unibox.messaging.meta.errors import GraphApiError, GraphTransportError, RateLimitError


def make_client(session, sleep, max_retries=2, retry_delay=0.5) -> GraphApiClient:
    return GraphApiClient(
        session,
        base_url="https://graph.test/",
        api_version="v22.0",
        max_retries=max_retries,
        retry_delay=retry_delay,
        sleep=sleep,
    )


def error_body(code, message="error", **extra):
    return {"error": {"message": message, "code": code, **extra}}


OK = FakeResponse(200, {"messages": [{"id": "wamid.1"}]})


class TestRequestBasics:
    async def test_builds_versioned_url_and_bearer_header(self, recording_sleep):
        session = FakeSession([OK])
        client = make_client(session, recording_sleep)

        data = await client.post(
            "123/messages", access_token="tok", body={"to": "1"}
        )

        assert data == {"messages": [{"id": "wamid.1"}]}
        sent = session.requests[0]
        assert sent["method"] == "POST"
        assert sent["url"] == "https://graph.test/v22.0/123/messages"
        assert sent["headers"]["Authorization"] == "Bearer tok"
        assert sent["json"] == {"to": "1"}

    async def test_drops_none_query_params(self, recording_sleep):
        session = FakeSession([FakeResponse(200, {"id": "1"})])
        client = make_client(session, recording_sleep)

        await client.get("me", params={"fields": "id", "after": None})

        assert session.requests[0]["params"] == {"fields": "id"}
        assert "Authorization" not in session.requests[0]["headers"]


class TestRateLimits:
    async def test_429_waits_at_least_retry_after(self, recording_sleep):
        session = FakeSession(
            [FakeResponse(429, error_body(4), headers={"Retry-After": "7"}), OK]
        )
        client = make_client(session, recording_sleep)

        await client.post("123/messages", access_token="tok", body={})

        assert len(session.requests) == 2
        assert recording_sleep.delays[0] >= 7

    async def test_429_uses_usage_header_minutes(self, recording_sleep):
        usage = {
            "998": [
                {"type": "whatsapp", "estimated_time_to_regain_access": 1},
                {"type": "pages", "estimated_time_to_regain_access": 2},
            ]
        }
        session = FakeSession(
            [
                FakeResponse(
                    429,
                    error_body(80007),
                    headers={"X-Business-Use-Case-Usage": json.dumps(usage)},
                ),
                OK,
            ]
        )
        client = make_client(session, recording_sleep)

        await client.post("123/messages", access_token="tok", body={})

        assert recording_sleep.delays == [120.0]

    async def test_429_without_headers_falls_back_to_backoff(self, recording_sleep):
        session = FakeSession([FakeResponse(429, error_body(4)), OK])
        client = make_client(session, recording_sleep, retry_delay=0.5)

        await client.get("me", access_token="tok")

        assert recording_sleep.delays == [0.5]

    async def test_exhausted_budget_raises_rate_limit_error(self, recording_sleep):
        limited = lambda: FakeResponse(  # noqa: E731
            429, error_body(4, "Too many calls"), headers={"Retry-After": "3"}
        )
        session = FakeSession([limited(), limited(), limited()])
        client = make_client(session, recording_sleep, max_retries=2)

        with pytest.raises(RateLimitError) as exc_info:
            await client.get("me", access_token="tok")

        assert len(session.requests) == 3
        assert exc_info.value.retry_after == 3.0
        assert exc_info.value.code == 4


class TestNonRetryableErrors:
    async def test_capability_error_fails_after_one_attempt(self, recording_sleep):
        session = FakeSession(
            [FakeResponse(400, error_body(3, "Capability missing", fbtrace_id="AbC"))]
        )
        client = make_client(session, recording_sleep)

        with pytest.raises(GraphApiError) as exc_info:
            await client.post("123/messages", access_token="tok", body={})

        assert len(session.requests) == 1
        assert recording_sleep.delays == []
        assert exc_info.value.is_capability_error
        assert exc_info.value.fbtrace_id == "AbC"

    async def test_expired_token_is_not_retried(self, recording_sleep):
        session = FakeSession([FakeResponse(401, error_body(190, "Session expired"))])
        client = make_client(session, recording_sleep)

        with pytest.raises(GraphApiError) as exc_info:
            await client.get("me", access_token="old")

        assert len(session.requests) == 1
        assert exc_info.value.is_auth_error

    async def test_validation_error_is_not_retried(self, recording_sleep):
        session = FakeSession([FakeResponse(400, error_body(100, "Invalid parameter"))])
        client = make_client(session, recording_sleep)

        with pytest.raises(GraphApiError) as exc_info:
            await client.get("me", access_token="tok")

        assert len(session.requests) == 1
        assert not isinstance(exc_info.value, RateLimitError)


class TestTransientErrors:
    async def test_5xx_is_retried_with_exponential_backoff(self, recording_sleep):
        session = FakeSession(
            [
                FakeResponse(500, error_body(1, "Unknown error")),
                FakeResponse(503, "Service Unavailable"),
                OK,
            ]
        )
        client = make_client(session, recording_sleep, retry_delay=0.5)

        await client.get("me", access_token="tok")

        assert len(session.requests) == 3
        assert recording_sleep.delays == [0.5, 1.0]

    async def test_transient_code_on_400_is_retried(self, recording_sleep):
        session = FakeSession([FakeResponse(400, error_body(2, "Temporary")), OK])
        client = make_client(session, recording_sleep)

        await client.get("me", access_token="tok")

        assert len(session.requests) == 2

    async def test_network_errors_become_transport_errors(self, recording_sleep):
        session = FakeSession(
            [aiohttp.ClientConnectionError("reset"), aiohttp.ClientConnectionError("reset")]
        )
        client = make_client(session, recording_sleep, max_retries=1)

        with pytest.raises(GraphTransportError):
            await client.get("me", access_token="tok")

        assert len(session.requests) == 2
        assert len(recording_sleep.delays) == 1

    async def test_retries_override_disables_retry(self, recording_sleep):
        session = FakeSession([FakeResponse(500, error_body(1))])
        client = make_client(session, recording_sleep, max_retries=3)

        with pytest.raises(GraphApiError):
            await client.get("me", access_token="tok", retries=0)

        assert len(session.requests) == 1


class TestParseRateLimitHeaders:
    def test_retry_after_wins_over_usage(self):
        headers = {
            "Retry-After": "5",
            "x-business-use-case-usage": json.dumps(
                {"1": [{"estimated_time_to_regain_access": 10}]}
            ),
        }
        assert parse_rate_limit_headers(headers) == 5.0

    def test_invalid_values_give_none(self):
        assert parse_rate_limit_headers({"Retry-After": "soon"}) is None
        assert parse_rate_limit_headers({"x-business-use-case-usage": "{"}) is None
        assert parse_rate_limit_headers(None) is None
