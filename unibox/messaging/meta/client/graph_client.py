"""
Meta Graph API transport client.

Key Design Decisions:
- One shared aiohttp session injected by the FastAPI lifespan (no per-call sessions)
- The client holds no per-tenant state: every call carries its own bearer token
- Retry policy, rate-limit backoff and error normalization live here only
"""

import asyncio
import json
from collections.abc import Awaitable, Callable, Mapping
from typing import Any

import aiohttp

from unibox.core.config.settings import settings
from unibox.core.logging.logger import get_logger
from unibox.messaging.meta.errors import (
    GraphApiError,
    GraphTransportError,
    RateLimitError,
)

SleepFunc = Callable[[float], Awaitable[Any]]


class GraphUrlBuilder:
    """Builds URLs for versioned Graph API endpoints."""

    def __init__(self, base_url: str, api_version: str):
        """Initialize URL builder with configuration.

        Args:
            base_url: Facebook Graph API base URL
            api_version: Graph API version (e.g. "v22.0")
        """
        self.base_url = base_url.rstrip("/")
        self.api_version = api_version

    @property
    def root(self) -> str:
        return f"{self.base_url}/{self.api_version}"

    def get_endpoint_url(self, path: str) -> str:
        """Build URL for any Graph path (``{id}/messages``, ``me/accounts`` ...)."""
        return f"{self.root}/{path.lstrip('/')}"


def _header(headers: Mapping[str, str] | None, name: str) -> str | None:
    """Case-insensitive header lookup that works for plain dicts as well."""
    if not headers:
        return None
    value = headers.get(name)
    if value is not None:
        return value
    lowered = name.lower()
    for key, candidate in headers.items():
        if key.lower() == lowered:
            return candidate
    return None


def parse_rate_limit_headers(headers: Mapping[str, str] | None) -> float | None:
    """
    Derive the wait (seconds) from rate-limit response headers.

    ``Retry-After`` wins; otherwise the largest
    ``estimated_time_to_regain_access`` (minutes) found in
    ``x-business-use-case-usage`` is used.

    Returns:
        Seconds to wait, or None when no header carries a usable duration
    """
    retry_after = _header(headers, "Retry-After")
    if retry_after:
        try:
            seconds = float(retry_after.strip())
        except ValueError:
            seconds = None
        if seconds is not None and seconds >= 0:
            return seconds

    usage_header = _header(headers, "x-business-use-case-usage")
    if usage_header:
        try:
            usage = json.loads(usage_header)
        except (TypeError, ValueError):
            return None
        minutes = 0.0
        if isinstance(usage, dict):
            for entries in usage.values():
                if isinstance(entries, dict):
                    entries = [entries]
                for entry in entries or []:
                    if not isinstance(entry, dict):
                        continue
                    try:
                        value = float(entry.get("estimated_time_to_regain_access") or 0)
                    except (TypeError, ValueError):
                        continue
                    minutes = max(minutes, value)
        if minutes > 0:
            return minutes * 60

    return None


class GraphApiClient:
    """
    Meta Graph API client with retry, rate-limit and error normalization.

    Retries are spent only on network failures, HTTP 5xx/429 and the
    transient/rate-limit provider codes; authorization, capability and
    validation errors fail on the first attempt.
    """

    def __init__(
        self,
        session: aiohttp.ClientSession,
        *,
        base_url: str = settings.graph_base_url,
        api_version: str = settings.graph_api_version,
        max_retries: int = settings.graph_max_retries,
        retry_delay: float = settings.graph_retry_delay,
        sleep: SleepFunc = asyncio.sleep,
        logger: Any | None = None,
    ):
        """Initialize the client with dependency injection.

        Args:
            session: Persistent aiohttp session (managed by FastAPI lifespan)
            base_url: Facebook Graph API base URL
            api_version: Graph API version to use
            max_retries: Extra attempts allowed after the first one
            retry_delay: Base delay (seconds) of the exponential backoff
            sleep: Awaitable used between attempts (injectable for tests)
            logger: Pre-configured logger instance
        """
        self.session = session
        self.url_builder = GraphUrlBuilder(base_url, api_version)
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self._sleep = sleep
        self.logger = logger or get_logger(__name__)

    @property
    def api_version(self) -> str:
        return self.url_builder.api_version

    def backoff_delay(self, attempt: int) -> float:
        """Exponential backoff for the given 0-indexed attempt."""
        return self.retry_delay * (2**attempt)

    def _get_headers(self, access_token: str | None, has_body: bool) -> dict[str, str]:
        headers: dict[str, str] = {}
        if access_token:
            headers["Authorization"] = f"Bearer {access_token}"
        if has_body:
            headers["Content-Type"] = "application/json"
        return headers

    async def _send(
        self,
        method: str,
        url: str,
        headers: dict[str, str],
        params: dict[str, str] | None,
        body: dict[str, Any] | None,
    ) -> tuple[int, Mapping[str, str], str]:
        async with self.session.request(
            method, url, headers=headers, params=params, json=body
        ) as response:
            text = await response.text()
            return response.status, response.headers, text

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
        """Execute an authenticated Graph API call.

        Args:
            method: HTTP method (GET or POST)
            path: Graph path relative to the versioned root
            access_token: Bearer token; None for app-authenticated endpoints
            params: Optional query parameters
            body: Optional JSON body
            retries: Retry budget override (defaults to ``max_retries``)

        Returns:
            Parsed JSON response

        Raises:
            RateLimitError: Still rate limited after the retry budget
            GraphApiError: Any other provider or transport failure
        """
        method = method.upper()
        budget = self.max_retries if retries is None else max(retries, 0)
        url = self.url_builder.get_endpoint_url(path)
        query = (
            {k: str(v) for k, v in params.items() if v is not None} if params else None
        )
        headers = self._get_headers(access_token, body is not None)

        last_error: GraphApiError | None = None

        for attempt in range(budget + 1):
            has_budget = attempt < budget

            try:
                status, response_headers, text = await self._send(
                    method, url, headers, query, body
                )
            except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
                last_error = GraphTransportError(f"Network error: {exc}")
                if has_budget:
                    delay = self.backoff_delay(attempt)
                    self.logger.warning(
                        f"{method} {path} network failure "
                        f"(attempt {attempt + 1}/{budget + 1}): {exc}. "
                        f"Retrying in {delay:.2f}s"
                    )
                    await self._sleep(delay)
                    continue
                raise last_error from exc

            try:
                data = json.loads(text) if text else {}
            except ValueError:
                last_error = GraphApiError(
                    f"Invalid JSON response: {text[:200]}", http_status=status
                )
                if status >= 500 and has_budget:
                    await self._sleep(self.backoff_delay(attempt))
                    continue
                raise last_error from None

            if not isinstance(data, dict):
                data = {"data": data}

            if status < 400 and "error" not in data:
                return data

            error = GraphApiError.from_response(status, data, text[:200])
            last_error = error

            if error.is_rate_limit and error.is_retryable:
                wait = parse_rate_limit_headers(response_headers)
                if wait is None:
                    wait = self.backoff_delay(attempt)
                if has_budget:
                    self.logger.warning(
                        f"Rate limited on {method} {path} (code={error.code}), "
                        f"waiting {wait:.2f}s before retry {attempt + 1}/{budget}"
                    )
                    await self._sleep(wait)
                    continue
                raise RateLimitError.from_error(error, wait)

            if error.is_retryable and has_budget:
                delay = self.backoff_delay(attempt)
                self.logger.warning(
                    f"Transient Graph error on {method} {path}: {error}. "
                    f"Retrying in {delay:.2f}s"
                )
                await self._sleep(delay)
                continue

            if error.is_auth_error:
                self.logger.error(
                    f"Graph API rejected the access token on {method} {path}: {error}"
                )
            else:
                self.logger.error(f"Graph API error on {method} {path}: {error}")
            raise error

        # Only reachable when every attempt ended in `continue`
        raise last_error or GraphApiError("Request failed after retries")

    async def get(
        self,
        path: str,
        *,
        access_token: str | None = None,
        params: dict[str, Any] | None = None,
        retries: int | None = None,
    ) -> dict[str, Any]:
        return await self.request(
            "GET", path, access_token=access_token, params=params, retries=retries
        )

    async def post(
        self,
        path: str,
        *,
        access_token: str | None = None,
        body: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
        retries: int | None = None,
    ) -> dict[str, Any]:
        return await self.request(
            "POST",
            path,
            access_token=access_token,
            body=body,
            params=params,
            retries=retries,
        )
