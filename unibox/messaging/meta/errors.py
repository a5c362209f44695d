"""
Typed error taxonomy for Meta Graph API calls and the send pipeline.

Every terminal transport failure surfaces as either a ``GraphApiError`` (with
the provider code, optional subcode and the ``fbtrace_id`` needed for support
escalation) or a ``RateLimitError`` carrying the computed wait duration.
"""

from typing import Any

# Provider codes that are worth retrying locally (unknown/service/transient)
TRANSIENT_ERROR_CODES = frozenset({1, 2, 131000})

# Application, account and business-use-case throttling codes
RATE_LIMIT_ERROR_CODES = frozenset({4, 17, 32, 613, 80007, 130429, 131048, 131056})

# "Capability or permissions issue": the app lacks the product/permission
CAPABILITY_ERROR_CODE = 3

# OAuth token errors (expired, invalidated, wrong token type)
AUTH_ERROR_CODES = frozenset({102, 190})

# Window closed / recipient not reachable with a free-form message
WINDOW_ERROR_CODES = frozenset({551, 131026, 131047, 131051})
WINDOW_ERROR_SUBCODES = frozenset({2018108, 2018109, 2018278, 2534022})


def is_permission_code(code: int | None) -> bool:
    """Permission errors are code 10 and the 200-299 range."""
    return code is not None and (code == 10 or 200 <= code <= 299)


class UniboxError(Exception):
    """Base class for all gateway errors."""


class GraphApiError(UniboxError):
    """A non-successful response from the Graph API."""

    def __init__(
        self,
        message: str,
        *,
        code: int | None = None,
        subcode: int | None = None,
        fbtrace_id: str | None = None,
        http_status: int | None = None,
        error_type: str | None = None,
        payload: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.subcode = subcode
        self.fbtrace_id = fbtrace_id
        self.http_status = http_status
        self.error_type = error_type
        self.payload = payload or {}

    @classmethod
    def from_response(
        cls, http_status: int, body: dict[str, Any] | None, fallback_text: str = ""
    ) -> "GraphApiError":
        """Build an error from a Graph error envelope ``{"error": {...}}``."""
        error = (body or {}).get("error") or {}
        if not isinstance(error, dict):
            error = {"message": str(error)}
        message = (
            error.get("error_user_msg")
            or error.get("message")
            or fallback_text
            or f"HTTP {http_status}"
        )
        return cls(
            message,
            code=_as_int(error.get("code")),
            subcode=_as_int(error.get("error_subcode")),
            fbtrace_id=error.get("fbtrace_id"),
            http_status=http_status,
            error_type=error.get("type"),
            payload=body,
        )

    @property
    def is_capability_error(self) -> bool:
        return self.code == CAPABILITY_ERROR_CODE

    @property
    def is_auth_error(self) -> bool:
        return self.code in AUTH_ERROR_CODES or self.http_status == 401

    @property
    def is_window_error(self) -> bool:
        return self.code in WINDOW_ERROR_CODES or self.subcode in WINDOW_ERROR_SUBCODES

    @property
    def is_rate_limit(self) -> bool:
        return self.http_status == 429 or self.code in RATE_LIMIT_ERROR_CODES

    @property
    def is_retryable(self) -> bool:
        """Whether the transport may spend retry budget on this failure."""
        if self.is_capability_error or self.is_auth_error:
            return False
        if self.http_status is not None and (
            self.http_status >= 500 or self.http_status == 429
        ):
            return True
        return self.code in TRANSIENT_ERROR_CODES or self.code in RATE_LIMIT_ERROR_CODES

    def to_dict(self) -> dict[str, Any]:
        return {
            "message": self.message,
            "code": self.code,
            "subcode": self.subcode,
            "fbtrace_id": self.fbtrace_id,
            "http_status": self.http_status,
        }

    def __str__(self) -> str:
        parts = [self.message]
        if self.code is not None:
            parts.append(f"code={self.code}")
        if self.subcode is not None:
            parts.append(f"subcode={self.subcode}")
        if self.fbtrace_id:
            parts.append(f"fbtrace_id={self.fbtrace_id}")
        return " ".join(parts)


class RateLimitError(GraphApiError):
    """Rate limited after the retry budget was spent."""

    def __init__(self, message: str, *, retry_after: float, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.retry_after = retry_after

    @classmethod
    def from_error(cls, error: GraphApiError, retry_after: float) -> "RateLimitError":
        return cls(
            error.message,
            retry_after=retry_after,
            code=error.code,
            subcode=error.subcode,
            fbtrace_id=error.fbtrace_id,
            http_status=error.http_status,
            error_type=error.error_type,
            payload=error.payload,
        )

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["retry_after"] = self.retry_after
        return data


class GraphTransportError(GraphApiError):
    """Network-level failure (connection reset, timeout) after retries."""


class SendValidationError(UniboxError):
    """A send request is missing required fields; no provider call is made."""


class ConversationNotFoundError(UniboxError):
    """The conversation does not exist or belongs to another tenant."""


class AccountNotConnectedError(UniboxError):
    """No active connected account can address the requested conversation."""


class PageNotFoundError(UniboxError):
    """The requested Page is not among those the grant manages."""


class SessionWindowClosedError(UniboxError):
    """Free-form message requested outside the customer service window."""


class OAuthStateError(UniboxError):
    """OAuth ``state`` parameter is malformed or too old."""

    EXPIRED = "expired"
    INVALID = "invalid"

    def __init__(self, reason: str, message: str | None = None):
        super().__init__(message or f"OAuth state {reason}")
        self.reason = reason

    @property
    def is_expired(self) -> bool:
        return self.reason == self.EXPIRED


class OAuthExchangeError(UniboxError):
    """The code-for-token exchange with the provider failed."""


def _as_int(value: Any) -> int | None:
    try:
        return int(value) if value is not None else None
    except (TypeError, ValueError):
        return None
