"""
Send error classification.

Maps any failure raised while sending to a small set of codes plus an
operator-facing remediation hint, so the dashboard never shows a raw
provider error string on its own.
"""

from pydantic import BaseModel

from unibox.messaging.meta.errors import (
    AccountNotConnectedError,
    GraphApiError,
    RateLimitError,
    SendValidationError,
    SessionWindowClosedError,
    is_permission_code,
)
from unibox.schemas.core.types import ChannelType, SendErrorCode

CAPABILITY_HINT = (
    "Your Meta app is missing a permission or product for this channel. "
    "Reconnect and grant the requested permissions, make sure sends use the "
    "Page access token, and check the app's App Review status."
)
WINDOW_HINT = (
    "The recipient cannot receive this message right now. Check that the "
    "customer wrote within the last 24 hours and that the recipient id is valid."
)
WINDOW_HINTS: dict[ChannelType, str] = {
    ChannelType.WHATSAPP: f"{WINDOW_HINT} Outside the window only approved "
    "templates can be sent.",
    ChannelType.MESSENGER: f"{WINDOW_HINT} Enable the extended human-agent "
    "window to reply for up to 7 days.",
    ChannelType.INSTAGRAM: f"{WINDOW_HINT} Enable the extended human-agent "
    "window to reply for up to 7 days.",
}
RATE_LIMIT_HINT = "Meta is rate limiting this account. Wait a moment and try again."
PROVIDER_HINT = (
    "Meta rejected the request. Try again; if it keeps failing, share the "
    "trace id with Meta support."
)
AUTH_HINT = (
    "The stored access token was rejected. Reconnect the channel in Settings "
    "to refresh it."
)
NOT_CONNECTED_HINT = "Connect this channel in Settings before sending messages."
VALIDATION_HINT = "Check the message content and try again."

# HTTP status returned by the send endpoint for each code
ERROR_CODE_STATUS: dict[SendErrorCode, int] = {
    SendErrorCode.VALIDATION_ERROR: 400,
    SendErrorCode.NOT_CONNECTED: 409,
    SendErrorCode.CAPABILITY_MISSING: 403,
    SendErrorCode.WINDOW_OR_RECIPIENT: 422,
    SendErrorCode.RATE_LIMITED: 429,
    SendErrorCode.PROVIDER_ERROR: 502,
}


class SendErrorInfo(BaseModel):
    """Classified send failure."""

    code: SendErrorCode
    error: str
    hint: str
    provider_code: int | None = None
    fbtrace_id: str | None = None
    retry_after: float | None = None

    @property
    def http_status(self) -> int:
        return ERROR_CODE_STATUS.get(self.code, 500)


def classify_send_error(
    error: Exception, channel: ChannelType | None = None
) -> SendErrorInfo:
    """Classify a send failure into a code, a short error and a hint."""
    if isinstance(error, SendValidationError):
        return SendErrorInfo(
            code=SendErrorCode.VALIDATION_ERROR, error=str(error), hint=VALIDATION_HINT
        )

    if isinstance(error, AccountNotConnectedError):
        return SendErrorInfo(
            code=SendErrorCode.NOT_CONNECTED, error=str(error), hint=NOT_CONNECTED_HINT
        )

    if isinstance(error, SessionWindowClosedError):
        return SendErrorInfo(
            code=SendErrorCode.WINDOW_OR_RECIPIENT,
            error=str(error),
            hint=WINDOW_HINTS.get(channel, WINDOW_HINT),
        )

    if isinstance(error, RateLimitError):
        return SendErrorInfo(
            code=SendErrorCode.RATE_LIMITED,
            error=error.message,
            hint=RATE_LIMIT_HINT,
            provider_code=error.code,
            fbtrace_id=error.fbtrace_id,
            retry_after=error.retry_after,
        )

    if isinstance(error, GraphApiError):
        details = {"provider_code": error.code, "fbtrace_id": error.fbtrace_id}

        if error.is_capability_error or (
            is_permission_code(error.code) and not error.is_window_error
        ):
            return SendErrorInfo(
                code=SendErrorCode.CAPABILITY_MISSING,
                error=error.message,
                hint=CAPABILITY_HINT,
                **details,
            )

        if error.is_window_error:
            return SendErrorInfo(
                code=SendErrorCode.WINDOW_OR_RECIPIENT,
                error=error.message,
                hint=WINDOW_HINTS.get(channel, WINDOW_HINT),
                **details,
            )

        if error.is_rate_limit:
            return SendErrorInfo(
                code=SendErrorCode.RATE_LIMITED,
                error=error.message,
                hint=RATE_LIMIT_HINT,
                **details,
            )

        hint = AUTH_HINT if error.is_auth_error else PROVIDER_HINT
        if error.fbtrace_id:
            hint = f"{hint} (trace id: {error.fbtrace_id})"
        return SendErrorInfo(
            code=SendErrorCode.PROVIDER_ERROR, error=error.message, hint=hint, **details
        )

    return SendErrorInfo(
        code=SendErrorCode.PROVIDER_ERROR,
        error=str(error) or type(error).__name__,
        hint=PROVIDER_HINT,
    )
