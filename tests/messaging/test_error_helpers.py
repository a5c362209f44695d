"""
Tests for send error classification.
"""

from unibox.messaging.meta.errors import (
    AccountNotConnectedError,
    GraphApiError,
    RateLimitError,
    SendValidationError,
    SessionWindowClosedError,
)
from unibox.messaging.meta.utils.error_helpers import (
    CAPABILITY_HINT,
    RATE_LIMIT_HINT,
    classify_send_error,
)
from unibox.schemas.core.types import ChannelType, SendErrorCode


class TestClassifySendError:
    def test_capability_error(self):
        error = GraphApiError(
            "Application does not have the capability", code=3, http_status=400, fbtrace_id="T1"
        )

        info = classify_send_error(error, ChannelType.INSTAGRAM)

        assert info.code == SendErrorCode.CAPABILITY_MISSING
        assert info.hint == CAPABILITY_HINT
        assert info.provider_code == 3
        assert info.fbtrace_id == "T1"
        assert info.http_status == 403

    def test_permission_range_is_capability(self):
        error = GraphApiError("Requires pages_messaging", code=230, http_status=403)

        assert classify_send_error(error).code == SendErrorCode.CAPABILITY_MISSING

    def test_window_code_uses_channel_hint(self):
        error = GraphApiError("Re-engagement message", code=131047, http_status=400)

        info = classify_send_error(error, ChannelType.WHATSAPP)

        assert info.code == SendErrorCode.WINDOW_OR_RECIPIENT
        assert "templates" in info.hint
        assert info.http_status == 422

    def test_window_subcode_on_messenger(self):
        error = GraphApiError(
            "Outside of allowed window", code=10, subcode=2018278, http_status=400
        )

        info = classify_send_error(error, ChannelType.MESSENGER)

        assert info.code == SendErrorCode.WINDOW_OR_RECIPIENT
        assert "human-agent" in info.hint

    def test_rate_limit_error_keeps_wait(self):
        error = RateLimitError("Too many calls", retry_after=30.0, code=4, http_status=429)

        info = classify_send_error(error)

        assert info.code == SendErrorCode.RATE_LIMITED
        assert info.hint == RATE_LIMIT_HINT
        assert info.retry_after == 30.0
        assert info.http_status == 429

    def test_generic_provider_error_mentions_trace_id(self):
        error = GraphApiError("Unknown error", code=100, http_status=400, fbtrace_id="AbC")

        info = classify_send_error(error)

        assert info.code == SendErrorCode.PROVIDER_ERROR
        assert "AbC" in info.hint
        assert info.http_status == 502

    def test_auth_error_asks_for_reconnect(self):
        error = GraphApiError("Session has expired", code=190, http_status=401)

        info = classify_send_error(error)

        assert info.code == SendErrorCode.PROVIDER_ERROR
        assert "Reconnect" in info.hint

    def test_local_errors(self):
        assert (
            classify_send_error(SendValidationError("content is required")).code
            == SendErrorCode.VALIDATION_ERROR
        )
        assert (
            classify_send_error(AccountNotConnectedError("not connected")).code
            == SendErrorCode.NOT_CONNECTED
        )
        assert (
            classify_send_error(SessionWindowClosedError("closed")).code
            == SendErrorCode.WINDOW_OR_RECIPIENT
        )

    def test_unexpected_exception(self):
        info = classify_send_error(RuntimeError("boom"))

        assert info.code == SendErrorCode.PROVIDER_ERROR
        assert info.error == "boom"
