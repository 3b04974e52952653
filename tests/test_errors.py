"""
termchat - Error System Tests

Verifies:
- Provider responses map to the right exception types
- httpx exceptions map to transport errors
- Stream errors know whether content had started
"""

import httpx
import pytest

from termchat.core.errors import (
    ConnectionFailedError,
    ContentBlockedError,
    ErrorType,
    ProviderAuthError,
    ProviderRequestError,
    RateLimitedError,
    ReadTimeoutError,
    StreamTruncatedError,
    UpstreamError,
    create_error_from_provider,
    handle_http_error,
)
from termchat.streaming.errors import StreamErrorBuilder, StreamErrorType


# ============================================================
# Provider response mapping
# ============================================================

class TestCreateErrorFromProvider:
    """Test status code mapping."""

    @pytest.mark.parametrize("status", [401, 403])
    def test_auth_statuses(self, status):
        """401 and 403 are authentication failures."""
        error = create_error_from_provider("openai", status, {"error": {"message": "bad key"}})

        assert isinstance(error, ProviderAuthError)
        assert error.error.retryable is False
        assert "bad key" in error.error.message

    def test_rate_limit_uses_retry_after(self):
        """429 keeps the Retry-After value."""
        error = create_error_from_provider("anthropic", 429, {}, retry_after=7)

        assert isinstance(error, RateLimitedError)
        assert error.error.retry_after == 7
        assert error.error.retryable is True

    def test_server_error(self):
        """5xx is a retryable upstream error."""
        error = create_error_from_provider("google", 502, "Bad Gateway")

        assert isinstance(error, UpstreamError)
        assert error.code == "upstream_502"
        assert error.error.type == ErrorType.TRANSPORT

    def test_other_client_error(self):
        """Other 4xx statuses are request errors."""
        error = create_error_from_provider("google", 404, {"error": {"message": "model not found"}})

        assert isinstance(error, ProviderRequestError)
        assert error.status_code == 404

    def test_to_dict_shape(self):
        """Serialized errors nest under an ``error`` key."""
        data = create_error_from_provider("openai", 400, {"error": {"message": "nope"}}).error.to_dict()

        assert data["error"]["code"] == "provider_request_error"
        assert data["error"]["provider"] == "openai"
        assert data["error"]["details"] == {"status_code": 400}


# ============================================================
# httpx mapping
# ============================================================

class TestHandleHttpError:
    """Test httpx exception mapping."""

    def test_connect_error(self):
        """ConnectError becomes ConnectionFailedError."""
        error = handle_http_error("openai", httpx.ConnectError("refused"))

        assert isinstance(error, ConnectionFailedError)
        assert error.error.retryable is True

    def test_read_timeout(self):
        """Timeouts become ReadTimeoutError."""
        assert isinstance(handle_http_error("openai", httpx.ReadTimeout("slow")), ReadTimeoutError)

    def test_status_error(self):
        """HTTPStatusError uses the response body."""
        request = httpx.Request("POST", "https://example.com/hook")
        response = httpx.Response(403, json={"error": {"message": "forbidden"}}, request=request)
        exc = httpx.HTTPStatusError("403", request=request, response=response)

        error = handle_http_error("webhook", exc)

        assert isinstance(error, ProviderAuthError)
        assert "forbidden" in str(error)

    def test_termchat_error_passes_through(self):
        """Already-mapped errors are returned unchanged."""
        original = StreamTruncatedError("google")

        assert handle_http_error("google", original) is original


# ============================================================
# Stream errors
# ============================================================

class TestStreamErrorBuilder:
    """Test stream error classification."""

    def test_retryable_before_content(self):
        """Transport errors before any text are retryable."""
        builder = StreamErrorBuilder("openai")

        error = builder.from_exception(ConnectionFailedError("openai"))

        assert error.type == StreamErrorType.CONNECTION_FAILED
        assert error.content_started is False
        assert error.is_retryable is True

    def test_not_retryable_after_content(self):
        """Once text was delivered nothing is retryable."""
        builder = StreamErrorBuilder("openai")
        builder.record_text("Hello")

        error = builder.from_exception(ReadTimeoutError("openai"))

        assert error.type == StreamErrorType.TIMEOUT
        assert error.content_started is True
        assert error.is_retryable is False
        assert error.partial_content == "Hello"
        assert error.to_dict()["partial_content"] == "Hello"

    def test_content_blocked(self):
        """Blocked prompts are classified."""
        error = StreamErrorBuilder("google").from_exception(ContentBlockedError("google", "SAFETY"))

        assert error.type == StreamErrorType.CONTENT_BLOCKED

    def test_foreign_exception(self):
        """Non-termchat exceptions are interruptions."""
        error = StreamErrorBuilder("google").from_exception(RuntimeError("boom"))

        assert error.type == StreamErrorType.INTERRUPTED
        assert error.message == "boom"
