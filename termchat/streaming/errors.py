"""
termchat - Streaming Error Records

Structured records for failures observed during one streaming call.

Key principle:
- BEFORE content: the call failed cleanly and may be retried by the user
- AFTER content started: the partial text stays on screen and in the
  conversation; the call is never retried automatically

Absorbed, non-fatal problems (a malformed event on the delimited path)
are recorded with the same type so the terminal delta can report them.
"""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

from ..core.errors import (
    ConnectionFailedError,
    ContentBlockedError,
    ProviderAuthError,
    ProviderError,
    RateLimitedError,
    ReadTimeoutError,
    StreamFramingError,
    StreamPayloadError,
    StreamTruncatedError,
    TermchatError,
    TransportError,
)


class StreamErrorType(str, Enum):
    """Types of streaming errors."""
    # Transport failures
    CONNECTION_FAILED = "connection_failed"
    AUTHENTICATION_FAILED = "authentication_failed"
    RATE_LIMITED = "rate_limited"
    TIMEOUT = "timeout"
    PROVIDER_UNAVAILABLE = "provider_unavailable"

    # Protocol failures
    FRAMING = "framing_error"
    PAYLOAD = "payload_error"
    TRUNCATED = "truncated"
    MALFORMED_EVENT = "malformed_event"

    # Provider-reported
    PROVIDER_ERROR = "provider_error"
    CONTENT_BLOCKED = "content_blocked"

    INTERRUPTED = "interrupted"


_RETRYABLE_TYPES = {
    StreamErrorType.CONNECTION_FAILED,
    StreamErrorType.RATE_LIMITED,
    StreamErrorType.TIMEOUT,
    StreamErrorType.PROVIDER_UNAVAILABLE,
}


@dataclass
class StreamError:
    """
    Represents an error that occurred during streaming.
    """
    type: StreamErrorType
    code: str
    message: str
    provider: str
    request_id: str = ""

    occurred_at: float = field(default_factory=time.time)

    # Content state at error time
    content_started: bool = False
    partial_content: Optional[str] = None
    chunks_delivered: int = 0

    original_error: Optional[str] = None
    retry_after: Optional[int] = None

    @property
    def is_retryable(self) -> bool:
        """Never retryable once content has started."""
        if self.content_started:
            return False
        return self.type in _RETRYABLE_TYPES

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "error": {
                "type": self.type.value,
                "code": self.code,
                "message": self.message,
                "provider": self.provider,
                "retryable": self.is_retryable,
            }
        }
        if self.request_id:
            result["error"]["request_id"] = self.request_id

        if self.partial_content:
            result["partial_content"] = self.partial_content
            result["chunks_delivered"] = self.chunks_delivered

        if self.retry_after:
            result["error"]["retry_after"] = self.retry_after

        return result


class StreamErrorBuilder:
    """Builder for stream errors that knows how far the call got."""

    def __init__(self, provider: str, request_id: str = ""):
        self.provider = provider
        self.request_id = request_id
        self._partial_content = ""
        self._chunks_delivered = 0

    @property
    def content_started(self) -> bool:
        return bool(self._partial_content)

    def record_text(self, text: str):
        """Track text the consumer has already been given."""
        if text:
            self._partial_content += text
            self._chunks_delivered += 1

    def _build(
        self,
        error_type: StreamErrorType,
        code: str,
        message: str,
        original_error: Optional[str] = None,
        retry_after: Optional[int] = None,
    ) -> StreamError:
        return StreamError(
            type=error_type,
            code=code,
            message=message,
            provider=self.provider,
            request_id=self.request_id,
            content_started=self.content_started,
            partial_content=self._partial_content or None,
            chunks_delivered=self._chunks_delivered,
            original_error=original_error,
            retry_after=retry_after,
        )

    def malformed_event(self, reason: str, preview: str = "") -> StreamError:
        """An event whose payload could not be decoded and was skipped."""
        return self._build(
            StreamErrorType.MALFORMED_EVENT,
            "malformed_event",
            f"Skipped malformed event: {reason}",
            original_error=preview or None,
        )

    def from_exception(self, exception: BaseException) -> StreamError:
        """
        Create a stream error from an exception.

        termchat exceptions are classified by type; anything else is
        reported as an interruption.
        """
        if not isinstance(exception, TermchatError):
            return self._build(
                StreamErrorType.INTERRUPTED,
                "interrupted",
                str(exception) or exception.__class__.__name__,
                original_error=repr(exception),
            )

        error = exception.error
        error_type = StreamErrorType.INTERRUPTED
        if isinstance(exception, ConnectionFailedError):
            error_type = StreamErrorType.CONNECTION_FAILED
        elif isinstance(exception, ReadTimeoutError):
            error_type = StreamErrorType.TIMEOUT
        elif isinstance(exception, RateLimitedError):
            error_type = StreamErrorType.RATE_LIMITED
        elif isinstance(exception, ProviderAuthError):
            error_type = StreamErrorType.AUTHENTICATION_FAILED
        elif isinstance(exception, TransportError):
            error_type = StreamErrorType.PROVIDER_UNAVAILABLE
        elif isinstance(exception, StreamFramingError):
            error_type = StreamErrorType.FRAMING
        elif isinstance(exception, StreamPayloadError):
            error_type = StreamErrorType.PAYLOAD
        elif isinstance(exception, StreamTruncatedError):
            error_type = StreamErrorType.TRUNCATED
        elif isinstance(exception, ContentBlockedError):
            error_type = StreamErrorType.CONTENT_BLOCKED
        elif isinstance(exception, ProviderError):
            error_type = StreamErrorType.PROVIDER_ERROR

        return self._build(
            error_type,
            error.code,
            error.message,
            original_error=exception.__class__.__name__,
            retry_after=error.retry_after,
        )
