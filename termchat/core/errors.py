"""
termchat - Error Definitions

Error taxonomy for transport, protocol, provider and configuration failures.
Every exception carries an ErrorDetails record so the terminal layer can
present it uniformly.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional


class ErrorType(str, Enum):
    """Error classification."""
    TRANSPORT = "transport_error"
    PROTOCOL = "protocol_error"
    PROVIDER = "provider_error"
    CONFIG = "config_error"


@dataclass
class ErrorDetails:
    """Full error information."""
    # Core fields (always present)
    code: str
    message: str
    type: ErrorType

    # Context fields
    provider: Optional[str] = None
    request_id: str = ""

    # Recovery fields
    retryable: bool = False
    retry_after: Optional[int] = None
    partial_content: Optional[str] = None

    # Debug fields
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        result = {
            "code": self.code,
            "message": self.message,
            "type": self.type.value,
            "retryable": self.retryable,
        }

        if self.provider:
            result["provider"] = self.provider
        if self.request_id:
            result["request_id"] = self.request_id
        if self.retry_after is not None:
            result["retry_after"] = self.retry_after
        if self.partial_content:
            result["partial_content"] = self.partial_content
        if self.details:
            result["details"] = self.details

        return {"error": result}


class TermchatError(Exception):
    """Base exception for all termchat errors."""

    def __init__(self, error: ErrorDetails):
        self.error = error
        super().__init__(error.message)

    @property
    def code(self) -> str:
        return self.error.code


# ============================================================
# Transport Errors (retryable before the first byte only)
# ============================================================

class TransportError(TermchatError):
    """Base class for HTTP transport failures."""
    pass


class ConnectionFailedError(TransportError):
    """Could not reach the provider."""

    def __init__(self, provider: str, reason: str = "", request_id: str = ""):
        super().__init__(
            ErrorDetails(
                code="connection_failed",
                message=f"Failed to connect to {provider}" + (f": {reason}" if reason else ""),
                type=ErrorType.TRANSPORT,
                provider=provider,
                request_id=request_id,
                retryable=True,
            )
        )


class ReadTimeoutError(TransportError):
    """Provider did not respond in time."""

    def __init__(self, provider: str, request_id: str = ""):
        super().__init__(
            ErrorDetails(
                code="read_timeout",
                message=f"{provider} did not respond within timeout",
                type=ErrorType.TRANSPORT,
                provider=provider,
                request_id=request_id,
                retryable=True,
            )
        )


class UpstreamError(TransportError):
    """Provider returned a server error."""

    def __init__(
        self,
        provider: str,
        status_code: int,
        message: str = "",
        request_id: str = "",
    ):
        self.status_code = status_code
        super().__init__(
            ErrorDetails(
                code=f"upstream_{status_code}" if status_code in (500, 502, 503, 504) else "upstream_error",
                message=message or f"{provider} returned error {status_code}",
                type=ErrorType.TRANSPORT,
                provider=provider,
                request_id=request_id,
                retryable=True,
                details={"status_code": status_code},
            )
        )


class RateLimitedError(TransportError):
    """Rate limit exceeded."""

    def __init__(self, provider: str, retry_after: int = 60, request_id: str = ""):
        super().__init__(
            ErrorDetails(
                code="rate_limited",
                message=f"{provider} rate limit exceeded. Retry after {retry_after} seconds.",
                type=ErrorType.TRANSPORT,
                provider=provider,
                request_id=request_id,
                retryable=True,
                retry_after=retry_after,
            )
        )


# ============================================================
# Protocol Errors (stream could not be decoded)
# ============================================================

class ProtocolError(TermchatError):
    """Base class for streaming protocol failures. Never retryable."""

    def __init__(
        self,
        code: str,
        message: str,
        provider: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(
            ErrorDetails(
                code=code,
                message=message,
                type=ErrorType.PROTOCOL,
                provider=provider,
                retryable=False,
                details=details or {},
            )
        )


class StreamFramingError(ProtocolError):
    """Bytes could not be split into frames or events."""

    def __init__(self, message: str, provider: Optional[str] = None, preview: str = ""):
        super().__init__(
            "stream_framing_error",
            message,
            provider=provider,
            details={"preview": preview} if preview else None,
        )


class StreamPayloadError(ProtocolError):
    """A complete frame held invalid JSON or JSON of an unexpected shape."""

    def __init__(self, message: str, provider: Optional[str] = None, preview: str = ""):
        super().__init__(
            "stream_payload_error",
            message,
            provider=provider,
            details={"preview": preview} if preview else None,
        )


class StreamTruncatedError(ProtocolError):
    """Transport ended before any completion marker."""

    def __init__(self, provider: Optional[str] = None):
        super().__init__(
            "stream_truncated",
            "Stream ended before the provider signalled completion",
            provider=provider,
        )


# ============================================================
# Provider Errors (reported by the remote service)
# ============================================================

class ProviderError(TermchatError):
    """Base class for errors the provider reported itself."""
    pass


class ProviderReportedError(ProviderError):
    """Error object delivered inside the stream."""

    def __init__(self, provider: str, message: str, code: str = "", status: str = ""):
        super().__init__(
            ErrorDetails(
                code="provider_reported_error",
                message=f"{provider} reported an error: {message}",
                type=ErrorType.PROVIDER,
                provider=provider,
                retryable=False,
                details={k: v for k, v in (("provider_code", code), ("status", status)) if v},
            )
        )


class ContentBlockedError(ProviderError):
    """Prompt was blocked by the provider's safety systems."""

    def __init__(self, provider: str, reason: str = ""):
        super().__init__(
            ErrorDetails(
                code="content_blocked",
                message=f"{provider} blocked the prompt" + (f" ({reason})" if reason else ""),
                type=ErrorType.PROVIDER,
                provider=provider,
                retryable=False,
                details={"block_reason": reason} if reason else {},
            )
        )


class ProviderAuthError(ProviderError):
    """Provider rejected the credentials."""

    def __init__(self, provider: str, message: str = "", status_code: int = 401):
        super().__init__(
            ErrorDetails(
                code="provider_auth_error",
                message=f"{provider} authentication failed" + (f": {message}" if message else ""),
                type=ErrorType.PROVIDER,
                provider=provider,
                retryable=False,
                details={"status_code": status_code},
            )
        )


class ProviderRequestError(ProviderError):
    """Provider rejected the request (4xx)."""

    def __init__(self, provider: str, status_code: int, message: str = ""):
        self.status_code = status_code
        super().__init__(
            ErrorDetails(
                code="provider_request_error",
                message=message or f"{provider} rejected the request ({status_code})",
                type=ErrorType.PROVIDER,
                provider=provider,
                retryable=False,
                details={"status_code": status_code},
            )
        )


# ============================================================
# Configuration Errors
# ============================================================

class ConfigError(TermchatError):
    """Base class for local configuration problems."""

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            ErrorDetails(
                code=code,
                message=message,
                type=ErrorType.CONFIG,
                details=details or {},
            )
        )


class ProviderNotFoundError(ConfigError):
    def __init__(self, name: str):
        super().__init__(
            "provider_not_found",
            f"provider '{name}' is not configured (use `termchat config set {name}`)",
            {"provider": name},
        )


class NoDefaultProviderError(ConfigError):
    def __init__(self):
        super().__init__(
            "no_default_provider",
            "no provider specified and no default configured (use --provider or `config set --default`)",
        )


class MissingCredentialsError(ConfigError):
    def __init__(self, provider: str, hint: str = ""):
        super().__init__(
            "missing_credentials",
            f"no API key available for provider '{provider}'" + (f"; {hint}" if hint else ""),
            {"provider": provider},
        )


class SecretError(ConfigError):
    """Encrypting or decrypting a stored secret failed."""

    def __init__(self, message: str):
        super().__init__("secret_error", message)


# ============================================================
# Provider response mapping
# ============================================================

def _extract_message(error_body: Any) -> str:
    """Pull a human-readable message out of any provider's error body."""
    if isinstance(error_body, dict):
        inner = error_body.get("error", error_body)
        if isinstance(inner, dict):
            message = inner.get("message")
            if message:
                return str(message)
        elif isinstance(inner, str):
            return inner
        return str(error_body)
    return str(error_body or "")


def create_error_from_provider(
    provider: str,
    status_code: int,
    error_body: Any,
    retry_after: Optional[int] = None,
    request_id: str = "",
) -> TermchatError:
    """
    Create the appropriate error from a non-2xx provider response.

    All three providers nest the details under ``error.message``; bodies
    that are not JSON are passed in as plain text.
    """
    message = _extract_message(error_body)

    if status_code in (401, 403):
        return ProviderAuthError(provider, message, status_code)

    if status_code == 429:
        return RateLimitedError(provider, retry_after or 60, request_id=request_id)

    if status_code >= 500:
        return UpstreamError(provider, status_code, message, request_id)

    return ProviderRequestError(provider, status_code, message)


def handle_http_error(provider: str, error: Exception, request_id: str = "") -> TermchatError:
    """Convert an httpx exception to a termchat exception."""
    import httpx

    if isinstance(error, TermchatError):
        return error

    if isinstance(error, httpx.ConnectTimeout):
        return ConnectionFailedError(provider, "connect timeout", request_id)

    if isinstance(error, httpx.TimeoutException):
        return ReadTimeoutError(provider, request_id)

    if isinstance(error, (httpx.ConnectError, httpx.RemoteProtocolError)):
        return ConnectionFailedError(provider, str(error), request_id)

    if isinstance(error, httpx.HTTPStatusError):
        response = error.response
        try:
            body: Any = response.json()
        except ValueError:
            body = response.text
        return create_error_from_provider(provider, response.status_code, body, request_id=request_id)

    return TransportError(
        ErrorDetails(
            code="transport_error",
            message=str(error) or error.__class__.__name__,
            type=ErrorType.TRANSPORT,
            provider=provider,
            request_id=request_id,
            retryable=False,
        )
    )
