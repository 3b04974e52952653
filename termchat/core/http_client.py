"""
termchat - Streaming HTTP Client

Byte-stream transport for provider calls with:
- Exponential backoff retry (with jitter) before the response body starts
- Request correlation (request_id logging)
- Step-based logging for debugging
- Provider error mapping for non-2xx responses

Once the first byte of a successful response has been handed to the
caller, no retry is attempted: a failure mid-stream surfaces as an error.
"""

import asyncio
import json as jsonlib
import logging
import random
import time
import uuid
from contextlib import aclosing
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, List, Optional

import httpx

from .errors import TermchatError, create_error_from_provider, handle_http_error
from ..observability.logging import LogContext

logger = logging.getLogger("termchat.http")


@dataclass
class RetryConfig:
    """Configuration for retry behavior."""
    max_retries: int = 2
    base_delay: float = 0.5  # seconds
    max_delay: float = 8.0  # seconds
    exponential_base: float = 2.0
    jitter_factor: float = 0.25  # 25% jitter
    retryable_status_codes: List[int] = field(
        default_factory=lambda: [429, 500, 502, 503, 504]
    )


@dataclass
class RequestContext:
    """Context for tracking one request through the logs."""
    request_id: str = field(default_factory=lambda: f"req_{uuid.uuid4().hex[:12]}")
    step_name: str = ""
    provider: str = ""
    model: str = ""

    def to_log_extra(self) -> Dict[str, str]:
        return {"request_id": self.request_id, "provider": self.provider}


def calculate_backoff(
    attempt: int,
    base_delay: float = 0.5,
    max_delay: float = 8.0,
    exponential_base: float = 2.0,
    jitter_factor: float = 0.25
) -> float:
    """
    Calculate delay with exponential backoff and jitter.

    Sequence with defaults: 0.5s, 1s, 2s, 4s, 8s (with +/-25% jitter)
    """
    delay = min(base_delay * (exponential_base ** attempt), max_delay)

    jitter_range = delay * jitter_factor
    delay = delay + random.uniform(-jitter_range, jitter_range)

    return max(0.1, delay)  # Minimum 100ms


def _parse_retry_after(value: Optional[str]) -> Optional[int]:
    if not value:
        return None
    try:
        return max(0, int(float(value)))
    except ValueError:
        return None


class RobustHttpClient:
    """
    HTTP client that streams response bodies as raw byte chunks.

    Features:
    - Retries connect errors, timeouts, 429 and 5xx before any byte is read
    - Maps error responses to termchat exceptions
    - Request ID correlation
    """

    def __init__(
        self,
        base_url: str = "",
        timeout: float = 60.0,
        retry_config: Optional[RetryConfig] = None,
        headers: Optional[Dict[str, str]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.retry_config = retry_config or RetryConfig()
        self.default_headers = headers or {}
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create async HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=self.timeout,
                headers=self.default_headers,
                transport=self._transport,
            )
        return self._client

    async def close(self):
        """Close the HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()

    def _log_request_start(self, ctx: RequestContext, method: str, url: str, payload_summary: str):
        logger.info(
            f"STEP [{ctx.step_name}] Starting {method} {url} "
            f"(provider={ctx.provider}, model={ctx.model})",
            extra=ctx.to_log_extra()
        )
        logger.debug(f"Payload summary: {payload_summary}", extra=ctx.to_log_extra())

    def _log_retry(self, ctx: RequestContext, attempt: int, delay: float, error: str):
        logger.warning(
            f"STEP [{ctx.step_name}] Retry {attempt}/{self.retry_config.max_retries} "
            f"after {delay:.2f}s - Error: {error}",
            extra=ctx.to_log_extra()
        )

    def _log_response(self, ctx: RequestContext, status: int, latency_ms: float, retries: int):
        level = logging.INFO if status < 400 else logging.WARNING
        logger.log(
            level,
            f"STEP [{ctx.step_name}] Response: status={status}, "
            f"latency={latency_ms:.0f}ms, retries={retries}",
            extra=ctx.to_log_extra()
        )

    def _summarize_payload(self, payload: Dict[str, Any]) -> str:
        """Create safe payload summary (no secrets, no message bodies)."""
        summary = {}
        for key, value in payload.items():
            if key in ("api_key", "key", "token", "secret", "password", "authorization"):
                summary[key] = "***REDACTED***"
            elif key in ("messages", "contents") and isinstance(value, list):
                summary[key] = f"[{len(value)} messages]"
            elif isinstance(value, str) and len(value) > 100:
                summary[key] = f"{value[:50]}...({len(value)} chars)"
            else:
                summary[key] = value
        return str(summary)

    def _backoff(self, attempt: int, retry_after: Optional[int] = None) -> float:
        if retry_after is not None:
            return min(float(retry_after), self.retry_config.max_delay)
        return calculate_backoff(
            attempt,
            self.retry_config.base_delay,
            self.retry_config.max_delay,
            self.retry_config.exponential_base,
            self.retry_config.jitter_factor,
        )

    async def _error_from_response(self, response: httpx.Response, ctx: RequestContext) -> TermchatError:
        raw = await response.aread()
        text = raw.decode("utf-8", errors="replace")
        try:
            body: Any = jsonlib.loads(text)
        except ValueError:
            body = text[:500]
        # Gemini wraps error bodies in a one-element array
        if isinstance(body, list) and body and isinstance(body[0], dict):
            body = body[0]
        return create_error_from_provider(
            ctx.provider,
            response.status_code,
            body,
            retry_after=_parse_retry_after(response.headers.get("retry-after")),
            request_id=ctx.request_id,
        )

    async def stream_bytes(
        self,
        method: str,
        path: str,
        provider: str,
        model: str = "",
        step_name: str = "stream",
        json: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
        params: Optional[Dict[str, Any]] = None,
        request_id: Optional[str] = None,
    ) -> AsyncIterator[bytes]:
        """
        Open a streaming request and yield raw body chunks as they arrive.

        Args:
            method: HTTP method
            path: URL path (appended to base_url)
            provider: Provider name for logging and error mapping
            model: Model name for logging
            step_name: Name of current step for logging
            json: JSON body
            headers: Additional headers
            params: Query parameters
            request_id: Request ID for correlation (auto-generated if not provided)

        Raises:
            TransportError: Connection, timeout or 5xx failures after retries,
                or any failure once the body has started.
            ProviderError: Authentication or request errors (4xx).
        """
        ctx = RequestContext(
            request_id=request_id or f"req_{uuid.uuid4().hex[:12]}",
            step_name=step_name,
            provider=provider,
            model=model,
        )
        url = f"{self.base_url}{path}"
        merged_headers = {**self.default_headers, **(headers or {})}
        merged_headers["X-Request-ID"] = ctx.request_id

        previous = LogContext.get_current()
        LogContext.set_current(LogContext(request_id=ctx.request_id, provider=provider, model=model))
        try:
            async with aclosing(self._stream_with_retry(ctx, method, url, json, merged_headers, params)) as chunks:
                async for chunk in chunks:
                    yield chunk
        finally:
            LogContext.set_current(previous)

    async def _stream_with_retry(
        self,
        ctx: RequestContext,
        method: str,
        url: str,
        json: Optional[Dict[str, Any]],
        merged_headers: Dict[str, str],
        params: Optional[Dict[str, Any]],
    ) -> AsyncIterator[bytes]:
        provider = ctx.provider
        self._log_request_start(ctx, method, url, self._summarize_payload(json or {}))

        client = await self._get_client()
        attempt = 0

        while True:
            start_time = time.time()
            request = client.build_request(
                method,
                url,
                json=json,
                headers=merged_headers,
                params=params,
            )

            try:
                response = await client.send(request, stream=True)
            except (httpx.TimeoutException, httpx.ConnectError) as exc:
                error = handle_http_error(provider, exc, ctx.request_id)
                if attempt >= self.retry_config.max_retries:
                    raise error from exc
                attempt += 1
                delay = self._backoff(attempt - 1)
                self._log_retry(ctx, attempt, delay, f"{exc.__class__.__name__}: {exc}")
                await asyncio.sleep(delay)
                continue

            retry_delay: Optional[float] = None
            try:
                latency_ms = (time.time() - start_time) * 1000
                self._log_response(ctx, response.status_code, latency_ms, attempt)

                if response.status_code >= 400:
                    error = await self._error_from_response(response, ctx)
                    retryable = response.status_code in self.retry_config.retryable_status_codes
                    if not retryable or attempt >= self.retry_config.max_retries:
                        raise error
                    retry_delay = self._backoff(attempt, _parse_retry_after(response.headers.get("retry-after")))
                    self._log_retry(ctx, attempt + 1, retry_delay, f"Status {response.status_code}: {error}")
                else:
                    async for chunk in response.aiter_bytes():
                        if chunk:
                            yield chunk
                    return
            except httpx.HTTPError as exc:
                raise handle_http_error(provider, exc, ctx.request_id) from exc
            finally:
                await response.aclose()

            attempt += 1
            await asyncio.sleep(retry_delay)
