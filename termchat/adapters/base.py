"""
termchat - Provider Adapter Contract

Every provider exposes the same two operations:
- stream_chat: a lazy, single-pass async iterator of NormalizedDelta
- chat: the same sequence, concatenated

Adapters differ only in how they build the request and which detector
decodes the response body. The shared delta loop lives here.
"""

from contextlib import aclosing
from dataclasses import dataclass
from typing import AsyncIterator, List, Optional, Protocol

import httpx

from ..core.errors import TermchatError
from ..core.models import ChatRequestOptions, ChatResult, Message, ProviderKind
from ..observability.logging import TimedOperation, get_logger
from ..observability.tracing import record_exception, start_provider_span
from ..streaming.normalizer import DeltaDetector, NormalizedDelta, StreamState

logger = get_logger(__name__)


@dataclass
class AdapterConfig:
    """Configuration for a provider adapter."""
    api_key: str
    base_url: Optional[str] = None
    timeout: float = 60.0
    max_retries: int = 2
    transport: Optional[httpx.AsyncBaseTransport] = None
    service_account_file: Optional[str] = None


class ChatProvider(Protocol):
    """The capability contract shared by all providers."""

    name: str
    kind: ProviderKind

    def stream_chat(
        self,
        conversation: List[Message],
        options: ChatRequestOptions,
    ) -> AsyncIterator[NormalizedDelta]:
        """
        Open one streaming call.

        Nothing is sent until iteration starts. The iterator ends after
        the final delta, or raises a TermchatError. It cannot be restarted.
        """
        ...

    async def chat(self, conversation: List[Message], options: ChatRequestOptions) -> ChatResult:
        """Run a streaming call to completion and return the whole text."""
        ...

    async def close(self) -> None:
        ...


async def stream_deltas(
    chunks: AsyncIterator[bytes],
    detector: DeltaDetector,
) -> AsyncIterator[NormalizedDelta]:
    """
    Feed transport chunks through a detector.

    Reading stops as soon as the detector has seen the completion marker;
    the transport is closed when this generator finishes or is closed.
    """
    async with aclosing(chunks):
        async for chunk in chunks:
            for delta in detector.feed(chunk):
                yield delta
            if detector.done:
                break

    for delta in detector.finish():
        yield delta


async def traced_stream(
    provider: str,
    model: str,
    chunks: AsyncIterator[bytes],
    detector: DeltaDetector,
) -> AsyncIterator[NormalizedDelta]:
    """stream_deltas wrapped in a span and a timed log record."""
    span = start_provider_span(provider, model)
    deltas = 0
    try:
        async with TimedOperation("stream_chat", logger, extra={"provider": provider, "model": model}):
            async with aclosing(stream_deltas(chunks, detector)) as stream:
                async for delta in stream:
                    if delta.text:
                        deltas += 1
                    if delta.final:
                        span.set_attribute("termchat.finish_reason", getattr(delta.finish_reason, "value", ""))
                    yield delta
    except TermchatError as exc:
        record_exception(span, exc)
        raise
    finally:
        span.set_attribute("termchat.deltas", deltas)
        span.end()


async def collect_response(
    stream: AsyncIterator[NormalizedDelta],
    provider: str,
    model: str,
) -> ChatResult:
    """Concatenate a delta stream into a ChatResult."""
    state = StreamState(provider=provider, model=model)
    async with aclosing(stream):
        async for delta in stream:
            state.apply(delta)
    return ChatResult(
        content=state.accumulated_content,
        provider=provider,
        model=model,
        finish_reason=state.finish_reason,
        deltas=state.chunks_received,
        warnings=state.warnings,
    )
