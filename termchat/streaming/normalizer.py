"""
termchat - Stream Normalizer

The provider-neutral delta type and the shared pieces both wire-format
detectors build on.

Every provider's stream, whatever its framing, is reduced to a sequence of
NormalizedDelta values:
- zero or more text deltas, in arrival order
- exactly one final delta, emitted when the provider signals completion
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Protocol

from ..core.models import FinishReason
from .errors import StreamError


@dataclass(frozen=True)
class NormalizedDelta:
    """
    One unit of newly generated text.

    ``text`` holds only text not previously emitted in the same call.
    ``final`` marks the terminal delta; its ``error`` is set when events
    were skipped as malformed during the call.
    """
    text: str = ""
    final: bool = False
    finish_reason: Optional[FinishReason] = None
    error: Optional[StreamError] = None

    @classmethod
    def terminal(
        cls,
        finish_reason: Optional[FinishReason] = FinishReason.STOP,
        error: Optional[StreamError] = None,
    ) -> "NormalizedDelta":
        return cls(text="", final=True, finish_reason=finish_reason, error=error)


class DeltaDetector(Protocol):
    """
    Incremental wire-format detector.

    ``feed`` is called with each raw chunk as it arrives and returns the
    deltas the chunk completed. ``finish`` is called once when the
    transport ends.
    """

    @property
    def done(self) -> bool: ...

    def feed(self, chunk: bytes) -> List[NormalizedDelta]: ...

    def finish(self) -> List[NormalizedDelta]: ...


# ============================================================
# Finish reason mapping
# ============================================================

GOOGLE_FINISH_REASONS: Dict[str, FinishReason] = {
    "STOP": FinishReason.STOP,
    "MAX_TOKENS": FinishReason.LENGTH,
    "SAFETY": FinishReason.CONTENT_FILTER,
    "RECITATION": FinishReason.CONTENT_FILTER,
    "BLOCKLIST": FinishReason.CONTENT_FILTER,
    "PROHIBITED_CONTENT": FinishReason.CONTENT_FILTER,
    "SPII": FinishReason.CONTENT_FILTER,
}

ANTHROPIC_FINISH_REASONS: Dict[str, FinishReason] = {
    "end_turn": FinishReason.STOP,
    "stop_sequence": FinishReason.STOP,
    "max_tokens": FinishReason.LENGTH,
    "tool_use": FinishReason.TOOL_CALLS,
}

OPENAI_FINISH_REASONS: Dict[str, FinishReason] = {
    "stop": FinishReason.STOP,
    "length": FinishReason.LENGTH,
    "tool_calls": FinishReason.TOOL_CALLS,
    "function_call": FinishReason.TOOL_CALLS,
    "content_filter": FinishReason.CONTENT_FILTER,
}


def map_finish_reason(raw: Optional[str], table: Dict[str, FinishReason]) -> Optional[FinishReason]:
    """Map a provider finish reason; unknown values count as a normal stop."""
    if not raw:
        return None
    return table.get(raw, FinishReason.STOP)


# ============================================================
# Consumer-side accumulation
# ============================================================

@dataclass
class StreamState:
    """
    Tracks what the consumer has received from one call.

    Kept outside the delta loop so the partial text survives a failure or
    cancellation of the call.
    """
    provider: str = ""
    model: str = ""

    content_started: bool = False
    accumulated_content: str = ""
    chunks_received: int = 0

    completed: bool = False
    finish_reason: Optional[FinishReason] = None
    warnings: List[str] = field(default_factory=list)

    def apply(self, delta: NormalizedDelta):
        """Fold one delta into the state."""
        if delta.text:
            self.content_started = True
            self.accumulated_content += delta.text
            self.chunks_received += 1
        if delta.final:
            self.completed = True
            self.finish_reason = delta.finish_reason
            if delta.error is not None:
                self.warnings.append(delta.error.message)
