"""
termchat - Streaming Module

Normalization of provider streaming responses into NormalizedDelta values.
"""

from .normalizer import (
    NormalizedDelta,
    DeltaDetector,
    StreamState,
    map_finish_reason,
)
from .cumulative import CumulativeFrameDetector, Frame
from .events import (
    DelimitedEventAccumulator,
    Event,
    EventKind,
    anthropic_accumulator,
    classify_anthropic_event,
    classify_openai_event,
    openai_accumulator,
    parse_event_block,
)
from .errors import StreamError, StreamErrorBuilder, StreamErrorType

__all__ = [
    "NormalizedDelta",
    "DeltaDetector",
    "StreamState",
    "map_finish_reason",
    "CumulativeFrameDetector",
    "Frame",
    "DelimitedEventAccumulator",
    "Event",
    "EventKind",
    "anthropic_accumulator",
    "classify_anthropic_event",
    "classify_openai_event",
    "openai_accumulator",
    "parse_event_block",
    "StreamError",
    "StreamErrorBuilder",
    "StreamErrorType",
]
