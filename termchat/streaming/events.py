"""
termchat - Delimited Event Accumulator

Turns server-sent event streams (Anthropic Messages, OpenAI Chat
Completions) into NormalizedDelta values.

Events are separated by a blank line. Within an event, ``data:`` lines
carry the JSON payload, ``event:`` lines name it, and lines starting with
``:`` are comments used as heartbeats. Text deltas are already
incremental, so no diffing is done.

The two providers differ only in payload shape; each has a classifier that
maps a decoded payload to an Event.
"""

import json
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from ..core.errors import ProviderReportedError, StreamFramingError, StreamTruncatedError
from ..core.models import FinishReason
from ..observability.logging import get_logger
from .errors import StreamError, StreamErrorBuilder
from .normalizer import (
    ANTHROPIC_FINISH_REASONS,
    OPENAI_FINISH_REASONS,
    NormalizedDelta,
    map_finish_reason,
)

logger = get_logger(__name__)

DONE_SENTINEL = "[DONE]"

_DELIMITERS = (b"\r\n\r\n", b"\n\n", b"\r\r")
_MAX_DELIMITER = max(len(d) for d in _DELIMITERS)


class EventKind(str, Enum):
    """Classified event kinds."""
    TEXT_DELTA = "text_delta"
    MESSAGE_START = "message_start"
    BLOCK_START = "block_start"
    BLOCK_STOP = "block_stop"
    MESSAGE_DELTA = "message_delta"
    MESSAGE_STOP = "message_stop"
    ERROR = "error"
    UNKNOWN = "unknown"


@dataclass
class Event:
    """A classified server-sent event."""
    kind: EventKind
    text: str = ""
    finish_reason: Optional[FinishReason] = None
    error: Optional[Dict[str, Any]] = None


EventClassifier = Callable[[Dict[str, Any]], Event]


@dataclass
class RawEvent:
    """Fields of one SSE block."""
    event: Optional[str] = None
    data: Optional[str] = None


def parse_event_block(block: str) -> RawEvent:
    """
    Parse one SSE block into its fields.

    Comment lines are dropped; repeated ``data`` lines are joined with a
    newline. ``data`` stays None when the block has no data line.
    """
    raw = RawEvent()
    data_lines: List[str] = []

    for line in block.splitlines():
        if not line or line.startswith(":"):
            continue
        name, sep, value = line.partition(":")
        if not sep:
            value = ""
        elif value.startswith(" "):
            value = value[1:]

        if name == "data":
            data_lines.append(value)
        elif name == "event":
            raw.event = value

    if data_lines:
        raw.data = "\n".join(data_lines)
    return raw


# ============================================================
# Classifiers
# ============================================================

def _as_dict(value: Any) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _as_text(value: Any) -> str:
    return value if isinstance(value, str) else ""


def classify_anthropic_event(payload: Dict[str, Any]) -> Event:
    """Classify an Anthropic Messages streaming payload."""
    event_type = payload.get("type", "")

    if event_type == "content_block_delta":
        delta = payload.get("delta")
        if not isinstance(delta, dict):
            raise TypeError("content_block_delta has no delta object")
        if delta.get("type") == "text_delta":
            text = delta.get("text")
            if text is not None and not isinstance(text, str):
                raise TypeError("text_delta text is not a string")
            return Event(EventKind.TEXT_DELTA, text=text or "")
        return Event(EventKind.UNKNOWN)

    if event_type == "content_block_start":
        block = _as_dict(payload.get("content_block"))
        text = _as_text(block.get("text")) if block.get("type") == "text" else ""
        return Event(EventKind.BLOCK_START, text=text)

    if event_type == "content_block_stop":
        return Event(EventKind.BLOCK_STOP)

    if event_type == "message_start":
        return Event(EventKind.MESSAGE_START)

    if event_type == "message_delta":
        delta = _as_dict(payload.get("delta"))
        return Event(
            EventKind.MESSAGE_DELTA,
            finish_reason=map_finish_reason(delta.get("stop_reason"), ANTHROPIC_FINISH_REASONS),
        )

    if event_type == "message_stop":
        return Event(EventKind.MESSAGE_STOP)

    if event_type == "error":
        error = payload.get("error")
        return Event(EventKind.ERROR, error=error if isinstance(error, dict) else {"message": str(error)})

    return Event(EventKind.UNKNOWN)


def classify_openai_event(payload: Dict[str, Any]) -> Event:
    """Classify an OpenAI Chat Completions streaming payload."""
    error = payload.get("error")
    if error:
        return Event(EventKind.ERROR, error=error if isinstance(error, dict) else {"message": str(error)})

    choices = payload.get("choices") or []
    if not choices:
        # Trailing usage chunk
        return Event(EventKind.UNKNOWN)
    if not isinstance(choices, list) or not isinstance(choices[0], dict):
        raise TypeError("choices is not a list of objects")

    choice = choices[0]
    delta = choice.get("delta") or {}
    if not isinstance(delta, dict):
        raise TypeError("choice delta is not an object")
    content = delta.get("content")
    if content is not None and not isinstance(content, str):
        raise TypeError("delta content is not a string")

    finish_reason = map_finish_reason(choice.get("finish_reason"), OPENAI_FINISH_REASONS)
    if finish_reason is not None:
        return Event(EventKind.MESSAGE_DELTA, text=content or "", finish_reason=finish_reason)

    if content:
        return Event(EventKind.TEXT_DELTA, text=content)
    if delta.get("role"):
        return Event(EventKind.MESSAGE_START)
    return Event(EventKind.UNKNOWN)


# ============================================================
# Accumulator
# ============================================================

class DelimitedEventAccumulator:
    """
    Incremental detector for blank-line delimited events.

    One instance serves exactly one streaming call.
    """

    def __init__(self, classifier: EventClassifier, provider: str):
        self.classifier = classifier
        self.provider = provider
        self._buffer = bytearray()
        self._search_from = 0
        self._done = False
        self._finish_reason: Optional[FinishReason] = None
        self._errors = StreamErrorBuilder(provider)
        self.absorbed_errors: List[StreamError] = []
        self.events_seen = 0

    @property
    def done(self) -> bool:
        return self._done

    def feed(self, chunk: bytes) -> List[NormalizedDelta]:
        """
        Consume one raw chunk.

        Returns the deltas completed by this chunk, which may be none.

        Raises:
            ProviderReportedError: The provider sent an error event.
        """
        if self._done or not chunk:
            return []

        self._buffer += chunk
        deltas: List[NormalizedDelta] = []

        while not self._done:
            block = self._next_block()
            if block is None:
                break
            deltas.extend(self._handle_block(block))

        return deltas

    def finish(self) -> List[NormalizedDelta]:
        """
        Called once the transport has no more bytes.

        Raises:
            StreamFramingError: The stream stopped inside an event.
            StreamTruncatedError: No completion marker was received.
        """
        if self._done:
            return []

        leftover = bytes(self._buffer).strip()
        self._buffer.clear()
        self._done = True

        if self._finish_reason is not None:
            return [self._terminal()]

        if leftover:
            raise StreamFramingError(
                "Stream ended inside an incomplete event",
                provider=self.provider,
                preview=leftover[:80].decode("utf-8", errors="replace"),
            )
        raise StreamTruncatedError(self.provider)

    def _next_block(self) -> Optional[bytes]:
        """Split off the next complete event, if the buffer holds one."""
        found = -1
        found_len = 0
        for delimiter in _DELIMITERS:
            index = self._buffer.find(delimiter, self._search_from)
            if index != -1 and (found == -1 or index < found):
                found = index
                found_len = len(delimiter)

        if found == -1:
            self._search_from = max(0, len(self._buffer) - _MAX_DELIMITER + 1)
            return None

        block = bytes(self._buffer[:found])
        del self._buffer[: found + found_len]
        self._search_from = 0
        return block

    def _handle_block(self, block: bytes) -> List[NormalizedDelta]:
        raw = parse_event_block(block.decode("utf-8", errors="replace"))
        if raw.data is None:
            return []

        self.events_seen += 1
        data = raw.data.strip()

        if data == DONE_SENTINEL:
            self._done = True
            self._buffer.clear()
            return [self._terminal()]

        try:
            payload = json.loads(data)
        except ValueError as exc:
            self._absorb(str(exc), data)
            return []

        if not isinstance(payload, dict):
            self._absorb("payload is not a JSON object", data)
            return []

        try:
            event = self.classifier(payload)
        except (AttributeError, KeyError, TypeError) as exc:
            self._absorb(f"unexpected payload shape: {exc}", data)
            return []

        deltas: List[NormalizedDelta] = []

        if event.kind == EventKind.ERROR:
            self._done = True
            self._buffer.clear()
            error = event.error or {}
            raise ProviderReportedError(
                self.provider,
                str(error.get("message", error)),
                code=str(error.get("code") or ""),
                status=str(error.get("type") or ""),
            )

        if event.text:
            self._errors.record_text(event.text)
            deltas.append(NormalizedDelta(text=event.text))

        if event.finish_reason is not None:
            self._finish_reason = event.finish_reason

        if event.kind == EventKind.MESSAGE_STOP:
            self._done = True
            self._buffer.clear()
            deltas.append(self._terminal())

        return deltas

    def _absorb(self, reason: str, data: str):
        error = self._errors.malformed_event(reason, data[:80])
        self.absorbed_errors.append(error)
        logger.warning(
            "Skipping malformed stream event",
            provider=self.provider,
            reason=reason,
            preview=data[:80],
        )

    def _terminal(self) -> NormalizedDelta:
        return NormalizedDelta.terminal(
            self._finish_reason or FinishReason.STOP,
            error=self.absorbed_errors[0] if self.absorbed_errors else None,
        )


def anthropic_accumulator(provider: str = "anthropic") -> DelimitedEventAccumulator:
    return DelimitedEventAccumulator(classify_anthropic_event, provider)


def openai_accumulator(provider: str = "openai") -> DelimitedEventAccumulator:
    return DelimitedEventAccumulator(classify_openai_event, provider)
