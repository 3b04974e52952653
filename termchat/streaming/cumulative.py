"""
termchat - Cumulative Frame Detector

Turns Gemini's ``streamGenerateContent`` byte stream into NormalizedDelta
values.

The response body is one JSON array streamed element by element:

    [{"candidates": [...]}
    ,
    {"candidates": [...]}
    ]

Chunks arrive at arbitrary boundaries, so objects are located with a
resumable brace-depth scanner that understands string literals and escape
sequences. Scanning runs over raw bytes; a frame is decoded only once it is
complete, so a UTF-8 sequence split between chunks is never decoded early.

Each frame's text is treated as the cumulative response so far and diffed
against the previous frame's text. A frame that does not extend the
previous text is emitted whole.
"""

import json
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from ..core.errors import (
    ContentBlockedError,
    ProviderReportedError,
    StreamFramingError,
    StreamPayloadError,
    StreamTruncatedError,
)
from ..observability.logging import get_logger
from .normalizer import GOOGLE_FINISH_REASONS, NormalizedDelta, map_finish_reason

logger = get_logger(__name__)

_SEPARATORS = b" \t\r\n[],"
_DATA_PREFIX = b"data:"
_OPEN = (ord("{"), ord("["))
_CLOSE = (ord("}"), ord("]"))
_QUOTE = ord('"')
_BACKSLASH = ord("\\")
_OBJECT_START = ord("{")

_PREVIEW_BYTES = 80


def _preview(data: bytes) -> str:
    return data[:_PREVIEW_BYTES].decode("utf-8", errors="replace")


@dataclass
class Frame:
    """The parts of one Gemini frame the detector acts on."""
    text: str = ""
    finish_reason: Optional[str] = None
    block_reason: Optional[str] = None
    error: Optional[Dict[str, Any]] = None

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "Frame":
        error = payload.get("error")
        if isinstance(error, dict):
            return cls(error=error)

        feedback = payload.get("promptFeedback") or {}
        block_reason = feedback.get("blockReason") if isinstance(feedback, dict) else None

        candidates = payload.get("candidates") or []
        if not isinstance(candidates, list):
            raise TypeError("candidates is not a list")
        first = candidates[0] if candidates and isinstance(candidates[0], dict) else {}
        content = first.get("content") or {}
        if not isinstance(content, dict):
            raise TypeError("candidate content is not an object")
        parts = content.get("parts") or []
        if not isinstance(parts, list):
            raise TypeError("content parts is not a list")

        # Thought summaries are not part of the reply
        text = "".join(
            part["text"]
            for part in parts
            if isinstance(part, dict) and isinstance(part.get("text"), str) and not part.get("thought")
        )

        finish_reason = first.get("finishReason")
        if finish_reason is not None and not isinstance(finish_reason, str):
            raise TypeError("finishReason is not a string")
        if finish_reason == "FINISH_REASON_UNSPECIFIED":
            finish_reason = None

        return cls(text=text, finish_reason=finish_reason, block_reason=block_reason)


class CumulativeFrameDetector:
    """
    Incremental detector for cumulative JSON frames.

    One instance serves exactly one streaming call.
    """

    def __init__(self, provider: str = "google"):
        self.provider = provider
        self._buffer = bytearray()
        self._prior_text = ""
        self._done = False
        self.frames_seen = 0

        # Scanner state for the frame currently being located
        self._scan_pos = 0
        self._depth = 0
        self._in_string = False
        self._escape = False

    @property
    def done(self) -> bool:
        return self._done

    @property
    def prior_text(self) -> str:
        return self._prior_text

    def feed(self, chunk: bytes) -> List[NormalizedDelta]:
        """
        Consume one raw chunk.

        Returns the deltas completed by this chunk, which may be none.

        Raises:
            StreamFramingError: Bytes between frames that are not array
                punctuation or whitespace.
            StreamPayloadError: A complete frame that is not a JSON object.
            ProviderReportedError: The provider sent an error object.
            ContentBlockedError: The prompt was blocked.
        """
        if self._done or not chunk:
            return []

        self._buffer += chunk
        deltas: List[NormalizedDelta] = []

        while not self._done:
            raw = self._next_frame()
            if raw is None:
                break
            deltas.extend(self._handle_frame(raw))

        return deltas

    def finish(self) -> List[NormalizedDelta]:
        """
        Called once the transport has no more bytes.

        Raises:
            StreamFramingError: The stream stopped inside a frame.
            StreamTruncatedError: No frame signalled completion.
        """
        if self._done:
            return []

        leftover = bytes(self._buffer).strip(_SEPARATORS)
        self._discard()
        if leftover:
            raise StreamFramingError(
                "Stream ended inside an incomplete frame",
                provider=self.provider,
                preview=_preview(leftover),
            )
        raise StreamTruncatedError(self.provider)

    # ============================================================
    # Framing
    # ============================================================

    def _at_frame_start(self) -> bool:
        """
        Drop separators ahead of the next frame.

        Returns True when the buffer starts with ``{``, False when more
        bytes are needed to decide.
        """
        while True:
            stripped = bytes(self._buffer).lstrip(_SEPARATORS)
            if len(stripped) != len(self._buffer):
                del self._buffer[: len(self._buffer) - len(stripped)]

            if not self._buffer:
                return False
            if self._buffer[0] == _OBJECT_START:
                return True
            if self._buffer.startswith(_DATA_PREFIX):
                del self._buffer[: len(_DATA_PREFIX)]
                continue
            if _DATA_PREFIX.startswith(bytes(self._buffer)):
                return False

            raise StreamFramingError(
                "Unexpected bytes between frames",
                provider=self.provider,
                preview=_preview(bytes(self._buffer)),
            )

    def _next_frame(self) -> Optional[bytes]:
        if self._scan_pos == 0 and not self._at_frame_start():
            return None

        buf = self._buffer
        i = self._scan_pos
        end = len(buf)

        while i < end:
            byte = buf[i]
            i += 1

            if self._in_string:
                if self._escape:
                    self._escape = False
                elif byte == _BACKSLASH:
                    self._escape = True
                elif byte == _QUOTE:
                    self._in_string = False
            elif byte == _QUOTE:
                self._in_string = True
            elif byte in _OPEN:
                self._depth += 1
            elif byte in _CLOSE:
                self._depth -= 1
                if self._depth == 0:
                    raw = bytes(buf[:i])
                    del buf[:i]
                    self._scan_pos = 0
                    return raw

        self._scan_pos = i
        return None

    # ============================================================
    # Frame handling
    # ============================================================

    def _handle_frame(self, raw: bytes) -> List[NormalizedDelta]:
        try:
            payload = json.loads(raw)
        except ValueError as exc:
            raise StreamPayloadError(
                f"Invalid JSON frame: {exc}",
                provider=self.provider,
                preview=_preview(raw),
            ) from exc

        if not isinstance(payload, dict):
            raise StreamPayloadError(
                "Frame is not a JSON object",
                provider=self.provider,
                preview=_preview(raw),
            )

        self.frames_seen += 1
        try:
            frame = Frame.from_payload(payload)
        except (AttributeError, KeyError, TypeError) as exc:
            raise StreamPayloadError(
                f"Unexpected frame shape: {exc}",
                provider=self.provider,
                preview=_preview(raw),
            ) from exc

        if frame.error is not None:
            self._discard()
            raise ProviderReportedError(
                self.provider,
                str(frame.error.get("message", frame.error)),
                code=str(frame.error.get("code", "")),
                status=str(frame.error.get("status", "")),
            )

        if frame.block_reason:
            self._discard()
            raise ContentBlockedError(self.provider, frame.block_reason)

        deltas: List[NormalizedDelta] = []

        if frame.text:
            text = self._diff(frame.text)
            if text:
                deltas.append(NormalizedDelta(text=text))

        if frame.finish_reason:
            deltas.append(
                NormalizedDelta.terminal(
                    map_finish_reason(frame.finish_reason, GOOGLE_FINISH_REASONS)
                )
            )
            self._discard()
            self._done = True

        return deltas

    def _diff(self, full_text: str) -> str:
        """Return the part of ``full_text`` not yet emitted."""
        prior = self._prior_text
        self._prior_text = full_text

        if full_text.startswith(prior):
            return full_text[len(prior):]

        logger.warning(
            "Frame text does not extend prior text; emitting it whole",
            provider=self.provider,
            prior_length=len(prior),
            new_length=len(full_text),
        )
        return full_text

    def _discard(self):
        self._buffer.clear()
        self._scan_pos = 0
        self._depth = 0
        self._in_string = False
        self._escape = False
