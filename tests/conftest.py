"""
termchat - Pytest Configuration

Configures:
- Integration test markers (skip by default)
- Recorded provider stream bodies
- httpx mock transports for adapter tests
- An isolated config directory
"""

import json
import os
from typing import Callable, Iterable, List, Optional

import httpx
import pytest


# ============================================================
# Environment Configuration
# ============================================================

def _is_truthy(value: Optional[str]) -> bool:
    """Check if environment variable is truthy."""
    if value is None:
        return False
    return value.lower() in ("1", "true", "yes", "on")


RUN_INTEGRATION = _is_truthy(os.getenv("RUN_INTEGRATION"))


# ============================================================
# Pytest Markers
# ============================================================

def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers",
        "integration: mark test as integration test (requires RUN_INTEGRATION=1)"
    )
    config.addinivalue_line(
        "markers",
        "requires_openssl: mark test as needing the openssl binary"
    )


def pytest_collection_modifyitems(config, items):
    """Skip integration tests unless RUN_INTEGRATION=1."""
    skip_integration = pytest.mark.skip(
        reason="Integration test - set RUN_INTEGRATION=1 to run"
    )

    for item in items:
        if "integration" in item.keywords and not RUN_INTEGRATION:
            item.add_marker(skip_integration)


# ============================================================
# Recorded stream bodies
# ============================================================

def gemini_frame(text: str, finish_reason: Optional[str] = None) -> dict:
    candidate = {"content": {"role": "model", "parts": [{"text": text}]}}
    if finish_reason:
        candidate["finishReason"] = finish_reason
    return {"candidates": [candidate]}


def gemini_body(*frames: dict) -> bytes:
    """Frames laid out the way streamGenerateContent sends them."""
    return ("[" + "\n,\r\n".join(json.dumps(f, ensure_ascii=False) for f in frames) + "]").encode("utf-8")


def sse_body(events: Iterable[dict], done: bool = False, named: bool = False) -> bytes:
    parts: List[str] = []
    for event in events:
        block = f"data: {json.dumps(event)}\n\n"
        if named:
            block = f"event: {event['type']}\n" + block
        parts.append(block)
    if done:
        parts.append("data: [DONE]\n\n")
    return "".join(parts).encode("utf-8")


def anthropic_events(*texts: str, stop_reason: str = "end_turn") -> List[dict]:
    events = [
        {"type": "message_start", "message": {"id": "msg_1", "role": "assistant"}},
        {"type": "content_block_start", "index": 0, "content_block": {"type": "text", "text": ""}},
    ]
    for text in texts:
        events.append(
            {"type": "content_block_delta", "index": 0, "delta": {"type": "text_delta", "text": text}}
        )
    events.extend([
        {"type": "content_block_stop", "index": 0},
        {"type": "message_delta", "delta": {"stop_reason": stop_reason}},
        {"type": "message_stop"},
    ])
    return events


def openai_events(*texts: str, finish_reason: str = "stop") -> List[dict]:
    events = [{"choices": [{"index": 0, "delta": {"role": "assistant"}, "finish_reason": None}]}]
    for text in texts:
        events.append({"choices": [{"index": 0, "delta": {"content": text}, "finish_reason": None}]})
    events.append({"choices": [{"index": 0, "delta": {}, "finish_reason": finish_reason}]})
    return events


def split_every(data: bytes, size: int) -> List[bytes]:
    return [data[i:i + size] for i in range(0, len(data), size)]


@pytest.fixture
def gemini_stream_bytes() -> bytes:
    return gemini_body(
        gemini_frame("Hel"),
        gemini_frame("Hello, wor"),
        gemini_frame("Hello, world!", finish_reason="STOP"),
    )


@pytest.fixture
def anthropic_stream_bytes() -> bytes:
    return sse_body(anthropic_events("Hi", " there"), named=True)


@pytest.fixture
def openai_stream_bytes() -> bytes:
    return sse_body(openai_events("Hi", " there"), done=True)


# ============================================================
# Mock transport
# ============================================================

class RecordingHandler:
    """
    httpx.MockTransport handler that replays queued responses.

    Each queued item is ``(status, body_chunks, headers)``; requests are
    recorded for assertions.
    """

    def __init__(self):
        self.queue: List[tuple] = []
        self.requests: List[httpx.Request] = []

    def add(self, status: int = 200, chunks: Iterable[bytes] = (), headers: Optional[dict] = None):
        self.queue.append((status, list(chunks), headers or {}))
        return self

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        status, chunks, headers = self.queue.pop(0)

        async def body():
            for chunk in chunks:
                yield chunk

        return httpx.Response(status, headers=headers, content=body())

    @property
    def last_json(self) -> dict:
        return json.loads(self.requests[-1].content)


@pytest.fixture
def mock_transport() -> Callable[[], tuple]:
    """
    Factory returning ``(handler, transport)``.

    Usage:
        handler, transport = mock_transport()
        handler.add(200, [b"..."])
    """
    def factory():
        handler = RecordingHandler()
        return handler, httpx.MockTransport(handler)

    return factory


# ============================================================
# Config isolation
# ============================================================

@pytest.fixture
def config_dir(tmp_path, monkeypatch):
    """Point TERMCHAT_CONFIG_DIR at a temp directory and clear provider keys."""
    path = tmp_path / "config"
    monkeypatch.setenv("TERMCHAT_CONFIG_DIR", str(path))
    for name in ("GOOGLE_API_KEY", "ANTHROPIC_API_KEY", "OPENAI_API_KEY", "TERMCHAT_PASSPHRASE"):
        monkeypatch.delenv(name, raising=False)
    return path
