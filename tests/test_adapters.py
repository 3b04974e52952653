"""
termchat - Provider Adapter Tests

Runs each adapter against httpx.MockTransport.
Verifies:
- Request shape per provider
- Streams decode into the shared delta sequence
- Retry before the first byte, no retry after it
- Error responses map onto the error taxonomy
"""

from contextlib import aclosing

import httpx
import pytest

from conftest import split_every

from termchat.adapters import (
    AdapterConfig,
    AnthropicAdapter,
    GoogleAdapter,
    OpenAIAdapter,
    get_adapter,
)
from termchat.config import ApiKeyProviderConfig, GoogleProviderConfig
from termchat.core.errors import (
    MissingCredentialsError,
    ProviderAuthError,
    ProviderRequestError,
    RateLimitedError,
    TransportError,
    UpstreamError,
)
from termchat.core.models import ChatRequestOptions, FinishReason, Message
from termchat.streaming.normalizer import StreamState


CONVERSATION = [
    Message.system("Be brief."),
    Message.user("Hi"),
    Message.assistant("Hello!"),
    Message.user("How are you?"),
]


async def drain(stream, state=None):
    state = state or StreamState()
    async with aclosing(stream):
        async for delta in stream:
            state.apply(delta)
    return state


# ============================================================
# Request payloads
# ============================================================

class TestPayloads:
    """Test provider-specific request bodies."""

    def test_google_payload(self):
        """Roles map to user/model and system goes to systemInstruction."""
        adapter = GoogleAdapter("google", AdapterConfig(api_key="k"))
        options = ChatRequestOptions(model="gemini-1.5-flash", system="Top.", temperature=0.2, max_output_tokens=50)

        payload = adapter._build_chat_payload(CONVERSATION, options)

        assert [c["role"] for c in payload["contents"]] == ["user", "model", "user"]
        assert payload["contents"][1]["parts"] == [{"text": "Hello!"}]
        assert payload["systemInstruction"] == {"parts": [{"text": "Top.\n\nBe brief."}]}
        assert payload["generationConfig"] == {"temperature": 0.2, "maxOutputTokens": 50}

    def test_google_payload_without_options(self):
        """No generationConfig or systemInstruction when nothing is set."""
        adapter = GoogleAdapter("google", AdapterConfig(api_key="k"))

        payload = adapter._build_chat_payload([Message.user("x")], ChatRequestOptions(model="m"))

        assert set(payload) == {"contents"}

    def test_anthropic_payload(self):
        """System is a top-level field and max_tokens is always present."""
        adapter = AnthropicAdapter("claude", AdapterConfig(api_key="k"))

        payload = adapter._build_chat_payload(CONVERSATION, ChatRequestOptions(model="claude-x"))

        assert payload["system"] == "Be brief."
        assert payload["max_tokens"] == AnthropicAdapter.DEFAULT_MAX_TOKENS
        assert payload["stream"] is True
        assert [m["role"] for m in payload["messages"]] == ["user", "assistant", "user"]
        assert "temperature" not in payload

    def test_openai_payload(self):
        """System message leads the message list."""
        adapter = OpenAIAdapter("openai", AdapterConfig(api_key="k"))
        options = ChatRequestOptions(model="gpt-4o-mini", temperature=0.5, max_output_tokens=20)

        payload = adapter._build_chat_payload(CONVERSATION, options)

        assert payload["messages"][0] == {"role": "system", "content": "Be brief."}
        assert len(payload["messages"]) == 4
        assert payload["temperature"] == 0.5
        assert payload["max_tokens"] == 20


# ============================================================
# Streaming through the transport
# ============================================================

class TestStreaming:
    """Test end-to-end streaming over a mock transport."""

    @pytest.mark.asyncio
    async def test_google_stream(self, mock_transport, gemini_stream_bytes):
        """Gemini frames arrive as incremental deltas."""
        handler, transport = mock_transport()
        handler.add(200, split_every(gemini_stream_bytes, 7))
        adapter = GoogleAdapter("google", AdapterConfig(api_key="secret", transport=transport))

        state = await drain(adapter.stream_chat([Message.user("Hi")], ChatRequestOptions(model="gemini-flash")))
        await adapter.close()

        assert state.accumulated_content == "Hello, world!"
        assert state.completed
        assert state.finish_reason == FinishReason.STOP

        request = handler.requests[0]
        assert request.url.path.endswith("/models/gemini-1.5-flash:streamGenerateContent")
        assert request.headers["x-goog-api-key"] == "secret"
        assert "key" not in request.url.params

    @pytest.mark.asyncio
    async def test_google_chat_reports_resolved_model(self, mock_transport, gemini_stream_bytes):
        """chat() names the model actually called, not the alias."""
        handler, transport = mock_transport()
        handler.add(200, [gemini_stream_bytes])
        adapter = GoogleAdapter("google", AdapterConfig(api_key="k", transport=transport))

        result = await adapter.chat([Message.user("Hi")], ChatRequestOptions(model="gemini-flash"))
        await adapter.close()

        assert result.content == "Hello, world!"
        assert result.model == "gemini-1.5-flash"

    @pytest.mark.asyncio
    async def test_anthropic_stream(self, mock_transport, anthropic_stream_bytes):
        """Anthropic events arrive as deltas with auth headers set."""
        handler, transport = mock_transport()
        handler.add(200, split_every(anthropic_stream_bytes, 11))
        adapter = AnthropicAdapter("claude", AdapterConfig(api_key="sk-ant", transport=transport))

        result = await adapter.chat([Message.user("Hi")], ChatRequestOptions(model="claude-x"))
        await adapter.close()

        assert result.content == "Hi there"
        assert result.finish_reason == FinishReason.STOP
        assert result.deltas == 2

        request = handler.requests[0]
        assert request.url.path == "/v1/messages"
        assert request.headers["x-api-key"] == "sk-ant"
        assert request.headers["anthropic-version"] == AnthropicAdapter.API_VERSION
        assert handler.last_json["model"] == "claude-x"

    @pytest.mark.asyncio
    async def test_openai_stream(self, mock_transport, openai_stream_bytes):
        """OpenAI chunks arrive as deltas; custom base URLs are honoured."""
        handler, transport = mock_transport()
        handler.add(200, [openai_stream_bytes])
        adapter = OpenAIAdapter(
            "local",
            AdapterConfig(api_key="sk", base_url="http://localhost:8080/v1", transport=transport),
        )

        result = await adapter.chat([Message.user("Hi")], ChatRequestOptions(model="gpt-4o-mini"))
        await adapter.close()

        assert result.content == "Hi there"
        assert str(handler.requests[0].url) == "http://localhost:8080/v1/chat/completions"
        assert handler.requests[0].headers["authorization"] == "Bearer sk"

    @pytest.mark.asyncio
    async def test_stream_is_lazy(self, mock_transport, openai_stream_bytes):
        """Nothing is sent until iteration starts."""
        handler, transport = mock_transport()
        handler.add(200, [openai_stream_bytes])
        adapter = OpenAIAdapter("openai", AdapterConfig(api_key="sk", transport=transport))

        stream = adapter.stream_chat([Message.user("Hi")], ChatRequestOptions(model="m"))
        assert handler.requests == []

        await drain(stream)
        await adapter.close()
        assert len(handler.requests) == 1

    @pytest.mark.asyncio
    async def test_consumer_can_stop_early(self, mock_transport, openai_stream_bytes):
        """Closing the iterator after the first delta releases the call."""
        handler, transport = mock_transport()
        handler.add(200, split_every(openai_stream_bytes, 5))
        adapter = OpenAIAdapter("openai", AdapterConfig(api_key="sk", transport=transport))

        received = []
        async with aclosing(adapter.stream_chat([Message.user("Hi")], ChatRequestOptions(model="m"))) as stream:
            async for delta in stream:
                received.append(delta.text)
                break
        await adapter.close()

        assert received == ["Hi"]


# ============================================================
# Retries and errors
# ============================================================

class TestTransportErrors:
    """Test retry and error mapping at the transport."""

    @pytest.mark.asyncio
    async def test_retry_on_503_before_first_byte(self, mock_transport, openai_stream_bytes):
        """A 503 before any body is retried."""
        handler, transport = mock_transport()
        handler.add(503, [b'{"error": {"message": "busy"}}'], headers={"retry-after": "0"})
        handler.add(200, [openai_stream_bytes])
        adapter = OpenAIAdapter("openai", AdapterConfig(api_key="sk", transport=transport))

        result = await adapter.chat([Message.user("Hi")], ChatRequestOptions(model="m"))
        await adapter.close()

        assert result.content == "Hi there"
        assert len(handler.requests) == 2

    @pytest.mark.asyncio
    async def test_retries_exhausted(self, mock_transport):
        """Persistent 5xx surfaces as UpstreamError after max_retries."""
        handler, transport = mock_transport()
        for _ in range(3):
            handler.add(503, [b'{"error": {"message": "busy"}}'], headers={"retry-after": "0"})
        adapter = OpenAIAdapter("openai", AdapterConfig(api_key="sk", max_retries=2, transport=transport))

        with pytest.raises(UpstreamError) as exc_info:
            await adapter.chat([Message.user("Hi")], ChatRequestOptions(model="m"))
        await adapter.close()

        assert exc_info.value.status_code == 503
        assert len(handler.requests) == 3

    @pytest.mark.asyncio
    async def test_rate_limit_exhausted(self, mock_transport):
        """429 carries the Retry-After value."""
        handler, transport = mock_transport()
        handler.add(429, [b'{"error": {"message": "slow down"}}'], headers={"retry-after": "0"})
        adapter = AnthropicAdapter("claude", AdapterConfig(api_key="k", max_retries=0, transport=transport))

        with pytest.raises(RateLimitedError):
            await adapter.chat([Message.user("Hi")], ChatRequestOptions(model="m"))
        await adapter.close()

    @pytest.mark.asyncio
    async def test_401_is_auth_error_without_retry(self, mock_transport):
        """Rejected credentials are not retried."""
        handler, transport = mock_transport()
        handler.add(401, [b'{"error": {"type": "authentication_error", "message": "invalid x-api-key"}}'])
        adapter = AnthropicAdapter("claude", AdapterConfig(api_key="bad", transport=transport))

        with pytest.raises(ProviderAuthError) as exc_info:
            await adapter.chat([Message.user("Hi")], ChatRequestOptions(model="m"))
        await adapter.close()

        assert "invalid x-api-key" in str(exc_info.value)
        assert len(handler.requests) == 1

    @pytest.mark.asyncio
    async def test_gemini_list_wrapped_error_body(self, mock_transport):
        """Gemini's array-wrapped error bodies are unwrapped."""
        handler, transport = mock_transport()
        handler.add(400, [b'[{"error": {"code": 400, "message": "model not found"}}]'])
        adapter = GoogleAdapter("google", AdapterConfig(api_key="k", transport=transport))

        with pytest.raises(ProviderRequestError) as exc_info:
            await adapter.chat([Message.user("Hi")], ChatRequestOptions(model="nope"))
        await adapter.close()

        assert exc_info.value.error.message == "model not found"

    @pytest.mark.asyncio
    async def test_failure_after_first_byte_keeps_partial_text(self, mock_transport):
        """A broken body is not retried and the text so far survives."""
        def handler(request):
            async def body():
                yield b'data: {"choices": [{"delta": {"content": "Hel"}}]}\n\n'
                raise httpx.ReadError("connection reset")
            return httpx.Response(200, content=body())

        adapter = OpenAIAdapter("openai", AdapterConfig(api_key="sk", transport=httpx.MockTransport(handler)))
        state = StreamState()

        with pytest.raises(TransportError):
            await drain(adapter.stream_chat([Message.user("Hi")], ChatRequestOptions(model="m")), state)
        await adapter.close()

        assert state.accumulated_content == "Hel"
        assert state.completed is False


# ============================================================
# Factory
# ============================================================

class TestGetAdapter:
    """Test building adapters from config entries."""

    def test_google_entry(self, monkeypatch):
        """A Google entry builds a GoogleAdapter with its key."""
        adapter = get_adapter("google", GoogleProviderConfig(api_key="g-key"))

        assert isinstance(adapter, GoogleAdapter)
        assert adapter.http.default_headers["x-goog-api-key"] == "g-key"

    def test_openai_entry_with_base_url(self):
        """base_url overrides the default."""
        entry = ApiKeyProviderConfig(type="openai", api_key="k", base_url="http://localhost:1234/v1/")

        adapter = get_adapter("local", entry)

        assert isinstance(adapter, OpenAIAdapter)
        assert adapter.http.base_url == "http://localhost:1234/v1"

    def test_google_key_from_environment(self, monkeypatch):
        """A Google entry without a key falls back to GOOGLE_API_KEY."""
        monkeypatch.setenv("GOOGLE_API_KEY", "env-key")

        adapter = get_adapter("google", GoogleProviderConfig())

        assert adapter.http.default_headers["x-goog-api-key"] == "env-key"

    def test_missing_key(self, monkeypatch):
        """No key anywhere raises MissingCredentialsError."""
        monkeypatch.delenv("GOOGLE_API_KEY", raising=False)

        with pytest.raises(MissingCredentialsError):
            get_adapter("google", GoogleProviderConfig())
