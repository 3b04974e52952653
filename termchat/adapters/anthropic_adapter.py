"""
termchat - Anthropic Provider Adapter

Adapter for Anthropic's Messages API. The response is a server-sent event
stream decoded by the delimited event accumulator.
"""

from typing import Any, AsyncIterator, Dict, List

from .base import AdapterConfig, collect_response, traced_stream
from ..core.http_client import RetryConfig, RobustHttpClient
from ..core.models import ChatRequestOptions, ChatResult, Message, ProviderKind, split_system
from ..streaming.events import anthropic_accumulator
from ..streaming.normalizer import NormalizedDelta


class AnthropicAdapter:
    """Adapter for Anthropic Claude."""

    kind = ProviderKind.ANTHROPIC
    DEFAULT_BASE_URL = "https://api.anthropic.com"
    API_VERSION = "2023-06-01"
    DEFAULT_MAX_TOKENS = 1024

    def __init__(self, name: str, config: AdapterConfig):
        self.name = name
        self.config = config
        self.http = RobustHttpClient(
            base_url=config.base_url or self.DEFAULT_BASE_URL,
            timeout=config.timeout,
            retry_config=RetryConfig(max_retries=config.max_retries),
            headers={
                "x-api-key": config.api_key,
                "anthropic-version": self.API_VERSION,
                "accept": "text/event-stream",
            },
            transport=config.transport,
        )

    def stream_chat(
        self,
        conversation: List[Message],
        options: ChatRequestOptions,
    ) -> AsyncIterator[NormalizedDelta]:
        chunks = self.http.stream_bytes(
            "POST",
            "/v1/messages",
            provider=self.name,
            model=options.model,
            step_name="anthropic.stream",
            json=self._build_chat_payload(conversation, options),
        )
        return traced_stream(self.name, options.model, chunks, anthropic_accumulator(self.name))

    async def chat(self, conversation: List[Message], options: ChatRequestOptions) -> ChatResult:
        return await collect_response(self.stream_chat(conversation, options), self.name, options.model)

    async def close(self):
        await self.http.close()

    def _build_chat_payload(
        self,
        conversation: List[Message],
        options: ChatRequestOptions,
    ) -> Dict[str, Any]:
        system, turns = split_system(conversation, options.system)

        payload: Dict[str, Any] = {
            "model": options.model,
            "messages": [msg.to_dict() for msg in turns],
            # Required by Anthropic
            "max_tokens": options.max_output_tokens or self.DEFAULT_MAX_TOKENS,
            "stream": True,
        }
        if system:
            payload["system"] = system
        if options.temperature is not None:
            payload["temperature"] = options.temperature

        return payload
