"""
termchat - OpenAI Provider Adapter

Adapter for the Chat Completions API, and for OpenAI-compatible servers
reached through a custom base URL.
"""

from typing import Any, AsyncIterator, Dict, List

from .base import AdapterConfig, collect_response, traced_stream
from ..core.http_client import RetryConfig, RobustHttpClient
from ..core.models import ChatRequestOptions, ChatResult, Message, ProviderKind, split_system
from ..streaming.events import openai_accumulator
from ..streaming.normalizer import NormalizedDelta


class OpenAIAdapter:
    """Adapter for OpenAI chat models."""

    kind = ProviderKind.OPENAI
    DEFAULT_BASE_URL = "https://api.openai.com/v1"

    def __init__(self, name: str, config: AdapterConfig):
        self.name = name
        self.config = config
        self.http = RobustHttpClient(
            base_url=config.base_url or self.DEFAULT_BASE_URL,
            timeout=config.timeout,
            retry_config=RetryConfig(max_retries=config.max_retries),
            headers={"Authorization": f"Bearer {config.api_key}"},
            transport=config.transport,
        )

    def stream_chat(
        self,
        conversation: List[Message],
        options: ChatRequestOptions,
    ) -> AsyncIterator[NormalizedDelta]:
        chunks = self.http.stream_bytes(
            "POST",
            "/chat/completions",
            provider=self.name,
            model=options.model,
            step_name="openai.stream",
            json=self._build_chat_payload(conversation, options),
        )
        return traced_stream(self.name, options.model, chunks, openai_accumulator(self.name))

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

        messages = [msg.to_dict() for msg in turns]
        if system:
            messages.insert(0, {"role": "system", "content": system})

        payload: Dict[str, Any] = {
            "model": options.model,
            "messages": messages,
            "stream": True,
        }
        if options.temperature is not None:
            payload["temperature"] = options.temperature
        if options.max_output_tokens is not None:
            payload["max_tokens"] = options.max_output_tokens

        return payload
