"""
termchat - Google Provider Adapter

Adapter for Gemini through the Generative Language API.
Streams ``streamGenerateContent`` and decodes it with the cumulative
frame detector. Requests authenticate with an API key header, or with a
bearer token from a service-account key file.
"""

from contextlib import aclosing
from typing import Any, AsyncIterator, Dict, List, Optional

from .base import AdapterConfig, collect_response, traced_stream
from ..core.errors import MissingCredentialsError
from ..core.http_client import RetryConfig, RobustHttpClient
from ..core.models import ChatRequestOptions, ChatResult, Message, ProviderKind, Role, split_system
from ..streaming.cumulative import CumulativeFrameDetector
from ..streaming.normalizer import NormalizedDelta
from ..security.service_account import ServiceAccountTokenSource


class GoogleAdapter:
    """
    Adapter for the Gemini API.

    Roles map to Gemini's ``user``/``model``; system prompts go to
    ``systemInstruction``.
    """

    kind = ProviderKind.GOOGLE
    DEFAULT_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"

    # Short names accepted on the command line
    MODEL_ALIASES = {
        "gemini-pro": "gemini-1.5-pro",
        "gemini-flash": "gemini-1.5-flash",
    }

    def __init__(self, name: str, config: AdapterConfig):
        self.name = name
        self.config = config
        self.token_source: Optional[ServiceAccountTokenSource] = None

        headers: Dict[str, str] = {}
        if config.api_key:
            headers["x-goog-api-key"] = config.api_key
        elif config.service_account_file:
            self.token_source = ServiceAccountTokenSource(config.service_account_file, provider=name)
        else:
            raise MissingCredentialsError(name, "set an API key or a service account file")

        self.http = RobustHttpClient(
            base_url=config.base_url or self.DEFAULT_BASE_URL,
            timeout=config.timeout,
            retry_config=RetryConfig(max_retries=config.max_retries),
            headers=headers,
            transport=config.transport,
        )

    def stream_chat(
        self,
        conversation: List[Message],
        options: ChatRequestOptions,
    ) -> AsyncIterator[NormalizedDelta]:
        model = self._resolve_model_name(options.model)
        chunks = self._stream_bytes(model, self._build_chat_payload(conversation, options))
        return traced_stream(self.name, model, chunks, CumulativeFrameDetector(self.name))

    async def chat(self, conversation: List[Message], options: ChatRequestOptions) -> ChatResult:
        return await collect_response(
            self.stream_chat(conversation, options),
            self.name,
            self._resolve_model_name(options.model),
        )

    async def close(self):
        await self.http.close()

    async def _stream_bytes(self, model: str, payload: Dict[str, Any]) -> AsyncIterator[bytes]:
        # Bearer token is fetched lazily, when iteration starts
        headers = None
        if self.token_source is not None:
            headers = {"Authorization": f"Bearer {await self.token_source.token()}"}

        chunks = self.http.stream_bytes(
            "POST",
            f"/models/{model}:streamGenerateContent",
            provider=self.name,
            model=model,
            step_name="google.stream",
            json=payload,
            headers=headers,
        )
        async with aclosing(chunks):
            async for chunk in chunks:
                yield chunk

    def _resolve_model_name(self, model: str) -> str:
        return self.MODEL_ALIASES.get(model, model)

    def _build_chat_payload(
        self,
        conversation: List[Message],
        options: ChatRequestOptions,
    ) -> Dict[str, Any]:
        """Build Gemini-specific chat payload."""
        system, turns = split_system(conversation, options.system)

        payload: Dict[str, Any] = {
            "contents": self._convert_messages(turns),
        }

        generation_config: Dict[str, Any] = {}
        if options.temperature is not None:
            generation_config["temperature"] = options.temperature
        if options.max_output_tokens is not None:
            generation_config["maxOutputTokens"] = options.max_output_tokens
        if generation_config:
            payload["generationConfig"] = generation_config

        if system:
            payload["systemInstruction"] = {"parts": [{"text": system}]}

        return payload

    def _convert_messages(self, messages: List[Message]) -> List[Dict[str, Any]]:
        return [
            {
                "role": "user" if msg.role == Role.USER else "model",
                "parts": [{"text": msg.content}],
            }
            for msg in messages
        ]
