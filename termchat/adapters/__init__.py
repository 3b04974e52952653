"""
termchat Adapters Module

Provider adapters that build each service's streaming request and pick
the matching stream detector.
"""

from typing import Dict, Optional, Type

import httpx

from .base import AdapterConfig, ChatProvider, collect_response, stream_deltas, traced_stream
from .anthropic_adapter import AnthropicAdapter
from .google_adapter import GoogleAdapter
from .openai_adapter import OpenAIAdapter
from ..core.models import ProviderKind
from ..security.encryption import DEFAULT_PASSPHRASE_ENV

__all__ = [
    "AdapterConfig",
    "ChatProvider",
    "collect_response",
    "stream_deltas",
    "traced_stream",
    "AnthropicAdapter",
    "GoogleAdapter",
    "OpenAIAdapter",
    "ADAPTERS",
    "get_adapter",
]

ADAPTERS: Dict[ProviderKind, Type] = {
    ProviderKind.GOOGLE: GoogleAdapter,
    ProviderKind.ANTHROPIC: AnthropicAdapter,
    ProviderKind.OPENAI: OpenAIAdapter,
}


def get_adapter(
    name: str,
    provider_config,
    passphrase: Optional[str] = None,
    env_label: str = DEFAULT_PASSPHRASE_ENV,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> ChatProvider:
    """
    Build the adapter for a configured provider.

    Args:
        name: Provider label from the config file
        provider_config: The entry's GoogleProviderConfig / ApiKeyProviderConfig
        passphrase: Passphrase for an encrypted API key
        env_label: Passphrase variable named in error messages
        transport: httpx transport override (tests)

    Returns:
        Configured adapter instance

    Raises:
        MissingCredentialsError: No API key could be resolved
        SecretError: The stored key could not be decrypted
    """
    adapter_class = ADAPTERS[provider_config.kind]
    api_key = provider_config.resolve_api_key(name, passphrase, env_label)
    config = AdapterConfig(
        api_key=api_key,
        base_url=provider_config.base_url,
        transport=transport,
        service_account_file=getattr(provider_config, "service_account_file", None),
    )
    return adapter_class(name, config)
