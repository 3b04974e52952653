"""
termchat Core Module

Conversation models, the error taxonomy and the streaming HTTP transport.
"""

from .models import (
    ProviderKind,
    Role,
    FinishReason,
    Message,
    ChatRequestOptions,
    ChatResult,
)
from .errors import (
    ErrorType,
    ErrorDetails,
    TermchatError,
    TransportError,
    ProtocolError,
    ProviderError,
    ConfigError,
)

__all__ = [
    "ProviderKind",
    "Role",
    "FinishReason",
    "Message",
    "ChatRequestOptions",
    "ChatResult",
    "ErrorType",
    "ErrorDetails",
    "TermchatError",
    "TransportError",
    "ProtocolError",
    "ProviderError",
    "ConfigError",
]
