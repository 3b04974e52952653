"""
termchat - Core Data Models

Conversation and request models shared by every provider.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


# ============================================================
# Enums
# ============================================================

class ProviderKind(str, Enum):
    """Supported remote text-generation services."""
    GOOGLE = "google"
    ANTHROPIC = "anthropic"
    OPENAI = "openai"

    @classmethod
    def infer(cls, name: str) -> Optional["ProviderKind"]:
        """Infer the kind from a provider label such as ``Google``."""
        try:
            return cls(name.strip().lower())
        except ValueError:
            return None

    @property
    def default_model(self) -> str:
        return DEFAULT_MODELS[self]


DEFAULT_MODELS: Dict[ProviderKind, str] = {
    ProviderKind.GOOGLE: "gemini-1.5-flash",
    ProviderKind.ANTHROPIC: "claude-3-5-sonnet-20241022",
    ProviderKind.OPENAI: "gpt-4o-mini",
}


class Role(str, Enum):
    """Message roles."""
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


class FinishReason(str, Enum):
    """Completion finish reasons."""
    STOP = "stop"
    LENGTH = "length"
    TOOL_CALLS = "tool_calls"
    CONTENT_FILTER = "content_filter"
    ERROR = "error"


# ============================================================
# Messages
# ============================================================

@dataclass
class Message:
    """One conversation turn."""
    role: Role
    content: str

    @classmethod
    def system(cls, content: str) -> "Message":
        return cls(role=Role.SYSTEM, content=content)

    @classmethod
    def user(cls, content: str) -> "Message":
        return cls(role=Role.USER, content=content)

    @classmethod
    def assistant(cls, content: str) -> "Message":
        return cls(role=Role.ASSISTANT, content=content)

    def to_dict(self) -> Dict[str, str]:
        return {"role": self.role.value, "content": self.content}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Message":
        return cls(role=Role(data["role"]), content=data.get("content", ""))


def split_system(
    conversation: List[Message],
    system: Optional[str] = None,
) -> tuple[Optional[str], List[Message]]:
    """
    Separate system instructions from the dialogue turns.

    An explicit ``system`` prompt comes first; system-role turns found in
    the conversation are appended to it in order.
    """
    instructions = [system] if system else []
    turns: List[Message] = []
    for message in conversation:
        if message.role == Role.SYSTEM:
            if message.content:
                instructions.append(message.content)
        else:
            turns.append(message)
    joined = "\n\n".join(instructions) if instructions else None
    return joined, turns


# ============================================================
# Requests / Responses
# ============================================================

@dataclass
class ChatRequestOptions:
    """Per-call generation options."""
    model: str
    system: Optional[str] = None
    temperature: Optional[float] = None
    max_output_tokens: Optional[int] = None


@dataclass
class ChatResult:
    """Concatenated result of one streaming call."""
    content: str
    provider: str
    model: str
    finish_reason: Optional[FinishReason] = None
    deltas: int = 0
    warnings: List[str] = field(default_factory=list)
