"""
termchat - Chat History

Saving transcripts as JSON or Markdown, naming auto-saved files, and
posting transcripts to a webhook.
"""

import json
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import List, Optional

import httpx
from xdg_base_dirs import xdg_data_home

from .core.errors import ErrorDetails, ErrorType, TermchatError, handle_http_error
from .core.models import Message
from .observability.logging import get_logger

logger = get_logger(__name__)

APP_DIR = "termchat"
HISTORY_SUBDIR = "history"


class HistoryFormat(str, Enum):
    """Transcript formats."""
    JSON = "json"
    MARKDOWN = "markdown"

    @property
    def extension(self) -> str:
        return "json" if self == HistoryFormat.JSON else "md"

    @property
    def content_type(self) -> str:
        return "application/json" if self == HistoryFormat.JSON else "text/markdown; charset=utf-8"


class HistoryError(TermchatError):
    """Writing a transcript failed."""

    def __init__(self, message: str):
        super().__init__(
            ErrorDetails(code="history_write_failed", message=message, type=ErrorType.CONFIG)
        )


def render_json_payload(system: Optional[str], messages: List[Message]) -> str:
    entries = [message.to_dict() for message in messages]
    if system:
        entries.insert(0, {"role": "system", "content": system})
    return json.dumps(entries, indent=2, ensure_ascii=False)


def render_markdown_payload(system: Optional[str], messages: List[Message]) -> str:
    parts = ["# Chat Transcript\n\n"]
    if system:
        parts.append(f"## system\n\n{system}\n\n")
    for message in messages:
        parts.append(f"## {message.role.value}\n\n{message.content}\n\n")
    return "".join(parts)


def render_history(fmt: HistoryFormat, system: Optional[str], messages: List[Message]) -> str:
    if fmt == HistoryFormat.JSON:
        return render_json_payload(system, messages)
    return render_markdown_payload(system, messages)


def save_history(
    path: Path,
    fmt: HistoryFormat,
    system: Optional[str],
    messages: List[Message],
) -> Path:
    """Write a transcript, creating parent directories as needed."""
    payload = render_history(fmt, system, messages)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(payload, encoding="utf-8")
    except OSError as exc:
        raise HistoryError(f"failed to write history to {path}: {exc}") from exc
    logger.debug("Saved history", path=str(path), messages=len(messages))
    return path


def default_history_dir() -> Path:
    return Path(xdg_data_home()) / APP_DIR / HISTORY_SUBDIR


def sanitized_provider(provider: str) -> str:
    """Lowercase ``[a-z0-9-]`` slug of a provider label, ``session`` if empty."""
    slug = re.sub(r"[^a-z0-9-]", "-", provider.lower()).strip("-")
    return slug or "session"


def timestamped_history_path(
    base_dir: Path,
    provider: str,
    fmt: HistoryFormat,
    now: Optional[datetime] = None,
) -> Path:
    now = now or datetime.now(timezone.utc)
    stamp = now.strftime("%Y%m%d-%H%M%S")
    return base_dir / f"{stamp}-{sanitized_provider(provider)}.{fmt.extension}"


@dataclass
class HistoryTarget:
    """Where, if anywhere, a session's transcript goes."""
    explicit_path: Optional[Path] = None
    history_dir: Optional[Path] = None
    auto_save: bool = False
    format: HistoryFormat = HistoryFormat.JSON

    def resolve(self, provider: str) -> Optional[Path]:
        if self.explicit_path is not None:
            return self.explicit_path.expanduser()
        if self.auto_save:
            base = self.history_dir.expanduser() if self.history_dir else default_history_dir()
            return timestamped_history_path(base, provider, self.format)
        return None


async def send_history_webhook(
    url: str,
    fmt: HistoryFormat,
    system: Optional[str],
    messages: List[Message],
    timeout: float = 15.0,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> int:
    """
    POST the rendered transcript to ``url``.

    Returns the response status code.

    Raises:
        TermchatError: Connection failure or a non-2xx response.
    """
    body = render_history(fmt, system, messages).encode("utf-8")
    async with httpx.AsyncClient(timeout=timeout, transport=transport) as client:
        try:
            response = await client.post(url, content=body, headers={"Content-Type": fmt.content_type})
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise handle_http_error("webhook", exc) from exc
    logger.debug("Posted history to webhook", status=response.status_code)
    return response.status_code
