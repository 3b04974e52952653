"""Interactive chat REPL.

Reads a line, streams the reply as it arrives, repeats. A blank line or
EOF ends the session; ``/reset`` clears the conversation. Ctrl-C while a
reply is streaming cancels that reply and keeps what was already shown.
"""

from __future__ import annotations

import asyncio
from contextlib import aclosing
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from rich.console import Console

from .adapters.base import ChatProvider
from .core.errors import TermchatError
from .core.models import ChatRequestOptions, Message
from .history import HistoryTarget, save_history, send_history_webhook
from .observability.logging import get_logger
from .streaming.errors import StreamErrorBuilder
from .streaming.normalizer import StreamState

logger = get_logger(__name__)

RESET_COMMAND = "/reset"


@dataclass
class ReplOptions:
    provider_name: str
    model: str
    system: Optional[str] = None
    temperature: Optional[float] = None
    max_output_tokens: Optional[int] = None
    stream: bool = True
    history: HistoryTarget = field(default_factory=HistoryTarget)
    webhook_url: Optional[str] = None

    def request_options(self) -> ChatRequestOptions:
        return ChatRequestOptions(
            model=self.model,
            system=self.system,
            temperature=self.temperature,
            max_output_tokens=self.max_output_tokens,
        )


async def consume_reply(
    provider: ChatProvider,
    messages: List[Message],
    options: ChatRequestOptions,
    state: StreamState,
    on_text: Optional[Callable[[str], None]] = None,
) -> StreamState:
    """
    Pull one reply through ``state``, calling ``on_text`` per delta.

    The provider's HTTP client is closed afterwards because each reply runs
    in its own event loop.
    """
    try:
        async with aclosing(provider.stream_chat(list(messages), options)) as stream:
            async for delta in stream:
                state.apply(delta)
                if delta.text and on_text is not None:
                    on_text(delta.text)
    finally:
        await provider.close()
    return state


def report_error(console: Console, provider_name: str, exc: BaseException, state: StreamState):
    """Print a failed reply, noting whether partial text was kept."""
    builder = StreamErrorBuilder(provider_name)
    builder.record_text(state.accumulated_content)
    error = builder.from_exception(exc)

    console.print(f"[red]error:[/red] {error.message}", highlight=False)
    if error.content_started:
        console.print("[yellow]\\[partial response kept][/yellow]")
    elif error.is_retryable:
        console.print("[dim]The request can be sent again.[/dim]")


def export_session(
    console: Console,
    provider_name: str,
    target: HistoryTarget,
    system: Optional[str],
    messages: List[Message],
    webhook_url: Optional[str] = None,
):
    """Save and/or post the transcript as configured."""
    path = target.resolve(provider_name)
    if path is not None:
        save_history(path, target.format, system, messages)
        console.print(f"\\[saved chat history to {path}]", highlight=False)

    if webhook_url:
        try:
            asyncio.run(send_history_webhook(webhook_url, target.format, system, messages))
        except TermchatError as exc:
            console.print(f"[yellow]\\[warn][/yellow] failed to POST chat history: {exc}", highlight=False)
        else:
            console.print("\\[pushed chat history to webhook]")


class ChatRepl:
    """Interactive loop over one provider.

    Each reply runs in its own ``asyncio.run`` so Ctrl-C cancels only the
    reply in flight.
    """

    def __init__(
        self,
        provider: ChatProvider,
        options: ReplOptions,
        console: Optional[Console] = None,
        err_console: Optional[Console] = None,
        read_line: Optional[Callable[[str], str]] = None,
    ) -> None:
        self.provider = provider
        self.options = options
        self.console = console or Console()
        self.err_console = err_console or Console(stderr=True)
        self._read_line = read_line or self.console.input
        self.messages: List[Message] = []

    def run(self) -> None:
        """Main REPL loop."""
        self.console.print("Type /reset to clear history, blank line to exit.")

        while True:
            try:
                line = self._read_line("you> ")
            except KeyboardInterrupt:
                self.console.print()
                continue
            except EOFError:
                self.console.print()
                break

            text = line.strip()
            if not text:
                break
            if text == RESET_COMMAND:
                self.messages.clear()
                self.console.print("\\[history reset]")
                continue

            self.messages.append(Message.user(line))
            self.run_turn()

        self.finish()

    def run_turn(self) -> StreamState:
        """Send the conversation and render one reply."""
        state = StreamState(provider=self.options.provider_name, model=self.options.model)
        streaming = self.options.stream

        if streaming:
            self.console.print("bot> ", end="")

        try:
            asyncio.run(
                consume_reply(
                    self.provider,
                    self.messages,
                    self.options.request_options(),
                    state,
                    on_text=self._print_text if streaming else None,
                )
            )
        except KeyboardInterrupt:
            self.console.print()
            self.err_console.print("[yellow]\\[interrupted][/yellow]")
        except TermchatError as exc:
            self.console.print()
            logger.info("Reply failed", code=exc.code, provider=self.options.provider_name)
            report_error(self.err_console, self.options.provider_name, exc, state)
        else:
            if streaming:
                self.console.print()
            else:
                self.console.print(f"bot> {state.accumulated_content}", markup=False, highlight=False)

        for warning in state.warnings:
            self.err_console.print(f"[yellow]\\[warn][/yellow] {warning}", highlight=False)

        if state.content_started:
            self.messages.append(Message.assistant(state.accumulated_content))
        elif self.messages and not state.completed:
            # Nothing came back; let the user send it again
            self.messages.pop()

        return state

    def finish(self) -> None:
        """Persist the session as configured."""
        try:
            export_session(
                self.console,
                self.options.provider_name,
                self.options.history,
                self.options.system,
                self.messages,
                self.options.webhook_url,
            )
        except TermchatError as exc:
            self.err_console.print(f"[red]error:[/red] {exc}", highlight=False)

    def _print_text(self, text: str) -> None:
        self.console.print(text, end="", markup=False, highlight=False, soft_wrap=True)


__all__ = [
    "ChatRepl",
    "ReplOptions",
    "consume_reply",
    "export_session",
    "report_error",
]
