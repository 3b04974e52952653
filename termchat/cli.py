"""termchat CLI entry point.

Provides commands for configuring providers, chatting interactively,
sending one-shot messages, and checking the local setup.
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import List, Optional, Tuple

import typer
from rich.console import Console

from termchat import __version__
from termchat.adapters import ChatProvider, get_adapter
from termchat.config import AppConfig, build_provider_config, config_path
from termchat.core.errors import ConfigError, TermchatError
from termchat.core.models import Message, ProviderKind
from termchat.doctor import run_doctor
from termchat.history import HistoryFormat, HistoryTarget
from termchat.observability import setup_logging_from_env, setup_tracing
from termchat.repl import ChatRepl, ReplOptions, consume_reply, export_session, report_error
from termchat.security.encryption import (
    DEFAULT_PASSPHRASE_ENV,
    maybe_encrypt_secret,
    optional_passphrase_from_env,
    require_passphrase_from_env,
)
from termchat.streaming.normalizer import StreamState

console = Console()
err_console = Console(stderr=True)

# ── App and sub-apps ─────────────────────────────────────────────

app = typer.Typer(
    name="termchat",
    help="Chat with Gemini, Claude and OpenAI models from the terminal.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

config_app = typer.Typer(
    name="config",
    help="Manage provider credentials and defaults.",
    no_args_is_help=True,
)
app.add_typer(config_app, name="config")


# ── Version callback ───────────────────────────────────────────


def _version_callback(value: bool) -> None:
    if value:
        console.print(f"termchat {__version__}")
        raise typer.Exit()


@app.callback()
def callback(
    version: bool = typer.Option(
        False, "--version", "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
) -> None:
    """termchat: streaming chat with remote language models."""
    setup_logging_from_env()
    setup_tracing()


# ── Helpers ──────────────────────────────────────────────────────


def _fail(exc: TermchatError) -> typer.Exit:
    err_console.print(f"[red]error:[/red] {exc.error.message}", highlight=False)
    return typer.Exit(1)


def _load_config(strict: bool = False) -> AppConfig:
    """Load the config file.

    Config commands refuse to continue on a broken file so it is not
    overwritten; chat commands warn and start from an empty config.
    """
    try:
        return AppConfig.load()
    except ConfigError as exc:
        if strict:
            raise _fail(exc) from None
        err_console.print(f"[yellow]\\[warn][/yellow] {exc.error.message}", highlight=False)
        return AppConfig()


def _open_provider(
    config: AppConfig,
    provider: Optional[str],
    model: Optional[str],
    secret_env: Optional[str],
) -> Tuple[str, str, ChatProvider]:
    """Resolve the provider entry, model and credentials into an adapter."""
    name = config.infer_default_provider(provider)
    entry = config.require_provider(name)

    env_label = secret_env or DEFAULT_PASSPHRASE_ENV
    needs_passphrase = entry.encrypted_api_key is not None and not entry.api_key
    passphrase = optional_passphrase_from_env(
        env_label, strict=secret_env is not None and needs_passphrase
    )
    adapter = get_adapter(name, entry, passphrase=passphrase, env_label=env_label)
    return name, entry.resolve_model(model), adapter


def _history_target(
    save: Optional[Path],
    history_dir: Optional[Path],
    auto_save: bool,
    save_format: HistoryFormat,
) -> HistoryTarget:
    return HistoryTarget(
        explicit_path=save,
        history_dir=history_dir,
        auto_save=auto_save,
        format=save_format,
    )


# ── config ───────────────────────────────────────────────────────


@config_app.command("set")
def config_set(
    name: str = typer.Argument(..., help="Provider label, e.g. google or work-claude"),
    kind: Optional[ProviderKind] = typer.Option(
        None, "--kind", case_sensitive=False,
        help="Provider type (inferred from NAME when omitted)",
    ),
    default: bool = typer.Option(
        False, "--default", help="Make this the default provider",
    ),
    api_key: Optional[str] = typer.Option(
        None, "--api-key", help="API key (required for anthropic and openai)",
    ),
    base_url: Optional[str] = typer.Option(
        None, "--base-url", help="Override the service base URL",
    ),
    default_model: Optional[str] = typer.Option(
        None, "--default-model", help="Model used when --model is not given",
    ),
    project_id: Optional[str] = typer.Option(
        None, "--project-id", help="Google Cloud project id",
    ),
    location: Optional[str] = typer.Option(
        None, "--location", help="Google Cloud location",
    ),
    service_account: Optional[Path] = typer.Option(
        None, "--service-account", help="Google service account JSON key (used when no API key is set)",
    ),
    encrypt_secrets: bool = typer.Option(
        False, "--encrypt-secrets", help="Store the API key encrypted with a passphrase",
    ),
    secret_env: str = typer.Option(
        DEFAULT_PASSPHRASE_ENV, "--secret-env",
        help="Environment variable holding the passphrase",
    ),
) -> None:
    """Add or update a provider."""
    config = _load_config(strict=True)

    resolved_kind = kind or ProviderKind.infer(name)
    if resolved_kind is None:
        err_console.print(
            f"[red]error:[/red] cannot infer the kind of '{name}'; pass --kind",
            highlight=False,
        )
        raise typer.Exit(1)

    try:
        passphrase = require_passphrase_from_env(secret_env) if encrypt_secrets and api_key else None
        plain, encrypted = maybe_encrypt_secret(api_key, encrypt_secrets, passphrase, secret_env)
        entry = build_provider_config(
            resolved_kind,
            api_key=plain,
            encrypted_api_key=encrypted,
            base_url=base_url,
            default_model=default_model,
            project_id=project_id,
            location=location,
            service_account_file=str(service_account.expanduser()) if service_account else None,
        )
    except TermchatError as exc:
        raise _fail(exc) from None

    config.upsert_provider(name, entry)
    if default:
        config.default_provider = name
    path = config.save()

    console.print(f"Saved provider '{name}' to {path}", highlight=False)


@config_app.command("show")
def config_show() -> None:
    """Print the config file."""
    config = _load_config(strict=True)
    console.print(f"# {config_path()}", markup=False, highlight=False)
    console.print(config.to_toml(), markup=False, highlight=False)


@config_app.command("remove")
def config_remove(
    name: str = typer.Argument(..., help="Provider label to remove"),
) -> None:
    """Remove a provider."""
    config = _load_config(strict=True)
    if not config.remove_provider(name):
        err_console.print(f"[red]error:[/red] provider '{name}' is not configured", highlight=False)
        raise typer.Exit(1)
    config.save()
    console.print(f"Removed provider '{name}'", highlight=False)


# ── chat / message ───────────────────────────────────────────────


@app.command()
def chat(
    provider: Optional[str] = typer.Option(
        None, "--provider", "-p", help="Configured provider to use",
    ),
    model: Optional[str] = typer.Option(
        None, "--model", "-m", help="Model name override",
    ),
    system: Optional[str] = typer.Option(
        None, "--system", help="System prompt",
    ),
    save: Optional[Path] = typer.Option(
        None, "--save", help="Write the transcript to this file on exit",
    ),
    history_dir: Optional[Path] = typer.Option(
        None, "--history-dir", help="Directory for auto-saved transcripts",
    ),
    auto_save: bool = typer.Option(
        False, "--auto-save", help="Save a timestamped transcript on exit",
    ),
    save_format: HistoryFormat = typer.Option(
        HistoryFormat.JSON, "--save-format", case_sensitive=False,
        help="Transcript format",
    ),
    temperature: Optional[float] = typer.Option(
        None, "--temperature", help="Sampling temperature",
    ),
    max_tokens: Optional[int] = typer.Option(
        None, "--max-tokens", help="Maximum output tokens",
    ),
    webhook_url: Optional[str] = typer.Option(
        None, "--webhook-url", help="POST the transcript here on exit",
    ),
    secret_env: Optional[str] = typer.Option(
        None, "--secret-env", help="Environment variable holding the passphrase",
    ),
    stream: bool = typer.Option(
        True, "--stream/--no-stream", help="Print the reply as it arrives",
    ),
) -> None:
    """Start an interactive chat session."""
    config = _load_config()
    try:
        name, resolved_model, adapter = _open_provider(config, provider, model, secret_env)
    except TermchatError as exc:
        raise _fail(exc) from None

    options = ReplOptions(
        provider_name=name,
        model=resolved_model,
        system=system,
        temperature=temperature,
        max_output_tokens=max_tokens,
        stream=stream,
        history=_history_target(save, history_dir, auto_save, save_format),
        webhook_url=webhook_url,
    )
    console.print(f"[dim]{name} · {resolved_model}[/dim]")
    ChatRepl(adapter, options, console=console, err_console=err_console).run()


@app.command()
def message(
    prompt: List[str] = typer.Argument(..., help="Message to send"),
    provider: Optional[str] = typer.Option(
        None, "--provider", "-p", help="Configured provider to use",
    ),
    model: Optional[str] = typer.Option(
        None, "--model", "-m", help="Model name override",
    ),
    system: Optional[str] = typer.Option(
        None, "--system", help="System prompt",
    ),
    save: Optional[Path] = typer.Option(
        None, "--save", help="Write the transcript to this file",
    ),
    history_dir: Optional[Path] = typer.Option(
        None, "--history-dir", help="Directory for auto-saved transcripts",
    ),
    auto_save: bool = typer.Option(
        False, "--auto-save", help="Save a timestamped transcript",
    ),
    save_format: HistoryFormat = typer.Option(
        HistoryFormat.JSON, "--save-format", case_sensitive=False,
        help="Transcript format",
    ),
    temperature: Optional[float] = typer.Option(
        None, "--temperature", help="Sampling temperature",
    ),
    max_tokens: Optional[int] = typer.Option(
        None, "--max-tokens", help="Maximum output tokens",
    ),
    webhook_url: Optional[str] = typer.Option(
        None, "--webhook-url", help="POST the transcript here afterwards",
    ),
    secret_env: Optional[str] = typer.Option(
        None, "--secret-env", help="Environment variable holding the passphrase",
    ),
) -> None:
    """Send one message and print the reply."""
    config = _load_config()
    try:
        name, resolved_model, adapter = _open_provider(config, provider, model, secret_env)
    except TermchatError as exc:
        raise _fail(exc) from None

    options = ReplOptions(
        provider_name=name,
        model=resolved_model,
        system=system,
        temperature=temperature,
        max_output_tokens=max_tokens,
    )
    messages = [Message.user(" ".join(prompt))]
    state = StreamState(provider=name, model=resolved_model)

    def _print_text(text: str) -> None:
        console.print(text, end="", markup=False, highlight=False, soft_wrap=True)

    failed = False
    try:
        asyncio.run(
            consume_reply(adapter, messages, options.request_options(), state, on_text=_print_text)
        )
    except TermchatError as exc:
        failed = True
        report_error(err_console, name, exc, state)
    finally:
        if state.content_started:
            console.print()

    for warning in state.warnings:
        err_console.print(f"[yellow]\\[warn][/yellow] {warning}", highlight=False)

    if state.content_started:
        messages.append(Message.assistant(state.accumulated_content))

    try:
        export_session(
            console,
            name,
            _history_target(save, history_dir, auto_save, save_format),
            system,
            messages,
            webhook_url,
        )
    except TermchatError as exc:
        raise _fail(exc) from None

    if failed:
        raise typer.Exit(1)


# ── doctor ───────────────────────────────────────────────────────


@app.command()
def doctor() -> None:
    """Check the local setup."""
    result = run_doctor()
    for line in result.messages:
        console.print(line, markup=False, highlight=False)
    if not result.ok:
        raise typer.Exit(1)


def main() -> None:
    app()


__all__ = ["app", "main"]
