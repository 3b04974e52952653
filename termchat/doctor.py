"""Preflight checks for a local termchat setup."""

from __future__ import annotations

import os
import shutil
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import List, Mapping, Optional, Tuple

from .config import API_KEY_ENV, AppConfig, config_path
from .core.errors import ConfigError
from .security.encryption import DEFAULT_PASSPHRASE_ENV

MIN_PYTHON = (3, 11)


@dataclass
class DoctorResult:
    ok: bool
    messages: List[str]


def _python_version_tuple() -> Tuple[int, int, int]:
    v = sys.version_info
    return (v.major, v.minor, v.micro)


def _check_python_version(errors: List[str]) -> None:
    current = _python_version_tuple()
    if current[:2] < MIN_PYTHON:
        errors.append(
            f"Python {current[0]}.{current[1]} is unsupported. "
            f"Use Python {MIN_PYTHON[0]}.{MIN_PYTHON[1]} or newer."
        )


def _load_config(path: Path, errors: List[str]) -> Optional[AppConfig]:
    try:
        return AppConfig.load(path)
    except ConfigError as exc:
        errors.append(f"Config file {path} could not be loaded: {exc.error.message}")
        return None


def _check_default_provider(config: AppConfig, errors: List[str], warnings: List[str]) -> None:
    if not config.providers:
        warnings.append("No providers configured. Run `termchat config set NAME --api-key ...`.")
        return

    if config.default_provider and config.default_provider not in config.providers:
        errors.append(
            f"default_provider `{config.default_provider}` is not a configured provider."
        )
    elif not config.default_provider and len(config.providers) > 1:
        warnings.append("No default provider set; pass --provider or use `config set NAME --default`.")


def _check_credentials(
    config: AppConfig,
    env: Mapping[str, str],
    passphrase_env: str,
    errors: List[str],
    warnings: List[str],
) -> None:
    uses_encryption = False

    for name, provider in config.providers.items():
        if provider.api_key:
            continue
        service_account_file = getattr(provider, "service_account_file", None)
        if service_account_file and not provider.encrypted_api_key:
            if not Path(service_account_file).expanduser().is_file():
                errors.append(
                    f"Provider `{name}` service account file `{service_account_file}` does not exist."
                )
            continue
        if provider.encrypted_api_key:
            uses_encryption = True
            if not env.get(passphrase_env, ""):
                errors.append(
                    f"Provider `{name}` has an encrypted key but `{passphrase_env}` is not set."
                )
            continue
        env_name = API_KEY_ENV[provider.kind]
        if not env.get(env_name, "").strip():
            errors.append(f"Provider `{name}` has no API key and `{env_name}` is not set.")
        else:
            warnings.append(f"Provider `{name}` uses `{env_name}` from the environment.")

    if uses_encryption and not shutil.which("openssl"):
        errors.append("Encrypted secrets require the `openssl` binary in PATH.")


def run_doctor(
    env: Optional[Mapping[str, str]] = None,
    path: Optional[Path] = None,
    passphrase_env: str = DEFAULT_PASSPHRASE_ENV,
) -> DoctorResult:
    env_map: Mapping[str, str] = os.environ if env is None else env
    path = path or config_path(env_map)
    errors: List[str] = []
    warnings: List[str] = []

    _check_python_version(errors)
    config = _load_config(path, errors)
    if config is not None:
        _check_default_provider(config, errors, warnings)
        _check_credentials(config, env_map, passphrase_env, errors, warnings)

    messages: List[str] = []
    if errors:
        messages.append("Doctor found configuration issues:")
        for i, msg in enumerate(errors, 1):
            messages.append(f"{i}. {msg}")
        messages.append("Fix the items above and rerun `termchat doctor`.")
    else:
        messages.append("Doctor checks passed.")

    if warnings:
        messages.append("Warnings:")
        for msg in warnings:
            messages.append(f"- {msg}")

    return DoctorResult(ok=not errors, messages=messages)
