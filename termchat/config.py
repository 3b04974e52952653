"""
termchat - Configuration

Provider credentials and defaults, stored as TOML:

    default_provider = "google"

    [providers.google]
    type = "google"
    api_key = "..."
    default_model = "gemini-1.5-flash"

    [providers.gemini-sa]
    type = "google"
    service_account_file = "~/keys/gemini-sa.json"

    [providers.work-claude]
    type = "anthropic"
    encrypted_api_key = "enc:v1:..."

Location: ``$TERMCHAT_CONFIG_DIR/config.toml`` when set, otherwise
``$XDG_CONFIG_HOME/termchat/config.toml``. The file is written with 0600
permissions.
"""

import os
import tomllib
from pathlib import Path
from typing import Annotated, Dict, Literal, Mapping, Optional, Union

import tomli_w
from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator
from xdg_base_dirs import xdg_config_home

from .core.errors import (
    ConfigError,
    MissingCredentialsError,
    NoDefaultProviderError,
    ProviderNotFoundError,
)
from .core.models import ProviderKind
from .observability.logging import get_logger
from .security.encryption import DEFAULT_PASSPHRASE_ENV, resolve_secret

logger = get_logger(__name__)

APP_DIR = "termchat"
CONFIG_FILE = "config.toml"
CONFIG_DIR_ENV = "TERMCHAT_CONFIG_DIR"

API_KEY_ENV: Dict[ProviderKind, str] = {
    ProviderKind.GOOGLE: "GOOGLE_API_KEY",
    ProviderKind.ANTHROPIC: "ANTHROPIC_API_KEY",
    ProviderKind.OPENAI: "OPENAI_API_KEY",
}


def config_dir(env: Optional[Mapping[str, str]] = None) -> Path:
    env = os.environ if env is None else env
    override = env.get(CONFIG_DIR_ENV)
    if override:
        return Path(override).expanduser()
    return Path(xdg_config_home()) / APP_DIR


def config_path(env: Optional[Mapping[str, str]] = None) -> Path:
    return config_dir(env) / CONFIG_FILE


# ============================================================
# Provider entries
# ============================================================

class _ProviderConfigBase(BaseModel):
    model_config = ConfigDict(extra="ignore")

    api_key: Optional[str] = None
    encrypted_api_key: Optional[str] = None
    base_url: Optional[str] = None
    default_model: Optional[str] = None

    @property
    def kind(self) -> ProviderKind:
        return ProviderKind(self.type)  # type: ignore[attr-defined]

    @property
    def has_credentials(self) -> bool:
        return bool(self.api_key or self.encrypted_api_key)

    def resolve_model(self, override: Optional[str] = None) -> str:
        """Explicit model, then the entry's default, then the kind's default."""
        return override or self.default_model or self.kind.default_model

    def resolve_api_key(
        self,
        name: str,
        passphrase: Optional[str] = None,
        env_label: str = DEFAULT_PASSPHRASE_ENV,
        env: Optional[Mapping[str, str]] = None,
    ) -> str:
        """
        Return the usable API key.

        Order: plain key, encrypted key, then the provider's conventional
        environment variable.

        Raises:
            SecretError: The encrypted key could not be decrypted.
            MissingCredentialsError: No key from any source.
        """
        key = resolve_secret(self.api_key, self.encrypted_api_key, passphrase, env_label)
        if key:
            return key

        env = os.environ if env is None else env
        env_name = API_KEY_ENV[self.kind]
        key = env.get(env_name)
        if key:
            logger.debug("Using API key from environment", provider=name, variable=env_name)
            return key

        raise MissingCredentialsError(
            name, f"run `termchat config set {name} --api-key ...` or set {env_name}"
        )


class GoogleProviderConfig(_ProviderConfigBase):
    """Gemini via the Generative Language API."""
    type: Literal["google"] = "google"
    project_id: Optional[str] = None
    location: Optional[str] = None
    service_account_file: Optional[str] = None

    @property
    def has_credentials(self) -> bool:
        return bool(self.api_key or self.encrypted_api_key or self.service_account_file)

    def resolve_api_key(
        self,
        name: str,
        passphrase: Optional[str] = None,
        env_label: str = DEFAULT_PASSPHRASE_ENV,
        env: Optional[Mapping[str, str]] = None,
    ) -> str:
        """
        As for other providers, except that a configured service account
        stands in for the environment variable.

        Returns an empty string when the service account should be used.
        """
        if self.service_account_file and not (self.api_key or self.encrypted_api_key):
            return ""
        return super().resolve_api_key(name, passphrase, env_label, env)


class ApiKeyProviderConfig(_ProviderConfigBase):
    """Anthropic or OpenAI (or an OpenAI-compatible base URL)."""
    type: Literal["anthropic", "openai"]

    @model_validator(mode="after")
    def _require_key(self) -> "ApiKeyProviderConfig":
        if not self.has_credentials:
            raise ValueError(f"{self.type} providers need api_key or encrypted_api_key")
        return self


ProviderConfig = Annotated[
    Union[GoogleProviderConfig, ApiKeyProviderConfig],
    Field(discriminator="type"),
]


def build_provider_config(
    kind: ProviderKind,
    api_key: Optional[str] = None,
    encrypted_api_key: Optional[str] = None,
    base_url: Optional[str] = None,
    default_model: Optional[str] = None,
    project_id: Optional[str] = None,
    location: Optional[str] = None,
    service_account_file: Optional[str] = None,
) -> Union[GoogleProviderConfig, ApiKeyProviderConfig]:
    """
    Build a provider entry from command-line values.

    Raises:
        ConfigError: Required fields are missing for the kind.
    """
    if kind == ProviderKind.GOOGLE:
        return GoogleProviderConfig(
            api_key=api_key,
            encrypted_api_key=encrypted_api_key,
            base_url=base_url,
            default_model=default_model,
            project_id=project_id,
            location=location,
            service_account_file=service_account_file,
        )

    if service_account_file:
        raise ConfigError(
            "service_account_unsupported",
            f"--service-account only applies to google providers, not {kind.value}",
        )

    if not (api_key or encrypted_api_key):
        raise ConfigError("missing_api_key", f"--api-key is required for {kind.value} providers")

    return ApiKeyProviderConfig(
        type=kind.value,
        api_key=api_key,
        encrypted_api_key=encrypted_api_key,
        base_url=base_url,
        default_model=default_model,
    )


# ============================================================
# Application config
# ============================================================

class AppConfig(BaseModel):
    """The whole config file."""
    model_config = ConfigDict(extra="ignore")

    default_provider: Optional[str] = None
    providers: Dict[str, ProviderConfig] = Field(default_factory=dict)

    @classmethod
    def load(cls, path: Optional[Path] = None) -> "AppConfig":
        """
        Load the config file; a missing file is an empty config.

        Raises:
            ConfigError: The file exists but is not valid.
        """
        path = path or config_path()
        if not path.exists():
            return cls()

        try:
            with path.open("rb") as fh:
                data = tomllib.load(fh)
        except (OSError, tomllib.TOMLDecodeError) as exc:
            raise ConfigError("config_unreadable", f"failed to read {path}: {exc}") from exc

        try:
            return cls.model_validate(data)
        except ValidationError as exc:
            raise ConfigError(
                "config_invalid",
                f"invalid config {path}: {exc.error_count()} error(s)",
                {"errors": [err["msg"] for err in exc.errors()]},
            ) from exc

    def save(self, path: Optional[Path] = None) -> Path:
        path = path or config_path()
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(self.to_toml(), encoding="utf-8")
        ensure_permissions(path)
        logger.debug("Saved config", path=str(path), providers=len(self.providers))
        return path

    def to_toml(self) -> str:
        return tomli_w.dumps(self.model_dump(mode="json", exclude_none=True))

    def upsert_provider(self, name: str, provider: Union[GoogleProviderConfig, ApiKeyProviderConfig]):
        self.providers[name] = provider

    def remove_provider(self, name: str) -> bool:
        """Remove an entry, clearing the default if it pointed there."""
        if name not in self.providers:
            return False
        del self.providers[name]
        if self.default_provider == name:
            self.default_provider = None
        return True

    def require_provider(self, name: str) -> Union[GoogleProviderConfig, ApiKeyProviderConfig]:
        try:
            return self.providers[name]
        except KeyError:
            raise ProviderNotFoundError(name) from None

    def infer_default_provider(self, explicit: Optional[str] = None) -> str:
        """
        Pick the provider for a chat: explicit choice, configured default,
        or the only configured entry.
        """
        if explicit:
            return explicit
        if self.default_provider:
            return self.default_provider
        if len(self.providers) == 1:
            return next(iter(self.providers))
        raise NoDefaultProviderError()


def ensure_permissions(path: Path):
    """Restrict the config file to its owner."""
    if os.name == "posix":
        os.chmod(path, 0o600)
