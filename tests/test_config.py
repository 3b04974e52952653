"""
termchat - Configuration Tests

Verifies:
- Provider entries validate per kind
- The config file round-trips through TOML with owner-only permissions
- Default provider resolution
- API key resolution order
"""

import os
import stat

import pytest

from termchat.config import (
    AppConfig,
    ApiKeyProviderConfig,
    GoogleProviderConfig,
    build_provider_config,
    config_path,
)
from termchat.core.errors import (
    ConfigError,
    MissingCredentialsError,
    NoDefaultProviderError,
    ProviderNotFoundError,
)
from termchat.core.models import ProviderKind


# ============================================================
# Provider entries
# ============================================================

class TestProviderEntries:
    """Test provider entry construction."""

    def test_google_key_is_optional(self):
        """Google entries may rely on GOOGLE_API_KEY."""
        entry = build_provider_config(ProviderKind.GOOGLE, project_id="proj")

        assert isinstance(entry, GoogleProviderConfig)
        assert entry.has_credentials is False
        assert entry.project_id == "proj"

    @pytest.mark.parametrize("kind", [ProviderKind.ANTHROPIC, ProviderKind.OPENAI])
    def test_api_key_required(self, kind):
        """Anthropic and OpenAI entries need a key."""
        with pytest.raises(ConfigError) as exc_info:
            build_provider_config(kind)

        assert exc_info.value.code == "missing_api_key"

    def test_encrypted_key_satisfies_requirement(self):
        """An encrypted key counts as a credential."""
        entry = build_provider_config(ProviderKind.OPENAI, encrypted_api_key="enc:v1:abc")

        assert isinstance(entry, ApiKeyProviderConfig)
        assert entry.kind == ProviderKind.OPENAI

    def test_model_resolution_order(self):
        """Explicit model, then the entry default, then the kind default."""
        entry = GoogleProviderConfig(default_model="gemini-1.5-pro")

        assert entry.resolve_model("gemini-2.0") == "gemini-2.0"
        assert entry.resolve_model() == "gemini-1.5-pro"
        assert GoogleProviderConfig().resolve_model() == ProviderKind.GOOGLE.default_model

    def test_plain_key_wins_over_environment(self):
        """A stored key is preferred to the environment variable."""
        entry = ApiKeyProviderConfig(type="anthropic", api_key="stored")

        assert entry.resolve_api_key("claude", env={"ANTHROPIC_API_KEY": "env"}) == "stored"

    def test_environment_fallback(self):
        """The conventional variable is used when nothing is stored."""
        entry = GoogleProviderConfig()

        assert entry.resolve_api_key("google", env={"GOOGLE_API_KEY": "from-env"}) == "from-env"

    def test_no_key_anywhere(self):
        """Missing credentials name the provider and the variable."""
        with pytest.raises(MissingCredentialsError) as exc_info:
            GoogleProviderConfig().resolve_api_key("google", env={})

        assert "GOOGLE_API_KEY" in str(exc_info.value)


# ============================================================
# Config file
# ============================================================

class TestAppConfig:
    """Test loading and saving the config file."""

    def test_missing_file_is_empty(self, config_dir):
        """No file means no providers."""
        config = AppConfig.load()

        assert config.providers == {}
        assert config.default_provider is None

    def test_round_trip(self, config_dir):
        """Saved entries load back with their kinds."""
        config = AppConfig()
        config.upsert_provider("google", build_provider_config(ProviderKind.GOOGLE, api_key="g"))
        config.upsert_provider(
            "work-claude",
            build_provider_config(ProviderKind.ANTHROPIC, api_key="a", default_model="claude-x"),
        )
        config.default_provider = "work-claude"
        path = config.save()

        assert path == config_path()
        loaded = AppConfig.load()

        assert loaded.default_provider == "work-claude"
        assert isinstance(loaded.providers["google"], GoogleProviderConfig)
        assert loaded.providers["work-claude"].kind == ProviderKind.ANTHROPIC
        assert loaded.providers["work-claude"].default_model == "claude-x"

    @pytest.mark.skipif(os.name != "posix", reason="POSIX permissions")
    def test_file_is_owner_only(self, config_dir):
        """The config file is written with 0600."""
        path = AppConfig().save()

        assert stat.S_IMODE(path.stat().st_mode) == 0o600

    def test_none_values_are_not_written(self, config_dir):
        """Unset fields are omitted from the TOML."""
        config = AppConfig()
        config.upsert_provider("google", GoogleProviderConfig(api_key="g"))

        text = config.to_toml()

        assert "base_url" not in text
        assert 'type = "google"' in text

    def test_invalid_toml(self, config_dir):
        """Unparseable files raise ConfigError."""
        config_dir.mkdir(parents=True)
        (config_dir / "config.toml").write_text("default_provider = [", encoding="utf-8")

        with pytest.raises(ConfigError) as exc_info:
            AppConfig.load()

        assert exc_info.value.code == "config_unreadable"

    def test_invalid_entry(self, config_dir):
        """Schema violations raise ConfigError."""
        config_dir.mkdir(parents=True)
        (config_dir / "config.toml").write_text(
            '[providers.claude]\ntype = "anthropic"\n', encoding="utf-8"
        )

        with pytest.raises(ConfigError) as exc_info:
            AppConfig.load()

        assert exc_info.value.code == "config_invalid"

    def test_remove_clears_default(self):
        """Removing the default provider clears the default."""
        config = AppConfig(default_provider="google", providers={"google": GoogleProviderConfig()})

        assert config.remove_provider("google") is True
        assert config.default_provider is None
        assert config.remove_provider("google") is False


# ============================================================
# Default provider
# ============================================================

class TestInferDefaultProvider:
    """Test provider selection."""

    def test_explicit_wins(self):
        config = AppConfig(default_provider="google")

        assert config.infer_default_provider("openai") == "openai"

    def test_configured_default(self):
        config = AppConfig(default_provider="google")

        assert config.infer_default_provider() == "google"

    def test_single_provider(self):
        """A sole entry is used without a default."""
        config = AppConfig(providers={"only": GoogleProviderConfig()})

        assert config.infer_default_provider() == "only"

    def test_ambiguous(self):
        """Several entries and no default is an error."""
        config = AppConfig(providers={"a": GoogleProviderConfig(), "b": GoogleProviderConfig()})

        with pytest.raises(NoDefaultProviderError):
            config.infer_default_provider()

    def test_require_unknown_provider(self):
        with pytest.raises(ProviderNotFoundError):
            AppConfig().require_provider("missing")
