"""Tests for configuration loading."""

from pathlib import Path

import pytest
from pydantic import SecretStr, ValidationError

from keeper.config import (
    ConfigError,
    KeeperConfig,
    ModelConfig,
    ProviderConfig,
    get_default_config,
    load_config,
)
from keeper.config.paths import get_config_path, get_keeper_home, get_prompts_path


class TestLoadConfig:
    def test_load_from_file(self, config_file: Path):
        config = load_config(config_file)

        assert config.default_model.provider == "openai"
        assert config.default_model.temperature == 0.7
        assert config.get_model("local").supports_tools is False
        assert config.worker.command == ["rpg-mcp", "--stdio"]
        assert config.worker.default_timeout == 15.0
        assert config.worker.complex_timeout == 120.0
        assert config.context.verbosity == "detailed"
        assert config.list_models() == ["default", "local"]

    def test_missing_explicit_path(self, tmp_path: Path):
        with pytest.raises(FileNotFoundError, match="not found"):
            load_config(tmp_path / "nope.toml")

    def test_search_finds_keeper_home(self, keeper_home: Path, config_toml_content: str, monkeypatch, tmp_path):
        monkeypatch.chdir(tmp_path)
        keeper_home.mkdir(parents=True)
        (keeper_home / "config.toml").write_text(config_toml_content)

        config = load_config()

        assert config.default_model.model == "gpt-4.1"

    def test_nothing_found(self, monkeypatch, tmp_path):
        monkeypatch.chdir(tmp_path)
        monkeypatch.setattr("keeper.config.loader._get_default_config_paths", lambda: [tmp_path / "a.toml"])
        with pytest.raises(FileNotFoundError, match="No config file found"):
            load_config()

    def test_missing_default_model(self, tmp_path: Path):
        path = tmp_path / "config.toml"
        path.write_text('[models.fast]\nprovider = "openai"\nmodel = "gpt-4.1-mini"\n')

        with pytest.raises(ValidationError, match="No default model"):
            load_config(path)

    def test_unknown_provider(self, tmp_path: Path):
        path = tmp_path / "config.toml"
        path.write_text('[models.default]\nprovider = "mystery"\nmodel = "x"\n')

        with pytest.raises(ValidationError):
            load_config(path)

    def test_invalid_toml(self, tmp_path: Path):
        path = tmp_path / "config.toml"
        path.write_text("[models.default\n")

        with pytest.raises(ValueError):
            load_config(path)

    def test_env_secret_fills_provider_section(self, tmp_path: Path, monkeypatch):
        monkeypatch.setenv("OPENROUTER_API_KEY", "sk-or-env")
        path = tmp_path / "config.toml"
        path.write_text(
            '[models.default]\nprovider = "openrouter"\nmodel = "x/y"\n\n'
            '[openrouter]\nbase_url = "https://example.test/v1"\n'
        )

        config = load_config(path)

        assert config.openrouter.api_key.get_secret_value() == "sk-or-env"
        assert config.openrouter.base_url == "https://example.test/v1"

    def test_file_secret_wins_over_env(self, tmp_path: Path, monkeypatch):
        monkeypatch.setenv("OPENAI_API_KEY", "from-env")
        path = tmp_path / "config.toml"
        path.write_text(
            '[models.default]\nprovider = "openai"\nmodel = "gpt-4.1"\n\n'
            '[openai]\napi_key = "from-file"\n'
        )

        config = load_config(path)

        assert config.resolve_api_key("default").get_secret_value() == "from-file"

    def test_default_config(self):
        config = get_default_config()
        assert config.default_model.model == "gpt-4.1"
        assert config.agent.max_turns == 25
        assert config.tools.catalog_ttl_seconds == 60.0
        assert config.context.cache_ttl_seconds == 30.0


class TestApiKeys:
    def test_env_fallback(self, minimal_config: KeeperConfig, monkeypatch):
        monkeypatch.setenv("OPENAI_API_KEY", "sk-env")
        assert minimal_config.resolve_api_key("default").get_secret_value() == "sk-env"

    def test_missing_key(self, minimal_config: KeeperConfig):
        assert minimal_config.resolve_api_key("default") is None
        with pytest.raises(ConfigError, match="OPENAI_API_KEY"):
            minimal_config.require_api_key("default")

    def test_provider_section(self):
        config = KeeperConfig(
            models={"default": ModelConfig(provider="anthropic", model="claude-sonnet-4-0")},
            anthropic=ProviderConfig(api_key=SecretStr("sk-ant")),
        )
        assert config.require_api_key("default").get_secret_value() == "sk-ant"

    def test_llamacpp_needs_no_key(self):
        config = KeeperConfig(models={"default": ModelConfig(provider="llamacpp", model="qwen")})
        assert config.require_api_key("default") is None

    def test_unknown_alias(self, minimal_config: KeeperConfig):
        with pytest.raises(ConfigError, match="Unknown model alias 'fast'"):
            minimal_config.get_model("fast")

    def test_secret_not_in_repr(self):
        config = KeeperConfig(
            models={"default": ModelConfig(provider="openai", model="gpt-4.1")},
            openai=ProviderConfig(api_key=SecretStr("sk-very-secret")),
        )
        assert "sk-very-secret" not in repr(config)


class TestPaths:
    def test_keeper_home_from_env(self, keeper_home: Path):
        assert get_keeper_home() == keeper_home.resolve()
        assert get_config_path() == keeper_home.resolve() / "config.toml"
        assert get_prompts_path() == keeper_home.resolve() / "prompts.json"

    def test_default_home(self, monkeypatch):
        monkeypatch.delenv("KEEPER_HOME")
        get_keeper_home.cache_clear()
        assert get_keeper_home() == Path.home() / ".keeper"
