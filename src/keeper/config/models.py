"""Configuration models using Pydantic."""

import logging
import os
from typing import Literal

from pydantic import BaseModel, Field, SecretStr, model_validator

from keeper.rpc.client import COMPLEX_TOOLS

logger = logging.getLogger(__name__)

Provider = Literal["openai", "openrouter", "anthropic", "llamacpp"]

PROVIDER_ENV_VARS: dict[str, str] = {
    "openai": "OPENAI_API_KEY",
    "openrouter": "OPENROUTER_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
}

# Local llama.cpp servers don't check credentials.
KEYLESS_PROVIDERS = frozenset({"llamacpp"})


class ModelConfig(BaseModel):
    """Configuration for a named model.

    Temperature is optional - if None, the provider's default is used.
    ``supports_tools`` set to False sends the model no tool catalog; None
    leaves the decision to the provider.
    """

    provider: Provider
    model: str
    temperature: float | None = None  # None = use provider default
    max_tokens: int = 4096
    supports_tools: bool | None = None


class ProviderConfig(BaseModel):
    """Provider-level configuration."""

    api_key: SecretStr | None = None
    base_url: str | None = None


class WorkerConfig(BaseModel):
    """How to launch the game-state worker and how long to wait on it."""

    command: list[str] = Field(default_factory=lambda: ["rpg-mcp"])
    env: dict[str, str] = Field(default_factory=dict)
    handshake_timeout: float = 10.0
    default_timeout: float = 30.0
    complex_timeout: float = 120.0
    complex_tools: list[str] = Field(default_factory=lambda: sorted(COMPLEX_TOOLS))


class AgentSettings(BaseModel):
    max_turns: int = 25
    max_tool_result_chars: int = 8000
    context_token_budget: int = 100_000
    chars_per_token: int = 4


class ContextSettings(BaseModel):
    cache_ttl_seconds: float = 30.0
    verbosity: Literal["minimal", "standard", "detailed"] = "standard"
    section_delimiter: str = "---"


class ToolSettings(BaseModel):
    catalog_ttl_seconds: float = 60.0


class ConfigError(Exception):
    """Configuration error."""

    pass


class KeeperConfig(BaseModel):
    """Root configuration model."""

    # Named model configurations
    models: dict[str, ModelConfig] = Field(default_factory=dict)
    # Provider-level API keys and endpoints
    openai: ProviderConfig | None = None
    openrouter: ProviderConfig | None = None
    anthropic: ProviderConfig | None = None
    llamacpp: ProviderConfig | None = None
    worker: WorkerConfig = Field(default_factory=WorkerConfig)
    agent: AgentSettings = Field(default_factory=AgentSettings)
    context: ContextSettings = Field(default_factory=ContextSettings)
    tools: ToolSettings = Field(default_factory=ToolSettings)

    @model_validator(mode="after")
    def _validate_default_model(self) -> "KeeperConfig":
        """Validate that a default model is configured."""
        if "default" not in self.models:
            raise ValueError("No default model configured. Add [models.default]")
        return self

    def get_model(self, alias: str) -> ModelConfig:
        """Get model config by alias.

        Raises:
            ConfigError: If the alias is not found.
        """
        if alias not in self.models:
            available = ", ".join(sorted(self.models.keys()))
            raise ConfigError(f"Unknown model alias '{alias}'. Available: {available}")
        return self.models[alias]

    def list_models(self) -> list[str]:
        return sorted(self.models.keys())

    @property
    def default_model(self) -> ModelConfig:
        return self.get_model("default")

    def get_provider(self, provider: str) -> ProviderConfig | None:
        return getattr(self, provider, None)

    def resolve_api_key(self, alias: str) -> SecretStr | None:
        """Resolve API key for a model alias.

        Resolution order:
        1. Provider-level config api_key
        2. Environment variable for the provider

        Returns:
            The resolved API key, or None if not found.
        """
        provider = self.get_model(alias).provider

        section = self.get_provider(provider)
        if section and section.api_key:
            return section.api_key

        env_var = PROVIDER_ENV_VARS.get(provider)
        if env_var and (env_value := os.environ.get(env_var)):
            return SecretStr(env_value)

        return None

    def require_api_key(self, alias: str) -> SecretStr | None:
        """Like ``resolve_api_key`` but fail if a needed key is missing.

        Returns None only for providers that take no credential.

        Raises:
            ConfigError: If the provider needs a key and none is configured.
        """
        provider = self.get_model(alias).provider
        api_key = self.resolve_api_key(alias)
        if api_key is None and provider not in KEYLESS_PROVIDERS:
            env_var = PROVIDER_ENV_VARS.get(provider, "")
            raise ConfigError(
                f"No API key configured for provider '{provider}'. "
                f"Set [{provider}].api_key or {env_var}"
            )
        return api_key
