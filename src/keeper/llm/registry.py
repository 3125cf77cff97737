"""LLM provider construction."""

from typing import Literal

from pydantic import SecretStr

from keeper.llm.anthropic import AnthropicProvider
from keeper.llm.base import LLMProvider
from keeper.llm.openai import (
    LLAMACPP_BASE_URL,
    LLAMACPP_DEFAULT_MODEL,
    OPENROUTER_BASE_URL,
    OPENROUTER_DEFAULT_MODEL,
    OpenAIProvider,
)

ProviderName = Literal["openai", "openrouter", "anthropic", "llamacpp"]

# llama.cpp ignores the key, but the OpenAI client refuses to start without one.
LLAMACPP_PLACEHOLDER_KEY = "sk-no-key-required"


def create_llm_provider(
    provider: ProviderName,
    api_key: str | SecretStr | None = None,
    *,
    base_url: str | None = None,
) -> LLMProvider:
    """Create a single LLM provider instance.

    Args:
        provider: Provider name.
        api_key: API key for the provider.
        base_url: Override for the provider's endpoint.

    Returns:
        LLM provider instance.

    Raises:
        ValueError: If provider name is unknown.
    """
    key = api_key.get_secret_value() if isinstance(api_key, SecretStr) else api_key

    if provider == "openai":
        return OpenAIProvider(api_key=key, base_url=base_url)
    if provider == "openrouter":
        return OpenAIProvider(
            api_key=key,
            base_url=base_url or OPENROUTER_BASE_URL,
            name="openrouter",
            default_model=OPENROUTER_DEFAULT_MODEL,
        )
    if provider == "llamacpp":
        return OpenAIProvider(
            api_key=key or LLAMACPP_PLACEHOLDER_KEY,
            base_url=base_url or LLAMACPP_BASE_URL,
            name="llamacpp",
            default_model=LLAMACPP_DEFAULT_MODEL,
        )
    if provider == "anthropic":
        return AnthropicProvider(api_key=key)

    raise ValueError(f"Unknown LLM provider: {provider}")
