"""LLM provider registry."""

from typing import Literal

from pydantic import SecretStr

from mneme.llm.anthropic import AnthropicProvider
from mneme.llm.base import LLMProvider
from mneme.llm.openai import OpenAIProvider

ProviderName = Literal["anthropic", "openai"]


def create_llm_provider(
    provider: ProviderName,
    api_key: str | SecretStr | None = None,
    *,
    timeout: float | None = None,
) -> LLMProvider:
    """Create a single LLM provider instance.

    Args:
        provider: Provider name.
        api_key: API key (falls back to the SDK's env var when None).
        timeout: Per-request timeout handed to the SDK client.

    Raises:
        ValueError: If provider name is unknown.
    """
    key = api_key.get_secret_value() if isinstance(api_key, SecretStr) else api_key

    if provider == "anthropic":
        return AnthropicProvider(api_key=key, timeout=timeout)
    if provider == "openai":
        return OpenAIProvider(api_key=key, timeout=timeout)

    raise ValueError(f"Unknown LLM provider: {provider}")


class LLMRegistry:
    """Registry for LLM providers."""

    def __init__(self) -> None:
        self._providers: dict[str, LLMProvider] = {}

    def register(self, provider: LLMProvider) -> None:
        """Register a provider instance."""
        self._providers[provider.name] = provider

    def get(self, name: str) -> LLMProvider:
        """Get a provider by name.

        Raises:
            KeyError: If provider not found.
        """
        if name not in self._providers:
            raise KeyError(f"Provider '{name}' not registered")
        return self._providers[name]

    def has(self, name: str) -> bool:
        return name in self._providers
