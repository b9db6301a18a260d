"""Abstract LLM provider interface."""

from abc import ABC, abstractmethod

from mneme.errors import CompletionError, translate_provider_error
from mneme.llm.retry import RetryConfig, with_retry
from mneme.llm.types import CompletionResponse, Message, Role
from mneme.timeouts import bounded


class LLMProvider(ABC):
    """Abstract interface for completion and embedding providers."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Provider identifier (e.g., 'anthropic', 'openai')."""
        ...

    @property
    @abstractmethod
    def default_model(self) -> str:
        """Default completion model for this provider."""
        ...

    @abstractmethod
    async def complete(
        self,
        messages: list[Message],
        *,
        model: str | None = None,
        system: str | None = None,
        max_tokens: int = 4096,
        temperature: float | None = None,
    ) -> CompletionResponse:
        """Generate a completion.

        Args:
            messages: Conversation history.
            model: Model to use (defaults to provider's default).
            system: System prompt.
            max_tokens: Maximum tokens to generate.
            temperature: Sampling temperature. None = use API default.

        Returns:
            Complete response with message and metadata.
        """
        ...

    @abstractmethod
    async def embed(
        self,
        texts: list[str],
        *,
        model: str | None = None,
        dimensions: int | None = None,
    ) -> list[list[float]]:
        """Generate embeddings for texts.

        Args:
            texts: Texts to embed.
            model: Embedding model to use.
            dimensions: Requested vector length, for models that support it.

        Returns:
            List of embedding vectors (1:1 correspondence with input).
        """
        ...


async def complete_text(
    provider: LLMProvider,
    *,
    system: str,
    user: str,
    temperature: float | None = None,
    model: str | None = None,
    max_tokens: int = 1024,
    timeout: float | None = None,
    retry: RetryConfig | None = None,
    operation: str = "completion",
) -> str:
    """Run a single system+user completion and return the raw text.

    Args:
        provider: Completion provider.
        system: System prompt.
        user: User message.
        temperature: Sampling temperature. None = provider default.
        model: Model override.
        max_tokens: Maximum tokens to generate.
        timeout: Per-attempt deadline in seconds.
        retry: Retry policy for transient failures. None = single attempt.
        operation: Name used in logs and error messages.

    Raises:
        ProviderError: Translated provider failure (rate limit, quota, other).
        TimeoutError: If an attempt exceeded the deadline.
    """

    async def _attempt() -> CompletionResponse:
        return await bounded(
            provider.complete(
                [Message(role=Role.USER, content=user)],
                model=model,
                system=system,
                max_tokens=max_tokens,
                temperature=temperature,
            ),
            timeout,
            operation,
        )

    try:
        response = await with_retry(
            _attempt, retry or RetryConfig(enabled=False), operation
        )
    except Exception as e:
        translated = translate_provider_error(e, CompletionError)
        if translated is e:
            raise
        raise translated from e
    return response.text
