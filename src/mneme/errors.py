"""Error taxonomy for the memory engine.

Batch operations convert these into in-band results; single-item
operations raise them to the caller, which maps them to status codes.
"""

import builtins

import anthropic
import openai


class MnemeError(Exception):
    """Base class for all engine errors."""


class ValidationError(MnemeError):
    """Bad caller input (empty text, out-of-range limit, missing scope)."""


class EmptyInputError(ValidationError):
    """Text was empty, or became empty after normalization."""


class ScopeRequiredError(ValidationError):
    """A similarity search was attempted without owner, agent, or run scope."""


class EmptyQueryError(ValidationError):
    """A search query or question was blank."""


class DimensionMismatchError(MnemeError):
    """A vector did not have the configured dimension."""

    def __init__(self, expected: int, actual: int):
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Embedding dimension mismatch: expected {expected}, got {actual}"
        )


class ProviderError(MnemeError):
    """An embedding or completion provider call failed."""


class RateLimitError(ProviderError):
    """Provider is applying backpressure; retry with backoff."""


class QuotaError(ProviderError):
    """Provider quota exhausted or credentials rejected."""


class EmbeddingError(ProviderError):
    """Embedding generation failed for a non-specific reason."""


class CompletionError(ProviderError):
    """Completion generation failed for a non-specific reason."""


class TimeoutError(MnemeError, builtins.TimeoutError):  # noqa: A001
    """A bounded outbound call exceeded its timeout."""

    def __init__(self, operation: str, seconds: float | None = None):
        self.operation = operation
        self.seconds = seconds
        if seconds is None:
            super().__init__(f"{operation} timed out")
        else:
            super().__init__(f"{operation} timed out after {seconds:g}s")


class NotFoundError(MnemeError):
    """Unknown memory id."""


class InfrastructureError(MnemeError):
    """Vector index, relational store, or provider endpoint unreachable."""


class DuplicateMemoryError(InfrastructureError):
    """Insert hit the dedup unique constraint (a concurrent identical ingest)."""

    def __init__(self, content_hash: str, owner_id: int):
        self.content_hash = content_hash
        self.owner_id = owner_id
        super().__init__(
            f"Memory with hash {content_hash[:12]}... already exists for owner {owner_id}"
        )


_RATE_LIMIT_MARKERS = ("rate_limit", "rate limit", "too many requests")
_QUOTA_MARKERS = ("insufficient_quota", "invalid_api_key", "quota")


def translate_provider_error(
    error: Exception,
    fallback: type[ProviderError] = EmbeddingError,
) -> MnemeError:
    """Map a provider SDK exception onto the engine taxonomy.

    Checks status codes and error codes first, then falls back to matching
    the message text since not every SDK raises typed exceptions.
    """
    if isinstance(error, MnemeError):
        return error

    message = str(error)
    lowered = message.lower()
    code = getattr(error, "code", None)
    status_code = getattr(error, "status_code", None)

    if isinstance(error, openai.APITimeoutError | anthropic.APITimeoutError):
        return TimeoutError("provider request")
    if isinstance(error, openai.APIConnectionError | anthropic.APIConnectionError):
        return InfrastructureError(f"Provider unreachable: {message}")
    if isinstance(
        error,
        openai.AuthenticationError
        | openai.PermissionDeniedError
        | anthropic.AuthenticationError
        | anthropic.PermissionDeniedError,
    ):
        return QuotaError(f"Provider rejected credentials: {message}")
    if code == "insufficient_quota" or any(m in lowered for m in _QUOTA_MARKERS):
        return QuotaError(f"Provider quota exceeded: {message}")
    if status_code == 429 or any(m in lowered for m in _RATE_LIMIT_MARKERS):
        return RateLimitError(f"Provider rate limit exceeded: {message}")

    return fallback(f"{fallback.__name__.removesuffix('Error')} failed: {message}")
