"""LLM provider abstraction layer."""

from mneme.llm.anthropic import AnthropicProvider
from mneme.llm.base import LLMProvider, complete_text
from mneme.llm.openai import OpenAIProvider
from mneme.llm.registry import LLMRegistry, ProviderName, create_llm_provider
from mneme.llm.retry import RetryConfig, is_retryable_error, with_retry
from mneme.llm.types import CompletionResponse, Message, Role, Usage

__all__ = [
    # Base
    "LLMProvider",
    "complete_text",
    # Providers
    "AnthropicProvider",
    "OpenAIProvider",
    # Registry
    "LLMRegistry",
    "ProviderName",
    "create_llm_provider",
    # Retry
    "RetryConfig",
    "is_retryable_error",
    "with_retry",
    # Types
    "CompletionResponse",
    "Message",
    "Role",
    "Usage",
]
