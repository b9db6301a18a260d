"""Anthropic Claude LLM provider (completions only)."""

import asyncio
import logging
from typing import Any

import anthropic

from mneme.llm.base import LLMProvider
from mneme.llm.types import CompletionResponse, Message, Role, Usage

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "claude-haiku-4-5"


class AnthropicProvider(LLMProvider):
    """Anthropic Claude provider.

    Concurrent requests are capped by a shared semaphore so that rerank
    fan-out does not trip account-level concurrency limits.
    """

    _semaphore: asyncio.Semaphore | None = None
    _max_concurrent: int = 4

    def __init__(
        self,
        api_key: str | None = None,
        max_concurrent: int | None = None,
        timeout: float | None = None,
    ):
        self._client = anthropic.AsyncAnthropic(api_key=api_key, timeout=timeout)
        if max_concurrent is not None:
            AnthropicProvider._max_concurrent = max_concurrent
        if AnthropicProvider._semaphore is None:
            AnthropicProvider._semaphore = asyncio.Semaphore(
                AnthropicProvider._max_concurrent
            )

    @property
    def name(self) -> str:
        return "anthropic"

    @property
    def default_model(self) -> str:
        return DEFAULT_MODEL

    def _build_request_kwargs(
        self,
        messages: list[Message],
        model: str | None,
        system: str | None,
        max_tokens: int,
        temperature: float | None,
    ) -> dict[str, Any]:
        kwargs: dict[str, Any] = {
            "model": model or self.default_model,
            "messages": [
                {"role": msg.role.value, "content": msg.get_text()}
                for msg in messages
                if msg.role != Role.SYSTEM
            ],
            "max_tokens": max_tokens,
        }

        if temperature is not None:
            kwargs["temperature"] = temperature

        if system:
            kwargs["system"] = system

        return kwargs

    def _parse_response(self, response: anthropic.types.Message) -> CompletionResponse:
        text = "".join(block.text for block in response.content if block.type == "text")

        return CompletionResponse(
            message=Message(role=Role.ASSISTANT, content=text),
            usage=Usage(
                input_tokens=response.usage.input_tokens,
                output_tokens=response.usage.output_tokens,
            ),
            stop_reason=response.stop_reason,
            model=response.model,
            raw=response.model_dump(),
        )

    async def complete(
        self,
        messages: list[Message],
        *,
        model: str | None = None,
        system: str | None = None,
        max_tokens: int = 4096,
        temperature: float | None = None,
    ) -> CompletionResponse:
        kwargs = self._build_request_kwargs(
            messages, model, system, max_tokens, temperature
        )
        model_name = kwargs["model"]

        assert self._semaphore is not None
        logger.debug(f"Waiting for API slot (model={model_name})")
        async with self._semaphore:
            response = await self._client.messages.create(**kwargs)
        logger.debug(
            f"API call complete: {response.usage.input_tokens}in/"
            f"{response.usage.output_tokens}out tokens"
        )
        return self._parse_response(response)

    async def embed(
        self,
        texts: list[str],
        *,
        model: str | None = None,
        dimensions: int | None = None,
    ) -> list[list[float]]:
        raise NotImplementedError(
            "Anthropic does not provide an embeddings API. Use OpenAI for embeddings."
        )
