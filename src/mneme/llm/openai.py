"""OpenAI LLM provider (Responses API + embeddings)."""

import logging
import time
from typing import Any

import openai

from mneme.llm.base import LLMProvider
from mneme.llm.types import CompletionResponse, Message, Role, Usage

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gpt-4o-mini"
DEFAULT_EMBEDDING_MODEL = "text-embedding-3-small"


class OpenAIProvider(LLMProvider):
    """OpenAI provider using the Responses API."""

    def __init__(self, api_key: str | None = None, timeout: float | None = None):
        self._client = openai.AsyncOpenAI(api_key=api_key, timeout=timeout)

    @property
    def name(self) -> str:
        return "openai"

    @property
    def default_model(self) -> str:
        return DEFAULT_MODEL

    def _convert_input(
        self, messages: list[Message]
    ) -> tuple[str | None, list[dict[str, Any]]]:
        """Convert messages to Responses API input format.

        Returns:
            Tuple of (instructions, input_items) where instructions is extracted
            from system messages and input_items is the conversation history.
        """
        instructions: str | None = None
        result: list[dict[str, Any]] = []

        for msg in messages:
            if msg.role == Role.SYSTEM:
                instructions = msg.get_text()
                continue
            result.append({"role": msg.role.value, "content": msg.get_text()})

        return instructions, result

    def _build_request_kwargs(
        self,
        messages: list[Message],
        model: str | None,
        system: str | None,
        max_tokens: int,
        temperature: float | None,
    ) -> dict[str, Any]:
        msg_instructions, input_items = self._convert_input(messages)
        # Prefer explicit system param, fall back to system message from conversation
        instructions = system or msg_instructions

        kwargs: dict[str, Any] = {
            "model": model or self.default_model,
            "input": input_items,
            "max_output_tokens": max_tokens,
        }

        if instructions:
            kwargs["instructions"] = instructions

        if temperature is not None:
            kwargs["temperature"] = temperature

        return kwargs

    def _parse_response(self, response: Any) -> CompletionResponse:
        parts: list[str] = []

        for item in response.output:
            if item.type == "message":
                for part in item.content:
                    if part.type == "output_text":
                        parts.append(part.text)

        usage = None
        if response.usage:
            usage = Usage(
                input_tokens=response.usage.input_tokens,
                output_tokens=response.usage.output_tokens,
            )

        return CompletionResponse(
            message=Message(role=Role.ASSISTANT, content="\n".join(parts)),
            usage=usage,
            stop_reason="end_turn",
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

        start_time = time.monotonic()
        response = await self._client.responses.create(**kwargs)
        duration_ms = int((time.monotonic() - start_time) * 1000)

        usage = response.usage
        extra: dict[str, object] = {
            "provider": "openai",
            "model": model_name,
            "duration_ms": duration_ms,
        }
        if usage:
            extra["tokens_in"] = usage.input_tokens
            extra["tokens_out"] = usage.output_tokens
        logger.debug("llm_complete", extra=extra)

        return self._parse_response(response)

    async def embed(
        self,
        texts: list[str],
        *,
        model: str | None = None,
        dimensions: int | None = None,
    ) -> list[list[float]]:
        embed_model = model or DEFAULT_EMBEDDING_MODEL
        logger.debug("Embedding %d texts with model %s", len(texts), embed_model)

        kwargs: dict[str, Any] = {"model": embed_model, "input": texts}
        if dimensions is not None:
            kwargs["dimensions"] = dimensions

        response = await self._client.embeddings.create(**kwargs)
        return [item.embedding for item in response.data]
