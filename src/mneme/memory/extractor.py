"""Fact extraction from memory content.

Memories are embedded as a set of atomic facts rather than as raw text, so
a long email yields several small, independently searchable vectors.
"""

import json
import logging
import re
from collections import Counter
from typing import TYPE_CHECKING, Any

from mneme.errors import CompletionError, EmptyInputError
from mneme.llm.base import complete_text
from mneme.memory.prompts import FACT_EXTRACTION_PROMPT, FACT_EXTRACTION_SYSTEM_PROMPT
from mneme.memory.types import ExtractedFact

if TYPE_CHECKING:
    from mneme.llm import LLMProvider, RetryConfig

logger = logging.getLogger(__name__)

MIN_FACT_LENGTH = 8
MAX_FACT_LENGTH = 240
MAX_FACTS = 32

_CODE_FENCE = re.compile(r"```(?:json)?\s*\n(.*?)```", re.DOTALL)


def _score(value: Any) -> float | None:
    """Coerce an importance/confidence value, dropping anything outside [0, 1]."""
    if isinstance(value, bool) or not isinstance(value, int | float):
        return None
    score = float(value)
    return score if 0.0 <= score <= 1.0 else None


class FactExtractor:
    """Extract atomic facts from memory content with a completion model."""

    def __init__(
        self,
        llm: "LLMProvider",
        model: str | None = None,
        max_tokens: int = 600,
        max_facts: int = MAX_FACTS,
        timeout: float | None = None,
        retry: "RetryConfig | None" = None,
    ):
        """Initialize fact extractor.

        Args:
            llm: Completion provider.
            model: Model to use (defaults to provider default).
            max_tokens: Maximum tokens for the extraction response.
            max_facts: Upper bound on facts returned per memory.
            timeout: Deadline per completion attempt, in seconds.
            retry: Retry policy for transient provider failures.
        """
        self._llm = llm
        self._model = model
        self._max_tokens = max_tokens
        self._max_facts = min(max_facts, MAX_FACTS)
        self._timeout = timeout
        self._retry = retry

    async def extract(
        self,
        content: str,
        *,
        title: str | None = None,
        source: str | None = None,
        timestamp: str | None = None,
    ) -> list[ExtractedFact]:
        """Extract facts from content.

        Args:
            content: Memory text.
            title: Optional title, passed as context.
            source: Optional source name, passed as context.
            timestamp: Optional ISO timestamp, passed as context.

        Returns:
            Up to max_facts facts, in the order the model produced them.

        Raises:
            EmptyInputError: If content is blank.
            CompletionError: If the response is not valid JSON.
            ProviderError: If the provider call fails.
        """
        if not content or not content.strip():
            raise EmptyInputError("Content is empty")

        prompt = FACT_EXTRACTION_PROMPT.format(
            title=title or "n/a",
            source=source or "n/a",
            timestamp=timestamp or "n/a",
            content=content,
        )

        text = await complete_text(
            self._llm,
            system=FACT_EXTRACTION_SYSTEM_PROMPT,
            user=prompt,
            temperature=0.0,
            model=self._model,
            max_tokens=self._max_tokens,
            timeout=self._timeout,
            retry=self._retry,
            operation="fact extraction",
        )

        return self.parse_response(text)

    def parse_response(self, response_text: str) -> list[ExtractedFact]:
        """Parse a ``{"facts": [...]}`` response into ExtractedFact objects.

        Items that are not objects, or whose fact text is too short or too
        long, are dropped. The list is truncated to max_facts.

        Raises:
            CompletionError: If the response is not a JSON object with a
                ``facts`` list.
        """
        text = response_text.strip()

        # Strip markdown code fences if present
        if match := _CODE_FENCE.search(text):
            text = match.group(1).strip()

        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise CompletionError("Failed to parse fact extraction response") from e

        if not isinstance(data, dict) or not isinstance(data.get("facts"), list):
            raise CompletionError("Fact extraction response has no facts list")

        drops: Counter[str] = Counter()
        facts: list[ExtractedFact] = []
        for item in data["facts"]:
            fact = self._parse_fact_item(item, drops)
            if fact is not None:
                facts.append(fact)

        if len(facts) > self._max_facts:
            drops["over_limit"] += len(facts) - self._max_facts
            facts = facts[: self._max_facts]

        logger.debug(
            "fact_extraction_stats",
            extra={
                "fact.accepted_count": len(facts),
                "fact.dropped": dict(drops),
            },
        )
        return facts

    def _parse_fact_item(self, item: Any, drops: Counter[str]) -> ExtractedFact | None:
        if not isinstance(item, dict) or not isinstance(item.get("fact"), str):
            drops["invalid"] += 1
            return None

        fact = item["fact"].strip()
        if len(fact) < MIN_FACT_LENGTH:
            drops["too_short"] += 1
            return None
        if len(fact) > MAX_FACT_LENGTH:
            drops["too_long"] += 1
            return None

        tags = item.get("tags")
        if not isinstance(tags, list):
            tags = []

        return ExtractedFact(
            fact=fact,
            importance=_score(item.get("importance")),
            confidence=_score(item.get("confidence")),
            tags=[str(t) for t in tags if t],
        )
