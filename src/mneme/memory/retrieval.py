"""Retrieval pipeline: similarity search, LLM rerank, and answer synthesis."""

import asyncio
import json
import logging
import math
import re
from dataclasses import dataclass, replace
from typing import Any

from mneme.errors import EmptyQueryError
from mneme.llm.base import LLMProvider, complete_text
from mneme.llm.retry import RetryConfig
from mneme.memory.embeddings import EmbeddingEngine
from mneme.memory.prompts import (
    ANSWER_SYSTEM_PROMPT,
    ANSWER_USER_PROMPT,
    NO_MEMORIES_LINE,
    RERANK_SYSTEM_PROMPT,
    RERANK_USER_PROMPT,
)
from mneme.memory.types import (
    AskResult,
    AskScope,
    RerankOptions,
    SearchHit,
    SearchOptions,
)

logger = logging.getLogger(__name__)

NO_PAYLOAD_TEXT = "No payload text available"

# First decimal literal in a completion: "0.8", ".75", "1", "Score: 0.9/1"
_FLOAT_LITERAL = re.compile(r"[-+]?(?:\d+\.?\d*|\.\d+)(?:[eE][-+]?\d+)?")


@dataclass(frozen=True)
class PayloadFieldExtractor:
    """Reads one string field of a vector payload as display text."""

    key: str

    def extract(self, payload: dict[str, Any]) -> str | None:
        value = payload.get(self.key)
        if isinstance(value, str) and value.strip():
            return value
        return None


PAYLOAD_TEXT_EXTRACTORS: tuple[PayloadFieldExtractor, ...] = (
    PayloadFieldExtractor("fact"),
    PayloadFieldExtractor("data"),
    PayloadFieldExtractor("text"),
    PayloadFieldExtractor("content"),
    PayloadFieldExtractor("summary"),
)


def extract_payload_text(payload: dict[str, Any] | None) -> str:
    """Pick human-readable text for a hit from its payload.

    Tries each extractor in order; falls back to the payload rendered as
    JSON so a hit is never shown without text.
    """
    payload = payload or {}
    for extractor in PAYLOAD_TEXT_EXTRACTORS:
        if (text := extractor.extract(payload)) is not None:
            return text
    if not payload:
        return NO_PAYLOAD_TEXT
    return json.dumps(payload, default=str)


def parse_relevance_score(text: str) -> float | None:
    """Read a relevance score from free-form completion text.

    Takes the first numeric literal. Returns None when there is none, or when
    it is not a finite number in [0, 1]; callers rank None below every score.
    """
    match = _FLOAT_LITERAL.search(text or "")
    if match is None:
        return None
    try:
        score = float(match.group(0))
    except ValueError:
        return None
    if not math.isfinite(score) or not 0.0 <= score <= 1.0:
        return None
    return score


def format_hits_as_bullets(hits: list[SearchHit]) -> str:
    """Render hits as ``- [n] (score: 0.000) text`` lines for the answer prompt."""
    if not hits:
        return NO_MEMORIES_LINE

    lines = []
    for i, hit in enumerate(hits, start=1):
        chosen = hit.rerank_score if hit.rerank_score is not None else hit.score
        finite = chosen is not None and math.isfinite(chosen)
        score = f"{chosen:.3f}" if finite else "n/a"
        lines.append(f"- [{i}] (score: {score}) {hit.text}")
    return "\n".join(lines)


def _rank_key(hit: SearchHit) -> float:
    return hit.rerank_score if hit.rerank_score is not None else -1.0


class RetrievalPipeline:
    """Search memories, optionally rerank with an LLM, and synthesize answers."""

    def __init__(
        self,
        embeddings: EmbeddingEngine,
        llm: LLMProvider,
        *,
        answer_model: str | None = None,
        rerank_llm: LLMProvider | None = None,
        rerank_defaults: RerankOptions | None = None,
        default_limit: int = 10,
        default_score_threshold: float = 0.7,
        timeout: float | None = None,
        retry: RetryConfig | None = None,
    ):
        """Initialize retrieval pipeline.

        Args:
            embeddings: Embedding engine used for similarity search.
            llm: Completion provider for answer synthesis.
            answer_model: Answer model (defaults to provider default).
            rerank_llm: Completion provider for rerank scoring (defaults to llm).
            rerank_defaults: Rerank settings used when a call leaves them unset.
            default_limit: Search limit when a call does not give one.
            default_score_threshold: Similarity floor when a call does not give one.
            timeout: Deadline per completion attempt, in seconds.
            retry: Retry policy for transient provider failures.
        """
        self._embeddings = embeddings
        self._llm = llm
        self._answer_model = answer_model
        self._rerank_llm = rerank_llm or llm
        defaults = rerank_defaults or RerankOptions()
        self._rerank_defaults = RerankOptions(
            enabled=bool(defaults.enabled),
            top_k=defaults.top_k or 0,
            model=defaults.model,
        )
        self._default_limit = default_limit
        self._default_score_threshold = default_score_threshold
        self._timeout = timeout
        self._retry = retry

    @property
    def answer_model(self) -> str:
        return self._answer_model or self._llm.default_model

    def _resolve_rerank(self, options: RerankOptions | None) -> RerankOptions:
        options = options or RerankOptions()
        return RerankOptions(
            enabled=options.enabled
            if options.enabled is not None
            else self._rerank_defaults.enabled,
            top_k=options.top_k
            if options.top_k is not None
            else self._rerank_defaults.top_k,
            model=options.model or self._rerank_defaults.model,
        )

    def search_options(
        self,
        *,
        owner_id: int | None = None,
        agent_id: str | None = None,
        run_id: str | None = None,
        limit: int | None = None,
        score_threshold: float | None = None,
        filter: dict[str, Any] | None = None,
    ) -> SearchOptions:
        """Build SearchOptions, filling unset bounds from configured defaults."""
        return SearchOptions(
            limit=limit if limit is not None else self._default_limit,
            score_threshold=score_threshold
            if score_threshold is not None
            else self._default_score_threshold,
            owner_id=owner_id,
            agent_id=agent_id,
            run_id=run_id,
            filter=filter,
        )

    async def search(self, query: str, scope: SearchOptions) -> list[SearchHit]:
        """Similarity search with display text for each hit.

        Raises:
            EmptyQueryError: If query is blank.
            ValidationError: If scope bounds are invalid or no scope is given.
        """
        if not query or not query.strip():
            raise EmptyQueryError("Query is required for memory search")

        results = await self._embeddings.search_similar(query, scope)
        return [
            SearchHit(
                id=result.id,
                score=result.score,
                text=extract_payload_text(result.payload),
                payload=result.payload,
            )
            for result in results
        ]

    async def _score_hit(
        self, query: str, hit: SearchHit, model: str | None
    ) -> float | None:
        text = await complete_text(
            self._rerank_llm,
            system=RERANK_SYSTEM_PROMPT,
            user=RERANK_USER_PROMPT.format(query=query, document=hit.text),
            temperature=0.0,
            model=model,
            max_tokens=16,
            timeout=self._timeout,
            retry=self._retry,
            operation="rerank",
        )
        return parse_relevance_score(text.strip())

    async def rerank(
        self,
        query: str,
        hits: list[SearchHit],
        options: RerankOptions | None = None,
    ) -> list[SearchHit]:
        """Reorder hits by LLM-judged relevance.

        Identity when reranking is disabled or there are no hits. A hit
        whose scoring call fails, or whose reply has no usable score, keeps
        no rerank score and sinks below every scored hit.

        With top_k set, scored hits take the slots first. Unscored hits are
        never ranked against scored ones; they only fill slots left over
        when fewer than top_k hits were scored, in search order.
        """
        resolved = self._resolve_rerank(options)
        if not resolved.enabled or not hits:
            return hits

        outcomes = await asyncio.gather(
            *(self._score_hit(query, hit, resolved.model) for hit in hits),
            return_exceptions=True,
        )

        scored: list[SearchHit] = []
        failures = 0
        for hit, outcome in zip(hits, outcomes, strict=True):
            if isinstance(outcome, BaseException):
                if not isinstance(outcome, Exception):
                    raise outcome
                failures += 1
                logger.warning(
                    "rerank_score_failed",
                    extra={
                        "hit_id": hit.id,
                        "error.type": type(outcome).__name__,
                        "error.message": str(outcome),
                    },
                )
                outcome = None
            scored.append(replace(hit, rerank_score=outcome))

        # sorted() is stable with reverse=True, so ties keep search order
        ranked = sorted(scored, key=_rank_key, reverse=True)

        top_k = resolved.top_k or 0
        if top_k > 0:
            ranked = ranked[: min(top_k, len(ranked))]

        logger.debug(
            "rerank_complete",
            extra={
                "rerank.input": len(hits),
                "rerank.output": len(ranked),
                "rerank.failed": failures,
            },
        )
        return ranked

    async def ask(self, question: str, scope: AskScope) -> AskResult:
        """Answer a question from the caller's memories.

        Raises:
            EmptyQueryError: If the question, or an explicit search query, is blank.
        """
        if not question or not question.strip():
            raise EmptyQueryError("Question is required")
        if scope.query is not None and not scope.query.strip():
            raise EmptyQueryError("Search query must not be blank")

        query = scope.query or question
        hits = await self.search(
            query,
            self.search_options(
                owner_id=scope.owner_id,
                agent_id=scope.agent_id,
                run_id=scope.run_id,
                limit=scope.limit,
                score_threshold=scope.score_threshold,
            ),
        )

        rerank = self._resolve_rerank(scope.rerank)
        ranked = await self.rerank(query, hits, rerank)

        answer = await complete_text(
            self._llm,
            system=ANSWER_SYSTEM_PROMPT,
            user=ANSWER_USER_PROMPT.format(
                memories=format_hits_as_bullets(ranked), question=question
            ),
            temperature=0.2,
            model=self._answer_model,
            timeout=self._timeout,
            retry=self._retry,
            operation="answer",
        )

        logger.info(
            "memory_answer",
            extra={"hits.count": len(ranked), "rerank.enabled": rerank.enabled},
        )
        return AskResult(
            answer=answer.strip(),
            hits=ranked,
            model=self.answer_model,
            rerank_model=(rerank.model or self._rerank_llm.default_model)
            if rerank.enabled
            else None,
        )
