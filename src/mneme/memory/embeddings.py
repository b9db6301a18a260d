"""Embedding generation, storage, and scoped similarity search."""

import asyncio
import logging
from collections.abc import Awaitable
from datetime import UTC, datetime
from typing import Any

from mneme.errors import (
    DimensionMismatchError,
    EmbeddingError,
    InfrastructureError,
    MnemeError,
    ScopeRequiredError,
    ValidationError,
    translate_provider_error,
)
from mneme.llm.base import LLMProvider
from mneme.llm.retry import RetryConfig, with_retry
from mneme.memory.hashing import hash_content
from mneme.memory.store import MemoryStore
from mneme.memory.types import (
    BatchEmbeddingItem,
    EmbeddingResult,
    ScoredVector,
    SearchOptions,
    memory_vector_id,
)
from mneme.memory.vectors import VectorIndex
from mneme.timeouts import bounded

logger = logging.getLogger(__name__)

DEFAULT_MAX_TEXT_LENGTH = 32000
DEFAULT_BATCH_LIMIT = 2048


class EmbeddingEngine:
    """Turn text into stored vectors, exactly once per distinct content.

    Owns every write to the vector index. Callers hand it text plus a vector
    id and payload; it validates, deduplicates by content hash, calls the
    embedding provider, and persists the vector.
    """

    def __init__(
        self,
        provider: LLMProvider,
        index: VectorIndex,
        store: MemoryStore,
        *,
        dimensions: int,
        model: str | None = None,
        max_text_length: int = DEFAULT_MAX_TEXT_LENGTH,
        batch_limit: int = DEFAULT_BATCH_LIMIT,
        provider_timeout: float | None = None,
        index_timeout: float | None = None,
        retry: RetryConfig | None = None,
    ):
        """Initialize embedding engine.

        Args:
            provider: Embedding provider.
            index: Vector index.
            store: Memory store, used for the dedup lookup.
            dimensions: Length D of every stored vector.
            model: Embedding model name (defaults to provider default).
            max_text_length: Longest accepted input, in characters.
            batch_limit: Most texts accepted by one batch call.
            provider_timeout: Deadline per embedding attempt, in seconds.
            index_timeout: Deadline per vector index call, in seconds.
            retry: Retry policy for transient provider failures.
        """
        self._provider = provider
        self._index = index
        self._store = store
        self.dimensions = dimensions
        self.model = model
        self._max_text_length = max_text_length
        self._batch_limit = batch_limit
        self._provider_timeout = provider_timeout
        self._index_timeout = index_timeout
        self._retry = retry or RetryConfig(enabled=False)

    @property
    def index(self) -> VectorIndex:
        return self._index

    def _validate_text(self, text: str) -> None:
        if not isinstance(text, str) or not text.strip():
            raise ValidationError("Text cannot be empty")
        if len(text) > self._max_text_length:
            raise ValidationError(
                f"Text exceeds maximum length of {self._max_text_length} characters"
            )

    async def _index_call[T](self, operation: str, awaitable: Awaitable[T]) -> T:
        try:
            return await bounded(awaitable, self._index_timeout, f"vector {operation}")
        except MnemeError:
            raise
        except Exception as e:
            raise InfrastructureError(f"Failed to {operation} embedding: {e}") from e

    async def generate_embedding(self, text: str) -> list[float]:
        """Embed one text.

        Raises:
            ValidationError: If text is blank or too long.
            RateLimitError: If the provider is throttling.
            QuotaError: If the provider rejected the key or quota is exhausted.
            TimeoutError: If the provider call exceeded its deadline.
            DimensionMismatchError: If the provider returned a wrong-size vector.
            EmbeddingError: For any other provider failure.
        """
        self._validate_text(text)

        async def _attempt() -> list[list[float]]:
            return await bounded(
                self._provider.embed(
                    [text.strip()], model=self.model, dimensions=self.dimensions
                ),
                self._provider_timeout,
                "embedding request",
            )

        try:
            vectors = await with_retry(_attempt, self._retry, "embedding")
        except Exception as e:
            translated = translate_provider_error(e, EmbeddingError)
            if translated is e:
                raise
            raise translated from e

        if not vectors or not vectors[0]:
            raise DimensionMismatchError(self.dimensions, 0)

        embedding = list(vectors[0])
        if len(embedding) != self.dimensions:
            raise DimensionMismatchError(self.dimensions, len(embedding))
        return embedding

    async def generate_embeddings_batch(self, texts: list[str]) -> list[BatchEmbeddingItem]:
        """Embed many texts concurrently.

        A failing item does not fail the batch; it comes back with ``error``
        set and an empty embedding.

        Raises:
            ValidationError: If texts is empty or longer than the batch limit.
        """
        if not texts:
            raise ValidationError("Texts must not be empty")
        if len(texts) > self._batch_limit:
            raise ValidationError(
                f"Batch size cannot exceed {self._batch_limit} texts"
            )

        results = await asyncio.gather(
            *(self.generate_embedding(text) for text in texts),
            return_exceptions=True,
        )

        items: list[BatchEmbeddingItem] = []
        for text, result in zip(texts, results, strict=True):
            if isinstance(result, BaseException):
                if not isinstance(result, Exception):
                    raise result
                items.append(
                    BatchEmbeddingItem(text=text, error=str(result) or "Unknown error")
                )
            else:
                items.append(BatchEmbeddingItem(text=text, embedding=result))

        failed = sum(1 for item in items if not item.success)
        if failed:
            logger.warning(
                "embedding_batch_partial_failure",
                extra={"batch.size": len(items), "batch.failed": failed},
            )
        return items

    async def store_embedding(
        self, vector_id: str, embedding: list[float], payload: dict[str, Any]
    ) -> bool:
        """Upsert a vector, stamping ``createdAt`` into its payload.

        Raises:
            ValidationError: If vector_id is empty or payload is not a dict.
            DimensionMismatchError: If embedding is empty or not of length D.
            InfrastructureError: If the vector index call fails.
        """
        if not vector_id or not isinstance(vector_id, str):
            raise ValidationError("Vector ID must not be empty")
        if not embedding or len(embedding) != self.dimensions:
            raise DimensionMismatchError(self.dimensions, len(embedding or []))
        if not isinstance(payload, dict):
            raise ValidationError("Payload must be a dict")

        stamped = {**payload, "createdAt": datetime.now(UTC).isoformat()}
        await self._index_call(
            "store", self._index.upsert(vector_id, list(embedding), stamped)
        )
        logger.debug("embedding_stored", extra={"vector_id": vector_id})
        return True

    async def _find_existing_embedding(
        self, content_hash: str, owner_id: int | None
    ) -> tuple[int, str, list[float]] | None:
        """Look up an already-embedded memory holding this content.

        Lookup failures are logged and treated as no match; dedup is an
        optimization, never a reason to fail an ingest.
        """
        try:
            existing = await self._store.find_by_hash(content_hash, owner_id)
            if existing is None or not existing.embedding_ref:
                return None

            vector_id = memory_vector_id(existing.id)
            record = await self._index_call(
                "retrieve", self._index.retrieve(vector_id, with_vector=True)
            )
        except MnemeError as e:
            logger.warning(
                "embedding_dedup_lookup_failed",
                extra={"content_hash": content_hash, "error.message": str(e)},
            )
            return None

        if record is None or record.vector is None:
            return None
        if len(record.vector) != self.dimensions:
            return None
        return existing.id, vector_id, record.vector

    async def generate_and_store(
        self,
        text: str,
        vector_id: str,
        payload: dict[str, Any],
        owner_id: int | None = None,
        skip_dedup: bool = False,
    ) -> EmbeddingResult:
        """Embed text and store it under vector_id, unless already embedded.

        Never raises: any failure comes back as ``success=False`` with the
        error message.

        Args:
            text: Text to embed.
            vector_id: Id to store the vector under.
            payload: Payload to store with the vector; ``contentHash`` is added.
            owner_id: Owner to scope the dedup lookup to.
            skip_dedup: Always embed, even if the content is already stored.
        """
        try:
            content_hash = hash_content(text)

            if not skip_dedup:
                existing = await self._find_existing_embedding(content_hash, owner_id)
                if existing is not None:
                    memory_id, existing_vector_id, vector = existing
                    logger.debug(
                        "embedding_duplicate",
                        extra={
                            "vector_id": existing_vector_id,
                            "memory_id": memory_id,
                        },
                    )
                    return EmbeddingResult(
                        embedding=vector,
                        vector_id=existing_vector_id,
                        hash=content_hash,
                        success=True,
                        is_duplicate=True,
                        existing_memory_id=memory_id,
                    )

            embedding = await self.generate_embedding(text)
            await self.store_embedding(
                vector_id, embedding, {**payload, "contentHash": content_hash}
            )
            return EmbeddingResult(
                embedding=embedding,
                vector_id=vector_id,
                hash=content_hash,
                success=True,
            )
        except Exception as e:
            logger.warning(
                "embedding_failed",
                extra={
                    "vector_id": vector_id,
                    "error.type": type(e).__name__,
                    "error.message": str(e),
                },
            )
            return EmbeddingResult(
                vector_id=vector_id, hash="", success=False, error=str(e)
            )

    async def search_similar(
        self, query_text: str, options: SearchOptions | None = None
    ) -> list[ScoredVector]:
        """Find stored vectors similar to the query within a scope.

        Raises:
            ValidationError: If limit is outside 1..100 or score_threshold
                outside 0..1.
            ScopeRequiredError: If no owner, agent, or run scope is given.
        """
        options = options or SearchOptions()

        if not 1 <= options.limit <= 100:
            raise ValidationError("Limit must be between 1 and 100")
        if not 0.0 <= options.score_threshold <= 1.0:
            raise ValidationError("Score threshold must be between 0 and 1")
        if not options.has_scope:
            raise ScopeRequiredError(
                "At least one of owner_id, agent_id, or run_id is required for scoped search"
            )

        query_embedding = await self.generate_embedding(query_text)
        results = await self._index_call(
            "search",
            self._index.search(
                query_embedding,
                limit=options.limit,
                score_threshold=options.score_threshold,
                filter=options.payload_filter(),
            ),
        )
        logger.debug(
            "similarity_search",
            extra={"search.limit": options.limit, "search.hits": len(results)},
        )
        return sorted(results, key=lambda r: r.score, reverse=True)

    async def delete_embedding(self, vector_id: str) -> bool:
        if not vector_id or not isinstance(vector_id, str):
            raise ValidationError("Vector ID must not be empty")
        await self._index_call("delete", self._index.delete([vector_id]))
        return True

    async def update_embedding_payload(
        self, vector_id: str, payload: dict[str, Any]
    ) -> bool:
        """Merge payload keys into a stored vector's payload."""
        if not vector_id or not isinstance(vector_id, str):
            raise ValidationError("Vector ID must not be empty")
        await self._index_call(
            "update", self._index.set_payload([vector_id], payload)
        )
        return True

    async def update_memory_payload(
        self, memory_id: int, payload: dict[str, Any]
    ) -> int:
        """Merge payload keys into every vector that belongs to a memory.

        Returns:
            Number of vectors updated.
        """
        if not payload:
            return 0
        updated = await self._index_call(
            "update",
            self._index.set_payload_by_filter({"memoryId": memory_id}, payload),
        )
        logger.debug(
            "memory_vectors_payload_updated",
            extra={
                "memory_id": memory_id,
                "vectors.updated": updated,
                "fields": sorted(payload),
            },
        )
        return updated

    async def persist(self) -> None:
        """Write the vector index to disk so committed rows never outlive it.

        A failed save is logged; the in-memory index stays authoritative and
        the next successful save catches the file up.
        """
        try:
            await self._index_call("save", self._index.save())
        except MnemeError:
            logger.warning("vector_index_save_failed", exc_info=True)

    async def delete_memory_vectors(self, memory_id: int) -> int:
        """Delete every vector (facts and raw) that belongs to a memory.

        Returns:
            Number of vectors removed.
        """
        removed = await self._index_call(
            "delete", self._index.delete_by_filter({"memoryId": memory_id})
        )
        logger.debug(
            "memory_vectors_deleted",
            extra={"memory_id": memory_id, "vectors.removed": removed},
        )
        return removed
