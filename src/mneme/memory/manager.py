"""Memory engine: the lifecycle of memory rows and their vectors.

A memory moves through: created -> (fact-embedded | embed-skipped) ->
updated* -> deleted. Rows live in the relational store; vectors are
written only through the EmbeddingEngine.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from mneme.errors import DuplicateMemoryError, NotFoundError, ValidationError
from mneme.memory.hashing import hash_content
from mneme.memory.types import (
    AddMemoriesInput,
    AddMemoriesResult,
    CreateMemoryInput,
    CreateResult,
    EmbeddingResult,
    ExtractedFact,
    UpdateMemoryInput,
    fact_vector_id,
    isoformat,
    memory_vector_id,
    parse_datetime,
)

if TYPE_CHECKING:
    from mneme.db.models import Memory
    from mneme.memory.embeddings import EmbeddingEngine
    from mneme.memory.extractor import FactExtractor
    from mneme.memory.store import MemoryStore

logger = logging.getLogger(__name__)

NO_FACTS_NOTE = "No facts extracted; embedding skipped"
NO_MESSAGES_NOTE = "No storable messages"


def _to_utc(value: datetime | str | None) -> datetime:
    parsed = parse_datetime(value)
    if parsed is None:
        return datetime.now(UTC)
    return parsed.astimezone(UTC)


def _compact(values: dict[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in values.items() if v is not None}


def _duplicate_result(memory: Memory) -> EmbeddingResult:
    return EmbeddingResult(
        vector_id=memory_vector_id(memory.id),
        hash=memory.content_hash,
        success=True,
        is_duplicate=True,
        existing_memory_id=memory.id,
    )


def _mirrored_payload(before: Memory, after: Memory) -> dict[str, Any]:
    """Payload keys whose row values changed between two versions of a memory."""
    mirrored = {
        "ownerId": (before.owner_id, after.owner_id),
        "source": (before.source, after.source),
        "sourceId": (before.source_id, after.source_id),
        "timestamp": (isoformat(before.timestamp), isoformat(after.timestamp)),
    }
    return {key: new for key, (old, new) in mirrored.items() if old != new}


class MemoryEngine:
    """Create, update, delete, and list memories with deduplication.

    Creating the same content twice in the same (owner, agent, run) scope
    returns the existing memory without calling the extractor or the
    embedding provider.
    """

    def __init__(
        self,
        store: MemoryStore,
        embeddings: EmbeddingEngine,
        extractor: FactExtractor,
        *,
        reembed_on_update: bool = True,
    ) -> None:
        """Initialize memory engine.

        Args:
            store: Relational store for memory rows.
            embeddings: Embedding engine that owns all vector writes.
            extractor: Fact extractor run on new content.
            reembed_on_update: Rebuild a memory's vectors when its content changes.
        """
        self._store = store
        self._embeddings = embeddings
        self._extractor = extractor
        self._reembed_on_update = reembed_on_update

    @property
    def embeddings(self) -> EmbeddingEngine:
        return self._embeddings

    async def _insert_or_existing(
        self, fields: dict[str, Any]
    ) -> tuple[Memory, bool]:
        """Insert a row, resolving a concurrent identical insert to the winner."""
        try:
            return await self._store.insert(**fields), False
        except DuplicateMemoryError:
            existing = await self._store.find_duplicate(
                fields["content_hash"],
                fields["owner_id"],
                fields.get("agent_id"),
                fields.get("run_id"),
            )
            if existing is None:
                raise
            logger.info(
                "memory_insert_race_resolved",
                extra={"memory_id": existing.id, "owner_id": fields["owner_id"]},
            )
            return existing, True

    def _fact_payload(
        self,
        memory: Memory,
        fact: ExtractedFact,
        index: int,
        *,
        role: str | None,
        importance: float | None,
        confidence: float | None,
    ) -> dict[str, Any]:
        return _compact(
            {
                "memoryId": memory.id,
                "ownerId": memory.owner_id,
                "agentId": memory.agent_id,
                "runId": memory.run_id,
                "role": role,
                "source": memory.source,
                "sourceId": memory.source_id,
                "timestamp": isoformat(memory.timestamp),
                "data": fact.fact,
                "hash": memory.content_hash,
                "factIndex": index,
                "fact": fact.fact,
                "tags": fact.tags or None,
                "importance": fact.importance
                if fact.importance is not None
                else (importance if importance is not None else 0.0),
                "confidence": fact.confidence
                if fact.confidence is not None
                else (confidence if confidence is not None else 0.0),
            }
        )

    async def _embed_facts(
        self,
        memory: Memory,
        *,
        role: str | None,
        summary: str | None,
    ) -> tuple[Memory, list[EmbeddingResult], str | None]:
        """Extract facts from a stored memory and embed each one concurrently."""
        facts = await self._extractor.extract(
            memory.content,
            title=memory.title,
            source=memory.source,
            timestamp=isoformat(memory.timestamp),
        )

        if not facts:
            memory = await self._store.mark_embedded(memory.id)
            logger.info(
                "memory_embed_skipped",
                extra={"memory_id": memory.id, "reason": "no_facts"},
            )
            return memory, [], NO_FACTS_NOTE

        results = await asyncio.gather(
            *(
                self._embeddings.generate_and_store(
                    fact.fact,
                    fact_vector_id(memory.id, i),
                    self._fact_payload(
                        memory,
                        fact,
                        i,
                        role=role,
                        importance=memory.importance,
                        confidence=memory.confidence,
                    ),
                    memory.owner_id,
                )
                for i, fact in enumerate(facts)
            )
        )

        failed = sum(1 for r in results if not r.success)
        if failed:
            logger.warning(
                "fact_embedding_partial_failure",
                extra={
                    "memory_id": memory.id,
                    "facts.total": len(results),
                    "facts.failed": failed,
                },
            )
        await self._embeddings.persist()

        memory = await self._store.mark_embedded(
            memory.id, summary=summary or facts[0].fact
        )
        return memory, list(results), None

    async def create(self, data: CreateMemoryInput) -> CreateResult:
        """Store content as a memory and embed its extracted facts.

        Raises:
            ValidationError: If owner_id is missing.
            EmptyInputError: If content is blank.
            ProviderError: If fact extraction fails.
        """
        if data.owner_id is None:
            raise ValidationError("owner_id is required to store memories")

        content_hash = hash_content(data.content)

        existing = await self._store.find_duplicate(
            content_hash, data.owner_id, data.agent_id, data.run_id
        )
        if existing is not None:
            logger.info(
                "memory_duplicate",
                extra={"memory_id": existing.id, "owner_id": data.owner_id},
            )
            return CreateResult(
                memory=existing,
                is_duplicate=True,
                embedding_results=[_duplicate_result(existing)],
            )

        attribute = {
            **data.attribute,
            **_compact(
                {"agentId": data.agent_id, "runId": data.run_id, "role": data.role}
            ),
        }
        memory, raced = await self._insert_or_existing(
            {
                "owner_id": data.owner_id,
                "agent_id": data.agent_id,
                "run_id": data.run_id,
                "source": data.source,
                "source_id": data.source_id,
                "timestamp": _to_utc(data.timestamp),
                "content": data.content,
                "content_url": data.content_url,
                "title": data.title,
                "origin": data.origin,
                "tags": list(data.tags),
                "category": list(data.category),
                "attribute": attribute,
                "summary": data.summary,
                "type": data.type or "text",
                "importance": data.importance if data.importance is not None else 0.0,
                "confidence": data.confidence if data.confidence is not None else 0.0,
                "content_hash": content_hash,
                "embedding_ref": 0,
            }
        )
        if raced:
            return CreateResult(
                memory=memory,
                is_duplicate=True,
                embedding_results=[_duplicate_result(memory)],
            )

        memory, results, note = await self._embed_facts(
            memory, role=data.role, summary=data.summary
        )

        logger.info(
            "memory_created",
            extra={
                "memory_id": memory.id,
                "owner_id": memory.owner_id,
                "facts.count": len(results),
            },
        )
        return CreateResult(
            memory=memory, is_duplicate=False, embedding_results=results, note=note
        )

    async def update(self, data: UpdateMemoryInput) -> Memory:
        """Apply a partial update.

        When content changes its hash is recomputed. With re-embedding
        enabled the memory's vectors are dropped and rebuilt from the new
        content; otherwise the stale vectors are left in place and logged.
        Row fields mirrored into vector payloads (owner, source, timestamp)
        are copied onto the existing vectors whenever they are not rebuilt.

        The row is reset to not-embedded in the same write as a content
        change, so a failed rebuild leaves it reading as unembedded and
        resubmitting the same content retries the rebuild.

        Raises:
            ValidationError: If id is missing.
            NotFoundError: If the memory does not exist.
            EmptyInputError: If the new content is blank.
            ProviderError: If fact extraction for new content fails.
        """
        if not data.id:
            raise ValidationError("Memory id is required")

        current = await self._store.get(data.id)
        if current is None:
            raise NotFoundError(f"Memory {data.id} not found")

        changes = data.changes()
        content_changed = (
            "content" in changes and changes["content"] != current.content
        )
        if "content" in changes:
            changes["content_hash"] = hash_content(changes["content"])
        if "timestamp" in changes:
            changes["timestamp"] = _to_utc(changes["timestamp"])

        rebuild = self._reembed_on_update and "content" in changes and (
            content_changed or not current.embedding_ref
        )
        if rebuild:
            changes["embedding_ref"] = 0

        updated = await self._store.update(data.id, changes)
        if updated is None:
            raise NotFoundError(f"Memory {data.id} not found")

        if rebuild:
            await self._embeddings.delete_memory_vectors(updated.id)
            await self._embeddings.persist()
            role = (updated.attribute or {}).get("role")
            updated, _, _ = await self._embed_facts(
                updated, role=role, summary=data.summary
            )
        else:
            if content_changed:
                logger.warning(
                    "memory_vectors_stale",
                    extra={"memory_id": updated.id},
                )
            mirrored = _mirrored_payload(current, updated)
            if mirrored:
                await self._embeddings.update_memory_payload(updated.id, mirrored)
                await self._embeddings.persist()

        logger.info(
            "memory_updated",
            extra={
                "memory_id": updated.id,
                "fields": sorted(changes),
                "reembedded": rebuild,
            },
        )
        return updated

    async def delete(self, memory_id: int) -> Memory:
        """Delete a memory and every vector that references it.

        Raises:
            ValidationError: If memory_id is missing.
            NotFoundError: If the memory does not exist.
        """
        if not memory_id:
            raise ValidationError("Memory id is required")

        memory = await self._store.get(memory_id)
        if memory is None:
            raise NotFoundError(f"Memory {memory_id} not found")

        removed = await self._embeddings.delete_memory_vectors(memory_id)
        await self._store.delete(memory_id)
        await self._embeddings.persist()

        logger.info(
            "memory_deleted",
            extra={"memory_id": memory_id, "vectors.removed": removed},
        )
        return memory

    async def get(self, memory_id: int) -> Memory | None:
        if not memory_id:
            raise ValidationError("Memory id is required")
        return await self._store.get(memory_id)

    async def list_by_owner(self, owner_id: int) -> list[Memory]:
        """List an owner's memories, newest first."""
        if not owner_id:
            raise ValidationError("owner_id is required")
        return await self._store.list_by_owner(owner_id)

    async def _store_raw_message(
        self,
        batch: AddMemoriesInput,
        role: str,
        content: str,
        attribute: dict[str, Any],
    ) -> tuple[Memory, EmbeddingResult]:
        """Store one message verbatim and embed it under the memory's own id."""
        assert batch.owner_id is not None
        content_hash = hash_content(content)

        existing = await self._store.find_duplicate(
            content_hash, batch.owner_id, batch.agent_id, batch.run_id
        )
        if existing is not None:
            return existing, _duplicate_result(existing)

        memory, raced = await self._insert_or_existing(
            {
                "owner_id": batch.owner_id,
                "agent_id": batch.agent_id,
                "run_id": batch.run_id,
                "source": batch.source,
                "source_id": batch.source_id,
                "timestamp": _to_utc(batch.timestamp),
                "content": content,
                "content_url": batch.content_url,
                "title": batch.title,
                "origin": batch.origin,
                "tags": list(batch.tags),
                "category": list(batch.category),
                "attribute": attribute,
                "summary": batch.summary,
                "type": batch.type or "text",
                "importance": batch.importance if batch.importance is not None else 0.0,
                "confidence": batch.confidence if batch.confidence is not None else 0.0,
                "content_hash": content_hash,
                "embedding_ref": 0,
            }
        )
        if raced:
            return memory, _duplicate_result(memory)

        result = await self._embeddings.generate_and_store(
            content,
            memory_vector_id(memory.id),
            _compact(
                {
                    "memoryId": memory.id,
                    "ownerId": memory.owner_id,
                    "agentId": memory.agent_id,
                    "runId": memory.run_id,
                    "role": role,
                    "source": memory.source,
                    "sourceId": memory.source_id,
                    "timestamp": isoformat(memory.timestamp),
                    "data": content,
                    "hash": content_hash,
                    "metadata": batch.metadata,
                }
            ),
            memory.owner_id,
        )
        await self._embeddings.persist()
        memory = await self._store.mark_embedded(memory.id)
        return memory, result

    async def add_memories(self, batch: AddMemoriesInput) -> AddMemoriesResult:
        """Store each non-system message of a conversation as a memory.

        Raises:
            ValidationError: If owner_id is missing.
        """
        if batch.owner_id is None:
            raise ValidationError("owner_id is required to store memories")

        messages = [
            m
            for m in batch.messages
            if m.content and m.content.strip() and m.role != "system"
        ]
        if not messages:
            return AddMemoriesResult(note=NO_MESSAGES_NOTE)

        result = AddMemoriesResult()
        for message in messages:
            attribute = {
                **batch.attribute,
                **_compact(
                    {
                        "agentId": batch.agent_id,
                        "runId": batch.run_id,
                        "role": message.role,
                        "metadata": batch.metadata,
                    }
                ),
            }

            if batch.infer:
                created = await self.create(
                    CreateMemoryInput(
                        owner_id=batch.owner_id,
                        content=message.content,
                        source=batch.source,
                        source_id=batch.source_id,
                        timestamp=batch.timestamp,
                        content_url=batch.content_url,
                        title=batch.title,
                        origin=batch.origin,
                        tags=list(batch.tags),
                        category=list(batch.category),
                        attribute=attribute,
                        summary=batch.summary,
                        type=batch.type,
                        importance=batch.importance,
                        confidence=batch.confidence,
                        agent_id=batch.agent_id,
                        run_id=batch.run_id,
                        role=message.role,
                    )
                )
                result.memories.append(created.memory)
                result.results.extend(created.embedding_results)
            else:
                memory, embedded = await self._store_raw_message(
                    batch, message.role, message.content, attribute
                )
                result.memories.append(memory)
                result.results.append(embedded)

        logger.info(
            "memories_added",
            extra={
                "owner_id": batch.owner_id,
                "messages.count": len(messages),
                "infer": batch.infer,
            },
        )
        return result

    # Engine surface names used by the HTTP layer and ingestion clients
    create_memory = create
    update_memory = update
    delete_memory = delete
    get_memory = get
    get_memories_by_owner = list_by_owner
