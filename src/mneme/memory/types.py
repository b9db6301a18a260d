"""Public types for the memory subsystem."""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Literal

from mneme.db.models import Memory


def parse_datetime(value: datetime | str | None) -> datetime | None:
    """Parse an ISO datetime string, handling Z suffix and ensuring timezone awareness."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        s = value[:-1] + "+00:00" if value.endswith("Z") else value
        dt = datetime.fromisoformat(s)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return dt


def isoformat(value: datetime | None) -> str | None:
    """Render a stored datetime as ISO 8601 in UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.isoformat()


def memory_vector_id(memory_id: int) -> str:
    """Vector id for a memory's raw-content embedding."""
    return f"memory_{memory_id}"


def fact_vector_id(memory_id: int, fact_index: int) -> str:
    """Vector id for one extracted fact of a memory."""
    return f"memory_{memory_id}_fact_{fact_index}"


def memory_to_dict(memory: Memory) -> dict[str, Any]:
    """Serialize a Memory row to a JSON-compatible dict."""
    return {
        "id": memory.id,
        "owner_id": memory.owner_id,
        "agent_id": memory.agent_id,
        "run_id": memory.run_id,
        "source": memory.source,
        "source_id": memory.source_id,
        "timestamp": isoformat(memory.timestamp),
        "content": memory.content,
        "content_url": memory.content_url,
        "title": memory.title,
        "origin": memory.origin,
        "tags": list(memory.tags or []),
        "category": list(memory.category or []),
        "attribute": memory.attribute or {},
        "summary": memory.summary,
        "type": memory.type,
        "importance": memory.importance,
        "confidence": memory.confidence,
        "content_hash": memory.content_hash,
        "embedding_ref": memory.embedding_ref,
        "created_at": isoformat(memory.created_at),
        "updated_at": isoformat(memory.updated_at),
    }


@dataclass
class ExtractedFact:
    """An atomic fact extracted from memory content."""

    fact: str
    importance: float | None = None
    confidence: float | None = None
    tags: list[str] = field(default_factory=list)


@dataclass
class VectorRecord:
    """A stored vector with its payload."""

    id: str
    payload: dict[str, Any]
    vector: list[float] | None = None


@dataclass
class ScoredVector:
    """A vector index match."""

    id: str
    score: float
    payload: dict[str, Any]


@dataclass
class EmbeddingResult:
    """Outcome of embedding and storing one text."""

    vector_id: str
    hash: str
    success: bool
    embedding: list[float] = field(default_factory=list)
    is_duplicate: bool = False
    existing_memory_id: int | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "vector_id": self.vector_id,
            "hash": self.hash,
            "success": self.success,
            "is_duplicate": self.is_duplicate,
            "dimensions": len(self.embedding),
        }
        if self.existing_memory_id is not None:
            d["existing_memory_id"] = self.existing_memory_id
        if self.error:
            d["error"] = self.error
        return d


@dataclass
class BatchEmbeddingItem:
    """One entry of a batch embedding call; failures carry an error."""

    text: str
    embedding: list[float] = field(default_factory=list)
    error: str | None = None

    @property
    def success(self) -> bool:
        return self.error is None


@dataclass
class SearchOptions:
    """Scope and bounds for a similarity search.

    At least one of owner_id, agent_id, or run_id must be set.
    ``filter`` adds exact-match constraints on other payload keys.
    """

    limit: int = 10
    score_threshold: float = 0.7
    owner_id: int | None = None
    agent_id: str | None = None
    run_id: str | None = None
    filter: dict[str, Any] | None = None

    @property
    def has_scope(self) -> bool:
        return self.owner_id is not None or bool(self.agent_id) or bool(self.run_id)

    def payload_filter(self) -> dict[str, Any]:
        """Build the AND-ed payload filter for the vector index."""
        conditions: dict[str, Any] = dict(self.filter or {})
        if self.owner_id is not None:
            conditions["ownerId"] = self.owner_id
        if self.agent_id:
            conditions["agentId"] = self.agent_id
        if self.run_id:
            conditions["runId"] = self.run_id
        return conditions


@dataclass
class SearchHit:
    """A similarity search result with display text."""

    id: str
    score: float
    text: str
    payload: dict[str, Any]
    rerank_score: float | None = None

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "id": self.id,
            "score": self.score,
            "text": self.text,
            "payload": self.payload,
        }
        if self.rerank_score is not None:
            d["rerank_score"] = self.rerank_score
        return d


@dataclass
class CreateMemoryInput:
    """Fields for a new memory. Content is required; the rest is provenance."""

    owner_id: int
    content: str
    source: str | None = None
    source_id: str | None = None
    timestamp: datetime | None = None
    content_url: str | None = None
    title: str | None = None
    origin: str | None = None
    tags: list[str] = field(default_factory=list)
    category: list[str] = field(default_factory=list)
    attribute: dict[str, Any] = field(default_factory=dict)
    summary: str | None = None
    type: str = "text"
    importance: float | None = None
    confidence: float | None = None
    agent_id: str | None = None
    run_id: str | None = None
    role: str | None = None


# Fields of a Memory a caller may change with update()
UPDATABLE_FIELDS = (
    "owner_id",
    "content",
    "source",
    "source_id",
    "timestamp",
    "content_url",
    "title",
    "origin",
    "tags",
    "category",
    "attribute",
    "summary",
    "type",
    "importance",
    "confidence",
)


@dataclass
class UpdateMemoryInput:
    """Partial update. Fields left as None are unchanged."""

    id: int
    owner_id: int | None = None
    content: str | None = None
    source: str | None = None
    source_id: str | None = None
    timestamp: datetime | None = None
    content_url: str | None = None
    title: str | None = None
    origin: str | None = None
    tags: list[str] | None = None
    category: list[str] | None = None
    attribute: dict[str, Any] | None = None
    summary: str | None = None
    type: str | None = None
    importance: float | None = None
    confidence: float | None = None

    def changes(self) -> dict[str, Any]:
        return {
            name: getattr(self, name)
            for name in UPDATABLE_FIELDS
            if getattr(self, name) is not None
        }


@dataclass
class CreateResult:
    """Outcome of creating a memory."""

    memory: Memory
    is_duplicate: bool
    embedding_results: list[EmbeddingResult] = field(default_factory=list)
    note: str | None = None

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "memory": memory_to_dict(self.memory),
            "is_duplicate": self.is_duplicate,
            "embedding_results": [r.to_dict() for r in self.embedding_results],
        }
        if self.note:
            d["note"] = self.note
        return d


MessageRole = Literal["system", "user", "assistant"]


@dataclass
class ChatMessage:
    """One message of a conversation handed to add_memories."""

    role: MessageRole
    content: str


@dataclass
class AddMemoriesInput:
    """A conversation to store as memories, one per storable message.

    With ``infer`` (the default) each message goes through fact extraction;
    otherwise the raw message is embedded as-is.
    """

    messages: list[ChatMessage]
    owner_id: int | None = None
    agent_id: str | None = None
    run_id: str | None = None
    source: str | None = None
    source_id: str | None = None
    timestamp: datetime | None = None
    content_url: str | None = None
    title: str | None = None
    origin: str | None = None
    tags: list[str] = field(default_factory=list)
    category: list[str] = field(default_factory=list)
    attribute: dict[str, Any] = field(default_factory=dict)
    summary: str | None = None
    type: str = "text"
    importance: float | None = None
    confidence: float | None = None
    infer: bool = True
    metadata: dict[str, Any] | None = None


@dataclass
class AddMemoriesResult:
    """Outcome of add_memories."""

    memories: list[Memory] = field(default_factory=list)
    results: list[EmbeddingResult] = field(default_factory=list)
    note: str | None = None

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "memories": [memory_to_dict(m) for m in self.memories],
            "results": [r.to_dict() for r in self.results],
        }
        if self.note:
            d["note"] = self.note
        return d


@dataclass
class RerankOptions:
    """Per-call rerank settings. None falls back to configured defaults."""

    enabled: bool | None = None
    top_k: int | None = None
    model: str | None = None


@dataclass
class AskScope:
    """Scope for ask(): search bounds plus an optional separate search query."""

    owner_id: int | None = None
    agent_id: str | None = None
    run_id: str | None = None
    query: str | None = None
    limit: int | None = None
    score_threshold: float | None = None
    rerank: RerankOptions = field(default_factory=RerankOptions)


@dataclass
class AskResult:
    """A synthesized answer and the memories it was grounded on."""

    answer: str
    hits: list[SearchHit]
    model: str
    rerank_model: str | None = None

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "answer": self.answer,
            "memories": [h.to_dict() for h in self.hits],
            "model": self.model,
        }
        if self.rerank_model:
            d["rerank_model"] = self.rerank_model
        return d
