"""Content-addressed memory and retrieval.

Public API:
- MemoryEngine: Create, update, delete, and list memories with dedup
- RetrievalPipeline: Scoped similarity search, rerank, and answers
- BatchIngestor: Chunked bulk ingestion with an unavailability breaker
- create_memory_engine: Factory to create a wired MemoryRuntime

Internal (not part of public API, may change):
- EmbeddingEngine: Embedding generation and vector writes
- FactExtractor: LLM fact extraction
- MemoryStore: Relational store for memory rows
- NumpyVectorIndex: In-process cosine index
"""

from mneme.memory.embeddings import EmbeddingEngine
from mneme.memory.extractor import FactExtractor
from mneme.memory.hashing import hash_content, is_valid_hash, normalize_text
from mneme.memory.ingest import BatchIngestor, IngestResult
from mneme.memory.manager import MemoryEngine
from mneme.memory.retrieval import RetrievalPipeline
from mneme.memory.runtime import MemoryRuntime, create_memory_engine
from mneme.memory.store import MemoryStore
from mneme.memory.types import (
    AddMemoriesInput,
    AddMemoriesResult,
    AskResult,
    AskScope,
    ChatMessage,
    CreateMemoryInput,
    CreateResult,
    EmbeddingResult,
    ExtractedFact,
    RerankOptions,
    SearchHit,
    SearchOptions,
    UpdateMemoryInput,
)
from mneme.memory.vectors import NumpyVectorIndex, VectorIndex

__all__ = [
    # Engine
    "MemoryEngine",
    "RetrievalPipeline",
    "BatchIngestor",
    "MemoryRuntime",
    "create_memory_engine",
    # Hashing
    "hash_content",
    "is_valid_hash",
    "normalize_text",
    # Types
    "AddMemoriesInput",
    "AddMemoriesResult",
    "AskResult",
    "AskScope",
    "ChatMessage",
    "CreateMemoryInput",
    "CreateResult",
    "EmbeddingResult",
    "ExtractedFact",
    "IngestResult",
    "RerankOptions",
    "SearchHit",
    "SearchOptions",
    "UpdateMemoryInput",
    # Internal
    "EmbeddingEngine",
    "FactExtractor",
    "MemoryStore",
    "NumpyVectorIndex",
    "VectorIndex",
]
