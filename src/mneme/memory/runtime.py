"""Wiring for a fully-assembled memory engine."""

import logging
from dataclasses import dataclass
from pathlib import Path

from mneme.config.models import MnemeConfig
from mneme.db.engine import Database
from mneme.llm.base import LLMProvider
from mneme.llm.registry import LLMRegistry, create_llm_provider
from mneme.memory.embeddings import EmbeddingEngine
from mneme.memory.extractor import FactExtractor
from mneme.memory.ingest import BatchIngestor
from mneme.memory.manager import MemoryEngine
from mneme.memory.retrieval import RetrievalPipeline
from mneme.memory.store import MemoryStore
from mneme.memory.types import RerankOptions
from mneme.memory.vectors import NumpyVectorIndex, VectorIndex

logger = logging.getLogger(__name__)


@dataclass
class MemoryRuntime:
    """Every long-lived object the engine needs, plus their shutdown."""

    database: Database
    store: MemoryStore
    index: VectorIndex
    embeddings: EmbeddingEngine
    extractor: FactExtractor
    engine: MemoryEngine
    retrieval: RetrievalPipeline
    ingestor: BatchIngestor

    async def close(self) -> None:
        """Persist the vector index (when it has a path) and close the database."""
        if isinstance(self.index, NumpyVectorIndex):
            await self.index.save()
        await self.database.disconnect()
        logger.debug("memory_runtime_closed")


def vector_index_path(config: MnemeConfig) -> Path | None:
    if config.vectors.path is None:
        return None
    return config.vectors.path / f"{config.vectors.collection}.npy"


def _provider_for(
    config: MnemeConfig, registry: LLMRegistry, alias: str
) -> tuple[LLMProvider, str]:
    """Resolve a model alias to a (shared) provider instance and model name."""
    model_config = config.get_model(alias)
    if not registry.has(model_config.provider):
        registry.register(
            create_llm_provider(
                model_config.provider,
                api_key=config.resolve_api_key(alias),
                timeout=config.timeouts.provider,
            )
        )
    return registry.get(model_config.provider), model_config.model


async def create_memory_engine(
    config: MnemeConfig,
    *,
    database: Database | None = None,
    index: VectorIndex | None = None,
    registry: LLMRegistry | None = None,
    embedding_provider: LLMProvider | None = None,
) -> MemoryRuntime:
    """Create a fully-wired memory engine from configuration.

    Collaborators may be passed in to override what configuration would
    build; tests use this to swap in fakes.

    Args:
        config: Loaded configuration.
        database: Database to use instead of the configured SQLite file.
        index: Vector index to use instead of the configured numpy index.
        registry: Provider registry; providers already registered are reused.
        embedding_provider: Provider for embeddings instead of the configured one.

    Raises:
        ConfigError: If a configured model alias does not exist.
    """
    registry = registry or LLMRegistry()

    if database is None:
        database = Database(database_path=config.memory.database_path)
    await database.connect()
    await database.create_tables()

    if index is None:
        path = vector_index_path(config)
        if path is None:
            index = NumpyVectorIndex(config.embeddings.dimensions)
        else:
            index = await NumpyVectorIndex.load(path, config.embeddings.dimensions)

    if embedding_provider is None:
        provider_name = config.embeddings.provider
        if not registry.has(provider_name):
            registry.register(
                create_llm_provider(
                    provider_name,
                    api_key=config.resolve_embeddings_api_key(),
                    timeout=config.timeouts.provider,
                )
            )
        embedding_provider = registry.get(provider_name)

    retry = config.retry.to_retry_config()
    store = MemoryStore(database, timeout=config.timeouts.store)

    embeddings = EmbeddingEngine(
        embedding_provider,
        index,
        store,
        dimensions=config.embeddings.dimensions,
        model=config.embeddings.model,
        max_text_length=config.embeddings.max_text_length,
        batch_limit=config.embeddings.batch_limit,
        provider_timeout=config.timeouts.provider,
        index_timeout=config.timeouts.index,
        retry=retry,
    )

    extraction_llm, extraction_model = _provider_for(
        config, registry, config.memory.extraction_model
    )
    extractor = FactExtractor(
        extraction_llm,
        model=extraction_model,
        max_facts=config.memory.max_facts,
        timeout=config.timeouts.provider,
        retry=retry,
    )

    engine = MemoryEngine(
        store,
        embeddings,
        extractor,
        reembed_on_update=config.memory.reembed_on_update,
    )

    retrieval_config = config.retrieval
    answer_llm, answer_model = _provider_for(
        config, registry, retrieval_config.answer_model
    )
    rerank_llm, rerank_model = _provider_for(
        config, registry, retrieval_config.rerank.model
    )
    retrieval = RetrievalPipeline(
        embeddings,
        answer_llm,
        answer_model=answer_model,
        rerank_llm=rerank_llm,
        rerank_defaults=RerankOptions(
            enabled=retrieval_config.rerank.enabled,
            top_k=retrieval_config.rerank.top_k,
            model=rerank_model,
        ),
        default_limit=retrieval_config.limit,
        default_score_threshold=retrieval_config.score_threshold,
        timeout=config.timeouts.provider,
        retry=retry,
    )

    ingestor = BatchIngestor(
        engine,
        chunk_size=config.ingest.chunk_size,
        pause_seconds=config.ingest.pause_seconds,
        max_consecutive_failures=config.ingest.max_consecutive_failures,
    )

    logger.info(
        "memory_engine_ready",
        extra={
            "database": database.url,
            "vectors.count": await index.count(),
            "embeddings.model": config.embeddings.model,
            "embeddings.dimensions": config.embeddings.dimensions,
        },
    )
    return MemoryRuntime(
        database=database,
        store=store,
        index=index,
        embeddings=embeddings,
        extractor=extractor,
        engine=engine,
        retrieval=retrieval,
        ingestor=ingestor,
    )
