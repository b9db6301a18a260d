"""Shared test fixtures and factories."""

import hashlib
import json
import re
from collections.abc import AsyncGenerator, Callable
from pathlib import Path
from typing import Any

import pytest

from mneme.config.models import (
    EmbeddingsConfig,
    MemoryConfig,
    MnemeConfig,
    ModelConfig,
    RetrySettings,
    VectorsConfig,
)
from mneme.db.engine import Database
from mneme.llm.base import LLMProvider
from mneme.llm.registry import LLMRegistry
from mneme.llm.types import CompletionResponse, Message, Role, Usage
from mneme.memory.embeddings import EmbeddingEngine
from mneme.memory.extractor import FactExtractor
from mneme.memory.manager import MemoryEngine
from mneme.memory.prompts import FACT_EXTRACTION_SYSTEM_PROMPT, RERANK_SYSTEM_PROMPT
from mneme.memory.retrieval import RetrievalPipeline
from mneme.memory.runtime import MemoryRuntime, create_memory_engine
from mneme.memory.store import MemoryStore
from mneme.memory.vectors import NumpyVectorIndex

DIMENSIONS = 64

_TOKEN = re.compile(r"[a-z0-9]+")
_SENTENCE_END = re.compile(r"(?<=[.!?])\s+")


def embed_text(text: str, dimensions: int = DIMENSIONS) -> list[float]:
    """Deterministic hashed bag-of-words embedding.

    Texts sharing words get a positive cosine similarity; identical texts
    get identical vectors.
    """
    vector = [0.0] * dimensions
    for token in _TOKEN.findall(text.lower()):
        bucket = int(hashlib.sha256(token.encode()).hexdigest(), 16) % dimensions
        vector[bucket] += 1.0
    if not any(vector):
        vector[0] = 1.0
    return vector


def facts_reply(content: str) -> str:
    """Extraction reply that turns each sentence of content into a fact."""
    sentences = [s.strip() for s in _SENTENCE_END.split(content.strip()) if s.strip()]
    return json.dumps(
        {
            "facts": [
                {"fact": s, "importance": 0.6, "confidence": 0.9, "tags": ["test"]}
                for s in sentences
            ]
        }
    )


# =============================================================================
# LLM Fixtures and Mocks
# =============================================================================


class FakeLLMProvider(LLMProvider):
    """Deterministic completion and embedding provider for tests.

    Completions come from ``responses`` (consumed in order) when queued,
    otherwise from a default reply chosen by the system prompt: sentence
    facts for extraction, ``rerank_reply`` for rerank, and an echo of the
    prompt for answers.
    """

    def __init__(
        self,
        responses: list[str] | None = None,
        dimensions: int = DIMENSIONS,
        fail_texts: set[str] | None = None,
        embed_error: Callable[[str], Exception] | None = None,
        rerank_reply: Callable[[str], str] | None = None,
    ):
        self.responses = list(responses or [])
        self.dimensions = dimensions
        self.fail_texts = set(fail_texts or ())
        self.embed_error = embed_error or (
            lambda text: RuntimeError(f"embedding backend exploded on {text!r}")
        )
        self.rerank_reply = rerank_reply or (lambda user: "0.5")
        self.complete_calls: list[dict[str, Any]] = []
        self.embed_calls: list[dict[str, Any]] = []
        self.wrong_dimensions: int | None = None

    @property
    def name(self) -> str:
        return "openai"

    @property
    def default_model(self) -> str:
        return "fake-model"

    @property
    def embedded_texts(self) -> list[str]:
        return [t for call in self.embed_calls for t in call["texts"]]

    def _default_reply(self, system: str | None, user: str) -> str:
        if system == FACT_EXTRACTION_SYSTEM_PROMPT:
            content = user.split("Content:\n", 1)[1]
            return facts_reply(content)
        if system == RERANK_SYSTEM_PROMPT:
            return self.rerank_reply(user)
        return f"ANSWER\n{user}"

    async def complete(
        self,
        messages: list[Message],
        *,
        model: str | None = None,
        system: str | None = None,
        max_tokens: int = 4096,
        temperature: float | None = None,
    ) -> CompletionResponse:
        user = messages[-1].get_text()
        self.complete_calls.append(
            {
                "system": system,
                "user": user,
                "model": model,
                "max_tokens": max_tokens,
                "temperature": temperature,
            }
        )
        text = self.responses.pop(0) if self.responses else self._default_reply(system, user)
        return CompletionResponse(
            message=Message(role=Role.ASSISTANT, content=text),
            usage=Usage(input_tokens=10, output_tokens=5),
            model=model or self.default_model,
        )

    async def embed(
        self,
        texts: list[str],
        *,
        model: str | None = None,
        dimensions: int | None = None,
    ) -> list[list[float]]:
        self.embed_calls.append(
            {"texts": list(texts), "model": model, "dimensions": dimensions}
        )
        vectors = []
        for text in texts:
            if text in self.fail_texts:
                raise self.embed_error(text)
            size = self.wrong_dimensions or dimensions or self.dimensions
            vectors.append(embed_text(text, size))
        return vectors

    def calls_with_system(self, system: str) -> list[dict[str, Any]]:
        return [c for c in self.complete_calls if c["system"] == system]


@pytest.fixture
def fake_llm() -> FakeLLMProvider:
    return FakeLLMProvider()


# =============================================================================
# Database Fixtures
# =============================================================================


@pytest.fixture
async def database(tmp_path: Path) -> AsyncGenerator[Database, None]:
    """Create a temporary test database."""
    db = Database(database_path=tmp_path / "test.db")
    await db.connect()
    await db.create_tables()

    yield db

    await db.disconnect()


@pytest.fixture
def memory_store(database: Database) -> MemoryStore:
    return MemoryStore(database)


# =============================================================================
# Engine Fixtures
# =============================================================================


@pytest.fixture
def vector_index() -> NumpyVectorIndex:
    return NumpyVectorIndex(DIMENSIONS)


@pytest.fixture
def embedding_engine(
    fake_llm: FakeLLMProvider,
    vector_index: NumpyVectorIndex,
    memory_store: MemoryStore,
) -> EmbeddingEngine:
    return EmbeddingEngine(
        fake_llm,
        vector_index,
        memory_store,
        dimensions=DIMENSIONS,
        model="fake-embedding",
    )


@pytest.fixture
def fact_extractor(fake_llm: FakeLLMProvider) -> FactExtractor:
    return FactExtractor(fake_llm)


@pytest.fixture
def memory_engine(
    memory_store: MemoryStore,
    embedding_engine: EmbeddingEngine,
    fact_extractor: FactExtractor,
) -> MemoryEngine:
    return MemoryEngine(memory_store, embedding_engine, fact_extractor)


@pytest.fixture
def retrieval(
    embedding_engine: EmbeddingEngine, fake_llm: FakeLLMProvider
) -> RetrievalPipeline:
    return RetrievalPipeline(embedding_engine, fake_llm)


# =============================================================================
# Configuration Fixtures
# =============================================================================


@pytest.fixture
def mneme_config(tmp_path: Path) -> MnemeConfig:
    """Configuration pointing at temp storage, with retries off."""
    return MnemeConfig(
        models={"default": ModelConfig(provider="openai", model="gpt-4o-mini")},
        embeddings=EmbeddingsConfig(dimensions=DIMENSIONS),
        vectors=VectorsConfig(path=None),
        memory=MemoryConfig(database_path=tmp_path / "data" / "memory.db"),
        retry=RetrySettings(enabled=False),
    )


@pytest.fixture
async def runtime(
    mneme_config: MnemeConfig, fake_llm: FakeLLMProvider
) -> AsyncGenerator[MemoryRuntime, None]:
    """A fully-wired runtime backed by the fake provider."""
    registry = LLMRegistry()
    registry.register(fake_llm)
    rt = await create_memory_engine(
        mneme_config, registry=registry, embedding_provider=fake_llm
    )

    yield rt

    await rt.close()


# =============================================================================
# CLI Fixtures
# =============================================================================


@pytest.fixture
def cli_runner():
    from typer.testing import CliRunner

    return CliRunner()


@pytest.fixture
def config_file(tmp_path: Path) -> Path:
    """A config file with file-backed storage under tmp_path."""
    path = tmp_path / "config.toml"
    path.write_text(
        f"""
[models.default]
provider = "openai"
model = "gpt-4o-mini"

[embeddings]
dimensions = {DIMENSIONS}

[vectors]
path = "{tmp_path / "vectors"}"

[memory]
database_path = "{tmp_path / "memory.db"}"

[retry]
enabled = false
"""
    )
    return path


@pytest.fixture
def fake_runtime_factory(monkeypatch, fake_llm: FakeLLMProvider) -> FakeLLMProvider:
    """Make every create_memory_engine call use the fake provider."""

    async def factory(config: MnemeConfig, **kwargs: Any) -> MemoryRuntime:
        registry = LLMRegistry()
        registry.register(fake_llm)
        return await create_memory_engine(
            config, registry=registry, embedding_provider=fake_llm, **kwargs
        )

    monkeypatch.setattr("mneme.memory.runtime.create_memory_engine", factory)
    return fake_llm
