"""Configuration models using Pydantic."""

import os
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, SecretStr, model_validator

from mneme.config.paths import get_database_path, get_vectors_dir
from mneme.llm.retry import RetryConfig


class ModelConfig(BaseModel):
    """Configuration for a named model.

    Temperature is optional - if None, the caller's default is used.
    """

    provider: Literal["anthropic", "openai"]
    model: str
    temperature: float | None = None
    max_tokens: int = 1024


class ProviderConfig(BaseModel):
    """Provider-level configuration."""

    api_key: SecretStr | None = None


class EmbeddingsConfig(BaseModel):
    """Configuration for the embedding model.

    Every stored vector has exactly ``dimensions`` components.
    Currently only OpenAI embeddings are supported.
    """

    provider: Literal["openai"] = "openai"
    model: str = "text-embedding-3-small"
    dimensions: int = Field(default=1536, gt=0)
    max_text_length: int = Field(default=32000, gt=0)
    batch_limit: int = Field(default=2048, gt=0)


class VectorsConfig(BaseModel):
    """Configuration for the vector index.

    When ``path`` is None the index lives only in memory.
    """

    collection: str = "memories"
    path: Path | None = Field(default_factory=get_vectors_dir)


class MemoryConfig(BaseModel):
    """Configuration for memory storage and fact extraction."""

    database_path: Path = Field(default_factory=get_database_path)
    max_facts: int = Field(default=32, gt=0)
    extraction_model: str = "default"
    reembed_on_update: bool = True


class RerankConfig(BaseModel):
    """Configuration for LLM relevance reranking."""

    enabled: bool = False
    top_k: int = Field(default=0, ge=0)
    model: str = "default"


class RetrievalConfig(BaseModel):
    """Defaults for similarity search and answer synthesis."""

    limit: int = Field(default=10, ge=1, le=100)
    score_threshold: float = Field(default=0.7, ge=0.0, le=1.0)
    answer_model: str = "default"
    rerank: RerankConfig = Field(default_factory=RerankConfig)


class TimeoutsConfig(BaseModel):
    """Per-call deadlines in seconds for outbound calls."""

    provider: float = 60.0
    index: float = 10.0
    store: float = 10.0


class RetrySettings(BaseModel):
    """Retry behavior for transient provider failures."""

    enabled: bool = True
    max_retries: int = Field(default=3, ge=0)
    base_delay_ms: int = Field(default=2000, ge=0)
    max_delay_ms: int = Field(default=30000, ge=0)

    def to_retry_config(self) -> RetryConfig:
        return RetryConfig(
            enabled=self.enabled,
            max_retries=self.max_retries,
            base_delay_ms=self.base_delay_ms,
            max_delay_ms=self.max_delay_ms,
        )


class IngestConfig(BaseModel):
    """Configuration for batch ingestion."""

    chunk_size: int = Field(default=10, gt=0)
    pause_seconds: float = Field(default=0.1, ge=0.0)
    max_consecutive_failures: int = Field(default=3, gt=0)


class ServerConfig(BaseModel):
    """Configuration for HTTP server."""

    host: str = "127.0.0.1"
    port: int = 8080


class ConfigError(Exception):
    """Configuration error."""

    pass


class MnemeConfig(BaseModel):
    """Root configuration model."""

    models: dict[str, ModelConfig] = Field(default_factory=dict)
    anthropic: ProviderConfig | None = None
    openai: ProviderConfig | None = None
    embeddings: EmbeddingsConfig = Field(default_factory=EmbeddingsConfig)
    vectors: VectorsConfig = Field(default_factory=VectorsConfig)
    memory: MemoryConfig = Field(default_factory=MemoryConfig)
    retrieval: RetrievalConfig = Field(default_factory=RetrievalConfig)
    timeouts: TimeoutsConfig = Field(default_factory=TimeoutsConfig)
    retry: RetrySettings = Field(default_factory=RetrySettings)
    ingest: IngestConfig = Field(default_factory=IngestConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)

    @model_validator(mode="after")
    def _validate_default_model(self) -> "MnemeConfig":
        """Validate that a default model is configured."""
        if "default" not in self.models:
            raise ValueError("No default model configured. Add [models.default]")
        return self

    def get_model(self, alias: str) -> ModelConfig:
        """Get model config by alias.

        Raises:
            ConfigError: If the alias is not found.
        """
        if alias not in self.models:
            available = ", ".join(sorted(self.models.keys()))
            raise ConfigError(f"Unknown model alias '{alias}'. Available: {available}")
        return self.models[alias]

    def list_models(self) -> list[str]:
        return sorted(self.models.keys())

    @property
    def default_model(self) -> ModelConfig:
        return self.get_model("default")

    def _provider_key(self, provider: str) -> SecretStr | None:
        if provider == "anthropic" and self.anthropic and self.anthropic.api_key:
            return self.anthropic.api_key
        if provider == "openai" and self.openai and self.openai.api_key:
            return self.openai.api_key

        env_var = "ANTHROPIC_API_KEY" if provider == "anthropic" else "OPENAI_API_KEY"
        if env_value := os.environ.get(env_var):
            return SecretStr(env_value)
        return None

    def resolve_api_key(self, alias: str) -> SecretStr | None:
        """Resolve API key for a model alias.

        Resolution order:
        1. Provider-level config api_key
        2. Environment variable (ANTHROPIC_API_KEY or OPENAI_API_KEY)
        """
        return self._provider_key(self.get_model(alias).provider)

    def resolve_embeddings_api_key(self) -> SecretStr | None:
        """Resolve API key for the embeddings provider."""
        return self._provider_key(self.embeddings.provider)
