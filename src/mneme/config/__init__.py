"""Configuration module."""

from mneme.config.loader import get_default_config, load_config
from mneme.config.models import (
    ConfigError,
    EmbeddingsConfig,
    IngestConfig,
    MemoryConfig,
    MnemeConfig,
    ModelConfig,
    ProviderConfig,
    RerankConfig,
    RetrievalConfig,
    RetrySettings,
    ServerConfig,
    TimeoutsConfig,
    VectorsConfig,
)
from mneme.config.paths import (
    get_config_path,
    get_database_path,
    get_logs_path,
    get_mneme_home,
    get_vectors_dir,
)

__all__ = [
    "ConfigError",
    "EmbeddingsConfig",
    "IngestConfig",
    "MemoryConfig",
    "MnemeConfig",
    "ModelConfig",
    "ProviderConfig",
    "RerankConfig",
    "RetrievalConfig",
    "RetrySettings",
    "ServerConfig",
    "TimeoutsConfig",
    "VectorsConfig",
    "get_config_path",
    "get_database_path",
    "get_default_config",
    "get_logs_path",
    "get_mneme_home",
    "get_vectors_dir",
    "load_config",
]
