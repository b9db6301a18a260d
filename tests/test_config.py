"""Tests for configuration loading and models."""

from pathlib import Path

import pytest
from pydantic import SecretStr, ValidationError

from mneme.config.loader import _resolve_env_secrets, get_default_config, load_config
from mneme.config.models import (
    ConfigError,
    MnemeConfig,
    ModelConfig,
    ProviderConfig,
    RetrievalConfig,
    RetrySettings,
)

MINIMAL = """
[models.default]
provider = "openai"
model = "gpt-4o-mini"
"""


def _write(tmp_path: Path, text: str) -> Path:
    path = tmp_path / "config.toml"
    path.write_text(text)
    return path


class TestMnemeConfig:
    def test_defaults(self):
        config = get_default_config()
        assert config.embeddings.dimensions == 1536
        assert config.embeddings.model == "text-embedding-3-small"
        assert config.retrieval.limit == 10
        assert config.retrieval.score_threshold == 0.7
        assert config.retrieval.rerank.enabled is False
        assert config.ingest.chunk_size == 10
        assert config.ingest.max_consecutive_failures == 3
        assert config.memory.reembed_on_update is True

    def test_default_model_required(self):
        with pytest.raises(ValidationError, match="No default model"):
            MnemeConfig(models={"fast": ModelConfig(provider="openai", model="x")})

    def test_unknown_alias(self):
        config = get_default_config()
        with pytest.raises(ConfigError, match="Unknown model alias 'judge'"):
            config.get_model("judge")

    @pytest.mark.parametrize(
        "fields",
        [{"limit": 0}, {"limit": 101}, {"score_threshold": 1.2}, {"score_threshold": -0.1}],
    )
    def test_retrieval_bounds(self, fields):
        with pytest.raises(ValidationError):
            RetrievalConfig(**fields)

    def test_retry_settings_convert(self):
        retry = RetrySettings(max_retries=5, base_delay_ms=10).to_retry_config()
        assert retry.enabled
        assert retry.max_retries == 5
        assert retry.base_delay_ms == 10


class TestApiKeys:
    def test_provider_key_preferred(self, monkeypatch):
        monkeypatch.setenv("OPENAI_API_KEY", "from-env")
        config = MnemeConfig(
            models={"default": ModelConfig(provider="openai", model="gpt-4o-mini")},
            openai=ProviderConfig(api_key=SecretStr("from-config")),
        )
        assert config.resolve_api_key("default").get_secret_value() == "from-config"

    def test_env_fallback(self, monkeypatch):
        monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-ant")
        config = MnemeConfig(
            models={"default": ModelConfig(provider="anthropic", model="claude-sonnet-4-5")}
        )
        assert config.resolve_api_key("default").get_secret_value() == "sk-ant"

    def test_missing_key(self, monkeypatch):
        monkeypatch.delenv("OPENAI_API_KEY", raising=False)
        assert get_default_config().resolve_embeddings_api_key() is None

    def test_resolve_env_secrets_leaves_explicit_keys(self, monkeypatch):
        monkeypatch.setenv("OPENAI_API_KEY", "from-env")
        raw = _resolve_env_secrets({"openai": {"api_key": "explicit"}})
        assert raw["openai"]["api_key"] == "explicit"


class TestLoadConfig:
    def test_minimal_file(self, tmp_path):
        config = load_config(_write(tmp_path, MINIMAL))
        assert config.default_model.model == "gpt-4o-mini"

    def test_sections_parsed(self, tmp_path):
        text = MINIMAL + """
[models.judge]
provider = "anthropic"
model = "claude-haiku-4-5"

[embeddings]
dimensions = 256

[vectors]
collection = "notes"
path = "{dir}"

[retrieval]
limit = 5
score_threshold = 0.5

[retrieval.rerank]
enabled = true
top_k = 3
model = "judge"
""".format(dir=tmp_path / "vectors")
        config = load_config(_write(tmp_path, text))

        assert config.embeddings.dimensions == 256
        assert config.vectors.collection == "notes"
        assert config.vectors.path == tmp_path / "vectors"
        assert config.retrieval.limit == 5
        assert config.retrieval.rerank.enabled is True
        assert config.retrieval.rerank.top_k == 3
        assert config.get_model(config.retrieval.rerank.model).provider == "anthropic"

    def test_env_secret_loaded(self, tmp_path, monkeypatch):
        monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
        config = load_config(_write(tmp_path, MINIMAL))
        assert config.openai.api_key.get_secret_value() == "sk-test"

    def test_missing_explicit_path(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "nope.toml")

    def test_invalid_file(self, tmp_path):
        with pytest.raises(ValueError):
            load_config(_write(tmp_path, '[models.default]\nprovider = "mistral"\nmodel = "x"\n'))
