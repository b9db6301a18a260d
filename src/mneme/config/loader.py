"""Configuration loading from TOML files and environment variables."""

import os
import tomllib
from pathlib import Path
from typing import Any

from pydantic import SecretStr

from mneme.config.models import ModelConfig, MnemeConfig
from mneme.config.paths import get_config_path

_PROVIDER_ENV_VARS = {
    "anthropic": "ANTHROPIC_API_KEY",
    "openai": "OPENAI_API_KEY",
}


def _get_default_config_paths() -> list[Path]:
    """Get ordered list of default config file locations."""
    return [
        Path("config.toml"),  # Current directory
        get_config_path(),  # ~/.mneme/config.toml (or MNEME_HOME)
        Path("/etc/mneme/config.toml"),  # System-wide
    ]


def _resolve_env_secrets(config: dict[str, Any]) -> dict[str, Any]:
    """Resolve API keys from environment variables where not set in config."""
    for provider, env_var in _PROVIDER_ENV_VARS.items():
        section = config.setdefault(provider, {})
        if section.get("api_key") is None and (value := os.environ.get(env_var)):
            section["api_key"] = SecretStr(value)
    return config


def load_config(path: Path | None = None) -> MnemeConfig:
    """Load configuration from TOML file.

    Args:
        path: Explicit path to config file. If None, searches default locations.

    Returns:
        Validated MnemeConfig instance.

    Raises:
        FileNotFoundError: If no config file is found.
        ValueError: If config file is invalid.
    """
    config_path: Path | None = None

    default_paths = _get_default_config_paths()

    if path is not None:
        config_path = Path(path).expanduser()
        if not config_path.exists():
            raise FileNotFoundError(f"Config file not found: {config_path}")
    else:
        for default_path in default_paths:
            expanded = default_path.expanduser()
            if expanded.exists():
                config_path = expanded
                break

    if config_path is None:
        raise FileNotFoundError(
            f"No config file found. Searched: {', '.join(str(p) for p in default_paths)}"
        )

    with config_path.open("rb") as f:
        raw_config = tomllib.load(f)

    raw_config = _resolve_env_secrets(raw_config)

    return MnemeConfig.model_validate(raw_config)


def get_default_config() -> MnemeConfig:
    """Get a default configuration for development/testing."""
    return MnemeConfig(
        models={
            "default": ModelConfig(
                provider="openai",
                model="gpt-4o-mini",
            )
        }
    )
