"""Centralized path management for mneme.

All state (config, database, vector index, logs) is stored under a single
base directory. The base directory can be overridden with the MNEME_HOME
environment variable.

Default locations:
- Linux/macOS: ~/.mneme
- Windows: %USERPROFILE%\\.mneme
"""

import os
from functools import lru_cache
from pathlib import Path

ENV_VAR = "MNEME_HOME"


@lru_cache(maxsize=1)
def get_mneme_home() -> Path:
    """Get the base directory for all mneme data.

    Resolution order:
    1. MNEME_HOME environment variable (if set)
    2. Platform default (~/.mneme)
    """
    if env_home := os.environ.get(ENV_VAR):
        return Path(env_home).expanduser().resolve()

    return Path.home() / ".mneme"


def get_config_path() -> Path:
    """Get the default config file path."""
    return get_mneme_home() / "config.toml"


def get_database_path() -> Path:
    """Get the SQLite database path (memory rows)."""
    return get_mneme_home() / "data" / "memory.db"


def get_vectors_dir() -> Path:
    """Get the vector index directory (embeddings + payloads)."""
    return get_mneme_home() / "vectors"


def get_logs_path() -> Path:
    """Get the default logs directory path."""
    return get_mneme_home() / "logs"


def ensure_mneme_home() -> Path:
    """Ensure the mneme home directory exists."""
    home = get_mneme_home()
    home.mkdir(parents=True, exist_ok=True)
    return home


def get_all_paths() -> dict[str, Path]:
    """Get all standard paths for debugging/display."""
    return {
        "home": get_mneme_home(),
        "config": get_config_path(),
        "database": get_database_path(),
        "vectors": get_vectors_dir(),
        "logs": get_logs_path(),
    }
