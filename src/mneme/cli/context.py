"""Config and runtime loading shared by CLI commands."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

import typer

from mneme.cli.console import error

if TYPE_CHECKING:
    from collections.abc import AsyncIterator
    from pathlib import Path

    from mneme.config import MnemeConfig
    from mneme.memory.runtime import MemoryRuntime


def get_config(config_path: Path | None = None) -> MnemeConfig:
    """Load configuration, exiting with a readable message on failure."""
    from mneme.config import ConfigError, load_config

    try:
        return load_config(config_path)
    except FileNotFoundError as e:
        error(str(e))
        raise typer.Exit(1) from None
    except (ConfigError, ValueError) as e:
        error(f"Invalid configuration: {e}")
        raise typer.Exit(1) from None


@asynccontextmanager
async def open_runtime(config: MnemeConfig) -> AsyncIterator[MemoryRuntime]:
    """Build the memory runtime for one command and close it afterwards."""
    from mneme.memory.runtime import create_memory_engine

    runtime = await create_memory_engine(config)
    try:
        yield runtime
    finally:
        await runtime.close()
