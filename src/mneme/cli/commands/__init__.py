"""CLI command modules."""

from mneme.cli.commands import memory, serve

__all__ = [
    "memory",
    "serve",
]
