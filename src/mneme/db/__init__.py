"""Database layer."""

from mneme.db.engine import Database
from mneme.db.models import Base, Memory

__all__ = [
    "Base",
    "Database",
    "Memory",
]
