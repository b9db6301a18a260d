"""Relational storage for memory rows."""

import logging
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from mneme.db.engine import Database
from mneme.db.models import Memory
from mneme.errors import DuplicateMemoryError, InfrastructureError, ValidationError
from mneme.memory.hashing import is_valid_hash
from mneme.timeouts import bounded

logger = logging.getLogger(__name__)


def scope_key(value: str | None) -> str:
    """Non-null form of an optional scope id, used by the dedup constraint."""
    return value or ""


class MemoryStore:
    """Store and retrieve memory rows.

    Each operation runs in its own session so that concurrent callers never
    share a transaction.
    """

    def __init__(self, database: Database, timeout: float | None = None):
        """Initialize memory store.

        Args:
            database: Connected database.
            timeout: Per-operation deadline in seconds.
        """
        self._db = database
        self._timeout = timeout

    async def _run[T](
        self, operation: str, fn: Callable[[AsyncSession], Awaitable[T]]
    ) -> T:
        async def _in_session() -> T:
            async with self._db.session() as session:
                return await fn(session)

        try:
            return await bounded(_in_session(), self._timeout, f"store {operation}")
        except IntegrityError:
            raise
        except SQLAlchemyError as e:
            raise InfrastructureError(f"Memory store {operation} failed: {e}") from e

    async def insert(self, **fields: Any) -> Memory:
        """Insert a new memory row.

        Raises:
            DuplicateMemoryError: If the (hash, owner, agent, run) scope already
                holds a memory.
        """
        memory = Memory(
            **fields,
            agent_key=scope_key(fields.get("agent_id")),
            run_key=scope_key(fields.get("run_id")),
        )

        async def _insert(session: AsyncSession) -> Memory:
            session.add(memory)
            await session.flush()
            return memory

        try:
            return await self._run("insert", _insert)
        except IntegrityError as e:
            raise DuplicateMemoryError(fields["content_hash"], fields["owner_id"]) from e

    async def get(self, memory_id: int) -> Memory | None:
        async def _get(session: AsyncSession) -> Memory | None:
            return await session.get(Memory, memory_id)

        return await self._run("get", _get)

    async def find_duplicate(
        self,
        content_hash: str,
        owner_id: int,
        agent_id: str | None = None,
        run_id: str | None = None,
    ) -> Memory | None:
        """Find the memory holding this content in exactly this scope."""
        stmt = select(Memory).where(
            Memory.content_hash == content_hash,
            Memory.owner_id == owner_id,
            Memory.agent_key == scope_key(agent_id),
            Memory.run_key == scope_key(run_id),
        )

        async def _find(session: AsyncSession) -> Memory | None:
            result = await session.execute(stmt.limit(1))
            return result.scalar_one_or_none()

        return await self._run("find_duplicate", _find)

    async def find_by_hash(
        self, content_hash: str, owner_id: int | None = None
    ) -> Memory | None:
        """Find any memory with this content hash, optionally for one owner.

        Raises:
            ValidationError: If content_hash is not a well-formed hash.
        """
        if not is_valid_hash(content_hash):
            raise ValidationError("Invalid content hash")

        stmt = select(Memory).where(Memory.content_hash == content_hash)
        if owner_id is not None:
            stmt = stmt.where(Memory.owner_id == owner_id)

        async def _find(session: AsyncSession) -> Memory | None:
            result = await session.execute(stmt.order_by(Memory.id).limit(1))
            return result.scalar_one_or_none()

        return await self._run("find_by_hash", _find)

    async def list_by_owner(self, owner_id: int) -> list[Memory]:
        """List an owner's memories, newest timestamp first."""
        stmt = (
            select(Memory)
            .where(Memory.owner_id == owner_id)
            .order_by(Memory.timestamp.desc(), Memory.id.desc())
        )

        async def _list(session: AsyncSession) -> list[Memory]:
            result = await session.execute(stmt)
            return list(result.scalars().all())

        return await self._run("list_by_owner", _list)

    async def update(self, memory_id: int, changes: dict[str, Any]) -> Memory | None:
        """Apply column changes to a memory.

        Returns:
            The updated memory, or None if it does not exist.

        Raises:
            DuplicateMemoryError: If the change collides with another memory's
                dedup scope.
        """
        values = dict(changes)
        values["updated_at"] = datetime.now(UTC)

        async def _update(session: AsyncSession) -> Memory | None:
            memory = await session.get(Memory, memory_id)
            if memory is None:
                return None
            for key, value in values.items():
                setattr(memory, key, value)
            await session.flush()
            return memory

        try:
            return await self._run("update", _update)
        except IntegrityError as e:
            raise DuplicateMemoryError(
                values.get("content_hash", ""), values.get("owner_id", -1)
            ) from e

    async def mark_embedded(self, memory_id: int, summary: str | None = None) -> Memory:
        """Stamp embedding_ref with the memory's own id, optionally setting summary."""
        values: dict[str, Any] = {
            "embedding_ref": memory_id,
            "updated_at": datetime.now(UTC),
        }
        if summary is not None:
            values["summary"] = summary

        async def _mark(session: AsyncSession) -> Memory:
            await session.execute(
                update(Memory).where(Memory.id == memory_id).values(**values)
            )
            memory = await session.get(Memory, memory_id, populate_existing=True)
            if memory is None:
                raise InfrastructureError(f"Memory {memory_id} vanished while embedding")
            return memory

        return await self._run("mark_embedded", _mark)

    async def delete(self, memory_id: int) -> bool:
        """Delete a memory row.

        Returns:
            True if a row was removed.
        """

        async def _delete(session: AsyncSession) -> bool:
            result = await session.execute(delete(Memory).where(Memory.id == memory_id))
            return bool(result.rowcount)

        return await self._run("delete", _delete)
