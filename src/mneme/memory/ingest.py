"""Chunked bulk ingestion into the memory engine."""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from mneme.errors import DuplicateMemoryError, InfrastructureError, TimeoutError
from mneme.memory.types import (
    AddMemoriesInput,
    AddMemoriesResult,
    CreateMemoryInput,
    CreateResult,
)

if TYPE_CHECKING:
    from collections.abc import Sequence

    from mneme.memory.manager import MemoryEngine

logger = logging.getLogger(__name__)

IngestItem = CreateMemoryInput | AddMemoriesInput

# Failures that suggest the engine's backing services are down rather than
# that one item was bad.
_UNAVAILABLE_ERRORS = (InfrastructureError, TimeoutError)

# Unresolved insert conflicts are data problems, not outages.
_DATA_CONFLICT_ERRORS = (DuplicateMemoryError,)


@dataclass
class IngestFailure:
    index: int
    error: str
    error_type: str

    def to_dict(self) -> dict[str, Any]:
        return {"index": self.index, "error": self.error, "error_type": self.error_type}


@dataclass
class IngestResult:
    """Outcome of a bulk ingest. Results are in input order, failures skipped."""

    results: list[CreateResult | AddMemoriesResult] = field(default_factory=list)
    failures: list[IngestFailure] = field(default_factory=list)

    @property
    def succeeded(self) -> int:
        return len(self.results)

    @property
    def failed(self) -> int:
        return len(self.failures)

    def to_dict(self) -> dict[str, Any]:
        return {
            "succeeded": self.succeeded,
            "failed": self.failed,
            "results": [r.to_dict() for r in self.results],
            "failures": [f.to_dict() for f in self.failures],
        }


class BatchIngestor:
    """Feed many items to a MemoryEngine in small concurrent chunks.

    Items inside a chunk run concurrently; chunks run one after another
    with a short pause between them. If the engine looks unavailable (a
    run of infrastructure or timeout failures with nothing succeeding) the
    ingest stops instead of hammering a dead backend.
    """

    def __init__(
        self,
        engine: "MemoryEngine",
        *,
        chunk_size: int = 10,
        pause_seconds: float = 0.1,
        max_consecutive_failures: int = 3,
    ):
        """Initialize batch ingestor.

        Args:
            engine: Memory engine to ingest into.
            chunk_size: Items processed concurrently per chunk.
            pause_seconds: Sleep between chunks.
            max_consecutive_failures: Unavailability failures tolerated before
                aborting.
        """
        if chunk_size < 1:
            raise ValueError("chunk_size must be at least 1")
        self._engine = engine
        self._chunk_size = chunk_size
        self._pause_seconds = pause_seconds
        self._max_consecutive_failures = max_consecutive_failures

    async def _ingest_one(self, item: IngestItem) -> CreateResult | AddMemoriesResult:
        if isinstance(item, AddMemoriesInput):
            return await self._engine.add_memories(item)
        return await self._engine.create(item)

    async def ingest(self, items: "Sequence[IngestItem]") -> IngestResult:
        """Ingest items, collecting per-item failures.

        Raises:
            InfrastructureError: If a whole chunk failed and the consecutive
                unavailability count reached the limit.
        """
        result = IngestResult()
        if not items:
            return result

        consecutive_failures = 0
        for start in range(0, len(items), self._chunk_size):
            chunk = items[start : start + self._chunk_size]
            outcomes = await asyncio.gather(
                *(self._ingest_one(item) for item in chunk),
                return_exceptions=True,
            )

            chunk_successes = 0
            for offset, outcome in enumerate(outcomes):
                if isinstance(outcome, BaseException):
                    if not isinstance(outcome, Exception):
                        raise outcome
                    result.failures.append(
                        IngestFailure(
                            index=start + offset,
                            error=str(outcome),
                            error_type=type(outcome).__name__,
                        )
                    )
                    logger.warning(
                        "ingest_item_failed",
                        extra={
                            "item.index": start + offset,
                            "error.type": type(outcome).__name__,
                            "error.message": str(outcome),
                        },
                    )
                    if isinstance(outcome, _UNAVAILABLE_ERRORS) and not isinstance(
                        outcome, _DATA_CONFLICT_ERRORS
                    ):
                        consecutive_failures += 1
                else:
                    result.results.append(outcome)
                    chunk_successes += 1

            if (
                chunk_successes == 0
                and consecutive_failures >= self._max_consecutive_failures
            ):
                logger.error(
                    "ingest_aborted",
                    extra={
                        "ingest.consecutive_failures": consecutive_failures,
                        "ingest.processed": start + len(chunk),
                        "ingest.total": len(items),
                    },
                )
                raise InfrastructureError(
                    f"Memory engine is unavailable after {consecutive_failures} "
                    "consecutive failures; stopping batch ingestion"
                )

            if chunk_successes:
                consecutive_failures = 0

            if start + self._chunk_size < len(items):
                await asyncio.sleep(self._pause_seconds)

        logger.info(
            "ingest_complete",
            extra={"ingest.succeeded": result.succeeded, "ingest.failed": result.failed},
        )
        return result
