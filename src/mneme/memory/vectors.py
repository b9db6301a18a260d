"""Vector index for memory embeddings.

NumpyVectorIndex is a brute-force cosine index with per-vector payloads.
At personal-memory scale (thousands of facts, 1536-dim) a full matmul
per query takes a few milliseconds, so there is no ANN structure.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Protocol

import numpy as np

from mneme.memory.types import ScoredVector, VectorRecord

logger = logging.getLogger(__name__)


class VectorIndex(Protocol):
    """Storage for fixed-dimension vectors with exact-match payload filters."""

    async def upsert(
        self, vector_id: str, vector: list[float], payload: dict[str, Any]
    ) -> None: ...

    async def retrieve(
        self, vector_id: str, with_vector: bool = False
    ) -> VectorRecord | None: ...

    async def search(
        self,
        vector: list[float],
        limit: int,
        score_threshold: float = 0.0,
        filter: dict[str, Any] | None = None,
    ) -> list[ScoredVector]: ...

    async def delete(self, vector_ids: list[str]) -> None: ...

    async def set_payload(self, vector_ids: list[str], payload: dict[str, Any]) -> None: ...

    async def set_payload_by_filter(
        self, filter: dict[str, Any], payload: dict[str, Any]
    ) -> int: ...

    async def delete_by_filter(self, filter: dict[str, Any]) -> int: ...

    async def count(self) -> int: ...

    async def save(self) -> None: ...


def _matches(payload: dict[str, Any], conditions: dict[str, Any]) -> bool:
    return all(payload.get(key) == value for key, value in conditions.items())


def _normalize(vec: np.ndarray) -> np.ndarray:
    norm = np.linalg.norm(vec)
    if norm == 0:
        return vec
    return vec / norm


class NumpyVectorIndex:
    """Brute-force cosine similarity index using numpy.

    New vectors are buffered in a list and flushed into the main
    matrix lazily (before search, save, or delete) to avoid O(n)
    array copies on every upsert. Stored vectors are unit-normalized.
    """

    def __init__(self, dimensions: int, path: Path | None = None) -> None:
        self.dimensions = dimensions
        self.path = path
        self._vectors: np.ndarray = np.empty((0, dimensions), dtype=np.float32)
        self._ids: list[str] = []
        self._id_to_index: dict[str, int] = {}
        self._payloads: dict[str, dict[str, Any]] = {}
        self._pending: list[np.ndarray] = []

    def _flush(self) -> None:
        """Consolidate pending vectors into the main matrix."""
        if not self._pending:
            return
        self._vectors = np.vstack([self._vectors, np.stack(self._pending)])
        self._pending.clear()

    def _put(self, vector_id: str, vector: list[float], payload: dict[str, Any]) -> None:
        vec = _normalize(np.asarray(vector, dtype=np.float32))
        if vec.shape != (self.dimensions,):
            raise ValueError(
                f"Vector for {vector_id} has shape {vec.shape}, "
                f"expected ({self.dimensions},)"
            )

        self._payloads[vector_id] = dict(payload)

        if vector_id in self._id_to_index:
            idx = self._id_to_index[vector_id]
            materialized = self._vectors.shape[0]
            if idx < materialized:
                self._vectors[idx] = vec
            else:
                self._pending[idx - materialized] = vec
            return

        self._id_to_index[vector_id] = len(self._ids)
        self._ids.append(vector_id)
        self._pending.append(vec)

    def _remove(self, vector_id: str) -> bool:
        idx = self._id_to_index.pop(vector_id, None)
        if idx is None:
            return False

        self._flush()
        self._payloads.pop(vector_id, None)

        last_idx = len(self._ids) - 1
        if idx != last_idx:
            # Swap with last element
            last_id = self._ids[last_idx]
            self._ids[idx] = last_id
            self._id_to_index[last_id] = idx
            self._vectors[idx] = self._vectors[last_idx]

        self._ids.pop()
        self._vectors = self._vectors[: len(self._ids)]
        return True

    def _search(
        self,
        vector: list[float],
        limit: int,
        score_threshold: float,
        conditions: dict[str, Any] | None,
    ) -> list[ScoredVector]:
        if not self._ids:
            return []

        self._flush()

        q = np.asarray(vector, dtype=np.float32)
        norm = np.linalg.norm(q)
        if norm == 0:
            return []
        q = q / norm

        scores = self._vectors @ q

        candidates = np.arange(len(self._ids))
        if conditions:
            candidates = np.array(
                [
                    i
                    for i in candidates
                    if _matches(self._payloads[self._ids[i]], conditions)
                ],
                dtype=np.int64,
            )
        if candidates.size == 0:
            return []

        candidates = candidates[scores[candidates] >= score_threshold]
        if candidates.size == 0:
            return []

        # Stable sort keeps insertion order among equal scores
        order = np.argsort(-scores[candidates], kind="stable")[:limit]
        return [
            ScoredVector(
                id=self._ids[i],
                score=min(float(scores[i]), 1.0),
                payload=dict(self._payloads[self._ids[i]]),
            )
            for i in candidates[order]
        ]

    async def upsert(
        self, vector_id: str, vector: list[float], payload: dict[str, Any]
    ) -> None:
        """Add or replace a vector and its payload."""
        self._put(vector_id, vector, payload)

    async def retrieve(
        self, vector_id: str, with_vector: bool = False
    ) -> VectorRecord | None:
        idx = self._id_to_index.get(vector_id)
        if idx is None:
            return None

        vector = None
        if with_vector:
            self._flush()
            vector = self._vectors[idx].astype(float).tolist()

        return VectorRecord(
            id=vector_id, payload=dict(self._payloads[vector_id]), vector=vector
        )

    async def search(
        self,
        vector: list[float],
        limit: int,
        score_threshold: float = 0.0,
        filter: dict[str, Any] | None = None,
    ) -> list[ScoredVector]:
        """Return matches sorted by descending cosine similarity.

        Args:
            vector: Query embedding.
            limit: Maximum number of matches.
            score_threshold: Minimum similarity to include.
            filter: Exact-match conditions on payload keys, AND-ed together.
        """
        return self._search(vector, limit, score_threshold, filter)

    async def delete(self, vector_ids: list[str]) -> None:
        for vector_id in vector_ids:
            self._remove(vector_id)

    async def set_payload(self, vector_ids: list[str], payload: dict[str, Any]) -> None:
        """Merge keys into the payload of each existing vector."""
        for vector_id in vector_ids:
            if vector_id in self._payloads:
                self._payloads[vector_id].update(payload)

    async def set_payload_by_filter(
        self, filter: dict[str, Any], payload: dict[str, Any]
    ) -> int:
        """Merge keys into the payload of every vector matching all conditions."""
        if not filter:
            raise ValueError("set_payload_by_filter requires at least one condition")
        matched = 0
        for stored in self._payloads.values():
            if _matches(stored, filter):
                stored.update(payload)
                matched += 1
        return matched

    async def delete_by_filter(self, filter: dict[str, Any]) -> int:
        """Delete every vector whose payload matches all conditions."""
        if not filter:
            raise ValueError("delete_by_filter requires at least one condition")
        doomed = [
            vector_id
            for vector_id, payload in self._payloads.items()
            if _matches(payload, filter)
        ]
        for vector_id in doomed:
            self._remove(vector_id)
        return len(doomed)

    async def count(self) -> int:
        return len(self._ids)

    def has(self, vector_id: str) -> bool:
        return vector_id in self._id_to_index

    def clear(self) -> None:
        self._ids.clear()
        self._id_to_index.clear()
        self._payloads.clear()
        self._pending.clear()
        self._vectors = np.empty((0, self.dimensions), dtype=np.float32)

    # Persistence

    async def save(self, path: Path | None = None) -> None:
        """Save to .npy + .ids.json + .payloads.json next to path."""
        target = path or self.path
        if target is None:
            return
        self._flush()
        await asyncio.to_thread(self._save_sync, target)

    def _save_sync(self, path: Path) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        ids_path = path.with_suffix(".ids.json")
        payloads_path = path.with_suffix(".payloads.json")

        if not self._ids:
            for p in (path, ids_path, payloads_path):
                p.unlink(missing_ok=True)
            return

        # suffix must be .npy so np.save doesn't append its own extension
        fd, tmp = tempfile.mkstemp(dir=path.parent, suffix=".tmp.npy")
        try:
            os.close(fd)
            np.save(tmp, self._vectors)
            Path(tmp).replace(path)
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise

        _atomic_write_json(ids_path, self._ids)
        _atomic_write_json(payloads_path, self._payloads)

    @classmethod
    async def load(cls, path: Path, dimensions: int) -> NumpyVectorIndex:
        """Load from disk, or return an empty index bound to path."""
        return await asyncio.to_thread(cls._load_sync, path, dimensions)

    @classmethod
    def _load_sync(cls, path: Path, dimensions: int) -> NumpyVectorIndex:
        index = cls(dimensions, path=path)
        ids_path = path.with_suffix(".ids.json")
        payloads_path = path.with_suffix(".payloads.json")

        if not (path.exists() and ids_path.exists()):
            return index

        vectors = np.load(str(path)).astype(np.float32)
        ids = json.loads(ids_path.read_text())
        payloads = (
            json.loads(payloads_path.read_text()) if payloads_path.exists() else {}
        )

        if len(ids) != vectors.shape[0] or vectors.shape[1] != dimensions:
            logger.warning(
                "vector_index_mismatch",
                extra={
                    "path": str(path),
                    "ids": len(ids),
                    "vectors": vectors.shape[0],
                    "dimensions": vectors.shape[1],
                    "expected_dimensions": dimensions,
                },
            )
            return index

        index._vectors = vectors
        index._ids = ids
        index._id_to_index = {id_: i for i, id_ in enumerate(ids)}
        index._payloads = {id_: payloads.get(id_, {}) for id_ in ids}
        return index


def _atomic_write_json(path: Path, data: Any) -> None:
    fd, tmp = tempfile.mkstemp(dir=path.parent, suffix=".json.tmp")
    try:
        with os.fdopen(fd, "w") as f:
            json.dump(data, f)
            f.flush()
            os.fsync(f.fileno())
        Path(tmp).replace(path)
    except BaseException:
        Path(tmp).unlink(missing_ok=True)
        raise
