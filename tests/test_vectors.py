"""Tests for the numpy vector index."""

from pathlib import Path

import pytest

from mneme.memory.vectors import NumpyVectorIndex


def _unit(dims: int, hot: int) -> list[float]:
    vec = [0.0] * dims
    vec[hot] = 1.0
    return vec


@pytest.fixture
def index() -> NumpyVectorIndex:
    return NumpyVectorIndex(4)


class TestUpsertAndRetrieve:
    async def test_retrieve_returns_payload_and_vector(self, index):
        await index.upsert("a", [3.0, 0.0, 0.0, 0.0], {"ownerId": 1})

        record = await index.retrieve("a", with_vector=True)

        assert record is not None
        assert record.payload == {"ownerId": 1}
        assert record.vector == pytest.approx([1.0, 0.0, 0.0, 0.0])

    async def test_retrieve_without_vector(self, index):
        await index.upsert("a", _unit(4, 0), {})
        record = await index.retrieve("a")
        assert record is not None
        assert record.vector is None

    async def test_retrieve_missing(self, index):
        assert await index.retrieve("nope") is None

    async def test_upsert_replaces_existing(self, index):
        await index.upsert("a", _unit(4, 0), {"v": 1})
        await index.upsert("a", _unit(4, 1), {"v": 2})

        assert await index.count() == 1
        results = await index.search(_unit(4, 1), limit=5)
        assert [(r.id, r.payload["v"]) for r in results] == [("a", 2)]

    async def test_wrong_dimension_rejected(self, index):
        with pytest.raises(ValueError, match="expected"):
            await index.upsert("a", [1.0, 0.0], {})


class TestSearch:
    async def test_sorted_by_descending_similarity(self, index):
        await index.upsert("far", [0.0, 1.0, 0.0, 0.0], {})
        await index.upsert("near", [1.0, 0.1, 0.0, 0.0], {})
        await index.upsert("mid", [1.0, 1.0, 0.0, 0.0], {})

        results = await index.search([1.0, 0.0, 0.0, 0.0], limit=3)

        assert [r.id for r in results] == ["near", "mid", "far"]
        assert results[0].score <= 1.0

    async def test_threshold_and_limit(self, index):
        await index.upsert("x", _unit(4, 0), {})
        await index.upsert("y", _unit(4, 1), {})
        await index.upsert("z", [1.0, 1.0, 0.0, 0.0], {})

        results = await index.search(_unit(4, 0), limit=1, score_threshold=0.5)
        assert [r.id for r in results] == ["x"]

        results = await index.search(_unit(4, 0), limit=10, score_threshold=0.5)
        assert {r.id for r in results} == {"x", "z"}

    async def test_filter_is_anded_exact_match(self, index):
        await index.upsert("a", _unit(4, 0), {"ownerId": 1, "agentId": "bot"})
        await index.upsert("b", _unit(4, 0), {"ownerId": 1})
        await index.upsert("c", _unit(4, 0), {"ownerId": 2, "agentId": "bot"})

        results = await index.search(
            _unit(4, 0), limit=10, filter={"ownerId": 1, "agentId": "bot"}
        )
        assert [r.id for r in results] == ["a"]

    async def test_equal_scores_keep_insertion_order(self, index):
        for name in ("first", "second", "third"):
            await index.upsert(name, _unit(4, 2), {})
        results = await index.search(_unit(4, 2), limit=3)
        assert [r.id for r in results] == ["first", "second", "third"]

    async def test_empty_index(self, index):
        assert await index.search(_unit(4, 0), limit=3) == []


class TestDeletion:
    async def test_delete_keeps_other_vectors_searchable(self, index):
        for i in range(4):
            await index.upsert(f"v{i}", _unit(4, i), {"i": i})

        await index.delete(["v0"])

        assert await index.count() == 3
        assert not index.has("v0")
        results = await index.search(_unit(4, 3), limit=1)
        assert results[0].id == "v3"
        assert results[0].payload == {"i": 3}

    async def test_delete_by_filter(self, index):
        await index.upsert("memory_1_fact_0", _unit(4, 0), {"memoryId": 1})
        await index.upsert("memory_1_fact_1", _unit(4, 1), {"memoryId": 1})
        await index.upsert("memory_2_fact_0", _unit(4, 2), {"memoryId": 2})

        removed = await index.delete_by_filter({"memoryId": 1})

        assert removed == 2
        assert await index.count() == 1
        assert index.has("memory_2_fact_0")

    async def test_delete_by_empty_filter_refused(self, index):
        await index.upsert("a", _unit(4, 0), {})
        with pytest.raises(ValueError):
            await index.delete_by_filter({})
        assert await index.count() == 1

    async def test_set_payload_merges(self, index):
        await index.upsert("a", _unit(4, 0), {"ownerId": 1, "fact": "x"})
        await index.set_payload(["a", "missing"], {"fact": "y", "extra": True})

        record = await index.retrieve("a")
        assert record is not None
        assert record.payload == {"ownerId": 1, "fact": "y", "extra": True}

    async def test_set_payload_by_filter(self, index):
        await index.upsert("a", _unit(4, 0), {"memoryId": 1, "ownerId": 1})
        await index.upsert("b", _unit(4, 1), {"memoryId": 1, "ownerId": 1})
        await index.upsert("c", _unit(4, 2), {"memoryId": 2, "ownerId": 1})

        updated = await index.set_payload_by_filter({"memoryId": 1}, {"ownerId": 2})

        assert updated == 2
        hits = await index.search(_unit(4, 0), limit=10, filter={"ownerId": 1})
        assert [h.id for h in hits] == ["c"]
        with pytest.raises(ValueError):
            await index.set_payload_by_filter({}, {"ownerId": 3})


class TestPersistence:
    async def test_save_and_load_roundtrip(self, tmp_path: Path):
        path = tmp_path / "vectors" / "memories.npy"
        index = NumpyVectorIndex(4, path=path)
        await index.upsert("a", _unit(4, 0), {"ownerId": 1})
        await index.upsert("b", _unit(4, 1), {"ownerId": 2})
        await index.save()

        loaded = await NumpyVectorIndex.load(path, 4)

        assert await loaded.count() == 2
        results = await loaded.search(_unit(4, 1), limit=1, filter={"ownerId": 2})
        assert [r.id for r in results] == ["b"]

    async def test_load_missing_returns_empty(self, tmp_path: Path):
        loaded = await NumpyVectorIndex.load(tmp_path / "none.npy", 4)
        assert await loaded.count() == 0
        assert loaded.path == tmp_path / "none.npy"

    async def test_load_with_other_dimension_starts_empty(self, tmp_path: Path):
        path = tmp_path / "memories.npy"
        index = NumpyVectorIndex(4, path=path)
        await index.upsert("a", _unit(4, 0), {})
        await index.save()

        loaded = await NumpyVectorIndex.load(path, 8)
        assert await loaded.count() == 0

    async def test_save_without_path_is_noop(self):
        index = NumpyVectorIndex(4)
        await index.upsert("a", _unit(4, 0), {})
        await index.save()
