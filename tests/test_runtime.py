"""Tests for runtime wiring and server startup."""

from types import SimpleNamespace
from typing import Any, cast

import httpx

from mneme.config.models import RerankConfig, RetrievalConfig, VectorsConfig
from mneme.llm.registry import LLMRegistry
from mneme.memory.prompts import RERANK_SYSTEM_PROMPT
from mneme.memory.runtime import create_memory_engine, vector_index_path
from mneme.memory.types import AskScope, CreateMemoryInput
from mneme.memory.vectors import NumpyVectorIndex
from mneme.server.app import create_app
from mneme.server.runner import ServerRunner

from tests.conftest import DIMENSIONS

ACME = "Paid the Acme invoice of $120 on March 3. Dana confirmed the payment arrived."


class TestCreateMemoryEngine:
    async def test_wires_configured_models(self, runtime, fake_llm):
        result = await runtime.engine.create(CreateMemoryInput(owner_id=1, content=ACME))

        assert len(result.embedding_results) == 2
        assert fake_llm.complete_calls[0]["model"] == "gpt-4o-mini"
        assert fake_llm.embed_calls[0]["model"] == "text-embedding-3-small"
        assert fake_llm.embed_calls[0]["dimensions"] == DIMENSIONS
        assert runtime.embeddings.dimensions == DIMENSIONS

    async def test_vectors_persist_across_runtimes(self, mneme_config, fake_llm, tmp_path):
        config = mneme_config.model_copy(
            update={"vectors": VectorsConfig(path=tmp_path / "vectors")}
        )
        registry = LLMRegistry()
        registry.register(fake_llm)

        first = await create_memory_engine(
            config, registry=registry, embedding_provider=fake_llm
        )
        await first.engine.create(CreateMemoryInput(owner_id=1, content=ACME))
        await first.close()

        assert vector_index_path(config) == tmp_path / "vectors" / "memories.npy"
        assert vector_index_path(config).exists()

        second = await create_memory_engine(
            config, registry=registry, embedding_provider=fake_llm
        )
        try:
            assert await second.index.count() == 2
            hits = await second.retrieval.search(
                "Paid the Acme invoice of $120 on March 3.",
                second.retrieval.search_options(owner_id=1),
            )
            assert hits[0].text == "Paid the Acme invoice of $120 on March 3."
        finally:
            await second.close()

    async def test_in_memory_index_when_no_path(self, runtime):
        assert isinstance(runtime.index, NumpyVectorIndex)
        assert runtime.index.path is None

    async def test_rerank_defaults_from_config(self, mneme_config, fake_llm):
        config = mneme_config.model_copy(
            update={
                "retrieval": RetrievalConfig(
                    score_threshold=0.0, rerank=RerankConfig(enabled=True, top_k=1)
                )
            }
        )
        registry = LLMRegistry()
        registry.register(fake_llm)
        rt = await create_memory_engine(
            config, registry=registry, embedding_provider=fake_llm
        )
        try:
            await rt.engine.create(CreateMemoryInput(owner_id=1, content=ACME))
            result = await rt.retrieval.ask("What did I pay?", AskScope(owner_id=1))
        finally:
            await rt.close()

        assert len(fake_llm.calls_with_system(RERANK_SYSTEM_PROMPT)) == 2
        assert len(result.hits) == 1
        assert result.rerank_model == "gpt-4o-mini"


class TestServerLifespan:
    async def test_owned_runtime_built_and_closed(
        self, runtime, mneme_config, monkeypatch
    ):
        closed: list[bool] = []

        async def fake_factory(config):
            return runtime

        async def fake_close():
            closed.append(True)

        monkeypatch.setattr("mneme.server.app.create_memory_engine", fake_factory)
        monkeypatch.setattr(runtime, "close", fake_close)
        app = create_app(config=mneme_config)

        async with app.router.lifespan_context(app):
            assert app.state.runtime is runtime
            transport = httpx.ASGITransport(app=app)
            async with httpx.AsyncClient(transport=transport, base_url="http://t") as c:
                assert (await c.get("/ready")).status_code == 200

        assert app.state.runtime is None
        assert closed == [True]

    async def test_borrowed_runtime_left_open(self, runtime, monkeypatch):
        closed: list[bool] = []

        async def fake_close():
            closed.append(True)

        monkeypatch.setattr(runtime, "close", fake_close)
        app = create_app(runtime=runtime)

        async with app.router.lifespan_context(app):
            assert app.state.runtime is runtime

        assert closed == []


class TestServerRunner:
    async def test_serves_and_installs_signal_handlers(self, monkeypatch):
        calls: list[str] = []

        class _FakeServer:
            should_exit = False
            force_exit = False

            async def serve(self) -> None:
                calls.append("serve")

        handlers = []

        class _FakeLoop:
            def add_signal_handler(self, _sig, handler) -> None:
                handlers.append(handler)

        server = _FakeServer()
        monkeypatch.setattr("mneme.server.runner.uvicorn.Config", lambda *a, **kw: object())
        monkeypatch.setattr("mneme.server.runner.uvicorn.Server", lambda _cfg: server)
        monkeypatch.setattr(
            "mneme.server.runner.asyncio.get_running_loop", lambda: _FakeLoop()
        )

        app = cast(Any, SimpleNamespace(state=SimpleNamespace()))
        await ServerRunner(app, host="127.0.0.1", port=8080).run()

        assert calls == ["serve"]
        assert len(handlers) == 2

        handlers[0]()
        assert server.should_exit is True
        assert server.force_exit is False
        handlers[0]()
        assert server.force_exit is True
