"""Memory commands: add, search, ask, show, forget, list."""

import asyncio
from collections.abc import Coroutine
from pathlib import Path
from typing import TYPE_CHECKING, Annotated, Any

import typer

from mneme.cli.console import (
    confirm_or_cancel,
    console,
    create_table,
    dim,
    error,
    success,
    truncate,
    warning,
)
from mneme.cli.context import get_config, open_runtime
from mneme.errors import MnemeError

if TYPE_CHECKING:
    from mneme.memory.types import CreateMemoryInput

ConfigOption = Annotated[
    Path | None,
    typer.Option("--config", "-c", help="Path to configuration file"),
]
OwnerOption = Annotated[
    int | None,
    typer.Option("--owner", "-o", help="Owner id to scope to"),
]
AgentOption = Annotated[
    str | None,
    typer.Option("--agent", help="Agent id to scope to"),
]
RunOption = Annotated[
    str | None,
    typer.Option("--run", help="Run id to scope to"),
]
LimitOption = Annotated[
    int | None,
    typer.Option("--limit", "-n", help="Maximum results (defaults to [retrieval].limit)"),
]
ThresholdOption = Annotated[
    float | None,
    typer.Option(
        "--threshold",
        "-t",
        help="Minimum similarity 0..1 (defaults to [retrieval].score_threshold)",
    ),
]


def _run(coro: Coroutine[Any, Any, None]) -> None:
    """Run a command coroutine, reporting engine errors without a traceback."""
    try:
        asyncio.run(coro)
    except KeyboardInterrupt:
        console.print("\n[dim]Cancelled[/dim]")
    except MnemeError as e:
        error(f"{type(e).__name__}: {e}")
        raise typer.Exit(1) from None


def register(app: typer.Typer) -> None:
    """Register the memory commands."""

    @app.command()
    def add(
        content: Annotated[
            str | None,
            typer.Argument(help="Memory content (or use --file)"),
        ] = None,
        owner: Annotated[int, typer.Option("--owner", "-o", help="Owner id")] = 1,
        file: Annotated[
            Path | None,
            typer.Option("--file", "-f", help="Read content from a file"),
        ] = None,
        title: Annotated[str | None, typer.Option("--title", help="Title")] = None,
        source: Annotated[
            str | None, typer.Option("--source", "-s", help="Source label")
        ] = "cli",
        tags: Annotated[
            list[str] | None,
            typer.Option("--tag", help="Tag (repeatable)"),
        ] = None,
        agent: AgentOption = None,
        run: RunOption = None,
        config_path: ConfigOption = None,
    ) -> None:
        """Store a memory and embed its extracted facts.

        Examples:
            mneme add "Paid the Acme invoice of $120 on March 3" --owner 7
            mneme add --file notes.txt --title "Standup notes"
        """
        if file is not None:
            content = file.read_text()
        if not content or not content.strip():
            error("Content is required (argument or --file)")
            raise typer.Exit(1)

        from mneme.memory.types import CreateMemoryInput

        data = CreateMemoryInput(
            owner_id=owner,
            content=content,
            title=title,
            source=source,
            tags=list(tags or []),
            agent_id=agent,
            run_id=run,
        )
        _run(_memory_add(data, config_path))

    @app.command()
    def search(
        query: Annotated[str, typer.Argument(help="Search query")],
        owner: OwnerOption = None,
        agent: AgentOption = None,
        run: RunOption = None,
        limit: LimitOption = None,
        threshold: ThresholdOption = None,
        config_path: ConfigOption = None,
    ) -> None:
        """Search memories by semantic similarity."""
        _run(_memory_search(query, owner, agent, run, limit, threshold, config_path))

    @app.command()
    def ask(
        question: Annotated[str, typer.Argument(help="Question to answer")],
        owner: OwnerOption = None,
        agent: AgentOption = None,
        run: RunOption = None,
        limit: LimitOption = None,
        threshold: ThresholdOption = None,
        rerank: Annotated[
            bool | None,
            typer.Option(
                "--rerank/--no-rerank",
                help="LLM rerank hits (defaults to [retrieval.rerank].enabled)",
            ),
        ] = None,
        top_k: Annotated[
            int | None,
            typer.Option("--top-k", help="Keep only the top K reranked hits"),
        ] = None,
        config_path: ConfigOption = None,
    ) -> None:
        """Answer a question from stored memories."""
        _run(
            _memory_ask(
                question,
                owner,
                agent,
                run,
                limit,
                threshold,
                rerank,
                top_k,
                config_path,
            )
        )

    @app.command()
    def show(
        memory_id: Annotated[int, typer.Argument(help="Memory id")],
        config_path: ConfigOption = None,
    ) -> None:
        """Show one memory."""
        _run(_memory_show(memory_id, config_path))

    @app.command()
    def forget(
        memory_id: Annotated[int, typer.Argument(help="Memory id")],
        force: Annotated[
            bool,
            typer.Option("--force", "-f", help="Delete without confirmation"),
        ] = False,
        config_path: ConfigOption = None,
    ) -> None:
        """Delete a memory and all of its vectors."""
        if not confirm_or_cancel(f"Delete memory {memory_id}?", force):
            return
        _run(_memory_forget(memory_id, config_path))

    @app.command("list")
    def list_memories(
        owner: Annotated[int, typer.Option("--owner", "-o", help="Owner id")] = 1,
        limit: Annotated[
            int, typer.Option("--limit", "-n", help="Maximum entries to show")
        ] = 20,
        config_path: ConfigOption = None,
    ) -> None:
        """List an owner's memories, newest first."""
        _run(_memory_list(owner, limit, config_path))


async def _memory_add(data: "CreateMemoryInput", config_path: Path | None) -> None:
    config = get_config(config_path)
    async with open_runtime(config) as runtime:
        result = await runtime.engine.create_memory(data)

    memory = result.memory
    if result.is_duplicate:
        warning(f"Already stored as memory {memory.id}")
        return

    success(f"Stored memory {memory.id}")
    stored = [r for r in result.embedding_results if r.success]
    dim(f"{len(stored)}/{len(result.embedding_results)} facts embedded")
    if result.note:
        dim(result.note)
    for r in result.embedding_results:
        if not r.success:
            warning(f"{r.vector_id}: {r.error}")


async def _memory_search(
    query: str,
    owner: int | None,
    agent: str | None,
    run: str | None,
    limit: int | None,
    threshold: float | None,
    config_path: Path | None,
) -> None:
    config = get_config(config_path)
    async with open_runtime(config) as runtime:
        retrieval = runtime.retrieval
        hits = await retrieval.search(
            query,
            retrieval.search_options(
                owner_id=owner,
                agent_id=agent,
                run_id=run,
                limit=limit,
                score_threshold=threshold,
            ),
        )

    if not hits:
        warning(f"No memories found matching '{query}'")
        return

    table = create_table(
        f"Memory Search: '{query}'",
        [
            ("Score", "green"),
            ("Memory", "dim"),
            ("Text", {"style": "white", "max_width": 60}),
        ],
    )
    for hit in hits:
        table.add_row(
            f"{hit.score:.3f}",
            str(hit.payload.get("memoryId", "")),
            truncate(hit.text, 80),
        )
    console.print(table)


async def _memory_ask(
    question: str,
    owner: int | None,
    agent: str | None,
    run: str | None,
    limit: int | None,
    threshold: float | None,
    rerank: bool | None,
    top_k: int | None,
    config_path: Path | None,
) -> None:
    from mneme.memory.types import AskScope, RerankOptions

    config = get_config(config_path)
    async with open_runtime(config) as runtime:
        result = await runtime.retrieval.ask(
            question,
            AskScope(
                owner_id=owner,
                agent_id=agent,
                run_id=run,
                limit=limit,
                score_threshold=threshold,
                rerank=RerankOptions(enabled=rerank, top_k=top_k),
            ),
        )

    console.print(result.answer)
    console.print()
    model = result.model
    if result.rerank_model:
        model += f", reranked by {result.rerank_model}"
    dim(f"{len(result.hits)} memories used ({model})")
    for i, hit in enumerate(result.hits, start=1):
        score = hit.rerank_score if hit.rerank_score is not None else hit.score
        dim(f"  [{i}] {score:.3f} {truncate(hit.text)}")


async def _memory_show(memory_id: int, config_path: Path | None) -> None:
    config = get_config(config_path)
    async with open_runtime(config) as runtime:
        memory = await runtime.engine.get_memory(memory_id)

    if memory is None:
        error(f"Memory {memory_id} not found")
        raise typer.Exit(1)

    from mneme.memory.types import memory_to_dict

    table = create_table(f"Memory {memory.id}", [("Field", "cyan"), ("Value", "white")])
    for field, value in memory_to_dict(memory).items():
        if value in (None, "", [], {}):
            continue
        table.add_row(field, str(value))
    console.print(table)


async def _memory_forget(memory_id: int, config_path: Path | None) -> None:
    config = get_config(config_path)
    async with open_runtime(config) as runtime:
        await runtime.engine.delete_memory(memory_id)
    success(f"Deleted memory {memory_id}")


async def _memory_list(owner: int, limit: int, config_path: Path | None) -> None:
    config = get_config(config_path)
    async with open_runtime(config) as runtime:
        memories = await runtime.engine.get_memories_by_owner(owner)

    if not memories:
        warning("No memory entries found")
        return

    table = create_table(
        "Memory Entries",
        [
            ("ID", "dim"),
            ("Timestamp", "dim"),
            ("Source", "cyan"),
            ("Title", {"style": "blue", "max_width": 24}),
            ("Content", {"style": "white", "max_width": 50}),
        ],
    )
    for memory in memories[:limit]:
        table.add_row(
            str(memory.id),
            memory.timestamp.strftime("%Y-%m-%d %H:%M") if memory.timestamp else "",
            memory.source or "",
            memory.title or "",
            truncate(memory.content),
        )
    console.print(table)
    if len(memories) > limit:
        dim(f"Showing {limit} of {len(memories)}")
