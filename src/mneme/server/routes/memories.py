"""Memory routes: CRUD, conversation ingest, search, and ask."""

import logging
from datetime import datetime
from typing import Any, Literal

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response
from pydantic import BaseModel, Field

from mneme.memory.runtime import MemoryRuntime
from mneme.memory.types import (
    AddMemoriesInput,
    AskScope,
    ChatMessage,
    CreateMemoryInput,
    RerankOptions,
    UpdateMemoryInput,
    memory_to_dict,
)

router = APIRouter(prefix="/api/memories", tags=["memories"])
logger = logging.getLogger(__name__)


def get_runtime(request: Request) -> MemoryRuntime:
    runtime = getattr(request.app.state, "runtime", None)
    if runtime is None:
        raise HTTPException(status_code=503, detail="Memory engine is not ready")
    return runtime


class MemoryFields(BaseModel):
    """Provenance and classification fields shared by memory requests."""

    source: str | None = None
    source_id: str | None = None
    timestamp: datetime | None = None
    content_url: str | None = None
    title: str | None = None
    origin: str | None = None
    tags: list[str] = Field(default_factory=list)
    category: list[str] = Field(default_factory=list)
    attribute: dict[str, Any] = Field(default_factory=dict)
    summary: str | None = None
    type: str = "text"
    importance: float | None = Field(default=None, ge=0.0, le=1.0)
    confidence: float | None = Field(default=None, ge=0.0, le=1.0)


class CreateMemoryRequest(MemoryFields):
    owner_id: int
    content: str
    agent_id: str | None = None
    run_id: str | None = None
    role: str | None = None

    def to_input(self) -> CreateMemoryInput:
        return CreateMemoryInput(**self.model_dump())


class UpdateMemoryRequest(BaseModel):
    """Partial update; omitted fields are left unchanged."""

    owner_id: int | None = None
    content: str | None = None
    source: str | None = None
    source_id: str | None = None
    timestamp: datetime | None = None
    content_url: str | None = None
    title: str | None = None
    origin: str | None = None
    tags: list[str] | None = None
    category: list[str] | None = None
    attribute: dict[str, Any] | None = None
    summary: str | None = None
    type: str | None = None
    importance: float | None = Field(default=None, ge=0.0, le=1.0)
    confidence: float | None = Field(default=None, ge=0.0, le=1.0)


class MessageModel(BaseModel):
    role: Literal["system", "user", "assistant"]
    content: str


class AddMemoriesRequest(MemoryFields):
    messages: list[MessageModel]
    owner_id: int | None = None
    agent_id: str | None = None
    run_id: str | None = None
    infer: bool = True
    metadata: dict[str, Any] | None = None

    def to_input(self) -> AddMemoriesInput:
        fields = self.model_dump(exclude={"messages"})
        return AddMemoriesInput(
            messages=[ChatMessage(role=m.role, content=m.content) for m in self.messages],
            **fields,
        )


class BatchCreateRequest(BaseModel):
    items: list[CreateMemoryRequest]


class SearchRequest(BaseModel):
    query: str
    owner_id: int | None = None
    agent_id: str | None = None
    run_id: str | None = None
    limit: int | None = None
    score_threshold: float | None = None
    filter: dict[str, Any] | None = None


class RerankRequest(BaseModel):
    enabled: bool | None = None
    top_k: int | None = Field(default=None, ge=0)
    model: str | None = None


class AskRequest(BaseModel):
    question: str
    query: str | None = None
    owner_id: int | None = None
    agent_id: str | None = None
    run_id: str | None = None
    limit: int | None = None
    score_threshold: float | None = None
    rerank: RerankRequest | None = None


@router.post("")
async def create_memory(
    body: CreateMemoryRequest,
    response: Response,
    runtime: MemoryRuntime = Depends(get_runtime),
) -> dict[str, Any]:
    """Store a memory; an identical memory in the same scope is returned as-is."""
    result = await runtime.engine.create_memory(body.to_input())
    response.status_code = 200 if result.is_duplicate else 201
    return result.to_dict()


@router.get("")
async def list_memories(
    owner_id: int = Query(..., description="Owner whose memories to list"),
    runtime: MemoryRuntime = Depends(get_runtime),
) -> dict[str, Any]:
    memories = await runtime.engine.get_memories_by_owner(owner_id)
    return {"memories": [memory_to_dict(m) for m in memories], "count": len(memories)}


@router.post("/add")
async def add_memories(
    body: AddMemoriesRequest,
    runtime: MemoryRuntime = Depends(get_runtime),
) -> dict[str, Any]:
    """Store each non-system message of a conversation."""
    result = await runtime.engine.add_memories(body.to_input())
    return result.to_dict()


@router.post("/batch")
async def batch_create(
    body: BatchCreateRequest,
    runtime: MemoryRuntime = Depends(get_runtime),
) -> dict[str, Any]:
    """Ingest many memories in chunks; per-item failures are reported in-band."""
    result = await runtime.ingestor.ingest([item.to_input() for item in body.items])
    return result.to_dict()


@router.post("/search")
async def search_memories(
    body: SearchRequest,
    runtime: MemoryRuntime = Depends(get_runtime),
) -> dict[str, Any]:
    retrieval = runtime.retrieval
    hits = await retrieval.search(
        body.query,
        retrieval.search_options(
            owner_id=body.owner_id,
            agent_id=body.agent_id,
            run_id=body.run_id,
            limit=body.limit,
            score_threshold=body.score_threshold,
            filter=body.filter,
        ),
    )
    return {"results": [h.to_dict() for h in hits], "count": len(hits)}


@router.post("/ask")
async def ask_memories(
    body: AskRequest,
    runtime: MemoryRuntime = Depends(get_runtime),
) -> dict[str, Any]:
    """Answer a question grounded on the caller's memories."""
    rerank = body.rerank or RerankRequest()
    result = await runtime.retrieval.ask(
        body.question,
        AskScope(
            owner_id=body.owner_id,
            agent_id=body.agent_id,
            run_id=body.run_id,
            query=body.query,
            limit=body.limit,
            score_threshold=body.score_threshold,
            rerank=RerankOptions(
                enabled=rerank.enabled, top_k=rerank.top_k, model=rerank.model
            ),
        ),
    )
    return {**result.to_dict(), "count": len(result.hits)}


@router.get("/{memory_id}")
async def get_memory(
    memory_id: int,
    runtime: MemoryRuntime = Depends(get_runtime),
) -> dict[str, Any]:
    memory = await runtime.engine.get_memory(memory_id)
    if memory is None:
        raise HTTPException(status_code=404, detail=f"Memory {memory_id} not found")
    return memory_to_dict(memory)


@router.patch("/{memory_id}")
async def update_memory(
    memory_id: int,
    body: UpdateMemoryRequest,
    runtime: MemoryRuntime = Depends(get_runtime),
) -> dict[str, Any]:
    memory = await runtime.engine.update_memory(
        UpdateMemoryInput(id=memory_id, **body.model_dump(exclude_unset=True))
    )
    return memory_to_dict(memory)


@router.delete("/{memory_id}")
async def delete_memory(
    memory_id: int,
    runtime: MemoryRuntime = Depends(get_runtime),
) -> dict[str, Any]:
    """Delete a memory and all of its vectors."""
    memory = await runtime.engine.delete_memory(memory_id)
    logger.info("memory_deleted_via_api", extra={"memory_id": memory_id})
    return {"deleted": True, "memory": memory_to_dict(memory)}
