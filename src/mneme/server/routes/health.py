"""Health check routes."""

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

router = APIRouter()


@router.get("/health")
async def health_check() -> dict[str, str]:
    """Health check endpoint.

    Returns:
        Health status.
    """
    return {"status": "healthy"}


@router.get("/ready", response_model=None)
async def readiness_check(request: Request) -> dict[str, str | int] | JSONResponse:
    """Readiness check endpoint.

    Ready once the memory runtime is wired; reports the indexed vector count.
    """
    runtime = getattr(request.app.state, "runtime", None)
    if runtime is None:
        return JSONResponse(status_code=503, content={"status": "starting"})
    return {"status": "ready", "vectors": await runtime.index.count()}
