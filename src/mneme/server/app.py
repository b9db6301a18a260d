"""FastAPI application for the memory engine."""

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from mneme.errors import (
    DimensionMismatchError,
    DuplicateMemoryError,
    InfrastructureError,
    MnemeError,
    NotFoundError,
    ProviderError,
    QuotaError,
    RateLimitError,
    TimeoutError,
    ValidationError,
)
from mneme.memory.runtime import create_memory_engine
from mneme.server.routes import health, memories

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from mneme.config import MnemeConfig
    from mneme.memory.runtime import MemoryRuntime

logger = logging.getLogger(__name__)

# Most specific first; the first matching class wins.
ERROR_STATUS_CODES: tuple[tuple[type[MnemeError], int], ...] = (
    (ValidationError, 422),
    (NotFoundError, 404),
    (RateLimitError, 429),
    (QuotaError, 429),
    (TimeoutError, 504),
    (DuplicateMemoryError, 409),
    (DimensionMismatchError, 503),
    (InfrastructureError, 503),
    (ProviderError, 502),
)


def status_for_error(error: MnemeError) -> int:
    for error_type, status in ERROR_STATUS_CODES:
        if isinstance(error, error_type):
            return status
    return 500


async def _handle_mneme_error(request: Request, exc: Exception) -> JSONResponse:
    assert isinstance(exc, MnemeError)
    status = status_for_error(exc)
    log = logger.warning if status < 500 else logger.error
    log(
        "request_failed",
        extra={
            "http.path": request.url.path,
            "http.status": status,
            "error.type": type(exc).__name__,
            "error.message": str(exc),
        },
    )
    return JSONResponse(
        status_code=status,
        content={"error": type(exc).__name__, "detail": str(exc)},
    )


class MnemeServer:
    """Main server application.

    Owns the FastAPI app and the memory runtime behind it. A runtime passed
    in is used as-is and left open on shutdown; otherwise one is built from
    config at startup and closed on shutdown.
    """

    def __init__(
        self,
        config: "MnemeConfig | None" = None,
        runtime: "MemoryRuntime | None" = None,
    ):
        if config is None and runtime is None:
            raise ValueError("Either config or runtime must be provided")
        self._config = config
        self._runtime = runtime
        self._owns_runtime = runtime is None
        self._app = self._create_app()

    @property
    def app(self) -> FastAPI:
        """Get the FastAPI application."""
        return self._app

    def _create_app(self) -> FastAPI:
        """Create and configure the FastAPI app."""

        @asynccontextmanager
        async def lifespan(app: FastAPI) -> "AsyncIterator[None]":
            logger.info("server_starting")
            if self._runtime is None:
                assert self._config is not None
                self._runtime = await create_memory_engine(self._config)
            app.state.runtime = self._runtime

            yield

            logger.info("server_stopping")
            app.state.runtime = None
            if self._owns_runtime and self._runtime is not None:
                await self._runtime.close()
                self._runtime = None

        app = FastAPI(
            title="Mneme",
            description="Content-addressed memory and retrieval API",
            version="0.1.0",
            lifespan=lifespan,
        )

        app.state.server = self
        app.state.runtime = None

        app.add_exception_handler(MnemeError, _handle_mneme_error)

        app.include_router(health.router, tags=["health"])
        app.include_router(memories.router)

        return app


def create_app(
    config: "MnemeConfig | None" = None,
    runtime: "MemoryRuntime | None" = None,
) -> FastAPI:
    """Create the FastAPI application."""
    return MnemeServer(config=config, runtime=runtime).app
