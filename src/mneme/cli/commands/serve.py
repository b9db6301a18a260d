"""Server command for running the memory API."""

import asyncio
import logging
from pathlib import Path
from typing import Annotated

import typer

logger = logging.getLogger(__name__)


def register(app: typer.Typer) -> None:
    """Register the serve command."""

    @app.command()
    def serve(
        config: Annotated[
            Path | None,
            typer.Option(
                "--config",
                "-c",
                help="Path to configuration file",
            ),
        ] = None,
        host: Annotated[
            str | None,
            typer.Option(
                "--host",
                "-h",
                help="Host to bind to (defaults to [server].host)",
            ),
        ] = None,
        port: Annotated[
            int | None,
            typer.Option(
                "--port",
                "-p",
                help="Port to bind to (defaults to [server].port)",
            ),
        ] = None,
    ) -> None:
        """Start the memory API server."""
        try:
            asyncio.run(_run_server(config, host, port))
        except KeyboardInterrupt:
            # Use print here since logging may not be configured yet
            print("\nServer stopped")


async def _run_server(
    config_path: Path | None = None,
    host: str | None = None,
    port: int | None = None,
) -> None:
    """Run the server asynchronously."""
    from mneme.cli.context import get_config
    from mneme.logging import configure_logging
    from mneme.server import ServerRunner, create_app

    # Rich console output plus JSONL file logs for the long-running server
    configure_logging(use_rich=True, log_to_file=True)

    logger.info("config_loading")
    mneme_config = get_config(config_path)

    app = create_app(config=mneme_config)
    runner = ServerRunner(
        app,
        host=host or mneme_config.server.host,
        port=port or mneme_config.server.port,
    )
    await runner.run()
