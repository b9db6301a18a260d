"""Main CLI application."""

from typing import Annotated

import typer

from mneme.cli.commands import memory, serve

app = typer.Typer(
    name="mneme",
    help="Mneme - content-addressed memory and retrieval",
    no_args_is_help=True,
)


@app.callback()
def main(
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Show debug logs"),
    ] = False,
) -> None:
    """Configure console logging for every command."""
    from mneme.logging import configure_logging

    configure_logging(level="DEBUG" if verbose else "WARNING")


serve.register(app)
memory.register(app)


if __name__ == "__main__":
    app()
