"""Command-line interface for pkcesession."""

import logging
from typing import Annotated

import typer
from rich.console import Console
from rich.logging import RichHandler

from pkcesession.cli.auth import auth_app


def _setup_logging(verbose: bool = False) -> None:
    """Configure logging with Rich handler."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), rich_tracebacks=True, show_path=False)],
    )
    # Quiet noisy libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("aiohttp").setLevel(logging.WARNING)


app = typer.Typer(
    name="pkcesession",
    help="OAuth2 PKCE sign-in and session management.",
)
app.add_typer(auth_app)


@app.callback()
def main(
    verbose: Annotated[
        bool,
        typer.Option(
            "--verbose",
            "-v",
            help="Enable verbose logging.",
        ),
    ] = False,
) -> None:
    """OAuth2 PKCE sign-in and session management."""
    _setup_logging(verbose)


if __name__ == "__main__":
    app()
