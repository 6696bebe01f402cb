# Copyright (c) Syntropy Systems
"""Main CLI entry point for simsweep."""

import logging

import typer
from rich.logging import RichHandler

from simsweep.cli.plan import plan
from simsweep.cli.run import run
from simsweep.cli.show import show

app = typer.Typer(
    name="simsweep",
    help=(
        "Factorial simulation studies. Describe what to vary and what to "
        "compute, get one table back."
    ),
    no_args_is_help=True,
    add_completion=False,
)


@app.callback()
def main(
    verbose: bool = typer.Option(
        False,
        "--verbose", "-v",
        help="Show debug logging",
    ),
) -> None:
    """Configure logging for every command."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(show_path=False)],
        force=True,
    )


# Register commands
_ = app.command()(run)
_ = app.command()(plan)
_ = app.command()(show)


if __name__ == "__main__":
    app()
