# Copyright (c) Syntropy Systems
"""simsweep plan command."""
from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from simsweep.config import StudyConfig
from simsweep.errors import ConfigurationError
from simsweep.grid import GridBuilder

console = Console()


def plan(
    config_file: Path = typer.Argument(
        ...,
        help="Path to study configuration YAML file",
        exists=True,
        dir_okay=False,
    ),
    limit: int = typer.Option(
        50,
        "--limit", "-l",
        help="Max conditions to list",
    ),
) -> None:
    """Preview the conditions and task count of a study without running it."""
    try:
        config = StudyConfig.from_yaml(config_file)
        exclude = config.load_exclude()
        grid = GridBuilder(config.on_exclusion_error).build(  # type: ignore[arg-type]
            config.factors,  # type: ignore[arg-type]
            exclude,  # type: ignore[arg-type]
        )
    except (OSError, ConfigurationError) as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from e

    for warning in grid.warnings:
        console.print(f"[yellow]Warning:[/yellow] {warning}")

    if not grid.conditions:
        console.print("[yellow]No conditions survive the exclusion rule[/yellow]")
        return

    table = Table(title=f"Study: {config.name}")
    table.add_column("#", style="dim")
    for name in grid.factor_names:
        table.add_column(name)

    for condition in grid.conditions[:limit]:
        table.add_row(
            str(condition.condition_index),
            *(str(condition.values[name]) for name in grid.factor_names),
        )

    console.print(table)
    if len(grid) > limit:
        console.print(f"[dim]... {len(grid) - limit} more condition(s)[/dim]")

    total = len(grid) * config.replications
    console.print(
        f"\n[bold]{len(grid)} condition(s)[/bold] x {config.replications} "
        f"replication(s) = [bold]{total} task(s)[/bold]"
    )
    if grid.excluded:
        console.print(f"  [dim]excluded:[/dim] {grid.excluded} of {grid.candidates}")
