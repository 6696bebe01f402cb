# Copyright (c) Syntropy Systems
"""simsweep show command."""
from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from simsweep.grid import ERROR_COLUMN
from simsweep.persist import load_state, read_table_csv

console = Console()


def show(
    results: Path = typer.Argument(
        ...,
        help="Path to a results CSV written by 'simsweep run'",
        exists=True,
        dir_okay=False,
    ),
    rows: int = typer.Option(
        10,
        "--rows", "-n",
        help="Number of rows to print",
    ),
) -> None:
    """Summarize a saved results table and its checkpoint."""
    try:
        columns, records = read_table_csv(results)
    except (OSError, UnicodeDecodeError) as e:
        console.print(f"[red]Error reading results:[/red] {e}")
        raise typer.Exit(1) from e

    failures = sum(1 for record in records if record.get(ERROR_COLUMN))

    console.print(f"[bold]{results}[/bold]")
    console.print(f"  [dim]rows:[/dim] {len(records)}")
    console.print(f"  [dim]columns:[/dim] {', '.join(columns)}")
    rate = failures / len(records) if records else 0.0
    console.print(f"  [dim]failures:[/dim] {failures} ({rate:.1%})")

    state = load_state(results)
    if state is not None:
        status_style = {
            "running": "blue",
            "completed": "green",
            "cancelled": "yellow",
        }.get(state.status, "red")
        console.print(
            f"  [dim]status:[/dim] [{status_style}]{state.status}[/{status_style}] "
            f"({state.completed}/{state.total_tasks} tasks)"
        )
        if state.started_at:
            console.print(f"  [dim]started:[/dim] {state.started_at}")
        if state.updated_at:
            console.print(f"  [dim]updated:[/dim] {state.updated_at}")
        for warning in state.warnings:
            console.print(f"  [yellow]warning:[/yellow] {warning}")

    if rows <= 0 or not records:
        return

    table = Table(show_header=True, header_style="bold")
    for column in columns:
        table.add_column(column)
    for record in records[:rows]:
        table.add_row(*(record.get(c, "") or "-" for c in columns))
    console.print(table)
