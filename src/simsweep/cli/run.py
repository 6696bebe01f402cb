# Copyright (c) Syntropy Systems
"""simsweep run command."""
from __future__ import annotations

import signal
from pathlib import Path
from threading import Event
from typing import Optional

import typer
from rich.console import Console

from simsweep.config import StudyConfig
from simsweep.errors import ConfigurationError, PersistenceError, PoolError
from simsweep.study import Study

console = Console()

EXIT_CONFIG_ERROR = 1
EXIT_POOL_ABORT = 2
EXIT_PERSISTENCE_ERROR = 3
EXIT_CANCELLED = 130

# Stop event for graceful termination
_stop_event = Event()


def _signal_handler(signum, frame):
    """Handle SIGINT/SIGTERM by stopping submission of new tasks."""
    console.print("\n[yellow]Stop requested, finishing in-flight tasks...[/yellow]")
    _stop_event.set()


def run(
    config_file: Path = typer.Argument(
        ...,
        help="Path to study configuration YAML file",
        exists=True,
        dir_okay=False,
    ),
    pool_size: Optional[int] = typer.Option(
        None,
        "--pool-size", "-j",
        min=1,
        help="Number of parallel workers (overrides config)",
    ),
    backend: Optional[str] = typer.Option(
        None,
        "--backend", "-b",
        help="Worker backend: serial, thread or process",
    ),
    save: Optional[Path] = typer.Option(
        None,
        "--save", "-o",
        help="CSV file to write results to (overrides config)",
    ),
    seed: Optional[int] = typer.Option(
        None,
        "--seed",
        help="Base random seed (overrides config)",
    ),
    resume: bool = typer.Option(
        False,
        "--resume", "-r",
        help="Continue from the checkpoint next to the save path",
    ),
    no_progress: bool = typer.Option(
        False,
        "--no-progress",
        help="Hide the progress bar",
    ),
) -> None:
    r"""Run a simulation study.

    Exit codes: 0 when every task ran (even if some replications
    failed), 1 on configuration errors, 2 if the worker pool aborted,
    3 if the results could not be saved, 130 when stopped early.

    Example study.yaml:

    \b
        computation: mymodel:simulate
        replications: 100
        pool_size: 4
        save_path: results.csv
        factors:
          n: [10, 50, 100]
          effect: [0.0, 0.5]
    """
    try:
        config = StudyConfig.from_yaml(config_file)
        study = Study.from_config(
            config,
            pool_size=pool_size,
            backend=backend,
            save_path=save,
            seed=seed,
            resume=resume,
            progress=not no_progress,
            stop_event=_stop_event,
        )
    except (OSError, ConfigurationError) as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(EXIT_CONFIG_ERROR) from e

    for warning in study.warnings:
        console.print(f"[yellow]Warning:[/yellow] {warning}")

    console.print(
        f"[bold]{study.name}[/bold]: {len(study.grid)} condition(s) x "
        f"{study.queue.replications} replication(s) = {study.queue.total()} task(s)"
    )

    # Setup signal handlers
    _stop_event.clear()
    previous_int = signal.signal(signal.SIGINT, _signal_handler)
    previous_term = signal.signal(signal.SIGTERM, _signal_handler)

    try:
        table = study.run()
    except ConfigurationError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(EXIT_CONFIG_ERROR) from e
    except PoolError as e:
        rows = len(e.table) if e.table is not None else 0
        console.print(f"[red]Worker pool aborted:[/red] {e}")
        console.print(f"  [dim]rows kept:[/dim] {rows}")
        raise typer.Exit(EXIT_POOL_ABORT) from e
    except PersistenceError as e:
        console.print(f"[red]Error saving results:[/red] {e}")
        raise typer.Exit(EXIT_PERSISTENCE_ERROR) from e
    finally:
        signal.signal(signal.SIGINT, previous_int)
        signal.signal(signal.SIGTERM, previous_term)

    status_style = {"completed": "green", "cancelled": "yellow"}.get(
        table.status, "red"
    )
    console.print(
        f"[{status_style}]Study {table.status}[/{status_style}]: "
        f"{len(table)}/{table.total_tasks} task(s)"
    )
    console.print(
        f"  [dim]failures:[/dim] {table.failure_count} ({table.failure_rate:.1%})"
    )
    if study.persistence.destination is not None:
        console.print(f"  [dim]saved:[/dim] {study.persistence.destination}")

    if table.status == "cancelled":
        raise typer.Exit(EXIT_CANCELLED)
