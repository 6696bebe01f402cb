# Copyright (c) Syntropy Systems
"""Progress bar rendering for study runs."""
from __future__ import annotations

from typing import TYPE_CHECKING

from rich.console import Console
from rich.progress import (
    BarColumn,
    MofNCompleteColumn,
    Progress,
    TaskID,
    TextColumn,
    TimeElapsedColumn,
    TimeRemainingColumn,
)
from typing_extensions import Self

if TYPE_CHECKING:
    from types import TracebackType


class ProgressReporter:
    """Progress callback drawing a rich progress bar.

    Call it with (completed, total); it only redraws, so it is cheap
    enough to call once per task.
    """

    _progress: Progress
    _task_id: TaskID | None

    def __init__(
        self,
        description: str = "Simulating",
        console: Console | None = None,
    ) -> None:
        self.description = description
        self._progress = Progress(
            TextColumn("[bold blue]{task.description}"),
            BarColumn(),
            MofNCompleteColumn(),
            TimeElapsedColumn(),
            TimeRemainingColumn(),
            console=console or Console(stderr=True),
        )
        self._task_id = None

    def start(self, total: int, completed: int = 0) -> None:
        """Show the bar."""
        self._progress.start()
        self._task_id = self._progress.add_task(
            self.description, total=total, completed=completed
        )

    def __call__(self, completed: int, total: int) -> None:
        if self._task_id is None:
            self.start(total, completed)
            return
        self._progress.update(self._task_id, completed=completed, total=total)

    def stop(self) -> None:
        """Remove the live display."""
        self._progress.stop()

    def __enter__(self) -> Self:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self.stop()
