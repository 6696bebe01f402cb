# Copyright (c) Syntropy Systems
"""Exception hierarchy for simsweep."""
from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from simsweep.aggregate import ResultTable
    from simsweep.models.base import JSONValue


class SimsweepError(Exception):
    """Base class for all simsweep errors."""


class ConfigurationError(SimsweepError):
    """Malformed factors, name collisions, or invalid run settings.

    Raised before any task runs.
    """


class ExclusionEvaluationError(SimsweepError):
    """The exclusion predicate raised for a specific candidate condition."""

    values: dict[str, JSONValue]

    def __init__(self, values: dict[str, JSONValue], cause: BaseException) -> None:
        self.values = values
        self.cause = cause
        super().__init__(
            f"Exclusion predicate failed for {values}: {type(cause).__name__}: {cause}"
        )


class TaskExecutionError(SimsweepError):
    """The user computation failed for one task."""

    def __init__(
        self,
        global_task_index: int,
        description: str,
        traceback_text: str | None = None,
    ) -> None:
        self.global_task_index = global_task_index
        self.description = description
        self.traceback_text = traceback_text
        super().__init__(f"Task {global_task_index} failed: {description}")


class PoolError(SimsweepError):
    """The worker pool failed to start or broke irrecoverably.

    When raised from a study run, `table` holds the rows ingested before
    the failure.
    """

    table: ResultTable | None

    def __init__(self, message: str, table: ResultTable | None = None) -> None:
        self.table = table
        super().__init__(message)


class PersistenceError(SimsweepError):
    """Writing the result table to its destination failed.

    The in-memory table is attached so callers can still use it.
    """

    table: ResultTable | None

    def __init__(self, message: str, table: ResultTable | None = None) -> None:
        self.table = table
        super().__init__(message)
