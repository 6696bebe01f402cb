# Copyright (c) Syntropy Systems
"""Pydantic models for factors, conditions, tasks and results."""

from __future__ import annotations

from typing import ClassVar, Literal, Optional

from pydantic import ConfigDict, Field, field_validator

from simsweep.errors import TaskExecutionError

from .base import FrozenModel, JSONValue, SimsweepBaseModel

RunStatus = Literal["idle", "running", "completed", "cancelled", "aborted"]


class Factor(FrozenModel):
    """A named experimental variable and its candidate values."""

    name: str
    values: list[JSONValue]

    @field_validator("values", mode="before")
    @classmethod
    def _coerce_sequence(cls, value: object) -> object:
        if isinstance(value, (tuple, range)):
            return list(value)
        return value


class Condition(FrozenModel):
    """One cell of the factorial design."""

    condition_index: int
    values: dict[str, JSONValue]

    def as_dict(self) -> dict[str, JSONValue]:
        """Return a copy of the factor values, safe to hand to user code."""
        return dict(self.values)


class Task(FrozenModel):
    """One replication of one condition."""

    condition_index: int
    replication_index: int
    global_task_index: int


class TaskResult(FrozenModel):
    """Outcome of executing a task: a payload or a captured error."""

    task: Task
    ok: bool
    payload: Optional[dict[str, JSONValue]] = None
    error: Optional[str] = None
    error_type: Optional[str] = None
    traceback: Optional[str] = None

    @classmethod
    def success(cls, task: Task, payload: dict[str, JSONValue]) -> TaskResult:
        """Build a successful result."""
        return cls(task=task, ok=True, payload=payload)

    @classmethod
    def failure(
        cls,
        task: Task,
        error: str,
        error_type: str | None = None,
        traceback: str | None = None,
    ) -> TaskResult:
        """Build a failure record."""
        return cls(
            task=task,
            ok=False,
            error=error,
            error_type=error_type,
            traceback=traceback,
        )

    def to_error(self) -> TaskExecutionError | None:
        """Return the failure as an exception, or None for a success."""
        if self.ok:
            return None
        return TaskExecutionError(
            self.task.global_task_index,
            self.error or "unknown error",
            self.traceback,
        )


class StudyState(SimsweepBaseModel):
    """Checkpoint written next to the persisted table."""

    # NaN and inf outputs must survive a resume
    model_config: ClassVar[ConfigDict] = ConfigDict(ser_json_inf_nan="constants")

    name: str = "study"
    fingerprint: str
    status: RunStatus = "running"
    total_tasks: int
    completed: int = 0
    failures: int = 0
    columns: list[str] = Field(default_factory=list)
    rows: list[dict[str, JSONValue]] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    started_at: Optional[str] = None
    updated_at: Optional[str] = None
