# Copyright (c) Syntropy Systems
"""Replication expansion of conditions into ordered tasks."""
from __future__ import annotations

from typing import TYPE_CHECKING

from simsweep.errors import ConfigurationError
from simsweep.models.study import Condition, Task

if TYPE_CHECKING:
    from collections.abc import Iterator, Sequence


def validate_replications(replications: object) -> int:
    """Return replications as an int, rejecting negatives and non-integers."""
    if isinstance(replications, bool) or not isinstance(replications, int):
        msg = f"replications must be a non-negative integer, got {replications!r}"
        raise ConfigurationError(msg)
    if replications < 0:
        msg = f"replications must be a non-negative integer, got {replications}"
        raise ConfigurationError(msg)
    return replications


class TaskQueue:
    """Ordered tasks for a list of conditions.

    Task i belongs to condition i // replications and replication
    i % replications, so global indices are dense and sorted by
    (condition_index, replication_index).
    """

    conditions: list[Condition]
    replications: int

    def __init__(self, conditions: Sequence[Condition], replications: int) -> None:
        self.conditions = list(conditions)
        self.replications = validate_replications(replications)
        for position, condition in enumerate(self.conditions):
            if condition.condition_index != position:
                msg = (
                    f"Condition indices must be dense and ordered; "
                    f"found {condition.condition_index} at position {position}"
                )
                raise ConfigurationError(msg)

    def total(self) -> int:
        """Total number of tasks in the queue."""
        return len(self.conditions) * self.replications

    def __len__(self) -> int:
        return self.total()

    def __iter__(self) -> Iterator[Task]:
        return self.tasks()

    def task(self, global_task_index: int) -> Task:
        """Return the task with the given global index."""
        if not 0 <= global_task_index < self.total():
            msg = f"Task index out of range: {global_task_index}"
            raise IndexError(msg)
        condition_index, replication_index = divmod(
            global_task_index, self.replications
        )
        return Task(
            condition_index=condition_index,
            replication_index=replication_index,
            global_task_index=global_task_index,
        )

    def tasks(self, start: int = 0) -> Iterator[Task]:
        """Yield tasks in global index order, beginning at start."""
        for global_task_index in range(max(start, 0), self.total()):
            yield self.task(global_task_index)

    def condition(self, task: Task) -> Condition:
        """Return the condition a task belongs to."""
        return self.conditions[task.condition_index]


def enumerate_tasks(conditions: Sequence[Condition], replications: int) -> list[Task]:
    """Expand conditions into their full ordered task list."""
    return list(TaskQueue(conditions, replications))
