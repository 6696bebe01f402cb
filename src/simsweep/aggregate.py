# Copyright (c) Syntropy Systems
"""Aggregation of task results into one wide table."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from simsweep.grid import ERROR_COLUMN, REPLICATION_COLUMN

if TYPE_CHECKING:
    from collections.abc import Iterator, Sequence

    from simsweep.models.base import JSONValue
    from simsweep.models.study import Condition, RunStatus, Task, TaskResult


@dataclass
class ResultTable:
    """Rows in global task order with a schema that only ever widens.

    Each row stores only the cells it has; records() fills absent cells
    with None.
    """

    factor_names: list[str]
    columns: list[str]
    rows: list[dict[str, JSONValue]] = field(default_factory=list)
    failures: list[TaskResult] = field(default_factory=list)
    total_tasks: int = 0
    status: RunStatus = "idle"
    warnings: list[str] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.rows)

    def __iter__(self) -> Iterator[dict[str, JSONValue]]:
        return iter(self.records())

    @property
    def output_columns(self) -> list[str]:
        """Output columns in first-seen order, excluding the error column."""
        fixed = {*self.factor_names, REPLICATION_COLUMN, ERROR_COLUMN}
        return [c for c in self.columns if c not in fixed]

    @property
    def failure_count(self) -> int:
        """Number of failed replications in the table."""
        return len(self.failures)

    @property
    def failure_rate(self) -> float:
        """Fraction of rows that are failures (0.0 for an empty table)."""
        if not self.rows:
            return 0.0
        return self.failure_count / len(self.rows)

    @property
    def is_complete(self) -> bool:
        """Whether every task of the run has a row."""
        return len(self.rows) == self.total_tasks

    def column(self, name: str) -> list[JSONValue]:
        """Values of one column, None where a row has no value."""
        if name not in self.columns:
            msg = f"Unknown column: {name}"
            raise KeyError(msg)
        return [row.get(name) for row in self.rows]

    def records(self) -> list[dict[str, JSONValue]]:
        """Rows as dicts with every column present, in column order."""
        return [{c: row.get(c) for c in self.columns} for row in self.rows]


class ResultAggregator:
    """Builds the result table from results released in task order."""

    factor_names: list[str]
    total_tasks: int
    _columns: list[str]
    _known: set[str]
    _rows: list[dict[str, JSONValue]]
    _failures: list[TaskResult]

    def __init__(self, factor_names: Sequence[str], total_tasks: int = 0) -> None:
        self.factor_names = list(factor_names)
        self.total_tasks = total_tasks
        self._columns = [*self.factor_names, REPLICATION_COLUMN]
        self._known = set(self._columns)
        self._rows = []
        self._failures = []

    @property
    def completed(self) -> int:
        """Number of tasks ingested so far."""
        return len(self._rows)

    def _widen(self, keys: Sequence[str]) -> None:
        for key in keys:
            if key not in self._known:
                self._known.add(key)
                self._columns.append(key)

    def ingest(self, task: Task, condition: Condition, result: TaskResult) -> None:
        """Append the row for a task; tasks must arrive in global order."""
        if task.global_task_index != self.completed:
            msg = (
                f"Task {task.global_task_index} ingested out of order; "
                f"expected {self.completed}"
            )
            raise ValueError(msg)
        if result.task != task:
            msg = f"Result belongs to task {result.task.global_task_index}"
            raise ValueError(msg)
        if task.condition_index != condition.condition_index:
            msg = f"Task {task.global_task_index} does not belong to this condition"
            raise ValueError(msg)

        row = condition.as_dict()
        row[REPLICATION_COLUMN] = task.replication_index
        if result.ok:
            row.update(result.payload or {})
        else:
            row[ERROR_COLUMN] = result.error
            self._failures.append(result)

        self._widen(list(row))
        self._rows.append(row)

    def preload(
        self,
        columns: Sequence[str],
        rows: Sequence[dict[str, JSONValue]],
        failures: Sequence[TaskResult] = (),
    ) -> None:
        """Restore rows of a previous run before ingesting more."""
        if self._rows:
            msg = "Cannot preload an aggregator that already has rows"
            raise ValueError(msg)
        self._widen(list(columns))
        for row in rows:
            self._widen(list(row))
            self._rows.append(dict(row))
        self._failures.extend(failures)

    def snapshot(self) -> ResultTable:
        """Copy of the current table, safe to hand out mid-run."""
        return ResultTable(
            factor_names=list(self.factor_names),
            columns=list(self._columns),
            rows=[dict(row) for row in self._rows],
            failures=list(self._failures),
            total_tasks=self.total_tasks,
        )
