# Copyright (c) Syntropy Systems
"""Task dispatch through a worker pool with ordered result release."""
from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Callable, Optional

from simsweep.context import execute_task
from simsweep.errors import PoolError

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence
    from concurrent.futures import Future
    from threading import Event

    from simsweep.context import Computation
    from simsweep.models.study import Condition, RunStatus, Task, TaskResult
    from simsweep.pool import WorkerPool

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int], None]
ResultCallback = Callable[["Task", "Condition", "TaskResult"], None]


class Dispatcher:
    """Drives tasks through a pool and releases results in task order.

    Tasks are submitted in ascending global index with at most `window`
    in flight. Completions are buffered and released to on_result and
    on_progress strictly in index order, so downstream consumers never
    see completion order. Setting stop_event stops submission; tasks
    already in flight still finish and are released.

    States: idle -> running -> completed | cancelled | aborted.
    """

    pool: WorkerPool
    conditions: list[Condition]
    on_progress: ProgressCallback | None
    on_result: ResultCallback | None
    stop_event: Event | None
    seed: int | None
    window: int
    state: RunStatus

    def __init__(  # noqa: PLR0913
        self,
        pool: WorkerPool,
        conditions: Sequence[Condition],
        *,
        on_progress: Optional[ProgressCallback] = None,
        on_result: Optional[ResultCallback] = None,
        stop_event: Optional[Event] = None,
        seed: Optional[int] = None,
        completed_offset: int = 0,
        total: Optional[int] = None,
        window: Optional[int] = None,
    ) -> None:
        self.pool = pool
        self.conditions = list(conditions)
        self.on_progress = on_progress
        self.on_result = on_result
        self.stop_event = stop_event
        self.seed = seed
        self.completed_offset = completed_offset
        self.total = total
        # Serial pools run one task at a time so a stop takes effect at once
        self.window = window or (1 if pool.pool_size == 1 else 2 * pool.pool_size)
        self.state = "idle"

    def _stop_requested(self) -> bool:
        return self.stop_event is not None and self.stop_event.is_set()

    def _task_seed(self, task: Task) -> int | None:
        if self.seed is None:
            return None
        return self.seed + task.global_task_index

    def _release(
        self,
        task: Task,
        result: TaskResult,
        completed: int,
        total: int,
    ) -> None:
        if not result.ok:
            logger.debug(
                "Task %d (condition %d, replication %d) failed: %s",
                task.global_task_index,
                task.condition_index,
                task.replication_index,
                result.error,
            )
        if self.on_result is not None:
            self.on_result(task, self.conditions[task.condition_index], result)
        if self.on_progress is not None:
            self.on_progress(completed, total)

    def run(
        self,
        tasks: Iterable[Task],
        computation: Computation,
    ) -> list[TaskResult]:
        """Execute every task and return the released results in order.

        Raises PoolError (state "aborted") when the pool itself fails;
        results released before the failure have already reached
        on_result.
        """
        if self.state != "idle":
            msg = f"Dispatcher already used (state: {self.state})"
            raise RuntimeError(msg)

        task_list = list(tasks)
        for prev, cur in zip(task_list, task_list[1:]):
            if cur.global_task_index != prev.global_task_index + 1:
                msg = "Tasks must be contiguous and in ascending global order"
                raise ValueError(msg)

        total = (
            self.total
            if self.total is not None
            else self.completed_offset + len(task_list)
        )
        released: list[TaskResult] = []
        pending: dict[Future[TaskResult], Task] = {}
        buffer: dict[int, tuple[Task, TaskResult]] = {}
        next_index = task_list[0].global_task_index if task_list else 0
        upcoming = iter(task_list)
        exhausted = False

        self.state = "running"
        logger.info(
            "Dispatching %d task(s) on %d worker(s)",
            len(task_list),
            self.pool.pool_size,
        )

        try:
            while True:
                while (
                    not exhausted
                    and len(pending) < self.window
                    and not self._stop_requested()
                ):
                    task = next(upcoming, None)
                    if task is None:
                        exhausted = True
                        break
                    values = self.conditions[task.condition_index].as_dict()
                    handle = self.pool.submit(
                        execute_task, computation, task, values, self._task_seed(task)
                    )
                    pending[handle] = task

                if not pending:
                    break

                handle, outcome = self.pool.await_any(list(pending))
                task = pending.pop(handle)
                if isinstance(outcome, BaseException):
                    msg = (
                        f"Worker pool failed while running task "
                        f"{task.global_task_index}: {outcome}"
                    )
                    raise PoolError(msg) from outcome
                buffer[task.global_task_index] = (task, outcome)

                while next_index in buffer:
                    ready_task, result = buffer.pop(next_index)
                    released.append(result)
                    self._release(
                        ready_task,
                        result,
                        self.completed_offset + len(released),
                        total,
                    )
                    next_index += 1
        except PoolError:
            self.state = "aborted"
            logger.error(
                "Worker pool aborted after %d of %d task(s)",
                len(released),
                len(task_list),
            )
            raise

        if len(released) < len(task_list):
            self.state = "cancelled"
            logger.warning(
                "Run cancelled after %d of %d task(s)", len(released), len(task_list)
            )
        else:
            self.state = "completed"
            logger.info("Dispatched %d task(s)", len(released))
        return released
