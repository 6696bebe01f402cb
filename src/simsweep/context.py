# Copyright (c) Syntropy Systems
"""Per-worker execution context.

Every worker context (the orchestrating thread for serial runs, each pool
thread, or each pool process) holds its own copy of the exported objects
and the identity of the task it is currently running. User computations
read them through exports(), current_task(), task_seed() and task_rng().
"""
from __future__ import annotations

import copy
import random
import threading
import traceback
from collections.abc import Mapping
from typing import TYPE_CHECKING, Protocol, Union, runtime_checkable

from pydantic import ValidationError
from typing_extensions import TypeAlias

from simsweep.grid import RESERVED_COLUMNS
from simsweep.models.study import Task, TaskResult

if TYPE_CHECKING:
    from collections.abc import Callable

    from simsweep.models.base import JSONValue


@runtime_checkable
class Invokable(Protocol):
    """Object form of a computation."""

    def invoke(self, values: dict[str, JSONValue]) -> Mapping[str, object]:
        ...


Computation: TypeAlias = Union[
    Invokable, "Callable[[dict[str, JSONValue]], Mapping[str, object]]"
]

_local = threading.local()


def install_exports(exports: Mapping[str, object] | None = None) -> None:
    """Copy exported objects into the current context.

    Used as the pool initializer; each context gets an independent copy.
    """
    _local.exports = copy.deepcopy(dict(exports or {}))


def clear_context() -> None:
    """Forget exports and task state for the current context."""
    for attr in ("exports", "task", "seed", "rng"):
        if hasattr(_local, attr):
            delattr(_local, attr)


def exports() -> dict[str, object]:
    """Exported objects visible to the running computation."""
    current = getattr(_local, "exports", None)
    if current is None:
        current = {}
        _local.exports = current
    return current


def current_task() -> Task | None:
    """The task being executed in this context, if any."""
    return getattr(_local, "task", None)


def task_seed() -> int | None:
    """Seed assigned to the running task, or None when unseeded."""
    return getattr(_local, "seed", None)


def task_rng() -> random.Random:
    """Random generator for the running task.

    Seeded with task_seed() when the study has a seed, so results do not
    depend on which worker ran the task.
    """
    rng = getattr(_local, "rng", None)
    if rng is None:
        rng = random.Random(task_seed())  # noqa: S311
        _local.rng = rng
    return rng


def _normalize_value(value: object) -> object:
    # numpy scalars and arrays expose item()/tolist()
    if isinstance(value, (str, bytes, int, float, bool)) or value is None:
        return value
    tolist = getattr(value, "tolist", None)
    if callable(tolist):
        return tolist()
    if isinstance(value, (tuple, list)):
        return [_normalize_value(v) for v in value]
    if isinstance(value, Mapping):
        return {str(k): _normalize_value(v) for k, v in value.items()}
    return value


def _invoke(computation: Computation, values: dict[str, JSONValue]) -> object:
    if isinstance(computation, Invokable):
        return computation.invoke(values)
    return computation(values)


def execute_task(
    computation: Computation,
    task: Task,
    values: dict[str, JSONValue],
    seed: int | None = None,
) -> TaskResult:
    """Run the computation for one task and capture any error it raises."""
    _local.task = task
    _local.seed = seed
    _local.rng = None
    try:
        output = _invoke(computation, dict(values))
    # sys.exit() inside a computation fails the task, not the run
    except (Exception, SystemExit) as e:  # noqa: BLE001
        return TaskResult.failure(
            task,
            f"{type(e).__name__}: {e}",
            error_type=type(e).__name__,
            traceback=traceback.format_exc(),
        )
    finally:
        _local.task = None
        _local.seed = None
        _local.rng = None

    if not isinstance(output, Mapping):
        return TaskResult.failure(
            task,
            f"Computation must return a mapping, got {type(output).__name__}",
            error_type="TypeError",
        )

    payload = {str(k): _normalize_value(v) for k, v in output.items()}
    collisions = sorted(set(payload) & (set(values) | RESERVED_COLUMNS))
    if collisions:
        return TaskResult.failure(
            task,
            f"Output names collide with reserved columns: {', '.join(collisions)}",
            error_type="ValueError",
        )

    try:
        return TaskResult.success(task, payload)  # type: ignore[arg-type]
    except ValidationError as e:
        return TaskResult.failure(
            task,
            f"Unsupported output value: {e.errors()[0]['msg']}",
            error_type="ValidationError",
        )
