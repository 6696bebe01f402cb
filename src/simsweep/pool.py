# Copyright (c) Syntropy Systems
"""Worker pools: fixed-size sets of isolated execution contexts.

All pools share one contract:

- create() starts the contexts and copies exports into each of them
- submit(fn, *args) returns a handle (a concurrent.futures.Future)
- await_any(handles) blocks until one handle is done and returns
  (handle, result_or_error)
- destroy() releases the contexts
"""
from __future__ import annotations

import logging
import pickle
from concurrent.futures import (
    FIRST_COMPLETED,
    Executor,
    Future,
    ProcessPoolExecutor,
    ThreadPoolExecutor,
    wait,
)
from concurrent.futures.process import BrokenProcessPool
from typing import TYPE_CHECKING, Callable, Literal, Protocol, TypeVar

from typing_extensions import Self

from simsweep.context import clear_context, install_exports
from simsweep.errors import ConfigurationError, PoolError

if TYPE_CHECKING:
    from collections.abc import Collection, Mapping
    from types import TracebackType

logger = logging.getLogger(__name__)

Backend = Literal["serial", "thread", "process"]
BACKENDS: tuple[Backend, ...] = ("serial", "thread", "process")

T = TypeVar("T")


class WorkerPool(Protocol):
    """Contract the dispatcher consumes."""

    pool_size: int

    def create(self) -> None:
        ...

    def submit(self, fn: Callable[..., T], *args: object) -> Future[T]:
        ...

    def await_any(
        self, handles: Collection[Future[T]]
    ) -> tuple[Future[T], T | BaseException]:
        ...

    def destroy(self) -> None:
        ...


def _outcome(handle: Future[T]) -> T | BaseException:
    error = handle.exception()
    if error is not None:
        return error
    return handle.result()


class SerialPool:
    """Single context running each task synchronously on submit.

    The orchestrating thread is the execution context, so handles are
    already completed when submit returns.
    """

    pool_size: int = 1
    exports: dict[str, object]
    _created: bool

    def __init__(self, exports: Mapping[str, object] | None = None) -> None:
        self.exports = dict(exports or {})
        self._created = False

    def create(self) -> None:
        """Install the exports into the orchestrating thread."""
        install_exports(self.exports)
        self._created = True

    def submit(self, fn: Callable[..., T], *args: object) -> Future[T]:
        """Run fn(*args) now and return a completed handle."""
        if not self._created:
            msg = "Pool has not been created"
            raise PoolError(msg)
        handle: Future[T] = Future()
        try:
            handle.set_result(fn(*args))
        except Exception as e:  # noqa: BLE001
            handle.set_exception(e)
        return handle

    def await_any(
        self, handles: Collection[Future[T]]
    ) -> tuple[Future[T], T | BaseException]:
        """Return the first handle; every serial handle is already done."""
        if not handles:
            msg = "No handles to wait on"
            raise ValueError(msg)
        handle = next(iter(handles))
        return handle, _outcome(handle)

    def destroy(self) -> None:
        """Drop the installed exports."""
        if self._created:
            clear_context()
        self._created = False

    def __enter__(self) -> Self:
        self.create()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self.destroy()


class _ExecutorPool:
    """Shared plumbing for concurrent.futures based pools."""

    pool_size: int
    exports: dict[str, object]
    _executor: Executor | None

    def __init__(
        self,
        pool_size: int,
        exports: Mapping[str, object] | None = None,
    ) -> None:
        if pool_size < 1:
            msg = f"pool_size must be >= 1, got {pool_size}"
            raise ConfigurationError(msg)
        self.pool_size = pool_size
        self.exports = dict(exports or {})
        self._executor = None

    def _make_executor(self) -> Executor:
        raise NotImplementedError

    def create(self) -> None:
        """Start the executor; exports are copied into each context."""
        try:
            self._executor = self._make_executor()
        except (
            OSError,
            ValueError,
            TypeError,
            AttributeError,
            pickle.PicklingError,
        ) as e:
            msg = f"Failed to start worker pool: {e}"
            raise PoolError(msg) from e
        logger.debug(
            "Started %s with %d workers", type(self).__name__, self.pool_size
        )

    def submit(self, fn: Callable[..., T], *args: object) -> Future[T]:
        """Queue fn(*args) on the executor."""
        if self._executor is None:
            msg = "Pool has not been created"
            raise PoolError(msg)
        try:
            return self._executor.submit(fn, *args)
        except (BrokenProcessPool, RuntimeError) as e:
            msg = f"Worker pool is unavailable: {e}"
            raise PoolError(msg) from e

    def await_any(
        self, handles: Collection[Future[T]]
    ) -> tuple[Future[T], T | BaseException]:
        """Block until a handle completes; ties go to the earliest handle."""
        if not handles:
            msg = "No handles to wait on"
            raise ValueError(msg)
        done, _ = wait(handles, return_when=FIRST_COMPLETED)
        handle = next(h for h in handles if h in done)
        return handle, _outcome(handle)

    def destroy(self) -> None:
        """Shut the executor down, dropping queued work."""
        if self._executor is None:
            return
        self._executor.shutdown(wait=True, cancel_futures=True)
        self._executor = None

    def __enter__(self) -> Self:
        self.create()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self.destroy()


class ThreadPool(_ExecutorPool):
    """Thread contexts; each thread holds a deep copy of the exports."""

    def _make_executor(self) -> Executor:
        return ThreadPoolExecutor(
            max_workers=self.pool_size,
            thread_name_prefix="simsweep-worker",
            initializer=install_exports,
            initargs=(self.exports,),
        )


class ProcessPool(_ExecutorPool):
    """Process contexts; exports are pickled into each process."""

    def _make_executor(self) -> Executor:
        # Fail here rather than as a broken pool on the first task
        _ = pickle.dumps(self.exports)
        return ProcessPoolExecutor(
            max_workers=self.pool_size,
            initializer=install_exports,
            initargs=(self.exports,),
        )


def resolve_backend(backend: str | None, pool_size: int) -> Backend:
    """Pick the backend for a pool size; a size of 1 always runs serially.

    Parallel pools default to processes.
    """
    if backend is not None and backend not in BACKENDS:
        msg = f"Unknown backend: {backend} (expected one of {', '.join(BACKENDS)})"
        raise ConfigurationError(msg)
    if pool_size == 1 or backend == "serial":
        return "serial"
    if backend is None:
        return "process"
    return backend  # type: ignore[return-value]


def create_pool(
    pool_size: int,
    backend: str | None = None,
    exports: Mapping[str, object] | None = None,
) -> SerialPool | ThreadPool | ProcessPool:
    """Build (but do not start) a pool for the given size and backend."""
    if isinstance(pool_size, bool) or not isinstance(pool_size, int) or pool_size < 1:
        msg = f"pool_size must be a positive integer, got {pool_size!r}"
        raise ConfigurationError(msg)
    resolved = resolve_backend(backend, pool_size)
    if resolved == "serial":
        return SerialPool(exports)
    if resolved == "thread":
        return ThreadPool(pool_size, exports)
    return ProcessPool(pool_size, exports)
