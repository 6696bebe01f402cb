# Copyright (c) Syntropy Systems
"""Tests for worker pools."""

from __future__ import annotations

import pytest

from sample_computations import append_to_export
from simsweep import context
from simsweep.context import execute_task
from simsweep.errors import ConfigurationError, PoolError
from simsweep.models.study import Task
from simsweep.pool import (
    ProcessPool,
    SerialPool,
    ThreadPool,
    create_pool,
    resolve_backend,
)


def _task(i: int) -> Task:
    return Task(condition_index=i, replication_index=0, global_task_index=i)


class TestBackendSelection:
    """Tests for choosing a pool implementation."""

    def test_size_one_is_serial(self) -> None:
        """Test a pool size of one runs serially."""
        assert isinstance(create_pool(1, "process"), SerialPool)
        assert resolve_backend("thread", 1) == "serial"

    def test_parallel_defaults_to_process(self) -> None:
        """Test larger pools default to processes."""
        assert isinstance(create_pool(4), ProcessPool)

    def test_explicit_backends(self) -> None:
        """Test explicitly chosen backends."""
        assert isinstance(create_pool(3, "thread"), ThreadPool)
        assert isinstance(create_pool(3, "serial"), SerialPool)

    def test_unknown_backend(self) -> None:
        """Test an unknown backend is rejected."""
        with pytest.raises(ConfigurationError, match="Unknown backend"):
            _ = create_pool(2, "cluster")

    @pytest.mark.parametrize("size", [0, -3, 2.5, True])
    def test_invalid_pool_size(self, size: object) -> None:
        """Test pool sizes below one are rejected."""
        with pytest.raises(ConfigurationError, match="pool_size"):
            _ = create_pool(size)  # type: ignore[arg-type]


class TestSerialPool:
    """Tests for the in-thread pool."""

    def test_submit_before_create(self) -> None:
        """Test submitting to a serial pool before create fails."""
        pool = SerialPool()
        with pytest.raises(PoolError):
            _ = pool.submit(lambda: 1)

    def test_submit_returns_completed_handle(self) -> None:
        """Test a serial submit returns a finished handle."""
        with SerialPool() as pool:
            handle = pool.submit(lambda x: x * 2, 21)
            assert handle.done()
            assert pool.await_any([handle]) == (handle, 42)

    def test_exception_is_returned_as_outcome(self) -> None:
        """Test a raising call is returned as an exception outcome."""
        def fail():
            raise RuntimeError("broken")

        with SerialPool() as pool:
            handle = pool.submit(fail)
            _, outcome = pool.await_any([handle])
        assert isinstance(outcome, RuntimeError)

    def test_exports_installed_and_cleared(self) -> None:
        """Test exports are installed on create and cleared on destroy."""
        with SerialPool({"bucket": []}):
            result = execute_task(append_to_export, _task(0), {"a": 7})
            assert result.payload == {"seen": 1}
            assert context.exports() == {"bucket": [7]}
        assert context.exports() == {}


class TestThreadPool:
    """Tests for the thread-backed pool."""

    def test_submit_before_create(self) -> None:
        """Test submitting to a thread pool before create fails."""
        with pytest.raises(PoolError):
            _ = ThreadPool(2).submit(lambda: 1)

    def test_each_thread_gets_its_own_exports(self) -> None:
        """Mutations in one context never reach the caller's objects."""
        bucket: list[int] = []
        with ThreadPool(2, {"bucket": bucket}) as pool:
            handles = [
                pool.submit(execute_task, append_to_export, _task(i), {"a": i})
                for i in range(6)
            ]
            results = [h.result() for h in handles]

        assert bucket == []
        assert all(r.ok for r in results)
        # Each thread counts only its own appends
        assert sum(1 for r in results if r.payload == {"seen": 1}) <= 2

    def test_await_any_returns_a_done_handle(self) -> None:
        """Test await_any returns a finished handle."""
        with ThreadPool(2) as pool:
            handles = [pool.submit(pow, 2, n) for n in range(4)]
            handle, outcome = pool.await_any(handles)
            assert handle.done()
            assert outcome == 2 ** handles.index(handle)

    def test_submit_after_destroy(self) -> None:
        """Test submitting after destroy fails."""
        pool = ThreadPool(2)
        pool.create()
        pool.destroy()
        with pytest.raises(PoolError):
            _ = pool.submit(lambda: 1)


class TestProcessPool:
    """Tests for the process-backed pool."""

    def test_unpicklable_exports_fail_at_create(self) -> None:
        """Test exports that cannot be pickled fail at create."""
        pool = ProcessPool(2, {"lock": lambda: None})
        with pytest.raises(PoolError, match="Failed to start"):
            pool.create()

    def test_runs_in_worker_processes(self) -> None:
        """Test computations run in worker processes."""
        with ProcessPool(2, {"bucket": []}) as pool:
            handle = pool.submit(execute_task, append_to_export, _task(0), {"a": 1})
            result = handle.result()
        assert result.ok
        assert result.payload == {"seen": 1}
