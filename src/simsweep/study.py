# Copyright (c) Syntropy Systems
"""Study orchestration: grid, tasks, dispatch, aggregation, persistence."""
from __future__ import annotations

import hashlib
import json
import logging
import pickle
import threading
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Optional

from simsweep.aggregate import ResultAggregator, ResultTable
from simsweep.context import Invokable
from simsweep.dispatch import Dispatcher, ProgressCallback
from simsweep.errors import ConfigurationError, PersistenceError, PoolError
from simsweep.grid import ERROR_COLUMN, GridBuilder
from simsweep.models.study import StudyState, TaskResult
from simsweep.persist import PersistenceManager, load_state
from simsweep.pool import ProcessPool, create_pool
from simsweep.progress import ProgressReporter
from simsweep.tasks import TaskQueue

if TYPE_CHECKING:
    from collections.abc import Mapping
    from pathlib import Path

    from simsweep.config import StudyConfig
    from simsweep.context import Computation
    from simsweep.grid import ExcludePredicate, ExclusionPolicy, FactorsInput
    from simsweep.models.study import RunStatus
    from simsweep.pool import WorkerPool

logger = logging.getLogger(__name__)


def utcnow() -> str:
    """Get current UTC time as ISO format string."""
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


class Study:
    """A simulation study: what to vary, what to compute, how often.

    Configuration problems surface from the constructor, before any task
    runs. run() executes the study and returns the result table; failed
    replications are rows with an error value, never a reason to stop.
    """

    state: RunStatus
    table: ResultTable | None

    def __init__(  # noqa: PLR0913
        self,
        factors: FactorsInput,
        computation: Computation,
        replications: int = 1,
        *,
        exclude: ExcludePredicate | None = None,
        exports: Mapping[str, object] | None = None,
        pool_size: int = 1,
        backend: str | None = None,
        save_path: Path | str | None = None,
        progress: bool = False,  # noqa: FBT001, FBT002
        seed: int | None = None,
        resume: bool = False,  # noqa: FBT001, FBT002
        flush_every: int | None = None,
        flush_interval: float | None = 30.0,
        on_exclusion_error: ExclusionPolicy = "exclude",
        on_progress: Optional[ProgressCallback] = None,
        stop_event: Optional[threading.Event] = None,
        pool: Optional[WorkerPool] = None,
        name: str = "study",
    ) -> None:
        if not callable(computation) and not isinstance(computation, Invokable):
            msg = "computation must be callable or provide invoke()"
            raise ConfigurationError(msg)
        if exclude is not None and not callable(exclude):
            msg = "exclude must be callable"
            raise ConfigurationError(msg)
        if seed is not None and (isinstance(seed, bool) or not isinstance(seed, int)):
            msg = f"seed must be an integer, got {seed!r}"
            raise ConfigurationError(msg)
        if flush_every is not None and flush_every < 1:
            msg = "flush_every must be >= 1"
            raise ConfigurationError(msg)

        self.name = name
        self.computation = computation
        self.seed = seed
        self.resume = resume
        self.progress = progress
        self.on_progress = on_progress
        self.stop_event = stop_event or threading.Event()

        self.grid = GridBuilder(on_exclusion_error).build(factors, exclude)
        self.queue = TaskQueue(self.grid.conditions, replications)
        self.pool = pool or create_pool(pool_size, backend, exports)
        self.persistence = PersistenceManager(
            save_path,
            flush_every=flush_every,
            flush_interval=flush_interval,
        )
        if resume and not self.persistence.enabled:
            msg = "resume requires a save_path"
            raise ConfigurationError(msg)

        if isinstance(self.pool, ProcessPool):
            try:
                _ = pickle.dumps(computation)
            except (pickle.PicklingError, AttributeError, TypeError) as e:
                msg = (
                    f"Computation cannot be sent to worker processes ({e}); "
                    "define it at module level or use backend='thread'"
                )
                raise ConfigurationError(msg) from e

        self.state = "idle"
        self.table = None
        self._aggregator = ResultAggregator(self.grid.factor_names, self.queue.total())
        self._started_at: str | None = None
        self._fingerprint: str | None = None

    @classmethod
    def from_config(cls, config: StudyConfig, **overrides: object) -> Study:
        """Build a study from a loaded StudyConfig.

        Keyword overrides replace the matching config values.
        """
        settings: dict[str, object] = {
            "replications": config.replications,
            "exclude": config.load_exclude(),
            "exports": config.exports,
            "pool_size": config.pool_size,
            "backend": config.backend,
            "save_path": config.save_path,
            "seed": config.seed,
            "flush_every": config.flush_every,
            "flush_interval": config.flush_interval,
            "on_exclusion_error": config.on_exclusion_error,
            "name": config.name,
        }
        settings.update({k: v for k, v in overrides.items() if v is not None})
        return cls(
            config.factors,  # type: ignore[arg-type]
            config.load_computation(),  # type: ignore[arg-type]
            **settings,  # type: ignore[arg-type]
        )

    @property
    def warnings(self) -> list[str]:
        """Warnings recorded while building the grid."""
        return [str(w) for w in self.grid.warnings]

    def fingerprint(self) -> str:
        """Hash identifying the grid and replication count."""
        if self._fingerprint is not None:
            return self._fingerprint
        payload = {
            "factors": [[f.name, f.values] for f in self.grid.factors],
            "replications": self.queue.replications,
            "conditions": [c.values for c in self.grid.conditions],
        }
        encoded = json.dumps(payload, sort_keys=True, default=str).encode("utf-8")
        self._fingerprint = hashlib.sha256(encoded).hexdigest()
        return self._fingerprint

    def stop(self) -> None:
        """Ask a running study to stop submitting new tasks."""
        self.stop_event.set()

    def _build_state(self, table: ResultTable) -> StudyState:
        return StudyState(
            name=self.name,
            fingerprint=self.fingerprint(),
            status=self.state,
            total_tasks=self.queue.total(),
            completed=len(table),
            failures=table.failure_count,
            columns=table.columns,
            rows=table.rows,
            warnings=self.warnings,
            started_at=self._started_at,
            updated_at=utcnow(),
        )

    def snapshot(self) -> ResultTable:
        """Current table with run status and warnings filled in."""
        table = self._aggregator.snapshot()
        table.status = self.state
        table.warnings = self.warnings
        return table

    def _flush(self, *, final: bool) -> None:
        if not self.persistence.enabled:
            return
        table = self.snapshot()
        _ = self.persistence.flush(table, self._build_state(table), final=final)

    def _restore(self) -> int:
        """Load a checkpoint for resume; returns the next task index."""
        if not self.resume or self.persistence.destination is None:
            return 0
        saved = load_state(self.persistence.destination)
        if saved is None:
            logger.info("No checkpoint found, starting from the first task")
            return 0
        if saved.fingerprint != self.fingerprint():
            msg = (
                f"Checkpoint at {self.persistence.state_path} belongs to a "
                "different study (factors or replications changed)"
            )
            raise ConfigurationError(msg)

        failures = [
            TaskResult.failure(self.queue.task(i), str(row[ERROR_COLUMN]))
            for i, row in enumerate(saved.rows)
            if row.get(ERROR_COLUMN) is not None
        ]
        self._aggregator.preload(saved.columns, saved.rows, failures)
        self._started_at = saved.started_at
        logger.info(
            "Resuming %s at task %d of %d",
            self.name,
            saved.completed,
            saved.total_tasks,
        )
        return saved.completed

    def _progress_callback(
        self,
        reporter: ProgressReporter | None,
    ) -> ProgressCallback:
        callbacks = [cb for cb in (reporter, self.on_progress) if cb is not None]
        failed: set[int] = set()

        def _on_progress(completed: int, total: int) -> None:
            # Progress is observational; a broken callback never stops the run
            for position, callback in enumerate(callbacks):
                try:
                    callback(completed, total)
                except Exception:  # noqa: BLE001
                    level = logging.DEBUG if position in failed else logging.WARNING
                    logger.log(
                        level,
                        "Progress callback failed at %d/%d",
                        completed,
                        total,
                        exc_info=True,
                    )
                    failed.add(position)
            if self.persistence.due(completed):
                self._flush(final=False)

        return _on_progress

    def run(self) -> ResultTable:
        """Execute every task and return the result table.

        Raises PoolError if the worker pool fails (the rows so far are
        flushed and attached to the error) and PersistenceError if the
        final write fails (the full table is attached).
        """
        if self.state != "idle":
            msg = f"Study already run (state: {self.state})"
            raise RuntimeError(msg)

        start = self._restore()
        self._started_at = self._started_at or utcnow()
        total = self.queue.total()

        if start >= total and self.resume and start > 0:
            self.state = "completed"
            logger.info("Checkpoint is already complete; nothing to run")
            self.table = self.snapshot()
            return self.table

        reporter = ProgressReporter(self.name) if self.progress else None
        dispatcher = Dispatcher(
            self.pool,
            self.grid.conditions,
            on_progress=self._progress_callback(reporter),
            on_result=self._aggregator.ingest,
            stop_event=self.stop_event,
            seed=self.seed,
            completed_offset=start,
            total=total,
        )

        self.state = "running"
        logger.info(
            "Running %s: %d condition(s) x %d replication(s) = %d task(s)",
            self.name,
            len(self.grid),
            self.queue.replications,
            total,
        )
        try:
            if reporter is not None:
                reporter.start(total, start)
            self.pool.create()
            _ = dispatcher.run(self.queue.tasks(start), self.computation)
            self.state = dispatcher.state
        except PoolError as e:
            self.state = "aborted"
            self._flush(final=False)
            self.table = self.snapshot()
            raise PoolError(str(e), self.table) from e
        except KeyboardInterrupt:
            self.state = "cancelled"
            self._flush(final=False)
            raise
        except Exception:
            self.state = "aborted"
            self._flush(final=False)
            self.table = self.snapshot()
            raise
        finally:
            self.pool.destroy()
            if reporter is not None:
                reporter.stop()

        self.table = self.snapshot()
        logger.info(
            "Study %s %s: %d row(s), %d failure(s)",
            self.name,
            self.state,
            len(self.table),
            self.table.failure_count,
        )
        try:
            self._flush(final=True)
        except PersistenceError as e:
            e.table = self.table
            raise
        return self.table


def run_simulation(  # noqa: PLR0913
    factors: FactorsInput,
    computation: Computation,
    replications: int = 1,
    *,
    exclude: ExcludePredicate | None = None,
    exports: Mapping[str, object] | None = None,
    pool_size: int = 1,
    backend: str | None = None,
    save_path: Path | str | None = None,
    progress: bool = False,  # noqa: FBT001, FBT002
    seed: int | None = None,
    resume: bool = False,  # noqa: FBT001, FBT002
    flush_every: int | None = None,
    flush_interval: float | None = 30.0,
    on_exclusion_error: ExclusionPolicy = "exclude",
    on_progress: Optional[ProgressCallback] = None,
    stop_event: Optional[threading.Event] = None,
) -> ResultTable:
    """Run a full factorial simulation study.

    Args:
        factors: Mapping of factor name to candidate values, or Factor list
        computation: Callable taking the condition's values and returning
            a mapping of named outputs
        replications: Times to run the computation per condition
        exclude: Predicate over condition values; True drops the condition
        exports: Objects copied into every worker context, read with
            simsweep.exports()
        pool_size: Number of parallel workers (1 runs serially)
        backend: "serial", "thread" or "process" (default for pool_size > 1)
        save_path: CSV destination, flushed during and after the run
        progress: Show a progress bar
        seed: Base seed; task i sees simsweep.task_seed() == seed + i
        resume: Continue from the checkpoint next to save_path
        flush_every: Flush after this many completed tasks
        flush_interval: Flush at least this often (seconds)
        on_exclusion_error: "exclude" or "raise" when exclude raises
        on_progress: Extra (completed, total) callback
        stop_event: Event that cancels the run when set

    Returns:
        The result table, one row per task in task order

    Example:
        >>> table = run_simulation(
        ...     {"a": [1, 2], "b": [10, 20]},
        ...     lambda v: {"sum": v["a"] + v["b"]},
        ...     replications=2,
        ... )
        >>> table.column("sum")
        [11, 11, 21, 21, 12, 12, 22, 22]

    """
    study = Study(
        factors,
        computation,
        replications,
        exclude=exclude,
        exports=exports,
        pool_size=pool_size,
        backend=backend,
        save_path=save_path,
        progress=progress,
        seed=seed,
        resume=resume,
        flush_every=flush_every,
        flush_interval=flush_interval,
        on_exclusion_error=on_exclusion_error,
        on_progress=on_progress,
        stop_event=stop_event,
    )
    return study.run()
