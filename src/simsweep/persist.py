# Copyright (c) Syntropy Systems
"""Atomic persistence of result tables and run checkpoints."""
from __future__ import annotations

import contextlib
import csv
import logging
import os
import tempfile
import time
from pathlib import Path
from typing import IO, TYPE_CHECKING, Callable

from pydantic import ConfigDict, TypeAdapter, ValidationError

from simsweep.errors import PersistenceError
from simsweep.models.base import JSONValue
from simsweep.models.study import StudyState

if TYPE_CHECKING:
    from simsweep.aggregate import ResultTable

logger = logging.getLogger(__name__)

STATE_SUFFIX = ".state.json"
_JSON_ADAPTER = TypeAdapter(JSONValue, config=ConfigDict(ser_json_inf_nan="constants"))


def state_path(destination: Path) -> Path:
    """Checkpoint path stored next to a table destination."""
    return destination.with_name(destination.name + STATE_SUFFIX)


def _to_csv_value(value: JSONValue | None) -> str:
    if value is None:
        return ""
    if isinstance(value, (list, dict)):
        return _JSON_ADAPTER.dump_json(value).decode("utf-8")
    return str(value)


def atomic_write(path: Path, write: Callable[[IO[str]], None]) -> None:
    """Write a file through a temporary sibling and move it into place.

    Readers see either the previous file or the complete new one.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(
        dir=path.parent, prefix=f".{path.name}.", suffix=".tmp"
    )
    tmp_path = Path(tmp_name)
    try:
        with os.fdopen(fd, "w", newline="", encoding="utf-8") as f:
            write(f)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, path)
    except BaseException:
        with contextlib.suppress(OSError):
            tmp_path.unlink()
        raise


def write_table_csv(table: ResultTable, path: Path) -> None:
    """Write a table as CSV: one header row, then one row per task."""

    def _write(f: IO[str]) -> None:
        writer = csv.writer(f)
        writer.writerow(table.columns)
        for row in table.rows:
            writer.writerow([_to_csv_value(row.get(c)) for c in table.columns])

    atomic_write(path, _write)


def read_table_csv(path: Path) -> tuple[list[str], list[dict[str, str]]]:
    """Read a persisted table back as header plus string rows."""
    with path.open(newline="", encoding="utf-8") as f:
        reader = csv.reader(f)
        columns = next(reader, [])
        rows = [dict(zip(columns, record)) for record in reader]
    return columns, rows


def write_state(state: StudyState, path: Path) -> None:
    """Write a run checkpoint atomically."""

    def _write(f: IO[str]) -> None:
        _ = f.write(state.model_dump_json())

    atomic_write(path, _write)


def load_state(destination: Path) -> StudyState | None:
    """Read the checkpoint for a destination, or None if there is none.

    A checkpoint that cannot be parsed is ignored with a warning.
    """
    path = state_path(destination)
    if not path.exists():
        return None
    try:
        return StudyState.model_validate_json(path.read_text(encoding="utf-8"))
    except (OSError, ValidationError) as e:
        logger.warning("Ignoring unreadable checkpoint %s: %s", path, e)
        return None


class PersistenceManager:
    """Flushes the result table to a destination while a run progresses.

    With no destination every method is a no-op. A failed periodic flush
    is logged and retried on the next flush; a failed final flush raises
    PersistenceError with the in-memory table attached.

    Each flush rewrites the whole CSV and checkpoint, so its cost grows
    with the number of rows. The default flushes by time only
    (flush_interval seconds), which bounds the number of flushes by the
    run's wall time. A small flush_every on a long run makes total write
    volume quadratic in the row count; keep it in the hundreds or more.
    """

    destination: Path | None
    flush_every: int | None
    flush_interval: float | None
    flush_count: int
    failed_flushes: int
    _last_flush_completed: int
    _last_flush_time: float

    def __init__(
        self,
        destination: Path | str | None = None,
        flush_every: int | None = None,
        flush_interval: float | None = 30.0,
    ) -> None:
        self.destination = None
        self.flush_every = flush_every
        self.flush_interval = flush_interval
        self.flush_count = 0
        self.failed_flushes = 0
        self._last_flush_completed = 0
        self._last_flush_time = time.monotonic()
        self.configure(destination)

    def configure(self, destination: Path | str | None) -> None:
        """Set or clear the destination path."""
        self.destination = Path(destination) if destination is not None else None

    @property
    def enabled(self) -> bool:
        """Whether a destination is configured."""
        return self.destination is not None

    @property
    def state_path(self) -> Path | None:
        """Checkpoint path for the destination."""
        if self.destination is None:
            return None
        return state_path(self.destination)

    def due(self, completed: int) -> bool:
        """Whether a periodic flush should happen at this completion count."""
        if not self.enabled:
            return False
        if (
            self.flush_every
            and completed - self._last_flush_completed >= self.flush_every
        ):
            return True
        if self.flush_interval is None:
            return False
        return time.monotonic() - self._last_flush_time >= self.flush_interval

    def flush(
        self,
        table: ResultTable,
        state: StudyState | None = None,
        *,
        final: bool = False,
    ) -> bool:
        """Write the table (and checkpoint) atomically.

        Returns True when something was written.
        """
        if self.destination is None:
            return False

        self._last_flush_completed = len(table)
        self._last_flush_time = time.monotonic()
        try:
            write_table_csv(table, self.destination)
            if state is not None:
                write_state(state, state_path(self.destination))
        except OSError as e:
            self.failed_flushes += 1
            msg = f"Failed to write results to {self.destination}: {e}"
            if final:
                raise PersistenceError(msg, table) from e
            logger.warning("%s; retrying on next flush", msg)
            return False

        self.flush_count += 1
        logger.debug("Flushed %d row(s) to %s", len(table), self.destination)
        return True
