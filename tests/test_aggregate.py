# Copyright (c) Syntropy Systems
"""Tests for result aggregation."""

from __future__ import annotations

import pytest

from simsweep.aggregate import ResultAggregator, ResultTable
from simsweep.grid import build_grid
from simsweep.models.study import TaskResult
from simsweep.tasks import TaskQueue


@pytest.fixture
def queue(ab_factors: dict[str, list[int]]) -> TaskQueue:
    return TaskQueue(build_grid(ab_factors).conditions, 1)


def _ingest(aggregator: ResultAggregator, queue: TaskQueue, payloads) -> None:
    for task, payload in zip(queue, payloads):
        if isinstance(payload, str):
            result = TaskResult.failure(task, payload)
        else:
            result = TaskResult.success(task, payload)
        aggregator.ingest(task, queue.condition(task), result)


class TestResultAggregator:
    """Tests for building the wide table."""

    def test_rows_carry_factors_and_replication(self, queue: TaskQueue) -> None:
        """Test each row carries its factor values and replication index."""
        aggregator = ResultAggregator(["a", "b"], queue.total())
        _ingest(aggregator, queue, [{"sum": 11}, {"sum": 21}])

        table = aggregator.snapshot()
        assert table.columns == ["a", "b", "replication", "sum"]
        assert table.records() == [
            {"a": 1, "b": 10, "replication": 0, "sum": 11},
            {"a": 1, "b": 20, "replication": 0, "sum": 21},
        ]
        assert not table.is_complete

    def test_schema_widens_in_first_seen_order(self, queue: TaskQueue) -> None:
        """Earlier rows read as missing for columns added later."""
        aggregator = ResultAggregator(["a", "b"])
        _ingest(aggregator, queue, [{"x": 1}, {"x": 2, "y": 3}, {"z": 4}])

        table = aggregator.snapshot()
        assert table.columns == ["a", "b", "replication", "x", "y", "z"]
        assert table.output_columns == ["x", "y", "z"]
        assert table.column("y") == [None, 3, None]
        assert table.column("z") == [None, None, 4]

    def test_failure_rows(self, queue: TaskQueue) -> None:
        """Test failures become rows with an error and no outputs."""
        aggregator = ResultAggregator(["a", "b"], 4)
        _ingest(aggregator, queue, ["ValueError: bad", {"m": 1}, {"m": 2}, "boom"])

        table = aggregator.snapshot()
        assert table.columns == ["a", "b", "replication", "error", "m"]
        assert table.column("error") == ["ValueError: bad", None, None, "boom"]
        assert table.column("m") == [None, 1, 2, None]
        assert table.failure_count == 2
        assert table.failure_rate == 0.5
        assert table.is_complete

    def test_out_of_order_rejected(self, queue: TaskQueue) -> None:
        """Test results must arrive in global task order."""
        aggregator = ResultAggregator(["a", "b"])
        task = queue.task(1)
        with pytest.raises(ValueError, match="out of order"):
            aggregator.ingest(
                task, queue.condition(task), TaskResult.success(task, {})
            )

    def test_mismatched_result_rejected(self, queue: TaskQueue) -> None:
        """Test a result for a different task is rejected."""
        aggregator = ResultAggregator(["a", "b"])
        first, second = queue.task(0), queue.task(1)
        with pytest.raises(ValueError, match="belongs to task"):
            aggregator.ingest(
                first, queue.condition(first), TaskResult.success(second, {})
            )

    def test_mismatched_condition_rejected(self, queue: TaskQueue) -> None:
        """Test a condition that does not match the task is rejected."""
        aggregator = ResultAggregator(["a", "b"])
        task = queue.task(0)
        with pytest.raises(ValueError, match="condition"):
            aggregator.ingest(
                task, queue.conditions[1], TaskResult.success(task, {})
            )

    def test_preload_then_ingest(self, queue: TaskQueue) -> None:
        """Test ingestion continues after preloaded rows."""
        aggregator = ResultAggregator(["a", "b"], 4)
        aggregator.preload(
            ["a", "b", "replication", "sum"],
            [{"a": 1, "b": 10, "replication": 0, "sum": 11}],
        )
        assert aggregator.completed == 1

        task = queue.task(1)
        aggregator.ingest(
            task, queue.condition(task), TaskResult.success(task, {"sum": 21})
        )
        assert aggregator.snapshot().column("sum") == [11, 21]

    def test_preload_requires_empty(self, queue: TaskQueue) -> None:
        """Test preloading into a non-empty aggregator fails."""
        aggregator = ResultAggregator(["a", "b"])
        _ingest(aggregator, queue, [{"sum": 11}])
        with pytest.raises(ValueError, match="preload"):
            aggregator.preload(["a"], [])

    def test_snapshot_is_independent(self, queue: TaskQueue) -> None:
        """Test a snapshot does not change as more rows arrive."""
        aggregator = ResultAggregator(["a", "b"])
        _ingest(aggregator, queue, [{"sum": 11}])
        snapshot = aggregator.snapshot()
        snapshot.rows[0]["sum"] = 0
        assert aggregator.snapshot().column("sum") == [11]


class TestResultTable:
    """Tests for table accessors."""

    def test_empty_table(self) -> None:
        """Test an empty table."""
        table = ResultTable(factor_names=["a"], columns=["a", "replication"])
        assert len(table) == 0
        assert table.failure_rate == 0.0
        assert table.is_complete
        assert list(table) == []

    def test_unknown_column(self) -> None:
        """Test asking for an unknown column."""
        table = ResultTable(factor_names=["a"], columns=["a", "replication"])
        with pytest.raises(KeyError):
            _ = table.column("missing")
