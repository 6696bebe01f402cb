# Copyright (c) Syntropy Systems
"""Pytest fixtures for simsweep tests."""

import tempfile
import textwrap
from collections.abc import Generator
from pathlib import Path

import pytest

from simsweep import context


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for testing."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def ab_factors() -> dict[str, list[int]]:
    """The two-factor grid used throughout the examples."""
    return {"a": [1, 2], "b": [10, 20]}


@pytest.fixture(autouse=True)
def _clean_context() -> Generator[None, None, None]:
    """Drop exports installed in the test thread by serial pools."""
    yield
    context.clear_context()


@pytest.fixture
def study_file(temp_dir: Path) -> Path:
    """Write a study config that runs sample_computations.add_ab."""
    path = temp_dir / "study.yaml"
    _ = path.write_text(
        textwrap.dedent(
            """\
            name: sum-study
            computation: sample_computations:add_ab
            replications: 2
            save_path: results.csv
            flush_interval: null
            factors:
              a: [1, 2]
              b: [10, 20]
            """
        )
    )
    return path
