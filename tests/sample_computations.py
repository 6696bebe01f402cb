# Copyright (c) Syntropy Systems
"""Computations and exclusion rules used across the test suite.

Defined at module level so process pools can pickle them.
"""

from __future__ import annotations

import os
import sys
import time

import simsweep


def add_ab(values):
    return {"sum": values["a"] + values["b"]}


def skip_a2_b20(values):
    return values["a"] == 2 and values["b"] == 20


def broken_exclude(values):
    if values["a"] == 2:
        raise KeyError("missing")
    return False


def fail_first_replication(values):
    task = simsweep.current_task()
    if task is not None and task.replication_index == 0:
        raise ValueError("first replication fails")
    return {"sum": values["a"] + values["b"]}


def seeded_draw(values):
    rng = simsweep.task_rng()
    return {"draw": values["a"] + rng.random(), "seed": simsweep.task_seed()}


def slow_first_condition(values):
    # Early tasks finish last, so completion order differs from task order
    if values["a"] == 1:
        time.sleep(0.05)
    return {"sum": values["a"] + values["b"]}


def scaled(values):
    return {"scaled": values["a"] * simsweep.exports()["scale"]}


def append_to_export(values):
    bucket = simsweep.exports()["bucket"]
    bucket.append(values["a"])
    return {"seen": len(bucket)}


def widening(values):
    if values["a"] == 1:
        return {"x": values["a"]}
    return {"x": values["a"], "y": values["b"]}


def vector_output(values):
    return {"draws": (values["a"], values["b"]), "label": f"a{values['a']}"}


def not_a_mapping(values):
    return values["a"]


def collides_with_factor(values):
    return {"a": 0}


def nan_estimate(values):
    if values["a"] == 1:
        return {"est": float("nan"), "spread": [float("inf"), 1.0]}
    return {"est": values["b"] * 0.75, "spread": [0.0, 1.0]}


def exits_on_a2(values):
    if values["a"] == 2:
        sys.exit(3)
    return {"sum": values["a"] + values["b"]}


def kill_worker(values):
    if values["a"] == 2:
        os._exit(1)
    return {"sum": values["a"] + values["b"]}


class SumInvoker:
    """Computation in object form."""

    def __init__(self, offset=0):
        self.offset = offset

    def invoke(self, values):
        return {"sum": values["a"] + values["b"] + self.offset}
