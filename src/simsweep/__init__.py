"""
simsweep - Factorial simulation studies.

Describe what to vary and what to compute; simsweep expands the grid,
replicates, dispatches to workers, and collects one table.
"""

from simsweep.aggregate import ResultTable
from simsweep.context import current_task, exports, task_rng, task_seed
from simsweep.errors import (
    ConfigurationError,
    ExclusionEvaluationError,
    PersistenceError,
    PoolError,
    SimsweepError,
    TaskExecutionError,
)
from simsweep.models.study import Condition, Factor, Task, TaskResult
from simsweep.study import Study, run_simulation

__version__ = "0.1.0"
__all__ = [
    "Condition",
    "ConfigurationError",
    "ExclusionEvaluationError",
    "Factor",
    "PersistenceError",
    "PoolError",
    "ResultTable",
    "SimsweepError",
    "Study",
    "Task",
    "TaskExecutionError",
    "TaskResult",
    "__version__",
    "current_task",
    "exports",
    "run_simulation",
    "task_rng",
    "task_seed",
]
