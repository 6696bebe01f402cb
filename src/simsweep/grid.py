# Copyright (c) Syntropy Systems
"""Factorial grid expansion and exclusion filtering."""
from __future__ import annotations

import itertools
import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Callable, Literal, Union

from pydantic import ValidationError
from typing_extensions import TypeAlias

from simsweep.errors import ConfigurationError, ExclusionEvaluationError
from simsweep.models.study import Condition, Factor

if TYPE_CHECKING:
    from collections.abc import Iterator, Sequence

    from simsweep.models.base import JSONValue

logger = logging.getLogger(__name__)

REPLICATION_COLUMN = "replication"
ERROR_COLUMN = "error"
RESERVED_COLUMNS = frozenset({REPLICATION_COLUMN, ERROR_COLUMN})

ExclusionPolicy = Literal["exclude", "raise"]
ExcludePredicate: TypeAlias = Callable[[dict[str, "JSONValue"]], object]
FactorsInput: TypeAlias = Union["Sequence[Factor]", "Mapping[str, Sequence[JSONValue]]"]


@dataclass
class Grid:
    """Surviving conditions plus warnings recorded while building them."""

    factors: list[Factor]
    conditions: list[Condition]
    warnings: list[ExclusionEvaluationError] = field(default_factory=list)
    candidates: int = 0

    @property
    def factor_names(self) -> list[str]:
        """Factor names in declaration order."""
        return [f.name for f in self.factors]

    @property
    def excluded(self) -> int:
        """Number of candidates removed by the exclusion predicate."""
        return self.candidates - len(self.conditions)

    def __len__(self) -> int:
        return len(self.conditions)


def normalize_factors(factors: FactorsInput) -> list[Factor]:
    """Validate factors and return them as a list of Factor models.

    Accepts either a sequence of Factor objects or an ordered mapping of
    name to candidate values.
    """
    if isinstance(factors, Mapping):
        items = list(factors.items())
        try:
            result = [Factor(name=name, values=values) for name, values in items]
        except ValidationError as e:
            msg = f"Invalid factor definition: {e}"
            raise ConfigurationError(msg) from e
    else:
        result = list(factors)
        if not all(isinstance(f, Factor) for f in result):
            msg = "Factors must be Factor objects or a mapping of name to values"
            raise ConfigurationError(msg)

    if not result:
        msg = "At least one factor is required"
        raise ConfigurationError(msg)

    seen: set[str] = set()
    for factor in result:
        if not factor.name:
            msg = "Factor names must be non-empty strings"
            raise ConfigurationError(msg)
        if factor.name in RESERVED_COLUMNS:
            msg = f"Factor name '{factor.name}' is reserved"
            raise ConfigurationError(msg)
        if factor.name in seen:
            msg = f"Duplicate factor name: '{factor.name}'"
            raise ConfigurationError(msg)
        if not factor.values:
            msg = f"Factor '{factor.name}' has no candidate values"
            raise ConfigurationError(msg)
        seen.add(factor.name)

    return result


def generate_grid_combinations(
    factors: Sequence[Factor],
) -> Iterator[dict[str, JSONValue]]:
    """Generate all combinations, first-declared factor varying slowest."""
    names = [f.name for f in factors]
    for combo in itertools.product(*(f.values for f in factors)):
        yield dict(zip(names, combo))


class GridBuilder:
    """Expands factors into the surviving conditions of the design.

    The exclusion policy decides what happens when the predicate raises:
    "exclude" drops the candidate and records a warning, "raise" aborts
    the build with a ConfigurationError.
    """

    on_exclusion_error: ExclusionPolicy

    def __init__(self, on_exclusion_error: ExclusionPolicy = "exclude") -> None:
        if on_exclusion_error not in ("exclude", "raise"):
            msg = f"Unknown exclusion error policy: {on_exclusion_error}"
            raise ConfigurationError(msg)
        self.on_exclusion_error = on_exclusion_error

    def build(
        self,
        factors: FactorsInput,
        exclude: ExcludePredicate | None = None,
    ) -> Grid:
        """Build the ordered, densely indexed list of surviving conditions."""
        factor_list = normalize_factors(factors)
        conditions: list[Condition] = []
        warnings: list[ExclusionEvaluationError] = []
        candidates = 0

        for values in generate_grid_combinations(factor_list):
            candidates += 1
            if exclude is not None:
                try:
                    excluded = bool(exclude(dict(values)))
                except Exception as e:  # noqa: BLE001
                    warning = ExclusionEvaluationError(values, e)
                    if self.on_exclusion_error == "raise":
                        raise ConfigurationError(str(warning)) from warning
                    logger.warning("%s; treating as excluded", warning)
                    warnings.append(warning)
                    continue
                if excluded:
                    continue

            conditions.append(
                Condition(condition_index=len(conditions), values=values)
            )

        logger.debug(
            "Built grid: %d candidates, %d conditions, %d warnings",
            candidates,
            len(conditions),
            len(warnings),
        )
        return Grid(
            factors=factor_list,
            conditions=conditions,
            warnings=warnings,
            candidates=candidates,
        )


def build_grid(
    factors: FactorsInput,
    exclude: ExcludePredicate | None = None,
    on_exclusion_error: ExclusionPolicy = "exclude",
) -> Grid:
    """Shortcut for GridBuilder(on_exclusion_error).build(factors, exclude)."""
    return GridBuilder(on_exclusion_error).build(factors, exclude)
