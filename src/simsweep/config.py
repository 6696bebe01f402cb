# Copyright (c) Syntropy Systems
"""Study configuration files."""
from __future__ import annotations

import importlib
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import cast

import yaml

from simsweep.errors import ConfigurationError
from simsweep.grid import GridBuilder
from simsweep.pool import BACKENDS
from simsweep.tasks import validate_replications


def resolve_reference(ref: str, search_path: Path | None = None) -> object:
    """Import the object named by a "module:attr" reference.

    search_path is put on sys.path first so modules next to a study file
    can be found; worker processes inherit it.
    """
    module_name, sep, attr_path = ref.partition(":")
    if not sep or not module_name or not attr_path:
        msg = f"Invalid reference '{ref}' (expected 'module:attr')"
        raise ConfigurationError(msg)

    if search_path is not None:
        entry = str(search_path.resolve())
        if entry not in sys.path:
            sys.path.insert(0, entry)

    try:
        obj: object = importlib.import_module(module_name)
    except ImportError as e:
        msg = f"Cannot import module '{module_name}': {e}"
        raise ConfigurationError(msg) from e

    for attr in attr_path.split("."):
        try:
            obj = getattr(obj, attr)
        except AttributeError as e:
            msg = f"'{module_name}' has no attribute '{attr_path}'"
            raise ConfigurationError(msg) from e
    return obj


def _optional_int(data: dict[str, object], key: str) -> int | None:
    value = data.get(key)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int):
        msg = f"'{key}' must be an integer"
        raise ConfigurationError(msg)
    return value


def _optional_float(
    data: dict[str, object],
    key: str,
    default: float | None,
) -> float | None:
    if key not in data:
        return default
    value = data[key]
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        msg = f"'{key}' must be a number"
        raise ConfigurationError(msg)
    return float(value)


@dataclass
class StudyConfig:
    """A simulation study described in YAML."""

    computation: str
    factors: dict[str, list[object]]
    name: str = "study"
    replications: int = 1
    exclude: str | None = None
    exports: dict[str, object] = field(default_factory=dict)
    pool_size: int = 1
    backend: str | None = None
    seed: int | None = None
    save_path: Path | None = None
    flush_every: int | None = None
    flush_interval: float | None = 30.0
    on_exclusion_error: str = "exclude"
    base_dir: Path = field(default_factory=Path.cwd)

    @classmethod
    def from_dict(
        cls,
        data: dict[str, object],
        base_dir: Path | None = None,
    ) -> StudyConfig:
        """Validate raw YAML data; relative paths resolve against base_dir."""
        base = base_dir or Path.cwd()

        if "computation" not in data:
            msg = "Study config must have 'computation' field"
            raise ConfigurationError(msg)
        if "factors" not in data:
            msg = "Study config must have 'factors' field"
            raise ConfigurationError(msg)

        factors = data["factors"]
        if not isinstance(factors, dict) or not factors:
            msg = "'factors' must be a non-empty mapping of name to values"
            raise ConfigurationError(msg)
        for name, values in factors.items():
            if not isinstance(values, list):
                msg = f"Factor '{name}' must have a list of values"
                raise ConfigurationError(msg)

        exclude = data.get("exclude")
        if exclude is not None and not isinstance(exclude, str):
            msg = "'exclude' must be a 'module:attr' reference"
            raise ConfigurationError(msg)

        exports = data.get("exports") or {}
        if not isinstance(exports, dict):
            msg = "'exports' must be a mapping"
            raise ConfigurationError(msg)

        backend = data.get("backend")
        if backend is not None and backend not in BACKENDS:
            msg = f"Unknown backend: {backend}"
            raise ConfigurationError(msg)

        on_exclusion_error = str(data.get("on_exclusion_error", "exclude"))
        _ = GridBuilder(on_exclusion_error)  # type: ignore[arg-type]

        save_path = data.get("save_path")
        resolved_save = None
        if save_path is not None:
            resolved_save = Path(str(save_path))
            if not resolved_save.is_absolute():
                resolved_save = base / resolved_save

        pool_size = _optional_int(data, "pool_size")
        if pool_size is not None and pool_size < 1:
            msg = "'pool_size' must be >= 1"
            raise ConfigurationError(msg)

        return cls(
            computation=str(data["computation"]),
            factors={str(k): list(v) for k, v in factors.items()},
            name=str(data.get("name", "study")),
            replications=validate_replications(data.get("replications", 1)),
            exclude=exclude,
            exports={str(k): v for k, v in exports.items()},
            pool_size=pool_size or 1,
            backend=cast("str | None", backend),
            seed=_optional_int(data, "seed"),
            save_path=resolved_save,
            flush_every=_optional_int(data, "flush_every"),
            flush_interval=_optional_float(data, "flush_interval", 30.0),
            on_exclusion_error=on_exclusion_error,
            base_dir=base,
        )

    @classmethod
    def from_yaml(cls, path: Path) -> StudyConfig:
        """Load a study configuration from a YAML file."""
        try:
            with path.open() as f:
                data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            msg = f"Invalid YAML in {path}: {e}"
            raise ConfigurationError(msg) from e

        if not isinstance(data, dict):
            msg = f"Study config {path} must be a mapping"
            raise ConfigurationError(msg)

        return cls.from_dict(
            cast("dict[str, object]", data),
            base_dir=path.parent.resolve(),
        )

    def load_computation(self) -> object:
        """Import the computation this study runs."""
        return resolve_reference(self.computation, self.base_dir)

    def load_exclude(self) -> object | None:
        """Import the exclusion predicate, if one is configured."""
        if self.exclude is None:
            return None
        return resolve_reference(self.exclude, self.base_dir)
