# Copyright (c) Syntropy Systems
"""Tests for study configuration files."""

from __future__ import annotations

from pathlib import Path

import pytest

from sample_computations import add_ab, skip_a2_b20
from simsweep.config import StudyConfig, resolve_reference
from simsweep.errors import ConfigurationError
from simsweep.study import Study


def _base(**extra: object) -> dict[str, object]:
    data: dict[str, object] = {
        "computation": "sample_computations:add_ab",
        "factors": {"a": [1, 2], "b": [10, 20]},
    }
    data.update(extra)
    return data


class TestStudyConfig:
    """Tests for loading and validating config data."""

    def test_from_yaml(self, study_file: Path) -> None:
        """Test loading a study file."""
        config = StudyConfig.from_yaml(study_file)

        assert config.name == "sum-study"
        assert config.computation == "sample_computations:add_ab"
        assert config.replications == 2
        assert config.factors == {"a": [1, 2], "b": [10, 20]}
        assert config.save_path == study_file.parent.resolve() / "results.csv"
        assert config.flush_interval is None
        assert config.base_dir == study_file.parent.resolve()

    def test_defaults(self) -> None:
        """Test defaults for omitted settings."""
        config = StudyConfig.from_dict(_base())
        assert config.name == "study"
        assert config.replications == 1
        assert config.pool_size == 1
        assert config.backend is None
        assert config.seed is None
        assert config.save_path is None
        assert config.flush_interval == 30.0
        assert config.on_exclusion_error == "exclude"

    def test_absolute_save_path_kept(self, temp_dir: Path) -> None:
        """Test an absolute save path is used as is."""
        target = temp_dir / "out.csv"
        config = StudyConfig.from_dict(
            _base(save_path=str(target)), Path("/elsewhere")
        )
        assert config.save_path == target

    @pytest.mark.parametrize(
        ("data", "message"),
        [
            ({"factors": {"a": [1]}}, "'computation' field"),
            ({"computation": "m:f"}, "'factors' field"),
            (_base(factors={}), "non-empty mapping"),
            (_base(factors={"a": 3}), "list of values"),
            (_base(exclude=5), "'exclude'"),
            (_base(exports=[1]), "'exports'"),
            (_base(backend="gpu"), "Unknown backend"),
            (_base(on_exclusion_error="skip"), "policy"),
            (_base(pool_size=0), "pool_size"),
            (_base(pool_size="4"), "pool_size"),
            (_base(replications=-2), "replications"),
            (_base(seed=1.5), "seed"),
            (_base(flush_interval="soon"), "flush_interval"),
        ],
    )
    def test_invalid_config(self, data: dict[str, object], message: str) -> None:
        """Test invalid settings raise ConfigurationError."""
        with pytest.raises(ConfigurationError, match=message):
            _ = StudyConfig.from_dict(data)

    def test_invalid_yaml(self, temp_dir: Path) -> None:
        """Test malformed YAML raises ConfigurationError."""
        path = temp_dir / "bad.yaml"
        _ = path.write_text("factors: [unclosed\n")
        with pytest.raises(ConfigurationError, match="Invalid YAML"):
            _ = StudyConfig.from_yaml(path)

    def test_yaml_must_be_mapping(self, temp_dir: Path) -> None:
        """Test the top level of the file must be a mapping."""
        path = temp_dir / "list.yaml"
        _ = path.write_text("- a\n- b\n")
        with pytest.raises(ConfigurationError, match="must be a mapping"):
            _ = StudyConfig.from_yaml(path)


class TestReferences:
    """Tests for importing computations by name."""

    def test_resolve_function(self) -> None:
        """Test resolving a module-level function."""
        assert resolve_reference("sample_computations:add_ab") is add_ab

    def test_resolve_nested_attribute(self) -> None:
        """Test resolving a dotted attribute path."""
        invoke = resolve_reference("sample_computations:SumInvoker.invoke")
        assert callable(invoke)

    def test_module_next_to_study_file(self, temp_dir: Path) -> None:
        """Test modules beside the study file are importable."""
        _ = (temp_dir / "study_local_model.py").write_text(
            "def compute(values):\n    return {'double': values['a'] * 2}\n"
        )
        compute = resolve_reference("study_local_model:compute", temp_dir)
        assert compute({"a": 4}) == {"double": 8}

    @pytest.mark.parametrize(
        ("ref", "message"),
        [
            ("no_colon", "expected 'module:attr'"),
            ("sample_computations:", "expected 'module:attr'"),
            ("surely_not_a_module_xyz:f", "Cannot import"),
            ("sample_computations:missing", "has no attribute"),
        ],
    )
    def test_bad_reference(self, ref: str, message: str) -> None:
        """Test malformed or missing references."""
        with pytest.raises(ConfigurationError, match=message):
            _ = resolve_reference(ref)

    def test_load_computation_and_exclude(self) -> None:
        """Test loading the computation and exclusion rule."""
        config = StudyConfig.from_dict(
            _base(exclude="sample_computations:skip_a2_b20")
        )
        assert config.load_computation() is add_ab
        assert config.load_exclude() is skip_a2_b20


class TestStudyFromConfig:
    """Tests for building studies from config files."""

    def test_builds_study(self, study_file: Path) -> None:
        """Test building a Study from a config."""
        study = Study.from_config(StudyConfig.from_yaml(study_file))

        assert study.name == "sum-study"
        assert study.queue.total() == 8
        expected = study_file.parent.resolve() / "results.csv"
        assert study.persistence.destination == expected

        table = study.run()
        assert table.column("sum") == [11, 11, 21, 21, 12, 12, 22, 22]

    def test_overrides_replace_config(self, study_file: Path, temp_dir: Path) -> None:
        """Test keyword overrides take precedence over the file."""
        config = StudyConfig.from_yaml(study_file)
        target = temp_dir / "other.csv"
        study = Study.from_config(config, save_path=target, seed=3, pool_size=None)

        assert study.persistence.destination == target
        assert study.seed == 3
        assert study.pool.pool_size == 1

    def test_exclude_from_config(self) -> None:
        """Test the exclusion rule is taken from the config."""
        config = StudyConfig.from_dict(
            _base(exclude="sample_computations:skip_a2_b20", replications=2)
        )
        study = Study.from_config(config)
        assert len(study.grid) == 3
        assert study.queue.total() == 6
