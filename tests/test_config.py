"""
Tests for encounter_sdm.config, encounter_sdm.data.schema and
encounter_sdm.logging_utils — the ambient plumbing the pipeline scripts rely on.
"""

from __future__ import annotations

import logging
from pathlib import Path

import pandas as pd
import pytest

from encounter_sdm.config import load_config
from encounter_sdm.data.schema import (
    add_date_covariates,
    default_covariates,
    drop_incomplete,
    habitat_covariates,
    require_columns,
)
from encounter_sdm.errors import ConfigurationError
from encounter_sdm.logging_utils import get_logger


class TestLoadConfig:
    def test_pipeline_config_sections(self) -> None:
        cfg = load_config("pipeline")
        for key in ("seed", "data", "subsampling", "split", "outputs"):
            assert key in cfg, f"Missing section: {key}"

    def test_model_training_config_sections(self) -> None:
        cfg = load_config("model_training")
        for key in ("ensemble", "calibration", "assessment", "dependence", "reference_checklist"):
            assert key in cfg, f"Missing section: {key}"

    def test_missing_config_raises(self) -> None:
        with pytest.raises(FileNotFoundError):
            load_config("does_not_exist")

    def test_custom_directory(self, tmp_path: Path) -> None:
        (tmp_path / "mini.yaml").write_text("seed: 4\nsplit:\n  train_fraction: 0.7\n", encoding="utf-8")
        cfg = load_config("mini", configs_dir=tmp_path)
        assert cfg == {"seed": 4, "split": {"train_fraction": 0.7}}

    def test_empty_file_gives_empty_dict(self, tmp_path: Path) -> None:
        (tmp_path / "empty.yaml").write_text("", encoding="utf-8")
        assert load_config("empty", configs_dir=tmp_path) == {}


class TestSchema:
    def test_date_covariates_derived(self) -> None:
        df = pd.DataFrame({"observation_date": ["2019-06-15", "2020-12-31"]})
        out = add_date_covariates(df)
        assert out["year"].tolist() == [2019, 2020]
        assert out["day_of_year"].tolist() == [166, 366]
        assert "year" not in df.columns

    def test_default_covariates_order(self, checklists: pd.DataFrame, covariates: list[str]) -> None:
        assert default_covariates(checklists) == covariates

    def test_cci_is_used_when_present(self, checklists: pd.DataFrame) -> None:
        checklists["cci"] = 0.5
        names = default_covariates(checklists)
        assert names.index("cci") == names.index("number_observers") + 1

    def test_no_habitat_columns_raises(self, checklists: pd.DataFrame) -> None:
        with pytest.raises(ConfigurationError):
            default_covariates(checklists.drop(columns=habitat_covariates(checklists)))

    def test_missing_effort_column_raises(self, checklists: pd.DataFrame) -> None:
        with pytest.raises(ConfigurationError, match="duration_minutes"):
            default_covariates(checklists.drop(columns=["duration_minutes"]))

    def test_require_columns_names_every_missing_column(self) -> None:
        with pytest.raises(ConfigurationError, match="pland_a.*pland_b"):
            require_columns(pd.DataFrame({"x": [1]}), ["x", "pland_a", "pland_b"], "grid")

    def test_drop_incomplete_logs_count(self, caplog: pytest.LogCaptureFixture) -> None:
        df = pd.DataFrame({"a": [1.0, None, 3.0], "b": [1.0, 2.0, None], "c": [None, None, None]})
        with caplog.at_level(logging.INFO, logger="encounter_sdm"):
            out = drop_incomplete(df, ["a", "b"], "test frame")
        assert out.index.tolist() == [0]
        assert "dropped 2 of 3" in caplog.text


class TestLogging:
    def test_handlers_attached_once(self) -> None:
        first = get_logger("encounter_sdm.tests.once")
        second = get_logger("encounter_sdm.tests.once")
        assert first is second
        assert len(second.handlers) == 1
