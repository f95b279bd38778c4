"""
Tests for encounter_sdm.models.artifact — saving and reloading the trained model.

Reloading must reproduce the test-set assessment exactly, not approximately.
"""

from __future__ import annotations

from pathlib import Path

import joblib
import numpy as np
import pandas as pd
import pytest

from encounter_sdm.errors import ConfigurationError
from encounter_sdm.evaluation.assessment import Assessor
from encounter_sdm.models.artifact import ModelArtifact, load_model, save_model
from encounter_sdm.models.calibration import Calibrator
from encounter_sdm.models.ensemble import EnsembleClassifier
from encounter_sdm.random_source import RandomSource
from encounter_sdm.workflow import assess_model, fit_calibration


@pytest.fixture()
def artifact(train_test, covariates: list[str], random_source: RandomSource) -> ModelArtifact:
    train, _ = train_test
    ensemble = EnsembleClassifier(n_trees=30).fit(train, covariates, random_source)
    calibration = fit_calibration(ensemble, train, Calibrator())
    return ModelArtifact(ensemble=ensemble, calibration=calibration, metadata={"seed": 42})


class TestRoundTrip:
    def test_reload_reproduces_assessment(self, artifact: ModelArtifact, train_test, tmp_path: Path) -> None:
        _, test = train_test
        path = save_model(artifact, tmp_path / "models" / "model.joblib")
        restored = load_model(path)

        original = assess_model(artifact, test, Assessor())
        reloaded = assess_model(restored, test, Assessor())
        pd.testing.assert_frame_equal(original, reloaded)

    def test_reload_reproduces_predictions(self, artifact: ModelArtifact, train_test, tmp_path: Path) -> None:
        _, test = train_test
        restored = load_model(save_model(artifact, tmp_path / "model.joblib"))
        np.testing.assert_array_equal(
            restored.ensemble.predict_proba(test), artifact.ensemble.predict_proba(test)
        )
        np.testing.assert_array_equal(restored.calibration.values, artifact.calibration.values)

    def test_metadata_and_covariates_survive(self, artifact: ModelArtifact, tmp_path: Path) -> None:
        restored = load_model(save_model(artifact, tmp_path / "model.joblib"))
        assert restored.metadata == {"seed": 42}
        assert restored.ensemble.covariates == artifact.ensemble.covariates

    def test_file_is_a_plain_dict(self, artifact: ModelArtifact, tmp_path: Path) -> None:
        path = save_model(artifact, tmp_path / "model.joblib")
        data = joblib.load(path)
        assert set(data) == {"ensemble", "calibration", "metadata"}


class TestLoadErrors:
    def test_missing_file_raises(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            load_model(tmp_path / "nope.joblib")

    def test_foreign_file_raises(self, tmp_path: Path) -> None:
        path = tmp_path / "other.joblib"
        joblib.dump({"preventive": object()}, path)
        with pytest.raises(ConfigurationError):
            load_model(path)

    def test_wrong_types_raise(self, tmp_path: Path) -> None:
        path = tmp_path / "other.joblib"
        joblib.dump({"ensemble": "forest", "calibration": "map"}, path)
        with pytest.raises(ConfigurationError):
            load_model(path)
