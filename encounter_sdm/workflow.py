"""
End-to-end encounter-rate modelling in one call.

Runs every stage in order, threading one RandomSource through the stages that
sample:

    subsample -> split -> fit forest -> calibrate -> assess (test only)
              -> importance / partial dependence / peak time -> surface

The numbered scripts in pipeline/ run the same stages one at a time with
artefacts on disk in between; because each stage draws from its own named
random stream, both routes make the same random draws for the same seed.

Usage:

    from encounter_sdm.workflow import PipelineSettings, run_pipeline

    settings = PipelineSettings.from_config(load_config("pipeline"), load_config("model_training"))
    result = run_pipeline(observations, prediction_grid, settings)
    result.report        # assessment, one row per model variant
    result.surface       # encounter rate per grid point
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field, fields
from typing import Any

import numpy as np
import pandas as pd

from .data.schema import LABEL, TIME_OF_DAY, add_date_covariates, default_covariates
from .errors import NumericalError
from .evaluation.assessment import Assessor
from .evaluation.dependence import (
    PeakTime,
    partial_dependence_table,
    peak_time_of_day,
    variable_importance,
)
from .models.artifact import ModelArtifact
from .models.calibration import CalibrationMap, Calibrator
from .models.ensemble import EnsembleClassifier, TrainedEnsemble
from .prediction.surface import ReferenceChecklist, SurfacePredictor
from .random_source import RandomSource
from .sampling.split import DatasetSplitter, TrainTestSplit
from .sampling.subsample import BalancedSubsampler

logger = logging.getLogger(__name__)


@dataclass
class PipelineSettings:
    """Every tunable of a pipeline run, with the standard defaults."""

    seed: int = 1
    covariates: list[str] | None = None

    hex_spacing_km: float = 5.0
    time_bucket: str = "week"
    train_fraction: float = 0.8

    n_trees: int = 1000
    mtry: int | None = None
    min_samples_leaf: int = 1
    class_weight: str | None = None
    n_jobs: int | None = 1

    calibration_n_splines: int = 5
    calibration_lam: float = 0.6
    calibration_min_class_count: int = 5
    allow_uncalibrated: bool = False

    n_thresholds: int = 101

    pd_grid_size: int = 25
    pd_top_n: int = 9
    min_hour_fraction: float = 0.01

    reference_month: int = 6
    reference_day: int = 15
    reference_effort: dict[str, float] = field(default_factory=lambda: {
        "duration_minutes": 60.0,
        "effort_distance_km": 1.0,
        "number_observers": 1.0,
    })

    @classmethod
    def from_config(
        cls,
        pipeline_cfg: dict[str, Any],
        training_cfg: dict[str, Any],
    ) -> PipelineSettings:
        """Build settings from the pipeline and model_training YAML configs."""
        sub = pipeline_cfg.get("subsampling", {})
        split = pipeline_cfg.get("split", {})
        ens = training_cfg.get("ensemble", {})
        cal = training_cfg.get("calibration", {})
        assess = training_cfg.get("assessment", {})
        dep = training_cfg.get("dependence", {})
        ref = training_cfg.get("reference_checklist", {})

        values: dict[str, Any] = {
            "seed": pipeline_cfg.get("seed"),
            "covariates": training_cfg.get("covariates"),
            "hex_spacing_km": sub.get("hex_spacing_km"),
            "time_bucket": sub.get("time_bucket"),
            "train_fraction": split.get("train_fraction"),
            "n_trees": ens.get("n_trees"),
            "mtry": ens.get("mtry"),
            "min_samples_leaf": ens.get("min_samples_leaf"),
            "class_weight": ens.get("class_weight"),
            "n_jobs": ens.get("n_jobs"),
            "calibration_n_splines": cal.get("n_splines"),
            "calibration_lam": cal.get("lam"),
            "calibration_min_class_count": cal.get("min_class_count"),
            "allow_uncalibrated": cal.get("allow_uncalibrated"),
            "n_thresholds": assess.get("n_thresholds"),
            "pd_grid_size": dep.get("grid_size"),
            "pd_top_n": dep.get("top_n"),
            "min_hour_fraction": dep.get("min_hour_fraction"),
            "reference_month": ref.get("month"),
            "reference_day": ref.get("day"),
            "reference_effort": ref.get("effort"),
        }
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in values.items() if k in known and v is not None})


@dataclass
class PipelineResult:
    sampled: pd.DataFrame
    split: TrainTestSplit
    covariates: list[str]
    artifact: ModelArtifact
    report: pd.DataFrame
    importance: pd.DataFrame
    dependence: pd.DataFrame
    peak: PeakTime | None
    reference: ReferenceChecklist
    surface: pd.DataFrame | None = None


def calibration_inputs(
    ensemble: TrainedEnsemble,
    train: pd.DataFrame,
    use_oob: bool = True,
) -> tuple[np.ndarray, np.ndarray]:
    """(raw predictions, labels) the calibration map is fitted on."""
    labels = train[LABEL].astype(int).to_numpy()
    fitted_rows = (
        ensemble.oob_proba is not None
        and ensemble.train_index is not None
        and train.index.equals(ensemble.train_index)
    )
    if use_oob and fitted_rows:
        return ensemble.oob_proba, labels
    return ensemble.predict_proba(train), labels


def fit_calibration(
    ensemble: TrainedEnsemble,
    train: pd.DataFrame,
    calibrator: Calibrator,
    allow_uncalibrated: bool = False,
    use_oob: bool = True,
) -> CalibrationMap:
    """
    Calibrate the forest on its own training predictions.

    With use_oob, and train carrying exactly the index the forest was fitted
    on, each training row is scored only by the trees that did not see it.
    Otherwise the full forest scores every row.

    A NumericalError propagates unless the caller has explicitly accepted
    an uncalibrated model with allow_uncalibrated=True.
    """
    raw, labels = calibration_inputs(ensemble, train, use_oob)
    try:
        return calibrator.fit(raw, labels)
    except NumericalError as e:
        if not allow_uncalibrated:
            raise
        logger.warning("Calibration failed (%s); continuing uncalibrated as requested", e)
        return Calibrator.identity()


def assess_model(
    artifact: ModelArtifact,
    test: pd.DataFrame,
    assessor: Assessor,
) -> pd.DataFrame:
    """Assessment report for raw and calibrated predictions on the test rows."""
    raw = artifact.ensemble.predict_proba(test)
    calibrated = artifact.calibration.apply(raw)
    return assessor.assess(
        test[LABEL].astype(int).to_numpy(),
        {"raw": raw, "calibrated": calibrated},
    )


def run_pipeline(
    observations: pd.DataFrame,
    prediction_grid: pd.DataFrame | None = None,
    settings: PipelineSettings | None = None,
    covariates: Sequence[str] | None = None,
) -> PipelineResult:
    """
    Run all stages on in-memory tables.

    Args:
        observations: Zero-filled checklists with effort and habitat covariates.
        prediction_grid: Optional grid of habitat covariates to predict on.
        settings: Run settings (defaults when omitted).
        covariates: Explicit model covariates; overrides settings.covariates.
    """
    settings = settings or PipelineSettings()
    random_source = RandomSource(settings.seed)

    observations = add_date_covariates(observations)
    if covariates is None:
        covariates = settings.covariates
    covariates = list(covariates) if covariates is not None else default_covariates(observations)
    logger.info("Modelling with %d covariates (seed %d)", len(covariates), settings.seed)

    sampler = BalancedSubsampler(spacing_km=settings.hex_spacing_km, time_bucket=settings.time_bucket)
    sampled = sampler.sample(observations, random_source)

    split = DatasetSplitter(settings.train_fraction).split(sampled, covariates, random_source)

    classifier = EnsembleClassifier(
        n_trees=settings.n_trees,
        mtry=settings.mtry,
        min_samples_leaf=settings.min_samples_leaf,
        class_weight=settings.class_weight,
        n_jobs=settings.n_jobs,
    )
    ensemble = classifier.fit(split.train, covariates, random_source)

    calibrator = Calibrator(
        n_splines=settings.calibration_n_splines,
        lam=settings.calibration_lam,
        min_class_count=settings.calibration_min_class_count,
    )
    calibration = fit_calibration(ensemble, split.train, calibrator, settings.allow_uncalibrated)

    artifact = ModelArtifact(
        ensemble=ensemble,
        calibration=calibration,
        metadata={"seed": settings.seed, "hex_spacing_km": settings.hex_spacing_km},
    )
    report = assess_model(artifact, split.test, Assessor(settings.n_thresholds))

    importance = variable_importance(ensemble)
    dependence = partial_dependence_table(
        ensemble,
        split.train,
        top_n=settings.pd_top_n,
        grid_size=settings.pd_grid_size,
        calibration=calibration,
        n_jobs=settings.n_jobs,
    )

    peak = None
    if TIME_OF_DAY in covariates:
        peak = peak_time_of_day(
            ensemble,
            split.train,
            min_hour_fraction=settings.min_hour_fraction,
            calibration=calibration,
            n_jobs=settings.n_jobs,
        )
    reference = ReferenceChecklist.for_training_data(
        split.train,
        time_of_day=peak.time if peak is not None else None,
        month=settings.reference_month,
        day=settings.reference_day,
        **settings.reference_effort,
    )

    surface = None
    if prediction_grid is not None:
        threshold = float(report.loc["calibrated", "threshold"])
        surface = SurfacePredictor(ensemble, calibration, reference).predict(
            prediction_grid, threshold=threshold
        )

    return PipelineResult(
        sampled=sampled,
        split=split,
        covariates=covariates,
        artifact=artifact,
        report=report,
        importance=importance,
        dependence=dependence,
        peak=peak,
        reference=reference,
        surface=surface,
    )
