"""
Encounter-rate surface over a prediction grid.

The prediction grid carries habitat covariates only. To map habitat-driven
variation rather than effort-driven variation, every grid point is given the
same standardized "reference checklist": a one-hour, 1 km traveling count by
one observer on a fixed date, started at the time of day when detection
probability peaks. The calibrated model's prediction for that checklist is
the encounter rate at the point.

Usage:

    from encounter_sdm.prediction.surface import ReferenceChecklist, SurfacePredictor

    reference = ReferenceChecklist.for_training_data(train_df, time_of_day=peak.time)
    surface = SurfacePredictor(ensemble, calibration, reference).predict(grid_df)
    surface[["longitude", "latitude", "encounter_rate"]]
"""

from __future__ import annotations

import datetime as dt
import logging
from dataclasses import dataclass

import numpy as np
import pandas as pd

from ..data.schema import (
    DATE_COVARIATES,
    EFFORT_COVARIATES,
    OPTIONAL_EFFORT_COVARIATES,
    TIME_OF_DAY,
)
from ..errors import ConfigurationError, DataQualityError
from ..models.calibration import CalibrationMap
from ..models.ensemble import TrainedEnsemble

logger = logging.getLogger(__name__)

ENCOUNTER_RATE = "encounter_rate"
IN_RANGE = "in_range"

_EFFORT_AND_DATE = set(DATE_COVARIATES + EFFORT_COVARIATES + OPTIONAL_EFFORT_COVARIATES)


@dataclass(frozen=True)
class ReferenceChecklist:
    """
    The fixed effort profile injected into every grid point.

    Attributes:
        observation_date: Date of the reference checklist.
        time_of_day: Start time in decimal hours (normally the guarded peak).
        duration_minutes: Checklist duration.
        effort_distance_km: Distance traveled.
        number_observers: Party size.
        cci: Checklist calibration index, used when the model has it.
    """

    observation_date: dt.date
    time_of_day: float | None = None
    duration_minutes: float = 60.0
    effort_distance_km: float = 1.0
    number_observers: float = 1.0
    cci: float = 0.0

    @classmethod
    def for_training_data(
        cls,
        train: pd.DataFrame,
        time_of_day: float | None,
        month: int = 6,
        day: int = 15,
        **effort,
    ) -> ReferenceChecklist:
        """Reference checklist dated month/day of the latest training year."""
        if "year" not in train.columns or train["year"].dropna().empty:
            raise ConfigurationError("Training data needs a year column to date the reference checklist")
        year = int(train["year"].max())
        return cls(observation_date=dt.date(year, month, day), time_of_day=time_of_day, **effort)

    def columns(self) -> dict[str, float]:
        """Covariate values of the reference checklist."""
        values: dict[str, float] = {
            "year": float(self.observation_date.year),
            "day_of_year": float(self.observation_date.timetuple().tm_yday),
            "duration_minutes": float(self.duration_minutes),
            "effort_distance_km": float(self.effort_distance_km),
            "number_observers": float(self.number_observers),
            "cci": float(self.cci),
        }
        if self.time_of_day is not None:
            values[TIME_OF_DAY] = float(self.time_of_day)
        return values


class SurfacePredictor:
    """
    Applies a trained and calibrated model to a prediction grid.

    Args:
        ensemble: Fitted forest.
        calibration: Calibration map applied to the forest's output.
        reference: Effort profile injected into every grid point.
    """

    def __init__(
        self,
        ensemble: TrainedEnsemble,
        calibration: CalibrationMap,
        reference: ReferenceChecklist,
    ):
        if TIME_OF_DAY in ensemble.covariates and reference.time_of_day is None:
            raise ConfigurationError(
                "The model uses time of day; the reference checklist needs a time_of_day"
            )
        self.ensemble = ensemble
        self.calibration = calibration
        self.reference = reference

    def with_reference_effort(self, grid: pd.DataFrame) -> pd.DataFrame:
        """Copy of grid with the reference effort columns set on every row."""
        out = grid.copy()
        for name, value in self.reference.columns().items():
            if name in self.ensemble.covariates:
                out[name] = value
        return out

    def predict(self, grid: pd.DataFrame, threshold: float | None = None) -> pd.DataFrame:
        """
        Encounter rate at every grid point.

        Args:
            grid: Prediction grid with the habitat covariates the model uses.
            threshold: If given, add a boolean in_range column
                (encounter_rate >= threshold).

        Returns:
            Copy of the complete grid rows with the effort columns and
            encounter_rate added.

        Raises:
            ConfigurationError: If the grid lacks a habitat covariate.
            DataQualityError: If no grid row has complete covariates.
        """
        habitat = [c for c in self.ensemble.covariates if c not in _EFFORT_AND_DATE]
        missing = [c for c in habitat if c not in grid.columns]
        if missing:
            raise ConfigurationError(f"Prediction grid is missing model covariates: {missing}")

        complete = grid[habitat].notna().all(axis=1)
        n_dropped = int((~complete).sum())
        if n_dropped:
            logger.info("Prediction grid: dropped %d of %d points with missing covariates", n_dropped, len(grid))
        if not complete.any():
            raise DataQualityError("No prediction grid points with complete covariates")

        surface = self.with_reference_effort(grid.loc[complete])
        raw = self.ensemble.predict_proba(surface)
        surface[ENCOUNTER_RATE] = self.calibration.apply(raw)
        if threshold is not None:
            surface[IN_RANGE] = surface[ENCOUNTER_RATE] >= threshold

        logger.info(
            "Predicted %d grid points: encounter rate mean %.3f, max %.3f",
            len(surface),
            float(np.mean(surface[ENCOUNTER_RATE])),
            float(np.max(surface[ENCOUNTER_RATE])),
        )
        return surface
