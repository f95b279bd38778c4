"""
Variable importance and partial dependence for the encounter model.

Partial dependence of covariate x at value v is the model's average
prediction over a dataset after setting x = v in every row. Averaging over the
observed values of the other covariates isolates x's marginal effect net of
its correlation with them.

All functions here are stateless: they read the fitted ensemble and the data,
and never modify either. That makes each grid value an independent task, so
grid values are evaluated with a joblib worker pool and reassembled in grid
order.

Time of day is special. Night-time checklists are rare, so the forest's
response there is poorly constrained and the partial-dependence curve often
extrapolates an implausible maximum in the small hours. peak_time_of_day()
therefore only considers hour-of-day buckets that hold at least
`min_hour_fraction` of the training checklists (1% by default).
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass

import numpy as np
import pandas as pd
from joblib import Parallel, delayed

from ..data.schema import TIME_OF_DAY, require_columns
from ..errors import ConfigurationError, DataQualityError
from ..models.calibration import CalibrationMap
from ..models.ensemble import TrainedEnsemble

logger = logging.getLogger(__name__)

# 10-minute steps across the day
TIME_OF_DAY_GRID = np.arange(0, 24 * 6) / 6.0


@dataclass(frozen=True)
class DependenceCurve:
    """Ordered (value, average predicted probability) pairs for one covariate."""

    covariate: str
    values: np.ndarray
    probabilities: np.ndarray

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame({
            "covariate": self.covariate,
            "value": self.values,
            "probability": self.probabilities,
        })


def variable_importance(ensemble: TrainedEnsemble) -> pd.DataFrame:
    """Covariates ranked by importance, most important first."""
    ranked = ensemble.importance.sort_values(ascending=False, kind="mergesort")
    out = ranked.rename_axis("covariate").reset_index(name="importance")
    out["rank"] = np.arange(1, len(out) + 1)
    return out


def covariate_grid(
    data: pd.DataFrame,
    covariate: str,
    grid_size: int = 25,
    trim_quantile: float = 0.025,
) -> np.ndarray:
    """
    Representative values of a covariate for partial dependence.

    Time of day always uses 10-minute steps over 24 hours. Other covariates
    get grid_size evenly spaced values between the trim_quantile and
    1 - trim_quantile empirical quantiles (the full range when 0).
    """
    if covariate == TIME_OF_DAY:
        return TIME_OF_DAY_GRID.copy()
    if int(grid_size) < 2:
        raise ConfigurationError(f"grid_size must be at least 2, got {grid_size!r}")
    if not 0.0 <= trim_quantile < 0.5:
        raise ConfigurationError(f"trim_quantile must lie in [0, 0.5), got {trim_quantile!r}")

    values = data[covariate].dropna().astype(float)
    if values.empty:
        raise DataQualityError(f"No values for covariate {covariate!r}")
    lo, hi = values.quantile([trim_quantile, 1.0 - trim_quantile])
    if np.isclose(lo, hi):
        return np.array([float(lo)])
    return np.linspace(lo, hi, int(grid_size))


def _average_prediction(
    ensemble: TrainedEnsemble,
    X: pd.DataFrame,
    covariate: str,
    value: float,
    calibration: CalibrationMap | None,
) -> float:
    X_fixed = X.copy()
    X_fixed[covariate] = value
    p = ensemble.predict_matrix(X_fixed)
    if calibration is not None:
        p = calibration.apply(p)
    return float(np.mean(p))


def partial_dependence(
    ensemble: TrainedEnsemble,
    covariate: str,
    data: pd.DataFrame,
    grid_size: int = 25,
    calibration: CalibrationMap | None = None,
    grid: Sequence[float] | None = None,
    trim_quantile: float = 0.025,
    n_jobs: int | None = 1,
) -> DependenceCurve:
    """
    Partial dependence curve of one covariate.

    Args:
        ensemble: Fitted ensemble.
        covariate: One of the ensemble's covariates.
        data: Records over which predictions are averaged (usually train).
        grid_size: Number of grid values (ignored for time of day).
        calibration: If given, calibrate predictions before averaging.
        grid: Explicit grid values, overriding the automatic grid.
        trim_quantile: Tail fraction excluded from the automatic grid.
        n_jobs: joblib workers for evaluating grid values.

    Raises:
        ConfigurationError: If covariate is not a model covariate.
    """
    if covariate not in ensemble.covariates:
        raise ConfigurationError(
            f"{covariate!r} is not a model covariate: {list(ensemble.covariates)}"
        )
    X = ensemble.design_matrix(data)
    if X.empty:
        raise DataQualityError("No records to average partial dependence over")

    if grid is None:
        values = covariate_grid(data, covariate, grid_size=grid_size, trim_quantile=trim_quantile)
    else:
        values = np.asarray(grid, dtype=float)

    probabilities = Parallel(n_jobs=n_jobs)(
        delayed(_average_prediction)(ensemble, X, covariate, float(v), calibration)
        for v in values
    )
    return DependenceCurve(
        covariate=covariate,
        values=np.asarray(values, dtype=float),
        probabilities=np.asarray(probabilities, dtype=float),
    )


def partial_dependence_table(
    ensemble: TrainedEnsemble,
    data: pd.DataFrame,
    covariates: Sequence[str] | None = None,
    top_n: int = 9,
    grid_size: int = 25,
    calibration: CalibrationMap | None = None,
    n_jobs: int | None = 1,
) -> pd.DataFrame:
    """
    Long-format partial dependence (covariate, value, probability) for
    several covariates; by default the top_n most important ones.
    """
    if covariates is None:
        covariates = variable_importance(ensemble)["covariate"].head(top_n).tolist()
    frames = [
        partial_dependence(
            ensemble, c, data, grid_size=grid_size, calibration=calibration, n_jobs=n_jobs
        ).to_frame()
        for c in covariates
    ]
    if not frames:
        return pd.DataFrame(columns=["covariate", "value", "probability"])
    return pd.concat(frames, ignore_index=True)


def hour_fractions(data: pd.DataFrame) -> pd.Series:
    """Fraction of records in each hour-of-day bucket 0..23."""
    require_columns(data, [TIME_OF_DAY], "time-of-day data")
    hours = np.floor(data[TIME_OF_DAY].dropna().astype(float)).clip(0, 23).astype(int)
    counts = hours.value_counts().reindex(range(24), fill_value=0)
    total = counts.sum()
    if total == 0:
        return counts.astype(float)
    return counts / total


@dataclass(frozen=True)
class PeakTime:
    """Result of the guarded time-of-day peak search."""

    time: float
    probability: float
    curve: DependenceCurve
    eligible_hours: tuple[int, ...]


def peak_time_of_day(
    ensemble: TrainedEnsemble,
    data: pd.DataFrame,
    min_hour_fraction: float = 0.01,
    calibration: CalibrationMap | None = None,
    n_jobs: int | None = 1,
    curve: DependenceCurve | None = None,
) -> PeakTime:
    """
    Time of day at which detection probability peaks, restricted to hours
    with enough data.

    Args:
        ensemble: Fitted ensemble with a time-of-day covariate.
        data: Training records; used both for averaging and for the
            per-hour data fractions.
        min_hour_fraction: Minimum share of records an hour bucket needs
            before its grid values may be chosen.
        calibration: If given, search the calibrated curve.
        n_jobs: joblib workers for the partial dependence evaluation.
        curve: Precomputed time-of-day curve to search instead of computing one.

    Returns:
        PeakTime with the chosen time in decimal hours.

    Raises:
        DataQualityError: If no hour bucket meets min_hour_fraction.
    """
    if not 0.0 <= min_hour_fraction <= 1.0:
        raise ConfigurationError(f"min_hour_fraction must lie in [0, 1], got {min_hour_fraction!r}")
    fractions = hour_fractions(data)
    eligible = tuple(int(h) for h in fractions.index[fractions >= min_hour_fraction])
    if not eligible:
        raise DataQualityError(
            f"No hour of day holds at least {min_hour_fraction:.1%} of the records"
        )

    if curve is None:
        curve = partial_dependence(
            ensemble, TIME_OF_DAY, data, calibration=calibration, n_jobs=n_jobs
        )
    grid_hours = np.floor(curve.values).astype(int)
    allowed = np.isin(grid_hours, eligible)
    if not allowed.any():
        raise DataQualityError("The time-of-day grid has no values in well-sampled hours")

    masked = np.where(allowed, curve.probabilities, -np.inf)
    best = int(np.argmax(masked))
    unrestricted = int(np.argmax(curve.probabilities))
    if best != unrestricted:
        logger.info(
            "Unrestricted time-of-day peak at %.2f h lies in a sparsely sampled hour; "
            "using %.2f h instead",
            curve.values[unrestricted],
            curve.values[best],
        )
    logger.info(
        "Peak time of day %.2f h (probability %.3f); %d of 24 hours eligible",
        curve.values[best],
        curve.probabilities[best],
        len(eligible),
    )
    return PeakTime(
        time=float(curve.values[best]),
        probability=float(curve.probabilities[best]),
        curve=curve,
        eligible_hours=eligible,
    )
