"""
Monotone calibration of raw forest probabilities.

After balanced subsampling the forest's probabilities are systematically off
(detections are over-represented in training, and forests shrink extreme
probabilities toward the middle). The calibration model is a binomial GAM

    logit P(detected) = f(raw prediction)

where f is a small cubic regression spline constrained to be monotonically
increasing, fitted with pyGAM. A few basis functions (5 by default) are
enough; a more flexible curve starts fitting noise and reintroduces the
miscalibration it is meant to remove.

Because the mapping is monotone it never reorders checklists, so AUC is
unchanged by calibration while threshold-based metrics and MSE can move.

The fitted curve is tabulated on a dense grid over [0, 1], made
non-decreasing with a running maximum, and stored as a lookup table. Applying
it is then a linear interpolation, which keeps the map exactly monotone,
cheap, and trivially picklable.
"""

from __future__ import annotations

import logging
import warnings
from dataclasses import dataclass

import numpy as np
from pygam import LogisticGAM, s

from ..errors import ConfigurationError, NumericalError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CalibrationMap:
    """
    Non-decreasing map from raw to calibrated probability.

    Attributes:
        knots: Increasing raw-probability grid covering [0, 1].
        values: Calibrated probability at each knot (non-decreasing, in [0, 1]).
        n_splines: Spline basis size used in the fit (0 for the identity map).
        n_fit: Number of (prediction, label) pairs the map was fitted on.
    """

    knots: np.ndarray
    values: np.ndarray
    n_splines: int = 0
    n_fit: int = 0

    @property
    def is_identity(self) -> bool:
        return self.n_splines == 0

    def apply(self, raw) -> np.ndarray:
        """Calibrated probabilities for raw predictions, clipped to [0, 1]."""
        raw = np.clip(np.asarray(raw, dtype=float), 0.0, 1.0)
        return np.clip(np.interp(raw, self.knots, self.values), 0.0, 1.0)


class Calibrator:
    """
    Fits CalibrationMaps.

    Args:
        n_splines: Spline basis size, i.e. the curve's degrees of freedom.
            Must exceed the cubic spline order (at least 4).
        lam: Smoothing penalty strength.
        min_class_count: Minimum detections and non-detections needed to fit.
        grid_size: Number of knots in the stored lookup table.
        max_iter: Maximum PIRLS iterations for the GAM fit.
    """

    def __init__(
        self,
        n_splines: int = 5,
        lam: float = 0.6,
        min_class_count: int = 5,
        grid_size: int = 1001,
        max_iter: int = 200,
    ):
        if int(n_splines) < 4:
            raise ConfigurationError(f"n_splines must be at least 4, got {n_splines!r}")
        if float(lam) <= 0:
            raise ConfigurationError(f"lam must be positive, got {lam!r}")
        if int(grid_size) < 2:
            raise ConfigurationError(f"grid_size must be at least 2, got {grid_size!r}")
        self.n_splines = int(n_splines)
        self.lam = float(lam)
        self.min_class_count = int(min_class_count)
        self.grid_size = int(grid_size)
        self.max_iter = int(max_iter)

    def fit(self, raw_predictions, observed_labels) -> CalibrationMap:
        """
        Fit the monotone calibration curve.

        Args:
            raw_predictions: Forest probabilities on the training checklists.
            observed_labels: Matching 0/1 (or boolean) detection labels.

        Raises:
            NumericalError: If the inputs cannot support a fit (mismatched
                lengths, non-finite values, too few of either class) or the
                GAM fails or does not converge.
        """
        raw = np.asarray(raw_predictions, dtype=float).ravel()
        labels = np.asarray(observed_labels, dtype=float).ravel()
        if raw.shape != labels.shape:
            raise NumericalError(
                f"Calibration inputs differ in length: {raw.size} predictions vs {labels.size} labels"
            )
        if not (np.isfinite(raw).all() and np.isfinite(labels).all()):
            raise NumericalError("Calibration inputs contain missing or non-finite values")

        n_pos = int((labels > 0.5).sum())
        n_neg = labels.size - n_pos
        if min(n_pos, n_neg) < self.min_class_count:
            raise NumericalError(
                f"Too few examples to calibrate: {n_pos} detections, {n_neg} non-detections "
                f"(need at least {self.min_class_count} of each)"
            )

        gam = LogisticGAM(
            s(0, n_splines=self.n_splines, spline_order=3, constraints="monotonic_inc", lam=self.lam),
            max_iter=self.max_iter,
        )
        with warnings.catch_warnings(record=True) as caught:
            warnings.simplefilter("always")
            try:
                gam.fit(raw.reshape(-1, 1), (labels > 0.5).astype(int))
            except (ValueError, ArithmeticError, np.linalg.LinAlgError) as e:
                raise NumericalError(f"Calibration fit failed: {e}") from e

        not_converged = [w for w in caught if "converge" in str(w.message).lower()]
        if not_converged:
            raise NumericalError(f"Calibration fit did not converge: {not_converged[0].message}")
        # pyGAM logs the relative coefficient change of every PIRLS iteration
        diffs = gam.logs_.get("diffs", [])
        if diffs and not diffs[-1] < gam.tol:
            raise NumericalError(
                f"Calibration fit did not converge in {self.max_iter} iterations "
                f"(last change {diffs[-1]:.2e})"
            )

        knots = np.linspace(0.0, 1.0, self.grid_size)
        values = gam.predict_mu(knots.reshape(-1, 1))
        if not np.isfinite(values).all():
            raise NumericalError("Calibration curve has non-finite values")
        values = np.maximum.accumulate(np.clip(values, 0.0, 1.0))

        logger.info(
            "Calibration fitted on %d predictions (%d detections, n_splines=%d): "
            "raw 0.1/0.5/0.9 -> %.3f/%.3f/%.3f",
            raw.size,
            n_pos,
            self.n_splines,
            *np.interp([0.1, 0.5, 0.9], knots, values),
        )
        return CalibrationMap(knots=knots, values=values, n_splines=self.n_splines, n_fit=raw.size)

    @staticmethod
    def apply(calibration: CalibrationMap, raw_values) -> np.ndarray:
        """Calibrated probabilities, clipped to [0, 1]."""
        return calibration.apply(raw_values)

    @staticmethod
    def identity() -> CalibrationMap:
        """
        A pass-through map, for callers that knowingly skip calibration
        (for example after a NumericalError they have decided to accept).
        """
        logger.warning("Using the identity calibration map: predictions are left uncalibrated")
        return CalibrationMap(knots=np.array([0.0, 1.0]), values=np.array([0.0, 1.0]))
