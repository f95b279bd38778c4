"""
Predictive performance on the held-out test checklists.

For each prediction variant (raw forest output and calibrated output):

  mse          — mean squared error between probability and 0/1 label
  threshold    — the candidate threshold (0, 0.01, ..., 1) with the highest
                 Cohen's Kappa; ties go to the lowest threshold
  sensitivity  — true positive rate at that threshold
  specificity  — true negative rate at that threshold
  kappa        — Cohen's Kappa at that threshold
  auc          — area under the ROC curve (threshold-free)

A checklist counts as a predicted detection when prediction >= threshold.

Every number here must come from test data only. The Assessor takes the test
frame and predictions explicitly and never sees the training rows.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping

import numpy as np
import pandas as pd
from sklearn.metrics import confusion_matrix, mean_squared_error, roc_auc_score

from ..errors import ConfigurationError, DataQualityError

logger = logging.getLogger(__name__)

REPORT_COLUMNS = ["threshold", "mse", "sensitivity", "specificity", "auc", "kappa", "n_test"]


def cohen_kappa(observed: np.ndarray, predicted: np.ndarray) -> float:
    """
    Cohen's Kappa for two binary vectors.

    Defined as 0 when the expected chance agreement is already 1 (every
    observation and prediction in one class), where the usual formula is 0/0.
    """
    tn, fp, fn, tp = confusion_matrix(observed, predicted, labels=[0, 1]).ravel()
    n = tn + fp + fn + tp
    p_observed = (tp + tn) / n
    p_expected = ((tp + fp) * (tp + fn) + (tn + fn) * (tn + fp)) / n**2
    if np.isclose(p_expected, 1.0):
        return 0.0
    return float((p_observed - p_expected) / (1.0 - p_expected))


class Assessor:
    """
    Args:
        n_thresholds: Number of evenly spaced candidate thresholds on [0, 1].
    """

    def __init__(self, n_thresholds: int = 101):
        if int(n_thresholds) < 2:
            raise ConfigurationError(f"n_thresholds must be at least 2, got {n_thresholds!r}")
        self.thresholds = np.round(np.linspace(0.0, 1.0, int(n_thresholds)), 10)

    def kappa_curve(self, predictions, labels) -> pd.DataFrame:
        """Kappa at every candidate threshold (columns: threshold, kappa)."""
        p, y = _as_arrays(predictions, labels)
        kappas = [cohen_kappa(y, (p >= t).astype(int)) for t in self.thresholds]
        return pd.DataFrame({"threshold": self.thresholds, "kappa": kappas})

    def best_threshold(self, predictions, labels) -> tuple[float, float]:
        """(threshold, kappa) maximising Kappa, lowest threshold on ties."""
        curve = self.kappa_curve(predictions, labels)
        # argmax returns the first maximum, i.e. the lowest threshold
        best = int(np.argmax(curve["kappa"].to_numpy()))
        return float(curve["threshold"].iloc[best]), float(curve["kappa"].iloc[best])

    def assess_predictions(self, predictions, labels) -> dict[str, float]:
        """
        All metrics for a single prediction vector against test labels.

        Raises:
            DataQualityError: If the labels are all one class.
        """
        p, y = _as_arrays(predictions, labels)
        threshold, kappa = self.best_threshold(p, y)
        tn, fp, fn, tp = confusion_matrix(y, (p >= threshold).astype(int), labels=[0, 1]).ravel()
        return {
            "threshold": threshold,
            "mse": float(mean_squared_error(y, p)),
            "sensitivity": float(tp / (tp + fn)),
            "specificity": float(tn / (tn + fp)),
            "auc": float(roc_auc_score(y, p)),
            "kappa": kappa,
            "n_test": int(len(y)),
        }

    def assess(self, labels, predictions: Mapping[str, np.ndarray]) -> pd.DataFrame:
        """
        Assessment report for several prediction variants of the same test set.

        Args:
            labels: Test-set detection labels.
            predictions: Variant name -> predictions, e.g.
                {"raw": p_raw, "calibrated": p_cal}.

        Returns:
            DataFrame indexed by variant name with REPORT_COLUMNS.
        """
        rows = {}
        for name, p in predictions.items():
            rows[name] = self.assess_predictions(p, labels)
            logger.info(
                "[%s] threshold=%.2f  MSE=%.4f  sens=%.3f  spec=%.3f  AUC=%.3f  kappa=%.3f",
                name,
                rows[name]["threshold"],
                rows[name]["mse"],
                rows[name]["sensitivity"],
                rows[name]["specificity"],
                rows[name]["auc"],
                rows[name]["kappa"],
            )
        report = pd.DataFrame.from_dict(rows, orient="index", columns=REPORT_COLUMNS)
        report.index.name = "model"
        return report


def _as_arrays(predictions, labels) -> tuple[np.ndarray, np.ndarray]:
    p = np.asarray(predictions, dtype=float).ravel()
    y = np.asarray(labels).astype(int).ravel()
    if p.shape != y.shape:
        raise DataQualityError(
            f"Predictions and labels differ in length: {p.size} vs {y.size}"
        )
    if not np.isfinite(p).all():
        raise DataQualityError("Predictions contain missing or non-finite values")
    if np.unique(y).size < 2:
        raise DataQualityError(
            "Test labels contain a single class; sensitivity, specificity and AUC are undefined"
        )
    return p, y
