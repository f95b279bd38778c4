"""
Random forest encounter model.

A probability forest over effort and habitat covariates: T classification
trees, each grown on a bootstrap sample of the training checklists and
considering mtry = round(sqrt(p)) randomly chosen covariates at every split
(Gini impurity). The forest's probability for a checklist is the average over
trees of the detection fraction in the leaf the checklist falls into.

Tree growth is delegated to scikit-learn's RandomForestClassifier. Its
random_state comes from the run's RandomSource, so the bootstrap samples and
per-split covariate subsets are reproducible, and the result does not depend
on n_jobs.

Usage:

    from encounter_sdm.models.ensemble import EnsembleClassifier

    clf = EnsembleClassifier(n_trees=1000, n_jobs=-1)
    ensemble = clf.fit(train_df, covariates, random_source)
    p = clf.predict(ensemble, test_df)      # detection probability per row
    clf.importance(ensemble)                # pandas Series, one score per covariate
"""

from __future__ import annotations

import logging
import math
import warnings
from collections.abc import Sequence
from dataclasses import dataclass, field

import numpy as np
import pandas as pd
from sklearn.ensemble import RandomForestClassifier

from ..data.schema import LABEL, require_columns
from ..errors import ConfigurationError, DataQualityError
from ..random_source import RandomSource

logger = logging.getLogger(__name__)

_STREAM = "ensemble"


def default_mtry(n_covariates: int) -> int:
    """Covariates tried per split: sqrt(p) rounded half-up, at least 1."""
    return max(1, int(math.floor(math.sqrt(n_covariates) + 0.5)))


@dataclass(frozen=True)
class TrainedEnsemble:
    """
    A fitted forest and everything needed to use it safely.

    Attributes:
        forest: The fitted scikit-learn forest.
        covariates: Ordered covariate names the forest was trained on.
        importance: Total impurity decrease per covariate, summed over trees.
        n_train: Number of training rows.
        train_prevalence: Detection rate in the training rows.
        oob_proba: Out-of-bag detection probability for each training row,
            in training order (0 for a row that was in every bootstrap sample).
        train_index: Index of the training frame, aligned with oob_proba.
    """

    forest: RandomForestClassifier
    covariates: tuple[str, ...]
    importance: pd.Series
    n_train: int
    train_prevalence: float
    oob_proba: np.ndarray | None = None
    train_index: pd.Index | None = None
    params: dict = field(default_factory=dict)

    def design_matrix(self, records: pd.DataFrame) -> pd.DataFrame:
        """
        Select the model covariates from records, by name and in fitted order.

        Raises:
            ConfigurationError: If records lacks any fitted covariate.
            DataQualityError: If any selected value is missing.
        """
        require_columns(records, self.covariates, "prediction records")
        X = records.loc[:, list(self.covariates)]
        if X.isna().any().any():
            bad = X.columns[X.isna().any()].tolist()
            raise DataQualityError(f"Missing covariate values in prediction records: {bad}")
        return X.astype(float)

    def predict_proba(self, records: pd.DataFrame) -> np.ndarray:
        """Detection probability for each row of records."""
        X = self.design_matrix(records)
        if X.empty:
            return np.empty(0, dtype=float)
        return self.predict_matrix(X)

    def predict_matrix(self, X: pd.DataFrame) -> np.ndarray:
        """Probability for an already-validated design matrix."""
        proba = self.forest.predict_proba(X)
        classes = list(self.forest.classes_)
        if 1 in classes:
            p = proba[:, classes.index(1)]
        else:
            # trained on non-detections only
            p = np.zeros(len(X), dtype=float)
        return np.clip(p, 0.0, 1.0)


class EnsembleClassifier:
    """
    Grows the forest.

    Args:
        n_trees: Number of trees.
        mtry: Covariates tried per split; default round(sqrt(p)).
        min_samples_leaf: Minimum training rows in a leaf.
        class_weight: Passed to scikit-learn. "balanced_subsample"
            reweights each bootstrap sample to equal class totals.
        n_jobs: Worker processes for tree growth (-1 = all cores).
    """

    def __init__(
        self,
        n_trees: int = 1000,
        mtry: int | None = None,
        min_samples_leaf: int = 1,
        class_weight: str | dict | None = None,
        n_jobs: int | None = 1,
    ):
        if int(n_trees) < 1:
            raise ConfigurationError(f"n_trees must be at least 1, got {n_trees!r}")
        if mtry is not None and int(mtry) < 1:
            raise ConfigurationError(f"mtry must be at least 1, got {mtry!r}")
        if int(min_samples_leaf) < 1:
            raise ConfigurationError(f"min_samples_leaf must be at least 1, got {min_samples_leaf!r}")
        self.n_trees = int(n_trees)
        self.mtry = None if mtry is None else int(mtry)
        self.min_samples_leaf = int(min_samples_leaf)
        self.class_weight = class_weight
        self.n_jobs = n_jobs

    def fit(
        self,
        train: pd.DataFrame,
        covariates: Sequence[str],
        random_source: RandomSource,
    ) -> TrainedEnsemble:
        """
        Fit the forest on the training checklists.

        Args:
            train: Training rows with every covariate and species_observed.
            covariates: Ordered covariate names to use.
            random_source: Run-level randomness; the "ensemble" stream is used.

        Raises:
            ConfigurationError: If covariates are empty, duplicated or absent.
            DataQualityError: If train is empty or has missing values.
        """
        covariates = tuple(covariates)
        if not covariates:
            raise ConfigurationError("At least one covariate is required")
        if len(set(covariates)) != len(covariates):
            raise ConfigurationError(f"Duplicate covariate names: {list(covariates)}")
        require_columns(train, [*covariates, LABEL], "training data")
        if train.empty:
            raise DataQualityError("Training data is empty")

        X = train.loc[:, list(covariates)]
        if X.isna().any().any():
            bad = X.columns[X.isna().any()].tolist()
            raise DataQualityError(f"Missing covariate values in training data: {bad}")
        y = train[LABEL].astype(int).to_numpy()

        mtry = self.mtry if self.mtry is not None else default_mtry(len(covariates))
        mtry = min(mtry, len(covariates))

        forest = RandomForestClassifier(
            n_estimators=self.n_trees,
            criterion="gini",
            max_features=mtry,
            min_samples_leaf=self.min_samples_leaf,
            bootstrap=True,
            oob_score=True,
            class_weight=self.class_weight,
            random_state=random_source.integer_seed(_STREAM),
            n_jobs=self.n_jobs,
        )
        with warnings.catch_warnings():
            # a handful of rows in every bootstrap only matters for tiny forests
            warnings.filterwarnings("ignore", message=".*OOB scores.*")
            forest.fit(X.astype(float), y)

        if len(forest.classes_) < 2:
            logger.warning(
                "Training label is constant (%s); the forest will predict it everywhere",
                forest.classes_[0],
            )
            oob = np.full(len(y), float(forest.classes_[0]))
        else:
            oob = forest.oob_decision_function_[:, list(forest.classes_).index(1)]

        importance = pd.Series(
            _total_impurity_decrease(forest, len(covariates)),
            index=list(covariates),
            name="importance",
        )
        prevalence = float(y.mean())
        logger.info(
            "Fitted %d trees on %d rows x %d covariates (mtry=%d, prevalence %.1f%%)",
            self.n_trees,
            len(y),
            len(covariates),
            mtry,
            100 * prevalence,
        )
        return TrainedEnsemble(
            forest=forest,
            covariates=covariates,
            importance=importance,
            n_train=len(y),
            train_prevalence=prevalence,
            oob_proba=np.asarray(oob, dtype=float),
            train_index=train.index.copy(),
            params={
                "n_trees": self.n_trees,
                "mtry": mtry,
                "min_samples_leaf": self.min_samples_leaf,
                "class_weight": self.class_weight,
            },
        )

    @staticmethod
    def predict(ensemble: TrainedEnsemble, records: pd.DataFrame) -> np.ndarray:
        """Detection probability in [0, 1] for each row of records."""
        return ensemble.predict_proba(records)

    @staticmethod
    def importance(ensemble: TrainedEnsemble) -> pd.Series:
        """Total impurity decrease per covariate (non-negative)."""
        return ensemble.importance.copy()


def _total_impurity_decrease(forest: RandomForestClassifier, n_features: int) -> np.ndarray:
    """
    Sum over trees of each covariate's weighted Gini decrease.

    scikit-learn's feature_importances_ renormalises every tree to sum to 1;
    here the raw decreases are kept so the scores add up across trees.
    Trees that never split contribute zeros.
    """
    total = np.zeros(n_features, dtype=float)
    for tree in forest.estimators_:
        if tree.tree_.node_count > 1:
            total += tree.tree_.compute_feature_importances(normalize=False)
    return np.clip(total, 0.0, None)
