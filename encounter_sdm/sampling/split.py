"""
Train/test split of the subsampled checklists.

Rows with a missing value in any model covariate (or the label) are dropped
first, so NaN never reaches the model. Each remaining row then goes to the
training set with independent probability `train_fraction`. There is no
stratification here; class balance was already dealt with by the subsampler.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Sequence
from dataclasses import dataclass

import pandas as pd

from ..data.schema import LABEL, drop_incomplete
from ..errors import ConfigurationError, DataQualityError
from ..random_source import RandomSource

logger = logging.getLogger(__name__)

_STREAM = "split"


@dataclass(frozen=True)
class TrainTestSplit:
    """Disjoint training and test partitions of one sampled dataset."""

    train: pd.DataFrame
    test: pd.DataFrame


class DatasetSplitter:
    """
    Args:
        train_fraction: Probability that any one record is assigned to train.
    """

    def __init__(self, train_fraction: float = 0.8):
        try:
            fraction = float(train_fraction)
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"train_fraction must be a number, got {train_fraction!r}") from e
        if not math.isfinite(fraction) or not 0.0 < fraction < 1.0:
            raise ConfigurationError(f"train_fraction must lie in (0, 1), got {train_fraction!r}")
        self.train_fraction = fraction

    def split(
        self,
        sampled: pd.DataFrame,
        covariates: Sequence[str],
        random_source: RandomSource,
    ) -> TrainTestSplit:
        """
        Drop incomplete rows, then assign each row to train or test.

        Args:
            sampled: Subsampled checklists.
            covariates: Model covariates that must be non-missing.
            random_source: Run-level randomness; the "split" stream is used.

        Returns:
            TrainTestSplit; both frames keep the original index labels.

        Raises:
            ConfigurationError: If a covariate column is absent.
            DataQualityError: If no complete rows remain.
        """
        complete = drop_incomplete(sampled, [*covariates, LABEL], "train/test split")
        if complete.empty:
            raise DataQualityError("No complete records left to split")

        rng = random_source.generator(_STREAM)
        in_train = rng.random(len(complete)) <= self.train_fraction

        train = complete.loc[in_train].copy()
        test = complete.loc[~in_train].copy()
        logger.info(
            "Split %d records: %d train / %d test (train fraction %.2f)",
            len(complete),
            len(train),
            len(test),
            self.train_fraction,
        )
        return TrainTestSplit(train=train, test=test)
