"""
Spatiotemporal balanced subsampling of checklists.

Citizen-science checklists are clustered in space (near towns and hotspots),
in time (weekends, migration peaks) and are dominated by non-detections. The
subsampler removes all three biases in one pass:

  1. assign every checklist to an equal-area hexagonal cell,
  2. group checklists by the stratum key (species_observed, time_bucket, cell_id),
  3. keep exactly one checklist per stratum, drawn uniformly at random.

Because detections and non-detections are stratified separately, a cell-week
that held 1 detection and 200 non-detections contributes one of each, which
moves detection prevalence up toward balance without inventing records.

Usage:

    from encounter_sdm.random_source import RandomSource
    from encounter_sdm.sampling.subsample import BalancedSubsampler

    sampler = BalancedSubsampler(spacing_km=5.0, time_bucket="week")
    sampled = sampler.sample(observations, RandomSource(seed=1))
"""

from __future__ import annotations

import logging
from collections.abc import Callable

import numpy as np
import pandas as pd

from ..data.schema import (
    CELL_ID,
    LABEL,
    LATITUDE,
    LONGITUDE,
    add_date_covariates,
    drop_incomplete,
)
from ..errors import ConfigurationError, DataQualityError
from ..random_source import RandomSource
from ..spatial.hexgrid import HexGridIndexer

logger = logging.getLogger(__name__)

TimeBucket = Callable[[pd.DataFrame], pd.Series]

_STREAM = "subsample"


def week_of_year(df: pd.DataFrame) -> pd.Series:
    """
    Year and week number (1–53, counted in 7-day blocks from January 1),
    encoded as year * 100 + week.
    """
    df = add_date_covariates(df)
    week = (df["day_of_year"].astype(float) - 1) // 7 + 1
    return df["year"].astype(float) * 100 + week


def iso_week(df: pd.DataFrame) -> pd.Series:
    """ISO calendar week (1–53) ignoring the year, pooling weeks across years."""
    dates = pd.to_datetime(df["observation_date"])
    return dates.dt.isocalendar().week.astype(float)


def month_of_year(df: pd.DataFrame) -> pd.Series:
    """Year and month, encoded as year * 100 + month."""
    dates = pd.to_datetime(df["observation_date"])
    return dates.dt.year * 100 + dates.dt.month


TIME_BUCKETS: dict[str, TimeBucket] = {
    "week": week_of_year,
    "iso_week": iso_week,
    "month": month_of_year,
}


def resolve_time_bucket(time_bucket: str | TimeBucket) -> TimeBucket:
    """Look up a named time-bucket function, or pass a callable through."""
    if callable(time_bucket):
        return time_bucket
    try:
        return TIME_BUCKETS[time_bucket]
    except KeyError:
        raise ConfigurationError(
            f"Unknown time bucket: {time_bucket!r}. Choose from {list(TIME_BUCKETS)}"
        ) from None


def detection_rate(df: pd.DataFrame) -> float:
    """Fraction of rows with a detection (NaN for an empty frame)."""
    if df.empty:
        return float("nan")
    return float(df[LABEL].astype(float).mean())


class BalancedSubsampler:
    """
    Keeps one randomly chosen checklist per (label, time bucket, hex cell).

    Args:
        spacing_km: Hex cell spacing, used when no indexer is given.
        time_bucket: Name in TIME_BUCKETS or a callable mapping the
            observation frame to one bucket value per row.
        indexer: Pre-built HexGridIndexer; overrides spacing_km.
    """

    def __init__(
        self,
        spacing_km: float = 5.0,
        time_bucket: str | TimeBucket = "week",
        indexer: HexGridIndexer | None = None,
    ):
        self.indexer = indexer if indexer is not None else HexGridIndexer(spacing_km)
        self.time_bucket = resolve_time_bucket(time_bucket)

    def strata(self, observations: pd.DataFrame) -> pd.DataFrame:
        """
        Stratum key columns for every complete observation.

        Returns:
            DataFrame with the observations' index and columns
            species_observed, time_bucket, cell_id. Rows missing coordinates
            or the label are dropped (and counted in the log).
        """
        if not observations.index.is_unique:
            raise DataQualityError("Observation index must be unique to subsample")
        df = drop_incomplete(observations, [LATITUDE, LONGITUDE, LABEL], "subsampling")
        if df.empty:
            return pd.DataFrame(columns=[LABEL, "time_bucket", CELL_ID])

        buckets = pd.Series(np.asarray(self.time_bucket(df)), index=df.index)
        undated = buckets.isna()
        if undated.any():
            logger.info("subsampling: dropped %d rows without a time bucket", int(undated.sum()))
            df = df.loc[~undated]
            buckets = buckets.loc[~undated]

        keys = pd.DataFrame(index=df.index)
        keys[LABEL] = df[LABEL].astype(bool)
        keys["time_bucket"] = buckets
        keys[CELL_ID] = self.indexer.cell_ids(df[LATITUDE].to_numpy(), df[LONGITUDE].to_numpy())
        return keys

    def sample(self, observations: pd.DataFrame, random_source: RandomSource) -> pd.DataFrame:
        """
        Draw one observation per non-empty stratum.

        Args:
            observations: Checklist frame with latitude, longitude,
                species_observed and the columns the time bucket needs.
            random_source: Run-level randomness; the "subsample" stream is used.

        Returns:
            The selected rows (original index labels, original row order)
            with a cell_id column added.

        Raises:
            DataQualityError: If no complete observation remains.
        """
        keys = self.strata(observations)
        if keys.empty:
            raise DataQualityError("No observations with coordinates and a label to subsample")

        # One uniform draw per row; the smallest draw in each stratum wins,
        # which is a uniform choice among the stratum's members.
        rng = random_source.generator(_STREAM)
        positions = pd.DataFrame({
            LABEL: keys[LABEL].to_numpy(),
            "time_bucket": keys["time_bucket"].to_numpy(),
            CELL_ID: keys[CELL_ID].to_numpy(),
            "draw": rng.random(len(keys)),
        })
        winners = positions.groupby([LABEL, "time_bucket", CELL_ID], sort=False)["draw"].idxmin()
        chosen = np.sort(winners.to_numpy())

        sampled = observations.loc[keys.index[chosen]].copy()
        sampled[CELL_ID] = keys[CELL_ID].to_numpy()[chosen]

        logger.info(
            "Subsampled %d of %d checklists (%d strata); detection rate %.1f%% -> %.1f%%",
            len(sampled),
            len(keys),
            len(winners),
            100 * detection_rate(observations.loc[keys.index]),
            100 * detection_rate(sampled),
        )
        return sampled
