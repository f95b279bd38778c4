"""
Checklist column names and covariate-schema helpers.

Observation tables follow eBird Basic Dataset naming after the usual
zero-filling and habitat join:

    checklist_id, latitude, longitude, observation_date, species_observed,
    time_observations_started (decimal hours), duration_minutes,
    effort_distance_km, number_observers, [cci], year, day_of_year,
    pland_<class> ... (land-cover proportions, 0–1)

Prediction grids carry longitude, latitude and the same pland_* columns.

The covariate list a model is fitted on is always an explicit, ordered list
of names. Every inference path selects exactly those columns by name; a frame
that lacks any of them is rejected rather than silently filled.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence

import pandas as pd

from ..errors import ConfigurationError

logger = logging.getLogger(__name__)

LABEL = "species_observed"
LATITUDE = "latitude"
LONGITUDE = "longitude"
OBSERVATION_DATE = "observation_date"
CHECKLIST_ID = "checklist_id"
TIME_OF_DAY = "time_observations_started"
CELL_ID = "cell_id"

DATE_COVARIATES = ["year", "day_of_year"]
EFFORT_COVARIATES = [
    TIME_OF_DAY,
    "duration_minutes",
    "effort_distance_km",
    "number_observers",
]
# eBird checklist calibration index; used when the column is present
OPTIONAL_EFFORT_COVARIATES = ["cci"]
HABITAT_PREFIX = "pland_"


def habitat_covariates(df: pd.DataFrame) -> list[str]:
    """Return the land-cover proportion columns of df, in column order."""
    return [c for c in df.columns if c.startswith(HABITAT_PREFIX)]


def default_covariates(df: pd.DataFrame) -> list[str]:
    """
    The standard model covariates available in df, in canonical order:
    date covariates, effort covariates (with cci when present), then habitat.

    Raises:
        ConfigurationError: If a required date/effort covariate is missing
            or df has no habitat columns.
    """
    required = DATE_COVARIATES + EFFORT_COVARIATES
    require_columns(df, required, "observations")
    optional = [c for c in OPTIONAL_EFFORT_COVARIATES if c in df.columns]
    habitat = habitat_covariates(df)
    if not habitat:
        raise ConfigurationError(
            f"No habitat covariates found (expected columns starting with {HABITAT_PREFIX!r})"
        )
    return required + optional + habitat


def require_columns(df: pd.DataFrame, columns: Sequence[str], context: str) -> None:
    """
    Raise ConfigurationError naming every column of `columns` missing from df.
    """
    missing = [c for c in columns if c not in df.columns]
    if missing:
        raise ConfigurationError(f"{context} is missing required columns: {missing}")


def add_date_covariates(df: pd.DataFrame) -> pd.DataFrame:
    """
    Return a copy of df with year and day_of_year derived from observation_date.

    Existing year/day_of_year columns are kept as they are.
    """
    df = df.copy()
    if all(c in df.columns for c in DATE_COVARIATES):
        return df
    require_columns(df, [OBSERVATION_DATE], "observations")
    dates = pd.to_datetime(df[OBSERVATION_DATE])
    if "year" not in df.columns:
        df["year"] = dates.dt.year
    if "day_of_year" not in df.columns:
        df["day_of_year"] = dates.dt.dayofyear
    return df


def drop_incomplete(
    df: pd.DataFrame,
    columns: Sequence[str],
    context: str,
) -> pd.DataFrame:
    """
    Drop rows with a missing value in any of `columns` and log how many went.

    Raises:
        ConfigurationError: If any of the columns is absent altogether.
    """
    require_columns(df, columns, context)
    complete = df[list(columns)].notna().all(axis=1)
    n_dropped = int((~complete).sum())
    if n_dropped:
        logger.info(
            "%s: dropped %d of %d rows with missing values in required columns",
            context,
            n_dropped,
            len(df),
        )
    return df.loc[complete].copy()
