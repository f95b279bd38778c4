"""
Shared pytest fixtures for the encounter-rate test suite.

All fixtures are synthetic — no real checklist or habitat files required.
Detection depends on forest cover and duration so a model has something to
learn; spatial and temporal clustering of non-detections mimics the bias the
subsampler is meant to remove.
"""

from __future__ import annotations

import numpy as np
import pandas as pd
import pytest

from encounter_sdm.data.schema import add_date_covariates
from encounter_sdm.random_source import RandomSource
from encounter_sdm.workflow import PipelineSettings

COVARIATES = [
    "year",
    "day_of_year",
    "time_observations_started",
    "duration_minutes",
    "effort_distance_km",
    "number_observers",
    "pland_forest",
    "pland_urban",
    "pland_water",
]


def make_checklists(n: int = 1200, seed: int = 0) -> pd.DataFrame:
    """
    n checklists in a 2° x 2° box in June 2018–2019.

    A third of them are piled into one small hotspot with mostly
    non-detections, so the raw data is spatially clustered and
    imbalanced.
    """
    rng = np.random.default_rng(seed)
    n_hotspot = n // 3
    n_spread = n - n_hotspot

    lat = np.concatenate([
        rng.uniform(40.0, 42.0, n_spread),
        rng.normal(41.0, 0.005, n_hotspot),
    ])
    lon = np.concatenate([
        rng.uniform(-75.0, -73.0, n_spread),
        rng.normal(-74.0, 0.005, n_hotspot),
    ])

    years = rng.choice([2018, 2019], n)
    days = rng.integers(0, 30, n)
    dates = pd.to_datetime([f"{y}-06-01" for y in years]) + pd.to_timedelta(days, unit="D")

    forest = rng.uniform(0, 0.7, n)
    urban = rng.uniform(0, 1, n) * (1 - forest) * 0.6
    water = rng.uniform(0, 1, n) * (1 - forest - urban) * 0.5
    forest[n_spread:] = 0.05  # the hotspot is an urban park

    duration = rng.uniform(10, 180, n)
    logit = -2.5 + 5.0 * forest + 0.008 * duration
    detected = rng.random(n) < 1 / (1 + np.exp(-logit))

    df = pd.DataFrame({
        "checklist_id": [f"S{i:05d}" for i in range(n)],
        "latitude": lat,
        "longitude": lon,
        "observation_date": dates.strftime("%Y-%m-%d"),
        "time_observations_started": np.clip(rng.normal(9.0, 2.5, n), 4.0, 21.0),
        "duration_minutes": duration,
        "effort_distance_km": rng.uniform(0, 5, n),
        "number_observers": rng.integers(1, 5, n).astype(float),
        "pland_forest": forest,
        "pland_urban": urban,
        "pland_water": water,
        "species_observed": detected,
    })
    return add_date_covariates(df)


@pytest.fixture()
def checklists() -> pd.DataFrame:
    return make_checklists()


@pytest.fixture()
def covariates() -> list[str]:
    return list(COVARIATES)


@pytest.fixture()
def random_source() -> RandomSource:
    return RandomSource(seed=42)


@pytest.fixture()
def train_test(checklists: pd.DataFrame) -> tuple[pd.DataFrame, pd.DataFrame]:
    """A plain random 75/25 split of the unsubsampled checklists, for model-level tests."""
    shuffled = checklists.sample(frac=1.0, random_state=0)
    n_train = int(len(shuffled) * 0.75)
    return shuffled.iloc[:n_train].copy(), shuffled.iloc[n_train:].copy()


@pytest.fixture()
def prediction_grid() -> pd.DataFrame:
    """A 5 x 4 grid of points with habitat covariates only."""
    rng = np.random.default_rng(7)
    lons, lats = np.meshgrid(np.linspace(-75, -73, 5), np.linspace(40, 42, 4))
    n = lons.size
    forest = rng.uniform(0, 0.7, n)
    return pd.DataFrame({
        "longitude": lons.ravel(),
        "latitude": lats.ravel(),
        "pland_forest": forest,
        "pland_urban": (1 - forest) * 0.3,
        "pland_water": (1 - forest) * 0.1,
    })


@pytest.fixture()
def fast_settings() -> PipelineSettings:
    """Full pipeline settings scaled down so a run takes a few seconds."""
    return PipelineSettings(
        seed=3,
        covariates=list(COVARIATES),
        hex_spacing_km=5.0,
        n_trees=40,
        pd_grid_size=5,
        pd_top_n=3,
    )
