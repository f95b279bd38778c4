"""
Tests for encounter_sdm.sampling — balanced subsampling and the train/test split.

The conftest checklists put a third of all records into one small hotspot,
mostly non-detections, which is exactly what the subsampler should thin out.
"""

from __future__ import annotations

import numpy as np
import pandas as pd
import pytest

from encounter_sdm.data.schema import CELL_ID, LABEL
from encounter_sdm.errors import ConfigurationError, DataQualityError
from encounter_sdm.random_source import RandomSource
from encounter_sdm.sampling.split import DatasetSplitter
from encounter_sdm.sampling.subsample import (
    BalancedSubsampler,
    detection_rate,
    iso_week,
    month_of_year,
    resolve_time_bucket,
    week_of_year,
)

_STRATUM = [LABEL, "time_bucket", CELL_ID]


@pytest.fixture()
def sampler() -> BalancedSubsampler:
    return BalancedSubsampler(spacing_km=5.0, time_bucket="week")


class TestTimeBuckets:
    def test_week_of_year(self) -> None:
        df = pd.DataFrame({"observation_date": ["2019-01-01", "2019-01-07", "2019-01-08", "2019-12-31"]})
        assert week_of_year(df).tolist() == [201901, 201901, 201902, 201953]

    def test_month_of_year(self) -> None:
        df = pd.DataFrame({"observation_date": ["2018-06-30", "2018-07-01"]})
        assert month_of_year(df).tolist() == [201806, 201807]

    def test_iso_week_pools_years(self) -> None:
        df = pd.DataFrame({"observation_date": ["2018-06-13", "2019-06-12"]})
        weeks = iso_week(df)
        assert weeks.iloc[0] == weeks.iloc[1] == 24

    def test_unknown_bucket_raises(self) -> None:
        with pytest.raises(ConfigurationError):
            resolve_time_bucket("fortnight")

    def test_callable_passes_through(self) -> None:
        fn = lambda df: pd.Series(0, index=df.index)  # noqa: E731
        assert resolve_time_bucket(fn) is fn


class TestBalancedSubsampler:
    def test_one_record_per_stratum(self, sampler: BalancedSubsampler, checklists: pd.DataFrame) -> None:
        sampled = sampler.sample(checklists, RandomSource(1))
        keys = sampler.strata(sampled)
        assert not keys.duplicated(subset=_STRATUM).any()

    def test_every_stratum_is_represented(self, sampler: BalancedSubsampler, checklists: pd.DataFrame) -> None:
        sampled = sampler.sample(checklists, RandomSource(1))
        n_strata = len(sampler.strata(checklists).drop_duplicates(subset=_STRATUM))
        assert len(sampled) == n_strata

    def test_thins_out_the_hotspot(self, sampler: BalancedSubsampler, checklists: pd.DataFrame) -> None:
        sampled = sampler.sample(checklists, RandomSource(1))
        hotspot = sampler.indexer.cell_id(41.0, -74.0)
        n_before = int((sampler.strata(checklists)[CELL_ID] == hotspot).sum())
        n_after = int((sampled[CELL_ID] == hotspot).sum())
        assert n_after < n_before / 3

    def test_moves_prevalence_toward_balance(self, sampler: BalancedSubsampler, checklists: pd.DataFrame) -> None:
        sampled = sampler.sample(checklists, RandomSource(1))
        assert detection_rate(sampled) > detection_rate(checklists)

    def test_keeps_original_index_and_order(self, sampler: BalancedSubsampler, checklists: pd.DataFrame) -> None:
        sampled = sampler.sample(checklists, RandomSource(1))
        assert sampled.index.isin(checklists.index).all()
        assert sampled.index.is_monotonic_increasing
        pd.testing.assert_frame_equal(
            sampled.drop(columns=[CELL_ID]), checklists.loc[sampled.index]
        )

    def test_does_not_modify_input(self, sampler: BalancedSubsampler, checklists: pd.DataFrame) -> None:
        before = checklists.copy()
        sampler.sample(checklists, RandomSource(1))
        pd.testing.assert_frame_equal(checklists, before)

    def test_same_seed_same_sample(self, sampler: BalancedSubsampler, checklists: pd.DataFrame) -> None:
        a = sampler.sample(checklists, RandomSource(7))
        b = sampler.sample(checklists, RandomSource(7))
        pd.testing.assert_frame_equal(a, b)

    def test_different_seed_different_sample(self, sampler: BalancedSubsampler, checklists: pd.DataFrame) -> None:
        a = sampler.sample(checklists, RandomSource(7))
        b = sampler.sample(checklists, RandomSource(8))
        assert len(a) == len(b)
        assert not a.index.equals(b.index)

    def test_coarser_time_bucket_keeps_fewer_records(self, checklists: pd.DataFrame) -> None:
        weekly = BalancedSubsampler(time_bucket="week").sample(checklists, RandomSource(1))
        spatial_only = BalancedSubsampler(
            time_bucket=lambda df: pd.Series(0, index=df.index)
        ).sample(checklists, RandomSource(1))
        assert len(spatial_only) <= len(weekly)

    def test_rows_without_coordinates_are_dropped(
        self, sampler: BalancedSubsampler, checklists: pd.DataFrame
    ) -> None:
        checklists.loc[[0, 1, 2], "latitude"] = np.nan
        sampled = sampler.sample(checklists, RandomSource(1))
        assert not sampled.index.isin([0, 1, 2]).any()

    def test_rows_without_date_are_dropped(self, sampler: BalancedSubsampler, checklists: pd.DataFrame) -> None:
        checklists["day_of_year"] = checklists["day_of_year"].astype(float)
        checklists.loc[[3, 4], "day_of_year"] = np.nan
        sampled = sampler.sample(checklists, RandomSource(1))
        assert not sampled.index.isin([3, 4]).any()

    def test_empty_input_raises(self, sampler: BalancedSubsampler, checklists: pd.DataFrame) -> None:
        with pytest.raises(DataQualityError):
            sampler.sample(checklists.iloc[0:0], RandomSource(1))

    def test_duplicate_index_raises(self, sampler: BalancedSubsampler, checklists: pd.DataFrame) -> None:
        doubled = pd.concat([checklists, checklists])
        with pytest.raises(DataQualityError):
            sampler.sample(doubled, RandomSource(1))


class TestDatasetSplitter:
    def test_partitions_are_disjoint_and_complete(
        self, checklists: pd.DataFrame, covariates: list[str], random_source: RandomSource
    ) -> None:
        split = DatasetSplitter(0.8).split(checklists, covariates, random_source)
        assert split.train.index.intersection(split.test.index).empty
        assert sorted(split.train.index.append(split.test.index)) == list(checklists.index)

    def test_train_fraction_is_respected(
        self, checklists: pd.DataFrame, covariates: list[str], random_source: RandomSource
    ) -> None:
        split = DatasetSplitter(0.8).split(checklists, covariates, random_source)
        share = len(split.train) / len(checklists)
        assert 0.75 < share < 0.85

    def test_same_seed_same_split(self, checklists: pd.DataFrame, covariates: list[str]) -> None:
        a = DatasetSplitter(0.8).split(checklists, covariates, RandomSource(5))
        b = DatasetSplitter(0.8).split(checklists, covariates, RandomSource(5))
        assert a.train.index.equals(b.train.index)
        assert a.test.index.equals(b.test.index)

    def test_incomplete_rows_are_dropped(
        self, checklists: pd.DataFrame, covariates: list[str], random_source: RandomSource
    ) -> None:
        checklists.loc[[10, 11], "pland_forest"] = np.nan
        checklists.loc[12, "duration_minutes"] = np.nan
        split = DatasetSplitter(0.8).split(checklists, covariates, random_source)
        kept = split.train.index.append(split.test.index)
        assert not kept.isin([10, 11, 12]).any()
        assert len(kept) == len(checklists) - 3
        assert not split.train[covariates].isna().any().any()

    @pytest.mark.parametrize("fraction", [0.0, 1.0, 1.5, -0.2, "most"])
    def test_invalid_fraction_raises(self, fraction) -> None:
        with pytest.raises(ConfigurationError):
            DatasetSplitter(fraction)

    def test_missing_covariate_column_raises(self, checklists: pd.DataFrame, random_source: RandomSource) -> None:
        with pytest.raises(ConfigurationError):
            DatasetSplitter(0.8).split(checklists, ["pland_shrub"], random_source)

    def test_nothing_complete_raises(
        self, checklists: pd.DataFrame, covariates: list[str], random_source: RandomSource
    ) -> None:
        checklists["pland_forest"] = np.nan
        with pytest.raises(DataQualityError):
            DatasetSplitter(0.8).split(checklists, covariates, random_source)

    def test_split_does_not_depend_on_earlier_draws(
        self, checklists: pd.DataFrame, covariates: list[str]
    ) -> None:
        """Subsampling first must not shift the split's random stream."""
        rs = RandomSource(11)
        BalancedSubsampler().sample(checklists, rs)
        after_subsample = DatasetSplitter(0.8).split(checklists, covariates, rs)
        fresh = DatasetSplitter(0.8).split(checklists, covariates, RandomSource(11))
        assert after_subsample.train.index.equals(fresh.train.index)
