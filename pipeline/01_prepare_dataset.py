"""
01_prepare_dataset.py — Subsample the checklists and split them into train/test.

Reads the zero-filled checklist table (effort + habitat covariates), keeps one
checklist per (detected, week, 5 km hex cell) stratum, drops rows with
missing covariates and splits the rest 80/20 at random.

Usage:
    python -m pipeline.01_prepare_dataset

Input:
    data/raw/checklists_zf_habitat.csv
Output:
    data/processed/train.csv
    data/processed/test.csv
"""

from __future__ import annotations

import sys
from pathlib import Path

import pandas as pd

_PROJECT_ROOT = Path(__file__).parent.parent
if str(_PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(_PROJECT_ROOT))

from encounter_sdm.config import load_config  # noqa: E402
from encounter_sdm.data.schema import LABEL, add_date_covariates, default_covariates  # noqa: E402
from encounter_sdm.logging_utils import configure_package_logging, get_logger  # noqa: E402
from encounter_sdm.random_source import RandomSource  # noqa: E402
from encounter_sdm.sampling.split import DatasetSplitter  # noqa: E402
from encounter_sdm.sampling.subsample import BalancedSubsampler  # noqa: E402

logger = get_logger(__name__)
configure_package_logging()

_cfg = load_config("pipeline")
_mcfg = load_config("model_training")
_data_cfg = _cfg["data"]
_sub_cfg = _cfg["subsampling"]

SEED: int = _cfg["seed"]
OBSERVATIONS_CSV: str = _data_cfg["observations_csv"]
TRAIN_CSV: str = _data_cfg["train_csv"]
TEST_CSV: str = _data_cfg["test_csv"]

HEX_SPACING_KM: float = _sub_cfg["hex_spacing_km"]
TIME_BUCKET: str = _sub_cfg["time_bucket"]
TRAIN_FRACTION: float = _cfg["split"]["train_fraction"]


def main() -> None:
    observations_csv = Path(OBSERVATIONS_CSV)
    if not observations_csv.exists():
        logger.error("Checklist table not found: %s", observations_csv)
        return

    observations = add_date_covariates(pd.read_csv(observations_csv))
    covariates = _mcfg.get("covariates") or default_covariates(observations)
    logger.info(
        "Loaded %d checklists | detections=%d (%.1f%%) | %d covariates",
        len(observations),
        int(observations[LABEL].astype(bool).sum()),
        100 * observations[LABEL].astype(float).mean(),
        len(covariates),
    )

    random_source = RandomSource(SEED)
    sampler = BalancedSubsampler(spacing_km=HEX_SPACING_KM, time_bucket=TIME_BUCKET)
    sampled = sampler.sample(observations, random_source)

    split = DatasetSplitter(TRAIN_FRACTION).split(sampled, covariates, random_source)

    for frame, path in ((split.train, Path(TRAIN_CSV)), (split.test, Path(TEST_CSV))):
        path.parent.mkdir(parents=True, exist_ok=True)
        frame.to_csv(path, index=False)
        logger.info("Wrote %d rows → %s", len(frame), path)


if __name__ == "__main__":
    main()
