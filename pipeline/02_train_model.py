"""
02_train_model.py — Fit the random forest and its monotone calibration.

The forest is grown on the training checklists; its out-of-bag predictions
are then used to fit the calibration curve. Both are saved together in a
single dict (joblib file) so later stages load them with one call.

Usage:
    python -m pipeline.02_train_model

Input:
    data/processed/train.csv
Output:
    models/encounter_rate_model.joblib
"""

from __future__ import annotations

import sys
from pathlib import Path

import pandas as pd

_PROJECT_ROOT = Path(__file__).parent.parent
if str(_PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(_PROJECT_ROOT))

from encounter_sdm.config import load_config  # noqa: E402
from encounter_sdm.data.schema import default_covariates  # noqa: E402
from encounter_sdm.logging_utils import configure_package_logging, get_logger  # noqa: E402
from encounter_sdm.models.artifact import ModelArtifact, save_model  # noqa: E402
from encounter_sdm.models.calibration import Calibrator  # noqa: E402
from encounter_sdm.models.ensemble import EnsembleClassifier  # noqa: E402
from encounter_sdm.random_source import RandomSource  # noqa: E402
from encounter_sdm.workflow import fit_calibration  # noqa: E402

logger = get_logger(__name__)
configure_package_logging()

_cfg = load_config("pipeline")
_mcfg = load_config("model_training")
_ens_cfg = _mcfg["ensemble"]
_cal_cfg = _mcfg["calibration"]

SEED: int = _cfg["seed"]
TRAIN_CSV: str = _cfg["data"]["train_csv"]
OUTPUT_MODEL: str = _cfg["outputs"]["model"]


def main() -> None:
    train_csv = Path(TRAIN_CSV)
    if not train_csv.exists():
        logger.error("Training data not found: %s — run 01_prepare_dataset first.", train_csv)
        return

    train = pd.read_csv(train_csv)
    covariates = _mcfg.get("covariates") or default_covariates(train)

    classifier = EnsembleClassifier(
        n_trees=_ens_cfg["n_trees"],
        mtry=_ens_cfg.get("mtry"),
        min_samples_leaf=_ens_cfg.get("min_samples_leaf", 1),
        class_weight=_ens_cfg.get("class_weight"),
        n_jobs=_ens_cfg.get("n_jobs", 1),
    )
    ensemble = classifier.fit(train, covariates, RandomSource(SEED))

    calibrator = Calibrator(
        n_splines=_cal_cfg["n_splines"],
        lam=_cal_cfg.get("lam", 0.6),
        min_class_count=_cal_cfg.get("min_class_count", 5),
    )
    calibration = fit_calibration(
        ensemble, train, calibrator, allow_uncalibrated=_cal_cfg.get("allow_uncalibrated", False)
    )

    save_model(
        ModelArtifact(
            ensemble=ensemble,
            calibration=calibration,
            metadata={"seed": SEED, "train_csv": str(train_csv)},
        ),
        OUTPUT_MODEL,
    )


if __name__ == "__main__":
    main()
