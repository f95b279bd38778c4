"""
03_assess_model.py — Test-set assessment, variable importance and partial dependence.

Assessment uses the test checklists only. Importance comes from the fitted
forest; partial dependence and the guarded time-of-day peak are averaged over
the training checklists.

Usage:
    python -m pipeline.03_assess_model

Input:
    data/processed/train.csv
    data/processed/test.csv
    models/encounter_rate_model.joblib
Output:
    outputs/assessment.csv
    outputs/variable_importance.csv
    outputs/partial_dependence.csv
    outputs/peak_time.json
"""

from __future__ import annotations

import json
import sys
from pathlib import Path

import pandas as pd

_PROJECT_ROOT = Path(__file__).parent.parent
if str(_PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(_PROJECT_ROOT))

from encounter_sdm.config import load_config  # noqa: E402
from encounter_sdm.data.schema import TIME_OF_DAY  # noqa: E402
from encounter_sdm.evaluation.assessment import Assessor  # noqa: E402
from encounter_sdm.evaluation.dependence import (  # noqa: E402
    partial_dependence_table,
    peak_time_of_day,
    variable_importance,
)
from encounter_sdm.logging_utils import configure_package_logging, get_logger  # noqa: E402
from encounter_sdm.models.artifact import load_model  # noqa: E402
from encounter_sdm.workflow import assess_model  # noqa: E402

logger = get_logger(__name__)
configure_package_logging()

_cfg = load_config("pipeline")
_mcfg = load_config("model_training")
_out_cfg = _cfg["outputs"]
_dep_cfg = _mcfg["dependence"]

TRAIN_CSV: str = _cfg["data"]["train_csv"]
TEST_CSV: str = _cfg["data"]["test_csv"]
MODEL_PATH: str = _out_cfg["model"]
N_JOBS: int = _mcfg["ensemble"].get("n_jobs", 1)


def _write_csv(df: pd.DataFrame, path_str: str, index: bool = False) -> None:
    path = Path(path_str)
    path.parent.mkdir(parents=True, exist_ok=True)
    df.to_csv(path, index=index)
    logger.info("Wrote %s", path)


def main() -> None:
    for p in (TRAIN_CSV, TEST_CSV, MODEL_PATH):
        if not Path(p).exists():
            logger.error("Missing input %s — run the earlier pipeline stages first.", p)
            return

    train = pd.read_csv(TRAIN_CSV)
    test = pd.read_csv(TEST_CSV)
    artifact = load_model(MODEL_PATH)

    report = assess_model(artifact, test, Assessor(_mcfg["assessment"]["n_thresholds"]))
    _write_csv(report, _out_cfg["assessment_csv"], index=True)

    _write_csv(variable_importance(artifact.ensemble), _out_cfg["importance_csv"])

    dependence = partial_dependence_table(
        artifact.ensemble,
        train,
        top_n=_dep_cfg["top_n"],
        grid_size=_dep_cfg["grid_size"],
        calibration=artifact.calibration,
        n_jobs=N_JOBS,
    )
    _write_csv(dependence, _out_cfg["dependence_csv"])

    if TIME_OF_DAY not in artifact.ensemble.covariates:
        logger.warning("Model has no time-of-day covariate; skipping the peak time search")
        return

    peak = peak_time_of_day(
        artifact.ensemble,
        train,
        min_hour_fraction=_dep_cfg["min_hour_fraction"],
        calibration=artifact.calibration,
        n_jobs=N_JOBS,
    )
    peak_path = Path(_out_cfg["peak_time_json"])
    peak_path.parent.mkdir(parents=True, exist_ok=True)
    with peak_path.open("w", encoding="utf-8") as f:
        json.dump(
            {
                "time_of_day": peak.time,
                "probability": peak.probability,
                "eligible_hours": list(peak.eligible_hours),
            },
            f,
            indent=2,
        )
    logger.info("Peak time of day %.2f h → %s", peak.time, peak_path)


if __name__ == "__main__":
    main()
