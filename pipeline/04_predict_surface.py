"""
04_predict_surface.py — Encounter rate for a standardized checklist across the prediction grid.

Every grid point gets the same reference checklist (1 hour, 1 km, one
observer, June 15 of the latest training year, started at the peak time of
day from 03_assess_model). The calibrated model's prediction is written out
per point, together with an in_range flag at the calibrated model's
max-Kappa threshold, ready for rasterising.

Usage:
    python -m pipeline.04_predict_surface

Input:
    data/raw/prediction_grid_habitat.csv
    data/processed/train.csv
    models/encounter_rate_model.joblib
    outputs/peak_time.json
    outputs/assessment.csv
Output:
    outputs/encounter_rate_surface.csv
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
from encounter_sdm.logging_utils import configure_package_logging, get_logger  # noqa: E402
from encounter_sdm.models.artifact import load_model  # noqa: E402
from encounter_sdm.prediction.surface import ReferenceChecklist, SurfacePredictor  # noqa: E402

logger = get_logger(__name__)
configure_package_logging()

_cfg = load_config("pipeline")
_mcfg = load_config("model_training")
_out_cfg = _cfg["outputs"]
_ref_cfg = _mcfg["reference_checklist"]

GRID_CSV: str = _cfg["data"]["prediction_grid_csv"]
TRAIN_CSV: str = _cfg["data"]["train_csv"]
MODEL_PATH: str = _out_cfg["model"]
PEAK_JSON: str = _out_cfg["peak_time_json"]
ASSESSMENT_CSV: str = _out_cfg["assessment_csv"]
SURFACE_CSV: str = _out_cfg["surface_csv"]


def _load_peak_time() -> float | None:
    path = Path(PEAK_JSON)
    if not path.exists():
        logger.warning("No peak time file at %s; the reference checklist has no start time", path)
        return None
    with path.open(encoding="utf-8") as f:
        return float(json.load(f)["time_of_day"])


def _load_threshold() -> float | None:
    path = Path(ASSESSMENT_CSV)
    if not path.exists():
        return None
    report = pd.read_csv(path, index_col="model")
    return float(report.loc["calibrated", "threshold"])


def main() -> None:
    for p in (GRID_CSV, TRAIN_CSV, MODEL_PATH):
        if not Path(p).exists():
            logger.error("Missing input %s — run the earlier pipeline stages first.", p)
            return

    artifact = load_model(MODEL_PATH)
    grid = pd.read_csv(GRID_CSV)
    train = pd.read_csv(TRAIN_CSV, usecols=["year"])

    reference = ReferenceChecklist.for_training_data(
        train,
        time_of_day=_load_peak_time(),
        month=_ref_cfg["month"],
        day=_ref_cfg["day"],
        **_ref_cfg.get("effort", {}),
    )
    logger.info("Reference checklist: %s", reference)

    predictor = SurfacePredictor(artifact.ensemble, artifact.calibration, reference)
    surface = predictor.predict(grid, threshold=_load_threshold())

    output_path = Path(SURFACE_CSV)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    surface.to_csv(output_path, index=False)
    logger.info("Encounter-rate surface (%d points) saved to %s", len(surface), output_path)


if __name__ == "__main__":
    main()
