"""
Saving and loading the trained model.

The forest and its calibration map are only meaningful together, so they
are saved together in a single dict (joblib file) and loaded with one call:

    {"ensemble": TrainedEnsemble, "calibration": CalibrationMap, "metadata": {...}}
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path

import joblib

from ..errors import ConfigurationError
from .calibration import CalibrationMap
from .ensemble import TrainedEnsemble

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ModelArtifact:
    ensemble: TrainedEnsemble
    calibration: CalibrationMap
    metadata: dict = field(default_factory=dict)


def save_model(artifact: ModelArtifact, path: Path | str, compress: int = 3) -> Path:
    """Write the artefact to path (parent directories are created)."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    joblib.dump(
        {
            "ensemble": artifact.ensemble,
            "calibration": artifact.calibration,
            "metadata": dict(artifact.metadata),
        },
        path,
        compress=compress,
    )
    logger.info("Saved model artefact to %s", path)
    return path


def load_model(path: Path | str) -> ModelArtifact:
    """
    Load an artefact written by save_model().

    Raises:
        FileNotFoundError: If path does not exist.
        ConfigurationError: If the file is not a model artefact.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Model artefact not found: {path}")
    data = joblib.load(path)
    if not isinstance(data, dict) or not {"ensemble", "calibration"} <= set(data):
        raise ConfigurationError(
            f"{path} is not a model artefact (expected 'ensemble' and 'calibration' keys)"
        )
    if not isinstance(data["ensemble"], TrainedEnsemble) or not isinstance(
        data["calibration"], CalibrationMap
    ):
        raise ConfigurationError(f"{path} holds objects of the wrong type")
    logger.debug("Loaded model artefact from %s", path)
    return ModelArtifact(
        ensemble=data["ensemble"],
        calibration=data["calibration"],
        metadata=data.get("metadata", {}),
    )
