"""
Config loader for the encounter-rate pipeline.

All configuration lives in the configs/ directory as YAML files.
The pipeline scripts load their settings through this module so there's
one place to look when a value needs changing. Library functions never read
config themselves; they take explicit parameters.

Usage:

    from encounter_sdm.config import load_config

    cfg = load_config("pipeline")
    spacing = cfg["subsampling"]["hex_spacing_km"]

    train_cfg = load_config("model_training")
    n_trees = train_cfg["ensemble"]["n_trees"]
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml

# Resolve the configs/ directory relative to this file so the package works
# regardless of the working directory the caller uses.
_CONFIGS_DIR = Path(__file__).parent.parent / "configs"


def load_config(name: str, configs_dir: Path | str | None = None) -> dict[str, Any]:
    """
    Load a named YAML config file from the configs/ directory.

    Args:
        name: Config file name without the .yaml extension.
              Valid options: "pipeline", "model_training".
        configs_dir: Directory to read from instead of the project configs/.

    Returns:
        The parsed YAML contents as a nested dictionary.

    Raises:
        FileNotFoundError: If <configs_dir>/<name>.yaml does not exist.
        yaml.YAMLError: If the file contains invalid YAML.
    """
    directory = Path(configs_dir) if configs_dir is not None else _CONFIGS_DIR
    path = directory / f"{name}.yaml"
    if not path.exists():
        raise FileNotFoundError(
            f"Config file not found: {path}\n"
            f"Expected one of: {[p.stem for p in directory.glob('*.yaml')]}"
        )
    with path.open(encoding="utf-8") as f:
        return yaml.safe_load(f) or {}
