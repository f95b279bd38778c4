"""
Encounter SDM — shared Python package.

Contains the core logic for the encounter-rate modelling pipeline:
  - encounter_sdm.spatial.hexgrid         — equal-area hexagonal cell indexing
  - encounter_sdm.sampling.subsample      — spatiotemporal balanced subsampling
  - encounter_sdm.sampling.split          — train/test splitting
  - encounter_sdm.models.ensemble         — random forest encounter model
  - encounter_sdm.models.calibration      — monotone probability calibration
  - encounter_sdm.models.artifact         — joblib model artefact persistence
  - encounter_sdm.evaluation.assessment   — threshold selection and accuracy metrics
  - encounter_sdm.evaluation.dependence   — importance and partial dependence
  - encounter_sdm.prediction.surface      — fixed-effort encounter-rate surface
  - encounter_sdm.data.schema             — checklist column names and covariate checks
  - encounter_sdm.random_source           — seeded randomness threaded through stages
  - encounter_sdm.workflow                — end-to-end orchestration
  - encounter_sdm.config                  — YAML config loading
  - encounter_sdm.logging_utils           — project-wide logger factory
"""

__version__ = "0.1.0"
