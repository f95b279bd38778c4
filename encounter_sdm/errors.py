"""
Error taxonomy for the encounter-rate pipeline.

  ConfigurationError — invalid parameters or mismatched covariate schema.
                       Fatal, surfaced immediately.
  DataQualityError   — missing covariate values, empty datasets, single-class
                       labels where two classes are needed. Boundary stages
                       drop offending rows and log the count; anything that
                       reaches a model fit raises this instead.
  NumericalError     — a numerical fit (calibration) failed or did not converge.

Nothing in the pipeline retries on any of these.
"""


class EncounterModelError(Exception):
    """Base class for all pipeline errors."""


class ConfigurationError(EncounterModelError, ValueError):
    pass


class DataQualityError(EncounterModelError, ValueError):
    pass


class NumericalError(EncounterModelError, RuntimeError):
    pass
