"""
Project-wide logging setup.

Usage in any pipeline script:

    from encounter_sdm.logging_utils import get_logger
    logger = get_logger(__name__)
    logger.info("Subsampled %d checklists", n)

Library modules use plain logging.getLogger(__name__) so that callers
decide where their output goes.
"""

import logging
import sys

_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
_DATEFMT = "%H:%M:%S"


def get_logger(name: str, level: int = logging.INFO) -> logging.Logger:
    """
    Return a named logger with a consistent format.

    Safe to call multiple times with the same name: handlers are only
    attached once, so log lines are never duplicated.
    """
    logger = logging.getLogger(name)
    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(fmt=_FORMAT, datefmt=_DATEFMT))
        logger.addHandler(handler)
        logger.setLevel(level)
    return logger


def configure_package_logging(level: int = logging.INFO) -> logging.Logger:
    """
    Attach the standard handler to the encounter_sdm package logger.

    Scripts call this once so that messages logged by library modules
    (which only use logging.getLogger(__name__)) reach stdout too.
    """
    return get_logger("encounter_sdm", level=level)
