"""
transitdemand – OSM region extracts → commuter demand for a transit simulation

Holds the default data locations, the package logger every `transitdemand.*`
module hangs off, and the exception types a region run can fail with.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Final

__all__ = [
    "logger",
    "PROJECT_ROOT",
    "RAW_DATA_DIR",
    "PROCESSED_DATA_DIR",
    "DemandError",
    "InputMissingError",
    "InputFormatError",
]

# ---------- paths ----------
PROJECT_ROOT: Final[Path] = Path(__file__).resolve().parent.parent
RAW_DATA_DIR: Final[Path] = Path("raw_data")
PROCESSED_DATA_DIR: Final[Path] = Path("processed_data")

# ---------- logging ----------
LOG_LEVEL = os.getenv("TRANSITDEMAND_LOG_LEVEL", "INFO").upper()

logger = logging.getLogger("transitdemand")
logger.setLevel(LOG_LEVEL)
logger.addHandler(logging.NullHandler())
logger.debug("Logging initialised (level=%s)", LOG_LEVEL)


# ---------- errors ----------
class DemandError(RuntimeError):
    """Base class for every failure raised by the demand pipeline."""


class InputMissingError(DemandError, FileNotFoundError):
    """A required per-region input file does not exist."""


class InputFormatError(DemandError, ValueError):
    """An input file is not JSON or has the wrong top-level shape."""
