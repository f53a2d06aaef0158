"""
viraqc: QC summaries for viral genome assembly runs

Aggregates per-sample assembler and annotator outputs, computes coverage,
variant, and subtype metrics, applies configurable QC thresholds, and
partitions sequences into pass/fail sets for report writers.
"""

__version__ = "0.1.0"

from viraqc.config import Config, get_config
from viraqc.errors import (
    ConfigurationError,
    InsufficientDataError,
    MalformedRowError,
    MissingInputError,
    ViraQCError,
    WarningLog,
)
from viraqc.logging import setup_logging, get_logger
from viraqc.qc.pipeline import run_pipeline

__all__ = [
    "Config",
    "get_config",
    "ConfigurationError",
    "InsufficientDataError",
    "MalformedRowError",
    "MissingInputError",
    "ViraQCError",
    "WarningLog",
    "setup_logging",
    "get_logger",
    "run_pipeline",
    "__version__",
]
