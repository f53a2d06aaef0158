"""
viraqc Configuration Module

Run-level settings for the summarize pipeline. QC thresholds themselves
live in the QC document (see ``viraqc.qc.thresholds``); this module only
says where to find it and how to run.

Configuration Priority (highest to lowest):
1. Explicit command-line arguments
2. Environment variables
3. Defaults

Environment Variables:
    VIRAQC_THREADS      - Worker threads for per-sample processing
    VIRAQC_QC_CONFIG    - Path to the QC threshold document (YAML or JSON)
    VIRAQC_PLATFORM     - Sequencing platform ("illumina" or "ont")
    VIRAQC_VIRUS        - Virus assumed for unrecognised references (flu, sc2, rsv)
    VIRAQC_RUN_ID       - Run identifier used in output file names
    VIRAQC_LOG_FILE     - Optional log file path
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from viraqc.qc.models import Virus

logger = logging.getLogger(__name__)

PLATFORMS = ("illumina", "ont")

# Singleton config instance
_config_instance: Optional["Config"] = None


@dataclass
class Config:
    """
    viraqc configuration container.

    Attributes:
        threads: Worker threads for per-sample processing
        qc_config: Path to the QC threshold document
        platform: Sequencing platform
        virus: Default virus for references that do not identify one
        run_id: Run identifier
        log_file: Optional log file
    """

    threads: int = 1
    qc_config: Optional[Path] = None
    platform: str = "illumina"
    virus: Optional[str] = None
    run_id: str = "run"
    log_file: Optional[Path] = None

    # Internal state
    _initialized: bool = field(default=False, repr=False)

    def __post_init__(self):
        """Initialize configuration from environment."""
        if not self._initialized:
            self._load_from_environment()
            self._initialized = True

    def _load_from_environment(self) -> None:
        """Load configuration from environment variables."""
        if os.environ.get("VIRAQC_THREADS"):
            try:
                self.threads = int(os.environ["VIRAQC_THREADS"])
            except ValueError:
                logger.warning(f"Ignoring non-integer VIRAQC_THREADS={os.environ['VIRAQC_THREADS']!r}")

        if os.environ.get("VIRAQC_QC_CONFIG"):
            self.qc_config = Path(os.environ["VIRAQC_QC_CONFIG"])

        if os.environ.get("VIRAQC_PLATFORM"):
            self.platform = os.environ["VIRAQC_PLATFORM"].strip().lower()

        if os.environ.get("VIRAQC_VIRUS"):
            self.virus = os.environ["VIRAQC_VIRUS"].strip().lower()

        if os.environ.get("VIRAQC_RUN_ID"):
            self.run_id = os.environ["VIRAQC_RUN_ID"].strip()

        if os.environ.get("VIRAQC_LOG_FILE"):
            self.log_file = Path(os.environ["VIRAQC_LOG_FILE"])

    @property
    def default_virus(self) -> Optional[Virus]:
        """The configured virus as an enum, None when unset or unknown."""
        if not self.virus:
            return None
        try:
            return Virus(self.virus)
        except ValueError:
            return None

    def validate(self) -> Tuple[bool, List[str]]:
        """
        Validate configuration.

        Returns:
            Tuple of (is_valid, list of error messages)
        """
        errors = []

        if self.threads < 1:
            errors.append(f"VIRAQC_THREADS must be at least 1, got {self.threads}")

        if self.platform not in PLATFORMS:
            errors.append(f"Unknown platform '{self.platform}'. Expected one of: {', '.join(PLATFORMS)}")

        if self.virus and self.default_virus is None:
            allowed = ", ".join(v.value for v in Virus)
            errors.append(f"Unknown virus '{self.virus}'. Expected one of: {allowed}")

        if not self.qc_config:
            errors.append("QC config not configured. Set VIRAQC_QC_CONFIG or pass --qc-config.")
        elif not self.qc_config.exists():
            errors.append(f"QC config not found: {self.qc_config}")

        if not self.run_id:
            errors.append("Run ID must not be empty")

        return len(errors) == 0, errors

    def to_dict(self) -> Dict[str, Any]:
        """Export configuration as dictionary."""
        return {
            "threads": self.threads,
            "qc_config": str(self.qc_config) if self.qc_config else None,
            "platform": self.platform,
            "virus": self.virus,
            "run_id": self.run_id,
            "log_file": str(self.log_file) if self.log_file else None,
        }


def get_config() -> Config:
    """
    Get the global configuration instance.

    Returns:
        Config: The singleton configuration instance
    """
    global _config_instance
    if _config_instance is None:
        _config_instance = Config()
    return _config_instance


def reset_config() -> None:
    """Reset the global configuration instance (useful for testing)."""
    global _config_instance
    _config_instance = None
