"""
QC threshold configuration.

The QC document is a YAML or JSON mapping of profile keys
(``<platform>-<virus>[-spike]``, e.g. ``illumina-flu`` or ``ont-sc2-spike``)
to threshold blocks. Each block is turned into an immutable
``QCThresholds`` so rule coverage can be checked by construction.

Both the descriptive key names and the short names used by existing MIRA
QC documents are accepted::

    illumina-flu:
      med_cov: 50
      minor_vars: 10
      allow_stop_codons: false
      perc_ref_covered: 90
      negative_control_perc: 10
      negative_control_perc_exception: 0
      positive_control_minimum: 0
      padded_consensus: false

The last three keys are read and kept on ``QCThresholds`` so existing
documents load, but no QC rule uses them.
"""

import json
import logging
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple, Union

import yaml

from viraqc.errors import ConfigurationError
from viraqc.qc.models import StopCodonPolicy, Virus

logger = logging.getLogger(__name__)

KNOWN_PROFILES = (
    "illumina-flu",
    "ont-flu",
    "illumina-sc2",
    "ont-sc2",
    "ont-sc2-spike",
    "illumina-rsv",
    "ont-rsv",
)

# Upstream short name -> QCThresholds field
LEGACY_KEYS = {
    "med_cov": "min_median_coverage",
    "perc_ref_covered": "min_reference_coverage_pct",
    "minor_vars": "max_minor_variants",
    "med_spike_cov": "min_spike_median_coverage",
    "perc_ref_spike_covered": "min_spike_coverage_pct",
}

# SARS-CoV-2 spike (S gene) region on the Wuhan-Hu-1 coordinate system
SPIKE_START = 21563
SPIKE_END = 25384


@dataclass(frozen=True)
class QCThresholds:
    """Thresholds for one virus profile.

    Attributes:
        min_median_coverage: Minimum median depth per segment
        min_reference_coverage_pct: Minimum percent of reference covered
        max_minor_variants: Maximum minor SNVs at or above the cutoff
        minor_variant_freq_cutoff: Frequency at which a minor SNV is counted
        minor_indel_freq_cutoff: Frequency at which a minor indel is counted
        stop_codon_policy: How premature stop codons are treated
        stop_codon_tolerant_proteins: Proteins exempt under tolerant-per-protein
        negative_control_perc: Percent mapped reads at which a negative control fails
        negative_control_perc_exception: Accepted for compatibility with
            existing QC documents; not used by any rule
        positive_control_minimum: Accepted for compatibility; not used by any rule
        padded_consensus: Accepted for compatibility; not used by any rule
        min_spike_median_coverage: SARS-CoV-2 spike median depth minimum
        min_spike_coverage_pct: SARS-CoV-2 spike percent-covered minimum
        subtype_min_ha_completeness_pct: HA alignment completeness needed for a subtype call
    """
    min_median_coverage: float = 50.0
    min_reference_coverage_pct: float = 90.0
    max_minor_variants: int = 10
    minor_variant_freq_cutoff: float = 0.05
    minor_indel_freq_cutoff: float = 0.2
    stop_codon_policy: StopCodonPolicy = StopCodonPolicy.STRICT
    stop_codon_tolerant_proteins: Tuple[str, ...] = ()
    negative_control_perc: float = 10.0
    negative_control_perc_exception: float = 0.0
    positive_control_minimum: float = 0.0
    padded_consensus: bool = False
    min_spike_median_coverage: Optional[float] = None
    min_spike_coverage_pct: Optional[float] = None
    subtype_min_ha_completeness_pct: float = 100.0

    def tolerates_stop_codon(self, protein: str) -> bool:
        """Whether a premature stop codon in ``protein`` is allowed."""
        if self.stop_codon_policy is StopCodonPolicy.TOLERANT:
            return True
        if self.stop_codon_policy is StopCodonPolicy.TOLERANT_PER_PROTEIN:
            return protein in self.stop_codon_tolerant_proteins
        return False


@dataclass(frozen=True)
class QCConfig:
    """The full, read-only QC configuration for a run.

    Attributes:
        profiles: Thresholds per profile key
        subtype_overrides: Per-profile, per-subtype threshold overrides
        source: File the configuration was loaded from
    """
    profiles: Mapping[str, QCThresholds] = field(default_factory=dict)
    subtype_overrides: Mapping[str, Mapping[str, QCThresholds]] = field(default_factory=dict)
    source: Optional[Path] = None

    def profile_key(self, platform: str, virus: Union[Virus, str], spike: bool = False) -> str:
        """Build a profile key from platform and virus."""
        virus_name = virus.value if isinstance(virus, Virus) else str(virus).lower()
        key = f"{platform.lower()}-{virus_name}"
        if spike:
            key += "-spike"
        return key

    def thresholds_for(self, profile_key: str, subtype: Optional[str] = None) -> QCThresholds:
        """Get thresholds for a profile, applying any subtype override.

        Args:
            profile_key: Key such as "illumina-flu"
            subtype: Subtype label; overrides apply when one is defined for it

        Returns:
            QCThresholds for the profile

        Raises:
            ConfigurationError: If the profile is not configured
        """
        if profile_key not in self.profiles:
            raise ConfigurationError(
                f"Unknown QC profile '{profile_key}'. "
                f"Configured profiles: {', '.join(sorted(self.profiles)) or 'none'}"
            )
        if subtype:
            override = self.subtype_overrides.get(profile_key, {}).get(subtype)
            if override is not None:
                return override
        return self.profiles[profile_key]


def detect_format(path: Union[str, Path]) -> str:
    """Detect the QC document format from its suffix ("yaml" or "json")."""
    suffix = Path(path).suffix.lower()
    if suffix == ".json":
        return "json"
    if suffix in (".yaml", ".yml"):
        return "yaml"
    raise ConfigurationError(f"Unsupported QC config format: {suffix or path}")


def _coerce_number(profile: str, key: str, value: Any, integer: bool = False) -> Union[int, float]:
    if isinstance(value, bool):
        raise ConfigurationError(f"{profile}: '{key}' must be numeric, got {value!r}")
    try:
        return int(value) if integer else float(value)
    except (TypeError, ValueError):
        raise ConfigurationError(f"{profile}: '{key}' must be numeric, got {value!r}")


def _coerce_bool(profile: str, key: str, value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lower() in ("true", "yes", "1", "false", "no", "0"):
        return value.strip().lower() in ("true", "yes", "1")
    raise ConfigurationError(f"{profile}: '{key}' must be true or false, got {value!r}")


def parse_thresholds(profile: str, block: Mapping[str, Any], base: Optional[QCThresholds] = None) -> QCThresholds:
    """Convert one threshold block into QCThresholds.

    Args:
        profile: Profile key, used in error messages
        block: Raw mapping from the document
        base: Thresholds to start from (defaults when None)

    Returns:
        QCThresholds with the block applied

    Raises:
        ConfigurationError: On unknown keys or bad values
    """
    if not isinstance(block, Mapping):
        raise ConfigurationError(f"{profile}: threshold block must be a mapping")

    base = base or QCThresholds()
    valid = {f.name for f in fields(QCThresholds)}
    updates: Dict[str, Any] = {}

    for raw_key, value in block.items():
        if raw_key == "subtype_overrides":
            continue
        key = LEGACY_KEYS.get(raw_key, raw_key)

        if key == "allow_stop_codons":
            if _coerce_bool(profile, raw_key, value):
                updates["stop_codon_policy"] = StopCodonPolicy.TOLERANT
            elif "stop_codon_policy" not in updates:
                updates["stop_codon_policy"] = StopCodonPolicy.STRICT
            continue

        if key not in valid:
            raise ConfigurationError(f"{profile}: unknown QC setting '{raw_key}'")

        if key == "stop_codon_policy":
            try:
                updates[key] = StopCodonPolicy(str(value).strip().lower())
            except ValueError:
                allowed = ", ".join(p.value for p in StopCodonPolicy)
                raise ConfigurationError(f"{profile}: stop_codon_policy must be one of {allowed}, got {value!r}")
        elif key == "stop_codon_tolerant_proteins":
            if isinstance(value, str):
                value = [v for v in value.split(",") if v.strip()]
            updates[key] = tuple(str(v).strip() for v in (value or ()))
        elif key == "padded_consensus":
            updates[key] = _coerce_bool(profile, raw_key, value)
        elif key == "max_minor_variants":
            updates[key] = _coerce_number(profile, raw_key, value, integer=True)
        elif key in ("min_spike_median_coverage", "min_spike_coverage_pct"):
            updates[key] = None if value is None else _coerce_number(profile, raw_key, value)
        else:
            updates[key] = _coerce_number(profile, raw_key, value)

    return replace(base, **updates)


def parse_qc_document(document: Mapping[str, Any], source: Optional[Path] = None) -> QCConfig:
    """Build a QCConfig from an already-loaded document.

    Raises:
        ConfigurationError: If the document is not a mapping of profiles
    """
    if not isinstance(document, Mapping) or not document:
        raise ConfigurationError(f"QC config must be a non-empty mapping of profiles: {source}")

    profiles: Dict[str, QCThresholds] = {}
    overrides: Dict[str, Dict[str, QCThresholds]] = {}

    for profile, block in document.items():
        profile = str(profile).strip().lower()
        if profile not in KNOWN_PROFILES:
            logger.debug(f"Non-standard QC profile key: {profile}")
        thresholds = parse_thresholds(profile, block)
        profiles[profile] = thresholds

        subtype_blocks = block.get("subtype_overrides") or {}
        if not isinstance(subtype_blocks, Mapping):
            raise ConfigurationError(f"{profile}: subtype_overrides must be a mapping")
        for subtype, sub_block in subtype_blocks.items():
            overrides.setdefault(profile, {})[str(subtype)] = parse_thresholds(
                f"{profile}/{subtype}", sub_block, base=thresholds
            )

    return QCConfig(profiles=profiles, subtype_overrides=overrides, source=source)


def load_qc_config(path: Union[str, Path]) -> QCConfig:
    """Load a YAML or JSON QC configuration file.

    Args:
        path: Path to the QC document

    Returns:
        Parsed QCConfig

    Raises:
        ConfigurationError: If the file is missing, unparsable, or invalid
    """
    path = Path(path)
    if not path.exists():
        raise ConfigurationError(f"QC config file not found: {path}")

    fmt = detect_format(path)
    try:
        with open(path, "r") as f:
            if fmt == "json":
                document = json.load(f)
            else:
                document = yaml.safe_load(f)
    except (json.JSONDecodeError, yaml.YAMLError) as e:
        raise ConfigurationError(f"Failed to parse QC config {path}: {e}")

    config = parse_qc_document(document, source=path)
    logger.info(f"Loaded QC config {path.name} with profiles: {', '.join(sorted(config.profiles))}")
    return config
