"""
QC decision rules.

Every rule is evaluated independently and every triggered rule is recorded,
so a verdict lists all failing criteria rather than the first one found.

Rules:
    - NO_DATA: the sample had no usable assembler records
    - LOW_MEDIAN_COVERAGE: median depth below ``min_median_coverage``
    - LOW_REFERENCE_COVERAGE: percent covered below ``min_reference_coverage_pct``
    - EXCESS_MINOR_VARIANTS: minor SNVs above ``max_minor_variants``
    - PREMATURE_STOP: stop codon inside a non-tolerated protein
    - LOW_SPIKE_COVERAGE / LOW_SPIKE_MEDIAN: SARS-CoV-2 spike rules, only when
      the profile defines the matching threshold

Example:
    >>> from viraqc.qc.decision import apply_rules
    >>> verdict = apply_rules(metrics, config.thresholds_for("illumina-flu"))
    >>> verdict.reasons
    ('low median coverage',)
"""

import logging
from dataclasses import dataclass
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from viraqc.qc.models import (
    AssembledSequence,
    QCVerdict,
    SampleMetrics,
    SampleSheet,
    SARSCoV2,
    Virus,
)
from viraqc.qc.thresholds import QCConfig, QCThresholds

logger = logging.getLogger(__name__)


# =============================================================================
# Rule registry
# =============================================================================


@dataclass(frozen=True)
class QCRule:
    """A QC rule definition.

    Attributes:
        code: Short rule code (e.g., "LOW_MED_COV")
        reason: Reason recorded on a failing verdict
        description: What the rule checks
    """
    code: str
    reason: str
    description: str


class Rules:
    """Registry of all QC rules.

    Access rules directly:
        >>> Rules.LOW_MEDIAN_COVERAGE.reason
        'low median coverage'
    """

    NO_DATA = QCRule(
        code="NO_DATA",
        reason="no data",
        description="Sample or segment has no usable assembler records",
    )

    LOW_MEDIAN_COVERAGE = QCRule(
        code="LOW_MED_COV",
        reason="low median coverage",
        description="Median depth over the assembled span below the configured minimum",
    )

    LOW_REFERENCE_COVERAGE = QCRule(
        code="LOW_REF_COV",
        reason="insufficient reference coverage",
        description="Percent of reference positions with depth >= 1 below the configured minimum",
    )

    EXCESS_MINOR_VARIANTS = QCRule(
        code="MINOR_VARS",
        reason="excessive minor variants",
        description="Minor SNVs at or above the frequency cutoff exceed the configured maximum",
    )

    PREMATURE_STOP = QCRule(
        code="STOP_CODON",
        reason="premature stop codon",
        description="Stop codon before the end of a coding region in a non-tolerant protein",
    )

    LOW_SPIKE_COVERAGE = QCRule(
        code="LOW_SPIKE_COV",
        reason="insufficient spike coverage",
        description="Percent of the SARS-CoV-2 spike region covered below the configured minimum",
    )

    LOW_SPIKE_MEDIAN = QCRule(
        code="LOW_SPIKE_MED",
        reason="low spike median coverage",
        description="Median depth over the SARS-CoV-2 spike region below the configured minimum",
    )

    @classmethod
    def get_all(cls) -> List[QCRule]:
        return [value for value in vars(cls).values() if isinstance(value, QCRule)]

    @classmethod
    def get_by_code(cls, code: str) -> Optional[QCRule]:
        for rule in cls.get_all():
            if rule.code == code:
                return rule
        return None

    @classmethod
    def get_by_reason(cls, reason: str) -> Optional[QCRule]:
        for rule in cls.get_all():
            if rule.reason == reason:
                return rule
        return None


# =============================================================================
# Metric-level rules
# =============================================================================


def _fmt(value: float) -> str:
    return f"{value:g}"


def apply_rules(metrics: SampleMetrics, thresholds: QCThresholds) -> QCVerdict:
    """Evaluate every rule against one segment's metrics.

    Missing numeric values count as zero.

    Args:
        metrics: Per-segment metrics
        thresholds: Thresholds for the segment's profile

    Returns:
        QCVerdict listing every triggered rule
    """
    if metrics.no_data:
        return QCVerdict.from_findings([(Rules.NO_DATA.reason, "No assembled data")])

    findings: List[Tuple[str, str]] = []

    median = metrics.median_coverage or 0.0
    if median < thresholds.min_median_coverage:
        findings.append(
            (Rules.LOW_MEDIAN_COVERAGE.reason, f"Median coverage < {_fmt(thresholds.min_median_coverage)}")
        )

    covered = metrics.coverage_pct or 0.0
    if covered < thresholds.min_reference_coverage_pct:
        findings.append(
            (
                Rules.LOW_REFERENCE_COVERAGE.reason,
                f"Less than {_fmt(thresholds.min_reference_coverage_pct)}% of reference covered",
            )
        )

    if metrics.minor_variant_count > thresholds.max_minor_variants:
        findings.append(
            (
                Rules.EXCESS_MINOR_VARIANTS.reason,
                f"Count of minor variants at or over {_fmt(thresholds.minor_variant_freq_cutoff * 100)}% "
                f"> {thresholds.max_minor_variants}",
            )
        )

    stops = [p for p in metrics.premature_stop_proteins if not thresholds.tolerates_stop_codon(p)]
    if stops:
        findings.append(
            (Rules.PREMATURE_STOP.reason, "Premature stop codon " + ", ".join(f"'{p}'" for p in stops))
        )

    if isinstance(metrics.profile, SARSCoV2):
        findings.extend(_spike_findings(metrics, thresholds))

    return QCVerdict.from_findings(findings)


def _spike_findings(metrics: SampleMetrics, thresholds: QCThresholds) -> List[Tuple[str, str]]:
    findings = []
    if thresholds.min_spike_coverage_pct is not None:
        if (metrics.spike_coverage_pct or 0.0) < thresholds.min_spike_coverage_pct:
            findings.append(
                (
                    Rules.LOW_SPIKE_COVERAGE.reason,
                    f"Less than {_fmt(thresholds.min_spike_coverage_pct)}% of S gene covered",
                )
            )
    if thresholds.min_spike_median_coverage is not None:
        if (metrics.spike_median_coverage or 0.0) < thresholds.min_spike_median_coverage:
            findings.append(
                (
                    Rules.LOW_SPIKE_MEDIAN.reason,
                    f"Median coverage of S gene < {_fmt(thresholds.min_spike_median_coverage)}",
                )
            )
    return findings


def profile_key_for(
    config: QCConfig,
    platform: str,
    metrics: SampleMetrics,
    default_virus: Optional[Virus] = None,
    spike: bool = False,
) -> Optional[str]:
    """Profile key for a segment, falling back to ``default_virus``.

    The ``-spike`` variant is used for SARS-CoV-2 spike-only experiments when
    the configuration defines it.

    Returns:
        Profile key, or None when the virus cannot be determined
    """
    if metrics.profile is not None:
        virus = metrics.profile.virus
    elif default_virus is not None:
        virus = default_virus
    else:
        return None

    if spike and virus is Virus.SC2:
        spike_key = config.profile_key(platform, virus, spike=True)
        if spike_key in config.profiles:
            return spike_key
    return config.profile_key(platform, virus)


def evaluate_metrics(metrics: SampleMetrics, config: QCConfig, profile_key: str) -> QCVerdict:
    """Evaluate a segment with the thresholds for its profile and subtype.

    Raises:
        ConfigurationError: If the profile is not configured
    """
    thresholds = config.thresholds_for(profile_key, metrics.subtype)
    return apply_rules(metrics, thresholds)


# =============================================================================
# Sample- and sequence-level verdicts
# =============================================================================


@dataclass(frozen=True)
class SampleVerdicts:
    """All verdicts computed for one sample."""
    segments: Dict[str, QCVerdict]
    sequences: Dict[Tuple[str, str, str], QCVerdict]
    sample: QCVerdict


def unassessed_segment_verdict(segment: str) -> QCVerdict:
    return QCVerdict.from_findings([(Rules.NO_DATA.reason, f"No assembler record for segment '{segment}'")])


def evaluate_sample(
    metrics: Sequence[SampleMetrics],
    sequences: Sequence[AssembledSequence],
    config: QCConfig,
    platform: str,
    default_virus: Optional[Virus] = None,
    spike: bool = False,
) -> SampleVerdicts:
    """Segment, sequence, and overall verdicts for one sample.

    Each sequence takes the verdict of the segment it belongs to; a sequence
    whose segment has no metrics fails. The sample fails when any segment or
    sequence fails.

    Args:
        metrics: The sample's per-segment metrics (subtype attached)
        sequences: Nucleotide and amino-acid sequences emitted for the sample
        config: Run QC configuration
        platform: Sequencing platform for profile selection
        default_virus: Virus to assume for unrecognised references
        spike: Whether the sample is a spike-only SARS-CoV-2 experiment

    Raises:
        ConfigurationError: If a segment's profile is not configured
    """
    segments: Dict[str, QCVerdict] = {}
    for m in metrics:
        if m.no_data:
            segments[m.reference_name] = apply_rules(m, QCThresholds())
            continue
        key = profile_key_for(config, platform, m, default_virus, spike)
        if key is None:
            logger.debug(f"{m.sample_id}: no virus profile for {m.reference_name}; using defaults")
            segments[m.reference_name] = apply_rules(m, QCThresholds())
        else:
            segments[m.reference_name] = evaluate_metrics(m, config, key)

    sequence_verdicts: Dict[Tuple[str, str, str], QCVerdict] = {}
    for sequence in sequences:
        verdict = segments.get(sequence.segment)
        if verdict is None:
            verdict = unassessed_segment_verdict(sequence.segment)
        sequence_verdicts[sequence.key] = verdict

    sample = QCVerdict.combine(list(segments.values()) + list(sequence_verdicts.values()))
    return SampleVerdicts(segments=segments, sequences=sequence_verdicts, sample=sample)


# =============================================================================
# Negative controls
# =============================================================================


PASSES_QC = "passes QC"
FAILS_QC = "FAILS QC"


def negative_control_statement(
    samplesheet: SampleSheet,
    percent_mapped: Mapping[str, float],
    thresholds: QCThresholds,
) -> Dict[str, Dict[str, float]]:
    """Split negative controls by percent of reads mapped.

    Args:
        samplesheet: Run samplesheet, used to find negative controls
        percent_mapped: Percent of reads mapped per sample
        thresholds: Thresholds supplying ``negative_control_perc``

    Returns:
        {"passes QC": {sample: pct}, "FAILS QC": {sample: pct}}
    """
    statement: Dict[str, Dict[str, float]] = {PASSES_QC: {}, FAILS_QC: {}}
    for sample_id in samplesheet.negative_controls():
        pct = percent_mapped.get(sample_id, 0.0)
        bucket = FAILS_QC if pct >= thresholds.negative_control_perc else PASSES_QC
        statement[bucket][sample_id] = pct
    if statement[FAILS_QC]:
        logger.warning(f"Negative controls failing QC: {', '.join(statement[FAILS_QC])}")
    return statement
