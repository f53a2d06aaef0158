"""
Data models for the ingestion, metrics, and QC pipeline.

This module defines the core data structures that flow between pipeline
stages: normalized assembler and annotator records, derived per-segment
metrics, variant calls, QC verdicts, and the per-sample results handed to
the partitioner.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Tuple


class Virus(Enum):
    """Virus families handled by the pipeline."""
    FLU = "flu"
    SC2 = "sc2"
    RSV = "rsv"


class SequenceType(Enum):
    """Type of sequences routed into pass/fail buckets."""
    NUCLEOTIDE = "nucleotide"
    AMINO_ACID = "amino_acid"


class StopCodonPolicy(Enum):
    """How premature stop codons affect the verdict."""
    STRICT = "strict"
    TOLERANT = "tolerant"
    TOLERANT_PER_PROTEIN = "tolerant-per-protein"


NO_DATA_REFERENCE = "Undetermined"
UNDETERMINED_SUBTYPE = "Undetermined"
INDETERMINATE_SUBTYPE = "Indeterminate"


# =============================================================================
# Virus profiles
# =============================================================================


@dataclass(frozen=True)
class VirusProfile:
    """Base class for the virus-specific tagged variants."""

    @property
    def virus(self) -> Virus:
        raise NotImplementedError

    @staticmethod
    def from_reference(reference_name: str) -> Optional["VirusProfile"]:
        """Derive the profile from an assembler reference name.

        Examples:
            "A_HA_H3" -> Influenza(segment="HA", flu_type="A")
            "B_NA" -> Influenza(segment="NA", flu_type="B")
            "RSV_AD" -> RSV(group="A")
            "SARS-CoV-2" -> SARSCoV2()

        Returns:
            The profile, or None for an unrecognized reference
        """
        name = reference_name.strip()
        upper = name.upper()
        if upper.startswith("SARS"):
            return SARSCoV2()
        if upper.startswith("RSV"):
            suffix = upper[3:].lstrip("_-")
            return RSV(group=suffix[0] if suffix[:1] in ("A", "B") else "")
        parts = name.split("_")
        if len(parts) >= 2 and parts[0] in ("A", "B"):
            return Influenza(segment=parts[1], flu_type=parts[0])
        return None


@dataclass(frozen=True)
class Influenza(VirusProfile):
    """Influenza segment profile.

    Attributes:
        segment: Segment name taken from the reference (e.g. "HA", "NA", "PB2")
        flu_type: "A" or "B"
    """
    segment: str
    flu_type: str = "A"

    @property
    def virus(self) -> Virus:
        return Virus.FLU


@dataclass(frozen=True)
class RSV(VirusProfile):
    """RSV profile with its group ("A", "B", or "" when unknown)."""
    group: str = ""

    @property
    def virus(self) -> Virus:
        return Virus.RSV


@dataclass(frozen=True)
class SARSCoV2(VirusProfile):
    """SARS-CoV-2 profile."""

    @property
    def virus(self) -> Virus:
        return Virus.SC2


# =============================================================================
# Samplesheet
# =============================================================================


NEGATIVE_CONTROL_KEYWORDS = ("- control", "negative", "negative_control", "ntc")


@dataclass(frozen=True)
class SampleSheetEntry:
    """A single samplesheet row."""
    sample_id: str
    sample_type: str = ""
    platform: str = ""
    experiment_type: str = ""

    @property
    def is_negative_control(self) -> bool:
        sample_type = self.sample_type.lower()
        return any(keyword in sample_type for keyword in NEGATIVE_CONTROL_KEYWORDS)


@dataclass
class SampleSheet:
    """Ordered collection of samplesheet entries with unique sample IDs."""
    entries: List[SampleSheetEntry] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.entries)

    def __iter__(self):
        return iter(self.entries)

    def __contains__(self, sample_id: object) -> bool:
        return any(entry.sample_id == sample_id for entry in self.entries)

    @property
    def sample_ids(self) -> List[str]:
        return [entry.sample_id for entry in self.entries]

    def get(self, sample_id: str) -> Optional[SampleSheetEntry]:
        for entry in self.entries:
            if entry.sample_id == sample_id:
                return entry
        return None

    def resolve(self, raw_id: str) -> Optional[str]:
        """Resolve a raw upstream identifier to a samplesheet sample ID.

        Exact matches win. Otherwise a trailing ``_<digits>`` segment suffix
        (influenza per-segment naming, e.g. ``sample1_4``) is stripped and the
        remainder looked up.

        Args:
            raw_id: Identifier as written by the upstream tool

        Returns:
            The matching sample ID, or None if nothing resolves
        """
        raw_id = raw_id.strip()
        if raw_id in self:
            return raw_id
        base, sep, suffix = raw_id.rpartition("_")
        if sep and suffix.isdigit() and base in self:
            return base
        return None

    def negative_controls(self) -> List[str]:
        return [entry.sample_id for entry in self.entries if entry.is_negative_control]


# =============================================================================
# Normalized upstream records
# =============================================================================


@dataclass(frozen=True)
class AssemblerRecord:
    """One assembler summary row: a sample x reference (segment).

    Numeric fields that failed to parse are None.

    Attributes:
        sample_id: Owning samplesheet sample
        reference_name: Assembler reference name (e.g. "A_HA_H3", "SARS-CoV-2")
        reference_length: Length of the reference in nucleotides
        total_reads: Reads entering the assembler
        pass_qc_reads: Reads passing read-level QC
        mapped_reads: Reads assigned to this reference
        coverage_depth: Per-position depth starting at reference position 1
    """
    sample_id: str
    reference_name: str
    reference_length: Optional[int] = None
    total_reads: Optional[int] = None
    pass_qc_reads: Optional[int] = None
    mapped_reads: Optional[int] = None
    coverage_depth: Tuple[int, ...] = ()


@dataclass(frozen=True)
class MinorAllele:
    """A minority allele reported by the assembler."""
    sample_id: str
    reference_name: str
    position: int
    total: Optional[int]
    consensus_allele: str
    minority_allele: str
    frequency: float


@dataclass(frozen=True)
class MinorIndel:
    """An insertion or deletion reported by the assembler."""
    sample_id: str
    reference_name: str
    upstream_position: Optional[int]
    kind: str
    length: Optional[int]
    frequency: float


@dataclass(frozen=True)
class AnnotatorRecord:
    """One annotator row: a sample x gene region.

    Attributes:
        sample_id: Resolved samplesheet sample
        raw_id: Identifier as written by the annotator
        ctype: Assembler reference name the protein was annotated on
        reference_id: Annotator reference strain identifier
        protein: Protein / gene-region name
        aa_seq: Ungapped amino-acid sequence
        aa_aln: Reference-aligned amino-acid sequence
        cds_seq: Ungapped coding sequence
        cds_aln: Reference-aligned coding sequence
        query_nt_coordinates: Coordinate ranges on the query (``1..26;715..982``)
        cds_nt_coordinates: Coordinate ranges on the CDS
        frameshift: Annotator reported a frame-shifting insertion
        truncated: Alignment starts or ends with missing data
    """
    sample_id: str
    raw_id: str
    ctype: str
    reference_id: str
    protein: str
    aa_seq: str = ""
    aa_aln: str = ""
    cds_seq: str = ""
    cds_aln: str = ""
    query_nt_coordinates: str = ""
    cds_nt_coordinates: str = ""
    frameshift: bool = False
    truncated: bool = False

    @property
    def key(self) -> Tuple[str, str, str]:
        return (self.sample_id, self.reference_id, self.protein)


@dataclass(frozen=True)
class ReferenceEntry:
    """A reference/subtype table row."""
    isolate_id: str
    isolate_name: str
    subtype: str
    passage_history: str
    nt_id: str
    ctype: str
    reference_id: str
    protein: str
    aa_aln: str
    cds_aln: str


@dataclass(frozen=True)
class AssembledSequence:
    """A nucleotide or amino-acid sequence emitted for a sample.

    ``segment`` is the assembler reference name the sequence belongs to, used
    to look up its segment-level verdict.
    """
    sample_id: str
    name: str
    sequence: str
    sequence_type: SequenceType
    segment: str
    protein: Optional[str] = None

    @property
    def key(self) -> Tuple[str, str, str]:
        return (self.sequence_type.value, self.sample_id, self.name)


# =============================================================================
# Derived metrics
# =============================================================================


@dataclass(frozen=True)
class SampleMetrics:
    """Aggregate metrics for a sample x segment.

    Percentages are in [0, 100] and rounded to ``PERCENT_PRECISION`` places.

    Attributes:
        sample_id: Owning sample
        reference_name: Segment/reference name, NO_DATA_REFERENCE when absent
        profile: Virus profile derived from the reference
        total_reads: Total reads for the sample
        pass_qc_reads: Reads passing read QC
        mapped_reads: Reads mapped to this reference
        coverage_pct: Percent of reference positions with depth >= 1
        median_coverage: Median depth over the assembled span
        minor_variant_count: Minor SNVs at or above the frequency cutoff
        minor_indel_count: Minor indels at or above the indel cutoff
        spike_coverage_pct: SARS-CoV-2 spike percent covered
        spike_median_coverage: SARS-CoV-2 spike median depth
        premature_stop_proteins: Proteins on this segment with premature stops
        subtype: Subtype label attached by the classifier
        no_data: True when the sample had no usable assembler records
    """
    sample_id: str
    reference_name: str
    profile: Optional[VirusProfile] = None
    total_reads: Optional[int] = 0
    pass_qc_reads: Optional[int] = 0
    mapped_reads: Optional[int] = 0
    coverage_pct: Optional[float] = 0.0
    median_coverage: Optional[float] = 0.0
    minor_variant_count: int = 0
    minor_indel_count: int = 0
    spike_coverage_pct: Optional[float] = None
    spike_median_coverage: Optional[float] = None
    premature_stop_proteins: Tuple[str, ...] = ()
    subtype: str = UNDETERMINED_SUBTYPE
    no_data: bool = False

    @property
    def key(self) -> Tuple[str, str]:
        return (self.sample_id, self.reference_name)


@dataclass(frozen=True)
class VariantCall:
    """A single difference versus reference.

    Amino-acid calls carry a ``<ref>:<position>:<sample>`` label and an
    optional phenotypic annotation; nucleotide calls carry a frequency when
    they come from minor-allele data.
    """
    sample_id: str
    reference_name: str
    sequence_type: SequenceType
    position: int
    reference_residue: str
    sample_residue: str
    protein: Optional[str] = None
    genomic_position: Optional[int] = None
    frequency: Optional[float] = None
    annotation: Optional[str] = None

    @property
    def label(self) -> str:
        return f"{self.reference_residue}:{self.position}:{self.sample_residue}"


# =============================================================================
# Verdicts and partitioned output
# =============================================================================


PASS_STATEMENT = "Pass"


@dataclass(frozen=True)
class QCVerdict:
    """Pass/fail outcome with every triggered rule recorded.

    Attributes:
        passed: True when no rule was triggered
        reasons: Short reason per triggered rule (e.g. "low median coverage")
        details: Human-readable statement per triggered rule, parallel to
            ``reasons`` (e.g. "Median coverage < 50")
    """
    passed: bool
    reasons: Tuple[str, ...] = ()
    details: Tuple[str, ...] = ()

    @classmethod
    def passing(cls) -> "QCVerdict":
        return cls(passed=True)

    @classmethod
    def from_findings(cls, findings: List[Tuple[str, str]]) -> "QCVerdict":
        """Build a verdict from (reason, detail) pairs, dropping exact repeats.

        A reason can appear more than once with different details, e.g. a
        premature stop codon in two proteins.
        """
        reasons: List[str] = []
        details: List[str] = []
        seen = set()
        for reason, detail in findings:
            if (reason, detail) in seen:
                continue
            seen.add((reason, detail))
            reasons.append(reason)
            details.append(detail)
        return cls(passed=not reasons, reasons=tuple(reasons), details=tuple(details))

    @classmethod
    def combine(cls, verdicts: List["QCVerdict"]) -> "QCVerdict":
        """Fail if any verdict fails; reasons are merged in order."""
        findings: List[Tuple[str, str]] = []
        for verdict in verdicts:
            findings.extend(zip(verdict.reasons, verdict.details))
        return cls.from_findings(findings)

    @property
    def statement(self) -> str:
        """Human-readable QC statement, ``;``-joined like the summary report."""
        return PASS_STATEMENT if self.passed else ";".join(self.details or self.reasons)


@dataclass(frozen=True)
class SampleResult:
    """Everything computed for one sample before partitioning."""
    sample_id: str
    metrics: Tuple[SampleMetrics, ...]
    segment_verdicts: Dict[str, QCVerdict]
    verdict: QCVerdict
    variants: Tuple[VariantCall, ...] = ()
    sequences: Tuple[AssembledSequence, ...] = ()
    sequence_verdicts: Dict[Tuple[str, str, str], QCVerdict] = field(default_factory=dict)
    subtype: str = UNDETERMINED_SUBTYPE
