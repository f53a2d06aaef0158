"""
Pass/fail partitioning of a run's results.

``PartitionedResult`` is the single object handed to output writers. Every
nucleotide and amino-acid sequence lands in exactly one of four buckets
according to its own verdict, and every tabular projection (summary table,
variant tables, pass/fail matrix, FASTA records) is derived from the same
object so the outputs cannot disagree.
"""

import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

import pandas as pd
from Bio.Seq import Seq
from Bio.SeqRecord import SeqRecord

from viraqc.errors import PartitionError, WarningLog
from viraqc.qc.models import (
    AssembledSequence,
    QCVerdict,
    SampleMetrics,
    SampleResult,
    SequenceType,
    VariantCall,
)

logger = logging.getLogger(__name__)

SEGMENT_PALETTE = (
    "#1f77b4",
    "#ff7f0e",
    "#2ca02c",
    "#d62728",
    "#9467bd",
    "#8c564b",
    "#e377c2",
    "#7f7f7f",
    "#bcbd22",
    "#17becf",
)

# Bucket name -> FASTA file suffix, prefixed by the run ID
FASTA_BUCKETS = {
    "nt_passed": "amended_consensus_summary.fasta",
    "nt_failed": "failed_amended_consensus_summary.fasta",
    "aa_passed": "amino_acid_consensus_summary.fasta",
    "aa_failed": "failed_amino_acid_consensus_summary.fasta",
}


@dataclass(frozen=True)
class AAVariantSummary:
    """Amino-acid differences for a sample x protein against its best reference."""
    sample_id: str
    reference_id: str
    protein: str
    subtype: str
    count: int
    variants: str


@dataclass(frozen=True)
class SegmentMetadata:
    """Reference names, segment sets, and colours for figure writers."""
    references: Tuple[str, ...]
    segments: Tuple[str, ...]
    segment_colors: Dict[str, str]


def segment_metadata(reference_names: Iterable[str]) -> SegmentMetadata:
    """Build segment metadata from assembler reference names.

    The segment is the second ``_`` token of the reference name (``A_HA_H3``
    -> ``HA``), or the whole name when it has none. Colours cycle through a
    fixed 10-colour palette in sorted segment order.
    """
    references = tuple(sorted({name for name in reference_names if name}))
    segments = []
    for name in references:
        parts = name.split("_")
        segment = parts[1] if len(parts) > 1 else name
        if segment not in segments:
            segments.append(segment)
    segments.sort()
    colors = {segment: SEGMENT_PALETTE[i % len(SEGMENT_PALETTE)] for i, segment in enumerate(segments)}
    return SegmentMetadata(references=references, segments=tuple(segments), segment_colors=colors)


@dataclass
class PartitionedResult:
    """The final, internally consistent snapshot of a run.

    Attributes:
        run_id: Run identifier used in output file names
        samples: Per-sample results in samplesheet order
        nt_passed: Nucleotide sequences passing QC
        nt_failed: Nucleotide sequences failing QC
        aa_passed: Amino-acid sequences passing QC
        aa_failed: Amino-acid sequences failing QC
        aa_variant_summary: AA differences per sample x protein
        negative_controls: Negative-control statement
        percent_mapped: Percent of reads mapped per sample
        warnings: Recoverable problems seen during the run
    """
    run_id: str
    samples: Dict[str, SampleResult] = field(default_factory=dict)
    nt_passed: List[AssembledSequence] = field(default_factory=list)
    nt_failed: List[AssembledSequence] = field(default_factory=list)
    aa_passed: List[AssembledSequence] = field(default_factory=list)
    aa_failed: List[AssembledSequence] = field(default_factory=list)
    aa_variant_summary: List[AAVariantSummary] = field(default_factory=list)
    negative_controls: Dict[str, Dict[str, float]] = field(default_factory=dict)
    percent_mapped: Dict[str, float] = field(default_factory=dict)
    warnings: WarningLog = field(default_factory=WarningLog)

    @property
    def metrics(self) -> List[SampleMetrics]:
        return [m for result in self.samples.values() for m in result.metrics]

    @property
    def variants(self) -> List[VariantCall]:
        return [v for result in self.samples.values() for v in result.variants]

    @property
    def sequences(self) -> List[AssembledSequence]:
        return self.nt_passed + self.nt_failed + self.aa_passed + self.aa_failed

    def verdict_for(self, sample_id: str) -> QCVerdict:
        return self.samples[sample_id].verdict

    def sequence_verdict(self, sequence: AssembledSequence) -> Optional[QCVerdict]:
        result = self.samples.get(sequence.sample_id)
        return result.sequence_verdicts.get(sequence.key) if result else None

    def buckets(self) -> Dict[str, List[AssembledSequence]]:
        return {
            "nt_passed": self.nt_passed,
            "nt_failed": self.nt_failed,
            "aa_passed": self.aa_passed,
            "aa_failed": self.aa_failed,
        }

    # -------------------------------------------------------------------------
    # Projections for writers
    # -------------------------------------------------------------------------

    def seq_records(self, bucket: str) -> List[SeqRecord]:
        """Biopython records for one bucket ("nt_passed", "aa_failed", ...)."""
        sequences = self.buckets()[bucket]
        return [SeqRecord(Seq(s.sequence), id=s.name, description="") for s in sequences]

    def fasta_filenames(self) -> Dict[str, str]:
        return {bucket: f"{self.run_id}_{suffix}" for bucket, suffix in FASTA_BUCKETS.items()}

    def summary_frame(self) -> pd.DataFrame:
        """One row per sample x segment with metrics and verdicts."""
        rows = []
        for sample_id, result in self.samples.items():
            for m in result.metrics:
                segment_verdict = result.segment_verdicts.get(m.reference_name, result.verdict)
                rows.append(
                    {
                        "Sample": sample_id,
                        "Reference": m.reference_name,
                        "Subtype": m.subtype,
                        "Total Reads": m.total_reads,
                        "Pass QC Reads": m.pass_qc_reads,
                        "Reads Mapped": m.mapped_reads,
                        "Percent Mapped": self.percent_mapped.get(sample_id, 0.0),
                        "% Reference Covered": m.coverage_pct,
                        "Median Coverage": m.median_coverage,
                        "Count of Minor SNVs": m.minor_variant_count,
                        "Count of Minor Indels": m.minor_indel_count,
                        "Spike % Coverage": m.spike_coverage_pct,
                        "Spike Median Coverage": m.spike_median_coverage,
                        "Segment QC": segment_verdict.statement,
                        "Sample QC": result.verdict.statement,
                        "Pass": result.verdict.passed,
                    }
                )
        return pd.DataFrame(rows)

    def variants_frame(self) -> pd.DataFrame:
        """One row per VariantCall."""
        rows = [
            {
                "Sample": v.sample_id,
                "Reference": v.reference_name,
                "Type": v.sequence_type.value,
                "Protein": v.protein,
                "Position": v.position,
                "Genomic Position": v.genomic_position,
                "Reference Residue": v.reference_residue,
                "Sample Residue": v.sample_residue,
                "Label": v.label,
                "Frequency": v.frequency,
                "Annotation": v.annotation,
            }
            for v in self.variants
        ]
        return pd.DataFrame(rows)

    def aa_variants_frame(self) -> pd.DataFrame:
        rows = [
            {
                "Sample": s.sample_id,
                "Reference": s.reference_id,
                "Protein": s.protein,
                "Subtype": s.subtype,
                "AA Variant Count": s.count,
                "AA Variants": s.variants,
            }
            for s in self.aa_variant_summary
        ]
        return pd.DataFrame(rows)

    def pass_fail_matrix(self) -> pd.DataFrame:
        """Samples x segments table of segment QC statements, for heatmaps."""
        rows = []
        for sample_id, result in self.samples.items():
            for segment, verdict in result.segment_verdicts.items():
                rows.append({"Sample": sample_id, "Reference": segment, "Statement": verdict.statement})
        if not rows:
            return pd.DataFrame()
        frame = pd.DataFrame(rows)
        return frame.pivot(index="Sample", columns="Reference", values="Statement").reindex(list(self.samples))

    def segment_metadata(self) -> SegmentMetadata:
        return segment_metadata(m.reference_name for m in self.metrics if not m.no_data)

    def sample_counts(self) -> Tuple[int, int]:
        """(passing, failing) sample counts."""
        passed = sum(1 for result in self.samples.values() if result.verdict.passed)
        return passed, len(self.samples) - passed


# =============================================================================
# Building and checking
# =============================================================================


def summarize_aa_variants(
    protein_variants: Sequence,
    subtypes: Dict[str, str],
) -> List[AAVariantSummary]:
    """AA variant summary rows, one per (sample, protein).

    Args:
        protein_variants: Best ``ProteinVariants`` per sample x protein
        subtypes: Subtype label per sample
    """
    summary = []
    for pv in protein_variants:
        record = pv.record
        summary.append(
            AAVariantSummary(
                sample_id=record.sample_id,
                reference_id=record.reference_id,
                protein=record.protein,
                subtype=subtypes.get(record.sample_id, ""),
                count=pv.count,
                variants=",".join(v.label for v in pv.aa_variants),
            )
        )
    return summary


def partition_results(
    results: Sequence[SampleResult],
    run_id: str,
    warnings: Optional[WarningLog] = None,
    aa_variant_summary: Optional[List[AAVariantSummary]] = None,
    negative_controls: Optional[Dict[str, Dict[str, float]]] = None,
    percent_mapped: Optional[Dict[str, float]] = None,
) -> PartitionedResult:
    """Route every sample's sequences into pass/fail buckets.

    Args:
        results: Per-sample results, in samplesheet order
        run_id: Run identifier
        warnings: Recoverable problems from the run

    Returns:
        PartitionedResult
    """
    partitioned = PartitionedResult(
        run_id=run_id,
        aa_variant_summary=aa_variant_summary or [],
        negative_controls=negative_controls or {},
        percent_mapped=percent_mapped or {},
        warnings=warnings if warnings is not None else WarningLog(),
    )

    for result in results:
        partitioned.samples[result.sample_id] = result
        for sequence in result.sequences:
            verdict = result.sequence_verdicts.get(sequence.key)
            passed = verdict is not None and verdict.passed
            if sequence.sequence_type is SequenceType.NUCLEOTIDE:
                (partitioned.nt_passed if passed else partitioned.nt_failed).append(sequence)
            else:
                (partitioned.aa_passed if passed else partitioned.aa_failed).append(sequence)

    passed, failed = partitioned.sample_counts()
    logger.info(
        f"Partitioned {len(partitioned.samples)} samples ({passed} pass, {failed} fail): "
        f"{len(partitioned.nt_passed)}/{len(partitioned.nt_failed)} nt, "
        f"{len(partitioned.aa_passed)}/{len(partitioned.aa_failed)} aa sequences pass/fail"
    )
    return partitioned


def verify_partition(
    partitioned: PartitionedResult,
    ingested: Iterable[AssembledSequence],
    sample_ids: Sequence[str],
) -> None:
    """Check the partition against what was ingested.

    Raises:
        PartitionError: If a sample is missing or repeated, a sequence was
            dropped or duplicated, a sequence sits in a bucket that disagrees
            with its verdict, or a passing sample owns a failing sequence
    """
    if list(partitioned.samples) != list(sample_ids):
        raise PartitionError("Partitioned samples do not match the samplesheet")

    for sequence_type in SequenceType:
        expected = Counter(s.key for s in ingested if s.sequence_type is sequence_type)
        actual = Counter(s.key for s in partitioned.sequences if s.sequence_type is sequence_type)
        if expected != actual:
            missing = sorted(set(expected) - set(actual))
            extra = sorted(set(actual) - set(expected))
            raise PartitionError(
                f"{sequence_type.value} buckets differ from ingested sequences "
                f"(missing: {missing[:5]}, unexpected: {extra[:5]})"
            )
        repeated = [key for key, n in actual.items() if n > 1]
        if repeated:
            raise PartitionError(f"Sequences in more than one bucket: {repeated[:5]}")

    for bucket, sequences in partitioned.buckets().items():
        should_pass = bucket.endswith("passed")
        for sequence in sequences:
            verdict = partitioned.sequence_verdict(sequence)
            if verdict is None:
                raise PartitionError(f"{sequence.name} has no QC verdict")
            if verdict.passed != should_pass:
                raise PartitionError(f"{sequence.name} is in {bucket} but its verdict disagrees")
            if not verdict.passed and partitioned.verdict_for(sequence.sample_id).passed:
                raise PartitionError(f"{sequence.sample_id} passes but its sequence {sequence.name} fails")
