"""
Coverage, read-count, and variant metrics.

Turns one sample's normalized assembler and annotator records into
per-segment ``SampleMetrics`` and ``VariantCall`` lists. Everything here
works on in-memory data only.

Coverage conventions:
- percent covered = positions with depth >= 1 / reference length * 100
- median coverage = median depth over the assembled span, i.e. from the
  first to the last position with depth >= 1
- percentages are rounded to ``PERCENT_PRECISION`` decimal places
"""

import logging
import statistics
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from viraqc.errors import InsufficientDataError, MalformedRowError, WarningLog
from viraqc.qc.coordinates import CoordinateRanges, aligned_to_ungapped_positions, parse_coordinate_ranges
from viraqc.qc.ingest import AssemblerOutputs, ReferenceTable
from viraqc.qc.models import (
    NO_DATA_REFERENCE,
    AnnotatorRecord,
    AssemblerRecord,
    MinorAllele,
    MinorIndel,
    SampleMetrics,
    SARSCoV2,
    SequenceType,
    VariantCall,
    VirusProfile,
)
from viraqc.qc.thresholds import SPIKE_END, SPIKE_START

logger = logging.getLogger(__name__)

PERCENT_PRECISION = 2


# Residues that mark missing data rather than a real difference
AA_ANNOTATIONS = {
    ".": "amino acid information missing",
    "X": "amino acid information missing",
    "~": "partial amino acid",
    "-": "amino acid deleted",
}


# =============================================================================
# Coverage
# =============================================================================


def _round_pct(value: float) -> float:
    return round(min(max(value, 0.0), 100.0), PERCENT_PRECISION)


def assembled_span(depths: Sequence[int]) -> Tuple[int, int]:
    """Return the 0-based half-open span from the first to the last covered position."""
    covered = [i for i, depth in enumerate(depths) if depth >= 1]
    if not covered:
        return (0, 0)
    return (covered[0], covered[-1] + 1)


def coverage_percentage(depths: Sequence[int], reference_length: Optional[int]) -> float:
    """Percent of reference positions with depth >= 1.

    When the reference length is unknown the length of the depth list is used.

    Returns:
        Percentage in [0, 100]
    """
    length = reference_length if reference_length else len(depths)
    if not length:
        return 0.0
    covered = sum(1 for depth in depths[:length] if depth >= 1)
    return _round_pct(covered / length * 100.0)


def median_coverage(depths: Sequence[int]) -> float:
    """Median depth over the assembled span; 0.0 when nothing is covered."""
    start, end = assembled_span(depths)
    if start == end:
        return 0.0
    return round(float(statistics.median(depths[start:end])), PERCENT_PRECISION)


def region_coverage(depths: Sequence[int], start: int, end: int) -> Tuple[float, float]:
    """Percent covered and median depth for a 1-based inclusive region.

    The median only considers region positions inside the assembled span.

    Returns:
        (percent covered, median depth)
    """
    if end < start:
        return (0.0, 0.0)
    length = end - start + 1
    region = list(depths[start - 1:end])
    covered = sum(1 for depth in region if depth >= 1)
    pct = _round_pct(covered / length * 100.0)

    span_start, span_end = assembled_span(depths)
    lo, hi = max(start - 1, span_start), min(end, span_end)
    if lo >= hi:
        return (pct, 0.0)
    return (pct, round(float(statistics.median(depths[lo:hi])), PERCENT_PRECISION))


# =============================================================================
# Premature stop codons
# =============================================================================


def has_premature_stop(aa_sequence: str) -> bool:
    """Whether a stop (``*``) occurs before the last residue of a coding region.

    Trailing gap and missing-data markers are ignored, so a terminal stop
    followed by padding is not premature.
    """
    trimmed = aa_sequence.rstrip("-.~")
    stop = trimmed.find("*")
    return stop != -1 and stop < len(trimmed) - 1


def premature_stop_proteins(annotations: Iterable[AnnotatorRecord], reference_name: str) -> Tuple[str, ...]:
    """Proteins annotated on ``reference_name`` whose alignment has a premature stop."""
    proteins = []
    for record in annotations:
        if record.ctype != reference_name:
            continue
        sequence = record.aa_aln or record.aa_seq
        if has_premature_stop(sequence) and record.protein not in proteins:
            proteins.append(record.protein)
    return tuple(sorted(proteins))


# =============================================================================
# Segment metrics
# =============================================================================


def count_minor_variants(alleles: Iterable[MinorAllele], reference_name: str, freq_cutoff: float) -> int:
    return sum(1 for a in alleles if a.reference_name == reference_name and a.frequency >= freq_cutoff)


def count_minor_indels(indels: Iterable[MinorIndel], reference_name: str, freq_cutoff: float) -> int:
    return sum(1 for i in indels if i.reference_name == reference_name and i.frequency >= freq_cutoff)


def calculate_segment_metrics(
    record: AssemblerRecord,
    alleles: Sequence[MinorAllele] = (),
    indels: Sequence[MinorIndel] = (),
    annotations: Sequence[AnnotatorRecord] = (),
    minor_variant_freq_cutoff: float = 0.05,
    minor_indel_freq_cutoff: float = 0.2,
) -> SampleMetrics:
    """Derive SampleMetrics for one assembler record.

    Args:
        record: Assembler summary row for a sample x reference
        alleles: The sample's minor alleles (all references)
        indels: The sample's minor indels (all references)
        annotations: The sample's annotator records (all references)
        minor_variant_freq_cutoff: Frequency at which a minor SNV counts
        minor_indel_freq_cutoff: Frequency at which a minor indel counts

    Returns:
        SampleMetrics for the segment (subtype not yet attached)
    """
    profile = VirusProfile.from_reference(record.reference_name)
    depths = record.coverage_depth

    spike_pct = spike_median = None
    if isinstance(profile, SARSCoV2) and depths:
        spike_pct, spike_median = region_coverage(depths, SPIKE_START, SPIKE_END)

    return SampleMetrics(
        sample_id=record.sample_id,
        reference_name=record.reference_name,
        profile=profile,
        total_reads=record.total_reads,
        pass_qc_reads=record.pass_qc_reads,
        mapped_reads=record.mapped_reads,
        coverage_pct=coverage_percentage(depths, record.reference_length),
        median_coverage=median_coverage(depths),
        minor_variant_count=count_minor_variants(alleles, record.reference_name, minor_variant_freq_cutoff),
        minor_indel_count=count_minor_indels(indels, record.reference_name, minor_indel_freq_cutoff),
        spike_coverage_pct=spike_pct,
        spike_median_coverage=spike_median,
        premature_stop_proteins=premature_stop_proteins(annotations, record.reference_name),
    )


def no_data_metrics(sample_id: str) -> SampleMetrics:
    """Explicit placeholder for a sample without usable assembler records."""
    return SampleMetrics(
        sample_id=sample_id,
        reference_name=NO_DATA_REFERENCE,
        total_reads=0,
        pass_qc_reads=0,
        mapped_reads=0,
        coverage_pct=0.0,
        median_coverage=0.0,
        no_data=True,
    )


def calculate_sample_metrics(
    outputs: AssemblerOutputs,
    annotations: Sequence[AnnotatorRecord],
    cutoffs: Dict[str, Tuple[float, float]],
    warnings: Optional[WarningLog] = None,
    default_cutoffs: Tuple[float, float] = (0.05, 0.2),
) -> List[SampleMetrics]:
    """Combine a sample's assembler records into per-segment SampleMetrics.

    A sample with no records yields a single "no data" entry rather than
    being dropped. When a reference appears twice the first row wins.

    Args:
        outputs: The sample's assembler data
        annotations: The sample's annotator records
        cutoffs: (minor SNV, minor indel) frequency cutoffs per reference name
        warnings: Accumulator for the "no data" notice and duplicate references
        default_cutoffs: Cutoffs for references missing from ``cutoffs``

    Returns:
        SampleMetrics in assembler row order
    """
    if not outputs.has_data:
        if warnings is not None:
            warnings.record(InsufficientDataError(outputs.sample_id))
        return [no_data_metrics(outputs.sample_id)]

    metrics: List[SampleMetrics] = []
    seen = set()
    for record in outputs.records:
        if record.reference_name in seen:
            if warnings is not None:
                warnings.record(
                    MalformedRowError(f"{record.sample_id}: duplicate reference '{record.reference_name}'; keeping first")
                )
            continue
        seen.add(record.reference_name)
        snv_cutoff, indel_cutoff = cutoffs.get(record.reference_name, default_cutoffs)
        metrics.append(
            calculate_segment_metrics(
                record,
                alleles=outputs.alleles,
                indels=outputs.indels,
                annotations=annotations,
                minor_variant_freq_cutoff=snv_cutoff,
                minor_indel_freq_cutoff=indel_cutoff,
            )
        )
    return metrics


def percent_mapped(metrics: Sequence[SampleMetrics]) -> float:
    """Percent of a sample's total reads mapped to any reference."""
    totals = [m.total_reads for m in metrics if m.total_reads]
    if not totals:
        return 0.0
    mapped = sum(m.mapped_reads or 0 for m in metrics)
    return _round_pct(mapped / max(totals) * 100.0)


# =============================================================================
# Variant calls
# =============================================================================


def _parse_ranges(record: AnnotatorRecord, warnings: Optional[WarningLog]) -> CoordinateRanges:
    try:
        return parse_coordinate_ranges(record.query_nt_coordinates)
    except ValueError as e:
        if warnings is not None:
            warnings.record(MalformedRowError(f"{record.raw_id} {record.protein}: {e}"))
        return CoordinateRanges()


def compare_alignments(
    reference_aln: str,
    sample_aln: str,
) -> List[Tuple[int, str, str, Optional[int]]]:
    """Position-by-position comparison of two aligned sequences.

    Args:
        reference_aln: Reference-aligned reference sequence
        sample_aln: Reference-aligned sample sequence

    Returns:
        (1-based alignment position, reference residue, sample residue,
        1-based ungapped sample position or None) for each differing column
    """
    sample_positions = aligned_to_ungapped_positions(sample_aln, gap_chars="-")
    differences = []
    for index, (ref_residue, sample_residue) in enumerate(zip(reference_aln, sample_aln)):
        if ref_residue != sample_residue:
            differences.append((index + 1, ref_residue, sample_residue, sample_positions[index]))
    return differences


def amino_acid_variants(
    record: AnnotatorRecord,
    reference_aa_aln: str,
    warnings: Optional[WarningLog] = None,
) -> List[VariantCall]:
    """Amino-acid VariantCalls for one annotator record.

    Genomic positions point at the first base of the sample codon, mapped
    through the record's query coordinate ranges.
    """
    ranges = _parse_ranges(record, warnings)
    variants = []
    for position, ref_aa, sample_aa, ungapped in compare_alignments(reference_aa_aln, record.aa_aln):
        genomic = ranges.to_genomic((ungapped - 1) * 3) if ranges and ungapped else None
        variants.append(
            VariantCall(
                sample_id=record.sample_id,
                reference_name=record.ctype,
                sequence_type=SequenceType.AMINO_ACID,
                position=position,
                reference_residue=ref_aa,
                sample_residue=sample_aa,
                protein=record.protein,
                genomic_position=genomic,
                annotation=AA_ANNOTATIONS.get(sample_aa),
            )
        )
    return variants


def nucleotide_variants(
    record: AnnotatorRecord,
    reference_cds_aln: str,
    warnings: Optional[WarningLog] = None,
) -> List[VariantCall]:
    """Consensus-level nucleotide VariantCalls for one annotator record."""
    ranges = _parse_ranges(record, warnings)
    variants = []
    for position, ref_nt, sample_nt, ungapped in compare_alignments(reference_cds_aln, record.cds_aln):
        genomic = ranges.to_genomic(ungapped - 1) if ranges and ungapped else None
        variants.append(
            VariantCall(
                sample_id=record.sample_id,
                reference_name=record.ctype,
                sequence_type=SequenceType.NUCLEOTIDE,
                position=position,
                reference_residue=ref_nt,
                sample_residue=sample_nt,
                protein=record.protein,
                genomic_position=genomic,
            )
        )
    return variants


def minor_allele_variants(alleles: Iterable[MinorAllele], freq_cutoff: float = 0.05) -> List[VariantCall]:
    """Nucleotide VariantCalls with frequency for minor alleles at or above the cutoff."""
    return [
        VariantCall(
            sample_id=allele.sample_id,
            reference_name=allele.reference_name,
            sequence_type=SequenceType.NUCLEOTIDE,
            position=allele.position,
            reference_residue=allele.consensus_allele,
            sample_residue=allele.minority_allele,
            genomic_position=allele.position,
            frequency=allele.frequency,
        )
        for allele in alleles
        if allele.frequency >= freq_cutoff
    ]


@dataclass(frozen=True)
class ProteinVariants:
    """AA differences of one annotator record against its reference."""
    record: AnnotatorRecord
    aa_variants: Tuple[VariantCall, ...]
    nt_variants: Tuple[VariantCall, ...]

    @property
    def count(self) -> int:
        return len(self.aa_variants)


def compute_protein_variants(
    annotations: Sequence[AnnotatorRecord],
    reference_table: ReferenceTable,
    warnings: Optional[WarningLog] = None,
) -> List[ProteinVariants]:
    """Variants for every annotator record that has a reference alignment.

    Records without a matching (reference_id, protein) reference entry are
    skipped.
    """
    results = []
    for record in annotations:
        reference = reference_table.get(record.reference_id, record.protein)
        if reference is None:
            logger.debug(f"No reference alignment for {record.reference_id} {record.protein}")
            continue
        results.append(
            ProteinVariants(
                record=record,
                aa_variants=tuple(amino_acid_variants(record, reference.aa_aln, warnings)),
                nt_variants=tuple(nucleotide_variants(record, reference.cds_aln, warnings)),
            )
        )
    return results


def best_reference_per_protein(protein_variants: Sequence[ProteinVariants]) -> List[ProteinVariants]:
    """Keep, for each (sample, protein), the reference with the fewest AA differences.

    Ties keep the first entry in (protein, sample, count) order.
    """
    ordered = sorted(
        protein_variants,
        key=lambda pv: (pv.record.protein, pv.record.sample_id, pv.count),
    )
    best: Dict[Tuple[str, str], ProteinVariants] = {}
    for pv in ordered:
        best.setdefault((pv.record.sample_id, pv.record.protein), pv)
    return list(best.values())
