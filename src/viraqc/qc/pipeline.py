"""
End-to-end run: ingest, metrics, subtype, QC decisions, partition.

Samples are independent until partitioning, so everything after ingestion
runs per sample on a thread pool and is joined before the partitioner,
which needs the full set to check its consistency guarantees. Fatal errors
propagate out of ``run_pipeline`` before any output could be written.

Example:
    >>> from viraqc.qc.pipeline import run_pipeline
    >>> result = run_pipeline(
    ...     samplesheet="samplesheet.csv",
    ...     assembler_dir="assembler/",
    ...     annotator_path="annotator.tsv",
    ...     reference_table_path="references.tsv",
    ...     qc_config="qc.yaml",
    ...     platform="illumina",
    ...     run_id="run01",
    ...     threads=4,
    ... )
    >>> result.nt_passed
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple, Union

from viraqc.errors import WarningLog
from viraqc.parallel import map_samples
from viraqc.qc.decision import evaluate_sample, negative_control_statement, profile_key_for
from viraqc.qc.ingest import (
    AssemblerOutputs,
    ReferenceTable,
    amino_acid_sequences,
    load_annotator_output,
    load_assembler_outputs,
    load_reference_table,
    read_samplesheet,
)
from viraqc.qc.metrics import (
    ProteinVariants,
    best_reference_per_protein,
    calculate_sample_metrics,
    compute_protein_variants,
    minor_allele_variants,
    percent_mapped,
)
from viraqc.qc.models import (
    AnnotatorRecord,
    AssembledSequence,
    SampleMetrics,
    SampleResult,
    SampleSheet,
    SampleSheetEntry,
    VariantCall,
    Virus,
    VirusProfile,
)
from viraqc.qc.partition import PartitionedResult, partition_results, summarize_aa_variants, verify_partition
from viraqc.qc.subtype import attach_subtype, classify_sample, sample_profile
from viraqc.qc.thresholds import QCConfig, QCThresholds, load_qc_config

logger = logging.getLogger(__name__)

DEFAULT_CUTOFFS = (QCThresholds.minor_variant_freq_cutoff, QCThresholds.minor_indel_freq_cutoff)


@dataclass
class SampleContext:
    """Read-only inputs shared by every per-sample task."""
    config: QCConfig
    reference_table: ReferenceTable
    platform: str
    default_virus: Optional[Virus]
    warnings: WarningLog


@dataclass
class ProcessedSample:
    """Per-sample output handed back to the join step."""
    result: SampleResult
    best_variants: List[ProteinVariants] = field(default_factory=list)
    percent_mapped: float = 0.0


def _sample_platform(entry: Optional[SampleSheetEntry], platform: str) -> str:
    if entry is not None and entry.platform:
        return entry.platform.lower()
    return platform.lower()


def _is_spike(entry: Optional[SampleSheetEntry]) -> bool:
    return entry is not None and "spike" in entry.experiment_type.lower()


def frequency_cutoffs(
    outputs: AssemblerOutputs,
    config: QCConfig,
    platform: str,
    default_virus: Optional[Virus] = None,
    spike: bool = False,
) -> Dict[str, Tuple[float, float]]:
    """(minor SNV, minor indel) cutoffs per reference from its base profile.

    Raises:
        ConfigurationError: If a reference's profile is not configured
    """
    cutoffs: Dict[str, Tuple[float, float]] = {}
    for record in outputs.records:
        probe = SampleMetrics(
            sample_id=record.sample_id,
            reference_name=record.reference_name,
            profile=VirusProfile.from_reference(record.reference_name),
        )
        key = profile_key_for(config, platform, probe, default_virus, spike)
        if key is None:
            cutoffs[record.reference_name] = DEFAULT_CUTOFFS
            continue
        thresholds = config.thresholds_for(key)
        cutoffs[record.reference_name] = (thresholds.minor_variant_freq_cutoff, thresholds.minor_indel_freq_cutoff)
    return cutoffs


def _ha_completeness_required(
    metrics: Sequence[SampleMetrics],
    config: QCConfig,
    platform: str,
    default_virus: Optional[Virus],
) -> float:
    for m in metrics:
        key = profile_key_for(config, platform, m, default_virus)
        if key is not None and key in config.profiles:
            return config.profiles[key].subtype_min_ha_completeness_pct
    return QCThresholds.subtype_min_ha_completeness_pct


def _subtype_records(
    annotations: Sequence[AnnotatorRecord],
    best: Sequence[ProteinVariants],
) -> List[AnnotatorRecord]:
    """Best-matching record per protein, then any proteins lacking a reference alignment."""
    records = [pv.record for pv in best]
    covered = {record.protein for record in records}
    records.extend(record for record in annotations if record.protein not in covered)
    return records


def process_sample(
    outputs: AssemblerOutputs,
    entry: Optional[SampleSheetEntry],
    annotations: Sequence[AnnotatorRecord],
    aa_sequences: Sequence[AssembledSequence],
    context: SampleContext,
) -> ProcessedSample:
    """Metrics, subtype, variants, and verdicts for one sample.

    Touches only this sample's data plus the shared read-only context.

    Args:
        outputs: The sample's assembler data
        entry: The sample's samplesheet row
        annotations: The sample's annotator records
        aa_sequences: Amino-acid sequences built from ``annotations``
        context: Shared configuration and lookups

    Returns:
        ProcessedSample for the join step
    """
    sample_id = outputs.sample_id
    platform = _sample_platform(entry, context.platform)
    spike = _is_spike(entry)

    cutoffs = frequency_cutoffs(outputs, context.config, platform, context.default_virus, spike)
    metrics = calculate_sample_metrics(outputs, annotations, cutoffs, warnings=context.warnings)

    protein_variants = compute_protein_variants(annotations, context.reference_table, context.warnings)
    best = best_reference_per_protein(protein_variants)

    min_ha = _ha_completeness_required(metrics, context.config, platform, context.default_virus)
    subtype = classify_sample(metrics, _subtype_records(annotations, best), context.reference_table, min_ha)
    metrics = attach_subtype(metrics, subtype)

    variants: List[VariantCall] = []
    for pv in best:
        variants.extend(pv.aa_variants)
        variants.extend(pv.nt_variants)
    for reference in sorted({a.reference_name for a in outputs.alleles}):
        snv_cutoff, _ = cutoffs.get(reference, DEFAULT_CUTOFFS)
        variants.extend(
            minor_allele_variants((a for a in outputs.alleles if a.reference_name == reference), snv_cutoff)
        )

    sequences = list(outputs.consensus) + list(aa_sequences)
    verdicts = evaluate_sample(metrics, sequences, context.config, platform, context.default_virus, spike)

    if not verdicts.sample.passed:
        logger.debug(f"{sample_id}: {verdicts.sample.statement}")

    result = SampleResult(
        sample_id=sample_id,
        metrics=tuple(metrics),
        segment_verdicts=verdicts.segments,
        verdict=verdicts.sample,
        variants=tuple(variants),
        sequences=tuple(sequences),
        sequence_verdicts=verdicts.sequences,
        subtype=subtype,
    )
    return ProcessedSample(result=result, best_variants=best, percent_mapped=percent_mapped(metrics))


def _run_thresholds(
    processed: Sequence[ProcessedSample],
    config: QCConfig,
    platform: str,
    default_virus: Optional[Virus],
) -> Optional[QCThresholds]:
    """Thresholds used for run-level statements (negative controls)."""
    for sample in processed:
        profile = sample_profile(sample.result.metrics)
        virus = profile.virus if profile is not None else default_virus
        if virus is None:
            continue
        key = config.profile_key(platform, virus)
        if key in config.profiles:
            return config.profiles[key]
    if default_virus is not None:
        key = config.profile_key(platform, default_virus)
        return config.profiles.get(key)
    return None


def run_pipeline(
    samplesheet: Union[str, Path, SampleSheet],
    assembler_dir: Union[str, Path],
    annotator_path: Union[str, Path],
    reference_table_path: Union[str, Path],
    qc_config: Union[str, Path, QCConfig],
    platform: str,
    run_id: str = "run",
    threads: int = 1,
    default_virus: Optional[Virus] = None,
) -> PartitionedResult:
    """Run the whole ingestion-to-partition pipeline.

    Args:
        samplesheet: Samplesheet path or an already-read SampleSheet
        assembler_dir: Directory of per-sample assembler files
        annotator_path: Annotator TSV
        reference_table_path: Reference/subtype TSV
        qc_config: QC document path or an already-loaded QCConfig
        platform: Sequencing platform ("illumina" or "ont")
        run_id: Run identifier for output naming
        threads: Worker threads for per-sample work
        default_virus: Virus assumed for references that do not identify one

    Returns:
        A verified PartitionedResult

    Raises:
        MissingInputError: If a required input or header column is missing
        ConfigurationError: If the QC config is invalid or lacks a needed profile
        PartitionError: If the partition fails its consistency check
    """
    warnings = WarningLog()

    config = qc_config if isinstance(qc_config, QCConfig) else load_qc_config(qc_config)
    sheet = samplesheet if isinstance(samplesheet, SampleSheet) else read_samplesheet(samplesheet, warnings)

    assembler = load_assembler_outputs(assembler_dir, sheet, warnings, threads=threads)
    annotator = load_annotator_output(annotator_path, sheet, warnings)
    reference_table = load_reference_table(reference_table_path, warnings)

    annotations_by_sample: Dict[str, List[AnnotatorRecord]] = {sid: [] for sid in sheet.sample_ids}
    for record in annotator.values():
        annotations_by_sample[record.sample_id].append(record)
    aa_by_sample = {sid: amino_acid_sequences(records) for sid, records in annotations_by_sample.items()}

    context = SampleContext(
        config=config,
        reference_table=reference_table,
        platform=platform,
        default_virus=default_virus,
        warnings=warnings,
    )

    processed = map_samples(
        lambda sid: process_sample(
            assembler[sid], sheet.get(sid), annotations_by_sample[sid], aa_by_sample[sid], context
        ),
        sheet.sample_ids,
        threads=threads,
    )

    subtypes = {p.result.sample_id: p.result.subtype for p in processed}
    mapped = {p.result.sample_id: p.percent_mapped for p in processed}

    run_thresholds = _run_thresholds(processed, config, platform.lower(), default_virus)
    negative_controls = (
        negative_control_statement(sheet, mapped, run_thresholds) if run_thresholds is not None else {}
    )

    partitioned = partition_results(
        [p.result for p in processed],
        run_id=run_id,
        warnings=warnings,
        aa_variant_summary=summarize_aa_variants([pv for p in processed for pv in p.best_variants], subtypes),
        negative_controls=negative_controls,
        percent_mapped=mapped,
    )

    ingested = [s for outputs in assembler.values() for s in outputs.consensus]
    ingested.extend(s for sequences in aa_by_sample.values() for s in sequences)
    verify_partition(partitioned, ingested, sheet.sample_ids)

    logger.info(f"Run {run_id} complete: {warnings.summary()}")
    return partitioned
