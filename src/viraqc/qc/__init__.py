"""
viraqc QC core: ingestion, metrics, subtyping, QC decisions, partitioning.

Stages run strictly downstream and each consumes only the previous stage's
typed output:

    ingest -> metrics -> subtype -> decision -> partition

Example Usage:
    >>> from viraqc.qc import run_pipeline
    >>> result = run_pipeline(
    ...     "samplesheet.csv", "assembler/", "annotator.tsv",
    ...     "references.tsv", "qc.yaml", platform="illumina", run_id="run01",
    ... )
    >>> result.summary_frame()
"""

# Data models
from .models import (
    RSV,
    AnnotatorRecord,
    AssembledSequence,
    AssemblerRecord,
    Influenza,
    QCVerdict,
    SampleMetrics,
    SampleResult,
    SampleSheet,
    SampleSheetEntry,
    SARSCoV2,
    SequenceType,
    StopCodonPolicy,
    VariantCall,
    Virus,
    VirusProfile,
)

# Coordinates
from .coordinates import CoordinateRanges, Interval, parse_coordinate_ranges

# Configuration
from .thresholds import QCConfig, QCThresholds, load_qc_config, parse_qc_document

# Ingestion
from .ingest import (
    ReferenceTable,
    load_annotator_output,
    load_assembler_outputs,
    load_reference_table,
    read_samplesheet,
)

# Metrics and subtyping
from .metrics import calculate_sample_metrics, compute_protein_variants, coverage_percentage, median_coverage
from .subtype import classify_sample

# Decisions and partitioning
from .decision import Rules, apply_rules, evaluate_metrics, negative_control_statement
from .partition import PartitionedResult, partition_results, verify_partition

# Pipeline
from .pipeline import run_pipeline


__all__ = [
    # Models
    "AnnotatorRecord",
    "AssembledSequence",
    "AssemblerRecord",
    "Influenza",
    "QCVerdict",
    "RSV",
    "SARSCoV2",
    "SampleMetrics",
    "SampleResult",
    "SampleSheet",
    "SampleSheetEntry",
    "SequenceType",
    "StopCodonPolicy",
    "VariantCall",
    "Virus",
    "VirusProfile",
    # Coordinates
    "CoordinateRanges",
    "Interval",
    "parse_coordinate_ranges",
    # Configuration
    "QCConfig",
    "QCThresholds",
    "load_qc_config",
    "parse_qc_document",
    # Ingestion
    "ReferenceTable",
    "load_annotator_output",
    "load_assembler_outputs",
    "load_reference_table",
    "read_samplesheet",
    # Metrics
    "calculate_sample_metrics",
    "compute_protein_variants",
    "coverage_percentage",
    "median_coverage",
    "classify_sample",
    # Decisions
    "Rules",
    "apply_rules",
    "evaluate_metrics",
    "negative_control_statement",
    "PartitionedResult",
    "partition_results",
    "verify_partition",
    "run_pipeline",
]
