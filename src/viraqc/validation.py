"""
Pre-flight validation of run inputs.

These checks read only headers and directory listings, so problems such as
a missing annotator column are reported together, up front, instead of one
at a time from deep inside the pipeline.
"""

import os
from pathlib import Path
from typing import List, Optional, Sequence, Tuple, Union

from viraqc.errors import SamplesheetError, WarningLog
from viraqc.qc.ingest import (
    ANNOTATOR_COLUMNS,
    REFERENCE_COLUMNS,
    SAMPLE_ID_COLUMN,
    SUMMARY_SUFFIX,
    read_samplesheet,
    read_samplesheet_frame,
)

PathLike = Union[str, Path]


def _read_header(path: PathLike) -> Optional[List[str]]:
    """First non-blank, non-comment line split on tabs; None for an empty file."""
    with open(path, "r") as f:
        for line in f:
            line = line.rstrip("\n\r")
            if line.strip() and not line.startswith("#"):
                return [part.strip() for part in line.split("\t")]
    return None


def validate_tsv_header(
    path: PathLike,
    required_columns: Sequence[str],
    label: str = "file",
) -> Tuple[bool, List[str], List[str]]:
    """
    Check that a tab-delimited file exists and its header has the required columns.

    Args:
        path: File to check
        required_columns: Columns the header must contain
        label: Description used in messages (e.g. "annotator output")

    Returns:
        Tuple of (is_valid, errors, warnings)
    """
    errors: List[str] = []
    warnings: List[str] = []

    if not os.path.exists(path):
        errors.append(f"{label} not found: {path}")
        return False, errors, warnings

    header = _read_header(path)
    if header is None:
        errors.append(f"{label} is empty: {path}")
        return False, errors, warnings

    missing = [col for col in required_columns if col not in header]
    if missing:
        errors.append(f"{label} header missing column(s): {', '.join(missing)}")

    extra = [col for col in header if col not in required_columns]
    if extra:
        warnings.append(f"{label} has unused column(s): {', '.join(extra)}")

    return len(errors) == 0, errors, warnings


def validate_samplesheet(path: PathLike) -> Tuple[bool, List[str], List[str]]:
    """
    Check the samplesheet has a ``Sample ID`` column and unique, non-blank IDs.

    Returns:
        Tuple of (is_valid, errors, warnings)
    """
    errors: List[str] = []
    warnings: List[str] = []

    path = Path(path)
    if not path.exists():
        errors.append(f"Samplesheet not found: {path}")
        return False, errors, warnings

    skipped = WarningLog()
    try:
        df = read_samplesheet_frame(path, skipped)
    except SamplesheetError as e:
        errors.append(str(e))
        return False, errors, warnings
    warnings.extend(str(w) for w in skipped)

    if SAMPLE_ID_COLUMN not in df.columns:
        errors.append(f"Samplesheet missing required column '{SAMPLE_ID_COLUMN}'")
        return False, errors, warnings

    ids = [str(value).strip() for value in df[SAMPLE_ID_COLUMN]]
    blank = sum(1 for sample_id in ids if not sample_id)
    if blank:
        warnings.append(f"{blank} row(s) with a blank sample ID will be skipped")

    seen = set()
    for sample_id in ids:
        if sample_id and sample_id in seen:
            errors.append(f"Duplicate sample ID: {sample_id}")
        seen.add(sample_id)

    if not any(ids):
        errors.append("Samplesheet lists no samples")

    return len(errors) == 0, errors, warnings


def validate_assembler_dir(
    assembler_dir: PathLike,
    sample_ids: Sequence[str],
) -> Tuple[bool, List[str], List[str]]:
    """
    Check the assembler directory exists and report samples without a summary.

    Samples without a summary are warnings; they are reported as "no data".

    Returns:
        Tuple of (is_valid, errors, warnings)
    """
    errors: List[str] = []
    warnings: List[str] = []

    assembler_dir = Path(assembler_dir)
    if not assembler_dir.is_dir():
        errors.append(f"Assembler output directory not found: {assembler_dir}")
        return False, errors, warnings

    for sample_id in sample_ids:
        if not (assembler_dir / f"{sample_id}{SUMMARY_SUFFIX}").exists():
            warnings.append(f"No assembler summary for sample '{sample_id}'")

    return True, errors, warnings


def validate_run_inputs(
    samplesheet: PathLike,
    assembler_dir: PathLike,
    annotator_path: PathLike,
    reference_table_path: PathLike,
) -> Tuple[bool, List[str], List[str]]:
    """
    Validate every run input and collect all problems.

    Args:
        samplesheet: Samplesheet path
        assembler_dir: Assembler output directory
        annotator_path: Annotator TSV
        reference_table_path: Reference/subtype TSV

    Returns:
        Tuple of (is_valid, errors, warnings)
    """
    errors: List[str] = []
    warnings: List[str] = []

    ok, errs, warns = validate_samplesheet(samplesheet)
    errors.extend(errs)
    warnings.extend(warns)

    sample_ids: List[str] = []
    if ok:
        sample_ids = read_samplesheet(samplesheet, WarningLog()).sample_ids

    for result in (
        validate_assembler_dir(assembler_dir, sample_ids),
        validate_tsv_header(annotator_path, ANNOTATOR_COLUMNS, "annotator output"),
        validate_tsv_header(reference_table_path, REFERENCE_COLUMNS, "reference table"),
    ):
        errors.extend(result[1])
        warnings.extend(result[2])

    return len(errors) == 0, errors, warnings
