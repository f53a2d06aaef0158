"""
Schema normalization for assembler, annotator, and run-level inputs.

Parses the samplesheet, per-sample assembler outputs, the annotator table,
and the reference/subtype table into the typed model in ``models``.

Row-level problems are recoverable: a row with the wrong number of fields
is dropped and reported to the run's ``WarningLog``. Numeric fields that
cannot be parsed become None. Missing required files or header columns are
fatal.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Sequence, Tuple, Union

import pandas as pd
from Bio import SeqIO

from viraqc.errors import (
    MalformedRowError,
    MissingInputError,
    SamplesheetError,
    WarningLog,
)
from viraqc.parallel import map_samples
from viraqc.qc.models import (
    AnnotatorRecord,
    AssembledSequence,
    AssemblerRecord,
    MinorAllele,
    MinorIndel,
    ReferenceEntry,
    SampleSheet,
    SampleSheetEntry,
    SequenceType,
)

logger = logging.getLogger(__name__)

SAMPLE_ID_COLUMN = "Sample ID"

SUMMARY_SUFFIX = ".summary.tsv"
VARIANTS_SUFFIX = ".variants.tsv"
INDELS_SUFFIX = ".indels.tsv"
CONSENSUS_SUFFIX = ".consensus.fasta"

SUMMARY_COLUMNS = (
    "Reference_Name",
    "Reference_Length",
    "Total_Reads",
    "Pass_QC_Reads",
    "Mapped_Reads",
    "Coverage_Depth",
)

VARIANTS_COLUMNS = (
    "Reference_Name",
    "Position",
    "Total",
    "Consensus_Allele",
    "Minority_Allele",
    "Minority_Frequency",
)

INDELS_COLUMNS = (
    "Reference_Name",
    "Upstream_Position",
    "Kind",
    "Length",
    "Frequency",
)

ANNOTATOR_COLUMNS = (
    "ID",
    "C_type",
    "Ref_ID",
    "Protein",
    "VH",
    "AA_seq",
    "AA_aln",
    "CDS_ID",
    "Insertion",
    "Shift_Insert",
    "CDS_seq",
    "CDS_aln",
    "Query_nt_coordinates",
    "CDS_nt_coordinates",
)

REFERENCE_COLUMNS = (
    "isolate_id",
    "isolate_name",
    "subtype",
    "passage_history",
    "nt_id",
    "ctype",
    "reference_id",
    "protein",
    "aa_aln",
    "cds_aln",
)

MISSING_VALUES = ("", ".", "-", "NA", "N/A", "nan", "None")
TRUE_VALUES = ("t", "true", "1", "yes", "y")


# =============================================================================
# Defensive coercion
# =============================================================================


def to_int(value: Optional[str]) -> Optional[int]:
    """Parse an integer field, returning None when it cannot be parsed."""
    if value is None:
        return None
    value = str(value).strip()
    if value in MISSING_VALUES:
        return None
    try:
        return int(value)
    except ValueError:
        try:
            as_float = float(value)
        except ValueError:
            return None
        return int(as_float) if as_float.is_integer() else None


def to_float(value: Optional[str]) -> Optional[float]:
    """Parse a float field, returning None when it cannot be parsed."""
    if value is None:
        return None
    value = str(value).strip()
    if value in MISSING_VALUES:
        return None
    try:
        return float(value)
    except ValueError:
        return None


def to_bool(value: Optional[str]) -> bool:
    if value is None:
        return False
    return str(value).strip().lower() in TRUE_VALUES


def parse_depths(value: str) -> Tuple[Tuple[int, ...], List[str]]:
    """Parse a comma-separated per-position depth list.

    Missing entries ("NA", "") count as zero depth. Unparsable or negative
    entries also count as zero depth and are returned so the caller can
    report them.

    Returns:
        Tuple of (depths, invalid_tokens)
    """
    value = (value or "").strip()
    if not value:
        return (), []
    depths: List[int] = []
    invalid: List[str] = []
    for token in value.split(","):
        token = token.strip()
        if token in MISSING_VALUES:
            depths.append(0)
            continue
        depth = to_int(token)
        if depth is None or depth < 0:
            invalid.append(token)
            depth = 0
        depths.append(depth)
    return tuple(depths), invalid


# =============================================================================
# Tab-delimited reading
# =============================================================================


def iter_tsv_rows(
    path: Union[str, Path],
    required_columns: Sequence[str],
    warnings: WarningLog,
) -> Iterator[Tuple[int, Dict[str, str]]]:
    """Yield (line_number, row) pairs from a headed tab-delimited file.

    Rows whose field count differs from the header are skipped and reported
    as MalformedRowError. Blank lines and ``#`` comments are ignored.

    Args:
        path: File to read
        required_columns: Columns the header must contain
        warnings: Accumulator for skipped rows

    Raises:
        MissingInputError: If the file is missing, empty, or the header lacks
            a required column
    """
    path = Path(path)
    if not path.exists():
        raise MissingInputError(f"Required input file not found: {path}")

    with open(path, "r") as f:
        header: Optional[List[str]] = None
        for line_number, line in enumerate(f, start=1):
            line = line.rstrip("\n\r")
            if not line.strip() or line.startswith("#"):
                continue

            parts = line.split("\t")

            if header is None:
                header = [part.strip() for part in parts]
                missing = [col for col in required_columns if col not in header]
                if missing:
                    raise MissingInputError(
                        f"{path.name}: malformed header, missing column(s): {', '.join(missing)}"
                    )
                continue

            if len(parts) != len(header):
                warnings.record(
                    MalformedRowError(
                        f"expected {len(header)} fields, got {len(parts)}; row skipped",
                        path=path,
                        line_number=line_number,
                    )
                )
                continue

            yield line_number, dict(zip(header, parts))

        if header is None:
            raise MissingInputError(f"{path.name}: file is empty, header row required")


# =============================================================================
# Samplesheet
# =============================================================================


def read_samplesheet_frame(path: Union[str, Path], warnings: WarningLog) -> pd.DataFrame:
    """Load the samplesheet as a string DataFrame.

    CSV by default; ``.tsv`` and ``.txt`` files are read tab-delimited. Rows
    with more fields than the header are dropped and reported; short rows are
    padded with empty strings.

    Raises:
        SamplesheetError: If the file is empty or cannot be tokenized
    """
    path = Path(path)
    sep = "\t" if path.suffix.lower() in (".tsv", ".txt") else ","

    def skip_bad_line(fields: List[str]) -> None:
        warnings.record(
            MalformedRowError(f"too many fields ({len(fields)}) in row '{sep.join(fields)}'; row skipped", path=path)
        )
        return None

    try:
        df = pd.read_csv(
            path,
            sep=sep,
            dtype=str,
            keep_default_na=False,
            engine="python",
            on_bad_lines=skip_bad_line,
        )
    except pd.errors.EmptyDataError as e:
        raise SamplesheetError(f"{path.name}: file is empty, header row required") from e
    except pd.errors.ParserError as e:
        raise SamplesheetError(f"{path.name}: cannot be parsed: {e}") from e

    df = df.fillna("")
    df.columns = [str(col).strip() for col in df.columns]
    return df


def read_samplesheet(path: Union[str, Path], warnings: Optional[WarningLog] = None) -> SampleSheet:
    """Read the run samplesheet.

    CSV by default; ``.tsv`` and ``.txt`` files are read tab-delimited.

    Args:
        path: Samplesheet path
        warnings: Accumulator for blank sample IDs

    Returns:
        SampleSheet in file order

    Raises:
        MissingInputError: If the file is missing
        SamplesheetError: If the file is empty or unparsable, the ``Sample ID``
            column is missing, or IDs repeat
    """
    path = Path(path)
    warnings = warnings if warnings is not None else WarningLog()

    if not path.exists():
        raise MissingInputError(f"Samplesheet not found: {path}")

    df = read_samplesheet_frame(path, warnings)

    if SAMPLE_ID_COLUMN not in df.columns:
        raise SamplesheetError(f"{path.name}: missing required column '{SAMPLE_ID_COLUMN}'")

    entries: List[SampleSheetEntry] = []
    seen = set()
    for _, row in df.iterrows():
        sample_id = str(row[SAMPLE_ID_COLUMN]).strip()
        if not sample_id:
            warnings.record(MalformedRowError("blank sample ID; row skipped", path=path))
            continue
        if sample_id in seen:
            raise SamplesheetError(f"{path.name}: duplicate sample ID '{sample_id}'")
        seen.add(sample_id)
        entries.append(
            SampleSheetEntry(
                sample_id=sample_id,
                sample_type=str(row.get("Sample Type", "")).strip(),
                platform=str(row.get("Platform", "")).strip(),
                experiment_type=str(row.get("Experiment Type", "")).strip(),
            )
        )

    logger.info(f"Read {len(entries)} samples from {path.name}")
    return SampleSheet(entries=entries)


# =============================================================================
# Assembler outputs
# =============================================================================


@dataclass
class AssemblerOutputs:
    """All assembler data for one sample."""
    sample_id: str
    records: List[AssemblerRecord] = field(default_factory=list)
    alleles: List[MinorAllele] = field(default_factory=list)
    indels: List[MinorIndel] = field(default_factory=list)
    consensus: List[AssembledSequence] = field(default_factory=list)

    @property
    def has_data(self) -> bool:
        return bool(self.records)


def read_assembler_summary(path: Union[str, Path], sample_id: str, warnings: WarningLog) -> List[AssemblerRecord]:
    """Read one sample's assembler summary into AssemblerRecords."""
    records = []
    seen = set()
    for line_number, row in iter_tsv_rows(path, SUMMARY_COLUMNS, warnings):
        reference = row["Reference_Name"].strip()
        if not reference:
            warnings.record(MalformedRowError("blank Reference_Name; row skipped", path=path, line_number=line_number))
            continue
        if reference in seen:
            warnings.record(
                MalformedRowError(f"duplicate reference '{reference}'; keeping first", path=path, line_number=line_number)
            )
            continue
        seen.add(reference)

        depths, invalid = parse_depths(row["Coverage_Depth"])
        if invalid:
            warnings.record(
                MalformedRowError(
                    f"unparsable Coverage_Depth entries ({', '.join(invalid[:3])}) counted as zero depth",
                    path=path,
                    line_number=line_number,
                )
            )
        records.append(
            AssemblerRecord(
                sample_id=sample_id,
                reference_name=reference,
                reference_length=to_int(row["Reference_Length"]),
                total_reads=to_int(row["Total_Reads"]),
                pass_qc_reads=to_int(row["Pass_QC_Reads"]),
                mapped_reads=to_int(row["Mapped_Reads"]),
                coverage_depth=depths,
            )
        )
    return records


def read_minor_alleles(path: Union[str, Path], sample_id: str, warnings: WarningLog) -> List[MinorAllele]:
    """Read one sample's minor-allele table. Rows without a frequency are dropped."""
    alleles = []
    for line_number, row in iter_tsv_rows(path, VARIANTS_COLUMNS, warnings):
        position = to_int(row["Position"])
        frequency = to_float(row["Minority_Frequency"])
        if position is None or frequency is None:
            warnings.record(
                MalformedRowError("unparsable Position or Minority_Frequency; row skipped", path=path, line_number=line_number)
            )
            continue
        alleles.append(
            MinorAllele(
                sample_id=sample_id,
                reference_name=row["Reference_Name"].strip(),
                position=position,
                total=to_int(row["Total"]),
                consensus_allele=row["Consensus_Allele"].strip(),
                minority_allele=row["Minority_Allele"].strip(),
                frequency=frequency,
            )
        )
    return alleles


def read_minor_indels(path: Union[str, Path], sample_id: str, warnings: WarningLog) -> List[MinorIndel]:
    """Read one sample's insertion/deletion table."""
    indels = []
    for line_number, row in iter_tsv_rows(path, INDELS_COLUMNS, warnings):
        frequency = to_float(row["Frequency"])
        if frequency is None:
            warnings.record(MalformedRowError("unparsable Frequency; row skipped", path=path, line_number=line_number))
            continue
        indels.append(
            MinorIndel(
                sample_id=sample_id,
                reference_name=row["Reference_Name"].strip(),
                upstream_position=to_int(row["Upstream_Position"]),
                kind=row["Kind"].strip().lower(),
                length=to_int(row["Length"]),
                frequency=frequency,
            )
        )
    return indels


def read_consensus(
    path: Union[str, Path],
    sample_id: str,
    warnings: Optional[WarningLog] = None,
) -> List[AssembledSequence]:
    """Read a sample's consensus FASTA; record IDs are reference names.

    When a record ID repeats the first record wins.
    """
    warnings = warnings if warnings is not None else WarningLog()
    sequences = []
    seen = set()
    for record in SeqIO.parse(str(path), "fasta"):
        if record.id in seen:
            warnings.record(MalformedRowError(f"duplicate FASTA record '{record.id}'; keeping first", path=path))
            continue
        seen.add(record.id)
        sequences.append(
            AssembledSequence(
                sample_id=sample_id,
                name=f"{sample_id}|{record.id}",
                sequence=str(record.seq).upper(),
                sequence_type=SequenceType.NUCLEOTIDE,
                segment=record.id,
            )
        )
    return sequences


def read_sample_assembler_outputs(
    assembler_dir: Union[str, Path],
    sample_id: str,
    warnings: WarningLog,
) -> AssemblerOutputs:
    """Read every assembler file present for one sample.

    A missing summary file is not fatal here; the sample is simply returned
    without records so it can be reported as "no data".
    """
    assembler_dir = Path(assembler_dir)
    outputs = AssemblerOutputs(sample_id=sample_id)

    summary = assembler_dir / f"{sample_id}{SUMMARY_SUFFIX}"
    if not summary.exists():
        logger.debug(f"No assembler summary for {sample_id}")
        return outputs

    outputs.records = read_assembler_summary(summary, sample_id, warnings)

    variants = assembler_dir / f"{sample_id}{VARIANTS_SUFFIX}"
    if variants.exists():
        outputs.alleles = read_minor_alleles(variants, sample_id, warnings)

    indels = assembler_dir / f"{sample_id}{INDELS_SUFFIX}"
    if indels.exists():
        outputs.indels = read_minor_indels(indels, sample_id, warnings)

    consensus = assembler_dir / f"{sample_id}{CONSENSUS_SUFFIX}"
    if consensus.exists():
        outputs.consensus = read_consensus(consensus, sample_id, warnings)

    return outputs


def load_assembler_outputs(
    assembler_dir: Union[str, Path],
    samplesheet: SampleSheet,
    warnings: WarningLog,
    threads: int = 1,
) -> Dict[str, AssemblerOutputs]:
    """Read assembler outputs for every samplesheet sample.

    Files for samples not in the samplesheet are rejected with a warning.

    Args:
        assembler_dir: Directory holding ``<sample>.summary.tsv`` and sidecars
        samplesheet: Run samplesheet
        warnings: Accumulator for recoverable problems
        threads: Worker threads for per-sample reads

    Returns:
        Mapping of sample ID to AssemblerOutputs, in samplesheet order

    Raises:
        MissingInputError: If the directory does not exist
    """
    assembler_dir = Path(assembler_dir)
    if not assembler_dir.is_dir():
        raise MissingInputError(f"Assembler output directory not found: {assembler_dir}")

    for summary in sorted(assembler_dir.glob(f"*{SUMMARY_SUFFIX}")):
        sample_id = summary.name[: -len(SUMMARY_SUFFIX)]
        if sample_id not in samplesheet:
            warnings.record(MalformedRowError(f"sample '{sample_id}' is not in the samplesheet; file rejected", path=summary))

    sample_ids = samplesheet.sample_ids
    results = map_samples(
        lambda sample_id: read_sample_assembler_outputs(assembler_dir, sample_id, warnings),
        sample_ids,
        threads=threads,
    )
    outputs = dict(zip(sample_ids, results))

    with_data = sum(1 for o in outputs.values() if o.has_data)
    logger.info(f"Read assembler outputs for {with_data}/{len(outputs)} samples")
    return outputs


# =============================================================================
# Annotator outputs
# =============================================================================


def _is_truncated(aa_aln: str) -> bool:
    aa_aln = aa_aln.strip()
    return bool(aa_aln) and (aa_aln[0] == "." or aa_aln[-1] == ".")


def load_annotator_output(
    path: Union[str, Path],
    samplesheet: SampleSheet,
    warnings: WarningLog,
) -> Dict[Tuple[str, str, str], AnnotatorRecord]:
    """Read the annotator table keyed by (sample_id, reference_id, protein).

    IDs that do not resolve to a samplesheet entry are rejected. When the same
    key appears twice the first row wins.

    Raises:
        MissingInputError: If the file or a header column is missing
    """
    path = Path(path)
    records: Dict[Tuple[str, str, str], AnnotatorRecord] = {}

    for line_number, row in iter_tsv_rows(path, ANNOTATOR_COLUMNS, warnings):
        raw_id = row["ID"].strip()
        sample_id = samplesheet.resolve(raw_id)
        if sample_id is None:
            warnings.record(
                MalformedRowError(f"ID '{raw_id}' does not match any samplesheet sample; row rejected", path=path, line_number=line_number)
            )
            continue

        aa_aln = row["AA_aln"].strip()
        record = AnnotatorRecord(
            sample_id=sample_id,
            raw_id=raw_id,
            ctype=row["C_type"].strip(),
            reference_id=row["Ref_ID"].strip(),
            protein=row["Protein"].strip(),
            aa_seq=row["AA_seq"].strip(),
            aa_aln=aa_aln,
            cds_seq=row["CDS_seq"].strip(),
            cds_aln=row["CDS_aln"].strip(),
            query_nt_coordinates=row["Query_nt_coordinates"].strip(),
            cds_nt_coordinates=row["CDS_nt_coordinates"].strip(),
            frameshift=to_bool(row["Shift_Insert"]),
            truncated=_is_truncated(aa_aln),
        )

        if record.key in records:
            warnings.record(
                MalformedRowError(
                    f"duplicate entry for {'/'.join(record.key)}; keeping first",
                    path=path,
                    line_number=line_number,
                )
            )
            continue
        records[record.key] = record

    logger.info(f"Read {len(records)} annotator records from {path.name}")
    return records


def amino_acid_sequences(records: Sequence[AnnotatorRecord]) -> List[AssembledSequence]:
    """One amino-acid sequence per annotator record, named ``raw_id|reference_id|protein``."""
    sequences = []
    for record in records:
        residues = record.aa_seq or record.aa_aln.replace("-", "")
        sequences.append(
            AssembledSequence(
                sample_id=record.sample_id,
                name=f"{record.raw_id}|{record.reference_id}|{record.protein}",
                sequence=residues,
                sequence_type=SequenceType.AMINO_ACID,
                segment=record.ctype,
                protein=record.protein,
            )
        )
    return sequences


# =============================================================================
# Reference / subtype table
# =============================================================================


@dataclass
class ReferenceTable:
    """Reference alignments and subtype labels.

    Attributes:
        entries: Reference rows keyed by (reference_id, protein)
        subtypes: Subtype label per reference_id
    """
    entries: Dict[Tuple[str, str], ReferenceEntry] = field(default_factory=dict)
    subtypes: Dict[str, str] = field(default_factory=dict)

    def get(self, reference_id: str, protein: str) -> Optional[ReferenceEntry]:
        return self.entries.get((reference_id, protein))

    def subtype_for(self, reference_id: str) -> Optional[str]:
        return self.subtypes.get(reference_id)

    def __len__(self) -> int:
        return len(self.entries)


def load_reference_table(path: Union[str, Path], warnings: WarningLog) -> ReferenceTable:
    """Read the reference/subtype table.

    Raises:
        MissingInputError: If the file or a header column is missing
    """
    table = ReferenceTable()
    for _, row in iter_tsv_rows(path, REFERENCE_COLUMNS, warnings):
        entry = ReferenceEntry(**{col: row[col].strip() for col in REFERENCE_COLUMNS})
        table.entries.setdefault((entry.reference_id, entry.protein), entry)
        if entry.subtype:
            table.subtypes.setdefault(entry.reference_id, entry.subtype)
    logger.info(f"Read {len(table)} reference alignments from {Path(path).name}")
    return table
