"""
viraqc Command-Line Interface

Entry point for the viraqc-summarize command. Runs the full pipeline first
and writes the summary table and the four FASTA buckets only once the run
has completed, so a failed run leaves no partial output behind.
"""

import argparse
import sys
from pathlib import Path
from typing import Dict, List, Optional

from Bio import SeqIO

from viraqc import __version__
from viraqc.config import PLATFORMS, get_config
from viraqc.errors import ViraQCError
from viraqc.logging import setup_logging
from viraqc.qc.models import Virus
from viraqc.qc.partition import PartitionedResult
from viraqc.qc.pipeline import run_pipeline
from viraqc.validation import validate_run_inputs


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="viraqc-summarize",
        description="Aggregate assembler and annotator outputs into QC verdicts and pass/fail sequence sets.",
    )
    parser.add_argument("--samplesheet", required=True, type=Path, help="Samplesheet (CSV, or TSV by suffix)")
    parser.add_argument("--assembler-dir", required=True, type=Path, help="Directory of per-sample assembler files")
    parser.add_argument("--annotator", required=True, type=Path, help="Annotator output TSV")
    parser.add_argument("--references", required=True, type=Path, help="Reference/subtype table TSV")
    parser.add_argument("--qc-config", type=Path, help="QC threshold document (default: $VIRAQC_QC_CONFIG)")
    parser.add_argument("--platform", choices=PLATFORMS, help="Sequencing platform (default: $VIRAQC_PLATFORM)")
    parser.add_argument(
        "--virus",
        choices=[v.value for v in Virus],
        help="Virus assumed for references that do not identify one (default: $VIRAQC_VIRUS)",
    )
    parser.add_argument("--run-id", help="Run identifier for output names (default: $VIRAQC_RUN_ID)")
    parser.add_argument("--threads", type=int, help="Worker threads (default: $VIRAQC_THREADS)")
    parser.add_argument("-o", "--outdir", type=Path, default=Path("."), help="Output directory")
    parser.add_argument("--log-file", type=Path, help="Also write the log to this file")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug output")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def write_outputs(result: PartitionedResult, outdir: Path) -> Dict[str, Path]:
    """Write the summary CSV and the four FASTA buckets.

    Returns:
        Mapping of output name to written path
    """
    outdir.mkdir(parents=True, exist_ok=True)
    written: Dict[str, Path] = {}

    summary_path = outdir / f"{result.run_id}_summary.csv"
    result.summary_frame().to_csv(summary_path, index=False)
    written["summary"] = summary_path

    for bucket, filename in result.fasta_filenames().items():
        path = outdir / filename
        SeqIO.write(result.seq_records(bucket), str(path), "fasta")
        written[bucket] = path

    return written


def summarize_main(argv: Optional[List[str]] = None) -> int:
    """Entry point for the viraqc-summarize command."""
    args = build_parser().parse_args(argv)

    config = get_config()
    if args.qc_config:
        config.qc_config = args.qc_config
    if args.platform:
        config.platform = args.platform
    if args.virus:
        config.virus = args.virus
    if args.run_id:
        config.run_id = args.run_id
    if args.threads is not None:
        config.threads = args.threads
    if args.log_file:
        config.log_file = args.log_file

    logger = setup_logging("viraqc", log_file=config.log_file, verbose=args.verbose)
    logger.info(f"viraqc-summarize {__version__}")

    is_valid, errors = config.validate()
    ok, input_errors, input_warnings = validate_run_inputs(
        args.samplesheet, args.assembler_dir, args.annotator, args.references
    )
    for warning in input_warnings:
        logger.warning(warning)
    errors.extend(input_errors)
    if errors:
        logger.error("Cannot start run:")
        for error in errors:
            logger.error(f"  - {error}")
        return 1

    try:
        result = run_pipeline(
            samplesheet=args.samplesheet,
            assembler_dir=args.assembler_dir,
            annotator_path=args.annotator,
            reference_table_path=args.references,
            qc_config=config.qc_config,
            platform=config.platform,
            run_id=config.run_id,
            threads=config.threads,
            default_virus=config.default_virus,
        )
    except ViraQCError as e:
        logger.error(f"Run failed, no outputs written: {e}")
        return 1

    written = write_outputs(result, args.outdir)
    for name, path in written.items():
        logger.info(f"Wrote {name}: {path}")

    passed, failed = result.sample_counts()
    logger.info(f"{passed} sample(s) passed, {failed} failed; {result.warnings.summary()}")
    return 0


def main() -> None:
    sys.exit(summarize_main())


if __name__ == "__main__":
    main()
