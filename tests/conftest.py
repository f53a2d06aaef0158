"""Shared fixtures: a small influenza run written to disk."""

import sys
from pathlib import Path

import pytest

# Add src to path for viraqc imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from viraqc.qc.ingest import ANNOTATOR_COLUMNS, REFERENCE_COLUMNS, SUMMARY_COLUMNS

QC_YAML = """\
illumina-flu:
  med_cov: 50
  perc_ref_covered: 90
  minor_vars: 10
  minor_variant_freq_cutoff: 0.05
  allow_stop_codons: false
  negative_control_perc: 10
"""


def depth_string(depth: int, covered: int = 95, length: int = 100) -> str:
    return ",".join([str(depth)] * covered + ["0"] * (length - covered))


def tsv(header, rows) -> str:
    lines = ["\t".join(header)]
    lines.extend("\t".join(str(v) for v in row) for row in rows)
    return "\n".join(lines) + "\n"


def annotator_row(raw_id, ctype, ref_id, protein, aa, cds, coords):
    return [raw_id, ctype, ref_id, protein, "", aa, aa, f"{ref_id}_{protein}", "", "F", cds, cds, coords, coords]


@pytest.fixture
def run_inputs(tmp_path):
    """Samplesheet, assembler dir, annotator table, references, and QC config.

    - s1: HA and NA segments, both pass; one malformed summary row
    - s2: HA segment with median coverage 40
    - ntc1: negative control without assembler output
    - stray: assembler summary for a sample not in the samplesheet
    """
    samplesheet = tmp_path / "samplesheet.csv"
    samplesheet.write_text(
        "Sample ID,Sample Type,Platform,Experiment Type\n"
        "s1,Test,illumina,Flu\n"
        "s2,Test,illumina,Flu\n"
        "ntc1,Negative Control,illumina,Flu\n"
    )

    assembler = tmp_path / "assembler"
    assembler.mkdir()
    (assembler / "s1.summary.tsv").write_text(
        tsv(
            SUMMARY_COLUMNS,
            [
                ["A_HA_H3", 100, 1000, 900, 400, depth_string(60)],
                ["A_MP", 100, 1000],
                ["A_NA_N2", 100, 1000, 900, 300, depth_string(80)],
            ],
        )
    )
    (assembler / "s1.variants.tsv").write_text(
        tsv(
            ("Reference_Name", "Position", "Total", "Consensus_Allele", "Minority_Allele", "Minority_Frequency"),
            [
                ["A_HA_H3", 10, 60, "A", "G", 0.10],
                ["A_HA_H3", 20, 60, "C", "T", 0.07],
                ["A_HA_H3", 30, 60, "G", "A", 0.06],
                ["A_HA_H3", 40, 60, "T", "C", 0.01],
            ],
        )
    )
    (assembler / "s1.consensus.fasta").write_text(">A_HA_H3\nACGTACGTAC\n>A_NA_N2\nTTGGCCAA\n")

    (assembler / "s2.summary.tsv").write_text(
        tsv(SUMMARY_COLUMNS, [["A_HA_H3", 100, 500, 450, 200, depth_string(40)]])
    )
    (assembler / "s2.consensus.fasta").write_text(">A_HA_H3\nACGTACGTAA\n")

    (assembler / "stray.summary.tsv").write_text(
        tsv(SUMMARY_COLUMNS, [["A_HA_H3", 100, 10, 10, 10, depth_string(5)]])
    )

    annotator = tmp_path / "annotator.tsv"
    annotator.write_text(
        tsv(
            ANNOTATOR_COLUMNS,
            [
                annotator_row("s1_4", "A_HA_H3", "HK4801", "HA", "MKTIV", "ATGAAAACCATTGTT", "1..15"),
                annotator_row("s1_6", "A_NA_N2", "HK4801", "NA", "MNPNQ", "ATGAATCCAAATCAA", "1..15"),
                annotator_row("s2_4", "A_HA_H3", "HK4801", "HA", "MKTII", "ATGAAAACCATTATT", "1..15"),
            ],
        )
    )

    references = tmp_path / "references.tsv"
    references.write_text(
        tsv(
            REFERENCE_COLUMNS,
            [
                ["EPI1", "A/Hong Kong/4801/2014", "H3N2", "", "NT1", "A_HA_H3", "HK4801", "HA", "MKTII", "ATGAAAACCATTATT"],
                ["EPI1", "A/Hong Kong/4801/2014", "H3N2", "", "NT2", "A_NA_N2", "HK4801", "NA", "MNPNQ", "ATGAATCCAAATCAA"],
            ],
        )
    )

    qc_config = tmp_path / "qc.yaml"
    qc_config.write_text(QC_YAML)

    return {
        "samplesheet": samplesheet,
        "assembler_dir": assembler,
        "annotator": annotator,
        "references": references,
        "qc_config": qc_config,
    }
