"""Tests for the validation module."""

from viraqc.qc.ingest import ANNOTATOR_COLUMNS
from viraqc.validation import (
    validate_assembler_dir,
    validate_run_inputs,
    validate_samplesheet,
    validate_tsv_header,
)


class TestValidateTsvHeader:
    """Tests for validate_tsv_header."""

    def test_valid(self, tmp_path):
        path = tmp_path / "table.tsv"
        path.write_text("a\tb\n1\t2\n")

        is_valid, errors, warnings = validate_tsv_header(path, ("a", "b"))

        assert is_valid
        assert errors == []
        assert warnings == []

    def test_missing_column(self, tmp_path):
        path = tmp_path / "table.tsv"
        path.write_text("a\n1\n")

        is_valid, errors, warnings = validate_tsv_header(path, ("a", "b"), "annotator output")

        assert not is_valid
        assert errors == ["annotator output header missing column(s): b"]

    def test_extra_column_warns(self, tmp_path):
        path = tmp_path / "table.tsv"
        path.write_text("a\tb\tc\n")

        is_valid, errors, warnings = validate_tsv_header(path, ("a", "b"))

        assert is_valid
        assert len(warnings) == 1

    def test_missing_file(self, tmp_path):
        is_valid, errors, _ = validate_tsv_header(tmp_path / "missing.tsv", ANNOTATOR_COLUMNS)
        assert not is_valid
        assert "not found" in errors[0]

    def test_empty_file(self, tmp_path):
        path = tmp_path / "table.tsv"
        path.write_text("\n")
        is_valid, errors, _ = validate_tsv_header(path, ("a",))
        assert not is_valid
        assert "empty" in errors[0]


class TestValidateSamplesheet:
    """Tests for validate_samplesheet."""

    def test_valid(self, run_inputs):
        is_valid, errors, warnings = validate_samplesheet(run_inputs["samplesheet"])
        assert is_valid
        assert errors == []

    def test_duplicates(self, tmp_path):
        path = tmp_path / "samplesheet.csv"
        path.write_text("Sample ID\ns1\ns1\n")

        is_valid, errors, _ = validate_samplesheet(path)

        assert not is_valid
        assert errors == ["Duplicate sample ID: s1"]

    def test_missing_column(self, tmp_path):
        path = tmp_path / "samplesheet.csv"
        path.write_text("Name\ns1\n")

        is_valid, errors, _ = validate_samplesheet(path)

        assert not is_valid

    def test_blank_ids_warn(self, tmp_path):
        path = tmp_path / "samplesheet.csv"
        path.write_text("Sample ID,Sample Type\ns1,Test\n,Test\n")

        is_valid, errors, warnings = validate_samplesheet(path)

        assert is_valid
        assert len(warnings) == 1

    def test_extra_field_row_warns(self, tmp_path):
        path = tmp_path / "samplesheet.csv"
        path.write_text("Sample ID,Sample Type\ns1,Test\ns2,Test,extra\ns3,Test\n")

        is_valid, errors, warnings = validate_samplesheet(path)

        assert is_valid
        assert errors == []
        assert len(warnings) == 1
        assert "too many fields" in warnings[0]

    def test_empty_file(self, tmp_path):
        path = tmp_path / "samplesheet.csv"
        path.write_text("")

        is_valid, errors, _ = validate_samplesheet(path)

        assert not is_valid
        assert "empty" in errors[0]


class TestValidateAssemblerDir:
    """Tests for validate_assembler_dir."""

    def test_missing_summaries_warn(self, run_inputs):
        is_valid, errors, warnings = validate_assembler_dir(run_inputs["assembler_dir"], ["s1", "ntc1"])

        assert is_valid
        assert warnings == ["No assembler summary for sample 'ntc1'"]

    def test_missing_directory(self, tmp_path):
        is_valid, errors, _ = validate_assembler_dir(tmp_path / "missing", ["s1"])
        assert not is_valid


class TestValidateRunInputs:
    """Tests for validate_run_inputs."""

    def test_valid_run(self, run_inputs):
        is_valid, errors, warnings = validate_run_inputs(
            run_inputs["samplesheet"],
            run_inputs["assembler_dir"],
            run_inputs["annotator"],
            run_inputs["references"],
        )

        assert is_valid
        assert any("ntc1" in w for w in warnings)

    def test_collects_all_errors(self, run_inputs, tmp_path):
        is_valid, errors, _ = validate_run_inputs(
            run_inputs["samplesheet"],
            tmp_path / "missing_dir",
            tmp_path / "missing_annotator.tsv",
            run_inputs["references"],
        )

        assert not is_valid
        assert len(errors) == 2
