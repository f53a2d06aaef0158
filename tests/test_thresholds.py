"""Tests for QC threshold configuration."""

import json

import pytest

from viraqc.errors import ConfigurationError
from viraqc.qc.models import StopCodonPolicy, Virus
from viraqc.qc.thresholds import (
    QCThresholds,
    detect_format,
    load_qc_config,
    parse_qc_document,
    parse_thresholds,
)


class TestQCThresholds:
    """Tests for QCThresholds."""

    def test_defaults(self):
        thresholds = QCThresholds()
        assert thresholds.min_median_coverage == 50.0
        assert thresholds.min_reference_coverage_pct == 90.0
        assert thresholds.max_minor_variants == 10
        assert thresholds.minor_variant_freq_cutoff == 0.05
        assert thresholds.stop_codon_policy is StopCodonPolicy.STRICT

    def test_strict_tolerates_nothing(self):
        assert not QCThresholds().tolerates_stop_codon("HA")

    def test_tolerant(self):
        thresholds = QCThresholds(stop_codon_policy=StopCodonPolicy.TOLERANT)
        assert thresholds.tolerates_stop_codon("HA")

    def test_tolerant_per_protein(self):
        thresholds = QCThresholds(
            stop_codon_policy=StopCodonPolicy.TOLERANT_PER_PROTEIN,
            stop_codon_tolerant_proteins=("PB1-F2",),
        )
        assert thresholds.tolerates_stop_codon("PB1-F2")
        assert not thresholds.tolerates_stop_codon("HA")


class TestParseThresholds:
    """Tests for parse_thresholds."""

    def test_legacy_keys(self):
        thresholds = parse_thresholds(
            "illumina-flu",
            {"med_cov": 30, "perc_ref_covered": 80, "minor_vars": 5, "med_spike_cov": 20, "perc_ref_spike_covered": 70},
        )
        assert thresholds.min_median_coverage == 30.0
        assert thresholds.min_reference_coverage_pct == 80.0
        assert thresholds.max_minor_variants == 5
        assert thresholds.min_spike_median_coverage == 20.0
        assert thresholds.min_spike_coverage_pct == 70.0

    def test_descriptive_keys(self):
        thresholds = parse_thresholds(
            "illumina-flu",
            {"min_median_coverage": 30, "stop_codon_policy": "tolerant-per-protein",
             "stop_codon_tolerant_proteins": ["NS1"]},
        )
        assert thresholds.min_median_coverage == 30.0
        assert thresholds.stop_codon_policy is StopCodonPolicy.TOLERANT_PER_PROTEIN
        assert thresholds.stop_codon_tolerant_proteins == ("NS1",)

    def test_compatibility_keys_loaded(self):
        thresholds = parse_thresholds(
            "illumina-flu",
            {"negative_control_perc_exception": 5, "positive_control_minimum": 20, "padded_consensus": True},
        )
        assert thresholds.negative_control_perc_exception == 5.0
        assert thresholds.positive_control_minimum == 20.0
        assert thresholds.padded_consensus is True

    def test_allow_stop_codons(self):
        assert parse_thresholds("p", {"allow_stop_codons": True}).stop_codon_policy is StopCodonPolicy.TOLERANT
        assert parse_thresholds("p", {"allow_stop_codons": False}).stop_codon_policy is StopCodonPolicy.STRICT

    def test_tolerant_proteins_from_string(self):
        thresholds = parse_thresholds("p", {"stop_codon_tolerant_proteins": "NS1, PB1-F2"})
        assert thresholds.stop_codon_tolerant_proteins == ("NS1", "PB1-F2")

    def test_unknown_key(self):
        with pytest.raises(ConfigurationError, match="unknown QC setting"):
            parse_thresholds("illumina-flu", {"med_coverage": 50})

    def test_non_numeric(self):
        with pytest.raises(ConfigurationError, match="numeric"):
            parse_thresholds("illumina-flu", {"med_cov": "lots"})

    def test_bool_is_not_numeric(self):
        with pytest.raises(ConfigurationError):
            parse_thresholds("illumina-flu", {"med_cov": True})

    def test_bad_policy(self):
        with pytest.raises(ConfigurationError, match="stop_codon_policy"):
            parse_thresholds("illumina-flu", {"stop_codon_policy": "lenient"})


class TestQCConfig:
    """Tests for QCConfig built from documents."""

    def test_profile_key(self):
        config = parse_qc_document({"illumina-flu": {}})
        assert config.profile_key("Illumina", Virus.FLU) == "illumina-flu"
        assert config.profile_key("ont", Virus.SC2, spike=True) == "ont-sc2-spike"

    def test_unknown_profile(self):
        config = parse_qc_document({"illumina-flu": {}})
        with pytest.raises(ConfigurationError, match="Unknown QC profile"):
            config.thresholds_for("ont-rsv")

    def test_subtype_override(self):
        config = parse_qc_document(
            {"illumina-flu": {"med_cov": 50, "subtype_overrides": {"A/H5N1": {"med_cov": 100}}}}
        )
        assert config.thresholds_for("illumina-flu").min_median_coverage == 50.0
        assert config.thresholds_for("illumina-flu", "A/H5N1").min_median_coverage == 100.0
        assert config.thresholds_for("illumina-flu", "A/H3N2").min_median_coverage == 50.0

    def test_override_inherits_base(self):
        config = parse_qc_document(
            {"illumina-flu": {"perc_ref_covered": 80, "subtype_overrides": {"A/H5N1": {"med_cov": 100}}}}
        )
        assert config.thresholds_for("illumina-flu", "A/H5N1").min_reference_coverage_pct == 80.0

    def test_empty_document(self):
        with pytest.raises(ConfigurationError):
            parse_qc_document({})

    def test_block_must_be_mapping(self):
        with pytest.raises(ConfigurationError):
            parse_qc_document({"illumina-flu": [1, 2]})


class TestLoadQCConfig:
    """Tests for load_qc_config."""

    def test_yaml(self, tmp_path):
        path = tmp_path / "qc.yaml"
        path.write_text("ont-sc2:\n  med_cov: 20\n  perc_ref_covered: 85\n")

        config = load_qc_config(path)

        assert config.thresholds_for("ont-sc2").min_median_coverage == 20.0
        assert config.source == path

    def test_json(self, tmp_path):
        path = tmp_path / "qc.json"
        path.write_text(json.dumps({"illumina-rsv": {"minor_vars": 3}}))

        config = load_qc_config(path)

        assert config.thresholds_for("illumina-rsv").max_minor_variants == 3

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationError, match="not found"):
            load_qc_config(tmp_path / "missing.yaml")

    def test_unparsable(self, tmp_path):
        path = tmp_path / "qc.json"
        path.write_text("{not json")
        with pytest.raises(ConfigurationError, match="Failed to parse"):
            load_qc_config(path)

    def test_detect_format(self):
        assert detect_format("qc.yml") == "yaml"
        assert detect_format("qc.JSON") == "json"
        with pytest.raises(ConfigurationError):
            detect_format("qc.toml")
