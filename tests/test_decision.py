"""Tests for the QC decision rules."""

import pytest

from viraqc.errors import ConfigurationError
from viraqc.qc.decision import (
    Rules,
    apply_rules,
    evaluate_metrics,
    evaluate_sample,
    negative_control_statement,
    profile_key_for,
)
from viraqc.qc.models import (
    AssembledSequence,
    Influenza,
    QCVerdict,
    SampleMetrics,
    SampleSheet,
    SampleSheetEntry,
    SARSCoV2,
    SequenceType,
    StopCodonPolicy,
    Virus,
)
from viraqc.qc.thresholds import QCThresholds, parse_qc_document

THRESHOLDS = QCThresholds(
    min_median_coverage=50,
    min_reference_coverage_pct=90,
    max_minor_variants=10,
    minor_variant_freq_cutoff=0.05,
)


def segment(**overrides):
    values = dict(
        sample_id="s1",
        reference_name="A_HA_H3",
        profile=Influenza(segment="HA"),
        total_reads=1000,
        pass_qc_reads=900,
        mapped_reads=400,
        coverage_pct=95.0,
        median_coverage=60.0,
        minor_variant_count=3,
    )
    values.update(overrides)
    return SampleMetrics(**values)


def sequence(name, segment_name, sequence_type=SequenceType.NUCLEOTIDE):
    return AssembledSequence(
        sample_id="s1", name=name, sequence="ACGT", sequence_type=sequence_type, segment=segment_name
    )


class TestRules:
    """Tests for the rule registry."""

    def test_all_rules_registered(self):
        reasons = {rule.reason for rule in Rules.get_all()}
        assert reasons == {
            "no data",
            "low median coverage",
            "insufficient reference coverage",
            "excessive minor variants",
            "premature stop codon",
            "insufficient spike coverage",
            "low spike median coverage",
        }

    def test_lookup(self):
        assert Rules.get_by_code("LOW_MED_COV") is Rules.LOW_MEDIAN_COVERAGE
        assert Rules.get_by_reason("premature stop codon") is Rules.PREMATURE_STOP
        assert Rules.get_by_code("NOPE") is None


class TestApplyRules:
    """Tests for apply_rules."""

    def test_pass(self):
        """95% covered, median 60, 3 minor variants, no stop codon."""
        verdict = apply_rules(segment(), THRESHOLDS)

        assert verdict.passed
        assert verdict.reasons == ()
        assert verdict.statement == "Pass"

    def test_low_median_only(self):
        verdict = apply_rules(segment(median_coverage=40.0), THRESHOLDS)

        assert not verdict.passed
        assert verdict.reasons == ("low median coverage",)
        assert verdict.statement == "Median coverage < 50"

    def test_all_failures_recorded(self):
        verdict = apply_rules(
            segment(
                median_coverage=10.0,
                coverage_pct=50.0,
                minor_variant_count=11,
                premature_stop_proteins=("HA",),
            ),
            THRESHOLDS,
        )

        assert verdict.reasons == (
            "low median coverage",
            "insufficient reference coverage",
            "excessive minor variants",
            "premature stop codon",
        )
        assert verdict.statement == (
            "Median coverage < 50;Less than 90% of reference covered;"
            "Count of minor variants at or over 5% > 10;Premature stop codon 'HA'"
        )

    def test_minor_variants_at_maximum_pass(self):
        assert apply_rules(segment(minor_variant_count=10), THRESHOLDS).passed

    def test_missing_values_fail(self):
        verdict = apply_rules(segment(median_coverage=None, coverage_pct=None), THRESHOLDS)
        assert "low median coverage" in verdict.reasons
        assert "insufficient reference coverage" in verdict.reasons

    def test_no_data(self):
        verdict = apply_rules(SampleMetrics(sample_id="s1", reference_name="Undetermined", no_data=True), THRESHOLDS)
        assert verdict.reasons == ("no data",)


class TestStopCodonPolicy:
    """The same premature stop fails under strict and passes when tolerated."""

    def test_strict_fails(self):
        verdict = apply_rules(segment(premature_stop_proteins=("HA",)), THRESHOLDS)
        assert verdict.reasons == ("premature stop codon",)

    def test_tolerant_passes(self):
        thresholds = QCThresholds(stop_codon_policy=StopCodonPolicy.TOLERANT)
        assert apply_rules(segment(premature_stop_proteins=("HA",)), thresholds).passed

    def test_tolerant_per_protein(self):
        thresholds = QCThresholds(
            stop_codon_policy=StopCodonPolicy.TOLERANT_PER_PROTEIN,
            stop_codon_tolerant_proteins=("HA",),
        )
        assert apply_rules(segment(premature_stop_proteins=("HA",)), thresholds).passed

        verdict = apply_rules(segment(premature_stop_proteins=("HA", "NS1")), thresholds)
        assert verdict.details == ("Premature stop codon 'NS1'",)


class TestSpikeRules:
    """Tests for SARS-CoV-2 spike rules."""

    def sc2(self, **overrides):
        return segment(reference_name="SARS-CoV-2", profile=SARSCoV2(), **overrides)

    def test_spike_rules_off_by_default(self):
        assert apply_rules(self.sc2(spike_coverage_pct=10.0, spike_median_coverage=1.0), THRESHOLDS).passed

    def test_spike_rules(self):
        thresholds = QCThresholds(min_spike_coverage_pct=90.0, min_spike_median_coverage=20.0)

        verdict = apply_rules(self.sc2(spike_coverage_pct=80.0, spike_median_coverage=10.0), thresholds)

        assert verdict.reasons == ("insufficient spike coverage", "low spike median coverage")

    def test_spike_rules_ignore_other_viruses(self):
        thresholds = QCThresholds(min_spike_coverage_pct=90.0)
        assert apply_rules(segment(), thresholds).passed


class TestProfileSelection:
    """Tests for profile_key_for and evaluate_metrics."""

    def test_profile_from_metrics(self):
        config = parse_qc_document({"illumina-flu": {}})
        assert profile_key_for(config, "illumina", segment()) == "illumina-flu"

    def test_default_virus(self):
        config = parse_qc_document({"ont-rsv": {}})
        assert profile_key_for(config, "ont", segment(profile=None), default_virus=Virus.RSV) == "ont-rsv"
        assert profile_key_for(config, "ont", segment(profile=None)) is None

    def test_spike_profile(self):
        config = parse_qc_document({"ont-sc2": {}, "ont-sc2-spike": {}})
        sc2 = segment(profile=SARSCoV2())
        assert profile_key_for(config, "ont", sc2, spike=True) == "ont-sc2-spike"
        assert profile_key_for(config, "ont", sc2) == "ont-sc2"

    def test_subtype_override_applied(self):
        config = parse_qc_document(
            {"illumina-flu": {"med_cov": 50, "subtype_overrides": {"A/H5N1": {"med_cov": 100}}}}
        )
        assert evaluate_metrics(segment(subtype="A/H3N2"), config, "illumina-flu").passed
        assert not evaluate_metrics(segment(subtype="A/H5N1"), config, "illumina-flu").passed

    def test_unknown_profile(self):
        config = parse_qc_document({"illumina-flu": {}})
        with pytest.raises(ConfigurationError):
            evaluate_metrics(segment(), config, "ont-flu")


class TestEvaluateSample:
    """Tests for sample- and sequence-level verdicts."""

    def setup_method(self):
        self.config = parse_qc_document({"illumina-flu": {"med_cov": 50, "perc_ref_covered": 90}})

    def test_segments_independent(self):
        metrics = [segment(), segment(reference_name="A_NA_N2", profile=Influenza(segment="NA"), median_coverage=5.0)]
        sequences = [sequence("s1|A_HA_H3", "A_HA_H3"), sequence("s1|A_NA_N2", "A_NA_N2")]

        verdicts = evaluate_sample(metrics, sequences, self.config, "illumina")

        assert verdicts.segments["A_HA_H3"].passed
        assert not verdicts.segments["A_NA_N2"].passed
        assert verdicts.sequences[sequences[0].key].passed
        assert not verdicts.sequences[sequences[1].key].passed
        assert not verdicts.sample.passed
        assert verdicts.sample.reasons == ("low median coverage",)

    def test_amino_acid_sequence_follows_segment(self):
        aa = sequence("s1_4|HK4801|HA", "A_HA_H3", SequenceType.AMINO_ACID)

        verdicts = evaluate_sample([segment()], [aa], self.config, "illumina")

        assert verdicts.sequences[aa.key].passed
        assert verdicts.sample.passed

    def test_sequence_without_segment_fails(self):
        orphan = sequence("s1|A_PB2", "A_PB2")

        verdicts = evaluate_sample([segment()], [orphan], self.config, "illumina")

        assert not verdicts.sequences[orphan.key].passed
        assert not verdicts.sample.passed


class TestQCVerdict:
    """Tests for QCVerdict helpers."""

    def test_combine_dedupes(self):
        a = QCVerdict.from_findings([("low median coverage", "Median coverage < 50")])
        b = QCVerdict.from_findings([("low median coverage", "Median coverage < 50"), ("no data", "x")])

        combined = QCVerdict.combine([QCVerdict.passing(), a, b])

        assert combined.reasons == ("low median coverage", "no data")

    def test_combine_keeps_distinct_details(self):
        ha = QCVerdict.from_findings([("premature stop codon", "Premature stop codon 'HA'")])
        na = QCVerdict.from_findings([("premature stop codon", "Premature stop codon 'NA'")])

        combined = QCVerdict.combine([ha, na])

        assert combined.details == ("Premature stop codon 'HA'", "Premature stop codon 'NA'")
        assert combined.statement == "Premature stop codon 'HA';Premature stop codon 'NA'"

    def test_combine_all_passing(self):
        assert QCVerdict.combine([QCVerdict.passing(), QCVerdict.passing()]).passed


class TestNegativeControls:
    """Tests for negative_control_statement."""

    def test_split(self):
        sheet = SampleSheet(
            entries=[
                SampleSheetEntry("s1", "Test"),
                SampleSheetEntry("ntc1", "Negative Control"),
                SampleSheetEntry("ntc2", "NTC"),
            ]
        )

        statement = negative_control_statement(
            sheet, {"s1": 90.0, "ntc1": 0.5, "ntc2": 12.0}, QCThresholds(negative_control_perc=10)
        )

        assert statement == {"passes QC": {"ntc1": 0.5}, "FAILS QC": {"ntc2": 12.0}}

    def test_compatibility_keys_do_not_change_statement(self):
        sheet = SampleSheet(entries=[SampleSheetEntry("ntc1", "Negative Control")])
        thresholds = QCThresholds(negative_control_perc=10, negative_control_perc_exception=50, positive_control_minimum=99)

        statement = negative_control_statement(sheet, {"ntc1": 12.0}, thresholds)

        assert statement == {"passes QC": {}, "FAILS QC": {"ntc1": 12.0}}
