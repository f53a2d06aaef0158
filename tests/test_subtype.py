"""Tests for subtype and lineage inference."""

from viraqc.qc.ingest import ReferenceTable
from viraqc.qc.models import RSV, AnnotatorRecord, Influenza, SampleMetrics, SARSCoV2, VirusProfile
from viraqc.qc.subtype import (
    alignment_completeness,
    attach_subtype,
    classify_influenza,
    classify_sample,
)


def record(protein, ref, aa_aln="MKTIV", sample_id="s1"):
    return AnnotatorRecord(
        sample_id=sample_id,
        raw_id=f"{sample_id}_4",
        ctype=f"A_{protein}",
        reference_id=ref,
        protein=protein,
        aa_aln=aa_aln,
    )


def metrics(profile, sample_id="s1"):
    return [SampleMetrics(sample_id=sample_id, reference_name="ref", profile=profile)]


class TestVirusProfile:
    """Tests for VirusProfile.from_reference."""

    def test_influenza(self):
        assert VirusProfile.from_reference("A_HA_H3") == Influenza(segment="HA", flu_type="A")
        assert VirusProfile.from_reference("B_NA") == Influenza(segment="NA", flu_type="B")

    def test_rsv(self):
        assert VirusProfile.from_reference("RSV_AD") == RSV(group="A")
        assert VirusProfile.from_reference("RSV_BD") == RSV(group="B")
        assert VirusProfile.from_reference("RSV") == RSV(group="")

    def test_sc2(self):
        assert VirusProfile.from_reference("SARS-CoV-2") == SARSCoV2()

    def test_unknown(self):
        assert VirusProfile.from_reference("chrX") is None


class TestInfluenza:
    """Tests for influenza subtype calls."""

    def test_h3n2(self):
        assert classify_influenza([record("HA", "HK4801"), record("NA", "HK4801")]) == "A/H3N2"

    def test_h5n1(self):
        assert classify_influenza([record("HA", "VT1203"), record("NA", "CALI07")]) == "A/H5N1"

    def test_na_unresolved(self):
        assert classify_influenza([record("HA", "CALI07")]) == "A/H1"

    def test_both_n5_references(self):
        assert classify_influenza([record("HA", "VT1203"), record("NA", "ALASKA4733")]) == "A/H5N5"

    def test_b_lineages(self):
        assert classify_influenza([record("HA", "BRISBANE60")]) == "B/Victoria"
        assert classify_influenza([record("HA", "PHUKET3073")]) == "B/Yamagata"

    def test_no_ha(self):
        assert classify_influenza([record("NA", "HK4801")]) == "Undetermined"
        assert classify_influenza([record("HA", "UNKNOWN")]) == "Undetermined"

    def test_partial_ha_indeterminate(self):
        partial = [record("HA", "HK4801", aa_aln="MKT.."), record("NA", "HK4801")]

        assert classify_influenza(partial, min_ha_completeness_pct=100.0) == "Indeterminate"
        assert classify_influenza(partial, min_ha_completeness_pct=50.0) == "A/H3N2"

    def test_alignment_completeness(self):
        assert alignment_completeness("MKTIV") == 100.0
        assert alignment_completeness("MK-.X") == 60.0
        assert alignment_completeness("") == 0.0

    def test_deletion_is_not_missing(self):
        with_deletion = [record("HA", "HK4801", aa_aln="MK-TIV"), record("NA", "HK4801")]

        assert classify_influenza(with_deletion, min_ha_completeness_pct=100.0) == "A/H3N2"


class TestClassifySample:
    """Tests for classify_sample dispatch."""

    def test_influenza(self):
        label = classify_sample(metrics(Influenza(segment="HA")), [record("HA", "HK4801"), record("NA", "HK4801")])
        assert label == "A/H3N2"

    def test_rsv_from_reference_name(self):
        assert classify_sample(metrics(RSV(group="A")), []) == "RSV-A"

    def test_rsv_from_table(self):
        table = ReferenceTable(subtypes={"RSVB_REF": "RSV-B"})
        label = classify_sample(metrics(RSV()), [record("F", "RSVB_REF")], table)
        assert label == "RSV-B"

    def test_rsv_undetermined(self):
        assert classify_sample(metrics(RSV()), []) == "Undetermined"

    def test_sc2_from_table(self):
        table = ReferenceTable(subtypes={"WUHAN1": "XBB.1.5"})
        assert classify_sample(metrics(SARSCoV2()), [record("S", "WUHAN1")], table) == "XBB.1.5"

    def test_sc2_falls_back_to_reference_id(self):
        assert classify_sample(metrics(SARSCoV2()), [record("S", "WUHAN1")]) == "WUHAN1"

    def test_unknown_virus(self):
        assert classify_sample(metrics(None), [record("HA", "HK4801")]) == "Undetermined"

    def test_attach_subtype(self):
        tagged = attach_subtype(metrics(Influenza(segment="HA")), "A/H3N2")
        assert tagged[0].subtype == "A/H3N2"
