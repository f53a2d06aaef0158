"""
Subtype and lineage inference.

Labels are derived from which annotator reference each protein matched best:

- Influenza A: HA and NA reference strains map to H and N numbers
  (``A/H3N2``); influenza B HA references map to a lineage (``B/Victoria``).
- RSV: group from the assembler reference name, else the reference table.
- SARS-CoV-2: the reference table label for the matched reference, else the
  reference identifier itself.

An influenza HA call needs the HA alignment to be at least
``subtype_min_ha_completeness_pct`` complete; otherwise the sample is
"Indeterminate" rather than guessed.
"""

import logging
from dataclasses import replace
from typing import List, Optional, Sequence

from viraqc.qc.ingest import ReferenceTable
from viraqc.qc.models import (
    INDETERMINATE_SUBTYPE,
    RSV,
    UNDETERMINED_SUBTYPE,
    AnnotatorRecord,
    Influenza,
    SampleMetrics,
    SARSCoV2,
    VirusProfile,
)

logger = logging.getLogger(__name__)

# HA reference strain -> H number (or influenza B lineage code)
HA_SUBTYPES = {
    "CALI07": "H1",
    "ANNARBOR60": "H2",
    "HK4801": "H3",
    "VT1203": "H5",
    "ANHUI01": "H7",
    "BGD0994": "H9",
    "BRISBANE60": "BVIC",
    "PHUKET3073": "BYAM",
}

# NA reference strain -> N number
NA_SUBTYPES = {
    "CALI07": "N1",
    "HK4801": "N2",
    "ONTARIO6118": "N4",
    "RU1526": "N5",
    "ALASKA4733": "N5",
    "SICHUAN26221": "N6",
    "NL219": "N7",
    "ASTRAKHAN3212": "N8",
    "ANHUI01": "N9",
}

FLU_B_LINEAGES = {
    "BVIC": "B/Victoria",
    "BYAM": "B/Yamagata",
}

# In-frame deletions ('-') are real residue calls, not missing data
MISSING_RESIDUES = ".X"


def alignment_completeness(aa_aln: str) -> float:
    """Percent of aligned positions that are not missing (``.`` or ``X``)."""
    if not aa_aln:
        return 0.0
    present = sum(1 for residue in aa_aln if residue not in MISSING_RESIDUES)
    return present / len(aa_aln) * 100.0


def _first_matching(annotations: Sequence[AnnotatorRecord], protein: str, table: dict) -> Optional[AnnotatorRecord]:
    for record in annotations:
        if record.protein == protein and record.reference_id in table:
            return record
    return None


def classify_influenza(
    annotations: Sequence[AnnotatorRecord],
    min_ha_completeness_pct: float = 100.0,
) -> str:
    """Influenza subtype from the best-matching HA and NA references.

    Args:
        annotations: The sample's annotator records, one per protein
        min_ha_completeness_pct: HA alignment completeness needed for a call

    Returns:
        e.g. "A/H3N2", "A/H5" (NA unresolved), "B/Victoria", "Indeterminate",
        or "Undetermined" when no HA reference matched
    """
    ha_record = _first_matching(annotations, "HA", HA_SUBTYPES)
    if ha_record is None:
        return UNDETERMINED_SUBTYPE

    completeness = alignment_completeness(ha_record.aa_aln)
    if completeness < min_ha_completeness_pct:
        logger.debug(
            f"{ha_record.sample_id}: HA alignment {completeness:.1f}% complete, "
            f"{min_ha_completeness_pct:g}% required for a subtype call"
        )
        return INDETERMINATE_SUBTYPE

    ha = HA_SUBTYPES[ha_record.reference_id]
    if ha in FLU_B_LINEAGES:
        return FLU_B_LINEAGES[ha]

    na_record = _first_matching(annotations, "NA", NA_SUBTYPES)
    na = NA_SUBTYPES[na_record.reference_id] if na_record else ""
    return f"A/{ha}{na}"


def _rsv_label(group: str) -> Optional[str]:
    group = group.strip().upper()
    if group.startswith("RSV"):
        group = group[3:].lstrip("_-/")
    return f"RSV-{group[0]}" if group[:1] in ("A", "B") else None


def classify_rsv(
    profile: RSV,
    annotations: Sequence[AnnotatorRecord],
    reference_table: Optional[ReferenceTable] = None,
) -> str:
    """RSV group ("RSV-A"/"RSV-B") from the reference name or reference table."""
    label = _rsv_label(profile.group)
    if label:
        return label
    if reference_table is not None:
        for record in annotations:
            label = _rsv_label(reference_table.subtype_for(record.reference_id) or "")
            if label:
                return label
    return UNDETERMINED_SUBTYPE


def classify_sc2(
    annotations: Sequence[AnnotatorRecord],
    reference_table: Optional[ReferenceTable] = None,
) -> str:
    """SARS-CoV-2 label: the table subtype for the matched reference, else its ID."""
    for record in annotations:
        if not record.reference_id:
            continue
        if reference_table is not None:
            label = reference_table.subtype_for(record.reference_id)
            if label:
                return label
        return record.reference_id
    return UNDETERMINED_SUBTYPE


def sample_profile(metrics: Sequence[SampleMetrics]) -> Optional[VirusProfile]:
    """First recognised virus profile among a sample's segments."""
    for m in metrics:
        if m.profile is not None:
            return m.profile
    return None


def classify_sample(
    metrics: Sequence[SampleMetrics],
    annotations: Sequence[AnnotatorRecord],
    reference_table: Optional[ReferenceTable] = None,
    min_ha_completeness_pct: float = 100.0,
) -> str:
    """Infer the subtype label for one sample.

    Args:
        metrics: The sample's per-segment metrics
        annotations: Best annotator record per protein for the sample
        reference_table: Reference/subtype lookup
        min_ha_completeness_pct: Influenza HA completeness requirement

    Returns:
        Subtype label, "Undetermined" when nothing can be inferred
    """
    profile = sample_profile(metrics)

    if isinstance(profile, Influenza):
        return classify_influenza(annotations, min_ha_completeness_pct)
    if isinstance(profile, RSV):
        return classify_rsv(profile, annotations, reference_table)
    if isinstance(profile, SARSCoV2):
        return classify_sc2(annotations, reference_table)
    return UNDETERMINED_SUBTYPE


def attach_subtype(metrics: Sequence[SampleMetrics], subtype: str) -> List[SampleMetrics]:
    """Return copies of ``metrics`` carrying the subtype label."""
    return [replace(m, subtype=subtype) for m in metrics]
