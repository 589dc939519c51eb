"""
Local medication catalog.

Read-only reference data used to validate medication codes and to resolve the
display label that is stamped onto doctor-filed attestations.
"""

from typing import List, Literal, Optional

from compliance.models import ControlledSchedule, WireModel


class MedicationCatalogItem(WireModel):
    code: str
    label: str
    category: str
    default_schedule: ControlledSchedule
    source: Literal["local"] = "local"


MEDICATION_CATALOG: List[MedicationCatalogItem] = [
    MedicationCatalogItem(
        code="amoxicillin_500mg_capsule",
        label="Amoxicillin 500mg Capsule",
        category="Antibiotic",
        default_schedule="non_controlled",
    ),
    MedicationCatalogItem(
        code="atorvastatin_20mg_tablet",
        label="Atorvastatin 20mg Tablet",
        category="Cardiovascular",
        default_schedule="non_controlled",
    ),
    MedicationCatalogItem(
        code="metformin_500mg_tablet",
        label="Metformin 500mg Tablet",
        category="Diabetes",
        default_schedule="non_controlled",
    ),
    MedicationCatalogItem(
        code="lisinopril_10mg_tablet",
        label="Lisinopril 10mg Tablet",
        category="Cardiovascular",
        default_schedule="non_controlled",
    ),
    MedicationCatalogItem(
        code="sertraline_50mg_tablet",
        label="Sertraline 50mg Tablet",
        category="Mental Health",
        default_schedule="non_controlled",
    ),
    MedicationCatalogItem(
        code="fluoxetine_20mg_capsule",
        label="Fluoxetine 20mg Capsule",
        category="Mental Health",
        default_schedule="non_controlled",
    ),
    MedicationCatalogItem(
        code="levothyroxine_50mcg_tablet",
        label="Levothyroxine 50mcg Tablet",
        category="Thyroid",
        default_schedule="non_controlled",
    ),
    MedicationCatalogItem(
        code="truvada_200_300mg_tablet",
        label="Truvada 200/300mg Tablet",
        category="HIV/PrEP",
        default_schedule="non_controlled",
    ),
    MedicationCatalogItem(
        code="testosterone_cypionate_200mg_ml",
        label="Testosterone Cypionate 200mg/mL",
        category="Hormone Therapy",
        default_schedule="schedule_iii_v",
    ),
    MedicationCatalogItem(
        code="buprenorphine_naloxone_8_2mg_film",
        label="Buprenorphine/Naloxone 8mg/2mg Film",
        category="Addiction Care",
        default_schedule="schedule_iii_v",
    ),
    MedicationCatalogItem(
        code="adderall_xr_20mg_capsule",
        label="Adderall XR 20mg Capsule",
        category="Mental Health",
        default_schedule="schedule_ii",
    ),
    MedicationCatalogItem(
        code="vyvanse_30mg_capsule",
        label="Vyvanse 30mg Capsule",
        category="Mental Health",
        default_schedule="schedule_ii",
    ),
]

DEFAULT_MEDICATION_CODE = MEDICATION_CATALOG[0].code


def get_medication_by_code(code: Optional[str]) -> Optional[MedicationCatalogItem]:
    """
    Look up a catalog entry by its code.

    Args:
        code: The medication code; surrounding whitespace is ignored

    Returns:
        MedicationCatalogItem: The entry, or None if the code is not in the catalog
    """
    if not isinstance(code, str):
        return None
    normalized = code.strip()
    for item in MEDICATION_CATALOG:
        if item.code == normalized:
            return item
    return None


def list_medication_catalog(query: Optional[str] = None) -> List[MedicationCatalogItem]:
    """List catalog entries whose code, label or category contains the query (case-insensitive)"""
    needle = (query or "").strip().lower()
    if not needle:
        return list(MEDICATION_CATALOG)
    return [
        item for item in MEDICATION_CATALOG
        if needle in item.code.lower() or needle in item.label.lower() or needle in item.category.lower()
    ]
