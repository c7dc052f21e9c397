"""
Biomarker definitions.

Every biomarker the pipeline understands is one row of ``BIOMARKERS``:
label spellings used for text matching, the canonical unit with its
conversion factors, and the physiological and reference ranges. Extraction,
unit normalization, confidence scoring and the PhenoAge calculator all
iterate this table instead of special-casing individual biomarkers.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Tuple


class BiomarkerKey(str, Enum):
    """The nine PhenoAge blood biomarkers."""
    ALBUMIN = "albumin"
    CREATININE = "creatinine"
    GLUCOSE = "glucose"
    CRP = "crp"
    LYMPHOCYTE_PERCENT = "lymphocyte_percent"
    MCV = "mcv"
    RDW = "rdw"
    ALP = "alp"
    WBC = "wbc"


@dataclass(frozen=True)
class BiomarkerSpec:
    """Static description of one biomarker."""
    key: BiomarkerKey
    display_name: str
    canonical_unit: str
    # Label spellings by specificity, all lowercase
    full_names: Tuple[str, ...]
    abbreviations: Tuple[str, ...]
    weak_abbreviations: Tuple[str, ...] = ()
    # Regexes that disqualify a label when they follow it directly
    label_exclusions: Tuple[str, ...] = ()
    # Real words close enough to a label to fool fuzzy matching
    fuzzy_exclusions: Tuple[str, ...] = ()
    # Normalized unit -> factor to the canonical unit (canonical aliases are 1.0)
    unit_factors: Dict[str, float] = field(default_factory=dict)
    # Absolute physiological bounds in the canonical unit
    bounds: Tuple[float, float] = (0.0, float("inf"))
    # The lower bound itself is not a valid value (log-transformed inputs)
    low_exclusive: bool = False
    # Reference (optimal) range in the canonical unit
    reference_range: Tuple[float, float] = (0.0, float("inf"))

    @property
    def labels(self) -> Tuple[str, ...]:
        return self.full_names + self.abbreviations + self.weak_abbreviations

    def in_bounds(self, value: float) -> bool:
        low, high = self.bounds
        if self.low_exclusive:
            return low < value <= high
        return low <= value <= high


# ============================================================================
# Biomarker Table
# ============================================================================

BIOMARKERS: Dict[BiomarkerKey, BiomarkerSpec] = {
    BiomarkerKey.ALBUMIN: BiomarkerSpec(
        key=BiomarkerKey.ALBUMIN,
        display_name="Albumin",
        canonical_unit="g/dL",
        full_names=(
            "serum albumin", "plasma albumin", "total albumin", "albumin",
            "albumina", "albumine", "albúmina", "albumen",
        ),
        abbreviations=("s-albumin", "alb."),
        weak_abbreviations=("alb",),
        label_exclusions=(r"\s*/\s*glob", r"\s+globulin", r"\s*/\s*creat"),
        fuzzy_exclusions=("albumen",),
        unit_factors={"g/dl": 1.0, "g%": 1.0, "g/l": 0.1},
        bounds=(2.0, 6.0),
        reference_range=(3.5, 5.0),
    ),
    BiomarkerKey.CREATININE: BiomarkerSpec(
        key=BiomarkerKey.CREATININE,
        display_name="Creatinine",
        canonical_unit="mg/dL",
        full_names=(
            "serum creatinine", "plasma creatinine", "creatinine",
            "créatinine", "creatinina", "kreatinin", "kreatinine", "creatinin",
        ),
        abbreviations=("s-creatinine", "creat.", "creat", "crea"),
        label_exclusions=(r"\s+clearance", r"\s+kinase", r"\s*/\s*alb"),
        fuzzy_exclusions=("creatine",),
        unit_factors={
            "mg/dl": 1.0, "mg%": 1.0, "umol/l": 1 / 88.42, "mg/l": 0.1,
        },
        bounds=(0.3, 3.0),
        reference_range=(0.6, 1.2),
    ),
    BiomarkerKey.GLUCOSE: BiomarkerSpec(
        key=BiomarkerKey.GLUCOSE,
        display_name="Glucose",
        canonical_unit="mg/dL",
        full_names=(
            "fasting plasma glucose", "fasting blood glucose", "fasting blood sugar",
            "fasting glucose", "blood glucose", "plasma glucose", "serum glucose",
            "glucose", "blood sugar", "glucosa", "glukose", "glycemia",
            "glycémie", "blutzucker",
        ),
        abbreviations=("gluc", "fbs", "fbg", "fpg"),
        weak_abbreviations=("glu",),
        label_exclusions=(r",?\s+urine", r"\s*\(urine"),
        unit_factors={
            "mg/dl": 1.0, "mg%": 1.0, "mmol/l": 18.0182, "mg/l": 0.1, "g/l": 100.0,
        },
        bounds=(40.0, 300.0),
        reference_range=(70.0, 100.0),
    ),
    BiomarkerKey.CRP: BiomarkerSpec(
        key=BiomarkerKey.CRP,
        display_name="C-Reactive Protein",
        canonical_unit="mg/dL",
        full_names=(
            "high sensitivity crp", "high-sensitivity crp", "ultra-sensitive crp",
            "c-reactive protein", "c reactive protein", "creactive protein",
            "c-reaktives protein", "protéine c réactive", "proteina c reactiva",
        ),
        abbreviations=("hs-crp", "hscrp", "hs crp", "crp-hs", "crp"),
        weak_abbreviations=("pcr",),
        unit_factors={
            "mg/dl": 1.0, "mg/l": 0.1, "ug/ml": 0.1, "nmol/l": 0.0105,
        },
        bounds=(0.0, 5.0),
        low_exclusive=True,
        reference_range=(0.0, 0.3),
    ),
    BiomarkerKey.LYMPHOCYTE_PERCENT: BiomarkerSpec(
        key=BiomarkerKey.LYMPHOCYTE_PERCENT,
        display_name="Lymphocyte %",
        canonical_unit="%",
        full_names=(
            "lymphocyte percentage", "lymphocyte percent", "lymphocytes",
            "lymphocyte", "lymphozyten", "linfocitos", "lymfocyty",
        ),
        abbreviations=("lymph%", "lymph", "ly%", "lym%"),
        weak_abbreviations=("lym",),
        label_exclusions=(
            r"\s*,?\s*(?:abs|absolute|count|#)", r"\s*\(?\s*abs",
        ),
        unit_factors={"%": 1.0, "percent": 1.0, "pct": 1.0, "ratio": 100.0, "fraction": 100.0},
        bounds=(5.0, 60.0),
        reference_range=(20.0, 40.0),
    ),
    BiomarkerKey.MCV: BiomarkerSpec(
        key=BiomarkerKey.MCV,
        display_name="Mean Corpuscular Volume",
        canonical_unit="fL",
        full_names=(
            "mean corpuscular volume", "mean cell volume", "mean corp. volume",
            "mean corp vol", "corpuscular volume",
        ),
        abbreviations=("m.c.v.", "m.c.v", "mcv"),
        weak_abbreviations=("vcm",),
        unit_factors={"fl": 1.0, "femtoliters": 1.0, "femtoliter": 1.0, "um3": 1.0},
        bounds=(60.0, 120.0),
        reference_range=(80.0, 100.0),
    ),
    BiomarkerKey.RDW: BiomarkerSpec(
        key=BiomarkerKey.RDW,
        display_name="Red Cell Distribution Width",
        canonical_unit="%",
        full_names=(
            "red blood cell distribution width", "red cell distribution width",
            "erythrocyte distribution width", "rbc distribution width",
            "red cell dist width", "erythrozytenverteilungsbreite",
        ),
        abbreviations=("rdw-cv", "rdw cv", "r.d.w.", "r.d.w", "rdw"),
        weak_abbreviations=("evb",),
        label_exclusions=(r"[\s-]*sd\b",),
        unit_factors={"%": 1.0, "percent": 1.0, "pct": 1.0, "cv": 1.0, "ratio": 100.0},
        bounds=(10.0, 25.0),
        reference_range=(11.5, 14.5),
    ),
    BiomarkerKey.ALP: BiomarkerSpec(
        key=BiomarkerKey.ALP,
        display_name="Alkaline Phosphatase",
        canonical_unit="U/L",
        full_names=(
            "alkaline phosphatase", "alkalische phosphatase", "phosphatase alcaline",
            "fosfatasa alcalina", "alk phosphatase", "alkaline phos",
        ),
        abbreviations=("alk. phos.", "alk.phos", "alk phos", "alkp", "alp"),
        weak_abbreviations=("ap", "palc"),
        unit_factors={"u/l": 1.0, "ukat/l": 60.0, "nkat/l": 0.06},
        bounds=(20.0, 300.0),
        reference_range=(44.0, 147.0),
    ),
    BiomarkerKey.WBC: BiomarkerSpec(
        key=BiomarkerKey.WBC,
        display_name="White Blood Cell Count",
        canonical_unit="K/uL",
        full_names=(
            "white blood cell count", "white blood cells", "white blood cell",
            "white blood count", "white cell count", "total white count",
            "leukocyte count", "leucocyte count", "leukocytes", "leucocytes",
            "leukozyten", "leucocitos", "leukocyty", "globules blancs",
        ),
        abbreviations=("w.b.c.", "w.b.c", "total wbc", "twbc", "wbc", "wcc"),
        weak_abbreviations=("gb",),
        unit_factors={
            "k/ul": 1.0, "10^3/ul": 1.0, "10^9/l": 1.0, "thou/ul": 1.0, "thousand/ul": 1.0,
            "giga/l": 1.0, "/nl": 1.0, "10^3/mm3": 1.0,
            "cells/ul": 0.001, "/ul": 0.001, "/mm3": 0.001, "cells/mm3": 0.001,
        },
        bounds=(2.0, 20.0),
        reference_range=(4.5, 11.0),
    ),
}


def get_spec(key) -> BiomarkerSpec:
    """Look up a biomarker row by key or key string."""
    return BIOMARKERS[BiomarkerKey(key)]
