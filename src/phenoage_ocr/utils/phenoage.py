"""
PhenoAge biological age calculator.

Implements the phenotypic age model of Levine et al. (2018), "An epigenetic
biomarker of aging for lifespan and healthspan". Inputs are taken in the
canonical units of the biomarker table and converted to the units the
regression was fitted in (albumin g/L, creatinine umol/L, glucose mmol/L,
CRP as ln(mg/dL)).
"""

import logging
import math
from dataclasses import asdict, dataclass, fields
from typing import List

from .biomarkers import BIOMARKERS, BiomarkerKey
from .errors import BiomarkerValidationError, FieldError

logger = logging.getLogger(__name__)


# ============================================================================
# Model Constants
# ============================================================================

INTERCEPT = -19.9067
COEFFICIENTS = {
    BiomarkerKey.ALBUMIN: -0.0336,
    BiomarkerKey.CREATININE: 0.0095,
    BiomarkerKey.GLUCOSE: 0.1953,
    BiomarkerKey.CRP: 0.0954,
    BiomarkerKey.LYMPHOCYTE_PERCENT: -0.0120,
    BiomarkerKey.MCV: 0.0268,
    BiomarkerKey.RDW: 0.3306,
    BiomarkerKey.ALP: 0.00188,
    BiomarkerKey.WBC: 0.0554,
}
AGE_COEFFICIENT = 0.0804

GAMMA = 0.0076927
HORIZON_MONTHS = 120
PHENOAGE_OFFSET = 141.50225
PHENOAGE_SCALE = 0.090165
PHENOAGE_MORTALITY_FACTOR = 0.00553

AGE_BOUNDS = (18.0, 120.0)


@dataclass(frozen=True)
class BiomarkerInput:
    """Calculator input in canonical units."""
    albumin: float              # g/dL
    creatinine: float           # mg/dL
    glucose: float              # mg/dL
    crp: float                  # mg/dL
    lymphocyte_percent: float   # %
    mcv: float                  # fL
    rdw: float                  # %
    alp: float                  # U/L
    wbc: float                  # K/uL
    chronological_age: float    # years

    def biomarker_value(self, key: BiomarkerKey) -> float:
        return getattr(self, BiomarkerKey(key).value)

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class CalculationResult:
    pheno_age: float
    age_reduction: float
    pace_of_aging: float
    mortality_score: float

    def to_dict(self) -> dict:
        return asdict(self)


# ============================================================================
# Validation
# ============================================================================

def validate_biomarkers(data: BiomarkerInput) -> List[FieldError]:
    """
    Check every input against its physiological bound.

    Returns:
        One FieldError per offending field (empty when the input is valid)
    """
    errors = []
    for f in fields(data):
        value = getattr(data, f.name)
        if f.name == "chronological_age":
            low, high = AGE_BOUNDS
            label, unit = "Chronological age", "years"
            low_exclusive = False
        else:
            spec = BIOMARKERS[BiomarkerKey(f.name)]
            low, high = spec.bounds
            label, unit = spec.display_name, spec.canonical_unit
            low_exclusive = spec.low_exclusive

        if not isinstance(value, (int, float)) or not math.isfinite(value):
            errors.append(FieldError(f.name, value, f"{label} must be a finite number"))
        elif low_exclusive and value <= low:
            errors.append(FieldError(
                f.name, value, f"{label} must be greater than {low:g} {unit}"
            ))
        elif not low <= value <= high:
            errors.append(FieldError(
                f.name, value, f"{label} {value:g} {unit} is outside {low:g}-{high:g} {unit}"
            ))
    return errors


# ============================================================================
# Calculation
# ============================================================================

def _linear_predictor(data: BiomarkerInput) -> float:
    converted = {
        BiomarkerKey.ALBUMIN: data.albumin * 10.0,
        BiomarkerKey.CREATININE: data.creatinine * 88.42,
        BiomarkerKey.GLUCOSE: data.glucose / 18.0182,
        BiomarkerKey.CRP: math.log(data.crp),
        BiomarkerKey.LYMPHOCYTE_PERCENT: data.lymphocyte_percent,
        BiomarkerKey.MCV: data.mcv,
        BiomarkerKey.RDW: data.rdw,
        BiomarkerKey.ALP: data.alp,
        BiomarkerKey.WBC: data.wbc,
    }
    xb = INTERCEPT + AGE_COEFFICIENT * data.chronological_age
    for key, coefficient in COEFFICIENTS.items():
        xb += coefficient * converted[key]
    return xb


def calculate_phenoage(data: BiomarkerInput) -> CalculationResult:
    """
    Calculate PhenoAge from validated biomarkers.

    Args:
        data: Biomarkers in canonical units plus chronological age

    Returns:
        CalculationResult with PhenoAge, years gained or lost, pace of
        aging and the 10-year mortality score

    Raises:
        BiomarkerValidationError: If any input is outside its bound
    """
    errors = validate_biomarkers(data)
    if errors:
        raise BiomarkerValidationError(errors)

    xb = _linear_predictor(data)
    growth = (math.exp(HORIZON_MONTHS * GAMMA) - 1.0) / GAMMA
    log_survival = -math.exp(xb) * growth
    mortality = -math.expm1(log_survival)
    pheno_age = PHENOAGE_OFFSET + math.log(-PHENOAGE_MORTALITY_FACTOR * log_survival) / PHENOAGE_SCALE

    result = CalculationResult(
        pheno_age=pheno_age,
        age_reduction=data.chronological_age - pheno_age,
        pace_of_aging=pheno_age / data.chronological_age,
        mortality_score=mortality,
    )
    logger.info(
        f"PhenoAge {pheno_age:.1f} for chronological age {data.chronological_age:g}"
    )
    return result


def input_from_extraction(extractions, chronological_age: float) -> BiomarkerInput:
    """
    Build calculator input from extracted biomarkers.

    Args:
        extractions: Mapping of BiomarkerKey to BiomarkerExtraction in
            canonical units
        chronological_age: Age in years

    Raises:
        BiomarkerValidationError: If any biomarker was not found
    """
    missing = [
        FieldError(key.value, float("nan"), f"{BIOMARKERS[key].display_name} was not found")
        for key in BiomarkerKey
        if extractions.get(key) is None or extractions[key].value is None
    ]
    if missing:
        raise BiomarkerValidationError(missing)
    values = {key.value: extractions[key].value for key in BiomarkerKey}
    return BiomarkerInput(chronological_age=chronological_age, **values)


def biomarker_z_score(key: BiomarkerKey, value: float) -> float:
    """Distance of a value from the middle of its reference range, in half-widths."""
    low, high = BIOMARKERS[BiomarkerKey(key)].reference_range
    middle = (low + high) / 2
    half_width = (high - low) / 2
    return (value - middle) / half_width
