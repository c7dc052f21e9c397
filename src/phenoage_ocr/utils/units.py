"""
Unit normalization for extracted biomarkers.

Every biomarker has one canonical unit. Values reported in a known
alternate unit are converted by a multiplicative factor; the inverse
conversion divides by the same factor so the two are exact inverses.
"""

import logging
import re
from dataclasses import replace
from typing import Dict, List, Optional, Tuple

from .biomarkers import BIOMARKERS, BiomarkerKey, get_spec
from .errors import ErrorCode, format_error

logger = logging.getLogger(__name__)

# Confidence multipliers
CONVERSION_CERTAINTY = 0.9
AMBIGUOUS_UNIT_PENALTY = 0.7


# ============================================================================
# Unit Strings
# ============================================================================

_REPLACEMENTS = [
    ("µ", "u"), ("μ", "u"), ("×", "x"), ("⁹", "^9"), ("³", "^3"),
    ("mcmol", "umol"), ("mcg", "ug"), ("mcl", "ul"),
    ("micromol", "umol"), ("nanomol", "nmol"), ("millimol", "mmol"),
    ("gm/", "g/"), ("grams/", "g/"), ("units/", "u/"), ("unit/", "u/"),
    ("iu/", "u/"), ("/liter", "/l"), ("/litre", "/l"),
]


def normalize_unit(unit: Optional[str]) -> Optional[str]:
    """
    Reduce a unit string to the lowercase form used in conversion tables.

    "µmol/L", "umol/l" and "mcmol/L" all become "umol/l";
    "x10^9/L", "10*9/l" and "10E9/L" all become "10^9/l".

    Returns:
        Normalized unit, or None for a missing or blank unit
    """
    if unit is None:
        return None
    text = re.sub(r"\s+", "", unit.strip().lower()).rstrip(".")
    if not text:
        return None
    for old, new in _REPLACEMENTS:
        text = text.replace(old, new)
    text = re.sub(r"10[*e](\d)", r"10^\1", text)
    text = re.sub(r"^[x*]\s*(?=10\^)", "", text)
    return text


def is_known_unit(key: BiomarkerKey, unit: Optional[str]) -> bool:
    """True if the unit is the canonical unit or a convertible alternate."""
    normalized = normalize_unit(unit)
    return normalized is not None and normalized in get_spec(key).unit_factors


def is_canonical_unit(key: BiomarkerKey, unit: Optional[str]) -> bool:
    normalized = normalize_unit(unit)
    if normalized is None:
        return False
    return get_spec(key).unit_factors.get(normalized) == 1.0


# ============================================================================
# Conversion
# ============================================================================

def conversion_factor(key: BiomarkerKey, unit: Optional[str]) -> Optional[float]:
    """Factor that converts ``unit`` to the canonical unit, or None if unknown."""
    normalized = normalize_unit(unit)
    if normalized is None:
        return None
    return get_spec(key).unit_factors.get(normalized)


def to_canonical(key: BiomarkerKey, value: float, unit: str) -> float:
    """
    Convert a value into the biomarker's canonical unit.

    Raises:
        ValueError: If the unit is not known for this biomarker
    """
    factor = conversion_factor(key, unit)
    if factor is None:
        raise ValueError(f"Unknown unit '{unit}' for {BiomarkerKey(key).value}")
    return value * factor


def from_canonical(key: BiomarkerKey, value: float, unit: str) -> float:
    """
    Convert a canonical value into another known unit.

    Raises:
        ValueError: If the unit is not known for this biomarker
    """
    factor = conversion_factor(key, unit)
    if factor is None:
        raise ValueError(f"Unknown unit '{unit}' for {BiomarkerKey(key).value}")
    return value / factor


def _normalize(
    extraction,
    conversion_certainty: float = CONVERSION_CERTAINTY,
    ambiguous_unit_penalty: float = AMBIGUOUS_UNIT_PENALTY,
) -> Tuple[object, Optional[str]]:
    """
    Bring one extraction into its canonical unit.

    A canonical unit leaves the extraction untouched. A known alternate
    unit converts the value and scales confidence by ``conversion_certainty``.
    A missing or unrecognized unit keeps the value as-is, assumes the
    canonical unit and scales confidence by ``ambiguous_unit_penalty``.

    Args:
        extraction: BiomarkerExtraction to normalize
        conversion_certainty: Confidence multiplier for converted values
        ambiguous_unit_penalty: Confidence multiplier for unknown units

    Returns:
        Tuple of (new BiomarkerExtraction, processing note or None)
    """
    if extraction.value is None:
        return extraction, None

    spec = get_spec(extraction.biomarker)
    factor = conversion_factor(spec.key, extraction.unit)

    if factor == 1.0:
        if extraction.unit == spec.canonical_unit:
            return extraction, None
        return replace(extraction, unit=spec.canonical_unit), None

    if factor is not None:
        converted = extraction.value * factor
        note = (
            f"Converted {spec.display_name} from {extraction.value} {extraction.unit} "
            f"to {converted:g} {spec.canonical_unit}"
        )
        logger.debug(note)
        return replace(
            extraction,
            value=converted,
            unit=spec.canonical_unit,
            confidence=extraction.confidence * conversion_certainty,
        ), note

    detail = (
        f"{spec.display_name} unit '{extraction.unit or ''}' not recognized; "
        f"assuming {spec.canonical_unit}"
    )
    hint = detect_unit_from_value(spec.key, extraction.value)
    if hint is not None and not is_canonical_unit(spec.key, hint):
        detail += f" (value looks like {hint})"
    note = format_error(ErrorCode.CONVERSION_AMBIGUOUS, detail)
    logger.warning(note)
    return replace(
        extraction,
        unit=spec.canonical_unit,
        confidence=extraction.confidence * ambiguous_unit_penalty,
    ), note


def normalize_extraction(
    extraction,
    conversion_certainty: float = CONVERSION_CERTAINTY,
    ambiguous_unit_penalty: float = AMBIGUOUS_UNIT_PENALTY,
):
    """Return a copy of ``extraction`` expressed in its canonical unit."""
    normalized, _ = _normalize(extraction, conversion_certainty, ambiguous_unit_penalty)
    return normalized


def normalize_all(
    extractions: Dict[BiomarkerKey, object],
    conversion_certainty: float = CONVERSION_CERTAINTY,
    ambiguous_unit_penalty: float = AMBIGUOUS_UNIT_PENALTY,
) -> Tuple[Dict[BiomarkerKey, object], List[str]]:
    """
    Normalize every extraction of a result.

    Returns:
        Tuple of (normalized extractions, conversion notes)
    """
    normalized = {}
    notes = []
    for key, extraction in extractions.items():
        normalized[key], note = _normalize(
            extraction, conversion_certainty, ambiguous_unit_penalty
        )
        if note:
            notes.append(note)
    return normalized, notes


# ============================================================================
# Unit Hints
# ============================================================================

# Value ranges typical of reports written in a non-canonical unit
_ALTERNATE_RANGES = {
    BiomarkerKey.ALBUMIN: [((20.0, 60.0), "g/L")],
    BiomarkerKey.CREATININE: [((20.0, 400.0), "umol/L")],
    BiomarkerKey.GLUCOSE: [((2.0, 20.0), "mmol/L")],
    BiomarkerKey.CRP: [((5.0, 500.0), "mg/L")],
    BiomarkerKey.LYMPHOCYTE_PERCENT: [((0.05, 0.6), "ratio")],
    BiomarkerKey.RDW: [((0.1, 0.25), "ratio")],
    BiomarkerKey.ALP: [((0.3, 5.0), "ukat/L")],
    BiomarkerKey.WBC: [((2000.0, 20000.0), "cells/uL")],
}


def detect_unit_from_value(key: BiomarkerKey, value: float) -> Optional[str]:
    """
    Guess which unit a bare value was reported in.

    Only a hint for reviewers; values are never converted on this basis.

    Returns:
        The canonical unit when the value is physiologically plausible,
        a known alternate unit when it falls in that unit's typical range,
        otherwise None
    """
    spec = BIOMARKERS[BiomarkerKey(key)]
    if spec.in_bounds(value):
        return spec.canonical_unit
    for (low, high), unit in _ALTERNATE_RANGES.get(spec.key, []):
        if low <= value <= high:
            return unit
    return None
