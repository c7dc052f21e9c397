"""
Confidence aggregation and review guidance for extraction results.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List

from .biomarkers import BIOMARKERS, BiomarkerKey
from .extractor import BiomarkerExtraction
from .units import detect_unit_from_value, is_canonical_unit

logger = logging.getLogger(__name__)

HIGH_CONFIDENCE = 0.8
MEDIUM_CONFIDENCE = 0.5
LOW_CONFIDENCE = 0.3


class ConfidenceLevel(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    VERY_LOW = "very_low"
    MISSING = "missing"


def confidence_level(extraction: BiomarkerExtraction) -> ConfidenceLevel:
    """Bucket an extraction's confidence."""
    if not extraction.found:
        return ConfidenceLevel.MISSING
    if extraction.confidence >= HIGH_CONFIDENCE:
        return ConfidenceLevel.HIGH
    if extraction.confidence >= MEDIUM_CONFIDENCE:
        return ConfidenceLevel.MEDIUM
    if extraction.confidence >= LOW_CONFIDENCE:
        return ConfidenceLevel.LOW
    return ConfidenceLevel.VERY_LOW


def should_auto_fill(extraction: BiomarkerExtraction) -> bool:
    """Values at medium confidence or better can pre-fill a review form."""
    return extraction.found and extraction.confidence >= MEDIUM_CONFIDENCE


# ============================================================================
# Summary
# ============================================================================

@dataclass
class ConfidenceSummary:
    """Aggregate quality of one extraction result."""
    found_count: int
    average_confidence: float
    low_confidence_biomarkers: List[BiomarkerKey] = field(default_factory=list)
    missing_biomarkers: List[BiomarkerKey] = field(default_factory=list)
    high_count: int = 0
    medium_count: int = 0
    low_count: int = 0
    overall_quality: str = "poor"

    def to_dict(self) -> dict:
        return {
            "found_count": self.found_count,
            "average_confidence": round(self.average_confidence, 4),
            "low_confidence_biomarkers": [k.value for k in self.low_confidence_biomarkers],
            "missing_biomarkers": [k.value for k in self.missing_biomarkers],
            "high_count": self.high_count,
            "medium_count": self.medium_count,
            "low_count": self.low_count,
            "overall_quality": self.overall_quality,
        }


def summarize_confidence(
    extractions: Dict[BiomarkerKey, BiomarkerExtraction],
    low_confidence_threshold: float = 0.5,
) -> ConfidenceSummary:
    """
    Summarize an extraction map.

    The average is taken over found biomarkers only. A biomarker is listed
    as low-confidence only when it was found with confidence below
    ``low_confidence_threshold``; missing biomarkers are listed separately.

    Args:
        extractions: One extraction per biomarker
        low_confidence_threshold: Cut-off for the low-confidence list

    Returns:
        ConfidenceSummary
    """
    found = [e for e in extractions.values() if e.found]
    missing = [key for key, e in extractions.items() if not e.found]
    low = [e.biomarker for e in found if e.confidence < low_confidence_threshold]

    levels = [confidence_level(e) for e in found]
    high_count = levels.count(ConfidenceLevel.HIGH)
    medium_count = levels.count(ConfidenceLevel.MEDIUM)
    low_count = len(levels) - high_count - medium_count

    average = sum(e.confidence for e in found) / len(found) if found else 0.0

    if high_count >= 7 and len(missing) <= 1:
        quality = "excellent"
    elif high_count + medium_count >= 6 and len(missing) <= 2:
        quality = "good"
    elif high_count + medium_count >= 4:
        quality = "fair"
    else:
        quality = "poor"

    return ConfidenceSummary(
        found_count=len(found),
        average_confidence=average,
        low_confidence_biomarkers=low,
        missing_biomarkers=missing,
        high_count=high_count,
        medium_count=medium_count,
        low_count=low_count,
        overall_quality=quality,
    )


# ============================================================================
# Review Guidance
# ============================================================================

@dataclass
class ConfidenceExplanation:
    biomarker: BiomarkerKey
    level: ConfidenceLevel
    warnings: List[str] = field(default_factory=list)
    suggestions: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "biomarker": self.biomarker.value,
            "level": self.level.value,
            "warnings": self.warnings,
            "suggestions": self.suggestions,
        }


def explain_confidence(extraction: BiomarkerExtraction) -> ConfidenceExplanation:
    """Describe why an extraction may need review and what to check."""
    spec = BIOMARKERS[extraction.biomarker]
    explanation = ConfidenceExplanation(extraction.biomarker, confidence_level(extraction))

    if not extraction.found:
        explanation.warnings.append(f"{spec.display_name} was not found in the document")
        explanation.suggestions.append(
            f"Enter {spec.display_name} manually in {spec.canonical_unit}"
        )
        return explanation

    if not spec.in_bounds(extraction.value):
        low, high = spec.bounds
        explanation.warnings.append(
            f"{extraction.value:g} {spec.canonical_unit} is outside the expected "
            f"range {low:g}-{high:g}"
        )
        hint = detect_unit_from_value(spec.key, extraction.value)
        if hint and not is_canonical_unit(spec.key, hint):
            explanation.suggestions.append(f"Check whether the report uses {hint}")
        else:
            explanation.suggestions.append("Check for a misplaced decimal point")

    if explanation.level in (ConfidenceLevel.LOW, ConfidenceLevel.VERY_LOW):
        explanation.warnings.append("Low extraction confidence")
        explanation.suggestions.append(
            f"Compare with the report line: \"{extraction.source_snippet}\""
        )
    elif explanation.level == ConfidenceLevel.MEDIUM:
        explanation.suggestions.append("Verify this value against the report")

    return explanation


def extraction_summary(summary: ConfidenceSummary) -> str:
    """One-line human summary of an extraction."""
    total = len(BiomarkerKey)
    if summary.found_count == 0:
        return "No biomarkers found. Please enter values manually."
    text = f"Found {summary.found_count} of {total} biomarkers"
    if summary.low_confidence_biomarkers:
        text += f", {len(summary.low_confidence_biomarkers)} need review"
    if summary.missing_biomarkers:
        names = ", ".join(BIOMARKERS[k].display_name for k in summary.missing_biomarkers)
        text += f". Missing: {names}"
    return text + "."
