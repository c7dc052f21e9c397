"""
Tests for confidence summaries and review guidance.
"""

import pytest
import sys
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))


def extractions_with(**confidences):
    """Nine extractions; named biomarkers get a plausible value at the given confidence."""
    from phenoage_ocr.utils.biomarkers import BIOMARKERS, BiomarkerKey
    from phenoage_ocr.utils.extractor import BiomarkerExtraction

    result = {}
    for key in BiomarkerKey:
        if key.value in confidences:
            spec = BIOMARKERS[key]
            low, high = spec.reference_range
            result[key] = BiomarkerExtraction(
                key, (low + high) / 2, spec.canonical_unit, confidences[key.value],
                f"{spec.display_name} line", 1, 1,
            )
        else:
            result[key] = BiomarkerExtraction.missing(key)
    return result


class TestConfidenceLevel:
    """Test confidence bucketing."""

    def test_levels(self):
        from phenoage_ocr.utils.biomarkers import BiomarkerKey
        from phenoage_ocr.utils.confidence import ConfidenceLevel, confidence_level

        extractions = extractions_with(albumin=0.95, glucose=0.6, mcv=0.35, rdw=0.1)
        levels = {key: confidence_level(e) for key, e in extractions.items()}

        assert levels[BiomarkerKey.ALBUMIN] == ConfidenceLevel.HIGH
        assert levels[BiomarkerKey.GLUCOSE] == ConfidenceLevel.MEDIUM
        assert levels[BiomarkerKey.MCV] == ConfidenceLevel.LOW
        assert levels[BiomarkerKey.RDW] == ConfidenceLevel.VERY_LOW
        assert levels[BiomarkerKey.WBC] == ConfidenceLevel.MISSING

    def test_should_auto_fill(self):
        from phenoage_ocr.utils.biomarkers import BiomarkerKey
        from phenoage_ocr.utils.confidence import should_auto_fill

        extractions = extractions_with(albumin=0.9, glucose=0.4)

        assert should_auto_fill(extractions[BiomarkerKey.ALBUMIN])
        assert not should_auto_fill(extractions[BiomarkerKey.GLUCOSE])
        assert not should_auto_fill(extractions[BiomarkerKey.WBC])


class TestSummary:
    """Test result summaries."""

    def test_missing_not_listed_as_low_confidence(self):
        from phenoage_ocr.utils.biomarkers import BiomarkerKey
        from phenoage_ocr.utils.confidence import summarize_confidence

        summary = summarize_confidence(extractions_with(albumin=0.9, crp=0.3))

        assert summary.found_count == 2
        assert summary.low_confidence_biomarkers == [BiomarkerKey.CRP]
        assert BiomarkerKey.WBC in summary.missing_biomarkers
        assert BiomarkerKey.WBC not in summary.low_confidence_biomarkers
        assert len(summary.missing_biomarkers) == 7
        assert summary.average_confidence == pytest.approx(0.6)

    def test_threshold_is_configurable(self):
        from phenoage_ocr.utils.confidence import summarize_confidence

        extractions = extractions_with(albumin=0.9, crp=0.6)

        assert summarize_confidence(extractions, 0.5).low_confidence_biomarkers == []
        assert len(summarize_confidence(extractions, 0.7).low_confidence_biomarkers) == 1

    def test_excellent_quality(self):
        from phenoage_ocr.utils.biomarkers import BiomarkerKey
        from phenoage_ocr.utils.confidence import summarize_confidence

        summary = summarize_confidence(extractions_with(**{k.value: 0.95 for k in BiomarkerKey}))

        assert summary.overall_quality == "excellent"
        assert summary.high_count == 9

    def test_empty_result_is_poor(self):
        from phenoage_ocr.utils.confidence import summarize_confidence

        summary = summarize_confidence(extractions_with())

        assert summary.found_count == 0
        assert summary.average_confidence == 0.0
        assert summary.overall_quality == "poor"

    def test_to_dict(self):
        from phenoage_ocr.utils.confidence import summarize_confidence

        data = summarize_confidence(extractions_with(albumin=0.9)).to_dict()

        assert data["found_count"] == 1
        assert "albumin" not in data["missing_biomarkers"]
        assert "wbc" in data["missing_biomarkers"]


class TestExplanations:
    """Test review guidance."""

    def test_missing_biomarker(self):
        from phenoage_ocr.utils.biomarkers import BiomarkerKey
        from phenoage_ocr.utils.confidence import explain_confidence

        explanation = explain_confidence(extractions_with()[BiomarkerKey.ALP])

        assert "not found" in explanation.warnings[0]
        assert "U/L" in explanation.suggestions[0]

    def test_out_of_range_hint(self):
        """A glucose value that looks like mmol/L is pointed out."""
        from phenoage_ocr.utils.biomarkers import BiomarkerKey
        from phenoage_ocr.utils.confidence import explain_confidence
        from phenoage_ocr.utils.extractor import BiomarkerExtraction

        extraction = BiomarkerExtraction(BiomarkerKey.GLUCOSE, 5.4, "mg/dL", 0.4, "Glucose 5.4", 2, 1)
        explanation = explain_confidence(extraction)

        assert any("outside the expected range" in w for w in explanation.warnings)
        assert any("mmol/L" in s for s in explanation.suggestions)
        assert any("Glucose 5.4" in s for s in explanation.suggestions)

    def test_extraction_summary_text(self):
        from phenoage_ocr.utils.confidence import extraction_summary, summarize_confidence

        text = extraction_summary(summarize_confidence(extractions_with(albumin=0.9, crp=0.3)))

        assert text.startswith("Found 2 of 9 biomarkers, 1 need review")
        assert "White Blood Cell Count" in text

    def test_extraction_summary_nothing_found(self):
        from phenoage_ocr.utils.confidence import extraction_summary, summarize_confidence

        text = extraction_summary(summarize_confidence(extractions_with()))

        assert text.startswith("No biomarkers found")


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
