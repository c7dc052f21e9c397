"""
End-to-end integration tests for the lab-report pipeline.
"""

import dataclasses
import threading
import time
import pytest
import json
import sys
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))


PNG_MAGIC = b"\x89PNG\r\n\x1a\n"

FULL_REPORT = """Quest Diagnostics  Final Report
Albumin 4.9 g/dL 3.6-5.1
Creatinine 0.85 mg/dL 0.70-1.33
Glucose 78 mg/dL 65-99
Alkaline Phosphatase 48 U/L 36-130
C-Reactive Protein 0.2 mg/L <8.0
White Blood Cell Count 4.8 Thousand/uL 3.8-10.8
Lymphocytes 38 % 20-40
MCV 85 fL 80-100
RDW 11.8 % 11.0-15.0
"""


class FakeEngine:
    """OCR engine returning canned text keyed by image bytes."""

    def __init__(self, texts, failures=()):
        self.texts = texts
        self.failures = set(failures)
        self.calls = []

    def recognize(self, image_data):
        from phenoage_ocr.utils.ocr_text import OCRResult

        self.calls.append(image_data)
        if image_data in self.failures:
            raise RuntimeError("engine crashed")
        return OCRResult(text=self.texts.get(image_data, ""), confidence=0.9)


class FakeToolkit:
    """PDF toolkit serving fixed page texts and page images."""

    def __init__(self, embedded_texts, rendered=None):
        self.embedded_texts = embedded_texts
        self.rendered = rendered or {}

    def page_count(self, data):
        return len(self.embedded_texts)

    def extract_embedded_text(self, data):
        return list(self.embedded_texts)

    def render_page(self, data, page_number):
        return self.rendered[page_number]


class FakeCodec:
    def __init__(self):
        self.converted = []

    def to_canonical_bitmap(self, data, source_format):
        self.converted.append(source_format.canonical_mime_type)
        return PNG_MAGIC + b"converted"


def png(name):
    return PNG_MAGIC + name.encode()


class TestEndToEnd:
    """End-to-end integration tests."""

    @pytest.fixture
    def config(self):
        from phenoage_ocr.config import PipelineConfig
        return PipelineConfig()

    def assembler(self, config, engine, toolkit=None, codec=None):
        from phenoage_ocr.utils.assembler import LabReportAssembler
        return LabReportAssembler(
            config=config, ocr_engine=engine, pdf_toolkit=toolkit, image_codec=codec
        )

    def test_single_image(self, config):
        """A photo with one albumin line yields albumin on page 1."""
        from phenoage_ocr.utils.biomarkers import BiomarkerKey

        engine = FakeEngine({png("photo"): "Albumin 4.2 g/dL"})
        result = self.assembler(config, engine).process_upload(
            png("photo"), "image/png", "photo.png"
        )

        assert result.success is True
        assert len(result.extractions) == 9
        albumin = result.extractions[BiomarkerKey.ALBUMIN]
        assert albumin.value == 4.2
        assert albumin.unit == "g/dL"
        assert albumin.confidence > 0.5
        assert albumin.page_number == 1
        assert result.page_count == 1
        assert result.raw_text == "--- Page 1 ---\nAlbumin 4.2 g/dL"
        assert result.summary.found_count == 1

    def test_full_report_feeds_calculator(self, config):
        """All nine values are found, normalized and accepted by the calculator."""
        from phenoage_ocr.utils.biomarkers import BiomarkerKey
        from phenoage_ocr.utils.phenoage import calculate_phenoage, input_from_extraction

        engine = FakeEngine({png("report"): FULL_REPORT})
        result = self.assembler(config, engine).process_upload(
            png("report"), "image/png; charset=binary", "report.png"
        )

        assert result.success is True
        assert all(e.found for e in result.extractions.values())
        assert result.extractions[BiomarkerKey.CRP].value == pytest.approx(0.02)
        assert result.extractions[BiomarkerKey.CRP].unit == "mg/dL"
        assert result.extractions[BiomarkerKey.WBC].unit == "K/uL"

        calculation = calculate_phenoage(input_from_extraction(result.extractions, 53.0))
        assert 30.0 < calculation.pheno_age < 33.0

    def test_low_hs_crp_feeds_calculator(self, config):
        """A very low hs-CRP result survives conversion and validation."""
        from phenoage_ocr.utils.biomarkers import BiomarkerKey
        from phenoage_ocr.utils.phenoage import calculate_phenoage, input_from_extraction

        report = FULL_REPORT.replace("C-Reactive Protein 0.2 mg/L <8.0", "hs-CRP 0.05 mg/L <1.0")
        engine = FakeEngine({png("report"): report})
        result = self.assembler(config, engine).process_upload(
            png("report"), "image/png", "report.png"
        )

        crp = result.extractions[BiomarkerKey.CRP]
        assert crp.value == pytest.approx(0.005)
        assert crp.unit == "mg/dL"

        calculation = calculate_phenoage(input_from_extraction(result.extractions, 53.0))
        assert calculation.pheno_age < 33.0

    def test_best_candidate_across_pages(self, config):
        """A confident value on page 2 beats a unitless one on page 1."""
        from phenoage_ocr.utils.biomarkers import BiomarkerKey

        toolkit = FakeToolkit(["", ""], rendered={1: png("p1"), 2: png("p2")})
        engine = FakeEngine({
            png("p1"): "Albumin 4.5 g/dL\nGlucose 95",
            png("p2"): "Glucose 102 mg/dL",
        })
        result = self.assembler(config, engine, toolkit).process_upload(
            b"%PDF-1.4 scanned", "application/pdf", "labs.pdf"
        )

        glucose = result.extractions[BiomarkerKey.GLUCOSE]
        assert glucose.value == 102.0
        assert glucose.page_number == 2
        assert result.extractions[BiomarkerKey.ALBUMIN].page_number == 1
        assert result.page_count == 2
        assert "--- Page 1 ---" in result.raw_text
        assert "--- Page 2 ---" in result.raw_text

    def test_unit_conversion(self, config):
        """CRP reported in mg/L is converted to mg/dL with lower confidence."""
        from phenoage_ocr.utils.biomarkers import BiomarkerKey

        engine = FakeEngine({png("crp"): "CRP 10 mg/L"})
        result = self.assembler(config, engine).process_upload(png("crp"), "image/png", "crp.png")

        crp = result.extractions[BiomarkerKey.CRP]
        assert crp.value == pytest.approx(1.0)
        assert crp.unit == "mg/dL"
        assert crp.confidence == pytest.approx(0.828)
        assert any(n.startswith("Converted C-Reactive Protein") for n in result.notes)

    def test_no_biomarkers(self, config):
        """Text without biomarkers is not a success but still has nine entries."""
        engine = FakeEngine({png("letter"): "Dear patient,\nThank you for your visit."})
        result = self.assembler(config, engine).process_upload(
            png("letter"), "image/png", "letter.png"
        )

        assert result.success is False
        assert len(result.extractions) == 9
        assert all(e.value is None for e in result.extractions.values())
        assert any(e.startswith("NoBiomarkersFound") for e in result.errors)

    def test_blank_page(self, config):
        engine = FakeEngine({png("blank"): "   \n"})
        result = self.assembler(config, engine).process_upload(png("blank"), "image/png", None)

        assert result.success is False
        assert result.raw_text == ""
        assert any(e.startswith("NoTextDetected") for e in result.errors)

    def test_text_pdf_skips_ocr(self, config):
        from phenoage_ocr.utils.biomarkers import BiomarkerKey

        toolkit = FakeToolkit([FULL_REPORT])
        engine = FakeEngine({})
        result = self.assembler(config, engine, toolkit).process_upload(
            b"%PDF-1.7 exported", "application/pdf", "portal.pdf"
        )

        assert engine.calls == []
        assert result.success is True
        assert result.extractions[BiomarkerKey.MCV].value == 85.0

    def test_page_failure_is_not_fatal(self, config):
        from phenoage_ocr.utils.biomarkers import BiomarkerKey

        toolkit = FakeToolkit(["", ""], rendered={1: png("p1"), 2: png("p2")})
        engine = FakeEngine({png("p1"): "MCV 88 fL"}, failures={png("p2")})
        result = self.assembler(config, engine, toolkit).process_upload(
            b"%PDF-1.4 scanned", "application/pdf", "labs.pdf"
        )

        assert result.success is True
        assert result.extractions[BiomarkerKey.MCV].value == 88.0
        assert any(e.startswith("PageProcessingFailure: page 2") for e in result.errors)

    def test_exotic_format_converted(self, config):
        codec = FakeCodec()
        engine = FakeEngine({PNG_MAGIC + b"converted": "RDW 12.9 %"})
        result = self.assembler(config, engine, codec=codec).process_upload(
            b"GIF89a" + b"\x00" * 16, "image/gif", "scan.gif"
        )

        assert codec.converted == ["image/gif"]
        assert result.success is True
        assert "GIF image converted to PNG for processing" in result.notes

    def test_rejected_upload_raises(self, config):
        from phenoage_ocr.utils.errors import InvalidFormatError

        engine = FakeEngine({})
        with pytest.raises(InvalidFormatError):
            self.assembler(config, engine).process_upload(png("x"), "application/pdf", "x.pdf")
        assert engine.calls == []

    def test_timeout(self, config):
        """A page that never finishes is reported and the upload fails cleanly."""
        from phenoage_ocr.utils.ocr_text import OCRResult

        release = threading.Event()

        class SlowEngine:
            def recognize(self, image_data):
                release.wait(5)
                return OCRResult(text="Albumin 4.2 g/dL", confidence=0.9)

        try:
            result = self.assembler(config, SlowEngine()).process_upload(
                png("slow"), "image/png", "slow.png", timeout=0.2
            )
        finally:
            release.set()

        assert result.success is False
        assert any(e.startswith("ExtractionTimeout") for e in result.errors)

    def test_timeout_covers_pdf_rendering(self, config):
        """Slow page rendering counts against the upload timeout."""

        class SlowToolkit(FakeToolkit):
            def render_page(self, data, page_number):
                time.sleep(0.15)
                return super().render_page(data, page_number)

        rendered = {n: png(f"p{n}") for n in range(1, 6)}
        toolkit = SlowToolkit([""] * 5, rendered=rendered)
        engine = FakeEngine({png(f"p{n}"): "MCV 88 fL" for n in range(1, 6)})

        start = time.time()
        result = self.assembler(config, engine, toolkit).process_upload(
            b"%PDF-1.4 scanned", "application/pdf", "labs.pdf", timeout=0.2
        )

        assert time.time() - start < 0.75
        assert result.page_count == 5
        assert any(e.startswith("ExtractionTimeout: page 5") for e in result.errors)
        assert len(engine.calls) < 5

    def test_result_is_immutable(self, config):
        engine = FakeEngine({png("photo"): "Albumin 4.2 g/dL"})
        result = self.assembler(config, engine).process_upload(
            png("photo"), "image/png", "photo.png"
        )

        with pytest.raises(dataclasses.FrozenInstanceError):
            result.success = False

    def test_json_export(self, config, tmp_path):
        """Results serialize to JSON and load back."""
        from phenoage_ocr.utils.io import load_json, save_json, to_json

        engine = FakeEngine({png("photo"): "Albumin 4.2 g/dL\nWBC 6.1 10^9/L"})
        result = self.assembler(config, engine).process_upload(
            png("photo"), "image/png", "photo.png"
        )

        path = save_json(result, tmp_path / "out" / "result.json")
        data = load_json(path)

        assert data["success"] is True
        assert data["extractions"]["albumin"]["value"] == 4.2
        assert data["extractions"]["wbc"]["unit"] == "K/uL"
        assert data["extractions"]["albumin"]["auto_fill"] is True
        assert data["extractions"]["rdw"]["value"] is None
        assert data["extractions"]["rdw"]["level"] == "missing"
        assert data["schema_version"] == "1.0"
        assert data["ocr_confidence"] == pytest.approx(0.9)
        assert data["format"]["canonical_mime_type"] == "image/png"
        assert json.loads(to_json(result.to_dict()))["page_count"] == 1


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
