"""
Tests for the command-line interface and configuration.
"""

import pytest
import sys
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))


CALCULATE_ARGS = [
    "calculate", "--age", "53",
    "--albumin", "4.9", "--creatinine", "0.85", "--glucose", "78",
    "--crp", "0.02", "--lymphocyte-percent", "38", "--mcv", "85",
    "--rdw", "11.8", "--alp", "48", "--wbc", "4.8",
]


class TestConfig:
    """Test environment overrides."""

    def test_defaults(self, monkeypatch):
        from phenoage_ocr.config import MB, get_config

        for name in ("MAX_FILE_MB", "MAX_PAGES", "LOW_CONFIDENCE", "WORKERS", "TIMEOUT", "DEBUG"):
            monkeypatch.delenv(f"PHENOAGE_OCR_{name}", raising=False)

        config = get_config()

        assert config.upload.max_file_size_bytes == 10 * MB
        assert config.pdf.max_pages == 10
        assert config.extraction.low_confidence_threshold == 0.5
        assert config.timeout_seconds is None
        assert config.debug_mode is False

    def test_environment_overrides(self, monkeypatch):
        from phenoage_ocr.config import MB, get_config

        monkeypatch.setenv("PHENOAGE_OCR_MAX_FILE_MB", "2.5")
        monkeypatch.setenv("PHENOAGE_OCR_MAX_PAGES", "3")
        monkeypatch.setenv("PHENOAGE_OCR_LOW_CONFIDENCE", "0.7")
        monkeypatch.setenv("PHENOAGE_OCR_TIMEOUT", "30")
        monkeypatch.setenv("PHENOAGE_OCR_TESSERACT_LANG", "eng+deu")
        monkeypatch.setenv("PHENOAGE_OCR_DEBUG", "true")

        config = get_config()

        assert config.upload.max_file_size_bytes == int(2.5 * MB)
        assert config.pdf.max_pages == 3
        assert config.extraction.low_confidence_threshold == 0.7
        assert config.timeout_seconds == 30.0
        assert config.ocr.tesseract_lang == "eng+deu"
        assert config.debug_mode is True

    def test_weights_sum_to_one(self):
        from phenoage_ocr.config import ConfidenceWeights

        weights = ConfidenceWeights()

        assert weights.label + weights.unit + weights.range == pytest.approx(1.0)


class TestErrors:
    """Test the error taxonomy."""

    def test_every_code_has_info(self):
        from phenoage_ocr.utils.errors import ERROR_INFO, ErrorCode

        assert set(ERROR_INFO) == set(ErrorCode)

    def test_lab_report_error(self):
        from phenoage_ocr.utils.errors import ErrorCode, FileTooLargeError

        error = FileTooLargeError("12.0 MB exceeds the 10 MB limit")

        assert error.code == ErrorCode.FILE_TOO_LARGE
        assert str(error) == "FileTooLarge: 12.0 MB exceeds the 10 MB limit"
        assert error.retryable is False
        assert error.to_dict()["suggestion"]

    def test_classify_exception(self):
        from phenoage_ocr.utils.errors import ErrorCode, TooManyPagesError, classify_exception

        assert classify_exception(TooManyPagesError("x")) == ErrorCode.TOO_MANY_PAGES
        assert classify_exception(TimeoutError()) == ErrorCode.EXTRACTION_TIMEOUT
        assert classify_exception(RuntimeError("Poppler is not installed")) == ErrorCode.PDF_CONVERSION_FAILED
        assert classify_exception(RuntimeError("Tesseract OCR failed")) == ErrorCode.OCR_ENGINE_FAILED
        assert classify_exception(KeyError("boom")) == ErrorCode.UNKNOWN


class TestCLI:
    """Test command-line entry points."""

    def test_calculate(self, capsys):
        from phenoage_ocr.cli import main

        assert main(CALCULATE_ARGS) == 0

        out = capsys.readouterr().out
        assert "Biological age:" in out
        assert "Pace of aging:" in out

    def test_calculate_rejects_out_of_range(self):
        from phenoage_ocr.cli import main

        args = list(CALCULATE_ARGS)
        args[args.index("--glucose") + 1] = "500"

        assert main(args) == 1

    def test_calculate_requires_all_biomarkers(self):
        from phenoage_ocr.cli import main

        with pytest.raises(SystemExit):
            main(["calculate", "--age", "50", "--albumin", "4.5"])

    def test_build_config_overrides(self):
        from phenoage_ocr.cli import build_config, setup_argparser

        args = setup_argparser().parse_args([
            "extract", "--input", "report.pdf",
            "--max-pages", "4", "--max-size-mb", "5", "--workers", "2", "--timeout", "45",
        ])
        config = build_config(args)

        assert config.pdf.max_pages == 4
        assert config.upload.max_file_size_bytes == 5 * 1024 * 1024
        assert config.ocr.max_workers == 2
        assert config.timeout_seconds == 45.0

    def test_extract_without_tesseract_binary(self, monkeypatch):
        """Extraction is not refused up front when only the OCR binary is missing."""
        try:
            import pytesseract
        except ImportError:
            pytest.skip("pytesseract not installed")
        from phenoage_ocr import cli

        def no_tesseract():
            raise EnvironmentError("tesseract is not installed or it's not in your PATH")

        monkeypatch.setattr(pytesseract, "get_tesseract_version", no_tesseract)
        monkeypatch.setattr(cli, "run_extract", lambda args: 0)

        assert cli.check_dependencies() is False
        assert cli.check_dependencies(system_tools=False) is True
        assert cli.main(["extract", "--input", "portal_export.pdf"]) == 0

    def test_calculate_flag_requires_age(self, tmp_path):
        from phenoage_ocr.cli import run_extract, setup_argparser

        report = tmp_path / "report.png"
        report.write_bytes(b"\x89PNG\r\n\x1a\n")
        args = setup_argparser().parse_args(["extract", "--input", str(report), "--calculate"])

        assert run_extract(args) == 2


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
