"""
Configuration and constants for the lab-report extraction pipeline.

This module provides:
- Logging setup for the package
- Upload, PDF, OCR and extraction settings
- Environment variable overrides
"""

import os
from dataclasses import dataclass, field
from typing import Optional
import logging

# ============================================================================
# Logging Configuration
# ============================================================================

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

logger = logging.getLogger("phenoage_ocr")


def setup_logging(level: int = logging.INFO) -> None:
    """Configure root logging with the package format."""
    logging.basicConfig(level=level, format=LOG_FORMAT)
    logger.setLevel(level)


# ============================================================================
# Processing Configuration
# ============================================================================

MB = 1024 * 1024


@dataclass
class UploadConfig:
    """Upload validation configuration."""
    max_file_size_bytes: int = 10 * MB


@dataclass
class PdfConfig:
    """PDF splitting configuration."""
    # Pages beyond this cap are dropped with a processing note
    max_pages: int = 10
    # Documents longer than this are rejected before any OCR
    max_document_pages: int = 100
    # Fewer embedded words than this means the PDF is scanned
    min_text_words: int = 20
    render_dpi: int = 200


@dataclass
class OCRConfig:
    """OCR configuration."""
    tesseract_lang: str = "eng"
    tesseract_config: str = "--oem 3 --psm 6"
    max_workers: int = 4
    # Upscale images whose height is below this before recognition
    min_image_height: int = 1000
    # Retry with other preprocessing strategies below target_confidence
    fallback_enabled: bool = True
    target_confidence: float = 0.85


@dataclass
class ConfidenceWeights:
    """Weights of the three candidate scoring factors (sum to 1.0)."""
    label: float = 0.4
    unit: float = 0.25
    range: float = 0.35

    # Label specificity scores
    full_name: float = 1.0
    abbreviation: float = 0.8
    weak_abbreviation: float = 0.5
    fuzzy_name: float = 0.6

    # Unit placement scores
    unit_adjacent: float = 1.0
    unit_on_line: float = 0.6
    unit_absent: float = 0.2

    # Plausibility scores
    in_bounds: float = 1.0
    near_bounds: float = 0.5
    out_of_bounds: float = 0.1


@dataclass
class ExtractionConfig:
    """Biomarker extraction and scoring configuration."""
    weights: ConfidenceWeights = field(default_factory=ConfidenceWeights)
    low_confidence_threshold: float = 0.5
    # Multiplier applied after converting a known alternate unit
    conversion_certainty: float = 0.9
    # Multiplier applied when the unit is missing or unrecognized
    ambiguous_unit_penalty: float = 0.7
    # Minimum rapidfuzz ratio for a misspelled label to count
    fuzzy_threshold: float = 85.0


@dataclass
class PipelineConfig:
    """Main pipeline configuration."""
    upload: UploadConfig = field(default_factory=UploadConfig)
    pdf: PdfConfig = field(default_factory=PdfConfig)
    ocr: OCRConfig = field(default_factory=OCRConfig)
    extraction: ExtractionConfig = field(default_factory=ExtractionConfig)

    # Global settings
    timeout_seconds: Optional[float] = None  # None = no deadline
    debug_mode: bool = False


# ============================================================================
# Default Configuration Instance
# ============================================================================

def get_config() -> PipelineConfig:
    """Get the default pipeline configuration with environment overrides."""
    config = PipelineConfig()

    # Override from environment variables
    if os.environ.get("PHENOAGE_OCR_MAX_FILE_MB"):
        config.upload.max_file_size_bytes = int(
            float(os.environ["PHENOAGE_OCR_MAX_FILE_MB"]) * MB
        )

    if os.environ.get("PHENOAGE_OCR_MAX_PAGES"):
        config.pdf.max_pages = int(os.environ["PHENOAGE_OCR_MAX_PAGES"])

    if os.environ.get("PHENOAGE_OCR_LOW_CONFIDENCE"):
        config.extraction.low_confidence_threshold = float(
            os.environ["PHENOAGE_OCR_LOW_CONFIDENCE"]
        )

    if os.environ.get("PHENOAGE_OCR_WORKERS"):
        config.ocr.max_workers = int(os.environ["PHENOAGE_OCR_WORKERS"])

    if os.environ.get("PHENOAGE_OCR_TIMEOUT"):
        config.timeout_seconds = float(os.environ["PHENOAGE_OCR_TIMEOUT"])

    if os.environ.get("PHENOAGE_OCR_TESSERACT_LANG"):
        config.ocr.tesseract_lang = os.environ["PHENOAGE_OCR_TESSERACT_LANG"]

    if os.environ.get("PHENOAGE_OCR_DEBUG", "").lower() == "true":
        config.debug_mode = True

    return config


# ============================================================================
# JSON Schema Version
# ============================================================================

JSON_SCHEMA_VERSION = "1.0"
