"""
Utility modules for the lab-report pipeline.
"""

from .biomarkers import BIOMARKERS, BiomarkerKey, BiomarkerSpec
from .errors import (
    ErrorCode, LabReportError, InvalidFormatError, FileTooLargeError,
    EmptyFileError, TooManyPagesError, ImageConversionError,
    BiomarkerValidationError, FieldError,
)
from .formats import FormatInfo, validate_upload, detect_from_magic_bytes, PillowImageCodec
from .ocr_text import OCROrchestrator, TesseractEngine, OCRResult, PageImage, PageText, PreprocessStrategy
from .pdf import PdfSplitter, PopplerPdfToolkit
from .extractor import BiomarkerExtractor, BiomarkerExtraction, extract_biomarkers
from .units import normalize_extraction, to_canonical, from_canonical
from .confidence import ConfidenceSummary, summarize_confidence
from .phenoage import BiomarkerInput, CalculationResult, calculate_phenoage, validate_biomarkers
from .assembler import LabReportAssembler, ExtractionResult, process_upload
from .io import read_upload, save_json, load_json

__all__ = [
    # Biomarkers
    "BIOMARKERS", "BiomarkerKey", "BiomarkerSpec",
    # Errors
    "ErrorCode", "LabReportError", "InvalidFormatError", "FileTooLargeError",
    "EmptyFileError", "TooManyPagesError", "ImageConversionError",
    "BiomarkerValidationError", "FieldError",
    # Formats
    "FormatInfo", "validate_upload", "detect_from_magic_bytes", "PillowImageCodec",
    # OCR
    "OCROrchestrator", "TesseractEngine", "OCRResult", "PageImage", "PageText", "PreprocessStrategy",
    "PdfSplitter", "PopplerPdfToolkit",
    # Extraction
    "BiomarkerExtractor", "BiomarkerExtraction", "extract_biomarkers",
    "normalize_extraction", "to_canonical", "from_canonical",
    "ConfidenceSummary", "summarize_confidence",
    # Calculator
    "BiomarkerInput", "CalculationResult", "calculate_phenoage", "validate_biomarkers",
    # Assembly
    "LabReportAssembler", "ExtractionResult", "process_upload",
    # IO
    "read_upload", "save_json", "load_json",
]
