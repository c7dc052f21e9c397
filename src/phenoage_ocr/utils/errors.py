"""
Error taxonomy for lab-report processing.

Fatal problems (rejected uploads, oversized documents, failed image
conversion, invalid calculator input) are raised as exceptions. Non-fatal
problems (a page that failed OCR, an ambiguous unit, no biomarkers found)
are collected as "<Code>: <detail>" strings on the extraction result.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional

logger = logging.getLogger(__name__)


# ============================================================================
# Error Codes
# ============================================================================

class ErrorCode(str, Enum):
    """Stable identifiers for every failure the pipeline reports."""
    INVALID_FORMAT = "InvalidFormat"
    FILE_TOO_LARGE = "FileTooLarge"
    EMPTY_FILE = "EmptyFile"
    TOO_MANY_PAGES = "TooManyPages"
    IMAGE_CONVERSION_FAILED = "ImageConversionFailed"
    PDF_CONVERSION_FAILED = "PdfConversionFailed"
    PAGE_PROCESSING_FAILURE = "PageProcessingFailure"
    OCR_ENGINE_FAILED = "OcrEngineFailed"
    NO_TEXT_DETECTED = "NoTextDetected"
    NO_BIOMARKERS_FOUND = "NoBiomarkersFound"
    EXTRACTION_TIMEOUT = "ExtractionTimeout"
    VALIDATION_ERROR = "ValidationError"
    CONVERSION_AMBIGUOUS = "ConversionAmbiguous"
    UNKNOWN = "Unknown"


@dataclass(frozen=True)
class ErrorInfo:
    """User-facing description of an error code."""
    message: str
    suggestion: str
    retryable: bool


ERROR_INFO: Dict[ErrorCode, ErrorInfo] = {
    ErrorCode.INVALID_FORMAT: ErrorInfo(
        "This file type is not supported.",
        "Upload a PDF or an image (JPG, PNG, WebP, HEIC, TIFF, BMP, GIF, AVIF).",
        False,
    ),
    ErrorCode.FILE_TOO_LARGE: ErrorInfo(
        "The file is too large.",
        "Compress the file or upload individual pages.",
        False,
    ),
    ErrorCode.EMPTY_FILE: ErrorInfo(
        "The file is empty.",
        "Check that the file was saved correctly and upload it again.",
        False,
    ),
    ErrorCode.TOO_MANY_PAGES: ErrorInfo(
        "The document has too many pages.",
        "Upload only the pages that contain your blood test results.",
        False,
    ),
    ErrorCode.IMAGE_CONVERSION_FAILED: ErrorInfo(
        "The image could not be converted for processing.",
        "Convert the image to JPG or PNG and upload it again.",
        True,
    ),
    ErrorCode.PDF_CONVERSION_FAILED: ErrorInfo(
        "The PDF could not be converted for processing.",
        "Export the report as images, or upload a different copy of the PDF.",
        True,
    ),
    ErrorCode.PAGE_PROCESSING_FAILURE: ErrorInfo(
        "One page of the document could not be processed.",
        "The other pages were still read. Re-upload the missing page if needed.",
        True,
    ),
    ErrorCode.OCR_ENGINE_FAILED: ErrorInfo(
        "Text recognition failed.",
        "Try again, or upload a clearer image.",
        True,
    ),
    ErrorCode.NO_TEXT_DETECTED: ErrorInfo(
        "No text was found in the document.",
        "Make sure the document contains readable text and is not blank.",
        True,
    ),
    ErrorCode.NO_BIOMARKERS_FOUND: ErrorInfo(
        "No biomarker values were found.",
        "Make sure the document is a blood test report, or enter values manually.",
        True,
    ),
    ErrorCode.EXTRACTION_TIMEOUT: ErrorInfo(
        "Processing took too long.",
        "Try a smaller file or fewer pages.",
        True,
    ),
    ErrorCode.VALIDATION_ERROR: ErrorInfo(
        "Some biomarker values are outside the accepted range.",
        "Check the highlighted values against your report.",
        False,
    ),
    ErrorCode.CONVERSION_AMBIGUOUS: ErrorInfo(
        "A unit could not be identified.",
        "Verify that the value is in the expected unit.",
        False,
    ),
    ErrorCode.UNKNOWN: ErrorInfo(
        "An unexpected error occurred.",
        "Try again, or enter values manually.",
        True,
    ),
}


def format_error(code: ErrorCode, detail: str) -> str:
    """Render a non-fatal error for ``ExtractionResult.errors``."""
    return f"{code.value}: {detail}"


# ============================================================================
# Exceptions
# ============================================================================

class LabReportError(Exception):
    """Base class for fatal processing errors."""

    code: ErrorCode = ErrorCode.UNKNOWN

    def __init__(self, detail: str, code: Optional[ErrorCode] = None):
        if code is not None:
            self.code = code
        self.detail = detail
        super().__init__(format_error(self.code, detail))

    @property
    def info(self) -> ErrorInfo:
        return ERROR_INFO[self.code]

    @property
    def retryable(self) -> bool:
        return self.info.retryable

    def to_dict(self) -> dict:
        return {
            "code": self.code.value,
            "detail": self.detail,
            "message": self.info.message,
            "suggestion": self.info.suggestion,
            "retryable": self.info.retryable,
        }


class InvalidFormatError(LabReportError):
    code = ErrorCode.INVALID_FORMAT


class FileTooLargeError(LabReportError):
    code = ErrorCode.FILE_TOO_LARGE


class EmptyFileError(LabReportError):
    code = ErrorCode.EMPTY_FILE


class TooManyPagesError(LabReportError):
    code = ErrorCode.TOO_MANY_PAGES


class ImageConversionError(LabReportError):
    code = ErrorCode.IMAGE_CONVERSION_FAILED


@dataclass(frozen=True)
class FieldError:
    """A single invalid calculator input."""
    field: str
    value: float
    message: str

    def to_dict(self) -> dict:
        return {"field": self.field, "value": self.value, "message": self.message}


class BiomarkerValidationError(LabReportError):
    """Raised when calculator input is out of bounds; lists every bad field."""

    code = ErrorCode.VALIDATION_ERROR

    def __init__(self, field_errors: List[FieldError]):
        self.field_errors = list(field_errors)
        detail = "; ".join(e.message for e in self.field_errors)
        super().__init__(detail)

    @property
    def fields(self) -> List[str]:
        return [e.field for e in self.field_errors]

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["fields"] = [e.to_dict() for e in self.field_errors]
        return data


# ============================================================================
# Classification
# ============================================================================

_KEYWORDS = [
    (("timeout", "timed out"), ErrorCode.EXTRACTION_TIMEOUT),
    (("poppler", "pdf"), ErrorCode.PDF_CONVERSION_FAILED),
    (("tesseract", "ocr"), ErrorCode.OCR_ENGINE_FAILED),
    (("heic", "heif", "decode", "cannot identify image"), ErrorCode.IMAGE_CONVERSION_FAILED),
    (("too large", "size"), ErrorCode.FILE_TOO_LARGE),
    (("unsupported", "invalid file", "format"), ErrorCode.INVALID_FORMAT),
]


def classify_exception(exc: BaseException) -> ErrorCode:
    """
    Map an arbitrary exception to an error code.

    Exceptions from this package keep their own code; anything else is
    classified by keywords in its message.
    """
    if isinstance(exc, LabReportError):
        return exc.code
    if isinstance(exc, TimeoutError):
        return ErrorCode.EXTRACTION_TIMEOUT

    text = str(exc).lower()
    for keywords, code in _KEYWORDS:
        if any(k in text for k in keywords):
            return code
    return ErrorCode.UNKNOWN
