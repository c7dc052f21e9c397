"""
Lab-report assembler.

Provides:
- ExtractionResult data model
- Pipeline orchestration: validate -> split -> OCR -> extract -> normalize
- Processing notes, error accumulation and timing
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .biomarkers import BiomarkerKey
from .confidence import ConfidenceSummary, confidence_level, should_auto_fill, summarize_confidence
from .errors import ERROR_INFO, ErrorCode, format_error
from .extractor import BiomarkerExtraction, BiomarkerExtractor
from .formats import FormatInfo, format_warnings, validate_upload
from .ocr_text import PageImage, PageText
from .units import normalize_all

logger = logging.getLogger(__name__)


# ============================================================================
# Data Classes
# ============================================================================

@dataclass(frozen=True)
class ExtractionResult:
    """Outcome of processing one uploaded lab report (never mutated)."""
    success: bool
    extractions: Dict[BiomarkerKey, BiomarkerExtraction]
    raw_text: str = ""
    page_count: int = 0
    processing_time_ms: float = 0.0
    errors: List[str] = field(default_factory=list)
    notes: List[str] = field(default_factory=list)
    summary: Optional[ConfidenceSummary] = None
    format_info: Optional[FormatInfo] = None
    # Mean recognition confidence of the pages with text (1.0 for a text layer)
    ocr_confidence: Optional[float] = None

    @property
    def values(self) -> Dict[BiomarkerKey, Optional[float]]:
        return {key: e.value for key, e in self.extractions.items()}

    def to_dict(self) -> Dict[str, Any]:
        from ..config import JSON_SCHEMA_VERSION

        extractions = {}
        for key, extraction in self.extractions.items():
            entry = extraction.to_dict()
            entry["level"] = confidence_level(extraction).value
            entry["auto_fill"] = should_auto_fill(extraction)
            extractions[key.value] = entry

        return {
            "schema_version": JSON_SCHEMA_VERSION,
            "success": self.success,
            "extractions": extractions,
            "raw_text": self.raw_text,
            "page_count": self.page_count,
            "processing_time_ms": round(self.processing_time_ms, 1),
            "errors": self.errors,
            "notes": self.notes,
            "summary": self.summary.to_dict() if self.summary else None,
            "format": self.format_info.to_dict() if self.format_info else None,
            "ocr_confidence": self.ocr_confidence,
        }


def empty_extractions() -> Dict[BiomarkerKey, BiomarkerExtraction]:
    return {key: BiomarkerExtraction.missing(key) for key in BiomarkerKey}


def join_page_texts(pages: List[PageText]) -> str:
    return "\n\n".join(f"--- Page {p.page_number} ---\n{p.text}" for p in pages)


def mean_page_confidence(pages: List[PageText]) -> Optional[float]:
    if not pages:
        return None
    return sum(p.confidence for p in pages) / len(pages)


# ============================================================================
# Assembler
# ============================================================================

class LabReportAssembler:
    """
    Orchestrates lab-report processing.

    Coordinates:
    - Upload validation and image conversion
    - PDF splitting
    - Concurrent page OCR
    - Biomarker extraction and unit normalization
    - Confidence summary

    Collaborators (OCR engine, PDF toolkit, image codec) are created lazily
    with their default implementations unless passed in.
    """

    def __init__(
        self,
        config=None,
        ocr_engine=None,
        pdf_toolkit=None,
        image_codec=None,
    ):
        if config is None:
            from ..config import get_config
            config = get_config()
        self.config = config

        self._ocr_engine = ocr_engine
        self._pdf_toolkit = pdf_toolkit
        self._image_codec = image_codec
        self._orchestrator = None
        self._splitter = None
        self._extractor = None

    @property
    def ocr_engine(self):
        if self._ocr_engine is None:
            from .ocr_text import DEFAULT_STRATEGIES, TesseractEngine
            ocr = self.config.ocr
            strategies = DEFAULT_STRATEGIES if ocr.fallback_enabled else DEFAULT_STRATEGIES[:1]
            self._ocr_engine = TesseractEngine(
                language=ocr.tesseract_lang,
                config=ocr.tesseract_config,
                min_image_height=ocr.min_image_height,
                strategies=strategies,
                target_confidence=ocr.target_confidence,
            )
        return self._ocr_engine

    @property
    def pdf_toolkit(self):
        if self._pdf_toolkit is None:
            from .pdf import PopplerPdfToolkit
            self._pdf_toolkit = PopplerPdfToolkit(dpi=self.config.pdf.render_dpi)
        return self._pdf_toolkit

    @property
    def image_codec(self):
        if self._image_codec is None:
            from .formats import PillowImageCodec
            self._image_codec = PillowImageCodec()
        return self._image_codec

    @property
    def orchestrator(self):
        if self._orchestrator is None:
            from .ocr_text import OCROrchestrator
            workers = min(self.config.ocr.max_workers, self.config.pdf.max_pages)
            self._orchestrator = OCROrchestrator(self.ocr_engine, max_workers=workers)
        return self._orchestrator

    @property
    def splitter(self):
        if self._splitter is None:
            from .pdf import PdfSplitter
            pdf = self.config.pdf
            self._splitter = PdfSplitter(
                self.pdf_toolkit,
                max_pages=pdf.max_pages,
                max_document_pages=pdf.max_document_pages,
                min_text_words=pdf.min_text_words,
            )
        return self._splitter

    @property
    def extractor(self):
        if self._extractor is None:
            extraction = self.config.extraction
            self._extractor = BiomarkerExtractor(
                weights=extraction.weights,
                fuzzy_threshold=extraction.fuzzy_threshold,
            )
        return self._extractor

    def process_upload(
        self,
        data: bytes,
        declared_mime: Optional[str],
        filename: Optional[str],
        timeout: Optional[float] = None,
    ) -> ExtractionResult:
        """
        Process one uploaded lab report.

        Args:
            data: Raw file bytes
            declared_mime: MIME type claimed by the client
            filename: Original filename
            timeout: Seconds allowed for the whole upload (None = config default)

        Returns:
            ExtractionResult; ``success`` is False when no text or no
            biomarkers were found

        Raises:
            LabReportError: For rejected uploads, documents over the page
                limit and failed image conversion
        """
        start_time = time.time()
        if timeout is None:
            timeout = self.config.timeout_seconds
        errors: List[str] = []
        notes: List[str] = []

        info = validate_upload(
            data, declared_mime, filename, self.config.upload.max_file_size_bytes
        )
        notes.extend(format_warnings(info))
        logger.info(f"Processing {filename or 'upload'} ({info.display_name}, {len(data)} bytes)")

        if info.category == "pdf":
            deadline = start_time + timeout if timeout is not None else None
            split = self.splitter.split(data, deadline=deadline)
            errors.extend(split.errors)
            notes.extend(split.notes)
            page_count = split.page_count
            if split.needs_ocr:
                page_texts = self._recognize(split.images, errors, start_time, timeout)
            else:
                page_texts = split.texts
        else:
            if info.needs_conversion:
                data = self.image_codec.to_canonical_bitmap(data, info)
            page_count = 1
            page_texts = self._recognize([PageImage(1, data)], errors, start_time, timeout)

        page_texts = [p for p in page_texts if p.text.strip()]
        raw_text = join_page_texts(page_texts)
        ocr_confidence = mean_page_confidence(page_texts)

        if not page_texts:
            errors.append(format_error(
                ErrorCode.NO_TEXT_DETECTED, ERROR_INFO[ErrorCode.NO_TEXT_DETECTED].suggestion
            ))
            return self._finish(
                False, empty_extractions(), raw_text, page_count, start_time, errors, notes, info,
                ocr_confidence,
            )

        extractions = self.extractor.extract(page_texts)
        extractions, conversion_notes = normalize_all(
            extractions,
            conversion_certainty=self.config.extraction.conversion_certainty,
            ambiguous_unit_penalty=self.config.extraction.ambiguous_unit_penalty,
        )
        notes.extend(conversion_notes)

        success = any(e.found for e in extractions.values())
        if not success:
            errors.append(format_error(
                ErrorCode.NO_BIOMARKERS_FOUND, ERROR_INFO[ErrorCode.NO_BIOMARKERS_FOUND].suggestion
            ))

        return self._finish(
            success, extractions, raw_text, page_count, start_time, errors, notes, info,
            ocr_confidence,
        )

    def _recognize(
        self,
        images: List[PageImage],
        errors: List[str],
        start_time: float,
        timeout: Optional[float],
    ) -> List[PageText]:
        if not images:
            return []
        remaining = None
        if timeout is not None:
            remaining = max(0.0, timeout - (time.time() - start_time))
        batch = self.orchestrator.recognize_pages(images, timeout=remaining)
        errors.extend(batch.errors)
        return batch.page_texts

    def _finish(
        self,
        success: bool,
        extractions: Dict[BiomarkerKey, BiomarkerExtraction],
        raw_text: str,
        page_count: int,
        start_time: float,
        errors: List[str],
        notes: List[str],
        info: FormatInfo,
        ocr_confidence: Optional[float],
    ) -> ExtractionResult:
        summary = summarize_confidence(
            extractions, self.config.extraction.low_confidence_threshold
        )
        elapsed_ms = (time.time() - start_time) * 1000
        logger.info(
            f"Extraction {'succeeded' if success else 'failed'}: "
            f"{summary.found_count}/{len(extractions)} biomarkers in {elapsed_ms:.0f} ms"
        )
        return ExtractionResult(
            success=success,
            extractions=extractions,
            raw_text=raw_text,
            page_count=page_count,
            processing_time_ms=elapsed_ms,
            errors=errors,
            notes=notes,
            summary=summary,
            format_info=info,
            ocr_confidence=ocr_confidence,
        )


def process_upload(
    data: bytes,
    declared_mime: Optional[str],
    filename: Optional[str],
    timeout: Optional[float] = None,
    config=None,
) -> ExtractionResult:
    """Process an upload with the default collaborators."""
    return LabReportAssembler(config=config).process_upload(
        data, declared_mime, filename, timeout=timeout
    )
