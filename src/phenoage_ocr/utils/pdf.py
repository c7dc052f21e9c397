"""
PDF splitting.

A PDF either carries an embedded text layer (reports exported from a lab
portal) or is a scan. Text PDFs are read directly with pdfplumber; scans are
rendered page by page with pdf2image (poppler backend) and handed to OCR.
"""

import io
import logging
import time
from dataclasses import dataclass, field
from typing import List, Optional, Protocol

from .errors import ErrorCode, LabReportError, TooManyPagesError, format_error
from .ocr_text import PageImage, PageText

logger = logging.getLogger(__name__)


# ============================================================================
# Toolkit
# ============================================================================

class PdfToolkit(Protocol):
    def page_count(self, data: bytes) -> int:
        ...

    def extract_embedded_text(self, data: bytes) -> List[str]:
        ...

    def render_page(self, data: bytes, page_number: int) -> bytes:
        ...


class PopplerPdfToolkit:
    """pdfplumber for the text layer, pdf2image for rendering."""

    def __init__(self, dpi: int = 200):
        self.dpi = dpi

    def page_count(self, data: bytes) -> int:
        import pdfplumber

        with pdfplumber.open(io.BytesIO(data)) as pdf:
            return len(pdf.pages)

    def extract_embedded_text(self, data: bytes) -> List[str]:
        """Text of every page, in order ("" for pages without a text layer)."""
        import pdfplumber

        with pdfplumber.open(io.BytesIO(data)) as pdf:
            return [page.extract_text() or "" for page in pdf.pages]

    def render_page(self, data: bytes, page_number: int) -> bytes:
        """
        Render one page (1-based) to PNG bytes.

        Raises:
            RuntimeError: If poppler is missing or the page cannot be rendered
        """
        try:
            from pdf2image import convert_from_bytes
        except ImportError:
            raise ImportError(
                "pdf2image is required. Install with: pip install pdf2image\n"
                "Also ensure poppler is installed on your system."
            )

        try:
            images = convert_from_bytes(
                data,
                dpi=self.dpi,
                first_page=page_number,
                last_page=page_number,
                fmt='png',
            )
        except Exception as e:
            if "poppler" in str(e).lower():
                raise RuntimeError(
                    "Poppler is not installed. Install with:\n"
                    "  macOS: brew install poppler\n"
                    "  Linux: sudo apt-get install poppler-utils"
                ) from e
            raise RuntimeError(f"Failed to render page {page_number}: {e}") from e

        if not images:
            raise RuntimeError(f"Page {page_number} rendered no image")

        buffer = io.BytesIO()
        images[0].save(buffer, format="PNG")
        return buffer.getvalue()


# ============================================================================
# Splitter
# ============================================================================

@dataclass
class PdfSplit:
    """Pages of a PDF ready for extraction or OCR."""
    page_count: int
    needs_ocr: bool
    texts: List[PageText] = field(default_factory=list)
    images: List[PageImage] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    notes: List[str] = field(default_factory=list)
    timed_out: bool = False


class PdfSplitter:
    """
    Split a PDF into page texts or page images.

    Example:
        splitter = PdfSplitter(PopplerPdfToolkit(), max_pages=10)
        split = splitter.split(pdf_bytes)
        if split.needs_ocr:
            batch = orchestrator.recognize_pages(split.images)
    """

    def __init__(
        self,
        toolkit: PdfToolkit,
        max_pages: int = 10,
        max_document_pages: int = 100,
        min_text_words: int = 20,
    ):
        self.toolkit = toolkit
        self.max_pages = max_pages
        self.max_document_pages = max_document_pages
        self.min_text_words = min_text_words

    def split(self, data: bytes, deadline: Optional[float] = None) -> PdfSplit:
        """
        Split a PDF.

        Args:
            data: PDF bytes
            deadline: ``time.time()`` value after which no further pages are
                rendered (None = no limit); skipped pages are reported as
                ExtractionTimeout errors

        Returns:
            PdfSplit with either texts (embedded text layer) or images

        Raises:
            TooManyPagesError: If the document exceeds ``max_document_pages``
        """
        try:
            total = self.toolkit.page_count(data)
        except Exception as e:
            raise LabReportError(
                f"could not read PDF: {e}", code=ErrorCode.PDF_CONVERSION_FAILED
            ) from e

        if total > self.max_document_pages:
            raise TooManyPagesError(
                f"document has {total} pages; the limit is {self.max_document_pages}"
            )

        kept = min(total, self.max_pages)
        split = PdfSplit(page_count=kept, needs_ocr=True)
        if total > kept:
            note = f"Document has {total} pages; only the first {kept} were processed"
            split.notes.append(note)
            logger.info(note)

        try:
            page_texts = self.toolkit.extract_embedded_text(data)[:kept]
        except Exception as e:
            logger.warning(f"Could not read PDF text layer, falling back to OCR: {e}")
            page_texts = []
        words = sum(len(text.split()) for text in page_texts)
        if words >= self.min_text_words:
            split.needs_ocr = False
            split.texts = [
                PageText(page_number=i + 1, text=text)
                for i, text in enumerate(page_texts)
                if text.strip()
            ]
            logger.info(f"PDF has an embedded text layer ({words} words); skipping OCR")
            return split

        logger.info(f"PDF has {words} embedded words; rendering {kept} pages for OCR")
        for page_number in range(1, kept + 1):
            if deadline is not None and time.time() >= deadline:
                split.timed_out = True
                logger.warning(f"Deadline reached; pages {page_number}-{kept} not rendered")
                split.errors.extend(
                    format_error(ErrorCode.EXTRACTION_TIMEOUT, f"page {n} not rendered before the deadline")
                    for n in range(page_number, kept + 1)
                )
                break
            try:
                image = self.toolkit.render_page(data, page_number)
            except Exception as e:
                logger.error(f"Failed to render page {page_number}: {e}")
                split.errors.append(format_error(
                    ErrorCode.PAGE_PROCESSING_FAILURE, f"page {page_number}: {e}"
                ))
                continue
            split.images.append(PageImage(page_number, image))

        return split
