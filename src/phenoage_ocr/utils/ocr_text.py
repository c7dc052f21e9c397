"""
Text OCR for lab-report pages.

Provides:
- Tesseract recognition of page images with confidence scoring
- Fallback over preprocessing strategies for hard-to-read images
- Concurrent recognition of many pages with a bounded worker pool
- Per-page failure and timeout accounting
"""

import logging
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from concurrent.futures import TimeoutError as FuturesTimeoutError
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol, Sequence

import numpy as np

from .errors import ErrorCode, format_error

logger = logging.getLogger(__name__)


# ============================================================================
# Data Classes
# ============================================================================

@dataclass
class LineResult:
    """OCR result for a line of text."""
    text: str
    confidence: float


@dataclass
class OCRResult:
    """OCR result for one image."""
    text: str
    confidence: float
    lines: List[LineResult] = field(default_factory=list)
    engine_used: str = ""
    strategy: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "text": self.text,
            "confidence": self.confidence,
            "engine": self.engine_used,
            "strategy": self.strategy,
        }


@dataclass(frozen=True)
class PreprocessStrategy:
    """One way of preparing an image before recognition."""
    name: str
    binarize_method: str = "adaptive"
    deskew: bool = True
    denoise: bool = True


# Tried in order until one reaches the engine's target confidence
DEFAULT_STRATEGIES = (
    PreprocessStrategy("adaptive"),
    PreprocessStrategy("otsu", binarize_method="otsu"),
    PreprocessStrategy("grayscale", binarize_method=""),
    PreprocessStrategy("minimal", binarize_method="", deskew=False, denoise=False),
)


@dataclass(frozen=True)
class PageImage:
    """Rendered or uploaded page image (PNG/JPEG bytes, 1-based page number)."""
    page_number: int
    data: bytes


@dataclass(frozen=True)
class PageText:
    """Text of one page (1-based page number)."""
    page_number: int
    text: str
    confidence: float = 1.0


@dataclass
class OCRBatch:
    """Outcome of recognizing a set of pages."""
    page_texts: List[PageText] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    timed_out: bool = False


class OCREngine(Protocol):
    def recognize(self, image_data: bytes) -> OCRResult:
        ...


# ============================================================================
# Tesseract Engine
# ============================================================================

class TesseractEngine:
    """
    OCR using Tesseract.

    Each image is recognized with the first preprocessing strategy; when the
    mean word confidence stays below ``target_confidence`` the remaining
    strategies are tried and the most confident result wins.
    """

    def __init__(
        self,
        language: str = "eng",
        config: str = "--oem 3 --psm 6",
        min_image_height: int = 1000,
        strategies: Sequence[PreprocessStrategy] = DEFAULT_STRATEGIES,
        target_confidence: float = 0.85,
    ):
        try:
            import pytesseract
            self.pytesseract = pytesseract

            # Test that tesseract is installed
            pytesseract.get_tesseract_version()

        except Exception as e:
            raise ImportError(
                f"Tesseract not available: {e}\n"
                "Install with: pip install pytesseract\n"
                "Also install Tesseract: https://github.com/tesseract-ocr/tesseract"
            )

        if not strategies:
            raise ValueError("At least one preprocessing strategy is required")

        self.language = language
        self.config = config
        self.min_image_height = min_image_height
        self.strategies = tuple(strategies)
        self.target_confidence = target_confidence

    def recognize(self, image_data: bytes) -> OCRResult:
        """
        Recognize text in a PNG or JPEG image.

        Args:
            image_data: Encoded image bytes

        Returns:
            The most confident OCRResult over the strategies tried, with one
            line of text per Tesseract line and the mean word confidence
            in [0, 1]

        Raises:
            ValueError: If the image cannot be decoded
            RuntimeError: If Tesseract fails with every strategy
        """
        from .images import assess_quality, decode_image, prepare_for_ocr

        image = decode_image(image_data)
        quality = assess_quality(image)
        if not quality.acceptable:
            logger.warning(
                f"Low quality image (sharpness {quality.sharpness:.0f}, "
                f"brightness {quality.mean_intensity:.0f}); recognition may be poor"
            )

        best: Optional[OCRResult] = None
        last_error: Optional[Exception] = None
        for strategy in self.strategies:
            prepared = prepare_for_ocr(
                image,
                min_height=self.min_image_height,
                deskew_enabled=strategy.deskew,
                denoise_enabled=strategy.denoise,
                binarize_method=strategy.binarize_method,
            )
            try:
                data = self.pytesseract.image_to_data(
                    prepared.image,
                    lang=self.language,
                    config=self.config,
                    output_type=self.pytesseract.Output.DICT
                )
            except Exception as e:
                logger.warning(f"Tesseract failed with {strategy.name} preprocessing: {e}")
                last_error = e
                continue

            result = self._parse(data)
            result.strategy = strategy.name
            logger.debug(f"Strategy {strategy.name}: confidence {result.confidence:.2f}")
            if best is None or result.confidence > best.confidence:
                best = result
            if best.confidence >= self.target_confidence:
                break

        if best is None:
            logger.error(f"Tesseract error: {last_error}")
            raise RuntimeError(f"Tesseract OCR failed: {last_error}") from last_error
        return best

    @staticmethod
    def _parse(data: Dict[str, list]) -> OCRResult:
        """Group Tesseract words into lines keyed by (block, paragraph, line)."""
        lines: Dict[tuple, List[tuple]] = {}
        confidences = []

        for i in range(len(data['text'])):
            text = data['text'][i].strip()
            conf = float(data['conf'][i])
            if conf < 0 or not text:  # -1 means no valid confidence
                continue
            line_key = (data['block_num'][i], data['par_num'][i], data['line_num'][i])
            lines.setdefault(line_key, []).append((text, conf / 100.0))
            confidences.append(conf / 100.0)

        line_results = [
            LineResult(
                text=' '.join(w for w, _ in words),
                confidence=float(np.mean([c for _, c in words])),
            )
            for _, words in sorted(lines.items())
        ]

        return OCRResult(
            text='\n'.join(line.text for line in line_results),
            confidence=float(np.mean(confidences)) if confidences else 0.0,
            lines=line_results,
            engine_used="tesseract"
        )


# ============================================================================
# Orchestrator
# ============================================================================

class OCROrchestrator:
    """
    Runs an OCR engine over many pages concurrently.

    Pages are submitted to a bounded thread pool; results are re-sorted by
    page number so output never depends on completion order. A failing page
    is recorded as an error and the remaining pages continue.

    Example:
        orchestrator = OCROrchestrator(TesseractEngine(), max_workers=4)
        batch = orchestrator.recognize_pages(pages, timeout=60)
        for page in batch.page_texts:
            print(page.page_number, page.text[:80])
    """

    def __init__(self, engine: OCREngine, max_workers: int = 4):
        self.engine = engine
        self.max_workers = max(1, max_workers)

    def recognize_pages(
        self,
        pages: Sequence[PageImage],
        timeout: Optional[float] = None,
    ) -> OCRBatch:
        """
        Recognize all pages.

        Args:
            pages: Page images to recognize
            timeout: Seconds to wait for all pages (None = no limit)

        Returns:
            OCRBatch with texts ordered by page number and one error entry
            per failed or unfinished page
        """
        batch = OCRBatch()
        if not pages:
            return batch

        start = time.time()
        workers = min(self.max_workers, len(pages))
        executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="ocr")
        futures = {
            executor.submit(self.engine.recognize, page.data): page.page_number
            for page in pages
        }
        completed = set()
        page_errors = []

        try:
            for future in as_completed(futures, timeout=timeout):
                page_number = futures[future]
                completed.add(future)
                try:
                    result = future.result()
                except Exception as e:
                    logger.error(f"OCR failed on page {page_number}: {e}")
                    page_errors.append((page_number, format_error(
                        ErrorCode.PAGE_PROCESSING_FAILURE, f"page {page_number}: {e}"
                    )))
                    continue
                batch.page_texts.append(PageText(page_number, result.text, result.confidence))
                logger.debug(
                    f"Page {page_number}: {len(result.text)} chars, "
                    f"confidence {result.confidence:.2f}"
                )
        except FuturesTimeoutError:
            batch.timed_out = True
            unfinished = sorted(futures[f] for f in futures if f not in completed)
            logger.warning(f"OCR timed out after {timeout}s; unfinished pages: {unfinished}")
            for page_number in unfinished:
                page_errors.append((page_number, format_error(
                    ErrorCode.EXTRACTION_TIMEOUT, f"page {page_number} not finished within {timeout}s"
                )))
        finally:
            executor.shutdown(wait=not batch.timed_out, cancel_futures=True)

        batch.page_texts.sort(key=lambda p: p.page_number)
        batch.errors = [message for _, message in sorted(page_errors)]
        logger.info(
            f"OCR finished {len(batch.page_texts)}/{len(pages)} pages "
            f"in {time.time() - start:.2f}s"
        )
        return batch
