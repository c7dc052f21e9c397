"""
Biomarker extraction from recognized page text.

Scans each line of each page for biomarker labels, reads the numeric value
and unit that follow, and scores each candidate with a weighted sum of:
- Label specificity (full name > abbreviation > weak abbreviation)
- Unit placement (right after the value > elsewhere on the line > absent)
- Plausibility of the value against the physiological bounds

All candidates go into one flat list; the winner per biomarker is chosen
by a single sort on (confidence, page, line).
"""

import logging
import re
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from rapidfuzz import fuzz

from ..config import ConfidenceWeights
from .biomarkers import BIOMARKERS, BiomarkerKey, BiomarkerSpec
from .ocr_text import PageText
from .units import conversion_factor, is_known_unit

logger = logging.getLogger(__name__)


# ============================================================================
# Data Classes
# ============================================================================

@dataclass(frozen=True)
class BiomarkerExtraction:
    """Best value found for one biomarker."""
    biomarker: BiomarkerKey
    value: Optional[float]
    unit: Optional[str]
    confidence: float
    source_snippet: str = ""
    line_number: int = 0
    page_number: int = 0

    def __post_init__(self):
        # A missing value carries no confidence; otherwise clamp into [0, 1]
        if self.value is None:
            confidence = 0.0
        else:
            confidence = min(1.0, max(0.0, float(self.confidence)))
        object.__setattr__(self, "confidence", confidence)

    @property
    def found(self) -> bool:
        return self.value is not None

    @classmethod
    def missing(cls, biomarker: BiomarkerKey) -> "BiomarkerExtraction":
        return cls(biomarker=biomarker, value=None, unit=None, confidence=0.0)

    def to_dict(self) -> dict:
        return {
            "biomarker": self.biomarker.value,
            "value": self.value,
            "unit": self.unit,
            "confidence": round(self.confidence, 4),
            "source_snippet": self.source_snippet,
            "line_number": self.line_number,
            "page_number": self.page_number,
        }


# ============================================================================
# Text Patterns
# ============================================================================

_NUMBER_RE = re.compile(
    r"(?P<cmp>[<>≤≥]=?\s*)?(?<![\d.,])(?P<num>\d+(?:[.,]\d+)?)(?![\d])"
)

# Something shaped like a unit: 10^9/L, %, mg/dL, fL, cells/uL, K/µL
_UNIT_RE = re.compile(
    r"(?:[x×*]\s*)?10\s*(?:\^|\*|e|E)?\s*[0-9⁹³]+\s*/\s*[a-zµμ]+\d?"
    r"|%"
    r"|[a-zµμ]+\d?(?:\s*/\s*[a-zµμ]+\d?)?"
    r"|/\s*[a-zµμ]+\d?",
    re.IGNORECASE,
)


def _label_regex(label: str) -> str:
    parts = [re.escape(part) for part in label.split()]
    return r"(?<![a-z0-9])" + r"\s+".join(parts) + (r"(?![a-z])" if label[-1].isalnum() else "")


@dataclass
class _LabelMatch:
    start: int
    end: int
    specificity: str


def _compile_labels(spec: BiomarkerSpec) -> List[Tuple[re.Pattern, str]]:
    tiers = [
        (spec.full_names, "full_name"),
        (spec.abbreviations, "abbreviation"),
        (spec.weak_abbreviations, "weak_abbreviation"),
    ]
    patterns = []
    for labels, tier in tiers:
        for label in sorted(labels, key=len, reverse=True):
            patterns.append((re.compile(_label_regex(label), re.IGNORECASE), tier))
    return patterns


_LABEL_PATTERNS = {key: _compile_labels(spec) for key, spec in BIOMARKERS.items()}
_EXCLUSIONS = {
    key: [re.compile(p, re.IGNORECASE) for p in spec.label_exclusions]
    for key, spec in BIOMARKERS.items()
}
_FUZZY_TERMS = {
    key: [n for n in spec.full_names if " " not in n and len(n) >= 6]
    for key, spec in BIOMARKERS.items()
}
_WORD_RE = re.compile(r"[^\W\d_]{6,}", re.UNICODE)


# ============================================================================
# Extractor
# ============================================================================

class BiomarkerExtractor:
    """
    Pattern-based extraction of the nine biomarkers.

    Example:
        extractor = BiomarkerExtractor()
        extractions = extractor.extract([PageText(1, "Albumin 4.2 g/dL")])
        print(extractions[BiomarkerKey.ALBUMIN].value)
    """

    def __init__(
        self,
        weights: Optional[ConfidenceWeights] = None,
        fuzzy_threshold: float = 85.0,
    ):
        self.weights = weights or ConfidenceWeights()
        self.fuzzy_threshold = fuzzy_threshold

    def extract(self, pages: Sequence[PageText]) -> Dict[BiomarkerKey, BiomarkerExtraction]:
        """
        Extract the best candidate of every biomarker across all pages.

        Args:
            pages: Page texts in any order

        Returns:
            Mapping with exactly one entry per BiomarkerKey; biomarkers
            without candidates map to a null extraction
        """
        candidates = list(self.find_candidates(pages))
        logger.debug(f"Found {len(candidates)} biomarker candidates")
        return self.merge(candidates)

    def find_candidates(self, pages: Sequence[PageText]) -> Iterable[BiomarkerExtraction]:
        """Yield every candidate on every line of every page."""
        for page in pages:
            lines = page.text.splitlines()
            for index, line in enumerate(lines):
                next_line = lines[index + 1] if index + 1 < len(lines) else ""
                for key in BIOMARKERS:
                    candidate = self._scan_line(key, line, next_line, page.page_number, index + 1)
                    if candidate is not None:
                        yield candidate

    @staticmethod
    def merge(candidates: Iterable[BiomarkerExtraction]) -> Dict[BiomarkerKey, BiomarkerExtraction]:
        """
        Pick one winner per biomarker.

        Higher confidence wins; ties go to the earliest page, then the
        earliest line.
        """
        ranked = sorted(candidates, key=lambda e: (-e.confidence, e.page_number, e.line_number))
        result: Dict[BiomarkerKey, BiomarkerExtraction] = {}
        for extraction in ranked:
            result.setdefault(extraction.biomarker, extraction)
        return {key: result.get(key, BiomarkerExtraction.missing(key)) for key in BiomarkerKey}

    # ------------------------------------------------------------------------
    # Line scanning
    # ------------------------------------------------------------------------

    def _scan_line(
        self,
        key: BiomarkerKey,
        line: str,
        next_line: str,
        page_number: int,
        line_number: int,
    ) -> Optional[BiomarkerExtraction]:
        label = self._match_label(key, line)
        if label is None:
            return None

        spec = BIOMARKERS[key]
        rest = line[label.end:]
        snippet = line.strip()
        found = self._find_value(rest)
        unit_scope = rest
        if found is None:
            # Value printed on the line below the label
            found = self._find_value(next_line)
            if found is None:
                return None
            rest = next_line
            unit_scope = line[label.end:] + " " + next_line
            snippet = f"{line.strip()} {next_line.strip()}".strip()

        value, value_end = found
        unit, unit_score = self._find_unit(key, rest[value_end:], unit_scope)
        range_score = self._score_range(spec, value, unit)

        w = self.weights
        confidence = (
            w.label * getattr(w, label.specificity)
            + w.unit * unit_score
            + w.range * range_score
        )
        logger.debug(
            f"{key.value} candidate p{page_number}:l{line_number} value={value} "
            f"unit={unit} label={label.specificity} confidence={confidence:.3f}"
        )
        return BiomarkerExtraction(
            biomarker=key,
            value=value,
            unit=unit,
            confidence=confidence,
            source_snippet=snippet,
            line_number=line_number,
            page_number=page_number,
        )

    def _match_label(self, key: BiomarkerKey, line: str) -> Optional[_LabelMatch]:
        for pattern, tier in _LABEL_PATTERNS[key]:
            for match in pattern.finditer(line):
                tail = line[match.end():]
                if any(ex.match(tail) for ex in _EXCLUSIONS[key]):
                    continue
                return _LabelMatch(match.start(), match.end(), tier)
        return self._fuzzy_label(key, line)

    def _fuzzy_label(self, key: BiomarkerKey, line: str) -> Optional[_LabelMatch]:
        terms = _FUZZY_TERMS[key]
        if not terms:
            return None
        excluded = BIOMARKERS[key].fuzzy_exclusions
        for word in _WORD_RE.finditer(line):
            token = word.group().lower()
            if token in excluded:
                continue
            if any(fuzz.ratio(token, term) >= self.fuzzy_threshold for term in terms):
                tail = line[word.end():]
                if any(ex.match(tail) for ex in _EXCLUSIONS[key]):
                    continue
                return _LabelMatch(word.start(), word.end(), "fuzzy_name")
        return None

    @staticmethod
    def _find_value(text: str) -> Optional[Tuple[float, int]]:
        """First number in ``text`` that is not part of a unit such as 10^9/L."""
        unit_spans = [
            m.span() for m in _UNIT_RE.finditer(text) if any(c.isdigit() for c in m.group())
        ]
        for match in _NUMBER_RE.finditer(text):
            start = match.start("num")
            if any(s <= start < e for s, e in unit_spans):
                continue
            # A digit glued to letters is part of a word (e.g. "B12")
            if start > 0 and text[start - 1].isalpha():
                continue
            value = float(match.group("num").replace(",", "."))
            return value, match.end("num")
        return None

    def _find_unit(self, key: BiomarkerKey, after_value: str, line_scope: str) -> Tuple[Optional[str], float]:
        w = self.weights
        adjacent = _UNIT_RE.match(after_value.lstrip())
        if adjacent:
            token = adjacent.group().strip()
            if is_known_unit(key, token):
                return token, w.unit_adjacent
            if "/" in token:
                # Unit-shaped but not convertible; keep it for normalization to flag
                return token, w.unit_absent

        for match in _UNIT_RE.finditer(line_scope):
            token = match.group().strip()
            if is_known_unit(key, token):
                return token, w.unit_on_line
        return None, w.unit_absent

    def _score_range(self, spec: BiomarkerSpec, value: float, unit: Optional[str]) -> float:
        w = self.weights
        factor = conversion_factor(spec.key, unit)
        canonical = value * factor if factor is not None else value
        low, high = spec.bounds
        if spec.in_bounds(canonical):
            return w.in_bounds
        if 0.5 * low <= canonical <= 2 * high:
            return w.near_bounds
        return w.out_of_bounds


def extract_biomarkers(
    pages: Sequence[PageText],
    weights: Optional[ConfidenceWeights] = None,
) -> Dict[BiomarkerKey, BiomarkerExtraction]:
    """Convenience wrapper around ``BiomarkerExtractor.extract``."""
    return BiomarkerExtractor(weights=weights).extract(pages)
