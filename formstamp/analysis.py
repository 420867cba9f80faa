"""One-shot analysis of an uploaded source document."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path

from .background import to_data_url
from .cancellation import CancellationToken, check
from .config import BACKGROUND_PAGE_SCALE, DEFAULT_LINE_TOLERANCE
from .detector import FieldCandidateDetector, LabelPatternSet
from .errors import DocumentParseError
from .extractor import extract_page, open_document, page_dimensions, render_page_image
from .models import DocumentDimensions, FieldCandidate

logger = logging.getLogger(__name__)


@dataclass
class DocumentAnalysis:
    dimensions: DocumentDimensions
    candidates: list[FieldCandidate] = field(default_factory=list)
    background_image: str = ""
    page_count: int = 1

    def to_dict(self) -> dict:
        return {
            "dimensions": self.dimensions.model_dump(),
            "suggestedFields": [candidate.to_dict() for candidate in self.candidates],
            "backgroundImage": self.background_image,
            "pageCount": self.page_count,
        }


def analyze_document(
    source: str | Path | bytes,
    patterns: LabelPatternSet | None = None,
    line_tolerance: float = DEFAULT_LINE_TOLERANCE,
    page_index: int = 0,
    password: str | None = None,
    cancel_token: CancellationToken | None = None,
    include_background: bool = True,
    detector: FieldCandidateDetector | None = None,
    labels_only: bool = True,
) -> DocumentAnalysis:
    """Dimensions, label candidates and a PNG background for one page.

    A page that cannot be parsed yields no candidates; the background and
    dimensions are still returned when available.
    """
    detector = detector or FieldCandidateDetector(patterns, line_tolerance=line_tolerance)
    doc = open_document(source, password=password, cancel_token=cancel_token)
    try:
        if page_index < 0 or page_index >= len(doc):
            raise IndexError(f"Page {page_index} out of range. Document has {len(doc)} page(s).")
        page = doc[page_index]
        dims = page_dimensions(page)
        analysis = DocumentAnalysis(dimensions=dims, page_count=len(doc))

        check(cancel_token)
        try:
            extraction = extract_page(doc, page_index)
            if labels_only:
                analysis.candidates = detector.detect_fields(extraction.runs)
            else:
                analysis.candidates = detector.detect(extraction.runs)
        except DocumentParseError as exc:
            logger.warning("No candidates for page %d: %s", page_index, exc.reason)

        check(cancel_token)
        if include_background:
            try:
                png = render_page_image(doc, page_index, BACKGROUND_PAGE_SCALE)
                analysis.background_image = to_data_url(png, "image/png")
            except DocumentParseError as exc:
                logger.warning("No background for page %d: %s", page_index, exc.reason)
    finally:
        doc.close()
    return analysis
