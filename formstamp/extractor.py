"""Positioned text extraction from source documents using PyMuPDF.

All runs are reported in Source space: points, origin at the bottom-left
corner of the page, Y increasing upward. Runs keep extraction order.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path

import fitz

from .cancellation import CancellationToken, check
from .config import BACKGROUND_PAGE_SCALE
from .errors import DocumentLoadError, DocumentParseError
from .models import DocumentDimensions, TextRun

logger = logging.getLogger(__name__)


@dataclass
class PageExtraction:
    page_index: int
    dimensions: DocumentDimensions
    runs: list[TextRun] = field(default_factory=list)


@dataclass
class DocumentExtraction:
    pages: list[PageExtraction] = field(default_factory=list)
    errors: list[DocumentParseError] = field(default_factory=list)

    @property
    def runs(self) -> list[TextRun]:
        return [run for page in self.pages for run in page.runs]


def open_document(
    source: str | Path | bytes,
    password: str | None = None,
    cancel_token: CancellationToken | None = None,
) -> fitz.Document:
    check(cancel_token)
    try:
        if isinstance(source, (bytes, bytearray)):
            doc = fitz.open(stream=bytes(source), filetype="pdf")
        else:
            doc = fitz.open(str(source))
    except Exception as exc:
        raise DocumentLoadError(f"Cannot open document: {exc}") from exc

    if doc.needs_pass:
        if not password or not doc.authenticate(password):
            doc.close()
            raise DocumentLoadError("Document is encrypted and no valid password was supplied.")
    if doc.page_count == 0:
        doc.close()
        raise DocumentLoadError("Document has no pages.")
    return doc


def run_from_transform(
    text: str,
    transform: tuple[float, float, float, float, float, float],
    width: float,
    height: float,
    font_name: str,
) -> TextRun:
    """Build a TextRun from a text-drawing primitive's affine transform.

    Position is the translation ``(e, f)``; font size is the vertical scale
    component ``|d|``.
    """
    _a, _b, _c, d, e, f = transform
    return TextRun(
        text=text,
        x=float(e),
        y=float(f),
        width=float(width),
        height=float(height),
        font_name=font_name or "Unknown",
        font_size=abs(float(d)),
    )


def _span_transform(span: dict, line_dir: tuple[float, float], page_h: float) -> tuple[float, ...]:
    size = float(span.get("size") or 0.0)
    cos, sin = line_dir
    # PyMuPDF reports direction with Y pointing down; Source space has Y up.
    sin = -sin
    origin_x, origin_y = span.get("origin", (0.0, 0.0))
    return (size * cos, size * sin, -size * sin, size * cos, origin_x, page_h - origin_y)


def iter_spans(page: fitz.Page):
    data = page.get_text("dict")
    for block in data.get("blocks", []):
        if block.get("type") != 0:
            continue
        for line in block.get("lines", []):
            line_dir = tuple(line.get("dir", (1.0, 0.0)))
            for span in line.get("spans", []):
                yield line_dir, span


def page_dimensions(page: fitz.Page) -> DocumentDimensions:
    return DocumentDimensions(width=float(page.rect.width), height=float(page.rect.height))


def extract_page(doc: fitz.Document, page_index: int) -> PageExtraction:
    if page_index < 0 or page_index >= len(doc):
        raise IndexError(f"Page {page_index} out of range. Document has {len(doc)} page(s).")

    try:
        page = doc[page_index]
        dims = page_dimensions(page)
        runs: list[TextRun] = []
        for line_dir, span in iter_spans(page):
            text = span.get("text") or ""
            if not text.strip():
                continue
            x0, y0, x1, y1 = span.get("bbox", (0.0, 0.0, 0.0, 0.0))
            runs.append(
                run_from_transform(
                    text=text,
                    transform=_span_transform(span, line_dir, dims.height),
                    width=x1 - x0,
                    height=y1 - y0,
                    font_name=span.get("font") or "Unknown",
                )
            )
    except Exception as exc:
        raise DocumentParseError(page_index, str(exc)) from exc

    return PageExtraction(page_index=page_index, dimensions=dims, runs=runs)


def extract_document(
    source: str | Path | bytes,
    password: str | None = None,
    cancel_token: CancellationToken | None = None,
) -> DocumentExtraction:
    """Extract runs from every page; a failing page is logged and skipped."""
    doc = open_document(source, password=password, cancel_token=cancel_token)
    result = DocumentExtraction()
    try:
        for page_index in range(len(doc)):
            check(cancel_token)
            try:
                result.pages.append(extract_page(doc, page_index))
            except DocumentParseError as exc:
                logger.warning("Skipping page %d: %s", page_index, exc.reason)
                result.errors.append(exc)
    finally:
        doc.close()
    return result


def render_page_image(doc: fitz.Document, page_index: int = 0, scale: float = BACKGROUND_PAGE_SCALE) -> bytes:
    """Rasterize one page to PNG bytes, e.g. for use as a template background."""
    try:
        page = doc[page_index]
        pix = page.get_pixmap(matrix=fitz.Matrix(scale, scale), alpha=False)
        return pix.tobytes("png")
    except Exception as exc:
        raise DocumentParseError(page_index, f"rasterization failed: {exc}") from exc


def list_fonts(doc: fitz.Document) -> list[str]:
    """Unique font names used by text on any page."""
    fonts: set[str] = set()
    for page_index in range(len(doc)):
        try:
            spans = list(iter_spans(doc[page_index]))
        except Exception as exc:
            logger.warning("Cannot read fonts from page %d: %s", page_index, exc)
            continue
        for _line_dir, span in spans:
            font_name = span.get("font")
            if font_name:
                fonts.add(font_name)
    return sorted(fonts)
