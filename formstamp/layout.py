"""Text measurement, greedy word wrap and alignment anchors."""
from __future__ import annotations

from typing import Protocol

from reportlab.pdfbase import pdfmetrics

from .config import LINE_HEIGHT_RATIO


class TextMetrics(Protocol):
    def measure_text(self, text: str, font_name: str, size: float) -> float:
        ...


class EmbeddedMetrics:
    """Headless metrics from ReportLab's AFM tables and registered TTF fonts."""

    def measure_text(self, text: str, font_name: str, size: float) -> float:
        return pdfmetrics.stringWidth(text, font_name, size)


def line_height(font_size: float) -> float:
    return font_size * LINE_HEIGHT_RATIO


def alignment_anchor(x: float, max_width: float | None, alignment: str) -> float:
    """X coordinate where the backend's native alignment is applied.

    Without a box width every alignment anchors at ``x``.
    """
    if not max_width:
        return x
    if alignment == "center":
        return x + max_width / 2.0
    if alignment == "right":
        return x + max_width
    return x


class TextLayout:
    def __init__(self, metrics: TextMetrics | None = None):
        self.metrics = metrics if metrics is not None else EmbeddedMetrics()

    def measure(self, text: str, family: str, size: float) -> float:
        return self.metrics.measure_text(text, family, size)

    def wrap(self, text: str, max_width: float, family: str, size: float) -> list[str]:
        """Greedy word wrap on single spaces.

        A word wider than ``max_width`` on its own is kept whole on its own
        line and allowed to overflow.
        """
        lines: list[str] = []
        current = ""
        for word in text.split(" "):
            candidate = f"{current} {word}" if current else word
            if current and self.measure(candidate, family, size) > max_width:
                lines.append(current)
                current = word
            else:
                current = candidate
        if current:
            lines.append(current)
        return lines

    def line_height(self, size: float) -> float:
        return line_height(size)
