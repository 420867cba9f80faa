"""Rendering surfaces.

``RenderSurface`` is the only coupling point to a graphics backend: the
layout engine measures through it and the render engine draws through it.
Coordinates are Source space (points, origin bottom-left).
"""
from __future__ import annotations

import io
from contextlib import contextmanager
from typing import Iterator

from reportlab.lib.colors import Color
from reportlab.lib.utils import ImageReader
from reportlab.pdfbase import pdfmetrics
from reportlab.pdfgen import canvas

RGB = tuple[float, float, float]


class RenderSurface:
    """Interface for a drawing backend."""

    width: float
    height: float

    def measure_text(self, text: str, font_name: str, size: float) -> float:
        raise NotImplementedError

    def draw_text(self, text: str, x: float, y: float, font_name: str, size: float, color: RGB, align: str = "left") -> None:
        raise NotImplementedError

    def draw_image(self, data: bytes, x: float, y: float, width: float, height: float) -> None:
        raise NotImplementedError

    @contextmanager
    def clip_rect(self, x: float, y: float, width: float, height: float) -> Iterator[None]:
        raise NotImplementedError
        yield

    def finish(self) -> bytes:
        raise NotImplementedError


class ReportLabSurface(RenderSurface):
    """One PDF page drawn with a ReportLab canvas.

    The canvas runs in invariant mode so identical drawing produces identical
    bytes.
    """

    def __init__(self, width: float, height: float):
        self.width = float(width)
        self.height = float(height)
        self._packet = io.BytesIO()
        self._canvas = canvas.Canvas(self._packet, pagesize=(self.width, self.height), invariant=1)

    def measure_text(self, text: str, font_name: str, size: float) -> float:
        return pdfmetrics.stringWidth(text, font_name, size)

    def draw_text(self, text: str, x: float, y: float, font_name: str, size: float, color: RGB, align: str = "left") -> None:
        c = self._canvas
        c.setFont(font_name, size)
        c.setFillColor(Color(*color))
        if align == "center":
            c.drawCentredString(x, y, text)
        elif align == "right":
            c.drawRightString(x, y, text)
        else:
            c.drawString(x, y, text)

    def draw_image(self, data: bytes, x: float, y: float, width: float, height: float) -> None:
        self._canvas.drawImage(ImageReader(io.BytesIO(data)), x, y, width=width, height=height, mask="auto")

    @contextmanager
    def clip_rect(self, x: float, y: float, width: float, height: float) -> Iterator[None]:
        c = self._canvas
        c.saveState()
        try:
            clip_path = c.beginPath()
            clip_path.rect(x, y, width, height)
            c.clipPath(clip_path, stroke=0, fill=0)
            yield
        finally:
            c.restoreState()

    def finish(self) -> bytes:
        self._canvas.showPage()
        self._canvas.save()
        self._packet.seek(0)
        return self._packet.read()
