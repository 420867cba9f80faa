"""Coordinate conversion between Source, Display and Screen space.

- Source: native document space. Points, origin bottom-left, Y up.
- Display: editing canvas. Pixels, origin top-left, Y down, same aspect
  ratio as the page but independently sized.
- Screen: Display scaled by the editor zoom factor.

Source <-> Screen conversions always go through Display so the Y flip lives
in exactly one place (``to_display``/``to_source``).
"""
from __future__ import annotations

import math
from typing import NamedTuple

from .config import DEFAULT_DPI, FIT_PADDING, POINTS_PER_INCH
from .models import DocumentDimensions

SOURCE = "source"
DISPLAY = "display"
SCREEN = "screen"
SPACES = (SOURCE, DISPLAY, SCREEN)


class Point(NamedTuple):
    x: float
    y: float


def _check_dimensions(dims: DocumentDimensions) -> None:
    if dims.width <= 0 or dims.height <= 0:
        raise ValueError(f"Dimensions must be positive, got {dims.width} x {dims.height}")


def to_display(x: float, y: float, document: DocumentDimensions, display: DocumentDimensions) -> Point:
    """Source -> Display: scale each axis and flip Y."""
    return Point(
        x * display.width / document.width,
        display.height - y * display.height / document.height,
    )


def to_source(x: float, y: float, document: DocumentDimensions, display: DocumentDimensions) -> Point:
    """Display -> Source: exact inverse of ``to_display``."""
    return Point(
        x * document.width / display.width,
        (display.height - y) * document.height / display.height,
    )


def to_screen(x: float, y: float, zoom: float) -> Point:
    return Point(x * zoom, y * zoom)


def screen_to_display(x: float, y: float, zoom: float) -> Point:
    return Point(x / zoom, y / zoom)


def snap_to_grid(x: float, y: float, grid_size: float) -> Point:
    if grid_size <= 0:
        raise ValueError(f"grid_size must be positive, got {grid_size}")
    # half-up rounding, same as the editor preview
    return Point(
        math.floor(x / grid_size + 0.5) * grid_size,
        math.floor(y / grid_size + 0.5) * grid_size,
    )


def points_to_pixels(points: float, dpi: float = DEFAULT_DPI) -> float:
    return points * dpi / POINTS_PER_INCH


def pixels_to_points(pixels: float, dpi: float = DEFAULT_DPI) -> float:
    return pixels * POINTS_PER_INCH / dpi


def fit_zoom(
    document: DocumentDimensions,
    container: DocumentDimensions,
    padding: float = FIT_PADDING,
) -> float:
    """Largest zoom at which the page fits inside ``container`` minus padding."""
    scale_x = (container.width - padding * 2) / document.width
    scale_y = (container.height - padding * 2) / document.height
    return min(scale_x, scale_y)


class CoordinateConverter:
    """Converts points between the three spaces for one page/canvas pair.

    Zoom only affects Screen space; positions already stored in Display space
    are never touched by ``update_zoom``.
    """

    def __init__(
        self,
        document: DocumentDimensions,
        display: DocumentDimensions | None = None,
        zoom: float = 1.0,
        dpi: float = DEFAULT_DPI,
    ):
        display = display or document
        _check_dimensions(document)
        _check_dimensions(display)
        if zoom <= 0:
            raise ValueError(f"zoom must be positive, got {zoom}")
        self.document = document
        self.display = display
        self.dpi = dpi
        self._zoom = zoom

    @property
    def zoom(self) -> float:
        return self._zoom

    def update_zoom(self, zoom: float) -> None:
        if zoom <= 0:
            raise ValueError(f"zoom must be positive, got {zoom}")
        self._zoom = zoom

    def source_to_display(self, x: float, y: float) -> Point:
        return to_display(x, y, self.document, self.display)

    def display_to_source(self, x: float, y: float) -> Point:
        return to_source(x, y, self.document, self.display)

    def display_to_screen(self, x: float, y: float) -> Point:
        return to_screen(x, y, self._zoom)

    def screen_to_display(self, x: float, y: float) -> Point:
        return screen_to_display(x, y, self._zoom)

    def source_to_screen(self, x: float, y: float) -> Point:
        display = self.source_to_display(x, y)
        return self.display_to_screen(display.x, display.y)

    def screen_to_source(self, x: float, y: float) -> Point:
        display = self.screen_to_display(x, y)
        return self.display_to_source(display.x, display.y)

    def convert(self, x: float, y: float, from_space: str, to_space: str) -> Point:
        if from_space not in SPACES or to_space not in SPACES:
            raise ValueError(f"Unknown coordinate space: {from_space!r} -> {to_space!r}")
        if from_space == to_space:
            return Point(x, y)

        if from_space == SOURCE:
            display = self.source_to_display(x, y)
        elif from_space == SCREEN:
            display = self.screen_to_display(x, y)
        else:
            display = Point(x, y)

        if to_space == SOURCE:
            return self.display_to_source(display.x, display.y)
        if to_space == SCREEN:
            return self.display_to_screen(display.x, display.y)
        return display

    # Lengths (no origin flip)
    def display_width_to_source(self, width: float) -> float:
        return width * self.document.width / self.display.width

    def display_height_to_source(self, height: float) -> float:
        return height * self.document.height / self.display.height

    def source_height_to_display(self, height: float) -> float:
        return height * self.display.height / self.document.height

    def source_width_to_display(self, width: float) -> float:
        return width * self.display.width / self.document.width

    def points_to_pixels(self, points: float) -> float:
        return points_to_pixels(points, self.dpi)

    def pixels_to_points(self, pixels: float) -> float:
        return pixels_to_points(pixels, self.dpi)

    def snap_to_grid(self, x: float, y: float, grid_size: float) -> Point:
        return snap_to_grid(x, y, grid_size)
