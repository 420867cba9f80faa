import pytest

from formstamp.coordinates import (
    DISPLAY,
    SCREEN,
    SOURCE,
    CoordinateConverter,
    fit_zoom,
    pixels_to_points,
    points_to_pixels,
    snap_to_grid,
    to_display,
    to_source,
)
from formstamp.models import DocumentDimensions

LETTER = DocumentDimensions(width=612, height=792)
CANVAS = DocumentDimensions(width=1224, height=1584)


def test_to_display_flips_and_scales():
    assert to_display(0, 0, LETTER, CANVAS) == (0, 1584)
    assert to_display(306, 396, LETTER, CANVAS) == (612, 792)
    assert to_display(612, 792, LETTER, CANVAS) == (1224, 0)


@pytest.mark.parametrize(
    "document,display",
    [
        (LETTER, CANVAS),
        (LETTER, LETTER),
        (DocumentDimensions(width=595.2756, height=841.8898), DocumentDimensions(width=800, height=1131.5)),
    ],
)
def test_round_trip_within_tolerance(document, display):
    for x in (0.0, 1.5, 100.25, document.width / 3, document.width):
        for y in (0.0, 7.75, 333.3, document.height / 7, document.height):
            dx, dy = to_display(x, y, document, display)
            sx, sy = to_source(dx, dy, document, display)
            assert abs(sx - x) < 1e-6
            assert abs(sy - y) < 1e-6


def test_screen_routes_through_display():
    converter = CoordinateConverter(LETTER, CANVAS, zoom=2.0)
    display = converter.source_to_display(100, 200)
    assert converter.source_to_screen(100, 200) == (display.x * 2, display.y * 2)
    back = converter.screen_to_source(*converter.source_to_screen(100, 200))
    assert back.x == pytest.approx(100)
    assert back.y == pytest.approx(200)


def test_zoom_update_does_not_change_display_positions():
    converter = CoordinateConverter(LETTER, CANVAS, zoom=1.0)
    before = converter.source_to_display(72, 144)
    converter.update_zoom(2.5)
    assert converter.source_to_display(72, 144) == before
    assert converter.display_to_screen(*before) == (before.x * 2.5, before.y * 2.5)


def test_convert_matches_direct_methods():
    converter = CoordinateConverter(LETTER, CANVAS, zoom=1.5)
    assert converter.convert(10, 20, SOURCE, SCREEN) == converter.source_to_screen(10, 20)
    assert converter.convert(10, 20, SCREEN, SOURCE) == converter.screen_to_source(10, 20)
    assert converter.convert(10, 20, DISPLAY, DISPLAY) == (10, 20)
    with pytest.raises(ValueError):
        converter.convert(1, 1, "paper", SOURCE)


def test_snap_to_grid_rounds_half_up():
    assert snap_to_grid(12.5, 7.4, 5) == (15, 5)
    assert snap_to_grid(2.5, 7.5, 5) == (5, 10)
    assert snap_to_grid(0, 0, 10) == (0, 0)


@pytest.mark.parametrize("grid", [0, -5])
def test_snap_to_grid_rejects_non_positive_grid(grid):
    with pytest.raises(ValueError):
        snap_to_grid(1, 1, grid)


def test_non_positive_zoom_rejected():
    with pytest.raises(ValueError):
        CoordinateConverter(LETTER, CANVAS, zoom=0)
    converter = CoordinateConverter(LETTER)
    with pytest.raises(ValueError):
        converter.update_zoom(-1)


def test_invalid_dimensions_rejected():
    with pytest.raises(ValueError):
        DocumentDimensions(width=0, height=100)


def test_display_defaults_to_document():
    converter = CoordinateConverter(LETTER)
    assert converter.source_to_display(10, 792) == (10, 0)


def test_unit_conversions():
    assert points_to_pixels(72, 96) == pytest.approx(96)
    assert pixels_to_points(96, 96) == pytest.approx(72)
    assert points_to_pixels(pixels_to_points(123.4, 150), 150) == pytest.approx(123.4)


def test_length_conversions():
    converter = CoordinateConverter(LETTER, CANVAS)
    assert converter.display_width_to_source(200) == pytest.approx(100)
    assert converter.source_height_to_display(14.4) == pytest.approx(28.8)


def test_fit_zoom_uses_padding():
    document = DocumentDimensions(width=600, height=800)
    assert fit_zoom(document, DocumentDimensions(width=640, height=840)) == pytest.approx(1.0)
    assert fit_zoom(document, DocumentDimensions(width=340, height=2000)) == pytest.approx(0.5)
