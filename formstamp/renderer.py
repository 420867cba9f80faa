"""Render/compose engine: template + binding + options -> one artifact.

Field positions are stored in Display space (origin top-left) and converted
to Source space per field. Text is measured and wrapped through the same
surface it is drawn on, so preview measurement and output agree.
"""
from __future__ import annotations

import io
import logging
import re
from dataclasses import dataclass, field as dataclass_field
from typing import Any, Callable, Mapping

import fitz
from PIL import Image

from .background import compose_pdf_background, load_background
from .bindings import BoundValue, coerce_value, is_unfilled
from .cancellation import CancellationToken, check
from .config import CHECKBOX_MARK, CHECKBOX_MARK_FONT, PROGRESS_STEPS
from .coordinates import CoordinateConverter
from .errors import ArtifactEncodingError, BackgroundError, FieldRenderError
from .fonts import FontResolver
from .layout import TextLayout, alignment_anchor
from .models import FieldDefinition, RenderOptions, Template
from .surface import RGB, RenderSurface, ReportLabSurface

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[float, str], None]

MEDIA_TYPES = {
    "document": "application/pdf",
    "raster-lossless": "image/png",
    "raster-lossy": "image/jpeg",
}

EXTENSIONS = {
    "document": ".pdf",
    "raster-lossless": ".png",
    "raster-lossy": ".jpg",
}

_NAMED_COLORS: dict[str, RGB] = {
    "black": (0.0, 0.0, 0.0),
    "white": (1.0, 1.0, 1.0),
    "red": (1.0, 0.0, 0.0),
    "green": (0.0, 0.5, 0.0),
    "blue": (0.0, 0.0, 1.0),
    "yellow": (1.0, 1.0, 0.0),
    "gray": (0.5, 0.5, 0.5),
    "grey": (0.5, 0.5, 0.5),
}

_RGB_FUNCTION = re.compile(r"rgb\(\s*(\d{1,3})\s*,\s*(\d{1,3})\s*,\s*(\d{1,3})\s*\)")


def parse_css_color(value: str, fallback: RGB = (0.0, 0.0, 0.0)) -> RGB:
    """``#rgb``, ``#rrggbb``, ``rgb(r, g, b)`` or a basic color name -> RGB floats."""
    if not isinstance(value, str):
        return fallback
    s = value.strip().lower()
    if s in _NAMED_COLORS:
        return _NAMED_COLORS[s]
    if s.startswith("#"):
        hexv = s[1:]
        if len(hexv) == 3:
            hexv = "".join(ch * 2 for ch in hexv)
        if len(hexv) == 6 and all(ch in "0123456789abcdef" for ch in hexv):
            return (
                int(hexv[0:2], 16) / 255.0,
                int(hexv[2:4], 16) / 255.0,
                int(hexv[4:6], 16) / 255.0,
            )
    m = _RGB_FUNCTION.fullmatch(s)
    if m:
        return tuple(max(0, min(255, int(group))) / 255.0 for group in m.groups())
    return fallback


def file_extension(target_format: str) -> str:
    return EXTENSIONS[target_format]


@dataclass
class RenderResult:
    artifact: bytes
    media_type: str
    # Fields committed to the page; an unchecked checkbox commits without a mark.
    drawn_fields: list[str] = dataclass_field(default_factory=list)
    skipped_fields: list[tuple[str, str]] = dataclass_field(default_factory=list)
    unfilled_fields: list[str] = dataclass_field(default_factory=list)
    background_applied: bool = False

    @property
    def extension(self) -> str:
        for target_format, media_type in MEDIA_TYPES.items():
            if media_type == self.media_type:
                return EXTENSIONS[target_format]
        return ""

    @property
    def ok(self) -> bool:
        return not self.skipped_fields


@dataclass(frozen=True)
class _TextLine:
    text: str
    x: float
    y: float


class _Progress:
    """Forwards non-decreasing progress values to an optional callback."""

    def __init__(self, callback: ProgressCallback | None):
        self.callback = callback
        self.value = 0.0

    def __call__(self, value: float, desc: str) -> None:
        self.value = max(self.value, value)
        if self.callback:
            self.callback(self.value, desc)


class RenderEngine:
    def __init__(
        self,
        font_resolver: FontResolver | None = None,
        layout: TextLayout | None = None,
        surface_factory: Callable[[float, float], RenderSurface] = ReportLabSurface,
    ):
        self.font_resolver = font_resolver if font_resolver is not None else FontResolver()
        self.layout = layout
        self.surface_factory = surface_factory

    def render(
        self,
        template: Template,
        binding: Mapping[str, Any],
        options: RenderOptions | None = None,
        progress_callback: ProgressCallback | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> RenderResult:
        """Compose one artifact.

        Unfilled and failing fields never abort the render: they are listed on
        the result. Cancellation raises ``RenderCancelledError`` and discards
        the partial page. Encoding failures raise ``ArtifactEncodingError``.
        """
        options = options or RenderOptions()
        template = template.model_copy(deep=True)
        binding = dict(binding)
        progress = _Progress(progress_callback)

        progress(PROGRESS_STEPS["START"], "Preparing page")
        check(cancel_token)
        dims = template.document_dimensions
        converter = CoordinateConverter(dims, template.canvas_dimensions)
        surface = self.surface_factory(dims.width, dims.height)
        layout = self.layout or TextLayout(surface)
        progress(PROGRESS_STEPS["CANVAS"], "Page ready")

        result = RenderResult(artifact=b"", media_type=MEDIA_TYPES[options.target_format])
        pdf_background = None
        if options.include_background and template.background_artifact:
            pdf_background = self._apply_background(template, surface, options, result, cancel_token)
        progress(PROGRESS_STEPS["BACKGROUND"], "Background composed")

        total = len(template.fields)
        span = PROGRESS_STEPS["FIELDS_END"] - PROGRESS_STEPS["BACKGROUND"]
        for index, field in enumerate(template.fields):
            check(cancel_token, committed=len(result.drawn_fields))
            raw = binding.get(field.id)
            if is_unfilled(raw):
                result.unfilled_fields.append(field.id)
            else:
                try:
                    self._render_field(surface, layout, converter, field, coerce_value(field, raw))
                    result.drawn_fields.append(field.id)
                except FieldRenderError as exc:
                    logger.warning("%s", exc)
                    result.skipped_fields.append((field.id, exc.reason))
                except Exception as exc:
                    logger.warning("Failed to render field '%s': %s", field.id, exc)
                    result.skipped_fields.append((field.id, str(exc)))
            progress(PROGRESS_STEPS["BACKGROUND"] + (index + 1) / total * span, f"Field {index + 1}/{total}")

        check(cancel_token, committed=len(result.drawn_fields))
        progress(PROGRESS_STEPS["ENCODE"], "Encoding artifact")
        result.artifact = self._encode(surface, template, options, pdf_background, result)
        progress(PROGRESS_STEPS["COMPLETE"], "Done")
        logger.info(
            "Rendered '%s': %d drawn, %d skipped, %d unfilled",
            template.name,
            len(result.drawn_fields),
            len(result.skipped_fields),
            len(result.unfilled_fields),
        )
        return result

    def _apply_background(
        self,
        template: Template,
        surface: RenderSurface,
        options: RenderOptions,
        result: RenderResult,
        cancel_token: CancellationToken | None,
    ) -> bytes | None:
        """Draw an image background now; return PDF background bytes for merging at encode."""
        dims = template.document_dimensions
        try:
            artifact = load_background(template.background_artifact, cancel_token=cancel_token)
            if artifact.kind == "pdf":
                result.background_applied = True
                return artifact.data
            try:
                surface.draw_image(artifact.data, 0, 0, dims.width, dims.height)
            except Exception as exc:
                raise BackgroundError(f"Failed to draw background image: {exc}") from exc
            result.background_applied = True
        except BackgroundError as exc:
            if options.require_background:
                raise
            logger.warning("Background skipped: %s", exc)
        return None

    def layout_field(
        self,
        layout: TextLayout,
        converter: CoordinateConverter,
        field: FieldDefinition,
        text: str,
        font_name: str,
    ) -> list[_TextLine]:
        """Source-space baselines for each line of ``text`` at the field's anchor."""
        size = field.typography.size
        anchor_x = alignment_anchor(field.position.x, field.max_width, field.alignment)
        if field.multiline and field.max_width:
            lines = layout.wrap(text, converter.display_width_to_source(field.max_width), font_name, size)
        else:
            lines = [text]

        step = converter.source_height_to_display(layout.line_height(size))
        placed: list[_TextLine] = []
        for i, line in enumerate(lines):
            point = converter.display_to_source(anchor_x, field.position.y + i * step)
            placed.append(_TextLine(line, point.x, point.y))
        return placed

    def _render_field(
        self,
        surface: RenderSurface,
        layout: TextLayout,
        converter: CoordinateConverter,
        field: FieldDefinition,
        bound: BoundValue,
    ) -> None:
        typography = field.typography
        color = parse_css_color(typography.color)

        if bound.kind == "flag":
            if not bound.value:
                return
            anchor_x = alignment_anchor(field.position.x, field.max_width, field.alignment)
            point = converter.display_to_source(anchor_x, field.position.y)
            surface.draw_text(CHECKBOX_MARK, point.x, point.y, CHECKBOX_MARK_FONT, typography.size, color, field.alignment)
            return

        font_name = self.font_resolver.resolve_backend_font(typography.family, typography.weight, typography.style)
        lines = self.layout_field(layout, converter, field, bound.text, font_name)

        if field.max_width and not field.multiline:
            origin = converter.display_to_source(field.position.x, 0)
            width = converter.display_width_to_source(field.max_width)
            with surface.clip_rect(origin.x, 0, width, converter.document.height):
                self._draw_lines(surface, lines, font_name, typography.size, color, field.alignment)
        else:
            self._draw_lines(surface, lines, font_name, typography.size, color, field.alignment)

    @staticmethod
    def _draw_lines(surface: RenderSurface, lines: list[_TextLine], font_name: str, size: float, color: RGB, align: str) -> None:
        for line in lines:
            surface.draw_text(line.text, line.x, line.y, font_name, size, color, align)

    def _encode(
        self,
        surface: RenderSurface,
        template: Template,
        options: RenderOptions,
        pdf_background: bytes | None,
        result: RenderResult,
    ) -> bytes:
        try:
            document = surface.finish()
        except Exception as exc:
            raise ArtifactEncodingError(f"Failed to finish page: {exc}") from exc

        if pdf_background is not None:
            try:
                document = compose_pdf_background(pdf_background, document, template.document_dimensions)
            except BackgroundError as exc:
                if options.require_background:
                    raise
                logger.warning("Background skipped: %s", exc)
                result.background_applied = False

        if options.target_format == "document":
            return document
        return rasterize(document, template, options)


def rasterize(document: bytes, template: Template, options: RenderOptions) -> bytes:
    """Rasterize the first page of ``document`` at Display pixel size."""
    dims = template.document_dimensions
    display = template.canvas_dimensions
    try:
        with fitz.open(stream=document, filetype="pdf") as doc:
            matrix = fitz.Matrix(display.width / dims.width, display.height / dims.height)
            pix = doc[0].get_pixmap(matrix=matrix, alpha=False)
            image = Image.frombytes("RGB", (pix.width, pix.height), pix.samples)
        packet = io.BytesIO()
        if options.target_format == "raster-lossless":
            image.save(packet, format="PNG")
        else:
            image.save(packet, format="JPEG", quality=options.quality)
        return packet.getvalue()
    except Exception as exc:
        raise ArtifactEncodingError(f"Failed to encode {options.target_format} artifact: {exc}") from exc
