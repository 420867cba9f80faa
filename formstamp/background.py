"""Template background artifacts: decoding and composition under the overlay."""
from __future__ import annotations

import base64
import binascii
import io
import re
from dataclasses import dataclass
from pathlib import Path

from PIL import Image, UnidentifiedImageError
from pypdf import PdfReader, PdfWriter
from pypdf.errors import PyPdfError

from .cancellation import CancellationToken, check
from .errors import BackgroundError
from .models import DocumentDimensions

_DATA_URL = re.compile(r"^data:(?P<media>[\w.+-]+/[\w.+-]+)?(?P<b64>;base64)?,(?P<payload>.*)$", re.DOTALL)


@dataclass(frozen=True)
class BackgroundArtifact:
    kind: str  # "pdf" or "image"
    data: bytes


def to_data_url(data: bytes, media_type: str) -> str:
    return f"data:{media_type};base64,{base64.b64encode(data).decode('ascii')}"


def _decode_data_url(value: str) -> bytes:
    match = _DATA_URL.match(value)
    if not match or not match.group("b64"):
        raise BackgroundError("Background data URL must be base64 encoded.")
    try:
        return base64.b64decode(match.group("payload"), validate=True)
    except (binascii.Error, ValueError) as exc:
        raise BackgroundError(f"Invalid base64 background data: {exc}") from exc


def _classify(data: bytes) -> BackgroundArtifact:
    if data.startswith(b"%PDF"):
        return BackgroundArtifact("pdf", data)
    try:
        with Image.open(io.BytesIO(data)) as image:
            image.verify()
    except (UnidentifiedImageError, OSError, SyntaxError) as exc:
        raise BackgroundError(f"Unsupported background format: {exc}") from exc
    return BackgroundArtifact("image", data)


def load_background(
    value: str | bytes,
    base_dir: str | Path | None = None,
    cancel_token: CancellationToken | None = None,
) -> BackgroundArtifact:
    """Decode a background given as raw bytes, a data URL or a file path."""
    check(cancel_token)
    if isinstance(value, (bytes, bytearray)):
        data = bytes(value)
    elif value.startswith("data:"):
        data = _decode_data_url(value)
    else:
        path = Path(value)
        if base_dir is not None and not path.is_absolute():
            path = Path(base_dir) / path
        try:
            data = path.read_bytes()
        except OSError as exc:
            raise BackgroundError(f"Cannot read background file {path}: {exc}") from exc
    check(cancel_token)
    if not data:
        raise BackgroundError("Background artifact is empty.")
    return _classify(data)


def compose_pdf_background(background_pdf: bytes, overlay_pdf: bytes, dims: DocumentDimensions) -> bytes:
    """Merge the single overlay page on top of the background's first page."""
    try:
        background_page = PdfReader(io.BytesIO(background_pdf)).pages[0]
        overlay_page = PdfReader(io.BytesIO(overlay_pdf)).pages[0]

        box = background_page.mediabox
        if abs(float(box.width) - dims.width) > 0.01 or abs(float(box.height) - dims.height) > 0.01:
            background_page.scale_to(dims.width, dims.height)
        background_page.merge_page(overlay_page)

        writer = PdfWriter()
        writer.add_page(background_page)
        packet = io.BytesIO()
        writer.write(packet)
        return packet.getvalue()
    except (PyPdfError, IndexError, ValueError, KeyError) as exc:
        raise BackgroundError(f"Failed to compose PDF background: {exc}") from exc
