"""Font registry and font-name resolution.

``FontResolver.resolve`` maps a requested or detected font name to a family
plus a fallback chain; ``FontResolver.backend_font`` turns that resolution
into a concrete ReportLab font name for measuring and drawing, so preview
measurement and final output use the same font.
"""
from __future__ import annotations

import logging
import os
import re
import tempfile
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable

import requests
from reportlab.pdfbase import pdfmetrics
from reportlab.pdfbase.ttfonts import TTFont

from .cancellation import CancellationToken, check
from .config import DEFAULT_FONT_FAMILY, FONT_FETCH_TIMEOUT
from .errors import FontRegistrationError

logger = logging.getLogger(__name__)

SANS_CHAIN = ("Arial", "Helvetica", "sans-serif")
SERIF_CHAIN = ("Times New Roman", "Times", "serif")
MONO_CHAIN = ("Courier New", "Courier", "monospace")

# Case-insensitive name -> (family, fallback chain)
BUILTIN_FONTS: dict[str, tuple[str, tuple[str, ...]]] = {
    "helvetica": ("Arial", ("Helvetica", "Arial", "sans-serif")),
    "helvetica-bold": ("Arial", ("Helvetica", "Arial", "sans-serif")),
    "arial": ("Arial", ("Helvetica", "Arial", "sans-serif")),
    "arialmt": ("Arial", ("Helvetica", "Arial", "sans-serif")),
    "times": ("Times New Roman", ("Times", "Times New Roman", "serif")),
    "times-roman": ("Times New Roman", ("Times", "Times New Roman", "serif")),
    "times-bold": ("Times New Roman", ("Times", "Times New Roman", "serif")),
    "times new roman": ("Times New Roman", ("Times", "Times New Roman", "serif")),
    "timesnewromanpsmt": ("Times New Roman", ("Times", "Times New Roman", "serif")),
    "courier": ("Courier New", ("Courier", "Courier New", "monospace")),
    "courier-bold": ("Courier New", ("Courier", "Courier New", "monospace")),
    "courier new": ("Courier New", ("Courier", "Courier New", "monospace")),
    "couriernewpsmt": ("Courier New", ("Courier", "Courier New", "monospace")),
    "symbol": ("Symbol", ("Symbol", "serif")),
    "zapfdingbats": ("Zapf Dingbats", ("Zapf Dingbats", "serif")),
}

SANS_KEYWORDS = ("helvetica", "arial", "verdana", "tahoma", "trebuchet", "sans")
MONO_KEYWORDS = ("courier", "monaco", "consolas", "monospace", "mono")

# Family name (lowercase) -> ReportLab base-14 family
BASE14_FAMILIES = {
    "helvetica": "Helvetica",
    "arial": "Helvetica",
    "sans-serif": "Helvetica",
    "times": "Times-Roman",
    "times-roman": "Times-Roman",
    "times new roman": "Times-Roman",
    "serif": "Times-Roman",
    "courier": "Courier",
    "courier new": "Courier",
    "monospace": "Courier",
    "symbol": "Symbol",
    "zapf dingbats": "ZapfDingbats",
    "zapfdingbats": "ZapfDingbats",
}

_BASE14_VARIANTS = {
    "Helvetica": ("Helvetica", "Helvetica-Bold", "Helvetica-Oblique", "Helvetica-BoldOblique"),
    "Times-Roman": ("Times-Roman", "Times-Bold", "Times-Italic", "Times-BoldItalic"),
    "Courier": ("Courier", "Courier-Bold", "Courier-Oblique", "Courier-BoldOblique"),
}

_STYLE_SUFFIX = re.compile(r"[-_,\s]?(BoldItalic|BoldOblique|Bold|Italic|Oblique)$", re.IGNORECASE)
_SUBSET_TAG = re.compile(r"^[A-Z]{6}\+")


def infer_weight(font_name: str) -> str:
    return "bold" if "bold" in font_name.lower() else "normal"


def infer_style(font_name: str) -> str:
    normalized = font_name.lower()
    if "italic" in normalized:
        return "italic"
    if "oblique" in normalized:
        return "oblique"
    return "normal"


def strip_style_suffix(font_name: str) -> str:
    """``ABCDEF+Arial-BoldItalic`` -> ``Arial``."""
    return _STYLE_SUFFIX.sub("", _SUBSET_TAG.sub("", font_name.strip()))


def parse_font_family(value: str | None) -> str | None:
    """First entry of a CSS font-family list, unquoted."""
    if not isinstance(value, str) or not value.strip():
        return None
    primary = value.split(",")[0].strip().strip("'\"")
    return primary or None


def heuristic_chain(font_name: str) -> tuple[str, ...]:
    normalized = font_name.lower()
    if any(keyword in normalized for keyword in SANS_KEYWORDS):
        return SANS_CHAIN
    if any(keyword in normalized for keyword in MONO_KEYWORDS):
        return MONO_CHAIN
    return SERIF_CHAIN


def _font_is_available(font_name: str) -> bool:
    try:
        pdfmetrics.getFont(font_name)
        return True
    except Exception:
        return False


@dataclass(frozen=True)
class CustomFont:
    name: str
    family: str
    backend_name: str | None = None
    path: str | None = None
    weight: str = "normal"
    style: str = "normal"


class FontRegistry:
    """Caller-owned set of custom fonts.

    Fonts registered from files are also registered with ReportLab under
    ``backend_name`` so they can be measured and drawn.
    """

    def __init__(self, fonts: Iterable[CustomFont] = ()):
        self._fonts: dict[str, CustomFont] = {}
        self._lock = threading.Lock()
        for font in fonts:
            self.add(font)

    def add(self, font: CustomFont) -> None:
        with self._lock:
            self._fonts[font.name] = font

    def remove(self, name: str) -> bool:
        with self._lock:
            return self._fonts.pop(name, None) is not None

    def get(self, name: str) -> CustomFont | None:
        with self._lock:
            return self._fonts.get(name)

    def names(self) -> list[str]:
        with self._lock:
            return sorted(self._fonts)

    def snapshot(self) -> dict[str, CustomFont]:
        with self._lock:
            return dict(self._fonts)

    def register_file(self, path: str | Path, name: str | None = None, family: str | None = None) -> CustomFont:
        path = Path(path)
        name = name or path.stem
        try:
            pdfmetrics.registerFont(TTFont(name, str(path)))
        except Exception as exc:
            raise FontRegistrationError(f"Failed to register {path.name}: {exc}") from exc
        font = CustomFont(
            name=name,
            family=family or strip_style_suffix(name),
            backend_name=name,
            path=str(path),
            weight=infer_weight(name),
            style=infer_style(name),
        )
        self.add(font)
        return font

    def register_directory(self, fonts_dir: str | Path) -> list[CustomFont]:
        """Register every .ttf/.otf file in ``fonts_dir``; failures are logged."""
        fonts_dir = Path(fonts_dir)
        registered: list[CustomFont] = []
        if not fonts_dir.exists():
            return registered
        for pattern in ("*.ttf", "*.otf"):
            for font_file in sorted(fonts_dir.glob(pattern)):
                try:
                    registered.append(self.register_file(font_file))
                    logger.info("Registered font: %s", font_file.stem)
                except FontRegistrationError as exc:
                    logger.warning("%s", exc)
        return registered

    def fetch(
        self,
        url: str,
        name: str,
        family: str | None = None,
        dest_dir: str | Path | None = None,
        session: requests.Session | None = None,
        timeout: float = FONT_FETCH_TIMEOUT,
        cancel_token: CancellationToken | None = None,
    ) -> CustomFont:
        """Download a remote font asset and register it."""
        check(cancel_token)
        http = session or requests
        try:
            response = http.get(url, timeout=timeout)
            response.raise_for_status()
        except requests.RequestException as exc:
            raise FontRegistrationError(f"Failed to fetch font '{name}' from {url}: {exc}") from exc
        check(cancel_token)

        suffix = Path(url.split("?", 1)[0]).suffix or ".ttf"
        if dest_dir is not None:
            target = Path(dest_dir) / f"{name}{suffix}"
            target.parent.mkdir(parents=True, exist_ok=True)
        else:
            fd, temp_name = tempfile.mkstemp(suffix=suffix)
            os.close(fd)
            target = Path(temp_name)
        target.write_bytes(response.content)
        return self.register_file(target, name=name, family=family)


@dataclass(frozen=True)
class FontResolution:
    requested: str
    family: str
    fallbacks: tuple[str, ...]
    source: str  # "custom", "builtin", "base" or "heuristic"
    weight: str
    style: str

    @property
    def resolved(self) -> bool:
        return self.source != "heuristic"

    def css_family(self) -> str:
        unique: list[str] = []
        for font in (self.family, *self.fallbacks):
            if font not in unique:
                unique.append(font)
        return ", ".join(f'"{font}"' if " " in font else font for font in unique)


class FontResolver:
    def __init__(self, registry: FontRegistry | None = None):
        self.registry = registry if registry is not None else FontRegistry()

    def resolve(self, font_name: str) -> FontResolution:
        snapshot = self.registry.snapshot()
        requested = font_name or DEFAULT_FONT_FAMILY
        weight = infer_weight(requested)
        style = infer_style(requested)

        custom = snapshot.get(requested)
        if custom is not None:
            return FontResolution(requested, custom.family, heuristic_chain(requested), "custom", weight, style)

        mapping = BUILTIN_FONTS.get(requested.lower())
        if mapping is not None:
            return FontResolution(requested, mapping[0], mapping[1], "builtin", weight, style)

        base_name = strip_style_suffix(requested)
        mapping = BUILTIN_FONTS.get(base_name.lower())
        if mapping is not None:
            return FontResolution(requested, mapping[0], mapping[1], "base", weight, style)

        # Unresolved: keep the raw name and let the backend substitute.
        return FontResolution(requested, requested, heuristic_chain(base_name), "heuristic", weight, style)

    def backend_font(self, resolution: FontResolution, weight: str = "normal", style: str = "normal") -> str:
        """First concrete ReportLab font along ``[family, *fallbacks]``."""
        bold = weight == "bold" or (weight.isdigit() and int(weight) >= 600) or resolution.weight == "bold"
        italic = style in ("italic", "oblique") or resolution.style != "normal"
        snapshot = self.registry.snapshot()

        for candidate in (resolution.family, *resolution.fallbacks):
            custom = _custom_for_family(snapshot, candidate, bold, italic)
            if custom is not None:
                return custom
            base = BASE14_FAMILIES.get(candidate.lower())
            if base is not None:
                return apply_emphasis(base, bold, italic)
            if _font_is_available(candidate):
                return candidate

        return apply_emphasis("Helvetica", bold, italic)

    def resolve_backend_font(self, family: str, weight: str = "normal", style: str = "normal") -> str:
        requested = parse_font_family(family) or DEFAULT_FONT_FAMILY
        return self.backend_font(self.resolve(requested), weight, style)


def apply_emphasis(base_font: str, bold: bool, italic: bool) -> str:
    variants = _BASE14_VARIANTS.get(base_font)
    if variants is None:
        return base_font
    regular, bold_font, italic_font, bold_italic = variants
    if bold and italic:
        return bold_italic
    if bold:
        return bold_font
    if italic:
        return italic_font
    return regular


def _custom_for_family(snapshot: dict[str, CustomFont], family: str, bold: bool, italic: bool) -> str | None:
    members = [f for f in snapshot.values() if f.family.lower() == family.lower() and f.backend_name]
    if not members:
        return None
    wanted_weight = "bold" if bold else "normal"
    for font in members:
        if font.weight == wanted_weight and (font.style != "normal") == italic:
            return font.backend_name
    for font in members:
        if font.weight == "normal" and font.style == "normal":
            return font.backend_name
    return members[0].backend_name
