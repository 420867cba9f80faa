"""Detect form fields in documents and stamp data values onto visual templates."""

from .coordinates import CoordinateConverter
from .detector import FieldCandidateDetector, LabelPatternSet
from .errors import FormStampError
from .fonts import FontRegistry, FontResolver
from .layout import TextLayout
from .models import FieldDefinition, RenderOptions, Template
from .renderer import RenderEngine, RenderResult
from .templates import TemplateSession, TemplateStore

__version__ = "0.1.0"

__all__ = [
    "CoordinateConverter",
    "FieldCandidateDetector",
    "FieldDefinition",
    "FontRegistry",
    "FontResolver",
    "FormStampError",
    "LabelPatternSet",
    "RenderEngine",
    "RenderOptions",
    "RenderResult",
    "Template",
    "TemplateSession",
    "TemplateStore",
    "TextLayout",
]
