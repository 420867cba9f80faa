"""Template, field and render option models.

Persisted templates use camelCase keys compatible with the editor
export (``templateName``, ``pdfDimensions``, ``backgroundImage``). Legacy flat
field keys (``x``, ``y``, ``fontSize``...) are lifted into the nested
``position``/``typography`` shape on load.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from .config import DEFAULT_COLOR, DEFAULT_FONT_FAMILY, DEFAULT_FONT_SIZE, DEFAULT_QUALITY, TEMPLATE_SCHEMA_VERSION

FieldType = Literal["text", "number", "date", "textarea", "checkbox", "dropdown"]
Alignment = Literal["left", "center", "right"]
FontStyle = Literal["normal", "italic", "oblique"]
TargetFormat = Literal["document", "raster-lossless", "raster-lossy"]

_FONT_WEIGHTS = {"normal", "bold", "100", "200", "300", "400", "500", "600", "700", "800", "900"}


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class _Model(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class DocumentDimensions(_Model):
    width: float = Field(gt=0)
    height: float = Field(gt=0)


class Point(_Model):
    x: float
    y: float


class Typography(_Model):
    family: str = DEFAULT_FONT_FAMILY
    size: float = Field(DEFAULT_FONT_SIZE, gt=0)
    weight: str = "normal"
    style: FontStyle = "normal"
    color: str = DEFAULT_COLOR

    @field_validator("weight", mode="before")
    @classmethod
    def _check_weight(cls, value: Any) -> str:
        weight = str(value).lower()
        if weight not in _FONT_WEIGHTS:
            raise ValueError(f"unsupported font weight: {value!r}")
        return weight

    @property
    def is_bold(self) -> bool:
        return self.weight == "bold" or (self.weight.isdigit() and int(self.weight) >= 600)


class ValidationRules(_Model):
    pattern: str | None = None
    min: float | None = None
    max: float | None = None
    min_length: int | None = Field(None, ge=0)
    max_length: int | None = Field(None, ge=0)
    error_message: str | None = None


class FieldDefinition(_Model):
    id: str = Field(min_length=1)
    label: str = "New Field"
    type: FieldType = "text"
    position: Point
    max_width: float | None = Field(None, gt=0)
    typography: Typography = Field(default_factory=Typography)
    alignment: Alignment = "left"
    multiline: bool = False
    required: bool = False
    placeholder: str | None = None
    default_value: str | None = None
    options: list[str] | None = None
    validation: ValidationRules | None = None

    @model_validator(mode="before")
    @classmethod
    def _lift_flat_keys(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        if "position" not in data and "x" in data and "y" in data:
            data["position"] = {"x": data.pop("x"), "y": data.pop("y")}
        flat_typography = {
            "fontFamily": "family",
            "fontSize": "size",
            "fontWeight": "weight",
            "fontStyle": "style",
            "color": "color",
        }
        if "typography" not in data and any(key in data for key in flat_typography):
            data["typography"] = {
                target: data.pop(key) for key, target in flat_typography.items() if key in data
            }
        if "maxLength" in data:
            rules = dict(data.get("validation") or {})
            rules.setdefault("maxLength", data.pop("maxLength"))
            data["validation"] = rules
        return data


class TemplateMetadata(_Model):
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    version: str = TEMPLATE_SCHEMA_VERSION


class Template(_Model):
    id: str = Field(min_length=1)
    name: str = Field(alias="templateName")
    document_dimensions: DocumentDimensions = Field(alias="pdfDimensions")
    display_dimensions: DocumentDimensions | None = Field(None, alias="canvasDimensions")
    background_artifact: str = Field("", alias="backgroundImage")
    fields: list[FieldDefinition] = Field(default_factory=list)
    metadata: TemplateMetadata = Field(default_factory=TemplateMetadata)

    @model_validator(mode="before")
    @classmethod
    def _lift_metadata(cls, data: Any) -> Any:
        if not isinstance(data, dict) or "metadata" in data:
            return data
        data = dict(data)
        legacy = {key: data.pop(key) for key in ("createdAt", "updatedAt", "version") if key in data}
        if legacy:
            data["metadata"] = legacy
        return data

    @model_validator(mode="after")
    def _check_unique_field_ids(self) -> Template:
        seen: set[str] = set()
        for field in self.fields:
            if field.id in seen:
                raise ValueError(f"duplicate field id: {field.id}")
            seen.add(field.id)
        return self

    @property
    def canvas_dimensions(self) -> DocumentDimensions:
        return self.display_dimensions or self.document_dimensions

    def get_field(self, field_id: str) -> FieldDefinition | None:
        for field in self.fields:
            if field.id == field_id:
                return field
        return None


class RenderOptions(_Model):
    include_background: bool = True
    target_format: TargetFormat = "document"
    quality: int = Field(DEFAULT_QUALITY, ge=1, le=100)
    require_background: bool = False


@dataclass(frozen=True)
class TextRun:
    """One positioned glyph run in Source space (origin bottom-left)."""

    text: str
    x: float
    y: float
    width: float
    height: float
    font_name: str
    font_size: float

    @property
    def center_y(self) -> float:
        return self.y + self.height / 2.0


@dataclass(frozen=True)
class FieldCandidate:
    text: str
    x: float
    y: float
    width: float
    height: float
    font_name: str
    font_size: float
    is_label: bool = False

    def to_dict(self) -> dict:
        return {
            "text": self.text,
            "x": self.x,
            "y": self.y,
            "width": self.width,
            "height": self.height,
            "fontName": self.font_name,
            "fontSize": self.font_size,
            "isLabel": self.is_label,
        }
