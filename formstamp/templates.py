"""Template construction, editing, import/export and persistence.

Field edits never mutate their input: every operation returns a new
``Template`` with ``metadata.updated_at`` refreshed.
"""
from __future__ import annotations

import io
import json
import logging
import re
import threading
import time
import uuid
from pathlib import Path
from typing import Any, Iterable

from PIL import Image, UnidentifiedImageError
from pydantic import BaseModel, ValidationError

from .background import to_data_url
from .config import MAX_ZOOM, MIN_ZOOM, TEMPLATE_SCHEMA_VERSION, ZOOM_STEP
from .coordinates import CoordinateConverter, Point
from .errors import TemplateNotFoundError, TemplateValidationError
from .fonts import FontResolver
from .models import (
    DocumentDimensions,
    FieldCandidate,
    FieldDefinition,
    Template,
    TemplateMetadata,
    Typography,
    utc_now,
)

logger = logging.getLogger(__name__)

REQUIRED_KEYS = ("id", "templateName", "pdfDimensions", "fields")
_SAFE_ID = re.compile(r"^[A-Za-z0-9_.-]+$")


def _random_suffix() -> str:
    return uuid.uuid4().hex[:9]


def generate_template_id() -> str:
    return f"template_{int(time.time() * 1000)}_{_random_suffix()}"


def generate_field_id() -> str:
    return f"field_{int(time.time() * 1000)}_{_random_suffix()}"


def new_template(
    name: str,
    width: float,
    height: float,
    background_artifact: str = "",
    display: DocumentDimensions | None = None,
) -> Template:
    now = utc_now()
    return Template(
        id=generate_template_id(),
        name=name,
        document_dimensions=DocumentDimensions(width=width, height=height),
        display_dimensions=display,
        background_artifact=background_artifact,
        fields=[],
        metadata=TemplateMetadata(created_at=now, updated_at=now, version=TEMPLATE_SCHEMA_VERSION),
    )


def template_from_image(name: str, data: bytes, media_type: str = "image/png") -> Template:
    """New template sized to a raster background (one unit per pixel)."""
    try:
        with Image.open(io.BytesIO(data)) as image:
            width, height = image.size
    except (UnidentifiedImageError, OSError) as exc:
        raise TemplateValidationError(f"Failed to load image: {exc}") from exc
    return new_template(name, width, height, background_artifact=to_data_url(data, media_type))


def clone_template(template: Template, new_name: str | None = None) -> Template:
    """Copy with a fresh id and timestamps; fields are identical copies."""
    now = utc_now()
    return template.model_copy(
        deep=True,
        update={
            "id": generate_template_id(),
            "name": new_name or f"{template.name} (Copy)",
            "metadata": TemplateMetadata(created_at=now, updated_at=now, version=template.metadata.version),
        },
    )


def _touched(template: Template, fields: list[FieldDefinition]) -> Template:
    metadata = template.metadata.model_copy(update={"updated_at": utc_now()})
    return template.model_copy(update={"fields": fields, "metadata": metadata})


def create_default_field(x: float, y: float) -> FieldDefinition:
    return FieldDefinition(
        id=generate_field_id(),
        label="New Field",
        type="text",
        position={"x": x, "y": y},
        max_width=200,
        typography=Typography(),
        alignment="left",
        required=False,
        placeholder="",
    )


def add_field(template: Template, field: FieldDefinition) -> Template:
    if template.get_field(field.id) is not None:
        raise TemplateValidationError(f"duplicate field id: {field.id}")
    return _touched(template, [*template.fields, field])


def update_field(template: Template, field_id: str, **changes: Any) -> Template:
    """Replace attributes of one field; the result is re-validated as a whole."""
    current = template.get_field(field_id)
    if current is None:
        raise TemplateValidationError(f"unknown field id: {field_id}")
    unknown = set(changes) - set(FieldDefinition.model_fields)
    if unknown:
        raise TemplateValidationError(f"unknown field attribute(s): {', '.join(sorted(unknown))}")
    payload = current.model_dump()
    for key, value in changes.items():
        payload[key] = value.model_dump() if isinstance(value, BaseModel) else value
    try:
        updated = FieldDefinition.model_validate(payload)
    except ValidationError as exc:
        raise TemplateValidationError(f"invalid field update for {field_id}", exc.errors()) from exc
    if updated.id != field_id and template.get_field(updated.id) is not None:
        raise TemplateValidationError(f"duplicate field id: {updated.id}")
    return _touched(template, [updated if f.id == field_id else f for f in template.fields])


def delete_field(template: Template, field_id: str) -> Template:
    if template.get_field(field_id) is None:
        raise TemplateValidationError(f"unknown field id: {field_id}")
    return _touched(template, [f for f in template.fields if f.id != field_id])


def _guess_field_type(label: str) -> str:
    normalized = label.lower()
    if "date" in normalized:
        return "date"
    if "amount" in normalized:
        return "number"
    return "text"


def fields_from_candidates(
    candidates: Iterable[FieldCandidate],
    converter: CoordinateConverter,
    resolver: FontResolver | None = None,
    gap: float = 4.0,
) -> list[FieldDefinition]:
    """Seed one field per label candidate, placed just right of the label.

    Candidates are in Source space; the seeded positions are in Display space
    on the label's baseline.
    """
    resolver = resolver or FontResolver()
    fields: list[FieldDefinition] = []
    for index, candidate in enumerate(candidates):
        label = candidate.text.strip().rstrip(":").strip() or f"Field {index + 1}"
        resolution = resolver.resolve(candidate.font_name)
        anchor = converter.source_to_display(candidate.x + candidate.width, candidate.y)
        fields.append(
            FieldDefinition(
                id=generate_field_id(),
                label=label,
                type=_guess_field_type(label),
                position={"x": anchor.x + gap, "y": anchor.y},
                typography=Typography(
                    family=resolution.family,
                    size=candidate.font_size or 12,
                    weight=resolution.weight,
                    style=resolution.style,
                ),
            )
        )
    return fields


def validate_template_payload(payload: Any) -> Template:
    """Check structure the way the editor does, then build the model."""
    if not isinstance(payload, dict):
        raise TemplateValidationError("Invalid template format: expected a JSON object")
    missing = [key for key in REQUIRED_KEYS if key not in payload]
    if missing:
        raise TemplateValidationError(f"Invalid template format: missing {', '.join(missing)}")
    dims = payload["pdfDimensions"]
    if not isinstance(dims, dict) or not dims.get("width") or not dims.get("height"):
        raise TemplateValidationError("Invalid template format: pdfDimensions needs width and height")
    if not isinstance(payload["fields"], list):
        raise TemplateValidationError("Invalid template format: fields must be an array")
    try:
        return Template.model_validate(payload)
    except ValidationError as exc:
        raise TemplateValidationError(f"Invalid template: {exc.error_count()} error(s)", exc.errors()) from exc


def import_template(data: bytes | str) -> Template:
    """Parse and validate exported template JSON; ``updatedAt`` is refreshed."""
    try:
        payload = json.loads(data)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise TemplateValidationError(f"Failed to parse template file: {exc}") from exc
    template = validate_template_payload(payload)
    metadata = template.metadata.model_copy(update={"updated_at": utc_now()})
    return template.model_copy(update={"metadata": metadata})


def export_template(template: Template) -> bytes:
    return template.model_dump_json(by_alias=True, indent=2).encode("utf-8")


def export_filename(template: Template) -> str:
    stem = re.sub(r"\s+", "_", template.name)
    return f"{stem}_template.json"


class TemplateStore:
    """Directory of ``<id>.json`` files."""

    def __init__(self, directory: str | Path):
        self.directory = Path(directory)
        self._lock = threading.Lock()

    def _path(self, template_id: str) -> Path:
        if not _SAFE_ID.match(template_id):
            raise TemplateNotFoundError(template_id)
        return self.directory / f"{template_id}.json"

    def save(self, template: Template) -> None:
        path = self._path(template.id)
        with self._lock:
            self.directory.mkdir(parents=True, exist_ok=True)
            tmp_path = path.with_suffix(".json.tmp")
            tmp_path.write_bytes(export_template(template))
            tmp_path.replace(path)
        logger.info("Template '%s' saved (%s)", template.name, template.id)

    def load(self, template_id: str) -> Template:
        path = self._path(template_id)
        if not path.exists():
            raise TemplateNotFoundError(template_id)
        try:
            payload = json.loads(path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            raise TemplateValidationError(f"Stored template '{template_id}' is unreadable: {exc}") from exc
        return validate_template_payload(payload)

    def list(self) -> list[dict[str, str]]:
        if not self.directory.exists():
            return []
        entries = []
        for path in sorted(self.directory.glob("*.json")):
            try:
                payload = json.loads(path.read_text(encoding="utf-8"))
                entries.append({"id": payload["id"], "name": payload["templateName"]})
            except (OSError, ValueError, KeyError, TypeError) as exc:
                logger.warning("Skipping unreadable template %s: %s", path.name, exc)
        return entries

    def delete(self, template_id: str) -> bool:
        try:
            path = self._path(template_id)
        except TemplateNotFoundError:
            return False
        with self._lock:
            if not path.exists():
                return False
            path.unlink()
        logger.info("Template %s deleted", template_id)
        return True

    def clear(self) -> None:
        for entry in self.list():
            self.delete(entry["id"])

    def import_(self, data: bytes | str) -> Template:
        template = import_template(data)
        self.save(template)
        return template

    def export(self, template_id: str) -> bytes:
        return export_template(self.load(template_id))


class TemplateSession:
    """The active template being edited plus its view (zoom) state."""

    def __init__(self, template: Template, zoom: float = 1.0):
        self.template = template
        self.converter = CoordinateConverter(template.document_dimensions, template.canvas_dimensions, zoom=zoom)

    @property
    def zoom(self) -> float:
        return self.converter.zoom

    def set_zoom(self, zoom: float) -> float:
        zoom = round(min(MAX_ZOOM, max(MIN_ZOOM, zoom)), 2)
        self.converter.update_zoom(zoom)
        return zoom

    def zoom_in(self) -> float:
        return self.set_zoom(self.zoom + ZOOM_STEP)

    def zoom_out(self) -> float:
        return self.set_zoom(self.zoom - ZOOM_STEP)

    def replace(self, template: Template) -> None:
        self.template = template
        self.converter = CoordinateConverter(template.document_dimensions, template.canvas_dimensions, zoom=self.zoom)

    def import_active(self, data: bytes | str) -> Template:
        """Replace the active template; on any error the session is unchanged."""
        self.replace(import_template(data))
        return self.template

    def add_field_at(self, screen_x: float, screen_y: float, grid_size: float | None = None) -> FieldDefinition:
        point = self._screen_to_display(screen_x, screen_y, grid_size)
        field = create_default_field(point.x, point.y)
        self.template = add_field(self.template, field)
        return field

    def move_field(self, field_id: str, screen_x: float, screen_y: float, grid_size: float | None = None) -> FieldDefinition:
        point = self._screen_to_display(screen_x, screen_y, grid_size)
        self.template = update_field(self.template, field_id, position={"x": point.x, "y": point.y})
        return self.template.get_field(field_id)

    def seed_from_candidates(self, candidates: Iterable[FieldCandidate], resolver: FontResolver | None = None) -> list[FieldDefinition]:
        seeded = fields_from_candidates(candidates, self.converter, resolver)
        template = self.template
        for field in seeded:
            template = add_field(template, field)
        self.template = template
        return seeded

    def _screen_to_display(self, x: float, y: float, grid_size: float | None) -> Point:
        point = self.converter.screen_to_display(x, y)
        if grid_size:
            point = self.converter.snap_to_grid(point.x, point.y, grid_size)
        return point
