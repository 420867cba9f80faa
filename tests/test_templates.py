import io
import json

import pytest
from PIL import Image

from formstamp.coordinates import CoordinateConverter
from formstamp.errors import TemplateNotFoundError, TemplateValidationError
from formstamp.models import DocumentDimensions, FieldCandidate
from formstamp.templates import (
    TemplateSession,
    TemplateStore,
    add_field,
    clone_template,
    create_default_field,
    delete_field,
    export_filename,
    export_template,
    fields_from_candidates,
    import_template,
    new_template,
    template_from_image,
    update_field,
)

LEGACY_EXPORT = {
    "id": "template_1700000000000_abc123def",
    "templateName": "Invoice",
    "pdfDimensions": {"width": 612, "height": 792},
    "backgroundImage": "",
    "fields": [
        {
            "id": "field_1",
            "label": "Customer",
            "type": "text",
            "x": 120,
            "y": 80,
            "fontSize": 14,
            "fontFamily": "Helvetica",
            "fontWeight": "bold",
            "color": "#333333",
            "maxWidth": 200,
            "alignment": "left",
            "maxLength": 40,
        }
    ],
    "createdAt": "2024-01-01T00:00:00.000Z",
    "updatedAt": "2024-01-02T00:00:00.000Z",
    "version": "1.0.0",
}


def test_new_template_defaults():
    template = new_template("Blank", 612, 792)
    assert template.id.startswith("template_")
    assert template.fields == []
    assert template.background_artifact == ""
    assert template.metadata.version == "1.0.0"
    assert template.canvas_dimensions == template.document_dimensions


def test_default_field():
    field = create_default_field(10, 20)
    assert field.label == "New Field"
    assert field.type == "text"
    assert field.max_width == 200
    assert field.typography.family == "Helvetica"
    assert field.typography.size == 12
    assert field.typography.color == "#000000"
    assert field.alignment == "left"


def test_import_lifts_legacy_keys():
    template = import_template(json.dumps(LEGACY_EXPORT))
    field = template.fields[0]
    assert template.name == "Invoice"
    assert (field.position.x, field.position.y) == (120, 80)
    assert field.typography.size == 14
    assert field.typography.weight == "bold"
    assert field.validation.max_length == 40
    assert template.metadata.created_at.year == 2024
    assert template.metadata.updated_at.year >= 2025


def test_export_round_trip_keeps_camel_case_keys():
    template = import_template(json.dumps(LEGACY_EXPORT))
    exported = json.loads(export_template(template))
    assert exported["templateName"] == "Invoice"
    assert exported["pdfDimensions"] == {"width": 612.0, "height": 792.0}
    assert exported["fields"][0]["position"] == {"x": 120.0, "y": 80.0}
    assert exported["fields"][0]["maxWidth"] == 200.0
    assert import_template(export_template(template)).fields == template.fields


@pytest.mark.parametrize(
    "mutate",
    [
        lambda data: data.pop("pdfDimensions"),
        lambda data: data.pop("id"),
        lambda data: data.update(pdfDimensions={"width": 0, "height": 792}),
        lambda data: data.update(fields={"not": "a list"}),
        lambda data: data["fields"].append(dict(data["fields"][0])),
        lambda data: data["fields"][0].update(type="signature"),
    ],
)
def test_import_rejects_invalid_templates(mutate):
    data = json.loads(json.dumps(LEGACY_EXPORT))
    mutate(data)
    with pytest.raises(TemplateValidationError):
        import_template(json.dumps(data))


def test_import_rejects_malformed_json():
    with pytest.raises(TemplateValidationError):
        import_template(b"{not json")


def test_failed_import_leaves_session_unchanged():
    session = TemplateSession(import_template(json.dumps(LEGACY_EXPORT)))
    before = session.template
    broken = dict(LEGACY_EXPORT)
    broken.pop("pdfDimensions")
    with pytest.raises(TemplateValidationError):
        session.import_active(json.dumps(broken))
    assert session.template is before


def test_clone_is_layout_identical_with_new_identity():
    template = import_template(json.dumps(LEGACY_EXPORT))
    copy = clone_template(template)
    assert copy.id != template.id
    assert copy.name == "Invoice (Copy)"
    assert copy.fields == template.fields
    assert copy.document_dimensions == template.document_dimensions
    assert copy.metadata.created_at >= template.metadata.created_at
    assert clone_template(template, "Renamed").name == "Renamed"


def test_field_edits_are_immutable():
    template = new_template("Blank", 612, 792)
    field = create_default_field(10, 20)
    with_field = add_field(template, field)
    assert template.fields == []
    assert with_field.fields == [field]

    moved = update_field(with_field, field.id, position={"x": 30, "y": 40}, alignment="center")
    assert with_field.fields[0].position.x == 10
    assert moved.fields[0].position.x == 30
    assert moved.fields[0].alignment == "center"
    assert moved.metadata.updated_at >= with_field.metadata.updated_at

    assert delete_field(moved, field.id).fields == []
    assert moved.fields[0].id == field.id


def test_field_edit_errors():
    template = add_field(new_template("Blank", 612, 792), create_default_field(0, 0))
    field_id = template.fields[0].id
    with pytest.raises(TemplateValidationError):
        add_field(template, template.fields[0])
    with pytest.raises(TemplateValidationError):
        update_field(template, "missing", label="x")
    with pytest.raises(TemplateValidationError):
        update_field(template, field_id, alignment="justify")
    with pytest.raises(TemplateValidationError):
        update_field(template, field_id, colour="red")
    with pytest.raises(TemplateValidationError):
        delete_field(template, "missing")


def test_template_from_image_uses_pixel_size():
    packet = io.BytesIO()
    Image.new("RGB", (300, 200), "white").save(packet, format="PNG")
    template = template_from_image("Photo", packet.getvalue())
    assert (template.document_dimensions.width, template.document_dimensions.height) == (300, 200)
    assert template.background_artifact.startswith("data:image/png;base64,")
    with pytest.raises(TemplateValidationError):
        template_from_image("Broken", b"nope")


def test_fields_from_candidates_places_field_after_label():
    converter = CoordinateConverter(DocumentDimensions(width=612, height=792))
    candidates = [
        FieldCandidate("Date of birth:", 40, 700, 80, 12, "Times-Bold", 11, True),
        FieldCandidate("Full Name", 40, 650, 60, 12, "ArialMT", 12, True),
    ]
    first, second = fields_from_candidates(candidates, converter, gap=5)
    assert first.label == "Date of birth"
    assert first.type == "date"
    assert (first.position.x, first.position.y) == (125, 92)
    assert first.typography.family == "Times New Roman"
    assert first.typography.weight == "bold"
    assert first.typography.size == 11
    assert second.type == "text"
    assert second.typography.family == "Arial"


def test_store_save_load_list_delete(tmp_path):
    store = TemplateStore(tmp_path / "templates")
    assert store.list() == []
    template = import_template(json.dumps(LEGACY_EXPORT))
    store.save(template)

    assert store.list() == [{"id": template.id, "name": "Invoice"}]
    assert store.load(template.id) == template
    assert json.loads(store.export(template.id))["templateName"] == "Invoice"
    assert store.delete(template.id)
    assert not store.delete(template.id)
    with pytest.raises(TemplateNotFoundError):
        store.load(template.id)


def test_store_rejects_path_like_ids(tmp_path):
    store = TemplateStore(tmp_path)
    with pytest.raises(TemplateNotFoundError):
        store.load("../secrets")
    assert not store.delete("../secrets")


def test_store_import_and_clear(tmp_path):
    store = TemplateStore(tmp_path)
    imported = store.import_(json.dumps(LEGACY_EXPORT).encode("utf-8"))
    store.save(clone_template(imported))
    assert len(store.list()) == 2
    store.clear()
    assert store.list() == []


def test_export_filename_replaces_whitespace():
    template = new_template("My  Great Form", 100, 100)
    assert export_filename(template) == "My_Great_Form_template.json"


def test_session_zoom_is_clamped_and_never_moves_fields():
    session = TemplateSession(add_field(new_template("Blank", 612, 792), create_default_field(10, 20)))
    for _ in range(40):
        session.zoom_in()
    assert session.zoom == 3.0
    for _ in range(40):
        session.zoom_out()
    assert session.zoom == 0.1
    assert session.template.fields[0].position.x == 10


def test_session_places_fields_from_screen_points():
    session = TemplateSession(new_template("Blank", 612, 792), zoom=2.0)
    field = session.add_field_at(100, 200)
    assert (field.position.x, field.position.y) == (50, 100)

    moved = session.move_field(field.id, 47, 93, grid_size=10)
    assert (moved.position.x, moved.position.y) == (20, 50)


def test_session_seed_from_candidates():
    session = TemplateSession(new_template("Blank", 612, 792))
    seeded = session.seed_from_candidates([FieldCandidate("Email", 40, 700, 30, 12, "Helvetica", 12, True)])
    assert [field.label for field in seeded] == ["Email"]
    assert session.template.fields == seeded


def test_store_reports_corrupt_files_as_validation_errors(tmp_path):
    store = TemplateStore(tmp_path)
    (tmp_path / "template_broken.json").write_text("{not json", encoding="utf-8")
    with pytest.raises(TemplateValidationError):
        store.load("template_broken")
    assert store.list() == []
