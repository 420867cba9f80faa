from datetime import date

import pytest

from formstamp.bindings import coerce_value, is_checked, validate_binding
from formstamp.errors import BindingValidationError, FieldRenderError
from formstamp.models import FieldDefinition


def field(**overrides):
    data = {"id": "f1", "label": "Field", "position": {"x": 10, "y": 20}}
    data.update(overrides)
    return FieldDefinition.model_validate(data)


@pytest.mark.parametrize("raw", [None, ""])
def test_unfilled_values_coerce_to_none(raw):
    assert coerce_value(field(), raw) is None


@pytest.mark.parametrize("raw,expected", [(True, True), ("true", True), ("1", True), ("0", False), (False, False), ("yes", False), (1, False)])
def test_checkbox_truthiness_is_strict(raw, expected):
    assert is_checked(raw) is expected
    bound = coerce_value(field(type="checkbox"), raw)
    assert bound.kind == "flag"
    assert bound.value is expected


def test_number_coercion():
    bound = coerce_value(field(type="number"), " 42.5 ")
    assert bound.kind == "number"
    assert bound.value == 42.5
    assert coerce_value(field(type="number"), 7).text == "7"
    with pytest.raises(BindingValidationError):
        coerce_value(field(type="number"), "forty")
    with pytest.raises(BindingValidationError):
        coerce_value(field(type="number"), True)


def test_date_coercion_keeps_typed_text():
    bound = coerce_value(field(type="date"), "2024-03-01")
    assert bound.value == date(2024, 3, 1)
    assert bound.text == "2024-03-01"
    assert coerce_value(field(type="date"), date(2020, 1, 2)).text == "2020-01-02"
    with pytest.raises(BindingValidationError):
        coerce_value(field(type="date"), "03/01/2024")


def test_dropdown_must_be_an_option():
    dropdown = field(type="dropdown", options=["Red", "Blue"])
    assert coerce_value(dropdown, "Blue").value == "Blue"
    with pytest.raises(BindingValidationError) as excinfo:
        coerce_value(dropdown, "Green")
    assert isinstance(excinfo.value, FieldRenderError)
    assert excinfo.value.field_id == "f1"


def test_text_stringifies_scalars():
    assert coerce_value(field(), 12).text == "12"
    assert coerce_value(field(type="textarea"), False).text == "false"


def test_validate_binding_reports_rule_failures(make_template):
    template = make_template(
        [
            {"id": "name", "label": "Name", "x": 0, "y": 0, "required": True},
            {"id": "zip", "label": "Zip", "x": 0, "y": 0, "validation": {"pattern": "\\d{5}"}},
            {"id": "age", "label": "Age", "type": "number", "x": 0, "y": 0, "validation": {"min": 18, "max": 99}},
            {"id": "code", "label": "Code", "x": 0, "y": 0, "maxLength": 3},
            {"id": "nick", "label": "Nick", "x": 0, "y": 0, "validation": {"minLength": 2, "errorMessage": "Too short"}},
        ]
    )
    errors = validate_binding(template, {"zip": "1234x", "age": "17", "code": "ABCD", "nick": "a"})
    assert errors == {
        "name": "Name is required",
        "zip": "Invalid format",
        "age": "Age must be >= 18",
        "code": "Code must be at most 3 characters",
        "nick": "Too short",
    }


def test_validate_binding_accepts_valid_values(make_template):
    template = make_template(
        [
            {"id": "zip", "label": "Zip", "x": 0, "y": 0, "required": True, "validation": {"pattern": "\\d{5}"}},
            {"id": "agree", "label": "Agree", "type": "checkbox", "x": 0, "y": 0},
        ]
    )
    assert validate_binding(template, {"zip": "12345", "agree": False}) == {}


def test_validate_binding_reports_type_errors(make_template):
    template = make_template([{"id": "when", "label": "When", "type": "date", "x": 0, "y": 0}])
    errors = validate_binding(template, {"when": "tomorrow"})
    assert "ISO date" in errors["when"]
