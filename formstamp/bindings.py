"""Bound values: coercion of raw binding scalars into typed values per field type.

A binding maps field ids to scalars (string, number, boolean). ``None`` and
``""`` mean "not filled" and are skipped by the renderer.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Mapping

from .errors import BindingValidationError
from .models import FieldDefinition, Template

Binding = Mapping[str, Any]

CHECKBOX_TRUE_VALUES = ("true", "1")


@dataclass(frozen=True)
class BoundValue:
    kind: str  # "text", "number", "date", "flag" or "choice"
    value: Any
    text: str


def is_unfilled(raw: Any) -> bool:
    return raw is None or (isinstance(raw, str) and raw == "")


def is_checked(raw: Any) -> bool:
    """Only ``True``, ``"true"`` and ``"1"`` tick a checkbox."""
    return raw is True or (isinstance(raw, str) and raw in CHECKBOX_TRUE_VALUES)


def _as_text(raw: Any) -> str:
    if isinstance(raw, bool):
        return "true" if raw else "false"
    return str(raw)


def _parse_number(field: FieldDefinition, raw: Any) -> float:
    if isinstance(raw, bool):
        raise BindingValidationError(field.id, "expected a number, got a boolean")
    if isinstance(raw, (int, float)):
        return float(raw)
    try:
        return float(str(raw).strip())
    except ValueError:
        raise BindingValidationError(field.id, f"expected a number, got {raw!r}") from None


def _parse_date(field: FieldDefinition, raw: Any) -> date:
    if isinstance(raw, datetime):
        return raw.date()
    if isinstance(raw, date):
        return raw
    try:
        return date.fromisoformat(str(raw).strip())
    except ValueError:
        raise BindingValidationError(field.id, f"expected an ISO date (YYYY-MM-DD), got {raw!r}") from None


def coerce_value(field: FieldDefinition, raw: Any) -> BoundValue | None:
    """Typed value for ``raw`` or ``None`` when the field is unfilled.

    Raises ``BindingValidationError`` when the value does not fit the field.
    """
    if is_unfilled(raw):
        return None

    if field.type == "checkbox":
        return BoundValue("flag", is_checked(raw), "")
    if field.type == "number":
        return BoundValue("number", _parse_number(field, raw), _as_text(raw))
    if field.type == "date":
        parsed = _parse_date(field, raw)
        text = raw.strip() if isinstance(raw, str) else parsed.isoformat()
        return BoundValue("date", parsed, text)
    if field.type == "dropdown":
        text = _as_text(raw)
        if field.options and text not in field.options:
            raise BindingValidationError(field.id, f"{text!r} is not one of {field.options}")
        return BoundValue("choice", text, text)
    return BoundValue("text", _as_text(raw), _as_text(raw))


def _rule_error(field: FieldDefinition, raw: Any) -> str | None:
    rules = field.validation
    if field.required and (is_unfilled(raw) or raw is False):
        return f"{field.label} is required"
    if is_unfilled(raw):
        return None

    try:
        bound = coerce_value(field, raw)
    except BindingValidationError as exc:
        return exc.reason
    if rules is None or bound is None:
        return None

    message = rules.error_message
    text = bound.text
    if rules.pattern and field.type != "checkbox":
        try:
            matched = re.fullmatch(rules.pattern, text) is not None
        except re.error as exc:
            return f"invalid pattern for {field.label}: {exc}"
        if not matched:
            return message or "Invalid format"
    if rules.min_length is not None and len(text) < rules.min_length:
        return message or f"{field.label} must be at least {rules.min_length} characters"
    if rules.max_length is not None and len(text) > rules.max_length:
        return message or f"{field.label} must be at most {rules.max_length} characters"
    if bound.kind == "number":
        if rules.min is not None and bound.value < rules.min:
            return message or f"{field.label} must be >= {rules.min:g}"
        if rules.max is not None and bound.value > rules.max:
            return message or f"{field.label} must be <= {rules.max:g}"
    return None


def validate_binding(template: Template, binding: Binding) -> dict[str, str]:
    """Per-field error messages for a binding; empty when the form is valid."""
    errors: dict[str, str] = {}
    for field in template.fields:
        error = _rule_error(field, binding.get(field.id))
        if error:
            errors[field.id] = error
    return errors
