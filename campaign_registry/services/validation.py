"""
Patient payload validation.

Demonstrates:
- Schema-driven field validation (jsonschema Draft 7)
- Collecting every violated field rather than failing on the first one
- Sanitizing input (trim, whitespace collapse, numeric-string coercion) before the rules run
"""

from __future__ import annotations

import re
from typing import Any

import jsonschema

from campaign_registry.exceptions import ValidationError
from campaign_registry.schemas.patient import (
    FIELD_MESSAGES,
    PATIENT_CREATE_SCHEMA,
    PATIENT_UPDATE_SCHEMA,
    REQUIRED_MESSAGES,
)
from campaign_registry.services.normalization import has_service_fields, normalize_services

# Free-text fields: trimmed only, inner whitespace kept.
_TRIMMED_FIELDS = ("occupation", "diagnosis", "treatmentPlan")
# Identity fields: trimmed and inner whitespace collapsed.
_COLLAPSED_FIELDS = ("name", "tel")
_PASSTHROUGH_FIELDS = ("sex", "familyGroup", "status")

_DIGITS = re.compile(r"\D")


def validate_against_schema(data: dict[str, Any], schema: dict[str, Any]) -> list[str]:
    """
    Validate a dict against a JSON schema.
    Returns a list of error messages (empty list = valid), one per offending field.
    """
    validator = jsonschema.Draft7Validator(schema)
    messages: list[str] = []
    seen: set[str] = set()
    for error in sorted(validator.iter_errors(data), key=lambda e: list(e.path)):
        if error.validator == "required":
            fields = [f for f in error.validator_value if f not in error.instance]
        else:
            fields = [str(error.path[0])] if error.path else []
        for field in fields or ["_"]:
            if field in seen:
                continue
            seen.add(field)
            if error.validator == "required":
                messages.append(REQUIRED_MESSAGES.get(field, f"{field} is required"))
            else:
                messages.append(FIELD_MESSAGES.get(field, error.message))
    return messages


def collapse_whitespace(value: str) -> str:
    return " ".join(value.split())


def phone_digits(tel: str) -> str:
    """Strip everything but digits; the result is what uniqueness and search compare."""
    return _DIGITS.sub("", tel or "")


def coerce_age(value: Any) -> Any:
    """Numeric strings and integral floats become ints; anything else is left for the schema to reject."""
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return value


def _sanitize(raw: dict[str, Any], *, partial: bool) -> dict[str, Any]:
    data: dict[str, Any] = {}
    for field in _COLLAPSED_FIELDS:
        value = raw.get(field)
        if value is not None:
            data[field] = collapse_whitespace(value) if isinstance(value, str) else value
    for field in _TRIMMED_FIELDS:
        value = raw.get(field)
        if value is not None:
            data[field] = value.strip() if isinstance(value, str) else value
    for field in _PASSTHROUGH_FIELDS:
        value = raw.get(field)
        if value is not None:
            data[field] = value.strip() if isinstance(value, str) else value
    if raw.get("age") is not None:
        data["age"] = coerce_age(raw["age"])
    if raw.get("labTests") is not None:
        tests = raw["labTests"]
        if isinstance(tests, str):
            tests = [tests] if tests.strip() else []
        if isinstance(tests, list):
            tests = [t.strip() if isinstance(t, str) else t for t in tests]
        data["labTests"] = tests
    if not partial:
        data.setdefault("occupation", "")
        # Required strings blank after trimming count as missing on create.
        # On update they are kept so the field rules reject them.
        for field in ("name", "tel", "sex", "familyGroup"):
            if data.get(field) == "":
                del data[field]
    return data


def validate_patient_payload(raw: dict[str, Any], *, partial: bool = False) -> dict[str, Any]:
    """
    Sanitize and validate a create (``partial=False``) or update payload.

    Returns the cleaned fields, with ``services`` normalized when the payload
    carries service fields (always on create). Raises ``ValidationError``
    listing every violated rule; nothing is written when it raises.
    """
    if not isinstance(raw, dict):
        raise ValidationError(["Request body must be a JSON object"])

    data = _sanitize(raw, partial=partial)
    schema = PATIENT_UPDATE_SCHEMA if partial else PATIENT_CREATE_SCHEMA
    errors = validate_against_schema(data, schema)

    if not partial or has_service_fields(raw):
        try:
            data["services"] = normalize_services(raw)
        except ValidationError as exc:
            errors.extend(exc.details or [exc.message])

    if errors:
        raise ValidationError(errors)
    return data
