"""Tests for patient field validation."""

import pytest

from campaign_registry.exceptions import ValidationError
from campaign_registry.schemas.patient import FIELD_MESSAGES, PATIENT_CREATE_SCHEMA
from campaign_registry.services.validation import (
    coerce_age,
    phone_digits,
    validate_against_schema,
    validate_patient_payload,
)


def _make_patient(**overrides):
    record = {
        "name": "Amina Bello",
        "age": 34,
        "sex": "Female",
        "occupation": "Trader",
        "tel": "677 123 456",
        "familyGroup": "ESDA",
        "services": ["General consultations"],
    }
    record.update(overrides)
    return record


def test_valid_patient():
    data = validate_patient_payload(_make_patient())
    assert data["name"] == "Amina Bello"
    assert data["services"] == ["General consultations"]


def test_missing_required_fields_are_all_reported():
    errors = validate_against_schema({}, PATIENT_CREATE_SCHEMA)
    assert "Patient name is required" in errors
    assert "Patient age is required" in errors
    assert "Phone number is required" in errors
    assert "Family group is required" in errors
    assert "Patient sex is required" in errors


def test_every_violation_collected_in_one_error():
    payload = _make_patient(name="J", age=200, sex="Other", services=[])
    with pytest.raises(ValidationError) as excinfo:
        validate_patient_payload(payload)
    details = excinfo.value.details
    assert len(details) == 4
    assert any(d.startswith("Name") for d in details)
    assert any(d.startswith("Age") for d in details)
    assert any(d.startswith("Sex") for d in details)
    assert "At least one service is required" in details


def test_age_numeric_string_is_coerced():
    data = validate_patient_payload(_make_patient(age=" 42 "))
    assert data["age"] == 42


@pytest.mark.parametrize("age", ["-3", -3, "12.5", 12.5, "forty", True])
def test_bad_age_rejected(age):
    with pytest.raises(ValidationError) as excinfo:
        validate_patient_payload(_make_patient(age=age))
    assert any("Age" in d for d in excinfo.value.details)


def test_coerce_age_leaves_non_numeric_values():
    assert coerce_age("abc") == "abc"
    assert coerce_age(30.0) == 30


def test_formatted_phone_accepted_by_digit_count():
    data = validate_patient_payload(_make_patient(tel="+237 (677)  12-34-56"))
    assert data["tel"] == "+237 (677) 12-34-56"
    assert phone_digits(data["tel"]) == "237677123456"


@pytest.mark.parametrize("tel", ["123-4567", "1234567890123456", "677-ABC-456"])
def test_invalid_phone_rejected(tel):
    with pytest.raises(ValidationError) as excinfo:
        validate_patient_payload(_make_patient(tel=tel))
    assert any("phone number" in d for d in excinfo.value.details)


def test_name_whitespace_collapsed_and_pattern_checked():
    data = validate_patient_payload(_make_patient(name="  Jean-Paul   O'Neil Jr. "))
    assert data["name"] == "Jean-Paul O'Neil Jr."

    with pytest.raises(ValidationError):
        validate_patient_payload(_make_patient(name="R2D2"))


@pytest.mark.parametrize("name", ["--", ". '", "  ..  "])
def test_name_without_letters_rejected(name):
    with pytest.raises(ValidationError) as excinfo:
        validate_patient_payload(_make_patient(name=name))
    assert FIELD_MESSAGES["name"] in excinfo.value.details


def test_invalid_lab_test():
    with pytest.raises(ValidationError) as excinfo:
        validate_patient_payload(_make_patient(labTests=["Malaria", "MRI"]))
    assert any("Lab tests" in d for d in excinfo.value.details)


def test_partial_update_only_checks_supplied_fields():
    data = validate_patient_payload({"diagnosis": "  Malaria  "}, partial=True)
    assert data == {"diagnosis": "Malaria"}


def test_update_cannot_set_deleted_status():
    with pytest.raises(ValidationError) as excinfo:
        validate_patient_payload({"status": "deleted"}, partial=True)
    assert any("Status" in d for d in excinfo.value.details)


def test_non_object_body_rejected():
    with pytest.raises(ValidationError):
        validate_patient_payload(["not", "a", "dict"])


@pytest.mark.parametrize("field", ["name", "tel", "sex", "familyGroup"])
def test_partial_update_rejects_blank_required_field(field):
    with pytest.raises(ValidationError) as excinfo:
        validate_patient_payload({field: "   "}, partial=True)
    assert excinfo.value.details == [FIELD_MESSAGES[field]]
