"""
Vocabularies and JSON schemas for patient registration payloads.

Demonstrates:
- Declarative field rules (type, bounds, pattern, enum) kept as data
- One schema for registration, a relaxed one for partial updates
- The legacy service alias table as plain data, not inline conditionals
"""

from __future__ import annotations

SEXES: tuple[str, ...] = ("Male", "Female")

FAMILY_GROUPS: tuple[str, ...] = ("ESDA", "MASUDA", "AKUCDA", "UBACDA", "OTHERS")

VALID_SERVICES: tuple[str, ...] = (
    "General consultations",
    "Eye consultation",
    "Gynaecology",
    "Cervical cancer screening",
    "Sexual and reproductive health",
    "Dental consultation",
)

# Deprecated service names still sent by older clients -> current name.
SERVICE_ALIASES: dict[str, str] = {
    "Eye con": "Eye consultation",
}

LAB_TESTS: tuple[str, ...] = (
    "Malaria",
    "HIV",
    "HBV",
    "HCV",
    "Blood grouping",
    "Blood glucose",
    "Syphilis",
    "Ultrasound",
    "X-ray",
    "ECG",
    "Urinalysis",
    "Lipid Profile",
)

STATUSES: tuple[str, ...] = ("registered", "completed", "cancelled", "deleted")

# Statuses a client may set through an ordinary update.
UPDATABLE_STATUSES: tuple[str, ...] = ("registered", "completed", "cancelled")

HISTORY_ACTIONS: tuple[str, ...] = ("created", "updated", "completed", "cancelled", "deleted")

NAME_MIN_LENGTH = 2
NAME_MAX_LENGTH = 100
OCCUPATION_MAX_LENGTH = 100
DIAGNOSIS_MAX_LENGTH = 1000
TREATMENT_PLAN_MAX_LENGTH = 2000
TEL_MIN_DIGITS = 8
TEL_MAX_DIGITS = 15
AGE_MIN = 0
AGE_MAX = 150

# Letters (any script), spaces, hyphens, dots, apostrophes; at least one letter.
NAME_PATTERN = r"^(?=.*[^\W\d_])(?:[^\W\d_]|[\s.'-])+$"
# Digits with optional + - ( ) and spaces, 8-15 digits in total.
TEL_PATTERN = r"^[-+()\s]*(?:\d[-+()\s]*){8,15}$"


_PATIENT_PROPERTIES: dict = {
    "name": {
        "type": "string",
        "minLength": NAME_MIN_LENGTH,
        "maxLength": NAME_MAX_LENGTH,
        "pattern": NAME_PATTERN,
    },
    "age": {"type": "integer", "minimum": AGE_MIN, "maximum": AGE_MAX},
    "sex": {"type": "string", "enum": list(SEXES)},
    "occupation": {"type": "string", "maxLength": OCCUPATION_MAX_LENGTH},
    "tel": {"type": "string", "pattern": TEL_PATTERN},
    "familyGroup": {"type": "string", "enum": list(FAMILY_GROUPS)},
    "diagnosis": {"type": "string", "maxLength": DIAGNOSIS_MAX_LENGTH},
    "treatmentPlan": {"type": "string", "maxLength": TREATMENT_PLAN_MAX_LENGTH},
    "labTests": {
        "type": "array",
        "items": {"type": "string", "enum": list(LAB_TESTS)},
        "uniqueItems": True,
    },
    "status": {"type": "string", "enum": list(UPDATABLE_STATUSES)},
}


PATIENT_CREATE_SCHEMA: dict = {
    "$schema": "http://json-schema.org/draft-07/schema#",
    "title": "Patient registration",
    "type": "object",
    "required": ["name", "age", "sex", "tel", "familyGroup"],
    "properties": {k: v for k, v in _PATIENT_PROPERTIES.items() if k != "status"},
}


PATIENT_UPDATE_SCHEMA: dict = {
    "$schema": "http://json-schema.org/draft-07/schema#",
    "title": "Patient update (partial)",
    "type": "object",
    "properties": _PATIENT_PROPERTIES,
}


# Human-readable reason per field, used instead of the raw jsonschema message.
FIELD_MESSAGES: dict[str, str] = {
    "name": (
        f"Name must be {NAME_MIN_LENGTH}-{NAME_MAX_LENGTH} characters and contain only "
        "letters, spaces, hyphens, dots or apostrophes"
    ),
    "age": f"Age must be a whole number between {AGE_MIN} and {AGE_MAX}",
    "sex": "Sex must be either Male or Female",
    "occupation": f"Occupation cannot exceed {OCCUPATION_MAX_LENGTH} characters",
    "tel": f"Please enter a valid phone number with {TEL_MIN_DIGITS}-{TEL_MAX_DIGITS} digits",
    "familyGroup": "Family group must be one of: " + ", ".join(FAMILY_GROUPS),
    "diagnosis": f"Diagnosis cannot exceed {DIAGNOSIS_MAX_LENGTH} characters",
    "treatmentPlan": f"Treatment plan cannot exceed {TREATMENT_PLAN_MAX_LENGTH} characters",
    "labTests": "Lab tests must be distinct values from: " + ", ".join(LAB_TESTS),
    "status": "Status must be one of: " + ", ".join(UPDATABLE_STATUSES),
}

REQUIRED_MESSAGES: dict[str, str] = {
    "name": "Patient name is required",
    "age": "Patient age is required",
    "sex": "Patient sex is required",
    "tel": "Phone number is required",
    "familyGroup": "Family group is required",
}
