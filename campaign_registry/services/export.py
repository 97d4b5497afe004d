"""Export of patient records as a JSON document or a CSV file."""

from __future__ import annotations

import csv
import io
from datetime import datetime, timezone
from typing import Any

from campaign_registry.models.patient import Patient

EXPORT_FORMATS: tuple[str, ...] = ("json", "csv")
EXPORTED_BY = "Health Campaign System"

# Header -> document key, in output order.
CSV_COLUMNS: tuple[tuple[str, str], ...] = (
    ("Name", "name"),
    ("Age", "age"),
    ("Sex", "sex"),
    ("Occupation", "occupation"),
    ("Phone", "tel"),
    ("Family Group", "familyGroup"),
    ("Services", "services"),
    ("Status", "status"),
    ("Registration Date", "registrationDate"),
    ("Registration Time", "registrationTime"),
    ("Diagnosis", "diagnosis"),
    ("Lab Tests", "labTests"),
    ("Treatment Plan", "treatmentPlan"),
    ("Completion Date", "completionDate"),
    ("Completion Time", "completionTime"),
)


def _cell(document: dict[str, Any], key: str) -> Any:
    value = document.get(key)
    if key == "services" and not value:
        value = [document["service"]] if document.get("service") else []
    if isinstance(value, list):
        return "; ".join(value)
    return "" if value is None else value


def to_csv(patients: list[Patient]) -> str:
    """
    Render records as CSV. Fields holding a comma, quote or newline are quoted
    and inner quotes doubled, so any CSV reader recovers the original text.
    """
    buffer = io.StringIO()
    writer = csv.writer(buffer, quoting=csv.QUOTE_MINIMAL)
    writer.writerow([header for header, _ in CSV_COLUMNS])
    for patient in patients:
        document = patient.to_dict(include_history=False)
        writer.writerow([_cell(document, key) for _, key in CSV_COLUMNS])
    return buffer.getvalue()


def to_json_document(patients: list[Patient], filters: dict[str, Any], now: datetime) -> dict[str, Any]:
    return {
        "success": True,
        "exportDate": now.replace(tzinfo=timezone.utc).isoformat(),
        "exportedBy": EXPORTED_BY,
        "totalRecords": len(patients),
        "filters": filters,
        "patients": [patient.to_dict() for patient in patients],
    }


def export_filename(fmt: str, now: datetime) -> str:
    millis = int(now.replace(tzinfo=timezone.utc).timestamp() * 1000)
    return f"patients_{millis}.{fmt}"
