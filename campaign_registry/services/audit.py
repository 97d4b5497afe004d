"""Modification history for patient records. Best-effort: a failed append never undoes the write it describes."""

from __future__ import annotations

import logging
from datetime import date, datetime
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from campaign_registry.models.patient import ModificationEntry, Patient, utcnow

logger = logging.getLogger(__name__)


def jsonable(value: Any) -> Any:
    """Make a diff value safe for a JSON column."""
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, (list, tuple)):
        return [jsonable(v) for v in value]
    if isinstance(value, dict):
        return {k: jsonable(v) for k, v in value.items()}
    return value


def diff_fields(before: dict[str, Any], after: dict[str, Any]) -> dict[str, dict[str, Any]]:
    """Field -> {from, to} for every key of ``after`` whose value differs structurally from ``before``."""
    changes: dict[str, dict[str, Any]] = {}
    for field, new_value in after.items():
        old_value = before.get(field)
        if old_value != new_value:
            changes[field] = {"from": jsonable(old_value), "to": jsonable(new_value)}
    return changes


def append_history(
    db: Session,
    patient: Patient,
    *,
    action: str,
    changes: dict[str, Any] | None = None,
    requester: dict[str, Any] | None = None,
) -> ModificationEntry | None:
    """Append one audit entry and commit it on its own. Returns ``None`` if the append failed."""
    entry = ModificationEntry(
        action=action,
        timestamp=utcnow(),
        changes=jsonable(changes or {}),
        requester=requester or None,
    )
    try:
        patient.history.append(entry)
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception("AUDIT: failed to record %s for patient %s", action, patient.id)
        return None
    logger.info("AUDIT: %s patient/%s %s", action, patient.id, sorted((changes or {}).keys()))
    return entry
