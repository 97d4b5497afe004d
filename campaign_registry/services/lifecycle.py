"""
Status lifecycle for patient records.

    registered --update--> completed   (stamps completion date/time once)
    registered --update--> cancelled
    any live   --delete--> deleted     (status and isDeleted set together)
    deleted    --restore-> registered

Re-applying the current status is allowed and is not an error.
"""

from __future__ import annotations

from datetime import datetime

from campaign_registry.exceptions import IllegalStateError, NotDeletedError, RecordDeletedError
from campaign_registry.models.patient import Patient

REGISTERED = "registered"
COMPLETED = "completed"
CANCELLED = "cancelled"
DELETED = "deleted"

# Statuses reachable from each live status through an ordinary update.
ALLOWED_TRANSITIONS: dict[str, frozenset[str]] = {
    REGISTERED: frozenset({REGISTERED, COMPLETED, CANCELLED}),
    COMPLETED: frozenset({COMPLETED}),
    CANCELLED: frozenset({CANCELLED}),
}


def format_date(moment: datetime) -> str:
    return moment.strftime("%Y-%m-%d")


def format_time(moment: datetime) -> str:
    return moment.strftime("%H:%M:%S")


def ensure_live(patient: Patient) -> None:
    """Soft-deleted records are frozen until restored."""
    if patient.is_deleted:
        raise RecordDeletedError(patient.id)


def check_transition(current: str, target: str) -> None:
    if target not in ALLOWED_TRANSITIONS.get(current, frozenset()):
        raise IllegalStateError(
            f"Cannot change status from '{current}' to '{target}'",
            currentStatus=current,
            requestedStatus=target,
        )


def history_action(requested_status: str | None) -> str:
    """Audit action for an update: ``completed`` whenever the update asks for completed."""
    if requested_status == COMPLETED:
        return "completed"
    return "updated"


def apply_status(patient: Patient, target: str, now: datetime) -> None:
    """Move a live record to ``target``; completion stamps are written only on first completion."""
    ensure_live(patient)
    check_transition(patient.status, target)
    if target == COMPLETED and not patient.completion_date:
        patient.completion_date = format_date(now)
        patient.completion_time = format_time(now)
        patient.completed_at = now
    patient.status = target


def mark_registered(patient: Patient, now: datetime) -> None:
    patient.status = REGISTERED
    patient.is_deleted = False
    patient.registration_date = format_date(now)
    patient.registration_time = format_time(now)
    patient.created_at = now
    patient.last_modified = now


def mark_deleted(patient: Patient, now: datetime) -> None:
    ensure_live(patient)
    patient.is_deleted = True
    patient.deleted_at = now
    patient.status = DELETED
    patient.last_modified = now


def ensure_deleted(patient: Patient) -> None:
    """Only soft-deleted records can be restored."""
    if not patient.is_deleted:
        raise NotDeletedError(patient.id)


def mark_restored(patient: Patient, now: datetime) -> None:
    ensure_deleted(patient)
    patient.is_deleted = False
    patient.deleted_at = None
    patient.status = REGISTERED
    patient.last_modified = now
