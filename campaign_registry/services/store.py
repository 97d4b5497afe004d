"""
Patient record store.

Demonstrates:
- A store handle built around an explicitly passed-in SQLAlchemy session
- Validation and state checks before any write; no partial writes
- Phone-number conflict detection, both up front and at the unique index
- Soft delete / restore / permanent delete, and per-record bulk operations
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import func, select, text
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session

from campaign_registry.exceptions import (
    DuplicatePhoneError,
    IllegalStateError,
    InvalidIdError,
    NotFoundError,
    RegistryError,
    StoreUnavailableError,
    ValidationError,
)
from campaign_registry.models.patient import Patient, utcnow
from campaign_registry.services import lifecycle
from campaign_registry.services.audit import append_history, diff_fields
from campaign_registry.services.filters import Page, PatientFilter, parse_sort
from campaign_registry.services.normalization import normalize_services
from campaign_registry.services.validation import phone_digits, validate_patient_payload

logger = logging.getLogger(__name__)

BULK_OPERATIONS: tuple[str, ...] = ("delete", "permanentDelete", "restore", "update", "complete")

# Payload key -> model attribute for fields a client may write.
WRITABLE_FIELDS: dict[str, str] = {
    "name": "name",
    "age": "age",
    "sex": "sex",
    "occupation": "occupation",
    "tel": "tel",
    "familyGroup": "family_group",
    "diagnosis": "diagnosis",
    "treatmentPlan": "treatment_plan",
    "labTests": "lab_tests",
}


def parse_patient_id(value: Any) -> uuid.UUID:
    """Reject malformed identifiers before touching the store."""
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value).strip())
    except (ValueError, AttributeError, TypeError):
        raise InvalidIdError(value) from None


def tracked_values(patient: Patient) -> dict[str, Any]:
    """Snapshot of every client-visible field that an update can change."""
    return {
        "name": patient.name,
        "age": patient.age,
        "sex": patient.sex,
        "occupation": patient.occupation,
        "tel": patient.tel,
        "familyGroup": patient.family_group,
        "services": patient.services,
        "service": patient.legacy_service,
        "status": patient.status,
        "diagnosis": patient.diagnosis,
        "treatmentPlan": patient.treatment_plan,
        "labTests": list(patient.lab_tests or []),
        "completionDate": patient.completion_date,
        "completionTime": patient.completion_time,
    }


@dataclass
class BulkResult:
    operation: str
    requested: int
    affected: int = 0
    skipped: list[dict[str, Any]] = field(default_factory=list)


class PatientStore:
    """CRUD, query and bulk operations over persisted patient records."""

    def __init__(self, db: Session):
        self.db = db

    # ------------------------------------------------------------------
    # Plumbing
    # ------------------------------------------------------------------

    def ping(self) -> None:
        try:
            self.db.execute(text("SELECT 1"))
        except OperationalError as exc:
            raise StoreUnavailableError() from exc

    def _commit(self, tel: str | None = None) -> None:
        try:
            self.db.commit()
        except IntegrityError as exc:
            self.db.rollback()
            reason = str(exc.orig)
            if tel is not None and ("tel_digits" in reason or "uq_patients_tel_active" in reason):
                raise DuplicatePhoneError(tel) from exc
            raise
        except OperationalError as exc:
            self.db.rollback()
            raise StoreUnavailableError() from exc

    def _ensure_phone_available(self, tel: str, digits: str, exclude_id: uuid.UUID | None = None) -> None:
        stmt = select(Patient.id).where(Patient.tel_digits == digits, Patient.is_deleted.is_(False))
        if exclude_id is not None:
            stmt = stmt.where(Patient.id != exclude_id)
        if self.db.scalar(stmt.limit(1)) is not None:
            raise DuplicatePhoneError(tel)

    # ------------------------------------------------------------------
    # Single-record operations
    # ------------------------------------------------------------------

    def get(self, patient_id: Any) -> Patient:
        """Fetch by id, soft-deleted records included."""
        pid = parse_patient_id(patient_id)
        patient = self.db.get(Patient, pid)
        if patient is None:
            raise NotFoundError(pid)
        return patient

    def create(self, payload: dict[str, Any], requester: dict[str, Any] | None = None) -> Patient:
        data = validate_patient_payload(payload)
        digits = phone_digits(data["tel"])
        self._ensure_phone_available(data["tel"], digits)

        now = utcnow()
        patient = Patient(
            name=data["name"],
            age=data["age"],
            sex=data["sex"],
            occupation=data.get("occupation", ""),
            tel=data["tel"],
            tel_digits=digits,
            family_group=data["familyGroup"],
            diagnosis=data.get("diagnosis", ""),
            treatment_plan=data.get("treatmentPlan", ""),
            lab_tests=data.get("labTests", []),
            legacy_service=None,
        )
        patient.services = data["services"]
        lifecycle.mark_registered(patient, now)
        self.db.add(patient)
        self._commit(tel=data["tel"])
        logger.info("Created patient %s (%s)", patient.id, patient.name)

        snapshot = {k: v for k, v in tracked_values(patient).items() if k != "service"}
        append_history(self.db, patient, action="created", changes=snapshot, requester=requester)
        return patient

    def update(
        self,
        patient_id: Any,
        payload: dict[str, Any],
        requester: dict[str, Any] | None = None,
    ) -> tuple[Patient, list[str]]:
        """Apply a partial update; returns the record and the names of the fields that changed."""
        patient = self.get(patient_id)
        lifecycle.ensure_live(patient)
        data = validate_patient_payload(payload, partial=True)
        requested_status = data.pop("status", None)
        if requested_status is not None:
            lifecycle.check_transition(patient.status, requested_status)

        if "tel" in data:
            digits = phone_digits(data["tel"])
            if digits != patient.tel_digits:
                self._ensure_phone_available(data["tel"], digits, exclude_id=patient.id)
            patient.tel_digits = digits

        if "services" not in data and patient.legacy_service and not patient.service_links:
            try:
                data["services"] = normalize_services({"service": patient.legacy_service})
            except ValidationError:
                logger.warning(
                    "Patient %s keeps unrecognised legacy service '%s'", patient.id, patient.legacy_service
                )

        before = tracked_values(patient)
        now = utcnow()
        for key, attribute in WRITABLE_FIELDS.items():
            if key in data:
                setattr(patient, attribute, data[key])
        if "services" in data and data["services"] != patient.services:
            patient.services = data["services"]
        if "services" in data:
            patient.legacy_service = None
        if requested_status is not None:
            lifecycle.apply_status(patient, requested_status, now)
        patient.last_modified = now

        changes = diff_fields(before, tracked_values(patient))
        self._commit(tel=patient.tel)
        logger.info("Updated patient %s: %s", patient.id, ", ".join(changes) or "no field changes")

        append_history(
            self.db,
            patient,
            action=lifecycle.history_action(requested_status),
            changes=changes,
            requester=requester,
        )
        return patient, list(changes)

    def delete(
        self,
        patient_id: Any,
        *,
        permanent: bool = False,
        requester: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Soft delete by default; ``permanent`` erases the record and its history."""
        patient = self.get(patient_id)
        echo = {"id": str(patient.id), "name": patient.name, "tel": patient.tel}

        if permanent:
            self.db.delete(patient)
            self._commit()
            logger.info("Permanently deleted patient %s (%s)", echo["id"], echo["name"])
            return echo

        before = {"status": patient.status, "isDeleted": patient.is_deleted, "deletedAt": None}
        lifecycle.mark_deleted(patient, utcnow())
        self._commit()
        logger.info("Soft deleted patient %s (%s)", echo["id"], echo["name"])

        after = {"status": patient.status, "isDeleted": True, "deletedAt": patient.deleted_at}
        append_history(
            self.db, patient, action="deleted", changes=diff_fields(before, after), requester=requester
        )
        return echo

    def restore(self, patient_id: Any, requester: dict[str, Any] | None = None) -> Patient:
        patient = self.get(patient_id)
        lifecycle.ensure_deleted(patient)
        self._ensure_phone_available(patient.tel, patient.tel_digits, exclude_id=patient.id)

        before = {"status": patient.status, "isDeleted": True, "deletedAt": patient.deleted_at}
        lifecycle.mark_restored(patient, utcnow())
        self._commit(tel=patient.tel)
        logger.info("Restored patient %s (%s)", patient.id, patient.name)

        after = {"status": patient.status, "isDeleted": False, "deletedAt": None}
        changes = diff_fields(before, after)
        changes["restored"] = {"from": False, "to": True}
        append_history(self.db, patient, action="updated", changes=changes, requester=requester)
        return patient

    def history(self, patient_id: Any) -> Patient:
        """The record with its audit trail loaded; works on soft-deleted records."""
        return self.get(patient_id)

    # ------------------------------------------------------------------
    # Read paths
    # ------------------------------------------------------------------

    def count(self, patient_filter: PatientFilter) -> int:
        stmt = select(func.count()).select_from(Patient).where(*patient_filter.conditions())
        return self.db.scalar(stmt) or 0

    def list_patients(
        self,
        patient_filter: PatientFilter,
        page: Page | None = None,
        sort: str | None = None,
    ) -> tuple[list[Patient], int]:
        stmt = select(Patient).where(*patient_filter.conditions()).order_by(*parse_sort(sort))
        total = self.count(patient_filter)
        if page is not None:
            stmt = stmt.offset(page.offset).limit(page.limit)
        return list(self.db.scalars(stmt).all()), total

    def list_deleted(self, page: Page) -> tuple[list[Patient], int]:
        return self.list_patients(PatientFilter(deleted_only=True), page, sort="-deletedAt")

    def search(self, query: str | None, patient_filter: PatientFilter, limit: int) -> list[Patient]:
        if not query or not query.strip():
            raise ValidationError(["Search query is required"])
        patient_filter.search = query.strip()
        stmt = (
            select(Patient)
            .where(*patient_filter.conditions())
            .order_by(*parse_sort(None))
            .limit(limit)
        )
        return list(self.db.scalars(stmt).all())

    # ------------------------------------------------------------------
    # Bulk
    # ------------------------------------------------------------------

    def resolve_ids(
        self,
        operation: str,
        patient_ids: Any = None,
        filter_params: Mapping[str, Any] | None = None,
    ) -> list[uuid.UUID]:
        if patient_ids is not None:
            if not isinstance(patient_ids, list):
                raise ValidationError(["patientIds must be a list of patient IDs"])
            invalid = []
            ids = []
            for value in patient_ids:
                try:
                    ids.append(parse_patient_id(value))
                except InvalidIdError:
                    invalid.append(value)
            if invalid:
                raise InvalidIdError(invalid)
            return list(dict.fromkeys(ids))
        if filter_params is None:
            raise ValidationError(["Either patientIds or filter is required"])
        patient_filter = PatientFilter.from_params(filter_params)
        if operation == "restore":
            patient_filter.deleted_only = True
        stmt = select(Patient.id).where(*patient_filter.conditions()).order_by(*parse_sort(None))
        return list(self.db.scalars(stmt).all())

    def _complete_one(self, patient_id: uuid.UUID, requester: dict[str, Any] | None) -> None:
        patient = self.get(patient_id)
        lifecycle.ensure_live(patient)
        if patient.status != lifecycle.REGISTERED:
            raise IllegalStateError(
                f"Patient '{patient_id}' is '{patient.status}', only registered patients can be completed"
            )
        self.update(patient_id, {"status": lifecycle.COMPLETED}, requester)

    def bulk(
        self,
        operation: str | None,
        patient_ids: Any = None,
        filter_params: Mapping[str, Any] | None = None,
        update_data: dict[str, Any] | None = None,
        requester: dict[str, Any] | None = None,
    ) -> BulkResult:
        """
        Run one operation over many records, each judged by the single-record rules.
        Not atomic: every record commits on its own and failures are reported as skipped.
        """
        if operation not in BULK_OPERATIONS:
            raise ValidationError(["operation must be one of: " + ", ".join(BULK_OPERATIONS)])
        if operation == "update":
            if not isinstance(update_data, dict) or not update_data:
                raise ValidationError(["updateData is required for bulk update"])
            validate_patient_payload(update_data, partial=True)

        ids = self.resolve_ids(operation, patient_ids, filter_params)
        result = BulkResult(operation=operation, requested=len(ids))
        for pid in ids:
            try:
                if operation == "delete":
                    self.delete(pid, requester=requester)
                elif operation == "permanentDelete":
                    self.delete(pid, permanent=True, requester=requester)
                elif operation == "restore":
                    self.restore(pid, requester=requester)
                elif operation == "update":
                    self.update(pid, update_data, requester)
                else:
                    self._complete_one(pid, requester)
            except StoreUnavailableError:
                raise
            except RegistryError as exc:
                result.skipped.append({"id": str(pid), "reason": exc.error, "message": exc.message})
                continue
            result.affected += 1

        logger.info(
            "Bulk %s: %d of %d records affected", operation, result.affected, result.requested
        )
        return result
