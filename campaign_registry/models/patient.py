"""
Persistence models for the campaign patient registry.

Demonstrates:
- A document-shaped patient record mapped onto relational tables
- Digit-normalized phone column with a partial unique index (non-deleted rows only)
- Multi-value services stored one row per service, so distributions are a GROUP BY
- Append-only modification history that dies with the record on permanent delete
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    Uuid,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import relationship

from campaign_registry.models.database import Base

JSONDocument = JSON().with_variant(JSONB(), "postgresql")


def utcnow() -> datetime:
    """Naive UTC now; every timestamp column stores naive UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


# ---------------------------------------------------------------------------
# Patient – the registration record
# ---------------------------------------------------------------------------
class Patient(Base):
    __tablename__ = "patients"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)

    # Demographics
    name = Column(String(100), nullable=False)
    age = Column(Integer, nullable=False)
    sex = Column(String(16), nullable=False)
    occupation = Column(String(100), nullable=False, default="")
    tel = Column(String(32), nullable=False)
    tel_digits = Column(String(15), nullable=False, comment="Digits of tel, used for uniqueness and search")
    family_group = Column(String(16), nullable=False)
    legacy_service = Column(
        String(64), nullable=True, comment="Single service written by older clients; cleared on write"
    )

    # Clinical fields
    status = Column(String(16), nullable=False, default="registered")
    diagnosis = Column(Text, nullable=False, default="")
    treatment_plan = Column(Text, nullable=False, default="")
    lab_tests = Column(JSONDocument, nullable=False, default=list)

    # Derived timestamps
    registration_date = Column(String(10), nullable=False)
    registration_time = Column(String(8), nullable=False)
    completion_date = Column(String(10), nullable=False, default="")
    completion_time = Column(String(8), nullable=False, default="")
    completed_at = Column(DateTime, nullable=True)

    # Soft delete
    is_deleted = Column(Boolean, nullable=False, default=False)
    deleted_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=utcnow, nullable=False)
    last_modified = Column(DateTime, default=utcnow, nullable=False)

    service_links = relationship(
        "PatientService",
        back_populates="patient",
        cascade="all, delete-orphan",
        order_by="PatientService.position",
        lazy="selectin",
    )
    history = relationship(
        "ModificationEntry",
        back_populates="patient",
        cascade="all, delete-orphan",
        order_by="ModificationEntry.id",
        lazy="selectin",
    )

    __table_args__ = (
        Index("ix_patients_name", "name"),
        Index("ix_patients_status", "status"),
        Index("ix_patients_family_group", "family_group"),
        Index("ix_patients_created_at", "created_at"),
    )

    @property
    def services(self) -> list[str]:
        return [link.service for link in self.service_links]

    @services.setter
    def services(self, names: list[str]) -> None:
        self.service_links = [
            PatientService(service=name, position=position) for position, name in enumerate(names)
        ]

    def to_dict(self, include_history: bool = True) -> dict[str, Any]:
        """Serialize to the camelCase document shape exposed over the API."""
        document: dict[str, Any] = {
            "id": str(self.id),
            "name": self.name,
            "age": self.age,
            "sex": self.sex,
            "occupation": self.occupation,
            "tel": self.tel,
            "familyGroup": self.family_group,
            "services": self.services,
            "service": self.legacy_service,
            "status": self.status,
            "diagnosis": self.diagnosis,
            "treatmentPlan": self.treatment_plan,
            "labTests": list(self.lab_tests or []),
            "registrationDate": self.registration_date,
            "registrationTime": self.registration_time,
            "completionDate": self.completion_date,
            "completionTime": self.completion_time,
            "isDeleted": self.is_deleted,
            "deletedAt": self.deleted_at,
            "createdAt": self.created_at,
            "lastModified": self.last_modified,
        }
        if include_history:
            document["modificationHistory"] = [entry.to_dict() for entry in self.history]
        return document


# Phone numbers are unique among live records only; soft-deleted rows may share one.
Index(
    "uq_patients_tel_active",
    Patient.tel_digits,
    unique=True,
    postgresql_where=Patient.is_deleted.is_(False),
    sqlite_where=Patient.is_deleted.is_(False),
)


# ---------------------------------------------------------------------------
# PatientService – one row per service a patient is registered for
# ---------------------------------------------------------------------------
class PatientService(Base):
    __tablename__ = "patient_services"

    id = Column(Integer, primary_key=True, autoincrement=True)
    patient_id = Column(Uuid, ForeignKey("patients.id", ondelete="CASCADE"), nullable=False)
    service = Column(String(64), nullable=False)
    position = Column(Integer, nullable=False, default=0)

    patient = relationship("Patient", back_populates="service_links")

    __table_args__ = (
        Index("ix_patient_services_service", "service"),
    )


# ---------------------------------------------------------------------------
# ModificationEntry – append-only audit trail for a patient
# ---------------------------------------------------------------------------
class ModificationEntry(Base):
    __tablename__ = "patient_history"

    id = Column(Integer, primary_key=True, autoincrement=True)
    patient_id = Column(Uuid, ForeignKey("patients.id", ondelete="CASCADE"), nullable=False)
    action = Column(String(16), nullable=False, comment="created | updated | completed | cancelled | deleted")
    timestamp = Column(DateTime, default=utcnow, nullable=False)
    changes = Column(JSONDocument, nullable=False, default=dict)
    requester = Column(JSONDocument, nullable=True)

    patient = relationship("Patient", back_populates="history")

    __table_args__ = (Index("ix_patient_history_patient", "patient_id"),)

    def to_dict(self) -> dict[str, Any]:
        entry: dict[str, Any] = {
            "action": self.action,
            "timestamp": self.timestamp,
            "changes": self.changes or {},
        }
        if self.requester:
            entry["requester"] = self.requester
        return entry
