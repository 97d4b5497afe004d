"""Pydantic models for API request/response serialization."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field


# ---------------------------------------------------------------------------
# Patient records
# ---------------------------------------------------------------------------

class HistoryEntry(BaseModel):
    action: str
    timestamp: datetime
    changes: dict[str, Any] = {}
    requester: dict[str, Any] | None = None


class PatientOut(BaseModel):
    """A stored patient record, in the camelCase document shape."""
    id: str
    name: str
    age: int
    sex: str
    occupation: str = ""
    tel: str
    familyGroup: str
    services: list[str]
    service: str | None = None
    status: str
    diagnosis: str = ""
    treatmentPlan: str = ""
    labTests: list[str] = []
    registrationDate: str
    registrationTime: str
    completionDate: str = ""
    completionTime: str = ""
    isDeleted: bool = False
    deletedAt: datetime | None = None
    createdAt: datetime
    lastModified: datetime
    modificationHistory: list[HistoryEntry] = []


class PatientEnvelope(BaseModel):
    success: bool = True
    message: str | None = None
    patient: PatientOut


class PatientUpdateResponse(PatientEnvelope):
    changes: list[str] = []


class Pagination(BaseModel):
    currentPage: int
    totalPages: int
    totalPatients: int
    limit: int
    hasNext: bool
    hasPrev: bool


class PatientListResponse(BaseModel):
    success: bool = True
    patients: list[PatientOut]
    pagination: Pagination


class DeletedEcho(BaseModel):
    id: str
    name: str
    tel: str


class DeleteResponse(BaseModel):
    success: bool = True
    message: str
    permanent: bool
    deletedPatient: DeletedEcho


class HistoryResponse(BaseModel):
    success: bool = True
    patientId: str
    name: str
    isDeleted: bool
    totalEntries: int
    history: list[HistoryEntry]


class IdRequest(BaseModel):
    """Body of the legacy id-in-body routes."""
    id: Any = None


# ---------------------------------------------------------------------------
# Search
# ---------------------------------------------------------------------------

class SearchRequest(BaseModel):
    query: str | None = None
    filters: dict[str, Any] = Field(default_factory=dict)
    limit: int | None = Field(default=None, ge=1)


class SearchResponse(BaseModel):
    success: bool = True
    query: str
    count: int
    patients: list[PatientOut]


# ---------------------------------------------------------------------------
# Bulk operations
# ---------------------------------------------------------------------------

class BulkRequest(BaseModel):
    operation: str | None = None
    patientIds: list[Any] | None = None
    filter: dict[str, Any] | None = None
    updateData: dict[str, Any] | None = None


class BulkSkip(BaseModel):
    id: str
    reason: str
    message: str


class BulkResponse(BaseModel):
    success: bool = True
    message: str
    operation: str
    requestedCount: int
    affectedCount: int
    skipped: list[BulkSkip] = []


# ---------------------------------------------------------------------------
# Health check & statistics
# ---------------------------------------------------------------------------

class HealthResponse(BaseModel):
    success: bool = True
    status: str = "healthy"
    timestamp: datetime
    environment: str
    database: str = "connected"
    version: str
    uptimeSeconds: float
    stats: dict[str, int]


class StatisticsResponse(BaseModel):
    success: bool = True
    statistics: dict[str, Any]
