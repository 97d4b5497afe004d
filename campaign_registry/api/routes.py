"""
FastAPI routes – the registry's API surface.

Demonstrates:
- RESTful endpoint design with a few legacy id-in-body aliases kept for old clients
- Dependency injection (store handle built from a per-request session)
- One response envelope: ``success`` plus named payload keys
"""

from __future__ import annotations

import logging
import time
from typing import Any

from fastapi import APIRouter, Body, Depends, Request, Response, status
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from campaign_registry.config import settings
from campaign_registry.exceptions import ValidationError
from campaign_registry.models.database import get_db
from campaign_registry.models.patient import Patient, utcnow
from campaign_registry.schemas.api import (
    BulkRequest,
    BulkResponse,
    DeleteResponse,
    HealthResponse,
    HistoryResponse,
    IdRequest,
    PatientEnvelope,
    PatientListResponse,
    PatientOut,
    PatientUpdateResponse,
    SearchRequest,
    SearchResponse,
    StatisticsResponse,
)
from campaign_registry.services import export, stats
from campaign_registry.services.filters import Page, PatientFilter, parse_bool, parse_int
from campaign_registry.services.store import PatientStore

logger = logging.getLogger(__name__)

router = APIRouter()


def get_store(db: Session = Depends(get_db)) -> PatientStore:
    return PatientStore(db)


def get_requester(request: Request) -> dict[str, Any]:
    """Who asked: optional X-Requested-By header, client address, user agent."""
    requester: dict[str, Any] = {}
    if request.headers.get("x-requested-by"):
        requester["requestedBy"] = request.headers["x-requested-by"]
    if request.client is not None:
        requester["ip"] = request.client.host
    if request.headers.get("user-agent"):
        requester["userAgent"] = request.headers["user-agent"]
    return requester


def _out(patient: Patient) -> PatientOut:
    return PatientOut.model_validate(patient.to_dict())


def _require_id(value: Any) -> Any:
    if value is None or (isinstance(value, str) and not value.strip()):
        raise ValidationError(["Patient ID is required"])
    return value


# ---------------------------------------------------------------------------
# Health check
# ---------------------------------------------------------------------------

@router.get("/health", response_model=HealthResponse)
def health_check(request: Request, store: PatientStore = Depends(get_store)):
    """Liveness plus aggregate counts – verifies store connectivity."""
    store.ping()
    return HealthResponse(
        timestamp=utcnow(),
        environment=settings.ENVIRONMENT,
        version=settings.APP_VERSION,
        uptimeSeconds=round(time.monotonic() - request.app.state.started_at, 3),
        stats=stats.population_counts(store.db),
    )


# ---------------------------------------------------------------------------
# Patients
# ---------------------------------------------------------------------------

@router.get("/patients", response_model=PatientListResponse)
def list_patients(request: Request, store: PatientStore = Depends(get_store)):
    """
    Filtered, sorted, paginated listing.
    Query: page, limit, sort, status, service, services, familyGroup, search,
    dateFrom, dateTo, includeDeleted.
    """
    params = request.query_params
    patient_filter = PatientFilter.from_params(params)
    page = Page.from_params(params)
    patients, total = store.list_patients(patient_filter, page, params.get("sort"))
    logger.info("Listed %d of %d patients (page %d)", len(patients), total, page.page)
    return PatientListResponse(
        patients=[_out(p) for p in patients],
        pagination=page.metadata(total),
    )


@router.post("/patients", response_model=PatientEnvelope, status_code=status.HTTP_201_CREATED)
def create_patient(
    payload: dict[str, Any] = Body(...),
    store: PatientStore = Depends(get_store),
    requester: dict[str, Any] = Depends(get_requester),
):
    patient = store.create(payload, requester)
    return PatientEnvelope(message="Patient registered successfully", patient=_out(patient))


@router.put("/patients", response_model=PatientUpdateResponse)
def update_patient_legacy(
    payload: dict[str, Any] = Body(...),
    store: PatientStore = Depends(get_store),
    requester: dict[str, Any] = Depends(get_requester),
):
    """Older clients send the id inside the body."""
    data = dict(payload)
    patient_id = _require_id(data.pop("id", None))
    patient, changes = store.update(patient_id, data, requester)
    return PatientUpdateResponse(
        message="Patient updated successfully", patient=_out(patient), changes=changes
    )


@router.get("/patients/deleted", response_model=PatientListResponse)
def list_deleted_patients(request: Request, store: PatientStore = Depends(get_store)):
    page = Page.from_params(request.query_params)
    patients, total = store.list_deleted(page)
    return PatientListResponse(
        patients=[_out(p) for p in patients],
        pagination=page.metadata(total),
    )


@router.post("/patients/bulk", response_model=BulkResponse)
def bulk_operation(
    request_body: BulkRequest,
    store: PatientStore = Depends(get_store),
    requester: dict[str, Any] = Depends(get_requester),
):
    """Batch delete / permanentDelete / restore / update / complete over ids or a filter."""
    result = store.bulk(
        request_body.operation,
        patient_ids=request_body.patientIds,
        filter_params=request_body.filter,
        update_data=request_body.updateData,
        requester=requester,
    )
    return BulkResponse(
        message=f"Bulk {result.operation} completed: {result.affected} of {result.requested} affected",
        operation=result.operation,
        requestedCount=result.requested,
        affectedCount=result.affected,
        skipped=result.skipped,
    )


@router.get("/patients/{patient_id}", response_model=PatientEnvelope)
def get_patient(patient_id: str, store: PatientStore = Depends(get_store)):
    return PatientEnvelope(patient=_out(store.get(patient_id)))


@router.put("/patients/{patient_id}", response_model=PatientUpdateResponse)
def update_patient(
    patient_id: str,
    payload: dict[str, Any] = Body(...),
    store: PatientStore = Depends(get_store),
    requester: dict[str, Any] = Depends(get_requester),
):
    data = {k: v for k, v in payload.items() if k != "id"}
    patient, changes = store.update(patient_id, data, requester)
    return PatientUpdateResponse(
        message="Patient updated successfully", patient=_out(patient), changes=changes
    )


@router.delete("/patients/{patient_id}", response_model=DeleteResponse)
def delete_patient(
    patient_id: str,
    permanent: str | None = None,
    store: PatientStore = Depends(get_store),
    requester: dict[str, Any] = Depends(get_requester),
):
    """Soft delete unless ``?permanent=true``."""
    is_permanent = parse_bool(permanent, "permanent")
    echo = store.delete(patient_id, permanent=is_permanent, requester=requester)
    message = "Patient permanently deleted successfully" if is_permanent else "Patient deleted successfully"
    return DeleteResponse(message=message, permanent=is_permanent, deletedPatient=echo)


@router.post("/patients/{patient_id}/restore", response_model=PatientEnvelope)
def restore_patient(
    patient_id: str,
    store: PatientStore = Depends(get_store),
    requester: dict[str, Any] = Depends(get_requester),
):
    patient = store.restore(patient_id, requester)
    return PatientEnvelope(message="Patient restored successfully", patient=_out(patient))


@router.get("/patients/{patient_id}/history", response_model=HistoryResponse)
def patient_history(patient_id: str, store: PatientStore = Depends(get_store)):
    patient = store.history(patient_id)
    entries = [entry.to_dict() for entry in patient.history]
    return HistoryResponse(
        patientId=str(patient.id),
        name=patient.name,
        isDeleted=patient.is_deleted,
        totalEntries=len(entries),
        history=entries,
    )


# ---------------------------------------------------------------------------
# Legacy id-in-body aliases
# ---------------------------------------------------------------------------

@router.post("/patient", response_model=PatientEnvelope)
def get_patient_legacy(request_body: IdRequest, store: PatientStore = Depends(get_store)):
    return PatientEnvelope(patient=_out(store.get(_require_id(request_body.id))))


@router.post("/delete", response_model=DeleteResponse)
def delete_patient_legacy(
    request_body: IdRequest,
    store: PatientStore = Depends(get_store),
    requester: dict[str, Any] = Depends(get_requester),
):
    """Older clients expect this route to erase the record."""
    echo = store.delete(_require_id(request_body.id), permanent=True, requester=requester)
    return DeleteResponse(message="Patient deleted successfully", permanent=True, deletedPatient=echo)


# ---------------------------------------------------------------------------
# Search, export, statistics
# ---------------------------------------------------------------------------

@router.post("/search", response_model=SearchResponse)
def search_patients(request_body: SearchRequest, store: PatientStore = Depends(get_store)):
    """Free-text search on name and phone digits, narrowed by optional filters."""
    patient_filter = PatientFilter.from_params(request_body.filters)
    limit = min(request_body.limit or settings.SEARCH_RESULT_LIMIT, settings.MAX_PAGE_LIMIT)
    patients = store.search(request_body.query, patient_filter, limit)
    logger.info("Search '%s' matched %d patients", request_body.query, len(patients))
    return SearchResponse(
        query=request_body.query.strip(),
        count=len(patients),
        patients=[_out(p) for p in patients],
    )


@router.get("/export")
def export_patients(request: Request, store: PatientStore = Depends(get_store)):
    """Download records as JSON (default) or CSV; accepts the listing filters."""
    params = request.query_params
    fmt = (params.get("format") or "json").lower()
    if fmt not in export.EXPORT_FORMATS:
        raise ValidationError(["format must be one of: " + ", ".join(export.EXPORT_FORMATS)])

    patient_filter = PatientFilter.from_params(params)
    patients, _ = store.list_patients(patient_filter)
    now = utcnow()
    headers = {"Content-Disposition": f"attachment; filename={export.export_filename(fmt, now)}"}
    logger.info("Exporting %d patients as %s", len(patients), fmt)

    if fmt == "csv":
        return Response(content=export.to_csv(patients), media_type="text/csv", headers=headers)
    document = export.to_json_document(patients, patient_filter.describe(), now)
    return JSONResponse(jsonable_encoder(document), headers=headers)


@router.get("/stats", response_model=StatisticsResponse)
def get_statistics(request: Request, store: PatientStore = Depends(get_store)):
    params = request.query_params
    period = parse_int(
        params.get("period"),
        "period",
        default=settings.DEFAULT_STATS_PERIOD_DAYS,
        minimum=1,
        maximum=365,
    )
    include_deleted = parse_bool(params.get("includeDeleted"), "includeDeleted")
    statistics = stats.compute_statistics(
        store.db,
        period_days=period,
        recent_days=settings.RECENT_WINDOW_DAYS,
        include_deleted=include_deleted,
    )
    return StatisticsResponse(statistics=statistics)
