"""Exception handlers: every failure leaves as ``{"success": false, "error", "message"}``."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import DBAPIError, IntegrityError
from starlette.exceptions import HTTPException as StarletteHTTPException

from campaign_registry.config import settings
from campaign_registry.exceptions import DuplicatePhoneError, RegistryError, StoreUnavailableError

logger = logging.getLogger(__name__)

AVAILABLE_ENDPOINTS: tuple[str, ...] = (
    "GET /health",
    "GET /patients",
    "POST /patients",
    "PUT /patients",
    "PUT /patients/{id}",
    "GET /patients/deleted",
    "GET /patients/{id}",
    "GET /patients/{id}/history",
    "DELETE /patients/{id}",
    "POST /patients/{id}/restore",
    "POST /patients/bulk",
    "POST /patient",
    "POST /delete",
    "POST /search",
    "GET /export",
    "GET /stats",
)


def error_response(status_code: int, error: str, message: str, **extra: Any) -> JSONResponse:
    return JSONResponse(
        {"success": False, "error": error, "message": message, **extra},
        status_code=status_code,
    )


def _registry_error_handler(request: Request, exc: Exception) -> JSONResponse:
    assert isinstance(exc, RegistryError)
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(exc.to_payload(), status_code=exc.status_code)


def _request_validation_handler(request: Request, exc: Exception) -> JSONResponse:
    assert isinstance(exc, RequestValidationError)
    details = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ()) if part != "body")
        details.append(f"{location}: {error.get('msg')}" if location else str(error.get("msg")))
    return error_response(
        status.HTTP_400_BAD_REQUEST,
        "validation_error",
        "Malformed request: " + "; ".join(details),
        details=details,
    )


def _http_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    assert isinstance(exc, StarletteHTTPException)
    if exc.status_code == status.HTTP_404_NOT_FOUND:
        prefix = settings.API_PREFIX
        return error_response(
            exc.status_code,
            "route_not_found",
            f"Cannot {request.method} {request.url.path}",
            availableEndpoints=[
                f"{method} {prefix}{path}"
                for method, path in (endpoint.split(" ", 1) for endpoint in AVAILABLE_ENDPOINTS)
            ],
        )
    return error_response(exc.status_code, "http_error", str(exc.detail))


def _store_error_handler(request: Request, exc: Exception) -> JSONResponse:
    assert isinstance(exc, DBAPIError)
    if isinstance(exc, IntegrityError):
        logger.warning("Integrity error on %s %s: %s", request.method, request.url.path, exc.orig)
        error: RegistryError = DuplicatePhoneError()
    else:
        logger.error("Store unreachable during %s %s: %s", request.method, request.url.path, exc.orig)
        error = StoreUnavailableError()
    return JSONResponse(error.to_payload(), status_code=error.status_code)


def _unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    message = str(exc) if settings.is_development else "Something went wrong"
    return error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, "internal_error", message)


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(RegistryError, _registry_error_handler)
    app.add_exception_handler(RequestValidationError, _request_validation_handler)
    app.add_exception_handler(StarletteHTTPException, _http_exception_handler)
    app.add_exception_handler(DBAPIError, _store_error_handler)
    app.add_exception_handler(Exception, _unhandled_exception_handler)
