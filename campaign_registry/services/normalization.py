"""
Service-set normalization.

Older clients send a single ``service`` string; current clients send a
``services`` list. Both collapse into one canonical, non-empty list of
current service names.
"""

from __future__ import annotations

import logging
from typing import Any

from campaign_registry.exceptions import ValidationError
from campaign_registry.schemas.patient import SERVICE_ALIASES, VALID_SERVICES

logger = logging.getLogger(__name__)

SERVICES_REQUIRED = "At least one service is required"


def canonical_service(name: str) -> str:
    """Map a deprecated service name onto its current name; other names pass through."""
    cleaned = " ".join(name.split())
    return SERVICE_ALIASES.get(cleaned, cleaned)


def has_service_fields(payload: dict[str, Any]) -> bool:
    return payload.get("services") is not None or payload.get("service") is not None


def _clean_list(raw: Any) -> list[str]:
    if isinstance(raw, str):
        raw = [raw]
    if not isinstance(raw, (list, tuple)):
        raise ValidationError(["Services must be a list of service names"])
    if any(not isinstance(item, str) for item in raw):
        raise ValidationError(["Services must be a list of service names"])
    return [item for item in raw if item.strip()]


def normalize_services(payload: dict[str, Any]) -> list[str]:
    """
    Resolve ``services``/``service`` into a canonical list.

    ``services`` wins when it has any non-blank entry; otherwise a non-blank
    ``service`` is wrapped into a one-element list. Aliases are rewritten and
    duplicates dropped, keeping first-seen order.
    """
    candidates = _clean_list(payload.get("services") or [])
    if not candidates:
        legacy = payload.get("service")
        if legacy is not None and not isinstance(legacy, str):
            raise ValidationError(["Service must be a service name"])
        if legacy and legacy.strip():
            candidates = [legacy]
    if not candidates:
        raise ValidationError([SERVICES_REQUIRED])

    services: list[str] = []
    for name in candidates:
        canonical = canonical_service(name)
        if canonical != " ".join(name.split()):
            logger.info("Rewrote legacy service '%s' to '%s'", name, canonical)
        if canonical not in services:
            services.append(canonical)

    invalid = [name for name in services if name not in VALID_SERVICES]
    if invalid:
        raise ValidationError(
            [
                f"Invalid services: {', '.join(invalid)}. "
                f"Valid services are: {', '.join(VALID_SERVICES)}"
            ],
            invalidServices=invalid,
            validServices=list(VALID_SERVICES),
        )
    return services
