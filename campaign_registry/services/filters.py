"""
Query/filter builder.

Turns request-level filter parameters into SQLAlchemy predicates, an
ordering and a page window. Filtering happens first, then ordering, then
pagination.
"""

from __future__ import annotations

import math
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from typing import Any

from sqlalchemy import or_
from sqlalchemy.sql.elements import ColumnElement

from campaign_registry.config import settings
from campaign_registry.exceptions import ValidationError
from campaign_registry.models.patient import Patient, PatientService
from campaign_registry.schemas.patient import FAMILY_GROUPS, SERVICE_ALIASES, STATUSES, VALID_SERVICES
from campaign_registry.services.normalization import canonical_service
from campaign_registry.services.validation import phone_digits

WILDCARD = "all"
DEFAULT_SORT = "-createdAt"

SORT_FIELDS = {
    "createdAt": Patient.created_at,
    "name": Patient.name,
    "age": Patient.age,
    "status": Patient.status,
    "familyGroup": Patient.family_group,
    "lastModified": Patient.last_modified,
    "deletedAt": Patient.deleted_at,
}

_TRUE = {"true", "1", "yes", "on"}
_FALSE = {"false", "0", "no", "off", ""}


def parse_bool(value: Any, name: str) -> bool:
    if isinstance(value, bool):
        return value
    if value is None:
        return False
    text = str(value).strip().lower()
    if text in _TRUE:
        return True
    if text in _FALSE:
        return False
    raise ValidationError([f"{name} must be true or false"])


def parse_int(value: Any, name: str, *, default: int, minimum: int, maximum: int | None = None) -> int:
    if value is None or value == "":
        return default
    try:
        number = int(str(value).strip())
    except ValueError:
        raise ValidationError([f"{name} must be a whole number"]) from None
    if maximum is not None and not minimum <= number <= maximum:
        raise ValidationError([f"{name} must be between {minimum} and {maximum}"])
    if number < minimum:
        raise ValidationError([f"{name} must be at least {minimum}"])
    return number


def parse_date(value: Any, name: str) -> date | None:
    if value is None or value == "":
        return None
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value).strip()[:10])
    except ValueError:
        raise ValidationError([f"{name} must be a date in YYYY-MM-DD format"]) from None


def _split_services(value: Any) -> list[str]:
    if value is None:
        return []
    items = value if isinstance(value, (list, tuple)) else str(value).split(",")
    return [str(item).strip() for item in items if str(item).strip()]


@dataclass
class PatientFilter:
    status: str | None = None
    services: list[str] = field(default_factory=list)
    family_group: str | None = None
    search: str | None = None
    date_from: date | None = None
    date_to: date | None = None
    include_deleted: bool = False
    deleted_only: bool = False

    @classmethod
    def from_params(cls, params: Mapping[str, Any]) -> PatientFilter:
        """Build a filter from query/body parameters, collecting every bad value."""
        errors: list[str] = []

        status = params.get("status") or None
        if status == WILDCARD:
            status = None
        if status is not None and status not in STATUSES:
            errors.append("status must be one of: " + ", ".join((WILDCARD,) + STATUSES))

        family_group = params.get("familyGroup") or None
        if family_group == WILDCARD:
            family_group = None
        if family_group is not None and family_group not in FAMILY_GROUPS:
            errors.append("familyGroup must be one of: " + ", ".join((WILDCARD,) + FAMILY_GROUPS))

        services = _split_services(params.get("service")) + _split_services(params.get("services"))
        services = [s for s in services if s != WILDCARD]
        unknown = [s for s in services if canonical_service(s) not in VALID_SERVICES]
        if unknown:
            errors.append(
                f"Invalid services: {', '.join(unknown)}. Valid services are: {', '.join(VALID_SERVICES)}"
            )

        try:
            include_deleted = parse_bool(params.get("includeDeleted"), "includeDeleted")
        except ValidationError as exc:
            errors.extend(exc.details or [])
            include_deleted = False

        date_from = date_to = None
        try:
            date_from = parse_date(params.get("dateFrom"), "dateFrom")
        except ValidationError as exc:
            errors.extend(exc.details or [])
        try:
            date_to = parse_date(params.get("dateTo"), "dateTo")
        except ValidationError as exc:
            errors.extend(exc.details or [])
        if date_from and date_to and date_from > date_to:
            errors.append("dateFrom must not be after dateTo")

        if errors:
            raise ValidationError(errors)

        search = params.get("search")
        return cls(
            status=status,
            services=services,
            family_group=family_group,
            search=search.strip() if isinstance(search, str) and search.strip() else None,
            date_from=date_from,
            date_to=date_to,
            # Asking for deleted records by status implies looking at them.
            include_deleted=include_deleted or status == "deleted",
        )

    def conditions(self) -> list[ColumnElement[bool]]:
        clauses: list[ColumnElement[bool]] = []
        if self.deleted_only:
            clauses.append(Patient.is_deleted.is_(True))
        elif not self.include_deleted:
            clauses.append(Patient.is_deleted.is_(False))
        if self.status:
            clauses.append(Patient.status == self.status)
        if self.family_group:
            clauses.append(Patient.family_group == self.family_group)
        if self.services:
            canonical = sorted({canonical_service(s) for s in self.services})
            aliases = {alias for alias, target in SERVICE_ALIASES.items() if target in canonical}
            legacy = sorted(set(canonical) | set(self.services) | aliases)
            clauses.append(
                or_(
                    Patient.service_links.any(PatientService.service.in_(canonical)),
                    Patient.legacy_service.in_(legacy),
                )
            )
        if self.search:
            matches = [Patient.name.icontains(self.search, autoescape=True)]
            digits = phone_digits(self.search)
            if digits:
                matches.append(Patient.tel_digits.contains(digits, autoescape=True))
            clauses.append(or_(*matches))
        if self.date_from:
            clauses.append(Patient.created_at >= datetime.combine(self.date_from, time.min))
        if self.date_to:
            clauses.append(Patient.created_at < datetime.combine(self.date_to + timedelta(days=1), time.min))
        return clauses

    def describe(self) -> dict[str, Any]:
        """Echo of the active filters, for export metadata."""
        return {
            "status": self.status,
            "services": self.services or None,
            "familyGroup": self.family_group,
            "search": self.search,
            "dateFrom": self.date_from.isoformat() if self.date_from else None,
            "dateTo": self.date_to.isoformat() if self.date_to else None,
            "includeDeleted": self.include_deleted,
        }


def parse_sort(sort: str | None) -> list[Any]:
    """``"-createdAt"`` -> newest first; unknown fields are rejected."""
    token = (sort or DEFAULT_SORT).strip()
    descending = token.startswith("-")
    name = token.lstrip("-+")
    column = SORT_FIELDS.get(name)
    if column is None:
        raise ValidationError(["sort must be one of: " + ", ".join(SORT_FIELDS) + " (prefix with - for descending)"])
    primary = column.desc() if descending else column.asc()
    tiebreak = Patient.created_at.desc() if name != "createdAt" else Patient.id.asc()
    return [primary, tiebreak]


@dataclass
class Page:
    page: int = 1
    limit: int = 100

    @classmethod
    def from_params(cls, params: Mapping[str, Any]) -> Page:
        return cls(
            page=parse_int(params.get("page"), "page", default=1, minimum=1),
            limit=parse_int(
                params.get("limit"),
                "limit",
                default=settings.DEFAULT_PAGE_LIMIT,
                minimum=1,
                maximum=settings.MAX_PAGE_LIMIT,
            ),
        )

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit

    def metadata(self, total: int) -> dict[str, Any]:
        return {
            "currentPage": self.page,
            "totalPages": math.ceil(total / self.limit) if total else 0,
            "totalPatients": total,
            "limit": self.limit,
            "hasNext": self.page * self.limit < total,
            "hasPrev": self.page > 1,
        }
