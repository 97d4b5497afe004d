"""
Population statistics: status counts, completion rate, service and family-group
distributions, and day-bucketed registration/completion trends.
"""

from __future__ import annotations

import math
from collections import Counter
from datetime import date, datetime, timedelta
from typing import Any

from sqlalchemy import distinct, func, select
from sqlalchemy.orm import Session

from campaign_registry.models.patient import Patient, PatientService, utcnow
from campaign_registry.services.normalization import canonical_service


def _scope(include_deleted: bool) -> list[Any]:
    return [] if include_deleted else [Patient.is_deleted.is_(False)]


def _count(db: Session, *conditions: Any) -> int:
    return db.scalar(select(func.count()).select_from(Patient).where(*conditions)) or 0


def completion_rate(completed: int, active: int) -> int:
    """Percentage of active records that are completed, rounded half up; 0 with no active records."""
    if active <= 0:
        return 0
    return math.floor(completed * 100 / active + 0.5)


def population_counts(db: Session, include_deleted: bool = False) -> dict[str, int]:
    scope = _scope(include_deleted)
    active = _count(db, Patient.is_deleted.is_(False))
    deleted = _count(db, Patient.is_deleted.is_(True))
    return {
        "totalPatients": active + deleted if include_deleted else active,
        "activePatients": active,
        "pendingPatients": _count(db, Patient.status == "registered", *scope),
        "completedPatients": _count(db, Patient.status == "completed", *scope),
        "cancelledPatients": _count(db, Patient.status == "cancelled", *scope),
        "deletedPatients": deleted,
    }


def service_distribution(db: Session, include_deleted: bool = False) -> dict[str, int]:
    """A record holding N services counts once in each of the N buckets."""
    scope = _scope(include_deleted)
    counts: Counter[str] = Counter()

    unwound = (
        select(PatientService.service, func.count(distinct(PatientService.patient_id)))
        .join(Patient, Patient.id == PatientService.patient_id)
        .where(*scope)
        .group_by(PatientService.service)
    )
    for service, count in db.execute(unwound):
        counts[service] += count

    # Records still carrying only the legacy single service.
    legacy = (
        select(Patient.legacy_service, func.count())
        .where(Patient.legacy_service.is_not(None), ~Patient.service_links.any(), *scope)
        .group_by(Patient.legacy_service)
    )
    for service, count in db.execute(legacy):
        counts[canonical_service(service)] += count

    return dict(counts.most_common())


def family_group_distribution(db: Session, include_deleted: bool = False) -> dict[str, int]:
    stmt = (
        select(Patient.family_group, func.count())
        .where(*_scope(include_deleted))
        .group_by(Patient.family_group)
        .order_by(func.count().desc(), Patient.family_group)
    )
    return {group: count for group, count in db.execute(stmt)}


def daily_trends(
    db: Session,
    period_days: int,
    include_deleted: bool = False,
    now: datetime | None = None,
) -> dict[str, Any]:
    """Registrations and completions per day for the last ``period_days`` days, today included."""
    today = (now or utcnow()).date()
    first_day = today - timedelta(days=period_days - 1)
    window_start = datetime.combine(first_day, datetime.min.time())
    scope = _scope(include_deleted)

    registered = db.scalars(select(Patient.created_at).where(Patient.created_at >= window_start, *scope))
    completed = db.scalars(select(Patient.completed_at).where(Patient.completed_at >= window_start, *scope))
    registrations: Counter[date] = Counter(moment.date() for moment in registered)
    completions: Counter[date] = Counter(moment.date() for moment in completed)

    days = [first_day + timedelta(days=offset) for offset in range(period_days)]
    return {
        "periodDays": period_days,
        "from": first_day.isoformat(),
        "to": today.isoformat(),
        "daily": [
            {
                "date": day.isoformat(),
                "registrations": registrations.get(day, 0),
                "completions": completions.get(day, 0),
            }
            for day in days
        ],
    }


def compute_statistics(
    db: Session,
    *,
    period_days: int,
    recent_days: int,
    include_deleted: bool = False,
    now: datetime | None = None,
) -> dict[str, Any]:
    now = now or utcnow()
    counts = population_counts(db, include_deleted)
    recent = _count(
        db, Patient.created_at >= now - timedelta(days=recent_days), *_scope(include_deleted)
    )
    return {
        **counts,
        "completionRate": completion_rate(counts["completedPatients"], counts["activePatients"]),
        "recentRegistrations": recent,
        "recentWindowDays": recent_days,
        "serviceDistribution": service_distribution(db, include_deleted),
        "familyGroupDistribution": family_group_distribution(db, include_deleted),
        "trends": daily_trends(db, period_days, include_deleted, now),
        "includeDeleted": include_deleted,
    }
