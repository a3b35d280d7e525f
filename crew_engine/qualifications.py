# crew_engine/qualifications.py
"""
Certification expiry and recurrent-training reviews.

Status values on the records are trusted as given; day counts are relative
to the as_of date passed by the caller.
"""
import datetime
import logging
from collections import Counter
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from .errors import CrewNotFoundError
from .models import CrewReference, RatingCurrency, TrainingStatus
from .store import CrewStore

log = logging.getLogger("crew_engine.qualifications")

CERTIFICATION_TYPES = ("medical", "training", "type_rating")


class ExpiringCertification(BaseModel):
    crew_member: CrewReference
    certification_type: str
    certification_details: Dict[str, Any] = Field(default_factory=dict)
    expiration_date: datetime.date
    days_until_expiry: int
    priority: str
    recommended_action: str


class CertificationExpiryReport(BaseModel):
    alert_window_days: int
    total_expiring: int
    expiring_certifications: Dict[str, List[ExpiringCertification]]
    summary: Dict[str, Any]
    recommendations: List[str]


class TrainingItem(BaseModel):
    type: str
    aircraft_type: Optional[str] = None
    completion_date: Optional[datetime.date] = None
    next_due: datetime.date
    days_until_due: int
    instructor: Optional[str] = None
    location: Optional[str] = None


class TrainingRequirements(BaseModel):
    crew_member: CrewReference
    training_status: Dict[str, List[TrainingItem]]
    summary: Dict[str, Any]
    recommendations: List[str]


def expiry_priority(days: int) -> str:
    if days <= 14:
        return "CRITICAL"
    if days <= 30:
        return "HIGH"
    return "MEDIUM"


_ACTIONS = {
    "CRITICAL": "Immediate renewal required",
    "HIGH": "Schedule renewal soon",
    "MEDIUM": "Plan renewal",
}


async def check_certification_expiry(
    store: CrewStore,
    days_ahead: int,
    base_airport: Optional[str],
    as_of: datetime.date,
    certification_types: Optional[List[str]] = None,
) -> CertificationExpiryReport:
    types = set(certification_types or CERTIFICATION_TYPES)
    horizon = as_of + datetime.timedelta(days=days_ahead)
    crew_list = await store.list_crew_members(base_airport=base_airport)

    found: List[ExpiringCertification] = []

    def add(crew, cert_type, expires, details):
        if expires is None or not (as_of <= expires <= horizon):
            return
        days = (expires - as_of).days
        priority = expiry_priority(days)
        found.append(ExpiringCertification(
            crew_member=CrewReference.of(crew),
            certification_type=cert_type,
            certification_details=details,
            expiration_date=expires,
            days_until_expiry=days,
            priority=priority,
            recommended_action=f"{_ACTIONS[priority]} - expires in {days} days",
        ))

    for crew in crew_list:
        if "medical" in types:
            med = await store.get_medical_certificate(crew.crew_id)
            if med is not None:
                add(crew, "MEDICAL", med.expiration_date, {"medical_class": med.medical_class})
        if "training" in types:
            for t in await store.get_training_records(crew.crew_id):
                details = {"training_type": t.training_type}
                if t.aircraft_type:
                    details["aircraft_type"] = t.aircraft_type
                add(crew, "TRAINING", t.next_due_date, details)
        if "type_rating" in types:
            for r in await store.get_aircraft_type_ratings(crew.crew_id):
                if r.currency_status != RatingCurrency.EXPIRED:
                    add(crew, "TYPE_RATING", r.next_check_due, {"aircraft_type": r.aircraft_type})

    found.sort(key=lambda c: (c.expiration_date, c.crew_member.crew_id))
    buckets = {
        level.lower(): [c for c in found if c.priority == level]
        for level in ("CRITICAL", "HIGH", "MEDIUM")
    }

    recommendations = []
    if buckets["critical"]:
        recommendations.append(f"URGENT: {len(buckets['critical'])} certification(s) expiring within 14 days")
    if buckets["high"]:
        recommendations.append(f"{len(buckets['high'])} certification(s) expiring within 30 days - schedule renewals")
    if buckets["medium"]:
        recommendations.append(
            f"{len(buckets['medium'])} certification(s) expiring within {days_ahead} days - plan ahead"
        )
    if not found:
        recommendations.append(f"No certifications expiring within {days_ahead} days")

    log.info("Certification expiry check: %d expiring, %d critical", len(found), len(buckets["critical"]))
    return CertificationExpiryReport(
        alert_window_days=days_ahead,
        total_expiring=len(found),
        expiring_certifications=buckets,
        summary={
            "by_priority": {k: len(v) for k, v in buckets.items()},
            "by_type": dict(Counter(c.certification_type for c in found)),
            "by_base": dict(Counter(c.crew_member.base for c in found)),
        },
        recommendations=recommendations,
    )


async def get_training_requirements(
    store: CrewStore, crew_id: str, days_ahead: int, as_of: datetime.date
) -> TrainingRequirements:
    crew = await store.get_crew_member(crew_id)
    if crew is None:
        raise CrewNotFoundError(crew_id)

    status = {"current": [], "due_soon": [], "overdue": []}
    for t in await store.get_training_records(crew.crew_id):
        days = (t.next_due_date - as_of).days
        item = TrainingItem(
            type=t.training_type,
            aircraft_type=t.aircraft_type,
            completion_date=t.completion_date,
            next_due=t.next_due_date,
            days_until_due=days,
            instructor=t.instructor_name,
            location=t.training_location,
        )
        if t.status == TrainingStatus.OVERDUE or days < 0:
            status["overdue"].append(item)
        elif t.status == TrainingStatus.DUE_SOON or days <= days_ahead:
            status["due_soon"].append(item)
        else:
            status["current"].append(item)

    overdue, due_soon = status["overdue"], status["due_soon"]
    recommendations = []
    if overdue:
        recommendations.append(f"URGENT: {len(overdue)} training item(s) overdue - immediate action required")
        for t in overdue:
            suffix = f" ({t.aircraft_type})" if t.aircraft_type else ""
            recommendations.append(f"  - {t.type}{suffix} overdue by {abs(t.days_until_due)} days")
    if due_soon:
        recommendations.append(f"{len(due_soon)} training item(s) due within {days_ahead} days - schedule soon")
    if not overdue and not due_soon:
        recommendations.append("All training current - no immediate action required")

    if overdue:
        compliance_status = "NON_COMPLIANT"
    elif due_soon:
        compliance_status = "WARNING"
    else:
        compliance_status = "COMPLIANT"

    return TrainingRequirements(
        crew_member=CrewReference.of(crew),
        training_status=status,
        summary={
            "total_training_items": sum(len(v) for v in status.values()),
            "current_count": len(status["current"]),
            "due_soon_count": len(due_soon),
            "overdue_count": len(overdue),
            "compliance_status": compliance_status,
        },
        recommendations=recommendations,
    )
