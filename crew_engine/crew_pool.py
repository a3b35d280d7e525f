# crew_engine/crew_pool.py
"""
Qualified crew pool: ACTIVE crew holding a CURRENT rating for an aircraft
type and position, optionally checked for legality against a default duty
on the target date and ranked by suitability.
"""
import asyncio
import datetime
import logging
from typing import List, Optional

from pydantic import BaseModel

from .errors import capture
from .legality import LegalityValidator
from .models import LegalityResult, ProposedDutyAssignment

log = logging.getLogger("crew_engine.crew_pool")

DEFAULT_REPORT_HOUR = 8
DEFAULT_FLIGHT_MINUTES = 300
DEFAULT_SEGMENTS = 2


class PoolMember(BaseModel):
    crew_id: str
    employee_number: str
    name: str
    position: str
    base: str
    seniority: Optional[int] = None


class Availability(BaseModel):
    is_available: bool
    rest_compliant: bool
    duty_limit_compliant: bool
    rolling_28_day_hours: float
    rolling_28_day_remaining: float


class CrewPoolEntry(BaseModel):
    crew_member: PoolMember
    aircraft_qualified: bool = True
    currency_status: str = "CURRENT"
    availability: Optional[Availability] = None
    suitability_score: Optional[int] = None
    note: Optional[str] = None


class CrewPool(BaseModel):
    aircraft_type: str
    position: str
    base_airport: Optional[str] = None
    duty_date: Optional[datetime.date] = None
    total_qualified: int
    available: int
    crew_pool: List[CrewPoolEntry]


def default_duty(aircraft_type: str, duty_date: datetime.date) -> ProposedDutyAssignment:
    start = datetime.datetime.combine(
        duty_date, datetime.time(DEFAULT_REPORT_HOUR), tzinfo=datetime.timezone.utc
    )
    return ProposedDutyAssignment(
        aircraft_type=aircraft_type,
        duty_start_utc=start,
        flight_time_minutes=DEFAULT_FLIGHT_MINUTES,
        number_of_segments=DEFAULT_SEGMENTS,
    )


def suitability_score(result: LegalityResult) -> int:
    if not result.is_legal:
        return 0
    score = 100
    limits = result.duty_limits
    used = limits.rolling_28_day_hours / limits.rolling_28_day_limit * 100
    if used > 90:
        score -= 20
    elif used > 80:
        score -= 10
    return max(0, score)


async def get_qualified_crew_pool(
    validator: LegalityValidator,
    aircraft_type: str,
    position: str,
    base_airport: Optional[str] = None,
    duty_date: Optional[datetime.date] = None,
    check_legality: bool = True,
) -> CrewPool:
    crew = await validator.store.get_crew_by_aircraft_type(aircraft_type, position)
    if base_airport:
        crew = [c for c in crew if c.base_airport == base_airport]
    log.info("Found %d qualified crew for %s/%s", len(crew), aircraft_type, position)

    entries = [
        CrewPoolEntry(crew_member=PoolMember(
            crew_id=c.crew_id,
            employee_number=c.employee_number,
            name=c.name,
            position=c.position,
            base=c.base_airport,
            seniority=c.seniority_number,
        ))
        for c in crew
    ]

    if check_legality and duty_date is not None:
        proposed = default_duty(aircraft_type, duty_date)
        outcomes = await asyncio.gather(*(
            capture(c.crew_id, validator.validate_assignment(c.crew_id, proposed), "pool legality check")
            for c in crew
        ))
        for entry, outcome in zip(entries, outcomes):
            if not outcome.ok:
                entry.note = f"Legality check failed: {outcome.error}"
                continue
            result = outcome.value
            limits = result.duty_limits
            entry.availability = Availability(
                is_available=result.is_legal,
                rest_compliant=result.rest_compliance.is_compliant,
                duty_limit_compliant=limits.rolling_28_day_hours <= limits.rolling_28_day_limit,
                rolling_28_day_hours=limits.rolling_28_day_hours,
                rolling_28_day_remaining=limits.rolling_28_day_limit - limits.rolling_28_day_hours,
            )
            entry.suitability_score = suitability_score(result)

        # unscored entries last, stable otherwise
        entries.sort(key=lambda e: -1 if e.suitability_score is None else e.suitability_score, reverse=True)

    return CrewPool(
        aircraft_type=aircraft_type,
        position=position,
        base_airport=base_airport,
        duty_date=duty_date,
        total_qualified=len(entries),
        available=sum(1 for e in entries if e.availability is not None and e.availability.is_available)
        if check_legality and duty_date is not None else len(entries),
        crew_pool=entries,
    )
