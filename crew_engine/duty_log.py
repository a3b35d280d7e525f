# crew_engine/duty_log.py
"""
Recording of completed duty periods.

record_duty_time fills in what the entry leaves out (duty minutes from the
start/end window, WOCL crossing, block time), writes the record through the
store and re-runs the rolling-limit checks for the crew member as of the
duty date.
"""
import datetime
import logging
import uuid
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from .compliance import ComplianceMonitor
from .errors import CrewNotFoundError
from .models import Clearance, ComplianceAlert, DutyTimeRecord
from .timeutils import crosses_wocl, ensure_utc

log = logging.getLogger("crew_engine.duty_log")

WOCL_NOTE = "Duty crossed the window of circadian low (02:00-05:59) - monitor for fatigue"


class DutyTimeEntry(BaseModel):
    crew_id: str
    duty_start_utc: datetime.datetime
    duty_end_utc: datetime.datetime
    duty_date: Optional[datetime.date] = None
    duty_id: Optional[str] = None
    flight_time_minutes: int = Field(default=0, ge=0)
    duty_time_minutes: Optional[int] = Field(default=None, ge=0)
    block_time_minutes: Optional[int] = Field(default=None, ge=0)
    flight_segments: int = Field(default=0, ge=0)
    wocl_crossing: Optional[bool] = None
    is_international: bool = False

    @field_validator("duty_start_utc", "duty_end_utc")
    @classmethod
    def _as_utc(cls, v):
        return ensure_utc(v)

    @model_validator(mode="after")
    def _check_window(self):
        if self.duty_end_utc < self.duty_start_utc:
            raise ValueError("duty_end_utc must not be before duty_start_utc")
        return self


class DutyRecordResult(BaseModel):
    duty_record: DutyTimeRecord
    clearance: Clearance
    alerts: List[ComplianceAlert]
    recommendations: List[str]


def build_duty_record(crew_id: str, entry: DutyTimeEntry) -> DutyTimeRecord:
    duty_minutes = entry.duty_time_minutes
    if duty_minutes is None:
        duty_minutes = round((entry.duty_end_utc - entry.duty_start_utc).total_seconds() / 60)
    wocl = entry.wocl_crossing
    if wocl is None:
        wocl = crosses_wocl(entry.duty_start_utc, entry.duty_end_utc)
    return DutyTimeRecord(
        duty_id=entry.duty_id or f"DT-{uuid.uuid4().hex[:12]}",
        crew_id=crew_id,
        duty_date=entry.duty_date or entry.duty_start_utc.date(),
        duty_start_utc=entry.duty_start_utc,
        duty_end_utc=entry.duty_end_utc,
        flight_time_minutes=entry.flight_time_minutes,
        duty_time_minutes=duty_minutes,
        block_time_minutes=(
            entry.block_time_minutes if entry.block_time_minutes is not None else entry.flight_time_minutes
        ),
        flight_segments=entry.flight_segments,
        is_fdp=True,
        wocl_crossing=wocl,
        is_international=entry.is_international,
    )


async def record_duty_time(monitor: ComplianceMonitor, entry: DutyTimeEntry) -> DutyRecordResult:
    crew = await monitor.store.get_crew_member(entry.crew_id)
    if crew is None:
        raise CrewNotFoundError(entry.crew_id)

    record = await monitor.store.upsert_duty_time_record(build_duty_record(crew.crew_id, entry))

    # the new record is already inside the windows; nothing further is proposed
    clearance = await monitor.is_clear_for_assignment(crew.crew_id, 0.0, record.duty_date)
    alerts = await monitor.check_crew_compliance(crew.crew_id, record.duty_date)

    recs = [
        "Duty time recorded - crew remains within FAA limits" if clearance.is_clear else clearance.reason,
        f"{len(alerts)} compliance alert(s) generated" if alerts else "No compliance issues detected",
    ]
    if record.wocl_crossing:
        recs.append(WOCL_NOTE)

    log.info(
        "Recorded duty %s for %s on %s: %d flight minutes, wocl=%s, %d alerts",
        record.duty_id, crew.crew_id, record.duty_date, record.flight_time_minutes,
        record.wocl_crossing, len(alerts),
    )
    return DutyRecordResult(duty_record=record, clearance=clearance, alerts=alerts, recommendations=recs)
