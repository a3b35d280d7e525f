# crew_engine/api.py
"""
HTTP routes for the legality, compliance, duty recording and pay engines.

Engines are built once in the app lifespan and read from request.app.state.
"""
import datetime
import logging
from typing import Dict, List, Optional

from fastapi import APIRouter, Query, Request
from pydantic import BaseModel, Field

from .compliance import ComplianceMonitor, ComplianceReport
from .crew_pool import CrewPool, get_qualified_crew_pool
from .duty_log import DutyRecordResult, DutyTimeEntry, record_duty_time
from .legality import LegalityValidator
from .models import Clearance, ComplianceAlert, LegalityResult, PayCalculation, ProposedDutyAssignment
from .pay_audit import PayDiscrepancyReport, flag_pay_discrepancies
from .pay_calculator import PayCalculator
from .qualifications import CertificationExpiryReport, TrainingRequirements

log = logging.getLogger("uvicorn.error")
router = APIRouter()


# ---------- Request / Response Models ----------
class ValidateRequest(BaseModel):
    crew_id: str
    assignment: ProposedDutyAssignment


class ValidatePoolRequest(BaseModel):
    crew_ids: List[str] = Field(min_length=1)
    assignment: ProposedDutyAssignment


class ComplianceRunRequest(BaseModel):
    as_of: Optional[datetime.date] = None


class ComplianceRunResult(BaseModel):
    check_date: datetime.date
    total_alerts: int
    alerts: List[ComplianceAlert]


class PayPeriodRequest(BaseModel):
    crew_id: str
    period_start: datetime.date
    period_end: datetime.date


class PayEstimateRequest(PayPeriodRequest):
    estimated_flight_hours: float = Field(ge=0)
    estimated_duty_hours: float = Field(ge=0)


class BulkPayRequest(BaseModel):
    crew_ids: List[str] = Field(min_length=1)
    period_start: datetime.date
    period_end: datetime.date


class BulkPayResult(BaseModel):
    results: List[PayCalculation]
    errors: Dict[str, str]


class DiscrepancyRequest(BaseModel):
    period_start: datetime.date
    period_end: datetime.date
    crew_ids: Optional[List[str]] = None
    threshold_amount: float = Field(default=0.0, ge=0)


# ---------- state accessors ----------
def _validator(request: Request) -> LegalityValidator:
    return request.app.state.validator


def _monitor(request: Request) -> ComplianceMonitor:
    return request.app.state.compliance


def _pay(request: Request) -> PayCalculator:
    return request.app.state.pay


# ---------- Legality ----------
@router.post("/legality/validate", response_model=LegalityResult)
async def validate_assignment(payload: ValidateRequest, request: Request):
    return await _validator(request).validate_assignment(payload.crew_id, payload.assignment)


@router.post("/legality/validate-pool", response_model=Dict[str, LegalityResult])
async def validate_crew_pool(payload: ValidatePoolRequest, request: Request):
    return await _validator(request).validate_crew_pool(payload.crew_ids, payload.assignment)


@router.get("/crew-pool", response_model=CrewPool)
async def crew_pool(
    request: Request,
    aircraft_type: str,
    position: str,
    base_airport: Optional[str] = None,
    duty_date: Optional[datetime.date] = None,
    check_legality: bool = True,
):
    return await get_qualified_crew_pool(
        _validator(request), aircraft_type, position, base_airport, duty_date, check_legality
    )


# ---------- Duty time ----------
@router.post("/duty", response_model=DutyRecordResult)
async def record_duty(payload: DutyTimeEntry, request: Request):
    return await record_duty_time(_monitor(request), payload)


# ---------- Compliance ----------
@router.get("/compliance/report", response_model=ComplianceReport)
async def compliance_report(request: Request, start: datetime.date, end: datetime.date):
    return await _monitor(request).generate_compliance_report(start, end)


@router.post("/compliance/run", response_model=ComplianceRunResult)
async def run_compliance(payload: ComplianceRunRequest, request: Request):
    as_of = payload.as_of or datetime.datetime.now(datetime.timezone.utc).date()
    alerts = await _monitor(request).check_all_crew(as_of)
    return ComplianceRunResult(check_date=as_of, total_alerts=len(alerts), alerts=alerts)


@router.get("/compliance/{crew_id}", response_model=List[ComplianceAlert])
async def crew_compliance(crew_id: str, request: Request, as_of: Optional[datetime.date] = None):
    return await _monitor(request).check_crew_compliance(crew_id, as_of)


@router.get("/compliance/{crew_id}/clearance", response_model=Clearance)
async def clearance(
    crew_id: str,
    request: Request,
    proposed_hours: float = Query(ge=0),
    as_of: Optional[datetime.date] = None,
):
    return await _monitor(request).is_clear_for_assignment(crew_id, proposed_hours, as_of)


@router.get("/certifications/expiring", response_model=CertificationExpiryReport)
async def expiring_certifications(
    request: Request,
    days_ahead: Optional[int] = Query(default=None, ge=1, le=365),
    base_airport: Optional[str] = None,
    certification_types: Optional[List[str]] = Query(default=None),
    as_of: Optional[datetime.date] = None,
):
    if days_ahead is None:
        days_ahead = request.app.state.settings.alert_days_before_expiry
    return await _monitor(request).check_certification_expiry(days_ahead, base_airport, as_of, certification_types)


@router.get("/crew/{crew_id}/training", response_model=TrainingRequirements)
async def training_requirements(
    crew_id: str,
    request: Request,
    days_ahead: int = Query(default=90, ge=1, le=365),
    as_of: Optional[datetime.date] = None,
):
    return await _monitor(request).get_training_requirements(crew_id, days_ahead, as_of)


# ---------- Pay ----------
@router.post("/pay/calculate", response_model=PayCalculation)
async def calculate_pay(payload: PayPeriodRequest, request: Request):
    return await _pay(request).calculate_pay(payload.crew_id, payload.period_start, payload.period_end)


@router.post("/pay/estimate", response_model=PayCalculation)
async def estimate_pay(payload: PayEstimateRequest, request: Request):
    return await _pay(request).estimate_pay(
        payload.crew_id,
        payload.estimated_flight_hours,
        payload.estimated_duty_hours,
        payload.period_start,
        payload.period_end,
    )


@router.post("/pay/bulk", response_model=BulkPayResult)
async def bulk_pay(payload: BulkPayRequest, request: Request):
    outcomes = await _pay(request).calculate_bulk_pay(payload.crew_ids, payload.period_start, payload.period_end)
    return BulkPayResult(
        results=[o.value for o in outcomes if o.ok],
        errors={o.key: str(o.error) for o in outcomes if not o.ok},
    )


@router.post("/pay/discrepancies", response_model=PayDiscrepancyReport)
async def pay_discrepancies(payload: DiscrepancyRequest, request: Request):
    return await flag_pay_discrepancies(
        _pay(request), payload.period_start, payload.period_end, payload.crew_ids, payload.threshold_amount
    )
