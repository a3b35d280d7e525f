# crew_engine/pay_audit.py
"""
Pay discrepancy audit: recompute expected pay for a period and compare it
with the pay records actually issued.
"""
import datetime
import logging
from typing import Dict, List, Optional, Sequence

from pydantic import BaseModel, Field

from .models import CrewPayRecord, CrewReference, CrewStatus, PayCalculation
from .pay_calculator import PayCalculator

log = logging.getLogger("crew_engine.pay_audit")

BASE_PAY_TOLERANCE = 100.0
PER_DIEM_TOLERANCE = 50.0
PREMIUM_TOLERANCE = 100.0


class PayDiscrepancy(BaseModel):
    crew_member: CrewReference
    discrepancy_type: str
    expected_amount: float
    actual_amount: float
    difference: float
    confidence: str
    recommended_action: str
    supporting_evidence: Dict[str, float] = Field(default_factory=dict)


class DiscrepancyTypeSummary(BaseModel):
    type: str
    count: int
    total_amount: float


class PayDiscrepancyReport(BaseModel):
    period_start: datetime.date
    period_end: datetime.date
    total_records_checked: int
    discrepancies_found: int
    total_discrepancy_amount: float
    summary_by_type: List[DiscrepancyTypeSummary]
    discrepancies: List[PayDiscrepancy]
    errors: Dict[str, str] = Field(default_factory=dict)


def compare(expected: PayCalculation, issued: Optional[CrewPayRecord], threshold: float) -> Optional[PayDiscrepancy]:
    total = expected.summary.total_compensation
    if issued is None:
        if total <= threshold:
            return None
        return PayDiscrepancy(
            crew_member=expected.crew_member,
            discrepancy_type="MISSING_PAY_RECORD",
            expected_amount=total,
            actual_amount=0.0,
            difference=total,
            confidence="HIGH",
            recommended_action="Create pay record for this crew member",
            supporting_evidence={
                "flight_hours": expected.summary.total_flight_hours,
                "duty_hours": expected.summary.total_duty_hours,
            },
        )

    difference = abs(total - issued.total_compensation)
    if difference <= threshold:
        return None

    bd = expected.breakdown
    base_diff = abs(bd.base_pay.amount - issued.base_pay)
    per_diem_diff = abs(bd.per_diem.amount - issued.per_diem)
    premium_diff = abs(sum(p.amount for p in bd.premium_pay) - issued.premium_pay)

    if base_diff > BASE_PAY_TOLERANCE:
        kind, confidence = "BASE_PAY_MISMATCH", "HIGH"
    elif per_diem_diff > PER_DIEM_TOLERANCE:
        kind, confidence = "PER_DIEM_MISMATCH", "HIGH"
    elif premium_diff > PREMIUM_TOLERANCE:
        kind, confidence = "MISSING_PREMIUM", "HIGH"
    else:
        kind, confidence = "CALCULATION_MISMATCH", "MEDIUM"

    return PayDiscrepancy(
        crew_member=expected.crew_member,
        discrepancy_type=kind,
        expected_amount=total,
        actual_amount=issued.total_compensation,
        difference=round(difference, 2),
        confidence=confidence,
        recommended_action="Review and adjust pay record",
        supporting_evidence={
            "base_pay_expected": bd.base_pay.amount,
            "base_pay_actual": issued.base_pay,
            "per_diem_expected": bd.per_diem.amount,
            "per_diem_actual": issued.per_diem,
        },
    )


async def flag_pay_discrepancies(
    calculator: PayCalculator,
    period_start: datetime.date,
    period_end: datetime.date,
    crew_ids: Optional[Sequence[str]] = None,
    threshold: float = 0.0,
) -> PayDiscrepancyReport:
    store = calculator.store
    if not crew_ids:
        crew_ids = [c.crew_id for c in await store.list_crew_members(status=CrewStatus.ACTIVE)]
    log.info("Checking %d crew members for pay discrepancies", len(crew_ids))

    outcomes = await calculator.calculate_bulk_pay(crew_ids, period_start, period_end)
    resolved_ids = [o.value.crew_member.crew_id for o in outcomes if o.ok]
    issued = {
        r.crew_id: r
        for r in await store.get_pay_records(period_start, period_end, resolved_ids)
    }

    discrepancies: List[PayDiscrepancy] = []
    for o in outcomes:
        if not o.ok:
            continue
        d = compare(o.value, issued.get(o.value.crew_member.crew_id), threshold)
        if d is not None:
            discrepancies.append(d)

    by_type: Dict[str, DiscrepancyTypeSummary] = {}
    for d in discrepancies:
        s = by_type.setdefault(d.discrepancy_type, DiscrepancyTypeSummary(type=d.discrepancy_type, count=0, total_amount=0.0))
        s.count += 1
        s.total_amount = round(s.total_amount + d.difference, 2)

    report = PayDiscrepancyReport(
        period_start=period_start,
        period_end=period_end,
        total_records_checked=len(crew_ids),
        discrepancies_found=len(discrepancies),
        total_discrepancy_amount=round(sum(d.difference for d in discrepancies), 2),
        summary_by_type=list(by_type.values()),
        discrepancies=discrepancies,
        errors={o.key: str(o.error) for o in outcomes if not o.ok},
    )
    log.info("Pay discrepancy analysis complete: %d checked, %d found", len(crew_ids), len(discrepancies))
    return report
