# crew_engine/compliance.py
"""
Compliance monitor: periodic re-evaluation of rolling flight-time usage.

 - check_crew_compliance: graded alerts for one crew member
 - check_all_crew: every ACTIVE pilot, with a snapshot written per crew
 - is_clear_for_assignment: quick "can they fly N more hours" check
 - generate_compliance_report: alert totals for a reporting period
Certification and training reviews are delegated to qualifications.py.
"""
import asyncio
import datetime
import logging
from typing import Dict, List, Optional, Tuple

from pydantic import BaseModel, Field

from .errors import CrewNotFoundError, capture
from .load_rules import RegulatoryRuleTable, RuleBook
from .models import (
    AlertType,
    Clearance,
    ComplianceAlert,
    ComplianceSnapshot,
    CrewMember,
    CrewStatus,
    CrewType,
    Severity,
)
from .qualifications import (
    CertificationExpiryReport,
    TrainingRequirements,
    check_certification_expiry,
    get_training_requirements,
)
from .store import CrewStore
from .timeutils import (
    ROLLING_365_DAYS,
    RollingHours,
    count_consecutive_duty_days,
    fetch_rolling_hours,
    rolling_hours,
)

log = logging.getLogger("crew_engine.compliance")

GROUND_CREW = "Ground crew immediately - no further assignments until hours reduce below limit"
RECOMMENDED_ACTIONS: Dict[Tuple[str, Severity], str] = {
    ("28-day", Severity.CRITICAL): GROUND_CREW,
    ("28-day", Severity.HIGH): "Carefully schedule remaining hours - limit additional flights",
    ("28-day", Severity.MEDIUM): "Monitor closely - plan lighter schedule ahead",
    ("365-day", Severity.CRITICAL): GROUND_CREW,
    ("365-day", Severity.HIGH): "Review annual schedule - may need extended time off",
    ("365-day", Severity.MEDIUM): "Plan for vacation or lighter schedule later in year",
}


class ComplianceReport(BaseModel):
    period_start: datetime.date
    period_end: datetime.date
    total_crew_checked: int
    compliant_crew: int
    alerts_by_severity: Dict[str, int]
    alerts: List[ComplianceAlert]
    errors: Dict[str, str] = Field(default_factory=dict)


def _today() -> datetime.date:
    return datetime.datetime.now(datetime.timezone.utc).date()


def _window_alert(
    crew: CrewMember, label: str, hours: float, limit: float, table: RegulatoryRuleTable
) -> Optional[ComplianceAlert]:
    # thresholds are sorted highest ratio first
    for t in table.alert_thresholds:
        if hours >= limit * t.ratio:
            if t.alert_type == AlertType.LIMIT_EXCEEDED:
                message = f"{label} flight time limit exceeded"
            else:
                message = f"Approaching {label} flight time limit ({round(t.ratio * 100)}%)"
            return ComplianceAlert(
                crew_id=crew.crew_id,
                employee_number=crew.employee_number,
                name=crew.name,
                alert_type=t.alert_type,
                severity=t.severity,
                message=message,
                current_value=hours,
                limit_value=limit,
                recommended_action=RECOMMENDED_ACTIONS.get((label, t.severity), "Review crew schedule"),
            )
    return None


def alerts_for(crew: CrewMember, rolling: RollingHours, table: RegulatoryRuleTable) -> List[ComplianceAlert]:
    """28-day and 365-day windows are graded independently."""
    alerts = []
    for label, hours, limit in (
        ("28-day", rolling.h28, table.rolling_28_day_limit_hours),
        ("365-day", rolling.h365, table.rolling_365_day_limit_hours),
    ):
        alert = _window_alert(crew, label, hours, limit, table)
        if alert is not None:
            alerts.append(alert)
    return alerts


class ComplianceMonitor:
    def __init__(self, store: CrewStore, rules: RuleBook):
        self.store = store
        self.rules = rules

    async def _crew(self, crew_id: str) -> CrewMember:
        crew = await self.store.get_crew_member(crew_id)
        if crew is None:
            raise CrewNotFoundError(crew_id)
        return crew

    async def _history(self, crew_id: str, as_of: datetime.date):
        return await self.store.get_duty_time_records(
            crew_id, as_of - datetime.timedelta(days=ROLLING_365_DAYS), as_of
        )

    async def check_crew_compliance(self, crew_id: str, as_of: Optional[datetime.date] = None) -> List[ComplianceAlert]:
        as_of = as_of or _today()
        crew = await self._crew(crew_id)
        rolling = await fetch_rolling_hours(self.store, crew.crew_id, as_of)
        return alerts_for(crew, rolling, self.rules.regulatory)

    async def _check_and_record(self, crew: CrewMember, as_of: datetime.date) -> List[ComplianceAlert]:
        table = self.rules.regulatory
        history = await self._history(crew.crew_id, as_of)
        rolling = rolling_hours(history, as_of)
        await self.store.insert_compliance_record(ComplianceSnapshot(
            crew_id=crew.crew_id,
            check_date=as_of,
            rolling_28_day_hours=rolling.h28,
            rolling_365_day_hours=rolling.h365,
            # streak up to and including the check date
            consecutive_duty_days=count_consecutive_duty_days(history, as_of + datetime.timedelta(days=1)),
            rest_compliance=rolling.h28 < table.rolling_28_day_limit_hours,
            fdp_compliance=rolling.h365 < table.rolling_365_day_limit_hours,
        ))
        return alerts_for(crew, rolling, table)

    async def check_all_crew(self, as_of: Optional[datetime.date] = None) -> List[ComplianceAlert]:
        as_of = as_of or _today()
        pilots = await self.store.list_crew_members(crew_type=CrewType.PILOT, status=CrewStatus.ACTIVE)
        log.info("Running compliance check for %d pilots as of %s", len(pilots), as_of)

        outcomes = await asyncio.gather(*(
            capture(p.crew_id, self._check_and_record(p, as_of), "compliance check") for p in pilots
        ))
        alerts = [a for o in outcomes if o.ok for a in o.value]
        log.info("Compliance check complete: %d alerts generated", len(alerts))
        return alerts

    async def is_clear_for_assignment(
        self, crew_id: str, proposed_hours: float, as_of: Optional[datetime.date] = None
    ) -> Clearance:
        as_of = as_of or _today()
        crew = await self._crew(crew_id)
        table = self.rules.regulatory
        rolling = await fetch_rolling_hours(self.store, crew.crew_id, as_of)
        p28 = rolling.h28 + proposed_hours
        p365 = rolling.h365 + proposed_hours

        reason = None
        if p28 > table.rolling_28_day_limit_hours:
            reason = f"Assignment would exceed 28-day limit ({p28:.1f}/{table.rolling_28_day_limit_hours:g} hours)"
        elif p365 > table.rolling_365_day_limit_hours:
            reason = f"Assignment would exceed 365-day limit ({p365:.1f}/{table.rolling_365_day_limit_hours:g} hours)"
        return Clearance(
            is_clear=reason is None,
            reason=reason,
            projected_28_day_hours=p28,
            projected_365_day_hours=p365,
        )

    async def generate_compliance_report(self, start: datetime.date, end: datetime.date) -> ComplianceReport:
        """Alerts for every ACTIVE pilot, evaluated as of the end of the period."""
        pilots = await self.store.list_crew_members(crew_type=CrewType.PILOT, status=CrewStatus.ACTIVE)
        outcomes = await asyncio.gather(*(
            capture(p.crew_id, self.check_crew_compliance(p.crew_id, end), "compliance report") for p in pilots
        ))
        checked = [o for o in outcomes if o.ok]
        alerts = [a for o in checked for a in o.value]

        by_severity = {s.value: 0 for s in Severity}
        for a in alerts:
            by_severity[a.severity.value] += 1

        report = ComplianceReport(
            period_start=start,
            period_end=end,
            total_crew_checked=len(checked),
            compliant_crew=len(checked) - len({a.crew_id for a in alerts}),
            alerts_by_severity=by_severity,
            alerts=alerts,
            errors={o.key: str(o.error) for o in outcomes if not o.ok},
        )
        log.info(
            "Compliance report generated: %d crew, %d compliant, %d alerts, %d failed",
            report.total_crew_checked, report.compliant_crew, len(alerts), len(report.errors),
        )
        return report

    async def check_certification_expiry(
        self,
        days_ahead: int = 60,
        base_airport: Optional[str] = None,
        as_of: Optional[datetime.date] = None,
        certification_types: Optional[List[str]] = None,
    ) -> CertificationExpiryReport:
        return await check_certification_expiry(
            self.store, days_ahead, base_airport, as_of or _today(), certification_types
        )

    async def get_training_requirements(
        self, crew_id: str, days_ahead: int = 90, as_of: Optional[datetime.date] = None
    ) -> TrainingRequirements:
        return await get_training_requirements(self.store, crew_id, days_ahead, as_of or _today())
