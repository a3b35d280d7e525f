# crew_engine/legality.py
"""
Legality validator for a proposed duty assignment.

Checks run for one crew member:
 1. qualifications (type rating currency, medical, overdue recurrent training)
 2. rest since the previous duty, tiered by that duty's FDP length
 3. proposed FDP against the segment x report-time table
 4. projected rolling 28/365 day flight time against the ceilings
and are folded into a single LegalityResult with deterministic
recommendations.

Notes:
 - The report-time bucket is taken from the UTC start hour.
 - Equal to a ceiling is compliant, strictly greater is a violation.
 - All rule values come from the RuleBook passed in; nothing is read from
   module state.
"""
import asyncio
import datetime
import logging
import math
from typing import Dict, List, Optional, Sequence

from .errors import CrewNotFoundError, capture
from .load_rules import RegulatoryRuleTable, RuleBook
from .models import (
    DutyLimits,
    DutyTimeRecord,
    FdpCompliance,
    LegalityResult,
    MedicalStatus,
    ProposedDutyAssignment,
    QualificationIssue,
    RatingCurrency,
    RestCompliance,
    Severity,
    TrainingStatus,
)
from .store import CrewStore
from .timeutils import ROLLING_365_DAYS, count_consecutive_duty_days, hours_between, rolling_hours

log = logging.getLogger("crew_engine.legality")


# ---------- Bucket helpers ----------
def segment_bucket(segments: int) -> str:
    if segments <= 2:
        return "2_segments"
    if segments >= 7:
        return "7_plus_segments"
    return f"{segments}_segments"


def time_bucket(start_hour: int) -> str:
    if start_hour <= 4:
        return "0000-0459"
    if start_hour == 5:
        return "0500-0559"
    if start_hour == 6:
        return "0600-0659"
    if start_hour <= 12:
        return "0700-1259"
    if start_hour <= 16:
        return "1300-1659"
    if start_hour <= 21:
        return "1700-2159"
    if start_hour == 22:
        return "2200-2259"
    return "2300-2359"


def _fmt(v: float) -> str:
    return f"{v:g}"


# ---------- Individual checks (pure) ----------
async def check_qualifications(store: CrewStore, crew_id: str, aircraft_type: str) -> List[QualificationIssue]:
    issues: List[QualificationIssue] = []

    ratings = await store.get_aircraft_type_ratings(crew_id)
    if not any(r.aircraft_type == aircraft_type and r.currency_status == RatingCurrency.CURRENT for r in ratings):
        issues.append(QualificationIssue(
            type="AIRCRAFT_TYPE_RATING",
            description=f"No current type rating for {aircraft_type}",
            severity=Severity.CRITICAL,
            resolution="Complete type rating training and check",
        ))

    medical = await store.get_medical_certificate(crew_id)
    if medical is None or medical.status != MedicalStatus.VALID:
        issues.append(QualificationIssue(
            type="MEDICAL_CERTIFICATE",
            description=(
                f"Medical certificate {medical.status.value.lower()}" if medical else "No medical certificate on file"
            ),
            severity=Severity.CRITICAL,
            resolution="Obtain or renew medical certificate",
        ))

    training = await store.get_training_records(crew_id)
    overdue = [t for t in training if t.status == TrainingStatus.OVERDUE]
    if overdue:
        issues.append(QualificationIssue(
            type="TRAINING",
            description=f"{len(overdue)} overdue training item(s)",
            severity=Severity.HIGH,
            resolution="Complete overdue training",
        ))

    return issues


def _previous_duty(history: Sequence[DutyTimeRecord], start: datetime.datetime) -> Optional[DutyTimeRecord]:
    """
    Most recent duty begun before start. A duty still running at start (or
    without an end recorded) is returned as well; check_rest flags it.
    """
    candidates = [d for d in history if d.duty_start_utc < start]
    if not candidates:
        return None
    return max(candidates, key=lambda d: d.duty_end_utc or d.duty_start_utc)


def check_rest(history: Sequence[DutyTimeRecord], proposed: ProposedDutyAssignment, table: RegulatoryRuleTable) -> RestCompliance:
    prev = _previous_duty(history, proposed.duty_start_utc)
    if prev is None:
        # nothing on record: no rest is owed
        return RestCompliance(
            is_compliant=True,
            hours_since_rest=math.inf,
            minimum_rest_required=0.0,
        )

    if prev.duty_end_utc is None:
        return RestCompliance(
            is_compliant=False,
            hours_since_rest=0.0,
            minimum_rest_required=table.missing_end_time_rest_hours,
            previous_duty_id=prev.duty_id,
            violations=["Previous duty has no end time recorded"],
        )

    # negative while the previous duty is still running
    elapsed = hours_between(prev.duty_end_utc, proposed.duty_start_utc)
    required = table.minimum_rest_hours(prev.duty_time_minutes / 60.0)
    violations = []
    if elapsed < 0:
        violations.append(
            f"Previous duty {prev.duty_id} overlaps proposed start (ends {-elapsed:.1f} hours after it)"
        )
    elif elapsed < required:
        violations.append(
            f"Only {elapsed:.1f} hours rest since last duty (requires {_fmt(required)} hours)"
        )
    return RestCompliance(
        is_compliant=not violations,
        hours_since_rest=elapsed,
        minimum_rest_required=required,
        previous_duty_id=prev.duty_id,
        violations=violations,
    )


def check_fdp(proposed: ProposedDutyAssignment, table: RegulatoryRuleTable) -> FdpCompliance:
    start = proposed.duty_start_utc
    if proposed.duty_end_utc is not None:
        fdp_hours = hours_between(start, proposed.duty_end_utc)
    else:
        minutes = proposed.flight_time_minutes or table.default_flight_minutes
        fdp_hours = minutes / 60.0

    seg = segment_bucket(proposed.number_of_segments)
    tb = time_bucket(start.hour)
    max_fdp = table.max_fdp_hours(seg, tb)
    table_hit = max_fdp is not None
    if not table_hit:
        log.warning("No FDP limit for %s/%s; using default %.1f hours", seg, tb, table.default_max_fdp_hours)
        max_fdp = table.default_max_fdp_hours

    violations = []
    if fdp_hours > max_fdp:
        violations.append(
            f"Proposed FDP ({fdp_hours:.1f} hours) exceeds limit ({_fmt(max_fdp)} hours) "
            f"for {proposed.number_of_segments} segments starting at {start.hour}:00"
        )
    return FdpCompliance(
        is_compliant=not violations,
        max_fdp_hours=max_fdp,
        proposed_fdp_hours=fdp_hours,
        segment_bucket=seg,
        time_bucket=tb,
        table_hit=table_hit,
        violations=violations,
    )


def check_duty_limits(history: Sequence[DutyTimeRecord], proposed: ProposedDutyAssignment, table: RegulatoryRuleTable) -> DutyLimits:
    duty_date = proposed.duty_start_utc.date()
    rolling = rolling_hours(history, duty_date)
    proposed_hours = proposed.flight_time_minutes / 60.0
    h28 = rolling.h28 + proposed_hours
    h365 = rolling.h365 + proposed_hours

    violations = []
    if h28 > table.rolling_28_day_limit_hours:
        violations.append(
            f"Projected 28-day flight time {h28:.1f} hours exceeds limit ({_fmt(table.rolling_28_day_limit_hours)} hours)"
        )
    if h365 > table.rolling_365_day_limit_hours:
        violations.append(
            f"Projected 365-day flight time {h365:.1f} hours exceeds limit ({_fmt(table.rolling_365_day_limit_hours)} hours)"
        )
    return DutyLimits(
        rolling_28_day_hours=h28,
        rolling_28_day_limit=table.rolling_28_day_limit_hours,
        rolling_365_day_hours=h365,
        rolling_365_day_limit=table.rolling_365_day_limit_hours,
        consecutive_duty_days=count_consecutive_duty_days(history, duty_date),
        violations=violations,
    )


def build_recommendations(
    issues: Sequence[QualificationIssue],
    rest: RestCompliance,
    fdp: FdpCompliance,
    limits: DutyLimits,
    table: RegulatoryRuleTable,
) -> List[str]:
    recs: List[str] = []

    if issues:
        recs.append(f"Address {len(issues)} qualification issue(s) before assignment")

    if not rest.is_compliant:
        recs.append(
            f"Crew needs {rest.minimum_rest_required - rest.hours_since_rest:.1f} more hours of rest before assignment"
        )

    if not fdp.is_compliant:
        recs.append(f"Reduce FDP by {fdp.proposed_fdp_hours - fdp.max_fdp_hours:.1f} hours or adjust start time")

    for label, hours, limit in (
        ("28-day", limits.rolling_28_day_hours, limits.rolling_28_day_limit),
        ("365-day", limits.rolling_365_day_hours, limits.rolling_365_day_limit),
    ):
        if hours > limit:
            recs.append(
                f"Exceeds {label} limit ({hours:.1f}/{_fmt(limit)} hours) - reduce flight time by {hours - limit:.1f} hours"
            )
        elif hours >= limit * table.approaching_warning_ratio:
            recs.append(f"Approaching {label} limit ({hours:.1f}/{_fmt(limit)} hours)")

    if limits.consecutive_duty_days >= table.consecutive_duty_days_warning:
        recs.append(f"{limits.consecutive_duty_days} consecutive duty days - schedule rest day soon")

    if not recs:
        recs.append("Crew member is legal and qualified for this assignment")
    return recs


# ---------- Validator ----------
class LegalityValidator:
    def __init__(self, store: CrewStore, rules: RuleBook):
        self.store = store
        self.rules = rules

    async def validate_assignment(self, crew_id: str, proposed: ProposedDutyAssignment) -> LegalityResult:
        crew = await self.store.get_crew_member(crew_id)
        if crew is None:
            raise CrewNotFoundError(crew_id)
        table = self.rules.regulatory

        duty_date = proposed.duty_start_utc.date()
        history = await self.store.get_duty_time_records(
            crew.crew_id, duty_date - datetime.timedelta(days=ROLLING_365_DAYS), duty_date
        )

        issues = await check_qualifications(self.store, crew.crew_id, proposed.aircraft_type)
        rest = check_rest(history, proposed, table)
        fdp = check_fdp(proposed, table)
        limits = check_duty_limits(history, proposed, table)

        is_legal = not issues and rest.is_compliant and fdp.is_compliant and limits.is_compliant
        log.info(
            "Legality %s for %s on %s: qualifications=%d rest=%s fdp=%s limits=%s",
            "PASS" if is_legal else "FAIL",
            crew.crew_id, proposed.aircraft_type, len(issues),
            rest.is_compliant, fdp.is_compliant, limits.is_compliant,
        )
        return LegalityResult(
            is_legal=is_legal,
            crew_status="QUALIFIED" if not issues else "NOT_QUALIFIED",
            qualification_issues=issues,
            rest_compliance=rest,
            fdp_compliance=fdp,
            duty_limits=limits,
            recommendations=build_recommendations(issues, rest, fdp, limits, table),
            ruleset=self.rules.stamp,
        )

    async def validate_crew_pool(self, crew_ids: Sequence[str], proposed: ProposedDutyAssignment) -> Dict[str, LegalityResult]:
        """Validate each crew member independently; failures are logged and left out."""
        outcomes = await asyncio.gather(*(
            capture(cid, self.validate_assignment(cid, proposed), "legality validation")
            for cid in crew_ids
        ))
        return {o.key: o.value for o in outcomes if o.ok}
