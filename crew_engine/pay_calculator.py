# crew_engine/pay_calculator.py
"""
Pay calculator: aggregates a crew member's duty records for a pay period,
builds the PayContext, runs the pay rules engine and assembles the
breakdown with its audit trail.

Output is reproducible: the same store contents and rule tables produce an
identical PayCalculation (no wall-clock fields, years of service measured
to the period end).
"""
import asyncio
import datetime
import logging
import math
from dataclasses import dataclass
from typing import List, Sequence

from .errors import CrewNotFoundError, Outcome, capture
from .load_rules import RuleBook
from .models import (
    AppliedRule,
    CrewMember,
    CrewReference,
    DutyRecordSummary,
    DutyTimeRecord,
    PayBreakdown,
    PayCalculation,
    PayPeriod,
    PaySummary,
)
from .pay_rules import PayContext, apply_all_rules, load_pay_rules
from .store import CrewStore
from .timeutils import whole_years_between

log = logging.getLogger("crew_engine.pay")

# night credit per WOCL-crossing duty is capped at 4 hours
MAX_NIGHT_MINUTES_PER_DUTY = 240
# estimates assume about five flight hours per duty day
ESTIMATE_HOURS_PER_DUTY_DAY = 5


@dataclass(frozen=True)
class DutyTotals:
    flight_hours: float
    duty_hours: float
    block_hours: float
    duty_days: int
    night_hours: float
    international_trips: int
    holiday_hours: float


def duty_totals(records: Sequence[DutyTimeRecord], holidays=()) -> DutyTotals:
    holidays = set(holidays)
    flight = duty = block = night = holiday = 0
    international = 0
    days = set()
    for r in records:
        flight += r.flight_time_minutes
        duty += r.duty_time_minutes
        block += r.block_time_minutes
        days.add(r.duty_date)
        if r.wocl_crossing:
            night += min(r.duty_time_minutes, MAX_NIGHT_MINUTES_PER_DUTY)
        if r.is_international:
            international += 1
        if r.duty_date in holidays:
            holiday += r.flight_time_minutes
    return DutyTotals(
        flight_hours=flight / 60.0,
        duty_hours=duty / 60.0,
        block_hours=block / 60.0,
        duty_days=len(days),
        night_hours=night / 60.0,
        international_trips=international,
        holiday_hours=holiday / 60.0,
    )


def applied_rules(breakdown: PayBreakdown) -> List[AppliedRule]:
    return [
        AppliedRule(rule_name=i.type, rule_type=i.rule_type, amount=i.amount, source=i.source)
        for i in breakdown.items()
        if i.amount > 0
    ]


class PayCalculator:
    def __init__(self, store: CrewStore, rules: RuleBook, currency: str = "USD"):
        self.store = store
        self.rules = rules
        self.currency = currency

    async def _crew(self, crew_id: str) -> CrewMember:
        crew = await self.store.get_crew_member(crew_id)
        if crew is None:
            raise CrewNotFoundError(crew_id)
        return crew

    async def _run(self, ctx: PayContext) -> PayBreakdown:
        resolved = await load_pay_rules(self.store, self.rules.pay, ctx.crew_member, ctx.period_start)
        return apply_all_rules(ctx, resolved)

    def _assemble(
        self,
        crew: CrewMember,
        ctx: PayContext,
        totals: DutyTotals,
        breakdown: PayBreakdown,
        records: Sequence[DutyTimeRecord],
        is_estimate: bool,
    ) -> PayCalculation:
        return PayCalculation(
            crew_member=CrewReference.of(crew),
            pay_period=PayPeriod(start=ctx.period_start, end=ctx.period_end),
            summary=PaySummary(
                total_flight_hours=totals.flight_hours,
                total_duty_hours=totals.duty_hours,
                total_block_hours=totals.block_hours,
                duty_days=totals.duty_days,
                night_hours=totals.night_hours,
                total_compensation=round(breakdown.total, 2),
            ),
            breakdown=breakdown,
            duty_records=[
                DutyRecordSummary(
                    date=r.duty_date,
                    flight_time=r.flight_time_minutes / 60.0,
                    duty_time=r.duty_time_minutes / 60.0,
                    block_time=r.block_time_minutes / 60.0,
                )
                for r in records
            ],
            applied_rules=applied_rules(breakdown),
            is_estimate=is_estimate,
            currency=self.currency,
            ruleset=self.rules.stamp,
        )

    async def calculate_pay(self, crew_id: str, period_start: datetime.date, period_end: datetime.date) -> PayCalculation:
        if period_end < period_start:
            raise ValueError("period_end must not be before period_start")
        crew = await self._crew(crew_id)
        records = await self.store.get_duty_time_records(crew.crew_id, period_start, period_end)
        log.debug("Found %d duty records for %s", len(records), crew.crew_id)

        totals = duty_totals(records, self.rules.pay.holiday_calendar)
        ctx = PayContext(
            crew_member=crew,
            period_start=period_start,
            period_end=period_end,
            flight_hours=totals.flight_hours,
            duty_hours=totals.duty_hours,
            duty_days=totals.duty_days,
            night_hours=totals.night_hours,
            international_trips=totals.international_trips,
            holiday_hours=totals.holiday_hours,
            years_of_service=whole_years_between(crew.hire_date, period_end),
        )
        breakdown = await self._run(ctx)
        calc = self._assemble(crew, ctx, totals, breakdown, records, is_estimate=False)
        log.info(
            "Pay calculation complete for %s: %.2f %s, %d rules applied",
            crew.crew_id, calc.summary.total_compensation, self.currency, len(calc.applied_rules),
        )
        return calc

    async def estimate_pay(
        self,
        crew_id: str,
        est_flight_hours: float,
        est_duty_hours: float,
        period_start: datetime.date,
        period_end: datetime.date,
    ) -> PayCalculation:
        if est_flight_hours < 0 or est_duty_hours < 0:
            raise ValueError("estimated hours must be non-negative")
        crew = await self._crew(crew_id)
        totals = DutyTotals(
            flight_hours=est_flight_hours,
            duty_hours=est_duty_hours,
            block_hours=0.0,
            duty_days=math.ceil(est_flight_hours / ESTIMATE_HOURS_PER_DUTY_DAY),
            night_hours=0.0,
            international_trips=0,
            holiday_hours=0.0,
        )
        ctx = PayContext(
            crew_member=crew,
            period_start=period_start,
            period_end=period_end,
            flight_hours=totals.flight_hours,
            duty_hours=totals.duty_hours,
            duty_days=totals.duty_days,
            years_of_service=whole_years_between(crew.hire_date, period_end),
        )
        breakdown = await self._run(ctx)
        return self._assemble(crew, ctx, totals, breakdown, [], is_estimate=True)

    async def calculate_bulk_pay(
        self, crew_ids: Sequence[str], period_start: datetime.date, period_end: datetime.date
    ) -> List[Outcome[PayCalculation]]:
        log.info("Calculating bulk pay for %d crew members", len(crew_ids))
        outcomes = await asyncio.gather(*(
            capture(cid, self.calculate_pay(cid, period_start, period_end), "pay calculation")
            for cid in crew_ids
        ))
        log.info("Completed %d of %d pay calculations", sum(1 for o in outcomes if o.ok), len(outcomes))
        return list(outcomes)
