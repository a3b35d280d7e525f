# crew_engine/pay_rules.py
"""
Pay rules engine.

Rule resolution:
 - static values come from the PayRuleTable in the RuleBook
 - dynamic PayRuleDefinitions are read from the store per invocation,
   filtered to the crew member and pay period, most recent effective first
 - per component the first applicable dynamic rule wins, otherwise the
   static value is used; premiums are resolved per premium kind and stack

Every component is a pure function of (PayContext, ResolvedPayRules) and
returns a self-describing PayBreakdownItem. A component with no rule
configured yields a zero amount with a descriptive label.
"""
import datetime
import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Tuple

from pydantic import BaseModel, ValidationError

from .load_rules import (
    BaseRate,
    GuaranteeRule,
    LongevityTier,
    OvertimeRule,
    PayRuleTable,
    PerDiemRule,
    PremiumRule,
)
from .models import CrewMember, PayBreakdown, PayBreakdownItem, PayRuleDefinition, PayRuleType
from .store import CrewStore

log = logging.getLogger("crew_engine.pay_rules")

STATIC = "static"

PREMIUM_KINDS = ("night_flying", "holiday", "international", "longevity")
_KIND_HINTS = (("night", "night_flying"), ("holiday", "holiday"), ("international", "international"), ("longevity", "longevity"))


class PayContext(BaseModel):
    crew_member: CrewMember
    period_start: datetime.date
    period_end: datetime.date
    flight_hours: float
    duty_hours: float
    duty_days: int
    night_hours: float = 0.0
    international_trips: int = 0
    holiday_hours: float = 0.0
    years_of_service: Optional[int] = None


@dataclass(frozen=True)
class ResolvedPayRules:
    base: Optional[BaseRate]
    per_diem: PerDiemRule
    premiums: Dict[str, PremiumRule]
    longevity_tiers: Tuple[LongevityTier, ...]
    overtime: Optional[OvertimeRule]
    guarantee: Optional[GuaranteeRule]
    # component (or premium kind) -> "static" or "dynamic:<rule_id>"
    sources: Dict[str, str] = field(default_factory=dict)

    @property
    def hourly_rate(self) -> float:
        return self.base.hourly_rate if self.base else 0.0


def _money(v: float) -> float:
    return round(v, 2)


# ---------- Resolution ----------
def premium_kind(rule: PayRuleDefinition) -> Optional[str]:
    kind = rule.rule_config.get("premium_type")
    if kind in PREMIUM_KINDS:
        return kind
    name = rule.rule_name.lower()
    for hint, k in _KIND_HINTS:
        if hint in name:
            return k
    return None


def applicable_rules(
    rules: Iterable[PayRuleDefinition], crew: CrewMember, period_start: datetime.date
) -> List[PayRuleDefinition]:
    """Active rules for the crew type (or ALL) and position (or any) in force on period_start."""
    out = [
        r for r in rules
        if r.is_active
        and r.crew_type in (crew.crew_type.value, "ALL")
        and r.position in (None, crew.position)
        and r.effective_date <= period_start
        and (r.expiration_date is None or period_start <= r.expiration_date)
    ]
    # most recent first; a position-specific rule beats a generic one of the same date
    out.sort(key=lambda r: (r.effective_date, r.position is not None), reverse=True)
    return out


def resolve_pay_rules(
    table: PayRuleTable, crew: CrewMember, dynamic: Iterable[PayRuleDefinition] = ()
) -> ResolvedPayRules:
    crew_type = crew.crew_type.value
    base = (table.base_pay.get(crew_type) or {}).get(crew.position)
    per_diem = table.per_diem
    premiums = dict(table.premiums)
    longevity = table.longevity_tiers
    overtime = table.overtime
    guarantee = table.guarantee.get(crew.position)
    sources = {"base_pay": STATIC, "per_diem": STATIC, "overtime": STATIC, "guarantee": STATIC, "longevity": STATIC}
    sources.update({k: STATIC for k in premiums})

    taken = set()
    for rule in dynamic:
        cfg = rule.rule_config
        tag = f"dynamic:{rule.rule_id}"
        try:
            if rule.rule_type == PayRuleType.PREMIUM:
                kind = premium_kind(rule)
                if kind is None:
                    log.warning("Premium rule %s (%s) has no recognisable premium type; ignored", rule.rule_id, rule.rule_name)
                    continue
                slot = f"premium:{kind}"
                if slot in taken:
                    continue
                if kind == "longevity":
                    longevity = tuple(LongevityTier.model_validate(t) for t in cfg.get("tiers") or [])
                    sources["longevity"] = tag
                else:
                    premiums[kind] = PremiumRule.model_validate(cfg)
                    sources[kind] = tag
                taken.add(slot)
                continue

            if rule.rule_type in taken:
                continue
            if rule.rule_type == PayRuleType.BASE_PAY:
                base = BaseRate.model_validate(cfg)
                sources["base_pay"] = tag
            elif rule.rule_type == PayRuleType.PER_DIEM:
                per_diem = PerDiemRule.model_validate({**per_diem.model_dump(), **cfg})
                sources["per_diem"] = tag
            elif rule.rule_type == PayRuleType.OVERTIME:
                overtime = OvertimeRule.model_validate(cfg)
                sources["overtime"] = tag
            elif rule.rule_type == PayRuleType.GUARANTEE:
                guarantee = GuaranteeRule.model_validate(cfg)
                sources["guarantee"] = tag
            taken.add(rule.rule_type)
        except ValidationError as e:
            log.warning("Dynamic pay rule %s has an invalid rule_config, static value kept: %s", rule.rule_id, e)

    return ResolvedPayRules(
        base=base,
        per_diem=per_diem,
        premiums=premiums,
        longevity_tiers=longevity,
        overtime=overtime,
        guarantee=guarantee,
        sources=sources,
    )


async def load_pay_rules(
    store: CrewStore, table: PayRuleTable, crew: CrewMember, period_start: datetime.date
) -> ResolvedPayRules:
    """Read dynamic rules for this crew member and overlay them on the static table."""
    dynamic = await store.get_pay_calculation_rules(crew.crew_type, crew.position, period_start)
    rules = applicable_rules(dynamic, crew, period_start)
    log.debug("Loaded %d applicable dynamic pay rules for %s/%s", len(rules), crew.crew_type.value, crew.position)
    return resolve_pay_rules(table, crew, rules)


# ---------- Components ----------
def calculate_base_pay(ctx: PayContext, rules: ResolvedPayRules) -> PayBreakdownItem:
    if rules.base is None:
        log.warning("No base pay rate found for %s", ctx.crew_member.position)
        return PayBreakdownItem(
            type="Base Pay",
            rule_type=PayRuleType.BASE_PAY,
            hours=ctx.flight_hours,
            amount=0.0,
            description="Base hourly pay",
            calculation="No rate configured",
        )
    rate = rules.base.hourly_rate
    amount = _money(ctx.flight_hours * rate)
    return PayBreakdownItem(
        type="Base Pay",
        rule_type=PayRuleType.BASE_PAY,
        hours=ctx.flight_hours,
        rate=rate,
        amount=amount,
        description=f"Base pay at ${rate:g}/hour",
        calculation=f"{ctx.flight_hours:.2f} hours × ${rate:g} = ${amount:.2f}",
        source=rules.sources.get("base_pay", STATIC),
    )


def calculate_per_diem(ctx: PayContext, rules: ResolvedPayRules) -> PayBreakdownItem:
    rate = rules.per_diem.rate_per_hour
    minimum = rules.per_diem.minimum_hours
    source = rules.sources.get("per_diem", STATIC)
    if ctx.duty_hours < minimum:
        return PayBreakdownItem(
            type="Per Diem",
            rule_type=PayRuleType.PER_DIEM,
            hours=ctx.duty_hours,
            rate=rate,
            amount=0.0,
            description="Per diem (below minimum)",
            calculation=f"{ctx.duty_hours:.2f} hours < {minimum:g} minimum",
            source=source,
        )
    amount = _money(ctx.duty_hours * rate)
    return PayBreakdownItem(
        type="Per Diem",
        rule_type=PayRuleType.PER_DIEM,
        hours=ctx.duty_hours,
        rate=rate,
        amount=amount,
        description=f"Per diem at ${rate:g}/hour",
        calculation=f"{ctx.duty_hours:.2f} hours × ${rate:g} = ${amount:.2f}",
        source=source,
    )


def longevity_tier(years: int, tiers: Iterable[LongevityTier]) -> Optional[LongevityTier]:
    for tier in tiers:
        if tier.contains(years):
            return tier
    return None


def _multiplier_premium(
    name: str, label: str, kind: str, hours: float, ctx: PayContext, rules: ResolvedPayRules, default_multiplier: float
) -> Optional[PayBreakdownItem]:
    rule = rules.premiums.get(kind)
    if hours <= 0 or rule is None or not rule.applies(ctx.crew_member.crew_type.value):
        return None
    multiplier = rule.rate_multiplier or default_multiplier
    rate = rules.hourly_rate
    amount = _money(hours * rate * (multiplier - 1))
    return PayBreakdownItem(
        type=name,
        rule_type=PayRuleType.PREMIUM,
        hours=hours,
        rate=rate,
        amount=amount,
        description=f"{label} premium at {multiplier:g}x",
        calculation=f"{hours:.2f} hours × ${rate:g} × {multiplier - 1:g} = ${amount:.2f}",
        source=rules.sources.get(kind, STATIC),
    )


def calculate_premium_pay(ctx: PayContext, rules: ResolvedPayRules, base_pay: float) -> List[PayBreakdownItem]:
    premiums: List[PayBreakdownItem] = []

    night = _multiplier_premium("Night Flying Premium", "Night hours", "night_flying", ctx.night_hours, ctx, rules, 1.5)
    if night:
        premiums.append(night)

    holiday = _multiplier_premium("Holiday Premium", "Holiday hours", "holiday", ctx.holiday_hours, ctx, rules, 2.0)
    if holiday:
        premiums.append(holiday)

    intl = rules.premiums.get("international")
    if ctx.international_trips > 0 and intl is not None and intl.applies(ctx.crew_member.crew_type.value):
        if intl.flat_amount is None:
            log.warning("International premium has no flat_amount configured")
        else:
            amount = _money(ctx.international_trips * intl.flat_amount)
            premiums.append(PayBreakdownItem(
                type="International Premium",
                rule_type=PayRuleType.PREMIUM,
                rate=intl.flat_amount,
                amount=amount,
                description="International flight premium",
                calculation=f"{ctx.international_trips} trips × ${intl.flat_amount:g} = ${amount:.2f}",
                source=rules.sources.get("international", STATIC),
            ))

    if ctx.years_of_service is not None:
        tier = longevity_tier(ctx.years_of_service, rules.longevity_tiers)
        if tier and tier.percentage_increase > 0:
            amount = _money(base_pay * tier.percentage_increase / 100)
            premiums.append(PayBreakdownItem(
                type="Longevity Pay",
                rule_type=PayRuleType.PREMIUM,
                rate=tier.percentage_increase,
                amount=amount,
                description=f"{tier.percentage_increase:g}% longevity increase ({ctx.years_of_service} years)",
                calculation=f"${base_pay:.2f} × {tier.percentage_increase:g}% = ${amount:.2f}",
                source=rules.sources.get("longevity", STATIC),
            ))

    return premiums


def calculate_overtime_pay(ctx: PayContext, rules: ResolvedPayRules) -> PayBreakdownItem:
    ot = rules.overtime
    if ot is None:
        log.warning("No overtime rule found for %s", ctx.crew_member.position)
        return PayBreakdownItem(
            type="Overtime",
            rule_type=PayRuleType.OVERTIME,
            amount=0.0,
            description="No overtime",
            calculation="No overtime rules configured",
        )
    source = rules.sources.get("overtime", STATIC)
    if ctx.flight_hours <= ot.threshold_hours:
        return PayBreakdownItem(
            type="Overtime",
            rule_type=PayRuleType.OVERTIME,
            hours=0.0,
            amount=0.0,
            description="No overtime (below threshold)",
            calculation=f"{ctx.flight_hours:.2f} hours ≤ {ot.threshold_hours:g} threshold",
            source=source,
        )
    hours = ctx.flight_hours - ot.threshold_hours
    rate = rules.hourly_rate
    amount = _money(hours * rate * (ot.rate_multiplier - 1))
    return PayBreakdownItem(
        type="Overtime",
        rule_type=PayRuleType.OVERTIME,
        hours=hours,
        rate=rate,
        amount=amount,
        description=f"Overtime at {ot.rate_multiplier:g}x over {ot.threshold_hours:g} hours",
        calculation=f"{hours:.2f} hours × ${rate:g} × {ot.rate_multiplier - 1:g} = ${amount:.2f}",
        source=source,
    )


def calculate_guarantee_pay(ctx: PayContext, rules: ResolvedPayRules, base_pay: float) -> PayBreakdownItem:
    g = rules.guarantee
    if g is None:
        log.warning("No guarantee rule found for %s", ctx.crew_member.position)
        return PayBreakdownItem(
            type="Guarantee",
            rule_type=PayRuleType.GUARANTEE,
            amount=0.0,
            description="No guarantee for position",
            calculation="No guarantee configured for this position",
        )
    source = rules.sources.get("guarantee", STATIC)
    if base_pay < g.guaranteed_amount:
        amount = _money(g.guaranteed_amount - base_pay)
        hours = f"{g.guaranteed_hours:g} hours" if g.guaranteed_hours is not None else "monthly"
        return PayBreakdownItem(
            type="Monthly Guarantee",
            rule_type=PayRuleType.GUARANTEE,
            hours=g.guaranteed_hours,
            amount=amount,
            description=f"Guarantee minimum ({hours})",
            calculation=f"${g.guaranteed_amount:.2f} guarantee - ${base_pay:.2f} actual = ${amount:.2f}",
            source=source,
        )
    return PayBreakdownItem(
        type="Guarantee",
        rule_type=PayRuleType.GUARANTEE,
        amount=0.0,
        description="Above guarantee minimum",
        calculation=f"${base_pay:.2f} ≥ ${g.guaranteed_amount:.2f} guarantee",
        source=source,
    )


def apply_all_rules(ctx: PayContext, rules: ResolvedPayRules) -> PayBreakdown:
    base = calculate_base_pay(ctx, rules)
    return PayBreakdown(
        base_pay=base,
        per_diem=calculate_per_diem(ctx, rules),
        premium_pay=calculate_premium_pay(ctx, rules, base.amount),
        overtime_pay=calculate_overtime_pay(ctx, rules),
        guarantee_pay=calculate_guarantee_pay(ctx, rules, base.amount),
    )
