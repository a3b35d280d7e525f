# tests/test_pay_rules.py
import dataclasses
import datetime

import pytest

from crew_engine.models import PayRuleDefinition
from crew_engine.pay_rules import (
    PayContext,
    applicable_rules,
    apply_all_rules,
    calculate_base_pay,
    calculate_guarantee_pay,
    calculate_overtime_pay,
    calculate_per_diem,
    calculate_premium_pay,
    premium_kind,
    resolve_pay_rules,
)
from factories import make_crew

PERIOD_START = datetime.date(2026, 9, 1)
PERIOD_END = datetime.date(2026, 9, 30)


def ctx(crew=None, flight_hours=0.0, duty_hours=0.0, **kw):
    return PayContext(
        crew_member=crew or make_crew(),
        period_start=PERIOD_START,
        period_end=PERIOD_END,
        flight_hours=flight_hours,
        duty_hours=duty_hours,
        duty_days=kw.pop("duty_days", 0),
        **kw,
    )


def rule(rule_id, rule_type, config, name=None, effective=datetime.date(2024, 1, 1), **kw):
    return PayRuleDefinition(
        rule_id=rule_id,
        rule_name=name or f"Rule {rule_id}",
        rule_type=rule_type,
        crew_type=kw.pop("crew_type", "PILOT"),
        position=kw.pop("position", "CAPTAIN"),
        effective_date=effective,
        rule_config=config,
        **kw,
    )


@pytest.fixture
def captain_rules(rule_book):
    return resolve_pay_rules(rule_book.pay, make_crew())


# ---------- static components ----------
def test_base_pay(captain_rules):
    item = calculate_base_pay(ctx(flight_hours=65.5), captain_rules)
    assert item.amount == 16375.0
    assert item.rate == 250
    assert item.source == "static"
    assert item.calculation == "65.50 hours × $250 = $16375.00"


def test_missing_base_rate_yields_zero(rule_book, caplog):
    crew = make_crew(position="CHECK_AIRMAN")
    rules = resolve_pay_rules(rule_book.pay, crew)
    with caplog.at_level("WARNING", logger="crew_engine.pay_rules"):
        item = calculate_base_pay(ctx(crew, flight_hours=10), rules)
    assert item.amount == 0
    assert item.calculation == "No rate configured"
    assert "No base pay rate found for CHECK_AIRMAN" in caplog.text

    with caplog.at_level("WARNING", logger="crew_engine.pay_rules"):
        guarantee = calculate_guarantee_pay(ctx(crew), rules, 0.0)
    assert guarantee.amount == 0
    assert guarantee.description == "No guarantee for position"
    assert "No guarantee rule found for CHECK_AIRMAN" in caplog.text


def test_missing_overtime_rule_yields_zero(captain_rules, caplog):
    rules = dataclasses.replace(captain_rules, overtime=None)
    with caplog.at_level("WARNING", logger="crew_engine.pay_rules"):
        item = calculate_overtime_pay(ctx(flight_hours=95), rules)
    assert item.amount == 0
    assert item.calculation == "No overtime rules configured"
    assert "No overtime rule found for CAPTAIN" in caplog.text


def test_per_diem(captain_rules):
    assert calculate_per_diem(ctx(duty_hours=95), captain_rules).amount == 237.5

    below = calculate_per_diem(ctx(duty_hours=3.5), captain_rules)
    assert below.amount == 0
    assert below.description == "Per diem (below minimum)"
    assert below.calculation == "3.50 hours < 4 minimum"


@pytest.mark.parametrize("base_pay,expected", [(16000.0, 2750.0), (18750.0, 0.0), (20000.0, 0.0)])
def test_guarantee_tops_up_base_pay(captain_rules, base_pay, expected):
    item = calculate_guarantee_pay(ctx(), captain_rules, base_pay)
    assert item.amount == expected
    if expected:
        assert item.type == "Monthly Guarantee"
        assert item.description == "Guarantee minimum (75 hours)"
    else:
        assert item.description == "Above guarantee minimum"


def test_overtime(captain_rules):
    over = calculate_overtime_pay(ctx(flight_hours=95), captain_rules)
    assert over.hours == pytest.approx(10.0)
    assert over.amount == 1250.0

    at_threshold = calculate_overtime_pay(ctx(flight_hours=85), captain_rules)
    assert at_threshold.amount == 0
    assert at_threshold.description == "No overtime (below threshold)"


def test_premiums_stack(captain_rules):
    items = calculate_premium_pay(
        ctx(night_hours=4, holiday_hours=5, international_trips=2, years_of_service=12),
        captain_rules,
        base_pay=16000.0,
    )
    assert [(i.type, i.amount) for i in items] == [
        ("Night Flying Premium", 500.0),
        ("Holiday Premium", 1250.0),
        ("International Premium", 150.0),
        ("Longevity Pay", 1600.0),
    ]


def test_night_premium_is_pilot_only(rule_book):
    fa = make_crew("F001", position="LEAD_FA", crew_type="FLIGHT_ATTENDANT")
    rules = resolve_pay_rules(rule_book.pay, fa)
    items = calculate_premium_pay(ctx(fa, night_hours=4, holiday_hours=2), rules, base_pay=0.0)
    assert [(i.type, i.amount) for i in items] == [("Holiday Premium", 104.0)]


def test_no_longevity_in_first_tier(captain_rules):
    assert calculate_premium_pay(ctx(years_of_service=3), captain_rules, base_pay=16000.0) == []


def test_breakdown_total_is_sum_of_items(captain_rules):
    breakdown = apply_all_rules(
        ctx(flight_hours=90, duty_hours=120, night_hours=3, international_trips=1, years_of_service=6),
        captain_rules,
    )
    assert breakdown.total == pytest.approx(sum(i.amount for i in breakdown.items()))
    assert breakdown.overtime_pay.amount == 625.0
    assert breakdown.guarantee_pay.amount == 0
    assert breakdown.total == pytest.approx(22500 + 300 + 375 + 75 + 1125 + 625)


# ---------- dynamic rules ----------
def test_premium_kind():
    assert premium_kind(rule("P1", "PREMIUM", {"premium_type": "holiday"}, name="Special")) == "holiday"
    assert premium_kind(rule("P2", "PREMIUM", {}, name="Night Flying Premium")) == "night_flying"
    assert premium_kind(rule("P3", "PREMIUM", {}, name="Reserve Premium")) is None


def test_applicable_rules_filter_and_order():
    crew = make_crew()
    rules = [
        rule("DR1", "BASE_PAY", {"hourly_rate": 300}),
        rule("DR2", "BASE_PAY", {"hourly_rate": 275}, effective=datetime.date(2025, 6, 1)),
        rule("DR3", "BASE_PAY", {"hourly_rate": 400}, effective=datetime.date(2026, 1, 1),
             expiration_date=datetime.date(2026, 3, 31)),
        rule("DR4", "BASE_PAY", {"hourly_rate": 500}, is_active=False),
        rule("DR5", "BASE_PAY", {"hourly_rate": 190}, position="FIRST_OFFICER"),
        rule("DR6", "BASE_PAY", {"hourly_rate": 999}, effective=datetime.date(2027, 1, 1)),
        rule("DR7", "PER_DIEM", {"rate_per_hour": 3.0}, crew_type="ALL", position=None),
    ]
    assert [r.rule_id for r in applicable_rules(rules, crew, PERIOD_START)] == ["DR2", "DR1", "DR7"]


def test_position_specific_rule_wins_tie():
    crew = make_crew()
    rules = [
        rule("GEN", "BASE_PAY", {"hourly_rate": 260}, position=None),
        rule("CPT", "BASE_PAY", {"hourly_rate": 270}),
    ]
    assert [r.rule_id for r in applicable_rules(rules, crew, PERIOD_START)] == ["CPT", "GEN"]


def test_most_recent_dynamic_rule_overrides_static(rule_book):
    crew = make_crew()
    dynamic = applicable_rules([
        rule("DR1", "BASE_PAY", {"hourly_rate": 300}),
        rule("DR2", "BASE_PAY", {"hourly_rate": 275}, effective=datetime.date(2025, 6, 1)),
    ], crew, PERIOD_START)
    resolved = resolve_pay_rules(rule_book.pay, crew, dynamic)
    assert resolved.hourly_rate == 275
    assert resolved.sources["base_pay"] == "dynamic:DR2"
    assert resolved.sources["per_diem"] == "static"

    item = calculate_base_pay(ctx(crew, flight_hours=10), resolved)
    assert item.amount == 2750.0
    assert item.source == "dynamic:DR2"


def test_dynamic_premium_replaces_one_kind_only(rule_book):
    crew = make_crew()
    resolved = resolve_pay_rules(rule_book.pay, crew, [
        rule("HP", "PREMIUM", {"rate_multiplier": 3.0}, name="Holiday Premium"),
    ])
    assert resolved.premiums["holiday"].rate_multiplier == 3.0
    assert resolved.sources["holiday"] == "dynamic:HP"
    assert resolved.premiums["night_flying"].rate_multiplier == 1.5
    assert resolved.sources["night_flying"] == "static"


def test_dynamic_longevity_tiers(rule_book):
    crew = make_crew()
    resolved = resolve_pay_rules(rule_book.pay, crew, [
        rule("LP", "PREMIUM", {"premium_type": "longevity", "tiers": [{"min_years": 0, "percentage_increase": 2}]},
             name="Seniority bonus"),
    ])
    items = calculate_premium_pay(ctx(years_of_service=1), resolved, base_pay=10000.0)
    assert [(i.type, i.amount, i.source) for i in items] == [("Longevity Pay", 200.0, "dynamic:LP")]


def test_partial_per_diem_config_keeps_static_minimum(rule_book):
    resolved = resolve_pay_rules(rule_book.pay, make_crew(), [rule("PD", "PER_DIEM", {"rate_per_hour": 3.0})])
    assert resolved.per_diem.rate_per_hour == 3.0
    assert resolved.per_diem.minimum_hours == 4


def test_invalid_dynamic_config_falls_back_to_static(rule_book, caplog):
    with caplog.at_level("WARNING", logger="crew_engine.pay_rules"):
        resolved = resolve_pay_rules(rule_book.pay, make_crew(), [rule("BAD", "BASE_PAY", {})])
    assert resolved.hourly_rate == 250
    assert resolved.sources["base_pay"] == "static"
    assert "BAD" in caplog.text
