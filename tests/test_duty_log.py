# tests/test_duty_log.py
import asyncio
import datetime

import pytest
from pydantic import ValidationError

from crew_engine.compliance import ComplianceMonitor
from crew_engine.duty_log import WOCL_NOTE, DutyTimeEntry, record_duty_time
from crew_engine.errors import CrewNotFoundError
from crew_engine.models import Severity
from crew_engine.pay_calculator import duty_totals
from factories import dt, flight_history, make_crew, make_store

DUTY_DATE = datetime.date(2026, 9, 30)


def entry(start=dt(2026, 9, 30, 8), end=dt(2026, 9, 30, 14), flight_minutes=300, **kw):
    return DutyTimeEntry(
        crew_id=kw.pop("crew_id", "C001"),
        duty_start_utc=start,
        duty_end_utc=end,
        flight_time_minutes=flight_minutes,
        **kw,
    )


def record(store, rule_book, e):
    return asyncio.run(record_duty_time(ComplianceMonitor(store, rule_book), e))


def recent(hours):
    return flight_history("C001", DUTY_DATE - datetime.timedelta(days=1), int(hours * 60))


def test_overnight_duty_fills_in_derived_fields(rule_book):
    store = make_store([make_crew()])
    result = record(store, rule_book, entry(start=dt(2026, 9, 30, 22), end=dt(2026, 10, 1, 7), flight_minutes=360))

    rec = result.duty_record
    assert rec.duty_id.startswith("DT-")
    assert rec.duty_date == DUTY_DATE
    assert rec.duty_time_minutes == 540
    assert rec.block_time_minutes == 360
    assert rec.wocl_crossing
    assert rec.is_fdp
    assert store.duty_records == [rec]

    assert result.clearance.is_clear
    assert result.clearance.projected_28_day_hours == pytest.approx(6.0)
    assert result.alerts == []
    assert result.recommendations == [
        "Duty time recorded - crew remains within FAA limits",
        "No compliance issues detected",
        WOCL_NOTE,
    ]


def test_recorded_wocl_duty_earns_night_credit(rule_book):
    store = make_store([make_crew()])
    record(store, rule_book, entry(start=dt(2026, 9, 30, 1), end=dt(2026, 9, 30, 9), flight_minutes=360))
    totals = duty_totals(store.duty_records)
    assert totals.night_hours == pytest.approx(4.0)


def test_explicit_values_are_kept(rule_book):
    store = make_store([make_crew()])
    e = entry(
        start=dt(2026, 9, 30, 1), end=dt(2026, 9, 30, 9),
        duty_id="D100", duty_date=datetime.date(2026, 9, 29),
        duty_time_minutes=420, block_time_minutes=330, wocl_crossing=False,
    )
    rec = record(store, rule_book, e).duty_record
    assert rec.duty_id == "D100"
    assert rec.duty_date == datetime.date(2026, 9, 29)
    assert rec.duty_time_minutes == 420
    assert rec.block_time_minutes == 330
    assert not rec.wocl_crossing


def test_recording_same_duty_id_replaces_it(rule_book):
    store = make_store([make_crew()])
    record(store, rule_book, entry(duty_id="D100", flight_minutes=300))
    result = record(store, rule_book, entry(duty_id="D100", flight_minutes=240))
    assert [r.flight_time_minutes for r in store.duty_records] == [240]
    assert result.clearance.projected_28_day_hours == pytest.approx(4.0)


def test_approaching_limit_alert_after_recording(rule_book):
    store = make_store([make_crew()], recent(88))
    result = record(store, rule_book, entry(flight_minutes=300))
    assert result.clearance.is_clear
    assert [a.severity for a in result.alerts] == [Severity.MEDIUM]
    assert result.recommendations == [
        "Duty time recorded - crew remains within FAA limits",
        "1 compliance alert(s) generated",
    ]


def test_recording_past_the_limit_reports_it(rule_book):
    store = make_store([make_crew()], recent(98))
    result = record(store, rule_book, entry(flight_minutes=300))
    assert not result.clearance.is_clear
    assert result.recommendations[0] == "Assignment would exceed 28-day limit (103.0/100 hours)"
    assert result.alerts[0].severity == Severity.CRITICAL


def test_lookup_by_employee_number(rule_book):
    store = make_store([make_crew()])
    result = record(store, rule_book, entry(crew_id="EC001"))
    assert result.duty_record.crew_id == "C001"


def test_unknown_crew_raises(rule_book):
    store = make_store()
    with pytest.raises(CrewNotFoundError):
        record(store, rule_book, entry(crew_id="C404"))
    assert store.duty_records == []


def test_end_before_start_is_rejected():
    with pytest.raises(ValidationError, match="duty_end_utc must not be before duty_start_utc"):
        entry(start=dt(2026, 9, 30, 14), end=dt(2026, 9, 30, 8))


def test_flight_time_longer_than_duty_is_rejected(rule_book):
    store = make_store([make_crew()])
    with pytest.raises(ValueError):
        record(store, rule_book, entry(flight_minutes=400))
    assert store.duty_records == []
