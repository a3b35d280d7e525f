# tests/test_legality.py
import asyncio
import datetime
import math

import pytest

from crew_engine.errors import CrewNotFoundError
from crew_engine.legality import (
    LegalityValidator,
    check_fdp,
    check_rest,
    segment_bucket,
    time_bucket,
)
from crew_engine.models import ProposedDutyAssignment, Severity
from crew_engine.store import InMemoryCrewStore
from factories import dt, flight_history, make_crew, make_duty, make_store, qualification_records

PROPOSED_START = dt(2026, 9, 30, 7)


def proposal(start=PROPOSED_START, flight_minutes=300, segments=2, **kw):
    return ProposedDutyAssignment(
        aircraft_type="B737",
        duty_start_utc=start,
        flight_time_minutes=flight_minutes,
        number_of_segments=segments,
        **kw,
    )


def validate(store, rule_book, proposed, crew_id="C001"):
    return asyncio.run(LegalityValidator(store, rule_book).validate_assignment(crew_id, proposed))


@pytest.mark.parametrize("segments,expected", [
    (0, "2_segments"), (1, "2_segments"), (2, "2_segments"), (3, "3_segments"),
    (6, "6_segments"), (7, "7_plus_segments"), (12, "7_plus_segments"),
])
def test_segment_bucket(segments, expected):
    assert segment_bucket(segments) == expected


@pytest.mark.parametrize("hour,expected", [
    (0, "0000-0459"), (4, "0000-0459"), (5, "0500-0559"), (6, "0600-0659"),
    (7, "0700-1259"), (12, "0700-1259"), (13, "1300-1659"), (16, "1300-1659"),
    (17, "1700-2159"), (21, "1700-2159"), (22, "2200-2259"), (23, "2300-2359"),
])
def test_time_bucket(hour, expected):
    assert time_bucket(hour) == expected


# ---------- rest ----------
def test_rest_below_minimum_is_a_violation(rule_book):
    # 8h duty ending 20:00 -> 10h rest required
    prev = make_duty("C001", dt(2026, 9, 29, 12), 480, 300)
    rest = check_rest([prev], proposal(start=dt(2026, 9, 30, 5)), rule_book.regulatory)
    assert not rest.is_compliant
    assert rest.hours_since_rest == pytest.approx(9.0)
    assert rest.minimum_rest_required == 10
    assert rest.previous_duty_id == prev.duty_id
    assert rest.violations == ["Only 9.0 hours rest since last duty (requires 10 hours)"]


def test_rest_exactly_at_minimum_is_compliant(rule_book):
    prev = make_duty("C001", dt(2026, 9, 29, 12), 480, 300)
    rest = check_rest([prev], proposal(start=dt(2026, 9, 30, 6)), rule_book.regulatory)
    assert rest.is_compliant
    assert rest.hours_since_rest == pytest.approx(10.0)
    assert rest.violations == []


@pytest.mark.parametrize("duty_minutes,required", [(540, 10), (600, 11), (780, 11), (840, 12)])
def test_rest_requirement_scales_with_previous_duty(rule_book, duty_minutes, required):
    prev = make_duty("C001", dt(2026, 9, 28, 6), duty_minutes, 300)
    rest = check_rest([prev], proposal(), rule_book.regulatory)
    assert rest.minimum_rest_required == required


def test_rest_uses_most_recent_finished_duty(rule_book):
    older = make_duty("C001", dt(2026, 9, 27, 8), 480, 300)
    latest = make_duty("C001", dt(2026, 9, 29, 12), 480, 300)
    rest = check_rest([latest, older], proposal(start=dt(2026, 9, 30, 6)), rule_book.regulatory)
    assert rest.previous_duty_id == latest.duty_id


def test_previous_duty_without_end_time(rule_book):
    prev = make_duty("C001", dt(2026, 9, 29, 10), 480, 300, end=False)
    rest = check_rest([prev], proposal(), rule_book.regulatory)
    assert not rest.is_compliant
    assert rest.hours_since_rest == 0
    assert rest.minimum_rest_required == 10
    assert rest.violations == ["Previous duty has no end time recorded"]


def test_no_history_means_unbounded_rest(rule_book):
    rest = check_rest([], proposal(), rule_book.regulatory)
    assert rest.is_compliant
    assert math.isinf(rest.hours_since_rest)
    assert rest.minimum_rest_required == 0
    assert rest.is_unbounded
    assert rest.model_dump(mode="json")["hours_since_rest"] is None


def test_duty_still_running_at_proposed_start(rule_book):
    prev = make_duty("C001", dt(2026, 9, 30, 0), 720, 300)
    rest = check_rest([prev], proposal(start=dt(2026, 9, 30, 6)), rule_book.regulatory)
    assert not rest.is_compliant
    assert rest.previous_duty_id == prev.duty_id
    assert rest.hours_since_rest == pytest.approx(-6.0)
    assert rest.minimum_rest_required == 11
    assert rest.violations == [f"Previous duty {prev.duty_id} overlaps proposed start (ends 6.0 hours after it)"]


def test_overlapping_duty_makes_assignment_illegal(rule_book):
    store = make_store([make_crew()], [make_duty("C001", dt(2026, 9, 30, 0), 720, 300)])
    result = validate(store, rule_book, proposal(start=dt(2026, 9, 30, 6)))
    assert not result.is_legal
    assert not result.rest_compliance.is_compliant
    assert "Crew needs 17.0 more hours of rest before assignment" in result.recommendations


# ---------- FDP ----------
def test_fdp_table_lookup(rule_book):
    fdp = check_fdp(proposal(start=dt(2026, 9, 30, 6, 30), segments=2), rule_book.regulatory)
    assert fdp.segment_bucket == "2_segments"
    assert fdp.time_bucket == "0600-0659"
    assert fdp.max_fdp_hours == 13
    assert fdp.table_hit
    assert fdp.is_compliant


def test_fdp_over_limit(rule_book):
    proposed = proposal(start=dt(2026, 9, 30, 6, 30), duty_end_utc=dt(2026, 9, 30, 20))
    fdp = check_fdp(proposed, rule_book.regulatory)
    assert not fdp.is_compliant
    assert fdp.proposed_fdp_hours == pytest.approx(13.5)
    assert fdp.violations == [
        "Proposed FDP (13.5 hours) exceeds limit (13 hours) for 2 segments starting at 6:00"
    ]


def test_fdp_equal_to_limit_is_compliant(rule_book):
    proposed = proposal(start=dt(2026, 9, 30, 7), duty_end_utc=dt(2026, 9, 30, 21))
    fdp = check_fdp(proposed, rule_book.regulatory)
    assert fdp.max_fdp_hours == 14
    assert fdp.is_compliant


def test_fdp_falls_back_to_default_when_table_has_no_entry(rule_book, caplog):
    table = rule_book.regulatory.model_copy(update={"fdp_limits": {}})
    with caplog.at_level("WARNING", logger="crew_engine.legality"):
        fdp = check_fdp(proposal(), table)
    assert not fdp.table_hit
    assert fdp.max_fdp_hours == 9.0
    assert "No FDP limit for 2_segments/0700-1259" in caplog.text


def test_fdp_defaults_to_six_hours_without_end_or_flight_time(rule_book):
    fdp = check_fdp(proposal(flight_minutes=0), rule_book.regulatory)
    assert fdp.proposed_fdp_hours == pytest.approx(6.0)


# ---------- full validation ----------
def test_clean_crew_with_no_history_is_legal(rule_book):
    store = make_store([make_crew()])
    result = validate(store, rule_book, proposal())
    assert result.is_legal
    assert result.crew_status == "QUALIFIED"
    assert math.isinf(result.rest_compliance.hours_since_rest)
    assert result.duty_limits.rolling_28_day_hours == pytest.approx(5.0)
    assert result.recommendations == ["Crew member is legal and qualified for this assignment"]
    assert result.ruleset["ruleset_hash_sha256"] == rule_book.provenance["ruleset_hash_sha256"]


def test_short_rest_makes_assignment_illegal(rule_book):
    store = make_store([make_crew()], [make_duty("C001", dt(2026, 9, 29, 12), 480, 300)])
    result = validate(store, rule_book, proposal(start=dt(2026, 9, 30, 5)))
    assert not result.is_legal
    assert result.crew_status == "QUALIFIED"
    assert "Crew needs 1.0 more hours of rest before assignment" in result.recommendations


def test_projected_28_day_hours_over_ceiling(rule_book):
    history = flight_history("C001", datetime.date(2026, 9, 28), 5730)  # 95.5h
    store = make_store([make_crew()], history)
    result = validate(store, rule_book, proposal(flight_minutes=600))
    assert not result.is_legal
    assert result.rest_compliance.is_compliant
    assert result.fdp_compliance.is_compliant
    assert result.duty_limits.rolling_28_day_hours == pytest.approx(105.5)
    assert result.duty_limits.violations == [
        "Projected 28-day flight time 105.5 hours exceeds limit (100 hours)"
    ]
    assert "Exceeds 28-day limit (105.5/100 hours) - reduce flight time by 5.5 hours" in result.recommendations


def test_projected_hours_equal_to_ceiling_is_legal(rule_book):
    history = flight_history("C001", datetime.date(2026, 9, 28), 5400)  # 90h
    store = make_store([make_crew()], history)
    result = validate(store, rule_book, proposal(flight_minutes=600))
    assert result.is_legal
    assert result.duty_limits.rolling_28_day_hours == pytest.approx(100.0)
    assert result.recommendations == ["Approaching 28-day limit (100.0/100 hours)"]


def test_consecutive_duty_days_warning(rule_book):
    history = flight_history("C001", datetime.date(2026, 9, 29), 1800, duties=6, duty_minutes=480, every=1)
    store = make_store([make_crew()], history)
    result = validate(store, rule_book, proposal())
    assert result.is_legal
    assert result.duty_limits.consecutive_duty_days == 6
    assert result.recommendations == ["6 consecutive duty days - schedule rest day soon"]


def test_missing_rating_and_medical(rule_book):
    store = make_store([make_crew()], qualified=[])
    result = validate(store, rule_book, proposal())
    assert not result.is_legal
    assert result.crew_status == "NOT_QUALIFIED"
    assert [i.description for i in result.qualification_issues] == [
        "No current type rating for B737",
        "No medical certificate on file",
    ]
    assert all(i.severity == Severity.CRITICAL for i in result.qualification_issues)
    assert result.recommendations[0] == "Address 2 qualification issue(s) before assignment"


def test_expired_medical_and_overdue_training(rule_book):
    ratings, medicals, training = qualification_records("C001", medical_status="EXPIRED", overdue_training=2)
    store = InMemoryCrewStore(
        crew_members=[make_crew()],
        aircraft_type_ratings=ratings,
        medical_certificates=medicals,
        training_records=training,
    )
    result = validate(store, rule_book, proposal())
    by_type = {i.type: i for i in result.qualification_issues}
    assert set(by_type) == {"MEDICAL_CERTIFICATE", "TRAINING"}
    assert by_type["MEDICAL_CERTIFICATE"].description == "Medical certificate expired"
    assert by_type["TRAINING"].description == "2 overdue training item(s)"
    assert by_type["TRAINING"].severity == Severity.HIGH


def test_rating_for_other_type_does_not_qualify(rule_book):
    store = make_store([make_crew()], aircraft_type="A320")
    result = validate(store, rule_book, proposal())
    assert [i.type for i in result.qualification_issues] == ["AIRCRAFT_TYPE_RATING"]


def test_unknown_crew_raises(rule_book):
    with pytest.raises(CrewNotFoundError, match="C404"):
        validate(make_store(), rule_book, proposal(), crew_id="C404")


def test_lookup_by_employee_number(rule_book):
    store = make_store([make_crew(employee_number="P10001")])
    result = validate(store, rule_book, proposal(), crew_id="P10001")
    assert result.is_legal


def test_validation_is_idempotent(rule_book):
    store = make_store([make_crew()], flight_history("C001", datetime.date(2026, 9, 28), 4000))
    first = validate(store, rule_book, proposal())
    second = validate(store, rule_book, proposal())
    assert first.model_dump() == second.model_dump()


def test_validate_crew_pool_skips_failures(rule_book):
    store = make_store([make_crew("C001"), make_crew("C002", position="FIRST_OFFICER")])
    validator = LegalityValidator(store, rule_book)
    results = asyncio.run(validator.validate_crew_pool(["C001", "C404", "C002"], proposal()))
    assert set(results) == {"C001", "C002"}
    assert all(r.is_legal for r in results.values())
