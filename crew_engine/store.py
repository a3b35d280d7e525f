# crew_engine/store.py
"""
Read/write contract with the crew data store, plus an in-memory implementation.

The engines only ever talk to a CrewStore; the production store (database,
HR system ...) lives outside this project. InMemoryCrewStore is used by the
API in development (seeded from CREW_DATA_FILE) and by the tests.
"""
import datetime
import json
import logging
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Protocol

from .models import (
    AircraftTypeRating,
    ComplianceSnapshot,
    CrewMember,
    CrewPayRecord,
    DutyTimeRecord,
    MedicalCertificate,
    PayRuleDefinition,
    PilotLicense,
    RatingCurrency,
    RecurrentTraining,
)

log = logging.getLogger("crew_engine.store")


def _val(x: Any) -> Optional[str]:
    return getattr(x, "value", x)


class CrewStore(Protocol):
    async def get_crew_member(self, identifier: str) -> Optional[CrewMember]:
        """Look up by crew id or employee number."""
        ...

    async def list_crew_members(
        self,
        crew_type: Optional[str] = None,
        status: Optional[str] = None,
        base_airport: Optional[str] = None,
        position: Optional[str] = None,
    ) -> List[CrewMember]:
        ...

    async def get_crew_by_aircraft_type(self, aircraft_type: str, position: Optional[str] = None) -> List[CrewMember]:
        """ACTIVE crew holding a CURRENT rating for the type."""
        ...

    async def get_duty_time_records(
        self, crew_id: str, from_date: datetime.date, to_date: datetime.date
    ) -> List[DutyTimeRecord]:
        """Records with from_date <= duty_date <= to_date, oldest first."""
        ...

    async def get_aircraft_type_ratings(self, crew_id: str) -> List[AircraftTypeRating]:
        ...

    async def get_medical_certificate(self, crew_id: str) -> Optional[MedicalCertificate]:
        ...

    async def get_training_records(self, crew_id: str) -> List[RecurrentTraining]:
        ...

    async def get_pilot_licenses(self, crew_id: str) -> List[PilotLicense]:
        ...

    async def get_pay_calculation_rules(
        self,
        crew_type: str,
        position: Optional[str] = None,
        effective_date: Optional[datetime.date] = None,
    ) -> List[PayRuleDefinition]:
        ...

    async def get_pay_records(
        self,
        period_start: datetime.date,
        period_end: datetime.date,
        crew_ids: Optional[List[str]] = None,
    ) -> List[CrewPayRecord]:
        ...

    async def upsert_duty_time_record(self, record: DutyTimeRecord) -> DutyTimeRecord:
        """Insert, or replace the record with the same duty_id."""
        ...

    async def insert_compliance_record(self, snapshot: ComplianceSnapshot) -> None:
        ...


class InMemoryCrewStore:
    """Dict-backed CrewStore. Not safe for concurrent writers across processes."""

    def __init__(
        self,
        crew_members: Iterable[CrewMember] = (),
        duty_time_records: Iterable[DutyTimeRecord] = (),
        aircraft_type_ratings: Iterable[AircraftTypeRating] = (),
        medical_certificates: Iterable[MedicalCertificate] = (),
        training_records: Iterable[RecurrentTraining] = (),
        pilot_licenses: Iterable[PilotLicense] = (),
        pay_rules: Iterable[PayRuleDefinition] = (),
        pay_records: Iterable[CrewPayRecord] = (),
    ):
        self.crew: Dict[str, CrewMember] = {c.crew_id: c for c in crew_members}
        self.duty_records: List[DutyTimeRecord] = list(duty_time_records)
        self.ratings: List[AircraftTypeRating] = list(aircraft_type_ratings)
        self.medicals: List[MedicalCertificate] = list(medical_certificates)
        self.training: List[RecurrentTraining] = list(training_records)
        self.licenses: List[PilotLicense] = list(pilot_licenses)
        self.pay_rules: List[PayRuleDefinition] = list(pay_rules)
        self.pay_records: List[CrewPayRecord] = list(pay_records)
        self.compliance_records: List[ComplianceSnapshot] = []

    # ---------- seeding ----------
    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "InMemoryCrewStore":
        return cls(
            crew_members=[CrewMember.model_validate(x) for x in data.get("crew_members", [])],
            duty_time_records=[DutyTimeRecord.model_validate(x) for x in data.get("duty_time_records", [])],
            aircraft_type_ratings=[AircraftTypeRating.model_validate(x) for x in data.get("aircraft_type_ratings", [])],
            medical_certificates=[MedicalCertificate.model_validate(x) for x in data.get("medical_certificates", [])],
            training_records=[RecurrentTraining.model_validate(x) for x in data.get("training_records", [])],
            pilot_licenses=[PilotLicense.model_validate(x) for x in data.get("pilot_licenses", [])],
            pay_rules=[PayRuleDefinition.model_validate(x) for x in data.get("pay_calculation_rules", [])],
            pay_records=[CrewPayRecord.model_validate(x) for x in data.get("pay_records", [])],
        )

    @classmethod
    def from_json(cls, path: Path) -> "InMemoryCrewStore":
        raw = json.loads(Path(path).read_text(encoding="utf-8"))
        store = cls.from_dict(raw)
        log.info(
            "Seeded in-memory store from %s: %d crew, %d duty records",
            path, len(store.crew), len(store.duty_records),
        )
        return store

    # ---------- CrewStore ----------
    async def get_crew_member(self, identifier: str) -> Optional[CrewMember]:
        if identifier in self.crew:
            return self.crew[identifier]
        for c in self.crew.values():
            if c.employee_number == identifier:
                return c
        return None

    async def list_crew_members(self, crew_type=None, status=None, base_airport=None, position=None) -> List[CrewMember]:
        out = []
        for c in self.crew.values():
            if crew_type and c.crew_type.value != _val(crew_type):
                continue
            if status and c.status.value != _val(status):
                continue
            if base_airport and c.base_airport != base_airport:
                continue
            if position and c.position != position:
                continue
            out.append(c)
        return sorted(out, key=lambda c: (c.seniority_number is None, c.seniority_number or 0, c.crew_id))

    async def get_crew_by_aircraft_type(self, aircraft_type: str, position: Optional[str] = None) -> List[CrewMember]:
        rated = {
            r.crew_id
            for r in self.ratings
            if r.aircraft_type == aircraft_type and r.currency_status == RatingCurrency.CURRENT
        }
        active = await self.list_crew_members(status="ACTIVE", position=position)
        return [c for c in active if c.crew_id in rated]

    async def get_duty_time_records(self, crew_id, from_date, to_date) -> List[DutyTimeRecord]:
        recs = [
            r for r in self.duty_records
            if r.crew_id == crew_id and from_date <= r.duty_date <= to_date
        ]
        return sorted(recs, key=lambda r: r.duty_start_utc)

    async def get_aircraft_type_ratings(self, crew_id: str) -> List[AircraftTypeRating]:
        return [r for r in self.ratings if r.crew_id == crew_id]

    async def get_medical_certificate(self, crew_id: str) -> Optional[MedicalCertificate]:
        certs = [m for m in self.medicals if m.crew_id == crew_id]
        if not certs:
            return None
        return max(certs, key=lambda m: m.expiration_date)

    async def get_training_records(self, crew_id: str) -> List[RecurrentTraining]:
        return sorted((t for t in self.training if t.crew_id == crew_id), key=lambda t: t.next_due_date)

    async def get_pilot_licenses(self, crew_id: str) -> List[PilotLicense]:
        return [lic for lic in self.licenses if lic.crew_id == crew_id]

    async def get_pay_calculation_rules(self, crew_type, position=None, effective_date=None) -> List[PayRuleDefinition]:
        out = []
        for r in self.pay_rules:
            if not r.is_active or r.crew_type not in (_val(crew_type), "ALL"):
                continue
            if position and r.position not in (None, position):
                continue
            if effective_date and r.effective_date > effective_date:
                continue
            if effective_date and r.expiration_date and r.expiration_date < effective_date:
                continue
            out.append(r)
        return sorted(out, key=lambda r: r.effective_date, reverse=True)

    async def get_pay_records(self, period_start, period_end, crew_ids=None) -> List[CrewPayRecord]:
        return [
            p for p in self.pay_records
            if p.pay_period_start >= period_start
            and p.pay_period_end <= period_end
            and (crew_ids is None or p.crew_id in crew_ids)
        ]

    async def insert_compliance_record(self, snapshot: ComplianceSnapshot) -> None:
        self.compliance_records.append(snapshot)

    async def upsert_duty_time_record(self, record: DutyTimeRecord) -> DutyTimeRecord:
        for i, existing in enumerate(self.duty_records):
            if existing.duty_id == record.duty_id:
                self.duty_records[i] = record
                log.debug("Replaced duty record %s for %s", record.duty_id, record.crew_id)
                return record
        self.duty_records.append(record)
        return record
