# crew_engine/models.py
"""
Domain models shared by the legality, compliance and pay engines.

Everything the engines consume or produce is a pydantic model:
 - crew records, duty history and qualification snapshots are read from the
   external store and treated as read-only inputs
 - results (LegalityResult, PayCalculation, ComplianceAlert ...) are built fresh
   per call and never cached

Minute fields stay integers (as recorded); hour fields are floats.
"""
import datetime
import math
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator, model_validator

from .timeutils import ensure_utc


# ---------- Enumerations ----------
class CrewType(str, Enum):
    PILOT = "PILOT"
    FLIGHT_ATTENDANT = "FLIGHT_ATTENDANT"


class CrewStatus(str, Enum):
    ACTIVE = "ACTIVE"
    ON_LEAVE = "ON_LEAVE"
    INACTIVE = "INACTIVE"


class RatingCurrency(str, Enum):
    CURRENT = "CURRENT"
    EXPIRING_SOON = "EXPIRING_SOON"
    EXPIRED = "EXPIRED"


class MedicalStatus(str, Enum):
    VALID = "VALID"
    EXPIRING_SOON = "EXPIRING_SOON"
    EXPIRED = "EXPIRED"


class TrainingStatus(str, Enum):
    CURRENT = "CURRENT"
    DUE_SOON = "DUE_SOON"
    OVERDUE = "OVERDUE"


class Severity(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


class AlertType(str, Enum):
    APPROACHING_LIMIT = "APPROACHING_LIMIT"
    LIMIT_EXCEEDED = "LIMIT_EXCEEDED"
    REST_REQUIRED = "REST_REQUIRED"


class PayRuleType(str, Enum):
    BASE_PAY = "BASE_PAY"
    PER_DIEM = "PER_DIEM"
    PREMIUM = "PREMIUM"
    OVERTIME = "OVERTIME"
    GUARANTEE = "GUARANTEE"


# ---------- Crew records (read-only inputs) ----------
class CrewMember(BaseModel):
    model_config = ConfigDict(frozen=True)

    crew_id: str
    employee_number: str
    first_name: str
    last_name: str
    crew_type: CrewType
    position: str
    base_airport: str
    hire_date: datetime.date
    status: CrewStatus = CrewStatus.ACTIVE
    seniority_number: Optional[int] = None
    union_code: Optional[str] = None

    @property
    def name(self) -> str:
        return f"{self.first_name} {self.last_name}"


class CrewReference(BaseModel):
    crew_id: str
    employee_number: str
    name: str
    position: str
    base: Optional[str] = None

    @classmethod
    def of(cls, crew: CrewMember) -> "CrewReference":
        return cls(
            crew_id=crew.crew_id,
            employee_number=crew.employee_number,
            name=crew.name,
            position=crew.position,
            base=crew.base_airport,
        )


class DutyTimeRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    duty_id: str
    crew_id: str
    duty_date: datetime.date
    duty_start_utc: datetime.datetime
    duty_end_utc: Optional[datetime.datetime] = None
    flight_time_minutes: int = Field(default=0, ge=0)
    duty_time_minutes: int = Field(default=0, ge=0)
    block_time_minutes: int = Field(default=0, ge=0)
    flight_segments: int = Field(default=0, ge=0)
    is_fdp: bool = False
    wocl_crossing: bool = False
    is_international: bool = False

    @field_validator("duty_start_utc", "duty_end_utc")
    @classmethod
    def _as_utc(cls, v):
        return ensure_utc(v)

    @model_validator(mode="after")
    def _check_times(self):
        if self.duty_end_utc is not None and self.duty_end_utc < self.duty_start_utc:
            raise ValueError("duty_end_utc must not be before duty_start_utc")
        if self.flight_time_minutes > self.duty_time_minutes:
            raise ValueError("flight_time_minutes cannot exceed duty_time_minutes")
        return self


class PilotLicense(BaseModel):
    qualification_id: str
    crew_id: str
    license_type: str
    license_number: str
    issue_date: datetime.date
    expiration_date: Optional[datetime.date] = None
    issuing_authority: Optional[str] = None


class AircraftTypeRating(BaseModel):
    rating_id: str
    crew_id: str
    aircraft_type: str
    rating_type: str = "TYPE_RATING"
    initial_date: Optional[datetime.date] = None
    last_check_date: Optional[datetime.date] = None
    next_check_due: Optional[datetime.date] = None
    currency_status: RatingCurrency


class MedicalCertificate(BaseModel):
    certificate_id: str
    crew_id: str
    medical_class: str = Field(default="FIRST_CLASS", alias="class")
    issue_date: Optional[datetime.date] = None
    expiration_date: datetime.date
    status: MedicalStatus

    model_config = ConfigDict(populate_by_name=True)


class RecurrentTraining(BaseModel):
    training_id: str
    crew_id: str
    training_type: str
    aircraft_type: Optional[str] = None
    completion_date: Optional[datetime.date] = None
    next_due_date: datetime.date
    instructor_name: Optional[str] = None
    training_location: Optional[str] = None
    status: TrainingStatus


# ---------- Legality ----------
class ProposedDutyAssignment(BaseModel):
    aircraft_type: str
    duty_start_utc: datetime.datetime
    duty_end_utc: Optional[datetime.datetime] = None
    flight_time_minutes: int = Field(default=0, ge=0)
    number_of_segments: int = Field(default=1, ge=0)

    @field_validator("duty_start_utc", "duty_end_utc")
    @classmethod
    def _as_utc(cls, v):
        return ensure_utc(v)

    @model_validator(mode="after")
    def _check_window(self):
        if self.duty_end_utc is not None and self.duty_end_utc < self.duty_start_utc:
            raise ValueError("duty_end_utc must not be before duty_start_utc")
        return self


class QualificationIssue(BaseModel):
    type: str
    description: str
    severity: Severity
    resolution: Optional[str] = None


class RestCompliance(BaseModel):
    is_compliant: bool
    hours_since_rest: float
    minimum_rest_required: float
    previous_duty_id: Optional[str] = None
    violations: List[str] = Field(default_factory=list)

    @property
    def is_unbounded(self) -> bool:
        return math.isinf(self.hours_since_rest)

    # JSON has no infinity; no prior duty is rendered as null
    @field_serializer("hours_since_rest", when_used="json")
    def _ser_hours(self, v: float):
        return None if math.isinf(v) else v


class FdpCompliance(BaseModel):
    is_compliant: bool
    max_fdp_hours: float
    proposed_fdp_hours: float
    segment_bucket: str
    time_bucket: str
    table_hit: bool
    violations: List[str] = Field(default_factory=list)


class DutyLimits(BaseModel):
    rolling_28_day_hours: float
    rolling_28_day_limit: float
    rolling_365_day_hours: float
    rolling_365_day_limit: float
    consecutive_duty_days: int
    violations: List[str] = Field(default_factory=list)

    @property
    def is_compliant(self) -> bool:
        return (
            self.rolling_28_day_hours <= self.rolling_28_day_limit
            and self.rolling_365_day_hours <= self.rolling_365_day_limit
        )


class LegalityResult(BaseModel):
    is_legal: bool
    crew_status: str
    qualification_issues: List[QualificationIssue]
    rest_compliance: RestCompliance
    fdp_compliance: FdpCompliance
    duty_limits: DutyLimits
    recommendations: List[str]
    ruleset: Dict[str, Any] = Field(default_factory=dict)


# ---------- Compliance ----------
class ComplianceAlert(BaseModel):
    crew_id: str
    employee_number: str
    name: str
    alert_type: AlertType
    severity: Severity
    message: str
    current_value: float
    limit_value: float
    recommended_action: str


class ComplianceSnapshot(BaseModel):
    crew_id: str
    check_date: datetime.date
    rolling_28_day_hours: float
    rolling_365_day_hours: float
    consecutive_duty_days: int
    rest_compliance: bool
    fdp_compliance: bool


class Clearance(BaseModel):
    is_clear: bool
    reason: Optional[str] = None
    projected_28_day_hours: float
    projected_365_day_hours: float


# ---------- Pay ----------
class PayRuleDefinition(BaseModel):
    model_config = ConfigDict(frozen=True)

    rule_id: str
    rule_name: str
    rule_type: PayRuleType
    crew_type: str
    position: Optional[str] = None
    effective_date: datetime.date
    expiration_date: Optional[datetime.date] = None
    rule_config: Dict[str, Any] = Field(default_factory=dict)
    union_code: Optional[str] = None
    is_active: bool = True


class PayBreakdownItem(BaseModel):
    type: str
    rule_type: PayRuleType
    hours: Optional[float] = None
    rate: float = 0.0
    amount: float
    description: str
    calculation: str
    source: str = "static"


class PayBreakdown(BaseModel):
    base_pay: PayBreakdownItem
    per_diem: PayBreakdownItem
    premium_pay: List[PayBreakdownItem]
    overtime_pay: PayBreakdownItem
    guarantee_pay: PayBreakdownItem

    def items(self) -> List[PayBreakdownItem]:
        return [self.base_pay, self.per_diem, *self.premium_pay, self.overtime_pay, self.guarantee_pay]

    @property
    def total(self) -> float:
        return sum(i.amount for i in self.items())


class AppliedRule(BaseModel):
    rule_name: str
    rule_type: PayRuleType
    amount: float
    source: str = "static"


class DutyRecordSummary(BaseModel):
    date: datetime.date
    flight_time: float
    duty_time: float
    block_time: float


class PaySummary(BaseModel):
    total_flight_hours: float
    total_duty_hours: float
    total_block_hours: float
    duty_days: int
    night_hours: float
    total_compensation: float


class PayPeriod(BaseModel):
    start: datetime.date
    end: datetime.date


class PayCalculation(BaseModel):
    crew_member: CrewReference
    pay_period: PayPeriod
    summary: PaySummary
    breakdown: PayBreakdown
    duty_records: List[DutyRecordSummary]
    applied_rules: List[AppliedRule]
    is_estimate: bool = False
    currency: str = "USD"
    ruleset: Dict[str, Any] = Field(default_factory=dict)


class CrewPayRecord(BaseModel):
    pay_id: str
    crew_id: str
    pay_period_start: datetime.date
    pay_period_end: datetime.date
    flight_hours: float = 0.0
    duty_hours: float = 0.0
    base_pay: float = 0.0
    per_diem: float = 0.0
    premium_pay: float = 0.0
    overtime_pay: float = 0.0
    guarantee_pay: float = 0.0
    total_compensation: float = 0.0
