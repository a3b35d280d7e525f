# crew_engine/load_rules.py
"""
Rule loader for the regulatory and pay rule JSON files.

Provides:
 - load_rules_from_folder: validated rule objects (RuleSpec) + invalid reports
 - build_rule_book: maps validated rules by logic.type into a frozen RuleBook
 - load_rule_book: both of the above, raising RuleTableError on any problem

The RuleBook is built once at process start and passed explicitly to every
engine call. Nothing here is stored at module level.
"""
import datetime
import hashlib
import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .errors import RuleTableError
from .models import AlertType, Severity

log = logging.getLogger("rule_loader")

DEFAULT_RULES_DIR = Path(__file__).resolve().parent / "rules"

SEGMENT_BUCKETS = ("2_segments", "3_segments", "4_segments", "5_segments", "6_segments", "7_plus_segments")
TIME_BUCKETS = ("0000-0459", "0500-0559", "0600-0659", "0700-1259", "1300-1659", "1700-2159", "2200-2259", "2300-2359")


# ---------------------------------------------------------
# RuleSpec Model
# ---------------------------------------------------------
class RuleSpec(BaseModel):
    id: str
    title: str
    logic: Dict[str, Any]
    regulatory_reference: Optional[Any] = None
    enabled: bool = True
    version: Optional[str] = None
    notes: Optional[Dict[str, Any]] = None

    @field_validator("id")
    @classmethod
    def _id_not_empty(cls, v):
        if not v or v.strip() == "":
            raise ValueError("id must be non-empty string")
        return v

    @field_validator("logic")
    @classmethod
    def _logic_has_type(cls, v):
        if not isinstance(v.get("type"), str):
            raise ValueError("logic.type is required")
        return v


# ---------------------------------------------------------
# Canonical (frozen) tables
# ---------------------------------------------------------
class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")


class RestTier(_Frozen):
    # None = no upper bound
    max_previous_fdp_hours: Optional[float] = None
    min_rest_hours: float


class AlertThreshold(_Frozen):
    ratio: float
    severity: Severity
    alert_type: AlertType


class RegulatoryRuleTable(_Frozen):
    fdp_limits: Dict[str, Dict[str, float]]
    default_max_fdp_hours: float = 9.0
    default_flight_minutes: int = 360
    rest_tiers: Tuple[RestTier, ...]
    missing_end_time_rest_hours: float = 10.0
    rolling_28_day_limit_hours: float = 100.0
    rolling_365_day_limit_hours: float = 1000.0
    approaching_warning_ratio: float = 0.9
    consecutive_duty_days_warning: int = 6
    alert_thresholds: Tuple[AlertThreshold, ...] = (
        AlertThreshold(ratio=1.0, severity=Severity.CRITICAL, alert_type=AlertType.LIMIT_EXCEEDED),
        AlertThreshold(ratio=0.95, severity=Severity.HIGH, alert_type=AlertType.APPROACHING_LIMIT),
        AlertThreshold(ratio=0.90, severity=Severity.MEDIUM, alert_type=AlertType.APPROACHING_LIMIT),
    )

    def max_fdp_hours(self, segment_bucket: str, time_bucket: str) -> Optional[float]:
        return (self.fdp_limits.get(segment_bucket) or {}).get(time_bucket)

    def minimum_rest_hours(self, previous_fdp_hours: float) -> float:
        for tier in self.rest_tiers:
            if tier.max_previous_fdp_hours is None or previous_fdp_hours <= tier.max_previous_fdp_hours:
                return tier.min_rest_hours
        return self.rest_tiers[-1].min_rest_hours


class BaseRate(_Frozen):
    hourly_rate: float


class PerDiemRule(_Frozen):
    rate_per_hour: float = 2.5
    minimum_hours: float = 4.0


class PremiumRule(_Frozen):
    rate_multiplier: Optional[float] = None
    flat_amount: Optional[float] = None
    applies_to: Optional[Tuple[str, ...]] = None
    description: Optional[str] = None

    def applies(self, crew_type: str) -> bool:
        if not self.applies_to:
            return True
        return "ALL" in self.applies_to or crew_type in self.applies_to


class OvertimeRule(_Frozen):
    threshold_hours: float = 85.0
    rate_multiplier: float = 1.5


class GuaranteeRule(_Frozen):
    guaranteed_amount: float
    guaranteed_hours: Optional[float] = None


class LongevityTier(_Frozen):
    min_years: int
    max_years: Optional[int] = None
    percentage_increase: float = 0.0

    def contains(self, years: int) -> bool:
        if years < self.min_years:
            return False
        return self.max_years is None or years <= self.max_years


class PayRuleTable(_Frozen):
    # crew type -> position -> rate
    base_pay: Dict[str, Dict[str, BaseRate]] = Field(default_factory=dict)
    per_diem: PerDiemRule = PerDiemRule()
    # premium kind (night_flying | holiday | international) -> rule
    premiums: Dict[str, PremiumRule] = Field(default_factory=dict)
    overtime: Optional[OvertimeRule] = None
    guarantee: Dict[str, GuaranteeRule] = Field(default_factory=dict)
    longevity_tiers: Tuple[LongevityTier, ...] = ()
    holiday_calendar: Tuple[datetime.date, ...] = ()


class RuleBook(_Frozen):
    regulatory: RegulatoryRuleTable
    pay: PayRuleTable
    rules: Dict[str, RuleSpec]
    provenance: Dict[str, Any]

    @property
    def stamp(self) -> Dict[str, Any]:
        """Version + hash only, for embedding in reproducible results."""
        return {
            "ruleset_version": self.provenance.get("ruleset_version"),
            "ruleset_hash_sha256": self.provenance.get("ruleset_hash_sha256"),
        }


# ---------------------------------------------------------
# Helper: Extract rule objects from mixed JSON formats
# ---------------------------------------------------------
def _iter_rule_objects_from_raw(raw: Any) -> List[Dict[str, Any]]:
    if raw is None:
        return []

    # List of rules
    if isinstance(raw, list):
        return raw

    if isinstance(raw, dict):
        # wrapper { "rules": [ ... ] }
        if "rules" in raw and isinstance(raw["rules"], list):
            return raw["rules"]
        # Single rule
        return [raw]

    return []


def compute_ruleset_provenance(rules: Dict[str, RuleSpec], source_files: List[str]) -> Dict[str, Any]:
    """
    Deterministic provenance for the loaded ruleset: hash over the sorted rule
    bodies, a combined version string and the files they came from.
    """
    serial = json.dumps(
        {rid: rules[rid].model_dump(mode="json") for rid in sorted(rules)},
        sort_keys=True,
        default=str,
    )
    versions = sorted({f"{r.id}@{r.version}" for r in rules.values() if r.version})
    return {
        "ruleset_hash_sha256": hashlib.sha256(serial.encode("utf-8")).hexdigest(),
        "ruleset_version": ",".join(versions) or None,
        "loaded_at": datetime.datetime.now(datetime.timezone.utc).isoformat(),
        "source_files": sorted(set(source_files)),
    }


# ---------------------------------------------------------
# Per-type mapping into canonical tables
# ---------------------------------------------------------
def _map_fdp_tables(logic: Dict[str, Any], out: Dict[str, Any]) -> None:
    table = logic.get("limits_by_segments_and_start_time") or {}
    if not isinstance(table, dict) or not table:
        raise ValueError("fdp_tables rule needs a non-empty limits_by_segments_and_start_time map")
    limits: Dict[str, Dict[str, float]] = {}
    for seg_bucket, row in table.items():
        if seg_bucket not in SEGMENT_BUCKETS:
            log.warning("Unknown FDP segment bucket %s ignored", seg_bucket)
            continue
        limits[seg_bucket] = {}
        for time_bucket, hours in (row or {}).items():
            if time_bucket not in TIME_BUCKETS:
                log.warning("Unknown FDP report-time bucket %s ignored", time_bucket)
                continue
            limits[seg_bucket][time_bucket] = float(hours)
    out["fdp_limits"] = limits
    if logic.get("default_max_fdp_hours") is not None:
        out["default_max_fdp_hours"] = float(logic["default_max_fdp_hours"])
    if logic.get("default_flight_minutes") is not None:
        out["default_flight_minutes"] = int(logic["default_flight_minutes"])


def _map_rest(logic: Dict[str, Any], out: Dict[str, Any]) -> None:
    tiers = [RestTier.model_validate(t) for t in logic.get("tiers") or []]
    if not tiers:
        raise ValueError("rest rule needs at least one tier")
    # bounded tiers ascending, the open-ended tier last
    tiers.sort(key=lambda t: (t.max_previous_fdp_hours is None, t.max_previous_fdp_hours or 0))
    out["rest_tiers"] = tuple(tiers)
    if logic.get("missing_end_time_rest_hours") is not None:
        out["missing_end_time_rest_hours"] = float(logic["missing_end_time_rest_hours"])


def _map_cumulative(logic: Dict[str, Any], out: Dict[str, Any]) -> None:
    for row in logic.get("table") or []:
        if row.get("metric", "flight_time") != "flight_time":
            continue
        w = int(row["window_days"])
        if w == 28:
            out["rolling_28_day_limit_hours"] = float(row["max_hours"])
        elif w == 365:
            out["rolling_365_day_limit_hours"] = float(row["max_hours"])
        else:
            log.info("cumulative window %sd not used by the engines", w)
    if "rolling_28_day_limit_hours" not in out or "rolling_365_day_limit_hours" not in out:
        raise ValueError("cumulative_windows rule needs 28d and 365d flight_time rows")
    if logic.get("approaching_warning_ratio") is not None:
        out["approaching_warning_ratio"] = float(logic["approaching_warning_ratio"])
    if logic.get("consecutive_duty_days_warning") is not None:
        out["consecutive_duty_days_warning"] = int(logic["consecutive_duty_days_warning"])
    if logic.get("alert_thresholds"):
        thresholds = [AlertThreshold.model_validate(t) for t in logic["alert_thresholds"]]
        out["alert_thresholds"] = tuple(sorted(thresholds, key=lambda t: -t.ratio))


def _map_pay(logic: Dict[str, Any]) -> PayRuleTable:
    body = {k: v for k, v in logic.items() if k != "type"}
    return PayRuleTable.model_validate(body)


def build_rule_book(valid: Dict[str, RuleSpec], source_files: Optional[List[str]] = None) -> RuleBook:
    """
    Map validated rules into the canonical RuleBook. Raises RuleTableError
    when a required table is missing or malformed.
    """
    regulatory: Dict[str, Any] = {}
    pay: Optional[PayRuleTable] = None
    seen_types = set()

    for rid in sorted(valid):
        rule = valid[rid]
        ltype = rule.logic.get("type")
        try:
            if ltype == "fdp_tables":
                _map_fdp_tables(rule.logic, regulatory)
            elif ltype == "rest":
                _map_rest(rule.logic, regulatory)
            elif ltype == "cumulative_windows":
                _map_cumulative(rule.logic, regulatory)
            elif ltype == "pay_rules":
                pay = _map_pay(rule.logic)
            else:
                log.warning("Rule %s has unsupported logic type %s; kept for reference only", rid, ltype)
                continue
        except (ValueError, KeyError, TypeError, ValidationError) as e:
            raise RuleTableError(f"Rule {rid} ({ltype}) is malformed: {e}") from e
        seen_types.add(ltype)

    missing = {"fdp_tables", "rest", "cumulative_windows", "pay_rules"} - seen_types
    if missing:
        raise RuleTableError(f"Required rule tables missing: {', '.join(sorted(missing))}")

    try:
        reg_table = RegulatoryRuleTable.model_validate(regulatory)
    except ValidationError as e:
        raise RuleTableError(f"Regulatory rule table invalid: {e}") from e

    return RuleBook(
        regulatory=reg_table,
        pay=pay,
        rules=dict(valid),
        provenance=compute_ruleset_provenance(valid, source_files or []),
    )


# ---------------------------------------------------------
# Main Loader
# ---------------------------------------------------------
def load_rules_from_folder(folder: Path) -> Tuple[Dict[str, RuleSpec], List[Dict[str, Any]]]:
    """
    Loads all rule JSON files from folder.
    Returns:
        (valid rules keyed by id, invalid reports)
    """
    valid: Dict[str, RuleSpec] = {}
    invalid: List[Dict[str, Any]] = []
    folder = Path(folder)

    if not folder.exists() or not folder.is_dir():
        log.warning("Rules folder does not exist: %s", folder)
        invalid.append({"file": str(folder), "error": "rules folder not found"})
        return valid, invalid

    # deterministic order
    for f in sorted(folder.glob("*.json")):
        fname = f.name
        try:
            parsed = json.loads(f.read_text(encoding="utf-8"))
        except OSError as e:
            invalid.append({"file": fname, "error": f"read_error: {e}"})
            log.error("Failed to read %s: %s", fname, e)
            continue
        except json.JSONDecodeError as e:
            invalid.append({"file": fname, "error": f"json_parse_error: {e.msg} (line {e.lineno}, col {e.colno})"})
            log.error("JSON parse error in %s: %s", fname, e)
            continue

        for idx, raw_rule in enumerate(_iter_rule_objects_from_raw(parsed)):
            try:
                r = RuleSpec.model_validate(raw_rule)
            except ValidationError as e:
                invalid.append({"file": fname, "index": idx, "error": f"validation_error: {e}"})
                continue

            if not r.enabled:
                log.info("Rule %s in %s is disabled", r.id, fname)
                continue
            if r.id in valid:
                invalid.append({"file": fname, "index": idx, "error": f"duplicate rule id: {r.id}"})
                log.error("Duplicate rule id %s in %s", r.id, fname)
                continue
            valid[r.id] = r
            log.info("Loaded rule %s from %s", r.id, fname)

    log.info("Rule loader summary: %d valid rules, %d invalid", len(valid), len(invalid))
    return valid, invalid


def load_rule_book(folder: Optional[Path] = None) -> RuleBook:
    folder = Path(folder) if folder else DEFAULT_RULES_DIR
    valid, invalid = load_rules_from_folder(folder)
    if invalid:
        raise RuleTableError(f"{len(invalid)} invalid rule file(s) in {folder}", invalid)
    return build_rule_book(valid, [p.name for p in sorted(folder.glob("*.json"))])


__all__ = [
    "RuleSpec",
    "RuleBook",
    "RegulatoryRuleTable",
    "PayRuleTable",
    "load_rules_from_folder",
    "build_rule_book",
    "load_rule_book",
]
