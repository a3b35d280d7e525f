# crew_engine/timeutils.py
"""
Time helpers and the rolling-window aggregator.

Notes:
 - All instants are handled as timezone-aware UTC datetimes; naive inputs are
   taken to be UTC.
 - Durations on records are minutes; hour values are derived by /60.
"""
import datetime
from dataclasses import dataclass
from typing import Iterable, Optional

from dateutil.relativedelta import relativedelta

ROLLING_28_DAYS = 28
ROLLING_365_DAYS = 365

# window of circadian low, 02:00-05:59 UTC
WOCL_START = datetime.time(2)
WOCL_END = datetime.time(6)


def ensure_utc(dt: Optional[datetime.datetime]) -> Optional[datetime.datetime]:
    """
    Ensure dt is timezone-aware UTC. Naive values get UTC attached, aware
    values are converted.
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=datetime.timezone.utc)
    return dt.astimezone(datetime.timezone.utc)


def hours_between(dt1: datetime.datetime, dt2: datetime.datetime) -> float:
    delta = ensure_utc(dt2) - ensure_utc(dt1)
    return delta.total_seconds() / 3600.0


def whole_years_between(start: datetime.date, end: datetime.date) -> int:
    """Completed years from start to end (anniversary based, never negative)."""
    return max(0, relativedelta(end, start).years)


def crosses_wocl(start: datetime.datetime, end: datetime.datetime) -> bool:
    """True when any part of [start, end) falls inside the WOCL on some day."""
    start, end = ensure_utc(start), ensure_utc(end)
    day = start.date()
    while day <= end.date():
        w_start = datetime.datetime.combine(day, WOCL_START, tzinfo=datetime.timezone.utc)
        w_end = datetime.datetime.combine(day, WOCL_END, tzinfo=datetime.timezone.utc)
        if start < w_end and end > w_start:
            return True
        day += datetime.timedelta(days=1)
    return False


# ---------- Rolling-window aggregator ----------
@dataclass(frozen=True)
class RollingHours:
    h28: float
    h365: float


def rolling_hours(records: Iterable, as_of_date: datetime.date) -> RollingHours:
    """
    Sum recorded flight time over the trailing 28 and 365 day windows ending
    on as_of_date (both bounds inclusive). h28 <= h365 always holds since the
    28-day window is a subset of the 365-day one.
    """
    start_28 = as_of_date - datetime.timedelta(days=ROLLING_28_DAYS)
    start_365 = as_of_date - datetime.timedelta(days=ROLLING_365_DAYS)
    m28 = 0
    m365 = 0
    for rec in records:
        if rec.duty_date > as_of_date or rec.duty_date < start_365:
            continue
        m365 += rec.flight_time_minutes
        if rec.duty_date >= start_28:
            m28 += rec.flight_time_minutes
    return RollingHours(h28=m28 / 60.0, h365=m365 / 60.0)


async def fetch_rolling_hours(store, crew_id: str, as_of_date: datetime.date) -> RollingHours:
    records = await store.get_duty_time_records(
        crew_id, as_of_date - datetime.timedelta(days=ROLLING_365_DAYS), as_of_date
    )
    return rolling_hours(records, as_of_date)


def count_consecutive_duty_days(records: Iterable, before_date: datetime.date) -> int:
    """
    Length of the unbroken daily streak of duty dates ending on the day
    immediately before before_date. Several duties on one date count once.
    """
    dates = {rec.duty_date for rec in records if rec.duty_date < before_date}
    count = 0
    day = before_date - datetime.timedelta(days=1)
    while day in dates:
        count += 1
        day -= datetime.timedelta(days=1)
    return count
