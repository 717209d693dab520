"""Next-Run Calculator - Next occurrence of a recurring schedule

All calendar arithmetic happens on wall-clock time in the schedule's zone.
Setting a day past the end of a month rolls into the following month
(day 31 of a 30-day month is the 1st of the next), and advancing a month
from such a day rolls the same way.
"""
import re
from datetime import datetime, timedelta, tzinfo
from typing import Optional, Tuple

from dateutil import tz

from ..domain.enums import ScheduleFrequency
from ..domain.errors import SchedulingError
from ..domain.models import RuleSchedule
from ..utils.time import ensure_utc, get_zone, utc_now


TIME_PATTERN = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")


def parse_time_of_day(value: str) -> Tuple[int, int]:
    """Parse "HH:MM" into (hours, minutes)"""
    match = TIME_PATTERN.match(value or "")
    if not match:
        raise SchedulingError(f"Invalid time '{value}', expected HH:MM", details={"time": value})
    return int(match.group(1)), int(match.group(2))


def js_weekday(dt: datetime) -> int:
    """Day of week with 0=Sunday .. 6=Saturday"""
    return (dt.weekday() + 1) % 7


def set_day_of_month(dt: datetime, day: int) -> datetime:
    """Move to ``day`` of dt's month, overflowing into later months"""
    return dt.replace(day=1) + timedelta(days=day - 1)


def add_months(dt: datetime, months: int) -> datetime:
    """Advance whole months keeping the day number, overflowing like set_day_of_month"""
    index = dt.year * 12 + (dt.month - 1) + months
    first = dt.replace(year=index // 12, month=index % 12 + 1, day=1)
    return set_day_of_month(first, dt.day)


def _to_instant(local: datetime, zone: tzinfo) -> datetime:
    """Attach the zone to a wall-clock time and convert to UTC"""
    aware = tz.resolve_imaginary(local.replace(tzinfo=zone))
    return ensure_utc(aware)


def next_run(
    frequency: str,
    day_of_week: Optional[int],
    day_of_month: Optional[int],
    time: str,
    timezone: Optional[str] = "UTC",
    now: Optional[datetime] = None
) -> datetime:
    """
    Compute the next occurrence strictly after ``now``
    
    Args:
        frequency: daily, weekly, monthly or quarterly
        day_of_week: 0=Sunday .. 6=Saturday, used by weekly
        day_of_month: 1..31, used by monthly
        time: Wall-clock "HH:MM" in ``timezone``
        timezone: IANA zone name
        now: Reference instant, defaults to the current time
        
    Returns:
        Timezone-aware UTC datetime
        
    Raises:
        SchedulingError: Unsupported frequency, malformed time or unknown zone
    """
    try:
        freq = ScheduleFrequency(str(frequency).lower())
    except ValueError:
        raise SchedulingError(
            f"Unsupported schedule frequency: {frequency}", details={"frequency": frequency}
        )
    
    zone = get_zone(timezone or "UTC")
    if zone is None:
        raise SchedulingError(f"Unknown timezone: {timezone}", details={"timezone": timezone})
    
    hours, minutes = parse_time_of_day(time)
    now = ensure_utc(now or utc_now())
    
    # Baseline: today at the configured time, or tomorrow if that has passed
    local = now.astimezone(zone).replace(
        hour=hours, minute=minutes, second=0, microsecond=0, tzinfo=None
    )
    if _to_instant(local, zone) <= now:
        local = local + timedelta(days=1)
    
    if freq == ScheduleFrequency.WEEKLY:
        if day_of_week is not None:
            while js_weekday(local) != day_of_week:
                local = local + timedelta(days=1)
    
    elif freq == ScheduleFrequency.MONTHLY:
        if day_of_month is not None:
            local = set_day_of_month(local, day_of_month)
            if _to_instant(local, zone) <= now:
                local = add_months(local, 1)
    
    elif freq == ScheduleFrequency.QUARTERLY:
        # 0-based month index of the next Jan/Apr/Jul/Oct boundary
        next_quarter = ((local.month - 1) // 3 + 1) * 3
        local = local.replace(day=1)
        local = local.replace(year=local.year + next_quarter // 12, month=next_quarter % 12 + 1)
    
    return _to_instant(local, zone)


def next_run_for_schedule(schedule: RuleSchedule, now: Optional[datetime] = None) -> datetime:
    """Next occurrence of a stored rule schedule"""
    return next_run(
        frequency=schedule.frequency,
        day_of_week=schedule.day_of_week,
        day_of_month=schedule.day_of_month,
        time=schedule.time,
        timezone=schedule.timezone,
        now=now
    )
