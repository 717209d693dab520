"""Time Utilities - UTC timestamps and zone handling"""
from datetime import datetime, timezone, timedelta, tzinfo
from typing import Optional
from dateutil import parser as date_parser
from dateutil import tz


def utc_now() -> datetime:
    """Get current UTC datetime"""
    return datetime.now(timezone.utc)


def ensure_utc(dt: datetime) -> datetime:
    """Return an aware UTC datetime, assuming UTC for naive values"""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def format_iso(dt: datetime) -> str:
    """
    Format datetime to ISO 8601 string
    
    Args:
        dt: Datetime object
        
    Returns:
        ISO formatted string with Z suffix for UTC
    """
    return ensure_utc(dt).isoformat().replace("+00:00", "Z")


def parse_iso(iso_string: str) -> datetime:
    """
    Parse ISO 8601 string to datetime
    
    Args:
        iso_string: ISO formatted datetime string
        
    Returns:
        Datetime object in UTC
    """
    return ensure_utc(date_parser.isoparse(iso_string))


def get_zone(name: str) -> Optional[tzinfo]:
    """Resolve an IANA zone name, None if unknown"""
    if not name:
        return None
    return tz.gettz(name)


def add_minutes(dt: datetime, minutes: int) -> datetime:
    """Add minutes to datetime"""
    return dt + timedelta(minutes=minutes)


def elapsed_ms(start: datetime, end: datetime) -> int:
    """Milliseconds between two datetimes"""
    return int((end - start).total_seconds() * 1000)


def calculate_due_at(start_time: datetime, due_minutes: int) -> datetime:
    """
    Calculate due datetime from start time and duration
    
    Args:
        start_time: Start datetime
        due_minutes: Minutes until due
        
    Returns:
        Due datetime
    """
    return add_minutes(ensure_utc(start_time), due_minutes)
