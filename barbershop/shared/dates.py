"""Shop wall-clock helpers. Appointment times are stored naive in BUSINESS_TIMEZONE."""

from datetime import datetime, timedelta, timezone
from typing import Optional
from zoneinfo import ZoneInfo

from ..config import BUSINESS_TIMEZONE


def business_now() -> datetime:
    return datetime.now(ZoneInfo(BUSINESS_TIMEZONE)).replace(tzinfo=None, microsecond=0)


def to_business_time(value: datetime) -> datetime:
    """Convert an aware datetime to naive shop time; naive values pass through"""
    if value.tzinfo is None:
        return value
    return value.astimezone(ZoneInfo(BUSINESS_TIMEZONE)).replace(tzinfo=None)


def parse_event_time(moment: Optional[dict]) -> Optional[datetime]:
    """
    Parse a Google Calendar start/end object.
    All-day events carry "date" (end date is exclusive already).
    """
    if not moment:
        return None
    if moment.get("dateTime"):
        return to_business_time(datetime.fromisoformat(moment["dateTime"].replace("Z", "+00:00")))
    if moment.get("date"):
        return datetime.fromisoformat(moment["date"])
    return None


def format_br_datetime(value: datetime) -> str:
    return value.strftime("%d/%m/%Y às %H:%M")


def ms_epoch(value: Optional[datetime] = None) -> int:
    """Milliseconds since epoch; naive values are treated as UTC"""
    if value is None:
        value = datetime.utcnow()
    return int((value - datetime(1970, 1, 1)).total_seconds() * 1000)


def from_ms_epoch(ms: int) -> datetime:
    """Naive UTC datetime from milliseconds since epoch"""
    return datetime(1970, 1, 1) + timedelta(milliseconds=ms)


def to_rfc3339(value: datetime) -> str:
    """Naive shop time to an RFC 3339 string with offset"""
    return value.replace(tzinfo=ZoneInfo(BUSINESS_TIMEZONE)).isoformat()


def business_to_utc(value: datetime) -> datetime:
    """Naive shop time to naive UTC"""
    return value.replace(tzinfo=ZoneInfo(BUSINESS_TIMEZONE)).astimezone(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: datetime) -> datetime:
    """Aware values are converted to UTC; naive values are assumed UTC already"""
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)
