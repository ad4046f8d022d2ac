from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone
from typing import Optional
from zoneinfo import ZoneInfo

from flask import current_app, has_app_context


DEFAULT_BUSINESS_TIMEZONE = "Asia/Colombo"


def utcnow() -> datetime:
    """Server-side 'now' in UTC (naive, canonical)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def parse_iso_datetime(value: Optional[str]) -> Optional[datetime]:
    """
    Parse an ISO-8601 datetime string and normalize to UTC-naive datetime.

    - None / "" -> None
    - "YYYY-MM-DDTHH:MM" (naive) is interpreted as UTC
    - "...Z" or "...+/-HH:MM" is converted to UTC and tzinfo is stripped
    """
    if value is None:
        return None
    s = value.strip()
    if not s:
        return None

    # Accept trailing Z
    if s.endswith("Z"):
        s = s[:-1] + "+00:00"

    dt = datetime.fromisoformat(s)

    # Normalize to UTC-naive
    if dt.tzinfo is None:
        # interpret naive as UTC
        return dt.replace(tzinfo=None)

    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def parse_iso_date(value) -> Optional[date]:
    """Accept a date, a datetime, or a 'YYYY-MM-DD' string.

    Longer strings must be full ISO datetimes; their calendar date is kept as
    written. Raises ValueError on anything else.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    s = str(value).strip()
    if not s:
        return None
    if len(s) > 10:
        if s.endswith("Z"):
            s = s[:-1] + "+00:00"
        return datetime.fromisoformat(s).date()
    return date.fromisoformat(s)


def to_utc_z(dt: Optional[datetime]) -> Optional[str]:
    """
    Serializes datetime to ISO-8601 with trailing 'Z'.
    If dt is naive, it is treated as UTC.
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    dt_utc = dt.astimezone(timezone.utc).replace(microsecond=0)
    return dt_utc.isoformat().replace("+00:00", "Z")


def to_iso_date(d: Optional[date]) -> Optional[str]:
    return d.isoformat() if d else None


# =============================================================================
# Business timezone
# =============================================================================

def business_zone() -> ZoneInfo:
    name = DEFAULT_BUSINESS_TIMEZONE
    if has_app_context():
        name = current_app.config.get("BUSINESS_TIMEZONE", name)
    return ZoneInfo(name)


def to_business_time(dt_utc: datetime) -> datetime:
    """UTC-naive -> business-local naive."""
    aware = dt_utc.replace(tzinfo=timezone.utc)
    return aware.astimezone(business_zone()).replace(tzinfo=None)


def business_today(now: Optional[datetime] = None) -> date:
    """Calendar day in the business timezone for a UTC-naive instant."""
    return to_business_time(now or utcnow()).date()


def business_local_to_utc(day: date, at: time) -> datetime:
    """Business-local wall clock on `day` -> UTC-naive instant."""
    local = datetime.combine(day, at).replace(tzinfo=business_zone())
    return local.astimezone(timezone.utc).replace(tzinfo=None)


def parse_hhmm(value: str) -> time:
    """Parse 'HH:MM' (24h). Raises ValueError on bad input."""
    hours, minutes = value.strip().split(":")
    return time(int(hours), int(minutes))


def iter_days(start: date, end: date):
    """Inclusive day range."""
    current = start
    while current <= end:
        yield current
        current += timedelta(days=1)


def add_months(d: date, months: int) -> date:
    month_index = d.month - 1 + months
    year = d.year + month_index // 12
    month = month_index % 12 + 1
    # Clamp to the last day of the target month
    next_month = date(year + (month // 12), month % 12 + 1, 1)
    last_day = (next_month - timedelta(days=1)).day
    return date(year, month, min(d.day, last_day))
