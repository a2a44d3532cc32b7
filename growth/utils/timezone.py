"""
Timezone utilities for quota windows and expiry math.

Monthly issue limits reset on the calendar month of settings.quota_timezone,
not the host's local zone, so every process in a deployment agrees on the
boundary. All stored timestamps are UTC.
"""
from datetime import datetime, timezone
from typing import Optional
from zoneinfo import ZoneInfo


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands back naive datetimes; treat them as the UTC we stored."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def quota_zone(tz_name: Optional[str] = None) -> ZoneInfo:
    if tz_name is None:
        from growth.config import get_settings
        tz_name = get_settings().quota_timezone
    return ZoneInfo(tz_name)


def month_start_utc(now: Optional[datetime] = None, tz_name: Optional[str] = None) -> datetime:
    """First instant of the current calendar month in the quota zone, expressed in UTC."""
    zone = quota_zone(tz_name)
    local = ensure_utc(now or utcnow()).astimezone(zone)
    start_local = local.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    return start_local.astimezone(timezone.utc)


def month_key(now: Optional[datetime] = None, tz_name: Optional[str] = None) -> str:
    """'YYYY-MM' of the current calendar month in the quota zone."""
    zone = quota_zone(tz_name)
    local = ensure_utc(now or utcnow()).astimezone(zone)
    return f"{local.year:04d}-{local.month:02d}"
