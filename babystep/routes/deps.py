from __future__ import annotations

from datetime import datetime, timezone, tzinfo
from typing import Dict, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from ..interval_store import IntervalStore
from ..supabase import AuthContext, resolve_uuid

CITY_TIMEZONE_MAP: Dict[str, str] = {
    "los angeles": "America/Los_Angeles",
    "new york": "America/New_York",
    "london": "Europe/London",
    "shanghai": "Asia/Shanghai",
    "beijing": "Asia/Shanghai",
    "taipei": "Asia/Taipei",
}


def resolve_zone(value: Optional[str]) -> tzinfo:
    """Viewer timezone for calendar-day bucketing; unknown names fall back to UTC."""
    candidate = (value or "").strip()
    if not candidate:
        return timezone.utc
    candidate = CITY_TIMEZONE_MAP.get(candidate.lower(), candidate)
    try:
        return ZoneInfo(candidate)
    except (ZoneInfoNotFoundError, ValueError):
        return timezone.utc


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def baby_scope(auth: AuthContext, baby_id: str) -> str:
    resolved = resolve_uuid(baby_id, "baby_id")
    auth.require_baby(resolved)
    return resolved


def store_for(auth: AuthContext) -> IntervalStore:
    return IntervalStore(auth.supabase)
