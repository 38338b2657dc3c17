from __future__ import annotations

import logging
from datetime import date
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel

from ..daily_summary import DailyDigest, collect_digest
from ..email_preferences import EmailPreferences, get_email_preferences, save_email_preferences
from ..supabase import AuthContext, get_auth_context
from .deps import baby_scope, resolve_zone, utcnow

router = APIRouter(prefix="/api/v1", tags=["digest"])
logger = logging.getLogger(__name__)


class EmailPreferencesPayload(BaseModel):
    daily_summary_enabled: bool
    timezone: Optional[str] = None


@router.get("/babies/{baby_id}/digest", response_model=DailyDigest)
async def daily_digest_endpoint(
    baby_id: str,
    day: Optional[date] = Query(None, alias="date", description="Local calendar date"),
    tz: Optional[str] = Query(None, description="Recipient IANA timezone"),
    auth: AuthContext = Depends(get_auth_context),
) -> DailyDigest:
    baby_id = baby_scope(auth, baby_id)
    zone = resolve_zone(tz)
    day = day or utcnow().astimezone(zone).date()
    digest = await collect_digest(auth.supabase, [baby_id], day, zone)
    logger.info("digest built", extra={"baby_id": baby_id, "day": day.isoformat()})
    return digest


@router.get("/me/email-preferences", response_model=EmailPreferences)
async def email_preferences_endpoint(
    auth: AuthContext = Depends(get_auth_context),
) -> EmailPreferences:
    return await get_email_preferences(auth.supabase, auth.user_id)


@router.put("/me/email-preferences", response_model=EmailPreferences)
async def update_email_preferences_endpoint(
    payload: EmailPreferencesPayload,
    auth: AuthContext = Depends(get_auth_context),
) -> EmailPreferences:
    timezone = (payload.timezone or "").strip() or None
    if timezone:
        try:
            ZoneInfo(timezone)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise HTTPException(status_code=400, detail=f"Unknown timezone: {timezone}") from exc
    return await save_email_preferences(
        auth.supabase,
        auth.user_id,
        daily_summary_enabled=payload.daily_summary_enabled,
        timezone=timezone,
    )


@router.get("/me/digest", response_model=DailyDigest)
async def my_daily_digest_endpoint(
    day: Optional[date] = Query(None, alias="date", description="Local calendar date"),
    auth: AuthContext = Depends(get_auth_context),
) -> DailyDigest:
    """One digest across every baby the caller cares for, in their stored timezone."""
    preferences = await get_email_preferences(auth.supabase, auth.user_id)
    if not preferences.daily_summary_enabled:
        raise HTTPException(status_code=404, detail="Daily summary is not enabled.")
    baby_ids = auth.baby_ids
    if not baby_ids:
        raise HTTPException(status_code=404, detail="No babies found.")
    zone = resolve_zone(preferences.timezone)
    day = day or utcnow().astimezone(zone).date()
    digest = await collect_digest(auth.supabase, baby_ids, day, zone)
    logger.info("caregiver digest built", extra={"caregiver_id": auth.user_id, "babies": len(baby_ids)})
    return digest
