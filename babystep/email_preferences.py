"""Per-caregiver opt-in for the daily digest email."""
from __future__ import annotations

import logging
from typing import Optional

from pydantic import BaseModel

from .supabase import SupabaseClient

logger = logging.getLogger(__name__)

EMAIL_PREFERENCES = "email_preferences"
DEFAULT_DIGEST_TIMEZONE = "America/Los_Angeles"


class EmailPreferences(BaseModel):
    user_id: str
    daily_summary_enabled: bool = False
    timezone: str = DEFAULT_DIGEST_TIMEZONE


def _from_row(user_id: str, row: dict) -> EmailPreferences:
    return EmailPreferences(
        user_id=user_id,
        daily_summary_enabled=bool(row.get("daily_summary_enabled")),
        timezone=row.get("timezone") or DEFAULT_DIGEST_TIMEZONE,
    )


async def get_email_preferences(supabase: SupabaseClient, user_id: str) -> EmailPreferences:
    """Stored preferences, or the opted-out defaults when the caregiver has none."""
    rows = await supabase.select(
        EMAIL_PREFERENCES,
        params={"select": "user_id,daily_summary_enabled,timezone", "user_id": f"eq.{user_id}", "limit": "1"},
    )
    return _from_row(user_id, rows[0]) if rows else EmailPreferences(user_id=user_id)


async def save_email_preferences(
    supabase: SupabaseClient,
    user_id: str,
    *,
    daily_summary_enabled: bool,
    timezone: Optional[str] = None,
) -> EmailPreferences:
    payload = {"user_id": user_id, "daily_summary_enabled": daily_summary_enabled}
    if timezone:
        payload["timezone"] = timezone
    rows = await supabase.upsert(EMAIL_PREFERENCES, payload, on_conflict="user_id")
    logger.info(
        "email preferences saved",
        extra={"caregiver_id": user_id, "daily_summary_enabled": daily_summary_enabled},
    )
    return _from_row(user_id, rows[0] if rows else payload)
