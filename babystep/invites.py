"""Invite codes for onboarding additional caregivers."""
from __future__ import annotations

import logging
import secrets
from datetime import datetime, timedelta
from typing import Any, List, Optional

from .interval_store import to_wire
from .schemas import BabyInvite
from .supabase import SupabaseClient

logger = logging.getLogger(__name__)

# No 0/O or 1/I, so codes read unambiguously aloud.
INVITE_CHARS = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"


def generate_invite_code(length: int = 6) -> str:
    return "".join(secrets.choice(INVITE_CHARS) for _ in range(length))


def normalize_code(code: str) -> str:
    return code.strip().upper()


def check_invite_code(code: str, max_length: int) -> str:
    """Normalized ``code``, or ValueError when it is empty or longer than ``max_length``."""
    normalized = normalize_code(code)
    if not normalized:
        raise ValueError("invite code is required")
    if len(normalized) > max_length:
        raise ValueError(f"invite code must be at most {max_length} characters")
    return normalized


async def list_invites(supabase: SupabaseClient, baby_id: str) -> List[BabyInvite]:
    rows = await supabase.select(
        "baby_invites",
        params={"select": "*", "baby_id": f"eq.{baby_id}", "order": "created_at.desc"},
    )
    return [BabyInvite.model_validate(row) for row in rows]


async def create_invite(
    supabase: SupabaseClient,
    baby_id: str,
    created_by: str,
    now: datetime,
    *,
    expiry_days: int = 7,
    code_length: int = 6,
) -> BabyInvite:
    rows = await supabase.insert(
        "baby_invites",
        {
            "baby_id": baby_id,
            "code": generate_invite_code(code_length),
            "created_by": created_by,
            "expires_at": to_wire(now + timedelta(days=expiry_days)),
        },
    )
    if not rows:
        raise RuntimeError("invite insert returned no row")
    invite = BabyInvite.model_validate(rows[0])
    logger.info("invite created", extra={"baby_id": baby_id, "invite_id": invite.id})
    return invite


async def redeem_invite(supabase: SupabaseClient, code: str, display_name: str) -> Any:
    """Join the inviting baby through the backend's redeem procedure."""
    return await supabase.rpc(
        "redeem_invite",
        {"_code": normalize_code(code), "_display_name": display_name.strip()},
    )


async def create_baby(
    supabase: SupabaseClient,
    name: str,
    display_name: str,
    birth_date: Optional[str] = None,
) -> Any:
    return await supabase.rpc(
        "create_baby_with_caregiver",
        {"_name": name.strip(), "_birth_date": birth_date, "_display_name": display_name.strip()},
    )


async def remove_caregiver(supabase: SupabaseClient, baby_id: str, user_id: str) -> None:
    await supabase.delete(
        "baby_caregivers",
        params={"baby_id": f"eq.{baby_id}", "user_id": f"eq.{user_id}"},
    )
    logger.info("caregiver removed", extra={"baby_id": baby_id, "caregiver_id": user_id})
