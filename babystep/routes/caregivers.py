from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field, field_validator

from ..config import CONFIG
from ..invites import (
    check_invite_code,
    create_baby,
    create_invite,
    list_invites,
    redeem_invite,
    remove_caregiver,
)
from ..schemas import BabyCaregiver, BabyInvite
from ..supabase import AuthContext, get_auth_context, resolve_uuid
from .deps import baby_scope, store_for, utcnow

router = APIRouter(prefix="/api/v1", tags=["caregivers"])
logger = logging.getLogger(__name__)


class RedeemInvitePayload(BaseModel):
    code: str
    display_name: str = Field(..., min_length=1, max_length=50)

    @field_validator("code")
    @classmethod
    def _code_fits_configured_length(cls, value: str) -> str:
        return check_invite_code(value, CONFIG.invite_code_length)


class CreateBabyPayload(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    display_name: str = Field(..., min_length=1, max_length=50)
    birth_date: Optional[str] = None


@router.post("/babies")
async def create_baby_endpoint(
    payload: CreateBabyPayload,
    auth: AuthContext = Depends(get_auth_context),
) -> Dict[str, Any]:
    result = await create_baby(auth.supabase, payload.name, payload.display_name, payload.birth_date)
    logger.info("baby created", extra={"caregiver_id": auth.user_id})
    return {"result": result}


@router.get("/babies/{baby_id}/caregivers", response_model=List[BabyCaregiver])
async def list_caregivers_endpoint(
    baby_id: str,
    auth: AuthContext = Depends(get_auth_context),
) -> List[BabyCaregiver]:
    baby_id = baby_scope(auth, baby_id)
    return await store_for(auth).list_caregivers(baby_id)


@router.delete("/babies/{baby_id}/caregivers/{user_id}", status_code=204)
async def remove_caregiver_endpoint(
    baby_id: str,
    user_id: str,
    auth: AuthContext = Depends(get_auth_context),
) -> None:
    baby_id = baby_scope(auth, baby_id)
    user_id = resolve_uuid(user_id, "user_id")
    if not auth.is_primary(baby_id):
        raise HTTPException(status_code=403, detail="Only the primary caregiver can remove caregivers.")
    if user_id == auth.user_id:
        raise HTTPException(status_code=400, detail="The primary caregiver cannot remove themselves.")
    await remove_caregiver(auth.supabase, baby_id, user_id)


@router.get("/babies/{baby_id}/invites", response_model=List[BabyInvite])
async def list_invites_endpoint(
    baby_id: str,
    auth: AuthContext = Depends(get_auth_context),
) -> List[BabyInvite]:
    baby_id = baby_scope(auth, baby_id)
    return await list_invites(auth.supabase, baby_id)


@router.post("/babies/{baby_id}/invites", response_model=BabyInvite)
async def create_invite_endpoint(
    baby_id: str,
    auth: AuthContext = Depends(get_auth_context),
) -> BabyInvite:
    baby_id = baby_scope(auth, baby_id)
    return await create_invite(
        auth.supabase,
        baby_id,
        auth.user_id,
        utcnow(),
        expiry_days=CONFIG.invite_expiry_days,
        code_length=CONFIG.invite_code_length,
    )


@router.post("/invites/redeem")
async def redeem_invite_endpoint(
    payload: RedeemInvitePayload,
    auth: AuthContext = Depends(get_auth_context),
) -> Dict[str, Any]:
    result = await redeem_invite(auth.supabase, payload.code, payload.display_name)
    logger.info("invite redeemed", extra={"caregiver_id": auth.user_id})
    return {"result": result}
