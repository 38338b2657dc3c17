from __future__ import annotations

import logging
from datetime import date, time, timedelta
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, ConfigDict, Field

from ..config import CONFIG
from ..errors import PreconditionFailed, ShiftError, to_http
from ..interval_store import IntervalStore
from ..schemas import BlockType, FamilyStatus, HandoffResult, StandingSession, TimeBlock
from ..shift_engine import current_shift, family_status, todays_blocks
from ..shift_operations import (
    delete_block,
    extend_shift,
    handoff_shift,
    log_past_shift,
    start_shift,
    start_standing,
    stop_standing,
)
from ..supabase import AuthContext, get_auth_context, resolve_uuid
from .deps import baby_scope, resolve_zone, store_for, utcnow

router = APIRouter(prefix="/api/v1", tags=["shifts"])
logger = logging.getLogger(__name__)


class StartShiftPayload(BaseModel):
    caregiver_id: Optional[str] = None


class HandoffPayload(BaseModel):
    to_caregiver_id: str


class LogBlockPayload(BaseModel):
    caregiver_id: Optional[str] = None
    block_type: BlockType = BlockType.CARE
    start: time
    end: time
    day: Optional[date] = Field(default=None, alias="date")
    tz: Optional[str] = None
    notes: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True)


async def _require_caregiver(store: IntervalStore, baby_id: str, caregiver_id: str, label: str) -> None:
    caregivers = await store.list_caregivers(baby_id)
    if caregiver_id not in {caregiver.user_id for caregiver in caregivers}:
        raise HTTPException(status_code=400, detail=f"{label} is not a caregiver of this baby.")


@router.get("/babies/{baby_id}/family-status", response_model=FamilyStatus)
async def family_status_endpoint(
    baby_id: str,
    tz: Optional[str] = Query(None, description="Viewer IANA timezone"),
    auth: AuthContext = Depends(get_auth_context),
) -> FamilyStatus:
    baby_id = baby_scope(auth, baby_id)
    store = store_for(auth)
    blocks, sessions = await store.list_by_baby(baby_id)
    caregivers = await store.list_caregivers(baby_id)
    baby = await store.get_baby(baby_id)
    status = family_status(
        baby_id,
        utcnow(),
        blocks,
        sessions,
        caregivers,
        baby.recovering_caregiver_id if baby else None,
        tz=resolve_zone(tz),
        workload_window=timedelta(hours=CONFIG.workload_window_hours),
        rest_threshold_hours=CONFIG.rest_adequacy_hours,
        standing_rest_reminder=timedelta(minutes=CONFIG.standing_rest_reminder_minutes),
    )
    if status.inconsistencies:
        logger.warning(
            "family status has inconsistencies",
            extra={"baby_id": baby_id, "count": len(status.inconsistencies)},
        )
    return status


@router.get("/babies/{baby_id}/time-blocks", response_model=List[TimeBlock])
async def list_time_blocks_endpoint(
    baby_id: str,
    day: Optional[date] = Query(None, alias="date", description="Local calendar date"),
    tz: Optional[str] = Query(None, description="Viewer IANA timezone"),
    auth: AuthContext = Depends(get_auth_context),
) -> List[TimeBlock]:
    baby_id = baby_scope(auth, baby_id)
    zone = resolve_zone(tz)
    blocks, _ = await store_for(auth).list_by_baby(baby_id)
    return todays_blocks(blocks, day or utcnow().astimezone(zone).date(), tz=zone)


@router.post("/babies/{baby_id}/shifts/start", response_model=TimeBlock)
async def start_shift_endpoint(
    baby_id: str,
    payload: StartShiftPayload,
    auth: AuthContext = Depends(get_auth_context),
) -> TimeBlock:
    baby_id = baby_scope(auth, baby_id)
    caregiver_id = resolve_uuid(payload.caregiver_id or auth.user_id, "caregiver_id")
    store = store_for(auth)
    await _require_caregiver(store, baby_id, caregiver_id, "Shift caregiver")
    try:
        return await start_shift(
            store,
            baby_id,
            caregiver_id,
            utcnow(),
            length=timedelta(minutes=CONFIG.default_shift_minutes),
        )
    except ShiftError as exc:
        raise to_http(exc) from exc


@router.post("/babies/{baby_id}/shifts/handoff", response_model=HandoffResult)
async def handoff_shift_endpoint(
    baby_id: str,
    payload: HandoffPayload,
    auth: AuthContext = Depends(get_auth_context),
) -> HandoffResult:
    baby_id = baby_scope(auth, baby_id)
    to_caregiver_id = resolve_uuid(payload.to_caregiver_id, "to_caregiver_id")
    store = store_for(auth)
    await _require_caregiver(store, baby_id, to_caregiver_id, "Handoff target")
    now = utcnow()
    blocks, _ = await store.list_by_baby(baby_id)
    try:
        shift = current_shift(now, blocks)
        if shift is None:
            raise PreconditionFailed("no active shift to hand off")
        return await handoff_shift(
            store,
            baby_id,
            shift.caregiver_id,
            to_caregiver_id,
            now,
            shift,
            floor=timedelta(minutes=CONFIG.handoff_min_minutes),
        )
    except ShiftError as exc:
        raise to_http(exc) from exc


@router.post("/babies/{baby_id}/shifts/extend", response_model=TimeBlock)
async def extend_shift_endpoint(
    baby_id: str,
    auth: AuthContext = Depends(get_auth_context),
) -> TimeBlock:
    baby_id = baby_scope(auth, baby_id)
    store = store_for(auth)
    now = utcnow()
    blocks, _ = await store.list_by_baby(baby_id)
    try:
        shift = current_shift(now, blocks)
        if shift is None:
            raise PreconditionFailed("no active shift to extend")
        return await extend_shift(
            store, baby_id, shift, now, delta=timedelta(minutes=CONFIG.extend_minutes)
        )
    except ShiftError as exc:
        raise to_http(exc) from exc


@router.post("/babies/{baby_id}/time-blocks", response_model=TimeBlock)
async def log_time_block_endpoint(
    baby_id: str,
    payload: LogBlockPayload,
    auth: AuthContext = Depends(get_auth_context),
) -> TimeBlock:
    baby_id = baby_scope(auth, baby_id)
    caregiver_id = resolve_uuid(payload.caregiver_id or auth.user_id, "caregiver_id")
    store = store_for(auth)
    await _require_caregiver(store, baby_id, caregiver_id, "Block caregiver")
    return await log_past_shift(
        store,
        baby_id,
        caregiver_id,
        payload.block_type,
        payload.start,
        payload.end,
        payload.day,
        utcnow(),
        tz=resolve_zone(payload.tz),
        notes=payload.notes,
    )


@router.delete("/babies/{baby_id}/time-blocks/{block_id}", status_code=204)
async def delete_time_block_endpoint(
    baby_id: str,
    block_id: str,
    auth: AuthContext = Depends(get_auth_context),
) -> None:
    baby_id = baby_scope(auth, baby_id)
    block_id = resolve_uuid(block_id, "block_id")
    try:
        await delete_block(
            store_for(auth), baby_id, block_id, auth.user_id, auth.is_primary(baby_id)
        )
    except ShiftError as exc:
        raise to_http(exc) from exc


@router.post("/babies/{baby_id}/standing/start", response_model=StandingSession)
async def start_standing_endpoint(
    baby_id: str,
    auth: AuthContext = Depends(get_auth_context),
) -> StandingSession:
    baby_id = baby_scope(auth, baby_id)
    try:
        return await start_standing(store_for(auth), baby_id, auth.user_id, utcnow())
    except ShiftError as exc:
        raise to_http(exc) from exc


@router.post("/babies/{baby_id}/standing/{session_id}/stop", response_model=StandingSession)
async def stop_standing_endpoint(
    baby_id: str,
    session_id: str,
    auth: AuthContext = Depends(get_auth_context),
) -> StandingSession:
    baby_id = baby_scope(auth, baby_id)
    session_id = resolve_uuid(session_id, "session_id")
    try:
        return await stop_standing(store_for(auth), baby_id, session_id, utcnow())
    except ShiftError as exc:
        raise to_http(exc) from exc
