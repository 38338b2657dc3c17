from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from ..session_context import PendingAction, run_pending_action, sessions
from ..supabase import AuthContext, get_auth_context
from .deps import baby_scope

router = APIRouter(prefix="/api/v1", tags=["session"])
logger = logging.getLogger(__name__)


class SelectBabyPayload(BaseModel):
    baby_id: str


class PendingActionPayload(BaseModel):
    action: PendingAction


class SessionView(BaseModel):
    user_id: str
    baby_ids: List[str]
    selected_baby_id: Optional[str] = None
    pending_action: Optional[Dict[str, Any]] = None


def _view(auth: AuthContext) -> SessionView:
    ctx = sessions.open(auth.user_id)
    pending = ctx.pending_action()
    return SessionView(
        user_id=auth.user_id,
        baby_ids=auth.baby_ids,
        selected_baby_id=ctx.selected_baby_id(auth.baby_ids),
        pending_action=pending.model_dump() if pending else None,
    )


@router.get("/session", response_model=SessionView)
async def session_endpoint(auth: AuthContext = Depends(get_auth_context)) -> SessionView:
    return _view(auth)


@router.put("/session/selected-baby", response_model=SessionView)
async def select_baby_endpoint(
    payload: SelectBabyPayload,
    auth: AuthContext = Depends(get_auth_context),
) -> SessionView:
    baby_id = baby_scope(auth, payload.baby_id)
    sessions.open(auth.user_id).select_baby(baby_id)
    return _view(auth)


@router.put("/session/pending-action", response_model=SessionView)
async def set_pending_action_endpoint(
    payload: PendingActionPayload,
    auth: AuthContext = Depends(get_auth_context),
) -> SessionView:
    sessions.open(auth.user_id).set_pending_action(payload.action)
    return _view(auth)


@router.post("/session/pending-action/run")
async def run_pending_action_endpoint(auth: AuthContext = Depends(get_auth_context)) -> Dict[str, Any]:
    ran = await run_pending_action(sessions.open(auth.user_id), auth.supabase)
    return {"ran": ran}


@router.delete("/session", status_code=204)
async def sign_out_endpoint(auth: AuthContext = Depends(get_auth_context)) -> None:
    sessions.close(auth.user_id)
    logger.info("session cleared", extra={"caregiver_id": auth.user_id})
