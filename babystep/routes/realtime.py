from __future__ import annotations

import hmac
import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Header, HTTPException
from fastapi.responses import StreamingResponse

from ..config import CONFIG
from ..realtime import ChangeEvent, change_bus, change_stream
from ..supabase import AuthContext, get_auth_context
from .deps import baby_scope

router = APIRouter(prefix="/api/v1", tags=["realtime"])
logger = logging.getLogger(__name__)


def _check_secret(provided: Optional[str]) -> None:
    expected = CONFIG.webhook_secret
    if not expected:
        if CONFIG.allow_unsigned_webhooks:
            return
        logger.warning("change webhook rejected: no webhook secret configured")
        raise HTTPException(status_code=503, detail="Webhook secret is not configured.")
    if not provided or not hmac.compare_digest(provided, expected):
        raise HTTPException(status_code=401, detail="Invalid webhook secret.")


@router.post("/realtime/changes")
async def table_changed_endpoint(
    payload: Dict[str, Any],
    x_webhook_secret: Optional[str] = Header(None),
) -> Dict[str, Any]:
    _check_secret(x_webhook_secret)
    event = ChangeEvent.from_webhook(payload)
    if event is None:
        logger.info("ignoring change without baby", extra={"table": payload.get("table")})
        return {"delivered": 0, "ignored": True}
    delivered = await change_bus.publish(event)
    return {"delivered": delivered, "ignored": False}


@router.get("/babies/{baby_id}/changes")
async def change_stream_endpoint(
    baby_id: str,
    auth: AuthContext = Depends(get_auth_context),
) -> StreamingResponse:
    baby_id = baby_scope(auth, baby_id)
    return StreamingResponse(
        change_stream(change_bus, baby_id),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )
