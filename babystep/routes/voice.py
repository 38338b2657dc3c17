from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException
from openai import APIError

from ..schemas import VoiceParseRequest, VoiceParseResult
from ..supabase import AuthContext, get_auth_context
from ..voice_parser import parse_transcript

router = APIRouter(prefix="/api/v1", tags=["voice"])
logger = logging.getLogger(__name__)


@router.post("/voice/parse", response_model=VoiceParseResult)
def parse_voice_endpoint(
    payload: VoiceParseRequest,
    auth: AuthContext = Depends(get_auth_context),
) -> VoiceParseResult:
    try:
        result = parse_transcript(
            payload.transcript,
            payload.tracker_type,
            language=payload.language,
            timezone=payload.timezone,
            local_time=payload.local_time,
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except APIError as exc:
        logger.exception("voice model request failed", exc_info=exc)
        raise HTTPException(status_code=502, detail="Voice parsing service unavailable.") from exc
    except RuntimeError as exc:
        logger.warning("voice parsing unavailable", extra={"reason": str(exc)})
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    logger.info(
        "voice transcript parsed",
        extra={
            "caregiver_id": auth.user_id,
            "tracker_type": result.tracker_type.value,
            "confidence": result.confidence,
        },
    )
    return result
