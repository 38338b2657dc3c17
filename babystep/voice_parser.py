"""OpenAI integration for turning a caregiver's spoken transcript into tracker fields."""
from __future__ import annotations

import json
import logging
import time
from datetime import datetime
from functools import lru_cache
from typing import Any, Dict, List, Optional, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from openai import APIStatusError, OpenAI, RateLimitError

from .config import CONFIG
from .schemas import TrackerType, VoiceParseResult

logger = logging.getLogger(__name__)

CONFIDENCE_LEVELS = {"high", "medium", "low"}
RETRY_STATUS_CODES = {429, 503}
RETRY_BASE_DELAY_SECONDS = 1.0

BASE_PROMPT = """You are a parser for a baby tracking app. Given a natural language transcript from a caregiver, extract structured data for the "{tracker}" tracker. The user may speak in English or Chinese (Simplified).

Current date and time: {current_time}

Rules:
- If a field cannot be determined from the transcript, set it to null
- For relative times like "just now" or "an hour ago", compute from the current time
- For ambiguous times like "2pm", use today's date
- All times are in the user's local timezone shown above. Return datetime values as local times WITHOUT a Z suffix or timezone offset (e.g. "2026-02-17T14:00:00")
- Chinese input mappings: "母乳" = breastmilk, "配方奶" = formula, "即饮奶" = ready_to_feed, "湿" = wet, "脏" = dirty, "混合" = mixed, "干" = dry
- Return ONLY valid JSON, no markdown formatting or code blocks

"""

TRACKER_FIELDS: Dict[TrackerType, str] = {
    TrackerType.SLEEP: """Extract these fields:
- start_time: ISO 8601 datetime string, or null
- end_time: ISO 8601 datetime string, or null
- notes: any additional info not fitting other fields, or null

Respond with: {"data": {"start_time": ..., "end_time": ..., "notes": ...}, "confidence": "high"|"medium"|"low"}""",
    TrackerType.FEEDING: """Extract these fields:
- time: ISO 8601 datetime string (default: current time if not specified), or null
- feeding_type: one of "breastmilk", "formula", "ready_to_feed", or null
- volume_ml: number (milliliters), or null
- duration_minutes: number (primarily for breastmilk), or null
- notes: any additional info not fitting other fields, or null

Respond with: {"data": {"time": ..., "feeding_type": ..., "volume_ml": ..., "duration_minutes": ..., "notes": ...}, "confidence": "high"|"medium"|"low"}""",
    TrackerType.DIAPER: """Extract these fields:
- time: ISO 8601 datetime string (default: current time if not specified), or null
- status: one of "wet", "dirty", "mixed", "dry", or null
- notes: any additional info not fitting other fields, or null

Respond with: {"data": {"time": ..., "status": ..., "notes": ...}, "confidence": "high"|"medium"|"low"}""",
    TrackerType.GROWTH: """Extract these fields:
- date: ISO 8601 date string (default: today if not specified), or null
- weight_kg: number (kilograms, e.g. 4.5), or null
- height_cm: number (centimeters, e.g. 55.0), or null
- head_cm: number (head circumference in centimeters, e.g. 38.0), or null
- notes: any additional info not fitting other fields, or null

Chinese input mappings: "公斤/千克" = kg, "斤" = 0.5 kg, "厘米/公分" = cm, "头围" = head circumference, "身高/身长" = height, "体重" = weight

Respond with: {"data": {"date": ..., "weight_kg": ..., "height_cm": ..., "head_cm": ..., "notes": ...}, "confidence": "high"|"medium"|"low"}""",
    TrackerType.PUMPING: """Extract these fields:
- time: ISO 8601 datetime string (default: current time if not specified), or null
- duration_minutes: number (minutes), or null
- volume_ml: number (milliliters), or null
- side: one of "left", "right", "both", or null
- storage: one of "fed_immediately", "fridge", "freezer", or null
- notes: any additional info not fitting other fields, or null

Chinese input mappings: "左边/左侧/左" = left, "右边/右侧/右" = right, "双侧/两侧/两边" = both, "直接喂/直接吃" = fed_immediately, "冰箱/冷藏" = fridge, "冷冻/冻" = freezer

Respond with: {"data": {"time": ..., "duration_minutes": ..., "volume_ml": ..., "side": ..., "storage": ..., "notes": ...}, "confidence": "high"|"medium"|"low"}""",
}

CONFIDENCE_RULES = """

Set confidence to "low" if the transcript doesn't seem related to baby care or the tracker type.
Set confidence to "medium" if some fields are ambiguous or missing.
Set confidence to "high" if all relevant fields are clearly specified."""


@lru_cache
def get_client() -> OpenAI:
    if not CONFIG.openai_api_key:
        raise RuntimeError("Missing OpenAI API key for voice parsing.")
    return OpenAI(api_key=CONFIG.openai_api_key)


def resolve_tracker(tracker_type: str) -> TrackerType:
    try:
        return TrackerType((tracker_type or "").strip().lower())
    except ValueError as exc:
        valid = ", ".join(item.value for item in TrackerType)
        raise ValueError(f"tracker_type must be one of: {valid}") from exc


def describe_current_time(
    local_time: Optional[str], timezone: Optional[str], now: Optional[datetime] = None
) -> str:
    # The client's wall clock is preferred over server-side conversion.
    if local_time:
        return f"{local_time} (timezone: {timezone or 'unknown'})"
    zone_name = timezone or "UTC"
    try:
        zone = ZoneInfo(zone_name)
    except (ZoneInfoNotFoundError, ValueError):
        zone_name, zone = "UTC", ZoneInfo("UTC")
    current = (now or datetime.now(zone)).astimezone(zone)
    return f"{current.strftime('%A, %B %d, %Y %I:%M %p')} (timezone: {zone_name})"


def build_system_prompt(tracker: TrackerType, current_time: str) -> str:
    return (
        BASE_PROMPT.format(tracker=tracker.value, current_time=current_time)
        + TRACKER_FIELDS[tracker]
        + CONFIDENCE_RULES
    )


def _request_completion(messages: List[Dict[str, str]]) -> str:
    client = get_client()
    attempts = max(CONFIG.voice_max_attempts, 1)
    for attempt in range(attempts):
        if attempt:
            time.sleep(RETRY_BASE_DELAY_SECONDS * (2**attempt))
        try:
            response = client.chat.completions.create(
                model=CONFIG.openai_model,
                messages=messages,
                temperature=0.1,
                response_format={"type": "json_object"},
            )
        except (RateLimitError, APIStatusError) as exc:
            status = getattr(exc, "status_code", None)
            logger.warning(
                "voice parse request failed",
                extra={"attempt": attempt + 1, "status": status},
            )
            if status not in RETRY_STATUS_CODES or attempt == attempts - 1:
                raise
            continue
        return response.choices[0].message.content or ""
    raise RuntimeError("voice parse exhausted retries")


def _coerce_payload(payload: Any) -> Tuple[Dict[str, Any], str]:
    if not isinstance(payload, dict):
        return {}, "low"
    data = payload.get("data")
    confidence = payload.get("confidence") or "medium"
    if confidence not in CONFIDENCE_LEVELS:
        confidence = "low"
    return (data if isinstance(data, dict) else {}), confidence


def parse_transcript(
    transcript: str,
    tracker_type: str,
    *,
    language: Optional[str] = "en",
    timezone: Optional[str] = None,
    local_time: Optional[str] = None,
) -> VoiceParseResult:
    """Forward the transcript to the model and trust the JSON it returns."""
    text = (transcript or "").strip()
    if not text:
        raise ValueError("transcript is required")
    tracker = resolve_tracker(tracker_type)

    messages = [
        {
            "role": "system",
            "content": build_system_prompt(tracker, describe_current_time(local_time, timezone)),
        },
        {
            "role": "user",
            "content": f'Tracker type: {tracker.value}\nLanguage: {language or "en"}\nTranscript: "{text}"',
        },
    ]
    content = _request_completion(messages).strip().strip("`")
    try:
        payload = json.loads(content)
    except json.JSONDecodeError as exc:
        logger.exception("Failed to parse voice model JSON payload", exc_info=exc)
        raise RuntimeError("voice model returned invalid JSON") from exc

    data, confidence = _coerce_payload(payload)
    return VoiceParseResult(tracker_type=tracker, data=data, confidence=confidence)
