"""Pydantic schemas shared across the API."""
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator


def as_utc(value: datetime) -> datetime:
    """Normalize a datetime to an aware UTC instant (naive values are UTC)."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class BlockType(str, Enum):
    CARE = "care"
    REST = "rest"


class CaregiverRole(str, Enum):
    PRIMARY = "primary"
    MEMBER = "member"


class TrackerType(str, Enum):
    SLEEP = "sleep"
    FEEDING = "feeding"
    DIAPER = "diaper"
    GROWTH = "growth"
    PUMPING = "pumping"


class _Instants(BaseModel):
    @field_validator("*", mode="after")
    @classmethod
    def _normalize_instants(cls, value: Any) -> Any:
        if isinstance(value, datetime):
            return as_utc(value)
        return value


class Baby(_Instants):
    id: str
    name: str
    birth_date: Optional[str] = None
    created_at: Optional[datetime] = None
    recovering_caregiver_id: Optional[str] = None


class BabyCaregiver(_Instants):
    baby_id: str
    user_id: str
    role: CaregiverRole = CaregiverRole.MEMBER
    display_name: str = ""
    joined_at: Optional[datetime] = None


class TimeBlock(_Instants):
    id: str
    baby_id: str
    caregiver_id: str
    block_type: BlockType
    start_time: datetime
    end_time: datetime
    notes: Optional[str] = None
    created_at: Optional[datetime] = None

    def contains(self, instant: datetime) -> bool:
        """Half-open containment: start inclusive, end exclusive."""
        return self.start_time <= instant < self.end_time


class StandingSession(_Instants):
    id: str
    baby_id: str
    caregiver_id: str
    start_time: datetime
    end_time: Optional[datetime] = None

    @property
    def is_active(self) -> bool:
        return self.end_time is None


class BabyInvite(_Instants):
    id: str
    baby_id: str
    code: str
    created_by: str
    expires_at: datetime
    used_by: Optional[str] = None
    used_at: Optional[datetime] = None
    created_at: Optional[datetime] = None


class Inconsistency(BaseModel):
    kind: str
    block_ids: List[str] = Field(default_factory=list)
    message: str


class RestingCaregiver(BaseModel):
    caregiver_id: str
    display_name: str = ""
    is_resting: bool = False
    rest_duration: timedelta = timedelta(0)
    label: str = "Standby"


class RestCoverage(BaseModel):
    rest_hours: float
    is_adequate: bool


class MomRecoveryStatus(BaseModel):
    total_rest_hours_today: float
    is_protected: bool


class CaregiverWorkload(BaseModel):
    caregiver_id: str
    display_name: str = ""
    care_hours: float
    rest: RestCoverage


class FamilyStatus(BaseModel):
    baby_id: str
    generated_at: datetime
    current_shift: Optional[TimeBlock] = None
    on_duty_caregiver_id: Optional[str] = None
    on_duty_name: Optional[str] = None
    on_duty_duration: timedelta = timedelta(0)
    on_duty_label: Optional[str] = None
    resting: List[RestingCaregiver] = Field(default_factory=list)
    workload: List[CaregiverWorkload] = Field(default_factory=list)
    recovery: Optional[MomRecoveryStatus] = None
    active_standing: Optional[StandingSession] = None
    active_standing_timer: Optional[str] = None
    standing_today: timedelta = timedelta(0)
    standing_rest_recommended: bool = False
    handoff_targets: List[str] = Field(default_factory=list)
    inconsistencies: List[Inconsistency] = Field(default_factory=list)


class HandoffResult(BaseModel):
    closed_block: TimeBlock
    new_block: TimeBlock


class VoiceParseRequest(BaseModel):
    transcript: str = Field(..., description="Raw speech-to-text transcript")
    tracker_type: str = Field(..., description="sleep | feeding | diaper | growth | pumping")
    language: Optional[str] = Field(default="en", description="en | zh")
    timezone: Optional[str] = Field(default=None, description="Client IANA timezone")
    local_time: Optional[str] = Field(
        default=None, description="Client wall-clock time, preferred over server conversion"
    )


class VoiceParseResult(BaseModel):
    tracker_type: TrackerType
    data: Dict[str, Any] = Field(default_factory=dict)
    confidence: str = "medium"
