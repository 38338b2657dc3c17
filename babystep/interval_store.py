"""Time block and standing session persistence over the Supabase REST API."""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple, Type, TypeVar

from pydantic import BaseModel, ValidationError

from .errors import NotFound
from .schemas import Baby, BabyCaregiver, BlockType, StandingSession, TimeBlock, as_utc
from .supabase import MEMBERSHIP_COLUMNS, SupabaseClient

logger = logging.getLogger(__name__)

TIME_BLOCKS = "time_blocks"
STANDING_SESSIONS = "standing_sessions"

BLOCK_COLUMNS = "id,baby_id,caregiver_id,block_type,start_time,end_time,notes,created_at"
SESSION_COLUMNS = "id,baby_id,caregiver_id,start_time,end_time"
MUTABLE_BLOCK_FIELDS = {"end_time", "notes"}

_Model = TypeVar("_Model", bound=BaseModel)


def to_wire(value: datetime) -> str:
    return as_utc(value).isoformat()


def _parse_rows(rows: List[Dict[str, Any]], model: Type[_Model], table: str) -> List[_Model]:
    parsed: List[_Model] = []
    for row in rows:
        try:
            parsed.append(model.model_validate(row))
        except ValidationError:
            logger.warning("skipping malformed row", extra={"table": table, "row_id": row.get("id")})
    return parsed


def _first(rows: List[Dict[str, Any]], model: Type[_Model]) -> Optional[_Model]:
    if not rows:
        return None
    return model.model_validate(rows[0])


class IntervalStore:
    """Insert, update, delete and list a baby's intervals.

    Writes are single remote calls; callers sequence them. The store applies
    row-level authorization upstream but no interval-exclusion constraint.
    """

    def __init__(self, supabase: SupabaseClient):
        self.supabase = supabase

    async def list_by_baby(self, baby_id: str) -> Tuple[List[TimeBlock], List[StandingSession]]:
        params = {"baby_id": f"eq.{baby_id}", "order": "start_time.desc"}
        block_rows = await self.supabase.select(TIME_BLOCKS, {**params, "select": BLOCK_COLUMNS})
        session_rows = await self.supabase.select(
            STANDING_SESSIONS, {**params, "select": SESSION_COLUMNS}
        )
        return (
            _parse_rows(block_rows, TimeBlock, TIME_BLOCKS),
            _parse_rows(session_rows, StandingSession, STANDING_SESSIONS),
        )

    async def get_block(self, block_id: str) -> Optional[TimeBlock]:
        rows = await self.supabase.select(
            TIME_BLOCKS,
            {"select": BLOCK_COLUMNS, "id": f"eq.{block_id}", "limit": "1"},
        )
        return _first(rows, TimeBlock)

    async def get_session(self, session_id: str) -> Optional[StandingSession]:
        rows = await self.supabase.select(
            STANDING_SESSIONS,
            {"select": SESSION_COLUMNS, "id": f"eq.{session_id}", "limit": "1"},
        )
        return _first(rows, StandingSession)

    async def insert_block(
        self,
        *,
        baby_id: str,
        caregiver_id: str,
        block_type: BlockType,
        start_time: datetime,
        end_time: datetime,
        notes: Optional[str] = None,
    ) -> TimeBlock:
        rows = await self.supabase.insert(
            TIME_BLOCKS,
            {
                "baby_id": baby_id,
                "caregiver_id": caregiver_id,
                "block_type": block_type.value,
                "start_time": to_wire(start_time),
                "end_time": to_wire(end_time),
                "notes": notes,
            },
        )
        block = _first(rows, TimeBlock)
        if block is None:
            raise RuntimeError("time block insert returned no row")
        return block

    async def update_block(self, block_id: str, **changes: Any) -> TimeBlock:
        illegal = set(changes) - MUTABLE_BLOCK_FIELDS
        if illegal:
            raise ValueError(f"time block fields are immutable: {sorted(illegal)}")
        payload = {
            key: to_wire(value) if isinstance(value, datetime) else value
            for key, value in changes.items()
        }
        rows = await self.supabase.update(TIME_BLOCKS, payload, params={"id": f"eq.{block_id}"})
        block = _first(rows, TimeBlock)
        if block is None:
            raise NotFound(f"time block {block_id} not found")
        return block

    async def delete_block(self, block_id: str) -> None:
        await self.supabase.delete(TIME_BLOCKS, params={"id": f"eq.{block_id}"})

    async def insert_session(
        self, *, baby_id: str, caregiver_id: str, start_time: datetime
    ) -> StandingSession:
        rows = await self.supabase.insert(
            STANDING_SESSIONS,
            {
                "baby_id": baby_id,
                "caregiver_id": caregiver_id,
                "start_time": to_wire(start_time),
                "end_time": None,
            },
        )
        session = _first(rows, StandingSession)
        if session is None:
            raise RuntimeError("standing session insert returned no row")
        return session

    async def update_session(self, session_id: str, *, end_time: datetime) -> StandingSession:
        rows = await self.supabase.update(
            STANDING_SESSIONS,
            {"end_time": to_wire(end_time)},
            params={"id": f"eq.{session_id}"},
        )
        session = _first(rows, StandingSession)
        if session is None:
            raise NotFound(f"standing session {session_id} not found")
        return session

    async def get_baby(self, baby_id: str) -> Optional[Baby]:
        rows = await self.supabase.select(
            "babies",
            {
                "select": "id,name,birth_date,created_at,recovering_caregiver_id",
                "id": f"eq.{baby_id}",
                "limit": "1",
            },
        )
        return _first(rows, Baby)

    async def list_caregivers(self, baby_id: str) -> List[BabyCaregiver]:
        rows = await self.supabase.select(
            "baby_caregivers",
            {"select": MEMBERSHIP_COLUMNS, "baby_id": f"eq.{baby_id}", "order": "joined_at.asc"},
        )
        return _parse_rows(rows, BabyCaregiver, "baby_caregivers")
