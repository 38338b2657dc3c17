"""Caregiver-initiated shift and standing-session transitions.

Per baby, on-duty status is either no active shift or a shift held by one
caregiver. Each transition here is one or two sequential store writes with no
transaction around them. Handoff in particular closes the old block before
inserting the new one; if the insert fails the baby is left without an active
shift, which callers recover from by starting a new shift.
"""
from __future__ import annotations

import logging
from datetime import date, datetime, time, timedelta, timezone, tzinfo
from typing import Optional, Tuple

from .errors import NotFound, PreconditionFailed, Unauthorized
from .interval_store import IntervalStore
from .schemas import BlockType, HandoffResult, StandingSession, TimeBlock
from .shift_engine import active_standing_session, current_shift, find_care_overlaps

logger = logging.getLogger(__name__)

DEFAULT_SHIFT_LENGTH = timedelta(hours=2)
HANDOFF_FLOOR = timedelta(hours=1)
EXTEND_STEP = timedelta(minutes=30)


async def _report_overlaps(store: IntervalStore, block: TimeBlock) -> None:
    # Check-then-insert is not atomic; a concurrent start elsewhere shows up here.
    blocks, _ = await store.list_by_baby(block.baby_id)
    for issue in find_care_overlaps(blocks):
        if block.id in issue.block_ids:
            logger.warning(
                "care block overlaps after write",
                extra={"baby_id": block.baby_id, "block_ids": issue.block_ids},
            )


def _require_active(block: TimeBlock, baby_id: str, now: datetime) -> None:
    if block.block_type != BlockType.CARE or block.baby_id != baby_id:
        raise PreconditionFailed(f"block {block.id} is not a care shift for baby {baby_id}")
    if not block.contains(now):
        raise PreconditionFailed(f"shift {block.id} is not active")


async def start_shift(
    store: IntervalStore,
    baby_id: str,
    caregiver_id: str,
    now: datetime,
    *,
    length: timedelta = DEFAULT_SHIFT_LENGTH,
) -> TimeBlock:
    blocks, _ = await store.list_by_baby(baby_id)
    active = current_shift(now, blocks)
    if active is not None:
        raise PreconditionFailed(
            f"caregiver {active.caregiver_id} is already on duty until {active.end_time.isoformat()}"
        )
    block = await store.insert_block(
        baby_id=baby_id,
        caregiver_id=caregiver_id,
        block_type=BlockType.CARE,
        start_time=now,
        end_time=now + length,
    )
    logger.info(
        "shift started",
        extra={"baby_id": baby_id, "caregiver_id": caregiver_id, "block_id": block.id},
    )
    await _report_overlaps(store, block)
    return block


async def handoff_shift(
    store: IntervalStore,
    baby_id: str,
    from_caregiver_id: str,
    to_caregiver_id: str,
    now: datetime,
    current_block: TimeBlock,
    *,
    floor: timedelta = HANDOFF_FLOOR,
) -> HandoffResult:
    """Close ``current_block`` at ``now`` and open a care block for the new caregiver.

    The new block keeps the remainder of the original shift, but never less
    than ``floor``.
    """
    _require_active(current_block, baby_id, now)
    if current_block.caregiver_id != from_caregiver_id:
        raise PreconditionFailed(f"caregiver {from_caregiver_id} is not on duty")
    if to_caregiver_id == from_caregiver_id:
        raise PreconditionFailed("cannot hand a shift off to the caregiver already on duty")

    remaining = current_block.end_time - now
    closed = await store.update_block(current_block.id, end_time=now)
    try:
        new_block = await store.insert_block(
            baby_id=baby_id,
            caregiver_id=to_caregiver_id,
            block_type=BlockType.CARE,
            start_time=now,
            end_time=now + max(remaining, floor),
        )
    except Exception:
        logger.error(
            "handoff closed the old shift but the new one was not created",
            extra={"baby_id": baby_id, "block_id": closed.id, "caregiver_id": to_caregiver_id},
        )
        raise
    logger.info(
        "shift handed off",
        extra={
            "baby_id": baby_id,
            "caregiver_id": to_caregiver_id,
            "block_id": new_block.id,
            "closed_block_id": closed.id,
        },
    )
    await _report_overlaps(store, new_block)
    return HandoffResult(closed_block=closed, new_block=new_block)


async def extend_shift(
    store: IntervalStore,
    baby_id: str,
    block: TimeBlock,
    now: datetime,
    *,
    delta: timedelta = EXTEND_STEP,
) -> TimeBlock:
    # No cap on repeated extensions.
    if delta <= timedelta(0):
        raise ValueError("extension must be positive")
    _require_active(block, baby_id, now)
    extended = await store.update_block(block.id, end_time=block.end_time + delta)
    logger.info(
        "shift extended",
        extra={"baby_id": baby_id, "block_id": block.id, "end_time": extended.end_time.isoformat()},
    )
    return extended


def anchor_interval(
    start_clock: time,
    end_clock: time,
    today: date,
    tz: tzinfo = timezone.utc,
) -> Tuple[datetime, datetime]:
    """Place local clock times on ``today``; an end at or before the start means the next day."""
    start = datetime.combine(today, start_clock, tzinfo=tz)
    end = datetime.combine(today, end_clock, tzinfo=tz)
    if end <= start:
        end = datetime.combine(today + timedelta(days=1), end_clock, tzinfo=tz)
    return start, end


async def log_past_shift(
    store: IntervalStore,
    baby_id: str,
    caregiver_id: str,
    block_type: BlockType,
    start_clock: time,
    end_clock: time,
    today: Optional[date],
    now: datetime,
    *,
    tz: tzinfo = timezone.utc,
    notes: Optional[str] = None,
) -> TimeBlock:
    # Manual backfill is trusted: no overlap validation.
    anchor_day = today or now.astimezone(tz).date()
    start, end = anchor_interval(start_clock, end_clock, anchor_day, tz)
    block = await store.insert_block(
        baby_id=baby_id,
        caregiver_id=caregiver_id,
        block_type=block_type,
        start_time=start,
        end_time=end,
        notes=notes,
    )
    logger.info(
        "time block logged",
        extra={"baby_id": baby_id, "caregiver_id": caregiver_id, "block_id": block.id},
    )
    return block


async def delete_block(
    store: IntervalStore,
    baby_id: str,
    block_id: str,
    requester_id: str,
    is_primary: bool,
) -> None:
    # ``is_primary`` describes the caller's role on ``baby_id`` only.
    block = await store.get_block(block_id)
    if block is None or block.baby_id != baby_id:
        raise NotFound(f"time block {block_id} not found for baby {baby_id}")
    if not (is_primary or block.caregiver_id == requester_id):
        raise Unauthorized("only the primary caregiver or the block's own caregiver may delete it")
    await store.delete_block(block_id)
    logger.info("time block deleted", extra={"baby_id": baby_id, "block_id": block_id})


async def start_standing(
    store: IntervalStore,
    baby_id: str,
    caregiver_id: str,
    now: datetime,
) -> StandingSession:
    _, sessions = await store.list_by_baby(baby_id)
    if active_standing_session(sessions, baby_id) is not None:
        raise PreconditionFailed("a standing session is already running for this baby")
    return await store.insert_session(baby_id=baby_id, caregiver_id=caregiver_id, start_time=now)


async def stop_standing(
    store: IntervalStore,
    baby_id: str,
    session_id: str,
    now: datetime,
) -> StandingSession:
    session = await store.get_session(session_id)
    if session is None or session.baby_id != baby_id:
        raise NotFound(f"standing session {session_id} not found for baby {baby_id}")
    stopped = await store.update_session(session_id, end_time=now)
    logger.info("standing session stopped", extra={"baby_id": baby_id, "session_id": session_id})
    return stopped
