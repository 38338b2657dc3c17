from __future__ import annotations

import asyncio
from datetime import date, datetime, time, timedelta, timezone
from uuid import uuid4
from zoneinfo import ZoneInfo

import pytest
from fastapi import HTTPException

from babystep.errors import NotFound, PreconditionFailed, Unauthorized
from babystep.schemas import BlockType, StandingSession, TimeBlock
from babystep.shift_engine import current_shift
from babystep.shift_operations import (
    anchor_interval,
    delete_block,
    extend_shift,
    handoff_shift,
    log_past_shift,
    start_shift,
    start_standing,
    stop_standing,
)

BABY = str(uuid4())
ALICE = str(uuid4())
BOB = str(uuid4())
T0 = datetime(2026, 3, 1, 20, 0, tzinfo=timezone.utc)


class FakeStore:
    """In-memory stand-in for IntervalStore."""

    def __init__(self):
        self.blocks = {}
        self.sessions = {}
        self.fail_block_insert = False

    async def list_by_baby(self, baby_id):
        blocks = [b for b in self.blocks.values() if b.baby_id == baby_id]
        sessions = [s for s in self.sessions.values() if s.baby_id == baby_id]
        return (
            sorted(blocks, key=lambda b: b.start_time, reverse=True),
            sorted(sessions, key=lambda s: s.start_time, reverse=True),
        )

    async def get_block(self, block_id):
        return self.blocks.get(block_id)

    async def insert_block(self, *, baby_id, caregiver_id, block_type, start_time, end_time, notes=None):
        if self.fail_block_insert:
            raise HTTPException(status_code=503, detail="Supabase insert failed")
        block = TimeBlock(
            id=str(uuid4()),
            baby_id=baby_id,
            caregiver_id=caregiver_id,
            block_type=block_type,
            start_time=start_time,
            end_time=end_time,
            notes=notes,
        )
        self.blocks[block.id] = block
        return block

    async def update_block(self, block_id, **changes):
        block = self.blocks.get(block_id)
        if block is None:
            raise NotFound(f"time block {block_id} not found")
        updated = block.model_copy(update=changes)
        self.blocks[block_id] = updated
        return updated

    async def delete_block(self, block_id):
        self.blocks.pop(block_id, None)

    async def insert_session(self, *, baby_id, caregiver_id, start_time):
        session = StandingSession(
            id=str(uuid4()), baby_id=baby_id, caregiver_id=caregiver_id, start_time=start_time
        )
        self.sessions[session.id] = session
        return session

    async def get_session(self, session_id):
        return self.sessions.get(session_id)

    async def update_session(self, session_id, *, end_time):
        session = self.sessions.get(session_id)
        if session is None:
            raise NotFound(f"standing session {session_id} not found")
        updated = session.model_copy(update={"end_time": end_time})
        self.sessions[session_id] = updated
        return updated


def _active_care(store, now):
    return [b for b in store.blocks.values() if b.block_type == BlockType.CARE and b.contains(now)]


def test_start_handoff_extend_scenario():
    store = FakeStore()

    started = asyncio.run(start_shift(store, BABY, ALICE, T0))
    assert (started.start_time, started.end_time) == (T0, T0 + timedelta(hours=2))

    handoff_at = T0 + timedelta(minutes=30)
    result = asyncio.run(handoff_shift(store, BABY, ALICE, BOB, handoff_at, started))
    assert result.closed_block.id == started.id
    assert result.closed_block.end_time == handoff_at
    # Remaining 1.5h beats the 1h floor, so the new block keeps it.
    assert result.new_block.caregiver_id == BOB
    assert result.new_block.start_time == handoff_at
    assert result.new_block.end_time == T0 + timedelta(hours=2)

    extended = asyncio.run(
        extend_shift(store, BABY, result.new_block, T0 + timedelta(minutes=40), delta=timedelta(minutes=30))
    )
    assert extended.end_time == T0 + timedelta(hours=2, minutes=30)


def test_handoff_leaves_exactly_one_active_care_block():
    store = FakeStore()
    block = asyncio.run(start_shift(store, BABY, ALICE, T0))
    now = T0 + timedelta(minutes=100)

    result = asyncio.run(handoff_shift(store, BABY, ALICE, BOB, now, block))

    assert _active_care(store, now) == [result.new_block]
    assert store.blocks[block.id].end_time == now
    assert result.new_block.end_time == now + timedelta(hours=1)


def test_handoff_preconditions():
    store = FakeStore()
    block = asyncio.run(start_shift(store, BABY, ALICE, T0))

    with pytest.raises(PreconditionFailed):
        asyncio.run(handoff_shift(store, BABY, BOB, ALICE, T0 + timedelta(minutes=5), block))
    with pytest.raises(PreconditionFailed):
        asyncio.run(handoff_shift(store, BABY, ALICE, ALICE, T0 + timedelta(minutes=5), block))
    with pytest.raises(PreconditionFailed):
        asyncio.run(handoff_shift(store, BABY, ALICE, BOB, T0 + timedelta(hours=3), block))


def test_handoff_insert_failure_leaves_no_active_shift():
    store = FakeStore()
    block = asyncio.run(start_shift(store, BABY, ALICE, T0))
    store.fail_block_insert = True
    now = T0 + timedelta(minutes=10)

    with pytest.raises(HTTPException):
        asyncio.run(handoff_shift(store, BABY, ALICE, BOB, now, block))

    assert store.blocks[block.id].end_time == now
    blocks, _ = asyncio.run(store.list_by_baby(BABY))
    assert current_shift(now, blocks) is None


def test_start_shift_rejects_when_already_on_duty():
    store = FakeStore()
    asyncio.run(start_shift(store, BABY, ALICE, T0))

    with pytest.raises(PreconditionFailed):
        asyncio.run(start_shift(store, BABY, BOB, T0 + timedelta(minutes=30)))

    # Once the block has ended a new shift may start.
    later = asyncio.run(start_shift(store, BABY, BOB, T0 + timedelta(hours=2)))
    assert later.caregiver_id == BOB


def test_extend_adds_the_delta_each_time():
    store = FakeStore()
    block = asyncio.run(start_shift(store, BABY, ALICE, T0))
    now = T0 + timedelta(minutes=10)

    once = asyncio.run(extend_shift(store, BABY, block, now))
    twice = asyncio.run(extend_shift(store, BABY, once, now))

    assert once.end_time == block.end_time + timedelta(minutes=30)
    assert twice.end_time == block.end_time + timedelta(hours=1)


def test_extend_rejects_inactive_or_non_positive():
    store = FakeStore()
    block = asyncio.run(start_shift(store, BABY, ALICE, T0))

    with pytest.raises(ValueError):
        asyncio.run(extend_shift(store, BABY, block, T0, delta=timedelta(0)))
    with pytest.raises(PreconditionFailed):
        asyncio.run(extend_shift(store, BABY, block, T0 + timedelta(hours=2)))


def test_anchor_interval_rolls_overnight_end_to_next_day():
    start, end = anchor_interval(time(22, 0), time(6, 0), date(2026, 3, 1))

    assert start == datetime(2026, 3, 1, 22, 0, tzinfo=timezone.utc)
    assert end == datetime(2026, 3, 2, 6, 0, tzinfo=timezone.utc)


def test_log_past_shift_uses_local_calendar_day():
    store = FakeStore()
    pacific = ZoneInfo("America/Los_Angeles")

    block = asyncio.run(
        log_past_shift(
            store,
            BABY,
            BOB,
            BlockType.REST,
            time(22, 0),
            time(6, 0),
            None,
            T0,
            tz=pacific,
            notes="night feeds",
        )
    )

    assert block.block_type == BlockType.REST
    assert block.start_time == datetime(2026, 3, 1, 22, 0, tzinfo=pacific)
    assert block.end_time == datetime(2026, 3, 2, 6, 0, tzinfo=pacific)
    assert block.notes == "night feeds"


def test_delete_block_authorization():
    store = FakeStore()
    block = asyncio.run(start_shift(store, BABY, ALICE, T0))

    with pytest.raises(Unauthorized):
        asyncio.run(delete_block(store, BABY, block.id, BOB, is_primary=False))
    asyncio.run(delete_block(store, BABY, block.id, BOB, is_primary=True))
    assert block.id not in store.blocks

    with pytest.raises(NotFound):
        asyncio.run(delete_block(store, BABY, block.id, ALICE, is_primary=True))


def test_own_block_can_be_deleted_by_member():
    store = FakeStore()
    block = asyncio.run(start_shift(store, BABY, BOB, T0))

    asyncio.run(delete_block(store, BABY, block.id, BOB, is_primary=False))

    assert store.blocks == {}


def test_standing_sessions_are_exclusive_per_baby():
    store = FakeStore()
    session = asyncio.run(start_standing(store, BABY, ALICE, T0))

    with pytest.raises(PreconditionFailed):
        asyncio.run(start_standing(store, BABY, BOB, T0 + timedelta(minutes=5)))

    stopped = asyncio.run(stop_standing(store, BABY, session.id, T0 + timedelta(minutes=20)))
    assert stopped.end_time == T0 + timedelta(minutes=20)
    assert stopped.is_active is False

    again = asyncio.run(start_standing(store, BABY, BOB, T0 + timedelta(minutes=30)))
    assert again.caregiver_id == BOB


def test_stop_unknown_session_is_not_found():
    with pytest.raises(NotFound):
        asyncio.run(stop_standing(FakeStore(), BABY, str(uuid4()), T0))


def test_delete_block_is_scoped_to_the_named_baby():
    store = FakeStore()
    other_baby = str(uuid4())
    block = asyncio.run(start_shift(store, other_baby, BOB, T0))

    # Primary on BABY says nothing about blocks that belong to another baby.
    with pytest.raises(NotFound):
        asyncio.run(delete_block(store, BABY, block.id, ALICE, is_primary=True))

    assert block.id in store.blocks


def test_stop_standing_is_scoped_to_the_named_baby():
    store = FakeStore()
    other_baby = str(uuid4())
    session = asyncio.run(start_standing(store, other_baby, BOB, T0))

    with pytest.raises(NotFound):
        asyncio.run(stop_standing(store, BABY, session.id, T0 + timedelta(minutes=5)))

    assert store.sessions[session.id].is_active is True
