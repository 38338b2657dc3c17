from __future__ import annotations

import asyncio
import json
from uuid import uuid4

import pytest
from fastapi import HTTPException

from babystep.config import CONFIG
from babystep.session_context import (
    PENDING_ACTION_KEY,
    SELECTED_BABY_KEY,
    CreateBabyAction,
    InMemoryStorage,
    RedeemInviteAction,
    SessionContext,
    SessionRegistry,
    run_pending_action,
)

from .supabase_fakes import FakeSupabase


class FailingSupabase(FakeSupabase):
    async def rpc(self, fn, payload=None):
        raise HTTPException(status_code=400, detail="invite expired")


def test_selected_baby_falls_back_to_first_available():
    storage = InMemoryStorage()
    ctx = SessionContext(storage, user_id="user-1")
    first, second = str(uuid4()), str(uuid4())

    assert ctx.selected_baby_id([]) is None
    assert ctx.selected_baby_id([first, second]) == first

    ctx.select_baby(second)
    assert ctx.selected_baby_id([first, second]) == second

    # Removed from the second baby: selection moves back to the first.
    assert ctx.selected_baby_id([first]) == first
    assert storage.get(SELECTED_BABY_KEY) == first


def test_pending_action_round_trip_and_sign_out():
    storage = InMemoryStorage()
    ctx = SessionContext(storage)
    ctx.sign_in("user-1")
    ctx.select_baby("baby-1")
    ctx.set_pending_action(RedeemInviteAction(code="K7MP2Q", display_name="Grandma"))

    assert ctx.pending_action() == RedeemInviteAction(code="K7MP2Q", display_name="Grandma")

    ctx.sign_out()
    assert ctx.user_id is None
    assert storage.get(SELECTED_BABY_KEY) is None
    assert storage.get(PENDING_ACTION_KEY) is None


@pytest.mark.parametrize(
    "raw",
    [
        "not json",
        json.dumps({"type": "delete_everything"}),
        json.dumps({"type": "create_baby", "baby_name": "x" * 101, "display_name": "Alice"}),
        json.dumps({"type": "redeem_invite", "code": "TOOLONG", "display_name": "Bob"}),
        json.dumps({"type": "redeem_invite", "code": "ABC234", "display_name": "y" * 51}),
    ],
)
def test_invalid_pending_actions_are_ignored(raw):
    storage = InMemoryStorage()
    storage.set(PENDING_ACTION_KEY, raw)

    assert SessionContext(storage, user_id="user-1").pending_action() is None


def test_run_pending_create_baby_once():
    ctx = SessionContext(InMemoryStorage(), user_id="user-1")
    ctx.set_pending_action(CreateBabyAction(baby_name="Mia", display_name="Alice"))
    fake = FakeSupabase()

    assert asyncio.run(run_pending_action(ctx, fake)) == "create_baby"
    assert fake.calls == [
        ("rpc", "create_baby_with_caregiver", {"_name": "Mia", "_birth_date": None, "_display_name": "Alice"})
    ]
    assert asyncio.run(run_pending_action(ctx, fake)) is None
    assert len(fake.calls) == 1


def test_failed_pending_action_is_still_cleared():
    storage = InMemoryStorage()
    ctx = SessionContext(storage, user_id="user-1")
    ctx.set_pending_action(RedeemInviteAction(code="ABC234", display_name="Bob"))

    with pytest.raises(HTTPException):
        asyncio.run(run_pending_action(ctx, FailingSupabase()))

    assert storage.get(PENDING_ACTION_KEY) is None


def test_pending_action_waits_for_sign_in():
    ctx = SessionContext(InMemoryStorage())
    ctx.set_pending_action(RedeemInviteAction(code="ABC234", display_name="Bob"))

    assert asyncio.run(run_pending_action(ctx, FakeSupabase())) is None
    assert ctx.pending_action() is not None


def test_pending_invite_code_is_normalized_and_follows_config(monkeypatch):
    assert RedeemInviteAction(code=" k7mp2q ", display_name="Bob").code == "K7MP2Q"

    monkeypatch.setattr(CONFIG, "invite_code_length", 8)
    assert RedeemInviteAction(code="K7MP2QRS", display_name="Bob").code == "K7MP2QRS"


def test_registry_keeps_one_session_per_caregiver():
    registry = SessionRegistry()
    alice = registry.open("alice")
    alice.select_baby("baby-1")

    assert registry.open("alice") is alice
    assert registry.open("bob").selected_baby_id([]) is None

    registry.close("alice")
    assert alice.user_id is None
    assert registry.open("alice").selected_baby_id(["baby-2"]) == "baby-2"
