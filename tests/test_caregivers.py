from __future__ import annotations

import asyncio
import os
from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest
from fastapi.testclient import TestClient
from pydantic import ValidationError

os.environ.setdefault("SUPABASE_URL", "http://localhost:54321")
os.environ.setdefault("SUPABASE_ANON_KEY", "test-anon-key")

from babystep.config import CONFIG, AppConfig  # noqa: E402
from babystep.invites import (  # noqa: E402
    INVITE_CHARS,
    create_invite,
    generate_invite_code,
    normalize_code,
    redeem_invite,
)
from babystep.main import app  # noqa: E402
from babystep.supabase import get_auth_context  # noqa: E402

from .supabase_fakes import FakeSupabase, auth_for, membership  # noqa: E402

BABY = str(uuid4())
ALICE = str(uuid4())
BOB = str(uuid4())
T0 = datetime(2026, 3, 1, 20, 0, tzinfo=timezone.utc)


@pytest.fixture
def make_client(monkeypatch):
    monkeypatch.setattr("babystep.routes.caregivers.utcnow", lambda: T0)

    def _make(fake: FakeSupabase, user_id: str = ALICE, role: str = "primary") -> TestClient:
        auth = auth_for(fake, user_id, [membership(BABY, user_id, role)])
        app.dependency_overrides[get_auth_context] = lambda: auth
        return TestClient(app)

    yield _make
    app.dependency_overrides.clear()


def _fake() -> FakeSupabase:
    return FakeSupabase(
        {
            "baby_caregivers": [
                membership(BABY, ALICE, "primary", "Alice"),
                membership(BABY, BOB, "member", "Bob"),
            ],
            "baby_invites": [],
        }
    )


def test_invite_codes_avoid_ambiguous_characters():
    for _ in range(50):
        code = generate_invite_code()
        assert len(code) == 6
        assert set(code) <= set(INVITE_CHARS)
    assert not set("01IO") & set(INVITE_CHARS)
    assert normalize_code("  abc234 ") == "ABC234"


def test_create_invite_expires_after_a_week():
    fake = _fake()

    invite = asyncio.run(create_invite(fake, BABY, ALICE, T0))

    assert invite.baby_id == BABY
    assert invite.created_by == ALICE
    assert invite.expires_at == T0 + timedelta(days=7)
    assert fake.tables["baby_invites"][0]["code"] == invite.code


def test_redeem_invite_normalizes_code():
    fake = FakeSupabase()
    fake.rpc_results["redeem_invite"] = BABY

    result = asyncio.run(redeem_invite(fake, " k7mp2q ", " Grandma "))

    assert result == BABY
    assert fake.calls[-1] == ("rpc", "redeem_invite", {"_code": "K7MP2Q", "_display_name": "Grandma"})


def test_invite_endpoints(make_client):
    fake = _fake()
    client = make_client(fake)

    resp = client.post(f"/api/v1/babies/{BABY}/invites")
    assert resp.status_code == 200
    code = resp.json()["code"]

    resp = client.get(f"/api/v1/babies/{BABY}/invites")
    assert resp.status_code == 200
    assert [row["code"] for row in resp.json()] == [code]


def test_redeem_endpoint_validates_code_length(make_client):
    client = make_client(FakeSupabase())

    resp = client.post("/api/v1/invites/redeem", json={"code": "TOOLONG1", "display_name": "Bob"})

    assert resp.status_code == 422


def test_create_baby_uses_backend_procedure(make_client):
    fake = FakeSupabase()
    fake.rpc_results["create_baby_with_caregiver"] = {"id": BABY}
    client = make_client(fake)

    resp = client.post("/api/v1/babies", json={"name": "Mia", "display_name": "Alice"})

    assert resp.status_code == 200
    assert resp.json() == {"result": {"id": BABY}}
    assert fake.calls[-1] == (
        "rpc",
        "create_baby_with_caregiver",
        {"_name": "Mia", "_birth_date": None, "_display_name": "Alice"},
    )


def test_only_primary_removes_caregivers(make_client):
    fake = _fake()

    member = make_client(fake, user_id=BOB, role="member")
    resp = member.delete(f"/api/v1/babies/{BABY}/caregivers/{ALICE}")
    assert resp.status_code == 403

    primary = make_client(fake)
    resp = primary.delete(f"/api/v1/babies/{BABY}/caregivers/{ALICE}")
    assert resp.status_code == 400

    resp = primary.delete(f"/api/v1/babies/{BABY}/caregivers/{BOB}")
    assert resp.status_code == 204
    assert [row["user_id"] for row in fake.tables["baby_caregivers"]] == [ALICE]


def test_list_caregivers(make_client):
    client = make_client(_fake(), user_id=BOB, role="member")

    resp = client.get(f"/api/v1/babies/{BABY}/caregivers")

    assert resp.status_code == 200
    assert [row["display_name"] for row in resp.json()] == ["Alice", "Bob"]


def test_redeem_endpoint_normalizes_padded_lowercase_code(make_client):
    fake = FakeSupabase()
    fake.rpc_results["redeem_invite"] = BABY
    client = make_client(fake)

    resp = client.post("/api/v1/invites/redeem", json={"code": " abc234 ", "display_name": "Bob"})

    assert resp.status_code == 200
    assert fake.calls[-1] == ("rpc", "redeem_invite", {"_code": "ABC234", "_display_name": "Bob"})


def test_redeem_endpoint_follows_configured_code_length(make_client, monkeypatch):
    fake = FakeSupabase()
    client = make_client(fake)
    body = {"code": "K7MP2QRS", "display_name": "Bob"}

    monkeypatch.setattr(CONFIG, "invite_code_length", 8)
    assert client.post("/api/v1/invites/redeem", json=body).status_code == 200

    monkeypatch.setattr(CONFIG, "invite_code_length", 6)
    assert client.post("/api/v1/invites/redeem", json=body).status_code == 422
    assert client.post("/api/v1/invites/redeem", json={"code": "   ", "display_name": "Bob"}).status_code == 422


def test_configured_code_length_is_bounded():
    with pytest.raises(ValidationError):
        AppConfig(invite_code_length=40)
