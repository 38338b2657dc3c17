"""Caller-scoped access to the managed backend.

Every request carries the caller's own bearer token, so row-level policies in
the backend decide what a caregiver may read or write. Nothing here uses a
service-role key.
"""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Any, Dict, List, Optional
from uuid import UUID

import httpx
import jwt
from fastapi import Header, HTTPException
from jwt import PyJWKClient

logger = logging.getLogger(__name__)

MEMBERSHIP_COLUMNS = "baby_id,user_id,role,display_name,joined_at"
REQUEST_TIMEOUT_SECONDS = 15.0
AUTH_TIMEOUT_SECONDS = 10.0


@lru_cache
def _supabase_config() -> tuple[str, str]:
    url = os.getenv("SUPABASE_URL") or os.getenv("VITE_SUPABASE_URL")
    anon_key = os.getenv("SUPABASE_ANON_KEY") or os.getenv("VITE_SUPABASE_ANON_KEY")
    if not url or not anon_key:
        raise RuntimeError("Missing SUPABASE_URL/SUPABASE_ANON_KEY for API access.")
    return url.rstrip("/"), anon_key


@lru_cache
def _jwks_client() -> PyJWKClient:
    base_url, _ = _supabase_config()
    return PyJWKClient(os.getenv("SUPABASE_JWKS_URL") or f"{base_url}/auth/v1/keys")


def _parse_bearer_token(authorization: Optional[str]) -> str:
    if not authorization:
        raise HTTPException(status_code=401, detail="Missing authorization token.")
    scheme, _, token = authorization.strip().partition(" ")
    if scheme.lower() != "bearer" or not token or " " in token.strip():
        raise HTTPException(status_code=401, detail="Invalid authorization token.")
    return token.strip()


def resolve_uuid(value: Optional[str], label: str) -> str:
    """Canonical lowercase UUID string, or 400 naming the offending ``label``."""
    if not value:
        raise HTTPException(status_code=400, detail=f"Missing {label}.")
    try:
        return str(UUID(value))
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=f"Invalid {label}.") from exc


def _audience() -> Optional[str]:
    return os.getenv("SUPABASE_JWT_AUD", "authenticated") or None


def _decode_with_jwks(token: str) -> Optional[Dict[str, Any]]:
    audience = _audience()
    try:
        key = _jwks_client().get_signing_key_from_jwt(token).key
        return jwt.decode(
            token, key, algorithms=["RS256"], audience=audience, options={"verify_aud": bool(audience)}
        )
    except (jwt.PyJWTError, httpx.HTTPError):
        logger.debug("JWKS verification unavailable, trying shared secret")
        return None


def _decode_with_secret(token: str, secret: str) -> Dict[str, Any]:
    audience = _audience()
    try:
        return jwt.decode(
            token, secret, algorithms=["HS256"], audience=audience, options={"verify_aud": bool(audience)}
        )
    except jwt.PyJWTError as exc:
        raise HTTPException(status_code=401, detail="Invalid or expired token.") from exc


async def _fetch_user(token: str) -> Dict[str, Any]:
    base_url, anon_key = _supabase_config()
    async with httpx.AsyncClient(timeout=AUTH_TIMEOUT_SECONDS) as client:
        resp = await client.get(
            f"{base_url}/auth/v1/user",
            headers={"Authorization": f"Bearer {token}", "apikey": anon_key},
        )
    user = resp.json() if resp.status_code < 400 and resp.content else {}
    if not user.get("id"):
        raise HTTPException(status_code=401, detail="Invalid or expired token.")
    return {"sub": user["id"], "email": user.get("email")}


async def _verify_access_token(token: str) -> Dict[str, Any]:
    """Asymmetric keys first, then the project's shared secret, then the auth server."""
    claims = _decode_with_jwks(token)
    if claims is not None:
        return claims
    secret = os.getenv("SUPABASE_JWT_SECRET")
    if secret:
        return _decode_with_secret(token, secret)
    return await _fetch_user(token)


def _raise_for_status(resp: httpx.Response, action: str, target: str) -> None:
    if resp.status_code < 400:
        return
    logger.warning(
        "supabase request failed",
        extra={"action": action, "target": target, "status": resp.status_code},
    )
    raise HTTPException(
        status_code=resp.status_code,
        detail=f"Supabase {action} failed ({target}): status={resp.status_code}, body={resp.text or '<empty response>'}",
    )


@dataclass
class SupabaseClient:
    """PostgREST calls made on behalf of one authenticated caregiver."""

    base_url: str
    anon_key: str
    access_token: str
    timeout: float = field(default=REQUEST_TIMEOUT_SECONDS)

    def _headers(self, prefer: Optional[str] = None) -> Dict[str, str]:
        headers = {
            "apikey": self.anon_key,
            "Authorization": f"Bearer {self.access_token}",
            "Accept": "application/json",
            "Content-Type": "application/json",
        }
        if prefer:
            headers["Prefer"] = prefer
        return headers

    async def request(
        self,
        method: str,
        path: str,
        *,
        action: str,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Dict[str, Any]] = None,
        prefer: Optional[str] = None,
    ) -> Any:
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            resp = await client.request(
                method,
                f"{self.base_url}/rest/v1/{path}",
                params=params,
                json=json,
                headers=self._headers(prefer),
            )
        _raise_for_status(resp, action, path)
        return resp.json() if resp.content else None

    async def select(self, table: str, params: Dict[str, Any]) -> List[Dict[str, Any]]:
        return await self.request("GET", table, action="select", params=params) or []

    async def insert(
        self,
        table: str,
        payload: Dict[str, Any],
        *,
        params: Optional[Dict[str, Any]] = None,
    ) -> List[Dict[str, Any]]:
        rows = await self.request(
            "POST", table, action="insert", params=params, json=payload, prefer="return=representation"
        )
        return rows or []

    async def upsert(
        self,
        table: str,
        payload: Dict[str, Any],
        *,
        on_conflict: str,
    ) -> List[Dict[str, Any]]:
        rows = await self.request(
            "POST",
            table,
            action="upsert",
            params={"on_conflict": on_conflict},
            json=payload,
            prefer="resolution=merge-duplicates,return=representation",
        )
        return rows or []

    async def update(
        self, table: str, payload: Dict[str, Any], params: Dict[str, Any]
    ) -> List[Dict[str, Any]]:
        rows = await self.request(
            "PATCH", table, action="update", params=params, json=payload, prefer="return=representation"
        )
        return rows or []

    async def delete(self, table: str, params: Dict[str, Any]) -> None:
        await self.request("DELETE", table, action="delete", params=params)

    async def rpc(self, fn: str, payload: Optional[Dict[str, Any]] = None) -> Any:
        return await self.request("POST", f"rpc/{fn}", action="rpc", json=payload or {})


@dataclass
class AuthContext:
    user_id: str
    user_email: Optional[str]
    access_token: str
    supabase: SupabaseClient
    memberships: List[Dict[str, Any]]

    def membership(self, baby_id: str) -> Optional[Dict[str, Any]]:
        return next((row for row in self.memberships if row.get("baby_id") == baby_id), None)

    def require_baby(self, baby_id: str) -> Dict[str, Any]:
        """Return the caller's membership row for ``baby_id`` or reject with 403."""
        row = self.membership(baby_id)
        if row is None:
            raise HTTPException(status_code=403, detail="Baby access denied.")
        return row

    def is_primary(self, baby_id: str) -> bool:
        row = self.membership(baby_id)
        return bool(row) and row.get("role") == "primary"

    @property
    def baby_ids(self) -> List[str]:
        return [row["baby_id"] for row in self.memberships if row.get("baby_id")]


async def get_auth_context(
    authorization: Optional[str] = Header(None),
) -> AuthContext:
    token = _parse_bearer_token(authorization)
    claims = await _verify_access_token(token)
    user_id = resolve_uuid(claims.get("sub"), "user_id")

    base_url, anon_key = _supabase_config()
    supabase = SupabaseClient(base_url=base_url, anon_key=anon_key, access_token=token)
    memberships = await supabase.select(
        "baby_caregivers",
        {"select": MEMBERSHIP_COLUMNS, "user_id": f"eq.{user_id}"},
    )
    logger.debug("caller authenticated", extra={"caregiver_id": user_id, "babies": len(memberships)})
    return AuthContext(
        user_id=user_id,
        user_email=claims.get("email"),
        access_token=token,
        supabase=supabase,
        memberships=memberships,
    )
