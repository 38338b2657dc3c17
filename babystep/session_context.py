"""Per-caregiver session state: the selected baby and a pending signup action.

State lives in an injected key-value storage; the registry hands each signed-in
caregiver their own, created on first use and cleared at sign-out.
"""
from __future__ import annotations

import json
import logging
from typing import Annotated, Callable, Dict, List, Literal, Optional, Protocol, Union

from fastapi import HTTPException
from pydantic import BaseModel, Field, TypeAdapter, ValidationError, field_validator

from .config import CONFIG
from .invites import check_invite_code, create_baby, redeem_invite
from .supabase import SupabaseClient

logger = logging.getLogger(__name__)

SELECTED_BABY_KEY = "babystep-selected-baby"
PENDING_ACTION_KEY = "babystep-pending-signup-action"


class KeyValueStorage(Protocol):
    def get(self, key: str) -> Optional[str]: ...

    def set(self, key: str, value: str) -> None: ...

    def delete(self, key: str) -> None: ...


class InMemoryStorage:
    def __init__(self) -> None:
        self._values: Dict[str, str] = {}

    def get(self, key: str) -> Optional[str]:
        return self._values.get(key)

    def set(self, key: str, value: str) -> None:
        self._values[key] = value

    def delete(self, key: str) -> None:
        self._values.pop(key, None)


class CreateBabyAction(BaseModel):
    type: Literal["create_baby"] = "create_baby"
    baby_name: str = Field(..., min_length=1, max_length=100)
    display_name: str = Field(..., min_length=1, max_length=50)


class RedeemInviteAction(BaseModel):
    type: Literal["redeem_invite"] = "redeem_invite"
    code: str
    display_name: str = Field(..., min_length=1, max_length=50)

    @field_validator("code")
    @classmethod
    def _code_fits_configured_length(cls, value: str) -> str:
        return check_invite_code(value, CONFIG.invite_code_length)


PendingAction = Annotated[Union[CreateBabyAction, RedeemInviteAction], Field(discriminator="type")]
_pending_adapter: TypeAdapter[PendingAction] = TypeAdapter(PendingAction)


class SessionContext:
    def __init__(self, storage: KeyValueStorage, user_id: Optional[str] = None):
        self.storage = storage
        self.user_id = user_id

    def sign_in(self, user_id: str) -> None:
        self.user_id = user_id

    def sign_out(self) -> None:
        self.user_id = None
        for key in (SELECTED_BABY_KEY, PENDING_ACTION_KEY):
            self.storage.delete(key)

    def select_baby(self, baby_id: str) -> None:
        self.storage.set(SELECTED_BABY_KEY, baby_id)

    def selected_baby_id(self, available: List[str]) -> Optional[str]:
        """Stored selection if still available, else the first available baby."""
        stored = self.storage.get(SELECTED_BABY_KEY)
        if stored and stored in available:
            return stored
        if not available:
            return None
        self.storage.set(SELECTED_BABY_KEY, available[0])
        return available[0]

    def set_pending_action(self, action: PendingAction) -> None:
        self.storage.set(PENDING_ACTION_KEY, action.model_dump_json())

    def pending_action(self) -> Optional[PendingAction]:
        raw = self.storage.get(PENDING_ACTION_KEY)
        if not raw:
            return None
        try:
            return _pending_adapter.validate_python(json.loads(raw))
        except (json.JSONDecodeError, ValidationError):
            logger.warning("discarding invalid pending action")
            return None

    def clear_pending_action(self) -> None:
        self.storage.delete(PENDING_ACTION_KEY)


class SessionRegistry:
    """One session per signed-in caregiver for the life of the process."""

    def __init__(self, storage_factory: Callable[[], KeyValueStorage] = InMemoryStorage) -> None:
        self._storage_factory = storage_factory
        self._sessions: Dict[str, SessionContext] = {}

    def open(self, user_id: str) -> SessionContext:
        ctx = self._sessions.get(user_id)
        if ctx is None:
            ctx = SessionContext(self._storage_factory(), user_id)
            self._sessions[user_id] = ctx
        return ctx

    def close(self, user_id: str) -> None:
        ctx = self._sessions.pop(user_id, None)
        if ctx is not None:
            ctx.sign_out()


sessions = SessionRegistry()


async def run_pending_action(ctx: SessionContext, supabase: SupabaseClient) -> Optional[str]:
    """Execute the stored signup action once; it is cleared whatever the outcome.

    Returns the action type that ran, or ``None`` when nothing was pending.
    """
    if ctx.user_id is None:
        return None
    action = ctx.pending_action()
    if action is None:
        ctx.clear_pending_action()
        return None
    try:
        if isinstance(action, CreateBabyAction):
            await create_baby(supabase, action.baby_name, action.display_name)
        else:
            await redeem_invite(supabase, action.code, action.display_name)
    except HTTPException:
        logger.warning("pending signup action failed", extra={"action": action.type})
        raise
    finally:
        ctx.clear_pending_action()
    logger.info("pending signup action completed", extra={"action": action.type})
    return action.type
