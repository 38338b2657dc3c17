"""Domain errors raised by shift and standing-session transitions."""
from __future__ import annotations

from fastapi import HTTPException


class ShiftError(Exception):
    """Base class for transition failures surfaced to the caller."""

    status_code = 400


class PreconditionFailed(ShiftError):
    """The transition is not valid for the baby's current state."""

    status_code = 409


class Unauthorized(ShiftError):
    """The requesting caregiver lacks rights for this change."""

    status_code = 403


class NotFound(ShiftError):
    """The block or session no longer exists."""

    status_code = 404


def to_http(exc: ShiftError) -> HTTPException:
    return HTTPException(status_code=exc.status_code, detail=str(exc))
