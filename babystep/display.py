"""Human-readable labels for durations and duty status."""
from __future__ import annotations

from datetime import timedelta
from typing import Optional


def format_duration(value: timedelta) -> str:
    total_minutes = max(int(value.total_seconds() // 60), 0)
    if total_minutes < 60:
        return f"{total_minutes} min"
    hours, minutes = divmod(total_minutes, 60)
    return f"{hours}h {minutes}m" if minutes else f"{hours}h"


def format_timer(value: timedelta) -> str:
    total_seconds = max(int(value.total_seconds()), 0)
    hours, remainder = divmod(total_seconds, 3600)
    minutes, seconds = divmod(remainder, 60)
    if hours:
        return f"{hours}:{minutes:02d}:{seconds:02d}"
    return f"{minutes:02d}:{seconds:02d}"


def duty_label(*, on_duty: bool, is_resting: bool = False, elapsed: Optional[timedelta] = None) -> str:
    if on_duty:
        suffix = f" for {format_duration(elapsed)}" if elapsed is not None else ""
        return f"On duty{suffix}"
    if is_resting:
        suffix = f" for {format_duration(elapsed)}" if elapsed is not None else ""
        return f"Resting{suffix}"
    return "Standby"
