"""Derive live caregiving status from a baby's time blocks and standing sessions.

Every function here is a pure read over already-fetched records. Nothing is
cached between calls, so dashboards recompute from a fresh snapshot whenever a
change notification arrives. The read side never raises on partial data: it
returns empty or zero results instead.
"""
from __future__ import annotations

import logging
from datetime import date, datetime, timedelta, timezone, tzinfo
from itertools import combinations
from typing import Iterable, List, Optional, Sequence

from .display import duty_label, format_timer
from .schemas import (
    BabyCaregiver,
    BlockType,
    CaregiverWorkload,
    FamilyStatus,
    Inconsistency,
    MomRecoveryStatus,
    RestCoverage,
    RestingCaregiver,
    StandingSession,
    TimeBlock,
)

logger = logging.getLogger(__name__)

HOUR = timedelta(hours=1)
DEFAULT_WORKLOAD_WINDOW = timedelta(hours=12)
DEFAULT_REST_ADEQUACY_HOURS = 2.0
DEFAULT_STANDING_REST_REMINDER = timedelta(minutes=30)


def _local_date(instant: datetime, tz: tzinfo) -> date:
    return instant.astimezone(tz).date()


def _care_blocks(blocks: Iterable[TimeBlock]) -> List[TimeBlock]:
    return [block for block in blocks if block.block_type == BlockType.CARE]


def find_care_overlaps(blocks: Sequence[TimeBlock]) -> List[Inconsistency]:
    """Report every pair of care blocks for the same baby whose intervals intersect."""
    found: List[Inconsistency] = []
    for first, second in combinations(_care_blocks(blocks), 2):
        if first.baby_id != second.baby_id:
            continue
        if first.start_time < second.end_time and second.start_time < first.end_time:
            found.append(
                Inconsistency(
                    kind="overlapping_care_blocks",
                    block_ids=[first.id, second.id],
                    message=(
                        f"care blocks {first.id} and {second.id} overlap for baby {first.baby_id}"
                    ),
                )
            )
    return found


def current_shift(now: datetime, blocks: Sequence[TimeBlock]) -> Optional[TimeBlock]:
    """Return the care block containing ``now``.

    Overlapping care blocks are a data anomaly: the one with the latest start
    wins and the condition is logged, never raised.
    """
    active = [block for block in _care_blocks(blocks) if block.contains(now)]
    if not active:
        return None
    if len(active) > 1:
        logger.warning(
            "multiple active care blocks",
            extra={
                "baby_id": active[0].baby_id,
                "block_ids": [block.id for block in active],
            },
        )
    return max(active, key=lambda block: block.start_time)


def on_duty_duration(now: datetime, shift: Optional[TimeBlock]) -> timedelta:
    # Not clamped to the block's end: a stale shift keeps counting.
    if shift is None:
        return timedelta(0)
    return now - shift.start_time


def resting_caregivers(
    now: datetime,
    blocks: Sequence[TimeBlock],
    caregivers: Sequence[BabyCaregiver],
    exclude_id: Optional[str] = None,
) -> List[RestingCaregiver]:
    result: List[RestingCaregiver] = []
    for caregiver in caregivers:
        if exclude_id is not None and caregiver.user_id == exclude_id:
            continue
        rest_block = next(
            (
                block
                for block in blocks
                if block.block_type == BlockType.REST
                and block.caregiver_id == caregiver.user_id
                and block.contains(now)
            ),
            None,
        )
        result.append(
            RestingCaregiver(
                caregiver_id=caregiver.user_id,
                display_name=caregiver.display_name,
                is_resting=rest_block is not None,
                rest_duration=(now - rest_block.start_time) if rest_block else timedelta(0),
                label=duty_label(
                    on_duty=False,
                    is_resting=rest_block is not None,
                    elapsed=(now - rest_block.start_time) if rest_block else None,
                ),
            )
        )
    return result


def _clipped_hours(
    blocks: Iterable[TimeBlock],
    block_type: BlockType,
    caregiver_id: str,
    window_start: datetime,
    now: datetime,
) -> float:
    total = timedelta(0)
    for block in blocks:
        if block.block_type != block_type or block.caregiver_id != caregiver_id:
            continue
        start = max(block.start_time, window_start)
        end = min(block.end_time, now)
        if end > start:
            total += end - start
    return total / HOUR


def workload_hours(
    window: timedelta,
    now: datetime,
    blocks: Sequence[TimeBlock],
    caregiver_id: str,
) -> float:
    """Care hours for ``caregiver_id`` inside ``[now - window, now)``."""
    return _clipped_hours(blocks, BlockType.CARE, caregiver_id, now - window, now)


def rest_coverage(
    window: timedelta,
    now: datetime,
    blocks: Sequence[TimeBlock],
    caregiver_id: str,
    *,
    threshold_hours: float = DEFAULT_REST_ADEQUACY_HOURS,
) -> RestCoverage:
    rest_hours = _clipped_hours(blocks, BlockType.REST, caregiver_id, now - window, now)
    return RestCoverage(rest_hours=rest_hours, is_adequate=rest_hours >= threshold_hours)


def active_standing_session(
    sessions: Sequence[StandingSession], baby_id: str
) -> Optional[StandingSession]:
    return next(
        (session for session in sessions if session.baby_id == baby_id and session.is_active),
        None,
    )


def mom_recovery_status(
    now: datetime,
    blocks: Sequence[TimeBlock],
    recovering_caregiver_id: Optional[str],
    *,
    tz: tzinfo = timezone.utc,
    threshold_hours: float = DEFAULT_REST_ADEQUACY_HOURS,
) -> Optional[MomRecoveryStatus]:
    """Rest protection for the recovering caregiver.

    Only the block start is checked against the viewer's local date; durations
    are not clipped to the day. Overnight rest that began yesterday is excluded
    and rest that runs past midnight is counted in full.
    """
    if not recovering_caregiver_id:
        return None
    today = _local_date(now, tz)
    total = timedelta(0)
    for block in blocks:
        if block.block_type != BlockType.REST or block.caregiver_id != recovering_caregiver_id:
            continue
        if _local_date(block.start_time, tz) != today:
            continue
        total += max(block.end_time - block.start_time, timedelta(0))
    hours = total / HOUR
    return MomRecoveryStatus(total_rest_hours_today=hours, is_protected=hours >= threshold_hours)


def standing_total_today(
    now: datetime, sessions: Sequence[StandingSession], *, tz: tzinfo = timezone.utc
) -> timedelta:
    today = _local_date(now, tz)
    total = timedelta(0)
    for session in sessions:
        if _local_date(session.start_time, tz) != today:
            continue
        end = session.end_time or now
        total += max(end - session.start_time, timedelta(0))
    return total


def todays_blocks(
    blocks: Sequence[TimeBlock], today: date, *, tz: tzinfo = timezone.utc
) -> List[TimeBlock]:
    selected = [block for block in blocks if _local_date(block.start_time, tz) == today]
    return sorted(selected, key=lambda block: block.start_time)


def family_status(
    baby_id: str,
    now: datetime,
    blocks: Sequence[TimeBlock],
    sessions: Sequence[StandingSession],
    caregivers: Sequence[BabyCaregiver],
    recovering_caregiver_id: Optional[str] = None,
    *,
    tz: tzinfo = timezone.utc,
    workload_window: timedelta = DEFAULT_WORKLOAD_WINDOW,
    rest_threshold_hours: float = DEFAULT_REST_ADEQUACY_HOURS,
    standing_rest_reminder: timedelta = DEFAULT_STANDING_REST_REMINDER,
) -> FamilyStatus:
    """One snapshot of everything the family status dashboard shows."""
    names = {caregiver.user_id: caregiver.display_name for caregiver in caregivers}
    shift = current_shift(now, blocks)
    on_duty_id = shift.caregiver_id if shift else None
    elapsed = on_duty_duration(now, shift)

    workload = [
        CaregiverWorkload(
            caregiver_id=caregiver.user_id,
            display_name=caregiver.display_name,
            care_hours=workload_hours(workload_window, now, blocks, caregiver.user_id),
            rest=rest_coverage(
                workload_window,
                now,
                blocks,
                caregiver.user_id,
                threshold_hours=rest_threshold_hours,
            ),
        )
        for caregiver in caregivers
    ]
    standing_today = standing_total_today(now, sessions, tz=tz)
    standing = active_standing_session(sessions, baby_id)

    return FamilyStatus(
        baby_id=baby_id,
        generated_at=now,
        current_shift=shift,
        on_duty_caregiver_id=on_duty_id,
        on_duty_name=names.get(on_duty_id, "?") if on_duty_id else None,
        on_duty_duration=elapsed,
        on_duty_label=duty_label(on_duty=True, elapsed=elapsed) if shift else None,
        resting=resting_caregivers(now, blocks, caregivers, exclude_id=on_duty_id),
        workload=workload,
        recovery=mom_recovery_status(
            now,
            blocks,
            recovering_caregiver_id,
            tz=tz,
            threshold_hours=rest_threshold_hours,
        ),
        active_standing=standing,
        active_standing_timer=format_timer(now - standing.start_time) if standing else None,
        standing_today=standing_today,
        standing_rest_recommended=standing_today >= standing_rest_reminder,
        handoff_targets=[
            caregiver.user_id for caregiver in caregivers if caregiver.user_id != on_duty_id
        ],
        inconsistencies=find_care_overlaps(blocks),
    )

