"""Daily digest of tracker activity with CSV exports."""
from __future__ import annotations

import csv
import io
import logging
from datetime import date, datetime, time, timedelta, tzinfo
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from pydantic import BaseModel, Field

from .interval_store import to_wire
from .supabase import SupabaseClient

logger = logging.getLogger(__name__)

DIGEST_CUTOFF = time(20, 0)
FORMULA_PREFIXES = ("=", "+", "-", "@", "\t", "\r")
CSV_BOM = "\ufeff"

TRACKER_SOURCES: Dict[str, Tuple[str, str, str]] = {
    # name: (table, timestamp column, selected columns)
    "sleep": (
        "sleep_sessions",
        "start_time",
        "baby_id,caregiver_id,start_time,end_time,duration_hours,notes",
    ),
    "diaper": ("diaper_changes", "changed_at", "baby_id,caregiver_id,changed_at,status,notes"),
    "feeding": (
        "feedings",
        "fed_at",
        "baby_id,caregiver_id,fed_at,feeding_type,volume_ml,duration_minutes,notes",
    ),
    "pumping": (
        "pumping_sessions",
        "pumped_at",
        "baby_id,caregiver_id,pumped_at,duration_minutes,volume_ml,side,storage,notes",
    ),
}


class DigestTotals(BaseModel):
    sleep_hours: float = 0.0
    sleep_sessions: int = 0
    feedings: int = 0
    feeding_volume_ml: float = 0.0
    diapers: int = 0
    pumping_sessions: int = 0
    pumped_volume_ml: float = 0.0


class DailyDigest(BaseModel):
    baby_names: List[str]
    day: date
    date_label: str
    window_start: datetime
    window_end: datetime
    totals: DigestTotals
    summary_lines: List[str] = Field(default_factory=list)
    attachments: Dict[str, str] = Field(default_factory=dict)


def digest_window(day: date, tz: tzinfo) -> Tuple[datetime, datetime]:
    """The 24 hours ending at the local evening cutoff on ``day``."""
    end = datetime.combine(day, DIGEST_CUTOFF, tzinfo=tz)
    return end - timedelta(hours=24), end


def escape_cell(value: Any) -> str:
    if value is None:
        return ""
    text = str(value)
    if text.startswith(FORMULA_PREFIXES):
        return "'" + text
    return text


def _parse_instant(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    ts = value.strip()
    if ts.endswith("Z"):
        ts = ts[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(ts)
    except ValueError:
        return None


def format_local(value: Optional[str], tz: tzinfo) -> str:
    parsed = _parse_instant(value)
    if parsed is None:
        return ""
    return parsed.astimezone(tz).strftime("%m/%d/%Y, %I:%M %p")


def _render_csv(header: Sequence[str], rows: Iterable[Sequence[Any]]) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(header)
    for row in rows:
        writer.writerow([escape_cell(cell) for cell in row])
    return CSV_BOM + buffer.getvalue().rstrip("\n")


def _number(value: Any) -> float:
    try:
        return float(value) if value is not None else 0.0
    except (TypeError, ValueError):
        return 0.0


def build_csv(
    tracker: str,
    records: List[Dict[str, Any]],
    baby_names: Dict[str, str],
    caregiver_names: Dict[str, str],
    tz: tzinfo,
) -> str:
    def who(row: Dict[str, Any]) -> List[str]:
        return [
            baby_names.get(row.get("baby_id"), "Baby"),
            caregiver_names.get(row.get("caregiver_id"), "Unknown"),
        ]

    if tracker == "sleep":
        return _render_csv(
            ["Baby", "Logged By", "Start Time", "End Time", "Duration (hours)", "Notes"],
            (
                who(r)
                + [
                    format_local(r.get("start_time"), tz),
                    format_local(r.get("end_time"), tz) if r.get("end_time") else "Ongoing",
                    (
                        f"{_number(r['duration_hours']):.1f}"
                        if r.get("duration_hours") is not None
                        else ""
                    ),
                    r.get("notes"),
                ]
                for r in records
            ),
        )
    if tracker == "diaper":
        return _render_csv(
            ["Baby", "Logged By", "Time", "Type", "Notes"],
            (
                who(r) + [format_local(r.get("changed_at"), tz), r.get("status"), r.get("notes")]
                for r in records
            ),
        )
    if tracker == "feeding":
        return _render_csv(
            ["Baby", "Logged By", "Time", "Type", "Volume (mL)", "Duration (min)", "Notes"],
            (
                who(r)
                + [
                    format_local(r.get("fed_at"), tz),
                    r.get("feeding_type"),
                    r.get("volume_ml"),
                    r.get("duration_minutes"),
                    r.get("notes"),
                ]
                for r in records
            ),
        )
    if tracker == "pumping":
        return _render_csv(
            ["Baby", "Logged By", "Time", "Duration (min)", "Volume (mL)", "Side", "Storage", "Notes"],
            (
                who(r)
                + [
                    format_local(r.get("pumped_at"), tz),
                    r.get("duration_minutes"),
                    r.get("volume_ml"),
                    r.get("side"),
                    r.get("storage"),
                    r.get("notes"),
                ]
                for r in records
            ),
        )
    raise ValueError(f"unknown tracker: {tracker}")


def summarize(records: Dict[str, List[Dict[str, Any]]]) -> DigestTotals:
    sleep = records.get("sleep", [])
    feedings = records.get("feeding", [])
    pumping = records.get("pumping", [])
    return DigestTotals(
        # Ongoing sleep has no duration yet and counts as zero.
        sleep_hours=sum(_number(r.get("duration_hours")) for r in sleep),
        sleep_sessions=len(sleep),
        feedings=len(feedings),
        feeding_volume_ml=sum(_number(r.get("volume_ml")) for r in feedings),
        diapers=len(records.get("diaper", [])),
        pumping_sessions=len(pumping),
        pumped_volume_ml=sum(_number(r.get("volume_ml")) for r in pumping),
    )


def build_digest(
    baby_names: Dict[str, str],
    caregiver_names: Dict[str, str],
    records: Dict[str, List[Dict[str, Any]]],
    day: date,
    tz: tzinfo,
) -> DailyDigest:
    window_start, window_end = digest_window(day, tz)
    totals = summarize(records)
    lines = [
        f"Total Sleep: {totals.sleep_hours:.1f} hours ({totals.sleep_sessions} sessions)",
        f"Total Feedings: {totals.feedings} ({totals.feeding_volume_ml:g} mL total)",
        f"Diaper Changes: {totals.diapers}",
        f"Pumping Sessions: {totals.pumping_sessions} ({totals.pumped_volume_ml:g} mL total)",
    ]
    attachments = {
        f"{tracker}_summary.csv": build_csv(
            tracker, records.get(tracker, []), baby_names, caregiver_names, tz
        )
        for tracker in TRACKER_SOURCES
    }
    return DailyDigest(
        baby_names=list(baby_names.values()) or ["Baby"],
        day=day,
        date_label=f"{day.strftime('%A, %B')} {day.day}, {day.year}",
        window_start=window_start,
        window_end=window_end,
        totals=totals,
        summary_lines=lines,
        attachments=attachments,
    )


async def fetch_digest_records(
    supabase: SupabaseClient,
    baby_ids: List[str],
    window_start: datetime,
    window_end: datetime,
) -> Dict[str, List[Dict[str, Any]]]:
    records: Dict[str, List[Dict[str, Any]]] = {}
    if not baby_ids:
        return {tracker: [] for tracker in TRACKER_SOURCES}
    start, end = to_wire(window_start), to_wire(window_end)
    for tracker, (table, column, columns) in TRACKER_SOURCES.items():
        records[tracker] = await supabase.select(
            table,
            params={
                "select": columns,
                "baby_id": f"in.({','.join(baby_ids)})",
                "and": f"({column}.gte.{start},{column}.lt.{end})",
                "order": f"{column}.asc",
            },
        )
    logger.info(
        "digest records fetched",
        extra={"baby_ids": baby_ids, "counts": {k: len(v) for k, v in records.items()}},
    )
    return records


async def collect_digest(
    supabase: SupabaseClient,
    baby_ids: List[str],
    day: date,
    tz: tzinfo,
) -> DailyDigest:
    """Digest across ``baby_ids`` with baby and caregiver names resolved."""
    in_babies = f"in.({','.join(baby_ids)})"
    babies = await supabase.select("babies", params={"select": "id,name", "id": in_babies})
    caregivers = await supabase.select(
        "baby_caregivers",
        params={"select": "user_id,display_name", "baby_id": in_babies, "order": "joined_at.asc"},
    )
    names_by_id = {row.get("id"): row.get("name") for row in babies}
    baby_names = {baby_id: names_by_id.get(baby_id) or "Baby" for baby_id in baby_ids}
    caregiver_names: Dict[str, str] = {}
    for row in caregivers:
        # A caregiver of several babies keeps the first display name seen.
        caregiver_names.setdefault(row.get("user_id"), row.get("display_name") or "Caregiver")

    window_start, window_end = digest_window(day, tz)
    records = await fetch_digest_records(supabase, baby_ids, window_start, window_end)
    return build_digest(baby_names, caregiver_names, records, day, tz)
