from __future__ import annotations

import re
from datetime import date
from typing import Any, Mapping, Optional


TIME_RE = re.compile(r"^\d{1,2}:\d{2}:\d{2}$")
DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
ZERO_TIME = "00:00:00"

RUN_TYPES = ("solo", "co-op")
LEADERBOARD_TYPES = ("regular", "individual-level", "community-golds")
LEVEL_SCOPED_TYPES = ("individual-level", "community-golds")

ID_FIELDS = ("category", "platform")
SRC_FIELDS = (
    "src_run_id",
    "src_category_name",
    "src_platform_name",
    "src_level_name",
    "src_player_name",
    "src_player2_name",
)


def parse_time_to_seconds(value: Optional[str]) -> int:
    """
    "H:MM:SS" / "HH:MM:SS" -> total seconds.
    Anything that is not three numeric parts parses to 0.
    """
    if not value:
        return 0
    parts = str(value).strip().split(":")
    if len(parts) != 3:
        return 0
    try:
        hours, minutes, seconds = (int(p) for p in parts)
    except ValueError:
        return 0
    if hours < 0 or minutes < 0 or seconds < 0:
        return 0
    return hours * 3600 + minutes * 60 + seconds


def format_seconds(total_seconds: int) -> str:
    total_seconds = max(int(total_seconds), 0)
    hours, rest = divmod(total_seconds, 3600)
    minutes, seconds = divmod(rest, 60)
    return f"{hours:02d}:{minutes:02d}:{seconds:02d}"


def _text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def _optional_text(value: Any) -> Optional[str]:
    return _text(value) or None


def normalize_player_name(value: Any) -> str:
    return _text(value) or "Unknown"


def normalize_time(value: Any) -> str:
    text = _text(value)
    return text if TIME_RE.match(text) else ZERO_TIME


def normalize_date(value: Any) -> str:
    text = _text(value)
    if "T" in text:
        text = text.split("T", 1)[0]
    if DATE_RE.match(text):
        return text
    return date.today().isoformat()


def normalize_run_type(value: Any) -> str:
    text = _text(value).lower()
    if text in ("co-op", "coop"):
        return "co-op"
    return "solo"


def normalize_leaderboard_type(value: Any) -> str:
    text = _text(value).lower()
    if text in ("individual-level", "individuallevel"):
        return "individual-level"
    if text in ("community-golds", "communitygolds"):
        return "community-golds"
    return "regular"


def normalize_run(raw: Mapping[str, Any]) -> dict[str, Any]:
    """
    Coerce a possibly partial run record into the canonical shape.
    Unknown keys are passed through untouched. Never raises.
    """
    record = dict(raw)
    record["player_name"] = normalize_player_name(raw.get("player_name"))
    record["player2_name"] = (
        normalize_player_name(raw.get("player2_name")) if _text(raw.get("player2_name")) else None
    )
    record["player_id"] = _optional_text(raw.get("player_id"))
    record["player2_id"] = _optional_text(raw.get("player2_id"))
    for key in ID_FIELDS:
        record[key] = _text(raw.get(key))
    record["level"] = _optional_text(raw.get("level"))
    record["time"] = normalize_time(raw.get("time"))
    record["date"] = normalize_date(raw.get("date"))
    record["run_type"] = normalize_run_type(raw.get("run_type"))
    record["leaderboard_type"] = normalize_leaderboard_type(raw.get("leaderboard_type"))
    record["verified"] = bool(raw.get("verified"))
    record["is_obsolete"] = bool(raw.get("is_obsolete"))
    record["imported_from_src"] = bool(raw.get("imported_from_src"))
    for key in SRC_FIELDS:
        record[key] = _optional_text(raw.get(key))
    return record


def validate_run(record: Mapping[str, Any]) -> list[str]:
    """
    Human-readable problems with a run record. Empty list means valid.

    Imported runs may leave category/platform empty when the registry name is
    kept in the matching src_* field.
    """
    errors: list[str] = []
    imported = bool(record.get("imported_from_src"))

    if not _text(record.get("player_name")):
        errors.append("Player name is required")

    if not _text(record.get("category")) and not (imported and _text(record.get("src_category_name"))):
        errors.append("Category is required")

    if not _text(record.get("platform")) and not (imported and _text(record.get("src_platform_name"))):
        errors.append("Platform is required")

    time_value = _text(record.get("time"))
    if not time_value:
        errors.append("Time is required")
    elif not TIME_RE.match(time_value):
        errors.append("Time must be in format HH:MM:SS")

    date_value = _text(record.get("date"))
    if not date_value:
        errors.append("Date is required")
    elif not DATE_RE.match(date_value):
        errors.append("Date must be in format YYYY-MM-DD")

    run_type = _text(record.get("run_type")).lower()
    if run_type and run_type not in RUN_TYPES and run_type != "coop":
        errors.append("Run type must be 'solo' or 'co-op'")
    run_type = normalize_run_type(run_type)

    raw_leaderboard_type = _text(record.get("leaderboard_type")).lower()
    leaderboard_type = normalize_leaderboard_type(raw_leaderboard_type)
    if raw_leaderboard_type and leaderboard_type == "regular" and raw_leaderboard_type != "regular":
        errors.append("Leaderboard type must be 'regular', 'individual-level', or 'community-golds'")
    elif leaderboard_type in LEVEL_SCOPED_TYPES:
        if not _text(record.get("level")) and not (imported and _text(record.get("src_level_name"))):
            errors.append(f"Level is required for {leaderboard_type} runs")

    if run_type == "co-op" and not _text(record.get("player2_name")):
        errors.append("Second player name is required for co-op runs")

    return errors
