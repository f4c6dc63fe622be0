"""Row validation and coercion for the two CSV feeds."""

from __future__ import annotations

import math
from enum import Enum

from processor.content_titles import contains_forbidden_extension
from processor.csv_reader import is_valid_timestamp, parse_timestamp, to_bool, to_float, to_int

PLAYER_FULL_DATE_FIELDS = (
    "date",
    "iso_local_time",
    "iso_time",
    "playlist_created_time",
    "iso_time_date",
    "part_date",
)
PLAYER_SKIP_RAW_DATE_FIELDS = ("iso_time",)

IMPRESSION_REQUIRED_FIELDS = (
    "content_id",
    "title",
    "audience_id",
    "age",
    "gender",
    "play_at",
    "attention_sec",
    "is_attention",
    "is_entrance",
    "content_group",
)
IMPRESSION_BOOLEAN_FIELDS = ("is_attention", "is_entrance")
VALID_GENDERS = frozenset({"M", "F", "남", "여", "male", "female"})


class IssueType(str, Enum):
    MISSING_FIELD = "missingField"
    INVALID_NUMBER = "invalidNumber"
    INVALID_BOOLEAN = "invalidBoolean"
    INVALID_DATE = "invalidDate"
    INVALID_GENDER = "invalidGender"
    DUPLICATE_KEY = "duplicateKey"
    FORBIDDEN_EXTENSION = "forbiddenExtension"


# ── Player feed ──


def player_date_fields(mode: str) -> tuple[str, ...]:
    return PLAYER_FULL_DATE_FIELDS if mode == "full" else PLAYER_SKIP_RAW_DATE_FIELDS


def validate_player_row(record: dict[str, str], mode: str = "full") -> list[IssueType]:
    for field in player_date_fields(mode):
        if not is_valid_timestamp(record.get(field)):
            return [IssueType.INVALID_DATE]
    return []


def player_row_values(record: dict[str, str]) -> dict:
    """Coerce a validated player row into column values."""
    return {
        "campaign_id": record.get("campaign_id", ""),
        "date": parse_timestamp(record.get("date")),
        "action": record.get("action", ""),
        "campaign_session_id": record.get("campaign_session_id", ""),
        "content_id": record.get("content_id", ""),
        "content_session_id": record.get("content_session_id", ""),
        "content_title": record.get("content_title", ""),
        "device_id": record.get("device_id", ""),
        "duration_second": to_float(record.get("duration_second")),
        "inventory_id": record.get("inventory_id", ""),
        "iso_local_time": parse_timestamp(record.get("iso_local_time")),
        "iso_time": parse_timestamp(record.get("iso_time")),
        "player_version": record.get("player_version", ""),
        "pricing_rule": record.get("pricing_rule", ""),
        "content_duration": to_float(record.get("content_duration")),
        "content_selection": record.get("content_selection", ""),
        "content_version": to_int(record.get("content_version")),
        "elapsed_second": to_float(record.get("elapsed_second")),
        "playlist_created_time": parse_timestamp(record.get("playlist_created_time")),
        "sequence_id": record.get("sequence_id", ""),
        "advertiser_id": record.get("advertiser_id") or None,
        "iso_time_date": parse_timestamp(record.get("iso_time_date")),
        "part_date": parse_timestamp(record.get("part_date")),
    }


def describe_player_row(record: dict[str, str]) -> str:
    return f"campaign_id: {record.get('campaign_id', '')}, content_id: {record.get('content_id', '')}"


# ── Impression feed ──


def impression_key(record: dict[str, str]) -> str:
    return f"{record.get('content_id', '')}|{record.get('audience_id', '')}|{record.get('play_at', '')}"


def validate_impression_row(
    record: dict[str, str],
    strict: bool = False,
    seen_keys: set[str] | None = None,
) -> list[IssueType]:
    """Return the distinct issues found, in detection order.

    The lenient check only requires ``play_at``. The strict check also looks
    at required fields, numbers, booleans, gender, forbidden extensions and
    duplicate keys; pass ``seen_keys`` to track duplicates across calls.
    """
    if not strict:
        if not is_valid_timestamp(record.get("play_at")):
            return [IssueType.INVALID_DATE]
        return []

    issues: list[IssueType] = []

    if any(not record.get(field) for field in IMPRESSION_REQUIRED_FIELDS):
        issues.append(IssueType.MISSING_FIELD)

    try:
        attention = float(record.get("attention_sec") or "nan")
    except ValueError:
        attention = math.nan
    if not math.isfinite(attention) or attention < 0:
        issues.append(IssueType.INVALID_NUMBER)

    for field in IMPRESSION_BOOLEAN_FIELDS:
        if str(record.get(field, "")).lower() not in ("true", "false"):
            issues.append(IssueType.INVALID_BOOLEAN)
            break

    if not is_valid_timestamp(record.get("play_at")):
        issues.append(IssueType.INVALID_DATE)

    gender = record.get("gender")
    if gender and gender not in VALID_GENDERS:
        issues.append(IssueType.INVALID_GENDER)

    if any(
        contains_forbidden_extension(record.get(field))
        for field in ("content_id", "title", "content_group")
    ):
        issues.append(IssueType.FORBIDDEN_EXTENSION)

    if seen_keys is not None:
        key = impression_key(record)
        if key in seen_keys:
            issues.append(IssueType.DUPLICATE_KEY)
        else:
            seen_keys.add(key)

    return issues


def impression_row_values(record: dict[str, str]) -> dict:
    return {
        "content_id": record.get("content_id", ""),
        "title": record.get("title", ""),
        "audience_id": record.get("audience_id", ""),
        "age": record.get("age", ""),
        "gender": record.get("gender", ""),
        "play_at": parse_timestamp(record.get("play_at")),
        "attention_sec": to_float(record.get("attention_sec")),
        "is_attention": to_bool(record.get("is_attention")),
        "is_entrance": to_bool(record.get("is_entrance")),
        "content_group": record.get("content_group", ""),
    }


def describe_impression_row(record: dict[str, str]) -> str:
    return f"content_id: {record.get('content_id', '')}, audience_id: {record.get('audience_id', '')}"
