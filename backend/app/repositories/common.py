from __future__ import annotations

import json
from datetime import UTC, datetime
from typing import cast


def utc_now_iso() -> str:
    return datetime.now(UTC).isoformat()


def to_optional_str(value: object) -> str | None:
    if isinstance(value, str) and value.strip():
        return value
    return None


def to_optional_int(value: object) -> int | None:
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        return value
    return None


def decode_str_tuple(raw_value: object) -> tuple[str, ...]:
    if not isinstance(raw_value, str):
        return ()
    try:
        parsed = cast(object, json.loads(raw_value))
    except json.JSONDecodeError:
        return ()
    if not isinstance(parsed, list):
        return ()

    values: list[str] = []
    for item in cast(list[object], parsed):
        if isinstance(item, str):
            values.append(item)
    return tuple(values)


def decode_str_dict(raw_value: object) -> dict[str, str]:
    if not isinstance(raw_value, str):
        return {}
    try:
        parsed = cast(object, json.loads(raw_value))
    except json.JSONDecodeError:
        return {}
    if not isinstance(parsed, dict):
        return {}

    values: dict[str, str] = {}
    for key, item in cast(dict[object, object], parsed).items():
        if isinstance(key, str) and isinstance(item, str):
            values[key] = item
    return values


def parse_timestamp(raw_value: object) -> datetime | None:
    if not isinstance(raw_value, str):
        return None
    try:
        parsed = datetime.fromisoformat(raw_value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


def format_timestamp(value: datetime) -> str:
    """Fixed-width UTC form; stored timestamps are compared as text."""
    return value.astimezone(UTC).isoformat(timespec="seconds")


def normalize_timestamp_text(raw_value: str) -> str:
    parsed = parse_timestamp(raw_value)
    if parsed is None:
        return raw_value
    return format_timestamp(parsed)
