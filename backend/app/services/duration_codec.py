from __future__ import annotations

import re

from backend.app.errors import MalformedInputError

ISO8601_DURATION_PATTERN = re.compile(
    r"^P(?:(?P<days>\d+)D)?(?:T(?:(?P<hours>\d+)H)?(?:(?P<minutes>\d+)M)?(?:(?P<seconds>\d+)S)?)?$"
)


def decode_duration(code: str) -> int:
    """
    Strictly decode a YouTube `contentDetails.duration` value into seconds.

    Accepts the date-less subset the Data API emits (`PT4M13S`, `PT1H`,
    `P1DT2H` for long streams). Raises `MalformedInputError` for anything
    else, including the empty string. A well-formed zero is returned as 0.
    """
    if not isinstance(code, str):
        raise MalformedInputError(f"duration must be a string, got {type(code).__name__}")
    normalized = code.strip().upper()
    if not normalized:
        raise MalformedInputError("duration is empty")
    matched = ISO8601_DURATION_PATTERN.match(normalized)
    if matched is None or normalized in {"P", "PT"} or normalized.endswith("T"):
        raise MalformedInputError(f"unsupported duration encoding: {code!r}")

    days = int(matched.group("days") or 0)
    hours = int(matched.group("hours") or 0)
    minutes = int(matched.group("minutes") or 0)
    seconds = int(matched.group("seconds") or 0)
    return days * 86_400 + hours * 3_600 + minutes * 60 + seconds


def parse_duration(code: str | None) -> int | None:
    """
    Lenient duration parse used by ingestion.

    Returns None for empty input, malformed input, and zero-length durations.
    A zero duration is reported by the API for premieres and some live
    streams, so it is folded into "unknown".
    """
    if code is None:
        return None
    try:
        total_seconds = decode_duration(code)
    except MalformedInputError:
        return None
    if total_seconds <= 0:
        return None
    return total_seconds


def format_duration_label(total_seconds: int | None) -> str | None:
    if total_seconds is None or total_seconds <= 0:
        return None
    hours, remainder = divmod(total_seconds, 3_600)
    minutes, seconds = divmod(remainder, 60)
    if hours > 0:
        return f"{hours}:{minutes:02d}:{seconds:02d}"
    return f"{minutes}:{seconds:02d}"
