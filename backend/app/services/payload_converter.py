from __future__ import annotations

import logging
import re
from collections.abc import Collection, Sequence
from dataclasses import dataclass
from typing import Any, cast

from backend.app.errors import MalformedInputError
from backend.app.models.cohorts import CohortTaxonomy
from backend.app.repositories.common import format_timestamp, parse_timestamp
from backend.app.repositories.video_repository import VideoInput
from backend.app.services.duration_codec import decode_duration

LOGGER = logging.getLogger("stella_clips.ingest")

SOURCE_QUERY_MARKER_PATTERN = re.compile(r"(?:channel|clip):(\w+)", re.IGNORECASE)
THUMBNAIL_QUALITIES: tuple[str, ...] = ("default", "medium", "high")


@dataclass(frozen=True)
class ConversionDefect:
    index: int
    external_video_id: str | None
    reason: str


@dataclass(frozen=True)
class ConversionReport:
    videos: list[VideoInput]
    skipped: list[ConversionDefect]


class _SkipItem(Exception):
    pass


def convert_video_resources(
    raw_videos: Sequence[object],
    official_channel_ids: Collection[str],
    source_query: str,
    *,
    taxonomy: CohortTaxonomy | None = None,
) -> list[VideoInput]:
    return convert_video_resources_with_report(
        raw_videos,
        official_channel_ids,
        source_query,
        taxonomy=taxonomy,
    ).videos


def convert_video_resources_with_report(
    raw_videos: Sequence[object],
    official_channel_ids: Collection[str],
    source_query: str,
    *,
    taxonomy: CohortTaxonomy | None = None,
) -> ConversionReport:
    """
    Map YouTube `videos` resources to `VideoInput`s.

    One bad item never fails the batch: it is skipped and reported. A bad
    duration is not a bad item; it degrades to an unknown duration.
    """
    official = frozenset(official_channel_ids)
    videos: list[VideoInput] = []
    skipped: list[ConversionDefect] = []

    for index, raw_video in enumerate(raw_videos):
        external_video_id = _peek_video_id(raw_video)
        try:
            video = _convert_one(
                raw_video,
                official_channel_ids=official,
                source_query=source_query,
                taxonomy=taxonomy,
            )
        except _SkipItem as exc:
            LOGGER.warning(
                "ingest convert skipped index=%s video_id=%s reason=%s",
                index,
                external_video_id,
                exc,
            )
            skipped.append(
                ConversionDefect(index=index, external_video_id=external_video_id, reason=str(exc))
            )
            continue
        videos.append(video)

    return ConversionReport(videos=videos, skipped=skipped)


def detect_member_names(
    *,
    title: str,
    tags: Sequence[str],
    source_query: str,
    taxonomy: CohortTaxonomy,
) -> tuple[str, ...]:
    """Members named by a `channel:NAME` or `clip:NAME` query marker, a title word, or a tag."""
    detected: list[str] = []

    for matched in SOURCE_QUERY_MARKER_PATTERN.finditer(source_query):
        member = taxonomy.normalize_member(matched.group(1))
        if member is not None and member not in detected:
            detected.append(member)

    normalized_tags = {tag.strip().upper() for tag in tags}
    for member in taxonomy.all_members:
        if member in detected:
            continue
        if member in normalized_tags or _title_mentions(title, member):
            detected.append(member)
    return tuple(detected)


def _title_mentions(title: str, member: str) -> bool:
    pattern = rf"(?<![0-9A-Za-z]){re.escape(member)}(?![0-9A-Za-z])"
    return re.search(pattern, title, flags=re.IGNORECASE) is not None


def _convert_one(
    raw_video: object,
    *,
    official_channel_ids: frozenset[str],
    source_query: str,
    taxonomy: CohortTaxonomy | None,
) -> VideoInput:
    if not isinstance(raw_video, dict):
        raise _SkipItem("resource is not an object")
    item = _as_dict(raw_video)

    external_video_id = _coerce_nonempty_string(item.get("id"))
    if external_video_id is None:
        raise _SkipItem("missing id")

    snippet = _as_dict(item.get("snippet"))
    content_details = _as_dict(item.get("contentDetails"))
    statistics = _as_dict(item.get("statistics"))

    title = _verbatim_text(snippet.get("title"))
    if title is None:
        raise _SkipItem("missing snippet.title")
    channel_id = _coerce_nonempty_string(snippet.get("channelId"))
    if channel_id is None:
        raise _SkipItem("missing snippet.channelId")
    published = parse_timestamp(snippet.get("publishedAt"))
    if published is None:
        raise _SkipItem("missing or invalid snippet.publishedAt")

    tags = _extract_string_list(snippet.get("tags"))
    member_names: tuple[str, ...] = ()
    if taxonomy is not None:
        member_names = detect_member_names(
            title=title,
            tags=tags,
            source_query=source_query,
            taxonomy=taxonomy,
        )

    return VideoInput(
        external_video_id=external_video_id,
        title=title,
        description=_verbatim_text(snippet.get("description")),
        channel_id=channel_id,
        channel_title=_coerce_nonempty_string(snippet.get("channelTitle")),
        published_at=format_timestamp(published),
        duration_seconds=_convert_duration(external_video_id, content_details.get("duration")),
        view_count=_coerce_count(statistics.get("viewCount")),
        like_count=_coerce_count(statistics.get("likeCount")),
        tags=tags,
        thumbnails=_extract_thumbnail_urls(snippet),
        is_official=channel_id in official_channel_ids,
        source_query=source_query,
        member_names=member_names,
    )


def _convert_duration(external_video_id: str, raw_value: object) -> int | None:
    if raw_value is None:
        return None
    try:
        total_seconds = decode_duration(cast(str, raw_value))
    except MalformedInputError as exc:
        LOGGER.warning(
            "ingest convert duration_unparsed video_id=%s error=%s",
            external_video_id,
            exc,
        )
        return None
    if total_seconds <= 0:
        return None
    return total_seconds


def _peek_video_id(raw_video: object) -> str | None:
    if not isinstance(raw_video, dict):
        return None
    return _coerce_nonempty_string(_as_dict(raw_video).get("id"))


def _extract_thumbnail_urls(snippet: dict[str, Any]) -> dict[str, str]:
    thumbnails = _as_dict(snippet.get("thumbnails"))
    urls: dict[str, str] = {}
    for quality in THUMBNAIL_QUALITIES:
        url_value = _as_dict(thumbnails.get(quality)).get("url")
        if isinstance(url_value, str) and url_value.strip():
            urls[quality] = url_value
    return urls


def _extract_string_list(raw_value: object) -> tuple[str, ...]:
    if not isinstance(raw_value, list):
        return ()
    values: list[str] = []
    for raw_item in cast(list[Any], raw_value):
        if isinstance(raw_item, str) and raw_item.strip():
            values.append(raw_item)
    return tuple(values)


def _coerce_nonempty_string(raw_value: object) -> str | None:
    if isinstance(raw_value, str) and raw_value.strip():
        return raw_value.strip()
    return None


def _verbatim_text(raw_value: object) -> str | None:
    if isinstance(raw_value, str) and raw_value.strip():
        return raw_value
    return None


def _coerce_count(raw_value: object) -> int | None:
    # The Data API serializes counters as decimal strings.
    if isinstance(raw_value, bool):
        return None
    if isinstance(raw_value, int):
        return raw_value if raw_value >= 0 else None
    if isinstance(raw_value, str):
        try:
            parsed = int(raw_value.strip())
        except ValueError:
            return None
        return parsed if parsed >= 0 else None
    return None


def _as_dict(value: Any) -> dict[str, Any]:
    if isinstance(value, dict):
        raw_dict = cast(dict[object, object], value)
        converted: dict[str, Any] = {}
        for key, item in raw_dict.items():
            if isinstance(key, str):
                converted[key] = item
        return converted
    return {}
