from __future__ import annotations

import json
import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field, replace
from typing import Any, cast
from urllib.error import HTTPError, URLError
from urllib.parse import urlencode
from urllib.request import Request, urlopen

from backend.app.errors import (
    QueryValidationError,
    StellaClipsError,
    TransientIOError,
    classify_http_status,
)
from backend.app.services.video_service import IngestItemOutcome, IngestReport, VideoService

LOGGER = logging.getLogger("stella_clips.youtube")

VIDEO_DETAILS_PARTS = "snippet,statistics,contentDetails"
VIDEO_DETAILS_CHUNK_SIZE = 50
CLIP_SEARCH_QUERY_TEMPLATE = "{member} 스텔라이브 클립"


class YouTubeServiceError(StellaClipsError):
    pass


@dataclass(frozen=True)
class ChannelProcessResult:
    member: str
    channel_id: str | None
    success: bool
    videos_found: int
    videos_processed: int
    report: IngestReport | None = None
    error: str | None = None


@dataclass(frozen=True)
class BatchProcessResult:
    requested: list[str]
    processed: list[str]
    results: list[ChannelProcessResult] = field(default_factory=lambda: [])

    @property
    def duplicates_removed(self) -> int:
        return len(self.requested) - len(self.processed)

    @property
    def successful(self) -> list[ChannelProcessResult]:
        return [result for result in self.results if result.success]

    @property
    def failed(self) -> list[ChannelProcessResult]:
        return [result for result in self.results if not result.success]

    @property
    def total_videos_processed(self) -> int:
        return sum(result.videos_processed for result in self.results)


class YouTubeService:
    """
    YouTube Data API v3 ingestion over an API key.

    Searches return video ids only; details are fetched in chunks of 50 and
    handed to `VideoService.ingest` in chunks no larger than its batch limit;
    the service owns conversion and storage.
    """

    def __init__(
        self,
        *,
        video_service: VideoService,
        api_key: str | None,
        official_channel_ids: Mapping[str, str],
        base_url: str = "https://youtube.googleapis.com/youtube/v3",
        http_timeout_seconds: float = 20.0,
        search_max_results: int = 20,
        batch_max_channels: int = 10,
    ) -> None:
        self._video_service = video_service
        self._api_key = api_key.strip() if api_key and api_key.strip() else None
        self._official_channel_ids = {
            name.strip().upper(): channel_id for name, channel_id in official_channel_ids.items()
        }
        self._base_url = base_url.rstrip("/")
        self._http_timeout_seconds = max(1.0, http_timeout_seconds)
        self._search_max_results = max(1, min(50, search_max_results))
        self._batch_max_channels = max(1, batch_max_channels)

    @property
    def configured(self) -> bool:
        return self._api_key is not None

    def channel_id_for(self, member: str) -> str:
        normalized = self._require_member(member)
        channel_id = self._official_channel_ids.get(normalized)
        if channel_id is None:
            raise YouTubeServiceError(f"Channel ID not found for: {normalized}")
        return channel_id

    def configured_channels(self) -> dict[str, str]:
        return dict(self._official_channel_ids)

    def search_channel_videos(self, channel_id: str, *, max_results: int | None = None) -> list[str]:
        payload = self._get_json(
            "search",
            {
                "part": "id",
                "channelId": channel_id,
                "maxResults": str(self._resolve_max_results(max_results)),
                "order": "date",
                "type": "video",
            },
        )
        return _extract_search_video_ids(payload)

    def search_videos(self, query: str, *, max_results: int | None = None) -> list[str]:
        payload = self._get_json(
            "search",
            {
                "part": "id",
                "q": query,
                "maxResults": str(self._resolve_max_results(max_results)),
                "order": "date",
                "type": "video",
            },
        )
        return _extract_search_video_ids(payload)

    def get_video_details(self, video_ids: Sequence[str]) -> list[dict[str, Any]]:
        unique_ids = list(dict.fromkeys(video_id for video_id in video_ids if video_id.strip()))
        details: list[dict[str, Any]] = []
        for start in range(0, len(unique_ids), VIDEO_DETAILS_CHUNK_SIZE):
            chunk = unique_ids[start : start + VIDEO_DETAILS_CHUNK_SIZE]
            payload = self._get_json(
                "videos",
                {
                    "part": VIDEO_DETAILS_PARTS,
                    "id": ",".join(chunk),
                    "maxResults": str(len(chunk)),
                },
            )
            details.extend(_as_dict(item) for item in _as_list(payload.get("items")))
        return details

    def fetch_official_channel_videos(
        self,
        member: str,
        *,
        max_results: int | None = None,
    ) -> ChannelProcessResult:
        normalized = self._require_member(member)
        channel_id = self.channel_id_for(normalized)
        video_ids = self.search_channel_videos(channel_id, max_results=max_results)
        report = self._ingest_details(video_ids, source_query=f"channel:{normalized}")
        LOGGER.info(
            "youtube official fetch member=%s channel_id=%s found=%s processed=%s",
            normalized,
            channel_id,
            len(video_ids),
            report.processed,
        )
        return ChannelProcessResult(
            member=normalized,
            channel_id=channel_id,
            success=True,
            videos_found=len(video_ids),
            videos_processed=report.processed,
            report=report,
        )

    def search_clip_videos(
        self,
        member: str,
        *,
        max_results: int | None = None,
    ) -> ChannelProcessResult:
        """Ingest fan clips about `member`; uploads from official channels are dropped."""
        normalized = self._require_member(member)
        query = CLIP_SEARCH_QUERY_TEMPLATE.format(member=normalized)
        video_ids = self.search_videos(query, max_results=max_results)
        details = self._fetch_details(video_ids)

        official = set(self._video_service.official_channel_ids)
        clips: list[dict[str, Any]] = []
        for item in details:
            channel_id = _as_dict(item.get("snippet")).get("channelId")
            if channel_id in official:
                LOGGER.debug(
                    "youtube clip filter skipped video_id=%s official_channel=%s",
                    item.get("id"),
                    channel_id,
                )
                continue
            clips.append(item)

        report = self._ingest_raw(clips, source_query=f"clip:{normalized}")
        LOGGER.info(
            "youtube clip search member=%s found=%s official_dropped=%s processed=%s",
            normalized,
            len(video_ids),
            len(details) - len(clips),
            report.processed,
        )
        return ChannelProcessResult(
            member=normalized,
            channel_id=None,
            success=True,
            videos_found=len(video_ids),
            videos_processed=report.processed,
            report=report,
        )

    def batch_process_channels(self, members: Sequence[str]) -> BatchProcessResult:
        """
        Run the official-channel fetch for each distinct member.

        One failing channel is reported in its result and does not stop the
        others. Names are normalized before de-duplication.
        """
        if not members:
            raise QueryValidationError(
                "At least one member is required",
                field="members",
                available=self._video_service.taxonomy.all_members,
            )
        if len(members) > self._batch_max_channels:
            raise QueryValidationError(
                f"Maximum {self._batch_max_channels} channels allowed per batch request",
                field="members",
                provided=len(members),
            )
        invalid = [member for member in members if not member.strip()]
        if invalid:
            raise QueryValidationError(
                "All members must be non-empty strings",
                field="members",
                provided=invalid,
            )

        requested = list(members)
        unique_members = list(dict.fromkeys(member.strip().upper() for member in requested))
        results: list[ChannelProcessResult] = []
        for member in unique_members:
            try:
                results.append(self.fetch_official_channel_videos(member))
            except StellaClipsError as exc:
                LOGGER.warning("youtube batch channel failed member=%s error=%s", member, exc)
                results.append(
                    ChannelProcessResult(
                        member=member,
                        channel_id=self._official_channel_ids.get(member),
                        success=False,
                        videos_found=0,
                        videos_processed=0,
                        error=str(exc),
                    )
                )
        return BatchProcessResult(requested=requested, processed=unique_members, results=results)

    def health_check(self) -> bool:
        if self._api_key is None:
            return False
        try:
            self._get_json("search", {"part": "id", "q": "test", "maxResults": "1"})
        except StellaClipsError as exc:
            LOGGER.warning("youtube health check failed error=%s", exc)
            return False
        return True

    def _fetch_details(self, video_ids: Sequence[str]) -> list[dict[str, Any]]:
        if not video_ids:
            return []
        return self.get_video_details(video_ids)

    def _ingest_details(self, video_ids: Sequence[str], *, source_query: str) -> IngestReport:
        return self._ingest_raw(self._fetch_details(video_ids), source_query=source_query)

    def _ingest_raw(self, raw_videos: Sequence[object], *, source_query: str) -> IngestReport:
        outcomes: list[IngestItemOutcome] = []
        chunk_size = min(VIDEO_DETAILS_CHUNK_SIZE, self._video_service.ingest_batch_max_items)
        for start in range(0, len(raw_videos), chunk_size):
            chunk = raw_videos[start : start + chunk_size]
            report = self._video_service.ingest(chunk, source_query=source_query)
            outcomes.extend(
                replace(outcome, index=start + outcome.index) for outcome in report.outcomes
            )
        return IngestReport(source_query=source_query, outcomes=outcomes)

    def _require_member(self, member: str) -> str:
        taxonomy = self._video_service.taxonomy
        normalized = taxonomy.normalize_member(member)
        if normalized is None:
            raise QueryValidationError(
                f"Invalid member: {member}",
                field="member",
                provided=member,
                available=taxonomy.all_members,
            )
        return normalized

    def _resolve_max_results(self, max_results: int | None) -> int:
        if max_results is None:
            return self._search_max_results
        if max_results < 1 or max_results > 50:
            raise QueryValidationError(
                "maxResults must be between 1 and 50",
                field="maxResults",
                provided=max_results,
            )
        return max_results

    def _get_json(self, resource: str, params: dict[str, str]) -> dict[str, Any]:
        if self._api_key is None:
            raise YouTubeServiceError("YouTube API key not configured")
        status_code, payload = _fetch_youtube_json(
            url=f"{self._base_url}/{resource}",
            params={**params, "key": self._api_key},
            timeout_seconds=self._http_timeout_seconds,
        )
        if status_code < 200 or status_code >= 300:
            message = _extract_api_error_message(payload) or "no error message"
            raise classify_http_status(
                status_code,
                f"YouTube {resource} API failed: {status_code} {message}",
            )
        return payload


def _fetch_youtube_json(
    *,
    url: str,
    params: dict[str, str],
    timeout_seconds: float,
) -> tuple[int, dict[str, Any]]:
    request = Request(
        f"{url}?{urlencode(params)}",
        headers={
            "accept": "application/json",
            "user-agent": "stella-clips/1.0",
        },
        method="GET",
    )

    status_code = 0
    raw_body = ""
    try:
        with urlopen(request, timeout=timeout_seconds) as response:
            status_code = int(response.getcode() or 0)
            raw_body = response.read().decode("utf-8", errors="replace")
    except HTTPError as exc:
        status_code = int(exc.code)
        raw_body = exc.read().decode("utf-8", errors="replace")
    except (URLError, TimeoutError, OSError) as exc:
        raise TransientIOError(f"YouTube request failed: {exc}") from exc

    return status_code, _parse_json_dict(raw_body)


def _extract_search_video_ids(payload: dict[str, Any]) -> list[str]:
    video_ids: list[str] = []
    for raw_item in _as_list(payload.get("items")):
        item_id = _as_dict(_as_dict(raw_item).get("id"))
        if item_id.get("kind") != "youtube#video":
            continue
        video_id = item_id.get("videoId")
        if isinstance(video_id, str) and video_id.strip():
            video_ids.append(video_id.strip())
    return video_ids


def _extract_api_error_message(payload: dict[str, Any]) -> str | None:
    error = _as_dict(payload.get("error"))
    message = error.get("message")
    if isinstance(message, str) and message.strip():
        return message.strip()
    return None


def _parse_json_dict(raw_body: str) -> dict[str, Any]:
    if not raw_body.strip():
        return {}
    try:
        parsed = json.loads(raw_body)
    except json.JSONDecodeError:
        return {}
    return _as_dict(parsed)


def _as_dict(value: Any) -> dict[str, Any]:
    if isinstance(value, dict):
        raw_dict = cast(dict[object, object], value)
        converted: dict[str, Any] = {}
        for key, item in raw_dict.items():
            if isinstance(key, str):
                converted[key] = item
        return converted
    return {}


def _as_list(value: Any) -> list[Any]:
    if isinstance(value, list):
        raw_list = cast(list[Any], value)
        return list(raw_list)
    return []
