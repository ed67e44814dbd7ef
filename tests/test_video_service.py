from __future__ import annotations

import sqlite3
from collections.abc import Callable, Iterable, Mapping
from typing import Any

import pytest

from backend.app.errors import NotFoundError, QueryValidationError
from backend.app.repositories.video_member_repository import VideoMemberRepository
from backend.app.repositories.video_repository import UpsertOutcome, VideoInput, VideoRepository
from backend.app.services.video_service import VideoService
from backend.app.telemetry import TelemetryClient

RIN_CHANNEL_ID = "UC_rin_official"

VideoResourceFactory = Callable[..., dict[str, Any]]


class _CaptureSink:
    def __init__(self) -> None:
        self.events: list[tuple[str, dict[str, Any]]] = []

    def emit(self, *, event_name: str, attributes: Mapping[str, Any]) -> None:
        self.events.append((event_name, dict(attributes)))


def _ingest_fixture_videos(service: VideoService, video_resource: VideoResourceFactory) -> None:
    report = service.ingest(
        [
            video_resource(
                "yt_rin_official",
                title="Morning karaoke",
                channel_id=RIN_CHANNEL_ID,
                published_at="2025-01-01T00:00:00Z",
                view_count="500",
            ),
            video_resource(
                "yt_rin_nana_clip",
                title="RIN and NANA collab highlights",
                published_at="2025-01-02T00:00:00Z",
                view_count="50",
            ),
            video_resource(
                "yt_hina_clip",
                title="Funny moments",
                tags=["hina"],
                published_at="2025-01-03T00:00:00Z",
                view_count="900",
            ),
        ],
        source_query="manual",
    )
    assert report.created == 3
    service.ingest(
        [
            video_resource(
                "yt_rin_official",
                title="Morning karaoke",
                channel_id=RIN_CHANNEL_ID,
                published_at="2025-01-01T00:00:00Z",
                view_count="500",
            )
        ],
        source_query="channel:RIN",
    )


def test_ingest_reports_per_item_outcomes(
    video_service: VideoService,
    video_resource: VideoResourceFactory,
) -> None:
    report = video_service.ingest(
        [
            video_resource("yt_1", title="YUNI drawing stream"),
            {"snippet": {"title": "missing id"}},
            video_resource("yt_1", title="YUNI drawing stream (edited)"),
        ],
        source_query="manual",
    )

    assert [outcome.status for outcome in report.outcomes] == ["created", "skipped", "updated"]
    assert report.outcomes[0].members_tagged == 1
    assert report.outcomes[2].members_tagged == 0
    assert report.outcomes[1].reason == "missing id"
    assert report.processed == 2
    assert len(set(report.video_ids)) == 1
    assert video_service.get_video("yt_1").title == "YUNI drawing stream (edited)"


def test_ingest_rejects_oversized_batches(
    video_service: VideoService,
    video_resource: VideoResourceFactory,
) -> None:
    with pytest.raises(QueryValidationError) as error:
        video_service.ingest([video_resource(f"yt_{index}") for index in range(51)], source_query="manual")
    assert error.value.field == "videos"


def test_ingest_storage_error_marks_item_failed(
    video_service: VideoService,
    video_resource: VideoResourceFactory,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    original_upsert = VideoRepository.upsert

    def flaky_upsert(self: VideoRepository, video: VideoInput) -> UpsertOutcome:
        if video.external_video_id == "yt_locked":
            raise sqlite3.OperationalError("database is locked")
        return original_upsert(self, video)

    monkeypatch.setattr(VideoRepository, "upsert", flaky_upsert)

    report = video_service.ingest(
        [video_resource("yt_locked"), video_resource("yt_fine")],
        source_query="manual",
    )

    assert [outcome.status for outcome in report.outcomes] == ["failed", "created"]
    assert report.outcomes[0].reason == "database is locked"


def test_ingest_tagging_error_keeps_stored_video_outcome(
    video_service: VideoService,
    video_resource: VideoResourceFactory,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    def locked_create_many(self: VideoMemberRepository, pairs: Iterable[tuple[str, str]]) -> int:
        _ = (self, pairs)
        raise sqlite3.OperationalError("database is locked")

    monkeypatch.setattr(VideoMemberRepository, "create_many", locked_create_many)

    report = video_service.ingest([video_resource("yt_rin", title="RIN karaoke")], source_query="manual")

    outcome = report.outcomes[0]
    assert outcome.status == "created"
    assert outcome.video_id is not None
    assert outcome.members_tagged == 0
    assert outcome.reason == "member tagging failed: database is locked"
    assert report.failed == 0
    assert video_service.get_video(outcome.video_id).external_video_id == "yt_rin"



def test_ingest_emits_batch_telemetry(
    video_service: VideoService,
    video_resource: VideoResourceFactory,
) -> None:
    sink = _CaptureSink()
    video_service._telemetry = TelemetryClient(enabled=True, sink=sink)  # pyright: ignore[reportPrivateUsage]

    video_service.ingest([video_resource("yt_1"), "junk"], source_query="manual")

    assert len(sink.events) == 1
    event_name, attributes = sink.events[0]
    assert event_name == "ingest.batch.finish"
    assert attributes["outcome"] == "ok"
    assert attributes["created"] == 1
    assert attributes["skipped"] == 1
    assert attributes["source_query"] == "manual"


def test_official_classification_and_marker_tagging(
    video_service: VideoService,
    video_resource: VideoResourceFactory,
) -> None:
    _ingest_fixture_videos(video_service, video_resource)

    official = video_service.get_video("yt_rin_official")
    assert official.is_official is True
    assert official.source_query == "channel:RIN"
    assert [member.name for member in official.member_appearances] == ["RIN"]
    assert video_service.get_video("yt_hina_clip").is_official is False


def test_search_by_member_and_cohort(
    video_service: VideoService,
    video_resource: VideoResourceFactory,
) -> None:
    _ingest_fixture_videos(video_service, video_resource)

    rin = video_service.search_by_member("rin", page=1, limit=1)
    assert rin.total == 2
    assert rin.total_pages == 2
    assert [video.external_video_id for video in rin.videos] == ["yt_rin_nana_clip"]

    second_page = video_service.search_by_member("RIN", page=2, limit=1)
    assert second_page.offset == 1
    assert second_page.page == 2
    assert [video.external_video_id for video in second_page.videos] == ["yt_rin_official"]

    universe = video_service.search_by_cohort("UNIVERSE", sort="views")
    assert [video.external_video_id for video in universe.videos] == ["yt_hina_clip"]

    official_only = video_service.search(member="RIN", is_official=True)
    assert [video.external_video_id for video in official_only.videos] == ["yt_rin_official"]


def test_search_member_wins_and_mismatch_is_rejected(
    video_service: VideoService,
    video_resource: VideoResourceFactory,
) -> None:
    _ingest_fixture_videos(video_service, video_resource)

    result = video_service.search(cohort="CLICHE", member="NANA")
    assert [video.external_video_id for video in result.videos] == ["yt_rin_nana_clip"]

    with pytest.raises(QueryValidationError) as error:
        video_service.search(cohort="UNIVERSE", member="NANA")
    assert error.value.available == ("HINA", "TABI", "LIZE", "MASHIRO")

    everything = video_service.search(cohort="ALL", member="ALL")
    assert everything.total == 3


def test_search_validates_inputs(video_service: VideoService) -> None:
    with pytest.raises(QueryValidationError) as member_error:
        video_service.search(member="nobody")
    assert member_error.value.provided == "nobody"
    assert member_error.value.available is not None
    assert "RIN" in member_error.value.available

    with pytest.raises(QueryValidationError):
        video_service.search(cohort="NOPE")
    with pytest.raises(QueryValidationError):
        video_service.search(limit=101)
    with pytest.raises(QueryValidationError):
        video_service.search(page=0)
    with pytest.raises(QueryValidationError):
        video_service.search(page=1, offset=0)
    with pytest.raises(QueryValidationError):
        video_service.search(sort="random")


def test_offset_past_end_is_empty(
    video_service: VideoService,
    video_resource: VideoResourceFactory,
) -> None:
    _ingest_fixture_videos(video_service, video_resource)

    result = video_service.search(offset=10)
    assert result.videos == []
    assert result.total == 3


def test_get_video_and_members(
    video_service: VideoService,
    video_resource: VideoResourceFactory,
) -> None:
    _ingest_fixture_videos(video_service, video_resource)

    record = video_service.get_video("yt_rin_nana_clip")
    assert video_service.get_video(record.id) == record
    assert [item.member_name for item in video_service.get_video_members(record.id)] == ["NANA", "RIN"]

    with pytest.raises(NotFoundError):
        video_service.get_video("missing")


def test_list_members_and_stats(
    video_service: VideoService,
    video_resource: VideoResourceFactory,
) -> None:
    _ingest_fixture_videos(video_service, video_resource)

    assert [member.name for member in video_service.list_members("mystic")] == ["YUNI"]
    assert len(video_service.list_members()) == 9
    with pytest.raises(QueryValidationError):
        video_service.list_members("nope")

    stats = video_service.stats()
    assert (stats.total, stats.official, stats.unofficial, stats.members) == (3, 1, 2, 9)
    assert video_service.count_by_channel(RIN_CHANNEL_ID) == 1


def test_search_videos_by_text(
    video_service: VideoService,
    video_resource: VideoResourceFactory,
) -> None:
    _ingest_fixture_videos(video_service, video_resource)

    assert [video.external_video_id for video in video_service.search_videos("karaoke")] == [
        "yt_rin_official"
    ]
    with pytest.raises(QueryValidationError):
        video_service.search_videos("   ")


def test_tag_existing_videos_backfills_missing_links(
    video_service: VideoService,
    video_repository: VideoRepository,
) -> None:
    video_repository.upsert(
        VideoInput(
            external_video_id="yt_untagged",
            title="LIZE and TABI cooking",
            channel_id="UC_fan_clips",
            published_at="2025-01-01T00:00:00+00:00",
            source_query="clip:MASHIRO",
            is_official=False,
        )
    )

    report = video_service.tag_existing_videos()
    assert report.videos_scanned == 1
    assert report.videos_tagged == 1
    assert report.links_created == 3
    assert report.links_by_member == {"MASHIRO": 1, "TABI": 1, "LIZE": 1}

    rerun = video_service.tag_existing_videos()
    assert rerun.links_created == 0
    assert rerun.videos_tagged == 0
