from __future__ import annotations

from collections.abc import Callable, Iterator
from pathlib import Path
from typing import Any

import pytest
from fastapi.testclient import TestClient

from backend.app.dependencies import reset_cached_dependencies
from backend.app.main import create_app
from backend.app.models.cohorts import CohortTaxonomy, default_taxonomy
from backend.app.repositories.database import Database
from backend.app.repositories.member_repository import MemberRepository
from backend.app.repositories.video_member_repository import VideoMemberRepository
from backend.app.repositories.video_repository import VideoRepository
from backend.app.services.video_service import VideoService

RIN_CHANNEL_ID = "UC_rin_official"
YUNI_CHANNEL_ID = "UC_yuni_official"
FAN_CHANNEL_ID = "UC_fan_clips"

VideoResourceFactory = Callable[..., dict[str, Any]]


def build_video_resource(
    video_id: str,
    *,
    title: str = "Stream highlights",
    channel_id: str = FAN_CHANNEL_ID,
    published_at: str = "2025-01-10T12:00:00Z",
    duration: str | None = "PT4M13S",
    view_count: str | None = "100",
    like_count: str | None = "10",
    tags: list[str] | None = None,
    description: str | None = "clip description",
) -> dict[str, Any]:
    snippet: dict[str, Any] = {
        "title": title,
        "channelId": channel_id,
        "channelTitle": f"{channel_id} title",
        "publishedAt": published_at,
        "thumbnails": {
            "default": {"url": f"https://i.ytimg.com/vi/{video_id}/default.jpg"},
            "high": {"url": f"https://i.ytimg.com/vi/{video_id}/hqdefault.jpg"},
        },
    }
    if description is not None:
        snippet["description"] = description
    if tags is not None:
        snippet["tags"] = tags

    statistics: dict[str, Any] = {}
    if view_count is not None:
        statistics["viewCount"] = view_count
    if like_count is not None:
        statistics["likeCount"] = like_count

    resource: dict[str, Any] = {"id": video_id, "snippet": snippet, "statistics": statistics}
    if duration is not None:
        resource["contentDetails"] = {"duration": duration}
    return resource


@pytest.fixture
def video_resource() -> VideoResourceFactory:
    return build_video_resource


@pytest.fixture
def taxonomy() -> CohortTaxonomy:
    return default_taxonomy()


@pytest.fixture
def database(tmp_path: Path) -> Database:
    db = Database(tmp_path / "state.db")
    db.initialize()
    return db


@pytest.fixture
def video_member_repository(database: Database) -> VideoMemberRepository:
    return VideoMemberRepository(database)


@pytest.fixture
def member_repository(database: Database, taxonomy: CohortTaxonomy) -> MemberRepository:
    repository = MemberRepository(database)
    repository.sync_from_taxonomy(taxonomy)
    return repository


@pytest.fixture
def video_repository(
    database: Database,
    video_member_repository: VideoMemberRepository,
) -> VideoRepository:
    return VideoRepository(database, video_member_repository=video_member_repository)


@pytest.fixture
def video_service(
    video_repository: VideoRepository,
    member_repository: MemberRepository,
    video_member_repository: VideoMemberRepository,
    taxonomy: CohortTaxonomy,
) -> VideoService:
    return VideoService(
        video_repository=video_repository,
        member_repository=member_repository,
        video_member_repository=video_member_repository,
        taxonomy=taxonomy,
        official_channel_ids={RIN_CHANNEL_ID, YUNI_CHANNEL_ID},
    )


@pytest.fixture
def client(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Iterator[TestClient]:
    data_dir = tmp_path / "runtime-data"
    data_dir.mkdir(parents=True, exist_ok=True)

    monkeypatch.setenv("STELLA_CLIPS_DATA_DIR", str(data_dir))
    monkeypatch.setenv(
        "STELLA_CLIPS_OFFICIAL_CHANNEL_IDS",
        f"RIN={RIN_CHANNEL_ID},YUNI={YUNI_CHANNEL_ID}",
    )
    monkeypatch.setenv("STELLA_CLIPS_YOUTUBE_API_KEY", "test-youtube-key")
    monkeypatch.setenv("STELLA_CLIPS_LOG_LEVEL", "WARNING")
    reset_cached_dependencies()

    app = create_app()
    with TestClient(app) as test_client:
        yield test_client

    reset_cached_dependencies()
