from __future__ import annotations

from functools import lru_cache

from backend.app.config import AppSettings, load_settings
from backend.app.models.cohorts import CohortTaxonomy, load_cohort_taxonomy
from backend.app.repositories.database import Database
from backend.app.repositories.member_repository import MemberRepository
from backend.app.repositories.video_member_repository import VideoMemberRepository
from backend.app.repositories.video_repository import VideoRepository
from backend.app.services.video_service import VideoService
from backend.app.services.youtube_service import YouTubeService
from backend.app.telemetry import TelemetryClient, build_telemetry_client


@lru_cache(maxsize=1)
def get_settings() -> AppSettings:
    return load_settings()


@lru_cache(maxsize=1)
def get_taxonomy() -> CohortTaxonomy:
    return load_cohort_taxonomy(get_settings().cohort_table_path)


@lru_cache(maxsize=1)
def get_database() -> Database:
    database = Database(get_settings().db_path)
    database.initialize()
    return database


@lru_cache(maxsize=1)
def get_video_service() -> VideoService:
    settings = get_settings()
    database = get_database()
    video_member_repository = VideoMemberRepository(database)
    member_repository = MemberRepository(database)
    taxonomy = get_taxonomy()
    member_repository.sync_from_taxonomy(taxonomy)

    return VideoService(
        video_repository=VideoRepository(
            database,
            video_member_repository=video_member_repository,
        ),
        member_repository=member_repository,
        video_member_repository=video_member_repository,
        taxonomy=taxonomy,
        official_channel_ids=settings.official_channel_id_set,
        telemetry=get_telemetry(),
        default_limit=settings.search_default_limit,
        max_limit=settings.search_max_limit,
        ingest_batch_max_items=settings.ingest_batch_max_items,
    )


@lru_cache(maxsize=1)
def get_youtube_service() -> YouTubeService:
    settings = get_settings()
    return YouTubeService(
        video_service=get_video_service(),
        api_key=settings.youtube_api_key,
        official_channel_ids=settings.official_channel_ids,
        base_url=settings.youtube_api_base_url,
        http_timeout_seconds=settings.youtube_http_timeout_seconds,
        search_max_results=settings.youtube_search_max_results,
        batch_max_channels=settings.batch_max_channels,
    )


@lru_cache(maxsize=1)
def get_telemetry() -> TelemetryClient:
    settings = get_settings()
    return build_telemetry_client(
        enabled=settings.telemetry_enabled,
        sink=settings.telemetry_sink,
    )


def reset_cached_dependencies() -> None:
    get_youtube_service.cache_clear()
    get_video_service.cache_clear()
    get_database.cache_clear()
    get_taxonomy.cache_clear()
    get_telemetry.cache_clear()
    get_settings.cache_clear()
