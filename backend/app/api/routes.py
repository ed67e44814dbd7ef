from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query
from structlog.contextvars import bind_contextvars, reset_contextvars

from backend.app.dependencies import get_database, get_video_service, get_youtube_service
from backend.app.errors import (
    NotFoundError,
    QueryValidationError,
    StellaClipsError,
    TerminalClientError,
    TransientIOError,
)
from backend.app.models.video_contracts import (
    BatchFetchRequest,
    BatchProcessResponse,
    ChannelProcessResponse,
    HealthResponse,
    IngestRequest,
    IngestResponse,
    MemberFetchRequest,
    MemberModel,
    MembersResponse,
    TaggingResponse,
    UppercaseMigrationResponse,
    VideoMemberModel,
    VideoMembersResponse,
    VideoModel,
    VideoSearchResponse,
    VideoStatsResponse,
)
from backend.app.repositories.database import Database
from backend.app.services.video_service import VideoService
from backend.app.services.youtube_service import YouTubeService, YouTubeServiceError

router = APIRouter()

VideoServiceDep = Annotated[VideoService, Depends(get_video_service)]
YouTubeServiceDep = Annotated[YouTubeService, Depends(get_youtube_service)]


@contextmanager
def _domain_errors() -> Iterator[None]:
    try:
        yield
    except QueryValidationError as exc:
        raise HTTPException(status_code=400, detail=exc.to_detail()) from exc
    except NotFoundError as exc:
        raise HTTPException(
            status_code=404,
            detail={"message": str(exc), "kind": exc.kind, "key": exc.key},
        ) from exc
    except (YouTubeServiceError, TerminalClientError, TransientIOError) as exc:
        raise HTTPException(status_code=502, detail={"message": str(exc)}) from exc
    except StellaClipsError as exc:
        raise HTTPException(status_code=500, detail={"message": str(exc)}) from exc


def _parse_int_param(name: str, raw_value: str | None) -> int | None:
    if raw_value is None or not raw_value.strip():
        return None
    try:
        return int(raw_value.strip())
    except ValueError as exc:
        raise QueryValidationError(
            f"{name} must be an integer",
            field=name,
            provided=raw_value,
        ) from exc


def _parse_official_flag(raw_value: str | None) -> bool | None:
    if raw_value is None:
        return None
    normalized = raw_value.strip().lower()
    if normalized == "true":
        return True
    if normalized == "false":
        return False
    raise QueryValidationError(
        'isOfficial must be "true" or "false"',
        field="isOfficial",
        provided=raw_value,
        available=("true", "false"),
    )


def _first_present(*values: str | None) -> str | None:
    for value in values:
        if value is not None and value.strip():
            return value
    return None


@router.get(
    "/videos/search",
    response_model=VideoSearchResponse,
    tags=["videos"],
    operation_id="search_videos",
)
def search_videos(
    service: VideoServiceDep,
    cohort: str | None = None,
    gen: str | None = None,
    member: str | None = None,
    stella: str | None = None,
    sort: str | None = None,
    limit: str | None = None,
    max_result: Annotated[str | None, Query(alias="maxResult")] = None,
    offset: str | None = None,
    page: str | None = None,
    is_official: Annotated[str | None, Query(alias="isOfficial")] = None,
) -> VideoSearchResponse:
    with _domain_errors():
        result = service.search(
            cohort=_first_present(cohort, gen),
            member=_first_present(member, stella),
            sort=sort,
            limit=_parse_int_param("limit", _first_present(limit, max_result)),
            offset=_parse_int_param("offset", offset),
            page=_parse_int_param("page", page),
            is_official=_parse_official_flag(is_official),
        )
    return VideoSearchResponse.from_result(result)


@router.get(
    "/videos/stats",
    response_model=VideoStatsResponse,
    tags=["videos"],
    operation_id="video_stats",
)
def video_stats(service: VideoServiceDep) -> VideoStatsResponse:
    return VideoStatsResponse.from_stats(service.stats())


@router.get(
    "/videos",
    response_model=VideoSearchResponse,
    tags=["videos"],
    operation_id="list_videos",
)
def list_videos(
    service: VideoServiceDep,
    limit: Annotated[int | None, Query(ge=1)] = None,
    offset: Annotated[int, Query(ge=0)] = 0,
    sort: str | None = None,
) -> VideoSearchResponse:
    with _domain_errors():
        result = service.list_videos(limit=limit, offset=offset, sort=sort)
    return VideoSearchResponse.from_result(result)


@router.get(
    "/videos/{video_id}",
    response_model=VideoModel,
    tags=["videos"],
    operation_id="get_video",
)
def get_video(video_id: str, service: VideoServiceDep) -> VideoModel:
    with _domain_errors():
        record = service.get_video(video_id)
    return VideoModel.from_record(record)


@router.get(
    "/videos/{video_id}/members",
    response_model=VideoMembersResponse,
    tags=["videos"],
    operation_id="get_video_members",
)
def get_video_members(video_id: str, service: VideoServiceDep) -> VideoMembersResponse:
    with _domain_errors():
        appearances = service.get_video_members(video_id)
    return VideoMembersResponse(
        video_id=video_id,
        members=[VideoMemberModel.from_appearance(item) for item in appearances],
    )


@router.get(
    "/members",
    response_model=MembersResponse,
    tags=["members"],
    operation_id="list_members",
)
def list_members(service: VideoServiceDep, cohort: str | None = None) -> MembersResponse:
    with _domain_errors():
        members = service.list_members(cohort)
    return MembersResponse(
        cohorts=service.taxonomy.as_dict(),
        members=[MemberModel.from_record(member) for member in members],
    )


@router.post(
    "/videos/ingest",
    response_model=IngestResponse,
    tags=["ingest"],
    operation_id="ingest_videos",
)
def ingest_videos(request: IngestRequest, service: VideoServiceDep) -> IngestResponse:
    context_tokens = bind_contextvars(ingest_source_query=request.source_query)
    try:
        with _domain_errors():
            report = service.ingest(request.videos, source_query=request.source_query)
    finally:
        reset_contextvars(**context_tokens)
    return IngestResponse.from_report(report)


@router.post(
    "/youtube/official",
    response_model=ChannelProcessResponse,
    tags=["youtube"],
    operation_id="youtube_fetch_official",
)
def youtube_fetch_official(
    request: MemberFetchRequest,
    youtube: YouTubeServiceDep,
) -> ChannelProcessResponse:
    with _domain_errors():
        result = youtube.fetch_official_channel_videos(
            request.stella,
            max_results=request.max_results,
        )
    return ChannelProcessResponse.from_result(result)


@router.post(
    "/youtube/clip",
    response_model=ChannelProcessResponse,
    tags=["youtube"],
    operation_id="youtube_search_clips",
)
def youtube_search_clips(
    request: MemberFetchRequest,
    youtube: YouTubeServiceDep,
) -> ChannelProcessResponse:
    with _domain_errors():
        result = youtube.search_clip_videos(request.stella, max_results=request.max_results)
    return ChannelProcessResponse.from_result(result)


@router.post(
    "/youtube/batch",
    response_model=BatchProcessResponse,
    tags=["youtube"],
    operation_id="youtube_batch_process",
)
def youtube_batch_process(
    request: BatchFetchRequest,
    youtube: YouTubeServiceDep,
) -> BatchProcessResponse:
    with _domain_errors():
        result = youtube.batch_process_channels(request.stellas)
    return BatchProcessResponse.from_result(result)


@router.post(
    "/admin/migrate-video-members",
    response_model=TaggingResponse,
    tags=["admin"],
    operation_id="admin_migrate_video_members",
)
def admin_migrate_video_members(service: VideoServiceDep) -> TaggingResponse:
    return TaggingResponse.from_report(service.tag_existing_videos())


@router.post(
    "/admin/uppercase-migration",
    response_model=UppercaseMigrationResponse,
    tags=["admin"],
    operation_id="admin_uppercase_migration",
)
def admin_uppercase_migration(service: VideoServiceDep) -> UppercaseMigrationResponse:
    return UppercaseMigrationResponse.from_report(service.normalize_member_names())


@router.get(
    "/health",
    response_model=HealthResponse,
    tags=["system"],
    operation_id="health_check",
)
def health_check(
    database: Annotated[Database, Depends(get_database)],
    youtube: YouTubeServiceDep,
) -> HealthResponse:
    database_ok = database.is_healthy()
    return HealthResponse(
        status="ok" if database_ok else "degraded",
        database=database_ok,
        youtube_configured=youtube.configured,
    )
