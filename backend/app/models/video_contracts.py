from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from backend.app.repositories.member_repository import (
    MemberNormalizationReport,
    MemberRecord,
)
from backend.app.repositories.video_member_repository import VideoMemberAppearance
from backend.app.repositories.video_repository import VideoRecord
from backend.app.services.duration_codec import format_duration_label
from backend.app.services.video_service import (
    IngestReport,
    SearchResult,
    TaggingReport,
    VideoStats,
)
from backend.app.services.youtube_service import BatchProcessResult, ChannelProcessResult


def _default_raw_videos() -> list[dict[str, Any]]:
    return []


class MemberRefModel(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: str
    name: str
    cohort: str


class VideoModel(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: str
    external_video_id: str
    title: str
    description: str | None = None
    channel_id: str
    channel_title: str | None = None
    published_at: str
    duration_seconds: int | None = None
    duration_label: str | None = None
    view_count: int | None = None
    like_count: int | None = None
    tags: list[str] = Field(default_factory=list)
    thumbnails: dict[str, str] = Field(default_factory=dict)
    is_official: bool
    source_query: str
    members: list[MemberRefModel] = Field(default_factory=list)
    member_count: int | None = None
    created_at: str
    updated_at: str

    @classmethod
    def from_record(cls, record: VideoRecord) -> VideoModel:
        return cls(
            id=record.id,
            external_video_id=record.external_video_id,
            title=record.title,
            description=record.description,
            channel_id=record.channel_id,
            channel_title=record.channel_title,
            published_at=record.published_at,
            duration_seconds=record.duration_seconds,
            duration_label=format_duration_label(record.duration_seconds),
            view_count=record.view_count,
            like_count=record.like_count,
            tags=list(record.tags),
            thumbnails=dict(record.thumbnails),
            is_official=record.is_official,
            source_query=record.source_query,
            members=[
                MemberRefModel(id=member.id, name=member.name, cohort=member.cohort)
                for member in record.member_appearances
            ],
            member_count=record.member_count,
            created_at=record.created_at,
            updated_at=record.updated_at,
        )


class VideoSearchResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    videos: list[VideoModel]
    total: int
    limit: int
    offset: int
    page: int
    total_pages: int

    @classmethod
    def from_result(cls, result: SearchResult) -> VideoSearchResponse:
        return cls(
            videos=[VideoModel.from_record(record) for record in result.videos],
            total=result.total,
            limit=result.limit,
            offset=result.offset,
            page=result.page,
            total_pages=result.total_pages,
        )


class VideoMemberModel(BaseModel):
    model_config = ConfigDict(extra="forbid")

    member_id: str
    name: str
    cohort: str
    tagged_at: str

    @classmethod
    def from_appearance(cls, appearance: VideoMemberAppearance) -> VideoMemberModel:
        return cls(
            member_id=appearance.member_id,
            name=appearance.member_name,
            cohort=appearance.cohort,
            tagged_at=appearance.created_at,
        )


class VideoMembersResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    video_id: str
    members: list[VideoMemberModel]


class MemberModel(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: str
    name: str
    display_name: str
    cohort: str
    hashtags: list[str]

    @classmethod
    def from_record(cls, record: MemberRecord) -> MemberModel:
        return cls(
            id=record.id,
            name=record.name,
            display_name=record.display_name,
            cohort=record.cohort,
            hashtags=list(record.hashtags),
        )


class MembersResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    cohorts: dict[str, list[str]]
    members: list[MemberModel]


class VideoStatsResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    total: int
    official: int
    unofficial: int
    members: int

    @classmethod
    def from_stats(cls, stats: VideoStats) -> VideoStatsResponse:
        return cls(
            total=stats.total,
            official=stats.official,
            unofficial=stats.unofficial,
            members=stats.members,
        )


class IngestRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    source_query: str = Field(default="manual", min_length=1)
    videos: list[dict[str, Any]] = Field(default_factory=_default_raw_videos)


class IngestOutcomeModel(BaseModel):
    model_config = ConfigDict(extra="forbid")

    index: int
    external_video_id: str | None = None
    status: Literal["created", "updated", "skipped", "failed"]
    video_id: str | None = None
    members_tagged: int = 0
    reason: str | None = None


class IngestResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    source_query: str
    requested: int
    created: int
    updated: int
    skipped: int
    failed: int
    outcomes: list[IngestOutcomeModel]

    @classmethod
    def from_report(cls, report: IngestReport) -> IngestResponse:
        return cls(
            source_query=report.source_query,
            requested=len(report.outcomes),
            created=report.created,
            updated=report.updated,
            skipped=report.skipped,
            failed=report.failed,
            outcomes=[
                IngestOutcomeModel(
                    index=outcome.index,
                    external_video_id=outcome.external_video_id,
                    status=outcome.status,
                    video_id=outcome.video_id,
                    members_tagged=outcome.members_tagged,
                    reason=outcome.reason,
                )
                for outcome in report.outcomes
            ],
        )


class MemberFetchRequest(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    stella: str = Field(min_length=1)
    max_results: int | None = Field(default=None, alias="maxResults", ge=1, le=50)


class BatchFetchRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    stellas: list[str]


class ChannelProcessResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    member: str
    channel_id: str | None = None
    success: bool
    videos_found: int
    videos_processed: int
    ingest: IngestResponse | None = None
    error: str | None = None

    @classmethod
    def from_result(cls, result: ChannelProcessResult) -> ChannelProcessResponse:
        return cls(
            member=result.member,
            channel_id=result.channel_id,
            success=result.success,
            videos_found=result.videos_found,
            videos_processed=result.videos_processed,
            ingest=IngestResponse.from_report(result.report) if result.report is not None else None,
            error=result.error,
        )


class BatchProcessResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    requested: list[str]
    processed: list[str]
    total_channels: int
    successful_channels: int
    failed_channels: int
    total_videos_processed: int
    duplicates_removed: int
    results: list[ChannelProcessResponse]

    @classmethod
    def from_result(cls, result: BatchProcessResult) -> BatchProcessResponse:
        return cls(
            requested=result.requested,
            processed=result.processed,
            total_channels=len(result.processed),
            successful_channels=len(result.successful),
            failed_channels=len(result.failed),
            total_videos_processed=result.total_videos_processed,
            duplicates_removed=result.duplicates_removed,
            results=[ChannelProcessResponse.from_result(item) for item in result.results],
        )


class TaggingResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    videos_scanned: int
    videos_tagged: int
    links_created: int
    links_by_member: dict[str, int]

    @classmethod
    def from_report(cls, report: TaggingReport) -> TaggingResponse:
        return cls(
            videos_scanned=report.videos_scanned,
            videos_tagged=report.videos_tagged,
            links_created=report.links_created,
            links_by_member=dict(report.links_by_member),
        )


class MemberRenameModel(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: str
    old_name: str
    new_name: str
    merged_into: str | None = None


class MemberRenameErrorModel(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: str
    name: str
    reason: str


class UppercaseMigrationResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    renamed: int
    renames: list[MemberRenameModel]
    errors: list[MemberRenameErrorModel]

    @classmethod
    def from_report(cls, report: MemberNormalizationReport) -> UppercaseMigrationResponse:
        return cls(
            renamed=len(report.renames),
            renames=[
                MemberRenameModel(
                    id=rename.id,
                    old_name=rename.old_name,
                    new_name=rename.new_name,
                    merged_into=rename.merged_into,
                )
                for rename in report.renames
            ],
            errors=[
                MemberRenameErrorModel(id=error.id, name=error.name, reason=error.reason)
                for error in report.errors
            ],
        )


class HealthResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    status: Literal["ok", "degraded"]
    database: bool
    youtube_configured: bool
