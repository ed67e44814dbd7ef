from __future__ import annotations

import logging
import math
import sqlite3
from collections.abc import Collection, Sequence
from dataclasses import dataclass, field
from typing import Literal

from backend.app.errors import NotFoundError, QueryValidationError
from backend.app.models.cohorts import ALL_SENTINEL, CohortTaxonomy, canonical_name
from backend.app.models.video_sorts import normalize_sort
from backend.app.repositories.member_repository import (
    MemberNormalizationReport,
    MemberRecord,
    MemberRepository,
)
from backend.app.repositories.video_member_repository import (
    VideoMemberAppearance,
    VideoMemberRepository,
)
from backend.app.repositories.video_repository import (
    VideoInput,
    VideoPage,
    VideoRecord,
    VideoRepository,
)
from backend.app.services.payload_converter import (
    convert_video_resources_with_report,
    detect_member_names,
)
from backend.app.telemetry import TelemetryClient

LOGGER = logging.getLogger("stella_clips.videos")

IngestStatus = Literal["created", "updated", "skipped", "failed"]
_TAGGING_PAGE_SIZE = 200


@dataclass(frozen=True)
class IngestItemOutcome:
    index: int
    external_video_id: str | None
    status: IngestStatus
    video_id: str | None = None
    members_tagged: int = 0
    reason: str | None = None


@dataclass(frozen=True)
class IngestReport:
    source_query: str
    outcomes: list[IngestItemOutcome]

    def count(self, status: IngestStatus) -> int:
        return sum(1 for outcome in self.outcomes if outcome.status == status)

    @property
    def created(self) -> int:
        return self.count("created")

    @property
    def updated(self) -> int:
        return self.count("updated")

    @property
    def skipped(self) -> int:
        return self.count("skipped")

    @property
    def failed(self) -> int:
        return self.count("failed")

    @property
    def processed(self) -> int:
        return self.created + self.updated

    @property
    def video_ids(self) -> list[str]:
        return [outcome.video_id for outcome in self.outcomes if outcome.video_id is not None]


@dataclass(frozen=True)
class SearchResult:
    videos: list[VideoRecord]
    total: int
    limit: int
    offset: int

    @property
    def page(self) -> int:
        if self.limit <= 0:
            return 1
        return self.offset // self.limit + 1

    @property
    def total_pages(self) -> int:
        if self.limit <= 0:
            return 0
        return math.ceil(self.total / self.limit)


@dataclass(frozen=True)
class VideoStats:
    total: int
    official: int
    members: int

    @property
    def unofficial(self) -> int:
        return self.total - self.official


@dataclass(frozen=True)
class TaggingReport:
    videos_scanned: int
    videos_tagged: int
    links_created: int
    links_by_member: dict[str, int] = field(default_factory=lambda: {})


class VideoService:
    def __init__(
        self,
        *,
        video_repository: VideoRepository,
        member_repository: MemberRepository,
        video_member_repository: VideoMemberRepository,
        taxonomy: CohortTaxonomy,
        official_channel_ids: Collection[str],
        telemetry: TelemetryClient | None = None,
        default_limit: int = 20,
        max_limit: int = 100,
        ingest_batch_max_items: int = 50,
    ) -> None:
        self._videos = video_repository
        self._members = member_repository
        self._video_members = video_member_repository
        self._taxonomy = taxonomy
        self._official_channel_ids = frozenset(official_channel_ids)
        self._telemetry = telemetry or TelemetryClient.disabled()
        self._default_limit = max(1, default_limit)
        self._max_limit = max(self._default_limit, max_limit)
        self._ingest_batch_max_items = max(1, ingest_batch_max_items)

    @property
    def taxonomy(self) -> CohortTaxonomy:
        return self._taxonomy

    @property
    def official_channel_ids(self) -> frozenset[str]:
        return self._official_channel_ids

    @property
    def ingest_batch_max_items(self) -> int:
        return self._ingest_batch_max_items

    def list_videos(
        self,
        *,
        limit: int | None = None,
        offset: int = 0,
        sort: str | None = None,
    ) -> SearchResult:
        resolved_limit = self._resolve_limit(limit)
        videos = self._videos.find_many(limit=resolved_limit, offset=offset, sort=sort)
        return SearchResult(
            videos=videos,
            total=self._videos.count(),
            limit=resolved_limit,
            offset=offset,
        )

    def get_video(self, video_id: str) -> VideoRecord:
        record = self._videos.find_by_id(video_id)
        if record is None:
            record = self._videos.find_by_external_id(video_id)
        if record is None:
            raise NotFoundError(f"Video not found: {video_id}", kind="video", key=video_id)
        return record

    def get_video_members(self, video_id: str) -> list[VideoMemberAppearance]:
        record = self.get_video(video_id)
        return self._video_members.find_by_video_id(record.id)

    def list_members(self, cohort: str | None = None) -> list[MemberRecord]:
        if cohort is None or canonical_name(cohort) == ALL_SENTINEL:
            return self._members.find_all()
        return self._members.find_by_cohort(self._require_cohort(cohort))

    def search_by_member(
        self,
        member: str,
        *,
        page: int | None = None,
        offset: int | None = None,
        limit: int | None = None,
        is_official: bool | None = None,
        sort: str | None = None,
    ) -> SearchResult:
        normalized = self._require_member(member)
        resolved_limit = self._resolve_limit(limit)
        resolved_offset = _resolve_offset(page=page, offset=offset, limit=resolved_limit)
        result = self._videos.find_by_member(
            normalized,
            limit=resolved_limit,
            offset=resolved_offset,
            is_official=is_official,
            sort=normalize_sort(sort),
        )
        return _to_search_result(result, limit=resolved_limit, offset=resolved_offset)

    def search_by_cohort(
        self,
        cohort: str,
        *,
        page: int | None = None,
        offset: int | None = None,
        limit: int | None = None,
        is_official: bool | None = None,
        sort: str | None = None,
    ) -> SearchResult:
        normalized = self._require_cohort(cohort)
        resolved_limit = self._resolve_limit(limit)
        resolved_offset = _resolve_offset(page=page, offset=offset, limit=resolved_limit)
        result = self._videos.find_by_cohort(
            normalized,
            limit=resolved_limit,
            offset=resolved_offset,
            is_official=is_official,
            sort=normalize_sort(sort),
        )
        return _to_search_result(result, limit=resolved_limit, offset=resolved_offset)

    def search(
        self,
        *,
        cohort: str | None = None,
        member: str | None = None,
        page: int | None = None,
        offset: int | None = None,
        limit: int | None = None,
        is_official: bool | None = None,
        sort: str | None = None,
    ) -> SearchResult:
        """Member filter wins over cohort filter; both absent means every video."""
        if member is not None and canonical_name(member) != ALL_SENTINEL:
            normalized_member = self._require_member(member)
            if cohort is not None and canonical_name(cohort) != ALL_SENTINEL:
                normalized_cohort = self._require_cohort(cohort)
                if self._taxonomy.cohort_of(normalized_member) != normalized_cohort:
                    raise QueryValidationError(
                        f"Member {normalized_member} does not belong to {normalized_cohort}",
                        field="member",
                        provided=member,
                        available=self._taxonomy.members_of(normalized_cohort),
                    )
            return self.search_by_member(
                normalized_member,
                page=page,
                offset=offset,
                limit=limit,
                is_official=is_official,
                sort=sort,
            )
        return self.search_by_cohort(
            cohort if cohort is not None else ALL_SENTINEL,
            page=page,
            offset=offset,
            limit=limit,
            is_official=is_official,
            sort=sort,
        )

    def search_videos(
        self,
        query: str,
        *,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[VideoRecord]:
        if not query.strip():
            raise QueryValidationError("Search text must not be empty", field="q", provided=query)
        return self._videos.search_by_text(query, limit=self._resolve_limit(limit), offset=offset)

    def ingest(self, raw_videos: Sequence[object], *, source_query: str) -> IngestReport:
        """
        Convert and upsert one batch of YouTube `videos` resources.

        Each item settles independently: a conversion defect is `skipped`, a
        storage error is `failed`, and neither stops the rest of the batch.
        """
        if len(raw_videos) > self._ingest_batch_max_items:
            raise QueryValidationError(
                f"Ingest batches are limited to {self._ingest_batch_max_items} videos",
                field="videos",
                provided=len(raw_videos),
            )

        with self._telemetry.timed("ingest.batch.finish", source_query=source_query) as span:
            conversion = convert_video_resources_with_report(
                raw_videos,
                self._official_channel_ids,
                source_query,
                taxonomy=self._taxonomy,
            )
            outcomes = [
                IngestItemOutcome(
                    index=defect.index,
                    external_video_id=defect.external_video_id,
                    status="skipped",
                    reason=defect.reason,
                )
                for defect in conversion.skipped
            ]
            skipped_indexes = {defect.index for defect in conversion.skipped}
            converted_indexes = [
                index for index in range(len(raw_videos)) if index not in skipped_indexes
            ]
            for index, video in zip(converted_indexes, conversion.videos, strict=True):
                outcomes.append(self._ingest_one(index, video))
            outcomes.sort(key=lambda outcome: outcome.index)

            report = IngestReport(source_query=source_query, outcomes=outcomes)
            span.set(
                requested=len(raw_videos),
                created=report.created,
                updated=report.updated,
                skipped=report.skipped,
                failed=report.failed,
            )

        LOGGER.info(
            "ingest batch finished source_query=%s requested=%s created=%s updated=%s "
            "skipped=%s failed=%s",
            source_query,
            len(raw_videos),
            report.created,
            report.updated,
            report.skipped,
            report.failed,
        )
        return report

    def tag_existing_videos(self) -> TaggingReport:
        """Backfill member links for stored videos from their query marker, title and tags."""
        members_by_name = {member.name: member for member in self._members.find_all()}
        scanned = 0
        tagged_videos = 0
        links_created = 0
        links_by_member: dict[str, int] = {}

        offset = 0
        while True:
            batch = self._videos.find_many(limit=_TAGGING_PAGE_SIZE, offset=offset, sort="oldest")
            if not batch:
                break
            offset += len(batch)
            for video in batch:
                scanned += 1
                detected = detect_member_names(
                    title=video.title,
                    tags=video.tags,
                    source_query=video.source_query,
                    taxonomy=self._taxonomy,
                )
                created = 0
                for name in detected:
                    member = members_by_name.get(name)
                    if member is None:
                        continue
                    if self._video_members.create_many([(video.id, member.id)]) > 0:
                        created += 1
                        links_by_member[name] = links_by_member.get(name, 0) + 1
                if created:
                    tagged_videos += 1
                    links_created += created

        LOGGER.info(
            "tagging migration finished scanned=%s tagged=%s links_created=%s",
            scanned,
            tagged_videos,
            links_created,
        )
        return TaggingReport(
            videos_scanned=scanned,
            videos_tagged=tagged_videos,
            links_created=links_created,
            links_by_member=links_by_member,
        )

    def normalize_member_names(self) -> MemberNormalizationReport:
        report = self._members.normalize_names_to_uppercase()
        for error in report.errors:
            LOGGER.warning(
                "uppercase migration row failed member_id=%s name=%s error=%s",
                error.id,
                error.name,
                error.reason,
            )
        LOGGER.info(
            "uppercase migration finished renamed=%s merged=%s errors=%s",
            len(report.renames),
            sum(1 for rename in report.renames if rename.merged_into is not None),
            len(report.errors),
        )
        return report

    def seed_members(self) -> list[MemberRecord]:
        return self._members.sync_from_taxonomy(self._taxonomy)

    def stats(self) -> VideoStats:
        return VideoStats(
            total=self._videos.count(),
            official=self._videos.count_official(),
            members=len(self._members.find_all()),
        )

    def count_by_channel(self, channel_id: str) -> int:
        return self._videos.count_by_channel(channel_id)

    def _ingest_one(self, index: int, video: VideoInput) -> IngestItemOutcome:
        try:
            outcome = self._videos.upsert(video)
        except sqlite3.Error as exc:
            LOGGER.exception(
                "ingest upsert failed video_id=%s error=%s",
                video.external_video_id,
                exc,
            )
            return IngestItemOutcome(
                index=index,
                external_video_id=video.external_video_id,
                status="failed",
                reason=str(exc),
            )

        status: IngestStatus = "created" if outcome.created else "updated"
        try:
            members_tagged = self._tag_video(outcome.record.id, video.member_names)
        except sqlite3.Error as exc:
            # The video row is already committed; only its member links are missing.
            LOGGER.exception(
                "ingest tagging failed video_id=%s error=%s",
                video.external_video_id,
                exc,
            )
            return IngestItemOutcome(
                index=index,
                external_video_id=video.external_video_id,
                status=status,
                video_id=outcome.record.id,
                reason=f"member tagging failed: {exc}",
            )
        return IngestItemOutcome(
            index=index,
            external_video_id=video.external_video_id,
            status=status,
            video_id=outcome.record.id,
            members_tagged=members_tagged,
        )


    def _tag_video(self, video_id: str, member_names: Sequence[str]) -> int:
        pairs: list[tuple[str, str]] = []
        for name in member_names:
            member = self._members.find_by_name(name)
            if member is None:
                LOGGER.debug("ingest tag skipped member_not_seeded=%s video_id=%s", name, video_id)
                continue
            pairs.append((video_id, member.id))
        if not pairs:
            return 0
        return self._video_members.create_many(pairs)

    def _resolve_limit(self, limit: int | None) -> int:
        if limit is None:
            return self._default_limit
        if limit < 1 or limit > self._max_limit:
            raise QueryValidationError(
                f"limit must be between 1 and {self._max_limit}",
                field="limit",
                provided=limit,
            )
        return limit

    def _require_member(self, member: str) -> str:
        if canonical_name(member) == ALL_SENTINEL:
            return ALL_SENTINEL
        normalized = self._taxonomy.normalize_member(member)
        if normalized is None:
            raise QueryValidationError(
                f"Invalid member: {member}",
                field="member",
                provided=member,
                available=(ALL_SENTINEL, *self._taxonomy.all_members),
            )
        return normalized

    def _require_cohort(self, cohort: str) -> str:
        if canonical_name(cohort) == ALL_SENTINEL:
            return ALL_SENTINEL
        normalized = self._taxonomy.normalize_cohort(cohort)
        if normalized is None:
            raise QueryValidationError(
                f"Invalid cohort: {cohort}",
                field="cohort",
                provided=cohort,
                available=(ALL_SENTINEL, *self._taxonomy.cohorts),
            )
        return normalized


def _resolve_offset(*, page: int | None, offset: int | None, limit: int) -> int:
    if page is not None and offset is not None:
        raise QueryValidationError("Use either page or offset, not both", field="page", provided=page)
    if page is not None:
        if page < 1:
            raise QueryValidationError("page must be a positive integer", field="page", provided=page)
        return (page - 1) * limit
    if offset is None:
        return 0
    if offset < 0:
        raise QueryValidationError(
            "offset must be a non-negative integer", field="offset", provided=offset
        )
    return offset


def _to_search_result(page: VideoPage, *, limit: int, offset: int) -> SearchResult:
    return SearchResult(videos=page.videos, total=page.total, limit=limit, offset=offset)
