from __future__ import annotations

import json
import sqlite3
from dataclasses import dataclass, field
from uuid import uuid4

from backend.app.errors import QueryValidationError
from backend.app.models.cohorts import ALL_SENTINEL, canonical_name
from backend.app.models.video_sorts import normalize_sort
from backend.app.repositories.common import (
    decode_str_dict,
    decode_str_tuple,
    normalize_timestamp_text,
    to_optional_int,
    to_optional_str,
    utc_now_iso,
)
from backend.app.repositories.database import Database
from backend.app.repositories.video_member_repository import (
    VideoMemberAppearance,
    VideoMemberRepository,
)

_ORDER_BY_SQL: dict[str, str] = {
    "date": "v.published_at DESC, v.view_count DESC, v.id ASC",
    "views": "v.view_count DESC, v.published_at DESC, v.id ASC",
    "likes": "v.like_count DESC, v.published_at DESC, v.id ASC",
    "oldest": "v.published_at ASC, v.id ASC",
}
_VIDEO_COLUMNS = """
    v.id,
    v.external_video_id,
    v.title,
    v.description,
    v.channel_id,
    v.channel_title,
    v.published_at,
    v.duration_seconds,
    v.view_count,
    v.like_count,
    v.tags_json,
    v.thumbnails_json,
    v.is_official,
    v.source_query,
    v.created_at,
    v.updated_at
"""
_MEMBER_COUNT_COLUMN = (
    "(SELECT COUNT(*) FROM video_members vm WHERE vm.video_id = v.id) AS member_count"
)


@dataclass(frozen=True)
class VideoInput:
    external_video_id: str
    title: str
    channel_id: str
    published_at: str
    source_query: str
    is_official: bool
    description: str | None = None
    channel_title: str | None = None
    duration_seconds: int | None = None
    view_count: int | None = None
    like_count: int | None = None
    tags: tuple[str, ...] = ()
    thumbnails: dict[str, str] = field(default_factory=lambda: {})
    member_names: tuple[str, ...] = ()


@dataclass(frozen=True)
class MemberRef:
    id: str
    name: str
    cohort: str


@dataclass(frozen=True)
class VideoRecord:
    id: str
    external_video_id: str
    title: str
    description: str | None
    channel_id: str
    channel_title: str | None
    published_at: str
    duration_seconds: int | None
    view_count: int | None
    like_count: int | None
    tags: tuple[str, ...]
    thumbnails: dict[str, str]
    is_official: bool
    source_query: str
    created_at: str
    updated_at: str
    member_appearances: tuple[MemberRef, ...] = ()
    member_count: int | None = None


@dataclass(frozen=True)
class VideoPage:
    videos: list[VideoRecord]
    total: int


@dataclass(frozen=True)
class UpsertOutcome:
    record: VideoRecord
    created: bool


class VideoRepository:
    def __init__(self, db: Database, *, video_member_repository: VideoMemberRepository) -> None:
        self._db = db
        self._video_members = video_member_repository

    def count(self) -> int:
        return self._count("", ())

    def count_official(self) -> int:
        return self._count("WHERE v.is_official = 1", ())

    def count_by_channel(self, channel_id: str) -> int:
        return self._count("WHERE v.channel_id = ?", (channel_id,))

    def find_many(self, *, limit: int, offset: int, sort: str | None = None) -> list[VideoRecord]:
        return self._select_page("", (), limit=limit, offset=offset, sort=sort)

    def find_official(self, *, limit: int, offset: int) -> list[VideoRecord]:
        return self._select_page(
            "WHERE v.is_official = 1", (), limit=limit, offset=offset, sort=None
        )

    def find_by_channel_id(self, channel_id: str, *, limit: int, offset: int) -> list[VideoRecord]:
        return self._select_page(
            "WHERE v.channel_id = ?", (channel_id,), limit=limit, offset=offset, sort=None
        )

    def find_by_member(
        self,
        member_name: str,
        *,
        limit: int,
        offset: int,
        is_official: bool | None = None,
        sort: str | None = None,
    ) -> VideoPage:
        normalized = canonical_name(member_name)
        clauses: list[str] = []
        params: list[object] = []
        if normalized != ALL_SENTINEL:
            clauses.append(
                """
                EXISTS (
                    SELECT 1 FROM video_members vm
                    JOIN members m ON m.id = vm.member_id
                    WHERE vm.video_id = v.id AND m.name = ?
                )
                """
            )
            params.append(normalized)
        return self._filtered_page(
            clauses, params, is_official=is_official, limit=limit, offset=offset, sort=sort
        )

    def find_by_cohort(
        self,
        cohort: str,
        *,
        limit: int,
        offset: int,
        is_official: bool | None = None,
        sort: str | None = None,
    ) -> VideoPage:
        normalized = canonical_name(cohort)
        clauses: list[str] = []
        params: list[object] = []
        if normalized != ALL_SENTINEL:
            clauses.append(
                """
                EXISTS (
                    SELECT 1 FROM video_members vm
                    JOIN members m ON m.id = vm.member_id
                    WHERE vm.video_id = v.id AND m.cohort = ?
                )
                """
            )
            params.append(normalized)
        return self._filtered_page(
            clauses, params, is_official=is_official, limit=limit, offset=offset, sort=sort
        )

    def search_by_text(self, query: str, *, limit: int, offset: int) -> list[VideoRecord]:
        pattern = f"%{_escape_like(query.strip())}%"
        return self._select_page(
            """
            WHERE v.title LIKE ? ESCAPE '\\'
               OR v.description LIKE ? ESCAPE '\\'
               OR v.tags_json LIKE ? ESCAPE '\\'
            """,
            (pattern, pattern, pattern),
            limit=limit,
            offset=offset,
            sort="views",
        )

    def find_by_id(self, video_id: str) -> VideoRecord | None:
        return self._find_one("v.id = ?", video_id)

    def find_by_external_id(self, external_video_id: str) -> VideoRecord | None:
        return self._find_one("v.external_video_id = ?", external_video_id)

    def upsert(self, video: VideoInput) -> UpsertOutcome:
        """
        Insert a video or refresh the mutable fields of an existing one.

        Identity and classification (`id`, `channel_id`, `published_at`,
        `is_official`) keep their first-write values. Nullable statistics and
        duration only overwrite when the new payload carries a value.
        """
        now_iso = utc_now_iso()
        with self._db.connection() as conn:
            existing = conn.execute(
                "SELECT id FROM videos WHERE external_video_id = ?",
                (video.external_video_id,),
            ).fetchone()
            conn.execute(
                """
                INSERT INTO videos
                (
                    id,
                    external_video_id,
                    title,
                    description,
                    channel_id,
                    channel_title,
                    published_at,
                    duration_seconds,
                    view_count,
                    like_count,
                    tags_json,
                    thumbnails_json,
                    is_official,
                    source_query,
                    created_at,
                    updated_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(external_video_id) DO UPDATE SET
                    title = excluded.title,
                    description = excluded.description,
                    channel_title = COALESCE(excluded.channel_title, videos.channel_title),
                    duration_seconds = COALESCE(excluded.duration_seconds, videos.duration_seconds),
                    view_count = COALESCE(excluded.view_count, videos.view_count),
                    like_count = COALESCE(excluded.like_count, videos.like_count),
                    tags_json = excluded.tags_json,
                    thumbnails_json = excluded.thumbnails_json,
                    source_query = excluded.source_query,
                    updated_at = excluded.updated_at
                """,
                (
                    f"vid_{uuid4().hex}",
                    video.external_video_id,
                    video.title,
                    video.description,
                    video.channel_id,
                    video.channel_title,
                    normalize_timestamp_text(video.published_at),
                    video.duration_seconds,
                    video.view_count,
                    video.like_count,
                    json.dumps(list(video.tags)),
                    json.dumps(video.thumbnails, sort_keys=True),
                    1 if video.is_official else 0,
                    video.source_query,
                    now_iso,
                    now_iso,
                ),
            )

        record = self.find_by_external_id(video.external_video_id)
        if record is None:
            raise RuntimeError(f"Upserted video vanished: {video.external_video_id}")
        return UpsertOutcome(record=record, created=existing is None)

    def reclassify_official(self, external_video_id: str, *, is_official: bool) -> bool:
        """Admin migration: the only path that rewrites `is_official` after creation."""
        with self._db.connection() as conn:
            cursor = conn.execute(
                """
                UPDATE videos
                SET is_official = ?, updated_at = ?
                WHERE external_video_id = ?
                """,
                (1 if is_official else 0, utc_now_iso(), external_video_id),
            )
        return cursor.rowcount > 0

    def delete(self, video_id: str) -> bool:
        with self._db.connection() as conn:
            cursor = conn.execute("DELETE FROM videos WHERE id = ?", (video_id,))
        return cursor.rowcount > 0

    def _count(self, where_sql: str, params: tuple[object, ...]) -> int:
        with self._db.connection() as conn:
            row = conn.execute(f"SELECT COUNT(*) AS total FROM videos v {where_sql}", params).fetchone()
        if row is None:
            return 0
        return int(row["total"])

    def _filtered_page(
        self,
        clauses: list[str],
        params: list[object],
        *,
        is_official: bool | None,
        limit: int,
        offset: int,
        sort: str | None,
    ) -> VideoPage:
        if is_official is not None:
            clauses.append("v.is_official = ?")
            params.append(1 if is_official else 0)
        where_sql = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        bound = tuple(params)
        videos = self._select_page(where_sql, bound, limit=limit, offset=offset, sort=sort)
        return VideoPage(videos=videos, total=self._count(where_sql, bound))

    def _select_page(
        self,
        where_sql: str,
        params: tuple[object, ...],
        *,
        limit: int,
        offset: int,
        sort: str | None,
    ) -> list[VideoRecord]:
        _validate_window(limit=limit, offset=offset)
        order_sql = _ORDER_BY_SQL[normalize_sort(sort)]
        if limit == 0:
            return []
        with self._db.connection() as conn:
            rows = conn.execute(
                f"""
                SELECT {_VIDEO_COLUMNS}, {_MEMBER_COUNT_COLUMN}
                FROM videos v
                {where_sql}
                ORDER BY {order_sql}
                LIMIT ? OFFSET ?
                """,
                (*params, limit, offset),
            ).fetchall()
        return self._attach_appearances(rows)

    def _find_one(self, predicate_sql: str, value: str) -> VideoRecord | None:
        with self._db.connection() as conn:
            row = conn.execute(
                f"SELECT {_VIDEO_COLUMNS} FROM videos v WHERE {predicate_sql}",
                (value,),
            ).fetchone()
        if row is None:
            return None
        records = self._attach_appearances([row])
        return records[0]

    def _attach_appearances(self, rows: list[sqlite3.Row]) -> list[VideoRecord]:
        video_ids = [str(row["id"]) for row in rows]
        appearances = self._video_members.find_by_video_ids(video_ids)
        return [_row_to_record(row, appearances.get(str(row["id"]), [])) for row in rows]


def _validate_window(*, limit: int, offset: int) -> None:
    if limit < 0:
        raise QueryValidationError("limit must be a non-negative integer", field="limit", provided=limit)
    if offset < 0:
        raise QueryValidationError(
            "offset must be a non-negative integer", field="offset", provided=offset
        )


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _row_to_record(row: sqlite3.Row, appearances: list[VideoMemberAppearance]) -> VideoRecord:
    member_count: int | None = None
    if "member_count" in row.keys():
        member_count = to_optional_int(row["member_count"])
    return VideoRecord(
        id=str(row["id"]),
        external_video_id=str(row["external_video_id"]),
        title=str(row["title"]),
        description=to_optional_str(row["description"]),
        channel_id=str(row["channel_id"]),
        channel_title=to_optional_str(row["channel_title"]),
        published_at=str(row["published_at"]),
        duration_seconds=to_optional_int(row["duration_seconds"]),
        view_count=to_optional_int(row["view_count"]),
        like_count=to_optional_int(row["like_count"]),
        tags=decode_str_tuple(row["tags_json"]),
        thumbnails=decode_str_dict(row["thumbnails_json"]),
        is_official=bool(row["is_official"]),
        source_query=str(row["source_query"]),
        created_at=str(row["created_at"]),
        updated_at=str(row["updated_at"]),
        member_appearances=tuple(
            MemberRef(id=appearance.member_id, name=appearance.member_name, cohort=appearance.cohort)
            for appearance in appearances
        ),
        member_count=member_count,
    )
