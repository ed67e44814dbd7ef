from __future__ import annotations

import sqlite3

import pytest

from backend.app.errors import QueryValidationError
from backend.app.models.cohorts import CohortTaxonomy
from backend.app.models.video_sorts import normalize_sort
from backend.app.repositories.database import Database
from backend.app.repositories.member_repository import MemberRepository
from backend.app.repositories.video_member_repository import VideoMemberRepository
from backend.app.repositories.video_repository import VideoInput, VideoRepository


def _video_input(
    external_video_id: str,
    *,
    published_at: str,
    is_official: bool = False,
    view_count: int | None = 100,
    like_count: int | None = 10,
    title: str = "Stream highlights",
    channel_id: str = "UC_fan_clips",
    duration_seconds: int | None = 253,
) -> VideoInput:
    return VideoInput(
        external_video_id=external_video_id,
        title=title,
        channel_id=channel_id,
        published_at=published_at,
        source_query="manual",
        is_official=is_official,
        duration_seconds=duration_seconds,
        view_count=view_count,
        like_count=like_count,
        tags=("stellive",),
        thumbnails={"default": f"https://i.ytimg.com/vi/{external_video_id}/default.jpg"},
    )


def _tag(
    member_repository: MemberRepository,
    video_member_repository: VideoMemberRepository,
    video_id: str,
    *names: str,
) -> None:
    pairs: list[tuple[str, str]] = []
    for name in names:
        member = member_repository.find_by_name(name)
        assert member is not None
        pairs.append((video_id, member.id))
    video_member_repository.create_many(pairs)


@pytest.fixture
def seeded(
    video_repository: VideoRepository,
    member_repository: MemberRepository,
    video_member_repository: VideoMemberRepository,
) -> dict[str, str]:
    ids: dict[str, str] = {}
    rows = [
        ("ext_a", "2025-01-01T00:00:00+00:00", True, 500, ("RIN",)),
        ("ext_b", "2025-01-02T00:00:00+00:00", False, 50, ("RIN", "NANA")),
        ("ext_c", "2025-01-03T00:00:00+00:00", False, 900, ("HINA",)),
        ("ext_d", "2025-01-04T00:00:00+00:00", True, 10, ("YUNI",)),
        ("ext_e", "2025-01-05T00:00:00+00:00", False, 300, ()),
    ]
    for external_id, published_at, is_official, views, members in rows:
        outcome = video_repository.upsert(
            _video_input(
                external_id,
                published_at=published_at,
                is_official=is_official,
                view_count=views,
            )
        )
        ids[external_id] = outcome.record.id
        if members:
            _tag(member_repository, video_member_repository, outcome.record.id, *members)
    return ids


def test_initialize_creates_schema(database: Database) -> None:
    with database.connection() as conn:
        rows = conn.execute("SELECT name FROM sqlite_master WHERE type = 'table'").fetchall()
    assert {"videos", "members", "video_members"} <= {str(row["name"]) for row in rows}
    assert database.is_healthy() is True


def test_upsert_creates_then_updates_mutable_fields_only(video_repository: VideoRepository) -> None:
    first = video_repository.upsert(
        _video_input("ext_1", published_at="2025-01-01T00:00:00+00:00", is_official=True)
    )
    second = video_repository.upsert(
        _video_input(
            "ext_1",
            published_at="2030-01-01T00:00:00+00:00",
            is_official=False,
            title="Renamed",
            channel_id="UC_other",
            view_count=999,
            like_count=None,
            duration_seconds=None,
        )
    )

    assert first.created is True
    assert second.created is False
    assert second.record.id == first.record.id
    assert second.record.title == "Renamed"
    assert second.record.view_count == 999
    assert second.record.like_count == 10
    assert second.record.duration_seconds == 253
    assert second.record.is_official is True
    assert second.record.channel_id == "UC_fan_clips"
    assert second.record.published_at == "2025-01-01T00:00:00+00:00"
    assert video_repository.count() == 1


def test_upsert_stores_fixed_width_published_at(video_repository: VideoRepository) -> None:
    video_repository.upsert(
        _video_input("ext_fraction", published_at="2025-03-01T10:00:00.500+00:00", view_count=1)
    )
    video_repository.upsert(_video_input("ext_later", published_at="2025-03-01T10:00:01Z", view_count=1))
    video_repository.upsert(_video_input("ext_earlier", published_at="2025-03-01T09:59:59Z", view_count=1))

    videos = video_repository.find_many(limit=10, offset=0)

    assert [video.external_video_id for video in videos] == ["ext_later", "ext_fraction", "ext_earlier"]
    assert videos[1].published_at == "2025-03-01T10:00:00+00:00"



def test_find_many_default_order_and_window(
    video_repository: VideoRepository,
    seeded: dict[str, str],
) -> None:
    page = video_repository.find_many(limit=2, offset=0)
    assert [video.external_video_id for video in page] == ["ext_e", "ext_d"]
    assert video_repository.find_many(limit=5, offset=video_repository.count()) == []
    assert [video.external_video_id for video in video_repository.find_many(limit=2, offset=0, sort="views")] == [
        "ext_c",
        "ext_a",
    ]


def test_find_many_attaches_appearances(
    video_repository: VideoRepository,
    seeded: dict[str, str],
) -> None:
    videos = {video.external_video_id: video for video in video_repository.find_many(limit=10, offset=0)}
    assert [member.name for member in videos["ext_b"].member_appearances] == ["NANA", "RIN"]
    assert videos["ext_b"].member_count == 2
    assert videos["ext_e"].member_appearances == ()


def test_negative_window_is_rejected(video_repository: VideoRepository) -> None:
    with pytest.raises(QueryValidationError):
        video_repository.find_many(limit=-1, offset=0)
    with pytest.raises(QueryValidationError):
        video_repository.find_by_member("RIN", limit=5, offset=-1)


def test_find_by_member_is_case_insensitive(
    video_repository: VideoRepository,
    seeded: dict[str, str],
) -> None:
    lower = video_repository.find_by_member("rin", limit=10, offset=0)
    upper = video_repository.find_by_member("RIN", limit=10, offset=0)

    assert lower == upper
    assert lower.total == 2
    assert [video.external_video_id for video in lower.videos] == ["ext_b", "ext_a"]


def test_find_by_member_all_and_official_filter(
    video_repository: VideoRepository,
    seeded: dict[str, str],
) -> None:
    everything = video_repository.find_by_member("ALL", limit=2, offset=0)
    assert everything.total == 5
    assert len(everything.videos) == 2

    official = video_repository.find_by_member("RIN", limit=10, offset=0, is_official=True)
    assert [video.external_video_id for video in official.videos] == ["ext_a"]
    assert official.total == 1


def test_find_by_cohort(video_repository: VideoRepository, seeded: dict[str, str]) -> None:
    cliche = video_repository.find_by_cohort("cliche", limit=10, offset=0)
    assert cliche.total == 2
    assert {video.external_video_id for video in cliche.videos} == {"ext_a", "ext_b"}

    unknown = video_repository.find_by_cohort("NOPE", limit=10, offset=0)
    assert unknown.total == 0


def test_counts_and_official_lookups(video_repository: VideoRepository, seeded: dict[str, str]) -> None:
    assert video_repository.count() == 5
    assert video_repository.count_official() == 2
    assert video_repository.count_official() <= video_repository.count()
    assert video_repository.count_by_channel("UC_fan_clips") == 5
    assert [video.external_video_id for video in video_repository.find_official(limit=10, offset=0)] == [
        "ext_d",
        "ext_a",
    ]


def test_reclassify_official_is_explicit(video_repository: VideoRepository, seeded: dict[str, str]) -> None:
    assert video_repository.reclassify_official("ext_e", is_official=True) is True
    assert video_repository.count_official() == 3
    assert video_repository.reclassify_official("missing", is_official=True) is False


def test_search_by_text(video_repository: VideoRepository) -> None:
    video_repository.upsert(
        _video_input("ext_song", published_at="2025-01-01T00:00:00+00:00", title="100% karaoke", view_count=5)
    )
    video_repository.upsert(
        _video_input("ext_game", published_at="2025-01-02T00:00:00+00:00", title="Horror game", view_count=9)
    )

    assert [video.external_video_id for video in video_repository.search_by_text("karaoke", limit=10, offset=0)] == [
        "ext_song"
    ]
    assert [video.external_video_id for video in video_repository.search_by_text("100%", limit=10, offset=0)] == [
        "ext_song"
    ]


def test_delete_cascades_to_appearances(
    video_repository: VideoRepository,
    video_member_repository: VideoMemberRepository,
    seeded: dict[str, str],
) -> None:
    video_id = seeded["ext_b"]
    assert video_repository.delete(video_id) is True
    assert video_member_repository.find_by_video_id(video_id) == []
    assert video_repository.find_by_id(video_id) is None


def test_video_member_create_many_is_idempotent(
    member_repository: MemberRepository,
    video_member_repository: VideoMemberRepository,
    seeded: dict[str, str],
) -> None:
    rin = member_repository.find_by_name("rin")
    assert rin is not None
    video_id = seeded["ext_c"]

    assert video_member_repository.create_many([(video_id, rin.id), (video_id, rin.id)]) == 1
    assert video_member_repository.create_many([(video_id, rin.id)]) == 0
    assert video_member_repository.exists(video_id, rin.id) is True
    assert [item.video_id for item in video_member_repository.find_by_member_id(rin.id)] == [
        seeded["ext_c"],
        seeded["ext_b"],
        seeded["ext_a"],
    ]
    assert video_member_repository.delete_by_video_id(video_id) == 2


def test_video_member_rejects_unknown_video(
    member_repository: MemberRepository,
    video_member_repository: VideoMemberRepository,
) -> None:
    rin = member_repository.find_by_name("RIN")
    assert rin is not None
    with pytest.raises(sqlite3.IntegrityError):
        video_member_repository.create_many([("vid_missing", rin.id)])


def test_member_sync_is_idempotent(database: Database, taxonomy: CohortTaxonomy) -> None:
    repository = MemberRepository(database)
    first = repository.sync_from_taxonomy(taxonomy)
    second = repository.sync_from_taxonomy(taxonomy)

    assert [member.id for member in first] == [member.id for member in second]
    assert len(first) == 9
    assert [member.name for member in repository.find_by_cohort("universe")] == [
        "HINA",
        "LIZE",
        "MASHIRO",
        "TABI",
    ]
    assert repository.exists_by_name("buki") is True
    assert repository.find_by_name("nobody") is None


def test_normalize_names_to_uppercase(database: Database, member_repository: MemberRepository) -> None:
    with database.connection() as conn:
        conn.execute("UPDATE members SET name = 'Rin' WHERE name = 'RIN'")

    report = member_repository.normalize_names_to_uppercase()

    assert [(rename.old_name, rename.new_name) for rename in report.renames] == [("Rin", "RIN")]
    assert report.renames[0].merged_into is None
    assert report.errors == []
    assert member_repository.normalize_names_to_uppercase().renames == []


def test_normalize_names_merges_legacy_row_into_canonical_member(
    database: Database,
    member_repository: MemberRepository,
    video_member_repository: VideoMemberRepository,
    video_repository: VideoRepository,
) -> None:
    shared = video_repository.upsert(_video_input("yt_shared", published_at="2025-01-01T00:00:00Z"))
    legacy_only = video_repository.upsert(_video_input("yt_legacy", published_at="2025-01-02T00:00:00Z"))
    hina = member_repository.find_by_name("HINA")
    assert hina is not None
    with database.connection() as conn:
        conn.execute(
            """
            INSERT INTO members
            (id, name, display_name, cohort, hashtags_json, created_at, updated_at)
            VALUES ('mem_legacy', 'Hina', 'Hina', 'UNIVERSE', '[]', '2024-01-01', '2024-01-01')
            """
        )
    video_member_repository.create_many(
        [
            (shared.record.id, hina.id),
            (shared.record.id, "mem_legacy"),
            (legacy_only.record.id, "mem_legacy"),
        ]
    )

    report = member_repository.normalize_names_to_uppercase()

    assert report.errors == []
    assert [(rename.id, rename.merged_into) for rename in report.renames] == [("mem_legacy", hina.id)]
    assert member_repository.find_by_id("mem_legacy") is None
    assert video_member_repository.find_by_member_id("mem_legacy") == []
    assert sorted(
        appearance.video_id for appearance in video_member_repository.find_by_member_id(hina.id)
    ) == sorted([shared.record.id, legacy_only.record.id])


def test_normalize_names_reports_failing_row_and_continues(
    database: Database,
    member_repository: MemberRepository,
) -> None:
    with database.connection() as conn:
        conn.execute("UPDATE members SET name = 'Rin' WHERE name = 'RIN'")
        conn.execute("UPDATE members SET name = 'Nana' WHERE name = 'NANA'")
        conn.execute(
            """
            CREATE TRIGGER block_rin_rename BEFORE UPDATE ON members
            WHEN old.name = 'Rin'
            BEGIN
                SELECT RAISE(ABORT, 'row is locked');
            END
            """
        )

    report = member_repository.normalize_names_to_uppercase()

    assert [(rename.old_name, rename.new_name) for rename in report.renames] == [("Nana", "NANA")]
    assert [(error.name, error.reason) for error in report.errors] == [("Rin", "row is locked")]
    assert member_repository.find_by_name("NANA") is not None



def test_normalize_sort() -> None:
    assert normalize_sort(None) == "date"
    assert normalize_sort(" Views ") == "views"
    with pytest.raises(QueryValidationError) as error:
        normalize_sort("random")
    assert error.value.available == ("date", "views", "likes", "oldest")
