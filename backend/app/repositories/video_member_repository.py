from __future__ import annotations

import sqlite3
from collections.abc import Iterable
from dataclasses import dataclass

from backend.app.repositories.common import utc_now_iso
from backend.app.repositories.database import Database


@dataclass(frozen=True)
class VideoMemberAppearance:
    video_id: str
    member_id: str
    member_name: str
    cohort: str
    created_at: str


class VideoMemberRepository:
    def __init__(self, db: Database) -> None:
        self._db = db

    def create_many(self, pairs: Iterable[tuple[str, str]]) -> int:
        """Insert (video_id, member_id) pairs, skipping ones that already exist."""
        now_iso = utc_now_iso()
        created = 0
        with self._db.connection() as conn:
            for video_id, member_id in dict.fromkeys(pairs):
                cursor = conn.execute(
                    """
                    INSERT OR IGNORE INTO video_members (video_id, member_id, created_at)
                    VALUES (?, ?, ?)
                    """,
                    (video_id, member_id, now_iso),
                )
                created += cursor.rowcount
        return created

    def exists(self, video_id: str, member_id: str) -> bool:
        with self._db.connection() as conn:
            row = conn.execute(
                "SELECT 1 FROM video_members WHERE video_id = ? AND member_id = ?",
                (video_id, member_id),
            ).fetchone()
        return row is not None

    def find_by_video_id(self, video_id: str) -> list[VideoMemberAppearance]:
        with self._db.connection() as conn:
            rows = conn.execute(
                """
                SELECT vm.video_id, vm.member_id, vm.created_at, m.name, m.cohort
                FROM video_members vm
                JOIN members m ON m.id = vm.member_id
                WHERE vm.video_id = ?
                ORDER BY m.cohort ASC, m.name ASC
                """,
                (video_id,),
            ).fetchall()
        return [_row_to_appearance(row) for row in rows]

    def find_by_member_id(self, member_id: str) -> list[VideoMemberAppearance]:
        with self._db.connection() as conn:
            rows = conn.execute(
                """
                SELECT vm.video_id, vm.member_id, vm.created_at, m.name, m.cohort
                FROM video_members vm
                JOIN members m ON m.id = vm.member_id
                JOIN videos v ON v.id = vm.video_id
                WHERE vm.member_id = ?
                ORDER BY v.published_at DESC
                """,
                (member_id,),
            ).fetchall()
        return [_row_to_appearance(row) for row in rows]

    def find_by_video_ids(self, video_ids: list[str]) -> dict[str, list[VideoMemberAppearance]]:
        if not video_ids:
            return {}
        placeholders = ", ".join("?" for _ in video_ids)
        with self._db.connection() as conn:
            rows = conn.execute(
                f"""
                SELECT vm.video_id, vm.member_id, vm.created_at, m.name, m.cohort
                FROM video_members vm
                JOIN members m ON m.id = vm.member_id
                WHERE vm.video_id IN ({placeholders})
                ORDER BY m.cohort ASC, m.name ASC
                """,
                tuple(video_ids),
            ).fetchall()

        grouped: dict[str, list[VideoMemberAppearance]] = {}
        for row in rows:
            appearance = _row_to_appearance(row)
            grouped.setdefault(appearance.video_id, []).append(appearance)
        return grouped

    def delete_by_video_id(self, video_id: str) -> int:
        with self._db.connection() as conn:
            cursor = conn.execute("DELETE FROM video_members WHERE video_id = ?", (video_id,))
        return cursor.rowcount


def _row_to_appearance(row: sqlite3.Row) -> VideoMemberAppearance:
    return VideoMemberAppearance(
        video_id=str(row["video_id"]),
        member_id=str(row["member_id"]),
        member_name=str(row["name"]),
        cohort=str(row["cohort"]),
        created_at=str(row["created_at"]),
    )
