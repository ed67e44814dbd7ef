from __future__ import annotations

import json
import sqlite3
from dataclasses import dataclass
from uuid import uuid4

from backend.app.models.cohorts import CohortTaxonomy, canonical_name
from backend.app.repositories.common import decode_str_tuple, utc_now_iso
from backend.app.repositories.database import Database


@dataclass(frozen=True)
class MemberRecord:
    id: str
    name: str
    display_name: str
    cohort: str
    hashtags: tuple[str, ...]


@dataclass(frozen=True)
class MemberRename:
    id: str
    old_name: str
    new_name: str
    merged_into: str | None = None


@dataclass(frozen=True)
class MemberRenameError:
    id: str
    name: str
    reason: str


@dataclass(frozen=True)
class MemberNormalizationReport:
    renames: list[MemberRename]
    errors: list[MemberRenameError]


class MemberRepository:
    def __init__(self, db: Database) -> None:
        self._db = db

    def sync_from_taxonomy(self, taxonomy: CohortTaxonomy) -> list[MemberRecord]:
        """Upsert one row per taxonomy member; existing ids are preserved."""
        now_iso = utc_now_iso()
        with self._db.connection() as conn:
            for cohort in taxonomy.cohorts:
                for member in taxonomy.members_of(cohort):
                    hashtags = [member.lower(), cohort.lower(), "stella"]
                    conn.execute(
                        """
                        INSERT INTO members
                        (id, name, display_name, cohort, hashtags_json, created_at, updated_at)
                        VALUES (?, ?, ?, ?, ?, ?, ?)
                        ON CONFLICT(name) DO UPDATE SET
                            display_name = excluded.display_name,
                            cohort = excluded.cohort,
                            hashtags_json = excluded.hashtags_json,
                            updated_at = excluded.updated_at
                        """,
                        (
                            f"mem_{uuid4().hex}",
                            member,
                            member,
                            cohort,
                            json.dumps(hashtags),
                            now_iso,
                            now_iso,
                        ),
                    )
        return self.find_all()

    def find_by_id(self, member_id: str) -> MemberRecord | None:
        with self._db.connection() as conn:
            row = conn.execute(
                """
                SELECT id, name, display_name, cohort, hashtags_json
                FROM members
                WHERE id = ?
                """,
                (member_id,),
            ).fetchone()
        if row is None:
            return None
        return _row_to_member(row)

    def find_by_name(self, name: str) -> MemberRecord | None:
        with self._db.connection() as conn:
            row = conn.execute(
                """
                SELECT id, name, display_name, cohort, hashtags_json
                FROM members
                WHERE name = ?
                """,
                (canonical_name(name),),
            ).fetchone()
        if row is None:
            return None
        return _row_to_member(row)

    def find_all(self) -> list[MemberRecord]:
        with self._db.connection() as conn:
            rows = conn.execute(
                """
                SELECT id, name, display_name, cohort, hashtags_json
                FROM members
                ORDER BY cohort ASC, name ASC
                """
            ).fetchall()
        return [_row_to_member(row) for row in rows]

    def find_by_cohort(self, cohort: str) -> list[MemberRecord]:
        with self._db.connection() as conn:
            rows = conn.execute(
                """
                SELECT id, name, display_name, cohort, hashtags_json
                FROM members
                WHERE cohort = ?
                ORDER BY name ASC
                """,
                (canonical_name(cohort),),
            ).fetchall()
        return [_row_to_member(row) for row in rows]

    def exists_by_name(self, name: str) -> bool:
        return self.find_by_name(name) is not None

    def normalize_names_to_uppercase(self) -> MemberNormalizationReport:
        """
        Rewrite any member stored with a non-canonical name.

        A legacy row whose canonical name is already taken is merged: its video
        links move to the canonical row and the legacy row is deleted. Each row
        commits on its own, so one failing row is reported and the rest proceed.
        """
        with self._db.connection() as conn:
            rows = conn.execute("SELECT id, name FROM members ORDER BY created_at, id").fetchall()

        renames: list[MemberRename] = []
        errors: list[MemberRenameError] = []
        for row in rows:
            member_id = str(row["id"])
            old_name = str(row["name"])
            new_name = canonical_name(old_name)
            if old_name == new_name:
                continue
            try:
                renames.append(self._rename_or_merge(member_id, old_name, new_name))
            except sqlite3.Error as exc:
                errors.append(MemberRenameError(id=member_id, name=old_name, reason=str(exc)))
        return MemberNormalizationReport(renames=renames, errors=errors)

    def _rename_or_merge(self, member_id: str, old_name: str, new_name: str) -> MemberRename:
        with self._db.connection() as conn:
            canonical = conn.execute(
                "SELECT id FROM members WHERE name = ? AND id != ?",
                (new_name, member_id),
            ).fetchone()
            if canonical is None:
                conn.execute(
                    "UPDATE members SET name = ?, updated_at = ? WHERE id = ?",
                    (new_name, utc_now_iso(), member_id),
                )
                return MemberRename(id=member_id, old_name=old_name, new_name=new_name)

            canonical_id = str(canonical["id"])
            conn.execute(
                """
                INSERT OR IGNORE INTO video_members (video_id, member_id, created_at)
                SELECT video_id, ?, created_at
                FROM video_members
                WHERE member_id = ?
                """,
                (canonical_id, member_id),
            )
            conn.execute("DELETE FROM members WHERE id = ?", (member_id,))
        return MemberRename(
            id=member_id,
            old_name=old_name,
            new_name=new_name,
            merged_into=canonical_id,
        )


def _row_to_member(row: sqlite3.Row) -> MemberRecord:
    return MemberRecord(
        id=str(row["id"]),
        name=str(row["name"]),
        display_name=str(row["display_name"]),
        cohort=str(row["cohort"]),
        hashtags=decode_str_tuple(row["hashtags_json"]),
    )
