from __future__ import annotations

import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS videos (
    id TEXT PRIMARY KEY,
    external_video_id TEXT NOT NULL UNIQUE,
    title TEXT NOT NULL,
    description TEXT NULL,
    channel_id TEXT NOT NULL,
    channel_title TEXT NULL,
    published_at TEXT NOT NULL,
    duration_seconds INTEGER NULL,
    view_count INTEGER NULL,
    like_count INTEGER NULL,
    tags_json TEXT NOT NULL,
    thumbnails_json TEXT NOT NULL,
    is_official INTEGER NOT NULL,
    source_query TEXT NOT NULL,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_videos_published_at
ON videos(published_at DESC, view_count DESC);

CREATE INDEX IF NOT EXISTS idx_videos_official_published_at
ON videos(is_official, published_at DESC);

CREATE INDEX IF NOT EXISTS idx_videos_channel_id ON videos(channel_id);

CREATE TABLE IF NOT EXISTS members (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL UNIQUE,
    display_name TEXT NOT NULL,
    cohort TEXT NOT NULL,
    hashtags_json TEXT NOT NULL,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_members_cohort ON members(cohort, name);

CREATE TABLE IF NOT EXISTS video_members (
    video_id TEXT NOT NULL,
    member_id TEXT NOT NULL,
    created_at TEXT NOT NULL,
    PRIMARY KEY (video_id, member_id),
    FOREIGN KEY(video_id) REFERENCES videos(id) ON DELETE CASCADE,
    FOREIGN KEY(member_id) REFERENCES members(id) ON DELETE CASCADE
);

CREATE INDEX IF NOT EXISTS idx_video_members_member_id ON video_members(member_id);
"""


class Database:
    def __init__(self, path: Path) -> None:
        self._path = path

    @property
    def path(self) -> Path:
        return self._path

    @contextmanager
    def connection(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(self._path)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        try:
            yield conn
            conn.commit()
        finally:
            conn.close()

    def initialize(self) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        with self.connection() as conn:
            conn.executescript(SCHEMA_SQL)

    def is_healthy(self) -> bool:
        try:
            with self.connection() as conn:
                conn.execute("SELECT 1").fetchone()
        except sqlite3.Error:
            return False
        return True
