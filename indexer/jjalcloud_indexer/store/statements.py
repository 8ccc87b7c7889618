"""
SQL shared by the local and D1 store backends.

Table schema (mirrors the jjalcloud web app's tables):

    users:
        - did TEXT PRIMARY KEY
        - handle TEXT
        - display_name, avatar TEXT
        - created_at, last_login_at INTEGER (Unix seconds)

    gifs:
        - uri TEXT PRIMARY KEY
        - cid TEXT, author TEXT
        - title, alt TEXT
        - tags TEXT (JSON array)
        - file TEXT (JSON blob ref)
        - width, height INTEGER
        - created_at INTEGER (Unix seconds)

    likes:
        - id INTEGER PRIMARY KEY AUTOINCREMENT
        - subject TEXT, author TEXT, rkey TEXT
        - created_at INTEGER (Unix seconds)

likes has no unique constraint on (author, rkey), so a like "upsert" is a
two-column delete followed by an insert rather than ON CONFLICT.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any

from .base import GifRecord, LikeRecord, Statement

SCHEMA = """
    CREATE TABLE IF NOT EXISTS users (
        did TEXT PRIMARY KEY,
        handle TEXT NOT NULL,
        display_name TEXT,
        avatar TEXT,
        created_at INTEGER NOT NULL,
        last_login_at INTEGER NOT NULL
    );

    CREATE TABLE IF NOT EXISTS gifs (
        uri TEXT PRIMARY KEY,
        cid TEXT NOT NULL,
        author TEXT NOT NULL,
        title TEXT,
        alt TEXT,
        tags TEXT,
        file TEXT NOT NULL,
        width INTEGER,
        height INTEGER,
        created_at INTEGER NOT NULL
    );

    CREATE INDEX IF NOT EXISTS idx_gifs_author ON gifs(author);
    CREATE INDEX IF NOT EXISTS idx_gifs_created ON gifs(created_at DESC);

    CREATE TABLE IF NOT EXISTS likes (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        subject TEXT NOT NULL,
        author TEXT NOT NULL,
        rkey TEXT NOT NULL,
        created_at INTEGER NOT NULL
    );

    CREATE INDEX IF NOT EXISTS idx_likes_author_rkey ON likes(author, rkey);
    CREATE INDEX IF NOT EXISTS idx_likes_subject ON likes(subject);
"""

UPSERT_GIF_SQL = """
    INSERT INTO gifs (uri, cid, author, title, alt, tags, file, width, height, created_at)
    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
    ON CONFLICT(uri) DO UPDATE SET
        cid = excluded.cid,
        title = excluded.title,
        alt = excluded.alt,
        tags = excluded.tags,
        file = excluded.file,
        width = excluded.width,
        height = excluded.height,
        created_at = excluded.created_at
"""

DELETE_GIF_SQL = "DELETE FROM gifs WHERE uri = ?"

DELETE_LIKE_SQL = "DELETE FROM likes WHERE author = ? AND rkey = ?"

INSERT_LIKE_SQL = "INSERT INTO likes (subject, author, rkey, created_at) VALUES (?, ?, ?, ?)"

SELECT_GIF_SQL = (
    "SELECT uri, cid, author, title, alt, tags, file, width, height, created_at "
    "FROM gifs WHERE uri = ?"
)

SELECT_LIKE_SQL = (
    "SELECT subject, author, rkey, created_at FROM likes "
    "WHERE author = ? AND rkey = ? ORDER BY id DESC LIMIT 1"
)

LIST_GIF_URIS_SQL = "SELECT uri FROM gifs WHERE author = ?"

LIST_LIKE_RKEYS_SQL = "SELECT DISTINCT rkey FROM likes WHERE author = ?"

LIST_KNOWN_IDENTITIES_SQL = """
    SELECT did AS did FROM users WHERE did IS NOT NULL AND did != ''
    UNION
    SELECT DISTINCT author AS did FROM gifs WHERE author IS NOT NULL AND author != ''
    UNION
    SELECT DISTINCT author AS did FROM likes WHERE author IS NOT NULL AND author != ''
"""


def to_unix_seconds(value: datetime) -> int:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return int(value.timestamp())


def from_unix_seconds(value: int | float) -> datetime:
    return datetime.fromtimestamp(int(value), tz=timezone.utc)


def upsert_gif(record: GifRecord) -> Statement:
    return Statement(
        UPSERT_GIF_SQL,
        (
            record.uri,
            record.cid,
            record.author,
            record.title,
            record.alt,
            json.dumps(record.tags) if record.tags is not None else None,
            json.dumps(record.file),
            record.width,
            record.height,
            to_unix_seconds(record.created_at),
        ),
    )


def delete_gif(uri: str) -> Statement:
    return Statement(DELETE_GIF_SQL, (uri,))


def insert_like(record: LikeRecord) -> list[Statement]:
    """Replace-by-(author, rkey): delete any existing row, then insert."""
    return [
        delete_like(record.author, record.rkey),
        Statement(
            INSERT_LIKE_SQL,
            (record.subject, record.author, record.rkey, to_unix_seconds(record.created_at)),
        ),
    ]


def delete_like(author: str, rkey: str) -> Statement:
    return Statement(DELETE_LIKE_SQL, (author, rkey))


def gif_from_row(row: Any) -> GifRecord:
    """Build a GifRecord from a sqlite3.Row or a D1 result dict."""
    return GifRecord(
        uri=row["uri"],
        cid=row["cid"],
        author=row["author"],
        title=row["title"],
        alt=row["alt"],
        tags=json.loads(row["tags"]) if row["tags"] else None,
        file=json.loads(row["file"]),
        width=row["width"],
        height=row["height"],
        created_at=from_unix_seconds(row["created_at"]),
    )


def like_from_row(row: Any) -> LikeRecord:
    return LikeRecord(
        subject=row["subject"],
        author=row["author"],
        rkey=row["rkey"],
        created_at=from_unix_seconds(row["created_at"]),
    )
