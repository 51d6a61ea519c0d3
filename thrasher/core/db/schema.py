"""
Database schema for the thrasher catalog.

Design notes:
- We use SQLite `PRAGMA user_version` as the schema version.
- `tracks` has no surrogate key: `path` is the identity, and the column
  order is part of the contract (the scanner inserts positionally).
- `meta` holds exactly one row carrying the scan watermark.
"""

from __future__ import annotations

from typing import Final

import aiosqlite

# Bump when you change the schema and add a migration in `migrate()`.
SCHEMA_VERSION: Final[int] = 1

TRACK_COLUMNS: Final[tuple[str, ...]] = (
    "path",
    "ctime",
    "mtime",
    "track_number",
    "artist",
    "title",
    "album",
    "year",
    "facets",
)


async def ensure_schema(conn: aiosqlite.Connection) -> None:
    """
    Create or migrate schema to current version.

    Safe to call on an existing database; the caller commits.
    """
    async with conn.execute("PRAGMA user_version;") as cursor:
        row = await cursor.fetchone()
    current = int(row[0]) if row is not None else 0

    if current > SCHEMA_VERSION:
        raise RuntimeError(
            f"Database schema version {current} is newer than supported {SCHEMA_VERSION}."
        )

    if current == SCHEMA_VERSION:
        return

    await migrate(conn, from_version=current, to_version=SCHEMA_VERSION)
    await conn.execute(f"PRAGMA user_version = {SCHEMA_VERSION};")


async def migrate(conn: aiosqlite.Connection, *, from_version: int, to_version: int) -> None:
    """Perform forward-only migrations."""
    # v0 -> v1
    if from_version == 0 and to_version >= 1:
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS tracks (
                path TEXT PRIMARY KEY,
                ctime INTEGER NOT NULL,
                mtime INTEGER NOT NULL,
                track_number TEXT,
                artist TEXT,
                title TEXT,
                album TEXT,
                year TEXT,
                facets TEXT
            )
            """
        )
        await conn.execute("CREATE INDEX IF NOT EXISTS idx_tracks_artist ON tracks(artist);")
        await conn.execute("CREATE INDEX IF NOT EXISTS idx_tracks_album ON tracks(album);")
        await conn.execute("CREATE INDEX IF NOT EXISTS idx_tracks_ctime ON tracks(ctime);")

        await conn.execute("CREATE TABLE IF NOT EXISTS meta (lastscan INTEGER NOT NULL)")
        async with conn.execute("SELECT COUNT(*) FROM meta;") as cursor:
            row = await cursor.fetchone()
        if row is None or int(row[0]) == 0:
            await conn.execute("INSERT INTO meta (lastscan) VALUES (0);")
        from_version = 1
