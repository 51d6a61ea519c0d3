"""
Shared fixtures for thrasher tests.

MP3 fixtures are not real audio: each is a block of zero bytes with an
ID3v2.4 tag written in front of it by mutagen, which is all the scanner
reads.
"""

from __future__ import annotations

import io
import os
from pathlib import Path

import aiosqlite
import pytest
from mutagen.id3 import APIC, ID3, TALB, TCON, TDRC, TIT2, TPE1, TRCK

from thrasher.core.catalog import Catalog
from thrasher.core.db.models import NewTrack
from thrasher.core.db.store import ScanStore
from thrasher.core.scanner import Scanner, ScanStats
from thrasher.core.updater import Updater

AUDIO_BODY = b"\x00" * 512


def make_mp3(
    path: Path,
    *,
    artist: str | None = None,
    title: str | None = None,
    album: str | None = None,
    genre: str | None = None,
    year: str | None = None,
    track: str | None = None,
    picture: bytes | None = None,
    mtime: int | None = None,
) -> Path:
    """Write a tagged MP3 stand-in. Tags left as None are not written at all."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(AUDIO_BODY)

    tags = ID3()
    for frame_cls, value in (
        (TPE1, artist),
        (TIT2, title),
        (TALB, album),
        (TCON, genre),
        (TDRC, year),
        (TRCK, track),
    ):
        if value is not None:
            tags.add(frame_cls(encoding=3, text=[value]))
    if picture is not None:
        tags.add(APIC(encoding=3, mime="image/jpeg", type=3, desc="Cover", data=picture))

    if len(tags):
        tags.save(path)
    if mtime is not None:
        os.utime(path, (mtime, mtime))
    return path


def set_mtime(path: Path, mtime: int) -> None:
    os.utime(path, (mtime, mtime))


@pytest.fixture
async def db_file(tmp_path: Path) -> str:
    """An initialized, empty catalog database."""
    path = tmp_path / "catalog.db"
    upd = Updater(path)
    await upd.open()
    await upd.create_db()
    await upd.close()
    return str(path)


@pytest.fixture
def music_root(tmp_path: Path) -> Path:
    root = tmp_path / "m"
    root.mkdir()
    return root


async def run_scan(db_file: str, root: Path, *, force: bool = False) -> tuple[ScanStats, str]:
    """Run one scan the way `scan_library` does, returning stats and stdout text."""
    out = io.StringIO()
    async with Catalog(db_file) as catalog, ScanStore(db_file) as store:
        scanner = Scanner(root=root, catalog=catalog, store=store, force=force, out=out)
        stats = await scanner.run()
    return stats, out.getvalue()


async def fetch_tracks(db_file: str) -> list[tuple]:
    """All track rows in insertion order."""
    async with aiosqlite.connect(db_file) as conn:
        async with conn.execute("SELECT * FROM tracks ORDER BY rowid;") as cursor:
            rows = await cursor.fetchall()
    return [tuple(r) for r in rows]


async def fetch_lastscan(db_file: str) -> int:
    async with aiosqlite.connect(db_file) as conn:
        async with conn.execute("SELECT lastscan FROM meta;") as cursor:
            row = await cursor.fetchone()
    return int(row[0])


async def set_lastscan(db_file: str, value: int) -> None:
    async with ScanStore(db_file) as store:
        await store.set_lastscan(value)


async def seed_tracks(db_file: str, tracks: list[NewTrack]) -> None:
    async with ScanStore(db_file) as store:
        for track in tracks:
            await store.append(track)


SAMPLE_TRACKS = [
    NewTrack(
        "/music/Slayer/Reign/01.mp3", 100, 100, "1", "Slayer",
        "Angel of Death", "Reign in Blood", "1986", '["Metal"]',
    ),
    NewTrack(
        "/music/Slayer/Reign/02.mp3", 100, 100, "2", "Slayer",
        "Piece by Piece", "Reign in Blood", "1986", '["Metal"]',
    ),
    NewTrack(
        "/music/Slayer/South/01.mp3", 300, 300, "1", "Slayer",
        "South of Heaven", "South of Heaven", "1988", '["Metal", "favourites"]',
    ),
    NewTrack(
        "/music/Kreator/Pleasure/03.mp3", 200, 200, "3", "Kreator",
        "Riot of Violence", "Pleasure to Kill", "1986", '["Thrash Metal"]',
    ),
    NewTrack("/music/Misc/x.mp3", 50, 50, "99", "", "100%_done", "", "9999", '[""]'),
]


@pytest.fixture
async def sample_db(db_file: str) -> str:
    """A catalog holding SAMPLE_TRACKS."""
    await seed_tracks(db_file, SAMPLE_TRACKS)
    return db_file
