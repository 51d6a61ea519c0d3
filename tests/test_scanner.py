"""
Tests for thrasher.core.scanner.

These tests verify:
- Row contents and field normalization for ingested tracks
- The incremental policy (clean directories, catalog existence, force-rescan)
- Cover extraction (once per directory, per-directory flags)
- Watermark handling and failure semantics
"""

from __future__ import annotations

import json
import logging
import os
import sqlite3
import sys
from pathlib import Path

import pytest
from conftest import fetch_lastscan, fetch_tracks, make_mp3, run_scan, set_lastscan, set_mtime

from thrasher.config import Config
from thrasher.core import TagReadError
from thrasher.core.db.models import NewTrack
from thrasher.core.db.store import ScanStore
from thrasher.core.scanner import ScanStats, scan_library

# =============================================================================
# Ingestion basics
# =============================================================================


class TestIngestion:
    """A single dirty directory with fresh files."""

    async def test_single_file_row(self, db_file: str, music_root: Path) -> None:
        """Genre id, empty year and empty TRCK are normalized; ctime is clamped."""
        track = make_mp3(
            music_root / "A" / "a.mp3",
            artist="X",
            album="Y",
            title="Z",
            genre="9",
            mtime=1000,
        )
        set_mtime(music_root / "A", 2000)
        set_mtime(music_root, 2000)

        stats, out = await run_scan(db_file, music_root)

        rows = await fetch_tracks(db_file)
        # ctime of a file written just now is later than mtime=1000, so it clamps.
        assert rows == [
            (str(track), 1000, 1000, "99", "X", "Z", "Y", "9999", '["Metal"]'),
        ]
        assert stats.seen == 1
        assert stats.added == 1
        assert stats.updated == 0
        assert await fetch_lastscan(db_file) == 1000
        assert not (music_root / "A" / "cover.jpg").exists()
        assert "+ X 'Y' 'Z' (99; 9999; Metal)" in out
        assert out.rstrip().endswith("Totals: seen 1, added, 1, updated 0")

    async def test_field_normalization(self, db_file: str, music_root: Path) -> None:
        make_mp3(
            music_root / "a.mp3",
            artist="  Padded Artist ",
            album=" Album ",
            title=" Title  ",
            genre="(17)",
            year="2011-03-04",
            track="3/12",
            mtime=1000,
        )

        await run_scan(db_file, music_root)

        [row] = await fetch_tracks(db_file)
        assert row[3:] == ("3", "Padded Artist", "Title", "Album", "2011", '["Rock"]')

    async def test_textual_genre_passes_through(self, db_file: str, music_root: Path) -> None:
        make_mp3(music_root / "a.mp3", artist="a", album="b", title="c", genre="abcd")

        await run_scan(db_file, music_root)

        [row] = await fetch_tracks(db_file)
        assert json.loads(row[8]) == ["abcd"]

    async def test_facets_stay_valid_json(self, db_file: str, music_root: Path) -> None:
        """Quotes in a genre must not break the facets column."""
        make_mp3(music_root / "a.mp3", artist="a", album="b", title="c", genre='Say "Hi"\\')

        await run_scan(db_file, music_root)

        [row] = await fetch_tracks(db_file)
        assert json.loads(row[8]) == ['Say "Hi"\\']

    async def test_untagged_file_is_recorded(self, db_file: str, music_root: Path) -> None:
        """A file without any ID3 tag gets all defaults."""
        path = music_root / "bare.mp3"
        path.write_bytes(b"\x00" * 512)

        stats, _ = await run_scan(db_file, music_root)

        [row] = await fetch_tracks(db_file)
        assert row[0] == str(path)
        assert row[3:] == ("99", "", "", "", "9999", '[""]')
        assert stats.added == 1

    async def test_ctime_never_exceeds_mtime(self, db_file: str, music_root: Path) -> None:
        for i, mtime in enumerate((500, 1500, 2500)):
            make_mp3(music_root / f"{i}.mp3", artist="a", album="b", title="c", mtime=mtime)

        await run_scan(db_file, music_root)

        rows = await fetch_tracks(db_file)
        assert len(rows) == 3
        for row in rows:
            assert row[1] <= row[2]

    async def test_non_mp3_files_ignored(self, db_file: str, music_root: Path) -> None:
        make_mp3(music_root / "a.mp3", artist="a", album="b", title="c")
        (music_root / "notes.txt").write_text("hello")
        (music_root / "a.flac").write_bytes(b"fLaC")
        (music_root / "b.MP3").write_bytes(b"\x00" * 16)

        stats, _ = await run_scan(db_file, music_root)

        assert stats.seen == 1
        assert len(await fetch_tracks(db_file)) == 1

    async def test_missing_tags_logged(
        self, db_file: str, music_root: Path, caplog: pytest.LogCaptureFixture
    ) -> None:
        """Empty artist/album/title is a warning, not a reason to skip the file."""
        make_mp3(music_root / "a.mp3", artist="X", title="Z")

        with caplog.at_level(logging.WARNING, logger="thrasher.core.scanner"):
            stats, _ = await run_scan(db_file, music_root)

        assert stats.added == 1
        assert any("missing tags" in r.getMessage() for r in caplog.records)


# =============================================================================
# Walk order
# =============================================================================


class TestWalkOrder:
    async def test_depth_first_lexicographic(self, db_file: str, music_root: Path) -> None:
        """Rows are appended in walk order: entries sorted by name, subdirectories inline."""
        for rel in ("B/w.mp3", "A/z.mp3", "A/x.mp3", "A/sub/y.mp3"):
            make_mp3(music_root / rel, artist="a", album="b", title=rel)

        _, out = await run_scan(db_file, music_root)

        rows = await fetch_tracks(db_file)
        assert [Path(r[0]).relative_to(music_root).as_posix() for r in rows] == [
            "A/sub/y.mp3",
            "A/x.mp3",
            "A/z.mp3",
            "B/w.mp3",
        ]
        titles = [line.split("'")[3] for line in out.splitlines() if line.startswith("+ ")]
        assert titles == ["A/sub/y.mp3", "A/x.mp3", "A/z.mp3", "B/w.mp3"]

    async def test_stored_paths_are_absolute(
        self, db_file: str, music_root: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        make_mp3(music_root / "A" / "a.mp3", artist="a", album="b", title="c")
        monkeypatch.chdir(music_root.parent)

        await run_scan(db_file, Path("m"))

        [row] = await fetch_tracks(db_file)
        assert Path(row[0]).is_absolute()
        assert row[0] == str(music_root / "A" / "a.mp3")


# =============================================================================
# Incremental policy
# =============================================================================


class TestIncremental:
    async def test_clean_directory_skipped(self, db_file: str, music_root: Path) -> None:
        """Directory mtime <= lastscan: files are counted but nothing is written."""
        make_mp3(music_root / "A" / "a.mp3", artist="a", album="b", title="c", mtime=1000)
        make_mp3(music_root / "A" / "b.mp3", artist="a", album="b", title="d", mtime=1200)
        set_mtime(music_root / "A", 1200)
        set_mtime(music_root, 1200)
        await set_lastscan(db_file, 1500)

        stats, _ = await run_scan(db_file, music_root)

        assert stats.seen == 2
        assert stats.added == 0
        assert await fetch_tracks(db_file) == []
        # Nothing reached the pipeline, so the watermark stays put.
        assert await fetch_lastscan(db_file) == 1500

    async def test_only_dirty_directory_ingested(self, db_file: str, music_root: Path) -> None:
        make_mp3(music_root / "old" / "a.mp3", artist="a", album="old", title="a", mtime=900)
        make_mp3(music_root / "new" / "b.mp3", artist="a", album="new", title="b", mtime=3000)
        set_mtime(music_root / "old", 1000)
        set_mtime(music_root / "new", 3000)
        set_mtime(music_root, 3000)
        await set_lastscan(db_file, 2000)

        stats, _ = await run_scan(db_file, music_root)

        rows = await fetch_tracks(db_file)
        assert [r[0] for r in rows] == [str(music_root / "new" / "b.mp3")]
        assert stats.seen == 2
        assert await fetch_lastscan(db_file) == 3000

    async def test_clean_flag_is_per_directory(self, db_file: str, music_root: Path) -> None:
        """A file after a clean subdirectory still sees its own (dirty) directory's flag."""
        make_mp3(music_root / "A" / "sub" / "a.mp3", artist="a", album="b", title="c")
        make_mp3(music_root / "A" / "z.mp3", artist="a", album="b", title="z", mtime=3000)
        set_mtime(music_root / "A" / "sub", 1000)
        set_mtime(music_root / "A", 3000)
        set_mtime(music_root, 3000)
        await set_lastscan(db_file, 2000)

        await run_scan(db_file, music_root)

        rows = await fetch_tracks(db_file)
        assert [r[0] for r in rows] == [str(music_root / "A" / "z.mp3")]

    async def test_recorded_path_skipped(self, db_file: str, music_root: Path) -> None:
        """A path already in the catalog is counted as seen but never re-added."""
        path = make_mp3(music_root / "A" / "a.mp3", artist="a", album="b", title="c")
        async with ScanStore(db_file) as store:
            await store.append(
                NewTrack(str(path), 1, 1, "1", "old", "old", "old", "2000", '["x"]')
            )

        stats, out = await run_scan(db_file, music_root)

        assert stats.seen == 1
        assert stats.added == 0
        assert "+ " not in out
        rows = await fetch_tracks(db_file)
        assert len(rows) == 1
        assert rows[0][4] == "old"

    async def test_second_scan_is_idempotent(self, db_file: str, music_root: Path) -> None:
        make_mp3(music_root / "A" / "a.mp3", artist="a", album="b", title="c", mtime=1000)
        make_mp3(music_root / "B" / "b.mp3", artist="a", album="b", title="d", mtime=1100)

        await run_scan(db_file, music_root)
        first_rows = await fetch_tracks(db_file)
        first_lastscan = await fetch_lastscan(db_file)

        stats, _ = await run_scan(db_file, music_root)

        assert stats.added == 0
        assert await fetch_tracks(db_file) == first_rows
        assert await fetch_lastscan(db_file) == first_lastscan == 1100

    async def test_force_rescan_adds_nothing_new(self, db_file: str, music_root: Path) -> None:
        make_mp3(music_root / "A" / "a.mp3", artist="a", album="b", title="c", mtime=1000)
        await run_scan(db_file, music_root)
        before = await fetch_tracks(db_file)

        stats, out = await run_scan(db_file, music_root, force=True)

        assert stats.seen == 1
        assert stats.added == 0
        assert await fetch_tracks(db_file) == before
        assert "+ " not in out

    async def test_force_rescan_ignores_clean_directories(
        self, db_file: str, music_root: Path
    ) -> None:
        make_mp3(music_root / "A" / "a.mp3", artist="a", album="b", title="c", mtime=1000)
        set_mtime(music_root / "A", 1000)
        set_mtime(music_root, 1000)
        await set_lastscan(db_file, 5000)

        stats, _ = await run_scan(db_file, music_root, force=True)

        assert stats.added == 1
        # max(old watermark, newest mtime seen)
        assert await fetch_lastscan(db_file) == 5000


# =============================================================================
# Cover art
# =============================================================================


class TestCoverArt:
    async def test_cover_written_from_picture(self, db_file: str, music_root: Path) -> None:
        make_mp3(music_root / "A" / "a.mp3", artist="X", album="Y", title="Z", picture=b"B")

        stats, _ = await run_scan(db_file, music_root)

        assert stats.added == 1
        assert (music_root / "A" / "cover.jpg").read_bytes() == b"B"

    async def test_existing_cover_untouched(self, db_file: str, music_root: Path) -> None:
        make_mp3(music_root / "A" / "a.mp3", artist="X", album="Y", title="Z", picture=b"new")
        (music_root / "A" / "cover.jpg").write_bytes(b"old")

        await run_scan(db_file, music_root)

        assert (music_root / "A" / "cover.jpg").read_bytes() == b"old"

    async def test_single_attempt_per_directory(self, db_file: str, music_root: Path) -> None:
        """If the first file has no picture, later files in that directory are not tried."""
        make_mp3(music_root / "A" / "a.mp3", artist="X", album="Y", title="1")
        make_mp3(music_root / "A" / "b.mp3", artist="X", album="Y", title="2", picture=b"B")

        stats, _ = await run_scan(db_file, music_root)

        assert stats.added == 2
        assert not (music_root / "A" / "cover.jpg").exists()

    async def test_cover_flag_is_per_directory(self, db_file: str, music_root: Path) -> None:
        """A subdirectory's existing cover does not suppress the parent's extraction."""
        make_mp3(music_root / "A" / "sub" / "s.mp3", artist="X", album="S", title="s")
        (music_root / "A" / "sub" / "cover.jpg").write_bytes(b"sub")
        make_mp3(music_root / "A" / "z.mp3", artist="X", album="Y", title="z", picture=b"A")

        await run_scan(db_file, music_root)

        assert (music_root / "A" / "cover.jpg").read_bytes() == b"A"
        assert (music_root / "A" / "sub" / "cover.jpg").read_bytes() == b"sub"

    async def test_force_rescan_restores_cover(self, db_file: str, music_root: Path) -> None:
        make_mp3(music_root / "A" / "a.mp3", artist="X", album="Y", title="Z", picture=b"B")
        await run_scan(db_file, music_root)
        (music_root / "A" / "cover.jpg").unlink()

        stats, _ = await run_scan(db_file, music_root, force=True)

        assert stats.added == 0
        assert (music_root / "A" / "cover.jpg").read_bytes() == b"B"


# =============================================================================
# Failures
# =============================================================================


class TestFailures:
    async def test_tag_error_aborts_scan(
        self, db_file: str, music_root: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """A bad tag stops the walk; earlier rows stay, the watermark does not move."""
        from thrasher.core import scanner as scanner_mod

        good = make_mp3(music_root / "a.mp3", artist="a", album="b", title="c", mtime=1000)
        bad = make_mp3(music_root / "b.mp3", artist="a", album="b", title="d", mtime=1100)
        make_mp3(music_root / "c.mp3", artist="a", album="b", title="e", mtime=1200)

        real_read_tag = scanner_mod.read_tag

        def flaky_read_tag(path):
            if str(path) == str(bad):
                raise TagReadError(str(path), ValueError("corrupt frame"))
            return real_read_tag(path)

        monkeypatch.setattr(scanner_mod, "read_tag", flaky_read_tag)

        with pytest.raises(TagReadError):
            await run_scan(db_file, music_root)

        rows = await fetch_tracks(db_file)
        assert [r[0] for r in rows] == [str(good)]
        assert await fetch_lastscan(db_file) == 0

    async def test_insert_error_aborts_scan(
        self, db_file: str, music_root: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """A failed insert propagates; earlier rows stay, the watermark does not move."""
        make_mp3(music_root / "a.mp3", artist="a", album="b", title="c", mtime=1000)
        make_mp3(music_root / "b.mp3", artist="a", album="b", title="d", mtime=1100)

        real_append = ScanStore.append
        calls = 0

        async def failing_append(self: ScanStore, track: NewTrack) -> None:
            nonlocal calls
            calls += 1
            if calls == 2:
                raise sqlite3.OperationalError("disk I/O error")
            await real_append(self, track)

        monkeypatch.setattr(ScanStore, "append", failing_append)

        with pytest.raises(sqlite3.OperationalError, match="disk I/O error"):
            await run_scan(db_file, music_root)

        rows = await fetch_tracks(db_file)
        assert [r[0] for r in rows] == [str(music_root / "a.mp3")]
        assert await fetch_lastscan(db_file) == 0

    @pytest.mark.skipif(sys.platform == "darwin", reason="filesystem requires UTF-8 names")
    async def test_undecodable_path_skipped(
        self, db_file: str, music_root: Path, caplog: pytest.LogCaptureFixture
    ) -> None:
        """A non-UTF-8 filename is counted and logged, and the rest of the scan goes on."""
        good = make_mp3(music_root / "A" / "good.mp3", artist="a", album="b", title="c", mtime=1000)
        latin1 = Path(os.fsdecode(os.fsencode(music_root / "A") + b"/caf\xe9.mp3"))
        make_mp3(latin1, artist="a", album="b", title="d", mtime=1200)

        with caplog.at_level(logging.WARNING, logger="thrasher.core.scanner"):
            stats, out = await run_scan(db_file, music_root)

        assert stats.seen == 2
        assert stats.added == 1
        assert "undecodable path, skipped" in caplog.text
        rows = await fetch_tracks(db_file)
        assert [r[0] for r in rows] == [str(good)]
        assert await fetch_lastscan(db_file) == 1000
        assert "Totals: seen 2, added, 1, updated 0" in out

    async def test_missing_root_raises(self, db_file: str, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            await run_scan(db_file, tmp_path / "nope")
        assert await fetch_lastscan(db_file) == 0


# =============================================================================
# scan_library
# =============================================================================


class TestScanLibrary:
    async def test_writes_scanlog(self, db_file: str, music_root: Path, tmp_path: Path) -> None:
        """Diagnostics go to the scan log; contract lines go to `out`."""
        import io

        make_mp3(music_root / "A" / "a.mp3", title="only a title", mtime=1000)
        log_path = tmp_path / "scanlog"
        out = io.StringIO()

        stats = await scan_library(
            Config(db_file=db_file, music_dir=str(music_root)), out=out, log_path=log_path
        )

        assert isinstance(stats, ScanStats)
        assert stats.added == 1
        log_text = log_path.read_text()
        assert "missing tags" in log_text
        assert "no APIC tags" in log_text
        assert "Totals: seen 1, added, 1, updated 0" in out.getvalue()
        assert await fetch_lastscan(db_file) == 1000

    async def test_scanlog_detached_afterwards(
        self, db_file: str, music_root: Path, tmp_path: Path
    ) -> None:
        import io

        pkg_logger = logging.getLogger("thrasher")
        handlers_before = list(pkg_logger.handlers)

        await scan_library(
            Config(db_file=db_file, music_dir=str(music_root)),
            out=io.StringIO(),
            log_path=tmp_path / "scanlog",
        )

        assert pkg_logger.handlers == handlers_before
        assert pkg_logger.propagate is True
