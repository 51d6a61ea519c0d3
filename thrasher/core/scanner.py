"""
Incremental MP3 ingestion.

The scanner walks the music directory depth-first in lexicographic order and
appends a `tracks` row for every MP3 that is not yet in the catalog.

Incremental policy:
- A directory whose mtime is not newer than the catalog's `lastscan`
  watermark is *clean*: its MP3s are counted but not read. Force-rescan
  disables this check.
- Each directory gets one cover-extraction attempt, with the first MP3 that
  reaches the pipeline; later files are not tried if that one has no picture.
- A file whose path is not valid UTF-8 is counted but skipped: the catalog
  stores paths as UTF-8 text.
- A file already recorded in the catalog is skipped. Force-rescan still
  reads it (which may produce a missing cover.jpg) but never re-inserts it.
- After a complete walk the watermark is advanced to the newest file mtime
  the pipeline saw. An aborted walk leaves it untouched, so the next scan
  revisits the same directories.

Everything runs as one coroutine: every filesystem and store operation is
awaited in walk order, so rows are appended in exactly that order.
"""

from __future__ import annotations

import logging
import os
import sys
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, TextIO

from thrasher.core import NoPictureError, TagReadError
from thrasher.core.artwork import has_cover, write_cover
from thrasher.core.catalog import Catalog
from thrasher.core.db.models import NewTrack
from thrasher.core.db.store import ScanStore
from thrasher.core.genres import resolve_genre
from thrasher.core.normalize import clamp_times, facets_json, missing_fields, track_number, year
from thrasher.core.tags import read_tag

if TYPE_CHECKING:
    from thrasher.config import Config

logger = logging.getLogger(__name__)

AUDIO_EXTENSION = ".mp3"
SCANLOG_FILENAME = "scanlog"


@dataclass(slots=True)
class DirState:
    """Per-directory flags, fixed when the walker enters the directory."""

    path: str
    clean: bool
    needs_cover: bool


@dataclass(slots=True)
class ScanStats:
    seen: int = 0
    added: int = 0
    # Reserved: recorded tracks are never revised by a scan.
    updated: int = 0
    max_mtime: int = 0
    lastscan: int = 0

    def totals_line(self) -> str:
        return f"Totals: seen {self.seen}, added, {self.added}, updated {self.updated}"


class Scanner:
    """
    Walks one music root and feeds new MP3s into the store.

    Dependencies:
    - `Catalog` answers "is this path recorded?" and provides the watermark
      as of scan start.
    - `ScanStore` receives appended rows and the new watermark.
    """

    def __init__(
        self,
        *,
        root: str | Path,
        catalog: Catalog,
        store: ScanStore,
        force: bool = False,
        out: TextIO | None = None,
    ) -> None:
        self._root = os.path.abspath(root)
        self._catalog = catalog
        self._store = store
        self._force = force
        self._out = out if out is not None else sys.stdout
        self._lastscan = 0
        self.stats = ScanStats()

    async def run(self) -> ScanStats:
        """
        Walk the root, ingest new tracks and advance the watermark.

        Filesystem, tag-read and insert errors propagate and abort the scan
        before the watermark is written.
        """
        self._lastscan = self._catalog.lastscan
        self.stats = ScanStats(lastscan=self._lastscan)
        logger.info(
            "Scanning %s (lastscan=%d, force=%s)", self._root, self._lastscan, self._force
        )

        await self._walk_dir(self._root)

        print(self.stats.totals_line(), file=self._out)

        if self.stats.max_mtime > 0:
            self.stats.lastscan = max(self._lastscan, self.stats.max_mtime)
            await self._store.set_lastscan(self.stats.lastscan)
        logger.info(
            "Scan finished: seen=%d added=%d lastscan=%d",
            self.stats.seen,
            self.stats.added,
            self.stats.lastscan,
        )
        return self.stats

    # ---- Walker ----

    def _enter_dir(self, path: str) -> DirState:
        if self._force:
            clean = False
        else:
            dir_mtime = int(os.lstat(path).st_mtime)
            clean = dir_mtime <= self._lastscan
        return DirState(path=path, clean=clean, needs_cover=not has_cover(path))

    async def _walk_dir(self, path: str) -> None:
        state = self._enter_dir(path)
        with os.scandir(path) as it:
            entries = sorted(it, key=lambda e: e.name)

        for entry in entries:
            if entry.is_dir(follow_symlinks=False):
                await self._walk_dir(entry.path)
            else:
                await self._visit_file(entry, state)

    async def _visit_file(self, entry: os.DirEntry[str], state: DirState) -> None:
        if not entry.name.endswith(AUDIO_EXTENSION):
            return
        self.stats.seen += 1
        if state.clean:
            return

        if not _encodable(entry.path):
            logger.warning("%r :: undecodable path, skipped", entry.path)
            return

        recorded = await self._catalog.exists(entry.path)
        if recorded and not self._force:
            return

        await self._ingest(entry, state, recorded=recorded)

    # ---- Pipeline ----

    async def _ingest(self, entry: os.DirEntry[str], state: DirState, *, recorded: bool) -> None:
        path = entry.path

        st = entry.stat(follow_symlinks=False)
        ctime, mtime = clamp_times(int(st.st_ctime), int(st.st_mtime))
        self.stats.max_mtime = max(self.stats.max_mtime, mtime)

        try:
            tag = read_tag(path)
        except TagReadError as e:
            logger.error("tag error %s: %s", path, e.cause)
            raise

        if state.needs_cover:
            try:
                write_cover(path, tag)
            except (NoPictureError, OSError) as e:
                logger.warning("%s", e)
            finally:
                state.needs_cover = False

        genre = resolve_genre(tag.genre)
        tnum = track_number(tag.text_frame("TRCK"))
        tyear = year(tag.year)

        if missing_fields(tag.artist, tag.album, tag.title):
            logger.warning(
                "%s :: missing tags: t '%s', a '%s', b '%s'",
                path,
                tag.title,
                tag.artist,
                tag.album,
            )

        if recorded:
            return

        artist = tag.artist.strip()
        title = tag.title.strip()
        album = tag.album.strip()
        print(f"+ {artist} '{album}' '{title}' ({tnum}; {tyear}; {genre})", file=self._out)

        await self._store.append(
            NewTrack(
                path=path,
                ctime=ctime,
                mtime=mtime,
                track_number=tnum,
                artist=artist,
                title=title,
                album=album,
                year=tyear,
                facets=facets_json(genre),
            )
        )
        self.stats.added += 1


def _encodable(path: str) -> bool:
    try:
        path.encode("utf-8")
    except UnicodeEncodeError:
        return False
    return True


@asynccontextmanager
async def scan_log(path: str | Path = SCANLOG_FILENAME, *, verbose: bool = False) -> AsyncIterator[None]:
    """
    Route the package's log records into `path` for the duration of a scan.

    Records stop propagating to the console meanwhile: a large library can
    produce thousands of missing-tag lines.
    """
    pkg_logger = logging.getLogger("thrasher")
    handler = logging.FileHandler(path, mode="a", encoding="utf-8")
    handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(message)s"))

    prev_level, prev_propagate = pkg_logger.level, pkg_logger.propagate
    pkg_logger.addHandler(handler)
    pkg_logger.setLevel(logging.DEBUG if verbose else logging.INFO)
    pkg_logger.propagate = False
    try:
        yield
    finally:
        pkg_logger.removeHandler(handler)
        pkg_logger.setLevel(prev_level)
        pkg_logger.propagate = prev_propagate
        handler.close()


async def scan_library(
    config: Config,
    *,
    force: bool = False,
    out: TextIO | None = None,
    log_path: str | Path = SCANLOG_FILENAME,
    verbose: bool = False,
) -> ScanStats:
    """
    Run one scan of `config.music_dir` into `config.db_file`.

    Opens the catalog reader and a dedicated scan store for the duration of
    the scan and closes both afterwards, whether or not the scan succeeds.
    """
    async with scan_log(log_path, verbose=verbose):
        async with Catalog(config.db_file) as catalog, ScanStore(config.db_file) as store:
            scanner = Scanner(
                root=config.music_dir,
                catalog=catalog,
                store=store,
                force=force,
                out=out,
            )
            return await scanner.run()
