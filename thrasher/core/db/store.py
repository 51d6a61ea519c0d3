"""
Write-side store adapter used by a scan.

A scan appends many rows one at a time. The adapter opens its own
connection in autocommit mode with `PRAGMA synchronous = 0`, so each insert
is committed on its own without an fsync: rows written before a crash are
kept, and the watermark (written last) is what tells the next scan where to
resume.
"""

from __future__ import annotations

import logging
from pathlib import Path
from types import TracebackType

import aiosqlite

from thrasher.core import CatalogError
from thrasher.core.db.models import NewTrack
from thrasher.core.db.schema import TRACK_COLUMNS

logger = logging.getLogger(__name__)

INSERT_TRACK_SQL = (
    f"INSERT INTO tracks VALUES ({', '.join('?' for _ in TRACK_COLUMNS)})"
)
UPDATE_LASTSCAN_SQL = "UPDATE meta SET lastscan = ?"


class ScanStore:
    """
    Async append-only access to the `tracks` table plus the watermark.

    Usage:
        async with ScanStore("catalog.db") as store:
            await store.append(track)
            await store.set_lastscan(ts)
    """

    def __init__(self, db_path: str | Path) -> None:
        self._db_path = str(db_path)
        self._conn: aiosqlite.Connection | None = None

    @property
    def is_open(self) -> bool:
        return self._conn is not None

    async def open(self) -> None:
        if self._conn is not None:
            return
        # isolation_level=None: autocommit, one implicit transaction per statement.
        self._conn = await aiosqlite.connect(self._db_path, isolation_level=None)
        await self._conn.execute("PRAGMA synchronous = 0;")
        logger.debug("Opened scan store %s", self._db_path)

    async def close(self) -> None:
        if self._conn is None:
            return
        await self._conn.close()
        self._conn = None

    async def __aenter__(self) -> ScanStore:
        await self.open()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.close()

    def _require_conn(self) -> aiosqlite.Connection:
        if self._conn is None:
            raise CatalogError("ScanStore is not open. Call await store.open() first.")
        return self._conn

    async def append(self, track: NewTrack) -> None:
        """Insert one track row. A duplicate path raises `sqlite3.IntegrityError`."""
        conn = self._require_conn()
        await conn.execute(INSERT_TRACK_SQL, track.as_params())

    async def set_lastscan(self, lastscan: int) -> None:
        conn = self._require_conn()
        await conn.execute(UPDATE_LASTSCAN_SQL, (int(lastscan),))
