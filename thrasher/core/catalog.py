from __future__ import annotations

import logging
from pathlib import Path
from types import TracebackType

import aiosqlite

from thrasher.core import CatalogError
from thrasher.core.db.filters import Filter, parse_filter
from thrasher.core.db.models import TrackInfo, decode_facets, parse_int
from thrasher.core.db.ordering import tracks_order_clause

logger = logging.getLogger(__name__)

DEFAULT_RECENT_ALBUMS = 10


class Catalog:
    """
    Read-side facade over the catalog database.

    Usage:
        catalog = Catalog("catalog.db")
        await catalog.open()
        await catalog.set_filter("a:Slayer")
        paths = await catalog.query(order_by="year,num")
        await catalog.close()

    Notes:
    - `lastscan` is the watermark as it was when the catalog was opened; a
      scan running against this catalog sees a stable value.
    - `trim_prefix` is removed from every path this class returns and
      re-added to every path it is given.
    """

    def __init__(
        self,
        db_path: str | Path,
        *,
        trim_prefix: str = "",
        recent_albums: int = DEFAULT_RECENT_ALBUMS,
    ) -> None:
        self._db_path = str(db_path)
        self._conn: aiosqlite.Connection | None = None
        self.trim_prefix = trim_prefix
        self.recent_albums = recent_albums
        self.lastscan = 0
        self.filter: Filter | None = None
        self.filter_count = 0

    @property
    def is_open(self) -> bool:
        return self._conn is not None

    async def open(self) -> None:
        if self._conn is not None:
            return
        self._conn = await aiosqlite.connect(self._db_path)
        self._conn.row_factory = aiosqlite.Row
        try:
            await self.refresh_lastscan()
        except aiosqlite.OperationalError as e:
            await self.close()
            raise CatalogError(
                f"{self._db_path} is not an initialized catalog ({e}); create it first"
            ) from e

    async def close(self) -> None:
        if self._conn is None:
            return
        await self._conn.close()
        self._conn = None

    async def __aenter__(self) -> Catalog:
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
            raise CatalogError("Catalog is not open. Call await catalog.open() first.")
        return self._conn

    def _trim(self, path: str) -> str:
        if self.trim_prefix and path.startswith(self.trim_prefix):
            return path[len(self.trim_prefix) :]
        return path

    def full_path(self, path: str) -> str:
        """Re-add the trim prefix to a path this catalog returned."""
        if self.trim_prefix and not path.startswith(self.trim_prefix):
            return self.trim_prefix + path
        return path

    # ---- Scan support ----

    async def refresh_lastscan(self) -> int:
        conn = self._require_conn()
        async with conn.execute("SELECT lastscan FROM meta LIMIT 1;") as cursor:
            row = await cursor.fetchone()
        self.lastscan = int(row["lastscan"]) if row and row["lastscan"] is not None else 0
        return self.lastscan

    async def exists(self, path: str) -> bool:
        """True if a track with exactly this (untrimmed) path is recorded."""
        conn = self._require_conn()
        async with conn.execute("SELECT 1 FROM tracks WHERE path = ? LIMIT 1;", (path,)) as cursor:
            row = await cursor.fetchone()
        return row is not None

    # ---- Filter + query ----

    async def set_filter(self, expr: str) -> int:
        """
        Parse and install a filter. Returns the number of matching tracks.

        Raises:
            FilterError: the expression is malformed.
        """
        conn = self._require_conn()
        flt = parse_filter(expr)
        async with conn.execute(
            f"SELECT COUNT(*) AS c FROM tracks t WHERE {flt.where};", flt.values
        ) as cursor:
            row = await cursor.fetchone()
        self.filter = flt
        self.filter_count = int(row["c"]) if row else 0
        logger.debug("filter %r -> %s %r (%d)", expr, flt.where, flt.values, self.filter_count)
        return self.filter_count

    async def query(self, order_by: str = "", limit: int = 0, offset: int = 0) -> list[str]:
        """
        Return paths of tracks matching the current filter.

        `limit=0` returns the whole filter set.
        """
        conn = self._require_conn()
        if self.filter is None:
            raise CatalogError("a filter must be set before querying")
        if limit < 0 or offset < 0:
            raise ValueError("limit and offset must be >= 0")

        order_clause = tracks_order_clause(order_by)
        sql = (
            f"SELECT t.path FROM tracks t WHERE {self.filter.where} "
            f"{order_clause} LIMIT ? OFFSET ?;"
        )
        params = (*self.filter.values, limit if limit > 0 else -1, offset)
        async with conn.execute(sql, params) as cursor:
            rows = await cursor.fetchall()
        return [self._trim(str(r["path"])) for r in rows]

    async def query_recent(self) -> list[str]:
        """
        Return the tracks of the most recently added albums.

        An album's age is the newest ctime among its tracks.
        """
        conn = self._require_conn()
        async with conn.execute(
            """
            WITH recent AS (
                SELECT album, MAX(ctime) AS added
                FROM tracks
                GROUP BY album
                ORDER BY added DESC
                LIMIT ?
            )
            SELECT t.path
            FROM tracks t
            JOIN recent r ON t.album IS r.album
            ORDER BY
                r.added DESC,
                t.album COLLATE NOCASE ASC,
                CAST(t.track_number AS INTEGER) ASC,
                t.path ASC;
            """,
            (int(self.recent_albums),),
        ) as cursor:
            rows = await cursor.fetchall()
        return [self._trim(str(r["path"])) for r in rows]

    async def track_info(self, path: str) -> TrackInfo | None:
        conn = self._require_conn()
        full = self.full_path(path)
        async with conn.execute("SELECT * FROM tracks WHERE path = ?;", (full,)) as cursor:
            row = await cursor.fetchone()
        if row is None:
            return None
        return TrackInfo(
            path=self._trim(str(row["path"])),
            num=parse_int(row["track_number"]),
            artist=row["artist"] or "",
            title=row["title"] or "",
            album=row["album"] or "",
            year=parse_int(row["year"]),
            facets=tuple(decode_facets(row["facets"])),
            ctime=int(row["ctime"]),
            mtime=int(row["mtime"]),
        )

    # ---- Browse ----

    async def artists(self, cutoff: int = 1) -> list[tuple[str, int]]:
        """Artists with at least `cutoff` tracks, alphabetically, with track counts."""
        conn = self._require_conn()
        async with conn.execute(
            """
            SELECT artist, COUNT(*) AS c
            FROM tracks
            WHERE artist IS NOT NULL AND artist != ''
            GROUP BY artist
            HAVING COUNT(*) >= ?
            ORDER BY artist COLLATE NOCASE;
            """,
            (int(cutoff),),
        ) as cursor:
            rows = await cursor.fetchall()
        return [(str(r["artist"]), int(r["c"])) for r in rows]

    async def facets(self) -> list[tuple[str, int]]:
        """Every facet in use, alphabetically, with the number of tracks carrying it."""
        conn = self._require_conn()
        async with conn.execute(
            """
            SELECT fc.value AS facet, COUNT(*) AS c
            FROM tracks t, json_each(t.facets) AS fc
            GROUP BY fc.value
            ORDER BY fc.value COLLATE NOCASE;
            """
        ) as cursor:
            rows = await cursor.fetchall()
        return [(str(r["facet"]), int(r["c"])) for r in rows]

    async def count_tracks(self) -> int:
        conn = self._require_conn()
        async with conn.execute("SELECT COUNT(*) AS c FROM tracks;") as cursor:
            row = await cursor.fetchone()
        return int(row["c"]) if row else 0
