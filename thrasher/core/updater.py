from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable

import aiosqlite

from thrasher.core import CatalogError
from thrasher.core.db.models import decode_facets, encode_facets
from thrasher.core.db.schema import ensure_schema

logger = logging.getLogger(__name__)


class Updater:
    """
    Write-side facade for everything except ingestion.

    Owns schema creation and facet edits. Ingestion goes through
    `thrasher.core.db.store.ScanStore`, which trades durability for speed;
    the updater keeps SQLite's default synchronous mode.

    Usage:
        upd = Updater("catalog.db")
        await upd.open()
        await upd.create_db()
        await upd.add_facet(paths, "favourites")
        await upd.close()
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
        self._conn = await aiosqlite.connect(self._db_path)
        self._conn.row_factory = aiosqlite.Row

    async def close(self) -> None:
        if self._conn is None:
            return
        await self._conn.close()
        self._conn = None

    def _require_conn(self) -> aiosqlite.Connection:
        if self._conn is None:
            raise CatalogError("Updater is not open. Call await upd.open() first.")
        return self._conn

    async def create_db(self) -> None:
        """Create the catalog tables (no-op on an existing catalog)."""
        conn = self._require_conn()
        await ensure_schema(conn)
        await conn.commit()
        logger.info("Catalog schema ready in %s", self._db_path)

    async def add_facet(self, paths: Iterable[str], facet: str) -> int:
        """Attach `facet` to each track in `paths`. Returns the number of rows changed."""
        return await self._edit_facets(paths, facet, add=True)

    async def remove_facet(self, paths: Iterable[str], facet: str) -> int:
        """Detach `facet` from each track in `paths`. Returns the number of rows changed."""
        return await self._edit_facets(paths, facet, add=False)

    async def _edit_facets(self, paths: Iterable[str], facet: str, *, add: bool) -> int:
        facet = facet.strip()
        if not facet:
            raise ValueError("facet must not be empty")

        conn = self._require_conn()
        changed = 0
        # Use savepoint for transaction safety
        await conn.execute("SAVEPOINT edit_facets_sp;")
        try:
            for path in paths:
                async with conn.execute(
                    "SELECT facets FROM tracks WHERE path = ?;", (path,)
                ) as cursor:
                    row = await cursor.fetchone()
                if row is None:
                    logger.warning("No track at %s; facet '%s' not changed", path, facet)
                    continue

                facets = decode_facets(row["facets"])
                if add and facet not in facets:
                    facets.append(facet)
                elif not add and facet in facets:
                    facets = [f for f in facets if f != facet]
                else:
                    continue

                await conn.execute(
                    "UPDATE tracks SET facets = ? WHERE path = ?;",
                    (encode_facets(facets), path),
                )
                changed += 1
            await conn.execute("RELEASE SAVEPOINT edit_facets_sp;")
        except Exception:
            await conn.execute("ROLLBACK TO SAVEPOINT edit_facets_sp;")
            raise

        await conn.commit()
        return changed
