"""
ORDER BY helpers for catalog queries.

Important:
- The returned strings are *static SQL fragments* selected from a small
  whitelist. Do NOT concatenate user input into ORDER BY.
"""

from __future__ import annotations

import logging
from typing import Final

logger = logging.getLogger(__name__)

_ORDER_FRAGMENTS: Final[dict[str, str]] = {
    "artist": "t.artist COLLATE NOCASE ASC",
    "album": "t.album COLLATE NOCASE ASC",
    "title": "t.title COLLATE NOCASE ASC",
    "year": "CAST(t.year AS INTEGER) ASC",
    "num": "CAST(t.track_number AS INTEGER) ASC",
    "path": "t.path ASC",
    "ctime": "t.ctime DESC",
    "mtime": "t.mtime DESC",
}

DEFAULT_ORDER: Final[tuple[str, ...]] = ("artist", "album", "num", "title")

ORDER_KEYS: Final[frozenset[str]] = frozenset(_ORDER_FRAGMENTS)


def tracks_order_clause(order_by: str) -> str:
    """
    Return an ORDER BY clause for a comma-separated list of sort keys.

    Unknown keys are dropped with a warning; an empty selection falls back
    to DEFAULT_ORDER. The path is always the final tiebreaker.
    """
    keys: list[str] = []
    for raw in order_by.split(","):
        key = raw.strip().lower()
        if not key:
            continue
        if key not in _ORDER_FRAGMENTS:
            logger.warning("Ignoring unknown sort key '%s'", key)
            continue
        if key not in keys:
            keys.append(key)

    if not keys:
        keys = list(DEFAULT_ORDER)
    if "path" not in keys:
        keys.append("path")

    return "ORDER BY " + ", ".join(_ORDER_FRAGMENTS[k] for k in keys)
