"""
Defaulting and cleanup rules applied to tag values before they are stored.

Pure helpers: no filesystem, no DB.
"""

from __future__ import annotations

import json
from typing import Final

# Placeholders for absent values; downstream sorting relies on them being non-empty.
DEFAULT_TRACK_NUMBER: Final[str] = "99"
DEFAULT_YEAR: Final[str] = "9999"


def track_number(raw: str) -> str:
    """
    Normalize a TRCK value.

    Only the track part of "N/M" is kept; an empty value becomes "99".
    """
    tnum = raw.split("/")[0]
    return tnum if tnum else DEFAULT_TRACK_NUMBER


def year(raw: str) -> str:
    """
    Normalize a year/recording-date value.

    An empty value becomes "9999". ISO dates ("2011-03-04") are cut down to
    the year; partial dates such as "2011-03" are left alone.
    """
    value = raw if raw else DEFAULT_YEAR
    chunks = value.split("-")
    if len(chunks) == 3:
        return chunks[0]
    return value


def clamp_times(ctime: int, mtime: int) -> tuple[int, int]:
    """Return (ctime, mtime) with ctime never later than mtime."""
    return min(ctime, mtime), mtime


def facets_json(genre: str) -> str:
    """Encode the initial facet list of a track: a single genre."""
    return json.dumps([genre], ensure_ascii=False)


def missing_fields(artist: str, album: str, title: str) -> bool:
    """True if any of the identifying text fields is empty."""
    return artist == "" or album == "" or title == ""
