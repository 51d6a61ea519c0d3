"""
DB models (DTOs) and small decoding helpers.

This module is intentionally lightweight:
- No DB connection knowledge
- No SQL
- Pure dataclasses + helper functions
"""

from __future__ import annotations

import json
from dataclasses import astuple, dataclass


@dataclass(frozen=True, slots=True)
class NewTrack:
    """
    A `tracks` row as produced by the ingestion pipeline.

    Field order matches the table's column order; the store inserts it
    positionally.
    """

    path: str
    ctime: int
    mtime: int
    track_number: str
    artist: str
    title: str
    album: str
    year: str
    facets: str

    def as_params(self) -> tuple[str | int, ...]:
        return astuple(self)


@dataclass(frozen=True, slots=True)
class TrackInfo:
    """
    Decoded view of a stored track, used by query output.

    `num` and `year` are integers here; unparseable stored values read as 0.
    """

    path: str
    num: int
    artist: str
    title: str
    album: str
    year: int
    facets: tuple[str, ...]
    ctime: int = 0
    mtime: int = 0


def parse_int(value: str | int | None) -> int:
    """Parse a stored numeric-ish text column ("3", "2011", "") into an int."""
    if value is None:
        return 0
    if isinstance(value, int):
        return value
    try:
        return int(value.strip())
    except ValueError:
        return 0


def decode_facets(value: str | None) -> list[str]:
    """
    Decode a facets column.

    Rows are written as JSON arrays of strings; anything else decodes to an
    empty list rather than failing a whole query.
    """
    if not value:
        return []
    try:
        data = json.loads(value)
    except json.JSONDecodeError:
        return []
    if not isinstance(data, list):
        return []
    return [str(x) for x in data]


def encode_facets(facets: list[str]) -> str:
    return json.dumps(facets, ensure_ascii=False)
