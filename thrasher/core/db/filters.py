"""
Filter expressions for catalog queries.

Syntax:
    term   := key ":" value
    filter := term (("&&" | "||") term)*

Keys:
    a  artist    (case-insensitive substring)
    b  album     (case-insensitive substring)
    t  title     (case-insensitive substring)
    p  path      (case-insensitive substring)
    y  year      (exact, or an inclusive range "1990-1999")
    f  facet     (exact facet element)

"&&" binds tighter than "||", as in SQL. Example:

    a:Slayer && y:1983-1990 || f:Thrash Metal

Important:
- Values are always bound as parameters; only fragments from this module
  end up in the SQL text.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Final

from thrasher.core import FilterError

_OPERATOR_RE: Final = re.compile(r"(&&|\|\|)")
_YEAR_RANGE_RE: Final = re.compile(r"^(\d{1,4})\s*-\s*(\d{1,4})$")

_SUBSTRING_COLUMNS: Final[dict[str, str]] = {
    "a": "t.artist",
    "b": "t.album",
    "t": "t.title",
    "p": "t.path",
}

FILTER_KEYS: Final[frozenset[str]] = frozenset({*_SUBSTRING_COLUMNS, "y", "f"})


@dataclass(frozen=True, slots=True)
class Filter:
    """A parsed filter: the source text, a WHERE fragment and its bound values."""

    expr: str
    where: str
    values: tuple[str | int, ...]


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _parse_term(term: str) -> tuple[str, list[str | int]]:
    key, sep, value = term.partition(":")
    key = key.strip()
    value = value.strip()

    if not sep:
        raise FilterError(f"malformed term '{term}': expected key:value")
    if key not in FILTER_KEYS:
        raise FilterError(f"unknown filter key '{key}' in '{term}'")
    if not value:
        raise FilterError(f"empty value in '{term}'")

    if key in _SUBSTRING_COLUMNS:
        column = _SUBSTRING_COLUMNS[key]
        return f"{column} LIKE ? ESCAPE '\\'", [f"%{_escape_like(value)}%"]

    if key == "y":
        m = _YEAR_RANGE_RE.match(value)
        if m:
            low, high = int(m.group(1)), int(m.group(2))
            if low > high:
                raise FilterError(f"empty year range in '{term}'")
            return "CAST(t.year AS INTEGER) BETWEEN ? AND ?", [low, high]
        return "t.year = ?", [value]

    # key == "f"
    return "EXISTS (SELECT 1 FROM json_each(t.facets) AS fc WHERE fc.value = ?)", [value]


def parse_filter(expr: str) -> Filter:
    """
    Parse a filter expression.

    Raises:
        FilterError: the expression is empty or malformed.
    """
    if not expr or not expr.strip():
        raise FilterError("empty filter")

    parts = _OPERATOR_RE.split(expr)
    clauses: list[str] = []
    values: list[str | int] = []

    for i, part in enumerate(parts):
        if i % 2 == 1:
            clauses.append("AND" if part == "&&" else "OR")
            continue
        if not part.strip():
            raise FilterError(f"missing term in '{expr}'")
        sql, vals = _parse_term(part.strip())
        clauses.append(f"({sql})")
        values.extend(vals)

    return Filter(expr=expr, where=" ".join(clauses), values=tuple(values))
