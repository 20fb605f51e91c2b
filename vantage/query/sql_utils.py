"""ORDER BY / LIMIT rewriting for server-side sorted and paginated tables."""

from __future__ import annotations

import re
from typing import Optional

_ORDER_BY_RE = re.compile(
    r"\s+ORDER\s+BY\s+[^\s]+(?:\s+(?:ASC|DESC))?(?:\s*,\s*[^\s]+(?:\s+(?:ASC|DESC))?)*",
    re.IGNORECASE,
)
_ORDER_BY_BEFORE_LIMIT_RE = re.compile(
    r"\s+ORDER\s+BY\s+[^\s]+(?:\s+(?:ASC|DESC))?(?:\s*,\s*[^\s]+(?:\s+(?:ASC|DESC))?)*(?=\s+LIMIT|\s*$)",
    re.IGNORECASE,
)
_HAS_ORDER_BY_RE = re.compile(r"\s+ORDER\s+BY\s+", re.IGNORECASE)
_LIMIT_RE = re.compile(r"\s+LIMIT\s+\d+", re.IGNORECASE)
_TRAILING_LIMIT_RE = re.compile(r"\s+LIMIT\s+\d+(?:\s+OFFSET\s+\d+)?\s*$", re.IGNORECASE)


def _strip_terminator(sql: str) -> str:
    return sql.strip().rstrip(";").rstrip()


def replace_order_by_clause(sql: str, column: Optional[str], direction: Optional[str]) -> str:
    """Set, replace or (with no column/direction) drop the ORDER BY clause."""
    sql = _strip_terminator(sql)
    if not column or not direction:
        return _ORDER_BY_RE.sub("", sql)

    clause = f"ORDER BY {column} {direction.upper()}"
    if _HAS_ORDER_BY_RE.search(sql):
        return _ORDER_BY_BEFORE_LIMIT_RE.sub(lambda _m: f" {clause}", sql)

    match = _LIMIT_RE.search(sql)
    if match:
        return f"{sql[:match.start()]} {clause}{sql[match.start():]}"
    return f"{sql.strip()} {clause}"


def apply_limit_offset(sql: str, limit: int, offset: int) -> str:
    trimmed = _strip_terminator(sql)
    if _TRAILING_LIMIT_RE.search(trimmed):
        return _TRAILING_LIMIT_RE.sub(f" LIMIT {int(limit)} OFFSET {int(offset)}", trimmed)
    return f"{trimmed} LIMIT {int(limit)} OFFSET {int(offset)}"


__all__ = ["apply_limit_offset", "replace_order_by_clause"]
