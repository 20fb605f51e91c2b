"""Comparator catalog used by filter selectors."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Tuple

from vantage.errors import UnknownComparatorError


@dataclass(frozen=True)
class Comparator:
    name: str
    display: str
    # rendering rule; {name}, {value} and {values} are literal tokens
    sql: str
    allow_multi_value: bool = False
    # None means "any number of values"
    value_count: Optional[int] = None


# EQ must stay first: it is the default comparator.
COMPARATOR_GROUPS: Tuple[Tuple[Comparator, ...], ...] = (
    (
        Comparator("=", "=", "{name} = {value}"),
        Comparator("!=", "!=", "{name} != {value}"),
    ),
    (
        Comparator("in", "in", "{name} IN ({values})", allow_multi_value=True),
        Comparator("not in", "ni", "{name} NOT IN ({values})", allow_multi_value=True),
    ),
    (
        Comparator("<", "<", "{name} < {value}"),
        Comparator("<=", "<=", "{name} <= {value}"),
        Comparator(">", ">", "{name} > {value}"),
        Comparator(">=", ">=", "{name} >= {value}"),
    ),
    (
        Comparator("contains", "c", "{name} LIKE concat('%', {value}, '%')"),
        Comparator("not contains", "nc", "{name} NOT LIKE concat('%', {value}, '%')"),
        Comparator("like", "~", "{name} LIKE {value}"),
        Comparator("not like", "!~", "{name} NOT LIKE {value}"),
    ),
    (
        Comparator("startsWith", "s", "{name} LIKE concat({value}, '%')"),
        Comparator("not startsWith", "ns", "{name} NOT LIKE concat({value}, '%')"),
        Comparator("endsWith", "e", "{name} LIKE concat('%', {value})"),
        Comparator("not endsWith", "ne", "{name} NOT LIKE concat('%', {value})"),
    ),
    (
        Comparator(
            "between",
            "<>",
            "{name} BETWEEN {first} AND {second}",
            allow_multi_value=True,
            value_count=2,
        ),
    ),
)

DEFAULT_COMPARATOR = COMPARATOR_GROUPS[0][0]

_BY_NAME: Dict[str, Comparator] = {c.name: c for group in COMPARATOR_GROUPS for c in group}
_BY_LOWER_NAME: Dict[str, Comparator] = {c.name.lower(): c for c in _BY_NAME.values()}


def parse_comparator(name: Optional[str]) -> Comparator:
    """Look a comparator up by name.

    An empty name yields ``=``. Anything else that is not registered raises
    :class:`UnknownComparatorError`.
    """
    if not name:
        return DEFAULT_COMPARATOR
    comparator = _BY_NAME.get(name) or _BY_LOWER_NAME.get(name.strip().lower())
    if comparator is None:
        raise UnknownComparatorError(name)
    return comparator


def comparator_groups(supported: Optional[Iterable[str]] = None) -> List[List[Comparator]]:
    """Catalog groups restricted to ``supported`` names (all when empty)."""
    names = set(supported or [])
    if not names:
        return [list(group) for group in COMPARATOR_GROUPS]

    groups = [[c for c in group if c.name in names] for group in COMPARATOR_GROUPS]
    groups = [g for g in groups if g]
    if not groups:
        return [[DEFAULT_COMPARATOR]]
    return groups


__all__ = [
    "COMPARATOR_GROUPS",
    "DEFAULT_COMPARATOR",
    "Comparator",
    "comparator_groups",
    "parse_comparator",
]
