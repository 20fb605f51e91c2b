"""Filter patterns: one user selection rendered as a boolean SQL fragment."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, Mapping, Optional, Tuple

from vantage.query.comparators import Comparator, parse_comparator
from vantage.utils.text import substitute_tokens

logger = logging.getLogger("vantage")

TAUTOLOGY = "1=1"


def escape_sql_string(value: str) -> str:
    # Backslashes first; escaping quotes first would double the inserted ones.
    return value.replace("\\", "\\\\").replace("'", "\\'")


def quote_sql_string(value: Optional[str]) -> str:
    return f"'{escape_sql_string(value or '')}'"


@dataclass(frozen=True)
class FilterPattern:
    """A comparator plus the selected values for one filter dimension.

    Equal fields render equal SQL, so patterns compare and hash by value.
    """

    is_multi_value: bool
    comparator: str
    values: Tuple[str, ...] = field(default_factory=tuple)

    def __post_init__(self):
        comparator = parse_comparator(self.comparator)
        values = tuple("" if v is None else str(v) for v in (self.values or ()))

        if self.is_multi_value != comparator.allow_multi_value:
            logger.debug(
                "Pattern multi-value flag %s does not match comparator %r; normalizing",
                self.is_multi_value,
                comparator.name,
            )
        if not comparator.allow_multi_value and len(values) > 1:
            logger.debug("Truncating %d values for single-value comparator %r", len(values), comparator.name)
            values = values[:1]

        object.__setattr__(self, "is_multi_value", comparator.allow_multi_value)
        object.__setattr__(self, "comparator", comparator.name)
        object.__setattr__(self, "values", values)

    @classmethod
    def of(cls, comparator: str, values: Iterable[str]) -> "FilterPattern":
        parsed = parse_comparator(comparator)
        return cls(parsed.allow_multi_value, parsed.name, tuple(values))

    def get_comparator(self) -> Comparator:
        return parse_comparator(self.comparator)

    def to_expression(self, column_name: str) -> str:
        """Render as ``column <op> value(s)`` using the comparator's rule.

        Never raises on odd data: no values, or the wrong number of values for
        a fixed-arity comparator, renders the ``1=1`` tautology.
        """
        comparator = self.get_comparator()
        if not self.values:
            return TAUTOLOGY
        if comparator.value_count is not None and len(self.values) != comparator.value_count:
            return TAUTOLOGY

        quoted = [quote_sql_string(v) for v in self.values]
        tokens = {
            "{name}": column_name,
            "{value}": quoted[0],
            "{values}": ", ".join(quoted),
        }
        if comparator.value_count == 2:
            tokens["{first}"] = quoted[0]
            tokens["{second}"] = quoted[1]
        return substitute_tokens(comparator.sql, tokens)

    def render_template(self, template: str, column_name: str) -> str:
        """Render a per-filter expression template instead of the default rule.

        Tokens: ``{name}``, ``{value}`` (first value, quoted), ``{values}``
        (comma-joined quoted values) and ``{valuesArray}`` (bracketed list).
        """
        quoted = [quote_sql_string(v) for v in self.values]
        values_list = ",".join(quoted)
        return substitute_tokens(
            template,
            {
                "{name}": column_name,
                "{value}": quoted[0] if quoted else quote_sql_string(""),
                "{values}": values_list,
                "{valuesArray}": f"[{values_list}]",
            },
        )

    def to_dict(self) -> Dict[str, object]:
        return {
            "isMultiValue": self.is_multi_value,
            "comparator": self.comparator,
            "values": list(self.values),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> "FilterPattern":
        values = data.get("values") or []
        if isinstance(values, str):
            values = [values]
        return cls.of(str(data.get("comparator") or ""), [str(v) for v in values])


def patterns_from_search_params(
    params: Mapping[str, str],
    accept: Optional[Callable[[str], bool]] = None,
) -> Dict[str, FilterPattern]:
    """Build patterns from URL-style parameters.

    ``<name>=<value>`` selects a value; ``<name>_comparator`` picks the
    comparator (default ``=``). Multi-value comparators split on commas.
    """
    patterns: Dict[str, FilterPattern] = {}
    for key, value in params.items():
        if key.endswith("_comparator") or value in (None, ""):
            continue
        if accept is not None and not accept(key):
            continue

        comparator = parse_comparator(params.get(f"{key}_comparator") or "=")
        if comparator.allow_multi_value:
            values = [v.strip() for v in str(value).split(",")]
        else:
            values = [str(value)]
        patterns[key] = FilterPattern(comparator.allow_multi_value, comparator.name, tuple(values))
    return patterns


__all__ = [
    "TAUTOLOGY",
    "FilterPattern",
    "escape_sql_string",
    "patterns_from_search_params",
    "quote_sql_string",
]
