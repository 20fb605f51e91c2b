"""Query templating: comparators, filter patterns, time spans and the template engine."""

from .builder import SQLQueryBuilder, render_query  # noqa: F401
from .comparators import Comparator, comparator_groups, parse_comparator  # noqa: F401
from .pattern import FilterPattern, escape_sql_string, patterns_from_search_params  # noqa: F401
from .timespan import DisplayTimeSpan, TimeSpan, display_time_span_by_label  # noqa: F401

__all__ = [
    "Comparator",
    "DisplayTimeSpan",
    "FilterPattern",
    "SQLQueryBuilder",
    "TimeSpan",
    "comparator_groups",
    "display_time_span_by_label",
    "escape_sql_string",
    "parse_comparator",
    "patterns_from_search_params",
    "render_query",
]
