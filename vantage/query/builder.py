"""Query template engine.

Turns a query template plus runtime parameters into executable text by plain
token substitution. Nothing here parses SQL; a macro dropped inside a string
literal is replaced all the same.

Substitution order matters:

1. ``{timeFilter}`` expands to ``<col> >= {from} AND <col> < {to}``
2. time-window tokens, including the ``{from}``/``{to}`` introduced by step 1
3. ``{filterExpression}`` (``1=1`` when no expression is given)
4. caller variables, last, so their values are never expanded again

Without a (valid) time span, steps 1 and 2 leave the template untouched.
"""

from __future__ import annotations

from typing import Dict, Mapping, Optional, Tuple, Union

from vantage.query.pattern import TAUTOLOGY
from vantage.query.timespan import TimeSpan, calculate_time_span_params, format_in_timezone
from vantage.utils.text import substitute_tokens

DEFAULT_TIME_COLUMN = "event_time"
DEFAULT_TIMEZONE = "UTC"

TIME_FILTER_TOKENS: Tuple[str, ...] = ("{timeFilter}", "{timeFilter:String}")
FILTER_EXPRESSION_TOKENS: Tuple[str, ...] = ("{filterExpression}", "{filterExpression:String}")

# macro -> accepted spellings (plain and ClickHouse typed parameter)
TIME_SPAN_TOKENS: Dict[str, Tuple[str, ...]] = {
    "rounding": ("{rounding}", "{rounding:UInt32}"),
    "seconds": ("{seconds}", "{seconds:UInt32}"),
    "startTimestamp": ("{startTimestamp}", "{startTimestamp:UInt32}"),
    "endTimestamp": ("{endTimestamp}", "{endTimestamp:UInt32}"),
    "startTimestampMs": ("{startTimestampMs}", "{startTimestampMs:UInt64}"),
    "endTimestampMs": ("{endTimestampMs}", "{endTimestampMs:UInt64}"),
    "startTimestampUs": ("{startTimestampUs}", "{startTimestampUs:UInt64}"),
    "endTimestampUs": ("{endTimestampUs}", "{endTimestampUs:UInt64}"),
    "from": ("{from}", "{from:String}"),
    "to": ("{to}", "{to:String}"),
}


def time_span_values(span: TimeSpan, timezone: str) -> Dict[str, str]:
    params = calculate_time_span_params(span)
    return {
        "rounding": str(params.rounding),
        "seconds": str(params.seconds),
        "startTimestamp": str(params.start_timestamp),
        "endTimestamp": str(params.end_timestamp),
        "startTimestampMs": str(params.start_timestamp * 1_000),
        "endTimestampMs": str(params.end_timestamp * 1_000),
        "startTimestampUs": str(params.start_timestamp * 1_000_000),
        "endTimestampUs": str(params.end_timestamp * 1_000_000),
        "from": f"'{format_in_timezone(params.start_timestamp, timezone)}'",
        "to": f"'{format_in_timezone(params.end_timestamp, timezone)}'",
    }


def replace_time_span_params(
    sql: str,
    span: Optional[TimeSpan],
    timezone: str = DEFAULT_TIMEZONE,
    time_column: str = DEFAULT_TIME_COLUMN,
) -> str:
    if span is None or not span.is_valid():
        return sql

    expansion = f"{time_column} >= {{from}} AND {time_column} < {{to}}"
    sql = substitute_tokens(sql, {token: expansion for token in TIME_FILTER_TOKENS})
    values = time_span_values(span, timezone)
    tokens = {token: values[key] for key, spellings in TIME_SPAN_TOKENS.items() for token in spellings}
    return substitute_tokens(sql, tokens)


class SQLQueryBuilder:
    """Fluent wrapper over the substitution steps.

    >>> SQLQueryBuilder("SELECT 1 WHERE {filterExpression}").filter_expression(None).build()
    'SELECT 1 WHERE 1=1'
    """

    def __init__(self, sql: str):
        self.sql = sql or ""

    def time_span(
        self,
        span: Optional[TimeSpan],
        timezone: str = DEFAULT_TIMEZONE,
        time_column: str = DEFAULT_TIME_COLUMN,
    ) -> "SQLQueryBuilder":
        self.sql = replace_time_span_params(self.sql, span, timezone, time_column)
        return self

    def filter_expression(self, expression: Optional[str]) -> "SQLQueryBuilder":
        expression = expression or TAUTOLOGY
        self.sql = substitute_tokens(self.sql, {token: expression for token in FILTER_EXPRESSION_TOKENS})
        return self

    def replace(self, name: str, value: Union[str, int, float]) -> "SQLQueryBuilder":
        return self.replace_all({name: value})

    def replace_all(self, variables: Optional[Mapping[str, Union[str, int, float]]]) -> "SQLQueryBuilder":
        if variables:
            self.sql = substitute_tokens(
                self.sql, {f"{{{name}}}": str(value) for name, value in variables.items()}
            )
        return self

    def build(self) -> str:
        return self.sql.strip()

    def __str__(self) -> str:
        return self.sql


def render_query(
    template: str,
    span: Optional[TimeSpan] = None,
    filter_expression: Optional[str] = None,
    variables: Optional[Mapping[str, Union[str, int, float]]] = None,
    timezone: str = DEFAULT_TIMEZONE,
    time_column: str = DEFAULT_TIME_COLUMN,
) -> str:
    """Run all four substitution steps in order."""
    return (
        SQLQueryBuilder(template)
        .time_span(span, timezone, time_column)
        .filter_expression(filter_expression)
        .replace_all(variables)
        .build()
    )


__all__ = [
    "DEFAULT_TIME_COLUMN",
    "DEFAULT_TIMEZONE",
    "SQLQueryBuilder",
    "render_query",
    "replace_time_span_params",
    "time_span_values",
]
