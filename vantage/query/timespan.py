"""Time windows and the parameters derived from them."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Dict, List, Optional, Union

import pandas as pd

from vantage.errors import ConfigurationError

SQL_DATETIME_FMT = "%Y-%m-%d %H:%M:%S"

_OFFSET_RE = re.compile(r"^([+-])?(\d+)([smhd])$")
_UNIT_SECONDS = {"s": 1, "m": 60, "h": 3600, "d": 86400}


def to_utc_timestamp(value: Union[str, pd.Timestamp]) -> pd.Timestamp:
    """Parse an ISO8601 string; naive values are taken as UTC."""
    ts = pd.Timestamp(value)
    if ts.tzinfo is None:
        return ts.tz_localize("UTC")
    return ts.tz_convert("UTC")


def format_iso8601(ts: pd.Timestamp) -> str:
    return to_utc_timestamp(ts).strftime("%Y-%m-%dT%H:%M:%SZ")


@dataclass(frozen=True)
class TimeSpan:
    """Half-open ``[start, end)`` window with absolute bounds."""

    start_iso8601: str
    end_iso8601: str

    @property
    def start(self) -> pd.Timestamp:
        return to_utc_timestamp(self.start_iso8601)

    @property
    def end(self) -> pd.Timestamp:
        return to_utc_timestamp(self.end_iso8601)

    def is_valid(self) -> bool:
        try:
            return pd.notna(self.start) and pd.notna(self.end)
        except (ValueError, TypeError):
            return False

    def shift(self, seconds: int) -> "TimeSpan":
        delta = pd.Timedelta(seconds=seconds)
        return TimeSpan(format_iso8601(self.start + delta), format_iso8601(self.end + delta))

    def to_dict(self) -> Dict[str, str]:
        return {"startISO8601": self.start_iso8601, "endISO8601": self.end_iso8601}


@dataclass(frozen=True)
class TimeSpanParams:
    seconds: int
    rounding: int
    start_timestamp: int
    end_timestamp: int


def calculate_time_span_params(span: TimeSpan) -> TimeSpanParams:
    # pandas Timestamp.value is nanoseconds since the epoch
    start_ts = span.start.value // 1_000_000_000
    end_ts = span.end.value // 1_000_000_000
    seconds = (span.end.value - span.start.value) // 1_000_000_000
    return TimeSpanParams(
        seconds=seconds,
        # 1/100 of the range, at least one second
        rounding=max(1, seconds // 100),
        start_timestamp=start_ts,
        end_timestamp=end_ts,
    )


def format_in_timezone(seconds_since_epoch: int, timezone: str) -> str:
    """``YYYY-MM-DD HH:MM:SS`` wall-clock time in ``timezone``."""
    ts = pd.Timestamp(seconds_since_epoch, unit="s", tz="UTC")
    try:
        local = ts.tz_convert(timezone)
    except (KeyError, ValueError, TypeError):
        # pytz and zoneinfo both report unknown keys as KeyError subclasses
        raise ConfigurationError(f"Unknown timezone: {timezone!r}") from None
    return local.strftime(SQL_DATETIME_FMT)


def validate_timezone(timezone: str) -> str:
    format_in_timezone(0, timezone)
    return timezone


def parse_offset_expression(expression: str) -> int:
    """``(+|-)?N(s|m|h|d)`` to seconds, e.g. ``-1d`` -> ``-86400``."""
    match = _OFFSET_RE.match((expression or "").strip())
    if not match:
        raise ConfigurationError(
            f"Invalid offset expression: {expression!r}. Expected format: (+|-)?N(s|m|h|d)"
        )
    sign, value, unit = match.groups()
    seconds = int(value) * _UNIT_SECONDS[unit]
    return -seconds if sign == "-" else seconds


class DisplayTimeSpan:
    """A named time window such as "Last 15 Mins", resolved against now."""

    def __init__(
        self,
        label: str,
        value: Union[int, str],
        unit: str,
        enabled: bool = True,
        start: Optional[str] = None,
        end: Optional[str] = None,
    ):
        self.label = label
        self.value = value
        self.unit = unit
        self.enabled = enabled
        self.start = start
        self.end = end

    def is_user_defined(self) -> bool:
        return self.value == "user"

    def url_parameter_value(self) -> str:
        if self.is_user_defined():
            return f"{self.start} - {self.end}"
        return self.label

    def time_span(self, now: Optional[pd.Timestamp] = None) -> TimeSpan:
        end = to_utc_timestamp(now) if now is not None else pd.Timestamp.now(tz="UTC")
        end = end.floor("s")

        if self.value in ("user", "all"):
            return TimeSpan(self.start or "", self.end or "")
        if self.value == "today":
            return TimeSpan(format_iso8601(end.floor("D")), format_iso8601(end))
        if self.value == "yesterday":
            midnight = end.floor("D")
            return TimeSpan(format_iso8601(midnight - pd.Timedelta(days=1)), format_iso8601(midnight))

        units = {"m": "minutes", "h": "hours", "d": "days"}
        start = end - pd.Timedelta(**{units[self.unit]: int(self.value)})
        return TimeSpan(format_iso8601(start), format_iso8601(end))

    def __repr__(self) -> str:
        return f"DisplayTimeSpan({self.label!r})"


BUILT_IN_TIME_SPANS: List[DisplayTimeSpan] = [
    DisplayTimeSpan("Last 1 Mins", 1, "m"),
    DisplayTimeSpan("Last 5 Mins", 5, "m"),
    DisplayTimeSpan("Last 15 Mins", 15, "m"),
    DisplayTimeSpan("Last 30 Mins", 30, "m"),
    DisplayTimeSpan("Last 1 Hour", 1, "h"),
    DisplayTimeSpan("Last 3 Hour", 3, "h"),
    DisplayTimeSpan("Last 6 Hours", 6, "h"),
    DisplayTimeSpan("Last 12 Hours", 12, "h"),
    DisplayTimeSpan("Last 1 Days", 1, "d"),
    DisplayTimeSpan("Last 3 Days", 3, "d"),
    DisplayTimeSpan("Last 5 Days", 5, "d"),
    DisplayTimeSpan("Last 7 Days", 7, "d"),
    DisplayTimeSpan("Today", "today", "d"),
    DisplayTimeSpan("Yesterday", "yesterday", "d"),
    # disabled by default
    DisplayTimeSpan("All", "all", "unit", False, "2000-01-01T00:00:00Z", "2099-12-31T23:59:59Z"),
]

DEFAULT_TIME_SPAN_LABEL = "Last 15 Mins"


def display_time_span_by_label(label: Optional[str]) -> DisplayTimeSpan:
    """Resolve a built-in label or a ``<iso> - <iso>`` user range."""
    for span in BUILT_IN_TIME_SPANS:
        if span.label == label:
            return span

    parts = (label or "").split(" - ")
    if len(parts) == 2:
        try:
            start = to_utc_timestamp(parts[0].strip())
            end = to_utc_timestamp(parts[1].strip())
        except (ValueError, TypeError):
            start = end = None
        if start is not None and end is not None and pd.notna(start) and pd.notna(end):
            return DisplayTimeSpan(
                f"{start.strftime(SQL_DATETIME_FMT)} - {end.strftime(SQL_DATETIME_FMT)}",
                "user",
                "unit",
                True,
                format_iso8601(start),
                format_iso8601(end),
            )

    return display_time_span_by_label(DEFAULT_TIME_SPAN_LABEL)


__all__ = [
    "BUILT_IN_TIME_SPANS",
    "DEFAULT_TIME_SPAN_LABEL",
    "DisplayTimeSpan",
    "TimeSpan",
    "TimeSpanParams",
    "calculate_time_span_params",
    "display_time_span_by_label",
    "format_in_timezone",
    "format_iso8601",
    "parse_offset_expression",
    "to_utc_timestamp",
    "validate_timezone",
]
