"""Exception hierarchy shared by the query engine and the HTTP layer."""

from __future__ import annotations


class VantageError(Exception):
    """Base class for every error raised by vantage."""


class ConfigurationError(VantageError):
    """Invalid dashboard, filter or panel definition.

    Raised at construction/registration time; never recovered from at runtime.
    """


class UnknownComparatorError(ConfigurationError):
    def __init__(self, name: str):
        super().__init__(f"Unknown comparator: {name!r}")
        self.name = name


class QueryExecutionError(VantageError):
    """The data source rejected or failed to run a query."""


class AbortedError(VantageError):
    """The query was cancelled before it completed.

    Never shown to the user; the refresh controller swallows it.
    """


__all__ = [
    "AbortedError",
    "ConfigurationError",
    "QueryExecutionError",
    "UnknownComparatorError",
    "VantageError",
]
