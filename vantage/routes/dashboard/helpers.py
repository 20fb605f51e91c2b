"""Shared helper functions for dashboard routes."""

from __future__ import annotations

from typing import Any, Dict, Mapping, Optional

from flask import current_app

from vantage.dashboard.filters import FilterOrchestrator
from vantage.dashboard.model import DashboardSpec
from vantage.errors import ConfigurationError
from vantage.query.pattern import FilterPattern
from vantage.query.timespan import TimeSpan, display_time_span_by_label
from vantage.services.executor import QueryResult

from . import get_dashboards, get_executor


def get_dashboard(name: str) -> DashboardSpec:
    try:
        return get_dashboards()[name]
    except KeyError:
        raise ConfigurationError(f"Unknown dashboard: {name!r}") from None


def request_payload(request) -> Dict[str, Any]:
    payload = request.get_json(silent=True)
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        raise ConfigurationError("Request body must be a JSON object")
    return payload


def parse_time_span(payload: Mapping[str, Any], default_label: Optional[str] = None) -> TimeSpan:
    """``start``/``end`` if both given, else the ``timeSpan`` label or the default one."""
    start, end = payload.get("start"), payload.get("end")
    if start and end:
        return TimeSpan(str(start), str(end))

    label = payload.get("timeSpan") or default_label or current_app.config["DEFAULT_TIME_SPAN"]
    return display_time_span_by_label(str(label)).time_span()


def parse_selections(payload: Mapping[str, Any]) -> Dict[str, FilterPattern]:
    selections = payload.get("selections") or {}
    if not isinstance(selections, Mapping):
        raise ConfigurationError("'selections' must map filter names to patterns")
    return {str(name): FilterPattern.from_dict(data) for name, data in selections.items() if data}


def build_orchestrator(spec: DashboardSpec, payload: Mapping[str, Any]) -> FilterOrchestrator:
    """A per-request orchestrator holding the caller's selections."""
    time_filter = spec.time_filter
    orchestrator = FilterOrchestrator(
        spec.filters,
        time_span=parse_time_span(payload, time_filter.default_time_span if time_filter else None),
        timezone=current_app.config["SERVER_TIMEZONE"],
    )
    for name, pattern in parse_selections(payload).items():
        orchestrator.set_pattern(name, pattern)
    return orchestrator


async def execute_query(sql: str, params=None, headers=None) -> QueryResult:
    execution = get_executor().execute(sql, params, headers)
    return await execution.result


__all__ = [
    "build_orchestrator",
    "execute_query",
    "get_dashboard",
    "parse_selections",
    "parse_time_span",
    "request_payload",
]
