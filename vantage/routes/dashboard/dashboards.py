"""Dashboard catalog endpoints."""

from __future__ import annotations

from typing import Any, Dict

from flask import jsonify

from vantage.dashboard.model import DashboardSpec, SelectFilterSpec
from vantage.query.comparators import comparator_groups
from vantage.query.timespan import BUILT_IN_TIME_SPANS

from . import bp, get_dashboards
from .helpers import get_dashboard


def _describe_filter(spec) -> Dict[str, Any]:
    out: Dict[str, Any] = {"name": spec.name, "alias": spec.alias or spec.name, "filterType": spec.filter_type}
    if isinstance(spec, SelectFilterSpec):
        out["source"] = spec.datasource.type
        out["onPreviousFilters"] = spec.on_previous_filters
        out["comparators"] = [[c.name for c in group] for group in comparator_groups(spec.supported_comparators)]
        if spec.default_pattern is not None:
            out["defaultPattern"] = spec.default_pattern.to_dict()
    else:
        out["timeColumn"] = spec.time_column
        out["defaultTimeSpan"] = spec.default_time_span
    return out


def _describe(spec: DashboardSpec) -> Dict[str, Any]:
    return {
        "name": spec.name,
        "title": spec.title,
        "filters": [_describe_filter(f) for f in spec.filters],
        "panels": [
            {"id": p.id, "type": p.type, "title": p.title, "collapsed": p.collapsed} for p in spec.panels
        ],
    }


@bp.route("/dashboards", methods=["GET"])
def list_dashboards():
    return jsonify([{"name": s.name, "title": s.title} for s in get_dashboards().values()])


@bp.route("/dashboards/<name>", methods=["GET"])
def dashboard_detail(name: str):
    return jsonify(_describe(get_dashboard(name)))


@bp.route("/time-spans", methods=["GET"])
def time_spans():
    return jsonify([s.label for s in BUILT_IN_TIME_SPANS if s.enabled])
