"""Render a query template without running it."""

from __future__ import annotations

from flask import current_app, jsonify, request

from vantage.errors import ConfigurationError
from vantage.query.builder import render_query
from vantage.query.timespan import TimeSpan, validate_timezone

from . import bp
from .helpers import request_payload


@bp.route("/query/render", methods=["POST"])
def render():
    payload = request_payload(request)
    sql = payload.get("sql")
    if not sql:
        raise ConfigurationError("'sql' is required")

    span = None
    if payload.get("start") and payload.get("end"):
        span = TimeSpan(str(payload["start"]), str(payload["end"]))

    variables = payload.get("variables") or {}
    if not isinstance(variables, dict):
        raise ConfigurationError("'variables' must be an object")

    timezone = validate_timezone(payload.get("timezone") or current_app.config["SERVER_TIMEZONE"])
    rendered = render_query(
        str(sql),
        span=span,
        filter_expression=payload.get("filterExpression"),
        variables=variables,
        timezone=timezone,
        time_column=payload.get("timeColumn") or current_app.config["TIME_COLUMN"],
    )
    return jsonify({"sql": rendered})
