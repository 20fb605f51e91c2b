"""Panel data endpoint."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Optional

from flask import current_app, jsonify, request

from vantage.dashboard.model import StatPanel, TablePanel
from vantage.dashboard.refresh import RefreshOptions, prepare_panel_query
from vantage.errors import ConfigurationError, QueryExecutionError

from . import bp
from .helpers import build_orchestrator, execute_query, get_dashboard, request_payload

logger = logging.getLogger("vantage")


def _sort_from(payload: Dict[str, Any], panel) -> tuple:
    sort = payload.get("sort") or {}
    if not isinstance(sort, dict):
        raise ConfigurationError("'sort' must be an object with column and direction")
    column, direction = sort.get("column"), sort.get("direction")
    if not column and isinstance(panel, TablePanel) and panel.sort_option is not None:
        column, direction = panel.sort_option.column, panel.sort_option.direction
    if direction and str(direction).lower() not in ("asc", "desc"):
        raise ConfigurationError(f"Sort direction must be asc or desc, not {direction!r}")
    return column, direction


async def _stat_comparison(panel: StatPanel, options: RefreshOptions, timezone: str, time_column: str) -> Optional[Dict]:
    shift = panel.comparison_seconds()
    if not shift or options.time_window is None or not options.time_window.is_valid():
        return None
    shifted = RefreshOptions(
        time_window=options.time_window.shift(shift),
        filter_expression=options.filter_expression,
    )
    sql = prepare_panel_query(panel, shifted, timezone, time_column)
    try:
        result = await execute_query(sql, panel.query.params, panel.query.headers)
    except QueryExecutionError as e:
        logger.warning("Panel %s: comparison query failed: %s", panel.id, e)
        return {"error": str(e), "sql": sql}
    return {**result.to_dict(), "sql": sql}


@bp.route("/dashboards/<name>/panels/<panel_id>/data", methods=["POST"])
def panel_data(name: str, panel_id: str):
    spec = get_dashboard(name)
    try:
        panel = spec.panel(panel_id)
    except KeyError:
        raise ConfigurationError(f"Dashboard {name!r} has no panel {panel_id!r}") from None

    payload = request_payload(request)
    orchestrator = build_orchestrator(spec, payload)
    filter_expression = payload.get("filterExpression")
    if filter_expression is None:
        filter_expression = orchestrator.compose_expression() or None

    options = RefreshOptions(
        time_window=orchestrator.time_span,
        filter_expression=filter_expression,
        page_number=int(payload.get("pageNumber") or 0),
    )
    column, direction = _sort_from(payload, panel)
    timezone = current_app.config["SERVER_TIMEZONE"]
    sql = prepare_panel_query(panel, options, timezone, orchestrator.time_column, column, direction)

    async def run():
        result = await execute_query(sql, panel.query.params, panel.query.headers)
        comparison = None
        if isinstance(panel, StatPanel):
            comparison = await _stat_comparison(panel, options, timezone, orchestrator.time_column)
        return result, comparison

    result, comparison = asyncio.run(run())
    body: Dict[str, Any] = {**result.to_dict(), "sql": sql}
    if isinstance(panel, TablePanel) and panel.server_pagination:
        body["pageNumber"] = options.page_number
        body["hasMorePages"] = len(result.rows) >= panel.pagination.page_size
    if comparison is not None:
        body["comparison"] = comparison
    return jsonify(body)
