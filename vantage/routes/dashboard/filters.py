"""Value lists for a dashboard's select filters."""

from __future__ import annotations

import asyncio
import logging
from typing import List

from flask import jsonify, request

from . import bp
from .helpers import build_orchestrator, execute_query, get_dashboard, request_payload

logger = logging.getLogger("vantage")


async def _load_distinct(sql: str) -> List[str]:
    """First column of every row, as the selector's choices."""
    result = await execute_query(sql)
    if not result.meta:
        return []
    column = result.meta[0].name
    return [str(row[column]) for row in result.rows if row.get(column) is not None]


@bp.route("/dashboards/<name>/filters/<int:index>/options", methods=["POST"])
def filter_options(name: str, index: int):
    spec = get_dashboard(name)
    orchestrator = build_orchestrator(spec, request_payload(request))

    sql = orchestrator.source_query(index)
    values = asyncio.run(orchestrator.load_values_for(index, _load_distinct))
    logger.debug("Filter %s[%d]: %d value(s)", name, index, len(values))
    return jsonify({"name": spec.filters[index].name, "values": values, "sql": sql})
