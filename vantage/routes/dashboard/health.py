"""Healthcheck endpoint."""

from __future__ import annotations

import duckdb
from flask import current_app, jsonify

from . import bp, get_dashboards, get_datastore


@bp.route("/health", methods=["GET"])
def health():
    datastore = get_datastore()
    try:
        datastore.ping()
    except duckdb.Error as exc:
        current_app.logger.exception("Healthcheck failed")
        return jsonify({"ok": False, "error": str(exc)}), 500
    return (
        jsonify(
            {
                "ok": True,
                "datasource": current_app.config["DATASOURCE"],
                "dashboards": len(get_dashboards()),
            }
        ),
        200,
    )
