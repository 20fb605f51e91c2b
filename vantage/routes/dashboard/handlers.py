"""JSON error responses for the dashboard API."""

from __future__ import annotations

import logging

from flask import jsonify

from vantage.errors import AbortedError, ConfigurationError, QueryExecutionError

from . import bp

logger = logging.getLogger("vantage")


@bp.app_errorhandler(ConfigurationError)
def configuration_error(exc: ConfigurationError):
    logger.error("Configuration error: %s", exc)
    return jsonify({"ok": False, "error": str(exc)}), 400


@bp.app_errorhandler(QueryExecutionError)
def query_error(exc: QueryExecutionError):
    return jsonify({"ok": False, "error": str(exc)}), 502


@bp.app_errorhandler(AbortedError)
def aborted(exc: AbortedError):
    return jsonify({"ok": False, "error": str(exc)}), 409
