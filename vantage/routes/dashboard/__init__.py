"""Dashboard blueprint package."""

from __future__ import annotations

from flask import Blueprint

bp = Blueprint("dashboard", __name__)


def get_datastore():
    from flask import current_app

    return current_app.extensions["datastore"]


def get_executor():
    from flask import current_app

    return current_app.extensions["executor"]


def get_dashboards():
    from flask import current_app

    return current_app.extensions["dashboards"]


from . import dashboards, filters, handlers, health, panels, query  # noqa: E402,F401

__all__ = ["bp", "get_dashboards", "get_datastore", "get_executor"]
