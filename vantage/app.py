"""Application factory for the vantage dashboard service."""

from __future__ import annotations

import logging

from typing import Any, Mapping, Optional, Union

from flask import Flask

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("vantage")

from .config import Config
from .dashboard.model import load_dashboards
from .errors import ConfigurationError
from .routes.dashboard import bp as dashboard_bp
from .services.datastore import DataStore
from .services.executor import ClickHouseHttpExecutor, DuckDBExecutor, Executor


def create_executor(config: Mapping[str, Any], datastore: DataStore) -> Executor:
    kind = str(config.get("DATASOURCE", "duckdb")).lower()
    if kind == "duckdb":
        return DuckDBExecutor(datastore)
    if kind == "clickhouse":
        return ClickHouseHttpExecutor(
            config["CLICKHOUSE_URL"],
            user=config.get("CLICKHOUSE_USER"),
            password=config.get("CLICKHOUSE_PASSWORD"),
        )
    raise ConfigurationError(f"Unknown DATASOURCE: {kind!r}")


def create_app(
    config_object: Optional[Union[str, Mapping[str, Any], type]] = None,
) -> Flask:
    """Create and configure the Flask application."""
    app = Flask(__name__)

    app.config.from_object(Config)
    if isinstance(config_object, Mapping):
        app.config.from_mapping(config_object)
    elif config_object is not None:
        app.config.from_object(config_object)

    datastore = DataStore(app.config)
    datastore.load_sources()
    executor = create_executor(app.config, datastore)

    dashboards = app.config.get("DASHBOARDS")
    if dashboards is None:
        dashboards = load_dashboards(app.config["DASHBOARDS_PATH"])

    app.extensions["datastore"] = datastore
    app.extensions["executor"] = executor
    app.extensions["dashboards"] = dict(dashboards)

    app.register_blueprint(dashboard_bp)
    logger.info("vantage ready: %d dashboard(s), datasource=%s", len(dashboards), app.config["DATASOURCE"])

    return app


__all__ = ["create_app", "create_executor"]
