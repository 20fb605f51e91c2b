"""Application configuration objects."""

import json
import os
import sys
from pathlib import Path
from typing import Dict

from dotenv import load_dotenv

if getattr(sys, "frozen", False):
    load_dotenv(os.path.join(sys._MEIPASS, ".env"))
else:
    load_dotenv()


def _json_env(name: str, default: Dict[str, str]) -> Dict[str, str]:
    raw = os.getenv(name)
    return json.loads(raw) if raw else default


class Config:
    """Base configuration for the vantage dashboard service."""

    # -------------------------
    # Data source
    # -------------------------
    # "duckdb" (embedded) or "clickhouse" (HTTP interface)
    DATASOURCE = os.getenv("VANTAGE_DATASOURCE", "duckdb")

    # DuckDB database file; ":memory:" keeps everything in process
    DUCKDB_PATH = Path(os.getenv("VANTAGE_DUCKDB_PATH", "data/warehouse.duckdb"))

    # Tables to (re)build from CSV at startup: {"prod.events": "data/events*.csv"}
    CSV_SOURCES: Dict[str, str] = _json_env("VANTAGE_CSV_SOURCES", {})

    CLICKHOUSE_URL = os.getenv("CLICKHOUSE_URL", "http://localhost:8123/")
    CLICKHOUSE_USER = os.getenv("CLICKHOUSE_USER")
    CLICKHOUSE_PASSWORD = os.getenv("CLICKHOUSE_PASSWORD")

    # -------------------------
    # Query rendering
    # -------------------------
    # Timezone of the server's wall clock, used for {from}/{to}
    SERVER_TIMEZONE = os.getenv("VANTAGE_SERVER_TIMEZONE", "UTC")
    TIME_COLUMN = os.getenv("VANTAGE_TIME_COLUMN", "event_time")
    DEFAULT_TIME_SPAN = os.getenv("VANTAGE_DEFAULT_TIME_SPAN", "Last 15 Mins")

    # -------------------------
    # Dashboards
    # -------------------------
    DASHBOARDS_PATH = Path(os.getenv("VANTAGE_DASHBOARDS_PATH", "dashboards.json"))


__all__ = ["Config"]
