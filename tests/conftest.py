import json

import pytest

from fakes import EVENTS_SQL, OPS_DASHBOARD
from vantage.app import create_app


@pytest.fixture
def dashboards_file(tmp_path):
    path = tmp_path / "dashboards.json"
    path.write_text(json.dumps({"dashboards": [OPS_DASHBOARD]}), encoding="utf-8")
    return path


@pytest.fixture
def app(dashboards_file):
    app = create_app(
        {
            "TESTING": True,
            "DATASOURCE": "duckdb",
            "DUCKDB_PATH": ":memory:",
            "CSV_SOURCES": {},
            "DASHBOARDS_PATH": dashboards_file,
            "SERVER_TIMEZONE": "UTC",
        }
    )
    cursor = app.extensions["datastore"].cursor()
    cursor.execute(EVENTS_SQL)
    cursor.close()
    yield app
    app.extensions["datastore"].close()


@pytest.fixture
def client(app):
    return app.test_client()
