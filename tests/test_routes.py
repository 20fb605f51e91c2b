import asyncio

from vantage.dashboard.model import QuerySpec, StatPanel
from vantage.dashboard.refresh import RefreshOptions
from vantage.query.timespan import TimeSpan
from vantage.routes.dashboard.panels import _stat_comparison

WINDOW = {"start": "2024-01-01T00:00:00Z", "end": "2024-01-01T01:00:00Z"}


def test_health(client):
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.get_json() == {"ok": True, "datasource": "duckdb", "dashboards": 1}


def test_list_dashboards(client):
    assert client.get("/dashboards").get_json() == [{"name": "ops", "title": "Operations"}]


def test_dashboard_detail(client):
    body = client.get("/dashboards/ops").get_json()
    assert [f["name"] for f in body["filters"]] == ["time", "region", "host", "level"]
    assert body["filters"][1]["comparators"][0] == ["=", "!="]
    assert body["filters"][3]["source"] == "inline"
    assert {p["id"]: p["type"] for p in body["panels"]} == {
        "by-region": "timeseries",
        "hosts": "table",
        "total": "stat",
        "broken": "table",
    }


def test_unknown_dashboard(client):
    resp = client.get("/dashboards/nope")
    assert resp.status_code == 400
    assert resp.get_json()["ok"] is False


def test_time_spans(client):
    labels = client.get("/time-spans").get_json()
    assert "Last 15 Mins" in labels
    assert "All" not in labels


def test_render_query(client):
    resp = client.post(
        "/query/render",
        json={"sql": "SELECT * FROM t WHERE {timeFilter} AND {filterExpression}", "timeColumn": "ts", **WINDOW},
    )
    assert resp.status_code == 200
    assert resp.get_json()["sql"] == (
        "SELECT * FROM t WHERE ts >= '2024-01-01 00:00:00' AND ts < '2024-01-01 01:00:00' AND 1=1"
    )


def test_render_query_requires_sql(client):
    assert client.post("/query/render", json={}).status_code == 400


def test_filter_options_from_query(client):
    resp = client.post("/dashboards/ops/filters/1/options", json=WINDOW)
    assert resp.status_code == 200
    assert resp.get_json()["values"] == ["ap", "eu", "us"]


def test_filter_options_narrowed_by_previous_selection(client):
    resp = client.post(
        "/dashboards/ops/filters/2/options",
        json={"selections": {"region": {"comparator": "=", "values": ["eu"]}}, **WINDOW},
    )
    body = resp.get_json()
    assert body["values"] == ["h1", "h2"]
    assert body["sql"] == "SELECT DISTINCT host FROM events WHERE (region = 'eu') ORDER BY host"


def test_inline_filter_options(client):
    body = client.post("/dashboards/ops/filters/3/options", json={}).get_json()
    assert body == {"name": "level", "values": ["info", "warn"], "sql": None}


def test_filter_options_for_time_filter_rejected(client):
    assert client.post("/dashboards/ops/filters/0/options", json={}).status_code == 400
    assert client.post("/dashboards/ops/filters/9/options", json={}).status_code == 400


def test_unknown_comparator_rejected(client):
    resp = client.post(
        "/dashboards/ops/filters/2/options",
        json={"selections": {"region": {"comparator": "roughly", "values": ["eu"]}}},
    )
    assert resp.status_code == 400
    assert "roughly" in resp.get_json()["error"]


def test_panel_data(client):
    resp = client.post("/dashboards/ops/panels/by-region/data", json=WINDOW)
    assert resp.status_code == 200
    body = resp.get_json()
    assert body["rows"] == [{"region": "ap", "n": 1}, {"region": "eu", "n": 2}, {"region": "us", "n": 2}]
    assert [m["name"] for m in body["meta"]] == ["region", "n"]


def test_panel_data_with_selection(client):
    body = client.post(
        "/dashboards/ops/panels/by-region/data",
        json={"selections": {"region": {"comparator": "in", "values": ["eu", "us"]}}, **WINDOW},
    ).get_json()
    assert [r["region"] for r in body["rows"]] == ["eu", "us"]
    assert "region IN ('eu', 'us')" in body["sql"]


def test_panel_data_with_explicit_expression(client):
    body = client.post(
        "/dashboards/ops/panels/by-region/data",
        json={"filterExpression": "region = 'ap'", **WINDOW},
    ).get_json()
    assert body["rows"] == [{"region": "ap", "n": 1}]


def test_server_paginated_table(client):
    body = client.post("/dashboards/ops/panels/hosts/data", json={"pageNumber": 1, **WINDOW}).get_json()
    assert body["rows"] == [{"host": "h2", "latency": 20}, {"host": "h3", "latency": 30}]
    assert body["sql"].endswith("ORDER BY host LIMIT 2 OFFSET 2")
    assert body["pageNumber"] == 1
    assert body["hasMorePages"] is True


def test_server_sorted_table(client):
    body = client.post(
        "/dashboards/ops/panels/hosts/data",
        json={"sort": {"column": "latency", "direction": "desc"}, **WINDOW},
    ).get_json()
    assert [r["host"] for r in body["rows"]] == ["h5", "h4"]


def test_bad_sort_direction(client):
    resp = client.post("/dashboards/ops/panels/hosts/data", json={"sort": {"column": "latency", "direction": "up"}})
    assert resp.status_code == 400


def test_stat_panel_comparison(client):
    body = client.post("/dashboards/ops/panels/total/data", json=WINDOW).get_json()
    assert body["rows"] == [{"n": 5}]
    assert body["comparison"]["rows"] == [{"n": 1}]
    assert "'2023-12-31 23:00:00'" in body["comparison"]["sql"]


def test_query_error_is_bad_gateway(client):
    resp = client.post("/dashboards/ops/panels/broken/data", json=WINDOW)
    assert resp.status_code == 502
    assert resp.get_json()["ok"] is False


def test_unknown_panel(client):
    assert client.post("/dashboards/ops/panels/nope/data", json=WINDOW).status_code == 400


def test_render_query_unknown_timezone(client):
    resp = client.post("/query/render", json={"sql": "SELECT {from}", "timezone": "Mars/Olympus", **WINDOW})
    assert resp.status_code == 400
    assert "Mars/Olympus" in resp.get_json()["error"]


def test_render_query_unknown_timezone_without_window(client):
    resp = client.post("/query/render", json={"sql": "SELECT 1", "timezone": "Mars/Olympus"})
    assert resp.status_code == 400


def test_stat_comparison_needs_a_usable_window():
    panel = StatPanel(id="s", query=QuerySpec(sql="SELECT 1 WHERE {timeFilter}"), comparison_offset="-1h")
    options = RefreshOptions(time_window=TimeSpan("", ""))
    assert asyncio.run(_stat_comparison(panel, options, "UTC", "event_time")) is None
