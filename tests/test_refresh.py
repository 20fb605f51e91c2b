import asyncio

from fakes import LATER_SPAN, SPAN, FakeExecutor, rows, settle
from vantage.dashboard.model import PaginationOption, QuerySpec, SortOption, StatPanel, TablePanel
from vantage.dashboard.refresh import PanelRefreshController, PanelStatus, RefreshOptions, prepare_panel_query
from vantage.errors import QueryExecutionError
from vantage.query.timespan import TimeSpan

QUERY = QuerySpec(sql="SELECT * FROM events WHERE {timeFilter} AND {filterExpression} ORDER BY ts")
OPTIONS = RefreshOptions(time_window=SPAN, filter_expression="region = 'eu'")
OTHER = RefreshOptions(time_window=SPAN, filter_expression="region = 'us'")


def table(**kwargs):
    return TablePanel(id="t", query=QUERY, **kwargs)


def paged_table(page_size=50, **kwargs):
    return table(pagination=PaginationOption(mode="server", page_size=page_size), **kwargs)


def test_options_equality_ignores_force_flag():
    assert OPTIONS == RefreshOptions(time_window=SPAN, filter_expression="region = 'eu'", force_refresh=True)
    assert OPTIONS != OPTIONS.for_page(1)


def test_prepare_panel_query_paginates_and_sorts():
    panel = paged_table(page_size=25, sort_option=SortOption(server_side=True))
    sql = prepare_panel_query(panel, OPTIONS.for_page(2), time_column="ts", sort_column="n", sort_direction="desc")
    assert sql == (
        "SELECT * FROM events WHERE ts >= '2024-01-01 00:00:00' AND ts < '2024-01-01 01:00:00' "
        "AND region = 'eu' ORDER BY n DESC LIMIT 25 OFFSET 50"
    )


def test_identical_refreshes_run_one_query():
    async def scenario():
        executor = FakeExecutor()
        controller = PanelRefreshController(table(), executor)
        task = controller.refresh(OPTIONS)
        assert controller.refresh(RefreshOptions(time_window=SPAN, filter_expression="region = 'eu'")) is None
        executor.calls[0].resolve([{"n": 1}])
        await task
        assert controller.refresh(OPTIONS) is None
        return executor, controller

    executor, controller = asyncio.run(scenario())
    assert len(executor.calls) == 1
    assert controller.rows == [{"n": 1}]
    assert controller.status is PanelStatus.IDLE
    assert controller.state.last_params == OPTIONS


def test_force_refresh_bypasses_dedup():
    async def scenario():
        executor = FakeExecutor()
        controller = PanelRefreshController(table(), executor)
        task = controller.refresh(OPTIONS)
        executor.calls[0].resolve(rows(1))
        await task
        task = controller.refresh(RefreshOptions(time_window=SPAN, filter_expression="region = 'eu'", force_refresh=True))
        assert task is not None
        executor.calls[1].resolve(rows(2))
        await task
        return executor, controller

    executor, controller = asyncio.run(scenario())
    assert len(executor.calls) == 2
    assert controller.rows == rows(2)


def test_superseded_request_never_commits():
    async def scenario():
        executor = FakeExecutor(honor_cancel=False)
        controller = PanelRefreshController(table(), executor)
        first = controller.refresh(OPTIONS)
        second = controller.refresh(OTHER)
        assert executor.calls[0].cancelled
        executor.calls[1].resolve([{"region": "us"}])
        executor.calls[0].resolve([{"region": "eu"}])
        await asyncio.gather(first, second)
        return controller

    controller = asyncio.run(scenario())
    assert controller.rows == [{"region": "us"}]
    assert controller.state.last_params == OTHER


def test_cancelled_request_is_not_an_error():
    async def scenario():
        executor = FakeExecutor(honor_cancel=True)
        controller = PanelRefreshController(table(), executor)
        first = controller.refresh(OPTIONS)
        second = controller.refresh(OTHER)
        await first
        assert controller.status is PanelStatus.LOADING
        executor.calls[1].resolve(rows(3))
        await second
        return controller

    controller = asyncio.run(scenario())
    assert controller.error is None
    assert controller.rows == rows(3)


def test_returning_to_earlier_options_while_in_flight_runs_again():
    async def scenario():
        executor = FakeExecutor()
        controller = PanelRefreshController(table(), executor)
        controller.refresh(OPTIONS)
        controller.refresh(OTHER)
        task = controller.refresh(OPTIONS)
        executor.calls[2].resolve(rows(1))
        await task
        return executor

    executor = asyncio.run(scenario())
    assert len(executor.calls) == 3


def test_hidden_panel_defers_until_visible():
    async def scenario():
        executor = FakeExecutor()
        visible = {"on": False}
        controller = PanelRefreshController(table(), executor, visibility=lambda: visible["on"])

        assert controller.refresh(OPTIONS) is None
        assert controller.refresh(OTHER) is None
        assert executor.calls == []
        assert controller.state.needs_deferred_refresh
        assert controller.is_loading is False

        visible["on"] = True
        task = controller.notify_visibility_changed()
        executor.calls[0].resolve(rows(1))
        await task
        assert controller.notify_visibility_changed() is None
        return executor, controller

    executor, controller = asyncio.run(scenario())
    assert len(executor.calls) == 1
    assert "region = 'us'" in executor.calls[0].sql
    assert controller.state.needs_deferred_refresh is False


def test_collapsed_panel_defers_until_expanded():
    async def scenario():
        executor = FakeExecutor()
        controller = PanelRefreshController(table(collapsed=True), executor)
        assert controller.refresh(OPTIONS) is None
        assert controller.set_collapsed(True) is None
        task = controller.set_collapsed(False)
        executor.calls[0].resolve(rows(1))
        await task
        return executor

    executor = asyncio.run(scenario())
    assert len(executor.calls) == 1


def test_deferred_refresh_skipped_when_already_current():
    async def scenario():
        executor = FakeExecutor()
        controller = PanelRefreshController(table(), executor)
        task = controller.refresh(OPTIONS)
        executor.calls[0].resolve(rows(1))
        await task
        controller.set_visible(False)
        controller.refresh(OTHER)
        controller.refresh(OPTIONS)
        assert controller.set_visible(True) is None
        return executor

    executor = asyncio.run(scenario())
    assert len(executor.calls) == 1


def test_pages_accumulate_until_a_short_page():
    async def scenario():
        executor = FakeExecutor()
        controller = PanelRefreshController(paged_table(page_size=50), executor)
        task = controller.refresh(OPTIONS)
        executor.calls[0].resolve(rows(50))
        await task
        assert controller.has_more_pages

        page = controller.request_next_page()
        assert controller.request_next_page() is None
        assert executor.calls[1].sql.endswith("LIMIT 50 OFFSET 50")
        executor.calls[1].resolve(rows(12, start=50))
        await page
        await settle()
        return executor, controller

    executor, controller = asyncio.run(scenario())
    assert len(controller.rows) == 62
    assert controller.rows[-1] == {"id": 61}
    assert controller.state.current_page == 1
    assert controller.has_more_pages is False
    assert controller.request_next_page() is None
    assert len(executor.calls) == 2
    # pages do not count as a new first-page request
    assert controller.state.last_params == OPTIONS


def test_new_filters_reset_pagination():
    async def scenario():
        executor = FakeExecutor()
        controller = PanelRefreshController(paged_table(page_size=2), executor)
        task = controller.refresh(OPTIONS)
        executor.calls[0].resolve(rows(2))
        await task
        page = controller.request_next_page()
        executor.calls[1].resolve(rows(2, start=2))
        await page
        await settle()
        assert len(controller.rows) == 4

        task = controller.refresh(OTHER)
        assert executor.calls[2].sql.endswith("LIMIT 2 OFFSET 0")
        executor.calls[2].resolve(rows(1))
        await task
        return controller

    controller = asyncio.run(scenario())
    assert controller.rows == rows(1)
    assert controller.state.current_page == 0
    assert controller.has_more_pages is False


def test_failed_page_releases_the_guard():
    async def scenario():
        executor = FakeExecutor()
        controller = PanelRefreshController(paged_table(page_size=2), executor)
        task = controller.refresh(OPTIONS)
        executor.calls[0].resolve(rows(2))
        await task
        page = controller.request_next_page()
        executor.calls[1].fail(QueryExecutionError("timeout"))
        await page
        await settle()
        return controller

    controller = asyncio.run(scenario())
    assert controller.state.is_requesting_next_page is False
    assert controller.rows == rows(2)
    assert controller.status is PanelStatus.ERROR


def test_failed_first_page_stops_paging_old_rows():
    async def scenario():
        executor = FakeExecutor()
        controller = PanelRefreshController(paged_table(page_size=2), executor)
        task = controller.refresh(OPTIONS)
        executor.calls[0].resolve([{"r": "eu1"}, {"r": "eu2"}])
        await task

        task = controller.refresh(OTHER)
        executor.calls[1].fail(QueryExecutionError("timeout"))
        await task
        return executor, controller

    executor, controller = asyncio.run(scenario())
    assert controller.rows == [{"r": "eu1"}, {"r": "eu2"}]
    assert controller.has_more_pages is False
    assert controller.request_next_page() is None
    assert len(executor.calls) == 2


def test_retry_after_failed_first_page_pages_again():
    async def scenario():
        executor = FakeExecutor()
        controller = PanelRefreshController(paged_table(page_size=2), executor)
        task = controller.refresh(OTHER)
        executor.calls[0].fail(QueryExecutionError("timeout"))
        await task

        retry = controller.refresh(RefreshOptions(time_window=SPAN, filter_expression="region = 'us'", force_refresh=True))
        executor.calls[1].resolve(rows(2))
        await retry
        return controller

    controller = asyncio.run(scenario())
    assert controller.has_more_pages is True


def test_unknown_timezone_is_an_error_state():
    async def scenario():
        executor = FakeExecutor()
        controller = PanelRefreshController(table(), executor, timezone="Mars/Olympus")
        assert controller.refresh(OPTIONS) is None
        return executor, controller

    executor, controller = asyncio.run(scenario())
    assert executor.calls == []
    assert controller.status is PanelStatus.ERROR
    assert "Mars/Olympus" in controller.error


def test_unpaginated_panel_has_no_next_page():
    async def scenario():
        executor = FakeExecutor()
        controller = PanelRefreshController(table(), executor)
        task = controller.refresh(OPTIONS)
        executor.calls[0].resolve(rows(100))
        await task
        return controller

    controller = asyncio.run(scenario())
    assert controller.has_more_pages is False
    assert controller.request_next_page() is None


def test_error_keeps_previous_rows():
    async def scenario():
        executor = FakeExecutor()
        controller = PanelRefreshController(table(), executor)
        task = controller.refresh(OPTIONS)
        executor.calls[0].resolve(rows(3))
        await task

        task = controller.refresh(OTHER)
        executor.calls[1].fail(QueryExecutionError("Code: 60. Table does not exist"))
        await task
        assert controller.refresh(OTHER) is None

        retry = controller.refresh(RefreshOptions(time_window=SPAN, filter_expression="region = 'us'", force_refresh=True))
        executor.calls[2].resolve(rows(1))
        await retry
        return executor, controller

    executor, controller = asyncio.run(scenario())
    assert len(executor.calls) == 3
    assert controller.rows == rows(1)
    assert controller.error is None
    assert controller.status is PanelStatus.IDLE


def test_error_state_before_retry():
    async def scenario():
        executor = FakeExecutor()
        controller = PanelRefreshController(table(), executor)
        task = controller.refresh(OPTIONS)
        executor.calls[0].resolve(rows(3))
        await task
        task = controller.refresh(OTHER)
        executor.calls[1].fail(QueryExecutionError("boom"))
        await task
        return controller

    controller = asyncio.run(scenario())
    assert controller.rows == rows(3)
    assert controller.error == "boom"
    assert controller.status is PanelStatus.ERROR
    assert controller.is_loading is False


def test_executor_raising_synchronously():
    async def scenario():
        controller = PanelRefreshController(table(), FakeExecutor(fail_with=QueryExecutionError("down")))
        assert controller.refresh(OPTIONS) is None
        return controller

    controller = asyncio.run(scenario())
    assert controller.status is PanelStatus.ERROR
    assert controller.error == "down"


def test_closed_controller_ignores_results():
    async def scenario():
        executor = FakeExecutor(honor_cancel=False)
        controller = PanelRefreshController(table(), executor)
        task = controller.refresh(OPTIONS)
        controller.close()
        executor.calls[0].resolve(rows(5))
        await task
        assert controller.refresh(OTHER) is None
        return executor, controller

    executor, controller = asyncio.run(scenario())
    assert executor.calls[0].cancelled
    assert controller.rows == []
    assert len(executor.calls) == 1


def test_listeners_see_loading_and_result():
    async def scenario():
        executor = FakeExecutor()
        controller = PanelRefreshController(table(), executor)
        statuses = []
        controller.subscribe(lambda c: statuses.append(c.status))
        task = controller.refresh(OPTIONS)
        executor.calls[0].resolve(rows(1))
        await task
        return statuses

    assert asyncio.run(scenario()) == [PanelStatus.LOADING, PanelStatus.IDLE]


def test_sort_change_reloads_first_page():
    async def scenario():
        executor = FakeExecutor()
        panel = paged_table(page_size=10, sort_option=SortOption(column="ts", direction="asc", server_side=True))
        controller = PanelRefreshController(panel, executor)
        task = controller.refresh(OPTIONS)
        assert "ORDER BY ts ASC LIMIT 10 OFFSET 0" in executor.calls[0].sql
        executor.calls[0].resolve(rows(10))
        await task

        task = controller.set_sort("latency", "desc")
        executor.calls[1].resolve(rows(10, start=100))
        await task
        return executor, controller

    executor, controller = asyncio.run(scenario())
    assert executor.calls[1].sql.endswith("ORDER BY latency DESC LIMIT 10 OFFSET 0")
    assert controller.rows[0] == {"id": 100}


def test_stat_panel_loads_comparison_window():
    async def scenario():
        executor = FakeExecutor()
        panel = StatPanel(
            id="s",
            query=QuerySpec(sql="SELECT count(*) AS n FROM events WHERE {timeFilter}"),
            comparison_offset="-1d",
        )
        controller = PanelRefreshController(panel, executor)
        task = controller.refresh(RefreshOptions(time_window=SPAN))
        executor.calls[0].resolve([{"n": 5}])
        await task
        executor.calls[1].resolve([{"n": 3}])
        await controller.comparison_task
        return executor, controller

    executor, controller = asyncio.run(scenario())
    assert executor.calls[1].sql == (
        "SELECT count(*) AS n FROM events "
        "WHERE event_time >= '2023-12-31 00:00:00' AND event_time < '2023-12-31 01:00:00'"
    )
    assert controller.rows == [{"n": 5}]
    assert controller.comparison_rows == [{"n": 3}]


def test_stat_comparison_cancelled_by_next_refresh():
    async def scenario():
        executor = FakeExecutor(honor_cancel=False)
        panel = StatPanel(id="s", query=QuerySpec(sql="SELECT 1 WHERE {timeFilter}"), comparison_offset="-1h")
        controller = PanelRefreshController(panel, executor)
        task = controller.refresh(RefreshOptions(time_window=SPAN))
        executor.calls[0].resolve([{"n": 1}])
        await task
        stale = controller.comparison_task

        task = controller.refresh(RefreshOptions(time_window=LATER_SPAN))
        assert executor.calls[1].cancelled
        executor.calls[1].resolve([{"n": 99}])
        await stale
        return controller

    controller = asyncio.run(scenario())
    assert controller.comparison_rows == []


def test_stat_panel_without_usable_window_skips_comparison():
    async def scenario():
        executor = FakeExecutor()
        panel = StatPanel(id="s", query=QuerySpec(sql="SELECT 1 WHERE {timeFilter}"), comparison_offset="-1h")
        controller = PanelRefreshController(panel, executor)
        task = controller.refresh(RefreshOptions(time_window=TimeSpan("", "")))
        executor.calls[0].resolve([{"n": 1}])
        await task
        await settle()
        return executor, controller, task

    executor, controller, task = asyncio.run(scenario())
    assert task.exception() is None
    assert executor.sqls == ["SELECT 1 WHERE {timeFilter}"]
    assert controller.comparison_task is None
    assert controller.rows == [{"n": 1}]


def test_pending_tasks_include_page_fetches():
    async def scenario():
        executor = FakeExecutor()
        controller = PanelRefreshController(paged_table(page_size=2), executor)
        task = controller.refresh(OPTIONS)
        assert controller.pending_tasks() == [task]
        executor.calls[0].resolve(rows(2))
        await task
        assert controller.pending_tasks() == []

        page = controller.request_next_page()
        assert controller.pending_tasks() == [page]
        executor.calls[1].resolve(rows(1, start=2))
        await page
        return controller

    controller = asyncio.run(scenario())
    assert controller.pending_tasks() == []
