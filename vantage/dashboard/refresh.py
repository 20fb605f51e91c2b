"""Per-panel refresh orchestration.

A :class:`PanelRefreshController` decides, for each ``refresh(options)``
call, whether to run the panel's query now, defer it until the panel is
visible and expanded, or skip it as a duplicate. It owns cancellation of
superseded requests and the accumulation of server-side pages.

Everything runs on one event loop. ``refresh()`` itself never suspends: by
the time it returns, the previous in-flight request (if any) is cancelled
and can no longer commit. The "is this still the current token" check in
the completion handler is what guarantees that, whatever the executor does
with the cancellation.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Set

from vantage.dashboard.model import PanelSpec, StatPanel, TablePanel
from vantage.errors import AbortedError
from vantage.query.builder import DEFAULT_TIME_COLUMN, DEFAULT_TIMEZONE, render_query
from vantage.query.sql_utils import apply_limit_offset, replace_order_by_clause
from vantage.query.timespan import TimeSpan
from vantage.services.executor import ColumnMeta, Execution, Executor, QueryResult

logger = logging.getLogger("vantage")


class PanelStatus(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    ERROR = "error"


@dataclass(frozen=True)
class RefreshOptions:
    """Parameters of one refresh; compared by value to detect no-op refreshes.

    ``force_refresh`` does not take part in the comparison.
    """

    time_window: Optional[TimeSpan] = None
    filter_expression: Optional[str] = None
    force_refresh: bool = field(default=False, compare=False)
    page_number: int = 0

    def for_page(self, page_number: int) -> "RefreshOptions":
        return replace(self, page_number=page_number, force_refresh=False)


class CancelToken:
    """Marks one in-flight execution as superseded."""

    def __init__(self, execution: Optional[Execution] = None):
        self.execution = execution
        self.cancelled = False

    def cancel(self) -> None:
        if self.cancelled:
            return
        self.cancelled = True
        if self.execution is not None:
            # best effort; the controller discards the result either way
            self.execution.cancel()


@dataclass
class PanelQueryState:
    last_params: Optional[RefreshOptions] = None
    pending_params: Optional[RefreshOptions] = None
    in_flight_token: Optional[CancelToken] = None
    in_flight_params: Optional[RefreshOptions] = None
    is_collapsed: bool = False
    needs_deferred_refresh: bool = False
    current_page: int = 0
    previous_row_count: int = 0
    is_requesting_next_page: bool = False
    has_more_pages: bool = True
    sort_column: Optional[str] = None
    sort_direction: Optional[str] = None


def prepare_panel_query(
    panel: PanelSpec,
    options: RefreshOptions,
    timezone: str = DEFAULT_TIMEZONE,
    time_column: str = DEFAULT_TIME_COLUMN,
    sort_column: Optional[str] = None,
    sort_direction: Optional[str] = None,
) -> str:
    """Final query text for ``panel`` under ``options``."""
    sql = render_query(
        panel.query.sql,
        span=options.time_window,
        filter_expression=options.filter_expression,
        variables=panel.query.variables,
        timezone=timezone,
        time_column=time_column,
    )
    if isinstance(panel, TablePanel):
        if panel.server_sorting and sort_column and sort_direction:
            sql = replace_order_by_clause(sql, sort_column, sort_direction)
        if panel.server_pagination:
            page_size = panel.pagination.page_size
            sql = apply_limit_offset(sql, page_size, options.page_number * page_size)
    return sql


PanelListener = Callable[["PanelRefreshController"], None]


class PanelRefreshController:
    """Refresh state machine for a single panel.

    States: idle -> loading -> (idle | error). ``collapsed`` and
    ``needs_deferred_refresh`` are orthogonal flags.
    """

    def __init__(
        self,
        panel: PanelSpec,
        executor: Executor,
        timezone: str = DEFAULT_TIMEZONE,
        time_column: str = DEFAULT_TIME_COLUMN,
        visibility: Optional[Callable[[], bool]] = None,
    ):
        self.panel = panel
        self.executor = executor
        self.timezone = timezone
        self.time_column = time_column

        self.state = PanelQueryState(is_collapsed=panel.collapsed)
        if isinstance(panel, TablePanel) and panel.sort_option is not None:
            self.state.sort_column = panel.sort_option.column
            self.state.sort_direction = panel.sort_option.direction

        self._visible = True
        self._visibility = visibility or (lambda: self._visible)

        self.status = PanelStatus.IDLE
        self.is_loading = False
        self.rows: List[Dict[str, Any]] = []
        self.meta: List[ColumnMeta] = []
        self.error: Optional[str] = None
        self.executed_sql: Optional[str] = None

        # stat panels: same query over a shifted window
        self.comparison_rows: List[Dict[str, Any]] = []
        self.comparison_error: Optional[str] = None
        self.comparison_task: Optional[asyncio.Task] = None
        self._comparison_token: Optional[CancelToken] = None

        self._page_task: Optional[asyncio.Task] = None
        self._tasks: Set[asyncio.Task] = set()
        self._listeners: List[PanelListener] = []
        self._closed = False

    # ---------- Introspection ----------

    @property
    def page_size(self) -> Optional[int]:
        if isinstance(self.panel, TablePanel) and self.panel.server_pagination:
            return self.panel.pagination.page_size
        return None

    @property
    def has_more_pages(self) -> bool:
        return self.page_size is not None and self.state.has_more_pages

    def is_active(self) -> bool:
        """Expanded and on screen."""
        return not self.state.is_collapsed and bool(self._visibility())

    def snapshot(self) -> Dict[str, Any]:
        return {
            "id": self.panel.id,
            "status": self.status.value,
            "rows": list(self.rows),
            "meta": [{"name": m.name, "type": m.type} for m in self.meta],
            "error": self.error,
            "sql": self.executed_sql,
            "hasMorePages": self.has_more_pages,
            "collapsed": self.state.is_collapsed,
        }

    def pending_tasks(self) -> List[asyncio.Task]:
        """Unfinished requests, including page fetches and the stat comparison."""
        return [t for t in self._tasks if not t.done()]

    def subscribe(self, listener: PanelListener) -> Callable[[], None]:
        """Call ``listener(controller)`` after every observable state change."""
        self._listeners.append(listener)
        return lambda: self._listeners.remove(listener)

    def _notify(self) -> None:
        for listener in list(self._listeners):
            listener(self)

    # ---------- Refresh ----------

    def _is_duplicate(self, options: RefreshOptions) -> bool:
        if options == self.state.last_params:
            return True
        token = self.state.in_flight_token
        return token is not None and not token.cancelled and options == self.state.in_flight_params

    def refresh(self, options: RefreshOptions) -> Optional[asyncio.Task]:
        """Run, defer or skip a refresh.

        Returns the task completing the request when one was issued.
        """
        if self._closed:
            return None
        if not options.force_refresh and self._is_duplicate(options):
            # what is shown (or loading) already matches; an older deferral is void
            self.state.pending_params = options
            self.state.needs_deferred_refresh = False
            logger.debug("Panel %s: skipping refresh with unchanged parameters", self.panel.id)
            return None

        self.state.pending_params = options
        if not self.is_active():
            self.state.needs_deferred_refresh = True
            # a hidden panel must not look stuck loading
            self.is_loading = False
            logger.debug("Panel %s: hidden or collapsed, deferring refresh", self.panel.id)
            return None

        self.state.needs_deferred_refresh = False
        return self._execute(options)

    def _flush_deferred(self) -> Optional[asyncio.Task]:
        state = self.state
        if self._closed or not state.needs_deferred_refresh or not self.is_active():
            return None
        state.needs_deferred_refresh = False

        pending = state.pending_params
        if pending is None:
            return None
        if not pending.force_refresh and self._is_duplicate(pending):
            logger.debug("Panel %s: deferred refresh no longer needed", self.panel.id)
            return None
        return self._execute(pending)

    def set_collapsed(self, collapsed: bool) -> Optional[asyncio.Task]:
        self.state.is_collapsed = collapsed
        if collapsed:
            return None
        return self._flush_deferred()

    def set_visible(self, visible: bool) -> Optional[asyncio.Task]:
        """Update the built-in visibility flag (ignored with a custom source)."""
        self._visible = visible
        return self.notify_visibility_changed()

    def notify_visibility_changed(self) -> Optional[asyncio.Task]:
        """Called by the visibility source when the panel may have appeared."""
        return self._flush_deferred()

    def set_sort(self, column: Optional[str], direction: Optional[str]) -> Optional[asyncio.Task]:
        """Change the server-side sort and reload from the first page."""
        self.state.sort_column = column
        self.state.sort_direction = direction
        base = self.state.pending_params or self.state.last_params or RefreshOptions()
        return self.refresh(replace(base, page_number=0, force_refresh=True))

    # ---------- Pagination ----------

    def reset_pagination(self) -> None:
        self.state.current_page = 0
        self.state.previous_row_count = 0
        self.state.is_requesting_next_page = False
        self.state.has_more_pages = True
        self._page_task = None

    def request_next_page(self) -> Optional[asyncio.Task]:
        """Fetch and append the next server-side page, one request at a time."""
        state = self.state
        if self._closed or self.page_size is None or state.last_params is None:
            return None
        if state.is_requesting_next_page or not state.has_more_pages or self.is_loading:
            return None

        state.is_requesting_next_page = True
        state.previous_row_count = len(self.rows)
        task = self._execute(state.last_params.for_page(state.current_page + 1))
        if task is None:
            state.is_requesting_next_page = False
            return None

        self._page_task = task
        task.add_done_callback(self._release_page_guard)
        return task

    def _release_page_guard(self, task: asyncio.Task) -> None:
        if self._page_task is task:
            self.state.is_requesting_next_page = False
            self._page_task = None

    # ---------- Execution ----------

    def _cancel_in_flight(self) -> None:
        if self.state.in_flight_token is not None:
            self.state.in_flight_token.cancel()
            self.state.in_flight_token = None
            self.state.in_flight_params = None
        if self._comparison_token is not None:
            self._comparison_token.cancel()
            self._comparison_token = None

    def _execute(self, options: RefreshOptions) -> Optional[asyncio.Task]:
        self._cancel_in_flight()
        if options.page_number == 0:
            self.reset_pagination()

        try:
            sql = prepare_panel_query(
                self.panel,
                options,
                self.timezone,
                self.time_column,
                self.state.sort_column,
                self.state.sort_direction,
            )
            self.executed_sql = sql
            execution = self.executor.execute(sql, self.panel.query.params, self.panel.query.headers)
        except Exception as e:
            self._fail(options, e)
            return None

        token = CancelToken(execution)
        self.state.in_flight_token = token
        self.state.in_flight_params = options
        self.status = PanelStatus.LOADING
        self.is_loading = True
        self._notify()
        return self._track(asyncio.ensure_future(self._complete(token, options, execution)))

    def _track(self, task: asyncio.Task) -> asyncio.Task:
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def _is_current(self, token: CancelToken) -> bool:
        return not self._closed and not token.cancelled and token is self.state.in_flight_token

    async def _complete(self, token: CancelToken, options: RefreshOptions, execution: Execution) -> None:
        try:
            result = await execution.result
        except AbortedError:
            logger.debug("Panel %s: request cancelled", self.panel.id)
            return
        except Exception as e:
            if self._is_current(token):
                self._fail(options, e)
            return

        if not self._is_current(token):
            logger.debug("Panel %s: discarding result of superseded request", self.panel.id)
            return
        self._commit(options, result)

    def _commit(self, options: RefreshOptions, result: QueryResult) -> None:
        state = self.state
        state.in_flight_token = None
        state.in_flight_params = None

        if options.page_number == 0:
            self.rows = list(result.rows)
            self.meta = list(result.meta)
            state.last_params = options
        else:
            self.rows.extend(result.rows)
            if not self.meta:
                self.meta = list(result.meta)
            state.current_page = options.page_number

        if self.page_size is not None:
            # inferred: a short page means there is nothing after it
            state.has_more_pages = len(self.rows) - state.previous_row_count >= self.page_size

        self.error = None
        self.status = PanelStatus.IDLE
        self.is_loading = False
        self._notify()

        if options.page_number == 0 and isinstance(self.panel, StatPanel):
            self._load_comparison(options)

    def _fail(self, options: RefreshOptions, error: Exception) -> None:
        state = self.state
        state.in_flight_token = None
        state.in_flight_params = None
        if options.page_number == 0:
            # lets an unchanged retry be deduplicated, or forced
            state.last_params = options
            # the rows on screen belong to older parameters; no page follows them
            state.has_more_pages = False

        # previously displayed rows stay
        self.error = str(error) or error.__class__.__name__
        self.status = PanelStatus.ERROR
        self.is_loading = False
        logger.warning("Panel %s: query failed: %s", self.panel.id, self.error)
        self._notify()

    # ---------- Stat comparison ----------

    def _load_comparison(self, options: RefreshOptions) -> None:
        offset = self.panel.comparison_seconds()
        if not offset or options.time_window is None or not options.time_window.is_valid():
            return

        shifted = RefreshOptions(
            time_window=options.time_window.shift(offset),
            filter_expression=options.filter_expression,
        )
        try:
            sql = prepare_panel_query(self.panel, shifted, self.timezone, self.time_column)
            execution = self.executor.execute(sql, self.panel.query.params, self.panel.query.headers)
        except Exception as e:
            self.comparison_error = str(e)
            return

        token = CancelToken(execution)
        self._comparison_token = token
        self.comparison_task = self._track(asyncio.ensure_future(self._complete_comparison(token, execution)))

    async def _complete_comparison(self, token: CancelToken, execution: Execution) -> None:
        try:
            result = await execution.result
        except AbortedError:
            return
        except Exception as e:
            if token is self._comparison_token and not token.cancelled:
                self._comparison_token = None
                self.comparison_error = str(e)
                logger.warning("Panel %s: comparison query failed: %s", self.panel.id, e)
                self._notify()
            return

        if self._closed or token.cancelled or token is not self._comparison_token:
            return
        self._comparison_token = None
        self.comparison_rows = list(result.rows)
        self.comparison_error = None
        self._notify()

    # ---------- Teardown ----------

    def close(self) -> None:
        """Cancel outstanding work; nothing commits after this."""
        self._closed = True
        self._cancel_in_flight()
        self._listeners.clear()


__all__ = [
    "CancelToken",
    "PanelQueryState",
    "PanelRefreshController",
    "PanelStatus",
    "RefreshOptions",
    "prepare_panel_query",
]
