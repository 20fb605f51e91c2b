"""A live dashboard: one filter orchestrator, one refresh controller per panel."""

from __future__ import annotations

import asyncio
import logging
from typing import Callable, Dict, List, Optional

from vantage.dashboard.filters import FilterOrchestrator
from vantage.dashboard.model import DashboardSpec, SelectFilterSpec
from vantage.dashboard.refresh import PanelRefreshController, RefreshOptions
from vantage.errors import ConfigurationError
from vantage.query.builder import DEFAULT_TIMEZONE
from vantage.query.pattern import FilterPattern
from vantage.query.timespan import DEFAULT_TIME_SPAN_LABEL, TimeSpan, display_time_span_by_label
from vantage.services.executor import Executor

logger = logging.getLogger("vantage")

VisibilityFactory = Callable[[str], Callable[[], bool]]


class Dashboard:
    """Wire filter changes to panel refreshes for one dashboard instance.

    Panels learn about new filters and time windows only through the
    orchestrator's notifications; nothing is looked up globally.
    """

    def __init__(
        self,
        spec: DashboardSpec,
        executor: Executor,
        timezone: str = DEFAULT_TIMEZONE,
        time_span: Optional[TimeSpan] = None,
        visibility_factory: Optional[VisibilityFactory] = None,
    ):
        self.spec = spec
        self.executor = executor
        self.timezone = timezone

        if time_span is None:
            time_filter = spec.time_filter
            label = time_filter.default_time_span if time_filter else DEFAULT_TIME_SPAN_LABEL
            time_span = display_time_span_by_label(label).time_span()

        self.filters = FilterOrchestrator(spec.filters, time_span=time_span, timezone=timezone)
        self.panels: Dict[str, PanelRefreshController] = {}
        for panel in spec.panels:
            self.panels[panel.id] = PanelRefreshController(
                panel,
                executor,
                timezone=timezone,
                time_column=self.filters.time_column,
                visibility=visibility_factory(panel.id) if visibility_factory else None,
            )

        self._unsubscribe = [
            self.filters.subscribe(self._on_expression_changed),
            self.filters.subscribe_time_span(self._on_time_span_changed),
        ]

    @property
    def time_span(self) -> Optional[TimeSpan]:
        return self.filters.time_span

    def panel(self, panel_id: str) -> PanelRefreshController:
        try:
            return self.panels[panel_id]
        except KeyError:
            raise ConfigurationError(f"Dashboard {self.spec.name!r} has no panel {panel_id!r}") from None

    def current_options(self, force_refresh: bool = False) -> RefreshOptions:
        return RefreshOptions(
            time_window=self.filters.time_span,
            filter_expression=self.filters.compose_expression() or None,
            force_refresh=force_refresh,
        )

    # ---------- Inputs ----------

    def select(self, name: str, pattern: Optional[FilterPattern]) -> None:
        index = self.filters.index_of(name)
        spec = self.spec.filters[index]
        if not isinstance(spec, SelectFilterSpec):
            raise ConfigurationError(f"Filter {name!r} is not a select filter")
        self.filters.on_selection_changed(index, spec, pattern)

    def set_time_span(self, time_span: TimeSpan) -> None:
        self.filters.set_time_span(time_span)

    def refresh_all(self, force_refresh: bool = False) -> List[asyncio.Task]:
        """Refresh every panel with the current filters and time window."""
        options = self.current_options(force_refresh)
        tasks = [controller.refresh(options) for controller in self.panels.values()]
        return [t for t in tasks if t is not None]

    async def wait(self) -> None:
        """Wait for every panel request in flight to settle.

        Includes requests started on a panel directly, such as next-page
        fetches.
        """
        while True:
            # a finished stat query may have started its comparison query
            pending = [t for c in self.panels.values() for t in c.pending_tasks()]
            if not pending:
                return
            await asyncio.gather(*pending, return_exceptions=True)

    def _on_expression_changed(self, expression: str) -> None:
        logger.debug("Dashboard %s: filter expression now %r", self.spec.name, expression)
        self.refresh_all()

    def _on_time_span_changed(self, time_span: TimeSpan) -> None:
        logger.debug("Dashboard %s: time span now %s", self.spec.name, time_span)
        self.refresh_all()

    # ---------- Teardown ----------

    def close(self) -> None:
        for unsubscribe in self._unsubscribe:
            unsubscribe()
        self._unsubscribe = []
        for controller in self.panels.values():
            controller.close()


__all__ = ["Dashboard"]
