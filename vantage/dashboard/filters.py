"""Coordination of a dashboard's chained filter selectors."""

from __future__ import annotations

import logging
from typing import Awaitable, Callable, Dict, List, Optional, Sequence, Tuple

from vantage.dashboard.model import DateTimeFilterSpec, FilterSpec, InlineSource, SelectFilterSpec
from vantage.errors import ConfigurationError
from vantage.query.builder import DEFAULT_TIME_COLUMN, DEFAULT_TIMEZONE, render_query
from vantage.query.pattern import FilterPattern
from vantage.query.timespan import TimeSpan

logger = logging.getLogger("vantage")

ExpressionListener = Callable[[str], None]
TimeSpanListener = Callable[[TimeSpan], None]
ValueLoader = Callable[[str], Awaitable[List[str]]]


class FilterOrchestrator:
    """Own the selected pattern of every select filter and combine them.

    Selector ``i`` may list its values with a query that embeds the
    selections of selectors ``0..i-1``. A change at ``i`` therefore marks
    every later selector (that depends on previous filters) for reload; its
    cached values stay valid until then.
    """

    def __init__(
        self,
        filter_specs: Sequence[FilterSpec],
        time_span: Optional[TimeSpan] = None,
        timezone: str = DEFAULT_TIMEZONE,
    ):
        self.filter_specs: Tuple[FilterSpec, ...] = tuple(filter_specs)
        self.time_span = time_span
        self.timezone = timezone

        self._patterns: Dict[str, FilterPattern] = {}
        self._reload_required: Dict[int, bool] = {}
        self._cached_values: Dict[int, List[str]] = {}
        self._listeners: List[ExpressionListener] = []
        self._time_span_listeners: List[TimeSpanListener] = []

        for spec in self.filter_specs:
            if isinstance(spec, SelectFilterSpec) and spec.default_pattern is not None:
                self._patterns[spec.name] = spec.default_pattern

    # ---------- Lookups ----------

    @property
    def time_filter_spec(self) -> Optional[DateTimeFilterSpec]:
        for spec in self.filter_specs:
            if isinstance(spec, DateTimeFilterSpec):
                return spec
        return None

    @property
    def time_column(self) -> str:
        spec = self.time_filter_spec
        return spec.time_column if spec is not None else DEFAULT_TIME_COLUMN

    def _select_spec(self, index: int) -> SelectFilterSpec:
        try:
            spec = self.filter_specs[index]
        except IndexError:
            raise ConfigurationError(f"No filter at index {index}") from None
        if not isinstance(spec, SelectFilterSpec):
            raise ConfigurationError(f"Filter {spec.name!r} at index {index} is not a select filter")
        return spec

    def index_of(self, name: str) -> int:
        for i, spec in enumerate(self.filter_specs):
            if spec.name == name:
                return i
        raise ConfigurationError(f"Unknown filter: {name!r}")

    def pattern(self, name: str) -> Optional[FilterPattern]:
        return self._patterns.get(name)

    @property
    def patterns(self) -> Dict[str, FilterPattern]:
        return dict(self._patterns)

    # ---------- Notifications ----------

    def subscribe(self, listener: ExpressionListener) -> Callable[[], None]:
        """Call ``listener(expression)`` whenever a selection changes."""
        self._listeners.append(listener)
        return lambda: self._listeners.remove(listener)

    def subscribe_time_span(self, listener: TimeSpanListener) -> Callable[[], None]:
        self._time_span_listeners.append(listener)
        return lambda: self._time_span_listeners.remove(listener)

    def _notify(self) -> None:
        expression = self.compose_expression()
        for listener in list(self._listeners):
            listener(expression)

    # ---------- Selection ----------

    def on_selection_changed(
        self,
        index: int,
        spec: SelectFilterSpec,
        pattern: Optional[FilterPattern],
    ) -> None:
        """Store (or with ``None`` remove) the pattern selected for ``spec``."""
        if pattern is None:
            self._patterns.pop(spec.name, None)
        else:
            self._patterns[spec.name] = pattern

        for i in range(index + 1, len(self.filter_specs)):
            downstream = self.filter_specs[i]
            if isinstance(downstream, SelectFilterSpec) and downstream.on_previous_filters:
                self._reload_required[i] = True

        logger.debug("Filter %r changed to %s", spec.name, pattern)
        self._notify()

    def set_pattern(self, name: str, pattern: Optional[FilterPattern]) -> None:
        index = self.index_of(name)
        self.on_selection_changed(index, self._select_spec(index), pattern)

    def set_time_span(self, time_span: TimeSpan) -> None:
        """Replace the time window; every selector's values must be reloaded."""
        self.time_span = time_span
        self._reload_required.clear()
        self._cached_values.clear()
        for listener in list(self._time_span_listeners):
            listener(time_span)

    # ---------- Expressions ----------

    def _expression_for(self, spec: SelectFilterSpec) -> Optional[str]:
        pattern = self._patterns.get(spec.name)
        if pattern is None or not pattern.values:
            return None
        return spec.to_expression(pattern)

    def compose_expression(self) -> str:
        """``AND`` of all selections, in declaration order (stable for dedup)."""
        parts = []
        for spec in self.filter_specs:
            if isinstance(spec, SelectFilterSpec):
                expression = self._expression_for(spec)
                if expression:
                    parts.append(expression)
        return " AND ".join(parts)

    def selected_filter(self) -> Tuple[str, Dict[str, FilterPattern]]:
        return self.compose_expression(), self.patterns

    def upstream_expression(self, index: int) -> Optional[str]:
        """Parenthesised ``AND`` of the selections before ``index``, or None."""
        parts = []
        for spec in self.filter_specs[:index]:
            if isinstance(spec, SelectFilterSpec):
                expression = self._expression_for(spec)
                if expression:
                    parts.append(expression)
        if not parts:
            return None
        return f"({' AND '.join(parts)})"

    # ---------- Value loading ----------

    def needs_reload(self, index: int) -> bool:
        return self._reload_required.get(index, True)

    def source_query(self, index: int) -> Optional[str]:
        """The query listing selector ``index``'s values; None for inline lists."""
        spec = self._select_spec(index)
        if isinstance(spec.datasource, InlineSource):
            return None

        prefix = self.upstream_expression(index) if spec.on_previous_filters else None
        return render_query(
            spec.datasource.sql,
            span=self.time_span,
            filter_expression=prefix,
            timezone=self.timezone,
            time_column=self.time_column,
        )

    async def load_values_for(self, index: int, loader: Optional[ValueLoader] = None) -> List[str]:
        """Values for selector ``index``, served from cache until invalidated."""
        spec = self._select_spec(index)
        if isinstance(spec.datasource, InlineSource):
            return list(spec.datasource.values)

        if not self.needs_reload(index) and index in self._cached_values:
            return list(self._cached_values[index])
        if loader is None:
            return []

        sql = self.source_query(index)
        logger.debug("Loading values for filter %r", spec.name)
        values = [str(v) for v in await loader(sql)]

        if self.source_query(index) != sql:
            # an upstream selection or the time span changed while loading
            return values
        self._cached_values[index] = values
        self._reload_required[index] = False
        return list(values)


__all__ = ["FilterOrchestrator"]
