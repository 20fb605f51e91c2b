"""Dashboard definitions: filter specs, data sources and panel kinds.

Definitions are read-only once built. Every constructor validates its input
and raises :class:`ConfigurationError` straight away, so a broken dashboard
fails when it is loaded rather than when a user first clicks on it.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, ClassVar, Dict, Mapping, Optional, Tuple, Union

from vantage.errors import ConfigurationError
from vantage.query.builder import DEFAULT_TIME_COLUMN
from vantage.query.comparators import parse_comparator
from vantage.query.pattern import FilterPattern
from vantage.query.timespan import DEFAULT_TIME_SPAN_LABEL, parse_offset_expression

logger = logging.getLogger("vantage")


# ---------- Filter data sources ----------


@dataclass(frozen=True)
class InlineSource:
    values: Tuple[str, ...] = ()

    type: ClassVar[str] = "inline"


@dataclass(frozen=True)
class SQLSource:
    sql: str

    type: ClassVar[str] = "sql"

    def __post_init__(self):
        if not self.sql or not self.sql.strip():
            raise ConfigurationError("SQL data source needs a non-empty query")


DataSource = Union[InlineSource, SQLSource]


# ---------- Filter specs ----------


@dataclass(frozen=True)
class SelectFilterSpec:
    """A value selector whose choice becomes one ``AND``-ed expression."""

    name: str
    datasource: DataSource = field(default_factory=InlineSource)
    alias: str = ""
    expression_template: Mapping[str, str] = field(default_factory=dict)
    # whether the value list is narrowed by the filters before this one
    on_previous_filters: bool = True
    name_converter: Optional[Callable[[str], str]] = None
    default_pattern: Optional[FilterPattern] = None
    supported_comparators: Tuple[str, ...] = ()

    filter_type: ClassVar[str] = "select"

    def __post_init__(self):
        if not self.name:
            raise ConfigurationError("Select filter needs a name")
        if not isinstance(self.datasource, (InlineSource, SQLSource)):
            raise ConfigurationError(f"Filter {self.name!r}: unsupported data source {self.datasource!r}")
        for comparator in list(self.expression_template) + list(self.supported_comparators):
            parse_comparator(comparator)
        if not self.alias:
            object.__setattr__(self, "alias", self.name)

    def column_name(self) -> str:
        if self.name_converter is not None:
            return self.name_converter(self.name)
        return self.name

    def to_expression(self, pattern: FilterPattern) -> str:
        template = self.expression_template.get(pattern.comparator)
        if template:
            return pattern.render_template(template, self.column_name())
        return pattern.to_expression(self.column_name())


@dataclass(frozen=True)
class DateTimeFilterSpec:
    name: str = "time"
    alias: str = ""
    time_column: str = DEFAULT_TIME_COLUMN
    default_time_span: str = DEFAULT_TIME_SPAN_LABEL

    filter_type: ClassVar[str] = "date_time"


FilterSpec = Union[SelectFilterSpec, DateTimeFilterSpec]


# ---------- Panels ----------


@dataclass(frozen=True)
class QuerySpec:
    sql: str
    params: Mapping[str, Any] = field(default_factory=dict)
    headers: Mapping[str, str] = field(default_factory=dict)
    variables: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if not self.sql or not self.sql.strip():
            raise ConfigurationError("Panel query needs non-empty SQL")


@dataclass(frozen=True)
class PaginationOption:
    mode: str = "client"
    page_size: int = 100

    def __post_init__(self):
        if self.mode not in ("client", "server"):
            raise ConfigurationError(f"Unknown pagination mode: {self.mode!r}")
        if int(self.page_size) <= 0:
            raise ConfigurationError("Page size must be positive")

    @property
    def is_server(self) -> bool:
        return self.mode == "server"


@dataclass(frozen=True)
class SortOption:
    column: Optional[str] = None
    direction: Optional[str] = None
    server_side: bool = False

    def __post_init__(self):
        if self.direction is not None and self.direction.lower() not in ("asc", "desc"):
            raise ConfigurationError(f"Sort direction must be asc or desc, not {self.direction!r}")


@dataclass(frozen=True)
class PanelSpec:
    id: str
    query: QuerySpec
    title: str = ""
    collapsed: bool = False

    type: ClassVar[str] = ""


@dataclass(frozen=True)
class TablePanel(PanelSpec):
    pagination: Optional[PaginationOption] = None
    sort_option: Optional[SortOption] = None

    type: ClassVar[str] = "table"

    @property
    def server_pagination(self) -> bool:
        return self.pagination is not None and self.pagination.is_server

    @property
    def server_sorting(self) -> bool:
        return self.sort_option is not None and self.sort_option.server_side


@dataclass(frozen=True)
class TransposeTablePanel(PanelSpec):
    type: ClassVar[str] = "transpose-table"


@dataclass(frozen=True)
class TimeseriesPanel(PanelSpec):
    chart_type: str = "line"

    type: ClassVar[str] = "timeseries"

    def __post_init__(self):
        if self.chart_type not in ("line", "bar", "area"):
            raise ConfigurationError(f"Unknown timeseries chart type: {self.chart_type!r}")


@dataclass(frozen=True)
class PiePanel(PanelSpec):
    type: ClassVar[str] = "pie"


@dataclass(frozen=True)
class StatPanel(PanelSpec):
    # e.g. "-1d": compare against the same window one day earlier
    comparison_offset: Optional[str] = None

    type: ClassVar[str] = "stat"

    def __post_init__(self):
        if self.comparison_offset:
            parse_offset_expression(self.comparison_offset)

    def comparison_seconds(self) -> int:
        if not self.comparison_offset:
            return 0
        return parse_offset_expression(self.comparison_offset)


Panel = Union[TablePanel, TransposeTablePanel, TimeseriesPanel, PiePanel, StatPanel]


# ---------- Dashboard ----------


@dataclass(frozen=True)
class DashboardSpec:
    name: str
    filters: Tuple[FilterSpec, ...] = ()
    panels: Tuple[PanelSpec, ...] = ()
    title: str = ""

    def __post_init__(self):
        if not self.name:
            raise ConfigurationError("Dashboard needs a name")
        object.__setattr__(self, "filters", tuple(self.filters))
        object.__setattr__(self, "panels", tuple(self.panels))

        seen = set()
        for spec in self.filters:
            if spec.name in seen:
                raise ConfigurationError(f"Dashboard {self.name!r}: duplicate filter {spec.name!r}")
            seen.add(spec.name)
        seen = set()
        for panel in self.panels:
            if panel.id in seen:
                raise ConfigurationError(f"Dashboard {self.name!r}: duplicate panel {panel.id!r}")
            seen.add(panel.id)

    @property
    def time_filter(self) -> Optional[DateTimeFilterSpec]:
        for spec in self.filters:
            if isinstance(spec, DateTimeFilterSpec):
                return spec
        return None

    def panel(self, panel_id: str) -> PanelSpec:
        for panel in self.panels:
            if panel.id == panel_id:
                return panel
        raise KeyError(panel_id)


# ---------- Loading from plain data ----------


def _require(data: Mapping[str, Any], key: str, what: str) -> Any:
    value = data.get(key)
    if value in (None, ""):
        raise ConfigurationError(f"{what} is missing {key!r}")
    return value


def datasource_from_dict(data: Any) -> DataSource:
    if isinstance(data, list):
        return InlineSource(tuple(str(v) for v in data))
    if not isinstance(data, Mapping):
        raise ConfigurationError(f"Malformed data source: {data!r}")

    kind = data.get("type", "inline")
    if kind == "inline":
        return InlineSource(tuple(str(v) for v in data.get("values") or []))
    if kind == "sql":
        return SQLSource(str(_require(data, "sql", "SQL data source")))
    raise ConfigurationError(f"Unknown data source type: {kind!r}")


def filter_spec_from_dict(data: Mapping[str, Any]) -> FilterSpec:
    kind = data.get("filterType", "select")
    if kind == "date_time":
        return DateTimeFilterSpec(
            name=str(data.get("name") or "time"),
            alias=str(data.get("alias") or ""),
            time_column=str(data.get("timeColumn") or DEFAULT_TIME_COLUMN),
            default_time_span=str(data.get("defaultTimeSpan") or DEFAULT_TIME_SPAN_LABEL),
        )
    if kind == "select":
        default = data.get("defaultPattern")
        return SelectFilterSpec(
            name=str(_require(data, "name", "Select filter")),
            alias=str(data.get("alias") or ""),
            datasource=datasource_from_dict(data.get("datasource") or {}),
            expression_template=dict(data.get("expressionTemplate") or {}),
            on_previous_filters=bool(data.get("onPreviousFilters", True)),
            default_pattern=FilterPattern.from_dict(default) if default else None,
            supported_comparators=tuple(data.get("supportedComparators") or ()),
        )
    raise ConfigurationError(f"Unknown filterType: {kind!r}")


def query_from_dict(data: Any) -> QuerySpec:
    if isinstance(data, str):
        return QuerySpec(sql=data)
    if not isinstance(data, Mapping):
        raise ConfigurationError(f"Malformed panel query: {data!r}")
    return QuerySpec(
        sql=str(data.get("sql") or ""),
        params=dict(data.get("params") or {}),
        headers=dict(data.get("headers") or {}),
        variables=dict(data.get("variables") or {}),
    )


def _table_from_dict(data: Mapping[str, Any], common: Dict[str, Any]) -> TablePanel:
    pagination = data.get("pagination")
    sort = data.get("sortOption") or {}
    initial = sort.get("initialSort") or {}
    return TablePanel(
        **common,
        pagination=PaginationOption(
            mode=pagination.get("mode", "client"),
            page_size=int(pagination.get("pageSize", 100)),
        )
        if pagination
        else None,
        sort_option=SortOption(
            column=initial.get("column"),
            direction=initial.get("direction"),
            server_side=bool(sort.get("serverSideSorting", False)),
        )
        if sort
        else None,
    )


def _stat_from_dict(data: Mapping[str, Any], common: Dict[str, Any]) -> StatPanel:
    comparison = data.get("comparisonOption") or {}
    return StatPanel(**common, comparison_offset=comparison.get("offset"))


def _timeseries_from_dict(data: Mapping[str, Any], common: Dict[str, Any]) -> TimeseriesPanel:
    return TimeseriesPanel(**common, chart_type=data["type"])


_PANEL_BUILDERS: Dict[str, Callable[[Mapping[str, Any], Dict[str, Any]], PanelSpec]] = {
    "table": _table_from_dict,
    "transpose-table": lambda data, common: TransposeTablePanel(**common),
    "line": _timeseries_from_dict,
    "bar": _timeseries_from_dict,
    "area": _timeseries_from_dict,
    "pie": lambda data, common: PiePanel(**common),
    "stat": _stat_from_dict,
}


def panel_from_dict(data: Mapping[str, Any], default_id: Optional[str] = None) -> PanelSpec:
    kind = data.get("type")
    builder = _PANEL_BUILDERS.get(kind)
    if builder is None:
        raise ConfigurationError(f"Unknown panel type: {kind!r}")

    title = data.get("title") or (data.get("titleOption") or {}).get("title") or ""
    common = {
        "id": str(data.get("id") or default_id or title or ""),
        "query": query_from_dict(_require(data, "query", f"Panel {title or kind!r}")),
        "title": str(title),
        "collapsed": bool(data.get("collapsed", False)),
    }
    if not common["id"]:
        raise ConfigurationError(f"Panel of type {kind!r} needs an id or a title")
    return builder(data, common)


def dashboard_from_dict(data: Mapping[str, Any]) -> DashboardSpec:
    name = str(_require(data, "name", "Dashboard"))
    filters = [filter_spec_from_dict(f) for f in data.get("filters") or []]
    panels = [panel_from_dict(p, default_id=f"panel-{i}") for i, p in enumerate(data.get("panels") or [])]
    return DashboardSpec(name=name, title=str(data.get("title") or name), filters=tuple(filters), panels=tuple(panels))


def load_dashboards(path: Union[str, Path]) -> Dict[str, DashboardSpec]:
    """Load dashboard definitions from a JSON file.

    The file holds either a list of dashboards or ``{"dashboards": [...]}``.
    A missing file yields no dashboards; a malformed one raises.
    """
    path = Path(path)
    if not path.exists():
        logger.warning("Dashboard definitions not found at %s; no dashboards loaded", path)
        return {}

    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        logger.error("Invalid dashboard definitions in %s: %s", path, e)
        raise ConfigurationError(f"Invalid JSON in {path}: {e}") from e

    items = raw.get("dashboards", []) if isinstance(raw, Mapping) else raw
    dashboards: Dict[str, DashboardSpec] = {}
    for item in items:
        spec = dashboard_from_dict(item)
        if spec.name in dashboards:
            raise ConfigurationError(f"Duplicate dashboard name {spec.name!r} in {path}")
        dashboards[spec.name] = spec
    logger.info("Loaded %d dashboard(s) from %s", len(dashboards), path)
    return dashboards


__all__ = [
    "DashboardSpec",
    "DataSource",
    "DateTimeFilterSpec",
    "FilterSpec",
    "InlineSource",
    "PaginationOption",
    "Panel",
    "PanelSpec",
    "PiePanel",
    "QuerySpec",
    "SQLSource",
    "SelectFilterSpec",
    "SortOption",
    "StatPanel",
    "TablePanel",
    "TimeseriesPanel",
    "TransposeTablePanel",
    "dashboard_from_dict",
    "datasource_from_dict",
    "filter_spec_from_dict",
    "load_dashboards",
    "panel_from_dict",
    "query_from_dict",
]
