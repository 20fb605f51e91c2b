"""Dashboard runtime: definitions, filter orchestration and panel refresh."""

from .dashboard import Dashboard  # noqa: F401
from .filters import FilterOrchestrator  # noqa: F401
from .model import DashboardSpec, load_dashboards  # noqa: F401
from .refresh import PanelRefreshController, PanelStatus, RefreshOptions  # noqa: F401

__all__ = [
    "Dashboard",
    "DashboardSpec",
    "FilterOrchestrator",
    "PanelRefreshController",
    "PanelStatus",
    "RefreshOptions",
    "load_dashboards",
]
