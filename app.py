"""
Spatiotemporal Overlay Dashboard
================================

Overlays time-varying layer statistics on a map and keeps the legend, time
control, sidebar and comparison panels in sync.

Layout:
- Map fills the left (legend and time control sit in map controls)
- Sidebar on the right shows the selected feature
- Longbar along the bottom compares pinned features

Data source: the dataset descriptor (see overlay_dashboard/utils/config.py).

Run with: solara run app.py --port 8765
"""
import logging
import os

import solara
from solara.server import kernel_context

from overlay_dashboard.components import (
    LongbarPanel,
    SidebarPanel,
    create_map_view,
    register_widget_factories,
)
from overlay_dashboard.components.panels import ReactivePanel
from overlay_dashboard.utils import (
    DashboardConfigError,
    OverlayController,
    create_plugin_registry,
    load_dashboard_config,
)
from overlay_dashboard.utils.time_cursor import start_interval_timer

# Configure logging
logging.basicConfig(level=os.environ.get('OVERLAY_LOG_LEVEL', 'INFO').upper())
logger = logging.getLogger(__name__)


def context_timer_factory():
    """
    Timer factory that runs ticks inside the current session's kernel context.

    Must be called during render, when the session context is current.
    """
    context = kernel_context.get_current_context()

    def factory(period_seconds, callback):
        def tick_in_context():
            with context:
                callback()
        return start_interval_timer(period_seconds, tick_in_context)
    return factory


def build_session(config):
    """Create the controller, mount the map and every plugin widget."""
    registry = create_plugin_registry()
    register_widget_factories(registry)
    controller = OverlayController(config, registry=registry, timer_factory=context_timer_factory())

    map_view = controller.mount_map(create_map_view(config))
    widgets = controller.mount_plugins()
    for widget in widgets.values():
        # Map-anchored widgets carry a WidgetControl
        control = getattr(widget, 'control', None)
        if control is not None:
            map_view.add_control(control)
    return controller, map_view, widgets


@solara.component
def Dashboard(config):
    controller, map_view, widgets = solara.use_memo(lambda: build_session(config), dependencies=[])

    # Stop playback and detach widgets when the session goes away
    solara.use_effect(lambda: controller.teardown, dependencies=[])

    load = solara.use_thread(controller.load_sync, dependencies=[])

    sidebars = [w for w in widgets.values() if isinstance(w, ReactivePanel) and w.placement.name == 'Sidebar']
    longbars = [w for w in widgets.values() if isinstance(w, ReactivePanel) and w.placement.name == 'Longbar']

    with solara.Column(gap="0px", style={"height": "100vh", "overflow": "hidden"}):
        if load.state == solara.ResultState.RUNNING:
            solara.ProgressLinear(True)
        elif load.state == solara.ResultState.ERROR:
            solara.Error(f"Loading failed: {load.error}")

        with solara.Row(gap="0px", style={"flex": "1", "overflow": "hidden", "min-height": "0"}):
            with solara.Column(style={"flex": "1", "overflow": "hidden", "position": "relative"}):
                solara.display(map_view.map)
            for panel in sidebars:
                with solara.Column(style={"flex-shrink": "0", "border-left": "1px solid #e5e7eb"}):
                    SidebarPanel(panel)

        for panel in longbars:
            LongbarPanel(panel)


@solara.component
def Page():
    solara.Title("Overlay Dashboard")

    def load_config():
        try:
            return load_dashboard_config(), None
        except DashboardConfigError as e:
            logger.error(f"Invalid dashboard config: {e}")
            return None, str(e)

    config, error = solara.use_memo(load_config, dependencies=[])
    if config is None:
        solara.Error(f"Dashboard config error: {error}")
        return
    Dashboard(config)
