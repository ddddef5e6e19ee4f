"""
UI components for the overlay dashboard.

Map-anchored widgets (Legend, TimeControl) are ipywidgets inside ipyleaflet
WidgetControls; side panels (Sidebar, Longbar) are solara components fed
through ReactivePanel handles.
"""

from .map_view import OverlayMapView, create_map_view
from .legend import LegendWidget, build_legend_html, create_legend
from .time_control import TimeControlWidget, create_time_control, format_cursor_label
from .panels import ReactivePanel
from .sidebar import SidebarPanel, create_sidebar
from .longbar import LongbarPanel, create_longbar

WIDGET_FACTORIES = {
    'TimeControl': create_time_control,
    'Legend': create_legend,
    'Sidebar': create_sidebar,
    'Longbar': create_longbar,
}


def register_widget_factories(registry) -> None:
    """Attach the UI factories to the top-level plugins of a registry."""
    for name, factory in WIDGET_FACTORIES.items():
        registry.set_factory(name, factory)


__all__ = [
    'OverlayMapView',
    'create_map_view',
    'LegendWidget',
    'build_legend_html',
    'create_legend',
    'TimeControlWidget',
    'create_time_control',
    'format_cursor_label',
    'ReactivePanel',
    'SidebarPanel',
    'create_sidebar',
    'LongbarPanel',
    'create_longbar',
    'WIDGET_FACTORIES',
    'register_widget_factories',
]
