"""
Sidebar: details of the selected feature.

Header shows the layer and feature id with pin and close buttons; nested
plugins (SidebarMetadata, SidebarLineChart) render below in config order.
"""
import html
import logging
from typing import Callable, Mapping

import solara

from ..utils.sync import EventKind
from .panels import LineChart, MetadataTable, ReactivePanel

logger = logging.getLogger(__name__)

SIDEBAR_CHILDREN = {
    'SidebarMetadata': MetadataTable,
    'SidebarLineChart': LineChart,
}


def sidebar_header_html(selection: Mapping) -> str:
    """Layer and feature id block; both come from fetched data and are escaped."""
    return f"""
        <div style="flex: 1;">
            <div style="font-size: 11px; color: #6b7280;">{html.escape(str(selection['layer']))}</div>
            <div style="font-size: 16px; font-weight: 600;">{html.escape(str(selection['id']))}</div>
        </div>
    """


@solara.component
def SidebarHeader(selection: Mapping, is_pinned: bool, emit: Callable):
    with solara.Row(style={"align-items": "center", "gap": "8px", "padding": "12px 16px",
                           "border-bottom": "1px solid #e5e7eb"}):
        solara.HTML(unsafe_innerHTML=sidebar_header_html(selection))
        if is_pinned:
            solara.Button(
                "Unpin",
                on_click=lambda: emit(EventKind.FEATURE_UNPINNED, layer=selection['layer'], id=selection['id']),
                outlined=True,
            )
        else:
            solara.Button(
                "Pin",
                on_click=lambda: emit(EventKind.FEATURE_PINNED, layer=selection['layer'], id=selection['id']),
                color="primary",
            )
        solara.Button("✕", on_click=lambda: emit(EventKind.SELECTION_CLEARED), text=True)


@solara.component
def SidebarPanel(panel: ReactivePanel):
    config = panel.config.value
    width = (config or {}).get('width', '30rem')

    with solara.Column(gap="0px", style={"width": width, "max-width": "100%", "background": "#ffffff",
                                         "overflow-y": "auto"}):
        if config is None or config.get('selection') is None:
            solara.HTML(unsafe_innerHTML="""
                <div style="font-size: 12px; color: #6b7280; padding: 16px; text-align: center;">
                    Click a feature on the map to see its details
                </div>
            """)
            return

        SidebarHeader(config['selection'], config.get('is_pinned', False), panel.emit)
        with solara.Column(style={"padding": "12px 16px"}):
            for child in config.get('plugins') or ():
                component = SIDEBAR_CHILDREN.get(child['name'])
                if component is None:
                    logger.warning(f"Sidebar has no renderer for '{child['name']}'")
                    continue
                component(child)


def create_sidebar(placement, emit: Callable) -> ReactivePanel:
    return ReactivePanel(placement, emit)
