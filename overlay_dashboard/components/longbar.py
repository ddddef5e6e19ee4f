"""
Longbar: side-by-side comparison of pinned features.

Each pin is a colored chip (click to unpin); LongbarLineChart children draw
one line per pinned feature per variable in the pin's color.
"""
import html
import logging
from typing import Callable

import solara

from ..utils.sync import EventKind
from .panels import LineChart, ReactivePanel

logger = logging.getLogger(__name__)

LONGBAR_CHILDREN = {
    'LongbarLineChart': LineChart,
}


@solara.component
def PinChip(pin, emit: Callable):
    # Factory to capture the pin by value
    def make_unpin_handler(layer, feature_id):
        def on_unpin():
            emit(EventKind.FEATURE_UNPINNED, layer=layer, id=feature_id)
        return on_unpin

    solara.Button(
        f"{pin['layer']} {pin['id']} ✕",
        on_click=make_unpin_handler(pin['layer'], pin['id']),
        outlined=True,
        style={"border-color": pin['color'], "color": pin['color'], "text-transform": "none"},
    )


def longbar_title_html(title) -> str:
    return f'<div style="font-size: 14px; font-weight: 600;">{html.escape(str(title))}</div>'


@solara.component
def LongbarPanel(panel: ReactivePanel):
    config = panel.config.value
    if config is None:
        return
    pins = config.get('pins') or ()
    title = config.get('title', 'Comparison')

    with solara.Column(gap="8px", style={"padding": "12px 16px", "background": "#ffffff",
                                         "border-top": "1px solid #e5e7eb"}):
        solara.HTML(unsafe_innerHTML=longbar_title_html(title))
        if not pins:
            solara.HTML(unsafe_innerHTML="""
                <div style="font-size: 12px; color: #6b7280;">
                    Pin features from the sidebar to compare them here
                </div>
            """)
            return
        with solara.Row(gap="6px", style={"flex-wrap": "wrap"}):
            for pin in pins:
                PinChip(pin, panel.emit)
        for child in config.get('plugins') or ():
            component = LONGBAR_CHILDREN.get(child['name'])
            if component is None:
                logger.warning(f"Longbar has no renderer for '{child['name']}'")
                continue
            component(child)


def create_longbar(placement, emit: Callable) -> ReactivePanel:
    return ReactivePanel(placement, emit)
