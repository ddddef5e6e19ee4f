"""
Legend widget: one map control per Legend plugin placement.

Discrete legends list a swatch per bucket and mark the bucket holding the
selected feature's value. Continuous legends draw a gradient between the end
values with a marker at the selected value. A legend whose variable matches
no layer renders nothing and is hidden.
"""
import html
import logging
from typing import Callable, Mapping, Optional

import ipywidgets
from ipyleaflet import WidgetControl

logger = logging.getLogger(__name__)

LEGEND_CONTAINER_STYLE = (
    "background: white; padding: 10px 12px; border-radius: 6px; "
    "box-shadow: 0 1px 4px rgba(0,0,0,0.2); font-size: 12px; "
    "max-height: 300px; overflow-y: auto;"
)


def _format_value(value: float) -> str:
    return f"{value:g}"


def _gradient_css(stops) -> str:
    low, high = stops[0][0], stops[-1][0]
    span = (high - low) or 1.0
    parts = [f"{color} {100.0 * (value - low) / span:.1f}%" for value, color in stops]
    if len(parts) == 1:
        parts.append(parts[0])
    return f"linear-gradient(to right, {', '.join(parts)})"


def _marker_position(stops, value: Optional[float]) -> Optional[float]:
    """Percent offset of value along the gradient (clamped), or None."""
    if value is None:
        return None
    low, high = stops[0][0], stops[-1][0]
    if high == low:
        return 0.0
    return min(max(100.0 * (value - low) / (high - low), 0.0), 100.0)


def build_legend_html(config: Mapping) -> str:
    """
    Render a legend config to HTML.

    Returns:
        The legend markup, or '' when the config has nothing to show
    """
    title = html.escape(str(config.get('variable') or ''))
    width = config.get('width', '20rem')

    if config.get('continuous') and config.get('stops'):
        stops = config['stops']
        marker = _marker_position(stops, config.get('active_value'))
        marker_html = ''
        if marker is not None:
            marker_html = (
                f'<div style="position: absolute; left: {marker:.1f}%; top: -3px; '
                f'width: 2px; height: 20px; background: #000;"></div>'
            )
        return f"""
        <div style="{LEGEND_CONTAINER_STYLE} width: {width};">
            <div style="font-weight: 600; margin-bottom: 6px;">{title}</div>
            <div style="position: relative; height: 14px; border: 1px solid #ccc; background: {_gradient_css(stops)};">
                {marker_html}
            </div>
            <div style="display: flex; justify-content: space-between; margin-top: 2px;">
                <span>{_format_value(stops[0][0])}</span>
                <span>{_format_value(stops[-1][0])}</span>
            </div>
        </div>
        """

    entries = config.get('entries') or ()
    if not entries:
        return ''

    rows = []
    for index, entry in enumerate(entries):
        active = index == config.get('active_index')
        weight = 'font-weight: 700;' if active else ''
        pointer = '&#9654; ' if active else ''
        rows.append(
            f'<div style="display: flex; align-items: center; margin: 2px 0; {weight}">'
            f'<span style="display: inline-block; width: 14px; height: 14px; margin-right: 6px; '
            f'background: {entry["color"]}; border: 1px solid #999;"></span>'
            f'{pointer}{html.escape(str(entry["label"]))}</div>'
        )
    return f"""
    <div style="{LEGEND_CONTAINER_STYLE} width: {width};">
        <div style="font-weight: 600; margin-bottom: 6px;">{title}</div>
        {''.join(rows)}
    </div>
    """


class LegendWidget:
    """Singleton HTML widget inside a WidgetControl; update() replaces its markup."""

    def __init__(self, emit: Callable, position: str = 'bottomright'):
        self.emit = emit
        self.widget = ipywidgets.HTML(value='', layout=ipywidgets.Layout(min_width='180px'))
        self.control = WidgetControl(widget=self.widget, position=position)

    def update(self, config: Mapping) -> None:
        markup = build_legend_html(config)
        self.widget.value = markup
        self.widget.layout.display = None if markup else 'none'


def create_legend(placement, emit: Callable) -> LegendWidget:
    return LegendWidget(emit, position=placement.options.get('position', 'bottomright'))
