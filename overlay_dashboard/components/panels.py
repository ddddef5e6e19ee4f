"""
Shared pieces of the solara side panels (Sidebar, Longbar).

Panels receive their configs through a ReactivePanel: update() sets a
solara reactive value, and the panel component re-renders from it.
"""
import html
import json
import logging
from typing import Callable, List, Mapping, Optional, Sequence, Tuple

import pandas as pd
import plotly.graph_objects as go
import solara

from ..utils.sync import thaw

logger = logging.getLogger(__name__)

CHART_HEIGHT = 260
SERIES_COLUMNS = ['year', 'timestamp', 'value', 'variable', 'layer', 'id', 'color']


class ReactivePanel:
    """Widget handle for a solara panel: holds the latest pushed config."""

    def __init__(self, placement, emit: Callable):
        self.placement = placement
        self.emit = emit
        self.config = solara.reactive(None)

    def update(self, config: Mapping) -> None:
        self.config.set(config)


# =============================================================================
# Data shaping
# =============================================================================

def metadata_rows(metadata: Optional[Mapping]) -> List[Tuple[str, str]]:
    """(key, display value) rows; nested values are shown as JSON."""
    rows = []
    for key, value in (metadata or {}).items():
        if isinstance(value, (Mapping, tuple, list)):
            value = json.dumps(thaw(value))
        rows.append((str(key), '' if value is None else str(value)))
    return rows


def series_frame(series: Sequence[Mapping]) -> pd.DataFrame:
    """
    Flatten chart series into one long DataFrame.

    Columns: year, timestamp, value, variable, layer, id, color, plus 'step'
    ("year/timestamp") used as the x axis.
    """
    records = []
    for entry in series:
        for year, timestamp, value in entry['points']:
            records.append({
                'year': year,
                'timestamp': timestamp,
                'value': value,
                'variable': entry['variable'],
                'layer': entry['layer'],
                'id': entry['id'],
                'color': entry.get('color'),
            })
    df = pd.DataFrame(records, columns=SERIES_COLUMNS)
    df['step'] = df['year'].astype(str) + '/' + df['timestamp'].astype(str)
    return df


def build_line_chart_figure(series: Sequence[Mapping], title: str = '') -> go.Figure:
    """One line per (variable, layer, feature) series, colored when the series carries a color."""
    df = series_frame(series)
    fig = go.Figure()
    for (variable, layer, feature_id), group in df.groupby(['variable', 'layer', 'id'], sort=False):
        color = group['color'].iloc[0]
        if pd.isna(color):
            color = None
        fig.add_trace(go.Scatter(
            x=group['step'],
            y=group['value'],
            mode='lines',
            name=f"{variable} ({layer} {feature_id})",
            line={'color': color} if color else None,
        ))
    fig.update_layout(
        title=title or None,
        height=CHART_HEIGHT,
        margin={'l': 40, 'r': 10, 't': 40 if title else 10, 'b': 30},
        legend={'orientation': 'h'},
        xaxis_title='Year / Timestamp',
    )
    return fig


# =============================================================================
# Components
# =============================================================================

@solara.component
def LineChart(config: Mapping):
    """Line chart plugin body (SidebarLineChart / LongbarLineChart)."""
    series = config.get('series') or ()
    title = config.get('title', '')
    figure = solara.use_memo(
        lambda: build_line_chart_figure(series, title) if series else None,
        dependencies=[series, title],
    )
    if figure is None:
        solara.HTML(unsafe_innerHTML=f"""
            <div style="font-size: 12px; color: #6b7280; padding: 8px 0;">
                {html.escape(title) + ': ' if title else ''}No data for the selected feature(s)
            </div>
        """)
        return
    solara.FigurePlotly(figure)


@solara.component
def MetadataTable(config: Mapping):
    rows = metadata_rows(config.get('metadata'))
    if not rows:
        solara.HTML(unsafe_innerHTML='<div style="font-size: 12px; color: #6b7280;">No metadata</div>')
        return
    body = ''.join(
        f'<tr><td style="padding: 2px 8px 2px 0; color: #6b7280;">{html.escape(key)}</td><td>{html.escape(value)}</td></tr>'
        for key, value in rows
    )
    solara.HTML(unsafe_innerHTML=f'<table style="font-size: 12px; width: 100%;">{body}</table>')
