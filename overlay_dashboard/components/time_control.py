"""
Time control widget: cursor label, index slider, Play/Pause, playback rate.

Pushed configs set the widget values under a sync guard so the observers
only emit events for user edits, never for echoes of the controller's state.
"""
import logging
from typing import Callable, Mapping, Optional

import ipywidgets
from ipyleaflet import WidgetControl

from ..utils.sync import EventKind
from ..utils.time_cursor import DEFAULT_STEPS_PER_SECOND

logger = logging.getLogger(__name__)


def format_cursor_label(cursor: Optional[Mapping]) -> str:
    if not cursor:
        return "Loading timeline..."
    return f"Year: {cursor['year']}, Timestamp: {cursor['timestamp']}"


class TimeControlWidget:
    def __init__(self, emit: Callable, position: str = 'bottomleft'):
        self.emit = emit
        self._syncing = False

        self.label = ipywidgets.HTML(value=format_cursor_label(None))
        self.slider = ipywidgets.IntSlider(value=0, min=0, max=0, readout=False, disabled=True)
        self.play_button = ipywidgets.Button(description='Play', icon='play', disabled=True)
        self.pause_button = ipywidgets.Button(description='Pause', icon='pause', disabled=True)
        # Unbounded; the controller rejects non-positive rates and re-pushes
        self.rate_input = ipywidgets.FloatText(
            value=DEFAULT_STEPS_PER_SECOND,
            step=0.5,
            description='Steps/s',
            layout=ipywidgets.Layout(width='160px'),
        )

        self.slider.observe(self._on_slider_change, names='value')
        self.rate_input.observe(self._on_rate_change, names='value')
        self.play_button.on_click(lambda _: self.emit(EventKind.PLAYBACK_TOGGLED, playing=True))
        self.pause_button.on_click(lambda _: self.emit(EventKind.PLAYBACK_TOGGLED, playing=False))

        self.widget = ipywidgets.VBox(
            [
                self.label,
                self.slider,
                ipywidgets.HBox([self.play_button, self.pause_button, self.rate_input]),
            ],
            layout=ipywidgets.Layout(padding='6px', width='22rem'),
        )
        self.control = WidgetControl(widget=self.widget, position=position)

    def _on_slider_change(self, change) -> None:
        if not self._syncing:
            self.emit(EventKind.TIME_CHANGED, index=change['new'])

    def _on_rate_change(self, change) -> None:
        if not self._syncing:
            self.emit(EventKind.STEPS_PER_SECOND_CHANGED, steps_per_second=change['new'])

    def update(self, config: Mapping) -> None:
        ready = config.get('index') is not None
        playing = bool(config.get('playing'))
        self._syncing = True
        try:
            self.label.value = format_cursor_label(config.get('cursor'))
            self.slider.max = max(len(config.get('timestamps') or ()) - 1, 0)
            self.slider.value = config.get('index') or 0
            self.slider.disabled = not ready
            self.rate_input.value = config.get('steps_per_second', DEFAULT_STEPS_PER_SECOND)
            self.play_button.disabled = not ready or playing
            self.pause_button.disabled = not playing
        finally:
            self._syncing = False


def create_time_control(placement, emit: Callable) -> TimeControlWidget:
    return TimeControlWidget(emit, position=placement.options.get('position', 'bottomleft'))
