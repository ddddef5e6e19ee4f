"""
Dashboard controller: the single owner of session state.

Flow:
    load config -> resolve layers (concurrently, joined) -> build timeline
    -> widgets attached with immutable configs -> widgets emit WidgetEvents
    -> controller updates DashboardState -> styles recomputed
    -> widgets depending on the changed slices are re-pushed

All mutation happens under one re-entrant lock, so playback ticks from the
timer thread and UI events never interleave mid-handler.
"""
import asyncio
import logging
import threading
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Set

import httpx

from .color_schemes import PIN_COLORS
from .config import DashboardConfig
from .data_loader import DataIndexResolver, ResolvedLayer
from .feature_styles import FeatureStyleCoordinator, Selection
from .plugin_registry import PluginIndexEntry, PluginRegistry, create_plugin_registry, parse_plugin_index
from .sync import ALL_SLICES, EventKind, StateSlice, SyncHub, WidgetEvent, freeze
from .time_cursor import (
    PlaybackStatus,
    TimeCursorController,
    build_timestamp_sequence,
    start_interval_timer,
    validate_steps_per_second,
)

logger = logging.getLogger(__name__)

MAP_WIDGET_ID = 'OverlayMap'


@dataclass
class DashboardState:
    """Everything the widgets are derived from. Only the controller mutates it."""
    config: DashboardConfig
    time: TimeCursorController
    styles: FeatureStyleCoordinator
    layers: Dict[str, ResolvedLayer] = field(default_factory=dict)
    plugin_index: Mapping = field(default_factory=lambda: MappingProxyType({}))
    plugin_entries: Dict[str, PluginIndexEntry] = field(default_factory=dict)
    selection: Optional[Selection] = None
    pins: Dict[Selection, str] = field(default_factory=dict)
    generation: int = 0
    loading: bool = False

    @property
    def bounds(self):
        """Union of the resolved layers' bounding boxes, or None."""
        boxes = [r.data_index.bounds for r in self.layers.values() if r.data_index.bounds]
        if not boxes:
            return None
        return (
            (min(b[0][0] for b in boxes), min(b[0][1] for b in boxes)),
            (max(b[1][0] for b in boxes), max(b[1][1] for b in boxes)),
        )


class OverlayController:
    """
    Owns DashboardState and implements the widget sync protocol.

    Args:
        config: Parsed dashboard config
        registry: Plugin registry (defaults to the built-in plugins)
        client_factory: () -> httpx.AsyncClient, used once per load
        timer_factory: (period_seconds, callback) -> timer with cancel()
    """

    def __init__(
        self,
        config: DashboardConfig,
        registry: Optional[PluginRegistry] = None,
        client_factory: Optional[Callable[[], httpx.AsyncClient]] = None,
        timer_factory: Callable = start_interval_timer,
    ):
        self.config = config
        self.registry = registry or create_plugin_registry()
        self.client_factory = client_factory or (lambda: httpx.AsyncClient(timeout=config.http_timeout))
        self._lock = threading.RLock()
        self.state = DashboardState(
            config=config,
            time=TimeCursorController(timer_factory, tick_callback=self._handle_tick),
            styles=FeatureStyleCoordinator(),
        )
        self.hub = SyncHub(self.dispatch)
        self._handlers = {
            EventKind.TIME_CHANGED: self._on_time_changed,
            EventKind.FEATURE_CLICKED: self._on_feature_clicked,
            EventKind.PLAYBACK_TOGGLED: self._on_playback_toggled,
            EventKind.STEPS_PER_SECOND_CHANGED: self._on_steps_per_second_changed,
            EventKind.SELECTION_CLEARED: self._on_selection_cleared,
            EventKind.FEATURE_PINNED: self._on_feature_pinned,
            EventKind.FEATURE_UNPINNED: self._on_feature_unpinned,
        }

    # =========================================================================
    # Loading
    # =========================================================================

    async def load(self) -> bool:
        """
        Resolve every layer and the plugin index, then build the timeline.

        Layer loads run concurrently and are all joined before anything is
        installed. If another load (or teardown) started meanwhile, this
        load's results are discarded.

        Returns:
            True if the results were installed
        """
        with self._lock:
            self.state.generation += 1
            generation = self.state.generation
            self.state.loading = True
        logger.info(f"Loading {len(self.config.overlay_layers)} overlay layer(s) (load #{generation})")

        async with self.client_factory() as client:
            resolver = DataIndexResolver(self.config.file_api_path, client)
            layers, plugin_index = await asyncio.gather(
                resolver.load_layers(self.config.overlay_layers),
                resolver.fetch_plugin_index(self.config.plugin_index_url),
            )

        with self._lock:
            if generation != self.state.generation:
                logger.info(f"Discarding results of superseded load #{generation}")
                return False
            self._install(layers, plugin_index)
        return True

    def load_sync(self) -> bool:
        """Blocking load for callers outside an event loop (the UI thread)."""
        return asyncio.run(self.load())

    def _install(self, layers: List[ResolvedLayer], plugin_index: Mapping) -> None:
        state = self.state
        state.layers = {resolved.name: resolved for resolved in layers}
        state.plugin_index = freeze(dict(plugin_index))
        state.plugin_entries = parse_plugin_index(plugin_index, self.registry)

        state.styles.set_layers(layers)
        state.selection = state.styles.selection
        state.pins = {
            pin: color for pin, color in state.pins.items()
            if pin.layer in state.layers and pin.feature_id in state.layers[pin.layer].feature_ids
        }

        # Every load starts from the declared initial timestamp
        state.time.load(
            self._timeline_sequence(),
            initial=self._initial_timestamp(),
            steps_per_second=self._initial_rate(),
        )
        state.styles.on_time_change(state.time.cursor)
        state.loading = False

        logger.info(
            f"Dataset ready: {len(state.layers)}/{len(self.config.overlay_layers)} layer(s), "
            f"{len(state.time.sequence)} time step(s)"
        )
        self.hub.publish(ALL_SLICES, state)

    def _timeline_layer(self) -> Optional[ResolvedLayer]:
        name = self.config.timeline_layer_name()
        resolved = self.state.layers.get(name) if name else None
        if resolved is None and self.state.layers:
            resolved = next(iter(self.state.layers.values()))
            logger.warning(f"Timeline layer {name!r} did not load; using '{resolved.name}' instead")
        return resolved

    def _timeline_sequence(self):
        resolved = self._timeline_layer()
        if resolved is None:
            return ()
        return build_timestamp_sequence(
            self.config.years,
            lambda year: resolved.data.timestamps_for_year(year, resolved.feature_ids),
        )

    def _time_control_options(self) -> Mapping:
        placements = self.config.find_plugins('TimeControl')
        return placements[0].options if placements else {}

    def _initial_timestamp(self):
        if self.config.initial_timestamp:
            return self.config.initial_timestamp
        option = self._time_control_options().get('timestamp')
        if isinstance(option, Mapping) and 'year' in option and 'timestamp' in option:
            return str(option['year']), str(option['timestamp'])
        if isinstance(option, (list, tuple)) and len(option) == 2:
            return str(option[0]), str(option[1])
        return str(self.config.year_range[0]), '0'

    def _initial_rate(self) -> Optional[float]:
        rate = self._time_control_options().get('timestampsPerSecond')
        if rate is None:
            return None
        try:
            return validate_steps_per_second(rate)
        except ValueError:
            logger.warning(f"Ignoring invalid timestampsPerSecond={rate!r}")
            return None

    # =========================================================================
    # Widget attachment
    # =========================================================================

    def mount(
        self,
        widget_id: str,
        depends_on: Iterable[StateSlice],
        emits: Iterable[EventKind],
        builder: Callable[[DashboardState], Mapping],
        factory: Callable,
    ) -> Any:
        """
        Create a widget with its emitter and push its first config.

        Args:
            factory: emit -> widget exposing update(config)
        """
        with self._lock:
            widget = factory(self.hub.emitter(widget_id, emits))
            self.hub.attach(widget_id, depends_on, builder, widget.update, self.state)
        return widget

    def mount_plugins(self) -> Dict[str, Any]:
        """Mount every top-level plugin that has a widget factory."""
        widgets = {}
        for position, placement in enumerate(self.config.plugins):
            definition = self.registry.get(placement.name)
            if definition.factory is None:
                logger.warning(f"Plugin '{placement.name}' has no widget factory; not shown")
                continue
            widgets[f"{placement.name}-{position}"] = self.mount(
                f"{placement.name}-{position}",
                self.registry.depends_on(placement),
                definition.emits,
                lambda state, placement=placement: self.registry.build_config(state, placement),
                lambda emit, placement=placement, definition=definition: definition.factory(placement, emit),
            )
        return widgets

    def mount_map(self, factory: Callable) -> Any:
        """Mount the map view (emit -> view with update(config))."""
        return self.mount(
            MAP_WIDGET_ID,
            {StateSlice.DATA, StateSlice.TIME, StateSlice.SELECTION},
            {EventKind.FEATURE_CLICKED},
            build_map_config,
            factory,
        )

    # =========================================================================
    # Events
    # =========================================================================

    def dispatch(self, event: WidgetEvent) -> None:
        """Apply a widget event and re-push the widgets it affects."""
        with self._lock:
            changed = self._handlers[event.kind](event.payload)
            if changed:
                self.hub.publish(changed, self.state)

    def _emit(self, kind: EventKind, **payload) -> None:
        self.dispatch(WidgetEvent(kind, payload, source='controller'))

    def seek(self, index: int) -> None:
        self._emit(EventKind.TIME_CHANGED, index=index)

    def play(self) -> None:
        self._emit(EventKind.PLAYBACK_TOGGLED, playing=True)

    def pause(self) -> None:
        self._emit(EventKind.PLAYBACK_TOGGLED, playing=False)

    def set_steps_per_second(self, steps_per_second) -> None:
        self._emit(EventKind.STEPS_PER_SECOND_CHANGED, steps_per_second=steps_per_second)

    def click_feature(self, layer: str, feature_id) -> None:
        self._emit(EventKind.FEATURE_CLICKED, layer=layer, id=feature_id)

    def clear_selection(self) -> None:
        self._emit(EventKind.SELECTION_CLEARED)

    def pin(self, layer: Optional[str] = None, feature_id=None) -> None:
        self._emit(EventKind.FEATURE_PINNED, layer=layer, id=feature_id)

    def unpin(self, layer: str, feature_id) -> None:
        self._emit(EventKind.FEATURE_UNPINNED, layer=layer, id=feature_id)

    # -- handlers: each returns the slices it changed ---------------------------

    def _on_time_changed(self, payload) -> Set[StateSlice]:
        time = self.state.time
        index = payload.get('index')
        if time.status is PlaybackStatus.UNINITIALIZED:
            logger.warning("Ignoring seek before the timeline is loaded")
            return set()
        if not isinstance(index, int) or isinstance(index, bool) or not 0 <= index < len(time.sequence):
            logger.warning(f"Ignoring out-of-range seek index {index!r}")
            return {StateSlice.TIME}
        time.seek(index)
        self.state.styles.on_time_change(time.cursor)
        return {StateSlice.TIME}

    def _handle_tick(self) -> None:
        """Timer callback: advance one step while playing."""
        with self._lock:
            time = self.state.time
            if time.status is not PlaybackStatus.PLAYING:
                return
            self.state.styles.on_time_change(time.tick())
            self.hub.publish({StateSlice.TIME}, self.state)

    def _on_playback_toggled(self, payload) -> Set[StateSlice]:
        time = self.state.time
        playing = payload.get('playing')
        if playing is None:
            playing = time.status is not PlaybackStatus.PLAYING
        changed = time.play() if playing else time.pause()
        return {StateSlice.PLAYBACK} if changed else set()

    def _on_steps_per_second_changed(self, payload) -> Set[StateSlice]:
        try:
            self.state.time.set_steps_per_second(payload.get('steps_per_second'))
        except ValueError as e:
            # Re-push so the widget shows the rate still in effect
            logger.warning(f"Ignoring playback rate change: {e}")
        return {StateSlice.PLAYBACK}

    def _on_feature_clicked(self, payload) -> Set[StateSlice]:
        clicked = Selection(str(payload.get('layer')), str(payload.get('id')))
        styles = self.state.styles
        if clicked == self.state.selection:
            logger.info(f"Deselected {clicked.layer}/{clicked.feature_id}")
            styles.on_feature_click(None)
        else:
            styles.on_feature_click(clicked)
            if styles.selection != clicked:
                return set()
            logger.info(f"Selected {clicked.layer}/{clicked.feature_id}")
        self.state.selection = styles.selection
        return {StateSlice.SELECTION}

    def _on_selection_cleared(self, payload) -> Set[StateSlice]:
        if self.state.selection is None:
            return set()
        self.state.styles.on_feature_click(None)
        self.state.selection = None
        return {StateSlice.SELECTION}

    def _pin_target(self, payload) -> Optional[Selection]:
        if payload.get('layer') is None or payload.get('id') is None:
            return self.state.selection
        return Selection(str(payload['layer']), str(payload['id']))

    def _on_feature_pinned(self, payload) -> Set[StateSlice]:
        pin = self._pin_target(payload)
        pins = self.state.pins
        if pin is None or pin in pins:
            return set()
        if pin.layer not in self.state.layers or pin.feature_id not in self.state.layers[pin.layer].feature_ids:
            logger.warning(f"Ignoring pin of unknown feature {pin.layer}/{pin.feature_id}")
            return set()
        in_use = set(pins.values())
        free = [color for color in PIN_COLORS if color not in in_use]
        pins[pin] = free[0] if free else PIN_COLORS[len(pins) % len(PIN_COLORS)]
        logger.info(f"Pinned {pin.layer}/{pin.feature_id}")
        return {StateSlice.PINS}

    def _on_feature_unpinned(self, payload) -> Set[StateSlice]:
        pin = self._pin_target(payload)
        if pin is None or self.state.pins.pop(pin, None) is None:
            return set()
        logger.info(f"Unpinned {pin.layer}/{pin.feature_id}")
        return {StateSlice.PINS}

    # =========================================================================
    # Teardown
    # =========================================================================

    def teardown(self) -> None:
        """Stop playback, detach widgets and invalidate in-flight loads."""
        with self._lock:
            self.state.time.teardown()
            self.hub.detach_all()
            self.state.generation += 1
        logger.info("Dashboard session torn down")


def build_map_config(state: DashboardState) -> Mapping:
    """Map view config: per-layer geometry, styles and draw order."""
    layers = []
    for name, resolved in state.layers.items():
        layers.append({
            'name': name,
            'geojson': resolved.geojson,
            'styles': {fid: style.to_leaflet() for fid, style in state.styles.layer_styles(name).items()},
            'order': state.styles.draw_order(name),
        })
    return freeze({
        'layers': layers,
        'base_layers': state.config.base_layers,
        'center': state.config.center,
        'zoom': state.config.zoom,
        'bounds': state.bounds,
        'selection': {'layer': state.selection.layer, 'id': state.selection.feature_id} if state.selection else None,
    })
