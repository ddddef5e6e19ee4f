"""
Plugin registry: every widget the descriptor can place, by name.

Each PluginDefinition declares:
- depends_on: state slices whose change re-pushes the widget
- emits:      event kinds the widget may raise
- build_config: (state, placement, registry) -> immutable config mapping

Every config carries the placement's options plus the shared derived fields
(name, layer_data, layer_metadata, plugin_index, year_range). Nested plugins
are rendered by their parent and arrive as its 'plugins' entry.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, FrozenSet, Iterable, List, Mapping, Optional, Tuple

from .color_schemes import (
    ColorRuleError,
    ContinuousColorRule,
    DiscreteColorRule,
    build_color_rule,
)
from .config import DashboardConfigError, PluginPlacement
from .sync import EventKind, StateSlice, freeze

logger = logging.getLogger(__name__)


class UnknownPluginError(DashboardConfigError):
    """Raised when the descriptor places a plugin nobody registered."""


@dataclass(frozen=True)
class PluginIndexEntry:
    """One entry of the plugin index document."""
    name: str
    tag_name: str
    path: str
    export_name: Optional[str] = None
    applies_to: Optional[str] = None


def parse_plugin_index(raw: Mapping, registry: Optional['PluginRegistry'] = None) -> Dict[str, PluginIndexEntry]:
    """
    Parse the plugin index document ({name: {tagName, path, exportName?, for?}}).

    Malformed entries are skipped. Names the registry doesn't know are kept
    but logged, since a widget can't be built for them.
    """
    entries = {}
    for name, item in (raw or {}).items():
        if not isinstance(item, Mapping) or not item.get('tagName') or not item.get('path'):
            logger.warning(f"Plugin index entry {name!r} needs tagName and path; skipping")
            continue
        entries[name] = PluginIndexEntry(
            name=name,
            tag_name=item['tagName'],
            path=item['path'],
            export_name=item.get('exportName'),
            applies_to=item.get('for'),
        )
        if registry is not None and name not in registry:
            logger.warning(f"Plugin index lists {name!r}, which has no registered widget")
    return entries


@dataclass
class PluginDefinition:
    name: str
    depends_on: FrozenSet[StateSlice]
    emits: FrozenSet[EventKind]
    build_config: Callable[[Any, PluginPlacement, 'PluginRegistry'], Mapping]
    factory: Optional[Callable] = field(default=None, repr=False)


class PluginRegistry:
    """Name -> PluginDefinition, plus load-time validation of placements."""

    def __init__(self):
        self._definitions: Dict[str, PluginDefinition] = {}

    def register(self, definition: PluginDefinition) -> PluginDefinition:
        if definition.name in self._definitions:
            raise ValueError(f"Plugin {definition.name!r} is already registered")
        self._definitions[definition.name] = definition
        return definition

    def __contains__(self, name: str) -> bool:
        return name in self._definitions

    @property
    def names(self) -> List[str]:
        return list(self._definitions)

    def get(self, name: str) -> PluginDefinition:
        """
        Raises:
            UnknownPluginError: If no plugin of that name is registered
        """
        try:
            return self._definitions[name]
        except KeyError:
            raise UnknownPluginError(
                f"Unknown plugin {name!r}; registered plugins: {', '.join(self._definitions)}"
            ) from None

    def set_factory(self, name: str, factory: Callable) -> None:
        """Attach the widget factory (placement, emit) -> widget with update(config)."""
        self.get(name).factory = factory

    def validate(self, placements: Iterable[PluginPlacement]) -> None:
        """Check every placement (nested ones included) names a registered plugin."""
        for placement in placements:
            self.get(placement.name)
            self.validate(placement.children)

    def depends_on(self, placement: PluginPlacement) -> FrozenSet[StateSlice]:
        """Slices of a placement and all its nested plugins."""
        slices = set(self.get(placement.name).depends_on)
        for child in placement.children:
            slices |= self.depends_on(child)
        return frozenset(slices)

    def build_config(self, state, placement: PluginPlacement) -> Mapping:
        return self.get(placement.name).build_config(state, placement, self)


# =============================================================================
# Derived config fields
# =============================================================================

def base_config(state, placement: PluginPlacement) -> Dict[str, Any]:
    """Placement options merged with the fields every widget receives."""
    config = dict(placement.options)
    config.update({
        'name': placement.name,
        'layer_data': {name: resolved.data.snapshot() for name, resolved in state.layers.items()},
        'layer_metadata': {name: resolved.metadata for name, resolved in state.layers.items()},
        'plugin_index': state.plugin_index,
        'year_range': state.config.year_range,
    })
    return config


def child_configs(state, placement: PluginPlacement, registry: PluginRegistry) -> Tuple[Mapping, ...]:
    return tuple(registry.build_config(state, child) for child in placement.children)


def selection_dict(selection) -> Optional[Dict[str, str]]:
    if selection is None:
        return None
    return {'layer': selection.layer, 'id': selection.feature_id}


def layers_for_variable(state, variable: str, granularity: Optional[str] = None) -> List:
    """Loaded layers whose variable matches (and granularity, when given)."""
    return [
        resolved for resolved in state.layers.values()
        if resolved.layer.variable == variable
        and (granularity is None or resolved.layer.granularity == granularity)
    ]


def feature_series(state, variables: Iterable[str], granularity: Optional[str], feature_id: str) -> List[Dict]:
    """
    One line-chart series per variable for a feature id.

    Variables with no matching layer, or layers without data for the
    feature, contribute nothing.
    """
    series = []
    for variable in variables:
        for resolved in layers_for_variable(state, variable, granularity):
            points = resolved.data.series_points(feature_id, state.config.years)
            if not points:
                continue
            series.append({
                'variable': variable,
                'layer': resolved.name,
                'id': feature_id,
                'points': points,
            })
    return series


# =============================================================================
# Built-in plugins
# =============================================================================

def build_time_control_config(state, placement, registry) -> Mapping:
    controller = state.time
    cursor = controller.cursor
    config = base_config(state, placement)
    config.update({
        'timestamps': [(c.year, c.timestamp) for c in controller.sequence],
        'index': controller.index,
        'cursor': {'year': cursor.year, 'timestamp': cursor.timestamp} if cursor else None,
        'playing': controller.playback.is_playing,
        'steps_per_second': controller.playback.steps_per_second,
        'status': controller.status.value,
    })
    return freeze(config)


def _legend_rule(state, options: Mapping):
    """(color rule, layer name) for a legend, or (None, None) when nothing matches."""
    variable = options.get('variable')
    if options.get('continuous') and (options.get('valueColorPairs') or options.get('colorRange')):
        return build_color_rule(options), None
    if not variable:
        return None, None
    for layer in state.config.overlay_layers:
        if layer.variable == variable or (layer.is_matrix and layer.name == variable):
            return layer.color_rule, layer.name
    return None, None


def build_legend_config(state, placement, registry) -> Mapping:
    """
    Legend entries for the variable named in the placement.

    Discrete rules give one entry per bucket; continuous rules give gradient
    stops. A variable with no matching layer yields an empty legend.
    """
    config = base_config(state, placement)
    config.update({
        'variable': placement.options.get('variable'),
        'entries': [],
        'stops': [],
        'continuous': False,
        'active_index': None,
        'active_value': None,
    })

    try:
        rule, layer_name = _legend_rule(state, placement.options)
    except ColorRuleError as e:
        logger.warning(f"Legend {config['variable']!r}: {e}; rendering empty")
        return freeze(config)
    if rule is None:
        logger.debug(f"Legend {config['variable']!r} has no matching layer")
        return freeze(config)

    value = None
    if state.selection is not None and state.selection.layer == layer_name:
        value = state.styles.value_at(layer_name, state.selection.feature_id)

    if isinstance(rule, DiscreteColorRule):
        config['entries'] = [{'color': b.color, 'label': b.display_label} for b in rule.buckets]
        config['active_index'] = rule.bucket_index(value)
    elif isinstance(rule, ContinuousColorRule):
        config['continuous'] = True
        config['stops'] = [(v, rule.color_for(v)) for v, _ in rule.points]
        config['active_value'] = value
    return freeze(config)


def build_sidebar_config(state, placement, registry) -> Mapping:
    selection = state.selection
    config = base_config(state, placement)
    metadata = {}
    if selection is not None and selection.layer in state.layers:
        metadata = state.layers[selection.layer].metadata.get(selection.feature_id, {})
    config.update({
        'selection': selection_dict(selection),
        'metadata': metadata,
        'is_pinned': selection is not None and selection in state.pins,
        'plugins': child_configs(state, placement, registry),
    })
    return freeze(config)


def build_sidebar_metadata_config(state, placement, registry) -> Mapping:
    selection = state.selection
    config = base_config(state, placement)
    metadata = {}
    if selection is not None and selection.layer in state.layers:
        metadata = state.layers[selection.layer].metadata.get(selection.feature_id, {})
    config.update({'selection': selection_dict(selection), 'metadata': metadata})
    return freeze(config)


def build_sidebar_line_chart_config(state, placement, registry) -> Mapping:
    selection = state.selection
    config = base_config(state, placement)
    series = []
    if selection is not None:
        series = feature_series(
            state,
            placement.options.get('variables') or [],
            placement.options.get('granularity'),
            selection.feature_id,
        )
    config.update({'selection': selection_dict(selection), 'series': series})
    return freeze(config)


def build_longbar_config(state, placement, registry) -> Mapping:
    config = base_config(state, placement)
    config.update({
        'pins': [
            {'layer': pin.layer, 'id': pin.feature_id, 'color': color}
            for pin, color in state.pins.items()
        ],
        'plugins': child_configs(state, placement, registry),
    })
    return freeze(config)


def build_longbar_line_chart_config(state, placement, registry) -> Mapping:
    config = base_config(state, placement)
    series = []
    for pin, color in state.pins.items():
        for entry in feature_series(
            state,
            placement.options.get('variables') or [],
            placement.options.get('granularity'),
            pin.feature_id,
        ):
            entry['color'] = color
            entry['pin_layer'] = pin.layer
            series.append(entry)
    config.update({'series': series})
    return freeze(config)


def create_plugin_registry() -> PluginRegistry:
    """Registry with every built-in widget (factories are attached by the UI layer)."""
    registry = PluginRegistry()
    registry.register(PluginDefinition(
        name='TimeControl',
        depends_on=frozenset({StateSlice.TIME, StateSlice.PLAYBACK, StateSlice.DATA}),
        emits=frozenset({
            EventKind.TIME_CHANGED,
            EventKind.PLAYBACK_TOGGLED,
            EventKind.STEPS_PER_SECOND_CHANGED,
        }),
        build_config=build_time_control_config,
    ))
    registry.register(PluginDefinition(
        name='Legend',
        depends_on=frozenset({StateSlice.DATA, StateSlice.TIME, StateSlice.SELECTION}),
        emits=frozenset(),
        build_config=build_legend_config,
    ))
    registry.register(PluginDefinition(
        name='Sidebar',
        depends_on=frozenset({StateSlice.DATA, StateSlice.SELECTION, StateSlice.PINS}),
        emits=frozenset({
            EventKind.SELECTION_CLEARED,
            EventKind.FEATURE_PINNED,
            EventKind.FEATURE_UNPINNED,
        }),
        build_config=build_sidebar_config,
    ))
    registry.register(PluginDefinition(
        name='SidebarMetadata',
        depends_on=frozenset({StateSlice.DATA, StateSlice.SELECTION}),
        emits=frozenset(),
        build_config=build_sidebar_metadata_config,
    ))
    registry.register(PluginDefinition(
        name='SidebarLineChart',
        depends_on=frozenset({StateSlice.DATA, StateSlice.SELECTION}),
        emits=frozenset(),
        build_config=build_sidebar_line_chart_config,
    ))
    registry.register(PluginDefinition(
        name='Longbar',
        depends_on=frozenset({StateSlice.DATA, StateSlice.PINS}),
        emits=frozenset({EventKind.FEATURE_UNPINNED}),
        build_config=build_longbar_config,
    ))
    registry.register(PluginDefinition(
        name='LongbarLineChart',
        depends_on=frozenset({StateSlice.DATA, StateSlice.PINS}),
        emits=frozenset(),
        build_config=build_longbar_line_chart_config,
    ))
    return registry
