"""
Core of the overlay dashboard (no UI imports).

Modules:
- config: Dataset descriptor loading and validation
- data_loader: Data index resolution and per-layer data stores
- color_schemes: Value -> color rules (discrete buckets, continuous ramps)
- time_cursor: Timeline sequence and playback state machine
- feature_styles: Selection and per-feature styling
- sync: Widget config push / event protocol
- plugin_registry: Widget plugins and their derived configs
- controller: Session state owner tying it all together
"""

from .config import (
    DashboardConfig,
    DashboardConfigError,
    OverlayLayer,
    PluginPlacement,
    load_dashboard_config,
    parse_dashboard_config,
)

from .data_loader import (
    DataIndex,
    DataIndexResolver,
    LayerDataStore,
    LayerLoadError,
    MalformedDataIndexError,
    ResolvedLayer,
    StatisticBundle,
)

from .color_schemes import (
    NO_COLOR,
    NO_DATA_FILL_COLOR,
    PIN_COLORS,
    ContinuousColorRule,
    DiscreteColorRule,
    build_color_rule,
    map_value_to_color,
)

from .time_cursor import (
    PlaybackStatus,
    TimeCursor,
    TimeCursorController,
    build_timestamp_sequence,
)

from .feature_styles import (
    FeatureStyle,
    FeatureStyleCoordinator,
    Selection,
)

from .sync import (
    EventKind,
    StateSlice,
    WidgetEvent,
)

from .plugin_registry import (
    PluginDefinition,
    PluginRegistry,
    UnknownPluginError,
    create_plugin_registry,
)

from .controller import (
    DashboardState,
    OverlayController,
)

__all__ = [
    # Config
    'DashboardConfig',
    'DashboardConfigError',
    'OverlayLayer',
    'PluginPlacement',
    'load_dashboard_config',
    'parse_dashboard_config',
    # Data loader
    'DataIndex',
    'DataIndexResolver',
    'LayerDataStore',
    'LayerLoadError',
    'MalformedDataIndexError',
    'ResolvedLayer',
    'StatisticBundle',
    # Color schemes
    'NO_COLOR',
    'NO_DATA_FILL_COLOR',
    'PIN_COLORS',
    'ContinuousColorRule',
    'DiscreteColorRule',
    'build_color_rule',
    'map_value_to_color',
    # Time cursor
    'PlaybackStatus',
    'TimeCursor',
    'TimeCursorController',
    'build_timestamp_sequence',
    # Feature styles
    'FeatureStyle',
    'FeatureStyleCoordinator',
    'Selection',
    # Sync protocol
    'EventKind',
    'StateSlice',
    'WidgetEvent',
    # Plugins
    'PluginDefinition',
    'PluginRegistry',
    'UnknownPluginError',
    'create_plugin_registry',
    # Controller
    'DashboardState',
    'OverlayController',
]
