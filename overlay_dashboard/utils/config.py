"""
Dashboard configuration: the top-level dataset descriptor.

Descriptor sources (in priority order):
1. Environment variable: OVERLAY_DASHBOARD_CONFIG_JSON (JSON string)
2. Environment variable: OVERLAY_DASHBOARD_CONFIG (file path)
3. Bundled file: overlay_dashboard/data/default_config.json

Other settings:
- OVERLAY_FILE_API_PATH: prefix every relative data URL is joined to
  (overrides serverFileAPIPath in the descriptor)
- OVERLAY_HTTP_TIMEOUT: seconds per HTTP request
"""
import os
import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping, Optional, Tuple

from .color_schemes import ColorRule, ColorRuleError, build_color_rule
from .sync import freeze

logger = logging.getLogger(__name__)

DEFAULT_FILE_API_PATH = 'http://localhost:5000/files/'
DEFAULT_CONFIG_PATH = Path(__file__).parent.parent / 'data' / 'default_config.json'
DEFAULT_HTTP_TIMEOUT = 10.0
DEFAULT_GRANULARITY = 'monthly'
DEFAULT_CENTER = (51.312588, -116.021118)
DEFAULT_ZOOM = 10

BASE_LAYER_NAMES = ('Grayscale', 'Streets', 'Satellite')
BASE_LAYER_ALIASES = {
    'Satelitte': 'Satellite',
}

LAYER_TYPES = ('shape', 'matrix')
MATRIX_PLOTS = ('scatter', 'contour')


class DashboardConfigError(ValueError):
    """Raised when the dataset descriptor is invalid."""


@dataclass(frozen=True)
class OverlayLayer:
    """One named statistical layer."""
    name: str
    data_index_url: Optional[str]
    variable: Optional[str] = None
    granularity: str = DEFAULT_GRANULARITY
    layer_type: str = 'shape'
    plot: Optional[str] = None
    color_rule: Optional[ColorRule] = None
    options: Mapping[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @property
    def is_matrix(self) -> bool:
        return self.layer_type == 'matrix'


@dataclass(frozen=True)
class PluginPlacement:
    """A plugin as placed in the descriptor: name, options, nested plugins."""
    name: str
    options: Mapping[str, Any] = field(default_factory=dict, compare=False)
    children: Tuple['PluginPlacement', ...] = ()


@dataclass(frozen=True)
class DashboardConfig:
    base_layers: Tuple[str, ...]
    overlay_layers: Tuple[OverlayLayer, ...]
    year_range: Tuple[int, int]
    plugins: Tuple[PluginPlacement, ...] = ()
    plugin_index_url: Optional[str] = None
    file_api_path: str = DEFAULT_FILE_API_PATH
    timeline_layer: Optional[str] = None
    initial_timestamp: Optional[Tuple[str, str]] = None
    center: Tuple[float, float] = DEFAULT_CENTER
    zoom: int = DEFAULT_ZOOM
    http_timeout: float = DEFAULT_HTTP_TIMEOUT

    @property
    def years(self) -> Tuple[str, ...]:
        start, end = self.year_range
        return tuple(str(year) for year in range(start, end + 1))

    def layer_by_name(self, name: str) -> Optional[OverlayLayer]:
        for layer in self.overlay_layers:
            if layer.name == name:
                return layer
        return None

    def timeline_layer_name(self) -> Optional[str]:
        """
        Name of the layer whose timestamps define the timeline.

        The descriptor's timelineLayer if set, else the first configured
        geographic layer.
        """
        if self.timeline_layer:
            return self.timeline_layer
        for layer in self.overlay_layers:
            if not layer.is_matrix:
                return layer.name
        return None

    def find_plugins(self, name: str) -> Tuple[PluginPlacement, ...]:
        """All top-level placements of a plugin, in descriptor order."""
        return tuple(p for p in self.plugins if p.name == name)


# =============================================================================
# Parsing
# =============================================================================

def _parse_overlay_layer(raw: Mapping, position: int) -> OverlayLayer:
    if not isinstance(raw, Mapping):
        raise DashboardConfigError(f"overlayLayers[{position}] must be an object")

    name = raw.get('name')
    if not name:
        raise DashboardConfigError(f"overlayLayers[{position}] is missing 'name'")

    layer_type = raw.get('type', 'shape')
    if layer_type not in LAYER_TYPES:
        raise DashboardConfigError(f"Layer '{name}': type must be one of {LAYER_TYPES}, got {layer_type!r}")

    plot = raw.get('plot')
    if plot is not None and plot not in MATRIX_PLOTS:
        raise DashboardConfigError(f"Layer '{name}': plot must be one of {MATRIX_PLOTS}, got {plot!r}")

    data_index_url = raw.get('dataIndexUrl')
    if layer_type == 'shape' and not data_index_url:
        raise DashboardConfigError(f"Layer '{name}' is missing 'dataIndexUrl'")

    try:
        color_rule = build_color_rule(raw)
    except ColorRuleError as e:
        raise DashboardConfigError(f"Layer '{name}': {e}") from e

    return OverlayLayer(
        name=str(name),
        data_index_url=data_index_url,
        variable=raw.get('variable'),
        granularity=raw.get('granularity', DEFAULT_GRANULARITY),
        layer_type=layer_type,
        plot=plot,
        color_rule=color_rule,
        options=freeze(dict(raw)),
    )


def parse_plugin_placement(raw: Mapping, path: str = 'plugins') -> PluginPlacement:
    """Parse one plugin entry (and its nested 'plugins') into a placement."""
    if not isinstance(raw, Mapping) or not raw.get('name'):
        raise DashboardConfigError(f"{path}: each plugin needs a 'name'")

    children_raw = raw.get('plugins') or []
    if not isinstance(children_raw, list):
        raise DashboardConfigError(f"{path}.plugins must be a list")
    children = tuple(
        parse_plugin_placement(child, f"{path}.plugins[{i}]")
        for i, child in enumerate(children_raw)
    )
    options = {key: value for key, value in raw.items() if key not in ('name', 'plugins')}
    return PluginPlacement(name=str(raw['name']), options=freeze(options), children=children)


def _parse_year_range(raw) -> Tuple[int, int]:
    try:
        start, end = (int(year) for year in raw)
    except (TypeError, ValueError) as e:
        raise DashboardConfigError(f"yearRange must be [startYear, endYear], got {raw!r}") from e
    if start > end:
        raise DashboardConfigError(f"yearRange start {start} is after end {end}")
    return start, end


def _parse_base_layers(raw) -> Tuple[str, ...]:
    names = []
    for name in raw or ['Grayscale']:
        canonical = BASE_LAYER_ALIASES.get(name, name)
        if canonical not in BASE_LAYER_NAMES:
            raise DashboardConfigError(f"Unknown base layer {name!r}; expected one of {BASE_LAYER_NAMES}")
        if canonical not in names:
            names.append(canonical)
    return tuple(names)


def _parse_initial_timestamp(raw) -> Optional[Tuple[str, str]]:
    if not raw:
        return None
    if isinstance(raw, Mapping) and 'year' in raw and 'timestamp' in raw:
        return str(raw['year']), str(raw['timestamp'])
    raise DashboardConfigError(f"initialTimestamp must be {{year, timestamp}}, got {raw!r}")


def parse_dashboard_config(raw: Mapping, file_api_path: Optional[str] = None) -> DashboardConfig:
    """
    Parse a dataset descriptor dict into a DashboardConfig.

    Args:
        raw: Decoded descriptor (camelCase keys as served to the dashboard)
        file_api_path: Override for the file-serving prefix

    Raises:
        DashboardConfigError: If any field is invalid
    """
    if not isinstance(raw, Mapping):
        raise DashboardConfigError("Dashboard config must be a JSON object")

    layers_raw = raw.get('overlayLayers') or []
    layers = tuple(_parse_overlay_layer(layer, i) for i, layer in enumerate(layers_raw))
    seen = set()
    for layer in layers:
        if layer.name in seen:
            raise DashboardConfigError(f"Duplicate overlay layer name {layer.name!r}")
        seen.add(layer.name)

    if 'yearRange' not in raw:
        raise DashboardConfigError("Dashboard config is missing 'yearRange'")

    timeline_layer = raw.get('timelineLayer')
    if timeline_layer is not None and timeline_layer not in seen:
        raise DashboardConfigError(f"timelineLayer {timeline_layer!r} does not name an overlay layer")

    center = raw.get('center', DEFAULT_CENTER)
    try:
        center = (float(center[0]), float(center[1]))
    except (TypeError, ValueError, IndexError) as e:
        raise DashboardConfigError(f"center must be [latitude, longitude], got {center!r}") from e

    plugins = tuple(
        parse_plugin_placement(plugin, f"plugins[{i}]")
        for i, plugin in enumerate(raw.get('plugins') or [])
    )

    return DashboardConfig(
        base_layers=_parse_base_layers(raw.get('baseLayers')),
        overlay_layers=layers,
        year_range=_parse_year_range(raw['yearRange']),
        plugins=plugins,
        plugin_index_url=raw.get('pluginIndexUrl'),
        file_api_path=file_api_path or raw.get('serverFileAPIPath') or DEFAULT_FILE_API_PATH,
        timeline_layer=timeline_layer,
        initial_timestamp=_parse_initial_timestamp(raw.get('initialTimestamp')),
        center=center,
        zoom=int(raw.get('zoom', DEFAULT_ZOOM)),
        http_timeout=get_http_timeout(),
    )


# =============================================================================
# Environment
# =============================================================================

def get_http_timeout() -> float:
    """Per-request timeout from OVERLAY_HTTP_TIMEOUT, else the default."""
    value = os.environ.get('OVERLAY_HTTP_TIMEOUT')
    if not value:
        return DEFAULT_HTTP_TIMEOUT
    try:
        timeout = float(value)
    except ValueError:
        logger.warning(f"Ignoring non-numeric OVERLAY_HTTP_TIMEOUT={value!r}")
        return DEFAULT_HTTP_TIMEOUT
    if timeout <= 0:
        logger.warning(f"Ignoring non-positive OVERLAY_HTTP_TIMEOUT={value!r}")
        return DEFAULT_HTTP_TIMEOUT
    return timeout


def read_config_source() -> dict:
    """
    Read the raw descriptor from the environment or the bundled default.

    Priority:
    1. OVERLAY_DASHBOARD_CONFIG_JSON env var (JSON string)
    2. OVERLAY_DASHBOARD_CONFIG env var (file path)
    3. Bundled default_config.json

    Raises:
        DashboardConfigError: If the chosen source can't be read or decoded
    """
    # Option 1: JSON string in environment variable
    json_config = os.environ.get('OVERLAY_DASHBOARD_CONFIG_JSON')
    if json_config:
        try:
            logger.info("Using dashboard config from OVERLAY_DASHBOARD_CONFIG_JSON env var")
            return json.loads(json_config)
        except json.JSONDecodeError as e:
            raise DashboardConfigError(f"OVERLAY_DASHBOARD_CONFIG_JSON is not valid JSON: {e}") from e

    # Option 2: File path in environment variable, else the bundled file
    config_path = os.environ.get('OVERLAY_DASHBOARD_CONFIG')
    if config_path:
        path = Path(config_path)
        logger.info(f"Using dashboard config from OVERLAY_DASHBOARD_CONFIG: {path}")
    else:
        path = DEFAULT_CONFIG_PATH
        logger.info(f"Using bundled dashboard config: {path}")

    if not path.exists():
        raise DashboardConfigError(f"Dashboard config not found: {path}")
    try:
        with open(path, 'r') as f:
            return json.load(f)
    except json.JSONDecodeError as e:
        raise DashboardConfigError(f"Dashboard config {path} is not valid JSON: {e}") from e


def load_dashboard_config(registry=None) -> DashboardConfig:
    """
    Load, parse and validate the dashboard config.

    Plugin names are checked against the registry here, so an unknown plugin
    fails at startup rather than at render time.
    """
    from .plugin_registry import create_plugin_registry

    raw = read_config_source()
    config = parse_dashboard_config(raw, file_api_path=os.environ.get('OVERLAY_FILE_API_PATH'))
    (registry or create_plugin_registry()).validate(config.plugins)
    logger.info(
        f"Loaded dashboard config: {len(config.overlay_layers)} overlay layer(s), "
        f"{len(config.plugins)} plugin(s), years {config.year_range[0]}-{config.year_range[1]}"
    )
    return config
