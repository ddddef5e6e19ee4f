"""
Map view: base tiles, one GeoJSON overlay per loaded layer, click routing.

The view holds no state of its own. Each pushed config carries every layer's
geometry, per-feature Leaflet styles and draw order; clicks go back to the
controller as FEATURE_CLICKED events.
"""
import logging
import math
from typing import Callable, Dict, Mapping, Sequence, Tuple

from ipyleaflet import GeoJSON, LayersControl, Map, TileLayer, WidgetControl, ZoomControl, basemaps
from ipywidgets import Layout, ToggleButtons

from ..utils.sync import EventKind, thaw

logger = logging.getLogger(__name__)

# Base layer name -> tile provider
BASEMAP_PROVIDERS = {
    'Grayscale': basemaps.CartoDB.Positron,
    'Streets': basemaps.OpenStreetMap.Mapnik,
    'Satellite': basemaps.Esri.WorldImagery,
}

HOVER_STYLE = {'fillOpacity': 0.9}

# Assumed map viewport width when choosing a zoom level for a bounding box
MAP_VIEWPORT_PX = 800
TILE_SIZE_PX = 256
MAX_ZOOM = 18


def view_for_bounds(bounds) -> Tuple[Tuple[float, float], int]:
    """
    Center and zoom that fit ((south, west), (north, east)) in the viewport.

    Latitude span counts double since Web Mercator stretches it at these
    latitudes; a degenerate box gets MAX_ZOOM.
    """
    (south, west), (north, east) = bounds
    center = ((south + north) / 2.0, (west + east) / 2.0)
    span = max(east - west, 2.0 * (north - south))
    if span <= 0:
        return center, MAX_ZOOM
    zoom = math.floor(math.log2(MAP_VIEWPORT_PX * 360.0 / (TILE_SIZE_PX * span)))
    return center, int(min(max(zoom, 0), MAX_ZOOM))


def styled_feature_collection(geojson: Mapping, styles: Mapping, order: Sequence[str]) -> dict:
    """
    Plain FeatureCollection in draw order with properties.style set per feature.

    Features not listed in `order` (no properties.id) are left out since
    they can't be styled or clicked.
    """
    by_id = {}
    for feature in geojson.get('features') or []:
        feature_id = (feature.get('properties') or {}).get('id')
        if feature_id is not None:
            by_id[str(feature_id)] = feature

    features = []
    for feature_id in order:
        feature = by_id.get(feature_id)
        if feature is None:
            continue
        plain = thaw(feature)
        plain.setdefault('properties', {})
        plain['properties']['style'] = dict(styles.get(feature_id, {}))
        features.append(plain)
    return {'type': 'FeatureCollection', 'features': features}


def create_base_layer(name: str) -> TileLayer:
    # Use build_url() to resolve placeholders like {s}, {variant}
    provider = BASEMAP_PROVIDERS[name]
    return TileLayer(
        url=provider.build_url(),
        name=name,
        attribution=provider.get('attribution', ''),
        base=True,
    )


class OverlayMapView:
    """
    ipyleaflet map driven by the controller's map config.

    Args:
        base_layers: Base layer names; the first is shown initially
        center: Initial (lat, lon)
        zoom: Initial zoom level
        emit: Event sink (FEATURE_CLICKED)
    """

    def __init__(self, base_layers: Sequence[str], center, zoom: int, emit: Callable):
        self.emit = emit
        self._base_tiles = {name: create_base_layer(name) for name in base_layers}
        self._active_base = self._base_tiles[base_layers[0]]
        self._overlays: Dict[str, GeoJSON] = {}
        self._rendered: Dict[str, tuple] = {}
        self._fitted_bounds = None

        self.map = Map(
            center=tuple(center),
            zoom=zoom,
            scroll_wheel_zoom=True,
            zoom_control=False,
            layers=(self._active_base,),
            layout=Layout(width='100%', height='100%'),
        )
        self.map.add(ZoomControl(position='topleft'))
        self.map.add(LayersControl(position='topright'))

        # Base layer switcher (only when there is a choice)
        if len(self._base_tiles) > 1:
            self.base_selector = ToggleButtons(options=list(self._base_tiles), value=base_layers[0])
            self.base_selector.observe(self._on_base_layer_change, names='value')
            self.map.add(WidgetControl(widget=self.base_selector, position='topright'))
        else:
            self.base_selector = None

    def add_control(self, control: WidgetControl) -> None:
        self.map.add(control)

    def _on_base_layer_change(self, change) -> None:
        new_tiles = self._base_tiles[change['new']]
        old_tiles = self._active_base
        self.map.layers = (new_tiles,) + tuple(layer for layer in self.map.layers if layer is not old_tiles)
        self._active_base = new_tiles
        logger.info(f"Base layer switched to {change['new']}")

    def _make_click_handler(self, layer_name: str):
        # Factory function to capture layer name by value
        def on_click_callback(**kwargs):
            properties = kwargs.get('properties') or (kwargs.get('feature') or {}).get('properties') or {}
            feature_id = properties.get('id')
            if feature_id is None:
                return
            logger.info(f"Feature clicked: {layer_name}/{feature_id}")
            self.emit(EventKind.FEATURE_CLICKED, layer=layer_name, id=str(feature_id))
        return on_click_callback

    def update(self, config: Mapping) -> None:
        """Apply a map config: add/restyle/remove overlays, fit new bounds."""
        seen = set()
        for entry in config['layers']:
            name = entry['name']
            seen.add(name)
            rendered = (id(entry['geojson']), entry['styles'], entry['order'])
            if self._rendered.get(name) == rendered:
                continue

            data = styled_feature_collection(entry['geojson'], entry['styles'], entry['order'])
            overlay = self._overlays.get(name)
            if overlay is None:
                overlay = GeoJSON(data=data, name=name, hover_style=HOVER_STYLE)
                overlay.on_click(self._make_click_handler(name))
                self.map.add(overlay)
                self._overlays[name] = overlay
            else:
                overlay.data = data
            self._rendered[name] = rendered

        for name in [n for n in self._overlays if n not in seen]:
            self.map.remove(self._overlays.pop(name))
            self._rendered.pop(name, None)

        bounds = config.get('bounds')
        if bounds and bounds != self._fitted_bounds:
            center, zoom = view_for_bounds(bounds)
            self.map.center = center
            self.map.zoom = zoom
            self._fitted_bounds = bounds


def create_map_view(config) -> Callable[[Callable], OverlayMapView]:
    """Factory for controller.mount_map: emit -> OverlayMapView."""
    def factory(emit: Callable) -> OverlayMapView:
        return OverlayMapView(config.base_layers, config.center, config.zoom, emit)
    return factory
