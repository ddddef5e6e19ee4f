"""
Selection state and per-feature styling across all overlay layers.

Two inputs drive feature styles:
- Time cursor: fill color = the layer's color rule applied to the feature's
  'average' at the cursor. Features with no statistic at the cursor, or a
  value no bucket covers, get NO_DATA_FILL_COLOR.
- Selection: the single selected (layer, feature) gets the highlight border
  and opacity and is drawn last; every other feature gets the default outline.

Recomputation is synchronous and touches every feature of every layer.
"""
import logging
from dataclasses import dataclass
from types import MappingProxyType
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

from .color_schemes import (
    DEFAULT_BORDER_COLOR,
    DEFAULT_FILL_OPACITY,
    DEFAULT_WEIGHT,
    HIGHLIGHT_BORDER_COLOR,
    HIGHLIGHT_FILL_OPACITY,
    HIGHLIGHT_WEIGHT,
    NO_DATA_FILL_COLOR,
    map_value_to_color,
)
from .time_cursor import TimeCursor

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Selection:
    layer: str
    feature_id: str


@dataclass(frozen=True)
class FeatureStyle:
    fill_color: str = NO_DATA_FILL_COLOR
    border_color: str = DEFAULT_BORDER_COLOR
    fill_opacity: float = DEFAULT_FILL_OPACITY
    weight: int = DEFAULT_WEIGHT
    has_data: bool = False
    highlighted: bool = False

    def to_leaflet(self) -> dict:
        """Leaflet path style options."""
        return {
            'color': self.border_color,
            'fillColor': self.fill_color,
            'fillOpacity': self.fill_opacity,
            'weight': self.weight,
            'opacity': 1.0,
        }


class FeatureStyleCoordinator:
    """
    Keeps a style for every feature of every loaded layer.

    Usage:
        coordinator.set_layers(resolved_layers)
        coordinator.on_time_change(cursor)
        coordinator.on_feature_click(Selection('Sites', 'f2'))
    """

    def __init__(self):
        self._layers = {}
        self._fills: Dict[str, Dict[str, Tuple[str, bool]]] = {}
        self._styles: Dict[str, Mapping[str, FeatureStyle]] = {}
        self.selection: Optional[Selection] = None
        self.cursor: Optional[TimeCursor] = None

    def set_layers(self, resolved_layers: Iterable) -> None:
        """Replace the layer set; every feature starts with the no-data fill."""
        self._layers = {resolved.name: resolved for resolved in resolved_layers}
        self._fills = {
            name: {fid: (NO_DATA_FILL_COLOR, False) for fid in resolved.feature_ids}
            for name, resolved in self._layers.items()
        }
        if self.selection is not None and not self._is_known(self.selection):
            self.selection = None
        self._rebuild_styles()

    def on_time_change(self, cursor: Optional[TimeCursor]) -> None:
        """Recompute every feature's fill for the cursor."""
        self.cursor = cursor
        for name, resolved in self._layers.items():
            fills = self._fills[name]
            for feature_id in resolved.feature_ids:
                fills[feature_id] = self._fill_for(resolved, feature_id, cursor)
        self._rebuild_styles()

    def on_feature_click(self, selection: Optional[Selection]) -> None:
        """Make `selection` the only highlighted feature (None clears)."""
        if selection is not None and not self._is_known(selection):
            logger.warning(f"Ignoring selection of unknown feature {selection}")
            return
        self.selection = selection
        self._rebuild_styles()

    def value_at(self, layer: str, feature_id: str, cursor: Optional[TimeCursor] = None) -> Optional[float]:
        """The coloring statistic ('average') of a feature at the cursor."""
        resolved = self._layers.get(layer)
        cursor = cursor or self.cursor
        if resolved is None or cursor is None:
            return None
        bundle = resolved.data.bundle(feature_id, cursor.year, cursor.timestamp)
        return bundle.average if bundle is not None else None

    def _fill_for(self, resolved, feature_id: str, cursor: Optional[TimeCursor]) -> Tuple[str, bool]:
        if cursor is None:
            return NO_DATA_FILL_COLOR, False
        bundle = resolved.data.bundle(feature_id, cursor.year, cursor.timestamp)
        if bundle is None:
            return NO_DATA_FILL_COLOR, False
        color = map_value_to_color(resolved.layer.color_rule, bundle.average)
        if color is None:
            return NO_DATA_FILL_COLOR, False
        return color, True

    def _is_known(self, selection: Selection) -> bool:
        return selection.feature_id in self._fills.get(selection.layer, {})

    def _rebuild_styles(self) -> None:
        styles = {}
        for name, fills in self._fills.items():
            layer_styles = {}
            for feature_id, (fill_color, has_data) in fills.items():
                if self.selection == Selection(name, feature_id):
                    layer_styles[feature_id] = FeatureStyle(
                        fill_color=fill_color,
                        border_color=HIGHLIGHT_BORDER_COLOR,
                        fill_opacity=HIGHLIGHT_FILL_OPACITY,
                        weight=HIGHLIGHT_WEIGHT,
                        has_data=has_data,
                        highlighted=True,
                    )
                else:
                    layer_styles[feature_id] = FeatureStyle(fill_color=fill_color, has_data=has_data)
            styles[name] = MappingProxyType(layer_styles)
        self._styles = styles

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------

    def layer_styles(self, layer: str) -> Mapping[str, FeatureStyle]:
        return self._styles.get(layer, MappingProxyType({}))

    def style_for(self, layer: str, feature_id: str) -> Optional[FeatureStyle]:
        return self.layer_styles(layer).get(str(feature_id))

    def draw_order(self, layer: str) -> Tuple[str, ...]:
        """Feature ids in drawing order; the selected feature is drawn last (on top)."""
        resolved = self._layers.get(layer)
        if resolved is None:
            return ()
        order = list(resolved.feature_ids)
        if self.selection is not None and self.selection.layer == layer and self.selection.feature_id in order:
            order.remove(self.selection.feature_id)
            order.append(self.selection.feature_id)
        return tuple(order)

    def highlighted(self) -> List[Selection]:
        return [
            Selection(name, feature_id)
            for name, layer_styles in self._styles.items()
            for feature_id, style in layer_styles.items()
            if style.highlighted
        ]
