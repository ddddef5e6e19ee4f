"""
Color rules for overlay layers.

Two kinds of rule map a layer statistic to a fill color:
- Discrete: ordered [min, max, color, label] buckets, matched with
  ``min < value <= max``. The first matching bucket wins, so overlapping
  buckets resolve by list order.
- Continuous: sorted (value, color) control points, interpolated channel-wise
  with branca's LinearColormap and clamped to the end colors.

Mapping never raises for missing or out-of-range values. It returns NO_COLOR
and the caller picks a fallback style.
"""
import colorsys
import logging
import re
from dataclasses import dataclass
from functools import cached_property
from typing import Optional, Sequence, Tuple, Union

import pandas as pd
from branca.colormap import LinearColormap, linear

logger = logging.getLogger(__name__)

# Sentinel returned when no color applies
NO_COLOR = None

# =============================================================================
# Feature styling colors (Leaflet path defaults for the unselected state)
# =============================================================================
DEFAULT_BORDER_COLOR = '#3388ff'
HIGHLIGHT_BORDER_COLOR = '#ff0000'
NO_DATA_FILL_COLOR = '#d9d9d9'

DEFAULT_FILL_OPACITY = 0.5
HIGHLIGHT_FILL_OPACITY = 0.8
DEFAULT_WEIGHT = 2
HIGHLIGHT_WEIGHT = 3

# Pin colors for the comparison panel (cycled in pin order)
PIN_COLORS = [
    '#e6194b',  # Red
    '#3cb44b',  # Green
    '#4363d8',  # Blue
    '#f58231',  # Orange
    '#911eb4',  # Purple
    '#42d4f4',  # Cyan
    '#f032e6',  # Magenta
    '#9a6324',  # Brown
]

# Short scheme names accepted in layer configs -> branca linear colormaps
NAMED_SCHEMES = {
    'blues': 'Blues_09',
    'greens': 'Greens_09',
    'reds': 'Reds_09',
    'oranges': 'Oranges_09',
    'purples': 'Purples_09',
    'greys': 'Greys_09',
    'viridis': 'viridis',
    'ylorrd': 'YlOrRd_09',
    'ylgnbu': 'YlGnBu_09',
}

_HSL_PATTERN = re.compile(
    r'^hsla?\(\s*([\d.]+)\s*,\s*([\d.]+)%\s*,\s*([\d.]+)%\s*(?:,\s*([\d.]+)(%?)\s*)?\)$'
)

RGBA = Tuple[float, float, float, float]


class ColorRuleError(ValueError):
    """Raised when a color rule cannot be built from layer configuration."""


def parse_color(color: Union[str, Sequence[float]]) -> RGBA:
    """
    Parse a color into an RGBA float tuple (each channel 0-1).

    Accepts '#rrggbb' / '#rrggbbaa', CSS hsl()/hsla() strings, CSS color names
    known to branca, and 3/4-tuples (0-1 floats or 0-255 ints).

    Raises:
        ColorRuleError: If the color cannot be parsed
    """
    if isinstance(color, str):
        match = _HSL_PATTERN.match(color.strip().lower())
        if match:
            hue, saturation, lightness, alpha, alpha_pct = match.groups()
            r, g, b = colorsys.hls_to_rgb(
                float(hue) % 360 / 360.0,
                float(lightness) / 100.0,
                float(saturation) / 100.0,
            )
            a = 1.0
            if alpha is not None:
                a = float(alpha) / 100.0 if alpha_pct else float(alpha)
            return (r, g, b, min(max(a, 0.0), 1.0))

    # Everything else goes through branca's parser
    try:
        return tuple(LinearColormap([color, color]).colors[0])
    except (ValueError, TypeError, KeyError) as e:
        raise ColorRuleError(f"Unrecognized color: {color!r}") from e


def rgba_to_hex(rgba: RGBA) -> str:
    """Convert an RGBA float tuple to '#rrggbb', or '#rrggbbaa' when translucent."""
    channels = [int(round(min(max(c, 0.0), 1.0) * 255)) for c in rgba]
    if channels[3] >= 255:
        return '#{:02x}{:02x}{:02x}'.format(*channels[:3])
    return '#{:02x}{:02x}{:02x}{:02x}'.format(*channels)


def _format_bound(value: float) -> str:
    """Format a bucket bound the way it was written ('50', not '50.0')."""
    return f"{value:g}"


def _as_number(value) -> Optional[float]:
    """Coerce a statistic to float, or None if missing/non-numeric."""
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if pd.isna(number):
        return None
    return number


# =============================================================================
# Color rules
# =============================================================================

@dataclass(frozen=True)
class ColorBucket:
    """One half-open (min, max] bucket of a discrete color rule."""
    min: float
    max: float
    color: str
    label: Optional[str] = None

    def contains(self, value: float) -> bool:
        return value > self.min and value <= self.max

    @property
    def display_label(self) -> str:
        return self.label or f"{_format_bound(self.min)} to {_format_bound(self.max)}"


@dataclass(frozen=True)
class DiscreteColorRule:
    """Ordered buckets; the first bucket containing the value wins."""
    buckets: Tuple[ColorBucket, ...]

    continuous = False

    def bucket_index(self, value) -> Optional[int]:
        """Index of the first bucket containing value, or None."""
        number = _as_number(value)
        if number is None:
            return None
        for index, bucket in enumerate(self.buckets):
            if bucket.contains(number):
                return index
        return None

    def color_for(self, value) -> Optional[str]:
        index = self.bucket_index(value)
        if index is None:
            return NO_COLOR
        return self.buckets[index].color


@dataclass(frozen=True)
class ContinuousColorRule:
    """
    Sorted (value, color) control points.

    Values between two points are interpolated channel-wise; values outside
    the first/last point clamp to the end colors.
    """
    points: Tuple[Tuple[float, str], ...]

    continuous = True

    def __post_init__(self):
        if not self.points:
            raise ColorRuleError("A continuous color rule needs at least one control point")
        ordered = tuple(sorted(((float(v), c) for v, c in self.points), key=lambda p: p[0]))
        object.__setattr__(self, 'points', ordered)
        # Fail fast on colors branca can't read
        for _, color in ordered:
            parse_color(color)

    @cached_property
    def _colormap(self) -> Optional[LinearColormap]:
        if len(self.points) < 2:
            return None
        values = [v for v, _ in self.points]
        colors = [parse_color(c) for _, c in self.points]
        return LinearColormap(colors, index=values, vmin=values[0], vmax=values[-1])

    @property
    def min_value(self) -> float:
        return self.points[0][0]

    @property
    def max_value(self) -> float:
        return self.points[-1][0]

    def rgba_for(self, value) -> Optional[RGBA]:
        number = _as_number(value)
        if number is None:
            return None
        if self._colormap is None:
            return parse_color(self.points[0][1])
        return tuple(self._colormap.rgba_floats_tuple(number))

    def color_for(self, value) -> Optional[str]:
        rgba = self.rgba_for(value)
        if rgba is None:
            return NO_COLOR
        return rgba_to_hex(rgba)


ColorRule = Union[DiscreteColorRule, ContinuousColorRule]


def map_value_to_color(rule: Optional[ColorRule], value) -> Optional[str]:
    """
    Map a statistic to a display color.

    Args:
        rule: The layer's color rule (None means the layer has no rule)
        value: Scalar statistic, may be None/NaN

    Returns:
        Color string, or NO_COLOR if the rule is missing or doesn't cover value
    """
    if rule is None:
        return NO_COLOR
    return rule.color_for(value)


# =============================================================================
# Building rules from layer / legend configuration
# =============================================================================

def build_discrete_rule(color_map: Sequence[Sequence]) -> DiscreteColorRule:
    """Build a discrete rule from [[min, max, color, label?], ...]."""
    buckets = []
    for position, entry in enumerate(color_map):
        if not isinstance(entry, (list, tuple)) or len(entry) not in (3, 4):
            raise ColorRuleError(
                f"colorMap entry {position} must be [min, max, color] or [min, max, color, label], got {entry!r}"
            )
        try:
            low, high = float(entry[0]), float(entry[1])
        except (TypeError, ValueError) as e:
            raise ColorRuleError(f"colorMap entry {position} has non-numeric bounds: {entry!r}") from e
        label = entry[3] if len(entry) == 4 else None
        buckets.append(ColorBucket(low, high, str(entry[2]), label))
    return DiscreteColorRule(tuple(buckets))


def build_scheme_rule(scheme: str, thresholds=None) -> ContinuousColorRule:
    """Spread a named branca linear scheme over the threshold range."""
    name = NAMED_SCHEMES.get(scheme.lower(), scheme)
    try:
        colormap = getattr(linear, name)
    except AttributeError as e:
        raise ColorRuleError(f"Unknown color scheme: {scheme!r}") from e

    if thresholds is None:
        low, high = 0.0, 1.0
    elif isinstance(thresholds, (int, float)):
        low, high = 0.0, float(thresholds)
    else:
        values = [float(t) for t in thresholds]
        low, high = min(values), max(values)

    if low < high:
        colormap = colormap.scale(low, high)
    points = tuple((float(v), rgba_to_hex(c)) for v, c in zip(colormap.index, colormap.colors))
    return ContinuousColorRule(points)


def build_color_rule(options: dict) -> Optional[ColorRule]:
    """
    Build a color rule from a layer (or legend) config dict.

    Precedence: colorMap, valueColorPairs, colors, colorRange, colorScheme.
    Returns None when the config carries no color information.

    Raises:
        ColorRuleError: If the color information is malformed
    """
    if options.get('colorMap'):
        return build_discrete_rule(options['colorMap'])

    if options.get('valueColorPairs'):
        pairs = options['valueColorPairs']
        try:
            return ContinuousColorRule(tuple((float(v), str(c)) for v, c in pairs))
        except ColorRuleError:
            raise
        except (TypeError, ValueError) as e:
            raise ColorRuleError(f"valueColorPairs must be [[value, color], ...], got {pairs!r}") from e

    if options.get('colors'):
        colors = options['colors']
        try:
            points = tuple((float(v), str(c)) for v, c in colors.items())
        except (AttributeError, TypeError, ValueError) as e:
            raise ColorRuleError(f"colors must map value -> color, got {colors!r}") from e
        return ContinuousColorRule(points)

    if options.get('colorRange'):
        low_color, high_color = options['colorRange']
        thresholds = options.get('thresholds')
        if isinstance(thresholds, (list, tuple)) and thresholds:
            low, high = float(min(thresholds)), float(max(thresholds))
        else:
            low, high = 0.0, float(thresholds) if thresholds else 1.0
        return ContinuousColorRule(((low, low_color), (high, high_color)))

    if options.get('colorScheme'):
        return build_scheme_rule(options['colorScheme'], options.get('thresholds'))

    return None
