"""
Data index resolution and per-layer data stores.

Each geographic overlay layer is described by a data index document:

    {
        "geoJSONUrl": "catchment.geojson",
        "dataUrlTemplate": "data/{VARIABLE}/{GRANULARITY}/{ID}.json",
        "metadataUrlTemplate": "metadata/{ID}.json",
        "minLatitude": ..., "maxLatitude": ..., "minLongitude": ..., "maxLongitude": ...
    }

URLs inside the index are relative to the directory of the index itself.
Resolution runs sequentially within a layer; layers resolve concurrently
and are joined before the dataset is considered loaded.

Failure policy:
- Index or geometry fetch fails: the layer is dropped (logged), siblings continue
- A feature's data/metadata fetch fails: that feature is absent ("no data")
"""
import asyncio
import logging
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

import httpx

from .config import OverlayLayer
from .sync import freeze

logger = logging.getLogger(__name__)

VARIABLE_PLACEHOLDER = '{VARIABLE}'
GRANULARITY_PLACEHOLDER = '{GRANULARITY}'
ID_PLACEHOLDER = '{ID}'


class LayerLoadError(RuntimeError):
    """A layer's index or geometry could not be fetched."""

    def __init__(self, layer_name: str, message: str):
        super().__init__(f"Layer '{layer_name}': {message}")
        self.layer_name = layer_name


class MalformedDataIndexError(LayerLoadError):
    """The data index document is missing required fields."""


# =============================================================================
# Statistics and the layer data store
# =============================================================================

def _optional_float(value) -> Optional[float]:
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


@dataclass(frozen=True)
class StatisticBundle:
    """Statistics of one feature at one (year, timestamp)."""
    total: Optional[float] = None
    min: Optional[float] = None
    max: Optional[float] = None
    average: Optional[float] = None
    values: Tuple[float, ...] = ()

    @classmethod
    def from_dict(cls, raw: Mapping) -> 'StatisticBundle':
        values = raw.get('value', raw.get('values')) or ()
        if not isinstance(values, (list, tuple)):
            values = (values,)
        return cls(
            total=_optional_float(raw.get('total')),
            min=_optional_float(raw.get('min')),
            max=_optional_float(raw.get('max')),
            average=_optional_float(raw.get('average')),
            values=tuple(v for v in (_optional_float(x) for x in values) if v is not None),
        )


TimeSeries = Mapping[str, Mapping[str, StatisticBundle]]


def parse_time_series(document: Any) -> TimeSeries:
    """
    Parse a per-feature data document into year -> timestamp -> bundle.

    Accepts the bare mapping or one wrapped as {"data": {...}}. Malformed
    years/timestamps are skipped. Insertion order is preserved.
    """
    if isinstance(document, Mapping) and isinstance(document.get('data'), Mapping):
        document = document['data']
    if not isinstance(document, Mapping):
        raise ValueError(f"Expected a year -> timestamp mapping, got {type(document).__name__}")

    years = {}
    for year, stamps in document.items():
        if not isinstance(stamps, Mapping):
            logger.debug(f"Skipping year {year!r}: not a mapping")
            continue
        bundles = {}
        for timestamp, stats in stamps.items():
            if isinstance(stats, Mapping):
                bundles[str(timestamp)] = StatisticBundle.from_dict(stats)
        years[str(year)] = MappingProxyType(bundles)
    return MappingProxyType(years)


class LayerDataStore:
    """
    In-memory map from feature id to its time series.

    Filled incrementally while a layer resolves. Lookups for a feature that
    isn't loaded (yet) return None rather than raising.
    """

    def __init__(self):
        self._series: Dict[str, TimeSeries] = {}
        self._snapshot: Optional[Mapping[str, TimeSeries]] = None

    def put(self, feature_id, series: TimeSeries) -> None:
        self._series[str(feature_id)] = series
        self._snapshot = None

    def get(self, feature_id) -> Optional[TimeSeries]:
        return self._series.get(str(feature_id))

    def bundle(self, feature_id, year: str, timestamp: str) -> Optional[StatisticBundle]:
        series = self._series.get(str(feature_id))
        if series is None:
            return None
        return series.get(str(year), {}).get(str(timestamp))

    def __contains__(self, feature_id) -> bool:
        return str(feature_id) in self._series

    def __len__(self) -> int:
        return len(self._series)

    def feature_ids(self) -> List[str]:
        return list(self._series)

    def snapshot(self) -> Mapping[str, TimeSeries]:
        """Read-only view handed to widgets (rebuilt only after a put)."""
        if self._snapshot is None:
            self._snapshot = MappingProxyType(dict(self._series))
        return self._snapshot

    def timestamps_for_year(self, year: str, feature_order: Optional[Iterable[str]] = None) -> List[str]:
        """
        Timestamp keys for a year, taken from the first feature that has it.

        Args:
            year: Year key
            feature_order: Feature ids to try in order (defaults to insertion order)
        """
        for feature_id in feature_order if feature_order is not None else self._series:
            series = self._series.get(str(feature_id))
            if series and str(year) in series:
                return list(series[str(year)])
        return []

    def series_points(
        self,
        feature_id,
        years: Sequence[str],
        statistic: str = 'average',
    ) -> Tuple[Tuple[str, str, Optional[float]], ...]:
        """(year, timestamp, value) points for a feature over the given years."""
        series = self._series.get(str(feature_id))
        if series is None:
            return ()
        points = []
        for year in years:
            for timestamp, bundle in series.get(str(year), {}).items():
                points.append((str(year), timestamp, getattr(bundle, statistic, None)))
        return tuple(points)


# =============================================================================
# Data index
# =============================================================================

@dataclass(frozen=True)
class DataIndex:
    geojson_url: str
    data_url_template: str
    metadata_url_template: str
    matrix_data_url: Optional[str] = None
    bounds: Optional[Tuple[Tuple[float, float], Tuple[float, float]]] = None

    @classmethod
    def from_dict(cls, raw: Any, layer_name: str = '') -> 'DataIndex':
        """
        Parse a data index document.

        Raises:
            MalformedDataIndexError: If geometry URL or a template is missing
        """
        if not isinstance(raw, Mapping):
            raise MalformedDataIndexError(layer_name, "data index is not a JSON object")
        missing = [key for key in ('geoJSONUrl', 'dataUrlTemplate', 'metadataUrlTemplate') if not raw.get(key)]
        if missing:
            raise MalformedDataIndexError(layer_name, f"data index is missing {', '.join(missing)}")

        bounds = None
        corners = [raw.get(key) for key in ('minLatitude', 'minLongitude', 'maxLatitude', 'maxLongitude')]
        if all(value is not None for value in corners):
            try:
                min_lat, min_lon, max_lat, max_lon = (float(value) for value in corners)
                bounds = ((min_lat, min_lon), (max_lat, max_lon))
            except (TypeError, ValueError):
                logger.warning(f"Layer '{layer_name}': ignoring non-numeric bounding box")

        return cls(
            geojson_url=raw['geoJSONUrl'],
            data_url_template=raw['dataUrlTemplate'],
            metadata_url_template=raw['metadataUrlTemplate'],
            matrix_data_url=raw.get('matrixDataUrl'),
            bounds=bounds,
        )

    def data_url(self, variable: Optional[str], granularity: str, feature_id) -> str:
        return (
            self.data_url_template
            .replace(VARIABLE_PLACEHOLDER, variable or '')
            .replace(GRANULARITY_PLACEHOLDER, granularity)
            .replace(ID_PLACEHOLDER, str(feature_id))
        )

    def metadata_url(self, feature_id) -> str:
        return self.metadata_url_template.replace(ID_PLACEHOLDER, str(feature_id))


def index_directory(data_index_url: str) -> str:
    """Directory of an index URL: every path segment except the last, with a trailing slash."""
    parts = data_index_url.split('/')[:-1]
    if not parts:
        return ''
    return '/'.join(parts) + '/'


def feature_ids_from_geojson(geojson: Mapping, layer_name: str = '') -> List[str]:
    """Ordered feature ids from properties.id; features without one are skipped."""
    ids = []
    for position, feature in enumerate(geojson.get('features') or []):
        feature_id = (feature.get('properties') or {}).get('id')
        if feature_id is None:
            logger.warning(f"Layer '{layer_name}': feature {position} has no properties.id, skipping")
            continue
        ids.append(str(feature_id))
    return ids


@dataclass
class ResolvedLayer:
    """Everything fetched for one overlay layer."""
    layer: OverlayLayer
    data_index: DataIndex
    geojson: Mapping
    feature_ids: List[str]
    data: LayerDataStore = field(default_factory=LayerDataStore)
    metadata: Dict[str, Mapping] = field(default_factory=dict)
    missing_data: List[str] = field(default_factory=list)

    @property
    def name(self) -> str:
        return self.layer.name


# =============================================================================
# Resolver
# =============================================================================

class DataIndexResolver:
    """
    Turns each layer's index URL into geometry, per-feature data and metadata.

    Args:
        file_api_path: Prefix joined to every relative URL
        client: Open httpx.AsyncClient used for all GETs
    """

    def __init__(self, file_api_path: str, client: httpx.AsyncClient):
        self.file_api_path = file_api_path
        self.client = client

    def resolve_url(self, relative_url: str) -> str:
        if relative_url.startswith(('http://', 'https://')):
            return relative_url
        return self.file_api_path + relative_url

    async def fetch_json(self, relative_url: str) -> Any:
        """GET a JSON document; raises httpx.HTTPError or ValueError."""
        response = await self.client.get(self.resolve_url(relative_url))
        response.raise_for_status()
        return response.json()

    async def fetch_data_index(self, layer: OverlayLayer) -> DataIndex:
        try:
            raw = await self.fetch_json(layer.data_index_url)
        except (httpx.HTTPError, ValueError) as e:
            raise LayerLoadError(layer.name, f"data index fetch failed: {e}") from e
        return DataIndex.from_dict(raw, layer.name)

    async def resolve_layer(self, layer: OverlayLayer) -> ResolvedLayer:
        """
        Resolve one layer.

        Raises:
            LayerLoadError: If the index or geometry can't be fetched
        """
        data_index = await self.fetch_data_index(layer)
        directory = index_directory(layer.data_index_url)

        try:
            geojson = await self.fetch_json(directory + data_index.geojson_url)
        except (httpx.HTTPError, ValueError) as e:
            raise LayerLoadError(layer.name, f"geometry fetch failed: {e}") from e
        if not isinstance(geojson, Mapping) or 'features' not in geojson:
            raise LayerLoadError(layer.name, "geometry is not a feature collection")

        resolved = ResolvedLayer(
            layer=layer,
            data_index=data_index,
            geojson=freeze(geojson),
            feature_ids=feature_ids_from_geojson(geojson, layer.name),
        )

        for feature_id in resolved.feature_ids:
            data_url = directory + data_index.data_url(layer.variable, layer.granularity, feature_id)
            try:
                resolved.data.put(feature_id, parse_time_series(await self.fetch_json(data_url)))
            except (httpx.HTTPError, ValueError) as e:
                logger.warning(f"Layer '{layer.name}': no data for feature {feature_id}: {e}")
                resolved.missing_data.append(feature_id)

            metadata_url = directory + data_index.metadata_url(feature_id)
            try:
                resolved.metadata[feature_id] = freeze(await self.fetch_json(metadata_url))
            except (httpx.HTTPError, ValueError) as e:
                logger.warning(f"Layer '{layer.name}': no metadata for feature {feature_id}: {e}")

        logger.info(
            f"Layer '{layer.name}': loaded {len(resolved.data)}/{len(resolved.feature_ids)} features"
        )
        return resolved

    async def _resolve_or_skip(self, layer: OverlayLayer) -> Optional[ResolvedLayer]:
        try:
            return await self.resolve_layer(layer)
        except LayerLoadError as e:
            logger.error(f"{e} - layer omitted")
            return None

    async def load_layers(self, layers: Iterable[OverlayLayer]) -> List[ResolvedLayer]:
        """
        Resolve all geographic layers concurrently and wait for every one.

        Matrix layers are skipped. Failed layers are omitted; the result keeps
        configuration order.
        """
        shape_layers = []
        for layer in layers:
            if layer.is_matrix:
                logger.info(f"Layer '{layer.name}': matrix layers have no geometry, skipping resolution")
                continue
            shape_layers.append(layer)

        results = await asyncio.gather(*(self._resolve_or_skip(layer) for layer in shape_layers))
        return [resolved for resolved in results if resolved is not None]

    async def fetch_plugin_index(self, plugin_index_url: Optional[str]) -> Mapping:
        """Fetch the plugin index document; an unreachable index yields {}."""
        if not plugin_index_url:
            return {}
        try:
            raw = await self.fetch_json(plugin_index_url)
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"Plugin index unavailable ({e}); continuing without it")
            return {}
        if not isinstance(raw, Mapping):
            logger.warning("Plugin index is not a JSON object; ignoring it")
            return {}
        return raw
