"""Tests for data index resolution and the layer data store."""
import asyncio
import logging

import pytest

from overlay_dashboard.utils.config import OverlayLayer
from overlay_dashboard.utils.data_loader import (
    DataIndex,
    DataIndexResolver,
    LayerDataStore,
    LayerLoadError,
    MalformedDataIndexError,
    StatisticBundle,
    feature_ids_from_geojson,
    index_directory,
    parse_time_series,
)

from conftest import FILE_API


def sites_layer(**overrides):
    fields = dict(name='Sites', data_index_url='public/data/sites/index.json', variable='na')
    fields.update(overrides)
    return OverlayLayer(**fields)


def rivers_layer():
    return OverlayLayer(name='Rivers', data_index_url='public/data/rivers/index.json', variable='dlayRunoff')


def resolve(client_factory, coroutine_fn):
    async def run():
        async with client_factory() as client:
            return await coroutine_fn(DataIndexResolver(FILE_API, client))
    return asyncio.run(run())


# ---------------------------------------------------------------------------
# Pure helpers
# ---------------------------------------------------------------------------

class TestIndexDirectory:
    def test_drops_last_segment(self):
        assert index_directory('public/data/sites/index.json') == 'public/data/sites/'

    def test_bare_file_name(self):
        assert index_directory('index.json') == ''


class TestDataIndex:
    def test_placeholders_substituted(self):
        index = DataIndex.from_dict({
            'geoJSONUrl': 'g.geojson',
            'dataUrlTemplate': 'data/{VARIABLE}/{GRANULARITY}/{ID}.json',
            'metadataUrlTemplate': 'meta/{ID}.json',
        })
        assert index.data_url('scalarSWE', 'monthly', 7) == 'data/scalarSWE/monthly/7.json'
        assert index.metadata_url('f1') == 'meta/f1.json'

    def test_bounds(self):
        index = DataIndex.from_dict({
            'geoJSONUrl': 'g', 'dataUrlTemplate': 'd', 'metadataUrlTemplate': 'm',
            'minLatitude': 1, 'maxLatitude': 2, 'minLongitude': 3, 'maxLongitude': 4,
        })
        assert index.bounds == ((1.0, 3.0), (2.0, 4.0))
        assert index.matrix_data_url is None

    def test_matrix_data_url(self):
        index = DataIndex.from_dict({
            'geoJSONUrl': 'g', 'dataUrlTemplate': 'd', 'metadataUrlTemplate': 'm',
            'matrixDataUrl': 'matrix/values.json',
        })
        assert index.matrix_data_url == 'matrix/values.json'
        assert index.bounds is None

    def test_missing_fields(self):
        with pytest.raises(MalformedDataIndexError, match='dataUrlTemplate'):
            DataIndex.from_dict({'geoJSONUrl': 'g', 'metadataUrlTemplate': 'm'}, 'Sites')

    def test_not_an_object(self):
        with pytest.raises(MalformedDataIndexError):
            DataIndex.from_dict(['nope'], 'Sites')

    def test_is_frozen(self):
        index = DataIndex('g', 'd', 'm')
        with pytest.raises(Exception):
            index.geojson_url = 'other'


class TestParsing:
    def test_time_series_unwraps_data(self):
        series = parse_time_series({'data': {'2010': {'0': {'average': 1.5}}}})
        assert series['2010']['0'].average == 1.5

    def test_time_series_keys_are_strings(self):
        series = parse_time_series({2010: {0: {'average': 1}}})
        assert '0' in series['2010']

    def test_time_series_rejects_non_mapping(self):
        with pytest.raises(ValueError):
            parse_time_series([1, 2, 3])

    def test_bundle_from_dict(self):
        bundle = StatisticBundle.from_dict({'total': 6, 'min': 1, 'max': 3, 'average': '2', 'value': [1, 2, 3]})
        assert bundle == StatisticBundle(6.0, 1.0, 3.0, 2.0, (1.0, 2.0, 3.0))

    def test_bundle_tolerates_missing_stats(self):
        bundle = StatisticBundle.from_dict({'average': None})
        assert bundle.average is None
        assert bundle.values == ()

    def test_feature_ids_skip_features_without_id(self, caplog):
        geojson = {'features': [{'properties': {'id': 1}}, {'properties': {}}, {'properties': {'id': 'x'}}]}
        with caplog.at_level(logging.WARNING):
            assert feature_ids_from_geojson(geojson, 'Sites') == ['1', 'x']
        assert 'no properties.id' in caplog.text


class TestLayerDataStore:
    @pytest.fixture
    def store(self):
        store = LayerDataStore()
        store.put('b', parse_time_series({'2011': {'3': {'average': 1}, '1': {'average': 2}}}))
        store.put('a', parse_time_series({'2010': {'0': {'average': 5}}, '2011': {'9': {'average': 6}}}))
        return store

    def test_lookup_of_absent_feature(self, store):
        assert store.get('zzz') is None
        assert store.bundle('zzz', '2010', '0') is None
        assert 'zzz' not in store

    def test_bundle(self, store):
        assert store.bundle('a', 2010, 0).average == 5

    def test_timestamps_from_first_feature_in_given_order(self, store):
        assert store.timestamps_for_year('2011', ['a', 'b']) == ['9']
        assert store.timestamps_for_year('2011', ['b', 'a']) == ['3', '1']
        assert store.timestamps_for_year('2011') == ['3', '1']

    def test_timestamps_skip_features_without_year(self, store):
        assert store.timestamps_for_year('2010', ['b', 'a']) == ['0']
        assert store.timestamps_for_year('1999') == []

    def test_snapshot_is_read_only(self, store):
        snapshot = store.snapshot()
        with pytest.raises(TypeError):
            snapshot['c'] = {}
        assert store.snapshot() is snapshot
        store.put('c', parse_time_series({}))
        assert 'c' in store.snapshot()

    def test_series_points(self, store):
        assert store.series_points('a', ['2010', '2011']) == (('2010', '0', 5.0), ('2011', '9', 6.0))
        assert store.series_points('a', ['2011'], statistic='total') == (('2011', '9', None),)
        assert store.series_points('zzz', ['2010']) == ()


# ---------------------------------------------------------------------------
# Resolver
# ---------------------------------------------------------------------------

class TestResolveLayer:
    """Index -> geometry -> per-feature data and metadata."""

    def test_resolves_features_in_geometry_order(self, client_factory):
        resolved = resolve(client_factory, lambda r: r.resolve_layer(sites_layer()))
        assert resolved.feature_ids == ['f1', 'f2', 'f3']
        assert resolved.data.bundle('f1', '2010', '1').average == 60
        assert resolved.data.bundle('f2', '2010', '0').average == 75

    def test_urls_relative_to_index_directory(self, client_factory):
        resolve(client_factory, lambda r: r.resolve_layer(sites_layer()))
        assert client_factory.requested[:4] == [
            'public/data/sites/index.json',
            'public/data/sites/geometry.geojson',
            'public/data/sites/data/na/monthly/f1.json',
            'public/data/sites/metadata/f1.json',
        ]

    def test_missing_feature_data_is_absent_not_fatal(self, client_factory):
        resolved = resolve(client_factory, lambda r: r.resolve_layer(sites_layer()))
        assert 'f3' not in resolved.data
        assert resolved.missing_data == ['f3']
        assert resolved.metadata['f3']['name'] == 'Site 3'

    def test_metadata_is_read_only(self, client_factory):
        resolved = resolve(client_factory, lambda r: r.resolve_layer(sites_layer()))
        with pytest.raises(TypeError):
            resolved.metadata['f1']['name'] = 'changed'

    def test_granularity_substituted(self, client_factory, dataset):
        dataset['public/data/sites/data/na/daily/f1.json'] = {'2010': {'0': {'average': 1}}}
        resolved = resolve(client_factory, lambda r: r.resolve_layer(sites_layer(granularity='daily')))
        assert list(resolved.data.feature_ids()) == ['f1']

    def test_index_failure_raises(self, client_factory, dataset):
        del dataset['public/data/sites/index.json']
        with pytest.raises(LayerLoadError, match='Sites'):
            resolve(client_factory, lambda r: r.resolve_layer(sites_layer()))

    def test_geometry_failure_raises(self, client_factory, dataset):
        del dataset['public/data/sites/geometry.geojson']
        with pytest.raises(LayerLoadError, match='geometry'):
            resolve(client_factory, lambda r: r.resolve_layer(sites_layer()))

    def test_malformed_index(self, client_factory, dataset):
        dataset['public/data/sites/index.json'] = {'geoJSONUrl': 'geometry.geojson'}
        with pytest.raises(MalformedDataIndexError):
            resolve(client_factory, lambda r: r.resolve_layer(sites_layer()))

    def test_absolute_urls_left_alone(self):
        resolver = DataIndexResolver(FILE_API, client=None)
        assert resolver.resolve_url('https://cdn.test/x.json') == 'https://cdn.test/x.json'
        assert resolver.resolve_url('public/x.json') == FILE_API + 'public/x.json'


class TestLoadLayers:
    """Concurrent loads are isolated from each other."""

    def test_loads_all_in_config_order(self, client_factory):
        layers = resolve(client_factory, lambda r: r.load_layers([sites_layer(), rivers_layer()]))
        assert [layer.name for layer in layers] == ['Sites', 'Rivers']

    def test_failed_layer_is_omitted(self, client_factory, dataset, caplog):
        del dataset['public/data/sites/index.json']
        with caplog.at_level(logging.ERROR):
            layers = resolve(client_factory, lambda r: r.load_layers([sites_layer(), rivers_layer()]))
        assert [layer.name for layer in layers] == ['Rivers']
        assert layers[0].data.bundle('r1', '2010', '1').average == 250
        assert 'Sites' in caplog.text

    def test_matrix_layers_skipped(self, client_factory):
        matrix = OverlayLayer(name='Contour', data_index_url='public/data/matrix/index.json', layer_type='matrix')
        layers = resolve(client_factory, lambda r: r.load_layers([matrix, rivers_layer()]))
        assert [layer.name for layer in layers] == ['Rivers']
        assert not any('matrix' in path for path in client_factory.requested)


class TestPluginIndex:
    def test_fetched(self, client_factory):
        index = resolve(client_factory, lambda r: r.fetch_plugin_index('public/plugins/index.json'))
        assert index['Legend']['tagName'] == 'vis-main-legend'

    def test_unreachable_index_is_empty(self, client_factory):
        assert resolve(client_factory, lambda r: r.fetch_plugin_index('public/missing.json')) == {}

    def test_no_url(self, client_factory):
        assert resolve(client_factory, lambda r: r.fetch_plugin_index(None)) == {}
