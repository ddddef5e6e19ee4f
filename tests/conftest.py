"""Shared fixtures: a two-layer dataset served through httpx.MockTransport, manual timers."""
import copy

import httpx
import pytest

from overlay_dashboard.utils.config import parse_dashboard_config

FILE_API = 'http://files.test/'

SITES_COLOR_MAP = [
    [-1000, 50, '#d8f3dc', '< 50'],
    [50, 100, '#95d5b2'],
    [100, 150, '#52b788'],
    [150, 1000, '#2d6a4f', '> 150'],
]


def series(averages):
    """{year: {timestamp: average}} -> data document with full statistic bundles."""
    return {
        year: {
            timestamp: {
                'total': average * 3,
                'min': average - 1,
                'max': average + 1,
                'average': average,
                'value': [average - 1, average, average + 1],
            }
            for timestamp, average in stamps.items()
        }
        for year, stamps in averages.items()
    }


def feature_collection(ids):
    return {
        'type': 'FeatureCollection',
        'features': [
            {
                'type': 'Feature',
                'properties': {'id': feature_id},
                'geometry': {'type': 'Point', 'coordinates': [-116.0 + i * 0.01, 51.3]},
            }
            for i, feature_id in enumerate(ids)
        ],
    }


def index(**bounds):
    document = {
        'geoJSONUrl': 'geometry.geojson',
        'dataUrlTemplate': 'data/{VARIABLE}/{GRANULARITY}/{ID}.json',
        'metadataUrlTemplate': 'metadata/{ID}.json',
    }
    document.update(bounds)
    return document


@pytest.fixture
def dataset():
    """URL path (under FILE_API) -> JSON document."""
    return {
        # Sites: f1 and f2 have data, f3 has metadata only
        'public/data/sites/index.json': index(minLatitude=51.0, maxLatitude=51.5, minLongitude=-116.5, maxLongitude=-115.5),
        'public/data/sites/geometry.geojson': feature_collection(['f1', 'f2', 'f3']),
        'public/data/sites/data/na/monthly/f1.json': series({
            '2010': {'0': 40, '1': 60},
            '2011': {'0': 120, '1': 75},
            '2012': {'0': 200, '1': 10},
        }),
        'public/data/sites/data/na/monthly/f2.json': {'data': series({
            '2010': {'0': 75, '1': 160},
            '2011': {'0': 30, '1': 90},
            '2012': {'0': 55, '1': 140},
        })},
        'public/data/sites/metadata/f1.json': {'name': 'Site 1', 'elevation': 1400},
        'public/data/sites/metadata/f2.json': {'name': 'Site 2', 'elevation': 1650},
        'public/data/sites/metadata/f3.json': {'name': 'Site 3'},
        # Rivers: r1 has data, r2 doesn't
        'public/data/rivers/index.json': index(),
        'public/data/rivers/geometry.geojson': feature_collection(['r1', 'r2']),
        'public/data/rivers/data/dlayRunoff/monthly/r1.json': series({
            '2010': {'0': 20, '1': 250},
            '2011': {'0': 20, '1': 30},
            '2012': {'0': 700, '1': 15},
        }),
        'public/data/rivers/metadata/r1.json': {'name': 'Reach 1'},
        'public/plugins/index.json': {
            'Legend': {'tagName': 'vis-main-legend', 'path': 'legend.js'},
            'Sidebar': {'tagName': 'vis-main-sidebar', 'path': 'sidebar.js', 'exportName': 'Sidebar'},
        },
    }


@pytest.fixture
def client_factory(dataset):
    """() -> AsyncClient answering from `dataset`; 404 for anything else."""
    requested = []

    def handler(request):
        path = request.url.path.lstrip('/')
        requested.append(path)
        if path in dataset:
            return httpx.Response(200, json=dataset[path])
        return httpx.Response(404, json={'error': 'not found'})

    def factory():
        return httpx.AsyncClient(transport=httpx.MockTransport(handler))

    factory.requested = requested
    return factory


@pytest.fixture
def raw_config():
    return copy.deepcopy({
        'serverFileAPIPath': FILE_API,
        'baseLayers': ['Grayscale', 'Streets'],
        'overlayLayers': [
            {
                'name': 'Sites',
                'dataIndexUrl': 'public/data/sites/index.json',
                'variable': 'na',
                'colorMap': SITES_COLOR_MAP,
            },
            {
                'name': 'Rivers',
                'dataIndexUrl': 'public/data/rivers/index.json',
                'variable': 'dlayRunoff',
                'colorMap': [[0, 100, '#fc8d59'], [100, 1000, '#b30000']],
            },
        ],
        'yearRange': [2010, 2012],
        'pluginIndexUrl': 'public/plugins/index.json',
        'plugins': [
            {'name': 'TimeControl', 'timestampsPerSecond': 2},
            {'name': 'Legend', 'variable': 'na'},
            {
                'name': 'Sidebar',
                'plugins': [
                    {'name': 'SidebarMetadata'},
                    {'name': 'SidebarLineChart', 'variables': ['na']},
                ],
            },
            {
                'name': 'Longbar',
                'plugins': [{'name': 'LongbarLineChart', 'variables': ['na', 'dlayRunoff']}],
            },
        ],
    })


@pytest.fixture
def config(raw_config):
    return parse_dashboard_config(raw_config)


class ManualTimer:
    """Stand-in for IntervalTimer: fires only when a test calls fire()."""

    def __init__(self, period_seconds, callback):
        self.period_seconds = period_seconds
        self.callback = callback
        self.cancelled = False

    def cancel(self):
        self.cancelled = True

    def fire(self, times=1):
        for _ in range(times):
            if not self.cancelled:
                self.callback()


@pytest.fixture
def timers():
    """Timer factory that records every ManualTimer it starts."""
    created = []

    def factory(period_seconds, callback):
        timer = ManualTimer(period_seconds, callback)
        created.append(timer)
        return timer

    factory.created = created
    return factory


class RecordingWidget:
    """Widget double: keeps every config pushed to it."""

    def __init__(self, emit=None):
        self.emit = emit
        self.configs = []

    def update(self, config):
        self.configs.append(config)

    @property
    def config(self):
        return self.configs[-1] if self.configs else None


@pytest.fixture
def recording_widget():
    return RecordingWidget
