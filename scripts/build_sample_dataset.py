#!/usr/bin/env python3
"""
Build a small static dataset the dashboard can load from a file server.

Writes, under <output_dir>:
    public/data/catchment/...       3x3 grid of catchment polygons (scalarSWE)
    public/data/river_network/...   3 river reaches (dlayRunoff)
    public/plugins/vis-main/index.json

Monthly values (timestamps "0".."11") for 2010-2012, matching the bundled
default_config.json. Serve <output_dir> at OVERLAY_FILE_API_PATH, e.g.:

    python -m http.server 5000 --directory <output_dir>
    OVERLAY_FILE_API_PATH=http://localhost:5000/ solara run app.py

Usage:
    python build_sample_dataset.py <output_dir>
"""

import json
import math
import sys
from pathlib import Path

YEARS = [2010, 2011, 2012]
MONTHS = [str(m) for m in range(12)]

# Bounding box around the default map center (Banff area)
MIN_LAT, MAX_LAT = 51.15, 51.45
MIN_LON, MAX_LON = -116.25, -115.8


def write_json(path: Path, document) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, 'w') as f:
        json.dump(document, f, indent=2)


def seasonal_series(base: float, amplitude: float, phase: float) -> dict:
    """year -> month -> statistic bundle with a seasonal cycle."""
    series = {}
    for year_offset, year in enumerate(YEARS):
        months = {}
        for month in MONTHS:
            angle = 2 * math.pi * (int(month) + phase) / 12
            average = round(base + amplitude * math.cos(angle) + 5 * year_offset, 3)
            values = [round(average * factor, 3) for factor in (0.8, 1.0, 1.2)]
            months[month] = {
                'total': round(sum(values), 3),
                'min': min(values),
                'max': max(values),
                'average': average,
                'value': values,
            }
        series[str(year)] = months
    return series


def index_document() -> dict:
    return {
        'geoJSONUrl': 'geometry.geojson',
        'dataUrlTemplate': 'data/{VARIABLE}/{GRANULARITY}/{ID}.json',
        'metadataUrlTemplate': 'metadata/{ID}.json',
        'minLatitude': MIN_LAT,
        'maxLatitude': MAX_LAT,
        'minLongitude': MIN_LON,
        'maxLongitude': MAX_LON,
    }


def build_catchments(layer_dir: Path) -> int:
    features = []
    lat_step = (MAX_LAT - MIN_LAT) / 3
    lon_step = (MAX_LON - MIN_LON) / 3
    for row in range(3):
        for col in range(3):
            feature_id = f"c{row * 3 + col + 1}"
            south, west = MIN_LAT + row * lat_step, MIN_LON + col * lon_step
            north, east = south + lat_step, west + lon_step
            features.append({
                'type': 'Feature',
                'properties': {'id': feature_id},
                'geometry': {
                    'type': 'Polygon',
                    'coordinates': [[[west, south], [east, south], [east, north], [west, north], [west, south]]],
                },
            })
            write_json(
                layer_dir / 'data' / 'scalarSWE' / 'monthly' / f'{feature_id}.json',
                seasonal_series(base=90 + 15 * row, amplitude=70, phase=col),
            )
            write_json(
                layer_dir / 'metadata' / f'{feature_id}.json',
                {'name': f'Catchment {feature_id.upper()}', 'area_km2': round(55 + 7.5 * row + col, 1)},
            )
    write_json(layer_dir / 'geometry.geojson', {'type': 'FeatureCollection', 'features': features})
    write_json(layer_dir / 'index.json', index_document())
    return len(features)


def build_rivers(layer_dir: Path) -> int:
    features = []
    for number in range(1, 4):
        feature_id = f"r{number}"
        lat = MIN_LAT + number * (MAX_LAT - MIN_LAT) / 4
        features.append({
            'type': 'Feature',
            'properties': {'id': feature_id},
            'geometry': {
                'type': 'LineString',
                'coordinates': [[MIN_LON, lat], [(MIN_LON + MAX_LON) / 2, lat + 0.02], [MAX_LON, lat]],
            },
        })
        write_json(
            layer_dir / 'data' / 'dlayRunoff' / 'monthly' / f'{feature_id}.json',
            seasonal_series(base=150 * number, amplitude=120, phase=6),
        )
        write_json(layer_dir / 'metadata' / f'{feature_id}.json', {'name': f'Reach {number}', 'order': number})
    write_json(layer_dir / 'geometry.geojson', {'type': 'FeatureCollection', 'features': features})
    write_json(layer_dir / 'index.json', index_document())
    return len(features)


def main():
    if len(sys.argv) < 2:
        print(__doc__)
        print("\nERROR: Please provide the output directory as an argument.")
        sys.exit(1)

    output_dir = Path(sys.argv[1])
    data_dir = output_dir / 'public' / 'data'

    print(f"Writing sample dataset to {output_dir}...")
    print(f"  ✓ {build_catchments(data_dir / 'catchment')} catchments")
    print(f"  ✓ {build_rivers(data_dir / 'river_network')} river reaches")

    write_json(output_dir / 'public' / 'plugins' / 'vis-main' / 'index.json', {
        'Legend': {'tagName': 'vis-main-legend', 'path': 'legend.js'},
        'TimeControl': {'tagName': 'vis-main-time-control', 'path': 'time-control.js'},
        'Sidebar': {'tagName': 'vis-main-sidebar', 'path': 'sidebar.js', 'exportName': 'Sidebar'},
        'SidebarLineChart': {'tagName': 'vis-main-sidebar-line-chart', 'path': 'sidebar-line-chart.js',
                             'for': 'Sidebar'},
    })
    print("  ✓ plugin index")

    print(f"\n{'='*50}")
    print("✅ Sample dataset ready.")
    print(f"{'='*50}")


if __name__ == '__main__':
    main()
