#!/usr/bin/env python3
"""
Stage 00: Data Ingestion

Purpose: Download and load every source layer into a feature collection.

This stage handles:
- Zipped shapefile and GeoJSON downloads (area boundaries, emission zone)
- Gridded coverage and count point CSVs with coordinate columns
- OpenStreetMap points of interest within the study area
- Census tables reshaped to one row per area
- OR synthetic demo layers (--demo) when working offline

Input Files
-----------
- config/sources.yml (source locators)
- data_work/spatial/* (downloaded files, reused between runs)

Output Files
------------
- data_work/{boundaries,zones,coverage,points,samples}_raw.parquet
- data_work/census.parquet

Usage
-----
    python src/pipeline.py ingest_data
    python src/pipeline.py ingest_data --demo
"""
from __future__ import annotations

from pathlib import Path
from typing import Optional
import sys

# Add parent directory for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

import geopandas as gpd
import pandas as pd

from config import (
    CACHE_DIR,
    CENSUS_API_URL,
    CENSUS_FILE,
    GEOGRAPHIC_CRS,
    HTTP_BACKOFF,
    HTTP_RETRIES,
    HTTP_RETRY_STATUS,
    HTTP_TIMEOUT,
    HTTP_USER_AGENT,
    OVERPASS_API_URL,
    OVERPASS_TIMEOUT,
    RAW_LAYERS,
)
from spatial.core.crs import reproject
from spatial.core.io import load_csv_points, load_spatial
from spatial.core.remote import download_file, query_census_table, query_osm_points
from utils.cache import CacheManager
from utils.demo_data import generate_demo_layers
from utils.helpers import ensure_dir, get_data_dir, load_config, save_data
from stages._qa_utils import qa_for_stage


# ============================================================
# CONFIGURATION
# ============================================================

# Source keys in config/sources.yml, in ingestion order
SOURCE_ORDER = ['boundaries', 'zones', 'coverage', 'samples', 'points', 'census']

# Boundary identifier used when sources.yml does not name one
DEFAULT_ID_COL = 'MSOA11CD'


def fetch_options(cache: Optional[CacheManager] = None) -> dict:
    """Network settings from config, passed to every remote call."""
    options = {
        'timeout': HTTP_TIMEOUT,
        'retries': HTTP_RETRIES,
        'backoff': HTTP_BACKOFF,
        'retry_status': HTTP_RETRY_STATUS,
        'user_agent': HTTP_USER_AGENT,
    }
    if cache is not None:
        options['cache'] = cache
    return options


# ============================================================
# SOURCE LOADERS
# ============================================================

def load_vector_source(spec: dict, download_dir: Path) -> gpd.GeoDataFrame:
    """Download (if needed) and read a spatial file."""
    filename = spec.get('filename') or Path(spec['url']).name
    path = download_file(spec['url'], download_dir / filename, **fetch_options())
    return load_spatial(path, layer=spec.get('layer'), crs=spec.get('crs'))


def load_csv_source(spec: dict, download_dir: Path) -> gpd.GeoDataFrame:
    """Download (if needed) and read a CSV with coordinate columns."""
    filename = spec.get('filename') or Path(spec['url']).name
    path = download_file(spec['url'], download_dir / filename, **fetch_options())

    gdf = load_csv_points(
        path,
        x_col=spec['x_col'],
        y_col=spec['y_col'],
        crs=spec['crs'],
        skiprows=spec.get('skiprows', 0),
        na_values=spec.get('na_values'),
        low_memory=False,
    )
    return apply_filters(gdf, spec)


def apply_filters(gdf: gpd.GeoDataFrame, spec: dict) -> gpd.GeoDataFrame:
    """Apply the ``rename`` and ``filter`` entries of a source spec."""
    if spec.get('rename'):
        gdf = gdf.rename(columns=spec['rename'])

    for column, value in (spec.get('filter') or {}).items():
        if column not in gdf.columns:
            raise KeyError(f"Filter column '{column}' not in source columns")
        n_before = len(gdf)
        gdf = gdf[gdf[column] == value]
        print(f"    Filter {column} == {value!r}: {n_before:,} -> {len(gdf):,}")

    return gdf.reset_index(drop=True)


def load_osm_source(spec: dict, boundaries: gpd.GeoDataFrame, cache: CacheManager) -> gpd.GeoDataFrame:
    """Query OSM points within the WGS84 bounding box of the boundaries."""
    bbox = reproject(boundaries, GEOGRAPHIC_CRS).total_bounds
    options = fetch_options(cache)
    options['timeout'] = OVERPASS_TIMEOUT
    return query_osm_points(
        bbox,
        key=spec['key'],
        values=spec.get('values'),
        base_url=spec.get('url', OVERPASS_API_URL),
        **options,
    )


def load_census_source(
    spec: dict,
    boundaries: gpd.GeoDataFrame,
    boundary_id: str,
    cache: CacheManager,
) -> pd.DataFrame:
    """Fetch each census table for the boundary areas and merge them."""
    id_col = spec.get('id_col', 'msoa11')
    area_codes = boundaries[boundary_id].astype(str).tolist()

    census = None
    for table in spec['tables']:
        print(f"    Census table: {table['code']} ({table['dataset_id']})")
        wide = query_census_table(
            table['dataset_id'],
            geography=area_codes,
            time_period=str(spec.get('time', '2011')),
            extra_params=table.get('params'),
            dataset_code=table['code'],
            id_col=id_col,
            base_url=spec.get('url', CENSUS_API_URL),
            **fetch_options(cache),
        )
        if census is None:
            census = wide
        else:
            census = census.merge(wide, on=[id_col, 'name'], how='outer')

    return census


def ingest_sources(sources: dict) -> dict:
    """
    Load every configured source.

    Errors (NetworkError, FormatError, EmptyResultError) propagate: a
    missing layer would silently change every downstream result.
    """
    download_dir = ensure_dir(get_data_dir('spatial'))
    cache = CacheManager('downloads', cache_dir=CACHE_DIR)
    boundary_id = sources.get('boundaries', {}).get('id_col', DEFAULT_ID_COL)

    layers = {}
    for name in SOURCE_ORDER:
        spec = sources.get(name)
        if spec is None:
            print(f"  Skipping {name}: not configured")
            continue

        kind = spec.get('kind', 'vector')
        print(f"\n  Loading {name} ({kind})")
        if kind == 'vector':
            layers[name] = load_vector_source(spec, download_dir)
        elif kind == 'csv_points':
            layers[name] = load_csv_source(spec, download_dir)
        elif kind == 'osm':
            layers[name] = load_osm_source(spec, layers['boundaries'], cache)
        elif kind == 'census':
            layers[name] = load_census_source(spec, layers['boundaries'], boundary_id, cache)
        else:
            raise ValueError(f"Unknown source kind for {name}: '{kind}'")
        print(f"    -> {len(layers[name]):,} rows")

    stats = cache.stats()
    print(f"\n  Download cache: {stats['hits']} hits, {stats['misses']} misses")
    return layers


# ============================================================
# MAIN ENTRY POINT
# ============================================================

def main(demo: bool = False, verbose: bool = True) -> dict:
    """
    Execute data ingestion.

    Parameters
    ----------
    demo : bool
        Use synthetic layers instead of downloading the configured sources.
    verbose : bool
        Print column listings.
    """
    print("=" * 60)
    print("Stage 00: Data Ingestion")
    print("=" * 60)

    work_dir = ensure_dir(get_data_dir('work'))

    if demo:
        print("\n  Generating synthetic demo layers...")
        layers = generate_demo_layers()
    else:
        print("\n  Reading source definitions: config/sources.yml")
        layers = ingest_sources(load_config('sources'))

    print("\n  Saving raw layers...")
    for name, filename in RAW_LAYERS.items():
        if name not in layers:
            continue
        gdf = layers[name]
        output_path = work_dir / filename
        save_data(gdf, output_path)
        print(f"    {name}: {len(gdf):,} features, CRS {gdf.crs.to_string()} -> {filename}")
        if verbose:
            print(f"      Columns: {', '.join(c for c in gdf.columns if c != gdf.geometry.name)}")
        qa_for_stage(f's00_ingest_{name}', gdf, output_file=str(output_path))

    if 'census' in layers:
        census_path = work_dir / CENSUS_FILE
        save_data(layers['census'], census_path)
        print(f"    census: {len(layers['census']):,} areas -> {CENSUS_FILE}")

    print("\n" + "=" * 60)
    print("Stage 00 complete.")
    print("=" * 60)

    return layers


if __name__ == '__main__':
    main(demo='--demo' in sys.argv)
