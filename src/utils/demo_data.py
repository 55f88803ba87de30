#!/usr/bin/env python3
"""
Synthetic demonstration layers.

Generates a small, reproducible stand-in for the London sources so the
pipeline can run without network access:

- boundaries: 4 x 4 grid of 2 km square areas (EPSG:27700) with POPDEN
- zones: a 4 km square low-emission zone in the centre (EPSG:27700)
- coverage: 1 km gridded NO2 values as cell-centre points (EPSG:27700)
- points: pub locations (EPSG:4326, as returned by Overpass)
- samples: traffic count points with all_motor_vehicles (EPSG:4326)
- census: wide census table with KS201EW / KS402EW cell counts

Usage
-----
    from utils.demo_data import generate_demo_layers

    layers = generate_demo_layers(seed=42)
    layers['boundaries'].plot()
"""
from __future__ import annotations

import geopandas as gpd
import numpy as np
import pandas as pd
from shapely.geometry import box

# South-west corner of the synthetic study area (British National Grid)
ORIGIN_X = 524000.0
ORIGIN_Y = 176000.0
AREA_SIZE_M = 2000.0
N_AREAS_PER_SIDE = 4
EXTENT_M = AREA_SIZE_M * N_AREAS_PER_SIDE

PROJECTED_CRS = 'EPSG:27700'
GEOGRAPHIC_CRS = 'EPSG:4326'


def _field(x, y):
    """Smooth surface peaking at the centre of the study area."""
    cx = ORIGIN_X + EXTENT_M / 2
    cy = ORIGIN_Y + EXTENT_M / 2
    r2 = ((x - cx) ** 2 + (y - cy) ** 2) / (EXTENT_M / 2) ** 2
    return np.exp(-r2)


def make_boundaries(rng: np.random.Generator) -> gpd.GeoDataFrame:
    records = []
    geoms = []
    for row in range(N_AREAS_PER_SIDE):
        for col in range(N_AREAS_PER_SIDE):
            n = row * N_AREAS_PER_SIDE + col
            x0 = ORIGIN_X + col * AREA_SIZE_M
            y0 = ORIGIN_Y + row * AREA_SIZE_M
            geoms.append(box(x0, y0, x0 + AREA_SIZE_M, y0 + AREA_SIZE_M))
            records.append({
                'MSOA11CD': f'E0200{n + 1:04d}',
                'MSOA11NM': f'Demo {n + 1:03d}',
                'POPDEN': float(np.round(rng.uniform(20, 150), 1)),
            })
    return gpd.GeoDataFrame(records, geometry=geoms, crs=PROJECTED_CRS)


def make_zones() -> gpd.GeoDataFrame:
    cx = ORIGIN_X + EXTENT_M / 2
    cy = ORIGIN_Y + EXTENT_M / 2
    # Short of the area edges so only the central four areas intersect
    half = AREA_SIZE_M * 0.9
    return gpd.GeoDataFrame(
        {'NAME': ['Demo ULEZ']},
        geometry=[box(cx - half, cy - half, cx + half, cy + half)],
        crs=PROJECTED_CRS,
    )


def make_coverage(rng: np.random.Generator, cell_size: float = 1000.0) -> gpd.GeoDataFrame:
    centres = np.arange(cell_size / 2, EXTENT_M, cell_size)
    xx, yy = np.meshgrid(ORIGIN_X + centres, ORIGIN_Y + centres)
    x = xx.ravel()
    y = yy.ravel()
    no2 = 20 + 25 * _field(x, y) + rng.normal(0, 1.5, len(x))
    df = pd.DataFrame({
        'gridcode': np.arange(len(x)) + 1,
        'x': x,
        'y': y,
        'no2': np.round(no2, 2),
    })
    return gpd.GeoDataFrame(df, geometry=gpd.points_from_xy(x, y), crs=PROJECTED_CRS)


def make_points(rng: np.random.Generator, n: int = 60) -> gpd.GeoDataFrame:
    # Denser towards the centre
    x = ORIGIN_X + EXTENT_M * rng.beta(2, 2, n)
    y = ORIGIN_Y + EXTENT_M * rng.beta(2, 2, n)
    df = pd.DataFrame({
        'osm_id': np.arange(n) + 1000,
        'name': [f'The Demo Arms {i}' for i in range(n)],
        'amenity': rng.choice(['pub', 'bar'], n, p=[0.7, 0.3]),
    })
    gdf = gpd.GeoDataFrame(df, geometry=gpd.points_from_xy(x, y), crs=PROJECTED_CRS)
    return gdf.to_crs(GEOGRAPHIC_CRS)


def make_samples(rng: np.random.Generator, n: int = 80) -> gpd.GeoDataFrame:
    x = ORIGIN_X + EXTENT_M * rng.uniform(0.02, 0.98, n)
    y = ORIGIN_Y + EXTENT_M * rng.uniform(0.02, 0.98, n)
    flow = 15000 + 40000 * _field(x, y) + rng.normal(0, 2500, n)
    df = pd.DataFrame({
        'count_point_id': np.arange(n) + 1,
        'year': 2011,
        'road_type': 'Major',
        'all_motor_vehicles': np.round(flow).astype(int),
    })
    gdf = gpd.GeoDataFrame(df, geometry=gpd.points_from_xy(x, y), crs=PROJECTED_CRS)
    gdf = gdf.to_crs(GEOGRAPHIC_CRS)
    gdf['longitude'] = gdf.geometry.x
    gdf['latitude'] = gdf.geometry.y
    return gdf


def make_census(boundaries: gpd.GeoDataFrame, rng: np.random.Generator) -> pd.DataFrame:
    n = len(boundaries)
    total = rng.integers(6000, 12000, n)
    shares = rng.dirichlet([12, 1, 3, 2, 1], n)
    ethnic = np.floor(shares * total[:, None]).astype(int)
    households = (total / 2.4).astype(int)
    tenure = np.floor(rng.dirichlet([5, 3, 2], n) * households[:, None]).astype(int)

    df = pd.DataFrame({
        'msoa11': boundaries['MSOA11CD'].values,
        'name': boundaries['MSOA11NM'].values,
        'KS201EW0001': ethnic.sum(axis=1),
    })
    for i, code in enumerate(['100', '200', '300', '400', '500']):
        df[f'KS201EW_{code}'] = ethnic[:, i]
    df['KS402EW0001'] = tenure.sum(axis=1)
    for i, code in enumerate(['100', '200', '300']):
        df[f'KS402EW_{code}'] = tenure[:, i]
    return df


def generate_demo_layers(seed: int = 42) -> dict:
    """
    Generate all demo layers.

    Returns
    -------
    dict
        Keys 'boundaries', 'zones', 'coverage', 'points', 'samples'
        (GeoDataFrames) and 'census' (DataFrame).
    """
    rng = np.random.default_rng(seed)
    boundaries = make_boundaries(rng)
    return {
        'boundaries': boundaries,
        'zones': make_zones(),
        'coverage': make_coverage(rng),
        'points': make_points(rng),
        'samples': make_samples(rng),
        'census': make_census(boundaries, rng),
    }
