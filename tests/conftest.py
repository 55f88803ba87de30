#!/usr/bin/env python3
"""
Shared pytest fixtures for the test suite.

This module provides common fixtures used across test modules including:
- Temporary directories and a redirected data_work tree
- Small projected polygon, point and sample collections
- Synthetic demo layers
"""
from __future__ import annotations

import sys
from pathlib import Path

# Add src directory to Python path for test imports
_project_root = Path(__file__).parent.parent
_src_path = _project_root / 'src'
if str(_src_path) not in sys.path:
    sys.path.insert(0, str(_src_path))

import shutil
import tempfile

import geopandas as gpd
import numpy as np
import pandas as pd
import pytest
from shapely.geometry import Point, box

BNG = 'EPSG:27700'
WGS84 = 'EPSG:4326'


# ============================================================
# PATH FIXTURES
# ============================================================

@pytest.fixture
def project_root() -> Path:
    """Get the project root directory."""
    return Path(__file__).parent.parent


@pytest.fixture
def temp_dir():
    """Create a temporary directory that is cleaned up after tests."""
    temp_path = Path(tempfile.mkdtemp())
    yield temp_path
    shutil.rmtree(temp_path, ignore_errors=True)


@pytest.fixture
def temp_data_dir(temp_dir, monkeypatch):
    """
    Redirect every data directory used by the stages to a temp tree.

    Returns a dict of the redirected paths.
    """
    import config
    from stages import _qa_utils

    data_work = temp_dir / 'data_work'
    dirs = {
        'root': temp_dir,
        'data_raw': temp_dir / 'data_raw',
        'data_work': data_work,
        'diagnostics': data_work / 'diagnostics',
        'spatial': data_work / 'spatial',
        'quality': data_work / 'quality',
        'cache': data_work / '.cache',
        'figures': temp_dir / 'figures',
    }
    for path in dirs.values():
        path.mkdir(parents=True, exist_ok=True)

    monkeypatch.setattr(config, 'DATA_RAW_DIR', dirs['data_raw'])
    monkeypatch.setattr(config, 'DATA_WORK_DIR', data_work)
    monkeypatch.setattr(config, 'DIAGNOSTICS_DIR', dirs['diagnostics'])
    monkeypatch.setattr(config, 'SPATIAL_DATA_DIR', dirs['spatial'])
    monkeypatch.setattr(config, 'PROJECT_ROOT', temp_dir)
    monkeypatch.setattr(_qa_utils, 'QA_REPORTS_DIR', dirs['quality'])
    return dirs


# ============================================================
# GEOMETRY FIXTURES
# ============================================================

@pytest.fixture
def square_polygons() -> gpd.GeoDataFrame:
    """Four 1 km squares tiling a 2 x 2 km block (British National Grid)."""
    geoms = [
        box(0, 0, 1000, 1000),
        box(1000, 0, 2000, 1000),
        box(0, 1000, 1000, 2000),
        box(1000, 1000, 2000, 2000),
    ]
    return gpd.GeoDataFrame(
        {'area_id': ['A', 'B', 'C', 'D'], 'pop': [100, 200, 300, 400]},
        geometry=geoms,
        crs=BNG,
    )


@pytest.fixture
def sample_points() -> gpd.GeoDataFrame:
    """Points: two in A, one in D, one outside the block."""
    return gpd.GeoDataFrame(
        {'point_id': [1, 2, 3, 4]},
        geometry=[Point(200, 200), Point(700, 300), Point(1500, 1500), Point(5000, 5000)],
        crs=BNG,
    )


@pytest.fixture
def corner_samples() -> gpd.GeoDataFrame:
    """Values 0, 10, 20, 30 at the corners of a 2 x 2 km square."""
    return gpd.GeoDataFrame(
        {'value': [0.0, 10.0, 20.0, 30.0]},
        geometry=[Point(0, 0), Point(2000, 0), Point(0, 2000), Point(2000, 2000)],
        crs=BNG,
    )


@pytest.fixture
def field_samples() -> gpd.GeoDataFrame:
    """60 samples of a smooth field with noise over a 10 km square."""
    rng = np.random.default_rng(7)
    x = rng.uniform(0, 10000, 60)
    y = rng.uniform(0, 10000, 60)
    value = 50 + 0.004 * x - 0.002 * y + 10 * np.sin(x / 2500) + rng.normal(0, 1, 60)
    return gpd.GeoDataFrame(
        {'value': value},
        geometry=gpd.points_from_xy(x, y),
        crs=BNG,
    )


@pytest.fixture
def wgs84_points() -> gpd.GeoDataFrame:
    """A few London locations in longitude / latitude."""
    return gpd.GeoDataFrame(
        {'name': ['Westminster', 'Camden', 'Greenwich']},
        geometry=[Point(-0.1357, 51.4975), Point(-0.1426, 51.5390), Point(-0.0098, 51.4826)],
        crs=WGS84,
    )


# ============================================================
# DATA FIXTURES
# ============================================================

@pytest.fixture
def census_table() -> pd.DataFrame:
    """Wide census table keyed by area code."""
    return pd.DataFrame({
        'area_code': ['A', 'B', 'C'],
        'KS201EW0001': [1000, 2000, 0],
        'KS201EW_400': [100, 500, 0],
    })


@pytest.fixture
def demo_layers() -> dict:
    """Synthetic demo layers (seed 42)."""
    from utils.demo_data import generate_demo_layers
    return generate_demo_layers(seed=42)


# ============================================================
# STAGE FIXTURES
# ============================================================

@pytest.fixture
def projected_demo(temp_data_dir):
    """Run ingestion (demo layers) and reprojection into the temp data tree."""
    from stages import s00_ingest, s01_reproject

    s00_ingest.main(demo=True, verbose=False)
    s01_reproject.main(verbose=False)
    return temp_data_dir


@pytest.fixture
def linked_demo(projected_demo):
    """Demo data carried through linkage and buffer aggregation."""
    from stages import s02_link, s03_aggregate

    s02_link.main(verbose=False)
    s03_aggregate.main(verbose=False)
    return projected_demo
