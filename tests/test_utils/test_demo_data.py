#!/usr/bin/env python3
"""
Tests for src/utils/demo_data.py

Tests cover:
- Layer shapes and coordinate reference systems
- Census table layout
- Reproducibility by seed
"""
from __future__ import annotations

import geopandas as gpd
import pandas as pd
from pathlib import Path
import sys

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent.parent / 'src'))

from utils.demo_data import generate_demo_layers


class TestDemoLayers:
    """Tests for generate_demo_layers."""

    def test_layer_keys(self, demo_layers):
        assert set(demo_layers) == {'boundaries', 'zones', 'coverage', 'points', 'samples', 'census'}

    def test_boundaries(self, demo_layers):
        areas = demo_layers['boundaries']
        assert len(areas) == 16
        assert areas['MSOA11CD'].is_unique
        assert areas.crs.to_epsg() == 27700
        assert areas.geometry.area.eq(4e6).all()

    def test_crs_per_layer(self, demo_layers):
        """Points and samples arrive in longitude / latitude like the live sources."""
        assert demo_layers['zones'].crs.to_epsg() == 27700
        assert demo_layers['coverage'].crs.to_epsg() == 27700
        assert demo_layers['points'].crs.to_epsg() == 4326
        assert demo_layers['samples'].crs.to_epsg() == 4326

    def test_zone_touches_central_areas_only(self, demo_layers):
        areas = demo_layers['boundaries']
        zone = demo_layers['zones'].geometry.iloc[0]
        assert areas.intersects(zone).sum() == 4

    def test_samples_carry_coordinates(self, demo_layers):
        samples = demo_layers['samples']
        assert {'longitude', 'latitude', 'all_motor_vehicles'} <= set(samples.columns)
        assert samples['longitude'].between(-1, 1).all()
        assert samples['latitude'].between(51, 52).all()

    def test_census_table(self, demo_layers):
        census = demo_layers['census']
        assert isinstance(census, pd.DataFrame)
        assert not isinstance(census, gpd.GeoDataFrame)
        assert list(census['msoa11']) == list(demo_layers['boundaries']['MSOA11CD'])
        ethnic = census[[f'KS201EW_{c}' for c in ['100', '200', '300', '400', '500']]].sum(axis=1)
        assert (ethnic == census['KS201EW0001']).all()
        tenure = census[[f'KS402EW_{c}' for c in ['100', '200', '300']]].sum(axis=1)
        assert (tenure == census['KS402EW0001']).all()

    def test_reproducible(self):
        first = generate_demo_layers(seed=1)
        second = generate_demo_layers(seed=1)
        pd.testing.assert_frame_equal(first['census'], second['census'])
        assert first['samples'].geometry.equals(second['samples'].geometry)

    def test_seed_changes_values(self):
        first = generate_demo_layers(seed=1)
        second = generate_demo_layers(seed=2)
        assert not first['coverage']['no2'].equals(second['coverage']['no2'])
