#!/usr/bin/env python3
"""
Tests for src/stages/s00_ingest.py

Tests cover:
- Network options passed to remote calls (fetch_options)
- Column renames and row filters from source specs (apply_filters)
- Source dispatch by kind (ingest_sources)
- Demo ingestion writing raw snapshots (main)
"""
from __future__ import annotations

import pytest
import geopandas as gpd
import pandas as pd
from pathlib import Path
from unittest.mock import patch
import sys

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent.parent / 'src'))

from stages import s00_ingest
from stages.s00_ingest import apply_filters, fetch_options, ingest_sources
from utils.cache import CacheManager
from utils.helpers import load_data


# ============================================================
# OPTIONS AND FILTERS
# ============================================================

class TestFetchOptions:
    """Tests for fetch_options."""

    def test_network_settings(self):
        options = fetch_options()
        assert set(options) == {'timeout', 'retries', 'backoff', 'retry_status', 'user_agent'}
        assert 503 in options['retry_status']

    def test_cache_included(self, temp_dir):
        cache = CacheManager('downloads', cache_dir=temp_dir)
        assert fetch_options(cache)['cache'] is cache


class TestApplyFilters:
    """Tests for apply_filters."""

    @pytest.fixture
    def counts(self, sample_points):
        return sample_points.assign(
            Year=[2011, 2011, 2012, 2011],
            flow=[10, 20, 30, 40],
        )

    def test_rename_and_filter(self, counts):
        spec = {'rename': {'Year': 'year'}, 'filter': {'year': 2011}}
        result = apply_filters(counts, spec)
        assert 'year' in result.columns
        assert list(result['flow']) == [10, 20, 40]
        assert list(result.index) == [0, 1, 2]
        assert isinstance(result, gpd.GeoDataFrame)

    def test_no_entries(self, counts):
        assert len(apply_filters(counts, {})) == 4

    def test_unknown_filter_column(self, counts):
        with pytest.raises(KeyError, match="road_type"):
            apply_filters(counts, {'filter': {'road_type': 'Major'}})


# ============================================================
# SOURCE DISPATCH
# ============================================================

class TestIngestSources:
    """Tests for ingest_sources with the loaders mocked."""

    @pytest.fixture(autouse=True)
    def _cache_dir(self, temp_data_dir, monkeypatch):
        monkeypatch.setattr(s00_ingest, 'CACHE_DIR', temp_data_dir['cache'])

    def test_dispatch_by_kind(self, square_polygons, sample_points):
        sources = {
            'boundaries': {'kind': 'vector', 'url': 'http://example.org/b.zip'},
            'samples': {'kind': 'csv_points', 'url': 'http://example.org/s.csv',
                        'x_col': 'x', 'y_col': 'y', 'crs': 'EPSG:27700'},
        }
        with patch.object(s00_ingest, 'load_vector_source', return_value=square_polygons) as vec, \
                patch.object(s00_ingest, 'load_csv_source', return_value=sample_points) as csv:
            layers = ingest_sources(sources)

        assert set(layers) == {'boundaries', 'samples'}
        assert vec.call_count == 1
        assert csv.call_count == 1
        assert len(layers['samples']) == 4

    def test_osm_uses_boundaries(self, square_polygons, wgs84_points):
        sources = {
            'boundaries': {'kind': 'vector', 'url': 'http://example.org/b.zip'},
            'points': {'kind': 'osm', 'key': 'amenity', 'values': ['pub']},
        }
        with patch.object(s00_ingest, 'load_vector_source', return_value=square_polygons), \
                patch.object(s00_ingest, 'load_osm_source', return_value=wgs84_points) as osm:
            layers = ingest_sources(sources)

        boundaries_arg = osm.call_args.args[1]
        assert boundaries_arg is square_polygons
        assert len(layers['points']) == 3

    def test_unknown_kind(self, square_polygons):
        sources = {
            'boundaries': {'kind': 'vector', 'url': 'http://example.org/b.zip'},
            'zones': {'kind': 'wfs', 'url': 'http://example.org/z'},
        }
        with patch.object(s00_ingest, 'load_vector_source', return_value=square_polygons):
            with pytest.raises(ValueError, match="Unknown source kind"):
                ingest_sources(sources)

    def test_errors_propagate(self):
        from spatial.core.errors import NetworkError

        sources = {'boundaries': {'kind': 'vector', 'url': 'http://example.org/b.zip'}}
        with patch.object(s00_ingest, 'load_vector_source',
                          side_effect=NetworkError('down', url='http://example.org/b.zip')):
            with pytest.raises(NetworkError):
                ingest_sources(sources)


# ============================================================
# MAIN
# ============================================================

class TestMainDemo:
    """Tests for main(demo=True)."""

    def test_writes_raw_layers(self, temp_data_dir):
        layers = s00_ingest.main(demo=True, verbose=False)
        work = temp_data_dir['data_work']

        for name in ['boundaries', 'zones', 'coverage', 'points', 'samples']:
            path = work / f'{name}_raw.parquet'
            assert path.exists(), name
            loaded = load_data(path)
            assert isinstance(loaded, gpd.GeoDataFrame)
            assert len(loaded) == len(layers[name])
            assert loaded.crs == layers[name].crs

        census = load_data(work / 'census.parquet')
        assert isinstance(census, pd.DataFrame)
        assert 'msoa11' in census.columns

    def test_writes_qa_reports(self, temp_data_dir):
        s00_ingest.main(demo=True, verbose=False)
        reports = list(temp_data_dir['quality'].glob('s00_ingest_*_quality_*.csv'))
        assert len(reports) == 5
