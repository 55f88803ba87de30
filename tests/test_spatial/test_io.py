"""Tests for spatial I/O utilities."""

import sys
import zipfile
from pathlib import Path

import pytest

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent.parent / "src"))

import geopandas as gpd
import pandas as pd

from spatial.core.errors import FormatError, InvalidFeatureError
from spatial.core.io import (
    has_geometry,
    list_layers,
    load_csv_points,
    load_snapshot,
    load_spatial,
    points_from_table,
    save_snapshot,
    save_spatial,
)


class TestPointsFromTable:
    """Tests for points_from_table."""

    def test_basic(self):
        df = pd.DataFrame({'name': ['Nuffield College'], 'lat': [51.7526], 'lon': [-1.2628]})
        gdf = points_from_table(df, x_col='lon', y_col='lat', crs='EPSG:4326')
        assert gdf.crs.to_epsg() == 4326
        assert gdf.geometry.iloc[0].x == pytest.approx(-1.2628)
        assert gdf.geometry.iloc[0].y == pytest.approx(51.7526)
        assert 'name' in gdf.columns

    def test_drops_missing_coordinates(self):
        df = pd.DataFrame({'x': [1.0, None, 3.0], 'y': [1.0, 2.0, 3.0]})
        gdf = points_from_table(df, 'x', 'y', 'EPSG:27700')
        assert len(gdf) == 2

    def test_missing_column(self):
        with pytest.raises(FormatError, match="not found"):
            points_from_table(pd.DataFrame({'x': [1]}), 'x', 'y', 'EPSG:27700')

    def test_non_numeric(self):
        df = pd.DataFrame({'x': ['a'], 'y': [1]})
        with pytest.raises(FormatError, match="Non-numeric"):
            points_from_table(df, 'x', 'y', 'EPSG:27700')


class TestLoadCsvPoints:
    """Tests for load_csv_points with a PCM-style preamble."""

    def _write_pcm(self, path: Path) -> Path:
        lines = [
            'Annual mean NO2 2011',
            'Units: ugm-3',
            'Source: modelled',
            'Grid: 1km',
            '',
            'gridcode,x,y,no22011',
            '1,530500,180500,42.1',
            '2,531500,180500,MISSING',
            '3,532500,180500,38.7',
        ]
        path.write_text('\n'.join(lines) + '\n')
        return path

    def test_skiprows_and_na(self, temp_dir):
        path = self._write_pcm(temp_dir / 'mapno22011.csv')
        gdf = load_csv_points(path, 'x', 'y', 'EPSG:27700', skiprows=5, na_values=['MISSING'])
        assert len(gdf) == 3
        assert gdf.crs.to_epsg() == 27700
        assert gdf['no22011'].isna().sum() == 1
        assert gdf.geometry.iloc[0].x == 530500

    def test_via_load_spatial(self, temp_dir):
        path = self._write_pcm(temp_dir / 'mapno22011.csv')
        gdf = load_spatial(path, crs='EPSG:27700', x_col='x', y_col='y', skiprows=5)
        assert len(gdf) == 3

    def test_load_spatial_csv_needs_columns(self, temp_dir):
        path = self._write_pcm(temp_dir / 'mapno22011.csv')
        with pytest.raises(FormatError, match="x_col"):
            load_spatial(path)

    def test_missing_file(self, temp_dir):
        with pytest.raises(FileNotFoundError):
            load_csv_points(temp_dir / 'nope.csv', 'x', 'y', 'EPSG:27700')


class TestLoadSpatial:
    """Tests for load_spatial with vector formats."""

    def test_geojson_round_trip(self, temp_dir, square_polygons):
        path = save_spatial(square_polygons, temp_dir / 'areas.geojson')
        loaded = load_spatial(path)
        assert len(loaded) == 4
        assert loaded.crs.to_epsg() == 27700

    def test_geopackage_layer(self, temp_dir, square_polygons):
        path = save_spatial(square_polygons, temp_dir / 'areas.gpkg', layer='msoa')
        assert 'msoa' in list_layers(path)
        loaded = load_spatial(path, layer='msoa')
        assert list(loaded['area_id']) == ['A', 'B', 'C', 'D']

    def test_zipped_shapefile(self, temp_dir, square_polygons):
        shp_dir = temp_dir / 'shp'
        save_spatial(square_polygons, shp_dir / 'MSOA_London.shp')
        archive = temp_dir / 'boundaries.zip'
        with zipfile.ZipFile(archive, 'w') as zf:
            for f in shp_dir.iterdir():
                zf.write(f, arcname=f'statistical-gis-boundaries/ESRI/{f.name}')

        loaded = load_spatial(archive, layer='MSOA_London')
        assert len(loaded) == 4
        assert loaded.crs.to_epsg() == 27700

    def test_zip_unknown_layer(self, temp_dir, square_polygons):
        shp_dir = temp_dir / 'shp'
        save_spatial(square_polygons, shp_dir / 'areas.shp')
        archive = temp_dir / 'bundle.zip'
        with zipfile.ZipFile(archive, 'w') as zf:
            for f in shp_dir.iterdir():
                zf.write(f, arcname=f.name)

        with pytest.raises(FormatError, match="single vector layer"):
            load_spatial(archive, layer='missing')

    def test_corrupt_zip(self, temp_dir):
        archive = temp_dir / 'broken.zip'
        archive.write_bytes(b'not a zip file')
        with pytest.raises(FormatError, match="Corrupt"):
            load_spatial(archive)

    def test_unparseable_geojson(self, temp_dir):
        path = temp_dir / 'broken.geojson'
        path.write_text('{"type": "FeatureCollection", "features": [')
        with pytest.raises(FormatError):
            load_spatial(path)

    def test_unsupported_format(self, temp_dir):
        path = temp_dir / 'data.xyz'
        path.touch()
        with pytest.raises(FormatError, match="Unsupported"):
            load_spatial(path)

    def test_file_not_found(self, temp_dir):
        with pytest.raises(FileNotFoundError):
            load_spatial(temp_dir / 'missing.gpkg')


class TestSaveSpatial:
    """Tests for save_spatial."""

    def test_unknown_extension(self, temp_dir, square_polygons):
        with pytest.raises(FormatError, match="driver"):
            save_spatial(square_polygons, temp_dir / 'areas.xyz')

    def test_creates_parent(self, temp_dir, square_polygons):
        path = save_spatial(square_polygons, temp_dir / 'nested' / 'dir' / 'areas.gpkg')
        assert path.exists()


class TestSnapshot:
    """Tests for GeoParquet snapshots."""

    def test_round_trip(self, temp_dir, square_polygons):
        path = save_snapshot(square_polygons, temp_dir / 'areas.parquet')
        loaded = load_snapshot(path)
        assert loaded.crs.to_epsg() == 27700
        assert list(loaded['pop']) == [100, 200, 300, 400]
        assert loaded.geometry.equals(square_polygons.geometry)

    def test_suffix_forced(self, temp_dir, square_polygons):
        path = save_snapshot(square_polygons, temp_dir / 'areas.gpkg')
        assert path.suffix == '.parquet'

    def test_invalid_collection_rejected(self, temp_dir):
        gdf = gpd.GeoDataFrame({'a': [1]}, geometry=[None])
        with pytest.raises(InvalidFeatureError):
            save_snapshot(gdf, temp_dir / 'bad.parquet')

    def test_plain_parquet_is_format_error(self, temp_dir):
        path = temp_dir / 'table.parquet'
        pd.DataFrame({'a': [1, 2]}).to_parquet(path)
        with pytest.raises(FormatError):
            load_snapshot(path)

    def test_missing(self, temp_dir):
        with pytest.raises(FileNotFoundError):
            load_snapshot(temp_dir / 'none.parquet')


class TestHasGeometry:
    """Tests for has_geometry."""

    def test_geodataframe(self, square_polygons):
        assert has_geometry(square_polygons)

    def test_plain_dataframe(self):
        assert not has_geometry(pd.DataFrame({'x': [1, 2], 'y': [3, 4]}))
