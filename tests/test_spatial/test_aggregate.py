"""Tests for buffers, cells, area-weighted aggregation and grids."""

import sys
from pathlib import Path

import pytest

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent.parent / "src"))

import geopandas as gpd
import numpy as np
from shapely.geometry import Point, box

from spatial.core.aggregate import (
    area_weighted_aggregate,
    buffer,
    centroids,
    coverage_share,
    intersection_fractions,
    mean_by_polygon,
    points_to_cells,
)
from spatial.core.errors import CRSMismatchError, EmptyResultError, InvalidFeatureError
from spatial.core.grid import make_grid


@pytest.fixture
def cells(square_polygons) -> gpd.GeoDataFrame:
    """The 2 x 2 km block as four coverage cells with values."""
    result = square_polygons[['geometry']].copy()
    result['no2'] = [10.0, 20.0, 30.0, 40.0]
    return result


@pytest.fixture
def buffers() -> gpd.GeoDataFrame:
    """Three 500 m buffers: centre of block, half outside, fully outside."""
    pts = gpd.GeoDataFrame(
        {'bid': ['centre', 'edge', 'outside']},
        geometry=[Point(1000, 1000), Point(2000, 1000), Point(9000, 9000)],
        crs='EPSG:27700',
    )
    return buffer(pts, 500)


class TestCentroidsAndBuffer:
    """Tests for centroids and buffer."""

    def test_centroids(self, square_polygons):
        result = centroids(square_polygons)
        assert result.geometry.iloc[0].equals(Point(500, 500))
        assert list(result['area_id']) == ['A', 'B', 'C', 'D']

    def test_buffer_area(self, sample_points):
        result = buffer(sample_points, 1000)
        # 16 segments per quadrant approximates the circle closely
        assert result.geometry.iloc[0].area == pytest.approx(np.pi * 1000 ** 2, rel=0.01)
        assert sample_points.geometry.iloc[0].geom_type == 'Point'

    def test_buffer_geographic_refused(self, wgs84_points):
        with pytest.raises(CRSMismatchError, match="reproject"):
            buffer(wgs84_points, 1000)

    def test_buffer_no_crs(self):
        gdf = gpd.GeoDataFrame(geometry=[Point(0, 0)])
        with pytest.raises(InvalidFeatureError):
            buffer(gdf, 10)

    def test_negative_distance(self, sample_points):
        with pytest.raises(ValueError):
            buffer(sample_points, -1)


class TestPointsToCells:
    """Tests for points_to_cells."""

    def test_cells_centred(self):
        pts = gpd.GeoDataFrame(
            {'no2': [30.0]}, geometry=[Point(530500, 180500)], crs='EPSG:27700'
        )
        result = points_to_cells(pts, 1000)
        assert result.geometry.iloc[0].equals(box(530000, 180000, 531000, 181000))
        assert result['no2'].item() == 30.0

    def test_rejects_polygons(self, square_polygons):
        with pytest.raises(InvalidFeatureError):
            points_to_cells(square_polygons, 1000)

    def test_rejects_geographic(self, wgs84_points):
        with pytest.raises(CRSMismatchError):
            points_to_cells(wgs84_points, 1000)


class TestIntersectionFractions:
    """Tests for intersection_fractions."""

    def test_fractions_bounded(self, buffers, cells):
        pieces = intersection_fractions(buffers, cells, 'bid')
        assert (pieces['fraction'] >= 0).all()
        assert (pieces['fraction'] <= 1 + 1e-9).all()

    def test_full_tiling_sums_to_one(self, buffers, cells):
        pieces = intersection_fractions(buffers, cells, 'bid')
        total = pieces.loc[pieces['bid'] == 'centre', 'fraction'].sum()
        assert total == pytest.approx(1.0)
        # Centre buffer is split equally across the four cells
        np.testing.assert_allclose(
            pieces.loc[pieces['bid'] == 'centre', 'fraction'], 0.25, atol=1e-9
        )

    def test_half_outside(self, buffers, cells):
        pieces = intersection_fractions(buffers, cells, 'bid')
        assert pieces.loc[pieces['bid'] == 'edge', 'fraction'].sum() == pytest.approx(0.5)

    def test_no_overlap(self, buffers, cells):
        pieces = intersection_fractions(buffers.iloc[[2]], cells, 'bid')
        assert len(pieces) == 0
        assert 'fraction' in pieces.columns

    def test_crs_mismatch(self, buffers, cells):
        with pytest.raises(CRSMismatchError):
            intersection_fractions(buffers, cells.to_crs('EPSG:4326'), 'bid')


class TestAreaWeightedAggregate:
    """Tests for area_weighted_aggregate and coverage_share."""

    def test_weighted_values(self, buffers, cells):
        values = area_weighted_aggregate(buffers, cells, 'no2', 'bid')
        assert list(values.index) == list(buffers.index)
        # Equal quarters of 10, 20, 30, 40
        assert values.iloc[0] == pytest.approx(25.0)
        # Half the buffer over B (20) and D (40), a quarter each
        assert values.iloc[1] == pytest.approx(0.25 * 20 + 0.25 * 40)

    def test_nan_when_nothing_intersects(self, buffers, cells):
        values = area_weighted_aggregate(buffers, cells, 'no2', 'bid')
        assert np.isnan(values.iloc[2])

    def test_missing_cell_value_stays_missing(self, buffers, cells):
        """A missing cell makes the buffers over it missing, not smaller."""
        cells.loc[0, 'no2'] = np.nan
        values = area_weighted_aggregate(buffers, cells, 'no2', 'bid')
        assert np.isnan(values.iloc[0])
        # The edge buffer only touches B and D
        assert values.iloc[1] == pytest.approx(0.25 * 20 + 0.25 * 40)
        assert np.isnan(values.iloc[2])

    def test_half_valued_half_missing(self):
        halves = gpd.GeoDataFrame(
            {'no2': [10.0, np.nan]},
            geometry=[box(0, 0, 1000, 1000), box(1000, 0, 2000, 1000)],
            crs='EPSG:27700',
        )
        straddling = gpd.GeoDataFrame(
            {'bid': ['s']}, geometry=[box(500, 0, 1500, 1000)], crs='EPSG:27700'
        )
        values = area_weighted_aggregate(straddling, halves, 'no2', 'bid')
        assert np.isnan(values.iloc[0])

    def test_missing_field(self, buffers, cells):
        with pytest.raises(KeyError):
            area_weighted_aggregate(buffers, cells, 'pm25', 'bid')

    def test_coverage_share(self, buffers, cells):
        shares = coverage_share(buffers, cells, 'bid')
        assert shares.iloc[0] == pytest.approx(1.0)
        assert shares.iloc[1] == pytest.approx(0.5)
        assert shares.iloc[2] == 0.0


class TestMeanByPolygon:
    """Tests for mean_by_polygon."""

    def test_mean(self, square_polygons):
        values = gpd.GeoDataFrame(
            {'v': [1.0, 3.0, 10.0]},
            geometry=[Point(100, 100), Point(200, 200), Point(1500, 1500)],
            crs='EPSG:27700',
        )
        result = mean_by_polygon(square_polygons, values, 'v', 'area_id', name='mean_v')
        assert result.name == 'mean_v'
        assert result.iloc[0] == pytest.approx(2.0)
        assert np.isnan(result.iloc[1])
        assert result.iloc[3] == pytest.approx(10.0)

    def test_empty_values(self, square_polygons, sample_points):
        empty = sample_points.iloc[0:0].assign(v=[])
        result = mean_by_polygon(square_polygons, empty, 'v', 'area_id')
        assert result.isna().all()


class TestMakeGrid:
    """Tests for make_grid."""

    def test_covers_bounds(self, square_polygons):
        grid = make_grid(square_polygons, 500)
        assert len(grid) == 16
        assert grid.crs.to_epsg() == 27700
        assert set(grid['row']) == {0, 1, 2, 3}
        assert grid.geometry.area.sum() == pytest.approx(2000 * 2000)

    def test_row_zero_south(self, square_polygons):
        grid = make_grid(square_polygons, 1000)
        south = grid[grid['row'] == 0]
        assert south.geometry.bounds['miny'].max() == 0

    def test_partial_cells(self, square_polygons):
        grid = make_grid(square_polygons, 1500)
        assert len(grid) == 4

    def test_clip(self):
        l_shape = gpd.GeoDataFrame(
            geometry=[box(0, 0, 1000, 400), box(0, 1600, 400, 2000)], crs='EPSG:27700'
        )
        clipped = make_grid(l_shape, 500, clip=True)
        full = make_grid(l_shape, 500, clip=False)
        assert len(full) == 8
        # Bottom row plus the north-west cell
        assert len(clipped) == 3
        assert list(clipped['cell_id']) == [0, 1, 6]

    def test_invalid_cell_size(self, square_polygons):
        with pytest.raises(ValueError):
            make_grid(square_polygons, 0)

    def test_empty_extent(self, square_polygons):
        with pytest.raises(EmptyResultError):
            make_grid(square_polygons.iloc[0:0], 100)

    def test_no_crs(self):
        with pytest.raises(InvalidFeatureError):
            make_grid(gpd.GeoDataFrame(geometry=[box(0, 0, 1, 1)]), 1)
