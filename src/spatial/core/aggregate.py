"""
Geometry construction and area-weighted aggregation.

Aggregates are keyed by a polygon identifier and returned as Series aligned
with the index of the polygons (or buffers) they summarise, so they can be
assigned straight back as a column:

    buffers = buffer(centroids(msoa), 1000)
    msoa['no2'] = area_weighted_aggregate(buffers, cells, 'no2', 'MSOA11CD')

Continuous aggregates are NaN where nothing intersects; distances and areas
are in CRS units, so all inputs must be in a projected CRS.
"""

from __future__ import annotations

from typing import Optional

import geopandas as gpd
import numpy as np
import pandas as pd
from shapely.geometry import box

from spatial.core.errors import CRSMismatchError, InvalidFeatureError
from spatial.core.features import crs_string, require_same_crs


def _require_projected(gdf: gpd.GeoDataFrame, operation: str) -> None:
    if gdf.crs is None:
        raise InvalidFeatureError(f"{operation} requires a CRS", operation=operation)
    if gdf.crs.is_geographic:
        raise CRSMismatchError(
            f"{operation} needs distances in linear units; reproject to a projected CRS first",
            operation=operation,
            left_crs=crs_string(gdf.crs),
        )


def centroids(gdf: gpd.GeoDataFrame) -> gpd.GeoDataFrame:
    """Replace each geometry by its centroid, keeping attributes and index."""
    result = gdf.copy()
    result[result.geometry.name] = gdf.geometry.centroid
    return result


def buffer(
    gdf: gpd.GeoDataFrame,
    distance: float,
    resolution: int = 16,
) -> gpd.GeoDataFrame:
    """
    Grow each geometry by ``distance`` CRS units.

    Parameters
    ----------
    gdf : gpd.GeoDataFrame
        Features in a projected CRS.
    distance : float
        Buffer radius in CRS units (metres for EPSG:27700).
    resolution : int
        Segments per quarter circle.

    Raises
    ------
    CRSMismatchError
        If ``gdf`` is in a geographic CRS, where a distance in degrees
        would be meaningless.
    """
    if distance < 0:
        raise ValueError(f"Buffer distance must be non-negative, got {distance}")
    _require_projected(gdf, "buffer")
    result = gdf.copy()
    result[result.geometry.name] = gdf.geometry.buffer(distance, resolution=resolution)
    return result


def points_to_cells(points: gpd.GeoDataFrame, cell_size: float) -> gpd.GeoDataFrame:
    """
    Turn gridded point values into square cells centred on each point.

    Gridded products such as the Defra PCM background maps are distributed
    as cell-centre coordinates; this restores the cell footprint so values
    can be intersected with buffers.

    Parameters
    ----------
    points : gpd.GeoDataFrame
        Point features in a projected CRS.
    cell_size : float
        Cell edge length in CRS units.
    """
    if cell_size <= 0:
        raise ValueError(f"cell_size must be positive, got {cell_size}")
    _require_projected(points, "points_to_cells")

    geom_types = set(points.geom_type.unique())
    if geom_types - {"Point"}:
        raise InvalidFeatureError(
            "points_to_cells expects Point geometries",
            geometry_types=sorted(geom_types),
        )

    half = cell_size / 2.0
    cells = [
        box(x - half, y - half, x + half, y + half)
        for x, y in zip(points.geometry.x, points.geometry.y)
    ]
    result = points.copy()
    result[result.geometry.name] = gpd.GeoSeries(cells, index=points.index, crs=points.crs)
    return result


def intersection_fractions(
    buffers: gpd.GeoDataFrame,
    coverage: gpd.GeoDataFrame,
    id_col: str,
) -> gpd.GeoDataFrame:
    """
    Intersect buffers with coverage cells and weight each piece by area.

    Returns
    -------
    gpd.GeoDataFrame
        One row per (buffer, cell) intersection with ``id_col``, the
        coverage attributes, ``piece_area`` and ``fraction`` =
        piece area / buffer area. Fractions lie in [0, 1]; per buffer they
        sum to at most 1 when coverage cells do not overlap.
    """
    require_same_crs(buffers, coverage, "intersection_fractions")
    _require_projected(buffers, "intersection_fractions")

    if buffers[id_col].duplicated().any():
        raise ValueError(f"Buffer identifier '{id_col}' is not unique")

    left = buffers[[id_col, buffers.geometry.name]]
    right = coverage.drop(columns=[id_col], errors="ignore")
    pieces = gpd.overlay(left, right, how="intersection", keep_geom_type=True)
    if pieces.empty:
        columns = [id_col] + [c for c in right.columns if c != right.geometry.name]
        pieces = gpd.GeoDataFrame({c: [] for c in columns}, geometry=[], crs=buffers.crs)

    buffer_area = pd.Series(buffers.geometry.area.values, index=buffers[id_col].values)
    pieces["piece_area"] = pieces.geometry.area
    pieces["fraction"] = pieces["piece_area"] / pieces[id_col].map(buffer_area)
    return pieces


def area_weighted_aggregate(
    buffers: gpd.GeoDataFrame,
    coverage: gpd.GeoDataFrame,
    value_field: str,
    id_col: str,
    name: Optional[str] = None,
) -> pd.Series:
    """
    Area-weighted sum of a coverage value over each buffer.

    For each buffer, sum over intersecting cells of
    ``value * intersection_area / buffer_area``. Buffers with no intersecting
    coverage get NaN, and so does any buffer touching a cell whose value is
    missing.

    Parameters
    ----------
    buffers : gpd.GeoDataFrame
        Polygons to aggregate into, unique identifiers in ``id_col``.
    coverage : gpd.GeoDataFrame
        Non-overlapping value cells carrying ``value_field``.
    value_field : str
        Coverage column to aggregate.
    id_col : str
        Buffer identifier column.
    name : str, optional
        Name of the returned Series (default: ``value_field``).

    Returns
    -------
    pd.Series
        Indexed like ``buffers``.
    """
    if value_field not in coverage.columns:
        raise KeyError(f"Coverage has no column '{value_field}'")

    pieces = intersection_fractions(buffers, coverage[[value_field, coverage.geometry.name]], id_col)
    pieces["weighted"] = pieces[value_field] * pieces["fraction"]
    # A missing cell value makes the buffer total missing
    totals = pieces.groupby(id_col)["weighted"].apply(lambda s: s.sum(skipna=False))

    values = buffers[id_col].map(totals).astype(float)
    return pd.Series(values.values, index=buffers.index, name=name or value_field)


def coverage_share(
    buffers: gpd.GeoDataFrame,
    coverage: gpd.GeoDataFrame,
    id_col: str,
) -> pd.Series:
    """Share of each buffer's area covered by coverage cells (0 when none)."""
    pieces = intersection_fractions(buffers, coverage[[coverage.geometry.name]], id_col)
    shares = pieces.groupby(id_col)["fraction"].sum()
    values = buffers[id_col].map(shares).fillna(0.0).clip(upper=1.0)
    return pd.Series(values.values, index=buffers.index, name="coverage_share")


def mean_by_polygon(
    polygons: gpd.GeoDataFrame,
    values: gpd.GeoDataFrame,
    value_field: str,
    id_col: str,
    name: Optional[str] = None,
) -> pd.Series:
    """
    Unweighted mean of ``value_field`` over the value features intersecting
    each polygon; NaN for polygons no value feature touches.
    """
    require_same_crs(polygons, values, "mean_by_polygon")
    if values.empty:
        return pd.Series(np.nan, index=polygons.index, name=name or value_field)

    joined = gpd.sjoin(
        values[[value_field, values.geometry.name]],
        polygons[[id_col, polygons.geometry.name]],
        how="inner",
        predicate="intersects",
    )
    means = joined.groupby(id_col)[value_field].mean()
    result = polygons[id_col].map(means).astype(float)
    return pd.Series(result.values, index=polygons.index, name=name or value_field)
