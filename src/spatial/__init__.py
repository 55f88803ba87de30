"""
Geospatial linkage and interpolation utilities.

This package loads spatial sources into feature collections, reprojects
them into a common CRS, links them (filters, joins, counts, nearest
distances, area-weighted aggregates) and interpolates sparse samples onto
a grid.

Example usage:
    from spatial import load_spatial, reproject, spatial_join, make_grid
    from spatial.interpolate import get_interpolator

    msoa = reproject(load_spatial('data_raw/msoa.gpkg'), 'EPSG:27700')
    pubs = reproject(load_spatial('data_raw/pubs.geojson'), 'EPSG:27700')
    pubs = spatial_join(pubs, msoa[['MSOA11CD', 'geometry']], 'within')

    grid = make_grid(msoa, cell_size=1000)
    surface = get_interpolator('idw').estimate(traffic, grid, 'flow')
"""

from spatial.core.errors import (
    SpatialError,
    FormatError,
    NetworkError,
    CRSMismatchError,
    FitError,
    EmptyResultError,
    InvalidFeatureError,
)
from spatial.core.features import (
    Feature,
    iter_features,
    from_features,
    validate_features,
    require_same_crs,
    geometry_summary,
)
from spatial.core.io import (
    load_spatial,
    points_from_table,
    load_csv_points,
    save_spatial,
    save_snapshot,
    load_snapshot,
    has_geometry,
    list_layers,
)
from spatial.core.remote import (
    fetch_bytes,
    load_remote,
    query_census_table,
    census_to_wide,
    query_osm_points,
)
from spatial.core.crs import (
    reproject,
    ensure_crs,
    to_projected,
    estimate_utm_zone,
    get_utm_crs,
    get_crs_info,
    crs_matches,
    make_valid,
)
from spatial.core.overlay import (
    spatial_filter,
    spatial_join,
    count_within,
    flag_intersecting,
    attach_attributes,
)
from spatial.core.distance import (
    haversine_distance,
    haversine_matrix,
    distance_matrix,
    nearest,
    nearest_neighbor,
    distance_to_nearest,
    distance_band_neighbors,
)
from spatial.core.aggregate import (
    centroids,
    buffer,
    points_to_cells,
    intersection_fractions,
    area_weighted_aggregate,
    coverage_share,
    mean_by_polygon,
)
from spatial.core.grid import make_grid

__all__ = [
    # Errors
    "SpatialError",
    "FormatError",
    "NetworkError",
    "CRSMismatchError",
    "FitError",
    "EmptyResultError",
    "InvalidFeatureError",
    # Features
    "Feature",
    "iter_features",
    "from_features",
    "validate_features",
    "require_same_crs",
    "geometry_summary",
    # I/O
    "load_spatial",
    "points_from_table",
    "load_csv_points",
    "save_spatial",
    "save_snapshot",
    "load_snapshot",
    "has_geometry",
    "list_layers",
    # Remote sources
    "fetch_bytes",
    "load_remote",
    "query_census_table",
    "census_to_wide",
    "query_osm_points",
    # CRS
    "reproject",
    "ensure_crs",
    "to_projected",
    "estimate_utm_zone",
    "get_utm_crs",
    "get_crs_info",
    "crs_matches",
    "make_valid",
    # Predicates and joins
    "spatial_filter",
    "spatial_join",
    "count_within",
    "flag_intersecting",
    "attach_attributes",
    # Distance
    "haversine_distance",
    "haversine_matrix",
    "distance_matrix",
    "nearest",
    "nearest_neighbor",
    "distance_to_nearest",
    "distance_band_neighbors",
    # Aggregation
    "centroids",
    "buffer",
    "points_to_cells",
    "intersection_fractions",
    "area_weighted_aggregate",
    "coverage_share",
    "mean_by_polygon",
    "make_grid",
]
