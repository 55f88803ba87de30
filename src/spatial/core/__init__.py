"""
Core spatial utilities: I/O, reprojection, predicates, distances and aggregation.
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
from spatial.core.features import Feature, validate_features, require_same_crs
from spatial.core.io import load_spatial, save_spatial, save_snapshot, load_snapshot, has_geometry
from spatial.core.crs import reproject, ensure_crs, to_projected, make_valid
from spatial.core.overlay import spatial_filter, spatial_join, count_within, flag_intersecting
from spatial.core.distance import (
    haversine_distance,
    haversine_matrix,
    nearest,
    nearest_neighbor,
    distance_to_nearest,
)
from spatial.core.aggregate import centroids, buffer, area_weighted_aggregate
from spatial.core.grid import make_grid

__all__ = [
    "SpatialError",
    "FormatError",
    "NetworkError",
    "CRSMismatchError",
    "FitError",
    "EmptyResultError",
    "InvalidFeatureError",
    "Feature",
    "validate_features",
    "require_same_crs",
    "load_spatial",
    "save_spatial",
    "save_snapshot",
    "load_snapshot",
    "has_geometry",
    "reproject",
    "ensure_crs",
    "to_projected",
    "make_valid",
    "spatial_filter",
    "spatial_join",
    "count_within",
    "flag_intersecting",
    "haversine_distance",
    "haversine_matrix",
    "nearest",
    "nearest_neighbor",
    "distance_to_nearest",
    "centroids",
    "buffer",
    "area_weighted_aggregate",
    "make_grid",
]
