"""
Feature model and collection invariants.

A feature collection is a ``geopandas.GeoDataFrame`` with a CRS and one
non-empty geometry per row. This module provides the checks that enforce
those invariants and a small immutable ``Feature`` value for code that
works one record at a time.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Iterable, Iterator, Mapping, Optional

import geopandas as gpd
import numpy as np
import pandas as pd
from pyproj import CRS
from shapely.geometry.base import BaseGeometry

from spatial.core.errors import CRSMismatchError, InvalidFeatureError


@dataclass(frozen=True)
class Feature:
    """
    A single geometry with its CRS and attribute mapping.

    Attributes
    ----------
    geometry : shapely geometry
        Non-empty geometry.
    crs : str
        CRS identifier in authority form (e.g. ``'EPSG:27700'``).
    attributes : Mapping[str, Any]
        Scalar attribute values (read-only view).
    """

    geometry: BaseGeometry
    crs: str
    attributes: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if self.geometry is None or self.geometry.is_empty:
            raise InvalidFeatureError("Feature geometry must be non-empty")
        if not self.crs:
            raise InvalidFeatureError("Feature must carry a CRS")
        object.__setattr__(self, "attributes", MappingProxyType(dict(self.attributes)))

    @property
    def geom_type(self) -> str:
        return self.geometry.geom_type

    def get(self, name: str, default: Any = None) -> Any:
        """Return an attribute value, or ``default`` if absent."""
        return self.attributes.get(name, default)


def crs_string(crs: Any) -> Optional[str]:
    """Render a CRS-like value as an ``AUTHORITY:CODE`` string when possible."""
    if crs is None:
        return None
    crs = CRS.from_user_input(crs)
    authority = crs.to_authority()
    if authority is not None:
        return f"{authority[0]}:{authority[1]}"
    return crs.to_string()


def _scalar(value: Any) -> Any:
    """Convert numpy / pandas scalars to plain Python values, NaN to None."""
    if value is None:
        return None
    if isinstance(value, float) and np.isnan(value):
        return None
    if value is pd.NA or value is pd.NaT:
        return None
    if isinstance(value, np.generic):
        value = value.item()
        if isinstance(value, float) and np.isnan(value):
            return None
    return value


def iter_features(gdf: gpd.GeoDataFrame) -> Iterator[Feature]:
    """
    Yield one ``Feature`` per row of a validated collection.

    Examples
    --------
    >>> for feature in iter_features(msoa):
    ...     print(feature.get('MSOA11CD'), feature.geom_type)
    """
    validate_features(gdf)
    crs = crs_string(gdf.crs)
    geom_col = gdf.geometry.name
    attr_cols = [c for c in gdf.columns if c != geom_col]
    for _, row in gdf.iterrows():
        attributes = {col: _scalar(row[col]) for col in attr_cols}
        yield Feature(geometry=row[geom_col], crs=crs, attributes=attributes)


def from_features(features: Iterable[Feature]) -> gpd.GeoDataFrame:
    """
    Build a collection from ``Feature`` values.

    Raises
    ------
    InvalidFeatureError
        If no features are given.
    CRSMismatchError
        If the features do not share a CRS.
    """
    features = list(features)
    if not features:
        raise InvalidFeatureError("Cannot build a collection from zero features")

    crs_values = {f.crs for f in features}
    if len(crs_values) > 1:
        raise CRSMismatchError(
            "Features in one collection must share a CRS",
            operation="from_features",
            crs_values=sorted(crs_values),
        )

    records = [dict(f.attributes) for f in features]
    geometries = [f.geometry for f in features]
    return gpd.GeoDataFrame(records, geometry=geometries, crs=features[0].crs)


def validate_features(gdf: gpd.GeoDataFrame, name: str = "features") -> gpd.GeoDataFrame:
    """
    Check the feature collection invariants.

    Parameters
    ----------
    gdf : gpd.GeoDataFrame
        Collection to validate.
    name : str
        Label used in error messages.

    Returns
    -------
    gpd.GeoDataFrame
        The same object, for chaining.

    Raises
    ------
    InvalidFeatureError
        If the collection is not a GeoDataFrame, has no CRS, or contains
        null or empty geometries.
    """
    if not isinstance(gdf, gpd.GeoDataFrame):
        raise InvalidFeatureError(
            f"{name} must be a GeoDataFrame, got {type(gdf).__name__}",
            collection=name,
        )
    if gdf.crs is None:
        raise InvalidFeatureError(f"{name} has no CRS", collection=name)

    geoms = gdf.geometry
    n_null = int(geoms.isna().sum())
    if n_null:
        raise InvalidFeatureError(
            f"{name} contains null geometries", collection=name, n_null=n_null
        )
    n_empty = int(geoms.is_empty.sum())
    if n_empty:
        raise InvalidFeatureError(
            f"{name} contains empty geometries", collection=name, n_empty=n_empty
        )
    return gdf


def require_same_crs(
    left: gpd.GeoDataFrame,
    right: gpd.GeoDataFrame,
    operation: str,
) -> CRS:
    """
    Validate both collections and require that they share a CRS.

    Reprojection is never done here; callers must call ``reproject`` first.

    Returns
    -------
    pyproj.CRS
        The shared CRS.

    Raises
    ------
    CRSMismatchError
        If the CRS differ.
    """
    validate_features(left, "left")
    validate_features(right, "right")
    if not left.crs.equals(right.crs):
        raise CRSMismatchError(
            f"{operation} requires both collections in the same CRS; reproject first",
            operation=operation,
            left_crs=crs_string(left.crs),
            right_crs=crs_string(right.crs),
        )
    return left.crs


def geometry_summary(gdf: gpd.GeoDataFrame) -> dict:
    """
    Summarise geometry health for QA reports.

    Returns
    -------
    dict
        Keys: crs, n_features, n_null_geometry, n_empty_geometry,
        n_invalid_geometry, geometry_types.
    """
    geoms = gdf.geometry
    present = geoms[geoms.notna()]
    return {
        "crs": crs_string(gdf.crs),
        "n_features": len(gdf),
        "n_null_geometry": int(geoms.isna().sum()),
        "n_empty_geometry": int(present.is_empty.sum()),
        "n_invalid_geometry": int((~present.is_valid).sum()),
        "geometry_types": ",".join(sorted(present.geom_type.unique())),
    }
