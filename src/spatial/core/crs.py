"""
Coordinate Reference System (CRS) utilities.

Provides reprojection and CRS inspection for feature collections. All
projection math is delegated to pyproj through geopandas.
"""

from __future__ import annotations

from typing import Optional, Union
import warnings

import geopandas as gpd
from pyproj import CRS

from spatial.core.errors import InvalidFeatureError
from spatial.core.features import crs_string, validate_features


# Common CRS codes
WGS84 = "EPSG:4326"
WEB_MERCATOR = "EPSG:3857"
BRITISH_NATIONAL_GRID = "EPSG:27700"


def reproject(
    gdf: gpd.GeoDataFrame,
    target_crs: Union[str, int, CRS],
) -> gpd.GeoDataFrame:
    """
    Transform every geometry of a collection into ``target_crs``.

    Attributes are carried over unchanged and the input is never modified.
    Reprojecting into the CRS the collection already has returns a copy
    with identical coordinates.

    Parameters
    ----------
    gdf : gpd.GeoDataFrame
        Collection with a CRS.
    target_crs : str, int or pyproj.CRS
        Target CRS (EPSG code, authority string, WKT or proj string).

    Returns
    -------
    gpd.GeoDataFrame
        New collection in ``target_crs``.

    Raises
    ------
    InvalidFeatureError
        If the collection has no CRS.

    Examples
    --------
    >>> pubs = reproject(pubs, "EPSG:27700")
    >>> roundtrip = reproject(reproject(pubs, "EPSG:4326"), "EPSG:27700")
    """
    if gdf.crs is None:
        raise InvalidFeatureError(
            "Cannot reproject a collection without a CRS; set one explicitly",
            target_crs=str(target_crs),
        )

    target = CRS.from_user_input(target_crs)
    if gdf.crs.equals(target):
        return gdf.copy()
    return gdf.to_crs(target)


def ensure_crs(
    gdf: gpd.GeoDataFrame,
    target_crs: str = WGS84,
    allow_override: bool = False,
) -> gpd.GeoDataFrame:
    """
    Ensure a GeoDataFrame has the specified CRS.

    If the GeoDataFrame has a different CRS, it will be reprojected.
    If the GeoDataFrame has no CRS, either the target CRS will be assigned
    (if allow_override=True) or an error will be raised.

    Parameters
    ----------
    gdf : gpd.GeoDataFrame
        The GeoDataFrame to check/transform.
    target_crs : str, optional
        Target CRS as EPSG code or proj4 string. Default is WGS84 (EPSG:4326).
    allow_override : bool, optional
        If True and the GeoDataFrame has no CRS, assign the target CRS
        without reprojection. Default is False.

    Returns
    -------
    gpd.GeoDataFrame
        GeoDataFrame with the target CRS.

    Raises
    ------
    InvalidFeatureError
        If the GeoDataFrame has no CRS and allow_override is False.

    Warnings
    --------
    Using ``allow_override=True`` assumes the coordinates are already in
    the target CRS. Only use this when the original coordinate system is
    known, e.g. a CSV documented as British National Grid.
    """
    if gdf.crs is None:
        if not allow_override:
            raise InvalidFeatureError(
                "GeoDataFrame has no CRS. Set allow_override=True to assign "
                f"{target_crs} without reprojection, or set CRS explicitly.",
                target_crs=str(target_crs),
            )
        warnings.warn(
            f"GeoDataFrame had no CRS. Assigned {target_crs} without reprojection.",
            UserWarning,
        )
        return gdf.set_crs(target_crs)

    return reproject(gdf, target_crs)


def estimate_utm_zone(lon: float) -> int:
    """
    Estimate the appropriate UTM zone for a given longitude.

    Examples
    --------
    >>> estimate_utm_zone(-0.1)  # London
    30
    >>> estimate_utm_zone(-74.0)  # New York
    18
    """
    # UTM zones are 6 degrees wide, starting at -180
    zone = int((lon + 180) / 6) + 1
    return min(max(zone, 1), 60)


def get_utm_crs(lon: float, lat: float) -> str:
    """
    Get the appropriate UTM CRS for a given location.

    Examples
    --------
    >>> get_utm_crs(-0.1, 51.5)  # London
    'EPSG:32630'
    >>> get_utm_crs(151.2, -33.9)  # Sydney
    'EPSG:32756'
    """
    zone = estimate_utm_zone(lon)
    if lat >= 0:
        return f"EPSG:326{zone:02d}"
    return f"EPSG:327{zone:02d}"


def to_projected(
    gdf: gpd.GeoDataFrame,
    utm_zone: Optional[int] = None,
) -> gpd.GeoDataFrame:
    """
    Convert a collection to a metric UTM projection.

    Buffers, areas and planar distances need projected coordinates. The UTM
    zone is derived from the centroid of the data unless ``utm_zone`` is
    given.

    Parameters
    ----------
    gdf : gpd.GeoDataFrame
        Collection with a CRS.
    utm_zone : int, optional
        Specific UTM zone to use.

    Returns
    -------
    gpd.GeoDataFrame
        Collection in UTM coordinates.
    """
    validate_features(gdf)
    gdf_wgs84 = reproject(gdf, WGS84)

    centroid = gdf_wgs84.geometry.union_all().centroid
    lon, lat = centroid.x, centroid.y

    if utm_zone is not None:
        prefix = "326" if lat >= 0 else "327"
        target_crs = f"EPSG:{prefix}{utm_zone:02d}"
    else:
        target_crs = get_utm_crs(lon, lat)

    return reproject(gdf, target_crs)


def get_crs_info(gdf: gpd.GeoDataFrame) -> dict:
    """
    Get information about a GeoDataFrame's CRS.

    Returns
    -------
    dict
        Keys: 'crs', 'epsg', 'is_geographic', 'is_projected', 'units'.
        All values are None when the frame has no CRS.

    Examples
    --------
    >>> get_crs_info(msoa)['units']
    'metre'
    """
    if gdf.crs is None:
        return {
            "crs": None,
            "epsg": None,
            "is_geographic": None,
            "is_projected": None,
            "units": None,
        }

    crs = gdf.crs

    try:
        units = crs.axis_info[0].unit_name
    except (AttributeError, IndexError):
        units = None

    return {
        "crs": crs,
        "epsg": crs.to_epsg(),
        "is_geographic": crs.is_geographic,
        "is_projected": crs.is_projected,
        "units": units,
    }


def crs_matches(
    gdf1: gpd.GeoDataFrame,
    gdf2: gpd.GeoDataFrame,
) -> bool:
    """
    Check if two GeoDataFrames have the same CRS.

    Returns False if either has no CRS.

    Examples
    --------
    >>> if not crs_matches(pubs, msoa):
    ...     pubs = reproject(pubs, msoa.crs)
    """
    if gdf1.crs is None or gdf2.crs is None:
        return False
    return gdf1.crs.equals(gdf2.crs)


def describe_crs(gdf: gpd.GeoDataFrame) -> str:
    """Short label such as ``'EPSG:27700 (projected, metre)'``."""
    info = get_crs_info(gdf)
    if info["crs"] is None:
        return "no CRS"
    kind = "geographic" if info["is_geographic"] else "projected"
    return f"{crs_string(info['crs'])} ({kind}, {info['units']})"


def make_valid(gdf: gpd.GeoDataFrame) -> gpd.GeoDataFrame:
    """
    Repair invalid geometries (self-intersections, bow-ties).

    Valid geometries are left untouched. Returns a new collection.
    """
    gdf = gdf.copy()
    invalid = ~gdf.geometry.is_valid
    if invalid.any():
        gdf.loc[invalid, gdf.geometry.name] = gdf.geometry[invalid].make_valid()
    return gdf
