"""
Spatial predicates, filters and joins.

Every function here requires its two collections to share a CRS and
raises ``CRSMismatchError`` otherwise; reprojection is always an explicit
step before linkage.
"""

from __future__ import annotations

from typing import Literal, Optional

import geopandas as gpd
import numpy as np
import pandas as pd

from spatial.core.errors import EmptyResultError
from spatial.core.features import require_same_crs


PREDICATES = ("within", "intersects", "disjoint", "contains")
CARDINALITIES = ("first", "all")

Predicate = Literal["within", "intersects", "disjoint", "contains"]
Cardinality = Literal["first", "all"]


def _check_predicate(predicate: str) -> None:
    if predicate not in PREDICATES:
        raise ValueError(
            f"Unknown predicate: '{predicate}'. Available: {', '.join(PREDICATES)}"
        )


def spatial_filter(
    gdf: gpd.GeoDataFrame,
    other: gpd.GeoDataFrame,
    predicate: Predicate = "intersects",
) -> gpd.GeoDataFrame:
    """
    Keep the features of ``gdf`` satisfying ``predicate`` against the union of ``other``.

    Parameters
    ----------
    gdf : gpd.GeoDataFrame
        Features to subset.
    other : gpd.GeoDataFrame
        Features whose union is the reference geometry.
    predicate : {'within', 'intersects', 'disjoint', 'contains'}
        Spatial relationship tested for each feature of ``gdf``.

    Returns
    -------
    gpd.GeoDataFrame
        Subset of ``gdf`` with its original index. May be empty.

    Examples
    --------
    >>> london_pollution = spatial_filter(pollution_cells, msoa, 'intersects')
    >>> pubs_outside_zone = spatial_filter(pubs, ulez, 'disjoint')
    """
    _check_predicate(predicate)
    require_same_crs(gdf, other, "spatial_filter")

    geoms = gdf.geometry
    if len(other) == 0:
        mask = np.full(len(gdf), predicate == "disjoint")
        return gdf.loc[mask].copy()

    reference = other.geometry.union_all()

    if predicate == "within":
        mask = geoms.within(reference)
    elif predicate == "intersects":
        mask = geoms.intersects(reference)
    elif predicate == "disjoint":
        mask = geoms.disjoint(reference)
    else:
        mask = geoms.contains(reference)

    return gdf.loc[np.asarray(mask, dtype=bool)].copy()


def spatial_join(
    gdf: gpd.GeoDataFrame,
    other: gpd.GeoDataFrame,
    predicate: Predicate = "intersects",
    cardinality: Cardinality = "first",
    how: Literal["left", "inner"] = "left",
    require_match: bool = False,
) -> gpd.GeoDataFrame:
    """
    Attach attributes of matching ``other`` features to each feature of ``gdf``.

    Parameters
    ----------
    gdf : gpd.GeoDataFrame
        Left collection; its geometries are kept.
    other : gpd.GeoDataFrame
        Right collection; its attributes are attached.
    predicate : {'within', 'intersects', 'disjoint', 'contains'}
        Relationship of each left geometry to a right geometry.
    cardinality : {'first', 'all'}
        ``'first'`` keeps at most one match per left feature (the right
        feature that comes first in ``other``); ``'all'`` returns one row
        per matching pair, repeating the left feature.
    how : {'left', 'inner'}
        ``'left'`` keeps unmatched left features with missing attributes.
    require_match : bool
        Raise ``EmptyResultError`` when no left feature matched.

    Returns
    -------
    gpd.GeoDataFrame
        Joined collection in the order of ``gdf``, with an ``index_right``
        column holding the matched index label of ``other``. Columns of
        ``other`` whose names already exist in ``gdf`` get a ``_right`` suffix.

    Raises
    ------
    CRSMismatchError
        If the CRS differ.
    EmptyResultError
        If ``require_match`` and nothing matched.

    Examples
    --------
    >>> pubs_msoa = spatial_join(pubs, msoa[['MSOA11CD', 'geometry']], 'within')
    """
    _check_predicate(predicate)
    if cardinality not in CARDINALITIES:
        raise ValueError(
            f"Unknown cardinality: '{cardinality}'. Available: {', '.join(CARDINALITIES)}"
        )
    require_same_crs(gdf, other, "spatial_join")

    left = gdf.copy()
    left["_left_pos"] = np.arange(len(left))
    right = other.copy()
    clashes = [c for c in right.columns if c in left.columns and c != right.geometry.name]
    right = right.rename(columns={c: f"{c}_right" for c in clashes})
    right["_right_pos"] = np.arange(len(right))

    joined = gpd.sjoin(left, right, how=how, predicate=predicate)

    if cardinality == "first":
        joined = joined.sort_values(
            ["_left_pos", "_right_pos"], kind="stable", na_position="last"
        )
        joined = joined[~joined["_left_pos"].duplicated(keep="first")]

    joined = joined.sort_values(["_left_pos", "_right_pos"], kind="stable", na_position="last")

    n_matched = int(joined.loc[joined["_right_pos"].notna(), "_left_pos"].nunique())
    if require_match and n_matched == 0:
        raise EmptyResultError(
            "Spatial join produced no matches",
            operation="spatial_join",
            predicate=predicate,
            n_left=len(gdf),
            n_right=len(other),
        )

    return joined.drop(columns=["_left_pos", "_right_pos"])


def count_within(
    points: gpd.GeoDataFrame,
    polygons: gpd.GeoDataFrame,
    id_col: str,
    name: str = "count",
    predicate: Predicate = "within",
) -> gpd.GeoDataFrame:
    """
    Count points falling in each polygon.

    Polygons without any point get a count of 0: an absent point means zero
    occurrences, not a missing observation.

    Parameters
    ----------
    points : gpd.GeoDataFrame
        Point features.
    polygons : gpd.GeoDataFrame
        Polygon features with unique identifiers in ``id_col``.
    id_col : str
        Polygon identifier column.
    name : str
        Name of the count column added to ``polygons``.
    predicate : str
        Relationship of points to polygons (default: within).

    Returns
    -------
    gpd.GeoDataFrame
        Copy of ``polygons`` with an integer ``name`` column.

    Examples
    --------
    >>> msoa = count_within(pubs, msoa, id_col='MSOA11CD', name='pubs_count')
    """
    _check_predicate(predicate)
    require_same_crs(points, polygons, "count_within")

    if polygons[id_col].duplicated().any():
        raise ValueError(f"Polygon identifier '{id_col}' is not unique")

    result = polygons.copy()
    if len(points) == 0:
        result[name] = 0
        return result

    joined = gpd.sjoin(points[[points.geometry.name]], polygons[[id_col, polygons.geometry.name]],
                       how="inner", predicate=predicate)
    counts = joined[id_col].value_counts()
    result[name] = result[id_col].map(counts).fillna(0).astype(int)
    return result


def flag_intersecting(
    polygons: gpd.GeoDataFrame,
    zones: gpd.GeoDataFrame,
    name: str = "in_zone",
) -> gpd.GeoDataFrame:
    """
    Add a 0/1 indicator of whether each polygon intersects any zone.

    Examples
    --------
    >>> msoa = flag_intersecting(msoa, ulez, name='ulez')
    """
    require_same_crs(polygons, zones, "flag_intersecting")
    result = polygons.copy()
    if len(zones) == 0:
        result[name] = 0
        return result
    reference = zones.geometry.union_all()
    result[name] = result.geometry.intersects(reference).astype(int)
    return result


def attach_attributes(
    gdf: gpd.GeoDataFrame,
    table: pd.DataFrame,
    left_on: str,
    right_on: Optional[str] = None,
) -> gpd.GeoDataFrame:
    """
    Left-join a plain attribute table onto a feature collection by key.

    Every feature is kept exactly once; features without a matching row get
    missing attributes. Duplicated keys in ``table`` raise ``ValueError``.

    Examples
    --------
    >>> msoa = attach_attributes(msoa, census, left_on='MSOA11CD', right_on='msoa11')
    """
    right_on = right_on or left_on
    if table[right_on].duplicated().any():
        raise ValueError(f"Attribute key '{right_on}' is not unique")

    table = table.drop(columns=[c for c in table.columns if c in gdf.columns and c != right_on])
    merged = gdf.merge(table, how="left", left_on=left_on, right_on=right_on)
    if right_on != left_on:
        merged = merged.drop(columns=right_on)
    merged.index = gdf.index
    return merged
