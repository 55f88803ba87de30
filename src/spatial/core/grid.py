"""
Regular square grids over an extent.
"""

from __future__ import annotations

import math

import geopandas as gpd
import numpy as np
from shapely.geometry import box

from spatial.core.errors import EmptyResultError, InvalidFeatureError


def make_grid(
    extent: gpd.GeoDataFrame,
    cell_size: float,
    clip: bool = True,
) -> gpd.GeoDataFrame:
    """
    Build square cells covering the bounding box of ``extent``.

    Parameters
    ----------
    extent : gpd.GeoDataFrame
        Features whose total bounds define the grid. Its CRS is inherited.
    cell_size : float
        Cell edge length in CRS units.
    clip : bool
        Keep only cells intersecting the union of ``extent``.

    Returns
    -------
    gpd.GeoDataFrame
        Columns ``cell_id``, ``row`` and ``col`` (row 0 at the south edge).

    Examples
    --------
    >>> grid = make_grid(msoa, cell_size=1000)
    >>> grid[['cell_id', 'row', 'col']].head()
    """
    if cell_size <= 0:
        raise ValueError(f"cell_size must be positive, got {cell_size}")
    if extent.crs is None:
        raise InvalidFeatureError("make_grid requires an extent with a CRS")
    if extent.empty:
        raise EmptyResultError("Cannot build a grid over an empty extent", operation="make_grid")

    minx, miny, maxx, maxy = extent.total_bounds
    n_cols = max(1, math.ceil((maxx - minx) / cell_size))
    n_rows = max(1, math.ceil((maxy - miny) / cell_size))

    rows, cols = np.meshgrid(np.arange(n_rows), np.arange(n_cols), indexing="ij")
    rows = rows.ravel()
    cols = cols.ravel()
    cells = [
        box(minx + c * cell_size, miny + r * cell_size,
            minx + (c + 1) * cell_size, miny + (r + 1) * cell_size)
        for r, c in zip(rows, cols)
    ]

    grid = gpd.GeoDataFrame(
        {"cell_id": np.arange(len(cells)), "row": rows, "col": cols},
        geometry=cells,
        crs=extent.crs,
    )

    if clip:
        union = extent.geometry.union_all()
        grid = grid[grid.intersects(union)].reset_index(drop=True)

    return grid
