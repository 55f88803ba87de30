"""
Common interface for interpolators.

An interpolator turns sample points carrying a numeric value into an
estimate at arbitrary target features:

    result = interpolator.estimate(samples, targets, value_field='no2')

``result`` is a copy of ``targets`` with a ``prediction`` column and a
``variance`` column (NaN for methods without an error model). Polygon
targets such as grid cells are estimated at their centroids.

Usage
-----
    from spatial.interpolate.base import Interpolator

    class NearestValue(Interpolator):
        name = 'nearest'

        def _predict(self, sample_xy, values, target_xy, geographic):
            ...
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Literal

import geopandas as gpd
import numpy as np
import pandas as pd
from scipy.spatial.distance import cdist

from spatial.core.distance import EARTH_RADIUS_M
from spatial.core.errors import FitError, InvalidFeatureError
from spatial.core.features import require_same_crs, validate_features


DuplicatePolicy = Literal["mean", "first", "error"]
DUPLICATE_POLICIES = ("mean", "first", "error")

PREDICTION_COL = "prediction"
VARIANCE_COL = "variance"


def feature_coordinates(gdf: gpd.GeoDataFrame) -> np.ndarray:
    """(x, y) per feature; points as-is, other geometries at their centroid."""
    geoms = gdf.geometry
    if not (geoms.geom_type == "Point").all():
        geoms = geoms.centroid
    return np.column_stack([geoms.x.to_numpy(), geoms.y.to_numpy()])


def pairwise_distances(a: np.ndarray, b: np.ndarray, geographic: bool = False) -> np.ndarray:
    """
    Distance matrix between two coordinate arrays of shape (n, 2).

    Planar Euclidean for projected coordinates; great-circle metres for
    (lon, lat) coordinates when ``geographic``.
    """
    if not geographic:
        return cdist(a, b)

    lon1 = np.radians(a[:, 0])[:, np.newaxis]
    lat1 = np.radians(a[:, 1])[:, np.newaxis]
    lon2 = np.radians(b[:, 0])[np.newaxis, :]
    lat2 = np.radians(b[:, 1])[np.newaxis, :]
    h = np.sin((lat2 - lat1) / 2) ** 2 + np.cos(lat1) * np.cos(lat2) * np.sin((lon2 - lon1) / 2) ** 2
    return 2 * EARTH_RADIUS_M * np.arcsin(np.sqrt(np.clip(h, 0.0, 1.0)))


def prepare_samples(
    samples: gpd.GeoDataFrame,
    value_field: str,
    duplicates: DuplicatePolicy = "mean",
) -> tuple[np.ndarray, np.ndarray]:
    """
    Extract sample coordinates and values, resolving coincident samples.

    Samples with a missing value are dropped. Samples sharing exact
    coordinates are merged by ``duplicates``: ``'mean'`` averages their
    values, ``'first'`` keeps the first in row order and ``'error'`` raises.

    Returns
    -------
    tuple[np.ndarray, np.ndarray]
        Coordinates of shape (n, 2) and values of shape (n,).

    Raises
    ------
    KeyError
        If ``value_field`` is missing.
    FitError
        If ``duplicates='error'`` and two samples coincide.
    """
    if duplicates not in DUPLICATE_POLICIES:
        raise ValueError(
            f"Unknown duplicates policy: '{duplicates}'. Available: {', '.join(DUPLICATE_POLICIES)}"
        )
    if value_field not in samples.columns:
        raise KeyError(f"Samples have no column '{value_field}'")

    xy = feature_coordinates(samples)
    values = pd.to_numeric(samples[value_field], errors="coerce").to_numpy(dtype=float)
    keep = ~np.isnan(values)
    frame = pd.DataFrame({"x": xy[keep, 0], "y": xy[keep, 1], "value": values[keep]})

    if frame.duplicated(["x", "y"]).any():
        if duplicates == "error":
            n_dup = int(frame.duplicated(["x", "y"]).sum())
            raise FitError(
                "Samples share identical coordinates",
                n_samples=len(frame),
                n_duplicates=n_dup,
            )
        agg = "mean" if duplicates == "mean" else "first"
        frame = frame.groupby(["x", "y"], sort=False, as_index=False)["value"].agg(agg)

    return frame[["x", "y"]].to_numpy(), frame["value"].to_numpy()


class Interpolator(ABC):
    """
    Base class for interpolators.

    Subclasses set ``name`` and implement ``_predict`` on plain coordinate
    arrays; ``estimate`` handles validation, CRS checks and result assembly.
    """

    name: str = "base"
    duplicates: DuplicatePolicy = "mean"

    def estimate(
        self,
        samples: gpd.GeoDataFrame,
        targets: gpd.GeoDataFrame,
        value_field: str,
    ) -> gpd.GeoDataFrame:
        """
        Estimate ``value_field`` at every target feature.

        Parameters
        ----------
        samples : gpd.GeoDataFrame
            Point samples carrying ``value_field``.
        targets : gpd.GeoDataFrame
            Points or polygons to estimate at; must share the samples' CRS.
        value_field : str
            Numeric column of ``samples`` to interpolate.

        Returns
        -------
        gpd.GeoDataFrame
            Copy of ``targets`` with ``prediction`` and ``variance`` columns.
        """
        validate_features(samples, "samples")
        validate_features(targets, "targets")
        crs = require_same_crs(samples, targets, f"{self.name} interpolation")

        sample_xy, values = prepare_samples(samples, value_field, self.duplicates)
        if len(values) == 0:
            raise InvalidFeatureError(
                f"No samples with a value in '{value_field}'",
                n_samples=len(samples),
            )

        result = targets.copy()
        if len(targets) == 0:
            result[PREDICTION_COL] = np.array([], dtype=float)
            result[VARIANCE_COL] = np.array([], dtype=float)
            return result

        target_xy = feature_coordinates(targets)
        prediction, variance = self._predict(sample_xy, values, target_xy, crs.is_geographic)

        result[PREDICTION_COL] = prediction
        result[VARIANCE_COL] = variance
        return result

    @abstractmethod
    def _predict(
        self,
        sample_xy: np.ndarray,
        values: np.ndarray,
        target_xy: np.ndarray,
        geographic: bool,
    ) -> tuple[np.ndarray, np.ndarray]:
        """Return (prediction, variance) arrays aligned with ``target_xy``."""
        ...

    def get_params(self) -> dict:
        """Constructor parameters, for reporting."""
        return {}

    def __repr__(self) -> str:
        params = ", ".join(f"{k}={v!r}" for k, v in self.get_params().items())
        return f"{type(self).__name__}({params})"
