"""
Inverse distance weighting.

    z(x0) = sum(z_i / d_i**p) / sum(1 / d_i**p)

A target that coincides with a sample takes that sample's value exactly.
"""
from __future__ import annotations

from typing import Optional

import numpy as np

from .base import Interpolator, pairwise_distances
from .factory import register_interpolator


@register_interpolator('idw')
class IDWInterpolator(Interpolator):
    """
    Inverse distance weighted interpolation.

    Parameters
    ----------
    power : float
        Distance exponent ``p`` (default 2).
    max_neighbors : int, optional
        Use only the nearest ``max_neighbors`` samples per target
        (default: all samples).

    Examples
    --------
    >>> idw = IDWInterpolator(power=2.0)
    >>> surface = idw.estimate(traffic, grid, value_field='flow')
    >>> surface['variance'].isna().all()
    True
    """

    name = 'idw'

    def __init__(self, power: float = 2.0, max_neighbors: Optional[int] = None):
        if power <= 0:
            raise ValueError(f"power must be positive, got {power}")
        if max_neighbors is not None and max_neighbors < 1:
            raise ValueError(f"max_neighbors must be at least 1, got {max_neighbors}")
        self.power = power
        self.max_neighbors = max_neighbors

    def get_params(self) -> dict:
        return {'power': self.power, 'max_neighbors': self.max_neighbors}

    def _predict(self, sample_xy, values, target_xy, geographic):
        distances = pairwise_distances(target_xy, sample_xy, geographic)
        neighbor_values = np.broadcast_to(values, distances.shape)

        if self.max_neighbors is not None and self.max_neighbors < len(values):
            order = np.argsort(distances, axis=1, kind='stable')[:, :self.max_neighbors]
            distances = np.take_along_axis(distances, order, axis=1)
            neighbor_values = values[order]

        coincident = distances == 0
        with np.errstate(divide='ignore'):
            weights = 1.0 / distances ** self.power
        weights[coincident] = 0.0

        with np.errstate(invalid='ignore'):
            prediction = (weights * neighbor_values).sum(axis=1) / weights.sum(axis=1)

        exact = coincident.any(axis=1)
        if exact.any():
            rows = np.flatnonzero(exact)
            cols = coincident[rows].argmax(axis=1)
            prediction[rows] = neighbor_values[rows, cols]

        variance = np.full(len(target_xy), np.nan)
        return prediction, variance
