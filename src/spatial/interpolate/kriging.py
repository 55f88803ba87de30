"""
Ordinary kriging.

For n samples the kriging weights ``lam`` and Lagrange multiplier ``mu`` at
a target ``x0`` solve

    | G   1 | |lam|   |g0|
    | 1'  0 | | mu| = | 1|

with ``G[i, j] = gamma(|x_i - x_j|)`` and ``g0[i] = gamma(|x_i - x0|)``.
The prediction is ``lam' z`` and the kriging variance ``lam' g0 + mu``.
All targets are solved in one call with a shared left-hand side.
"""
from __future__ import annotations

import warnings
from typing import Optional, Sequence, Union

import numpy as np
from scipy.linalg import LinAlgError, LinAlgWarning, solve

from spatial.core.errors import FitError
from .base import DuplicatePolicy, Interpolator, pairwise_distances
from .factory import register_interpolator
from .variogram import DEFAULT_N_BINS, VariogramModel, empirical_from_arrays, fit_variogram


@register_interpolator('kriging')
class KrigingInterpolator(Interpolator):
    """
    Ordinary kriging with a fitted or supplied variogram.

    Parameters
    ----------
    model : VariogramModel, optional
        Variogram to use. When omitted, one is fitted to the samples on
        every call to ``estimate``.
    family : str or sequence of str
        Families tried when fitting (see ``fit_variogram``).
    duplicates : {'mean', 'first', 'error'}
        How coincident samples are merged before the system is built.
    n_bins : int
        Lag bins for the empirical variogram.

    Attributes
    ----------
    fitted_model_ : VariogramModel or None
        Variogram used by the last ``estimate`` call.

    Examples
    --------
    >>> kriging = KrigingInterpolator(family=['exponential', 'spherical'])
    >>> surface = kriging.estimate(traffic, grid, value_field='flow')
    >>> kriging.fitted_model_.family
    'spherical'
    """

    name = 'kriging'

    def __init__(
        self,
        model: Optional[VariogramModel] = None,
        family: Union[str, Sequence[str]] = 'exponential',
        duplicates: DuplicatePolicy = 'mean',
        n_bins: int = DEFAULT_N_BINS,
    ):
        self.model = model
        self.family = family
        self.duplicates = duplicates
        self.n_bins = n_bins
        self.fitted_model_: Optional[VariogramModel] = None

    def get_params(self) -> dict:
        return {
            'model': self.model,
            'family': self.family,
            'duplicates': self.duplicates,
            'n_bins': self.n_bins,
        }

    def _predict(self, sample_xy, values, target_xy, geographic):
        n = len(values)
        if n < 2:
            raise FitError("Kriging needs at least two distinct samples", n_samples=n)

        model = self.model
        if model is None:
            empirical = empirical_from_arrays(
                sample_xy, values, n_bins=self.n_bins, geographic=geographic
            )
            try:
                model = fit_variogram(empirical, self.family)
            except FitError as exc:
                exc.context.setdefault('n_samples', n)
                raise
        self.fitted_model_ = model

        lhs = np.ones((n + 1, n + 1))
        lhs[:n, :n] = model(pairwise_distances(sample_xy, sample_xy, geographic))
        lhs[n, n] = 0.0

        rhs = np.ones((n + 1, len(target_xy)))
        rhs[:n, :] = model(pairwise_distances(sample_xy, target_xy, geographic))

        with warnings.catch_warnings():
            warnings.simplefilter('error', LinAlgWarning)
            try:
                solution = solve(lhs, rhs)
            except (LinAlgError, LinAlgWarning) as exc:
                raise FitError(
                    f"Kriging system is singular or ill-conditioned: {exc}",
                    family=model.family,
                    n_samples=n,
                ) from exc

        weights = solution[:n, :]
        multiplier = solution[n, :]
        prediction = weights.T @ values
        variance = np.sum(weights * rhs[:n, :], axis=0) + multiplier
        return prediction, np.maximum(variance, 0.0)
