"""
Empirical variograms and parametric variogram fitting.

Usage
-----
    from spatial.interpolate.variogram import empirical_variogram, fit_variogram

    emp = empirical_variogram(traffic, 'flow')
    model = fit_variogram(emp, ['exponential', 'spherical', 'gaussian'])
    print(model.family, model.nugget, model.sill, model.range)
"""
from __future__ import annotations

import warnings
from dataclasses import dataclass
from typing import Optional, Sequence, Union

import geopandas as gpd
import numpy as np
import pandas as pd
from scipy.optimize import OptimizeWarning, curve_fit

from spatial.core.errors import FitError
from spatial.core.features import validate_features
from .base import pairwise_distances, prepare_samples


DEFAULT_N_BINS = 15
MIN_BINS = 3


# =============================================================================
# MODEL FAMILIES
# =============================================================================

def _exponential(h, nugget, psill, rng):
    return nugget + psill * (1.0 - np.exp(-h / rng))


def _spherical(h, nugget, psill, rng):
    r = np.minimum(h / rng, 1.0)
    return nugget + psill * (1.5 * r - 0.5 * r ** 3)


def _gaussian(h, nugget, psill, rng):
    return nugget + psill * (1.0 - np.exp(-(h / rng) ** 2))


FAMILIES = {
    'exponential': _exponential,
    'spherical': _spherical,
    'gaussian': _gaussian,
}


@dataclass(frozen=True)
class VariogramModel:
    """
    Fitted variogram.

    Attributes
    ----------
    family : str
        One of ``FAMILIES``.
    nugget : float
        Semivariance discontinuity at the origin.
    sill : float
        Total sill (nugget + partial sill).
    range : float
        Range parameter in CRS units.
    n_bins : int
        Number of non-empty lag bins the model was fitted on.
    sse : float
        Weighted sum of squared residuals of the fit.
    """

    family: str
    nugget: float
    sill: float
    range: float
    n_bins: int = 0
    sse: float = float('nan')

    def __post_init__(self):
        if self.family not in FAMILIES:
            raise ValueError(
                f"Unknown variogram family: '{self.family}'. Available: {', '.join(FAMILIES)}"
            )
        if self.range <= 0:
            raise ValueError(f"Variogram range must be positive, got {self.range}")

    @property
    def partial_sill(self) -> float:
        return self.sill - self.nugget

    def __call__(self, h) -> np.ndarray:
        """Semivariance at lag ``h``; 0 at lag 0."""
        h = np.asarray(h, dtype=float)
        gamma = FAMILIES[self.family](h, self.nugget, self.partial_sill, self.range)
        return np.where(h == 0, 0.0, gamma)

    def to_dict(self) -> dict:
        return {
            'family': self.family,
            'nugget': self.nugget,
            'sill': self.sill,
            'range': self.range,
            'n_bins': self.n_bins,
            'sse': self.sse,
        }


# =============================================================================
# EMPIRICAL VARIOGRAM
# =============================================================================

def empirical_from_arrays(
    xy: np.ndarray,
    values: np.ndarray,
    cutoff: Optional[float] = None,
    width: Optional[float] = None,
    n_bins: int = DEFAULT_N_BINS,
    geographic: bool = False,
) -> pd.DataFrame:
    """Array form of :func:`empirical_variogram`."""
    n = len(values)
    columns = ['distance', 'gamma', 'n_pairs']
    if n < 2:
        return pd.DataFrame(columns=columns)

    if cutoff is None:
        span = xy.max(axis=0) - xy.min(axis=0)
        if geographic:
            corners = np.array([xy.min(axis=0), xy.max(axis=0)])
            diagonal = pairwise_distances(corners[:1], corners[1:], geographic=True)[0, 0]
        else:
            diagonal = float(np.hypot(span[0], span[1]))
        cutoff = diagonal / 3.0
    if cutoff <= 0:
        return pd.DataFrame(columns=columns)
    if width is None:
        width = cutoff / n_bins

    i, j = np.triu_indices(n, k=1)
    distances = pairwise_distances(xy, xy, geographic)[i, j]
    semivariance = 0.5 * (values[i] - values[j]) ** 2

    in_range = (distances > 0) & (distances <= cutoff)
    distances = distances[in_range]
    semivariance = semivariance[in_range]

    # Bin j covers (j * width, (j + 1) * width]
    bins = np.ceil(distances / width).astype(int) - 1
    frame = pd.DataFrame({'bin': bins, 'distance': distances, 'gamma': semivariance})
    grouped = frame.groupby('bin').agg(
        distance=('distance', 'mean'),
        gamma=('gamma', 'mean'),
        n_pairs=('gamma', 'size'),
    )
    return grouped.reset_index(drop=True)[columns]


def empirical_variogram(
    samples: gpd.GeoDataFrame,
    value_field: str,
    cutoff: Optional[float] = None,
    width: Optional[float] = None,
    n_bins: int = DEFAULT_N_BINS,
) -> pd.DataFrame:
    """
    Bin sample pairs by separation distance.

    Parameters
    ----------
    samples : gpd.GeoDataFrame
        Point samples carrying ``value_field``.
    value_field : str
        Numeric column to analyse.
    cutoff : float, optional
        Maximum pair distance (default: one third of the bounding-box
        diagonal of the samples).
    width : float, optional
        Lag bin width (default: ``cutoff / n_bins``).
    n_bins : int
        Number of bins when ``width`` is not given.

    Returns
    -------
    pd.DataFrame
        One row per non-empty bin: ``distance`` (mean pair distance),
        ``gamma`` (mean semivariance) and ``n_pairs``.
    """
    validate_features(samples, 'samples')
    xy, values = prepare_samples(samples, value_field, duplicates='first')
    return empirical_from_arrays(
        xy, values, cutoff=cutoff, width=width, n_bins=n_bins,
        geographic=samples.crs.is_geographic,
    )


# =============================================================================
# MODEL FITTING
# =============================================================================

def _fit_family(empirical: pd.DataFrame, family: str) -> VariogramModel:
    if family not in FAMILIES:
        raise ValueError(
            f"Unknown variogram family: '{family}'. Available: {', '.join(FAMILIES)}"
        )

    bins = empirical[empirical['n_pairs'] > 0]
    n_bins = len(bins)
    if n_bins < MIN_BINS:
        raise FitError(
            f"Too few non-empty lag bins to fit a variogram (need {MIN_BINS})",
            family=family,
            n_bins=n_bins,
        )

    h = bins['distance'].to_numpy(dtype=float)
    gamma = bins['gamma'].to_numpy(dtype=float)
    n_pairs = bins['n_pairs'].to_numpy(dtype=float)

    if not np.any(gamma > 0):
        raise FitError("Sample values have zero variance", family=family, n_bins=n_bins)

    # Weighted least squares with weights N_j / h_j**2
    weights = n_pairs / h ** 2
    sigma = 1.0 / np.sqrt(weights)

    p0 = [float(gamma.min()) * 0.5, float(gamma.max()), float(h.max()) / 3.0]
    upper = [float(gamma.max()) * 2.0, float(gamma.max()) * 4.0, float(h.max()) * 10.0]
    lower = [0.0, 0.0, float(h.min()) * 1e-3]
    p0 = np.clip(p0, lower, upper)

    with warnings.catch_warnings():
        warnings.simplefilter('ignore', OptimizeWarning)
        try:
            params, _ = curve_fit(
                FAMILIES[family], h, gamma, p0=p0, sigma=sigma,
                bounds=(lower, upper), maxfev=10000,
            )
        except (RuntimeError, ValueError) as exc:
            raise FitError(
                f"Variogram fit did not converge: {exc}",
                family=family,
                n_bins=n_bins,
            ) from exc

    if not np.all(np.isfinite(params)):
        raise FitError("Variogram fit produced non-finite parameters", family=family, n_bins=n_bins)

    nugget, psill, rng = (float(p) for p in params)
    residuals = gamma - FAMILIES[family](h, nugget, psill, rng)
    sse = float(np.sum(weights * residuals ** 2))

    return VariogramModel(
        family=family,
        nugget=nugget,
        sill=nugget + psill,
        range=rng,
        n_bins=n_bins,
        sse=sse,
    )


def fit_variogram(
    empirical: pd.DataFrame,
    family: Union[str, Sequence[str]] = 'exponential',
) -> VariogramModel:
    """
    Fit a parametric variogram to an empirical one.

    Parameters
    ----------
    empirical : pd.DataFrame
        Output of :func:`empirical_variogram`.
    family : str or sequence of str
        'exponential', 'spherical' or 'gaussian'. With several families,
        each is fitted and the lowest weighted SSE wins.

    Raises
    ------
    FitError
        If no family can be fitted: too few non-empty bins, zero variance
        or non-convergence.
    """
    families = [family] if isinstance(family, str) else list(family)
    if not families:
        raise ValueError("At least one variogram family is required")

    best = None
    last_error = None
    for name in families:
        try:
            model = _fit_family(empirical, name)
        except FitError as exc:
            last_error = exc
            continue
        if best is None or model.sse < best.sse:
            best = model

    if best is None:
        raise FitError(
            "No variogram family could be fitted",
            family=families if len(families) > 1 else families[0],
            n_bins=last_error.context.get('n_bins') if last_error else None,
            reason=last_error.message if last_error else None,
        )
    return best
