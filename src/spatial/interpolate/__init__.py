"""
Surface interpolation from sparse point samples.

Example usage:
    from spatial.interpolate import get_interpolator, cross_validate

    kriging = get_interpolator('kriging', family=['exponential', 'spherical'])
    surface = kriging.estimate(traffic, grid, value_field='flow')

    scores = cross_validate(get_interpolator('idw'), traffic, 'flow')
"""

from spatial.interpolate.base import PREDICTION_COL, VARIANCE_COL, Interpolator, prepare_samples
from spatial.interpolate.factory import (
    get_interpolator,
    register_interpolator,
    list_interpolators,
)
from spatial.interpolate.idw import IDWInterpolator
from spatial.interpolate.kriging import KrigingInterpolator
from spatial.interpolate.variogram import (
    VariogramModel,
    empirical_variogram,
    fit_variogram,
)
from spatial.interpolate.validation import cross_validate, estimate_with_fallback

__all__ = [
    "Interpolator",
    "prepare_samples",
    "PREDICTION_COL",
    "VARIANCE_COL",
    # Registry
    "get_interpolator",
    "register_interpolator",
    "list_interpolators",
    # Methods
    "IDWInterpolator",
    "KrigingInterpolator",
    # Variogram
    "VariogramModel",
    "empirical_variogram",
    "fit_variogram",
    # Validation
    "cross_validate",
    "estimate_with_fallback",
]
