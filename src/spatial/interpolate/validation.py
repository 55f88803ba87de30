"""
Hold-out validation and method fallback for interpolators.

Usage
-----
    from spatial.interpolate import IDWInterpolator, KrigingInterpolator
    from spatial.interpolate.validation import cross_validate, estimate_with_fallback

    scores = cross_validate(IDWInterpolator(), traffic, 'flow', n_splits=5)
    print(f"IDW RMSE: {scores['rmse']:.1f}")

    surface, method = estimate_with_fallback(
        traffic, grid, 'flow',
        primary=KrigingInterpolator(), fallback=IDWInterpolator(),
    )
"""
from __future__ import annotations

import warnings
from typing import Optional

import geopandas as gpd
import numpy as np
import pandas as pd
from sklearn.model_selection import KFold

from spatial.core.errors import FitError
from .base import PREDICTION_COL, Interpolator
from .idw import IDWInterpolator


def cross_validate(
    interpolator: Interpolator,
    samples: gpd.GeoDataFrame,
    value_field: str,
    n_splits: int = 5,
    shuffle: bool = True,
    random_state: Optional[int] = 42,
) -> dict:
    """
    K-fold hold-out validation of an interpolator.

    Each fold is estimated from the remaining folds; residuals are
    ``observed - predicted``.

    Parameters
    ----------
    interpolator : Interpolator
        Method to validate.
    samples : gpd.GeoDataFrame
        Samples carrying ``value_field``; rows with a missing value are
        ignored.
    value_field : str
        Column to predict.
    n_splits : int
        Number of folds (at least 2, at most the number of samples).
    shuffle : bool
        Shuffle samples before splitting.
    random_state : int, optional
        Seed for the shuffle.

    Returns
    -------
    dict
        ``rmse``, ``mae``, ``n_samples``, ``n_splits`` and ``residuals``
        (DataFrame indexed like the samples with ``fold``, ``observed``,
        ``predicted`` and ``residual``).

    Raises
    ------
    ValueError
        If there are fewer samples than folds.
    FitError
        If a fold cannot be estimated (e.g. kriging on a degenerate fold).
    """
    data = samples[samples[value_field].notna()]
    if n_splits < 2:
        raise ValueError(f"n_splits must be at least 2, got {n_splits}")
    if len(data) < n_splits:
        raise ValueError(
            f"Cannot run {n_splits}-fold validation on {len(data)} samples"
        )

    splitter = KFold(
        n_splits=n_splits,
        shuffle=shuffle,
        random_state=random_state if shuffle else None,
    )

    frames = []
    for fold, (train_idx, test_idx) in enumerate(splitter.split(data)):
        train = data.iloc[train_idx]
        test = data.iloc[test_idx]
        estimated = interpolator.estimate(train, test, value_field)
        frames.append(pd.DataFrame({
            '_pos': test_idx,
            'fold': fold,
            'observed': test[value_field].to_numpy(dtype=float),
            'predicted': estimated[PREDICTION_COL].to_numpy(dtype=float),
        }, index=test.index))

    # Restore sample order by position; labels may repeat
    residuals = pd.concat(frames).sort_values('_pos', kind='stable').drop(columns='_pos')
    residuals['residual'] = residuals['observed'] - residuals['predicted']

    return {
        'rmse': float(np.sqrt(np.mean(residuals['residual'] ** 2))),
        'mae': float(np.mean(np.abs(residuals['residual']))),
        'n_samples': len(residuals),
        'n_splits': n_splits,
        'residuals': residuals,
    }


def estimate_with_fallback(
    samples: gpd.GeoDataFrame,
    targets: gpd.GeoDataFrame,
    value_field: str,
    primary: Interpolator,
    fallback: Optional[Interpolator] = None,
) -> tuple[gpd.GeoDataFrame, str]:
    """
    Estimate with ``primary``, retrying with ``fallback`` on ``FitError``.

    Only ``FitError`` triggers the fallback; any other error propagates.
    A ``UserWarning`` is emitted when the fallback is used.

    Returns
    -------
    tuple[gpd.GeoDataFrame, str]
        The estimate and the name of the interpolator that produced it.
        The name is also stored in ``result.attrs['interpolator']``.
    """
    fallback = fallback or IDWInterpolator()
    try:
        result = primary.estimate(samples, targets, value_field)
        method = primary.name
    except FitError as exc:
        warnings.warn(
            f"{primary.name} failed ({exc}); falling back to {fallback.name}",
            UserWarning,
            stacklevel=2,
        )
        result = fallback.estimate(samples, targets, value_field)
        method = fallback.name

    result.attrs['interpolator'] = method
    return result, method
