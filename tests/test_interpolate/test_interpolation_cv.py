"""Tests for hold-out validation, fallback and the interpolator registry."""

import sys
import warnings
from pathlib import Path

import pytest

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent.parent / "src"))

import geopandas as gpd
import numpy as np
from shapely.geometry import Point

from spatial.interpolate import (
    IDWInterpolator,
    Interpolator,
    KrigingInterpolator,
    get_interpolator,
    list_interpolators,
    register_interpolator,
)
from spatial.interpolate.factory import _interpolator_registry
from spatial.interpolate.validation import cross_validate, estimate_with_fallback
from spatial.interpolate.variogram import VariogramModel


# ============================================================
# CROSS-VALIDATION
# ============================================================

class TestCrossValidate:
    """Tests for cross_validate."""

    def test_scores(self, field_samples):
        scores = cross_validate(IDWInterpolator(), field_samples, 'value', n_splits=5)
        assert scores['n_samples'] == 60
        assert scores['n_splits'] == 5
        assert scores['rmse'] >= scores['mae'] > 0

    def test_residuals_cover_every_sample(self, field_samples):
        residuals = cross_validate(IDWInterpolator(), field_samples, 'value')['residuals']
        assert list(residuals.index) == list(field_samples.index)
        assert set(residuals['fold']) == {0, 1, 2, 3, 4}
        np.testing.assert_allclose(
            residuals['residual'], residuals['observed'] - residuals['predicted']
        )

    def test_duplicate_index_labels(self, field_samples):
        """Each sample is scored once even when index labels repeat."""
        samples = field_samples.copy()
        samples.index = np.arange(len(samples)) // 2
        scores = cross_validate(IDWInterpolator(), samples, 'value')
        baseline = cross_validate(IDWInterpolator(), field_samples, 'value')
        assert scores['n_samples'] == 60
        assert list(scores['residuals'].index) == list(samples.index)
        assert scores['rmse'] == pytest.approx(baseline['rmse'])

    def test_reproducible(self, field_samples):
        a = cross_validate(IDWInterpolator(), field_samples, 'value', random_state=1)
        b = cross_validate(IDWInterpolator(), field_samples, 'value', random_state=1)
        assert a['rmse'] == b['rmse']

    def test_missing_values_ignored(self, field_samples):
        samples = field_samples.copy()
        samples.loc[samples.index[:10], 'value'] = np.nan
        scores = cross_validate(IDWInterpolator(), samples, 'value')
        assert scores['n_samples'] == 50

    def test_kriging(self, field_samples):
        model = VariogramModel('exponential', nugget=0.5, sill=30.0, range=3000.0)
        scores = cross_validate(KrigingInterpolator(model=model), field_samples, 'value')
        assert np.isfinite(scores['rmse'])

    def test_too_few_samples(self, corner_samples):
        with pytest.raises(ValueError, match="Cannot run"):
            cross_validate(IDWInterpolator(), corner_samples, 'value', n_splits=5)

    def test_invalid_splits(self, field_samples):
        with pytest.raises(ValueError):
            cross_validate(IDWInterpolator(), field_samples, 'value', n_splits=1)


# ============================================================
# FALLBACK
# ============================================================

class TestEstimateWithFallback:
    """Tests for estimate_with_fallback."""

    def test_primary_used(self, field_samples):
        model = VariogramModel('exponential', nugget=0.5, sill=30.0, range=3000.0)
        result, method = estimate_with_fallback(
            field_samples, field_samples.iloc[:4], 'value',
            primary=KrigingInterpolator(model=model),
        )
        assert method == 'kriging'
        assert result.attrs['interpolator'] == 'kriging'

    def test_falls_back_on_fit_error(self, field_samples):
        """Constant values cannot be fitted; IDW takes over with a warning."""
        samples = field_samples.assign(value=12.0)
        with pytest.warns(UserWarning, match="falling back to idw"):
            result, method = estimate_with_fallback(
                samples, samples.iloc[:3], 'value', primary=KrigingInterpolator()
            )
        assert method == 'idw'
        assert result.attrs['interpolator'] == 'idw'
        np.testing.assert_allclose(result['prediction'], 12.0)

    def test_no_warning_without_fallback(self, corner_samples):
        with warnings.catch_warnings():
            warnings.simplefilter('error')
            _, method = estimate_with_fallback(
                corner_samples, corner_samples, 'value', primary=IDWInterpolator()
            )
        assert method == 'idw'

    def test_other_errors_propagate(self, corner_samples):
        with pytest.raises(KeyError):
            estimate_with_fallback(
                corner_samples, corner_samples, 'flow', primary=KrigingInterpolator()
            )


# ============================================================
# REGISTRY
# ============================================================

class TestInterpolatorRegistry:
    """Tests for the interpolator factory."""

    def test_builtins_registered(self):
        names = list_interpolators()
        assert 'idw' in names
        assert 'kriging' in names

    def test_get_with_params(self):
        idw = get_interpolator('IDW', power=3.0)
        assert isinstance(idw, IDWInterpolator)
        assert idw.power == 3.0

    def test_kriging_params(self):
        kriging = get_interpolator('kriging', family=['spherical'], duplicates='first')
        assert kriging.family == ['spherical']
        assert kriging.duplicates == 'first'

    def test_unknown(self):
        with pytest.raises(ValueError, match="Unknown interpolator"):
            get_interpolator('spline')

    def test_register_custom(self, corner_samples):
        @register_interpolator('nearest_test')
        class NearestValue(Interpolator):
            name = 'nearest_test'

            def _predict(self, sample_xy, values, target_xy, geographic):
                d = np.hypot(
                    target_xy[:, None, 0] - sample_xy[None, :, 0],
                    target_xy[:, None, 1] - sample_xy[None, :, 1],
                )
                return values[d.argmin(axis=1)], np.full(len(target_xy), np.nan)

        try:
            interp = get_interpolator('nearest_test')
            targets = gpd.GeoDataFrame(geometry=[Point(1900, 100)], crs='EPSG:27700')
            result = interp.estimate(corner_samples, targets, 'value')
            assert result['prediction'].iloc[0] == 10.0
        finally:
            _interpolator_registry.pop('nearest_test', None)
