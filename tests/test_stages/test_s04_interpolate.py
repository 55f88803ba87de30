#!/usr/bin/env python3
"""
Tests for src/stages/s04_interpolate.py

Tests cover:
- Interpolator construction from config
- Grid surface estimation with kriging -> IDW fallback
- Cross-validation wrapper
- Stage run on demo layers
"""
from __future__ import annotations

import pytest
import numpy as np
import pandas as pd
from pathlib import Path
import sys

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent.parent / 'src'))

from spatial.interpolate import IDWInterpolator, KrigingInterpolator
from stages import s04_interpolate
from stages.s04_interpolate import build_interpolators, interpolate_surface, run_cross_validation
from utils.helpers import load_data


class TestBuildInterpolators:
    """Tests for build_interpolators."""

    def test_idw(self):
        primary, fallback = build_interpolators('idw')
        assert isinstance(primary, IDWInterpolator)
        assert fallback is None

    def test_kriging_with_fallback(self):
        from config import VARIOGRAM_FAMILIES

        primary, fallback = build_interpolators('kriging')
        assert isinstance(primary, KrigingInterpolator)
        assert isinstance(fallback, IDWInterpolator)
        assert primary.family == VARIOGRAM_FAMILIES

    def test_unknown_method(self):
        with pytest.raises(ValueError, match="Unknown method"):
            build_interpolators('spline')


class TestInterpolateSurface:
    """Tests for interpolate_surface."""

    def test_idw_grid(self, corner_samples, square_polygons):
        surface, used, interpolator = interpolate_surface(
            corner_samples, square_polygons, method='idw', value_field='value', cell_size=1000
        )
        assert used == 'idw'
        assert isinstance(interpolator, IDWInterpolator)
        assert len(surface) == 4
        assert surface['prediction'].between(0, 30).all()
        assert {'cell_id', 'row', 'col', 'prediction', 'variance'} <= set(surface.columns)

    def test_kriging_falls_back(self, field_samples):
        """Constant samples cannot be kriged; the surface comes from IDW."""
        samples = field_samples.assign(value=3.0)
        with pytest.warns(UserWarning):
            surface, used, interpolator = interpolate_surface(
                samples, samples, method='kriging', value_field='value', cell_size=2500
            )
        assert used == 'idw'
        assert isinstance(interpolator, IDWInterpolator)
        np.testing.assert_allclose(surface['prediction'], 3.0)

    def test_kriging_succeeds(self, field_samples):
        surface, used, interpolator = interpolate_surface(
            field_samples, field_samples, method='kriging', value_field='value', cell_size=2500
        )
        assert used == 'kriging'
        assert interpolator.fitted_model_ is not None
        assert (surface['variance'] >= 0).all()


class TestRunCrossValidation:
    """Tests for run_cross_validation."""

    def test_scores(self, field_samples):
        scores = run_cross_validation(IDWInterpolator(), field_samples, 'value')
        assert scores['n_samples'] == 60

    def test_too_few_samples(self, corner_samples, capsys):
        assert run_cross_validation(IDWInterpolator(), corner_samples, 'value', n_splits=5) is None
        assert 'cross-validation skipped' in capsys.readouterr().out


class TestMain:
    """Tests for the stage entry point."""

    def test_missing_input_exits(self, temp_data_dir):
        with pytest.raises(SystemExit):
            s04_interpolate.main(verbose=False)

    def test_demo_idw(self, linked_demo):
        areas = s04_interpolate.main(method='idw', verbose=False)

        assert 'traffic' in areas.columns
        assert areas['traffic'].notna().all()
        assert (areas['interpolator'] == 'idw').all()
        assert 'traffic_variance' not in areas.columns

        work = linked_demo['data_work']
        assert (work / 'surface.parquet').exists()
        final = load_data(work / 'final.parquet')
        assert len(final) == 16
        assert not (linked_demo['diagnostics'] / 'variogram.csv').exists()

        cv = pd.read_csv(linked_demo['diagnostics'] / 'interpolation_cv.csv')
        assert {'fold', 'observed', 'predicted', 'residual'} <= set(cv.columns)

    def test_idw_removes_earlier_variogram(self, linked_demo):
        """An IDW run leaves no variogram from a previous kriging run."""
        stale = linked_demo['diagnostics'] / 'variogram.csv'
        stale.parent.mkdir(parents=True, exist_ok=True)
        pd.DataFrame({'distance': [1.0], 'gamma': [2.0], 'model_gamma': [2.0]}).to_csv(
            stale, index=False
        )
        s04_interpolate.main(method='idw', verbose=False)
        assert not stale.exists()

    @pytest.mark.slow
    def test_demo_kriging(self, linked_demo):
        areas = s04_interpolate.main(method='kriging', verbose=False)

        assert areas['traffic'].notna().all()
        used = areas['interpolator'].iloc[0]
        assert used in ('kriging', 'idw')
        if used == 'kriging':
            assert (areas['traffic_variance'] >= 0).all()
            variogram = pd.read_csv(linked_demo['diagnostics'] / 'variogram.csv')
            assert 'model_gamma' in variogram.columns
