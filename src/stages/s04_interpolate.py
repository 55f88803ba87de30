#!/usr/bin/env python3
"""
Stage 04: Surface Interpolation

Purpose: Interpolate sparse point samples onto a regular grid and average
the surface per area.

This stage handles:
- Regular grid over the study area (GRID_CELL_SIZE_M)
- Kriging with a fitted variogram, falling back to IDW on FitError
- OR IDW only (--method idw)
- K-fold cross-validation of the method used
- Grid-cell mean per area (traffic column on the final dataset)

Input Files
-----------
- data_work/aggregated.parquet
- data_work/samples_projected.parquet

Output Files
------------
- data_work/surface.parquet (grid cells with prediction / variance)
- data_work/final.parquet (areas with the interpolated mean)
- data_work/diagnostics/interpolation_cv.csv
- data_work/diagnostics/variogram.csv (kriging only)

Usage
-----
    python src/pipeline.py interpolate_surface
    python src/pipeline.py interpolate_surface --method idw
"""
from __future__ import annotations

from pathlib import Path
from typing import Optional
import sys

# Add parent directory for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

import geopandas as gpd

from config import (
    AGGREGATED_FILE,
    CV_FOLDS,
    FINAL_FILE,
    GRID_CELL_SIZE_M,
    IDW_MAX_NEIGHBORS,
    IDW_POWER,
    INTERPOLATION_METHOD,
    KRIGING_DUPLICATES,
    PROJECTED_SUFFIX,
    RANDOM_STATE,
    SURFACE_FILE,
    VARIOGRAM_FAMILIES,
    VARIOGRAM_N_BINS,
)
from spatial.core.aggregate import mean_by_polygon
from spatial.core.errors import FitError
from spatial.core.grid import make_grid
from spatial.interpolate import (
    PREDICTION_COL,
    VARIANCE_COL,
    cross_validate,
    empirical_variogram,
    estimate_with_fallback,
    get_interpolator,
)
from utils.helpers import get_data_dir, load_data, save_data, save_diagnostic
from stages._qa_utils import qa_for_stage


# ============================================================
# CONFIGURATION
# ============================================================

AREA_ID = 'MSOA11CD'
SAMPLE_FIELD = 'all_motor_vehicles'
OUTPUT_FIELD = 'traffic'

METHODS = ['kriging', 'idw']


def build_interpolators(method: str = INTERPOLATION_METHOD) -> tuple:
    """
    Primary and fallback interpolators for a method name.

    Returns
    -------
    tuple
        (primary, fallback); fallback is None for IDW.
    """
    if method not in METHODS:
        raise ValueError(f"Unknown method: '{method}'. Available: {', '.join(METHODS)}")

    idw = get_interpolator('idw', power=IDW_POWER, max_neighbors=IDW_MAX_NEIGHBORS)
    if method == 'idw':
        return idw, None

    kriging = get_interpolator(
        'kriging',
        family=VARIOGRAM_FAMILIES,
        duplicates=KRIGING_DUPLICATES,
        n_bins=VARIOGRAM_N_BINS,
    )
    return kriging, idw


def interpolate_surface(
    samples: gpd.GeoDataFrame,
    areas: gpd.GeoDataFrame,
    method: str = INTERPOLATION_METHOD,
    value_field: str = SAMPLE_FIELD,
    cell_size: float = GRID_CELL_SIZE_M,
) -> tuple[gpd.GeoDataFrame, str, object]:
    """
    Estimate ``value_field`` on a grid covering ``areas``.

    Returns
    -------
    tuple
        (surface grid, name of the method used, interpolator used)
    """
    grid = make_grid(areas, cell_size)
    primary, fallback = build_interpolators(method)

    if fallback is None:
        surface = primary.estimate(samples, grid, value_field)
        return surface, primary.name, primary

    surface, used = estimate_with_fallback(samples, grid, value_field, primary, fallback)
    return surface, used, primary if used == primary.name else fallback


def run_cross_validation(
    interpolator,
    samples: gpd.GeoDataFrame,
    value_field: str = SAMPLE_FIELD,
    n_splits: int = CV_FOLDS,
) -> Optional[dict]:
    """Cross-validate, returning None when the folds cannot be estimated."""
    try:
        return cross_validate(
            interpolator, samples, value_field,
            n_splits=n_splits, random_state=RANDOM_STATE,
        )
    except (FitError, ValueError) as exc:
        print(f"    Warning: cross-validation skipped ({exc})")
        return None


# ============================================================
# MAIN ENTRY POINT
# ============================================================

def main(method: str = INTERPOLATION_METHOD, verbose: bool = True) -> gpd.GeoDataFrame:
    """
    Execute surface interpolation.

    Parameters
    ----------
    method : str
        'kriging' (with IDW fallback) or 'idw'.
    verbose : bool
        Print the fitted variogram and cross-validation residual summary.
    """
    print("=" * 60)
    print("Stage 04: Surface Interpolation")
    print("=" * 60)

    work_dir = get_data_dir('work')
    areas_path = work_dir / AGGREGATED_FILE
    samples_path = work_dir / f'samples{PROJECTED_SUFFIX}'

    for path, stage in [(areas_path, 'aggregate_buffers'), (samples_path, 'reproject_layers')]:
        if not path.exists():
            print(f"  ERROR: Input file not found: {path}")
            print(f"  Run '{stage}' stage first.")
            sys.exit(1)

    areas = load_data(areas_path)
    samples = load_data(samples_path)
    print(f"\n  Areas: {len(areas):,}")
    print(f"  Samples: {len(samples):,} ({SAMPLE_FIELD})")
    print(f"  Requested method: {method}")

    print(f"\n  Interpolating onto {GRID_CELL_SIZE_M:,.0f} m grid...")
    surface, used, interpolator = interpolate_surface(samples, areas, method)
    print(f"    -> {len(surface):,} cells, method used: {used}")

    fitted = getattr(interpolator, 'fitted_model_', None)
    if fitted is not None:
        print(f"    Variogram: {fitted.family}, nugget={fitted.nugget:,.1f}, "
              f"sill={fitted.sill:,.1f}, range={fitted.range:,.0f} m")
        empirical = empirical_variogram(samples, SAMPLE_FIELD, n_bins=VARIOGRAM_N_BINS)
        empirical['model_gamma'] = fitted(empirical['distance'].to_numpy())
        save_diagnostic(empirical, 'variogram')
    else:
        # No fitted model this run; a variogram left by an earlier run would be mapped
        stale = get_data_dir('diagnostics') / 'variogram.csv'
        if stale.exists():
            stale.unlink()
            print(f"    Removed stale variogram: {stale}")

    print(f"\n  Cross-validating {used} ({CV_FOLDS} folds)...")
    scores = run_cross_validation(interpolator, samples)
    if scores is not None:
        print(f"    RMSE: {scores['rmse']:,.1f}")
        print(f"    MAE:  {scores['mae']:,.1f}")
        save_diagnostic(scores['residuals'], 'interpolation_cv')
        if verbose:
            print(scores['residuals']['residual'].describe().to_string())

    surface_path = work_dir / SURFACE_FILE
    print(f"\n  Saving surface to: {surface_path}")
    save_data(surface, surface_path)

    print(f"\n  Averaging surface per area -> {OUTPUT_FIELD}")
    areas = areas.copy()
    areas[OUTPUT_FIELD] = mean_by_polygon(areas, surface, PREDICTION_COL, AREA_ID)
    if VARIANCE_COL in surface.columns and surface[VARIANCE_COL].notna().any():
        areas[f'{OUTPUT_FIELD}_variance'] = mean_by_polygon(
            areas, surface, VARIANCE_COL, AREA_ID
        )
    areas['interpolator'] = used

    output_path = work_dir / FINAL_FILE
    print(f"\n  Saving to: {output_path}")
    save_data(areas, output_path)

    qa_for_stage('s04_interpolate', areas, output_file=str(output_path))

    print("\n" + "=" * 60)
    print("Stage 04 complete.")
    print("=" * 60)

    return areas


if __name__ == '__main__':
    main(method=sys.argv[1] if len(sys.argv) > 1 else INTERPOLATION_METHOD)
