#!/usr/bin/env python3
"""
Stage 06: Maps

Purpose: Draw choropleth maps of the linked dataset and the interpolated
surface.

This stage handles:
- Area choropleths (no2, per_black, pubs_count, traffic, ulez)
- Interpolated surface with sample locations and zone outline
- Empirical vs fitted variogram (when kriging was used)

Input Files
-----------
- data_work/final.parquet
- data_work/surface.parquet
- data_work/{samples,zones}_projected.parquet (overlays)
- data_work/diagnostics/variogram.csv (optional)

Output Files
------------
- figures/map_*.png
- figures/fig_variogram.png

Usage
-----
    python src/pipeline.py make_maps
"""
from __future__ import annotations

from pathlib import Path
from typing import Optional
import sys

# Add parent directory for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

import geopandas as gpd
import pandas as pd

from config import FIGURES_DIR, FINAL_FILE, PROJECTED_SUFFIX, SURFACE_FILE
from spatial.interpolate import PREDICTION_COL
from utils.figure_style import get_figure_single, get_map_axes, plot_choropleth, save_figure
from utils.helpers import ensure_dir, get_data_dir, load_data
from stages._qa_utils import QAMetrics, generate_qa_report


# ============================================================
# CONFIGURATION
# ============================================================

# column -> map title
AREA_MAPS = {
    'no2': 'NO$_2$ (buffer-weighted, µg/m³)',
    'per_black': 'Black population (%)',
    'pubs_count': 'Pubs per area',
    'traffic': 'Interpolated traffic flow',
    'ulez': 'Inside emission zone',
}


# ============================================================
# MAP FUNCTIONS
# ============================================================

def map_area_column(
    areas: gpd.GeoDataFrame,
    column: str,
    output_path: Path,
    title: Optional[str] = None,
) -> Optional[Path]:
    """Choropleth of one area column; None when the column is absent."""
    if column not in areas.columns:
        print(f"    Skipping {column}: not in dataset")
        return None
    fig = plot_choropleth(areas, column, title=title)
    return save_figure(fig, output_path)


def map_surface(
    surface: gpd.GeoDataFrame,
    output_path: Path,
    samples: Optional[gpd.GeoDataFrame] = None,
    zones: Optional[gpd.GeoDataFrame] = None,
    title: str = 'Interpolated surface',
) -> Path:
    """Grid prediction with optional sample and zone overlays."""
    fig, ax = get_map_axes()
    plot_choropleth(surface, PREDICTION_COL, title=title, ax=ax)
    if zones is not None:
        zones.boundary.plot(ax=ax, color='red', linewidth=0.8)
    if samples is not None:
        samples.plot(ax=ax, color='black', markersize=4)
    return save_figure(fig, output_path)


def plot_variogram(variogram: pd.DataFrame, output_path: Path) -> Path:
    """Empirical semivariance per lag with the fitted model curve."""
    fig = get_figure_single()
    ax = fig.add_subplot(111)
    ax.scatter(variogram['distance'], variogram['gamma'], color='black', s=15, label='Empirical')
    if 'model_gamma' in variogram.columns:
        ax.plot(variogram['distance'], variogram['model_gamma'], color='C0', label='Fitted')
    ax.set_xlabel('Distance (m)')
    ax.set_ylabel('Semivariance')
    ax.legend()
    return save_figure(fig, output_path)


# ============================================================
# MAIN ENTRY POINT
# ============================================================

def _load_optional(path: Path) -> Optional[gpd.GeoDataFrame]:
    return load_data(path) if path.exists() else None


def main(verbose: bool = True) -> list[Path]:
    """Execute map generation."""
    print("=" * 60)
    print("Stage 06: Maps")
    print("=" * 60)

    work_dir = get_data_dir('work')
    fig_dir = ensure_dir(FIGURES_DIR)
    input_path = work_dir / FINAL_FILE

    print(f"\n  Loading: {FINAL_FILE}")
    if not input_path.exists():
        print(f"  ERROR: Input file not found: {input_path}")
        print("  Run 'interpolate_surface' stage first.")
        sys.exit(1)

    areas = load_data(input_path)
    print(f"    -> {len(areas):,} areas")

    generated = []
    print(f"\n  Generating {len(AREA_MAPS)} area maps...")
    for column, title in AREA_MAPS.items():
        path = map_area_column(areas, column, fig_dir / f'map_{column}', title=title)
        if path:
            generated.append(path)
            print(f"    -> {path.name}")

    surface = _load_optional(work_dir / SURFACE_FILE)
    if surface is not None:
        print("\n  Mapping interpolated surface...")
        path = map_surface(
            surface,
            fig_dir / 'map_surface',
            samples=_load_optional(work_dir / f'samples{PROJECTED_SUFFIX}'),
            zones=_load_optional(work_dir / f'zones{PROJECTED_SUFFIX}'),
        )
        generated.append(path)
        print(f"    -> {path.name}")

    variogram_path = get_data_dir('diagnostics') / 'variogram.csv'
    if variogram_path.exists():
        print("\n  Plotting variogram...")
        path = plot_variogram(pd.read_csv(variogram_path), fig_dir / 'fig_variogram')
        generated.append(path)
        print(f"    -> {path.name}")

    print("\n" + "-" * 60)
    print("MAP SUMMARY")
    print("-" * 60)
    print(f"  Generated: {len(generated)} figures")
    print(f"  Output directory: {fig_dir}")

    if verbose and generated:
        print("\n  Files:")
        for path in generated:
            print(f"    - {path.name}")

    metrics = QAMetrics()
    metrics.add('n_figures_generated', len(generated))
    metrics.add('output_dir', str(fig_dir))
    if generated:
        total_size = sum(p.stat().st_size for p in generated if p.exists())
        metrics.add('total_size_kb', round(total_size / 1024, 1))
    generate_qa_report('s06_maps', metrics)

    print("\n" + "=" * 60)
    print("Stage 06 complete.")
    print("=" * 60)

    return generated


if __name__ == '__main__':
    main()
