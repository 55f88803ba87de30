#!/usr/bin/env python3
"""
Stage 01: Reprojection

Purpose: Put every layer into the common analysis CRS.

This stage handles:
- Explicit reprojection of each raw layer to ANALYSIS_CRS
- Repair of invalid polygons (self-intersections in boundary files)
- Gridded coverage points -> square cells of COVERAGE_CELL_SIZE_M
- CRS diagnostics (source and target CRS per layer)

Input Files
-----------
- data_work/{boundaries,zones,coverage,points,samples}_raw.parquet

Output Files
------------
- data_work/{boundaries,zones,coverage,points,samples}_projected.parquet
- data_work/diagnostics/reprojection_summary.csv

Usage
-----
    python src/pipeline.py reproject_layers
"""
from __future__ import annotations

from pathlib import Path
import sys

# Add parent directory for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

import geopandas as gpd
import pandas as pd

from config import ANALYSIS_CRS, COVERAGE_CELL_SIZE_M, PROJECTED_SUFFIX, RAW_LAYERS
from spatial.core.aggregate import points_to_cells
from spatial.core.crs import describe_crs, make_valid, reproject
from spatial.core.features import geometry_summary
from utils.helpers import get_data_dir, load_data, save_data, save_diagnostic
from stages._qa_utils import qa_for_stage


# ============================================================
# CONFIGURATION
# ============================================================

# Layers whose polygons are repaired after reprojection
REPAIR_LAYERS = ['boundaries', 'zones']

# Layers delivered as cell-centre points of a regular grid
GRIDDED_LAYERS = ['coverage']


def projected_filename(name: str) -> str:
    """Output file name of a reprojected layer."""
    return f'{name}{PROJECTED_SUFFIX}'


def prepare_layer(
    name: str,
    gdf: gpd.GeoDataFrame,
    target_crs: str = ANALYSIS_CRS,
    cell_size: float = COVERAGE_CELL_SIZE_M,
) -> tuple[gpd.GeoDataFrame, dict]:
    """
    Reproject one layer and apply its layer-specific preparation.

    Returns
    -------
    tuple[gpd.GeoDataFrame, dict]
        Prepared layer and a diagnostics row.
    """
    source_crs = describe_crs(gdf)
    result = reproject(gdf, target_crs)

    n_repaired = 0
    if name in REPAIR_LAYERS:
        n_repaired = geometry_summary(result)['n_invalid_geometry']
        result = make_valid(result)

    if name in GRIDDED_LAYERS:
        result = points_to_cells(result, cell_size)

    row = {
        'layer': name,
        'n_features': len(result),
        'source_crs': source_crs,
        'target_crs': describe_crs(result),
        'n_repaired': n_repaired,
        'geometry_types': geometry_summary(result)['geometry_types'],
    }
    return result, row


# ============================================================
# MAIN ENTRY POINT
# ============================================================

def main(verbose: bool = True) -> dict:
    """Execute reprojection of all raw layers."""
    print("=" * 60)
    print("Stage 01: Reprojection")
    print("=" * 60)

    work_dir = get_data_dir('work')
    print(f"\n  Target CRS: {ANALYSIS_CRS}")

    layers = {}
    rows = []
    for name, filename in RAW_LAYERS.items():
        input_path = work_dir / filename
        if not input_path.exists():
            print(f"  ERROR: Input file not found: {input_path}")
            print("  Run 'ingest_data' stage first.")
            sys.exit(1)

        gdf = load_data(input_path)
        prepared, row = prepare_layer(name, gdf)
        rows.append(row)

        output_path = work_dir / projected_filename(name)
        save_data(prepared, output_path)
        layers[name] = prepared

        print(f"\n  {name}: {row['source_crs']} -> {row['target_crs']}")
        print(f"    -> {row['n_features']:,} features ({row['geometry_types']})")
        if row['n_repaired']:
            print(f"    Repaired {row['n_repaired']} invalid geometries")

        qa_for_stage(f's01_reproject_{name}', prepared, output_file=str(output_path))

    summary = pd.DataFrame(rows)
    save_diagnostic(summary, 'reprojection_summary')

    if verbose:
        print("\n" + "-" * 60)
        print("REPROJECTION SUMMARY")
        print("-" * 60)
        print(summary[['layer', 'n_features', 'source_crs', 'target_crs']].to_string(index=False))

    print("\n" + "=" * 60)
    print("Stage 01 complete.")
    print("=" * 60)

    return layers


if __name__ == '__main__':
    main()
