#!/usr/bin/env python3
"""
Stage 03: Buffer Aggregation

Purpose: Aggregate gridded coverage values to areas through centroid buffers.

Each area's centroid is buffered by BUFFER_DISTANCE_M and the coverage
value is averaged over the buffer, weighting each cell by the share of
the buffer it covers:

    value = sum(cell_value * intersection_area / buffer_area)

Input Files
-----------
- data_work/linked.parquet
- data_work/coverage_projected.parquet

Output Files
------------
- data_work/aggregated.parquet
- data_work/diagnostics/buffer_coverage.csv

Usage
-----
    python src/pipeline.py aggregate_buffers
"""
from __future__ import annotations

from pathlib import Path
import sys

# Add parent directory for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

import geopandas as gpd

from config import AGGREGATED_FILE, BUFFER_DISTANCE_M, LINKED_FILE, PROJECTED_SUFFIX
from spatial.core.aggregate import area_weighted_aggregate, buffer, centroids, coverage_share
from spatial.core.overlay import spatial_filter
from utils.helpers import get_data_dir, load_data, save_data, save_diagnostic
from stages._qa_utils import qa_for_stage


# ============================================================
# CONFIGURATION
# ============================================================

AREA_ID = 'MSOA11CD'
COVERAGE_FIELD = 'no2'
OUTPUT_FIELD = 'no2'


def aggregate_coverage(
    areas: gpd.GeoDataFrame,
    coverage: gpd.GeoDataFrame,
    value_field: str = COVERAGE_FIELD,
    distance: float = BUFFER_DISTANCE_M,
    area_id: str = AREA_ID,
) -> tuple[gpd.GeoDataFrame, gpd.GeoDataFrame]:
    """
    Add the buffer-weighted coverage value and the buffer coverage share.

    Returns
    -------
    tuple[gpd.GeoDataFrame, gpd.GeoDataFrame]
        Areas with ``OUTPUT_FIELD`` and ``coverage_share`` columns, and the
        buffers used.
    """
    buffers = buffer(centroids(areas[[area_id, areas.geometry.name]]), distance)

    result = areas.copy()
    result[OUTPUT_FIELD] = area_weighted_aggregate(buffers, coverage, value_field, area_id)
    result['coverage_share'] = coverage_share(buffers, coverage, area_id)
    return result, buffers


# ============================================================
# MAIN ENTRY POINT
# ============================================================

def main(verbose: bool = True) -> gpd.GeoDataFrame:
    """Execute buffer aggregation."""
    print("=" * 60)
    print("Stage 03: Buffer Aggregation")
    print("=" * 60)

    work_dir = get_data_dir('work')
    linked_path = work_dir / LINKED_FILE
    coverage_path = work_dir / f'coverage{PROJECTED_SUFFIX}'
    output_path = work_dir / AGGREGATED_FILE

    for path, stage in [(linked_path, 'link_layers'), (coverage_path, 'reproject_layers')]:
        if not path.exists():
            print(f"  ERROR: Input file not found: {path}")
            print(f"  Run '{stage}' stage first.")
            sys.exit(1)

    areas = load_data(linked_path)
    coverage = load_data(coverage_path)
    print(f"\n  Areas: {len(areas):,}")
    print(f"  Coverage cells: {len(coverage):,}")

    coverage = spatial_filter(coverage, areas, 'intersects')
    print(f"    -> {len(coverage):,} cells intersect the study area")

    print(f"\n  Buffering centroids by {BUFFER_DISTANCE_M:,.0f} m...")
    areas, buffers = aggregate_coverage(areas, coverage)

    n_missing = int(areas[OUTPUT_FIELD].isna().sum())
    print(f"    Mean {OUTPUT_FIELD}: {areas[OUTPUT_FIELD].mean():.2f}")
    print(f"    Mean coverage share: {areas['coverage_share'].mean():.1%}")
    if n_missing:
        print(f"    Warning: {n_missing} buffers intersect no coverage cell")

    save_diagnostic(
        areas[[AREA_ID, OUTPUT_FIELD, 'coverage_share']],
        'buffer_coverage',
    )

    print(f"\n  Saving to: {output_path}")
    save_data(areas, output_path)

    if verbose:
        print(f"\n  {OUTPUT_FIELD} summary:")
        print(areas[OUTPUT_FIELD].describe().to_string())

    qa_for_stage('s03_aggregate', areas, output_file=str(output_path))

    print("\n" + "=" * 60)
    print("Stage 03 complete.")
    print("=" * 60)

    return areas


if __name__ == '__main__':
    main()
