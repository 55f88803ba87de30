#!/usr/bin/env python3
"""
Stage 02: Spatial Linkage

Purpose: Link area attributes, points of interest and zones to the area boundaries.

This stage handles:
- Census attributes merged onto areas by code, plus derived shares
- Emission zone indicator (area intersects any zone)
- Point-in-polygon counts (0 for areas without points)
- Distance from each area centroid to the nearest point
- Linkage diagnostics (match rates per source)

Input Files
-----------
- data_work/{boundaries,zones,points}_projected.parquet
- data_work/census.parquet (optional)

Output Files
------------
- data_work/linked.parquet
- data_work/diagnostics/linkage_summary.csv

Usage
-----
    python src/pipeline.py link_layers
"""
from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional
import sys

# Add parent directory for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

import geopandas as gpd
import numpy as np
import pandas as pd

from config import CENSUS_FILE, JOIN_CARDINALITY, LINKED_FILE, PROJECTED_SUFFIX
from spatial.core.aggregate import centroids
from spatial.core.distance import distance_to_nearest
from spatial.core.overlay import (
    attach_attributes,
    count_within,
    flag_intersecting,
    spatial_filter,
    spatial_join,
)
from utils.helpers import ensure_dir, get_data_dir, load_data, save_data, save_diagnostic
from stages._qa_utils import qa_for_stage


# ============================================================
# CONFIGURATION
# ============================================================

AREA_ID = 'MSOA11CD'
CENSUS_ID = 'msoa11'

# Derived shares: name -> (numerator cell, denominator cell), in percent
CENSUS_SHARES = {
    'per_white': ('KS201EW_100', 'KS201EW0001'),
    'per_mixed': ('KS201EW_200', 'KS201EW0001'),
    'per_asian': ('KS201EW_300', 'KS201EW0001'),
    'per_black': ('KS201EW_400', 'KS201EW0001'),
    'per_other': ('KS201EW_500', 'KS201EW0001'),
    'per_owner': ('KS402EW_100', 'KS402EW0001'),
    'per_social': ('KS402EW_200', 'KS402EW0001'),
}


# ============================================================
# LINKAGE RESULT TRACKING
# ============================================================

@dataclass
class LinkageResult:
    """Track results of a linkage operation."""
    source_name: str
    n_source: int
    n_matched: int
    n_unmatched: int
    match_type: str  # 'attribute', 'spatial_within', 'spatial_intersects', ...
    key_columns: list = field(default_factory=list)

    @property
    def match_rate(self) -> float:
        """Calculate match rate."""
        total = self.n_matched + self.n_unmatched
        return self.n_matched / total if total > 0 else 0.0

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            'source': self.source_name,
            'n_source': self.n_source,
            'n_matched': self.n_matched,
            'n_unmatched': self.n_unmatched,
            'match_rate': self.match_rate,
            'match_type': self.match_type,
            'key_columns': ','.join(self.key_columns)
        }


# ============================================================
# LINKAGE STEPS
# ============================================================

def link_census(
    areas: gpd.GeoDataFrame,
    census: pd.DataFrame,
    area_id: str = AREA_ID,
    census_id: str = CENSUS_ID,
) -> tuple[gpd.GeoDataFrame, LinkageResult]:
    """Merge census attributes by area code and add percentage shares."""
    census = census.drop(columns=['name'], errors='ignore')
    linked = attach_attributes(areas, census, left_on=area_id, right_on=census_id)

    linked = add_census_shares(linked)

    matched = linked[area_id].isin(census[census_id])
    result = LinkageResult(
        source_name='census',
        n_source=len(census),
        n_matched=int(matched.sum()),
        n_unmatched=int((~matched).sum()),
        match_type='attribute',
        key_columns=[area_id, census_id],
    )
    return linked, result


def add_census_shares(gdf: gpd.GeoDataFrame, shares: Optional[dict] = None) -> gpd.GeoDataFrame:
    """Add percentage columns for every share whose cells are present."""
    shares = shares or CENSUS_SHARES
    gdf = gdf.copy()
    for name, (numerator, denominator) in shares.items():
        if numerator in gdf.columns and denominator in gdf.columns:
            denom = gdf[denominator].replace(0, np.nan)
            gdf[name] = gdf[numerator] / denom * 100
    return gdf


def link_points(
    areas: gpd.GeoDataFrame,
    points: gpd.GeoDataFrame,
    area_id: str = AREA_ID,
    cardinality: str = JOIN_CARDINALITY,
) -> tuple[gpd.GeoDataFrame, LinkageResult]:
    """Count points per area and measure centroid distance to the nearest point."""
    joined = spatial_join(
        points, areas[[area_id, areas.geometry.name]],
        predicate='within', cardinality=cardinality,
    )
    n_matched = int(joined[area_id].notna().sum())
    result = LinkageResult(
        source_name='points',
        n_source=len(points),
        n_matched=n_matched,
        n_unmatched=len(joined) - n_matched,
        match_type='spatial_within',
        key_columns=[area_id],
    )

    linked = count_within(points, areas, id_col=area_id, name='pubs_count')
    linked['dist_pubs'] = distance_to_nearest(centroids(areas), points)
    return linked, result


def link_zones(
    areas: gpd.GeoDataFrame,
    zones: gpd.GeoDataFrame,
    points: Optional[gpd.GeoDataFrame] = None,
) -> tuple[gpd.GeoDataFrame, LinkageResult]:
    """Flag areas intersecting a zone; report points outside every zone."""
    linked = flag_intersecting(areas, zones, name='ulez')
    n_flagged = int(linked['ulez'].sum())

    if points is not None and len(points) > 0:
        outside = spatial_filter(points, zones, 'disjoint')
        print(f"    Points outside zones: {len(outside):,} of {len(points):,}")

    result = LinkageResult(
        source_name='zones',
        n_source=len(zones),
        n_matched=n_flagged,
        n_unmatched=len(linked) - n_flagged,
        match_type='spatial_intersects',
        key_columns=[],
    )
    return linked, result


def generate_linkage_diagnostics(results: list[LinkageResult]) -> pd.DataFrame:
    """Write linkage diagnostics to data_work/diagnostics/linkage_summary.csv."""
    summary_df = pd.DataFrame([r.to_dict() for r in results])
    ensure_dir(get_data_dir('diagnostics'))
    save_diagnostic(summary_df, 'linkage_summary')
    return summary_df


# ============================================================
# MAIN ENTRY POINT
# ============================================================

def _load_projected(work_dir: Path, name: str) -> gpd.GeoDataFrame:
    path = work_dir / f'{name}{PROJECTED_SUFFIX}'
    if not path.exists():
        print(f"  ERROR: Input file not found: {path}")
        print("  Run 'reproject_layers' stage first.")
        sys.exit(1)
    return load_data(path)


def main(verbose: bool = True) -> gpd.GeoDataFrame:
    """Execute spatial linkage."""
    print("=" * 60)
    print("Stage 02: Spatial Linkage")
    print("=" * 60)

    work_dir = get_data_dir('work')
    output_path = work_dir / LINKED_FILE

    areas = _load_projected(work_dir, 'boundaries')
    zones = _load_projected(work_dir, 'zones')
    points = _load_projected(work_dir, 'points')
    print(f"\n  Areas: {len(areas):,}, zones: {len(zones):,}, points: {len(points):,}")

    linkage_results = []

    census_path = work_dir / CENSUS_FILE
    if census_path.exists():
        print("\n  Linking census attributes...")
        areas, result = link_census(areas, load_data(census_path))
        linkage_results.append(result)
        print(f"    Match rate: {result.match_rate:.1%}")
    else:
        print(f"\n  Warning: Census table not found: {census_path}")

    print("\n  Flagging emission zone...")
    areas, result = link_zones(areas, zones, points)
    linkage_results.append(result)
    print(f"    Areas in zone: {result.n_matched:,}")

    print("\n  Linking points of interest...")
    areas, result = link_points(areas, points)
    linkage_results.append(result)
    print(f"    Points within an area: {result.match_rate:.1%}")
    print(f"    Mean distance to nearest point: {areas['dist_pubs'].mean():,.0f} m")

    print("\n  Generating linkage diagnostics...")
    generate_linkage_diagnostics(linkage_results)

    print(f"\n  Saving to: {output_path}")
    save_data(areas, output_path)

    print("\n" + "-" * 60)
    print("LINKAGE SUMMARY")
    print("-" * 60)
    for result in linkage_results:
        print(f"\n  {result.source_name}:")
        print(f"    Match type: {result.match_type}")
        print(f"    Matched: {result.n_matched:,}")
        print(f"    Unmatched: {result.n_unmatched:,}")
        print(f"    Match rate: {result.match_rate:.1%}")

    print(f"\n  Final dataset: {len(areas):,} areas, {len(areas.columns)} columns")
    if verbose:
        print("\n  Columns:")
        for col in areas.columns:
            print(f"    - {col}")

    qa_for_stage('s02_link', areas, output_file=str(output_path))

    print("\n" + "=" * 60)
    print("Stage 02 complete.")
    print("=" * 60)

    return areas


if __name__ == '__main__':
    main()
