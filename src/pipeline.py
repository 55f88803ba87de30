#!/usr/bin/env python3
"""
Module: pipeline.py
Purpose: Main orchestration CLI for the spatial linkage pipeline.

This module provides a command-line interface to execute individual stages
of the pipeline. Each stage reads the previous stage's snapshot from
data_work/ and writes its own.

Commands
--------
# Data Processing
ingest_data : Download and load all source layers
    Options: --demo
    Output: data_work/*_raw.parquet, data_work/census.parquet
reproject_layers : Reproject every layer to the analysis CRS
    Output: data_work/*_projected.parquet
link_layers : Census attributes, zone flag, point counts and distances
    Output: data_work/linked.parquet
aggregate_buffers : Buffer-weighted coverage values per area
    Output: data_work/aggregated.parquet

# Analysis
interpolate_surface : Interpolate samples onto a grid and average per area
    Options: --method
    Output: data_work/surface.parquet, data_work/final.parquet
fit_model : OLS model of the final dataset
    Output: data_work/model_estimates.csv
make_maps : Choropleth maps and variogram plot
    Output: figures/*.png
run_all : Run every stage in order
    Options: --demo, --method

# Cache Management
cache_status : Show download cache usage
cache_clear : Remove cached downloads

# Stage Versioning
run_stage : Run a specific stage by name
    Options: <stage_name>
list_stages : List available stages
    Options: --prefix

Usage
-----
    python src/pipeline.py ingest_data --demo
    python src/pipeline.py interpolate_surface --method idw
    python src/pipeline.py run_all --demo
"""
from __future__ import annotations

import argparse
import importlib
import re
from pathlib import Path

from config import INTERPOLATION_METHOD


def parse_args(argv=None) -> argparse.Namespace:
    """Parse command-line arguments."""
    p = argparse.ArgumentParser(
        description='Spatial Linkage Pipeline',
        formatter_class=argparse.RawDescriptionHelpFormatter
    )
    sub = p.add_subparsers(dest='cmd', required=True)

    # Data Processing Commands
    p_ingest = sub.add_parser('ingest_data', help='Download and load all source layers')
    p_ingest.add_argument(
        '--demo',
        action='store_true',
        help='Use synthetic demo layers instead of downloading sources'
    )
    sub.add_parser('reproject_layers', help='Reproject every layer to the analysis CRS')
    sub.add_parser('link_layers', help='Link attributes, zones and points to areas')
    sub.add_parser('aggregate_buffers', help='Buffer-weighted coverage values per area')

    # Analysis Commands
    p_interp = sub.add_parser('interpolate_surface', help='Interpolate samples onto a grid')
    p_interp.add_argument(
        '--method', '-m',
        choices=['kriging', 'idw'],
        default=INTERPOLATION_METHOD,
        help='Interpolation method (kriging falls back to idw on fit failure)'
    )
    sub.add_parser('fit_model', help='OLS model of the final dataset')
    sub.add_parser('make_maps', help='Choropleth maps and variogram plot')

    p_all = sub.add_parser('run_all', help='Run every stage in order')
    p_all.add_argument('--demo', action='store_true', help='Use synthetic demo layers')
    p_all.add_argument(
        '--method', '-m',
        choices=['kriging', 'idw'],
        default=INTERPOLATION_METHOD,
        help='Interpolation method'
    )

    # Cache Commands
    sub.add_parser('cache_status', help='Show download cache usage')
    sub.add_parser('cache_clear', help='Remove cached downloads')

    # Stage Versioning Commands
    p_run_stage = sub.add_parser('run_stage', help='Run a specific stage by name')
    p_run_stage.add_argument('stage_name', help='Stage module name (e.g. s02_link)')
    p_list_stages = sub.add_parser('list_stages', help='List available stages')
    p_list_stages.add_argument('--prefix', '-p', default=None, help='Filter by prefix (e.g. s0)')

    return p.parse_args(argv)


def run_all(demo: bool = False, method: str = INTERPOLATION_METHOD) -> None:
    """Run stages 00 to 06 in order."""
    from stages import (
        s00_ingest,
        s01_reproject,
        s02_link,
        s03_aggregate,
        s04_interpolate,
        s05_model,
        s06_maps,
    )

    s00_ingest.main(demo=demo, verbose=False)
    s01_reproject.main(verbose=False)
    s02_link.main(verbose=False)
    s03_aggregate.main(verbose=False)
    s04_interpolate.main(method=method, verbose=False)
    s05_model.main()
    s06_maps.main(verbose=False)


def cache_status() -> dict:
    """Print cache usage per namespace."""
    from config import CACHE_DIR
    from utils.cache import cache_stats_all

    stats = cache_stats_all()
    print("Cache Status")
    print("=" * 60)
    print(f"  Directory: {CACHE_DIR}")
    if not stats:
        print("  (empty)")
    for namespace, info in stats.items():
        print(f"  {namespace:<20} {info['file_count']:>6} files {info['total_mb']:>10.2f} MB")
    return stats


def cache_clear() -> dict:
    """Remove every cached file."""
    from utils.cache import clear_all_caches

    removed = clear_all_caches()
    total = sum(removed.values())
    print(f"Removed {total} cached file(s) from {len(removed)} namespace(s)")
    return removed


def main(argv=None):
    """Main entry point."""
    args = parse_args(argv)

    if args.cmd == 'ingest_data':
        from stages import s00_ingest
        s00_ingest.main(demo=args.demo)

    elif args.cmd == 'reproject_layers':
        from stages import s01_reproject
        s01_reproject.main()

    elif args.cmd == 'link_layers':
        from stages import s02_link
        s02_link.main()

    elif args.cmd == 'aggregate_buffers':
        from stages import s03_aggregate
        s03_aggregate.main()

    elif args.cmd == 'interpolate_surface':
        from stages import s04_interpolate
        s04_interpolate.main(method=args.method)

    elif args.cmd == 'fit_model':
        from stages import s05_model
        s05_model.main()

    elif args.cmd == 'make_maps':
        from stages import s06_maps
        s06_maps.main()

    elif args.cmd == 'run_all':
        run_all(demo=args.demo, method=args.method)

    elif args.cmd == 'cache_status':
        cache_status()

    elif args.cmd == 'cache_clear':
        cache_clear()

    elif args.cmd == 'run_stage':
        run_stage_by_name(args.stage_name)

    elif args.cmd == 'list_stages':
        list_available_stages(args.prefix)


def discover_stages(prefix: str = None) -> list[tuple[str, str]]:
    """
    Discover available stage modules.

    Parameters
    ----------
    prefix : str, optional
        Filter by stage prefix (e.g., 's00', 's01')

    Returns
    -------
    list[tuple[str, str]]
        List of (stage_name, description) tuples
    """
    stages_dir = Path(__file__).parent / 'stages'
    stages = []

    for f in sorted(stages_dir.glob('s*.py')):
        name = f.stem
        if prefix and not name.startswith(prefix):
            continue

        # Description from the "Purpose:" line of the docstring
        match = re.search(r'Purpose:\s*(.+?)(?:\n|$)', f.read_text())
        desc = match.group(1).strip() if match else ''

        stages.append((name, desc))

    return stages


def list_available_stages(prefix: str = None) -> None:
    """List available stage modules."""
    print("Available Pipeline Stages")
    print("=" * 60)

    stages = discover_stages(prefix)

    if not stages:
        if prefix:
            print(f"No stages found with prefix '{prefix}'")
        else:
            print("No stages found")
        return

    for name, desc in stages:
        print(f"  {name:<30} {desc}")

    print()
    print(f"Total: {len(stages)} stage(s)")
    print()
    print("Run a stage with: python src/pipeline.py run_stage <stage_name>")


def run_stage_by_name(stage_name: str) -> None:
    """
    Run a stage by its module name.

    Parameters
    ----------
    stage_name : str
        Stage module name (e.g., 's00_ingest', 's04_interpolate')
    """
    stages_dir = Path(__file__).parent / 'stages'
    stage_file = stages_dir / f'{stage_name}.py'

    if not stage_file.exists():
        print(f"ERROR: Stage '{stage_name}' not found")
        print(f"  Expected file: {stage_file}")
        print()
        print("Available stages:")
        for name, _ in discover_stages():
            print(f"  - {name}")
        return

    module = importlib.import_module(f'stages.{stage_name}')
    if not hasattr(module, 'main'):
        print(f"ERROR: Stage '{stage_name}' has no main() function")
        return
    module.main()


if __name__ == '__main__':
    main()
