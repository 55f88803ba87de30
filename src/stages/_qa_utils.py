#!/usr/bin/env python3
"""
Quality Assurance Utilities for Pipeline Stages.

Every stage ends by describing the layer it wrote: row and attribute
health for any table, plus CRS, geometry types, bounds and null / empty /
invalid geometry counts for feature collections. The metrics are checked
against ``QA_THRESHOLDS`` and written as a long-format CSV to
``data_work/quality/``.

Usage
-----
    from stages._qa_utils import qa_for_stage

    qa_for_stage('s01_reproject_boundaries', gdf, output_file=str(path))
"""
from __future__ import annotations

import sys
from datetime import datetime
from pathlib import Path
from typing import Any, Optional, Union

# Add parent for config import
sys.path.insert(0, str(Path(__file__).parent.parent))

import geopandas as gpd
import pandas as pd

from config import ENABLE_QA_REPORTS, QA_REPORTS_DIR, QA_THRESHOLDS
from spatial.core.features import geometry_summary


class QAMetrics:
    """
    Ordered collection of named QA metrics.

    Examples
    --------
    >>> metrics = QAMetrics()
    >>> metrics.add('n_rows', 983).add_count('invalid_geometry', 0).add_pct('missing', 2.5)
    QAMetrics({'n_rows': 983, 'invalid_geometry_count': 0, 'missing_pct': 2.5})
    """

    def __init__(self):
        self._metrics: dict[str, Any] = {}

    def add(self, name: str, value: Any) -> 'QAMetrics':
        self._metrics[name] = value
        return self

    def add_pct(self, name: str, value: float) -> 'QAMetrics':
        """Add ``<name>_pct`` rounded to two decimals."""
        self._metrics[f'{name}_pct'] = round(float(value), 2)
        return self

    def add_count(self, name: str, value: int) -> 'QAMetrics':
        """Add ``<name>_count``."""
        self._metrics[f'{name}_count'] = int(value)
        return self

    def to_dict(self) -> dict[str, Any]:
        return self._metrics.copy()

    def __len__(self) -> int:
        return len(self._metrics)

    def __repr__(self) -> str:
        return f"QAMetrics({self._metrics})"


def _as_dict(metrics: Union[QAMetrics, dict]) -> dict:
    return metrics.to_dict() if isinstance(metrics, QAMetrics) else dict(metrics)


def _pct(part: float, whole: float) -> float:
    return (part / whole) * 100 if whole > 0 else 0.0


def compute_layer_metrics(df: Union[pd.DataFrame, gpd.GeoDataFrame]) -> QAMetrics:
    """
    Compute QA metrics for a stage output.

    Attribute metrics (missing cells, duplicate rows) ignore the geometry
    column; feature collections get geometry health and bounds on top.
    """
    metrics = QAMetrics()
    metrics.add('n_rows', len(df))
    metrics.add('n_columns', len(df.columns))

    is_spatial = isinstance(df, gpd.GeoDataFrame)
    attrs = pd.DataFrame(df.drop(columns=df.geometry.name)) if is_spatial else df

    missing = int(attrs.isna().sum().sum())
    metrics.add_count('missing_cells', missing)
    metrics.add_pct('missing', _pct(missing, attrs.size))

    duplicates = int(attrs.duplicated().sum()) if len(attrs.columns) > 0 else 0
    metrics.add_count('duplicate_rows', duplicates)
    metrics.add_pct('duplicate', _pct(duplicates, len(df)))

    if is_spatial:
        summary = geometry_summary(df)
        metrics.add('crs', summary['crs'])
        metrics.add('geometry_types', summary['geometry_types'])
        metrics.add_count('null_geometry', summary['n_null_geometry'])
        metrics.add_count('empty_geometry', summary['n_empty_geometry'])
        metrics.add_count('invalid_geometry', summary['n_invalid_geometry'])
        if len(df) > summary['n_null_geometry'] + summary['n_empty_geometry']:
            minx, miny, maxx, maxy = df.total_bounds
            metrics.add('bounds', f"{minx:.1f},{miny:.1f},{maxx:.1f},{maxy:.1f}")

    metrics.add('memory_mb', round(df.memory_usage(deep=True).sum() / (1024 * 1024), 2))
    return metrics


# metric, threshold key, breach test, message
_THRESHOLD_CHECKS = [
    ('missing_pct', 'max_missing_pct', lambda v, t: v > t,
     "Missing values ({value:.1f}%) exceed threshold ({limit}%)"),
    ('n_rows', 'min_row_count', lambda v, t: v < t,
     "Row count ({value}) below threshold ({limit})"),
    ('duplicate_pct', 'max_duplicate_pct', lambda v, t: v > t,
     "Duplicate rows ({value:.1f}%) exceed threshold ({limit}%)"),
    ('invalid_geometry_count', 'max_invalid_geometry', lambda v, t: v > t,
     "Invalid geometries ({value}) exceed threshold ({limit})"),
]


def check_thresholds(
    metrics: Union[QAMetrics, dict],
    thresholds: Optional[dict] = None,
) -> list[str]:
    """
    Compare metrics with thresholds.

    Parameters
    ----------
    metrics : QAMetrics or dict
        Metrics to check.
    thresholds : dict, optional
        Keyed like ``QA_THRESHOLDS`` in config; checks whose metric or
        threshold is absent are skipped.

    Returns
    -------
    list[str]
        One message per violated threshold.
    """
    if thresholds is None:
        thresholds = QA_THRESHOLDS
    values = _as_dict(metrics)

    messages = []
    for metric, key, breached, template in _THRESHOLD_CHECKS:
        if metric in values and key in thresholds and breached(values[metric], thresholds[key]):
            messages.append(template.format(value=values[metric], limit=thresholds[key]))

    if 'crs' in values and values['crs'] is None:
        messages.append("Feature collection has no CRS")

    return messages


def generate_qa_report(
    stage_name: str,
    metrics: Union[QAMetrics, dict],
    output_dir: Optional[Path] = None,
    include_timestamp: bool = True,
) -> Optional[Path]:
    """
    Write metrics as ``<stage_name>_quality[_<timestamp>].csv``.

    Returns the report path, or None when QA reports are disabled.
    """
    if not ENABLE_QA_REPORTS:
        return None

    output_dir = Path(output_dir or QA_REPORTS_DIR)
    output_dir.mkdir(parents=True, exist_ok=True)

    timestamp = datetime.now().strftime('%Y%m%d_%H%M%S')
    suffix = f'_{timestamp}' if include_timestamp else ''
    report_path = output_dir / f'{stage_name}_quality{suffix}.csv'

    report = pd.DataFrame(
        [{'metric': k, 'value': v} for k, v in _as_dict(metrics).items()],
        columns=['metric', 'value'],
    )
    report['stage'] = stage_name
    report['timestamp'] = timestamp
    report.to_csv(report_path, index=False)

    print(f"QA report saved: {report_path}")
    return report_path


def print_qa_summary(metrics: Union[QAMetrics, dict], stage_name: str = '') -> None:
    """Print metrics one per line."""
    print(f"\nQA Summary: {stage_name}" if stage_name else "\nQA Summary")
    print("-" * 40)
    for key, value in _as_dict(metrics).items():
        if isinstance(value, float):
            print(f"  {key}: {value:,.2f}")
        elif isinstance(value, int):
            print(f"  {key}: {value:,}")
        else:
            print(f"  {key}: {value}")


def qa_for_stage(
    stage_name: str,
    df: Union[pd.DataFrame, gpd.GeoDataFrame],
    additional_metrics: Optional[dict] = None,
    output_file: Optional[str] = None,
) -> Optional[Path]:
    """
    Compute, check, print and write QA metrics for a stage output.

    Parameters
    ----------
    stage_name : str
        Report name, e.g. ``'s02_link'`` or ``'s00_ingest_points'``.
    df : pandas.DataFrame or geopandas.GeoDataFrame
        The layer the stage wrote.
    additional_metrics : dict, optional
        Stage-specific metrics appended to the standard ones.
    output_file : str, optional
        Snapshot path, recorded in the report.

    Returns
    -------
    Path or None
        Path to the report.
    """
    metrics = compute_layer_metrics(df)
    if output_file:
        metrics.add('output_file', str(output_file))
    for key, value in (additional_metrics or {}).items():
        metrics.add(key, value)

    violations = check_thresholds(metrics)
    if violations:
        print(f"\nQA Warnings for {stage_name}:")
        for message in violations:
            print(f"  WARNING: {message}")

    print_qa_summary(metrics, stage_name)
    return generate_qa_report(stage_name, metrics)
