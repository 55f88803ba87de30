#!/usr/bin/env python3
"""
Common utility functions for the spatial pipeline.

This module provides shared helper functions used across multiple stages.
"""
from __future__ import annotations

from pathlib import Path
from typing import Union

import geopandas as gpd
import pandas as pd
import yaml

from spatial.core.errors import FormatError
from spatial.core.io import has_geometry, load_snapshot, save_snapshot


def ensure_dir(path: Path) -> Path:
    """Ensure a directory exists, creating it if necessary."""
    path.mkdir(parents=True, exist_ok=True)
    return path


def get_project_root() -> Path:
    """Get the project root directory."""
    from config import PROJECT_ROOT
    return PROJECT_ROOT


def get_data_dir(subdir: str = 'work') -> Path:
    """Get a data directory by short name ('raw', 'work', 'diagnostics', 'spatial')."""
    from config import get_data_dir as _get_data_dir
    return _get_data_dir(subdir)


def load_config(config_name: str = 'sources') -> dict:
    """
    Load a YAML configuration file.

    Parameters
    ----------
    config_name : str
        Name of the config file (without extension) in config/

    Returns
    -------
    dict
        Parsed configuration
    """
    config_path = get_project_root() / 'config' / f'{config_name}.yml'
    if not config_path.exists():
        raise FileNotFoundError(f"Config not found: {config_path}")
    with open(config_path) as f:
        return yaml.safe_load(f) or {}


def load_data(path: Union[str, Path]) -> Union[pd.DataFrame, gpd.GeoDataFrame]:
    """
    Load a stage output.

    GeoParquet snapshots come back as GeoDataFrames, plain parquet and CSV
    files as DataFrames.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Data file not found: {path}")

    if path.suffix == '.parquet':
        try:
            return load_snapshot(path)
        except FormatError:
            # Plain (non-geo) parquet
            return pd.read_parquet(path)
    if path.suffix == '.csv':
        return pd.read_csv(path)
    raise ValueError(f"Unsupported data format: {path.suffix}")


def save_data(df: Union[pd.DataFrame, gpd.GeoDataFrame], path: Union[str, Path]) -> Path:
    """Save a stage output; feature collections are written as GeoParquet."""
    path = Path(path)
    ensure_dir(path.parent)
    if has_geometry(df):
        return save_snapshot(df, path)
    if path.suffix == '.csv':
        df.to_csv(path, index=False)
    else:
        df.to_parquet(path, index=False)
    return path


def save_diagnostic(df: pd.DataFrame, name: str) -> Path:
    """Write a diagnostics table to data_work/diagnostics/<name>.csv."""
    path = ensure_dir(get_data_dir('diagnostics')) / f'{name}.csv'
    if isinstance(df, gpd.GeoDataFrame):
        df = pd.DataFrame(df.drop(columns=df.geometry.name))
    df.to_csv(path, index=False)
    return path


def format_pvalue(p: float, threshold: float = 0.001) -> str:
    """Format p-value for display."""
    if p < threshold:
        return f"<{threshold}"
    return f"{p:.3f}"


def add_significance_stars(p: float) -> str:
    """Add significance stars based on p-value."""
    if p < 0.001:
        return "***"
    elif p < 0.01:
        return "**"
    elif p < 0.05:
        return "*"
    return ""
