#!/usr/bin/env python3
"""
Configuration constants for the spatial linkage pipeline.

This module centralizes paths, network settings, spatial parameters and
interpolation defaults. Data source locators (URLs, layer names, coordinate
columns) live in ``config/sources.yml``.

Usage
-----
    from config import DATA_WORK_DIR, ANALYSIS_CRS, BUFFER_DISTANCE_M

    # Or import specific sections
    from config import (
        # Paths
        PROJECT_ROOT,
        DATA_RAW_DIR,
        DATA_WORK_DIR,
        SPATIAL_DATA_DIR,

        # Spatial parameters
        ANALYSIS_CRS,
        GRID_CELL_SIZE_M,

        # Interpolation
        IDW_POWER,
        VARIOGRAM_FAMILIES,
    )
"""
from __future__ import annotations

from pathlib import Path


# =============================================================================
# PATHS
# =============================================================================

def _find_project_root() -> Path:
    """Find project root by looking for characteristic directories."""
    current = Path(__file__).resolve()
    for parent in current.parents:
        if (parent / 'src').exists() and (parent / 'config').exists():
            return parent
    # Fallback: use parent of src/
    return Path(__file__).resolve().parent.parent


PROJECT_ROOT = _find_project_root()

# Source definitions
SOURCES_CONFIG = PROJECT_ROOT / 'config' / 'sources.yml'

# Data directories
DATA_RAW_DIR = PROJECT_ROOT / 'data_raw'
DATA_WORK_DIR = PROJECT_ROOT / 'data_work'
DIAGNOSTICS_DIR = DATA_WORK_DIR / 'diagnostics'

# Downloaded and intermediate spatial layers
SPATIAL_DATA_DIR = DATA_WORK_DIR / 'spatial'

# Output directories
FIGURES_DIR = PROJECT_ROOT / 'figures'


# =============================================================================
# QUALITY ASSURANCE
# =============================================================================

# Enable per-stage QA report generation
ENABLE_QA_REPORTS = True

# Output directory for QA reports
QA_REPORTS_DIR = DATA_WORK_DIR / 'quality'

# QA thresholds (customize per project)
QA_THRESHOLDS = {
    'max_missing_pct': 5.0,         # Warn if >5% missing values
    'min_row_count': 1,             # Warn if a layer is empty
    'max_invalid_geometry': 0,      # Warn on any invalid geometry
}


# =============================================================================
# CACHING SETTINGS
# =============================================================================

# Cache downloaded bytes between runs (opportunistic, not correctness-critical)
CACHE_ENABLED = True

# Cache directory
CACHE_DIR = DATA_WORK_DIR / '.cache'

# Maximum cache age in hours before automatic invalidation
CACHE_MAX_AGE_HOURS = 168  # 1 week


# =============================================================================
# NETWORK SETTINGS
# =============================================================================

# Per-request timeout in seconds
HTTP_TIMEOUT = 60

# Retries after the first attempt for transient failures
HTTP_RETRIES = 3

# Base delay in seconds; attempt n waits HTTP_BACKOFF * 2**n
HTTP_BACKOFF = 1.0

# HTTP status codes treated as transient
HTTP_RETRY_STATUS = (429, 500, 502, 503, 504)

HTTP_USER_AGENT = 'spatial-linkage/0.1 (+research pipeline)'

# Census table API (Nomis)
CENSUS_API_URL = 'https://www.nomisweb.co.uk/api/v01/dataset/{dataset}.data.csv'

# OpenStreetMap Overpass API
OVERPASS_API_URL = 'https://overpass-api.de/api/interpreter'
OVERPASS_TIMEOUT = 180


# =============================================================================
# GEOSPATIAL SETTINGS
# =============================================================================

# Common CRS for every linkage operation (British National Grid, metres)
ANALYSIS_CRS = "EPSG:27700"

# CRS used for API bounding boxes and GPS coordinates
GEOGRAPHIC_CRS = "EPSG:4326"

# Radius of centroid buffers for area-weighted aggregation
BUFFER_DISTANCE_M = 1000.0

# Edge length of gridded coverage cells (PCM pollution grid is 1 km)
COVERAGE_CELL_SIZE_M = 1000.0

# Edge length of the interpolation grid
GRID_CELL_SIZE_M = 1000.0

# Join cardinality when one feature matches several: 'first' or 'all'
JOIN_CARDINALITY = 'first'


# =============================================================================
# INTERPOLATION SETTINGS
# =============================================================================

# Default interpolation method ('kriging' falls back to 'idw' on FitError)
INTERPOLATION_METHOD = 'kriging'

# Inverse distance weighting exponent
IDW_POWER = 2.0

# Maximum neighbours considered by IDW (None = all samples)
IDW_MAX_NEIGHBORS = None

# Candidate variogram families; the best weighted fit is kept
VARIOGRAM_FAMILIES = ['exponential', 'spherical', 'gaussian']

# Number of distance bins for the empirical variogram
VARIOGRAM_N_BINS = 15

# Coincident samples: 'mean', 'first' or 'error'
KRIGING_DUPLICATES = 'mean'

# Folds for interpolation cross-validation
CV_FOLDS = 5

# Random state for fold assignment reproducibility
RANDOM_STATE = 42


# =============================================================================
# MODEL SETTINGS
# =============================================================================

MODEL_SPECIFICATION = {
    'name': 'baseline',
    'outcome': 'no2',
    'regressors': [
        'per_mixed', 'per_asian', 'per_black', 'per_other',
        'per_owner', 'per_social', 'pubs_count', 'POPDEN', 'ulez',
    ],
}

SIGNIFICANCE_LEVEL = 0.05


# =============================================================================
# FILE NAMING CONVENTIONS
# =============================================================================

# Stage outputs (GeoParquet snapshots)
RAW_LAYERS = {
    'boundaries': 'boundaries_raw.parquet',
    'zones': 'zones_raw.parquet',
    'coverage': 'coverage_raw.parquet',
    'points': 'points_raw.parquet',
    'samples': 'samples_raw.parquet',
}
CENSUS_FILE = 'census.parquet'
PROJECTED_SUFFIX = '_projected.parquet'
LINKED_FILE = 'linked.parquet'
AGGREGATED_FILE = 'aggregated.parquet'
SURFACE_FILE = 'surface.parquet'
FINAL_FILE = 'final.parquet'
MODEL_FILE = 'model_estimates.csv'


# =============================================================================
# VALIDATION
# =============================================================================

def validate_config() -> bool:
    """
    Validate configuration settings.

    Returns
    -------
    bool
        True if all validations pass

    Raises
    ------
    ValueError
        If any configuration is invalid
    """
    errors = []

    if not PROJECT_ROOT.exists():
        errors.append(f"PROJECT_ROOT does not exist: {PROJECT_ROOT}")

    if BUFFER_DISTANCE_M <= 0:
        errors.append(f"BUFFER_DISTANCE_M must be positive: {BUFFER_DISTANCE_M}")

    for name, value in [
        ('GRID_CELL_SIZE_M', GRID_CELL_SIZE_M),
        ('COVERAGE_CELL_SIZE_M', COVERAGE_CELL_SIZE_M),
    ]:
        if value <= 0:
            errors.append(f"{name} must be positive: {value}")

    if IDW_POWER <= 0:
        errors.append(f"IDW_POWER must be positive: {IDW_POWER}")

    if JOIN_CARDINALITY not in ('first', 'all'):
        errors.append(f"JOIN_CARDINALITY must be 'first' or 'all': {JOIN_CARDINALITY}")

    if KRIGING_DUPLICATES not in ('mean', 'first', 'error'):
        errors.append(f"KRIGING_DUPLICATES must be mean/first/error: {KRIGING_DUPLICATES}")

    if HTTP_RETRIES < 0:
        errors.append(f"HTTP_RETRIES must be non-negative: {HTTP_RETRIES}")

    if CV_FOLDS < 2:
        errors.append(f"CV_FOLDS must be at least 2: {CV_FOLDS}")

    if errors:
        raise ValueError("Configuration errors:\n" + "\n".join(f"  - {e}" for e in errors))

    return True


def ensure_directories() -> None:
    """Create required directories if they don't exist."""
    for path in [DATA_RAW_DIR, DATA_WORK_DIR, DIAGNOSTICS_DIR, SPATIAL_DATA_DIR,
                 FIGURES_DIR, QA_REPORTS_DIR, CACHE_DIR]:
        path.mkdir(parents=True, exist_ok=True)


def get_data_dir(subdir: str = 'work') -> Path:
    """Get a data directory by short name."""
    if subdir == 'raw':
        return DATA_RAW_DIR
    elif subdir == 'work':
        return DATA_WORK_DIR
    elif subdir == 'diagnostics':
        return DIAGNOSTICS_DIR
    elif subdir == 'spatial':
        return SPATIAL_DATA_DIR
    else:
        return PROJECT_ROOT / f'data_{subdir}'


# =============================================================================
# MODULE INITIALIZATION
# =============================================================================

if __name__ == '__main__':
    # Print configuration when run directly
    print("Spatial Linkage Configuration")
    print("=" * 50)
    print(f"PROJECT_ROOT:      {PROJECT_ROOT}")
    print(f"DATA_RAW_DIR:      {DATA_RAW_DIR}")
    print(f"DATA_WORK_DIR:     {DATA_WORK_DIR}")
    print(f"SPATIAL_DATA_DIR:  {SPATIAL_DATA_DIR}")
    print(f"FIGURES_DIR:       {FIGURES_DIR}")
    print()
    print(f"ANALYSIS_CRS:      {ANALYSIS_CRS}")
    print(f"BUFFER_DISTANCE_M: {BUFFER_DISTANCE_M}")
    print(f"GRID_CELL_SIZE_M:  {GRID_CELL_SIZE_M}")
    print()
    print("Validating configuration...")
    try:
        validate_config()
        print("Configuration valid.")
    except ValueError as e:
        print(f"Configuration invalid:\n{e}")
