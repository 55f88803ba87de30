"""
Spatial data I/O utilities.

Provides functions for loading and saving spatial data in various formats
including GeoPackage, Shapefile (plain or zipped), GeoJSON and CSV tables
with coordinate columns, plus GeoParquet snapshots used between pipeline
stages.
"""

from __future__ import annotations

import zipfile
from pathlib import Path
from typing import Optional, Sequence, Union

import fiona
import geopandas as gpd
import pandas as pd

from spatial.core.errors import FormatError
from spatial.core.features import validate_features


# Supported file extensions and their drivers
SPATIAL_FORMATS = {
    ".gpkg": "GPKG",
    ".shp": "ESRI Shapefile",
    ".geojson": "GeoJSON",
    ".json": "GeoJSON",
}

# Formats handled outside the vector drivers
TABULAR_FORMATS = (".csv",)
ARCHIVE_FORMATS = (".zip",)

SNAPSHOT_SUFFIX = ".parquet"


def _supported_list() -> str:
    return ", ".join([*SPATIAL_FORMATS, *TABULAR_FORMATS, *ARCHIVE_FORMATS])


def load_spatial(
    path: Union[str, Path],
    layer: Optional[str] = None,
    crs: Optional[str] = None,
    x_col: Optional[str] = None,
    y_col: Optional[str] = None,
    **kwargs,
) -> gpd.GeoDataFrame:
    """
    Load spatial data from file.

    Format is detected from the file extension. Vector formats are read
    with geopandas; ``.csv`` files become point collections from their
    coordinate columns; ``.zip`` archives are extracted next to the archive
    and the shapefile named ``layer`` is read.

    Parameters
    ----------
    path : str or Path
        Path to the spatial data file.
    layer : str, optional
        Layer name for multi-layer formats (GeoPackage) or the shapefile
        stem inside a zip archive.
    crs : str, optional
        CRS to assign when the source does not embed one. Required for CSV.
        If the source embeds a different CRS, the embedded CRS wins.
    x_col, y_col : str, optional
        Coordinate columns for CSV input.
    **kwargs
        Additional arguments passed to geopandas.read_file() or
        pandas.read_csv().

    Returns
    -------
    gpd.GeoDataFrame
        The loaded collection, always with a CRS.

    Raises
    ------
    FileNotFoundError
        If the file does not exist.
    FormatError
        If the format is unsupported, the file cannot be parsed, or no CRS
        is known.

    Examples
    --------
    >>> msoa = load_spatial('data_raw/boundaries.zip', layer='MSOA_2011_London_gen_MHW')
    >>> ulez = load_spatial('data_raw/ulez.json')
    >>> pol = load_csv_points('data_raw/mapno22011.csv', 'x', 'y', 'EPSG:27700', skiprows=5)
    """
    path = Path(path)

    if not path.exists():
        raise FileNotFoundError(f"Spatial file not found: {path}")

    ext = path.suffix.lower()
    if ext in TABULAR_FORMATS:
        if x_col is None or y_col is None or crs is None:
            raise FormatError(
                "CSV sources need x_col, y_col and crs",
                source=str(path),
            )
        return load_csv_points(path, x_col, y_col, crs, **kwargs)

    if ext in ARCHIVE_FORMATS:
        path = _extract_archive_layer(path, layer)
        layer = None
        ext = path.suffix.lower()

    if ext not in SPATIAL_FORMATS:
        raise FormatError(
            f"Unsupported spatial format: {ext}. Supported formats: {_supported_list()}",
            source=str(path),
        )

    read_kwargs = kwargs.copy()
    if layer is not None:
        read_kwargs["layer"] = layer

    try:
        gdf = gpd.read_file(path, **read_kwargs)
    except Exception as exc:
        raise FormatError(
            f"Could not parse spatial file: {exc}",
            source=str(path),
            layer=layer,
        ) from exc

    return _attach_crs(gdf, crs, source=str(path))


def _attach_crs(gdf: gpd.GeoDataFrame, crs: Optional[str], source: str) -> gpd.GeoDataFrame:
    """Assign a declared CRS when the source carries none."""
    if gdf.crs is None:
        if crs is None:
            raise FormatError(
                "Source has no embedded CRS and none was declared",
                source=source,
            )
        gdf = gdf.set_crs(crs)
    return gdf


def _extract_archive_layer(archive: Path, layer: Optional[str]) -> Path:
    """
    Extract a zip archive beside itself and locate the requested vector file.

    When ``layer`` is None the archive must contain exactly one vector file.
    """
    target_dir = archive.with_suffix("")
    try:
        with zipfile.ZipFile(archive) as zf:
            if not target_dir.exists():
                zf.extractall(target_dir)
    except zipfile.BadZipFile as exc:
        raise FormatError(f"Corrupt zip archive: {exc}", source=str(archive)) from exc

    candidates = [
        p for p in sorted(target_dir.rglob("*"))
        if p.suffix.lower() in SPATIAL_FORMATS
    ]
    if layer is not None:
        candidates = [p for p in candidates if p.stem == layer]

    if len(candidates) != 1:
        found = [p.name for p in candidates]
        raise FormatError(
            "Could not identify a single vector layer in archive",
            source=str(archive),
            layer=layer,
            candidates=found,
        )
    return candidates[0]


def points_from_table(
    df: pd.DataFrame,
    x_col: str,
    y_col: str,
    crs: str,
) -> gpd.GeoDataFrame:
    """
    Convert a table with coordinate columns to a point collection.

    Rows with a missing coordinate are dropped. Coordinate columns are kept
    as attributes.

    Parameters
    ----------
    df : pd.DataFrame
        Input table.
    x_col, y_col : str
        Column names holding x (easting / longitude) and y (northing /
        latitude). Order matters: ``x`` is longitude for geographic CRS.
    crs : str
        CRS of the coordinates.

    Raises
    ------
    FormatError
        If a coordinate column is missing or not numeric.

    Examples
    --------
    >>> df = pd.DataFrame({'name': ['Nuffield College'], 'lat': [51.7526], 'lon': [-1.2628]})
    >>> gdf = points_from_table(df, x_col='lon', y_col='lat', crs='EPSG:4326')
    """
    missing = [c for c in (x_col, y_col) if c not in df.columns]
    if missing:
        raise FormatError(f"Coordinate columns not found: {missing}", columns=list(df.columns))

    try:
        x = pd.to_numeric(df[x_col], errors="raise")
        y = pd.to_numeric(df[y_col], errors="raise")
    except (TypeError, ValueError) as exc:
        raise FormatError(f"Non-numeric coordinates: {exc}", x_col=x_col, y_col=y_col) from exc

    keep = x.notna() & y.notna()
    table = df.loc[keep].copy()
    geometry = gpd.points_from_xy(x[keep], y[keep])
    return gpd.GeoDataFrame(table, geometry=geometry, crs=crs)


def load_csv_points(
    path: Union[str, Path],
    x_col: str,
    y_col: str,
    crs: str,
    skiprows: int = 0,
    na_values: Optional[Sequence[str]] = None,
    **kwargs,
) -> gpd.GeoDataFrame:
    """
    Load a CSV file with coordinate columns as a point collection.

    Parameters
    ----------
    path : str or Path
        CSV file.
    x_col, y_col : str
        Coordinate columns.
    crs : str
        CRS of the coordinates.
    skiprows : int
        Preamble lines before the header (Defra PCM files use 5).
    na_values : sequence of str, optional
        Extra markers for missing values (e.g. ``['MISSING']``).
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"CSV file not found: {path}")

    try:
        df = pd.read_csv(path, skiprows=skiprows, na_values=na_values, **kwargs)
    except (pd.errors.ParserError, pd.errors.EmptyDataError, UnicodeDecodeError) as exc:
        raise FormatError(f"Could not parse CSV: {exc}", source=str(path)) from exc

    return points_from_table(df, x_col, y_col, crs)


def save_spatial(
    gdf: gpd.GeoDataFrame,
    path: Union[str, Path],
    layer: Optional[str] = None,
    driver: Optional[str] = None,
    **kwargs,
) -> Path:
    """
    Save spatial data to file.

    Automatically selects driver based on file extension unless explicitly
    specified.

    Examples
    --------
    >>> save_spatial(msoa, 'data_work/spatial/msoa.gpkg', layer='msoa')
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    ext = path.suffix.lower()

    if driver is None:
        if ext not in SPATIAL_FORMATS:
            supported = ", ".join(SPATIAL_FORMATS.keys())
            raise FormatError(
                f"Cannot determine driver for extension: {ext}. "
                f"Supported formats: {supported}",
                source=str(path),
            )
        driver = SPATIAL_FORMATS[ext]

    write_kwargs = kwargs.copy()
    write_kwargs["driver"] = driver
    if layer is not None:
        write_kwargs["layer"] = layer

    gdf.to_file(path, **write_kwargs)

    return path


def save_snapshot(gdf: gpd.GeoDataFrame, path: Union[str, Path]) -> Path:
    """
    Persist a feature collection as GeoParquet.

    Geometry, attributes and CRS are preserved so the next pipeline run
    can reuse the result.

    Raises
    ------
    InvalidFeatureError
        If the collection violates the feature invariants.
    """
    validate_features(gdf)
    path = Path(path)
    if path.suffix != SNAPSHOT_SUFFIX:
        path = path.with_suffix(SNAPSHOT_SUFFIX)
    path.parent.mkdir(parents=True, exist_ok=True)
    gdf.to_parquet(path)
    return path


def load_snapshot(path: Union[str, Path]) -> gpd.GeoDataFrame:
    """
    Load a GeoParquet snapshot written by ``save_snapshot``.

    Raises
    ------
    FileNotFoundError
        If the snapshot does not exist.
    FormatError
        If the file is not a GeoParquet snapshot.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Snapshot not found: {path}")
    try:
        return gpd.read_parquet(path)
    except (ValueError, OSError) as exc:
        raise FormatError(f"Could not read snapshot: {exc}", source=str(path)) from exc


def has_geometry(df: Union[pd.DataFrame, gpd.GeoDataFrame]) -> bool:
    """
    Check if a DataFrame has a usable geometry column.

    Examples
    --------
    >>> has_geometry(pd.DataFrame({'x': [1, 2], 'y': [3, 4]}))
    False
    """
    if isinstance(df, gpd.GeoDataFrame):
        try:
            geometry = df.geometry
        except AttributeError:
            return False
        return not geometry.isna().all()

    return "geometry" in df.columns


def list_layers(path: Union[str, Path]) -> list[str]:
    """
    List available layers in a spatial data file.

    Examples
    --------
    >>> list_layers('data_raw/ulez.json')
    ['Ultra_Low_Emissions_Zone']
    """
    path = Path(path)

    if not path.exists():
        raise FileNotFoundError(f"Spatial file not found: {path}")

    return fiona.listlayers(path)
