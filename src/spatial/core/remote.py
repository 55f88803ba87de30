"""
Remote data sources.

Downloads files over HTTP with retry and exponential backoff, and wraps the
two web APIs the pipeline queries: a census table API returning CSV (Nomis)
and the OpenStreetMap Overpass API. Everything is normalised into pandas
tables or feature collections.
"""

from __future__ import annotations

import http.client
import io
import json
import re
import socket
import time
from pathlib import Path
from typing import Iterable, Optional, Sequence, Union
from urllib.error import HTTPError, URLError
from urllib.parse import urlencode, urlparse
from urllib.request import Request, urlopen

import geopandas as gpd
import pandas as pd

from spatial.core.errors import EmptyResultError, FormatError, NetworkError
from spatial.core.io import load_spatial


DEFAULT_TIMEOUT = 60
DEFAULT_RETRIES = 3
DEFAULT_BACKOFF = 1.0
RETRY_STATUS = (429, 500, 502, 503, 504)
DEFAULT_USER_AGENT = 'spatial-linkage/0.1'

CENSUS_API_URL = 'https://www.nomisweb.co.uk/api/v01/dataset/{dataset}.data.csv'
OVERPASS_API_URL = 'https://overpass-api.de/api/interpreter'

# Nomis measure code for absolute counts
MEASURE_COUNT = 20100


def fetch_bytes(
    url: str,
    data: Optional[bytes] = None,
    timeout: float = DEFAULT_TIMEOUT,
    retries: int = DEFAULT_RETRIES,
    backoff: float = DEFAULT_BACKOFF,
    retry_status: Sequence[int] = RETRY_STATUS,
    user_agent: str = DEFAULT_USER_AGENT,
    cache=None,
) -> bytes:
    """
    Download a URL, retrying transient failures with exponential backoff.

    Connection errors, timeouts and the HTTP status codes in
    ``retry_status`` are retried up to ``retries`` times, waiting
    ``backoff * 2**attempt`` seconds between attempts. Any other HTTP error
    fails immediately.

    Parameters
    ----------
    url : str
        URL to fetch.
    data : bytes, optional
        Request body; when given the request is a POST.
    timeout : float
        Per-attempt timeout in seconds.
    retries : int
        Retries after the first attempt.
    backoff : float
        Base delay in seconds.
    retry_status : sequence of int
        Status codes considered transient.
    user_agent : str
        User-Agent header.
    cache : CacheManager, optional
        When given, the payload is cached under the URL and request body.

    Returns
    -------
    bytes
        Response body.

    Raises
    ------
    NetworkError
        If the source is unreachable after all attempts or returns a
        non-transient HTTP error.
    """
    if cache is not None:
        return cache.get_or_compute(
            key=_cache_key(url),
            compute_fn=lambda: fetch_bytes(
                url, data=data, timeout=timeout, retries=retries, backoff=backoff,
                retry_status=retry_status, user_agent=user_agent,
            ),
            depends_on={'url': url, 'data': data or b''},
        )

    req = Request(url, data=data, headers={'User-Agent': user_agent})
    last_error: Optional[BaseException] = None
    status = None

    for attempt in range(retries + 1):
        try:
            with urlopen(req, timeout=timeout) as response:
                return response.read()
        except HTTPError as exc:
            status = exc.code
            if exc.code not in retry_status:
                raise NetworkError(
                    f"HTTP {exc.code} from remote source",
                    url=url, status=exc.code, attempts=attempt + 1,
                ) from exc
            last_error = exc
        except (URLError, socket.timeout, TimeoutError, ConnectionError,
                http.client.HTTPException) as exc:
            last_error = exc

        if attempt < retries:
            time.sleep(backoff * 2 ** attempt)

    raise NetworkError(
        f"Remote source unreachable: {last_error}",
        url=url, status=status, attempts=retries + 1,
    ) from last_error


def _cache_key(url: str) -> str:
    parsed = urlparse(url)
    name = Path(parsed.path).name or parsed.netloc
    return re.sub(r'[^A-Za-z0-9._-]+', '_', name)


def download_file(
    url: str,
    destination: Union[str, Path],
    overwrite: bool = False,
    **fetch_kwargs,
) -> Path:
    """
    Download a URL to ``destination``.

    An existing file is reused unless ``overwrite`` is True.
    """
    destination = Path(destination)
    if destination.exists() and not overwrite:
        return destination

    payload = fetch_bytes(url, **fetch_kwargs)
    destination.parent.mkdir(parents=True, exist_ok=True)
    destination.write_bytes(payload)
    return destination


def load_remote(
    url: str,
    download_dir: Union[str, Path],
    layer: Optional[str] = None,
    crs: Optional[str] = None,
    filename: Optional[str] = None,
    read_kwargs: Optional[dict] = None,
    **fetch_kwargs,
) -> gpd.GeoDataFrame:
    """
    Download a spatial file and load it as a feature collection.

    Parameters
    ----------
    url : str
        File URL (zip, GeoJSON, GeoPackage, CSV...).
    download_dir : str or Path
        Directory where the file is stored.
    layer : str, optional
        Layer to read (shapefile stem inside a zip, GeoPackage layer).
    crs : str, optional
        CRS to assign when the source embeds none.
    filename : str, optional
        Local file name (default: last URL path segment).
    read_kwargs : dict, optional
        Extra arguments for :func:`load_spatial` (e.g. x_col / y_col for CSV).
    **fetch_kwargs
        Passed to :func:`fetch_bytes`.

    Examples
    --------
    >>> ulez = load_remote(ULEZ_URL, 'data_work/spatial', filename='ulez.json')
    """
    filename = filename or Path(urlparse(url).path).name
    if not filename:
        raise FormatError("Cannot derive a file name from URL; pass filename", source=url)

    path = download_file(url, Path(download_dir) / filename, **fetch_kwargs)
    return load_spatial(path, layer=layer, crs=crs, **(read_kwargs or {}))


# =============================================================================
# CENSUS TABLES
# =============================================================================

def query_census_table(
    dataset_id: str,
    geography: Union[str, Iterable[str]],
    measures: int = MEASURE_COUNT,
    time_period: str = '2011',
    extra_params: Optional[dict] = None,
    dataset_code: Optional[str] = None,
    id_col: str = 'msoa11',
    base_url: str = CENSUS_API_URL,
    **fetch_kwargs,
) -> pd.DataFrame:
    """
    Fetch a census table and reshape it to one row per area.

    Parameters
    ----------
    dataset_id : str
        API dataset id (e.g. ``'NM_608_1'`` for KS201EW).
    geography : str or iterable of str
        Area codes, or a geography type such as ``'TYPE297'``.
    measures : int
        Measure code (20100 = absolute counts).
    time_period : str
        Census year.
    extra_params : dict, optional
        Additional dimension filters, e.g. ``{'RURAL_URBAN': 0, 'C_SEX': 0}``.
    dataset_code : str, optional
        Table code used to prefix numeric cell codes (default: dataset_id).
    id_col : str
        Output name of the area code column.

    Returns
    -------
    pd.DataFrame
        Wide table keyed by ``id_col`` and ``name``.
    """
    if not isinstance(geography, str):
        geography = ','.join(geography)

    params = {'date': time_period, 'geography': geography, 'measures': measures}
    params.update(extra_params or {})
    url = base_url.format(dataset=dataset_id) + '?' + urlencode(params)

    payload = fetch_bytes(url, **fetch_kwargs)
    try:
        long_df = pd.read_csv(io.BytesIO(payload))
    except (pd.errors.ParserError, pd.errors.EmptyDataError, UnicodeDecodeError) as exc:
        raise FormatError(f"Unparseable census response: {exc}", source=url) from exc

    return census_to_wide(long_df, dataset_code or dataset_id, id_col=id_col)


def census_to_wide(
    long_df: pd.DataFrame,
    dataset_code: str,
    id_col: str = 'msoa11',
) -> pd.DataFrame:
    """
    Reshape a long census table (one row per area and cell) to wide.

    Column names are lower-cased, ``geography_code`` becomes ``id_col`` and
    ``geography_name`` becomes ``name``. Cell codes that are purely numeric
    get the table code as prefix (``'KS201EW_100'``).

    Raises
    ------
    FormatError
        If the required columns are absent.
    """
    df = long_df.copy()
    df.columns = [str(c).lower() for c in df.columns]
    df = df.rename(columns={'geography_code': id_col, 'geography_name': 'name'})

    required = {id_col, 'name', 'cell_code', 'obs_value'}
    missing = sorted(required - set(df.columns))
    if missing:
        raise FormatError(f"Census table lacks columns: {missing}", source=dataset_code)

    codes = df['cell_code'].astype(str)
    numeric = codes.str.fullmatch(r'\d+')
    if numeric.any():
        prefix = codes[~numeric].str[:7].iloc[0] if (~numeric).any() else dataset_code
        codes = codes.where(~numeric, prefix + '_' + codes)
    df['cell_code'] = codes

    wide = df.pivot_table(
        index=[id_col, 'name'],
        columns='cell_code',
        values='obs_value',
        aggfunc='first',
    ).reset_index()
    wide.columns.name = None
    return wide


# =============================================================================
# OPENSTREETMAP
# =============================================================================

def build_overpass_query(
    bbox: Sequence[float],
    key: str,
    values: Optional[Sequence[str]] = None,
    timeout: int = 180,
) -> str:
    """
    Build an Overpass QL query for tagged nodes inside a bounding box.

    Parameters
    ----------
    bbox : sequence of float
        (min_lon, min_lat, max_lon, max_lat) in WGS84, the order returned
        by ``GeoDataFrame.total_bounds``.
    key : str
        OSM tag key (e.g. ``'amenity'``).
    values : sequence of str, optional
        Accepted tag values; any value when omitted.
    """
    min_lon, min_lat, max_lon, max_lat = bbox
    if values:
        pattern = '|'.join(re.escape(v) for v in values)
        selector = f'["{key}"~"^({pattern})$"]'
    else:
        selector = f'["{key}"]'
    box = f'({min_lat},{min_lon},{max_lat},{max_lon})'
    return f'[out:json][timeout:{timeout}];\nnode{selector}{box};\nout body;'


def query_osm_points(
    bbox: Sequence[float],
    key: str,
    values: Optional[Sequence[str]] = None,
    allow_empty: bool = False,
    base_url: str = OVERPASS_API_URL,
    **fetch_kwargs,
) -> gpd.GeoDataFrame:
    """
    Query OpenStreetMap nodes tagged ``key=value`` within a WGS84 bounding box.

    Returns
    -------
    gpd.GeoDataFrame
        EPSG:4326 points with ``osm_id``, ``name`` and the ``key`` column,
        one row per unique OSM id.

    Raises
    ------
    EmptyResultError
        If nothing matched and ``allow_empty`` is False.

    Examples
    --------
    >>> bbox = reproject(msoa, 'EPSG:4326').total_bounds
    >>> pubs = query_osm_points(bbox, 'amenity', ['pub', 'bar'])
    """
    query = build_overpass_query(bbox, key, values)
    payload = fetch_bytes(base_url, data=urlencode({'data': query}).encode(), **fetch_kwargs)

    try:
        elements = json.loads(payload)['elements']
    except (ValueError, KeyError, TypeError) as exc:
        raise FormatError(f"Unparseable Overpass response: {exc}", source=base_url) from exc

    return osm_elements_to_points(elements, key, allow_empty=allow_empty)


def osm_elements_to_points(
    elements: Sequence[dict],
    key: str,
    allow_empty: bool = False,
) -> gpd.GeoDataFrame:
    """Normalise Overpass node elements into a point collection."""
    records = []
    for el in elements:
        if el.get('type') != 'node' or 'lat' not in el or 'lon' not in el:
            continue
        tags = el.get('tags', {})
        records.append({
            'osm_id': el['id'],
            'name': tags.get('name'),
            key: tags.get(key),
            'lon': el['lon'],
            'lat': el['lat'],
        })

    if not records:
        if not allow_empty:
            raise EmptyResultError("OSM query returned no points", operation='query_osm_points', key=key)
        return gpd.GeoDataFrame(
            columns=['osm_id', 'name', key, 'geometry'], geometry='geometry', crs='EPSG:4326'
        )

    df = pd.DataFrame(records).drop_duplicates(subset='osm_id').reset_index(drop=True)
    geometry = gpd.points_from_xy(df.pop('lon'), df.pop('lat'))
    return gpd.GeoDataFrame(df, geometry=geometry, crs='EPSG:4326')
