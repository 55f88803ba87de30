#!/usr/bin/env python3
"""
Caching utilities for downloads and expensive spatial steps.

Hash-based caching with automatic invalidation. Used opportunistically:
a cache miss or an unreadable entry only means the value is recomputed
(or downloaded) again.

Usage
-----
    from utils.cache import CacheManager

    cache = CacheManager('downloads')
    data = cache.get_or_compute(
        key='ulez.json',
        compute_fn=lambda: fetch(url),
        depends_on={'url': url},
    )
    print(cache.stats())
"""
from __future__ import annotations

import hashlib
import json
import pickle
import time
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Optional, Union

import geopandas as gpd
import pandas as pd

from config import CACHE_DIR, CACHE_ENABLED, CACHE_MAX_AGE_HOURS


# =============================================================================
# HASHING UTILITIES
# =============================================================================

def hash_frame(df) -> str:
    """
    Compute a deterministic hash of a DataFrame or GeoDataFrame.

    Geometries are hashed through their WKB encoding and the CRS is part
    of the hash, so the same coordinates in a different CRS hash
    differently.

    Returns
    -------
    str
        MD5 hash hex digest
    """
    hasher = hashlib.md5()
    hasher.update(f"shape:{df.shape}".encode())

    crs = getattr(df, 'crs', None)
    hasher.update(f"crs:{crs.to_wkt() if crs is not None else None}".encode())

    geom_name = df.geometry.name if isinstance(df, gpd.GeoDataFrame) else None

    for col in df.columns:
        hasher.update(f"col:{col}:{df[col].dtype}".encode())

    if len(df) > 0:
        attrs = df.drop(columns=[geom_name]) if geom_name else df
        if len(attrs.columns) > 0:
            hash_values = pd.util.hash_pandas_object(pd.DataFrame(attrs), index=False)
            hasher.update(hash_values.values.tobytes())
        if geom_name:
            for wkb in df.geometry.to_wkb():
                hasher.update(wkb if wkb is not None else b'null')

    return hasher.hexdigest()


def hash_file(path: Union[str, Path]) -> str:
    """Compute MD5 hash of a file's contents (``missing:<path>`` if absent)."""
    path = Path(path)
    if not path.exists():
        return f"missing:{path}"

    hasher = hashlib.md5()
    with open(path, 'rb') as f:
        for chunk in iter(lambda: f.read(65536), b''):
            hasher.update(chunk)

    return hasher.hexdigest()


def hash_config(config: dict) -> str:
    """Compute hash of a JSON-serializable configuration dictionary."""
    config_str = json.dumps(config, sort_keys=True, default=str)
    return hashlib.md5(config_str.encode()).hexdigest()


def hash_dependencies(depends_on: dict) -> str:
    """
    Compute combined hash of multiple dependencies.

    Parameters
    ----------
    depends_on : dict
        Mapping of names to values. Paths are hashed by content,
        DataFrames by :func:`hash_frame`, dicts as JSON and anything else
        through ``str()``.

    Returns
    -------
    str
        Combined MD5 hash hex digest
    """
    hasher = hashlib.md5()

    for name in sorted(depends_on.keys()):
        value = depends_on[name]

        if isinstance(value, Path):
            dep_hash = hash_file(value)
        elif isinstance(value, pd.DataFrame):
            dep_hash = hash_frame(value)
        elif isinstance(value, dict):
            dep_hash = hash_config(value)
        else:
            dep_hash = hashlib.md5(str(value).encode()).hexdigest()

        hasher.update(f"{name}:{dep_hash}".encode())

    return hasher.hexdigest()


# =============================================================================
# CACHE MANAGER
# =============================================================================

class CacheManager:
    """
    Manages cached values for one namespace (e.g. ``'downloads'``).

    Parameters
    ----------
    namespace : str
        Subdirectory of the cache root.
    cache_dir : Path, optional
        Cache root (default: CACHE_DIR from config).
    enabled : bool, optional
        Whether caching is enabled (default: True, subject to CACHE_ENABLED).
    max_age_hours : float, optional
        Entries older than this are ignored (default: CACHE_MAX_AGE_HOURS).

    Examples
    --------
    >>> cache = CacheManager('downloads')
    >>> payload = cache.get_or_compute('boundaries', lambda: b'...', {'url': url})
    >>> cache.stats()
    {'hits': 0, 'misses': 1, 'hit_rate': 0.0, 'saved_time_sec': 0.0}
    """

    def __init__(
        self,
        namespace: str,
        cache_dir: Optional[Path] = None,
        enabled: bool = True,
        max_age_hours: Optional[float] = None,
    ):
        self.namespace = namespace
        self.cache_dir = Path(cache_dir or CACHE_DIR) / namespace
        self.enabled = enabled and CACHE_ENABLED
        self.max_age_hours = CACHE_MAX_AGE_HOURS if max_age_hours is None else max_age_hours

        self._hits = 0
        self._misses = 0
        self._saved_time = 0.0

    def _stem(self, key: str, dep_hash: str) -> str:
        safe_key = key.replace('/', '_').replace('\\', '_').replace(':', '_')
        return f"{safe_key}_{dep_hash[:12]}"

    def _get_cache_path(self, key: str, dep_hash: str) -> Path:
        return self.cache_dir / f"{self._stem(key, dep_hash)}.pkl"

    def _get_metadata_path(self, key: str, dep_hash: str) -> Path:
        return self.cache_dir / f"{self._stem(key, dep_hash)}.meta.json"

    def get(
        self,
        key: str,
        depends_on: Optional[dict] = None,
    ) -> tuple[bool, Any]:
        """
        Get a cached value if it exists and is fresh.

        Returns
        -------
        tuple[bool, Any]
            (found, value)
        """
        if not self.enabled:
            return False, None

        dep_hash = hash_dependencies(depends_on or {})
        cache_path = self._get_cache_path(key, dep_hash)
        meta_path = self._get_metadata_path(key, dep_hash)

        if not cache_path.exists():
            return False, None

        if meta_path.exists():
            try:
                meta = json.loads(meta_path.read_text())
                created = datetime.fromisoformat(meta.get('created', '2000-01-01'))
            except (json.JSONDecodeError, ValueError):
                created = None
            if created is not None:
                age_hours = (datetime.now() - created).total_seconds() / 3600
                if age_hours > self.max_age_hours:
                    return False, None

        try:
            with open(cache_path, 'rb') as f:
                value = pickle.load(f)
        except (pickle.PickleError, EOFError, FileNotFoundError):
            return False, None

        self._hits += 1
        return True, value

    def set(
        self,
        key: str,
        value: Any,
        depends_on: Optional[dict] = None,
        compute_time: Optional[float] = None,
    ) -> Optional[Path]:
        """Store a picklable value; returns the cache file path."""
        if not self.enabled:
            return None

        self.cache_dir.mkdir(parents=True, exist_ok=True)
        dep_hash = hash_dependencies(depends_on or {})
        cache_path = self._get_cache_path(key, dep_hash)
        meta_path = self._get_metadata_path(key, dep_hash)

        with open(cache_path, 'wb') as f:
            pickle.dump(value, f, protocol=pickle.HIGHEST_PROTOCOL)

        meta = {
            'key': key,
            'namespace': self.namespace,
            'created': datetime.now().isoformat(),
            'dep_hash': dep_hash,
            'compute_time_sec': compute_time,
            'size_bytes': cache_path.stat().st_size,
        }
        meta_path.write_text(json.dumps(meta, indent=2))

        return cache_path

    def get_or_compute(
        self,
        key: str,
        compute_fn: Callable[[], Any],
        depends_on: Optional[dict] = None,
        verbose: bool = False,
    ) -> Any:
        """
        Get cached value or compute and cache it.

        Exceptions raised by ``compute_fn`` propagate and nothing is cached.
        """
        found, value = self.get(key, depends_on)

        if found:
            if verbose:
                print(f"    [cache hit] {key}")
            return value

        self._misses += 1
        if verbose:
            print(f"    [cache miss] {key}")

        start_time = time.time()
        value = compute_fn()
        compute_time = time.time() - start_time

        self._saved_time += compute_time
        self.set(key, value, depends_on, compute_time)

        return value

    def invalidate(self, key: str, depends_on: Optional[dict] = None) -> bool:
        """
        Remove a cache entry.

        Without ``depends_on`` every entry for ``key`` is removed.
        """
        if depends_on:
            dep_hash = hash_dependencies(depends_on)
            paths = [self._get_cache_path(key, dep_hash)]
        else:
            paths = list(self.cache_dir.glob(f"{self._stem(key, '')}*.pkl"))

        removed = False
        for path in paths:
            if path.exists():
                path.unlink()
                removed = True
            meta_path = path.with_suffix('.meta.json')
            if meta_path.exists():
                meta_path.unlink()
        return removed

    def clear(self) -> int:
        """Clear all entries in this namespace; returns the number removed."""
        return _clear_dir(self.cache_dir)

    def stats(self) -> dict:
        """Hits, misses, hit rate and time spent computing misses."""
        total = self._hits + self._misses
        hit_rate = (self._hits / total * 100) if total > 0 else 0.0

        return {
            'hits': self._hits,
            'misses': self._misses,
            'hit_rate': round(hit_rate, 1),
            'saved_time_sec': round(self._saved_time, 2),
        }

    def size(self) -> dict:
        """File count and total size in MB."""
        return _dir_size(self.cache_dir)


# =============================================================================
# GLOBAL CACHE OPERATIONS
# =============================================================================

def _clear_dir(directory: Path) -> int:
    if not directory.exists():
        return 0
    count = 0
    for path in directory.glob('*.pkl'):
        path.unlink()
        count += 1
        meta_path = path.with_suffix('.meta.json')
        if meta_path.exists():
            meta_path.unlink()
    return count


def _dir_size(directory: Path) -> dict:
    if not directory.exists():
        return {'file_count': 0, 'total_mb': 0.0}
    files = list(directory.glob('*.pkl'))
    total_bytes = sum(f.stat().st_size for f in files)
    return {
        'file_count': len(files),
        'total_mb': round(total_bytes / (1024 * 1024), 2),
    }


def clear_all_caches(cache_dir: Optional[Path] = None) -> dict:
    """Clear every namespace; returns namespace -> files removed."""
    cache_root = Path(cache_dir or CACHE_DIR)
    if not cache_root.exists():
        return {}
    return {
        d.name: _clear_dir(d)
        for d in sorted(cache_root.iterdir()) if d.is_dir()
    }


def cache_stats_all(cache_dir: Optional[Path] = None) -> dict:
    """Size information per namespace."""
    cache_root = Path(cache_dir or CACHE_DIR)
    if not cache_root.exists():
        return {}
    return {
        d.name: _dir_size(d)
        for d in sorted(cache_root.iterdir()) if d.is_dir()
    }
