"""
Interpolator registry.

Usage
-----
    from spatial.interpolate.factory import get_interpolator, list_interpolators

    # Built-in methods
    idw = get_interpolator('idw', power=2.0)
    kriging = get_interpolator('kriging', family=['exponential', 'spherical'])

    # Register a custom method
    @register_interpolator('nearest')
    class NearestValue(Interpolator):
        ...
"""
from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .base import Interpolator

# Interpolator registry: name -> class
_interpolator_registry: dict[str, type] = {}


def register_interpolator(name: str):
    """
    Decorator to register an interpolator class under ``name``.

    Example
    -------
        @register_interpolator('idw')
        class IDWInterpolator(Interpolator):
            ...
    """
    def decorator(cls):
        _interpolator_registry[name] = cls
        return cls
    return decorator


def get_interpolator(name: str, **params) -> 'Interpolator':
    """
    Instantiate a registered interpolator.

    Parameters
    ----------
    name : str
        Registered name ('idw', 'kriging', ...). Case-insensitive.
    **params
        Passed to the interpolator's constructor.

    Raises
    ------
    ValueError
        If the name is not registered.
    """
    _ensure_interpolators_loaded()

    name = name.lower()
    if name not in _interpolator_registry:
        available = ', '.join(sorted(_interpolator_registry.keys()))
        raise ValueError(
            f"Unknown interpolator: '{name}'. Available interpolators: {available}"
        )

    return _interpolator_registry[name](**params)


def list_interpolators() -> list[str]:
    """Names of all registered interpolators, sorted."""
    _ensure_interpolators_loaded()
    return sorted(_interpolator_registry.keys())


def _ensure_interpolators_loaded() -> None:
    """Import built-in interpolator modules so they register themselves."""
    from . import idw  # noqa: F401
    from . import kriging  # noqa: F401
