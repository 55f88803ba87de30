"""
Exception taxonomy for spatial operations.

Every error raised by the spatial package inherits from ``SpatialError`` and
carries a ``context`` dictionary (source identifier, predicate, sample count,
...) so that a caller can retry or adjust parameters.

Categories
----------
- ``FormatError``        unparseable or unsupported source.
- ``NetworkError``       unreachable or erroring remote source.
- ``CRSMismatchError``   operation between collections with differing CRS.
- ``FitError``           variogram / kriging model cannot be fit or solved.
- ``EmptyResultError``   no features where at least one was required.
- ``InvalidFeatureError`` a collection violates the feature invariants
  (missing CRS, null or empty geometry).

Each class also derives from the closest builtin exception so that code
catching ``ValueError`` or ``OSError`` keeps working.
"""
from __future__ import annotations

from typing import Any


class SpatialError(Exception):
    """
    Base exception for spatial pipeline errors.

    Parameters
    ----------
    message : str
        Human-readable description.
    **context
        Structured diagnostic fields stored on ``self.context``.
    """

    code: str = "SPATIAL_ERROR"

    def __init__(self, message: str = "", **context: Any) -> None:
        self.message = message
        self.context = {k: v for k, v in context.items() if v is not None}
        super().__init__(message)

    def __str__(self) -> str:
        if not self.context:
            return self.message
        details = ", ".join(f"{k}={v!r}" for k, v in self.context.items())
        return f"{self.message} ({details})"

    def to_error_dict(self) -> dict[str, Any]:
        """Return a structured payload with stable keys."""
        return {
            "error": type(self).__name__,
            "code": self.code,
            "message": self.message,
            "context": dict(self.context),
        }


class FormatError(SpatialError, ValueError):
    """Source could not be parsed into a feature collection."""

    code = "FORMAT_ERROR"


class NetworkError(SpatialError, OSError):
    """Remote source unreachable or returned an error."""

    code = "NETWORK_ERROR"


class CRSMismatchError(SpatialError, ValueError):
    """Two collections do not share a CRS."""

    code = "CRS_MISMATCH"


class FitError(SpatialError, RuntimeError):
    """Model fitting failed to converge or the spatial configuration is degenerate."""

    code = "FIT_ERROR"


class EmptyResultError(SpatialError, LookupError):
    """An operation produced no features where at least one was required."""

    code = "EMPTY_RESULT"


class InvalidFeatureError(SpatialError, ValueError):
    """Collection has no CRS or contains null / empty geometries."""

    code = "INVALID_FEATURE"
