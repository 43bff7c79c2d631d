"""
Typed errors for the matching engine.
Callers branch on ``GeoMatchError.kind`` rather than on message text.
"""

from enum import Enum


class ErrorKind(str, Enum):
    INPUT = "input"
    INTEGRITY = "integrity"
    UNAVAILABLE = "unavailable"


class GeoMatchError(Exception):
    """Base exception for matching engine failures."""

    kind: ErrorKind = ErrorKind.INTEGRITY


class DimensionMismatchError(GeoMatchError):
    """Vector length disagrees with the configured dimension."""

    kind = ErrorKind.INPUT

    def __init__(self, expected: int, actual: int, what: str = "vector"):
        self.expected = expected
        self.actual = actual
        super().__init__(f"{what} dimension {actual} does not match expected dimension {expected}")


class InvalidQueryError(GeoMatchError):
    """Query arguments are unusable (empty vector, non-positive k)."""

    kind = ErrorKind.INPUT


class NonFiniteVectorError(GeoMatchError):
    """Vector contains NaN or infinite components."""

    kind = ErrorKind.INTEGRITY


class SnapshotError(GeoMatchError):
    """Persisted index snapshot is corrupt or stale; a full rebuild is required."""

    kind = ErrorKind.INTEGRITY
    rebuild_required = True


class CatalogError(GeoMatchError):
    """Reference catalog could not be read or holds no usable records."""

    kind = ErrorKind.INTEGRITY


class IndexUnavailableError(GeoMatchError):
    """No usable index is being served."""

    kind = ErrorKind.UNAVAILABLE
