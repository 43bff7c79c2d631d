"""
Similarity and geometry primitives. Pure functions over numpy arrays.
"""

import math
from typing import Optional, Sequence, Tuple

import numpy as np

from ..core.errors import DimensionMismatchError, InvalidQueryError, NonFiniteVectorError

EARTH_RADIUS_METERS = 6_371_000.0


def as_vector(values, dimension: Optional[int] = None, what: str = "vector") -> np.ndarray:
    """Convert to a 1-D float64 array, rejecting wrong dimensions and NaN/Inf components.

    Args:
        values: Sequence or array of numbers
        dimension: Expected length, or None to accept any non-empty length
        what: Name used in error messages

    Returns:
        A 1-D float64 numpy array
    """
    try:
        array = np.asarray(values, dtype=np.float64)
    except (TypeError, ValueError) as e:
        raise InvalidQueryError(f"{what} is not numeric: {e}") from e

    if array.ndim != 1 or array.shape[0] == 0:
        raise InvalidQueryError(f"{what} must be a non-empty 1-D sequence")
    if dimension is not None and array.shape[0] != dimension:
        raise DimensionMismatchError(dimension, array.shape[0], what)
    if not np.all(np.isfinite(array)):
        raise NonFiniteVectorError(f"{what} contains NaN or infinite components")
    return array


def normalize(vector: np.ndarray) -> np.ndarray:
    """Scale to unit length. A zero vector stays zero."""
    norm = np.linalg.norm(vector)
    if norm == 0:
        return np.zeros_like(vector, dtype=np.float64)
    return vector / norm


def normalize_rows(matrix: np.ndarray) -> np.ndarray:
    """Row-wise unit normalization; zero rows stay zero."""
    norms = np.linalg.norm(matrix, axis=1, keepdims=True)
    safe = np.where(norms == 0, 1.0, norms)
    return np.where(norms == 0, 0.0, matrix / safe)


def cosine_similarity(a, b) -> float:
    """Cosine similarity of two equal-length vectors.

    Zero-magnitude input yields 0.0. Result is clamped to [-1, 1].
    """
    a = np.asarray(a, dtype=np.float64)
    b = np.asarray(b, dtype=np.float64)
    if a.shape != b.shape:
        raise DimensionMismatchError(a.shape[0], b.shape[0])

    norm_a = np.linalg.norm(a)
    norm_b = np.linalg.norm(b)
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return float(np.clip(np.dot(a, b) / (norm_a * norm_b), -1.0, 1.0))


def softmax(scores: Sequence[float], temperature: float = 1.0) -> np.ndarray:
    """Temperature-scaled softmax producing non-negative weights summing to 1.

    Falls back to uniform weights when every score is numerically equal or
    the exponentials underflow.
    """
    values = np.asarray(scores, dtype=np.float64)
    if values.size == 0:
        return np.zeros(0, dtype=np.float64)

    uniform = np.full(values.size, 1.0 / values.size)
    if np.ptp(values) <= 1e-12:
        return uniform

    scaled = values / max(temperature, 1e-6)
    exps = np.exp(scaled - scaled.max())
    total = exps.sum()
    if not np.isfinite(total) or total <= 0:
        return uniform
    return exps / total


def haversine_meters(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance in meters between two points given in degrees."""
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    d_phi = phi2 - phi1
    d_lambda = math.radians(lon2 - lon1)

    h = math.sin(d_phi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    h = min(1.0, max(0.0, h))
    return 2 * EARTH_RADIUS_METERS * math.atan2(math.sqrt(h), math.sqrt(1 - h))


def to_unit_vector(lat: float, lon: float) -> np.ndarray:
    """Latitude/longitude in degrees to a unit Cartesian vector (x, y, z)."""
    phi = math.radians(lat)
    lam = math.radians(lon)
    return np.array([
        math.cos(phi) * math.cos(lam),
        math.cos(phi) * math.sin(lam),
        math.sin(phi),
    ])


def from_unit_vector(xyz: np.ndarray) -> Tuple[float, float]:
    """Cartesian vector (any non-zero length) back to latitude/longitude in degrees."""
    x, y, z = (float(c) for c in xyz)
    hyp = math.hypot(x, y)
    lat = math.degrees(math.atan2(z, hyp))
    lon = math.degrees(math.atan2(y, x))
    return lat, lon
