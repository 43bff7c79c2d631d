"""
Synthetic reference catalogs for benchmarks and tests.

References are clustered: each city gets a random prototype embedding and its
references are noisy copies of it, jittered a few kilometers around the city.
"""

import math
from typing import List, Optional, Sequence, Tuple

import numpy as np

from ..vector.types import ReferenceVector

WORLD_CITIES: Tuple[Tuple[str, float, float], ...] = (
    ("Paris", 48.8566, 2.3522),
    ("London", 51.5074, -0.1278),
    ("New York", 40.7128, -74.0060),
    ("Tokyo", 35.6762, 139.6503),
    ("Sydney", -33.8688, 151.2093),
    ("Rio de Janeiro", -22.9068, -43.1729),
    ("Cairo", 30.0444, 31.2357),
    ("Mumbai", 19.0760, 72.8777),
    ("Cape Town", -33.9249, 18.4241),
    ("Mexico City", 19.4326, -99.1332),
    ("Moscow", 55.7558, 37.6173),
    ("Singapore", 1.3521, 103.8198),
    ("Buenos Aires", -34.6037, -58.3816),
    ("Reykjavik", 64.1466, -21.9426),
    ("Honolulu", 21.3069, -157.8583),
    ("Suva", -18.1248, 178.4501),
)


def city_prototypes(dimension: int, seed: int = 0,
                    cities: Sequence[Tuple[str, float, float]] = WORLD_CITIES) -> np.ndarray:
    """One unit-length prototype embedding per city, reproducible from ``seed``."""
    rng = np.random.default_rng(seed)
    prototypes = rng.normal(size=(len(cities), dimension))
    return prototypes / np.linalg.norm(prototypes, axis=1, keepdims=True)


def _jitter(rng: np.random.Generator, lat: float, lon: float, spread_km: float) -> Tuple[float, float]:
    d_lat = rng.normal(scale=spread_km / 111.0)
    d_lon = rng.normal(scale=spread_km / (111.0 * max(math.cos(math.radians(lat)), 0.01)))
    new_lat = min(max(lat + d_lat, -90.0), 90.0)
    new_lon = (lon + d_lon + 180.0) % 360.0 - 180.0
    return float(new_lat), float(new_lon)


def generate_synthetic_catalog(count: int, dimension: int, seed: int = 0, noise: float = 0.35,
                               spread_km: float = 5.0,
                               cities: Optional[Sequence[Tuple[str, float, float]]] = None
                               ) -> List[ReferenceVector]:
    """Generate ``count`` clustered references of the given dimension.

    Args:
        count: Number of references
        dimension: Embedding dimension
        seed: RNG seed; equal seeds give identical catalogs
        noise: Standard deviation of per-component noise relative to a unit prototype
        spread_km: Geographic jitter around each city
        cities: (name, lat, lon) triples; defaults to WORLD_CITIES
    """
    cities = tuple(cities or WORLD_CITIES)
    prototypes = city_prototypes(dimension, seed, cities)
    rng = np.random.default_rng(seed + 1)

    references = []
    for i in range(count):
        city_index = i % len(cities)
        name, lat, lon = cities[city_index]
        vector = prototypes[city_index] + rng.normal(scale=noise / math.sqrt(dimension), size=dimension)
        vector.setflags(write=False)
        ref_lat, ref_lon = _jitter(rng, lat, lon, spread_km)
        references.append(ReferenceVector(
            id=f"syn-{i:06d}",
            label=f"{name} #{i // len(cities)}",
            lat=ref_lat,
            lon=ref_lon,
            vector=vector,
        ))
    return references


def random_queries(count: int, dimension: int, seed: int = 0) -> np.ndarray:
    """Uniformly random query directions, shape (count, dimension)."""
    rng = np.random.default_rng(seed)
    return rng.normal(size=(count, dimension))
