import numpy as np
import pytest

from geomatch.vector.types import Match, ReferenceVector


def make_reference(ref_id, vector, lat=0.0, lon=0.0, label=None):
    vector = np.asarray(vector, dtype=np.float64)
    return ReferenceVector(id=ref_id, label=label or ref_id, lat=lat, lon=lon, vector=vector)


def make_match(match_id, similarity, lat, lon, label=None):
    return Match(id=match_id, label=label or match_id, lat=lat, lon=lon, similarity=similarity)


@pytest.fixture
def random_references():
    """Factory for n random references of dimension d with a fixed seed."""
    def _make(n, d, seed=0):
        rng = np.random.default_rng(seed)
        vectors = rng.normal(size=(n, d))
        return [make_reference(f"ref-{i:05d}", vectors[i], lat=0.0, lon=0.0) for i in range(n)]
    return _make


@pytest.fixture
def world_references():
    """Four references: two near Paris, one in Tokyo, one in Sydney (D=8)."""
    paris_a = np.array([1.0, 0.0, 0.0, 0.0, 0.0, 0.0, 0.0, 0.0])
    paris_b = np.array([0.9, 0.43, 0.0, 0.0, 0.0, 0.0, 0.0, 0.0])
    tokyo = np.array([0.0, 0.0, 0.0, 1.0, 0.0, 0.0, 0.0, 0.0])
    sydney = np.array([0.0, 0.0, 0.0, 0.0, 0.0, 1.0, 0.0, 0.0])
    return [
        make_reference("paris-a", paris_a, 48.8566, 2.3522, "Paris A"),
        make_reference("paris-b", paris_b, 48.8606, 2.3376, "Paris B"),
        make_reference("tokyo", tokyo, 35.6762, 139.6503, "Tokyo"),
        make_reference("sydney", sydney, -33.8688, 151.2093, "Sydney"),
    ]
