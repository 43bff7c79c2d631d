"""
Read-only index interface over reference vectors, plus the exact (brute-force) implementation.
"""

from abc import ABC, abstractmethod
from typing import List, Optional, Sequence

import numpy as np

from ..core.errors import InvalidQueryError
from .similarity import as_vector, normalize, normalize_rows
from .types import Match, ReferenceVector


class IVectorIndex(ABC):
    """Abstract interface for querying an immutable set of reference vectors."""

    @property
    @abstractmethod
    def dimension(self) -> Optional[int]:
        """Vector dimension, or None for an index that was never given one."""
        pass

    @abstractmethod
    def search(self, query_vector, k: int, ef: Optional[int] = None) -> List[Match]:
        """Return at most k matches sorted by non-increasing similarity."""
        pass

    @abstractmethod
    def __len__(self) -> int:
        pass

    @property
    def references(self) -> Sequence[ReferenceVector]:
        return ()


def stack_references(references: Sequence[ReferenceVector], dimension: int) -> np.ndarray:
    """Unit-normalized, read-only (N, D) matrix of reference vectors."""
    if not references:
        matrix = np.zeros((0, dimension), dtype=np.float64)
    else:
        matrix = normalize_rows(np.vstack([
            as_vector(ref.vector, dimension, what=f"reference {ref.id}") for ref in references
        ]))
    matrix.setflags(write=False)
    return matrix


def to_matches(references: Sequence[ReferenceVector], scored) -> List[Match]:
    """Turn (similarity, position) pairs into Match objects ordered by similarity then id."""
    matches = []
    for similarity, position in scored:
        ref = references[position]
        matches.append(Match(
            id=ref.id,
            label=ref.label,
            lat=ref.lat,
            lon=ref.lon,
            similarity=float(np.clip(similarity, -1.0, 1.0)),
        ))
    matches.sort(key=lambda m: (-m.similarity, m.id))
    return matches


class ExactIndex(IVectorIndex):
    """Brute-force cosine ranking over every reference.

    Used as the recall baseline and as the degraded-mode fallback when no
    graph index can be served.
    """

    def __init__(self, references: Sequence[ReferenceVector], dimension: Optional[int] = None):
        if dimension is None:
            if not references:
                raise InvalidQueryError("dimension is required for an empty index")
            dimension = references[0].dimension
        self._dimension = dimension
        self._references = tuple(references)
        self._matrix = stack_references(self._references, dimension)

    @property
    def dimension(self) -> int:
        return self._dimension

    @property
    def references(self) -> Sequence[ReferenceVector]:
        return self._references

    def __len__(self) -> int:
        return len(self._references)

    def search(self, query_vector, k: int, ef: Optional[int] = None) -> List[Match]:
        """Search for similar vectors and return ranked results. ``ef`` is ignored."""
        if k <= 0:
            raise InvalidQueryError(f"k must be positive, got {k}")
        query = normalize(as_vector(query_vector, self._dimension, what="query"))
        if not self._references:
            return []

        similarities = self._matrix @ query
        count = min(k, len(self._references))
        top = np.argpartition(-similarities, count - 1)[:count]
        return to_matches(self._references, ((similarities[i], int(i)) for i in top))[:k]


class EmptyIndex(IVectorIndex):
    """Placeholder served before warmup or after invalidation."""

    def __init__(self, dimension: Optional[int] = None):
        self._dimension = dimension

    @property
    def dimension(self) -> Optional[int]:
        return self._dimension

    def __len__(self) -> int:
        return 0

    def search(self, query_vector, k: int, ef: Optional[int] = None) -> List[Match]:
        if k <= 0:
            raise InvalidQueryError(f"k must be positive, got {k}")
        as_vector(query_vector, self._dimension, what="query")
        return []
