"""
Hierarchical navigable small-world graph over reference embeddings.

Construction inserts references one at a time; each node draws a level from
an exponential distribution so upper layers are sparse express lanes and
layer 0 holds every node. Queries descend greedily through the upper layers
and run a bounded best-first search on layer 0.

A built index is immutable: neighbor lists are tuples and the vector matrix
is read-only, so any number of threads may search one instance concurrently.
"""

import heapq
import math
import random
import time
from dataclasses import dataclass
from typing import List, Optional, Sequence, Set, Tuple

import numpy as np

from ..core.errors import CatalogError, InvalidQueryError
from ..util.logging import logger
from .index import IVectorIndex, stack_references, to_matches
from .similarity import as_vector, normalize
from .types import Match, ReferenceVector

# Upper bound on drawn levels; keeps snapshot level fields small.
MAX_LEVEL_CAP = 32


@dataclass(frozen=True)
class HNSWParams:
    """Graph construction and default query parameters."""

    m: int = 16
    """Neighbors per node on levels > 0 (2 * m on level 0)"""

    ef_construction: int = 200
    """Candidate frontier size while inserting"""

    ef_search: int = 64
    """Default candidate frontier size for queries"""

    seed: Optional[int] = 100
    """Seed for level assignment; None draws from system entropy"""

    def __post_init__(self):
        if self.m < 2:
            raise InvalidQueryError(f"m must be >= 2, got {self.m}")
        if self.ef_construction < 1:
            raise InvalidQueryError(f"ef_construction must be >= 1, got {self.ef_construction}")

    @property
    def level_multiplier(self) -> float:
        return 1.0 / math.log(self.m)

    def max_degree(self, level: int) -> int:
        return 2 * self.m if level == 0 else self.m


def _search_layer(vectors: np.ndarray, links, query: np.ndarray, entry_points: Sequence[int],
                  ef: int, level: int) -> List[Tuple[float, int]]:
    """Best-first search of one layer.

    Returns up to ``ef`` (similarity, node) pairs sorted by similarity
    descending, ties broken by node position.
    """
    entry_points = list(dict.fromkeys(entry_points))
    visited = set(entry_points)
    entry_sims = (vectors[entry_points] @ query).tolist()

    candidates = [(-sim, node) for sim, node in zip(entry_sims, entry_points)]
    heapq.heapify(candidates)
    results = [(sim, node) for sim, node in zip(entry_sims, entry_points)]
    heapq.heapify(results)
    while len(results) > ef:
        heapq.heappop(results)

    while candidates:
        neg_sim, current = heapq.heappop(candidates)
        if len(results) >= ef and -neg_sim < results[0][0]:
            break

        fresh = [node for node in links[current][level] if node not in visited]
        if not fresh:
            continue
        visited.update(fresh)

        for sim, node in zip((vectors[fresh] @ query).tolist(), fresh):
            if len(results) < ef or sim > results[0][0]:
                heapq.heappush(candidates, (-sim, node))
                heapq.heappush(results, (sim, node))
                if len(results) > ef:
                    heapq.heappop(results)

    return sorted(results, key=lambda pair: (-pair[0], pair[1]))


def _reachable(links, start: int, seen: Optional[Set[int]] = None) -> Set[int]:
    """Nodes reachable from ``start`` along level-0 edges, the layer every search ends on."""
    seen = seen if seen is not None else set()
    seen.add(start)
    stack = [start]
    while stack:
        node = stack.pop()
        for neighbor in links[node][0]:
            if neighbor not in seen:
                seen.add(neighbor)
                stack.append(neighbor)
    return seen


class _GraphBuilder:
    """Mutable construction state. Never shared outside ``HNSWIndex.build``."""

    def __init__(self, vectors: np.ndarray, params: HNSWParams):
        self.vectors = vectors
        self.params = params
        self.rng = random.Random(params.seed)
        self.levels: List[int] = []
        self.links: List[List[List[int]]] = []
        self.in_degree: List[int] = []  # incoming level-0 edges per node
        self.entry_point: Optional[int] = None
        self.max_level = -1

    def random_level(self) -> int:
        level = int(-math.log(1.0 - self.rng.random()) * self.params.level_multiplier)
        return min(level, MAX_LEVEL_CAP)

    def select_neighbors(self, base: np.ndarray, candidates: List[Tuple[float, int]], count: int) -> List[int]:
        """Diversity heuristic over candidates sorted by similarity to ``base``.

        A candidate is kept only if it is closer to the base than to every
        neighbor already kept; remaining slots are filled with the discarded
        candidates in order.
        """
        selected: List[int] = []
        discarded: List[int] = []
        for sim, node in candidates:
            if len(selected) >= count:
                break
            if selected and np.any(self.vectors[selected] @ self.vectors[node] >= sim):
                discarded.append(node)
                continue
            selected.append(node)

        for node in discarded:
            if len(selected) >= count:
                break
            selected.append(node)
        return selected

    def insert(self, position: int):
        level = self.random_level()
        self.levels.append(level)
        self.links.append([[] for _ in range(level + 1)])
        self.in_degree.append(0)

        if self.entry_point is None:
            self.entry_point = position
            self.max_level = level
            return

        query = self.vectors[position]
        entry = [self.entry_point]
        for layer in range(self.max_level, level, -1):
            entry = [_search_layer(self.vectors, self.links, query, entry, 1, layer)[0][1]]

        for layer in range(min(level, self.max_level), -1, -1):
            candidates = _search_layer(self.vectors, self.links, query, entry,
                                       self.params.ef_construction, layer)
            neighbors = self.select_neighbors(query, candidates, self.params.m)
            self.links[position][layer] = list(neighbors)
            if layer == 0:
                for neighbor in neighbors:
                    self.in_degree[neighbor] += 1
            for neighbor in neighbors:
                self.add_link(neighbor, layer, position)
            entry = [node for _, node in candidates]

        if level > self.max_level:
            self.entry_point = position
            self.max_level = level

    def add_link(self, owner: int, layer: int, target: int):
        links = self.links[owner][layer]
        if target in links:
            return
        links.append(target)
        if layer == 0:
            self.in_degree[target] += 1
        if len(links) > self.params.max_degree(layer):
            self.shrink(owner, layer)

    def shrink(self, owner: int, layer: int):
        """Prune an over-full neighbor list back to the degree bound."""
        links = self.links[owner][layer]
        base = self.vectors[owner]
        sims = (self.vectors[links] @ base).tolist()
        candidates = sorted(zip(sims, links), key=lambda pair: (-pair[0], pair[1]))
        kept = self.select_neighbors(base, candidates, self.params.max_degree(layer))

        if layer == 0:
            # A node must not lose its last incoming level-0 edge; trade it for
            # the weakest kept neighbor that has another one.
            kept_set = set(kept)
            protected: Set[int] = set()
            for node in links:
                if node in kept_set or self.in_degree[node] > 1:
                    continue
                for slot in range(len(kept) - 1, -1, -1):
                    other = kept[slot]
                    if other not in protected and self.in_degree[other] > 1:
                        kept_set.discard(other)
                        kept[slot] = node
                        kept_set.add(node)
                        protected.add(node)
                        break

            for node in set(links) - set(kept):
                self.in_degree[node] -= 1

        self.links[owner][layer] = kept

    def repair_reachability(self) -> int:
        """Link every node unreachable from the entry point. Returns the number repaired."""
        if self.entry_point is None:
            return 0

        reachable = _reachable(self.links, self.entry_point)
        repaired = 0
        for node in range(len(self.levels)):
            if node in reachable:
                continue
            # Layer-0 search from the entry point only visits reachable nodes.
            anchor = _search_layer(self.vectors, self.links, self.vectors[node], [self.entry_point],
                                   self.params.ef_construction, 0)[0][1]
            self.links[anchor][0].append(node)
            self.in_degree[node] += 1
            _reachable(self.links, node, reachable)
            repaired += 1
        return repaired


class HNSWIndex(IVectorIndex):
    """Immutable HNSW snapshot over a fixed list of reference vectors.

    Use ``HNSWIndex.build`` or ``geomatch.vector.snapshot.load_snapshot`` to
    obtain one; the constructor takes an already-built graph.
    """

    def __init__(self, references: Sequence[ReferenceVector], matrix: np.ndarray,
                 levels: Sequence[int], links, entry_point: Optional[int], max_level: int,
                 params: HNSWParams, dimension: int):
        self._references = tuple(references)
        self._matrix = matrix
        self._levels = tuple(int(level) for level in levels)
        self._links = tuple(
            tuple(tuple(int(n) for n in level_links) for level_links in node_links)
            for node_links in links
        )
        self._entry_point = entry_point
        self._max_level = max_level
        self._params = params
        self._dimension = dimension
        if len(self._references) != len(self._levels) or len(self._levels) != len(self._links):
            raise CatalogError("index node count does not match reference count")

    @classmethod
    def build(cls, references: Sequence[ReferenceVector], params: Optional[HNSWParams] = None,
              dimension: Optional[int] = None) -> "HNSWIndex":
        """Build a graph over ``references``.

        Raises:
            DimensionMismatchError: any reference disagrees with ``dimension``
                (or with the first reference when ``dimension`` is None).
            NonFiniteVectorError: any reference holds NaN/Inf.
            CatalogError: duplicate reference ids.
        """
        params = params or HNSWParams()
        if dimension is None:
            if not references:
                raise InvalidQueryError("dimension is required to build an empty index")
            dimension = references[0].dimension

        seen_ids = set()
        for ref in references:
            if ref.id in seen_ids:
                raise CatalogError(f"duplicate reference id {ref.id!r}")
            seen_ids.add(ref.id)

        start = time.monotonic()
        try:
            matrix = stack_references(references, dimension)
        except Exception as e:
            logger.log_index_build(len(references), dimension, start, time.monotonic(), "failed",
                                   {"error": str(e)})
            raise

        builder = _GraphBuilder(matrix, params)
        for position in range(len(references)):
            builder.insert(position)
        repaired = builder.repair_reachability()

        index = cls(references, matrix, builder.levels, builder.links, builder.entry_point,
                    builder.max_level, params, dimension)
        logger.log_index_build(len(references), dimension, start, time.monotonic(), "success", {
            "m": params.m,
            "ef_construction": params.ef_construction,
            "max_level": builder.max_level,
            "repaired_links": repaired,
        })
        return index

    @property
    def dimension(self) -> int:
        return self._dimension

    @property
    def params(self) -> HNSWParams:
        return self._params

    @property
    def references(self) -> Sequence[ReferenceVector]:
        return self._references

    @property
    def entry_point(self) -> Optional[int]:
        return self._entry_point

    @property
    def max_level(self) -> int:
        return self._max_level

    @property
    def levels(self) -> Tuple[int, ...]:
        return self._levels

    def neighbors(self, node: int, level: int = 0) -> Tuple[int, ...]:
        return self._links[node][level]

    def node_links(self, node: int) -> Tuple[Tuple[int, ...], ...]:
        return self._links[node]

    def __len__(self) -> int:
        return len(self._references)

    def unreachable_count(self) -> int:
        """Number of nodes that cannot be reached from the entry point."""
        if self._entry_point is None:
            return 0
        return len(self._references) - len(_reachable(self._links, self._entry_point))

    def search(self, query_vector, k: int, ef: Optional[int] = None) -> List[Match]:
        """Approximate top-k search by cosine similarity.

        Args:
            query_vector: Vector of the index dimension; need not be normalized
            k: Maximum number of matches
            ef: Candidate frontier size (raised to k if smaller); defaults to
                ``params.ef_search``

        Returns:
            Distinct matches sorted by non-increasing similarity
        """
        if k <= 0:
            raise InvalidQueryError(f"k must be positive, got {k}")
        query = normalize(as_vector(query_vector, self._dimension, what="query"))
        if self._entry_point is None:
            return []

        ef = max(ef if ef is not None else self._params.ef_search, k)
        entry = [self._entry_point]
        for level in range(self._max_level, 0, -1):
            entry = [_search_layer(self._matrix, self._links, query, entry, 1, level)[0][1]]

        scored = _search_layer(self._matrix, self._links, query, entry, ef, 0)
        return to_matches(self._references, scored[:k])
