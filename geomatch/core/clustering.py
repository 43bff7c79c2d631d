"""
Consensus cluster selection ahead of aggregation.

A shortlist of nearest neighbors often holds one tight geographic group plus
a few look-alikes from elsewhere. Each strong match seeds a group of the
shortlisted matches within ``radius_m`` of it. Far members of a group are
trimmed with an interquartile cut on their distance to the group center, and
the group with the best similarity-times-density score is aggregated.
"""

import math
from dataclasses import dataclass
from typing import List, Optional, Sequence

import numpy as np

from ..vector.similarity import haversine_meters
from ..vector.types import Match
from .aggregation import sanitize_matches, spherical_centroid


@dataclass(frozen=True)
class ClusterPolicy:
    """Knobs for consensus cluster selection."""

    enabled: bool = True
    radius_m: float = 30_000.0
    search_depth: int = 24
    seed_count: int = 10
    min_members: int = 3
    max_members: int = 6
    anchor_similarity: float = 0.99
    """A top match above this is an exact anchor and is used alone"""
    strong_seed_similarity: float = 0.95
    """Seeds above this may form groups smaller than ``min_members``"""
    fallback_radius_m: float = 10_000.0
    outlier_rejection: bool = True
    outlier_iqr_factor: float = 1.5


def _score(similarity: float) -> float:
    return min(max((similarity + 1.0) / 2.0, 0.0), 1.0)


def remove_outliers(matches: Sequence[Match], iqr_factor: float = 1.5) -> List[Match]:
    """Drop matches unusually far from the group's spherical center.

    Groups smaller than four are returned unchanged.
    """
    matches = list(matches)
    if len(matches) < 4:
        return matches

    weights = np.full(len(matches), 1.0 / len(matches))
    lat, lon, _ = spherical_centroid(matches, weights)
    distances = [haversine_meters(lat, lon, m.lat, m.lon) for m in matches]

    ordered = sorted(distances)
    q1 = ordered[int(math.floor(len(ordered) * 0.25))]
    q3 = ordered[int(math.floor(len(ordered) * 0.75))]
    upper_bound = q3 + iqr_factor * (q3 - q1)
    return [m for m, d in zip(matches, distances) if d <= upper_bound]


def pick_consensus_cluster(matches: Sequence[Match], policy: Optional[ClusterPolicy] = None) -> List[Match]:
    """Return the matches of the best geographic group, best similarity first.

    Disabled policies and empty input pass the (sanitized) matches through.
    """
    policy = policy or ClusterPolicy()
    matches = sanitize_matches(matches)
    if not matches or not policy.enabled:
        return matches

    shortlist = matches[:max(policy.search_depth, 1)]
    top = shortlist[0]
    if top.similarity > policy.anchor_similarity:
        return [top]

    best = [top]
    best_score = _score(top.similarity)
    for seed in shortlist[:policy.seed_count]:
        members = [
            m for m in shortlist
            if haversine_meters(seed.lat, seed.lon, m.lat, m.lon) <= policy.radius_m
        ]
        if policy.outlier_rejection and len(members) >= 4:
            members = remove_outliers(members, policy.outlier_iqr_factor)

        if len(members) < policy.min_members and seed.similarity <= policy.strong_seed_similarity:
            continue

        density = min(len(members) / max(policy.min_members, 1), 1.5)
        score = sum(_score(m.similarity) ** 2 for m in members) * density
        if score > best_score:
            best, best_score = members, score

    if len(best) < policy.min_members:
        best = [
            m for m in shortlist
            if haversine_meters(top.lat, top.lon, m.lat, m.lon) <= policy.fallback_radius_m
        ]

    return sorted(best, key=lambda m: (-m.similarity, m.id))[:policy.max_members]
