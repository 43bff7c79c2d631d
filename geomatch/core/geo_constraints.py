"""
Continent-level constraints that keep a prediction from jumping between continents.
"""

from dataclasses import dataclass
from typing import Dict, List, Optional

from ..vector.types import Match


@dataclass(frozen=True)
class ContinentZone:
    name: str
    min_lat: float
    max_lat: float
    min_lon: float
    max_lon: float

    def contains(self, lat: float, lon: float) -> bool:
        return self.min_lat <= lat <= self.max_lat and self.min_lon <= lon <= self.max_lon


# Coarse bounding boxes, checked in order; overlaps resolve to the first hit.
CONTINENT_ZONES = (
    ContinentZone("Europe", 34, 71, -10, 60),
    ContinentZone("Asia", -10, 77, 40, 180),
    ContinentZone("North America", 15, 72, -170, -50),
    ContinentZone("South America", -56, 13, -120, -34),
    ContinentZone("Africa", -35, 37, -17, 52),
    ContinentZone("Oceania", -50, 0, 110, 180),
)

DOMINANT_CONTINENT_WINDOW = 25
TOP_MATCH_LOCK_SIMILARITY = 0.92
TOP_MATCH_LOCK_MARGIN = 0.15
AMBIGUITY_MARGIN = 0.05
MIN_FILTERED_MATCHES = 3


def detect_continent(lat: float, lon: float) -> Optional[str]:
    """Name of the first continent zone containing the point, or None."""
    for zone in CONTINENT_ZONES:
        if zone.contains(lat, lon):
            return zone.name
    return None


def _top_match_locked(matches: List[Match]) -> bool:
    top = matches[0]
    second = matches[1] if len(matches) > 1 else top
    return (top.similarity >= TOP_MATCH_LOCK_SIMILARITY
            or top.similarity - second.similarity >= TOP_MATCH_LOCK_MARGIN)


def _dedupe_evidence(matches: List[Match]) -> List[Match]:
    """Collapse near-duplicate anchors (same label within ~11 km) so dense clusters do not over-count."""
    evidence: Dict[tuple, Match] = {}
    for match in matches:
        continent = detect_continent(match.lat, match.lon)
        if continent is None:
            continue
        key = (continent, match.label, round(match.lat, 1), round(match.lon, 1))
        existing = evidence.get(key)
        if existing is None or match.similarity > existing.similarity:
            evidence[key] = match
    return sorted(evidence.values(), key=lambda m: (-m.similarity, m.id))


def dominant_continent(matches: List[Match]) -> Optional[str]:
    """Continent carrying the most rank- and similarity-weighted evidence.

    Returns None when there is no evidence or the top two continents are too
    close to call.
    """
    if not matches:
        return None

    if _top_match_locked(matches):
        locked = detect_continent(matches[0].lat, matches[0].lon)
        if locked:
            return locked

    scores: Dict[str, float] = {}
    for rank, match in enumerate(_dedupe_evidence(matches[:DOMINANT_CONTINENT_WINDOW])):
        continent = detect_continent(match.lat, match.lon)
        rank_weight = 1.0 / (1.0 + rank * 0.5)
        scores[continent] = scores.get(continent, 0.0) + max(match.similarity, 0.0) * rank_weight

    ranked = sorted(scores.items(), key=lambda item: -item[1])
    if not ranked:
        return None
    if len(ranked) > 1 and ranked[0][1] - ranked[1][1] < AMBIGUITY_MARGIN:
        return None
    return ranked[0][0]


def filter_to_dominant_continent(matches: List[Match]) -> List[Match]:
    """Drop matches outside the dominant continent.

    The input is returned unchanged when no continent dominates, when a
    confident top match sits elsewhere, or when filtering would leave fewer
    than three matches.
    """
    if not matches:
        return matches

    continent = dominant_continent(matches)
    if continent is None:
        return matches

    top_continent = detect_continent(matches[0].lat, matches[0].lon)
    if top_continent and top_continent != continent and _top_match_locked(matches):
        return matches

    filtered = [m for m in matches if detect_continent(m.lat, m.lon) == continent]
    if len(filtered) < MIN_FILTERED_MATCHES:
        return matches
    return filtered
