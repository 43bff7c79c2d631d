"""
Visibility gate and match-consensus analysis.
"""

import re
from dataclasses import asdict, dataclass
from typing import List, Optional, Tuple

from ..vector.similarity import haversine_meters
from ..vector.types import EmbeddingSource, LocationVisibility, Match, VisibilityReason

STRONG_CONSENSUS_RADIUS_M = 1_500
ACTIONABLE_COHERENCE_RADIUS_M = 25_000
MIN_CLUSTER_MATCHES = 3
MAX_MATCHES_TO_CHECK = 5

REASON_MESSAGES = {
    VisibilityReason.NO_MATCHES: "No reference matches were available to estimate a location.",
    VisibilityReason.MODEL_FALLBACK_ACTIVE:
        "Location withheld because the fallback embedding model cannot guarantee continent-level reliability.",
    VisibilityReason.CANDIDATE_SPREAD_TOO_WIDE:
        "Location withheld because the matched references are spread too widely.",
    VisibilityReason.CONFIDENCE_BELOW_THRESHOLD:
        "Location withheld because confidence is below the actionable threshold.",
}


@dataclass(frozen=True)
class MatchConsensus:
    same_spot_matches: int = 0
    nearby_matches: int = 0
    same_label_matches: int = 0
    strong_consensus: bool = False
    actionable_coherence: bool = False

    def to_dict(self):
        return asdict(self)


def _normalize_label(label: str) -> str:
    return re.sub(r"[^a-z0-9]+", " ", label.lower()).strip()


def analyze_match_consensus(matches: List[Match]) -> MatchConsensus:
    """Check whether the top matches agree on one local area."""
    if not matches:
        return MatchConsensus()

    top_matches = matches[:MAX_MATCHES_TO_CHECK]
    top = top_matches[0]
    top_label = _normalize_label(top.label)

    same_spot = nearby = same_label = 0
    for match in top_matches:
        distance = haversine_meters(top.lat, top.lon, match.lat, match.lon)
        if distance <= STRONG_CONSENSUS_RADIUS_M:
            same_spot += 1
        if distance <= ACTIONABLE_COHERENCE_RADIUS_M:
            nearby += 1
        if _normalize_label(match.label) == top_label:
            same_label += 1

    strong = same_spot >= MIN_CLUSTER_MATCHES or (
        same_label >= MIN_CLUSTER_MATCHES and nearby >= MIN_CLUSTER_MATCHES
    )
    return MatchConsensus(
        same_spot_matches=same_spot,
        nearby_matches=nearby,
        same_label_matches=same_label,
        strong_consensus=strong,
        actionable_coherence=strong or nearby >= MIN_CLUSTER_MATCHES,
    )


def decide_visibility(confidence: float, radius_m: float, minimum_confidence: float,
                      max_visible_radius_m: float,
                      embedding_source: EmbeddingSource = EmbeddingSource.PRIMARY
                      ) -> Tuple[LocationVisibility, Optional[VisibilityReason]]:
    """Decide whether a computed location may be shown.

    Reasons are checked in priority order: fallback embedding, excessive
    spread, low confidence.
    """
    if embedding_source is EmbeddingSource.FALLBACK:
        return LocationVisibility.WITHHELD, VisibilityReason.MODEL_FALLBACK_ACTIVE
    if radius_m > max_visible_radius_m:
        return LocationVisibility.WITHHELD, VisibilityReason.CANDIDATE_SPREAD_TOO_WIDE
    if confidence < minimum_confidence:
        return LocationVisibility.WITHHELD, VisibilityReason.CONFIDENCE_BELOW_THRESHOLD
    return LocationVisibility.VISIBLE, None


def reason_message(reason: Optional[VisibilityReason]) -> Optional[str]:
    return REASON_MESSAGES.get(reason) if reason is not None else None
