"""
Match aggregation: ranked approximate matches to one calibrated location estimate.
"""

import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

import numpy as np

from ..vector.similarity import from_unit_vector, haversine_meters, softmax, to_unit_vector
from ..vector.types import (
    ConfidenceTier,
    EmbeddingSource,
    LocationVisibility,
    Match,
    SceneHint,
    VisibilityReason,
)
from .confidence_gate import decide_visibility, reason_message

# Weighted sums below this norm carry no usable direction (antipodal matches).
_DEGENERATE_NORM = 1e-9


@dataclass(frozen=True)
class AggregationPolicy:
    """Tunable aggregation knobs. Defaults mirror the GEOMATCH_* config defaults."""

    softmax_temperature: float = 0.05
    similarity_weight: float = 0.6
    dispersion_band_m: float = 50_000.0
    landmark_band_factor: float = 0.5
    generic_band_factor: float = 2.0
    generic_confidence_factor: float = 0.85
    tier_high: float = 0.75
    tier_medium: float = 0.5
    minimum_confidence: float = 0.5
    min_radius_m: float = 100.0
    max_visible_radius_m: float = 300_000.0
    fallback_penalty: float = 0.55

    def band_for(self, scene_hint: Optional[SceneHint]) -> float:
        if scene_hint is SceneHint.LANDMARK:
            return self.dispersion_band_m * self.landmark_band_factor
        if scene_hint is SceneHint.GENERIC:
            return self.dispersion_band_m * self.generic_band_factor
        return self.dispersion_band_m


@dataclass
class PredictionResult:
    """Aggregated estimate.

    ``lat``/``lon`` hold the computed location even when the visibility gate
    withholds it; callers decide what to show based on ``visibility``.
    """

    lat: Optional[float]
    lon: Optional[float]
    radius_m: float
    confidence: float
    tier: ConfidenceTier
    visibility: LocationVisibility
    reason: Optional[str] = None
    reason_code: Optional[VisibilityReason] = None
    diagnostics: Dict[str, Any] = field(default_factory=dict)

    @property
    def visible(self) -> bool:
        return self.visibility is LocationVisibility.VISIBLE


def confidence_tier(confidence: float, policy: AggregationPolicy) -> ConfidenceTier:
    if confidence >= policy.tier_high:
        return ConfidenceTier.HIGH
    if confidence >= policy.tier_medium:
        return ConfidenceTier.MEDIUM
    return ConfidenceTier.LOW


def sanitize_matches(matches: Sequence[Match]) -> List[Match]:
    """Drop non-finite matches, keep the best similarity per id, sort by (-similarity, id)."""
    best: Dict[str, Match] = {}
    for match in matches:
        if not (math.isfinite(match.similarity) and math.isfinite(match.lat) and math.isfinite(match.lon)):
            continue
        existing = best.get(match.id)
        if existing is None or match.similarity > existing.similarity:
            best[match.id] = match
    return sorted(best.values(), key=lambda m: (-m.similarity, m.id))


def spherical_centroid(matches: Sequence[Match], weights: np.ndarray):
    """Weighted centroid on the unit sphere. Returns (lat, lon, degenerate)."""
    points = np.array([to_unit_vector(m.lat, m.lon) for m in matches])
    total = weights @ points
    norm = float(np.linalg.norm(total))
    if norm < _DEGENERATE_NORM:
        return matches[0].lat, matches[0].lon, True
    lat, lon = from_unit_vector(total / norm)
    return lat, lon, False


def weighted_dispersion(matches: Sequence[Match], weights: np.ndarray, lat: float, lon: float) -> float:
    """Weighted RMS great-circle distance from (lat, lon), in meters."""
    distances = np.array([haversine_meters(lat, lon, m.lat, m.lon) for m in matches])
    return float(math.sqrt(float(weights @ (distances ** 2))))


def _empty_result(policy: AggregationPolicy, dropped: int) -> PredictionResult:
    return PredictionResult(
        lat=None,
        lon=None,
        radius_m=policy.min_radius_m,
        confidence=0.0,
        tier=ConfidenceTier.LOW,
        visibility=LocationVisibility.WITHHELD,
        reason=reason_message(VisibilityReason.NO_MATCHES),
        reason_code=VisibilityReason.NO_MATCHES,
        diagnostics={
            "match_count": 0,
            "dropped_matches": dropped,
            "mean_similarity": 0.0,
            "dispersion_m": 0.0,
        },
    )


def aggregate(matches: Sequence[Match], scene_hint: Optional[SceneHint] = None,
              embedding_source: EmbeddingSource = EmbeddingSource.PRIMARY,
              policy: Optional[AggregationPolicy] = None) -> PredictionResult:
    """Turn ranked matches into a location, uncertainty radius, confidence tier and visibility.

    Args:
        matches: Matches from an index search, any order
        scene_hint: Optional scene classification used to calibrate the dispersion band
        embedding_source: Provenance of the query embedding
        policy: Aggregation knobs; defaults when omitted

    Returns:
        PredictionResult. An empty (or fully sanitized-away) input yields a
        withheld low-confidence result rather than an error.
    """
    policy = policy or AggregationPolicy()
    embedding_source = EmbeddingSource(embedding_source)
    scene_hint = SceneHint(scene_hint) if scene_hint is not None else None

    clean = sanitize_matches(matches)
    dropped = len(matches) - len(clean)
    if not clean:
        return _empty_result(policy, dropped)

    similarities = np.array([m.similarity for m in clean])
    weights = softmax(similarities, policy.softmax_temperature)

    lat, lon, degenerate = spherical_centroid(clean, weights)
    dispersion = weighted_dispersion(clean, weights, lat, lon)
    radius = max(dispersion, policy.min_radius_m)

    mean_similarity = float(weights @ similarities)
    band = policy.band_for(scene_hint)
    confidence = (
        policy.similarity_weight * min(max(mean_similarity, 0.0), 1.0)
        + (1.0 - policy.similarity_weight) / (1.0 + dispersion / band)
    )
    if scene_hint is SceneHint.GENERIC:
        confidence *= policy.generic_confidence_factor
    if embedding_source is EmbeddingSource.FALLBACK:
        confidence *= policy.fallback_penalty
    confidence = min(max(confidence, 0.0), 1.0)

    tier = confidence_tier(confidence, policy)
    visibility, reason_code = decide_visibility(
        confidence, radius, policy.minimum_confidence, policy.max_visible_radius_m, embedding_source
    )

    return PredictionResult(
        lat=lat,
        lon=lon,
        radius_m=radius,
        confidence=confidence,
        tier=tier,
        visibility=visibility,
        reason=reason_message(reason_code),
        reason_code=reason_code,
        diagnostics={
            "match_count": len(clean),
            "dropped_matches": dropped,
            "mean_similarity": mean_similarity,
            "dispersion_m": dispersion,
            "dispersion_band_m": band,
            "degenerate_centroid": degenerate,
            "scene_hint": scene_hint.value if scene_hint else None,
            "embedding_source": embedding_source.value,
        },
    )
