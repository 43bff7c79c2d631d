import math

import pytest

from conftest import make_match
from geomatch.core.aggregation import (
    AggregationPolicy,
    aggregate,
    confidence_tier,
    sanitize_matches,
)
from geomatch.vector.similarity import haversine_meters
from geomatch.vector.types import (
    ConfidenceTier,
    EmbeddingSource,
    LocationVisibility,
    SceneHint,
    VisibilityReason,
)


def paris_cluster(similarity=0.95):
    return [
        make_match("p1", similarity, 48.8566, 2.3522),
        make_match("p2", similarity, 48.8584, 2.2945),
        make_match("p3", similarity, 48.8530, 2.3499),
    ]


def test_antimeridian_centroid():
    """Equal-weight points at 179, -179 and 180 average near 180, not 0."""
    matches = [
        make_match("a", 0.8, 0.0, 179.0),
        make_match("b", 0.8, 0.0, -179.0),
        make_match("c", 0.8, 0.0, 180.0),
    ]
    result = aggregate(matches)

    assert abs(result.lat) < 1e-6
    assert abs(abs(result.lon) - 180.0) < 1e-6
    # RMS of 0, 1 and 1 degrees of longitude at the equator
    expected = math.sqrt(2 / 3) * haversine_meters(0.0, 0.0, 0.0, 1.0)
    assert result.diagnostics["dispersion_m"] == pytest.approx(expected, rel=1e-6)


def test_centroid_near_pole():
    matches = [make_match(f"m{i}", 0.9, 89.0, lon) for i, lon in enumerate((0.0, 90.0, 180.0, -90.0))]
    result = aggregate(matches)
    assert result.lat == pytest.approx(90.0, abs=1e-6)


def test_tight_cluster_is_high_and_visible():
    result = aggregate(paris_cluster())

    assert result.tier is ConfidenceTier.HIGH
    assert result.visibility is LocationVisibility.VISIBLE
    assert result.reason is None and result.reason_code is None
    assert haversine_meters(result.lat, result.lon, 48.8566, 2.3522) < 10_000


def test_confidence_formula():
    """Confidence combines mean similarity and dispersion as documented."""
    policy = AggregationPolicy()
    result = aggregate(paris_cluster(0.9), policy=policy)

    dispersion = result.diagnostics["dispersion_m"]
    expected = 0.6 * 0.9 + 0.4 / (1 + dispersion / 50_000)
    assert result.confidence == pytest.approx(expected)
    assert result.diagnostics["mean_similarity"] == pytest.approx(0.9)


def test_tier_thresholds_are_deterministic():
    policy = AggregationPolicy()
    assert confidence_tier(0.75, policy) is ConfidenceTier.HIGH
    assert confidence_tier(0.7499, policy) is ConfidenceTier.MEDIUM
    assert confidence_tier(0.5, policy) is ConfidenceTier.MEDIUM
    assert confidence_tier(0.4999, policy) is ConfidenceTier.LOW


def test_fixed_match_sets_map_to_documented_tiers():
    # Single match: dispersion 0, confidence = 0.6 * sim + 0.4
    assert aggregate([make_match("a", 0.9, 10.0, 10.0)]).tier is ConfidenceTier.HIGH       # 0.94
    assert aggregate([make_match("a", 0.3, 10.0, 10.0)]).tier is ConfidenceTier.MEDIUM     # 0.58
    assert aggregate([make_match("a", 0.05, 10.0, 10.0)]).tier is ConfidenceTier.LOW       # 0.43


def test_low_similarity_is_withheld():
    result = aggregate([make_match("a", 0.05, 10.0, 10.0)])
    assert result.visibility is LocationVisibility.WITHHELD
    assert result.reason_code is VisibilityReason.CONFIDENCE_BELOW_THRESHOLD
    assert result.reason
    # Computed location stays on the result for diagnostics
    assert result.lat == pytest.approx(10.0)


def test_fallback_embedding_always_withheld():
    result = aggregate(paris_cluster(0.99), embedding_source=EmbeddingSource.FALLBACK)

    assert result.visibility is LocationVisibility.WITHHELD
    assert result.reason_code is VisibilityReason.MODEL_FALLBACK_ACTIVE
    unpenalized = aggregate(paris_cluster(0.99))
    assert result.confidence == pytest.approx(unpenalized.confidence * 0.55)


def test_wide_spread_withheld():
    matches = [
        make_match("paris", 0.8, 48.8566, 2.3522),
        make_match("tokyo", 0.8, 35.6762, 139.6503),
    ]
    result = aggregate(matches)
    assert result.radius_m > 300_000
    assert result.reason_code is VisibilityReason.CANDIDATE_SPREAD_TOO_WIDE


def test_withholding_priority_order():
    matches = [
        make_match("paris", 0.1, 48.8566, 2.3522),
        make_match("tokyo", 0.1, 35.6762, 139.6503),
    ]
    assert aggregate(matches).reason_code is VisibilityReason.CANDIDATE_SPREAD_TOO_WIDE
    assert aggregate(matches, embedding_source="fallback").reason_code is VisibilityReason.MODEL_FALLBACK_ACTIVE


def test_empty_matches():
    result = aggregate([])
    assert result.confidence == 0.0
    assert result.tier is ConfidenceTier.LOW
    assert result.visibility is LocationVisibility.WITHHELD
    assert result.reason_code is VisibilityReason.NO_MATCHES
    assert result.lat is None and result.lon is None


def test_non_finite_matches_are_dropped():
    matches = [make_match("bad", float("nan"), 0.0, 0.0), make_match("worse", 0.9, float("inf"), 0.0)]
    result = aggregate(matches)
    assert result.reason_code is VisibilityReason.NO_MATCHES
    assert result.diagnostics["dropped_matches"] == 2


def test_duplicate_ids_keep_best_similarity():
    matches = [
        make_match("a", 0.5, 10.0, 10.0),
        make_match("a", 0.9, 10.0, 10.0),
        make_match("b", 0.7, 10.0, 10.1),
    ]
    clean = sanitize_matches(matches)
    assert [(m.id, m.similarity) for m in clean] == [("a", 0.9), ("b", 0.7)]


def test_radius_floor():
    result = aggregate([make_match("a", 0.9, 10.0, 10.0)])
    assert result.diagnostics["dispersion_m"] < 1e-3
    assert result.radius_m == 100.0


def test_scene_hint_changes_band():
    matches = [
        make_match("a", 0.8, 48.85, 2.35),
        make_match("b", 0.8, 48.95, 2.55),
    ]
    neutral = aggregate(matches)
    landmark = aggregate(matches, scene_hint=SceneHint.LANDMARK)
    generic = aggregate(matches, scene_hint=SceneHint.GENERIC)

    assert landmark.diagnostics["dispersion_band_m"] == 25_000
    assert generic.diagnostics["dispersion_band_m"] == 100_000
    assert landmark.confidence < neutral.confidence
    dispersion = neutral.diagnostics["dispersion_m"]
    assert generic.confidence == pytest.approx((0.6 * 0.8 + 0.4 / (1 + dispersion / 100_000)) * 0.85)


def test_negative_similarity_clamped():
    result = aggregate([make_match("a", -0.5, 10.0, 10.0)])
    assert result.confidence == pytest.approx(0.4)


def test_policy_override():
    policy = AggregationPolicy(tier_high=0.99, minimum_confidence=0.97)
    result = aggregate(paris_cluster(0.95), policy=policy)
    assert result.tier is ConfidenceTier.MEDIUM
    assert result.reason_code is VisibilityReason.CONFIDENCE_BELOW_THRESHOLD
