from conftest import make_match
from geomatch.core.confidence_gate import analyze_match_consensus, decide_visibility, reason_message
from geomatch.vector.types import EmbeddingSource, LocationVisibility, VisibilityReason


def test_strong_consensus_same_spot():
    matches = [
        make_match("a", 0.9, 48.8584, 2.2945, "Eiffel Tower"),
        make_match("b", 0.88, 48.8590, 2.2950, "Champ de Mars"),
        make_match("c", 0.85, 48.8575, 2.2940, "Trocadero view"),
        make_match("d", 0.5, 35.6762, 139.6503, "Tokyo"),
    ]
    consensus = analyze_match_consensus(matches)

    assert consensus.same_spot_matches == 3
    assert consensus.nearby_matches == 3
    assert consensus.strong_consensus is True
    assert consensus.actionable_coherence is True


def test_same_label_nearby_is_strong():
    matches = [
        make_match("a", 0.9, 48.85, 2.35, "Notre-Dame de Paris"),
        make_match("b", 0.85, 48.90, 2.40, "notre dame de paris"),
        make_match("c", 0.8, 48.80, 2.30, "Notre Dame  de Paris!"),
    ]
    consensus = analyze_match_consensus(matches)

    assert consensus.same_spot_matches == 1
    assert consensus.same_label_matches == 3
    assert consensus.strong_consensus is True


def test_scattered_matches_have_no_consensus():
    matches = [
        make_match("a", 0.6, 48.85, 2.35),
        make_match("b", 0.6, 35.68, 139.65),
        make_match("c", 0.6, -33.87, 151.21),
    ]
    consensus = analyze_match_consensus(matches)

    assert consensus.nearby_matches == 1
    assert consensus.strong_consensus is False
    assert consensus.actionable_coherence is False


def test_only_top_five_checked():
    matches = [make_match(f"m{i}", 0.9 - i * 0.01, 10.0, 10.0) for i in range(8)]
    assert analyze_match_consensus(matches).same_spot_matches == 5


def test_empty_consensus():
    consensus = analyze_match_consensus([])
    assert consensus.to_dict() == {
        "same_spot_matches": 0,
        "nearby_matches": 0,
        "same_label_matches": 0,
        "strong_consensus": False,
        "actionable_coherence": False,
    }


def test_visibility_priority():
    assert decide_visibility(0.9, 1_000, 0.5, 300_000, EmbeddingSource.FALLBACK) == \
        (LocationVisibility.WITHHELD, VisibilityReason.MODEL_FALLBACK_ACTIVE)
    assert decide_visibility(0.1, 500_000, 0.5, 300_000) == \
        (LocationVisibility.WITHHELD, VisibilityReason.CANDIDATE_SPREAD_TOO_WIDE)
    assert decide_visibility(0.1, 1_000, 0.5, 300_000) == \
        (LocationVisibility.WITHHELD, VisibilityReason.CONFIDENCE_BELOW_THRESHOLD)
    assert decide_visibility(0.5, 300_000, 0.5, 300_000) == (LocationVisibility.VISIBLE, None)


def test_reason_messages():
    assert reason_message(None) is None
    for reason in VisibilityReason:
        assert reason_message(reason)
