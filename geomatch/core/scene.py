"""
Scene inference from reference labels, used when no external scene classifier is wired in.
"""

import re
from typing import List, Optional

from ..vector.types import Match, SceneHint

LANDMARK_HINTS = re.compile(
    r"(tower|bridge|cathedral|temple|castle|palace|mosque|pyramids|colosseum|acropolis|opera|"
    r"statue|capitol|white house|forbidden city|stonehenge|museum|taj mahal|eiffel|sagrada)",
    re.IGNORECASE,
)
NATURE_HINTS = re.compile(
    r"(beach|coast|reef|mountain|point|crater|sound|glacier|falls|park|bay|alps|canyon|cliff|valley|island)",
    re.IGNORECASE,
)
URBAN_HINTS = re.compile(r"(city|downtown|skyline|district|street|avenue|square|plaza|market)", re.IGNORECASE)
RURAL_HINTS = re.compile(r"(village|countryside|rural|farm|field|country)", re.IGNORECASE)

SCENE_TYPES = ("landmark", "nature", "urban", "rural", "unknown")


def classify_scene_from_matches(matches: List[Match]) -> str:
    """Scene type from the labels of the top three matches."""
    if not matches:
        return "unknown"

    labels = " ".join(m.label for m in matches[:3])
    if LANDMARK_HINTS.search(labels):
        return "landmark"
    if NATURE_HINTS.search(labels):
        return "nature"
    if URBAN_HINTS.search(labels):
        return "urban"
    if RURAL_HINTS.search(labels):
        return "rural"
    return "unknown"


def scene_hint_for(scene_type: str) -> Optional[SceneHint]:
    """Map a scene type to the calibration hint; unknown scenes stay uncalibrated."""
    if scene_type == "landmark":
        return SceneHint.LANDMARK
    if scene_type in ("nature", "urban", "rural"):
        return SceneHint.GENERIC
    return None


def confidence_calibration_note(scene_type: str, hint: Optional[SceneHint]) -> str:
    if hint is SceneHint.LANDMARK:
        return "High precision expected for distinctive landmarks"
    if scene_type == "nature":
        return "Wider uncertainty typical for natural scenes"
    if scene_type == "urban":
        return "Moderate precision for urban areas"
    if scene_type == "rural":
        return "Regional-level accuracy for rural scenes"
    if hint is SceneHint.GENERIC:
        return "Wider dispersion band applied for generic scenes"
    return "Confidence varies by scene distinctiveness"
