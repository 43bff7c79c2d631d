"""
Reference records, query matches and the closed tag sets shared by the index and aggregator.
"""

from dataclasses import dataclass
from enum import Enum

import numpy as np


class EmbeddingSource(str, Enum):
    """Which extractor model produced a query vector."""

    PRIMARY = "primary"
    FALLBACK = "fallback"


class SearchMode(str, Enum):
    """Latency/recall profile requested by the caller."""

    FAST = "fast"
    ACCURATE = "accurate"


class SceneHint(str, Enum):
    """Coarse scene classification used for confidence calibration."""

    LANDMARK = "landmark"
    GENERIC = "generic"


class ConfidenceTier(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class LocationVisibility(str, Enum):
    VISIBLE = "visible"
    WITHHELD = "withheld"


class VisibilityReason(str, Enum):
    """Why a computed location was withheld from the caller."""

    NO_MATCHES = "no_matches"
    MODEL_FALLBACK_ACTIVE = "model_fallback_active"
    CANDIDATE_SPREAD_TOO_WIDE = "candidate_spread_too_wide"
    CONFIDENCE_BELOW_THRESHOLD = "confidence_below_actionable_threshold"


@dataclass(frozen=True)
class ReferenceVector:
    """Represents one geotagged catalog entry."""

    id: str
    """Stable identifier of the reference"""

    label: str
    """Human-readable place label"""

    lat: float
    """Latitude in degrees"""

    lon: float
    """Longitude in degrees"""

    vector: np.ndarray
    """Embedding of dimension D"""

    @property
    def dimension(self) -> int:
        return int(self.vector.shape[0])


@dataclass(frozen=True)
class Match:
    """Represents a search result against the reference catalog."""

    id: str
    """Identifier of the matched reference"""

    label: str
    """Label of the matched reference"""

    lat: float
    lon: float

    similarity: float
    """Cosine similarity to the query, in [-1, 1]"""
