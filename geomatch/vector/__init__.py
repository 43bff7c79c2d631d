"""
Reference vector index: similarity primitives, HNSW graph and snapshot persistence.
"""

from .index import IVectorIndex, ExactIndex, EmptyIndex
from .hnsw import HNSWIndex, HNSWParams
from .snapshot import save_snapshot, load_snapshot
from .types import (
    ReferenceVector,
    Match,
    EmbeddingSource,
    SearchMode,
    SceneHint,
    ConfidenceTier,
    LocationVisibility,
    VisibilityReason,
)

__all__ = [
    'IVectorIndex',
    'ExactIndex',
    'EmptyIndex',
    'HNSWIndex',
    'HNSWParams',
    'save_snapshot',
    'load_snapshot',
    'ReferenceVector',
    'Match',
    'EmbeddingSource',
    'SearchMode',
    'SceneHint',
    'ConfidenceTier',
    'LocationVisibility',
    'VisibilityReason',
]
