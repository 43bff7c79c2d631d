"""
Predict pipeline: query vector to a packaged location response.
"""

import time
import uuid
from typing import Optional

from ..api.schemas import (
    MatchConsensusReport,
    PredictDiagnostics,
    PredictLocation,
    PredictResponse,
    SceneContext,
    TopMatch,
)
from ..util.logging import logger
from ..vector.similarity import as_vector
from ..vector.types import EmbeddingSource, SceneHint, SearchMode
from . import config
from .aggregation import AggregationPolicy, aggregate
from .clustering import ClusterPolicy, pick_consensus_cluster
from .confidence_gate import analyze_match_consensus
from .geo_constraints import detect_continent, filter_to_dominant_continent
from .index_service import IndexHandle
from .scene import classify_scene_from_matches, confidence_calibration_note, scene_hint_for

MAX_TOP_MATCHES = 8

REGIONAL_RADIUS_M = 150_000


def _notes(result, handle_degraded: bool, embedding_source: EmbeddingSource) -> str:
    notes = []
    if embedding_source is EmbeddingSource.FALLBACK:
        notes.append("Fallback embedding model active; location withheld.")
    if handle_degraded:
        notes.append("Reference index degraded; results come from a fallback search path.")
    if result.reason and embedding_source is not EmbeddingSource.FALLBACK:
        notes.append(result.reason)
    if result.visible and result.radius_m > REGIONAL_RADIUS_M:
        notes.append("Wide uncertainty radius; treat the estimate as regional.")
    if not notes:
        notes.append("Nearest-neighbor match against the reference catalog.")
    return " ".join(notes)


def predict(handle: IndexHandle, query_vector, mode: SearchMode = SearchMode.ACCURATE,
            embedding_source: EmbeddingSource = EmbeddingSource.PRIMARY,
            scene_hint: Optional[SceneHint] = None,
            policy: Optional[AggregationPolicy] = None,
            cluster_policy: Optional[ClusterPolicy] = None) -> PredictResponse:
    """Search the served index and aggregate the matches into a response.

    Raises:
        DimensionMismatchError, InvalidQueryError, NonFiniteVectorError: bad query vector
        IndexUnavailableError: the handle is degraded with nothing to search
    """
    start = time.perf_counter()
    request_id = str(uuid.uuid4())
    mode = SearchMode(mode)
    embedding_source = EmbeddingSource(embedding_source)
    policy = policy or config.get_aggregation_policy()
    cluster_policy = cluster_policy or config.get_cluster_policy()

    # one served state for validation, search and diagnostics
    state = handle.served()
    query = as_vector(query_vector, state.index.dimension, what="query")

    top_k, ef = config.get_search_params(mode)
    matches = handle.search(query, top_k, ef, state=state)
    filtered = filter_to_dominant_continent(matches)
    cluster = pick_consensus_cluster(filtered, cluster_policy)

    if scene_hint is not None:
        scene_hint = SceneHint(scene_hint)
        scene_type = scene_hint.value
        hint_source = "external"
    else:
        scene_type = classify_scene_from_matches(filtered)
        scene_hint = scene_hint_for(scene_type)
        hint_source = "inferred"

    result = aggregate(cluster, scene_hint, embedding_source, policy)
    consensus = analyze_match_consensus(filtered)

    computed = None
    if result.lat is not None:
        computed = PredictLocation(lat=result.lat, lon=result.lon, radius_m=round(result.radius_m, 1))

    status = handle.status(state)
    response = PredictResponse(
        request_id=request_id,
        status="ok" if result.visible else "low_confidence",
        mode=mode,
        location=computed if result.visible else None,
        confidence=round(result.confidence, 4),
        confidence_tier=result.tier,
        visibility=result.visibility,
        reason=result.reason,
        reason_code=result.reason_code,
        scene_context=SceneContext(
            scene_type=scene_type,
            scene_hint=scene_hint,
            hint_source=hint_source,
            confidence_calibration=confidence_calibration_note(scene_type, scene_hint),
        ),
        top_matches=[
            TopMatch(id=m.id, label=m.label, lat=m.lat, lon=m.lon, similarity=round(m.similarity, 4))
            for m in filtered[:MAX_TOP_MATCHES]
        ],
        diagnostics=PredictDiagnostics(
            embedding_source=embedding_source,
            index_source=status["source"],
            degraded=status["degraded"],
            degraded_reason=status["degraded_reason"],
            computed_location=computed,
            mean_similarity=round(result.diagnostics.get("mean_similarity", 0.0), 4),
            dispersion_m=round(result.diagnostics.get("dispersion_m", 0.0), 1),
            match_count=len(filtered),
            cluster_size=len(cluster),
            continent=detect_continent(result.lat, result.lon) if result.lat is not None else None,
            consensus=MatchConsensusReport(**consensus.to_dict()),
        ),
        notes=_notes(result, status["degraded"], embedding_source),
        elapsed_ms=round((time.perf_counter() - start) * 1000, 2),
    )

    logger.log_prediction(
        request_id,
        mode.value,
        len(filtered),
        result.confidence,
        result.tier.value,
        result.visibility.value,
        result.reason_code.value if result.reason_code else None,
    )
    return response
