"""
Catalog record validation and the predict response contract.
"""

import math
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..vector.types import (
    ConfidenceTier,
    EmbeddingSource,
    LocationVisibility,
    SceneHint,
    SearchMode,
    VisibilityReason,
)


class CatalogRecord(BaseModel):
    """One manifest record as it appears in the reference catalog file."""

    model_config = ConfigDict(extra="ignore")

    id: str
    label: str
    lat: float
    lon: float
    vector: List[float]

    @field_validator('id')
    @classmethod
    def id_must_not_be_empty(cls, v):
        if not v.strip():
            raise ValueError('id cannot be empty')
        return v

    @field_validator('label')
    @classmethod
    def label_must_not_be_empty(cls, v):
        if not v.strip():
            raise ValueError('label cannot be empty')
        return v

    @field_validator('lat')
    @classmethod
    def lat_must_be_valid(cls, v):
        if not math.isfinite(v) or not -90.0 <= v <= 90.0:
            raise ValueError('lat must be within [-90, 90]')
        return v

    @field_validator('lon')
    @classmethod
    def lon_must_be_valid(cls, v):
        if not math.isfinite(v) or not -180.0 <= v <= 180.0:
            raise ValueError('lon must be within [-180, 180]')
        return v

    @field_validator('vector')
    @classmethod
    def vector_must_be_finite(cls, v):
        if not v:
            raise ValueError('vector cannot be empty')
        if not all(math.isfinite(x) for x in v):
            raise ValueError('vector contains NaN or infinite components')
        return v


class PredictLocation(BaseModel):
    lat: float
    lon: float
    radius_m: float


class TopMatch(BaseModel):
    id: str
    label: str
    lat: float
    lon: float
    similarity: float


class SceneContext(BaseModel):
    scene_type: str
    scene_hint: Optional[SceneHint] = None
    hint_source: str
    confidence_calibration: str


class MatchConsensusReport(BaseModel):
    same_spot_matches: int
    nearby_matches: int
    same_label_matches: int
    strong_consensus: bool
    actionable_coherence: bool


class PredictDiagnostics(BaseModel):
    embedding_source: EmbeddingSource
    index_source: str
    degraded: bool
    degraded_reason: Optional[str] = None
    computed_location: Optional[PredictLocation] = None
    mean_similarity: float
    dispersion_m: float
    match_count: int
    cluster_size: int = 0
    continent: Optional[str] = None
    consensus: MatchConsensusReport


class PredictResponse(BaseModel):
    request_id: str
    status: str  # ok | low_confidence
    mode: SearchMode
    location: Optional[PredictLocation] = None
    confidence: float = Field(ge=0.0, le=1.0)
    confidence_tier: ConfidenceTier
    visibility: LocationVisibility
    reason: Optional[str] = None
    reason_code: Optional[VisibilityReason] = None
    scene_context: SceneContext
    top_matches: List[TopMatch]
    diagnostics: PredictDiagnostics
    notes: str
    elapsed_ms: float

    @field_validator('status')
    @classmethod
    def status_must_be_valid(cls, v):
        valid_statuses = ['ok', 'low_confidence']
        if v not in valid_statuses:
            raise ValueError(f'status must be one of: {valid_statuses}')
        return v


class IndexStatusResponse(BaseModel):
    source: str
    size: int
    dimension: Optional[int] = None
    degraded: bool
    degraded_reason: Optional[str] = None
    ready: bool
    params: Optional[Dict[str, Any]] = None


class ErrorResponse(BaseModel):
    error_type: str
    message: str
    timestamp: datetime = None
    details: Optional[Dict[str, Any]] = None

    def __init__(self, **data):
        super().__init__(timestamp=datetime.now(), **data)


def to_error_response(error: Exception) -> ErrorResponse:
    """Convert any exception into a stable, kind-typed error payload."""
    from ..core.errors import GeoMatchError

    if isinstance(error, GeoMatchError):
        details = {"exception": type(error).__name__}
        if getattr(error, "rebuild_required", False):
            details["rebuild_required"] = True
        return ErrorResponse(error_type=error.kind.value, message=str(error), details=details)

    return ErrorResponse(error_type="internal", message="Unexpected matching engine error")
