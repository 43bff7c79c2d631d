"""
Runtime configuration for the matching engine.
Every knob reads from a GEOMATCH_* environment variable with a default.
"""

import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


# Reference data and snapshot locations
CATALOG_PATH = os.getenv("GEOMATCH_CATALOG_PATH", "./data/reference_catalog.json")
SNAPSHOT_PATH = os.getenv("GEOMATCH_SNAPSHOT_PATH", "./data/reference_index.hnsw")

# Embedding dimension shared by the catalog and every query
EMBED_DIM = _env_int("GEOMATCH_EMBED_DIM", 512)

# HNSW build parameters
HNSW_M = _env_int("GEOMATCH_HNSW_M", 16)
HNSW_EF_CONSTRUCTION = _env_int("GEOMATCH_HNSW_EF_CONSTRUCTION", 200)
HNSW_SEED = _env_int("GEOMATCH_HNSW_SEED", 100)

# Query modes: fast|accurate map to (top_k, ef)
TOP_K_FAST = _env_int("GEOMATCH_TOP_K_FAST", 8)
TOP_K_ACCURATE = _env_int("GEOMATCH_TOP_K_ACCURATE", 20)
EF_FAST = _env_int("GEOMATCH_EF_FAST", 32)
EF_ACCURATE = _env_int("GEOMATCH_EF_ACCURATE", 128)

# Aggregation policy. Temperature and tier thresholds are tuned against
# labeled validation data, not fixed.
SOFTMAX_TEMPERATURE = _env_float("GEOMATCH_SOFTMAX_TEMPERATURE", 0.05)
SIMILARITY_WEIGHT = _env_float("GEOMATCH_SIMILARITY_WEIGHT", 0.6)
DISPERSION_BAND_M = _env_float("GEOMATCH_DISPERSION_BAND_M", 50_000.0)
LANDMARK_BAND_FACTOR = _env_float("GEOMATCH_LANDMARK_BAND_FACTOR", 0.5)
GENERIC_BAND_FACTOR = _env_float("GEOMATCH_GENERIC_BAND_FACTOR", 2.0)
GENERIC_CONFIDENCE_FACTOR = _env_float("GEOMATCH_GENERIC_CONFIDENCE_FACTOR", 0.85)
CONFIDENCE_TIER_HIGH = _env_float("GEOMATCH_CONFIDENCE_TIER_HIGH", 0.75)
CONFIDENCE_TIER_MEDIUM = _env_float("GEOMATCH_CONFIDENCE_TIER_MEDIUM", 0.5)
MINIMUM_CONFIDENCE = _env_float("GEOMATCH_MINIMUM_CONFIDENCE", 0.5)
MIN_RADIUS_M = _env_float("GEOMATCH_MIN_RADIUS_M", 100.0)
MAX_VISIBLE_RADIUS_M = _env_float("GEOMATCH_MAX_VISIBLE_RADIUS_M", 300_000.0)
FALLBACK_CONFIDENCE_PENALTY = _env_float("GEOMATCH_FALLBACK_CONFIDENCE_PENALTY", 0.55)

# Consensus cluster selection ahead of aggregation
CLUSTER_ENABLED = os.getenv("GEOMATCH_CLUSTER_ENABLED", "true").lower() == "true"
CLUSTER_RADIUS_M = _env_float("GEOMATCH_CLUSTER_RADIUS_M", 30_000.0)
CLUSTER_SEARCH_DEPTH = _env_int("GEOMATCH_CLUSTER_SEARCH_DEPTH", 24)
CLUSTER_MIN_MEMBERS = _env_int("GEOMATCH_CLUSTER_MIN_MEMBERS", 3)
CLUSTER_MAX_MEMBERS = _env_int("GEOMATCH_CLUSTER_MAX_MEMBERS", 6)
OUTLIER_REJECTION = os.getenv("GEOMATCH_OUTLIER_REJECTION", "true").lower() == "true"

# Warmup behaviour
REBUILD_IF_STALE = os.getenv("GEOMATCH_REBUILD_IF_STALE", "true").lower() == "true"
PERSIST_REBUILT_INDEX = os.getenv("GEOMATCH_PERSIST_REBUILT_INDEX", "true").lower() == "true"

VERSION = "0.3.0"


def get_catalog_path() -> str:
    return os.getenv("GEOMATCH_CATALOG_PATH", CATALOG_PATH)


def get_snapshot_path() -> str:
    return os.getenv("GEOMATCH_SNAPSHOT_PATH", SNAPSHOT_PATH)


def get_embed_dim() -> int:
    return _env_int("GEOMATCH_EMBED_DIM", EMBED_DIM)


def get_hnsw_params():
    """Build parameters for the reference index, re-read from the environment."""
    from ..vector.hnsw import HNSWParams

    return HNSWParams(
        m=_env_int("GEOMATCH_HNSW_M", HNSW_M),
        ef_construction=_env_int("GEOMATCH_HNSW_EF_CONSTRUCTION", HNSW_EF_CONSTRUCTION),
        seed=_env_int("GEOMATCH_HNSW_SEED", HNSW_SEED),
    )


def get_search_params(mode) -> tuple[int, int]:
    """Return (top_k, ef) for a search mode."""
    from ..vector.types import SearchMode

    if SearchMode(mode) is SearchMode.FAST:
        return (
            _env_int("GEOMATCH_TOP_K_FAST", TOP_K_FAST),
            _env_int("GEOMATCH_EF_FAST", EF_FAST),
        )
    return (
        _env_int("GEOMATCH_TOP_K_ACCURATE", TOP_K_ACCURATE),
        _env_int("GEOMATCH_EF_ACCURATE", EF_ACCURATE),
    )


def get_aggregation_policy():
    """Aggregation policy assembled from the current environment."""
    from .aggregation import AggregationPolicy

    return AggregationPolicy(
        softmax_temperature=_env_float("GEOMATCH_SOFTMAX_TEMPERATURE", SOFTMAX_TEMPERATURE),
        similarity_weight=_env_float("GEOMATCH_SIMILARITY_WEIGHT", SIMILARITY_WEIGHT),
        dispersion_band_m=_env_float("GEOMATCH_DISPERSION_BAND_M", DISPERSION_BAND_M),
        landmark_band_factor=_env_float("GEOMATCH_LANDMARK_BAND_FACTOR", LANDMARK_BAND_FACTOR),
        generic_band_factor=_env_float("GEOMATCH_GENERIC_BAND_FACTOR", GENERIC_BAND_FACTOR),
        generic_confidence_factor=_env_float("GEOMATCH_GENERIC_CONFIDENCE_FACTOR", GENERIC_CONFIDENCE_FACTOR),
        tier_high=_env_float("GEOMATCH_CONFIDENCE_TIER_HIGH", CONFIDENCE_TIER_HIGH),
        tier_medium=_env_float("GEOMATCH_CONFIDENCE_TIER_MEDIUM", CONFIDENCE_TIER_MEDIUM),
        minimum_confidence=_env_float("GEOMATCH_MINIMUM_CONFIDENCE", MINIMUM_CONFIDENCE),
        min_radius_m=_env_float("GEOMATCH_MIN_RADIUS_M", MIN_RADIUS_M),
        max_visible_radius_m=_env_float("GEOMATCH_MAX_VISIBLE_RADIUS_M", MAX_VISIBLE_RADIUS_M),
        fallback_penalty=_env_float("GEOMATCH_FALLBACK_CONFIDENCE_PENALTY", FALLBACK_CONFIDENCE_PENALTY),
    )


def get_cluster_policy():
    """Cluster selection policy assembled from the current environment."""
    from .clustering import ClusterPolicy

    return ClusterPolicy(
        enabled=os.getenv("GEOMATCH_CLUSTER_ENABLED", str(CLUSTER_ENABLED)).lower() == "true",
        radius_m=_env_float("GEOMATCH_CLUSTER_RADIUS_M", CLUSTER_RADIUS_M),
        search_depth=_env_int("GEOMATCH_CLUSTER_SEARCH_DEPTH", CLUSTER_SEARCH_DEPTH),
        min_members=_env_int("GEOMATCH_CLUSTER_MIN_MEMBERS", CLUSTER_MIN_MEMBERS),
        max_members=_env_int("GEOMATCH_CLUSTER_MAX_MEMBERS", CLUSTER_MAX_MEMBERS),
        outlier_rejection=os.getenv("GEOMATCH_OUTLIER_REJECTION", str(OUTLIER_REJECTION)).lower() == "true",
    )


def ensure_data_directory():
    """Ensure the directories holding the catalog and snapshot exist."""
    Path(get_catalog_path()).parent.mkdir(parents=True, exist_ok=True)
    Path(get_snapshot_path()).parent.mkdir(parents=True, exist_ok=True)


def validate_config():
    """Validate configuration and return any issues."""
    issues = []

    if get_embed_dim() < 1:
        issues.append("GEOMATCH_EMBED_DIM must be >= 1")

    hnsw_m = _env_int("GEOMATCH_HNSW_M", HNSW_M)
    ef_construction = _env_int("GEOMATCH_HNSW_EF_CONSTRUCTION", HNSW_EF_CONSTRUCTION)
    if hnsw_m < 2:
        issues.append("GEOMATCH_HNSW_M must be >= 2")
    if ef_construction < hnsw_m:
        issues.append("GEOMATCH_HNSW_EF_CONSTRUCTION must be >= GEOMATCH_HNSW_M")

    for mode in ("fast", "accurate"):
        top_k, ef = get_search_params(mode)
        if top_k < 1:
            issues.append(f"top_k for mode '{mode}' must be >= 1")
        if ef < top_k:
            issues.append(f"ef for mode '{mode}' must be >= top_k ({top_k})")

    policy = get_aggregation_policy()
    if policy.softmax_temperature <= 0:
        issues.append("GEOMATCH_SOFTMAX_TEMPERATURE must be > 0")
    if not 0.0 <= policy.similarity_weight <= 1.0:
        issues.append("GEOMATCH_SIMILARITY_WEIGHT must be within [0, 1]")
    if policy.tier_medium > policy.tier_high:
        issues.append("GEOMATCH_CONFIDENCE_TIER_MEDIUM must not exceed GEOMATCH_CONFIDENCE_TIER_HIGH")
    if policy.dispersion_band_m <= 0:
        issues.append("GEOMATCH_DISPERSION_BAND_M must be > 0")

    cluster = get_cluster_policy()
    if cluster.radius_m <= 0:
        issues.append("GEOMATCH_CLUSTER_RADIUS_M must be > 0")
    if cluster.min_members < 1 or cluster.max_members < cluster.min_members:
        issues.append("GEOMATCH_CLUSTER_MIN_MEMBERS must be >= 1 and <= GEOMATCH_CLUSTER_MAX_MEMBERS")

    return issues
