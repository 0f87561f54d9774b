"""Pipeline stage implementations."""

from skill_discovery.pipeline.clustering import (
    DEFAULT_EPSILON,
    NOISE_LABEL,
    ClusteringError,
    DensityClusteringResult,
    EpsilonBounds,
    cluster_points,
    cosine_distance,
    dbscan,
    tune_epsilon,
)
from skill_discovery.pipeline.discovery import (
    DiscoveryError,
    DiscoveryResult,
    MissingEmbeddingClientError,
    NoInputError,
    run_discovery,
    scan_session,
    scan_sessions,
)
from skill_discovery.pipeline.drafting import generate_cluster_draft
from skill_discovery.pipeline.embedding import (
    EmbeddingCache,
    EmbeddingExtractionError,
    TextEmbeddingClient,
    embed_texts_in_batches,
)
from skill_discovery.pipeline.prompt_classifier import classify_log_entry, is_real_user_prompt
from skill_discovery.pipeline.scoring import (
    ClusterScoringError,
    PromptCluster,
    assign_unique_names,
    build_prompt_clusters,
    merge_similar_clusters,
    rank_cluster_candidates,
    score_cluster,
)
from skill_discovery.pipeline.sequence_mining import (
    SequenceMiningError,
    build_tool_sequence,
    extract_ngrams,
)

__all__ = [
    "DEFAULT_EPSILON",
    "NOISE_LABEL",
    "ClusterScoringError",
    "ClusteringError",
    "DensityClusteringResult",
    "DiscoveryError",
    "DiscoveryResult",
    "EmbeddingCache",
    "EmbeddingExtractionError",
    "EpsilonBounds",
    "MissingEmbeddingClientError",
    "NoInputError",
    "PromptCluster",
    "SequenceMiningError",
    "TextEmbeddingClient",
    "assign_unique_names",
    "build_prompt_clusters",
    "build_tool_sequence",
    "classify_log_entry",
    "cluster_points",
    "cosine_distance",
    "dbscan",
    "embed_texts_in_batches",
    "extract_ngrams",
    "generate_cluster_draft",
    "is_real_user_prompt",
    "merge_similar_clusters",
    "rank_cluster_candidates",
    "run_discovery",
    "scan_session",
    "scan_sessions",
    "score_cluster",
    "tune_epsilon",
]
