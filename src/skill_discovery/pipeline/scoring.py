"""Cluster construction, scoring, and candidate ranking."""

from __future__ import annotations

import logging
import math
import re
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from datetime import UTC, datetime

import numpy as np
from sklearn.metrics.pairwise import cosine_distances

from skill_discovery.pipeline.clustering import DensityClusteringResult
from skill_discovery.pipeline.sequence_mining import merge_ngram_counts, top_ngrams
from skill_discovery.schemas import (
    CandidateEvidence,
    ClusterCandidate,
    ClusterScoreBreakdown,
    CollectedPrompt,
    ExistingSkill,
)

logger = logging.getLogger(__name__)

MAX_LABEL_LENGTH = 100
MAX_SLUG_WORDS = 5
RECENCY_HALF_LIFE_DAYS = 14.0
SECONDS_PER_DAY = 24 * 60 * 60

STOPWORDS = frozenset(
    {
        "a", "about", "after", "again", "all", "also", "am", "an", "and", "any", "are",
        "as", "at", "be", "been", "before", "being", "but", "by", "can", "could", "did",
        "do", "does", "for", "from", "had", "has", "have", "he", "her", "here", "him",
        "his", "how", "i", "if", "in", "into", "is", "it", "its", "just", "let", "lets",
        "may", "me", "might", "must", "my", "no", "not", "now", "of", "on", "onto", "or",
        "our", "out", "over", "please", "she", "should", "so", "some", "than", "that",
        "the", "their", "them", "then", "there", "these", "they", "this", "those", "to",
        "under", "up", "us", "very", "was", "we", "were", "what", "when", "where",
        "which", "who", "why", "will", "with", "would", "you", "your",
    }
)

_WORD_PATTERN = re.compile(r"[a-z0-9]+")


class ClusterScoringError(ValueError):
    """Raised when cluster scoring inputs are inconsistent."""


@dataclass(frozen=True, slots=True)
class ClusterScoringWeights:
    """Weights of the four score factors; they sum to 1."""

    size: float = 0.20
    cross_project: float = 0.30
    coherence: float = 0.30
    recency: float = 0.20


DEFAULT_CLUSTER_WEIGHTS = ClusterScoringWeights()


@dataclass(frozen=True, slots=True)
class PromptCluster:
    """One dense group of prompts before scoring."""

    label: str
    example_prompts: list[str]
    centroid: np.ndarray
    member_count: int
    project_slugs: list[str]
    session_keys: list[tuple[str, str]]
    timestamps: list[str]
    coherence: float


def _unique_in_order(items: Sequence) -> list:
    seen: set = set()
    ordered = []
    for item in items:
        if item in seen:
            continue
        seen.add(item)
        ordered.append(item)
    return ordered


def build_prompt_clusters(
    result: DensityClusteringResult,
    embeddings: np.ndarray,
    prompts: Sequence[CollectedPrompt],
    texts: Sequence[str] | None = None,
    *,
    example_count: int = 3,
) -> list[PromptCluster]:
    """Turn a clustering assignment into PromptCluster rows, noise excluded.

    The member nearest the centroid supplies the label; the `example_count`
    nearest members supply the examples. Coherence is one minus the mean
    cosine distance to the centroid.
    """

    display_texts = list(texts) if texts is not None else [prompt.text for prompt in prompts]
    point_count = result.labels.shape[0]
    if not (len(prompts) == len(display_texts) == embeddings.shape[0] == point_count):
        raise ClusterScoringError(
            "Cluster inputs must align: "
            f"labels={point_count}, embeddings={embeddings.shape[0]}, "
            f"prompts={len(prompts)}, texts={len(display_texts)}."
        )
    if example_count <= 0:
        raise ClusterScoringError(f"example_count must be positive, got {example_count}.")

    clusters: list[PromptCluster] = []
    for member_indexes in result.members().values():
        indexes = np.asarray(member_indexes, dtype=int)
        centroid = np.mean(embeddings[indexes], axis=0)
        distances = np.clip(
            cosine_distances(embeddings[indexes], centroid[None, :])[:, 0], 0.0, 2.0
        )
        order = np.argsort(distances, kind="stable")
        nearest = [int(indexes[position]) for position in order]

        label = display_texts[nearest[0]][:MAX_LABEL_LENGTH]
        coherence = max(0.0, min(1.0, 1.0 - float(np.mean(distances))))
        members = [prompts[index] for index in member_indexes]
        clusters.append(
            PromptCluster(
                label=label,
                example_prompts=[display_texts[index] for index in nearest[:example_count]],
                centroid=centroid,
                member_count=len(member_indexes),
                project_slugs=_unique_in_order([prompt.project_slug for prompt in members]),
                session_keys=_unique_in_order(
                    [(prompt.project_slug, prompt.session_id) for prompt in members]
                ),
                timestamps=[prompt.timestamp for prompt in members],
                coherence=coherence,
            )
        )
    return clusters


def _centroid_similarity(left: np.ndarray, right: np.ndarray) -> float:
    return 1.0 - float(cosine_distances(left[None, :], right[None, :])[0, 0])


def merge_similar_clusters(
    clusters: Sequence[PromptCluster],
    *,
    similarity_threshold: float = 0.8,
) -> list[PromptCluster]:
    """Greedily merge clusters whose centroids are at least `similarity_threshold` similar.

    The most similar pair is merged first and the search repeats until no pair
    qualifies. The larger cluster keeps its label and examples.
    """

    working = list(clusters)
    while len(working) > 1:
        best_similarity = -1.0
        best_pair: tuple[int, int] | None = None
        for i in range(len(working)):
            for j in range(i + 1, len(working)):
                similarity = _centroid_similarity(working[i].centroid, working[j].centroid)
                if similarity >= similarity_threshold and similarity > best_similarity:
                    best_similarity = similarity
                    best_pair = (i, j)
        if best_pair is None:
            break

        i, j = best_pair
        left, right = working[i], working[j]
        label_source = left if left.member_count >= right.member_count else right
        total = left.member_count + right.member_count
        working[i] = PromptCluster(
            label=label_source.label,
            example_prompts=list(label_source.example_prompts),
            centroid=(left.centroid * left.member_count + right.centroid * right.member_count)
            / total,
            member_count=total,
            project_slugs=_unique_in_order([*left.project_slugs, *right.project_slugs]),
            session_keys=_unique_in_order([*left.session_keys, *right.session_keys]),
            timestamps=[*left.timestamps, *right.timestamps],
            coherence=(left.coherence * left.member_count + right.coherence * right.member_count)
            / total,
        )
        del working[j]
    return working


def score_cluster(
    *,
    cluster_size: int,
    total_prompts: int,
    project_count: int,
    total_projects: int,
    coherence: float,
    most_recent: datetime | None,
    now: datetime,
    weights: ClusterScoringWeights = DEFAULT_CLUSTER_WEIGHTS,
) -> tuple[float, ClusterScoreBreakdown]:
    """Combine size, cross-project breadth, coherence, and recency into one score in [0, 1]."""

    size = 0.0
    if total_prompts > 0:
        size = min(1.0, math.log2(cluster_size + 1) / math.log2(total_prompts + 1))

    cross_project = project_count / total_projects if total_projects > 0 else 0.0

    recency = 0.0
    if most_recent is not None:
        elapsed = _as_utc(now) - _as_utc(most_recent)
        days_since = max(0.0, elapsed.total_seconds() / SECONDS_PER_DAY)
        recency = math.exp(-math.log(2) * days_since / RECENCY_HALF_LIFE_DAYS)

    score = (
        weights.size * size
        + weights.cross_project * cross_project
        + weights.coherence * coherence
        + weights.recency * recency
    )
    breakdown = ClusterScoreBreakdown(
        size=size,
        cross_project=cross_project,
        coherence=coherence,
        recency=recency,
    )
    return max(0.0, min(1.0, score)), breakdown


def extract_keywords(text: str) -> list[str]:
    """Lowercase alphanumeric words of `text`, stopwords removed, first occurrence order."""

    words = _WORD_PATTERN.findall(text.lower())
    return _unique_in_order([word for word in words if word not in STOPWORDS])


def jaccard_similarity(left: Sequence[str], right: Sequence[str]) -> float:
    left_set, right_set = set(left), set(right)
    union = left_set | right_set
    if not union:
        return 0.0
    return len(left_set & right_set) / len(union)


def generate_cluster_name(label: str) -> str:
    """Kebab-case slug of the first significant words of a label."""

    return "-".join(extract_keywords(label)[:MAX_SLUG_WORDS])


def generate_cluster_description(label: str) -> str:
    return f"Guides workflow when: {label[:MAX_LABEL_LENGTH]}"


def _as_utc(moment: datetime) -> datetime:
    # Naive datetimes are taken to be UTC.
    return moment.replace(tzinfo=UTC) if moment.tzinfo is None else moment


def _parse_timestamp(value: str) -> datetime | None:
    try:
        parsed = datetime.fromisoformat(value)
    except (TypeError, ValueError):
        return None
    return _as_utc(parsed)


def assign_unique_names(candidates: Sequence[ClusterCandidate]) -> list[ClusterCandidate]:
    """Suffix repeated suggested names with -2, -3, ... in list order."""

    used: set[str] = set()
    named: list[ClusterCandidate] = []
    for candidate in candidates:
        name = candidate.suggested_name
        suffix = 2
        while name in used:
            name = f"{candidate.suggested_name}-{suffix}"
            suffix += 1
        used.add(name)
        if name != candidate.suggested_name:
            candidate = candidate.model_copy(update={"suggested_name": name})
        named.append(candidate)
    return named


def deduplicate_candidates(
    candidates: Sequence[ClusterCandidate],
    existing_skills: Sequence[ExistingSkill],
    *,
    threshold: float = 0.5,
) -> tuple[list[ClusterCandidate], list[ClusterCandidate]]:
    """Split candidates into (kept, removed) by overlap with existing skills.

    When every candidate would be removed, all are kept instead.
    """

    if not existing_skills:
        return list(candidates), []

    existing_names = {skill.name.strip().lower() for skill in existing_skills}
    existing_keywords = [
        extract_keywords(f"{skill.name} {skill.description}") for skill in existing_skills
    ]

    kept: list[ClusterCandidate] = []
    removed: list[ClusterCandidate] = []
    for candidate in candidates:
        keywords = extract_keywords(
            f"{candidate.suggested_name} {candidate.suggested_description}"
        )
        duplicate = candidate.suggested_name.lower() in existing_names or any(
            jaccard_similarity(keywords, other) >= threshold for other in existing_keywords
        )
        if duplicate:
            removed.append(candidate)
        else:
            kept.append(candidate)

    if not kept and removed:
        return list(candidates), []
    return kept, removed


def rank_cluster_candidates(
    clusters: Sequence[PromptCluster],
    *,
    total_prompts: int,
    total_projects: int,
    existing_skills: Sequence[ExistingSkill] = (),
    session_ngrams: Mapping[tuple[str, str], Mapping[str, int]] | None = None,
    min_cluster_size: int = 3,
    min_coherence: float = 0.5,
    max_candidates: int | None = None,
    top_workflow_count: int = 5,
    dedup_threshold: float = 0.5,
    now: datetime | None = None,
) -> list[ClusterCandidate]:
    """Score, filter, name, and rank clusters into candidates, best first.

    A naive `now` is treated as UTC. Repeated suggested names get a numeric
    suffix, so the best-ranked candidate keeps the plain name.
    """

    current_time = _as_utc(now) if now is not None else datetime.now(UTC)
    ngrams_by_session = session_ngrams or {}

    candidates: list[ClusterCandidate] = []
    filtered_count = 0
    for position, cluster in enumerate(clusters):
        if cluster.member_count < min_cluster_size or cluster.coherence < min_coherence:
            filtered_count += 1
            continue

        parsed_times = [
            parsed
            for parsed in (_parse_timestamp(value) for value in cluster.timestamps)
            if parsed is not None
        ]
        most_recent = max(parsed_times) if parsed_times else None

        score, breakdown = score_cluster(
            cluster_size=cluster.member_count,
            total_prompts=total_prompts,
            project_count=len(cluster.project_slugs),
            total_projects=total_projects,
            coherence=cluster.coherence,
            most_recent=most_recent,
            now=current_time,
        )

        workflows = top_ngrams(
            merge_ngram_counts(
                ngrams_by_session[key] for key in cluster.session_keys if key in ngrams_by_session
            ),
            top_workflow_count,
        )
        suggested_name = generate_cluster_name(cluster.label) or f"prompt-cluster-{position + 1}"
        candidates.append(
            ClusterCandidate(
                label=cluster.label,
                suggested_name=suggested_name,
                suggested_description=generate_cluster_description(cluster.label),
                cluster_size=cluster.member_count,
                coherence=cluster.coherence,
                score=score,
                score_breakdown=breakdown,
                example_prompts=list(cluster.example_prompts),
                evidence=CandidateEvidence(
                    projects=sorted(cluster.project_slugs),
                    prompt_count=cluster.member_count,
                    session_count=len(cluster.session_keys),
                    last_seen=most_recent.isoformat() if most_recent is not None else "",
                    workflows=workflows,
                ),
            )
        )

    if filtered_count:
        logger.info(
            "Filtered %d clusters below size %d or coherence %.2f.",
            filtered_count,
            min_cluster_size,
            min_coherence,
        )

    candidates.sort(key=lambda candidate: candidate.score, reverse=True)
    kept, removed = deduplicate_candidates(
        candidates, existing_skills, threshold=dedup_threshold
    )
    if removed:
        logger.info("Dropped %d candidates overlapping existing skills.", len(removed))
    if max_candidates is not None:
        kept = kept[:max_candidates]
    return assign_unique_names(kept)
