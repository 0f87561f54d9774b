"""Batch orchestration of the candidate discovery pipeline."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path

import numpy as np

from skill_discovery.config import Settings
from skill_discovery.io import (
    discover_project_roots,
    enumerate_sessions,
    read_session_transcript,
    validate_project_access,
)
from skill_discovery.pipeline.clustering import EpsilonBounds, cluster_points
from skill_discovery.pipeline.drafting import generate_cluster_draft
from skill_discovery.pipeline.embedding import (
    EmbeddingCache,
    TextEmbeddingClient,
    embed_texts_in_batches,
    truncate_to_words,
)
from skill_discovery.pipeline.prompt_classifier import classify_log_entry
from skill_discovery.pipeline.scoring import (
    PromptCluster,
    build_prompt_clusters,
    merge_similar_clusters,
    rank_cluster_candidates,
)
from skill_discovery.pipeline.sequence_mining import build_tool_sequence, extract_session_ngrams
from skill_discovery.schemas import (
    ClusterCandidate,
    CollectedPrompt,
    DraftArtifact,
    ExistingSkill,
    RawLogEntry,
    SessionRecord,
)

logger = logging.getLogger(__name__)

TranscriptReader = Callable[[SessionRecord], Iterable[RawLogEntry]]


class DiscoveryError(RuntimeError):
    """Raised when a discovery run cannot start."""


class NoInputError(DiscoveryError):
    """Raised when no project roots are available to scan."""


class MissingEmbeddingClientError(DiscoveryError):
    """Raised when no embedding provider is supplied."""


@dataclass(frozen=True, slots=True)
class SessionScan:
    """Prompts and tool n-grams extracted from one session."""

    session: SessionRecord
    prompts: list[CollectedPrompt]
    ngrams: dict[str, int]
    entry_count: int


@dataclass(frozen=True, slots=True)
class ClusteringRun:
    """Epsilon and outcome of one clustering invocation."""

    scope: str
    point_count: int
    epsilon: float
    cluster_count: int
    noise_count: int


@dataclass(frozen=True, slots=True)
class DiscoveryResult:
    """Outcome of a full discovery run."""

    session_count: int
    entry_count: int
    prompt_count: int
    candidates: list[ClusterCandidate]
    drafts: list[DraftArtifact]
    clustering_runs: list[ClusteringRun] = field(default_factory=list)
    skipped_projects: list[str] = field(default_factory=list)
    failed_sessions: list[tuple[str, str]] = field(default_factory=list)


def scan_session(
    session: SessionRecord,
    read_transcript: TranscriptReader,
    *,
    ngram_sizes: Sequence[int] = (2, 3),
) -> SessionScan:
    """Classify one session's user entries and mine its tool sequence."""

    prompts: list[CollectedPrompt] = []
    tool_entries: list[RawLogEntry] = []
    entry_count = 0
    for entry in read_transcript(session):
        entry_count += 1
        if entry.is_tool_invocation:
            tool_entries.append(entry)
            continue
        if entry.entry_type != "user":
            continue
        extracted = classify_log_entry(entry)
        if extracted is None:
            continue
        prompts.append(
            CollectedPrompt(
                text=extracted.text,
                session_id=extracted.session_id or session.session_id,
                timestamp=extracted.timestamp,
                cwd=extracted.cwd,
                project_slug=session.project_slug,
            )
        )

    sequence = build_tool_sequence(tool_entries)
    return SessionScan(
        session=session,
        prompts=prompts,
        ngrams=extract_session_ngrams(sequence, ngram_sizes),
        entry_count=entry_count,
    )


def scan_sessions(
    sessions: Sequence[SessionRecord],
    read_transcript: TranscriptReader,
    *,
    ngram_sizes: Sequence[int] = (2, 3),
    max_workers: int = 8,
) -> tuple[list[SessionScan], list[SessionRecord]]:
    """Scan sessions concurrently; unreadable sessions are returned separately."""

    def _scan_or_none(session: SessionRecord) -> SessionScan | None:
        try:
            return scan_session(session, read_transcript, ngram_sizes=ngram_sizes)
        except (OSError, ValueError) as exc:
            logger.warning(
                "Skipping session %s/%s: %s",
                session.project_slug,
                session.session_id,
                exc,
            )
            return None

    if not sessions:
        return [], []

    with ThreadPoolExecutor(max_workers=max(1, min(max_workers, len(sessions)))) as pool:
        outcomes = list(pool.map(_scan_or_none, sessions))

    scans = [outcome for outcome in outcomes if outcome is not None]
    failed = [
        session for session, outcome in zip(sessions, outcomes, strict=True) if outcome is None
    ]
    return scans, failed


def _cluster_scope(
    *,
    scope: str,
    embeddings: np.ndarray,
    prompts: list[CollectedPrompt],
    texts: list[str],
    settings: Settings,
    bounds: EpsilonBounds,
) -> tuple[list[PromptCluster], ClusteringRun]:
    result = cluster_points(embeddings, settings.cluster_min_pts, bounds=bounds)
    run = ClusteringRun(
        scope=scope,
        point_count=len(prompts),
        epsilon=result.epsilon,
        cluster_count=result.cluster_count,
        noise_count=result.noise_count,
    )
    logger.info(
        "Clustered %d prompts for %s: epsilon=%.3f, clusters=%d, noise=%d.",
        run.point_count,
        scope,
        run.epsilon,
        run.cluster_count,
        run.noise_count,
    )
    clusters = build_prompt_clusters(
        result,
        embeddings,
        prompts,
        texts,
        example_count=settings.example_prompt_count,
    )
    return clusters, run


def run_discovery(
    settings: Settings,
    *,
    embedding_client: TextEmbeddingClient | None,
    project_roots: Iterable[str | Path] | None = None,
    read_transcript: TranscriptReader = read_session_transcript,
    existing_skills: Sequence[ExistingSkill] = (),
    cache: EmbeddingCache | None = None,
    now: datetime | None = None,
) -> DiscoveryResult:
    """Run enumeration, classification, clustering, scoring, and drafting end to end.

    Raises NoInputError when there are no project roots and
    MissingEmbeddingClientError when no embedding provider is given. Every
    other per-project or per-session failure is logged and skipped.
    """

    if embedding_client is None:
        raise MissingEmbeddingClientError("An embedding client is required for discovery.")

    roots = (
        [Path(root) for root in project_roots]
        if project_roots is not None
        else discover_project_roots(settings.claude_base_dir)
    )
    if not roots:
        raise NoInputError("No project roots provided for discovery.")

    allowed_roots: list[Path] = []
    skipped_projects: list[str] = []
    for root in roots:
        if validate_project_access(
            root.name,
            allow_projects=settings.allow_projects,
            exclude_projects=settings.exclude_projects,
        ):
            allowed_roots.append(root)
        else:
            skipped_projects.append(root.name)
    if skipped_projects:
        logger.info("Excluded %d projects by access settings.", len(skipped_projects))

    sessions = enumerate_sessions(
        allowed_roots,
        index_filename=settings.session_index_filename,
        max_workers=settings.scan_max_workers,
    )
    scans, failed = scan_sessions(
        sessions,
        read_transcript,
        ngram_sizes=settings.ngram_sizes,
        max_workers=settings.scan_max_workers,
    )
    entry_count = sum(scan.entry_count for scan in scans)
    prompts = sorted(
        (prompt for scan in scans for prompt in scan.prompts),
        key=lambda prompt: (prompt.project_slug, prompt.session_id, prompt.timestamp),
    )
    session_ngrams = {scan.session.key: scan.ngrams for scan in scans}
    failed_keys = [session.key for session in failed]
    logger.info(
        "Scanned %d sessions (%d failed): %d entries, %d real prompts.",
        len(sessions),
        len(failed),
        entry_count,
        len(prompts),
    )

    if not prompts:
        return DiscoveryResult(
            session_count=len(sessions),
            entry_count=entry_count,
            prompt_count=0,
            candidates=[],
            drafts=[],
            skipped_projects=skipped_projects,
            failed_sessions=failed_keys,
        )

    texts = [truncate_to_words(prompt.text, settings.max_prompt_words) for prompt in prompts]
    embeddings = embed_texts_in_batches(
        texts,
        embedding_client,
        batch_size=settings.embedding_batch_size,
        cache=cache,
    )
    bounds = EpsilonBounds(min=settings.epsilon_min, max=settings.epsilon_max)

    clusters: list[PromptCluster] = []
    runs: list[ClusteringRun] = []
    if settings.cluster_scope == "global":
        global_clusters, run = _cluster_scope(
            scope="global",
            embeddings=embeddings,
            prompts=prompts,
            texts=texts,
            settings=settings,
            bounds=bounds,
        )
        clusters.extend(global_clusters)
        runs.append(run)
    else:
        indexes_by_project: dict[str, list[int]] = {}
        for index, prompt in enumerate(prompts):
            indexes_by_project.setdefault(prompt.project_slug, []).append(index)
        small_projects: list[str] = []
        for project_slug, indexes in indexes_by_project.items():
            if len(indexes) < settings.min_prompts_per_project:
                small_projects.append(project_slug)
                continue
            project_clusters, run = _cluster_scope(
                scope=project_slug,
                embeddings=embeddings[indexes],
                prompts=[prompts[index] for index in indexes],
                texts=[texts[index] for index in indexes],
                settings=settings,
                bounds=bounds,
            )
            clusters.extend(project_clusters)
            runs.append(run)
        if small_projects:
            skipped_projects.extend(small_projects)
            logger.info(
                "Skipped %d projects with fewer than %d prompts.",
                len(small_projects),
                settings.min_prompts_per_project,
            )
        clusters = merge_similar_clusters(
            clusters,
            similarity_threshold=settings.merge_similarity_threshold,
        )

    candidates = rank_cluster_candidates(
        clusters,
        total_prompts=len(prompts),
        total_projects=len({prompt.project_slug for prompt in prompts}),
        existing_skills=existing_skills,
        session_ngrams=session_ngrams,
        min_cluster_size=settings.min_cluster_size,
        min_coherence=settings.min_cluster_coherence,
        max_candidates=settings.max_candidates,
        top_workflow_count=settings.top_workflow_count,
        dedup_threshold=settings.dedup_similarity_threshold,
        now=now,
    )
    drafts = [generate_cluster_draft(candidate) for candidate in candidates]
    logger.info("Discovery produced %d candidates from %d clusters.", len(candidates), len(clusters))

    return DiscoveryResult(
        session_count=len(sessions),
        entry_count=entry_count,
        prompt_count=len(prompts),
        candidates=candidates,
        drafts=drafts,
        clustering_runs=runs,
        skipped_projects=skipped_projects,
        failed_sessions=failed_keys,
    )
