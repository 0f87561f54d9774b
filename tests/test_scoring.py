"""Tests for cluster construction, scoring, naming, and ranking."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import numpy as np
import pytest

from skill_discovery.pipeline import (
    ClusterScoringError,
    DensityClusteringResult,
    PromptCluster,
    assign_unique_names,
    build_prompt_clusters,
    merge_similar_clusters,
    rank_cluster_candidates,
    score_cluster,
)
from skill_discovery.pipeline.scoring import (
    DEFAULT_CLUSTER_WEIGHTS,
    deduplicate_candidates,
    extract_keywords,
    generate_cluster_description,
    generate_cluster_name,
    jaccard_similarity,
)
from skill_discovery.schemas import CollectedPrompt, ExistingSkill

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)


def _cluster(
    label: str = "Help me refactor this authentication module",
    *,
    member_count: int = 10,
    coherence: float = 0.75,
    projects: list[str] | None = None,
    centroid: list[float] | None = None,
    days_ago: float = 1.0,
) -> PromptCluster:
    slugs = projects if projects is not None else ["project-a", "project-b", "project-c"]
    return PromptCluster(
        label=label,
        example_prompts=[label, f"{label} again"],
        centroid=np.array(centroid or [0.1, 0.2, 0.3]),
        member_count=member_count,
        project_slugs=slugs,
        session_keys=[(slug, "s1") for slug in slugs],
        timestamps=[(NOW - timedelta(days=days_ago)).isoformat()],
        coherence=coherence,
    )


def _prompt(text: str, project: str = "proj", session: str = "s1", ts: str = "") -> CollectedPrompt:
    return CollectedPrompt(
        text=text,
        session_id=session,
        timestamp=ts or "2026-02-28T10:00:00+00:00",
        project_slug=project,
    )


class TestScoreCluster:
    def test_default_weights_sum_to_one(self):
        weights = DEFAULT_CLUSTER_WEIGHTS
        assert weights.size + weights.cross_project + weights.coherence + weights.recency == (
            pytest.approx(1.0)
        )
        assert weights.cross_project == 0.30
        assert weights.coherence == 0.30

    def _score(self, **overrides):
        arguments = {
            "cluster_size": 10,
            "total_prompts": 100,
            "project_count": 3,
            "total_projects": 5,
            "coherence": 0.8,
            "most_recent": NOW,
            "now": NOW,
        }
        arguments.update(overrides)
        return score_cluster(**arguments)

    def test_large_recent_coherent_cluster_scores_high(self):
        score, _ = self._score(cluster_size=20, coherence=0.9)
        assert score > 0.7

    def test_small_old_cluster_scores_low(self):
        score, _ = self._score(
            cluster_size=3,
            project_count=1,
            coherence=0.5,
            most_recent=NOW - timedelta(days=60),
        )
        assert score < 0.4

    def test_all_zero_factors(self):
        score, breakdown = score_cluster(
            cluster_size=0,
            total_prompts=0,
            project_count=0,
            total_projects=0,
            coherence=0.0,
            most_recent=None,
            now=NOW,
        )
        assert score == 0.0
        assert breakdown.recency == 0.0

    def test_all_factors_at_maximum(self):
        score, _ = self._score(cluster_size=100, project_count=5, coherence=1.0)
        assert score == pytest.approx(1.0)

    def test_size_is_log_scaled(self):
        _, small = self._score(cluster_size=10, total_prompts=10000)
        _, large = self._score(cluster_size=1000, total_prompts=10000)
        ratio = large.size / small.size
        assert 1 < ratio < 10

    def test_cross_project_fraction(self):
        _, breakdown = self._score(project_count=4, total_projects=10)
        assert breakdown.cross_project == pytest.approx(0.4)

    def test_coherence_passes_through(self):
        _, breakdown = self._score(coherence=0.75)
        assert breakdown.coherence == 0.75

    def test_recency_half_life(self):
        _, today = self._score()
        _, two_weeks = self._score(most_recent=NOW - timedelta(days=14))
        _, two_months = self._score(most_recent=NOW - timedelta(days=60))
        assert today.recency == pytest.approx(1.0)
        assert two_weeks.recency == pytest.approx(0.5)
        assert two_months.recency < 0.1

    def test_future_timestamps_count_as_now(self):
        _, breakdown = self._score(most_recent=NOW + timedelta(days=3))
        assert breakdown.recency == pytest.approx(1.0)

    def test_zero_totals_are_handled(self):
        _, no_projects = self._score(total_projects=0)
        _, no_prompts = self._score(total_prompts=0)
        assert no_projects.cross_project == 0.0
        assert no_prompts.size == 0.0

    def test_score_is_monotonic_in_each_factor(self):
        base, _ = self._score()
        assert self._score(cluster_size=30)[0] > base
        assert self._score(project_count=5)[0] > base
        assert self._score(coherence=0.95)[0] > base
        assert self._score(most_recent=NOW - timedelta(days=10))[0] < base


class TestNaming:
    def test_slug_drops_stopwords(self):
        assert generate_cluster_name("Help me refactor this authentication module") == (
            "help-refactor-authentication-module"
        )

    def test_slug_is_limited_to_five_words(self):
        name = generate_cluster_name(
            "Help me refactor the old authentication module code badly broken stuff"
        )
        assert len(name.split("-")) == 5

    def test_slug_is_lowercase_kebab_case(self):
        name = generate_cluster_name("Fix The Broken Database-Connection!!")
        assert name == "fix-broken-database-connection"
        assert "--" not in name

    def test_stopword_only_label_gives_empty_slug(self):
        assert generate_cluster_name("the a an and or") == ""

    def test_description_is_prefixed_and_capped(self):
        description = generate_cluster_description("x" * 150)
        assert description.startswith("Guides workflow when: ")
        assert len(description) == len("Guides workflow when: ") + 100

    def test_keywords_keep_first_occurrence_order(self):
        assert extract_keywords("Deploy staging then deploy prod") == ["deploy", "staging", "prod"]

    def test_jaccard(self):
        assert jaccard_similarity(["a", "b"], ["b", "c"]) == pytest.approx(1 / 3)
        assert jaccard_similarity([], []) == 0.0


class TestBuildPromptClusters:
    def test_label_examples_and_coherence(self):
        embeddings = np.array(
            [
                [1.0, 0.0],
                [1.0, 0.1],
                [1.0, -0.1],
                [0.0, 1.0],
            ]
        )
        prompts = [
            _prompt("refactor the login handler", "proj-a", "s1"),
            _prompt("refactor the signup handler", "proj-b", "s2"),
            _prompt("refactor the logout handler", "proj-a", "s1"),
            _prompt("write release notes", "proj-a", "s3"),
        ]
        result = DensityClusteringResult(
            labels=np.array([0, 0, 0, -1]),
            core_mask=np.array([True, True, True, False]),
            epsilon=0.1,
            min_pts=2,
        )

        clusters = build_prompt_clusters(result, embeddings, prompts, example_count=2)

        assert len(clusters) == 1
        cluster = clusters[0]
        assert cluster.label == "refactor the login handler"
        assert cluster.example_prompts[0] == "refactor the login handler"
        assert len(cluster.example_prompts) == 2
        assert cluster.member_count == 3
        assert cluster.project_slugs == ["proj-a", "proj-b"]
        assert cluster.session_keys == [("proj-a", "s1"), ("proj-b", "s2")]
        assert 0.99 < cluster.coherence <= 1.0

    def test_label_is_capped(self):
        embeddings = np.array([[1.0, 0.0], [1.0, 0.0]])
        prompts = [_prompt("y" * 150), _prompt("z" * 150)]
        result = DensityClusteringResult(
            labels=np.array([0, 0]),
            core_mask=np.array([True, True]),
            epsilon=0.1,
            min_pts=2,
        )
        clusters = build_prompt_clusters(result, embeddings, prompts)
        assert len(clusters[0].label) == 100

    def test_misaligned_inputs_raise(self):
        result = DensityClusteringResult(
            labels=np.array([0, 0]),
            core_mask=np.array([True, True]),
            epsilon=0.1,
            min_pts=2,
        )
        with pytest.raises(ClusterScoringError, match="must align"):
            build_prompt_clusters(result, np.zeros((3, 2)), [_prompt("a prompt text")] * 2)


class TestMergeSimilarClusters:
    def test_merges_near_duplicate_centroids(self):
        big = _cluster("run the unit tests", member_count=6, centroid=[1.0, 0.0, 0.0],
                       projects=["proj-a"])
        small = _cluster("execute unit tests now", member_count=3, centroid=[0.95, 0.05, 0.0],
                         projects=["proj-b"])
        other = _cluster("deploy to staging", member_count=4, centroid=[0.0, 1.0, 0.0],
                         projects=["proj-a"])

        merged = merge_similar_clusters([small, other, big], similarity_threshold=0.8)

        assert len(merged) == 2
        combined = next(cluster for cluster in merged if cluster.member_count == 9)
        assert combined.label == "run the unit tests"
        assert combined.project_slugs == ["proj-b", "proj-a"]
        assert combined.coherence == pytest.approx(0.75)

    def test_dissimilar_clusters_are_kept(self):
        clusters = [
            _cluster("a", centroid=[1.0, 0.0, 0.0]),
            _cluster("b", centroid=[0.0, 1.0, 0.0]),
        ]
        assert len(merge_similar_clusters(clusters)) == 2


class TestRankClusterCandidates:
    def test_filters_small_and_incoherent_clusters(self):
        clusters = [
            _cluster("Deploy the staging environment", member_count=2),
            _cluster("Review the pull request diff", coherence=0.3),
            _cluster("Write integration tests for payments"),
        ]
        candidates = rank_cluster_candidates(
            clusters, total_prompts=100, total_projects=5, now=NOW
        )
        assert [candidate.suggested_name for candidate in candidates] == [
            "write-integration-tests-payments"
        ]

    def test_sorted_by_score_descending_and_capped(self):
        clusters = [
            _cluster("Summarize yesterday standup notes", member_count=4, projects=["p1"]),
            _cluster("Refactor database access layer", member_count=30),
            _cluster("Update changelog before release", member_count=10, projects=["p1", "p2"]),
        ]
        candidates = rank_cluster_candidates(
            clusters, total_prompts=100, total_projects=5, max_candidates=2, now=NOW
        )
        assert len(candidates) == 2
        assert candidates[0].suggested_name == "refactor-database-access-layer"
        assert candidates[0].score >= candidates[1].score

    def test_evidence_and_workflows(self):
        cluster = _cluster("Fix flaky tests in CI", projects=["proj-a", "proj-b"], days_ago=2)
        session_ngrams = {
            ("proj-a", "s1"): {"Read->Edit": 3, "Bash->Read": 1},
            ("proj-b", "s1"): {"Read->Edit": 2, "Grep->Read": 2},
            ("proj-c", "s1"): {"Write->Bash": 9},
        }
        [candidate] = rank_cluster_candidates(
            [cluster],
            total_prompts=50,
            total_projects=3,
            session_ngrams=session_ngrams,
            top_workflow_count=2,
            now=NOW,
        )
        assert candidate.evidence.projects == ["proj-a", "proj-b"]
        assert candidate.evidence.session_count == 2
        assert candidate.evidence.workflows == {"Read->Edit": 5, "Grep->Read": 2}
        assert candidate.evidence.last_seen.startswith("2026-02-27")
        assert candidate.suggested_description == "Guides workflow when: Fix flaky tests in CI"

    def test_stopword_label_gets_positional_name(self):
        [candidate] = rank_cluster_candidates(
            [_cluster("please do it now")], total_prompts=10, total_projects=3, now=NOW
        )
        assert candidate.suggested_name == "prompt-cluster-1"

    def test_repeated_names_get_numeric_suffix(self):
        clusters = [
            _cluster("Fix flaky tests in CI pipeline today", member_count=10),
            _cluster("Fix flaky tests in CI pipeline again", member_count=30),
            _cluster("Fix flaky tests in CI pipeline tonight", member_count=5),
        ]
        candidates = rank_cluster_candidates(
            clusters, total_prompts=100, total_projects=5, now=NOW
        )
        assert [candidate.suggested_name for candidate in candidates] == [
            "fix-flaky-tests-ci-pipeline",
            "fix-flaky-tests-ci-pipeline-2",
            "fix-flaky-tests-ci-pipeline-3",
        ]
        assert candidates[0].label == "Fix flaky tests in CI pipeline again"

    def test_naive_now_is_treated_as_utc(self):
        cluster = _cluster("Write integration tests for payments", days_ago=2)
        [aware] = rank_cluster_candidates(
            [cluster], total_prompts=50, total_projects=3, now=NOW
        )
        [naive] = rank_cluster_candidates(
            [cluster], total_prompts=50, total_projects=3, now=NOW.replace(tzinfo=None)
        )
        assert naive.score_breakdown.recency == pytest.approx(aware.score_breakdown.recency)
        assert naive.score_breakdown.recency == pytest.approx(0.5 ** (2 / 14))

    def test_existing_skill_overlap_is_removed(self):
        clusters = [
            _cluster("Help me refactor this authentication module"),
            _cluster("Write integration tests for payments"),
        ]
        existing = [ExistingSkill(name="help-refactor-authentication-module")]
        candidates = rank_cluster_candidates(
            clusters,
            total_prompts=100,
            total_projects=5,
            existing_skills=existing,
            now=NOW,
        )
        assert [candidate.suggested_name for candidate in candidates] == [
            "write-integration-tests-payments"
        ]


class TestDeduplicateCandidates:
    def _candidates(self):
        return rank_cluster_candidates(
            [_cluster("Deploy service to staging"), _cluster("Rotate expiring TLS certificates")],
            total_prompts=20,
            total_projects=3,
            now=NOW,
        )

    def test_keyword_overlap_counts_as_duplicate(self):
        candidates = self._candidates()
        existing = [ExistingSkill(name="staging-deploy", description="Deploy service to staging")]
        kept, removed = deduplicate_candidates(candidates, existing)
        assert [candidate.suggested_name for candidate in removed] == [
            "deploy-service-staging"
        ]
        assert len(kept) == 1

    def test_keeps_everything_when_all_would_be_removed(self):
        candidates = self._candidates()
        existing = [
            ExistingSkill(name="deploy-service-staging"),
            ExistingSkill(name="rotate-expiring-tls-certificates"),
        ]
        kept, removed = deduplicate_candidates(candidates, existing)
        assert len(kept) == 2
        assert removed == []

    def test_no_existing_skills(self):
        candidates = self._candidates()
        kept, removed = deduplicate_candidates(candidates, [])
        assert kept == candidates
        assert removed == []


class TestAssignUniqueNames:
    def test_suffix_skips_names_already_taken(self):
        [base] = rank_cluster_candidates(
            [_cluster("Deploy service to staging")], total_prompts=20, total_projects=3, now=NOW
        )
        names = ["deploy", "deploy-2", "deploy"]
        candidates = [base.model_copy(update={"suggested_name": name}) for name in names]
        renamed = assign_unique_names(candidates)
        assert [candidate.suggested_name for candidate in renamed] == [
            "deploy",
            "deploy-2",
            "deploy-3",
        ]
        assert renamed[0] is candidates[0]
