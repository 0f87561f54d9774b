"""Configuration management for the skill discovery pipeline."""

from pathlib import Path

import yaml
from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

SUPPORTED_CLUSTER_SCOPES = {"global", "project"}


class Settings(BaseSettings):
    """Discovery settings, loaded from env vars and optionally overridden by a YAML config file."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Session corpus
    claude_base_dir: Path = Field(default=Path("~/.claude").expanduser())
    session_index_filename: str = "sessions-index.json"
    scan_max_workers: int = Field(default=8, ge=1)
    # Project slugs; an excluded project is never scanned, even when allowed.
    allow_projects: list[str] | None = None
    exclude_projects: list[str] = Field(default_factory=list)

    # Embedding
    embedding_batch_size: int = Field(default=64, ge=1)
    max_prompt_words: int = Field(default=200, ge=1)

    # Clustering
    cluster_scope: str = "global"
    cluster_min_pts: int = Field(default=3, ge=1)
    epsilon_min: float = Field(default=0.05, gt=0.0)
    epsilon_max: float = Field(default=0.5, gt=0.0)
    min_prompts_per_project: int = Field(default=10, ge=1)
    merge_similarity_threshold: float = Field(default=0.8, ge=0.0, le=1.0)

    # Scoring
    min_cluster_size: int = Field(default=3, ge=1)
    min_cluster_coherence: float = Field(default=0.5, ge=0.0, le=1.0)
    example_prompt_count: int = Field(default=3, ge=1)
    max_candidates: int = Field(default=10, ge=1)
    dedup_similarity_threshold: float = Field(default=0.5, ge=0.0, le=1.0)

    # Tool sequence evidence
    ngram_sizes: list[int] = Field(default_factory=lambda: [2, 3])
    top_workflow_count: int = Field(default=5, ge=0)

    @model_validator(mode="after")
    def _check_consistency(self) -> "Settings":
        scope = self.cluster_scope.strip().lower()
        if scope not in SUPPORTED_CLUSTER_SCOPES:
            allowed = ", ".join(sorted(SUPPORTED_CLUSTER_SCOPES))
            raise ValueError(f"Unsupported cluster_scope '{self.cluster_scope}'. Expected one of: {allowed}.")
        self.cluster_scope = scope
        if self.epsilon_min > self.epsilon_max:
            raise ValueError(
                f"epsilon_min cannot exceed epsilon_max: {self.epsilon_min} > {self.epsilon_max}."
            )
        if any(size <= 0 for size in self.ngram_sizes):
            raise ValueError(f"ngram_sizes must all be positive, got {self.ngram_sizes}.")
        return self

    @classmethod
    def from_yaml(cls, config_path: str | Path, **overrides) -> "Settings":
        """Load settings from a YAML config file, with env vars and overrides applied on top."""
        path = Path(config_path)
        if path.exists():
            with open(path) as f:
                yaml_config = yaml.safe_load(f) or {}
        else:
            yaml_config = {}
        merged = {**yaml_config, **overrides}
        return cls(**merged)
