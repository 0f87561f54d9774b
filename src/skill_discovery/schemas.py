"""Core data schemas for the skill discovery pipeline."""

from datetime import datetime
from pathlib import Path
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field


class SessionIndexEntry(BaseModel):
    """One session row of a project's sessions index."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    session_id: str = Field(alias="sessionId", min_length=1)
    created: datetime
    modified: datetime
    full_path: str | None = Field(default=None, alias="fullPath")
    file_mtime: float | None = Field(default=None, alias="fileMtime")
    message_count: int | None = Field(default=None, alias="messageCount")
    first_prompt: str | None = Field(default=None, alias="firstPrompt")
    summary: str | None = None
    git_branch: str | None = Field(default=None, alias="gitBranch")
    project_path: str | None = Field(default=None, alias="projectPath")
    is_sidechain: bool | None = Field(default=None, alias="isSidechain")


class SessionIndex(BaseModel):
    """Top-level sessions index document for one project."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    version: int | str
    # Rows are validated one at a time as SessionIndexEntry so a bad row skips only itself.
    entries: list[dict[str, Any]]
    original_path: str | None = Field(default=None, alias="originalPath")


class SessionRecord(BaseModel):
    """A discovered session with its project context."""

    model_config = ConfigDict(frozen=True)

    session_id: str
    project_slug: str
    started_at: datetime
    last_active_at: datetime
    transcript_ref: Path | None = None
    file_mtime: float | None = None
    message_count: int | None = None
    first_prompt: str | None = None
    summary: str | None = None
    git_branch: str | None = None
    project_path: str | None = None
    is_sidechain: bool | None = None

    @property
    def key(self) -> tuple[str, str]:
        """Identity of the session across project roots."""

        return (self.project_slug, self.session_id)


class ContentBlock(BaseModel):
    """A typed content block; unknown block types are kept as-is."""

    model_config = ConfigDict(extra="allow")

    type: str
    text: str | None = None
    name: str | None = None


class PlainText(BaseModel):
    """Message content given as a single string."""

    kind: Literal["plain_text"] = "plain_text"
    text: str


class BlockList(BaseModel):
    """Message content given as an ordered list of typed blocks."""

    kind: Literal["block_list"] = "block_list"
    blocks: list[ContentBlock] = Field(default_factory=list)


MessageContent = Annotated[PlainText | BlockList, Field(discriminator="kind")]


class RawLogEntry(BaseModel):
    """A single transcript record after boundary validation."""

    entry_type: str
    role: str | None = None
    is_meta: bool = False
    session_id: str = ""
    timestamp: str = ""
    cwd: str | None = None
    content: MessageContent | None = None

    @property
    def tool_calls(self) -> list[str]:
        """Names of the tools invoked by this entry, in order."""

        if not isinstance(self.content, BlockList):
            return []
        return [
            block.name
            for block in self.content.blocks
            if block.type == "tool_use" and block.name
        ]

    @property
    def is_tool_invocation(self) -> bool:
        return self.entry_type == "assistant"


class ExtractedPrompt(BaseModel):
    """A real user prompt extracted from a transcript entry."""

    model_config = ConfigDict(frozen=True)

    text: str = Field(min_length=1)
    session_id: str
    timestamp: str
    cwd: str = ""


class CollectedPrompt(BaseModel):
    """An extracted prompt tagged with the project it came from."""

    model_config = ConfigDict(frozen=True)

    text: str = Field(min_length=1)
    session_id: str
    timestamp: str
    cwd: str = ""
    project_slug: str

    @classmethod
    def from_extracted(cls, prompt: ExtractedPrompt, project_slug: str) -> "CollectedPrompt":
        return cls(**prompt.model_dump(), project_slug=project_slug)


class ExistingSkill(BaseModel):
    """A skill already present in the library, used for deduplication."""

    name: str
    description: str = ""


class ClusterScoreBreakdown(BaseModel):
    """Per-factor scores for one cluster."""

    model_config = ConfigDict(frozen=True)

    size: float
    cross_project: float
    coherence: float
    recency: float


class CandidateEvidence(BaseModel):
    """Supporting evidence attached to a cluster candidate."""

    model_config = ConfigDict(frozen=True)

    projects: list[str]
    prompt_count: int
    session_count: int = 0
    last_seen: str = ""
    workflows: dict[str, int] = Field(default_factory=dict)


class ClusterCandidate(BaseModel):
    """A scored, named cluster of recurring prompts."""

    model_config = ConfigDict(frozen=True)

    label: str
    suggested_name: str
    suggested_description: str
    cluster_size: int = Field(ge=1)
    coherence: float = Field(ge=0.0, le=1.0)
    score: float = Field(ge=0.0, le=1.0)
    score_breakdown: ClusterScoreBreakdown
    example_prompts: list[str]
    evidence: CandidateEvidence


class DraftArtifact(BaseModel):
    """A rendered skill draft ready for human review."""

    model_config = ConfigDict(frozen=True)

    name: str
    content: str
