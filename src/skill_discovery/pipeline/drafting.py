"""Skill draft rendering for cluster candidates."""

from __future__ import annotations

import yaml

from skill_discovery.pipeline.sequence_mining import NGRAM_SEPARATOR
from skill_discovery.schemas import ClusterCandidate, DraftArtifact

LABEL_DISPLAY_LENGTH = 100
EXAMPLE_DISPLAY_LENGTH = 80

GUIDANCE_PLACEHOLDERS = (
    "_Describe the first thing to do when this kind of request comes in._",
    "_List the files, commands, or checks that are usually involved._",
    "_Note project conventions or pitfalls that apply to this request._",
)


def _single_line(text: str, limit: int) -> str:
    """Collapse whitespace and cut to `limit` characters."""

    return " ".join(text.split())[:limit]


def _render_front_matter(candidate: ClusterCandidate) -> str:
    header = yaml.safe_dump(
        {
            "name": candidate.suggested_name,
            "description": candidate.suggested_description,
        },
        sort_keys=False,
        allow_unicode=True,
        default_flow_style=False,
        width=4096,
    )
    return f"---\n{header}---\n\n"


def _render_title(candidate: ClusterCandidate) -> str:
    words = candidate.suggested_name.replace("-", " ").split()
    title = " ".join(word.capitalize() for word in words) or "Prompt Cluster"
    return f"# {title}\n\n"


def _render_activation(candidate: ClusterCandidate) -> str:
    lines = [
        "## When to Activate",
        "",
        "Activate this skill when a request resembles:",
        "",
        f"> {_single_line(candidate.label, LABEL_DISPLAY_LENGTH)}",
        "",
    ]
    if candidate.example_prompts:
        lines.extend(["Example prompts from past sessions:", ""])
        lines.extend(
            f'- "{_single_line(prompt, EXAMPLE_DISPLAY_LENGTH)}"'
            for prompt in candidate.example_prompts
        )
        lines.append("")
    return "\n".join(lines) + "\n"


def _render_guidance() -> str:
    steps = [f"{index}. {text}" for index, text in enumerate(GUIDANCE_PLACEHOLDERS, start=1)]
    return "## Guidance\n\n" + "\n".join(steps) + "\n\n"


def _render_tool_sequences(candidate: ClusterCandidate) -> str:
    workflows = candidate.evidence.workflows
    if not workflows:
        return ""
    lines = ["## Observed Tool Sequences", ""]
    for key, count in workflows.items():
        tools = key.split(NGRAM_SEPARATOR)
        lines.append(f"- `{' -> '.join(tools)}` ({count}x)")
    return "\n".join(lines) + "\n\n"


def _render_evidence(candidate: ClusterCandidate) -> str:
    evidence = candidate.evidence
    rows = [
        ("Prompts in cluster", str(candidate.cluster_size)),
        ("Coherence", f"{candidate.coherence:.2f}"),
        ("Confidence score", f"{candidate.score:.2f}"),
        ("Projects", str(len(evidence.projects))),
        ("Sessions", str(evidence.session_count)),
        ("Last seen", evidence.last_seen or "unknown"),
    ]
    table = "\n".join(f"| {metric} | {value} |" for metric, value in rows)
    return "## Pattern Evidence\n\n| Metric | Value |\n| --- | --- |\n" + table + "\n\n"


def _render_footer() -> str:
    return (
        "---\n\n"
        "*This skill draft was generated by semantic clustering of recurring prompts. "
        "Review the activation pattern and fill in the guidance before enabling it.*\n"
    )


def generate_cluster_draft(candidate: ClusterCandidate) -> DraftArtifact:
    """Render a candidate as a reviewable SKILL.md draft."""

    content = (
        _render_front_matter(candidate)
        + _render_title(candidate)
        + _render_activation(candidate)
        + _render_guidance()
        + _render_tool_sequences(candidate)
        + _render_evidence(candidate)
        + _render_footer()
    )
    return DraftArtifact(name=candidate.suggested_name, content=content)
