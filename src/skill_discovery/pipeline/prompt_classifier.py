"""Real-prompt classification for transcript entries.

Most user-role entries in a transcript are not typed by a person: tool result
echoes, meta entries injected by the client, and slash-command or system
wrappers. Only entries that pass every layer below are treated as prompts.
"""

from __future__ import annotations

from skill_discovery.schemas import BlockList, ExtractedPrompt, PlainText, RawLogEntry

MIN_PROMPT_LENGTH = 10

COMMAND_PREFIXES = (
    "<command",
    "<local-command",
    "<system",
    "[Request interrupted",
)


def _flatten_content(content: PlainText | BlockList | None) -> str | None:
    """Return the entry's user text, or None when the structure marks it as noise."""

    if isinstance(content, PlainText):
        return content.text
    if isinstance(content, BlockList):
        if any(block.type == "tool_result" for block in content.blocks):
            return None
        texts = [block.text or "" for block in content.blocks if block.type == "text"]
        if not texts:
            return None
        return "".join(texts)
    return None


def classify_log_entry(entry: RawLogEntry) -> ExtractedPrompt | None:
    """Return the extracted prompt for a real user entry, or None for noise."""

    if entry.is_meta:
        return None

    text = _flatten_content(entry.content)
    if text is None:
        return None

    trimmed = text.strip()
    if trimmed.startswith(COMMAND_PREFIXES):
        return None

    if len(trimmed) < MIN_PROMPT_LENGTH:
        return None

    return ExtractedPrompt(
        text=trimmed,
        session_id=entry.session_id,
        timestamp=entry.timestamp,
        cwd=entry.cwd or "",
    )


def is_real_user_prompt(entry: RawLogEntry) -> bool:
    return classify_log_entry(entry) is not None
