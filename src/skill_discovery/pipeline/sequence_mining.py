"""Tool-sequence mining for workflow evidence."""

from __future__ import annotations

from collections import Counter
from collections.abc import Iterable, Mapping

from skill_discovery.schemas import RawLogEntry

NGRAM_SEPARATOR = "->"


class SequenceMiningError(ValueError):
    """Raised when n-gram extraction is called with an unsupported width."""


def build_tool_sequence(entries: Iterable[RawLogEntry]) -> list[str]:
    """Flatten the tool calls of one session's tool-invocation entries, in order."""

    sequence: list[str] = []
    for entry in entries:
        if not entry.is_tool_invocation:
            continue
        calls = entry.tool_calls
        if not calls:
            continue
        sequence.extend(calls)
    return sequence


def extract_ngrams(sequence: list[str], n: int) -> dict[str, int]:
    """Count sliding-window n-grams of tool names.

    Raises SequenceMiningError for `n <= 0`.
    """

    if n <= 0:
        raise SequenceMiningError(f"n must be positive, got {n}.")
    if len(sequence) < n:
        return {}

    counts: Counter[str] = Counter(
        NGRAM_SEPARATOR.join(sequence[start : start + n])
        for start in range(len(sequence) - n + 1)
    )
    return dict(counts)


def extract_session_ngrams(sequence: list[str], sizes: Iterable[int]) -> dict[str, int]:
    """Merge n-gram counts for several window sizes into one mapping."""

    merged: dict[str, int] = {}
    for n in sizes:
        merged.update(extract_ngrams(sequence, n))
    return merged


def merge_ngram_counts(counts: Iterable[Mapping[str, int]]) -> dict[str, int]:
    """Sum n-gram counts across sessions."""

    total: Counter[str] = Counter()
    for item in counts:
        total.update(item)
    return dict(total)


def top_ngrams(counts: Mapping[str, int], limit: int) -> dict[str, int]:
    """Return the `limit` most frequent n-grams, ties broken by key."""

    if limit <= 0:
        return {}
    ordered = sorted(counts.items(), key=lambda item: (-item[1], item[0]))
    return dict(ordered[:limit])
