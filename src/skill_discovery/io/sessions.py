"""Session enumeration and transcript entry loading."""

from __future__ import annotations

import json
import logging
from collections.abc import Collection, Iterable, Iterator
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from skill_discovery.schemas import (
    BlockList,
    ContentBlock,
    PlainText,
    RawLogEntry,
    SessionIndex,
    SessionIndexEntry,
    SessionRecord,
)

logger = logging.getLogger(__name__)

SESSION_INDEX_FILENAME = "sessions-index.json"
KNOWN_INDEX_VERSIONS = frozenset({1})


def discover_project_roots(claude_base_dir: str | Path) -> list[Path]:
    """List project directories under `<claude_base_dir>/projects`, sorted by name."""

    projects_dir = Path(claude_base_dir).expanduser() / "projects"
    if not projects_dir.is_dir():
        return []
    return sorted(path for path in projects_dir.iterdir() if path.is_dir())


def read_session_index(
    project_root: str | Path,
    *,
    index_filename: str = SESSION_INDEX_FILENAME,
) -> SessionIndex | None:
    """Read and validate one project's sessions index.

    Returns None when the index is missing, unreadable, not JSON, or fails
    schema validation. An unrecognized `version` is logged and parsed
    best-effort instead of rejected.
    """

    index_path = Path(project_root) / index_filename
    try:
        raw = index_path.read_text(encoding="utf-8")
    except FileNotFoundError:
        logger.debug("No session index at %s, skipping project.", index_path)
        return None
    except OSError as exc:
        logger.warning("Unreadable session index at %s (%s), skipping project.", index_path, exc)
        return None

    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as exc:
        logger.warning("Corrupt session index at %s (%s), skipping project.", index_path, exc.msg)
        return None

    try:
        index = SessionIndex.model_validate(payload)
    except ValidationError as exc:
        logger.warning(
            "Invalid session index schema at %s (%d errors), skipping project.",
            index_path,
            exc.error_count(),
        )
        return None

    if index.version not in KNOWN_INDEX_VERSIONS:
        logger.warning(
            "Unknown session index version %s at %s, parsing best-effort.",
            index.version,
            index_path,
        )
    return index


def parse_index_entries(
    index: SessionIndex,
    *,
    source: str | Path = "",
) -> list[SessionIndexEntry]:
    """Validate each index row on its own; invalid rows are logged and dropped."""

    entries: list[SessionIndexEntry] = []
    for position, row in enumerate(index.entries):
        try:
            entries.append(SessionIndexEntry.model_validate(row))
        except ValidationError as exc:
            logger.warning(
                "Invalid session index entry %d in %s (%d errors), skipping entry.",
                position,
                source,
                exc.error_count(),
            )
    return entries


def validate_project_access(
    project_slug: str,
    *,
    allow_projects: Collection[str] | None = None,
    exclude_projects: Collection[str] | None = None,
) -> bool:
    """Return True when a project may be scanned.

    An exclusion always wins. A non-empty `allow_projects` limits scanning to
    the listed projects.
    """

    if exclude_projects and project_slug in exclude_projects:
        return False
    if allow_projects and project_slug not in allow_projects:
        return False
    return True


def _records_for_project(project_root: Path, index_filename: str) -> list[SessionRecord]:
    index = read_session_index(project_root, index_filename=index_filename)
    if index is None:
        return []

    project_slug = project_root.name
    entries = parse_index_entries(index, source=project_root / index_filename)
    return [
        SessionRecord(
            session_id=entry.session_id,
            project_slug=project_slug,
            started_at=entry.created,
            last_active_at=entry.modified,
            transcript_ref=Path(entry.full_path) if entry.full_path else None,
            file_mtime=entry.file_mtime,
            message_count=entry.message_count,
            first_prompt=entry.first_prompt,
            summary=entry.summary,
            git_branch=entry.git_branch,
            project_path=entry.project_path,
            is_sidechain=entry.is_sidechain,
        )
        for entry in entries
    ]


def enumerate_sessions(
    project_roots: Iterable[str | Path],
    *,
    index_filename: str = SESSION_INDEX_FILENAME,
    max_workers: int = 8,
) -> list[SessionRecord]:
    """Return every session declared by the given project roots.

    Projects are scanned concurrently; a project whose index cannot be used
    contributes nothing and never aborts the scan. Results keep project input
    order. Duplicates across roots are kept.
    """

    if max_workers <= 0:
        raise ValueError(f"max_workers must be positive, got {max_workers}.")

    roots = [Path(root) for root in project_roots]
    if not roots:
        return []

    with ThreadPoolExecutor(max_workers=min(max_workers, len(roots))) as pool:
        per_project = list(
            pool.map(lambda root: _records_for_project(root, index_filename), roots)
        )

    sessions = [record for records in per_project for record in records]
    logger.info("Enumerated %d sessions across %d projects.", len(sessions), len(roots))
    return sessions


def _parse_content(raw_content: Any) -> PlainText | BlockList | None:
    if isinstance(raw_content, str):
        return PlainText(text=raw_content)
    if isinstance(raw_content, list):
        blocks = [
            ContentBlock.model_validate(item)
            for item in raw_content
            if isinstance(item, dict) and isinstance(item.get("type"), str)
        ]
        return BlockList(blocks=blocks)
    return None


def parse_log_entry(payload: Any) -> RawLogEntry | None:
    """Validate one deserialized transcript object into a RawLogEntry.

    Returns None for payloads that do not have the shape of a transcript
    record (non-object, missing `type`, malformed message).
    """

    if not isinstance(payload, dict):
        return None
    entry_type = payload.get("type")
    if not isinstance(entry_type, str) or not entry_type:
        return None

    message = payload.get("message")
    role: str | None = None
    content: PlainText | BlockList | None = None
    if isinstance(message, dict):
        raw_role = message.get("role")
        role = raw_role if isinstance(raw_role, str) else None
        try:
            content = _parse_content(message.get("content"))
        except ValidationError:
            logger.debug("Malformed content blocks in %s entry, skipping.", entry_type)
            return None

    cwd = payload.get("cwd")
    try:
        return RawLogEntry(
            entry_type=entry_type,
            role=role,
            is_meta=payload.get("isMeta") is True,
            session_id=str(payload.get("sessionId") or ""),
            timestamp=str(payload.get("timestamp") or ""),
            cwd=cwd if isinstance(cwd, str) else None,
            content=content,
        )
    except ValidationError:
        logger.debug("Malformed %s entry, skipping.", entry_type)
        return None


def iter_transcript_jsonl(path: str | Path) -> Iterator[RawLogEntry]:
    """Yield validated entries from a JSONL transcript, skipping malformed lines."""

    file_path = Path(path)
    # Binary mode so one undecodable line cannot abort the rest of the transcript.
    with file_path.open("rb") as handle:
        for line_number, raw_line in enumerate(handle, start=1):
            try:
                stripped = raw_line.decode("utf-8").strip()
            except UnicodeDecodeError:
                logger.debug("Invalid UTF-8 at %s:%d, skipping line.", file_path, line_number)
                continue
            if not stripped:
                continue
            try:
                payload = json.loads(stripped)
            except json.JSONDecodeError:
                logger.debug("Invalid JSON at %s:%d, skipping line.", file_path, line_number)
                continue
            entry = parse_log_entry(payload)
            if entry is not None:
                yield entry


def read_session_transcript(session: SessionRecord) -> Iterator[RawLogEntry]:
    """Default transcript reader: the JSONL file referenced by the session index."""

    if session.transcript_ref is None:
        raise FileNotFoundError(
            f"Session '{session.session_id}' in project '{session.project_slug}' has no transcript path."
        )
    return iter_transcript_jsonl(session.transcript_ref)
