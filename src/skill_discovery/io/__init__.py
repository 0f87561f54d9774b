"""I/O utilities for reading session indexes and transcripts."""

from skill_discovery.io.sessions import (
    KNOWN_INDEX_VERSIONS,
    SESSION_INDEX_FILENAME,
    discover_project_roots,
    enumerate_sessions,
    iter_transcript_jsonl,
    parse_index_entries,
    parse_log_entry,
    read_session_index,
    read_session_transcript,
    validate_project_access,
)

__all__ = [
    "KNOWN_INDEX_VERSIONS",
    "SESSION_INDEX_FILENAME",
    "discover_project_roots",
    "enumerate_sessions",
    "iter_transcript_jsonl",
    "parse_index_entries",
    "parse_log_entry",
    "read_session_index",
    "read_session_transcript",
    "validate_project_access",
]
