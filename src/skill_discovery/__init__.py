"""Skill discovery from recorded assistant session transcripts."""

__version__ = "0.1.0"
