"""Append-only JSONL journal of engine events and round-trip trades."""

from journal.writer import JournalWriter

__all__ = ["JournalWriter"]
