"""Persistent record storage."""

from .store import RecordStore

__all__ = ["RecordStore"]
