"""Custom exception hierarchy for provtrace."""

from __future__ import annotations

from pathlib import Path


class ProvtraceError(Exception):
    """Base error for the provtrace package."""


class ConfigError(ProvtraceError):
    """Raised when a configuration file fails validation."""

    def __init__(self, path: Path, message: str):
        self.path = Path(path)
        self.message = message
        super().__init__(f"{self.path.name}: {self.message}")


class NotFoundError(ProvtraceError):
    """Raised when a referenced harvest, batch, step or test does not exist."""

    def __init__(self, kind: str, record_id: str):
        self.kind = kind
        self.record_id = record_id
        super().__init__(f"{kind} {record_id} not found")


class ConflictError(ProvtraceError):
    """Raised when a write conflicts with the current state of a record."""


class DuplicateKeyError(ConflictError):
    """Raised when a generated identifier collides with a stored one."""

    def __init__(self, kind: str, record_id: str):
        self.kind = kind
        self.record_id = record_id
        super().__init__(f"duplicate {kind} id {record_id}")
