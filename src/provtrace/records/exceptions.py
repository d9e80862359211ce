"""Record validation errors."""

from __future__ import annotations

from dataclasses import dataclass

from ..exceptions import ProvtraceError


@dataclass
class RecordValidationError(ProvtraceError):
    """Raised when a submission fails schema validation."""

    schema: str
    message: str

    def __post_init__(self) -> None:
        super().__init__(f"{self.schema}: {self.message}")
